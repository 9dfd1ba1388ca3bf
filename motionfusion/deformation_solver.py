"""Sparse Gauss-Newton optimisation of a deformation graph."""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np
from scipy import sparse

from motionfusion.cholesky import CholeskyDecomp
from motionfusion.deformation_graph import (
    E_CON_ROWS,
    E_REG_ROWS,
    E_ROT_ROWS,
    NUM_VARIABLES,
    Constraint,
    DeformationGraph,
    GraphNode,
    VertexWeight,
    sort_by_node_id,
)

MAX_ITERATIONS = 3
# Below this mean constraint error a fern match needs no deformation.
FERN_MATCH_ERROR = 0.06


@dataclass(frozen=True)
class OptimisationResult:
    """Outcome of an optimisation run.

    ``error`` is the squared norm of the final residual, NaN when the run was
    skipped; ``mean_constraint_error`` is measured after the run.
    """

    optimised: bool
    error: float
    mean_constraint_error: float


def _check_initialised(graph: DeformationGraph) -> None:
    if not graph.is_initialised():
        raise RuntimeError("the deformation graph has not been initialised")


def _any_enabled(graph: DeformationGraph, weights: list[VertexWeight]) -> bool:
    return any(graph.graph[w.node].enabled for w in weights)


def _influenced(graph: DeformationGraph, constraint: Constraint) -> bool:
    """Whether any enabled node moves the constrained vertex (or its target)."""
    if _any_enabled(graph, graph.vertex_map[constraint.vertex_id]):
        return True
    return constraint.relative and _any_enabled(graph, graph.vertex_map[constraint.target_id])


def sparse_residual(graph: DeformationGraph) -> np.ndarray:
    """Stacked rotation, regularisation and constraint residuals."""
    _check_initialised(graph)
    nodes = graph.graph
    parts: list[np.ndarray] = []

    for node in nodes:
        if not node.enabled:
            continue
        c0, c1, c2 = node.rotation.T
        parts.append(
            np.array(
                [c0 @ c1, c0 @ c2, c1 @ c2, c0 @ c0 - 1.0, c1 @ c1 - 1.0, c2 @ c2 - 1.0],
                dtype=float,
            )
        )

    sqrt_reg = math.sqrt(graph.w_reg)
    for node in nodes:
        for index in node.neighbours:
            neighbour = nodes[index]
            if not (neighbour.enabled or node.enabled):
                continue
            moved = node.rotation @ (neighbour.position - node.position) + node.position + node.translation
            parts.append((moved - (neighbour.position + neighbour.translation)) * sqrt_reg)

    sqrt_con = math.sqrt(graph.w_con)
    for constraint in graph.constraints:
        if not _influenced(graph, constraint):
            continue
        source = graph.compute_vertex_position(constraint.vertex_id)
        if constraint.relative:
            target = graph.compute_vertex_position(constraint.target_id)
        else:
            target = constraint.target_position
        parts.append((source - target) * sqrt_con)

    return np.concatenate(parts).astype(float) if parts else np.zeros(0)


class _Rows:
    """Collects Jacobian entries; repeated coordinates are summed."""

    def __init__(self) -> None:
        self.rows: list[int] = []
        self.cols: list[int] = []
        self.values: list[float] = []
        self.count = 0

    def put(self, row: int, col: int, value: float) -> None:
        self.rows.append(self.count + row)
        self.cols.append(col)
        self.values.append(float(value))

    def put_constraint(self, offset: int, delta: np.ndarray, weight: float, scale: float) -> None:
        for r in range(3):
            self.put(r, offset + r, delta[0] * scale)
            self.put(r, offset + 3 + r, delta[1] * scale)
            self.put(r, offset + 6 + r, delta[2] * scale)
            self.put(r, offset + 9 + r, weight * scale)


def _offset(node: GraphNode, back_set: int) -> int:
    return node.id * NUM_VARIABLES - back_set


def sparse_jacobian(graph: DeformationGraph, num_cols: int, back_set: int) -> sparse.csr_matrix:
    """Jacobian of :func:`sparse_residual` over the variables of enabled nodes.

    ``back_set`` is the number of columns taken by the disabled nodes, which
    precede the enabled ones.
    """
    _check_initialised(graph)
    nodes = graph.graph
    acc = _Rows()

    for node in nodes:
        if not node.enabled:
            continue
        offset = _offset(node, back_set)
        rotation = node.rotation
        for row, (a, b) in enumerate(((0, 1), (0, 2), (1, 2))):
            for r in range(3):
                acc.put(row, offset + 3 * a + r, rotation[r, b])
                acc.put(row, offset + 3 * b + r, rotation[r, a])
        for a in range(3):
            for r in range(3):
                acc.put(3 + a, offset + 3 * a + r, 2.0 * rotation[r, a])
        acc.count += E_ROT_ROWS

    sqrt_reg = math.sqrt(graph.w_reg)
    for node in nodes:
        offset = _offset(node, back_set)
        for index in node.neighbours:
            neighbour = nodes[index]
            if not (neighbour.enabled or node.enabled):
                continue
            delta = neighbour.position - node.position
            offset_n = _offset(neighbour, back_set)
            for r in range(3):
                if neighbour.enabled:
                    acc.put(r, offset_n + 9 + r, -sqrt_reg)
                if node.enabled:
                    acc.put(r, offset + r, delta[0] * sqrt_reg)
                    acc.put(r, offset + 3 + r, delta[1] * sqrt_reg)
                    acc.put(r, offset + 6 + r, delta[2] * sqrt_reg)
                    acc.put(r, offset + 9 + r, sqrt_reg)
            acc.count += E_REG_ROWS

    sqrt_con = math.sqrt(graph.w_con)
    for constraint in graph.constraints:
        if not _influenced(graph, constraint):
            continue
        weights = graph.vertex_map[constraint.vertex_id]
        source = np.asarray(graph.source_vertices[constraint.vertex_id], dtype=float).reshape(3)

        if constraint.relative:
            target = np.asarray(graph.source_vertices[constraint.target_id], dtype=float).reshape(3)
            target_weights = graph.vertex_map[constraint.target_id]
            for w in target_weights:
                w.relative = True
            mixed = sort_by_node_id(list(weights) + list(target_weights), nodes)
            for w in mixed:
                node = nodes[w.node]
                if not node.enabled:
                    continue
                if w.relative:
                    delta = (node.position - target) * w.weight
                    acc.put_constraint(_offset(node, back_set), delta, -w.weight, sqrt_con)
                else:
                    delta = (source - node.position) * w.weight
                    acc.put_constraint(_offset(node, back_set), delta, w.weight, sqrt_con)
        else:
            for w in weights:
                node = nodes[w.node]
                if not node.enabled:
                    continue
                delta = (source - node.position) * w.weight
                acc.put_constraint(_offset(node, back_set), delta, w.weight, sqrt_con)
        acc.count += E_CON_ROWS

    matrix = sparse.coo_matrix(
        (acc.values, (acc.rows, acc.cols)), shape=(acc.count, num_cols), dtype=float
    )
    return matrix.tocsr()


def apply_delta(graph: DeformationGraph, delta) -> None:
    """Add a solver step to the enabled nodes, twelve values per node."""
    _check_initialised(graph)
    step = np.asarray(delta, dtype=float).ravel()
    enabled = [node for node in graph.graph if node.enabled]
    if step.shape[0] != NUM_VARIABLES * len(enabled):
        raise ValueError(
            f"step has {step.shape[0]} values, {len(enabled)} enabled nodes need "
            f"{NUM_VARIABLES * len(enabled)}"
        )
    for node, chunk in zip(enabled, step.reshape(-1, NUM_VARIABLES)):
        node.rotation = node.rotation + chunk[:9].reshape(3, 3, order="F")
        node.translation = node.translation + chunk[9:]


def optimise_graph_sparse(
    graph: DeformationGraph, fern_match: bool = False, last_deform_time: int = 0
) -> OptimisationResult:
    """Deform the graph towards its constraints by a few Gauss-Newton steps.

    Only nodes sampled after ``last_deform_time`` are optimised. A fern match
    whose constraints are already close enough is left alone.
    """
    _check_initialised(graph)
    mean_error = graph.non_relative_constraint_error()
    if fern_match and mean_error < FERN_MATCH_ERROR:
        return OptimisationResult(False, float("nan"), mean_error)

    num_cols = 0
    back_set = len(graph.graph) * NUM_VARIABLES
    for node, time in zip(graph.graph, graph.graph_times):
        node.enabled = time > last_deform_time
        if node.enabled:
            num_cols += NUM_VARIABLES
            back_set -= NUM_VARIABLES

    residual = sparse_residual(graph)
    jacobian = sparse_jacobian(graph, num_cols, back_set)
    error = float(residual @ residual)
    last_error = error

    solver = CholeskyDecomp()
    iteration = 0
    while iteration < MAX_ITERATIONS:
        iteration += 1
        delta = solver.solve(jacobian, -residual, iteration == 1)
        apply_delta(graph, delta)

        residual = sparse_residual(graph)
        error = float(residual @ residual)
        error_diff = error - last_error

        if (
            error > last_error
            or np.linalg.norm(delta) < 1e-2
            or error < 1e-3
            or abs(error_diff) < 1e-5 * error
            or (iteration == 1 and fern_match and error > 10.0)
        ):
            break

        last_error = error
        jacobian = sparse_jacobian(graph, num_cols, back_set)

    solver.free_factor()
    return OptimisationResult(True, error, graph.non_relative_constraint_error())