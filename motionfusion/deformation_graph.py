"""Embedded deformation graph: nodes, vertex skinning weights and constraints."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

import numpy as np

# Unknowns per node: a 3x3 rotation (column-major) followed by a translation.
NUM_VARIABLES = 12
# Residual rows per rotation term, per neighbour regularisation term and per constraint.
E_ROT_ROWS = 6
E_REG_ROWS = 3
E_CON_ROWS = 3
# How many time-ordered nodes around the closest one are searched for neighbours.
LOOK_BACK = 20


@dataclass(eq=False)
class GraphNode:
    """One node of the graph with its local affine transformation."""

    id: int
    position: np.ndarray
    rotation: np.ndarray = field(default_factory=lambda: np.eye(3))
    translation: np.ndarray = field(default_factory=lambda: np.zeros(3))
    neighbours: list[int] = field(default_factory=list)
    enabled: bool = True


@dataclass
class VertexWeight:
    """Influence of one graph node on a vertex or pose."""

    weight: float
    node: int
    relative: bool = False


@dataclass
class Constraint:
    """Pins a vertex to a position, or (when relative) to another vertex."""

    vertex_id: int
    target_position: np.ndarray
    relative: bool = False
    target_id: int = -1

    @classmethod
    def to_position(cls, vertex_id: int, target) -> Constraint:
        return cls(vertex_id, np.asarray(target, dtype=float).reshape(3).copy())

    @classmethod
    def to_vertex(cls, vertex_id: int, target_id: int) -> Constraint:
        return cls(vertex_id, np.zeros(3), True, target_id)


def sort_by_node_id(weights: list[VertexWeight], graph: Sequence[GraphNode]) -> list[VertexWeight]:
    """Stably sort ``weights`` in place by the id of the node each refers to."""
    weights.sort(key=lambda w: graph[w.node].id)
    return weights


def _nearest_time_index(times: Sequence[int], t: int) -> int:
    imin, imax = 0, len(times) - 1
    imid = imax // 2
    while imax >= imin:
        imid = (imin + imax) // 2
        if times[imid] < t:
            imin = imid + 1
        elif times[imid] > t:
            imax = imid - 1
        else:
            break
    imin = min(imin, len(times) - 1)
    imax = max(imax, 0)

    def gap(i: int) -> int:
        return abs(times[i] - t)

    if gap(imin) <= gap(imid) and gap(imin) <= gap(imax):
        return imin
    if gap(imid) <= gap(imin) and gap(imid) <= gap(imax):
        return imid
    return imax


class DeformationGraph:
    """A sequential deformation graph over a shared list of source vertices.

    ``source_vertices`` is held by reference: vertices appended to it later are
    weighted by :meth:`append_vertices`, and :meth:`apply_graph_to_vertices`
    writes deformed positions back into it.
    """

    def __init__(self, k: int, source_vertices: list) -> None:
        if not 0 < k < LOOK_BACK:
            raise ValueError(f"number of neighbours must be between 1 and {LOOK_BACK - 1}, got {k}")
        self.k = k
        self.w_rot = 1.0
        self.w_reg = 10.0
        self.w_con = 100.0
        self.source_vertices = source_vertices
        self.graph: list[GraphNode] = []
        self.graph_times: list[int] = []
        self.vertex_map: list[list[VertexWeight]] = []
        self.pose_map: list[list[VertexWeight]] = []
        self.constraints: list[Constraint] = []
        self.last_point_count = 0
        self._positions = np.zeros((0, 3))
        self._initialised = False

    def is_initialised(self) -> bool:
        return self._initialised

    def _require_initialised(self) -> None:
        if not self._initialised:
            raise RuntimeError("the deformation graph has not been initialised")

    def initialise_graph(self, custom_graph, graph_times: Sequence[int]) -> None:
        """Create one node per position, ordered by the matching sample times."""
        positions = np.asarray(custom_graph, dtype=float).reshape(-1, 3)
        times = [int(t) for t in graph_times]
        if len(times) != positions.shape[0]:
            raise ValueError(f"{positions.shape[0]} node positions but {len(times)} times")
        if positions.shape[0] < self.k + 1:
            raise ValueError(f"a graph with k={self.k} needs at least {self.k + 1} nodes")

        self.graph_times = times
        self._positions = positions.copy()
        self.graph = [GraphNode(i, positions[i].copy()) for i in range(positions.shape[0])]
        self._connect_graph_seq()
        self._initialised = True

    def _connect_graph_seq(self) -> None:
        k, half, size = self.k, self.k // 2, len(self.graph)
        for i in range(half):
            self.graph[i].neighbours.extend(n for n in range(k + 1) if n != i)
        for i in range(half, size - half):
            for n in range(half):
                self.graph[i].neighbours.extend((i - (n + 1), i + (n + 1)))
        for i in range(size - half, size):
            self.graph[i].neighbours.extend(n for n in range(size - (k + 1), size) if n != i)

    def _weights_for(self, point: np.ndarray, time: int) -> list[VertexWeight]:
        found = min(_nearest_time_index(self.graph_times, time), len(self.graph) - 1)
        candidates = list(range(found, -1, -1))[:LOOK_BACK]
        if len(candidates) < LOOK_BACK:
            candidates += list(range(found + 1, len(self.graph_times)))[: LOOK_BACK - len(candidates)]

        distances = np.linalg.norm(self._positions[candidates] - point, axis=1)
        order = np.argsort(distances, kind="stable")
        nearest = [candidates[i] for i in order]
        d_max = float(distances[order[self.k]])

        chosen = nearest[: self.k]
        node_distances = np.array(
            [np.linalg.norm(point - self.graph[n].position) for n in chosen]
        )
        with np.errstate(divide="ignore", invalid="ignore"):
            raw = (1.0 - node_distances / d_max) ** 2
            normalised = raw / raw.sum()
        weights = [VertexWeight(float(w), n) for w, n in zip(normalised, chosen)]
        return sort_by_node_id(weights, self.graph)

    def append_vertices(self, vertex_times: Sequence[int], original_point_end: int) -> None:
        """Weight the vertices added since the last call.

        The weights from ``last_point_count`` onwards are recomputed; the next
        call starts at ``original_point_end``.
        """
        self._require_initialised()
        del self.vertex_map[self.last_point_count:]
        while len(self.vertex_map) < self.last_point_count:
            self.vertex_map.append([])
        for i in range(self.last_point_count, len(self.source_vertices)):
            point = np.asarray(self.source_vertices[i], dtype=float).reshape(3)
            self.vertex_map.append(self._weights_for(point, int(vertex_times[i])))
        self.last_point_count = original_point_end

    def set_poses_seq(self, pose_times: Sequence[int], poses) -> None:
        """Weight each 4x4 pose by its position and time; replaces earlier poses."""
        self._require_initialised()
        self.pose_map = []
        for i, pose in enumerate(poses):
            matrix = np.asarray(pose, dtype=float)
            self.pose_map.append(self._weights_for(matrix[:3, 3], int(pose_times[i])))

    def _deform_point(self, weights: list[VertexWeight], point: np.ndarray) -> np.ndarray:
        position = np.zeros(3)
        for w in weights:
            node = self.graph[w.node]
            position += w.weight * (node.rotation @ (point - node.position) + node.position + node.translation)
        return position

    def apply_graph_to_poses(self, poses) -> list[np.ndarray]:
        """Deformed copies of the poses given to :meth:`set_poses_seq`."""
        self._require_initialised()
        poses = list(poses)
        if len(poses) != len(self.pose_map):
            raise ValueError(f"expected {len(self.pose_map)} poses, got {len(poses)}")
        result = []
        for pose, weights in zip(poses, self.pose_map):
            matrix = np.array(pose, dtype=float)
            position = self._deform_point(weights, matrix[:3, 3])
            rotation = sum((w.weight * self.graph[w.node].rotation for w in weights), np.zeros((3, 3)))
            u, _, vh = np.linalg.svd(rotation @ matrix[:3, :3])
            matrix[:3, 3] = position
            matrix[:3, :3] = u @ vh
            result.append(matrix)
        return result

    def compute_vertex_position(self, vertex_id: int) -> np.ndarray:
        """Position of a source vertex under the current graph."""
        self._require_initialised()
        point = np.asarray(self.source_vertices[vertex_id], dtype=float).reshape(3)
        return self._deform_point(self.vertex_map[vertex_id], point)

    def apply_graph_to_vertices(self) -> None:
        """Overwrite every source vertex with its deformed position."""
        positions = [self.compute_vertex_position(i) for i in range(len(self.source_vertices))]
        for i, position in enumerate(positions):
            self.source_vertices[i] = position

    def _set_constraint(self, constraint: Constraint) -> None:
        for i, existing in enumerate(self.constraints):
            if existing.vertex_id == constraint.vertex_id:
                self.constraints[i] = constraint
                return
        self.constraints.append(constraint)

    def add_constraint(self, vertex_id: int, target) -> None:
        """Pin a vertex to a target position, replacing any constraint on it."""
        self._require_initialised()
        self._set_constraint(Constraint.to_position(vertex_id, target))

    def add_relative_constraint(self, vertex_id: int, target_id: int) -> None:
        """Pull a vertex towards another vertex, replacing any constraint on it."""
        self._require_initialised()
        self._set_constraint(Constraint.to_vertex(vertex_id, target_id))

    def clear_constraints(self) -> None:
        self.constraints.clear()

    def reset_graph(self) -> None:
        """Reset every node's rotation to identity and translation to the identity column."""
        for node in self.graph:
            node.rotation = np.eye(3)
            node.translation = np.eye(3, 1).ravel()

    def non_relative_constraint_error(self) -> float:
        """Summed distance to absolute targets, divided by the number of constraints."""
        total = sum(
            float(np.linalg.norm(self.compute_vertex_position(c.vertex_id) - c.target_position))
            for c in self.constraints
            if not c.relative
        )
        if not self.constraints:
            return float("nan")
        return total / len(self.constraints)