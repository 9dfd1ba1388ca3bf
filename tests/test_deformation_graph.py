import math

import numpy as np
import pytest

from motionfusion.deformation_graph import (
    Constraint,
    DeformationGraph,
    GraphNode,
    VertexWeight,
    sort_by_node_id,
)

K = 4
NODE_POSITIONS = [[float(i), 0.0, 0.0] for i in range(8)]
NODE_TIMES = [10 * i for i in range(8)]
VERTICES = [
    [0.2, 0.1, 0.0],
    [2.5, -0.1, 0.3],
    [4.1, 0.2, -0.2],
    [6.8, 0.0, 0.1],
]
VERTEX_TIMES = [2, 25, 41, 68]


def _graph():
    vertices = [np.array(v) for v in VERTICES]
    graph = DeformationGraph(K, vertices)
    graph.initialise_graph(NODE_POSITIONS, NODE_TIMES)
    graph.append_vertices(VERTEX_TIMES, len(vertices))
    return graph, vertices


def _pose(angle, translation):
    c, s = math.cos(angle), math.sin(angle)
    pose = np.eye(4)
    pose[:3, :3] = [[c, -s, 0.0], [s, c, 0.0], [0.0, 0.0, 1.0]]
    pose[:3, 3] = translation
    return pose


def test_initialisation_flag():
    graph = DeformationGraph(K, [])
    assert graph.is_initialised() is False
    graph.initialise_graph(NODE_POSITIONS, NODE_TIMES)
    assert graph.is_initialised() is True


def test_neighbours_have_k_entries_without_self():
    graph, _ = _graph()
    for node in graph.graph:
        assert len(node.neighbours) == K
        assert node.id not in node.neighbours
        assert all(0 <= n < len(NODE_POSITIONS) for n in node.neighbours)


def test_too_few_nodes_rejected():
    graph = DeformationGraph(K, [])
    with pytest.raises(ValueError):
        graph.initialise_graph(NODE_POSITIONS[:K], NODE_TIMES[:K])


def test_times_must_match_positions():
    graph = DeformationGraph(K, [])
    with pytest.raises(ValueError):
        graph.initialise_graph(NODE_POSITIONS, NODE_TIMES[:-1])


@pytest.mark.parametrize("k", [0, 20])
def test_invalid_k_rejected(k):
    with pytest.raises(ValueError):
        DeformationGraph(k, [])


def test_constraint_requires_initialised_graph():
    graph = DeformationGraph(K, [])
    with pytest.raises(RuntimeError):
        graph.add_constraint(0, [0.0, 0.0, 0.0])
    with pytest.raises(RuntimeError):
        graph.add_relative_constraint(0, 1)


def test_vertex_weights_are_normalised_and_sorted():
    graph, vertices = _graph()
    assert len(graph.vertex_map) == len(vertices)
    for weights in graph.vertex_map:
        assert len(weights) == K
        assert sum(w.weight for w in weights) == pytest.approx(1.0)
        assert all(w.weight >= 0 for w in weights)
        ids = [graph.graph[w.node].id for w in weights]
        assert ids == sorted(ids)


def test_append_vertices_recomputes_from_last_point_count():
    vertices = [np.array(v) for v in VERTICES]
    graph = DeformationGraph(K, vertices)
    graph.initialise_graph(NODE_POSITIONS, NODE_TIMES)
    graph.append_vertices(VERTEX_TIMES, 2)
    assert graph.last_point_count == 2
    assert len(graph.vertex_map) == 4
    graph.append_vertices(VERTEX_TIMES, 4)
    assert len(graph.vertex_map) == 4
    assert graph.last_point_count == 4


def test_identity_graph_keeps_vertices():
    graph, vertices = _graph()
    for i, vertex in enumerate(VERTICES):
        np.testing.assert_allclose(graph.compute_vertex_position(i), vertex, atol=1e-12)


def test_translated_graph_moves_vertices():
    graph, vertices = _graph()
    shift = np.array([0.5, -1.0, 2.0])
    for node in graph.graph:
        node.translation = shift.copy()
    graph.apply_graph_to_vertices()
    for original, moved in zip(VERTICES, vertices):
        np.testing.assert_allclose(moved, np.array(original) + shift, atol=1e-12)


def test_identity_graph_keeps_poses():
    graph, _ = _graph()
    poses = [_pose(0.3, [1.2, 0.1, 0.0]), _pose(-0.7, [5.5, 0.0, 0.2])]
    graph.set_poses_seq([12, 55], poses)
    result = graph.apply_graph_to_poses(poses)
    for before, after in zip(poses, result):
        np.testing.assert_allclose(after, before, atol=1e-9)


def test_translated_graph_moves_poses_only_in_translation():
    graph, _ = _graph()
    shift = np.array([0.0, 3.0, -1.0])
    for node in graph.graph:
        node.translation = shift.copy()
    pose = _pose(0.4, [3.3, 0.0, 0.0])
    graph.set_poses_seq([33], [pose])
    (moved,) = graph.apply_graph_to_poses([pose])
    np.testing.assert_allclose(moved[:3, :3], pose[:3, :3], atol=1e-9)
    np.testing.assert_allclose(moved[:3, 3], pose[:3, 3] + shift, atol=1e-9)


def test_pose_count_must_match():
    graph, _ = _graph()
    graph.set_poses_seq([5], [_pose(0.0, [0.5, 0.0, 0.0])])
    with pytest.raises(ValueError):
        graph.apply_graph_to_poses([])


def test_constraints_overwrite_by_vertex():
    graph, _ = _graph()
    graph.add_constraint(1, [1.0, 2.0, 3.0])
    graph.add_constraint(1, [4.0, 5.0, 6.0])
    assert len(graph.constraints) == 1
    np.testing.assert_allclose(graph.constraints[0].target_position, [4.0, 5.0, 6.0])
    graph.add_relative_constraint(1, 3)
    assert len(graph.constraints) == 1
    assert graph.constraints[0].relative is True
    assert graph.constraints[0].target_id == 3
    graph.add_constraint(2, [0.0, 0.0, 0.0])
    assert [c.vertex_id for c in graph.constraints] == [1, 2]
    graph.clear_constraints()
    assert graph.constraints == []


def test_non_relative_constraint_error():
    graph, _ = _graph()
    assert math.isnan(graph.non_relative_constraint_error())
    graph.add_constraint(0, np.array(VERTICES[0]) + [0.0, 0.0, 1.0])
    assert graph.non_relative_constraint_error() == pytest.approx(1.0)
    graph.add_relative_constraint(2, 3)
    assert graph.non_relative_constraint_error() == pytest.approx(0.5)


def test_reset_graph_restores_rotation():
    graph, _ = _graph()
    for node in graph.graph:
        node.rotation = np.full((3, 3), 2.0)
    graph.reset_graph()
    for node in graph.graph:
        np.testing.assert_array_equal(node.rotation, np.eye(3))


def test_sort_by_node_id_is_stable():
    nodes = [GraphNode(i, np.zeros(3)) for i in range(4)]
    weights = [VertexWeight(0.1, 3), VertexWeight(0.2, 1), VertexWeight(0.3, 1), VertexWeight(0.4, 0)]
    result = sort_by_node_id(weights, nodes)
    assert [w.node for w in result] == [0, 1, 1, 3]
    assert [w.weight for w in result] == [0.4, 0.2, 0.3, 0.1]


def test_constraint_constructors():
    absolute = Constraint.to_position(5, [1.0, 2.0, 3.0])
    assert absolute.relative is False
    assert absolute.target_id == -1
    relative = Constraint.to_vertex(5, 9)
    assert relative.relative is True
    np.testing.assert_array_equal(relative.target_position, np.zeros(3))