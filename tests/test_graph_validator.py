"""Unit tests for graph validation and connectivity checks."""

import numpy as np
import pytest
from pqhnsw.errors import InvariantViolationError
from pqhnsw.graph_validator import GraphValidator
from pqhnsw.hnsw.builder import HNSWBuilder
from pqhnsw.hnsw.graph import HNSWGraph


def line_graph(n: int = 4) -> HNSWGraph:
    """n level-0 nodes on a line, linked as a chain."""
    graph = HNSWGraph(dimension=1, M=2)
    for x in range(n):
        graph.add_node(np.array([float(x)], dtype=np.float32), level=0)
    graph.set_entry_point(0, 0)
    for x in range(n - 1):
        graph.link(x, x + 1, layer=0, dist=1.0)
        graph.link(x + 1, x, layer=0, dist=1.0)
    return graph


class TestValidGraphs:
    """Graphs that satisfy every check."""

    def test_empty_graph(self):
        validator = GraphValidator(HNSWGraph(dimension=2))
        assert validator.validate() == []

    def test_chain_is_valid(self):
        validator = GraphValidator(line_graph())
        assert validator.validate() == []
        validator.assert_valid()

    def test_built_graph_is_valid(self, sample_vectors):
        graph = HNSWGraph(dimension=8, M=8)
        builder = HNSWBuilder(graph, seed=4)
        for v in sample_vectors[:100]:
            builder.insert(v)

        assert GraphValidator(graph).validate() == []


class TestViolations:
    """Each structural check reports its violation."""

    def test_neighbor_cap_exceeded(self):
        graph = HNSWGraph(dimension=1, M=2, M0=2)
        for x in range(4):
            graph.add_node(np.array([float(x)], dtype=np.float32), level=0)
        graph.set_entry_point(0, 0)
        graph.nodes[0].set_neighbors(0, [(1, 1.0), (2, 4.0), (3, 9.0)])

        violations = GraphValidator(graph).validate(check_reachability=False)
        assert any("exceeds cap 2" in v for v in violations)

    def test_self_loop(self):
        graph = line_graph()
        graph.nodes[1].add_neighbor(1, layer=0)

        violations = GraphValidator(graph).validate()
        assert any("self loop" in v for v in violations)

    def test_duplicate_neighbors(self):
        graph = line_graph()
        graph.nodes[1].set_neighbors(0, [(0, 1.0), (0, 1.0)])

        violations = GraphValidator(graph).validate()
        assert any("duplicate" in v for v in violations)

    def test_unknown_neighbor(self):
        graph = line_graph()
        graph.nodes[2].add_neighbor(42, layer=0)

        violations = GraphValidator(graph).validate()
        assert any("unknown neighbor 42" in v for v in violations)

    def test_neighbor_below_layer(self):
        graph = HNSWGraph(dimension=1, M=2)
        graph.add_node(np.array([0.0], dtype=np.float32), level=1)
        graph.add_node(np.array([1.0], dtype=np.float32), level=0)
        graph.set_entry_point(0, 1)
        graph.nodes[0].add_neighbor(1, layer=1)

        violations = GraphValidator(graph).validate(check_reachability=False)
        assert any("only reaches level 0" in v for v in violations)

    def test_entry_point_not_on_top_layer(self):
        graph = HNSWGraph(dimension=1, M=2)
        graph.add_node(np.array([0.0], dtype=np.float32), level=0)
        graph.add_node(np.array([1.0], dtype=np.float32), level=2)
        graph.set_entry_point(0, 0)

        violations = GraphValidator(graph).validate(check_reachability=False)
        assert any("below highest level" in v for v in violations)

    def test_missing_entry_point(self):
        graph = HNSWGraph(dimension=1, M=2)
        graph.add_node(np.array([0.0], dtype=np.float32), level=0)

        assert GraphValidator(graph).validate() == ["non-empty graph has no entry point"]

    def test_assert_valid_raises(self):
        graph = line_graph()
        graph.nodes[1].add_neighbor(1, layer=0)

        with pytest.raises(InvariantViolationError):
            GraphValidator(graph).assert_valid()


class TestReachability:
    """BFS from the entry point."""

    def test_all_reachable(self):
        assert GraphValidator(line_graph()).find_unreachable() == set()

    def test_disconnected_node(self):
        graph = line_graph(3)
        graph.add_node(np.array([10.0], dtype=np.float32), level=0)

        validator = GraphValidator(graph)
        assert validator.find_unreachable(layer=0) == {3}
        violations = validator.validate()
        assert len(violations) == 1
        assert "unreachable" in violations[0]

    def test_links_are_directed(self):
        """A node only pointed away from is unreachable"""
        graph = line_graph(2)
        graph.add_node(np.array([2.0], dtype=np.float32), level=0)
        graph.nodes[2].add_neighbor(1, layer=0)

        assert GraphValidator(graph).find_unreachable() == {2}

    def test_upper_layer_members_only(self):
        graph = HNSWGraph(dimension=1, M=2)
        graph.add_node(np.array([0.0], dtype=np.float32), level=1)
        graph.add_node(np.array([1.0], dtype=np.float32), level=0)
        graph.add_node(np.array([2.0], dtype=np.float32), level=1)
        graph.set_entry_point(0, 1)
        graph.link(0, 2, layer=1, dist=4.0)
        graph.link(2, 0, layer=1, dist=4.0)

        assert GraphValidator(graph).find_unreachable(layer=1) == set()

    def test_empty_graph_has_nothing_unreachable(self):
        assert GraphValidator(HNSWGraph(dimension=1)).find_unreachable() == set()


class TestGraphStatistics:
    """get_graph_statistics output."""

    def test_statistics_empty_graph(self):
        stats = GraphValidator(HNSWGraph(dimension=2)).get_graph_statistics()

        assert stats["node_count"] == 0
        assert stats["max_level"] == -1
        assert stats["avg_degree"] == 0.0

    def test_statistics_chain(self):
        stats = GraphValidator(line_graph(4)).get_graph_statistics()

        assert stats["node_count"] == 4
        assert stats["max_level"] == 0
        assert stats["avg_degree"] == 1.5  # degrees 1, 2, 2, 1
        assert stats["min_degree"] == 1
        assert stats["max_degree"] == 2
        assert stats["nodes_at_layer_0"] == 4

    def test_statistics_per_layer(self):
        graph = HNSWGraph(dimension=1, M=2)
        for x, level in enumerate([2, 0, 1]):
            graph.add_node(np.array([float(x)], dtype=np.float32), level=level)
        graph.set_entry_point(0, 2)

        stats = GraphValidator(graph).get_graph_statistics()
        assert stats["nodes_at_layer_0"] == 3
        assert stats["nodes_at_layer_1"] == 2
        assert stats["nodes_at_layer_2"] == 1
