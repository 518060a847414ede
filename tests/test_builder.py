"""
Tests for HNSW insertion algorithm.

These tests verify that the builder correctly inserts nodes into the graph:
- First node insertion (special case)
- Multiple node insertion with connections
- Neighbor selection and pruning
- Entry point promotion
- Graph structure integrity after insertions
"""

import numpy as np
import pytest
from pqhnsw.graph_validator import GraphValidator
from pqhnsw.hnsw.builder import HNSWBuilder
from pqhnsw.hnsw.graph import HNSWGraph
from pqhnsw.hnsw.searcher import search_layer
from pqhnsw.pq.quantizer import ProductQuantizer


def test_insert_first_node():
    """Insert the first node into an empty graph"""
    graph = HNSWGraph(dimension=3, M=4)
    builder = HNSWBuilder(graph)

    node_id = builder.insert(np.array([1.0, 0.0, 0.0], dtype=np.float32), level=2)

    assert node_id == 0
    assert graph.size() == 1
    assert graph.entry_point == 0
    assert graph.get_max_level() == 2

    # First node has no neighbors
    node = graph.get_node(0)
    assert node.get_neighbors(0) == []
    assert node.get_neighbors(1) == []
    assert node.get_neighbors(2) == []


def test_insert_two_nodes():
    """Insert two nodes and verify they connect"""
    graph = HNSWGraph(dimension=2, M=4)
    builder = HNSWBuilder(graph)

    builder.insert(np.array([1.0, 0.0], dtype=np.float32), level=1)
    builder.insert(np.array([0.9, 0.1], dtype=np.float32), level=1)

    # Nodes should be connected at layer 0 and layer 1
    node0 = graph.get_node(0)
    node1 = graph.get_node(1)
    for layer in (0, 1):
        assert node0.get_neighbors(layer) == [1]
        assert node1.get_neighbors(layer) == [0]


def test_cached_distance_matches_vectors():
    graph = HNSWGraph(dimension=2, M=4)
    builder = HNSWBuilder(graph)
    builder.insert(np.array([0.0, 0.0], dtype=np.float32), level=0)
    builder.insert(np.array([3.0, 4.0], dtype=np.float32), level=0)

    (neighbor_id, dist), = graph.get_node(1).get_neighbor_pairs(0)
    assert neighbor_id == 0
    assert dist == pytest.approx(25.0)


def test_insert_multiple_nodes(sample_vectors):
    """All nodes are stored and connected at layer 0"""
    graph = HNSWGraph(dimension=8, M=4)
    builder = HNSWBuilder(graph, ef_construction=32, seed=0)

    ids = [builder.insert(v) for v in sample_vectors]

    assert ids == list(range(len(sample_vectors)))
    assert graph.size() == len(sample_vectors)
    for node in graph.nodes:
        assert len(node.get_neighbors(0)) >= 1


def test_insert_respects_M_constraint(sample_vectors):
    """No neighbor list grows past M (layers >= 1) or M0 (layer 0)"""
    graph = HNSWGraph(dimension=8, M=3)
    builder = HNSWBuilder(graph, ef_construction=16, seed=1)

    for v in sample_vectors:
        builder.insert(v)

    for node in graph.nodes:
        assert len(node.get_neighbors(0)) <= graph.M0
        for layer in range(1, node.level + 1):
            assert len(node.get_neighbors(layer)) <= graph.M


def test_built_graph_is_valid(sample_vectors):
    graph = HNSWGraph(dimension=8, M=8)
    builder = HNSWBuilder(graph, ef_construction=64, seed=2)
    for v in sample_vectors:
        builder.insert(v)

    assert GraphValidator(graph).validate() == []


def test_search_layer():
    """Beam search on a layer returns the ef closest nodes"""
    graph = HNSWGraph(dimension=1, M=4)
    builder = HNSWBuilder(graph, ef_construction=10)
    for x in range(10):
        builder.insert(np.array([float(x)], dtype=np.float32), level=0)

    query = graph.query_distance(np.array([4.2], dtype=np.float32))
    results = search_layer(graph, query, [(query(0), 0)], ef=3, layer=0)

    assert [node_id for _, node_id in results] == [4, 5, 3]
    assert results[0][0] == pytest.approx(0.04, abs=1e-5)


def test_different_levels():
    """A node is only linked on the layers it lives on"""
    graph = HNSWGraph(dimension=2, M=4)
    builder = HNSWBuilder(graph)

    builder.insert(np.array([0.0, 0.0], dtype=np.float32), level=2)
    builder.insert(np.array([1.0, 0.0], dtype=np.float32), level=0)
    builder.insert(np.array([0.0, 1.0], dtype=np.float32), level=1)

    node0 = graph.get_node(0)
    assert 1 in node0.get_neighbors(0)
    assert 1 not in node0.get_neighbors(1)
    assert 2 in node0.get_neighbors(1)
    assert node0.get_neighbors(2) == []
    assert graph.get_node(1).neighbors[0]
    assert len(graph.get_node(1).neighbors) == 1


def test_bidirectional_connections():
    """Every link created on insert is mirrored while lists are under their cap"""
    graph = HNSWGraph(dimension=2, M=4)
    builder = HNSWBuilder(graph)

    builder.insert(np.array([0.0, 0.0], dtype=np.float32), level=0)
    builder.insert(np.array([1.0, 0.0], dtype=np.float32), level=0)
    builder.insert(np.array([0.0, 1.0], dtype=np.float32), level=0)

    for node in graph.nodes:
        for neighbor_id in node.get_neighbors(0):
            assert node.id in graph.get_node(neighbor_id).get_neighbors(0)


def test_node_with_higher_level_becomes_entry():
    graph = HNSWGraph(dimension=2, M=4)
    builder = HNSWBuilder(graph)

    builder.insert(np.array([0.0, 0.0], dtype=np.float32), level=1)
    builder.insert(np.array([1.0, 0.0], dtype=np.float32), level=1)
    assert graph.get_entry() == (0, 1)

    builder.insert(np.array([2.0, 0.0], dtype=np.float32), level=3)
    assert graph.get_entry() == (2, 3)
    # Linked on the layers shared with the old top
    assert graph.get_node(2).get_neighbors(1)
    assert graph.get_node(2).get_neighbors(3) == []


def test_overflowing_neighbor_list_is_pruned():
    """A hub receiving more reverse links than its cap is re-pruned"""
    graph = HNSWGraph(dimension=2, M=2, M0=3)
    builder = HNSWBuilder(graph, ef_construction=8)

    builder.insert(np.array([0.0, 0.0], dtype=np.float32), level=0)
    angles = np.linspace(0, 2 * np.pi, 8, endpoint=False)
    for a in angles:
        builder.insert(np.array([np.cos(a), np.sin(a)], dtype=np.float32), level=0)

    assert len(graph.get_node(0).get_neighbors(0)) <= 3
    assert GraphValidator(graph).validate(check_reachability=False) == []


def test_levels_are_reproducible(sample_vectors):
    """The same seed draws the same levels"""
    levels = []
    for _ in range(2):
        graph = HNSWGraph(dimension=8, M=4)
        builder = HNSWBuilder(graph, seed=123)
        for v in sample_vectors[:50]:
            builder.insert(v)
        levels.append([node.level for node in graph.nodes])

    assert levels[0] == levels[1]


def test_insert_into_compressed_graph(uniform_10k):
    pq = ProductQuantizer(dims=4, pq_bits=3, pq_subqs=2)
    assert pq.train(uniform_10k)
    graph = HNSWGraph(dimension=4, M=8, quantizer=pq)
    builder = HNSWBuilder(graph, ef_construction=32, seed=0)

    for v in uniform_10k[:300]:
        builder.insert(v)

    assert graph.size() == 300
    assert GraphValidator(graph).validate() == []


def layer_members(graph, layer):
    return [node.id for node in graph.nodes if node.level >= layer]


def assert_every_layer_connected(graph):
    validator = GraphValidator(graph)
    for layer in range(graph.get_max_level() + 1):
        members = layer_members(graph, layer)
        assert validator.find_unreachable(layer=layer) == set()
        # Every node but the first on a layer keeps a link from an older node
        for node_id in members[1:]:
            assert graph.older_in_degree[node_id][layer] >= 1


def test_duplicates_stay_reachable():
    """Groups of identical vectors keep a link from outside the group"""
    rng = np.random.default_rng(7)
    base = rng.random((120, 4)).astype(np.float32)
    vectors = np.repeat(base, 5, axis=0)
    rng.shuffle(vectors)

    graph = HNSWGraph(dimension=4, M=4)
    builder = HNSWBuilder(graph, ef_construction=8, seed=3)
    for v in vectors:
        builder.insert(v)

    assert GraphValidator(graph).validate() == []
    assert_every_layer_connected(graph)


def test_shared_codes_stay_reachable(uniform_10k):
    """With 64 distinct codes most nodes sit at distance 0 from many others"""
    pq = ProductQuantizer(dims=4, pq_bits=3, pq_subqs=2)
    assert pq.train(uniform_10k)
    graph = HNSWGraph(dimension=4, M=8, quantizer=pq)
    builder = HNSWBuilder(graph, ef_construction=32, seed=0)

    for v in uniform_10k[:1000]:
        builder.insert(v)

    assert_every_layer_connected(graph)


def test_pruning_fills_lists_to_cap(uniform_10k):
    """Pruned lists are padded back to the cap instead of shrinking"""
    pq = ProductQuantizer(dims=4, pq_bits=3, pq_subqs=2)
    assert pq.train(uniform_10k)
    graph = HNSWGraph(dimension=4, M=4, quantizer=pq)
    builder = HNSWBuilder(graph, ef_construction=16, seed=0)

    for v in uniform_10k[:500]:
        builder.insert(v)

    degrees = [len(node.get_neighbors(0)) for node in graph.nodes]
    assert max(degrees) == graph.M0
    # Each node links to M neighbors on insert even when they share its code
    assert min(degrees[graph.M:]) >= graph.M
