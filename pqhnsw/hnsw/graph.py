"""
HNSW graph data structures.

This module defines the core data structures for storing the HNSW graph:
- HNSWNode: a single stored vector (raw or PQ-encoded) and its connections
- HNSWGraph: the node arena, entry point and distance plumbing
- QueryDistance: distances from one query vector to stored nodes

The graph is hierarchical: nodes at layer 0 form a dense graph with all vectors,
while higher layers contain progressively fewer nodes for faster coarse-grained search.

Node ids are positions in the graph's node list and never change. Neighbor
lists are immutable tuples of (neighbor_id, distance) pairs that are replaced
as a whole when they change, so a concurrent reader always sees either the
old or the new list.
"""

from typing import TYPE_CHECKING, List, Optional, Sequence, Tuple
import math

import numpy as np
import numpy.typing as npt

from pqhnsw.hnsw.distance import Metric, distance, distance_batch

if TYPE_CHECKING:
    from pqhnsw.pq.quantizer import ProductQuantizer

Vector = npt.NDArray[np.float32]
NeighborList = Tuple[Tuple[int, float], ...]


class HNSWNode:
    """
    Represents a single node in the HNSW graph.

    The node appears in layers 0 through its assigned 'level'. Its payload is
    either the raw vector or the PQ code of the vector.
    """

    __slots__ = ("id", "payload", "level", "neighbors")

    def __init__(self, node_id: int, payload: np.ndarray, level: int) -> None:
        """
        Create a new HNSW node.

        Args:
            node_id: Position of the node in the graph's arena
            payload: Raw vector or PQ code (stored read-only)
            level: Maximum layer this node appears in (0 = base layer only)
        """
        self.id = node_id
        self.payload = payload
        self.level = level

        # neighbors[layer] = ((neighbor_id, distance), ...)
        self.neighbors: List[NeighborList] = [() for _ in range(level + 1)]

    def add_neighbor(self, neighbor_id: int, layer: int, dist: float = 0.0) -> None:
        """
        Add a connection to another node at a specific layer.

        Args:
            neighbor_id: ID of the neighbor node to connect to
            layer: Which layer to add the connection at
            dist: Distance between the two nodes, cached with the link
        """
        if layer > self.level:
            raise ValueError(
                f"Cannot add neighbor at layer {layer} (node max level is {self.level})"
            )

        current = self.neighbors[layer]
        if all(nid != neighbor_id for nid, _ in current):
            self.neighbors[layer] = current + ((neighbor_id, float(dist)),)

    def set_neighbors(self, layer: int, pairs: Sequence[Tuple[int, float]]) -> None:
        """Replace the whole neighbor list of a layer."""
        if layer > self.level:
            raise ValueError(
                f"Cannot set neighbors at layer {layer} (node max level is {self.level})"
            )
        self.neighbors[layer] = tuple((int(nid), float(d)) for nid, d in pairs)

    def get_neighbors(self, layer: int) -> List[int]:
        """
        Get neighbor ids at a specific layer.

        Returns:
            List of neighbor node IDs (empty above the node's level)
        """
        if layer > self.level:
            return []

        return [nid for nid, _ in self.neighbors[layer]]

    def get_neighbor_pairs(self, layer: int) -> NeighborList:
        """Neighbor ids with their cached distances at a layer."""
        if layer > self.level:
            return ()
        return self.neighbors[layer]

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"HNSWNode(id={self.id}, level={self.level}, payload_len={len(self.payload)})"


class HNSWGraph:
    """
    Container for the entire HNSW graph structure.

    Manages all nodes, tracks the entry point for searches, and hides whether
    nodes store raw vectors or PQ codes behind node_distance/QueryDistance.
    """

    def __init__(
        self,
        dimension: int,
        M: int = 16,
        M0: Optional[int] = None,
        level_multiplier: Optional[float] = None,
        metric: Metric = Metric.L2,
        quantizer: Optional["ProductQuantizer"] = None,
    ) -> None:
        """
        Initialize an empty HNSW graph.

        Args:
            dimension: Dimensionality of vectors to store
            M: Maximum number of neighbors per node at layers > 0
            M0: Maximum neighbors at layer 0 (default: 2*M for denser base layer)
            level_multiplier: Controls layer distribution (default: 1/ln(M))
            metric: Distance metric
            quantizer: Trained product quantizer; when given, nodes store PQ codes
        """
        if quantizer is not None:
            if not quantizer.is_trained:
                raise ValueError("Quantizer must be trained before building a compressed graph")
            if quantizer.dims != dimension:
                raise ValueError(
                    f"Quantizer dimension {quantizer.dims} doesn't match graph dimension {dimension}"
                )

        self.dimension = dimension
        self.M = M
        self.M0 = M0 if M0 is not None else 2 * M
        self.metric = Metric.parse(metric)
        self.quantizer = quantizer

        # P(level >= l) = (1/M)^l
        if level_multiplier is None:
            self.level_multiplier = 1.0 / math.log(M)
        else:
            self.level_multiplier = level_multiplier

        # Node arena: node id == position
        self.nodes: List[HNSWNode] = []

        # (entry_id, entry_level), replaced as one value; None when empty
        self._entry: Optional[Tuple[int, int]] = None

        # older_in_degree[node_id][layer]: incoming links from lower ids, made
        # through link/set_links
        self.older_in_degree: List[List[int]] = []

    @property
    def is_compressed(self) -> bool:
        return self.quantizer is not None

    @property
    def entry_point(self) -> Optional[int]:
        entry = self._entry
        return None if entry is None else entry[0]

    def get_entry(self) -> Optional[Tuple[int, int]]:
        """Consistent (entry_id, max_level) snapshot, or None for an empty graph."""
        return self._entry

    def set_entry_point(self, node_id: int, level: int) -> None:
        node = self.nodes[node_id]
        if node.level != level:
            raise ValueError(f"Node {node_id} has level {node.level}, not {level}")
        self._entry = (node_id, level)

    def max_neighbors(self, layer: int) -> int:
        """Neighbor-list cap of a layer."""
        return self.M0 if layer == 0 else self.M

    def add_node(self, vector: Vector, level: int) -> int:
        """
        Add a new node to the arena (without connecting it yet).

        The entry point is left unchanged; the builder promotes the node once
        it is linked.

        Args:
            vector: Raw vector data for the node
            level: Maximum layer this node should appear in

        Returns:
            The ID assigned to the new node
        """
        vector = np.asarray(vector, dtype=np.float32)
        if vector.shape != (self.dimension,):
            raise ValueError(
                f"Vector dimension {len(vector)} doesn't match graph dimension {self.dimension}"
            )
        if level < 0:
            raise ValueError(f"Level must be >= 0, got {level}")

        if self.quantizer is not None:
            payload = self.quantizer.encode(vector)
        else:
            payload = vector.copy()
        payload.setflags(write=False)

        node_id = len(self.nodes)
        self.older_in_degree.append([0] * (level + 1))
        self.nodes.append(HNSWNode(node_id, payload, level))
        return node_id

    def get_node(self, node_id: int) -> Optional[HNSWNode]:
        """
        Retrieve a node by its ID.

        Returns:
            The HNSWNode, or None if not found
        """
        if 0 <= node_id < len(self.nodes):
            return self.nodes[node_id]
        return None

    def link(self, node_id: int, neighbor_id: int, layer: int, dist: float) -> None:
        """Add a directed link node_id -> neighbor_id, keeping link counts current."""
        node = self.nodes[node_id]
        before = len(node.get_neighbor_pairs(layer))
        node.add_neighbor(neighbor_id, layer, dist)
        if len(node.neighbors[layer]) > before and node_id < neighbor_id:
            self.older_in_degree[neighbor_id][layer] += 1

    def set_links(self, node_id: int, layer: int, pairs: Sequence[Tuple[int, float]]) -> None:
        """Replace a node's neighbor list at a layer, keeping link counts current."""
        node = self.nodes[node_id]
        old_ids = set(node.get_neighbors(layer))
        node.set_neighbors(layer, pairs)
        new_ids = set(node.get_neighbors(layer))

        for removed in old_ids - new_ids:
            if node_id < removed:
                self.older_in_degree[removed][layer] -= 1
        for added in new_ids - old_ids:
            if node_id < added:
                self.older_in_degree[added][layer] += 1

    def get_vector(self, node_id: int) -> Vector:
        """Stored vector of a node (reconstructed from its code when compressed)."""
        payload = self.nodes[node_id].payload
        if self.quantizer is not None:
            return self.quantizer.decode(payload)
        return payload

    def node_distance(self, node1_id: int, node2_id: int) -> float:
        """Distance between two stored nodes."""
        return distance(self.metric, self.get_vector(node1_id), self.get_vector(node2_id))

    def query_distance(self, query: Vector) -> "QueryDistance":
        """Distance function from a raw query to stored nodes."""
        return QueryDistance(self, query)

    def get_max_level(self) -> int:
        """
        Get the maximum layer level in the graph (level of entry point).

        Returns:
            Maximum layer number, or -1 if graph is empty
        """
        entry = self._entry
        return -1 if entry is None else entry[1]

    def size(self) -> int:
        """Total number of nodes in the graph."""
        return len(self.nodes)

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"HNSWGraph(nodes={self.size()}, max_level={self.get_max_level()}, "
            f"M={self.M}, dim={self.dimension}, metric={self.metric.value}, "
            f"compressed={self.is_compressed})"
        )


class QueryDistance:
    """
    Distances from one raw query vector to stored nodes.

    For compressed graphs with an additive metric the PQ distance table is
    computed once here and every node distance is a sum of table lookups.
    """

    def __init__(self, graph: HNSWGraph, query: Vector) -> None:
        query = np.asarray(query, dtype=np.float32)
        if query.shape != (graph.dimension,):
            raise ValueError(
                f"Query dimension {query.shape} doesn't match graph dimension {graph.dimension}"
            )
        self.graph = graph
        self.query = query

        quantizer = graph.quantizer
        self._table: Optional[np.ndarray] = None
        if quantizer is not None and quantizer.supports_distance_table:
            self._table = quantizer.distance_table(query)
            self._subspaces = np.arange(quantizer.pq_subqs)[None, :]

    def __call__(self, node_id: int) -> float:
        return float(self.batch([node_id])[0])

    def batch(self, node_ids: Sequence[int]) -> np.ndarray:
        """Distances to several nodes, in the order given."""
        nodes = self.graph.nodes
        payloads = np.stack([nodes[nid].payload for nid in node_ids])
        quantizer = self.graph.quantizer

        if quantizer is None:
            return distance_batch(self.graph.metric, self.query, payloads)
        if self._table is not None:
            return self._table[self._subspaces, payloads.astype(np.intp)].sum(axis=1)

        decoded = np.stack([quantizer.decode(code) for code in payloads])
        return distance_batch(self.graph.metric, self.query, decoded)
