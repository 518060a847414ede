"""
HNSW graph construction and insertion logic.

This module handles adding new nodes to the HNSW graph. The insertion algorithm:
1. Assigns a random layer to the new node (exponential distribution)
2. Descends greedily from the entry point through the layers above it
3. On each of its own layers, collects candidates with a beam search of
   width ef_construction and keeps a diverse subset as neighbors
4. Links neighbors bidirectionally, re-pruning lists that exceed their cap
5. Promotes the node to entry point when it is the highest so far

The builder mutates neighbor lists of existing nodes and must be the only
writer of its graph.
"""

import logging
from typing import List, Optional

import numpy as np
import numpy.typing as npt

from pqhnsw.hnsw.graph import HNSWGraph
from pqhnsw.hnsw.searcher import greedy_search_layer, search_layer
from pqhnsw.hnsw.utils import Candidate, assign_layer, select_neighbors_heuristic

logger = logging.getLogger(__name__)

Vector = npt.NDArray[np.float32]


class HNSWBuilder:
    """
    Handles insertion of nodes into the HNSW graph.

    This class encapsulates the logic for adding new vectors to the index,
    including neighbor search, connection creation, and pruning.
    """

    def __init__(
        self, graph: HNSWGraph, ef_construction: int = 64, seed: Optional[int] = None
    ) -> None:
        """
        Initialize builder with a graph to operate on.

        Args:
            graph: The HNSWGraph to insert nodes into
            ef_construction: Beam width while collecting neighbor candidates
            seed: Seed of the layer assignment generator
        """
        self.graph = graph
        self.ef_construction = ef_construction
        self._rng = np.random.default_rng(seed)

    def random_level(self) -> int:
        """Draw the maximum layer of a new node."""
        return assign_layer(self._rng, level_multiplier=self.graph.level_multiplier)

    def insert(self, vector: Vector, level: Optional[int] = None) -> int:
        """
        Insert a new vector into the graph.

        Args:
            vector: Raw vector data for the new node
            level: Maximum layer for this node (drawn at random when None)

        Returns:
            ID of the new node
        """
        if level is None:
            level = self.random_level()

        node_id = self.graph.add_node(vector, level)
        logger.debug("Inserting node %d at level %d", node_id, level)

        entry = self.graph.get_entry()
        if entry is None:
            # First node: nothing to connect to
            self.graph.set_entry_point(node_id, level)
            return node_id
        entry_id, max_level = entry

        query = self.graph.query_distance(vector)

        # Greedy descent through the layers above the new node
        current = (query(entry_id), entry_id)
        for layer in range(max_level, level, -1):
            current = greedy_search_layer(self.graph, query, current, layer)

        entry_points: List[Candidate] = [current]
        for layer in range(min(level, max_level), -1, -1):
            candidates = search_layer(
                self.graph, query, entry_points, self.ef_construction, layer
            )
            neighbors = select_neighbors_heuristic(
                candidates, self.graph.M, self.graph.node_distance, keep_pruned=True
            )
            self._link(node_id, neighbors, layer, candidates)
            entry_points = candidates

        if level > max_level:
            self.graph.set_entry_point(node_id, level)

        return node_id

    def _link(
        self,
        node_id: int,
        neighbors: List[Candidate],
        layer: int,
        candidates: List[Candidate],
    ) -> None:
        """
        Connect a node to its selected neighbors at one layer, in both directions.

        The new node must end up with at least one incoming link. When every
        selected neighbor rejects it, the remaining search candidates are
        tried closest first.

        Args:
            node_id: The newly inserted node
            neighbors: Selected (distance, neighbor_id) pairs
            layer: Layer to link on
            candidates: All (distance, node_id) pairs found by the layer search
        """
        graph = self.graph
        graph.set_links(node_id, layer, [(neighbor_id, dist) for dist, neighbor_id in neighbors])

        for dist, neighbor_id in neighbors:
            self._add_reverse_link(neighbor_id, node_id, dist, layer)

        if graph.older_in_degree[node_id][layer] > 0:
            return

        selected = {neighbor_id for _, neighbor_id in neighbors}
        for dist, candidate_id in candidates:
            if candidate_id in selected:
                continue
            self._add_reverse_link(candidate_id, node_id, dist, layer)
            if graph.older_in_degree[node_id][layer] > 0:
                return

        logger.warning("Node %d has no incoming link at layer %d", node_id, layer)

    def _add_reverse_link(self, node_id: int, new_id: int, dist: float, layer: int) -> None:
        """
        Add new_id to node_id's neighbor list, re-pruning when it overflows.

        Pruning reruns the diversity heuristic over the existing neighbors
        plus the new one, using the cached distances as distances to node_id,
        and pads the result back to the cap.

        Two kinds of links survive pruning, so every layer stays connected
        by induction over insertion order:
        - a link to a newer node that has no other link from an older node
        - the closest link to an older node
        When links of these kinds alone overflow the list, the new link is
        not added.
        """
        graph = self.graph
        pairs = graph.nodes[node_id].get_neighbor_pairs(layer)
        if any(neighbor_id == new_id for neighbor_id, _ in pairs):
            return

        cap = graph.max_neighbors(layer)
        if len(pairs) < cap:
            graph.link(node_id, new_id, layer, dist)
            return

        current_ids = {neighbor_id for neighbor_id, _ in pairs}
        updated = [(d, neighbor_id) for neighbor_id, d in pairs] + [(dist, new_id)]

        required = set()
        for d, neighbor_id in updated:
            if neighbor_id > node_id:
                # Links from older nodes that don't come from node_id
                others = graph.older_in_degree[neighbor_id][layer] - (neighbor_id in current_ids)
                if others == 0:
                    required.add((d, neighbor_id))
        older = [c for c in updated if c[1] < node_id]
        if older:
            required.add(min(older))

        if len(required) > cap:
            logger.debug("Node %d rejects link to %d at layer %d", node_id, new_id, layer)
            return

        kept = select_neighbors_heuristic(updated, cap, graph.node_distance, keep_pruned=True)
        extra = [c for c in kept if c not in required][: cap - len(required)]
        final = sorted(required.union(extra))

        graph.set_links(node_id, layer, [(neighbor_id, d) for d, neighbor_id in final])
