"""
HNSW search algorithm.

This module handles querying the HNSW graph to find approximate nearest neighbors.
The search algorithm:
1. Starts at the entry point (top layer)
2. Greedily navigates down through layers to get closer to the query
3. At layer 0, expands the search using the ef_search beam width
4. Returns the k nearest neighbors

The ef_search parameter controls the accuracy-speed tradeoff:
- Higher ef_search = better recall, slower search
- Lower ef_search = faster search, lower recall

greedy_search_layer and search_layer are shared with the builder.
"""

from typing import List, Optional, Tuple
import heapq

import numpy as np
import numpy.typing as npt

from pqhnsw.hnsw.graph import HNSWGraph, QueryDistance
from pqhnsw.hnsw.utils import Candidate

Vector = npt.NDArray[np.float32]


def greedy_search_layer(
    graph: HNSWGraph, query: QueryDistance, start: Candidate, layer: int
) -> Candidate:
    """
    Walk to the closest neighbor until no neighbor is closer than the current node.

    Args:
        graph: Graph to walk
        query: Distance function of the query
        start: (distance, node_id) to start from
        layer: Layer to walk on

    Returns:
        (distance, node_id) of the local minimum
    """
    current = start
    while True:
        neighbors = graph.nodes[current[1]].get_neighbors(layer)
        if not neighbors:
            return current

        dists = query.batch(neighbors)
        best = min(zip(dists.tolist(), neighbors))
        if best >= current:
            return current
        current = best


def search_layer(
    graph: HNSWGraph,
    query: QueryDistance,
    entry_points: List[Candidate],
    ef: int,
    layer: int,
) -> List[Candidate]:
    """
    Best-first beam search on a single layer.

    Keeps a frontier of candidates to expand (closest first) and the ef best
    nodes seen so far. Stops when the closest unexpanded candidate is farther
    than the worst kept result, or when the frontier is empty.

    Args:
        graph: Graph to search
        query: Distance function of the query
        entry_points: (distance, node_id) pairs to start from
        ef: Beam width (number of results kept)
        layer: Layer to search on

    Returns:
        Up to ef (distance, node_id) pairs sorted by distance, then id
    """
    visited = {node_id for _, node_id in entry_points}

    # Min-heap of nodes to expand
    candidates: List[Candidate] = list(entry_points)
    heapq.heapify(candidates)

    # Max-heap of kept results, stored negated; worst result on top
    results: List[Tuple[float, int]] = [(-dist, -node_id) for dist, node_id in entry_points]
    heapq.heapify(results)
    while len(results) > ef:
        heapq.heappop(results)

    while candidates:
        current_dist, current_id = heapq.heappop(candidates)

        worst_dist = -results[0][0]
        if len(results) >= ef and current_dist > worst_dist:
            break

        fresh = [
            neighbor_id
            for neighbor_id in graph.nodes[current_id].get_neighbors(layer)
            if neighbor_id not in visited
        ]
        if not fresh:
            continue
        visited.update(fresh)

        for dist, neighbor_id in zip(query.batch(fresh).tolist(), fresh):
            if len(results) < ef or (dist, neighbor_id) < (-results[0][0], -results[0][1]):
                heapq.heappush(candidates, (dist, neighbor_id))
                heapq.heappush(results, (-dist, -neighbor_id))
                if len(results) > ef:
                    heapq.heappop(results)

    return sorted((-neg_dist, -neg_id) for neg_dist, neg_id in results)


class HNSWSearcher:
    """
    Handles search queries on the HNSW graph.

    Searches only read the graph, so any number of searchers may run
    concurrently as long as inserts go through a single writer.
    """

    def __init__(self, graph: HNSWGraph, ef_search: int = 50) -> None:
        """
        Initialize searcher with a graph.

        Args:
            graph: The HNSWGraph to search in
            ef_search: Size of candidate list during search (higher = better recall)
        """
        self.graph = graph
        self.ef_search = ef_search

    def search(
        self, query: Vector, k: int, ef_search: Optional[int] = None
    ) -> List[Tuple[int, float]]:
        """
        Search for k nearest neighbors to the query vector.

        Args:
            query: Query vector to search for
            k: Number of nearest neighbors to return
            ef_search: Override default ef_search for this query

        Returns:
            List of (node_id, distance) tuples, sorted by distance (closest
            first) with ties broken by node id. Fewer than k entries when the
            graph holds fewer nodes.
        """
        if k < 1:
            raise ValueError(f"k must be >= 1, got {k}")

        query_distance = self.graph.query_distance(query)

        entry = self.graph.get_entry()
        if entry is None:
            return []
        entry_id, max_level = entry

        ef = ef_search if ef_search is not None else self.ef_search
        ef = max(ef, k)

        # Layer-skipping descent down to layer 1
        current = (query_distance(entry_id), entry_id)
        for layer in range(max_level, 0, -1):
            current = greedy_search_layer(self.graph, query_distance, current, layer)

        candidates = search_layer(self.graph, query_distance, [current], ef, layer=0)

        return [(node_id, float(dist)) for dist, node_id in candidates[:k]]
