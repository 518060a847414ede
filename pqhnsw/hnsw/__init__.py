"""
HNSW (Hierarchical Navigable Small World) implementation module.

This module contains the core HNSW algorithm components for building and searching
graph-based approximate nearest neighbor indexes.

Components:
- distance: Distance metrics (squared L2, inner product, cosine)
- utils: Layer assignment and heuristic neighbor selection
- graph: Node arena, entry point and raw/PQ distance plumbing
- builder: Insertion algorithm
- searcher: Search algorithm
"""

from pqhnsw.hnsw.distance import Metric, distance, distance_batch, distance_matrix
from pqhnsw.hnsw.graph import HNSWNode, HNSWGraph, QueryDistance
from pqhnsw.hnsw.builder import HNSWBuilder
from pqhnsw.hnsw.searcher import HNSWSearcher

__all__ = [
    "Metric",
    "distance",
    "distance_batch",
    "distance_matrix",
    "HNSWNode",
    "HNSWGraph",
    "QueryDistance",
    "HNSWBuilder",
    "HNSWSearcher",
]
