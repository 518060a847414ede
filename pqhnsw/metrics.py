"""
Metrics for evaluating approximate search quality.

This module provides functions to:
- Compute exact ground truth via brute force search
- Compute recall@k (fraction of ground truth neighbors retrieved)
- Compare the result sets of two searches
"""

from typing import List, Sequence, Tuple

import numpy as np

from pqhnsw.hnsw.distance import Metric, distance_batch


def brute_force_search(
    vectors: np.ndarray, query: np.ndarray, k: int, metric: Metric = Metric.L2
) -> List[Tuple[int, float]]:
    """
    Exact k nearest neighbors by scanning every vector.

    Row positions are used as ids, matching the ids an index assigns when
    the same vectors are added in order.

    Returns:
        (id, distance) pairs sorted by distance, ties by id
    """
    dists = distance_batch(metric, query, np.asarray(vectors, dtype=np.float32))
    order = np.lexsort((np.arange(len(dists)), dists))[:k]
    return [(int(i), float(dists[i])) for i in order]


def compute_recall_at_k(
    retrieved_ids: Sequence[int],
    ground_truth_ids: Sequence[int],
    k: int = 10
) -> float:
    """
    Compute recall@k: fraction of ground truth neighbors retrieved.

    Args:
        retrieved_ids: IDs returned by search (ordered by relevance)
        ground_truth_ids: True k-nearest neighbor IDs
        k: Number of neighbors to consider

    Returns:
        Recall@k value between 0.0 and 1.0

    Example:
        >>> compute_recall_at_k([1, 2, 3, 99, 98], [1, 2, 3, 4, 5], k=5)
        0.6
    """
    retrieved_set = set(retrieved_ids[:k])
    ground_truth_set = set(ground_truth_ids[:k])

    correct_retrievals = len(retrieved_set & ground_truth_set)

    return correct_retrievals / k if k > 0 else 0.0


def compute_result_overlap(
    results_a: Sequence[Tuple[int, float]], results_b: Sequence[Tuple[int, float]]
) -> float:
    """
    Fraction of ids shared by two result lists (relative to the longer one).

    Used to compare an uncompressed search with a compressed one.
    """
    ids_a = {node_id for node_id, _ in results_a}
    ids_b = {node_id for node_id, _ in results_b}
    size = max(len(ids_a), len(ids_b))
    if size == 0:
        return 1.0
    return len(ids_a & ids_b) / size
