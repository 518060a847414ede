"""
Utility functions for HNSW graph construction.

- Layer assignment: Determines which layers a new node should appear in
- Neighbor selection: Chooses which edges to keep when building the graph

The layer assignment uses an exponential distribution to create a hierarchical
structure, where most nodes are only in layer 0, and progressively fewer nodes
appear in higher layers.
"""

from typing import Callable, List, Optional, Tuple
import math

import numpy as np

# (distance, node_id), ordered by distance then id
Candidate = Tuple[float, int]


def assign_layer(
    rng: np.random.Generator,
    M: Optional[int] = None,
    level_multiplier: Optional[float] = None,
) -> int:
    """
    Randomly assign a layer for a new node.

    Formula (Malkov & Yashunin 2016): layer = floor(-ln(U) * mL), U uniform
    in (0, 1], with mL = 1/ln(M) so that P(layer >= l) = (1/M)^l.

    Args:
        rng: Random generator owned by the caller (keeps builds reproducible)
        M: Maximum connections per node, used for mL when level_multiplier is None
        level_multiplier: Explicit mL (overrides M)

    Returns:
        Layer number (0 = bottom layer, higher = sparser upper layers)

    Example:
        >>> # For M=16: ~93.75% at layer 0, ~6.25% at layer 1
        >>> rng = np.random.default_rng(42)
        >>> layers = [assign_layer(rng, M=16) for _ in range(10000)]
    """
    if level_multiplier is None:
        if M is None:
            M = 16
        level_multiplier = 1.0 / math.log(M)

    # random() is in [0, 1); 1 - random() is in (0, 1] so log() is finite
    uniform = 1.0 - rng.random()

    return int(math.floor(-math.log(uniform) * level_multiplier))


def select_neighbors_heuristic(
    candidates: List[Candidate],
    M: int,
    pair_distance: Callable[[int, int], float],
    keep_pruned: bool = False,
) -> List[Candidate]:
    """
    Select up to M neighbors with the diversity heuristic (HNSW Algorithm 4).

    Candidates are visited closest first. A candidate is kept only if it is
    at least as close to the base node as to every neighbor kept so far.
    This favors neighbors in different directions over a tight local cluster
    and keeps long-range links that make the graph navigable.

    With keep_pruned, slots the heuristic leaves empty are filled with the
    discarded candidates in distance order (keepPrunedConnections in
    hnswlib). Without it, a cluster of nodes at distance 0 from each other,
    such as vectors sharing one PQ code, collapses to a single neighbor.

    Args:
        candidates: (distance to base node, node id) pairs
        M: Maximum number of neighbors to select
        pair_distance: Distance between two candidate nodes
        keep_pruned: Pad the selection up to M with discarded candidates

    Returns:
        Selected (distance, node id) pairs, closest first

    Example:
        >>> # b is closer to a than to the base node -> dropped
        >>> select_neighbors_heuristic([(1.0, a), (1.5, b)], 2, dist)
        [(1.0, a)]
        >>> select_neighbors_heuristic([(1.0, a), (1.5, b)], 2, dist, keep_pruned=True)
        [(1.0, a), (1.5, b)]
    """
    selected: List[Candidate] = []
    discarded: List[Candidate] = []

    for dist, candidate_id in sorted(candidates):
        if len(selected) >= M:
            break

        if all(pair_distance(candidate_id, kept_id) >= dist for _, kept_id in selected):
            selected.append((dist, candidate_id))
        else:
            discarded.append((dist, candidate_id))

    if keep_pruned and len(selected) < M:
        selected.extend(discarded[: M - len(selected)])
        selected.sort()

    return selected
