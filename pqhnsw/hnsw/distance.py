"""
Distance and similarity metrics for vector comparisons.

Every index instance picks one Metric. All distances returned by this module
follow the same convention: lower means more similar. Inner product is a
similarity, so it is returned negated.

The scalar functions work on vectors of any length, including the short
subvectors used by the product quantizer. The batch forms compute the same
values for many vectors at once.
"""

from enum import Enum
from typing import Union

import numpy as np
import numpy.typing as npt

Vector = npt.NDArray[np.float32]


class Metric(str, Enum):
    """Distance metric of an index."""

    L2 = "l2"
    INNER_PRODUCT = "ip"
    COSINE = "cosine"

    @classmethod
    def parse(cls, value: Union["Metric", str]) -> "Metric":
        """
        Resolve a metric from a member, its value ("l2") or its name ("COSINE").

        Raises:
            ValueError: If the value does not name a metric
        """
        if isinstance(value, cls):
            return value
        text = str(value).strip()
        for metric in cls:
            if text.lower() == metric.value or text.upper() == metric.name:
                return metric
        raise ValueError(
            f"Unknown metric {value!r}; expected one of {[m.value for m in cls]}"
        )


def is_additive(metric: Metric) -> bool:
    """
    Whether the metric decomposes as a sum over disjoint coordinate subspaces.

    Squared L2 and (negated) inner product do; cosine does not because of the
    normalization by the full-vector norms.
    """
    return metric in (Metric.L2, Metric.INNER_PRODUCT)


def l2_squared_distance(v1: Vector, v2: Vector) -> float:
    """
    Compute squared Euclidean distance between two vectors.

    Example:
        >>> l2_squared_distance(np.array([0.0, 0.0]), np.array([3.0, 4.0]))
        25.0
    """
    diff = np.asarray(v1, dtype=np.float32) - np.asarray(v2, dtype=np.float32)
    return float(np.dot(diff, diff))


def inner_product(v1: Vector, v2: Vector) -> float:
    """Dot product of two vectors (a similarity, higher means closer)."""
    return float(np.dot(v1, v2))


def cosine_similarity(v1: Vector, v2: Vector) -> float:
    """
    Compute cosine similarity between two vectors.

    Cosine similarity measures the cosine of the angle between two vectors.
    It ranges from -1 (opposite directions) to 1 (same direction).

    Args:
        v1: First vector (1D numpy array)
        v2: Second vector (1D numpy array)

    Returns:
        Similarity score between -1 and 1 (higher means more similar)

    Example:
        >>> v1 = np.array([1.0, 0.0, 0.0])
        >>> v2 = np.array([1.0, 0.0, 0.0])
        >>> cosine_similarity(v1, v2)
        1.0
    """
    dot_product = np.dot(v1, v2)

    norm_v1 = np.linalg.norm(v1)
    norm_v2 = np.linalg.norm(v2)

    # Handle edge case where one or both vectors are zero
    if norm_v1 == 0.0 or norm_v2 == 0.0:
        return 0.0

    return float(dot_product / (norm_v1 * norm_v2))


def cosine_distance(v1: Vector, v2: Vector) -> float:
    """
    Compute cosine distance between two vectors.

    Cosine distance is defined as 1 - cosine_similarity. It ranges from
    0 (identical direction) to 2 (opposite directions).
    """
    return 1.0 - cosine_similarity(v1, v2)


def normalize_vector(v: Vector) -> Vector:
    """
    Normalize a vector to unit length (L2 norm = 1).

    Zero vectors are returned unchanged.

    Example:
        >>> normalized = normalize_vector(np.array([3.0, 4.0]))
        >>> np.linalg.norm(normalized)
        1.0
    """
    norm = np.linalg.norm(v)

    if norm == 0.0:
        return v

    return v / norm


def distance(metric: Metric, a: Vector, b: Vector) -> float:
    """
    Distance between two vectors under the given metric (lower = more similar).

    Args:
        metric: Metric to use
        a: First vector
        b: Second vector, same length as a

    Returns:
        Squared L2 distance, negated inner product, or cosine distance
    """
    if metric is Metric.L2:
        return l2_squared_distance(a, b)
    if metric is Metric.INNER_PRODUCT:
        return -inner_product(a, b)
    if metric is Metric.COSINE:
        return cosine_distance(a, b)
    raise ValueError(f"Unsupported metric: {metric!r}")


def distance_batch(metric: Metric, query: Vector, vectors: np.ndarray) -> np.ndarray:
    """
    Distances from one query to each row of a 2D array.

    Args:
        metric: Metric to use
        query: Query vector, shape (d,)
        vectors: Candidate vectors, shape (n, d)

    Returns:
        Array of shape (n,) with the same values distance() would return
    """
    query = np.asarray(query, dtype=np.float32)
    vectors = np.asarray(vectors, dtype=np.float32)
    if vectors.shape[0] == 0:
        return np.empty(0, dtype=np.float32)

    if metric is Metric.L2:
        diff = vectors - query
        return np.einsum("ij,ij->i", diff, diff)
    if metric is Metric.INNER_PRODUCT:
        return -(vectors @ query)
    if metric is Metric.COSINE:
        # A zero query stays zero, so every similarity is 0
        dots = vectors @ normalize_vector(query)
        vec_norms = np.linalg.norm(vectors, axis=1)
        sims = np.divide(dots, vec_norms, out=np.zeros_like(dots), where=vec_norms > 0)
        return 1.0 - sims
    raise ValueError(f"Unsupported metric: {metric!r}")


def distance_matrix(metric: Metric, x: np.ndarray, y: np.ndarray) -> np.ndarray:
    """
    Pairwise distances between rows of x (n, d) and rows of y (k, d).

    Returns:
        Array of shape (n, k)
    """
    x = np.asarray(x, dtype=np.float32)
    y = np.asarray(y, dtype=np.float32)

    if metric is Metric.L2:
        x_sq = np.einsum("ij,ij->i", x, x)[:, None]
        y_sq = np.einsum("ij,ij->i", y, y)[None, :]
        dists = x_sq + y_sq - 2.0 * (x @ y.T)
        # Expansion can go slightly negative through rounding
        return np.maximum(dists, 0.0)
    if metric is Metric.INNER_PRODUCT:
        return -(x @ y.T)
    if metric is Metric.COSINE:
        x_norms = np.linalg.norm(x, axis=1)[:, None]
        y_norms = np.linalg.norm(y, axis=1)[None, :]
        denom = x_norms * y_norms
        dots = x @ y.T
        sims = np.divide(dots, denom, out=np.zeros_like(dots), where=denom > 0)
        return 1.0 - sims
    raise ValueError(f"Unsupported metric: {metric!r}")
