"""
K-means training for product-quantization codebooks.

Produces a fixed number of centroids from a training set with Lloyd's
algorithm. The training set is bounded on both sides: too few points per
centroid is reported as a failure, too many are subsampled with a seeded
permutation so training time does not grow with the input.

Degenerate cases are handled inline:
- n == k: every training point becomes its own centroid
- empty clusters: an existing cluster is split in two by a small symmetric
  perturbation, so no centroid is left without points

Three initializations are available (TrainType): random training points,
corners of a hypercube around the mean, and a hypercube oriented along the
principal components of the data.
"""

import logging
import math
from concurrent.futures import Executor, ThreadPoolExecutor
from enum import Enum
from typing import Callable, List, Optional, Tuple, Union

import numpy as np

from pqhnsw.errors import ConfigurationError, InvariantViolationError
from pqhnsw.hnsw.distance import Metric, distance_matrix
from pqhnsw.pq.transform import PCAMatrix

logger = logging.getLogger(__name__)

# Training-set bounds, in points per centroid
MIN_POINTS_PER_CENTROID = 39
MAX_POINTS_PER_CENTROID = 256
DEFAULT_SEED = 1234
MAX_ITERATIONS = 25
MIN_IMPROVEMENT = 0.0001

# Relative perturbation applied to both halves of a split cluster
SPLIT_EPS = 1 / 1024.0

# Rows per block when computing the (n, k) distance matrix
ASSIGN_CHUNK_SIZE = 16384


class TrainType(str, Enum):
    """Centroid initialization strategy."""

    RANDOM = "random"
    HYPERCUBE = "hypercube"
    HYPERCUBE_PCA = "hypercube_pca"

    @classmethod
    def parse(cls, value: Union["TrainType", str]) -> "TrainType":
        if isinstance(value, cls):
            return value
        text = str(value).strip().lower()
        for train_type in cls:
            if text == train_type.value or text == train_type.name.lower():
                return train_type
        raise ValueError(
            f"Unknown train type {value!r}; expected one of {[t.value for t in cls]}"
        )


def subsample_training_set(x: np.ndarray, n_out: int, seed: int = DEFAULT_SEED) -> np.ndarray:
    """
    Pick n_out rows of x using a seeded random permutation.

    The same seed always selects the same rows, so training is reproducible.
    """
    perm = np.random.default_rng(seed).permutation(x.shape[0])
    return x[perm[:n_out]]


def init_random(x: np.ndarray, k: int, seed: int = DEFAULT_SEED) -> np.ndarray:
    """First k rows of a seeded permutation of the training set (seed + 1)."""
    perm = np.random.default_rng(seed + 1).permutation(x.shape[0])
    return x[perm[:k]].astype(np.float32, copy=True)


def _corner_signs(n_centroids: int, nbits: int) -> np.ndarray:
    """Matrix of +1/-1 with entry (i, j) = +1 iff bit j of i is set."""
    bits = (np.arange(n_centroids)[:, None] >> np.arange(nbits)[None, :]) & 1
    return np.where(bits == 1, 1.0, -1.0)


def init_hypercube(x: np.ndarray, nbits: int) -> np.ndarray:
    """
    Place 2**nbits centroids on the corners of a hypercube around the mean.

    The hypercube spans the first nbits coordinates (or all of them when the
    vectors are shorter) and its half-width is the largest absolute
    per-dimension mean. Remaining coordinates are set to the mean.
    """
    n, d = x.shape
    mean = x.mean(axis=0, dtype=np.float64)
    maxm = float(np.abs(mean).max()) if d > 0 else 0.0

    n_centroids = 1 << nbits
    used = min(nbits, d)
    centroids = np.tile(mean, (n_centroids, 1))
    centroids[:, :used] += _corner_signs(n_centroids, nbits)[:, :used] * maxm
    return centroids.astype(np.float32)


def init_hypercube_pca(x: np.ndarray, nbits: int) -> np.ndarray:
    """
    Place 2**nbits centroids at mean +/- sqrt(eigenvalue) along the top
    nbits principal components of the training set.
    """
    n, d = x.shape
    n_centroids = 1 << nbits
    pca = PCAMatrix(d, nbits)
    pca.train(x)

    offsets = _corner_signs(n_centroids, nbits) * np.sqrt(pca.eigenvalues)[None, :]
    centroids = pca.mean[None, :] + offsets @ pca.components
    return centroids.astype(np.float32)


def assign_to_centroids(
    x: np.ndarray, centroids: np.ndarray, metric: Metric = Metric.L2
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Find the nearest centroid of every training vector.

    Ties go to the lowest centroid index.

    Returns:
        (assign, dis): centroid index and distance per training vector
    """
    n = x.shape[0]
    assign = np.empty(n, dtype=np.int64)
    dis = np.empty(n, dtype=np.float64)
    for start in range(0, n, ASSIGN_CHUNK_SIZE):
        stop = min(start + ASSIGN_CHUNK_SIZE, n)
        block = distance_matrix(metric, x[start:stop], centroids)
        nearest = np.argmin(block, axis=1)
        assign[start:stop] = nearest
        dis[start:stop] = block[np.arange(stop - start), nearest]
    return assign, dis


def _centroid_ranges(k: int, n_parts: int) -> List[Tuple[int, int]]:
    """Split [0, k) into n_parts contiguous, disjoint ranges."""
    n_parts = max(1, min(n_parts, k))
    return [((k * r) // n_parts, (k * (r + 1)) // n_parts) for r in range(n_parts)]


def _run_partitioned(
    task: Callable[[int, int], None],
    ranges: List[Tuple[int, int]],
    executor: Optional[Executor],
) -> None:
    """Run task over every range and wait for all of them."""
    if executor is None or len(ranges) == 1:
        for c0, c1 in ranges:
            task(c0, c1)
        return
    futures = [executor.submit(task, c0, c1) for c0, c1 in ranges]
    for future in futures:
        future.result()


def compute_centroids(
    x: np.ndarray,
    assign: np.ndarray,
    k: int,
    executor: Optional[Executor] = None,
    n_workers: int = 1,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Recompute centroids as the mean of their assigned training points.

    Each worker owns a disjoint range of centroid indices and only writes to
    those rows, so the accumulation needs no locking. The normalization pass
    starts after every accumulation has finished.

    Args:
        x: Training vectors, shape (n, d)
        assign: Nearest centroid per training vector, shape (n,)
        k: Number of centroids
        executor: Pool to run the partitions on (None runs them inline)
        n_workers: Number of partitions

    Returns:
        (centroids, hassign): new centroids (empty clusters left at zero)
        and the number of points assigned to each centroid
    """
    n, d = x.shape
    if n and (assign.min() < 0 or assign.max() >= k):
        raise InvariantViolationError(
            f"Centroid assignment out of range [0, {k}): "
            f"min={assign.min()}, max={assign.max()}"
        )

    centroids = np.zeros((k, d), dtype=np.float64)
    hassign = np.zeros(k, dtype=np.float64)
    ranges = _centroid_ranges(k, n_workers)

    def accumulate(c0: int, c1: int) -> None:
        mask = (assign >= c0) & (assign < c1)
        owned = assign[mask]
        np.add.at(centroids, owned, x[mask])
        hassign[c0:c1] += np.bincount(owned - c0, minlength=c1 - c0)

    def normalize(c0: int, c1: int) -> None:
        counts = hassign[c0:c1]
        filled = counts > 0
        block = centroids[c0:c1]
        block[filled] /= counts[filled, None]

    _run_partitioned(accumulate, ranges, executor)
    _run_partitioned(normalize, ranges, executor)

    return centroids.astype(np.float32), hassign


def split_clusters(
    centroids: np.ndarray, hassign: np.ndarray, n: int, seed: int = DEFAULT_SEED
) -> int:
    """
    Redefine every empty centroid by splitting a populated one.

    A donor cluster j is chosen by cycling over the clusters and accepting
    each with probability (hassign[j] - 1) / (n - k). The empty centroid gets
    a copy of the donor, then both are perturbed symmetrically (alternating
    coordinates scaled by 1 + eps and 1 - eps) and the donor's count is
    assumed to split evenly between them. Modifies centroids and hassign in place.

    Returns:
        Number of split operations (larger is worse)
    """
    k, d = centroids.shape
    rng = np.random.default_rng(seed)
    up = np.where(np.arange(d) % 2 == 0, 1.0 + SPLIT_EPS, 1.0 - SPLIT_EPS)
    down = 2.0 - up

    nsplit = 0
    for ci in range(k):
        if hassign[ci] != 0:
            continue
        cj = 0
        while True:
            p = (hassign[cj] - 1.0) / float(n - k)
            if rng.random() < p:
                break
            cj = (cj + 1) % k

        centroids[ci] = centroids[cj]
        centroids[ci] *= up
        centroids[cj] *= down

        hassign[ci] = hassign[cj] / 2
        hassign[cj] -= hassign[ci]
        nsplit += 1

    return nsplit


class KMeansTrainer:
    """
    Lloyd's k-means with bounded training set and empty-cluster splitting.

    Attributes set by train():
        objective_history: Total assignment distance of every iteration
        n_iterations: Number of assignment passes performed
        n_splits: Total number of empty-cluster splits
    """

    def __init__(
        self,
        k: int,
        metric: Metric = Metric.L2,
        train_type: TrainType = TrainType.RANDOM,
        seed: int = DEFAULT_SEED,
        n_workers: int = 1,
        max_iterations: int = MAX_ITERATIONS,
        min_improvement: float = MIN_IMPROVEMENT,
    ) -> None:
        if k < 1:
            raise ConfigurationError(f"k must be >= 1, got {k}")
        self.k = k
        self.metric = Metric.parse(metric)
        self.train_type = TrainType.parse(train_type)
        self.seed = seed
        self.n_workers = max(1, n_workers)
        self.max_iterations = max_iterations
        self.min_improvement = min_improvement

        self.nbits = k.bit_length() - 1
        if self.train_type is not TrainType.RANDOM and (1 << self.nbits) != k:
            raise ConfigurationError(
                f"{self.train_type.value} initialization needs k to be a power of 2, got {k}"
            )

        self.objective_history: List[float] = []
        self.n_iterations = 0
        self.n_splits = 0

    @property
    def min_training_points(self) -> int:
        return self.k * MIN_POINTS_PER_CENTROID

    @property
    def max_training_points(self) -> int:
        return self.k * MAX_POINTS_PER_CENTROID

    def train(self, x: np.ndarray) -> Tuple[Optional[np.ndarray], bool]:
        """
        Compute k centroids for the training set.

        Args:
            x: Training vectors, shape (n, d)

        Returns:
            (centroids, success). centroids has shape (k, d) on success and
            is None when there is not enough training data. Every returned
            centroid has at least one training point assigned to it, unless
            the training set has too few distinct points to tell them apart.
        """
        x = np.ascontiguousarray(x, dtype=np.float32)
        if x.ndim != 2:
            raise ValueError(f"Training data must be 2D, got shape {x.shape}")
        n, d = x.shape
        k = self.k

        self.objective_history = []
        self.n_iterations = 0
        self.n_splits = 0

        if n == k:
            return x.copy(), True

        if n < self.min_training_points:
            logger.warning(
                "Insufficient training data: %d points for %d centroids (need %d)",
                n, k, self.min_training_points,
            )
            return None, False

        centroids = self._initial_centroids(x)

        if n > self.max_training_points:
            x = subsample_training_set(x, self.max_training_points, self.seed)
            logger.info("Subsampled %d -> %d training points", n, x.shape[0])
            n = x.shape[0]

        if self.n_workers > 1:
            with ThreadPoolExecutor(max_workers=self.n_workers) as executor:
                centroids = self._lloyd(x, centroids, executor)
        else:
            centroids = self._lloyd(x, centroids, None)

        logger.info(
            "k-means finished: k=%d, d=%d, n=%d, iterations=%d, splits=%d, objective=%.6g",
            k, d, n, self.n_iterations, self.n_splits,
            self.objective_history[-1] if self.objective_history else float("nan"),
        )
        return centroids, True

    def _initial_centroids(self, x: np.ndarray) -> np.ndarray:
        if self.train_type is TrainType.HYPERCUBE:
            return init_hypercube(x, self.nbits)
        if self.train_type is TrainType.HYPERCUBE_PCA:
            return init_hypercube_pca(x, self.nbits)
        return init_random(x, self.k, self.seed)

    def _converged(self, prev_obj: float, obj: float) -> bool:
        if not math.isfinite(prev_obj):
            return False
        if prev_obj == 0.0:
            return True
        return (prev_obj - obj) / abs(prev_obj) < self.min_improvement

    def _lloyd(
        self, x: np.ndarray, centroids: np.ndarray, executor: Optional[Executor]
    ) -> np.ndarray:
        n = x.shape[0]
        prev_obj = math.inf

        for iteration in range(self.max_iterations):
            assign, dis = assign_to_centroids(x, centroids, self.metric)
            self.n_iterations += 1

            obj = float(np.sum(dis))
            self.objective_history.append(obj)
            logger.debug("Iteration %d objective=%f", iteration, obj)

            if self._converged(prev_obj, obj):
                # Only stop on a state without empty clusters
                if np.count_nonzero(np.bincount(assign, minlength=self.k)) == self.k:
                    break
            prev_obj = obj

            centroids, hassign = compute_centroids(
                x, assign, self.k, executor=executor, n_workers=self.n_workers
            )
            self.n_splits += split_clusters(centroids, hassign, n, self.seed)
        else:
            # Iteration cap reached; re-split clusters the last update left empty
            assign, _ = assign_to_centroids(x, centroids, self.metric)
            hassign = np.bincount(assign, minlength=self.k)
            if np.count_nonzero(hassign) < self.k:
                centroids, hassign = compute_centroids(
                    x, assign, self.k, executor=executor, n_workers=self.n_workers
                )
                self.n_splits += split_clusters(centroids, hassign, n, self.seed)

        return centroids


def train_centroids(
    x: np.ndarray,
    k: int,
    metric: Metric = Metric.L2,
    train_type: TrainType = TrainType.RANDOM,
    seed: int = DEFAULT_SEED,
    n_workers: int = 1,
) -> Tuple[Optional[np.ndarray], bool]:
    """
    Train k centroids on x.

    Returns:
        (centroids, success); see KMeansTrainer.train
    """
    trainer = KMeansTrainer(
        k, metric=metric, train_type=train_type, seed=seed, n_workers=n_workers
    )
    return trainer.train(x)
