"""
Product quantization.

A vector of dims coordinates is cut into pq_subqs contiguous subvectors of
pq_subdim coordinates each. Every subspace has its own codebook of
2**pq_bits centroids, so a vector is stored as pq_subqs small integers.

Query-time distances avoid reconstructing vectors: for one query, the
distances between each query subvector and every centroid of its subspace
are computed once (the distance table), and the distance to a code is the
sum of pq_subqs table lookups. The sum is exact only for metrics that
decompose over subspaces (squared L2 and inner product); cosine falls back
to decoding the code.
"""

import logging
from typing import List, Optional

import numpy as np
import numpy.typing as npt

from pqhnsw.errors import ConfigurationError, NotTrainedError
from pqhnsw.hnsw.distance import (
    Metric,
    distance,
    distance_batch,
    distance_matrix,
    is_additive,
)
from pqhnsw.pq.clustering import DEFAULT_SEED, KMeansTrainer, TrainType

logger = logging.getLogger(__name__)

Vector = npt.NDArray[np.float32]
Code = npt.NDArray[np.integer]


class ProductQuantizer:
    """
    Splits vectors into subspaces, trains a codebook per subspace and
    encodes vectors as one centroid index per subspace.

    Codebooks are trained and codes assigned by squared L2 (reconstruction
    error); the index metric is only used for approximate distances.
    """

    def __init__(
        self,
        dims: int,
        pq_bits: int,
        pq_subqs: int,
        metric: Metric = Metric.L2,
        train_type: TrainType = TrainType.RANDOM,
        seed: int = DEFAULT_SEED,
        n_workers: int = 1,
    ) -> None:
        """
        Args:
            dims: Full vector dimensionality
            pq_bits: Bits per code, 2**pq_bits centroids per subspace
            pq_subqs: Number of subspaces
            metric: Index metric used by distance_table/approximate_distance
            train_type: Centroid initialization for the k-means runs
            seed: Seed for k-means subsampling, initialization and splitting
            n_workers: Threads for the k-means centroid update
        """
        if pq_subqs < 1 or pq_bits < 1:
            raise ConfigurationError("pq_bits and pq_subqs must be >= 1")
        if dims % pq_subqs != 0:
            raise ConfigurationError(
                f"dims ({dims}) is not divisible by pq_subqs ({pq_subqs})"
            )

        self.dims = dims
        self.pq_bits = pq_bits
        self.pq_subqs = pq_subqs
        self.pq_subdim = dims // pq_subqs
        self.n_centroids = 1 << pq_bits
        self.metric = Metric.parse(metric)
        self.train_type = TrainType.parse(train_type)
        self.seed = seed
        self.n_workers = n_workers

        self.code_dtype = np.uint8 if pq_bits <= 8 else np.uint16

        # One (n_centroids, pq_subdim) array per subspace once trained
        self.codebooks: Optional[List[np.ndarray]] = None

    @property
    def is_trained(self) -> bool:
        return self.codebooks is not None

    @property
    def code_size(self) -> int:
        """Bytes per encoded vector."""
        return self.pq_subqs * np.dtype(self.code_dtype).itemsize

    def train(self, vectors: np.ndarray) -> bool:
        """
        Train one codebook per subspace.

        Args:
            vectors: Training vectors, shape (n, dims)

        Returns:
            True on success. False if any subspace lacks training data, in
            which case previously trained codebooks are kept unchanged.
        """
        vectors = self._as_matrix(vectors)

        codebooks = []
        for sub in range(self.pq_subqs):
            trainer = KMeansTrainer(
                self.n_centroids,
                metric=Metric.L2,
                train_type=self.train_type,
                seed=self.seed,
                n_workers=self.n_workers,
            )
            centroids, ok = trainer.train(self._subspace(vectors, sub))
            if not ok:
                logger.warning(
                    "Codebook training failed for subspace %d/%d (%d rows, %d centroids)",
                    sub + 1, self.pq_subqs, vectors.shape[0], self.n_centroids,
                )
                return False
            codebooks.append(centroids)

        self.codebooks = codebooks
        logger.info(
            "Trained %d codebooks of %d centroids (subdim=%d) on %d vectors",
            self.pq_subqs, self.n_centroids, self.pq_subdim, vectors.shape[0],
        )
        return True

    def encode(self, vector: Vector) -> Code:
        """Nearest centroid index in each subspace, shape (pq_subqs,)."""
        vector = np.asarray(vector, dtype=np.float32)
        if vector.shape != (self.dims,):
            raise ValueError(
                f"Vector dimension {vector.shape} doesn't match quantizer dimension {self.dims}"
            )
        return self.encode_batch(vector[None, :])[0]

    def encode_batch(self, vectors: np.ndarray) -> np.ndarray:
        """Encode many vectors at once, shape (n, pq_subqs)."""
        self._check_trained()
        vectors = self._as_matrix(vectors)
        codes = np.empty((vectors.shape[0], self.pq_subqs), dtype=self.code_dtype)
        for sub, codebook in enumerate(self.codebooks):
            dists = distance_matrix(Metric.L2, self._subspace(vectors, sub), codebook)
            codes[:, sub] = np.argmin(dists, axis=1)
        return codes

    def decode(self, code: Code) -> Vector:
        """Concatenate the centroids selected by a code."""
        self._check_trained()
        code = np.asarray(code)
        if code.shape != (self.pq_subqs,):
            raise ValueError(f"PQ code must have {self.pq_subqs} entries, got shape {code.shape}")
        return np.concatenate(
            [self.codebooks[sub][int(c)] for sub, c in enumerate(code)]
        ).astype(np.float32)

    def distance_table(self, query: Vector) -> np.ndarray:
        """
        Distances between each query subvector and every centroid of its subspace.

        Returns:
            Array of shape (pq_subqs, n_centroids)
        """
        self._check_trained()
        query = np.asarray(query, dtype=np.float32)
        table = np.empty((self.pq_subqs, self.n_centroids), dtype=np.float32)
        for sub, codebook in enumerate(self.codebooks):
            start = sub * self.pq_subdim
            table[sub] = distance_batch(
                self.metric, query[start:start + self.pq_subdim], codebook
            )
        return table

    @property
    def supports_distance_table(self) -> bool:
        return is_additive(self.metric)

    def approximate_distance(
        self, query: Vector, code: Code, table: Optional[np.ndarray] = None
    ) -> float:
        """
        Distance between a raw query and an encoded vector.

        Args:
            query: Raw query vector
            code: PQ code of the stored vector
            table: Precomputed distance_table(query), reused across codes

        Returns:
            Sum of table lookups for additive metrics, otherwise the distance
            to the decoded vector
        """
        if not self.supports_distance_table:
            return distance(self.metric, query, self.decode(code))
        if table is None:
            table = self.distance_table(query)
        return float(table[np.arange(self.pq_subqs), np.asarray(code, dtype=np.intp)].sum())

    def reconstruction_error(self, vectors: np.ndarray) -> float:
        """Mean squared error between vectors and decode(encode(vectors))."""
        vectors = self._as_matrix(vectors)
        codes = self.encode_batch(vectors)
        rebuilt = np.stack([self.decode(code) for code in codes])
        return float(np.mean(np.sum((vectors - rebuilt) ** 2, axis=1)))

    def _subspace(self, vectors: np.ndarray, sub: int) -> np.ndarray:
        start = sub * self.pq_subdim
        return np.ascontiguousarray(vectors[:, start:start + self.pq_subdim])

    def _as_matrix(self, vectors: np.ndarray) -> np.ndarray:
        vectors = np.asarray(vectors, dtype=np.float32)
        if vectors.ndim != 2 or vectors.shape[1] != self.dims:
            raise ValueError(
                f"Expected vectors of shape (n, {self.dims}), got {vectors.shape}"
            )
        return vectors

    def _check_trained(self) -> None:
        if not self.is_trained:
            raise NotTrainedError("ProductQuantizer must be trained before encoding")

    def __repr__(self) -> str:
        return (
            f"ProductQuantizer(dims={self.dims}, subqs={self.pq_subqs}, "
            f"bits={self.pq_bits}, metric={self.metric.value}, trained={self.is_trained})"
        )
