"""
Approximate nearest neighbor index combining an HNSW graph with optional
product quantization.
"""

from typing import Any, Dict, List, Optional, Tuple, Union
import logging
import pickle
import threading
import time

import numpy as np
import numpy.typing as npt

from pqhnsw.config import IndexConfig
from pqhnsw.errors import InsufficientTrainingDataError, NotTrainedError
from pqhnsw.graph_validator import GraphValidator
from pqhnsw.hnsw.builder import HNSWBuilder
from pqhnsw.hnsw.graph import HNSWGraph
from pqhnsw.hnsw.searcher import HNSWSearcher
from pqhnsw.pq.clustering import MIN_POINTS_PER_CENTROID
from pqhnsw.pq.quantizer import ProductQuantizer

logger = logging.getLogger(__name__)

Vector = npt.NDArray[np.float32]


class VectorIndex:
    """
    In-memory vector index with HNSW search and optional PQ compression.

    With pq_bits set in the config, vectors are stored as PQ codes and the
    graph is traversed with table-based approximate distances. The codebooks
    must be trained before the first vector is added; build() does both.

    Inserts are serialized by an internal lock. Searches take no lock: the
    graph replaces neighbor lists as whole immutable tuples, so a search
    running next to an insert never sees a half-updated list.

    Example:
        >>> config = IndexConfig(dims=4, m=8, ef_construction=16, ef_search=10,
        ...                      pq_bits=3, pq_subqs=2)
        >>> index = VectorIndex(config)
        >>> index.build(vectors)
        >>> results = index.search(np.full(4, 0.5, dtype=np.float32), k=10)
    """

    def __init__(self, config: Optional[IndexConfig] = None, **overrides: Any) -> None:
        """
        Initialize the index.

        Args:
            config: Index configuration
            **overrides: Config fields applied on top of config (or used to
                build one when config is None, e.g. VectorIndex(dims=128))

        Example:
            index = VectorIndex(dims=128, m=16, metric="cosine")
        """
        if config is None:
            config = IndexConfig(**overrides)
        elif overrides:
            config = IndexConfig.from_dict({**config.to_dict(), **overrides})
        self.config = config
        self.dimension = config.dims

        self.quantizer: Optional[ProductQuantizer] = None
        if config.pq_enabled:
            self.quantizer = ProductQuantizer(
                dims=config.dims,
                pq_bits=config.pq_bits,
                pq_subqs=config.pq_subqs,
                metric=config.metric,
                train_type=config.train_type,
                seed=config.seed,
                n_workers=config.n_workers,
            )

        # False after falling back to raw storage
        self._use_pq = config.pq_enabled

        self._graph: Optional[HNSWGraph] = None
        self._builder: Optional[HNSWBuilder] = None
        self._searcher: Optional[HNSWSearcher] = None

        self._write_lock = threading.RLock()
        self._last_latency_ms: float = 0.0

    @property
    def is_compressed(self) -> bool:
        """Whether stored vectors are PQ codes."""
        return self._use_pq

    @property
    def graph(self) -> Optional[HNSWGraph]:
        return self._graph

    def train(self, training_vectors: np.ndarray) -> bool:
        """
        Train the PQ codebooks.

        Args:
            training_vectors: Training sample, shape (n, dims)

        Returns:
            True on success (or when PQ is not configured), False when the
            training set is too small for the requested codebooks

        Raises:
            RuntimeError: If vectors were already added with the current codebooks
        """
        if self.quantizer is None:
            logger.info("Index has no product quantizer; nothing to train")
            return True

        with self._write_lock:
            if self._graph is not None and self._graph.size() > 0 and self._use_pq:
                raise RuntimeError("Cannot retrain codebooks after vectors were added")

            training_vectors = self._as_matrix(training_vectors)
            return self.quantizer.train(training_vectors)

    def build(
        self, vectors: np.ndarray, training_vectors: Optional[np.ndarray] = None
    ) -> List[int]:
        """
        Train (when needed) and insert a full set of vectors.

        Args:
            vectors: Vectors to index, shape (n, dims)
            training_vectors: PQ training sample (default: vectors)

        Returns:
            Node ids assigned to the vectors, in order

        Raises:
            InsufficientTrainingDataError: If training fails and the config
                does not allow falling back to raw storage
        """
        vectors = self._as_matrix(vectors)

        with self._write_lock:
            if self._use_pq and not self.quantizer.is_trained:
                sample = vectors if training_vectors is None else training_vectors
                if not self.train(sample):
                    n_rows = len(sample)
                    required = self.config.n_centroids * MIN_POINTS_PER_CENTROID
                    if not self.config.fallback_to_raw:
                        raise InsufficientTrainingDataError(n_rows, required)
                    logger.warning(
                        "PQ training needs %d rows, got %d; storing raw vectors instead",
                        required, n_rows,
                    )
                    self._use_pq = False

            start_time = time.perf_counter()
            ids = self.add(vectors)
            elapsed = time.perf_counter() - start_time

        logger.info(
            "Built index with %d vectors in %.2fs (compressed=%s, max_level=%d)",
            len(ids), elapsed, self._use_pq, self._graph.get_max_level(),
        )
        return ids

    def add(self, vectors: Union[Vector, List[Vector]]) -> List[int]:
        """
        Insert vectors into the graph.

        Args:
            vectors: Single vector or batch of vectors of length dims

        Returns:
            Node ids assigned to the added vectors

        Raises:
            ValueError: If a vector's dimension doesn't match the index
            NotTrainedError: If the index is compressed and not yet trained
        """
        if isinstance(vectors, np.ndarray) and vectors.ndim == 1:
            vectors = [vectors]

        processed = []
        for vec in vectors:
            vec = np.asarray(vec, dtype=np.float32)
            if vec.shape != (self.dimension,):
                raise ValueError(
                    f"Vector dimension {vec.shape[-1] if vec.ndim else 0} doesn't match "
                    f"index dimension {self.dimension}"
                )
            processed.append(vec)

        with self._write_lock:
            self._ensure_graph()
            return [self._builder.insert(vec) for vec in processed]

    def search(
        self, query: Vector, k: int = 10, ef_search: Optional[int] = None
    ) -> List[Tuple[int, float]]:
        """
        Search for the k nearest stored vectors.

        Args:
            query: Query vector of length dims
            k: Number of results to return
            ef_search: Override the configured beam width for this query

        Returns:
            (node_id, distance) pairs, closest first; fewer than k when the
            index holds fewer vectors
        """
        query = np.asarray(query, dtype=np.float32)
        if query.shape != (self.dimension,):
            raise ValueError(
                f"Query dimension {query.shape} doesn't match index dimension {self.dimension}"
            )

        if self._searcher is None:
            return []

        start_time = time.perf_counter()
        results = self._searcher.search(query, k=k, ef_search=ef_search)
        self._last_latency_ms = (time.perf_counter() - start_time) * 1000.0

        return results

    def get_vector(self, node_id: int) -> Vector:
        """Stored vector of a node (reconstructed from its PQ code when compressed)."""
        if self._graph is None or self._graph.get_node(node_id) is None:
            raise KeyError(f"Unknown node id {node_id}")
        return self._graph.get_vector(node_id)

    def check_integrity(self, check_reachability: bool = True) -> List[str]:
        """
        Validate graph invariants.

        Returns:
            Descriptions of every violation found (empty when the graph is valid)
        """
        if self._graph is None:
            return []
        return GraphValidator(self._graph).validate(check_reachability=check_reachability)

    def get_statistics(self) -> Dict[str, Any]:
        """Statistics about the index and its graph."""
        stats: Dict[str, Any] = {
            "total_vectors": self.size(),
            "dimension": self.dimension,
            "metric": self.config.metric.value,
            "m": self.config.m,
            "ef_construction": self.config.ef_construction,
            "ef_search": self.config.ef_search,
            "compressed": self._use_pq,
            "last_latency_ms": self._last_latency_ms,
        }
        if self.quantizer is not None:
            stats.update(
                {
                    "pq_bits": self.quantizer.pq_bits,
                    "pq_subqs": self.quantizer.pq_subqs,
                    "pq_trained": self.quantizer.is_trained,
                    "code_size_bytes": self.quantizer.code_size,
                }
            )
        if self._graph is not None:
            stats.update(GraphValidator(self._graph).get_graph_statistics())
        return stats

    def size(self) -> int:
        """Number of vectors in the index."""
        return 0 if self._graph is None else self._graph.size()

    def _ensure_graph(self) -> None:
        if self._graph is not None:
            return

        quantizer = None
        if self._use_pq:
            if not self.quantizer.is_trained:
                raise NotTrainedError(
                    "Compressed index must be trained (train() or build()) before adding vectors"
                )
            quantizer = self.quantizer

        self._graph = HNSWGraph(
            dimension=self.dimension,
            M=self.config.m,
            metric=self.config.metric,
            quantizer=quantizer,
        )
        self._builder = HNSWBuilder(
            self._graph,
            ef_construction=self.config.ef_construction,
            seed=self.config.level_seed,
        )
        self._searcher = HNSWSearcher(self._graph, ef_search=self.config.ef_search)

    def _as_matrix(self, vectors: np.ndarray) -> np.ndarray:
        vectors = np.asarray(vectors, dtype=np.float32)
        if vectors.ndim != 2 or vectors.shape[1] != self.dimension:
            raise ValueError(
                f"Expected vectors of shape (n, {self.dimension}), got {vectors.shape}"
            )
        return vectors

    def __getstate__(self) -> Dict[str, Any]:
        state = self.__dict__.copy()
        del state["_write_lock"]
        return state

    def __setstate__(self, state: Dict[str, Any]) -> None:
        self.__dict__.update(state)
        self._write_lock = threading.RLock()

    def save(self, filepath: str) -> None:
        """
        Save the index to disk using pickle.

        Args:
            filepath: Path to save the index (e.g., "index.pkl")
        """
        with self._write_lock:
            with open(filepath, 'wb') as f:
                pickle.dump(self, f)

    @classmethod
    def load(cls, filepath: str) -> 'VectorIndex':
        """
        Load an index from disk.

        Args:
            filepath: Path to the saved index

        Returns:
            Loaded VectorIndex instance
        """
        with open(filepath, 'rb') as f:
            return pickle.load(f)

    def __repr__(self) -> str:
        return f"VectorIndex(size={self.size()}, config={self.config!r})"
