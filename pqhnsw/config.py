"""Configuration for pqhnsw indexes.

Usage:
    from pqhnsw import VectorIndex, IndexConfig

    # Uncompressed graph
    index = VectorIndex(IndexConfig(dims=128))

    # Product-quantized graph: 16 subspaces of 8 dims, 256 centroids each
    config = IndexConfig(dims=128, pq_bits=8, pq_subqs=16)
    index = VectorIndex(config)

    # From file
    config = IndexConfig.from_json("my_config.json")
"""

from typing import Dict, Any, Optional
import json
from dataclasses import dataclass, asdict

from pqhnsw.errors import ConfigurationError
from pqhnsw.hnsw.distance import Metric
from pqhnsw.pq.clustering import TrainType


@dataclass
class IndexConfig:
    """Configuration for a VectorIndex.

    Graph parameters:
        dims: Vector dimensionality
        m: Maximum neighbors per node on layers >= 1 (layer 0 keeps 2*m)
        ef_construction: Beam width used while inserting
        ef_search: Default beam width used while searching
        metric: "l2" (squared), "ip" (inner product) or "cosine"

    Product quantization (disabled when pq_bits is 0):
        pq_bits: Bits per subspace code, 2**pq_bits centroids per codebook
        pq_subqs: Number of subspaces; dims must be divisible by it
        train_type: Centroid initialization, "random", "hypercube" or "hypercube_pca"
        fallback_to_raw: Store raw vectors when codebook training lacks data

    Reproducibility and resources:
        seed: Base seed for k-means subsampling, initialization and splitting
        level_seed: Seed for the layer assignment of inserted nodes
        n_workers: Threads used for the centroid update in k-means
    """

    dims: int

    # Graph
    m: int = 16
    ef_construction: int = 64
    ef_search: int = 40
    metric: Metric = Metric.L2

    # Product quantization
    pq_bits: int = 0
    pq_subqs: int = 0
    train_type: TrainType = TrainType.RANDOM
    fallback_to_raw: bool = True

    seed: int = 1234
    level_seed: Optional[int] = 42
    n_workers: int = 1

    # Metadata
    config_name: str = "default"

    def __post_init__(self):
        """Validate configuration."""
        self.metric = Metric.parse(self.metric)
        self.train_type = TrainType.parse(self.train_type)

        if self.dims < 1:
            raise ConfigurationError("dims must be >= 1")

        if self.m < 2:
            raise ConfigurationError("m must be >= 2")

        if self.ef_construction < 1:
            raise ConfigurationError("ef_construction must be >= 1")

        if self.ef_search < 1:
            raise ConfigurationError("ef_search must be >= 1")

        if self.n_workers < 1:
            raise ConfigurationError("n_workers must be >= 1")

        if self.pq_bits or self.pq_subqs:
            if not 1 <= self.pq_bits <= 16:
                raise ConfigurationError("pq_bits must be in [1, 16]")
            if self.pq_subqs < 1:
                raise ConfigurationError("pq_subqs must be >= 1 when pq_bits is set")
            if self.dims % self.pq_subqs != 0:
                raise ConfigurationError(
                    f"dims ({self.dims}) must equal pq_subdim * pq_subqs; "
                    f"{self.dims} is not divisible by pq_subqs={self.pq_subqs}"
                )

    @property
    def pq_enabled(self) -> bool:
        return self.pq_bits > 0

    @property
    def pq_subdim(self) -> int:
        """Length of each PQ subvector (0 when PQ is disabled)."""
        return self.dims // self.pq_subqs if self.pq_enabled else 0

    @property
    def n_centroids(self) -> int:
        return 1 << self.pq_bits if self.pq_enabled else 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to a JSON-friendly dictionary."""
        data = asdict(self)
        data["metric"] = self.metric.value
        data["train_type"] = self.train_type.value
        return data

    def to_json(self, filepath: str) -> None:
        """Save configuration to JSON file."""
        with open(filepath, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> 'IndexConfig':
        """Load configuration from dictionary."""
        return cls(**config_dict)

    @classmethod
    def from_json(cls, filepath: str) -> 'IndexConfig':
        """Load configuration from JSON file."""
        with open(filepath, 'r') as f:
            config_dict = json.load(f)
        return cls.from_dict(config_dict)

    def __repr__(self) -> str:
        """String representation."""
        pq = (
            f"pq={self.pq_subqs}x{self.pq_bits}b/{self.train_type.value}"
            if self.pq_enabled
            else "raw"
        )
        return (
            f"IndexConfig("
            f"{self.config_name}, "
            f"dims={self.dims}, m={self.m}, "
            f"efc={self.ef_construction}, efs={self.ef_search}, "
            f"metric={self.metric.value}, {pq})"
        )


# Preset configurations

def get_default_config(dims: int) -> IndexConfig:
    """Uncompressed graph with default parameters."""
    return IndexConfig(dims=dims, config_name="default")


def get_pq_config(
    dims: int, pq_bits: int = 8, pq_subqs: Optional[int] = None
) -> IndexConfig:
    """Product-quantized graph.

    Args:
        dims: Vector dimensionality
        pq_bits: Bits per subspace code
        pq_subqs: Number of subspaces (default: dims // 2, i.e. 2-dim subvectors)
    """
    if pq_subqs is None:
        pq_subqs = max(1, dims // 2)
    return IndexConfig(
        dims=dims,
        pq_bits=pq_bits,
        pq_subqs=pq_subqs,
        config_name="pq",
    )
