"""
pqhnsw - HNSW approximate nearest neighbor index with product quantization

Vectors are indexed in a hierarchical navigable small-world graph. Optionally
they are stored as product-quantization codes, trained with an internal
k-means, to shrink the memory footprint of the index.
"""

__version__ = "0.3.5"

from pqhnsw.vector_index import VectorIndex
from pqhnsw.config import (
    IndexConfig,
    get_default_config,
    get_pq_config,
)
from pqhnsw.errors import (
    PQHNSWError,
    ConfigurationError,
    InvariantViolationError,
    InsufficientTrainingDataError,
    NotTrainedError,
)
from pqhnsw.hnsw.distance import Metric
from pqhnsw.pq.clustering import TrainType

__all__ = [
    "VectorIndex",
    "IndexConfig",
    "get_default_config",
    "get_pq_config",
    "Metric",
    "TrainType",
    "PQHNSWError",
    "ConfigurationError",
    "InvariantViolationError",
    "InsufficientTrainingDataError",
    "NotTrainedError",
]
