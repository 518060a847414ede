"""
Product quantization module.

Components:
- transform: PCA projection used by one centroid initialization
- clustering: k-means trainer producing a codebook from training vectors
- quantizer: per-subspace codebooks, encoding, decoding, approximate distances
"""

from pqhnsw.pq.transform import PCAMatrix
from pqhnsw.pq.clustering import KMeansTrainer, TrainType, train_centroids
from pqhnsw.pq.quantizer import ProductQuantizer

__all__ = ["PCAMatrix", "KMeansTrainer", "TrainType", "train_centroids", "ProductQuantizer"]
