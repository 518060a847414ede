"""
Principal component projection.

Used by the hypercube+PCA centroid initialization: the training data is
projected onto its top principal components and centroids are placed at
mean +/- sqrt(eigenvalue) offsets along each of them.
"""

import logging
from typing import Optional

import numpy as np
import numpy.typing as npt
from sklearn.decomposition import PCA

logger = logging.getLogger(__name__)

Vector = npt.NDArray[np.float32]


class PCAMatrix:
    """
    Linear projection from d_in dimensions onto the top d_out principal components.

    After train():
        mean: per-dimension mean of the training data, shape (d_in,)
        eigenvalues: variances along each kept component (descending), shape (d_out,)
        components: unit principal directions as rows, shape (d_out, d_in)

    When d_out exceeds d_in, the missing components are zero vectors with zero
    eigenvalue, so every requested component is always defined.
    """

    def __init__(self, d_in: int, d_out: int) -> None:
        if d_in < 1 or d_out < 1:
            raise ValueError(f"PCA dimensions must be positive, got {d_in} -> {d_out}")
        self.d_in = d_in
        self.d_out = d_out
        self.mean: Optional[np.ndarray] = None
        self.eigenvalues: Optional[np.ndarray] = None
        self.components: Optional[np.ndarray] = None

    @property
    def is_trained(self) -> bool:
        return self.components is not None

    def train(self, x: np.ndarray) -> None:
        """
        Estimate mean, eigenvalues and principal directions from training rows.

        Args:
            x: Training vectors, shape (n, d_in)
        """
        x = np.asarray(x, dtype=np.float64)
        if x.ndim != 2 or x.shape[1] != self.d_in:
            raise ValueError(f"Expected training data of shape (n, {self.d_in}), got {x.shape}")
        n = x.shape[0]
        if n < 2:
            raise ValueError("PCA needs at least two training vectors")

        # sklearn orders components by decreasing explained variance
        kept = min(self.d_in, self.d_out, n)
        pca = PCA(n_components=kept, svd_solver="full")
        pca.fit(x)

        self.eigenvalues = np.zeros(self.d_out, dtype=np.float64)
        self.eigenvalues[:kept] = np.clip(pca.explained_variance_, 0.0, None)
        self.components = np.zeros((self.d_out, self.d_in), dtype=np.float64)
        self.components[:kept] = pca.components_
        self.mean = pca.mean_

        logger.debug(
            "PCA trained on %d vectors (%d -> %d), top eigenvalue %.6g",
            n, self.d_in, self.d_out, self.eigenvalues[0],
        )

    def apply(self, x: np.ndarray) -> np.ndarray:
        """Project vectors (n, d_in) or a single vector onto the components."""
        self._check_trained()
        x = np.asarray(x, dtype=np.float64)
        return ((x - self.mean) @ self.components.T).astype(np.float32)

    def reverse_transform(self, y: np.ndarray) -> np.ndarray:
        """Map projected coordinates back to the input space."""
        self._check_trained()
        y = np.asarray(y, dtype=np.float64)
        return (y @ self.components + self.mean).astype(np.float32)

    def _check_trained(self) -> None:
        if not self.is_trained:
            raise RuntimeError("PCAMatrix must be trained before use")

    def __repr__(self) -> str:
        return f"PCAMatrix(d_in={self.d_in}, d_out={self.d_out}, trained={self.is_trained})"
