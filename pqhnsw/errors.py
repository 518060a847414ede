"""
Exception types raised by pqhnsw.

Insufficient training data is normally reported as a boolean by the
clustering and quantization layers; only the index facade turns it into an
exception when it cannot fall back to uncompressed storage.
"""


class PQHNSWError(Exception):
    """Base class for all pqhnsw errors."""


class ConfigurationError(PQHNSWError, ValueError):
    """Invalid or inconsistent index configuration (e.g. dims vs. subspaces)."""


class InvariantViolationError(PQHNSWError, AssertionError):
    """Internal state that must never occur (corrupt codebook or graph)."""


class InsufficientTrainingDataError(PQHNSWError):
    """Too few training rows for the requested number of centroids."""

    def __init__(self, n_rows: int, required: int) -> None:
        self.n_rows = n_rows
        self.required = required
        super().__init__(
            f"Insufficient training data: got {n_rows} rows, need at least {required}. "
            f"Lower pq_bits/pq_subqs or supply more rows."
        )


class NotTrainedError(PQHNSWError, RuntimeError):
    """Product quantizer used before its codebooks were trained."""
