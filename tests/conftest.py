"""
Pytest configuration and shared fixtures for pqhnsw tests
"""

import pytest
import numpy as np


@pytest.fixture
def sample_vectors() -> np.ndarray:
    """Small set of random vectors for graph tests."""
    rng = np.random.default_rng(42)
    return rng.random((200, 8)).astype(np.float32)


@pytest.fixture(scope="session")
def uniform_10k() -> np.ndarray:
    """10,000 random 4-dimensional vectors in [0, 1)."""
    rng = np.random.default_rng(2024)
    return rng.random((10000, 4)).astype(np.float32)


@pytest.fixture
def dimension() -> int:
    """Standard vector dimension for testing."""
    return 8
