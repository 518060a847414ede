"""Tests for IndexConfig validation, presets and serialization."""

import pytest
from pqhnsw.config import IndexConfig, get_default_config, get_pq_config
from pqhnsw.errors import ConfigurationError
from pqhnsw.hnsw.distance import Metric
from pqhnsw.pq.clustering import TrainType


class TestDefaults:
    """Default values and derived properties."""

    def test_defaults(self):
        config = IndexConfig(dims=16)

        assert config.m == 16
        assert config.ef_construction == 64
        assert config.ef_search == 40
        assert config.metric is Metric.L2
        assert not config.pq_enabled
        assert config.pq_subdim == 0
        assert config.n_centroids == 0

    def test_pq_properties(self):
        config = IndexConfig(dims=4, pq_bits=3, pq_subqs=2)

        assert config.pq_enabled
        assert config.pq_subdim == 2
        assert config.n_centroids == 8

    def test_strings_are_parsed(self):
        config = IndexConfig(dims=4, metric="cosine", train_type="hypercube_pca")

        assert config.metric is Metric.COSINE
        assert config.train_type is TrainType.HYPERCUBE_PCA


class TestValidation:
    """Inconsistent configurations are rejected."""

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"dims": 0},
            {"dims": 4, "m": 1},
            {"dims": 4, "ef_construction": 0},
            {"dims": 4, "ef_search": 0},
            {"dims": 4, "n_workers": 0},
            {"dims": 4, "pq_bits": 17, "pq_subqs": 2},
            {"dims": 4, "pq_bits": 8},
            {"dims": 4, "pq_subqs": 2},
        ],
    )
    def test_invalid_values(self, kwargs):
        with pytest.raises(ConfigurationError):
            IndexConfig(**kwargs)

    def test_dims_must_split_into_subspaces(self):
        with pytest.raises(ConfigurationError, match="not divisible"):
            IndexConfig(dims=10, pq_bits=4, pq_subqs=3)

    def test_unknown_metric(self):
        with pytest.raises(ValueError):
            IndexConfig(dims=4, metric="hamming")

    def test_configuration_error_is_value_error(self):
        with pytest.raises(ValueError):
            IndexConfig(dims=-1)


class TestSerialization:
    """Dictionary and JSON round trips."""

    def test_to_dict_uses_plain_values(self):
        data = IndexConfig(dims=4, metric="ip", pq_bits=3, pq_subqs=2).to_dict()

        assert data["metric"] == "ip"
        assert data["train_type"] == "random"
        assert data["pq_bits"] == 3

    def test_json_roundtrip(self, tmp_path):
        config = IndexConfig(
            dims=8,
            m=8,
            metric=Metric.COSINE,
            pq_bits=4,
            pq_subqs=4,
            train_type=TrainType.HYPERCUBE,
            config_name="custom",
        )
        path = tmp_path / "config.json"

        config.to_json(str(path))
        loaded = IndexConfig.from_json(str(path))

        assert loaded == config


class TestPresets:
    """Preset factories."""

    def test_default_config(self):
        config = get_default_config(32)
        assert config.dims == 32
        assert not config.pq_enabled
        assert config.config_name == "default"

    def test_pq_config(self):
        config = get_pq_config(8)
        assert config.pq_bits == 8
        assert config.pq_subqs == 4
        assert config.config_name == "pq"

    def test_pq_config_explicit_subspaces(self):
        config = get_pq_config(8, pq_bits=3, pq_subqs=2)
        assert config.pq_subdim == 4


def test_repr():
    assert "raw" in repr(IndexConfig(dims=4))
    assert "pq=2x3b/random" in repr(IndexConfig(dims=4, pq_bits=3, pq_subqs=2))
