"""
Tests for environment configuration, IndexConfig validation and family resolution.
"""

import logging

import pytest

from pgv_faiss.core import config
from pgv_faiss.core.errors import ConfigError
from pgv_faiss.core.schema import IndexConfig, IndexFamily, parse_config
from pgv_faiss.util.logging import StructuredLogger
from pgv_faiss.vector.factory import resolve_family


class TestEnvironmentSettings:
    """Accessor functions re-read the environment."""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("PGVF_INDEX_BACKEND", raising=False)
        monkeypatch.delenv("PGVF_STRICT_FAMILY", raising=False)
        assert config.get_index_backend() == "faiss"
        assert config.strict_family_enabled() is False

    def test_backend_override(self, monkeypatch):
        monkeypatch.setenv("PGVF_INDEX_BACKEND", "NumPy")
        assert config.get_index_backend() == "numpy"

    def test_search_breadth_override(self, monkeypatch):
        monkeypatch.setenv("PGVF_SEARCH_BREADTH", "3")
        assert config.get_default_search_breadth() == 3
        assert IndexConfig(dimension=4).search_breadth == 3

    def test_db_path_override(self, monkeypatch, tmp_path):
        path = str(tmp_path / "custom.db")
        monkeypatch.setenv("PGVF_DB_PATH", path)
        assert config.get_db_path() == path

    def test_debug_flag_sets_logger_level(self, monkeypatch):
        monkeypatch.setenv("DEBUG", "true")
        assert config.debug_enabled() is True
        assert StructuredLogger("pgv_faiss.test.debug_on").logger.level == logging.DEBUG

        monkeypatch.setenv("DEBUG", "false")
        assert config.debug_enabled() is False
        assert StructuredLogger("pgv_faiss.test.debug_off").logger.level == logging.INFO

    def test_ensure_db_directory_creates_parent(self, tmp_path):
        path = tmp_path / "nested" / "dir" / "index.db"
        config.ensure_db_directory(str(path))
        assert path.parent.is_dir()

    def test_validate_config_clean(self, monkeypatch):
        monkeypatch.setenv("PGVF_INDEX_BACKEND", "faiss")
        monkeypatch.setenv("PGVF_SEARCH_BREADTH", "10")
        assert config.validate_config() == []

    def test_validate_config_reports_issues(self, monkeypatch):
        monkeypatch.setenv("PGVF_INDEX_BACKEND", "annoy")
        monkeypatch.setenv("PGVF_SEARCH_BREADTH", "wide")
        issues = config.validate_config()
        assert any("PGVF_INDEX_BACKEND" in issue for issue in issues)
        assert any("PGVF_SEARCH_BREADTH" in issue for issue in issues)


class TestIndexConfig:
    """Validation of construction parameters."""

    def test_defaults(self):
        cfg = IndexConfig(dimension=16, search_breadth=10)
        assert cfg.family == "IVFFlat"
        assert cfg.use_gpu is False
        assert cfg.gpu_device == 0
        assert cfg.expected_size is None

    def test_config_is_immutable(self):
        cfg = IndexConfig(dimension=16)
        with pytest.raises(Exception):
            cfg.dimension = 32

    @pytest.mark.parametrize("dimension", [0, -4])
    def test_non_positive_dimension_rejected(self, dimension):
        with pytest.raises(ConfigError):
            parse_config(dimension=dimension)

    def test_missing_dimension_rejected(self):
        with pytest.raises(ConfigError):
            parse_config({"family": "Flat"})

    def test_no_config_rejected(self):
        with pytest.raises(ConfigError):
            parse_config(None)

    def test_negative_gpu_device_rejected(self):
        with pytest.raises(ConfigError):
            parse_config(dimension=4, use_gpu=True, gpu_device=-1)

    def test_zero_search_breadth_rejected(self):
        with pytest.raises(ConfigError):
            parse_config(dimension=4, search_breadth=0)

    def test_blank_family_rejected(self):
        with pytest.raises(ConfigError):
            parse_config(dimension=4, family="   ")

    def test_parse_config_passes_through_instances(self):
        cfg = IndexConfig(dimension=4, family="Flat")
        assert parse_config(cfg) is cfg

    def test_parse_config_merges_mapping_and_kwargs(self):
        cfg = parse_config({"dimension": 4, "family": "Flat"}, search_breadth=7)
        assert cfg.dimension == 4
        assert cfg.search_breadth == 7

    def test_validation_error_is_chained(self):
        with pytest.raises(ConfigError) as exc_info:
            parse_config(dimension=0)
        assert exc_info.value.cause is not None
        assert exc_info.value.status == -1


class TestFamilies:
    """Family names, aliases and the unknown-family rule."""

    @pytest.mark.parametrize("name,expected", [
        ("Flat", IndexFamily.FLAT),
        ("flat", IndexFamily.FLAT),
        ("IVFFlat", IndexFamily.INVERTED_FILE),
        ("ivf", IndexFamily.INVERTED_FILE),
        ("InvertedFile", IndexFamily.INVERTED_FILE),
        ("HNSW", IndexFamily.GRAPH),
        ("Graph", IndexFamily.GRAPH),
    ])
    def test_aliases(self, name, expected):
        assert IndexFamily.lookup(name) is expected

    def test_unknown_lookup_is_none(self):
        assert IndexFamily.lookup("PQ") is None
        assert IndexFamily.lookup(None) is None

    def test_capabilities(self):
        assert IndexFamily.INVERTED_FILE.requires_training
        assert not IndexFamily.FLAT.requires_training
        assert not IndexFamily.GRAPH.requires_training
        assert IndexFamily.FLAT.supports_gpu
        assert not IndexFamily.GRAPH.supports_gpu

    def test_unknown_family_falls_back_to_flat(self):
        assert resolve_family("ScaNN", strict=False) is IndexFamily.FLAT

    def test_unknown_family_strict(self):
        with pytest.raises(ConfigError):
            resolve_family("ScaNN", strict=True)

    def test_unknown_family_strict_from_env(self, monkeypatch):
        monkeypatch.setenv("PGVF_STRICT_FAMILY", "true")
        with pytest.raises(ConfigError):
            resolve_family("ScaNN")
