"""
Test ConfigStore
================

Tests for YAML loading, runtime updates and the process singleton.
"""

import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from kbrag.config.store import (
    ConfigStore,
    default_config_path,
    get_config_store,
    reset_config_store,
)


@pytest.fixture
def yaml_path(tmp_path):
    path = tmp_path / "retrieval.yaml"
    path.write_text(
        "retrieval:\n"
        "  similarity_threshold: 0.4\n"
        "  fallback_steps: [0.3, 0.2]\n"
        "  max_chunks: 8\n"
    )
    return path


class TestLoading:
    """Test YAML loading."""

    def test_bundled_defaults(self):
        store = ConfigStore()

        assert store.config_path == default_config_path()
        assert store.snapshot().similarity_threshold == 0.3
        assert store.snapshot().fallback_steps == (0.2, 0.1, 0.05)

    def test_custom_yaml(self, yaml_path):
        config = ConfigStore(yaml_path).snapshot()

        assert config.similarity_threshold == 0.4
        assert config.fallback_steps == (0.3, 0.2)
        assert config.max_chunks == 8

    def test_missing_file_uses_defaults(self, tmp_path):
        config = ConfigStore(tmp_path / "missing.yaml").snapshot()

        assert config.similarity_threshold == 0.3

    def test_malformed_yaml_uses_defaults(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("retrieval: [unclosed\n")

        assert ConfigStore(path).snapshot().max_chunks == 15

    def test_invalid_values_use_defaults(self, tmp_path):
        path = tmp_path / "invalid.yaml"
        path.write_text("retrieval:\n  max_chunks: -3\n")

        assert ConfigStore(path).snapshot().max_chunks == 15


class TestUpdate:
    """Test runtime updates."""

    def test_update_swaps_snapshot(self):
        store = ConfigStore()
        before = store.snapshot()

        after = store.update(similarity_threshold=0.35, max_chunks=5)

        assert store.snapshot() is after
        assert after.max_chunks == 5
        assert before.max_chunks == 15
        assert store.version == 1

    def test_invalid_update_keeps_snapshot(self):
        store = ConfigStore()
        before = store.snapshot()

        with pytest.raises(ValidationError):
            store.update(similarity_threshold=0.1)

        assert store.snapshot() is before
        assert store.version == 0

    def test_reload_discards_overrides(self, yaml_path):
        store = ConfigStore(yaml_path)
        store.update(max_chunks=2)

        config = store.reload()

        assert config.max_chunks == 8
        assert store.version == 2


class TestSingleton:
    """Test get_config_store."""

    def test_singleton(self):
        reset_config_store()
        try:
            assert get_config_store() is get_config_store()
        finally:
            reset_config_store()

    def test_env_path(self, yaml_path):
        reset_config_store()
        try:
            with patch.dict(os.environ, {"KBRAG_CONFIG_PATH": str(yaml_path)}):
                store = get_config_store()
            assert store.snapshot().max_chunks == 8
        finally:
            reset_config_store()
