"""
Test FalkorDB Configuration
===========================

Unit tests for FalkorDBConfig dataclass.
"""

import os
from unittest.mock import patch

from kbrag.storage.graph import FalkorDBConfig


class TestFalkorDBConfig:
    """Test FalkorDBConfig dataclass."""

    def test_default_values(self):
        with patch.dict(os.environ, {}, clear=True):
            config = FalkorDBConfig()

        assert config.host == "localhost"
        assert config.port == 6379
        assert config.graph_name == "coach_kg"
        assert config.password is None
        assert config.neighbor_limit == 25
        assert config.source_relation == "EXTRACTED_FROM"

    def test_custom_values(self):
        config = FalkorDBConfig(host="db.example.com", port=6381, graph_name="kg", password="secret")

        assert config.host == "db.example.com"
        assert config.port == 6381
        assert config.graph_name == "kg"
        assert config.password == "secret"

    def test_environment_variables(self):
        with patch.dict(os.environ, {
            "KBRAG_GRAPH_HOST": "env-host.com",
            "KBRAG_GRAPH_PORT": "6390",
            "KBRAG_GRAPH_NAME": "coach_prod",
            "KBRAG_GRAPH_PASSWORD": "pw",
            "KBRAG_GRAPH_NEIGHBOR_LIMIT": "5",
        }):
            config = FalkorDBConfig()

        assert config.host == "env-host.com"
        assert config.port == 6390
        assert config.graph_name == "coach_prod"
        assert config.password == "pw"
        assert config.neighbor_limit == 5
