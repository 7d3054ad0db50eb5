"""
FalkorDB Configuration
======================

Connection settings for the FalkorDB relationship graph.

Usage:
    from kbrag.storage.graph import FalkorDBConfig

    # Env vars or defaults
    config = FalkorDBConfig()

    # Explicit override
    config = FalkorDBConfig(host="localhost", port=6380, graph_name="coach_kg")

Environment Variables:
    KBRAG_GRAPH_HOST: Server host (default: localhost)
    KBRAG_GRAPH_PORT: Server port (default: 6379)
    KBRAG_GRAPH_NAME: Graph name (default: coach_kg)
    KBRAG_GRAPH_PASSWORD: Password (default: empty)
    KBRAG_GRAPH_NEIGHBOR_LIMIT: Max neighbours returned per entity (default: 25)
"""

import os
from dataclasses import dataclass, field
from typing import Optional


def _get_env_str(key: str, default: str) -> str:
    return os.environ.get(key, default)


def _get_env_int(key: str, default: int) -> int:
    return int(os.environ.get(key, default))


@dataclass
class FalkorDBConfig:
    """
    FalkorDB connection settings.

    Attributes:
        host: FalkorDB server host
        port: FalkorDB server port
        graph_name: Graph holding entities and KnowledgeItem nodes
        password: Optional authentication password
        neighbor_limit: Cap on neighbours returned for one entity
        source_relation: Relationship linking an entity to its KnowledgeItem
    """
    host: str = field(default_factory=lambda: _get_env_str("KBRAG_GRAPH_HOST", "localhost"))
    port: int = field(default_factory=lambda: _get_env_int("KBRAG_GRAPH_PORT", 6379))
    graph_name: str = field(default_factory=lambda: _get_env_str("KBRAG_GRAPH_NAME", "coach_kg"))
    password: Optional[str] = field(default_factory=lambda: _get_env_str("KBRAG_GRAPH_PASSWORD", "") or None)
    neighbor_limit: int = field(default_factory=lambda: _get_env_int("KBRAG_GRAPH_NEIGHBOR_LIMIT", 25))
    source_relation: str = "EXTRACTED_FROM"
