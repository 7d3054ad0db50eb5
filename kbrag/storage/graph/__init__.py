"""
KBRAG Graph Storage
===================

Optional relationship graph behind the GraphExpander.

Components:
- GraphBackend: protocol (neighbors, sources_for)
- InMemoryGraphBackend: adjacency sets, for tests and small maps
- FalkorDBGraphBackend: Cypher queries against FalkorDB
- FalkorDBConfig: env-driven connection settings

Example:
    from kbrag.storage.graph import FalkorDBGraphBackend, FalkorDBConfig

    backend = FalkorDBGraphBackend(FalkorDBConfig(graph_name="coach_kg"))
"""

from kbrag.storage.graph.base import GraphBackend
from kbrag.storage.graph.client import FalkorDBGraphBackend
from kbrag.storage.graph.config import FalkorDBConfig
from kbrag.storage.graph.memory import InMemoryGraphBackend

__all__ = [
    "GraphBackend",
    "FalkorDBGraphBackend",
    "FalkorDBConfig",
    "InMemoryGraphBackend",
]
