"""
KBRAG - Knowledge Base Retrieval for coaching assistants
========================================================

Retrieval engine that selects which pre-embedded knowledge chunks to inject
into a generation prompt, and in what order.

Quick Start:
    from kbrag import KnowledgeRetrievalEngine, InMemoryVectorStore

    store = InMemoryVectorStore.from_records(records)
    engine = KnowledgeRetrievalEngine(store)
    result = await engine.retrieve("Design a 4 day upper/lower split", embedding)

    for chunk in result.chunks:
        print(chunk.source_title, chunk.score, chunk.contributing_signals)

Components:
- kbrag.retrieval: router, signals, hybrid merge, fallback, assembly
- kbrag.storage: VectorStore interface, in-memory store, graph backends
- kbrag.config: RetrievalConfig, ConfigStore, environment, logging
- kbrag.benchmark: retrieval quality metrics and diagnostics
"""

__version__ = "0.1.0"

from kbrag.config import ConfigStore, RetrievalConfig, configure_logging, get_config_store
from kbrag.retrieval import (
    Chunk,
    DimensionMismatch,
    KnowledgeRetrievalEngine,
    Query,
    RetrievalResult,
    RetrievalStatus,
)
from kbrag.storage import InMemoryVectorStore, VectorStore

__all__ = [
    "__version__",
    "ConfigStore",
    "RetrievalConfig",
    "configure_logging",
    "get_config_store",
    "Chunk",
    "DimensionMismatch",
    "KnowledgeRetrievalEngine",
    "Query",
    "RetrievalResult",
    "RetrievalStatus",
    "InMemoryVectorStore",
    "VectorStore",
]
