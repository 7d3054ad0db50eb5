"""
KBRAG Storage
=============

Corpus and graph access used by the retrieval engine.
"""

from kbrag.storage.base import VectorStore, matches_categories
from kbrag.storage.memory import InMemoryVectorStore

__all__ = [
    "VectorStore",
    "matches_categories",
    "InMemoryVectorStore",
]
