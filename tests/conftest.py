"""
KBRAG Test Configuration
========================

Shared fixtures for all tests.
"""

import pytest

from kbrag.config.retrieval import RetrievalConfig
from kbrag.retrieval.models import Chunk, Query
from kbrag.storage.memory import InMemoryVectorStore


@pytest.fixture
def make_chunk():
    """Factory for chunks with sensible defaults."""
    def _make(
        chunk_id,
        vector=None,
        categories=(),
        text=None,
        source_id=None,
        title="",
        ordinal=0,
    ):
        return Chunk(
            id=chunk_id,
            source_id=source_id or f"src-{chunk_id}",
            source_title=title,
            text=text if text is not None else f"text of {chunk_id}",
            ordinal=ordinal,
            vector=tuple(vector) if vector is not None else None,
            categories=frozenset(categories),
        )
    return _make


@pytest.fixture
def make_query():
    """Factory for queries."""
    def _make(text="", vector=(1.0, 0.0, 0.0), topics=()):
        return Query(text=text, vector=tuple(vector), topics=tuple(topics))
    return _make


@pytest.fixture
def config():
    """Default retrieval configuration."""
    return RetrievalConfig()


@pytest.fixture
def coaching_store(make_chunk):
    """
    Small coaching corpus, query direction (1, 0, 0).

    Cosine scores against the query:
        quads-1 0.95, quads-2 0.80, principles-1 0.60,
        chest-1 0.0, reps-1 0.05, deload-1 (no vector)
    """
    return InMemoryVectorStore([
        make_chunk(
            "quads-1", (0.95, 0.3122499, 0.0), ["quadriceps"],
            text="Squats and leg presses build the quadriceps.",
            source_id="k-quads", title="Quadriceps training", ordinal=0,
        ),
        make_chunk(
            "quads-2", (0.8, 0.6, 0.0), ["quadriceps"],
            text="Train quads twice per week with 10-20 hard sets.",
            source_id="k-quads", title="Quadriceps training", ordinal=1,
        ),
        make_chunk(
            "principles-1", (0.6, 0.8, 0.0), ["hypertrophy_principles"],
            text="Progressive overload drives muscle growth.",
            source_id="k-principles", title="Hypertrophy principles", ordinal=0,
        ),
        make_chunk(
            "chest-1", (0.0, 1.0, 0.0), ["chest"],
            text="Bench press and flyes for the chest.",
            source_id="k-chest", title="Chest training", ordinal=0,
        ),
        make_chunk(
            "reps-1", (0.05, 0.99875, 0.0), ["hypertrophy_principles"],
            text="Most lifters should use 5-10 reps per set on compounds.",
            source_id="k-principles", title="Hypertrophy principles", ordinal=1,
        ),
        make_chunk(
            "deload-1", None, ["hypertrophy_principles"],
            text="Take a deload week every 6-8 weeks.",
            source_id="k-principles", title="Hypertrophy principles", ordinal=2,
        ),
    ])
