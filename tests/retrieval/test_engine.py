"""
Test KnowledgeRetrievalEngine
=============================

End-to-end tests of the engine facade over an in-memory corpus.
"""

import math
from unittest.mock import MagicMock

import pytest

from kbrag import KnowledgeRetrievalEngine
from kbrag.config.environments import EngineEnvironment
from kbrag.config.retrieval import RetrievalConfig
from kbrag.config.store import ConfigStore
from kbrag.retrieval.errors import DimensionMismatch
from kbrag.retrieval.models import FallbackState, RetrievalStatus
from kbrag.storage.graph.memory import InMemoryGraphBackend
from kbrag.storage.memory import InMemoryVectorStore

QUERY = (1.0, 0.0, 0.0)


@pytest.fixture
def config_store():
    return ConfigStore()


@pytest.fixture
def engine(coaching_store, config_store):
    engine = KnowledgeRetrievalEngine(
        coaching_store,
        config_store=config_store,
        environment=EngineEnvironment(max_workers=2),
    )
    yield engine
    engine.close()


class TestRetrieve:
    """Test KnowledgeRetrievalEngine.retrieve."""

    @pytest.mark.asyncio
    async def test_end_to_end(self, engine):
        result = await engine.retrieve("How many sets per week for quads?", QUERY)

        assert result.status is RetrievalStatus.OK
        assert result.chunk_ids[:2] == ["quads-1", "quads-2"]
        assert result.threshold_used == 0.3
        assert result.attempts[0].state is FallbackState.STRICT
        assert result.routing.priority_categories[0] == "quadriceps"
        assert result.texts()[0].startswith("Squats")
        assert len(set(result.chunk_ids)) == len(result.chunk_ids)

    @pytest.mark.asyncio
    async def test_explicit_config_wins(self, engine, config_store):
        config_store.snapshot = MagicMock(wraps=config_store.snapshot)

        result = await engine.retrieve("quads", QUERY, config=RetrievalConfig(max_chunks=1))

        assert len(result.chunks) == 1
        config_store.snapshot.assert_not_called()

    @pytest.mark.asyncio
    async def test_snapshot_read_once_per_call(self, engine, config_store):
        config_store.snapshot = MagicMock(wraps=config_store.snapshot)

        await engine.retrieve("quads", QUERY)

        assert config_store.snapshot.call_count == 1

    @pytest.mark.asyncio
    async def test_runtime_update_applies_to_next_call(self, engine, config_store):
        config_store.update(max_chunks=2)

        result = await engine.retrieve("quads", QUERY)

        assert len(result.chunks) == 2

    @pytest.mark.asyncio
    async def test_small_budget_stops_at_strict(self, engine):
        """max_chunks below min_acceptable_results does not force relaxation."""
        result = await engine.retrieve("quads", QUERY, config=RetrievalConfig(max_chunks=2))

        assert result.chunk_ids == ["quads-1", "quads-2"]
        assert result.threshold_used == 0.3
        assert [(a.state, a.candidate_count, a.accepted) for a in result.attempts] == [
            (FallbackState.STRICT, 2, True),
        ]

    @pytest.mark.asyncio
    async def test_budget_respected(self, engine):
        config = RetrievalConfig(max_chunks=15, max_context_chars=60)

        result = await engine.retrieve("quads", QUERY, config=config)

        assert result.total_chars <= 60
        assert len(result.chunks) == 1

    @pytest.mark.asyncio
    async def test_topic_hints(self, engine):
        result = await engine.retrieve("tips please", QUERY, topics=["chest"])

        assert result.routing.priority_categories == ("chest",)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("vector", [(), (math.nan, 0.0, 0.0), (math.inf, 1.0, 0.0)])
    async def test_invalid_query_vector(self, engine, vector):
        with pytest.raises(ValueError):
            await engine.retrieve("quads", vector)

    @pytest.mark.asyncio
    async def test_dimension_mismatch_propagates(self, engine):
        with pytest.raises(DimensionMismatch) as exc_info:
            await engine.retrieve("quads", (1.0, 0.0))

        assert exc_info.value.expected == 2
        assert exc_info.value.actual == 3

    @pytest.mark.asyncio
    async def test_empty_corpus(self, config_store):
        engine = KnowledgeRetrievalEngine(
            InMemoryVectorStore(),
            config_store=config_store,
            environment=EngineEnvironment(max_workers=1),
        )
        try:
            result = await engine.retrieve("quads", QUERY)
        finally:
            engine.close()

        assert result.status is RetrievalStatus.EMPTY
        assert len(result.attempts) == 4

    @pytest.mark.asyncio
    async def test_graph_backend(self, coaching_store, config_store):
        backend = InMemoryGraphBackend()
        backend.add_relation("squat", "progressive overload")
        backend.link_source("progressive overload", "k-principles")

        async with KnowledgeRetrievalEngine(
            coaching_store,
            graph=backend,
            config_store=config_store,
            environment=EngineEnvironment(max_workers=2),
        ) as engine:
            result = await engine.retrieve("squat depth", (0.0, 0.0, 1.0))

        assert "deload-1" in result.chunk_ids
        deload = next(c for c in result.chunks if c.chunk_id == "deload-1")
        assert deload.winning_signal.value == "graph"
        assert deload.score == pytest.approx(0.25)
