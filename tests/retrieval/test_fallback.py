"""
Test ProgressiveFallbackController
==================================

Tests for the Strict -> Relaxed[i] -> Exhausted state machine, deadlines
and the attempt audit trail.
"""

import asyncio
from unittest.mock import MagicMock

import pytest

from kbrag.config.retrieval import RetrievalConfig
from kbrag.retrieval.errors import DimensionMismatch
from kbrag.retrieval.fallback import (
    ProgressiveFallbackController,
    fallback_plan,
    is_thin,
    required_results,
)
from kbrag.retrieval.models import (
    FallbackState,
    HybridOutcome,
    MergedCandidate,
    RetrievalStatus,
    RoutingDecision,
    SourceSignal,
)
from kbrag.retrieval.router import CategoryRouter

ROUTING = RoutingDecision(("hypertrophy_principles",), used_default=True)


def merged(chunk_id, score):
    return MergedCandidate(
        chunk_id=chunk_id,
        score=score,
        signal_scores={SourceSignal.VECTOR: score},
        winning_signal=SourceSignal.VECTOR,
    )


def outcome(*pairs):
    return HybridOutcome(candidates=[merged(i, s) for i, s in pairs], routing=ROUTING)


class StubRetriever:
    """Returns a canned outcome per threshold, optionally after a delay."""

    def __init__(self, outcomes, delays=None, error=None):
        self.router = CategoryRouter()
        self.outcomes = outcomes
        self.delays = delays or {}
        self.error = error
        self.calls = []

    async def retrieve(self, query, config, cancel_token=None):
        threshold = config.similarity_threshold
        self.calls.append((threshold, query.intent))
        if self.error is not None:
            raise self.error
        await asyncio.sleep(self.delays.get(threshold, 0))
        return self.outcomes.get(threshold, outcome())


class TestPlan:
    """Test fallback_plan and is_thin."""

    def test_plan_follows_steps(self, config):
        assert fallback_plan(config) == [
            (FallbackState.STRICT, 0, 0.3),
            (FallbackState.RELAXED, 1, 0.2),
            (FallbackState.RELAXED, 2, 0.1),
            (FallbackState.RELAXED, 3, 0.05),
        ]

    def test_plan_without_steps(self):
        assert fallback_plan(RetrievalConfig(fallback_steps=())) == [
            (FallbackState.STRICT, 0, 0.3),
        ]

    def test_thin_by_count(self, config):
        assert is_thin([merged("a", 0.9), merged("b", 0.9)], config)
        assert not is_thin([merged(c, 0.4) for c in "abc"], config)

    def test_thin_without_high_relevance(self):
        config = RetrievalConfig(require_high_relevance=True)

        assert is_thin([merged(c, 0.5) for c in "abc"], config)
        assert not is_thin([merged("a", 0.7), merged("b", 0.5), merged("c", 0.5)], config)

    def test_required_results_capped_by_max_chunks(self):
        """A full budget is acceptable even below min_acceptable_results."""
        config = RetrievalConfig(max_chunks=2, min_acceptable_results=3)

        assert required_results(config) == 2
        assert not is_thin([merged("a", 0.9), merged("b", 0.8)], config)
        assert is_thin([merged("a", 0.9)], config)


class TestFallbackProgression:
    """Test the state machine without deadlines."""

    @pytest.mark.asyncio
    async def test_strict_accepted(self, coaching_store, make_query, config):
        retriever = StubRetriever({
            0.3: outcome(("quads-1", 0.95), ("quads-2", 0.8), ("principles-1", 0.6)),
        })
        controller = ProgressiveFallbackController(retriever, coaching_store)

        result = await controller.retrieve_with_fallback(make_query("quads"), config)

        assert [t for t, _ in retriever.calls] == [0.3]
        assert result.status is RetrievalStatus.OK
        assert result.threshold_used == 0.3
        assert result.chunk_ids == ["quads-1", "quads-2", "principles-1"]
        assert len(result.attempts) == 1
        assert result.attempts[0].state is FallbackState.STRICT
        assert result.attempts[0].accepted

    @pytest.mark.asyncio
    async def test_relaxes_until_acceptable(self, coaching_store, make_query, config):
        retriever = StubRetriever({
            0.3: outcome(("quads-1", 0.95)),
            0.2: outcome(("quads-1", 0.95), ("quads-2", 0.8)),
            0.1: outcome(("quads-1", 0.95), ("quads-2", 0.8), ("reps-1", 0.15)),
        })
        controller = ProgressiveFallbackController(retriever, coaching_store)

        result = await controller.retrieve_with_fallback(make_query("quads"), config)

        assert [t for t, _ in retriever.calls] == [0.3, 0.2, 0.1]
        assert result.threshold_used == 0.1
        assert result.chunk_ids == ["quads-1", "quads-2", "reps-1"]
        assert [(a.state, a.step, a.candidate_count, a.accepted) for a in result.attempts] == [
            (FallbackState.STRICT, 0, 1, False),
            (FallbackState.RELAXED, 1, 2, False),
            (FallbackState.RELAXED, 2, 3, True),
        ]

    @pytest.mark.asyncio
    async def test_full_budget_accepted_at_strict(self, coaching_store, make_query):
        retriever = StubRetriever({
            0.3: outcome(("quads-1", 0.95), ("quads-2", 0.8)),
            0.2: outcome(("quads-1", 0.95), ("quads-2", 0.8)),
        })
        controller = ProgressiveFallbackController(retriever, coaching_store)

        result = await controller.retrieve_with_fallback(
            make_query("quads"), RetrievalConfig(max_chunks=2)
        )

        assert [t for t, _ in retriever.calls] == [0.3]
        assert result.threshold_used == 0.3
        assert result.status is RetrievalStatus.OK
        assert [(a.state, a.accepted) for a in result.attempts] == [(FallbackState.STRICT, True)]

    @pytest.mark.asyncio
    async def test_exhausted_returns_last_attempt(self, coaching_store, make_query, config):
        """After the last step the most relaxed attempt is returned, even if thin."""
        retriever = StubRetriever({
            0.3: outcome(("quads-1", 0.95)),
            0.05: outcome(("reps-1", 0.06)),
        })
        controller = ProgressiveFallbackController(retriever, coaching_store)

        result = await controller.retrieve_with_fallback(make_query("quads"), config)

        assert len(retriever.calls) == len(config.fallback_steps) + 1
        assert result.status is RetrievalStatus.OK
        assert result.threshold_used == 0.05
        assert result.chunk_ids == ["reps-1"]
        assert not any(a.accepted for a in result.attempts)

    @pytest.mark.asyncio
    async def test_exhausted_empty(self, coaching_store, make_query, config):
        retriever = StubRetriever({})
        controller = ProgressiveFallbackController(retriever, coaching_store)

        result = await controller.retrieve_with_fallback(make_query("quads"), config)

        assert result.status is RetrievalStatus.EMPTY
        assert result.is_empty
        assert len(result.attempts) == 4

    @pytest.mark.asyncio
    async def test_require_high_relevance(self, coaching_store, make_query):
        config = RetrievalConfig(require_high_relevance=True)
        retriever = StubRetriever({
            0.3: outcome(("quads-2", 0.5), ("principles-1", 0.45), ("reps-1", 0.4)),
            0.2: outcome(("quads-1", 0.95), ("quads-2", 0.5), ("principles-1", 0.45)),
        })
        controller = ProgressiveFallbackController(retriever, coaching_store)

        result = await controller.retrieve_with_fallback(make_query("quads"), config)

        assert [t for t, _ in retriever.calls] == [0.3, 0.2]
        assert result.attempts[1].high_relevance_count == 1
        assert result.chunk_ids[0] == "quads-1"

    @pytest.mark.asyncio
    async def test_routes_once(self, coaching_store, make_query, config):
        """Every attempt sees the same precomputed intent."""
        retriever = StubRetriever({})
        retriever.router = MagicMock()
        retriever.router.classify.return_value = ROUTING
        controller = ProgressiveFallbackController(retriever, coaching_store)

        result = await controller.retrieve_with_fallback(make_query("quads"), config)

        retriever.router.classify.assert_called_once()
        assert all(intent is ROUTING for _, intent in retriever.calls)
        assert result.routing is ROUTING

    @pytest.mark.asyncio
    async def test_stateless_across_calls(self, coaching_store, make_query, config):
        retriever = StubRetriever({
            0.3: outcome(("quads-1", 0.95)),
            0.2: outcome(("quads-1", 0.95), ("quads-2", 0.8), ("principles-1", 0.6)),
        })
        controller = ProgressiveFallbackController(retriever, coaching_store)

        first = await controller.retrieve_with_fallback(make_query("quads"), config)
        second = await controller.retrieve_with_fallback(make_query("quads"), config)

        assert first.chunk_ids == second.chunk_ids
        assert len(first.attempts) == len(second.attempts) == 2
        assert [t for t, _ in retriever.calls] == [0.3, 0.2, 0.3, 0.2]

    @pytest.mark.asyncio
    async def test_dimension_mismatch_propagates(self, coaching_store, make_query, config):
        retriever = StubRetriever({}, error=DimensionMismatch(expected=3, actual=2, chunk_id="bad"))
        controller = ProgressiveFallbackController(retriever, coaching_store)

        with pytest.raises(DimensionMismatch):
            await controller.retrieve_with_fallback(make_query("quads"), config)

        assert len(retriever.calls) == 1


class TestDeadline:
    """Test deadline handling."""

    @pytest.mark.asyncio
    async def test_step_skipped_when_time_is_short(self, coaching_store, make_query, config):
        """A step is skipped when less time remains than the previous attempt took."""
        retriever = StubRetriever({0.3: outcome(("quads-1", 0.95))}, delays={0.3: 0.2})
        controller = ProgressiveFallbackController(retriever, coaching_store)

        result = await controller.retrieve_with_fallback(make_query("quads"), config, deadline_s=0.35)

        assert [t for t, _ in retriever.calls] == [0.3]
        assert result.status is RetrievalStatus.DEADLINE_EXCEEDED
        assert result.chunk_ids == ["quads-1"]
        assert result.attempts[-1].skipped
        assert result.attempts[-1].state is FallbackState.RELAXED

    @pytest.mark.asyncio
    async def test_attempt_cut_off(self, coaching_store, make_query, config):
        """An attempt running past the deadline is abandoned."""
        retriever = StubRetriever({0.3: outcome(("quads-1", 0.95))}, delays={0.3: 2.0})
        controller = ProgressiveFallbackController(retriever, coaching_store)

        result = await controller.retrieve_with_fallback(make_query("quads"), config, deadline_s=0.1)

        assert result.status is RetrievalStatus.DEADLINE_EXCEEDED
        assert result.is_empty
        assert len(result.attempts) == 1
        assert not result.attempts[0].skipped

    @pytest.mark.asyncio
    async def test_best_attempt_returned(self, coaching_store, make_query, config):
        """The attempt with most candidates so far wins when the deadline hits."""
        retriever = StubRetriever(
            {
                0.3: outcome(("quads-1", 0.95)),
                0.2: outcome(("quads-1", 0.95), ("quads-2", 0.8)),
                0.1: outcome(("quads-1", 0.95), ("quads-2", 0.8), ("reps-1", 0.15)),
            },
            delays={0.1: 2.0},
        )
        controller = ProgressiveFallbackController(retriever, coaching_store)

        result = await controller.retrieve_with_fallback(make_query("quads"), config, deadline_s=0.3)

        assert result.status is RetrievalStatus.DEADLINE_EXCEEDED
        assert result.threshold_used == 0.2
        assert result.chunk_ids == ["quads-1", "quads-2"]

    @pytest.mark.asyncio
    async def test_stricter_attempt_wins_ties(self, coaching_store, make_query, config):
        retriever = StubRetriever(
            {
                0.3: outcome(("quads-1", 0.95), ("quads-2", 0.8)),
                0.2: outcome(("principles-1", 0.6), ("reps-1", 0.25)),
            },
            delays={0.1: 2.0},
        )
        controller = ProgressiveFallbackController(retriever, coaching_store)

        result = await controller.retrieve_with_fallback(make_query("quads"), config, deadline_s=0.3)

        assert result.threshold_used == 0.3
        assert result.chunk_ids == ["quads-1", "quads-2"]

    @pytest.mark.asyncio
    async def test_zero_deadline(self, coaching_store, make_query, config):
        retriever = StubRetriever({0.3: outcome(("quads-1", 0.95))})
        controller = ProgressiveFallbackController(retriever, coaching_store)

        result = await controller.retrieve_with_fallback(make_query("quads"), config, deadline_s=0.0)

        assert retriever.calls == []
        assert result.status is RetrievalStatus.DEADLINE_EXCEEDED
        assert result.attempts[0].skipped
