"""
Progressive Fallback Controller
===============================

Retries hybrid retrieval with relaxed thresholds when the result is thin.

State machine:

    Strict ──thin──> Relaxed[1] ──thin──> ... ──thin──> Relaxed[n] ──thin──> Exhausted
       │                 │                                   │
       └── acceptable ───┴────────────── acceptable ─────────┴──> assemble

- Strict uses ``config.similarity_threshold``; Relaxed[i] uses
  ``config.fallback_steps[i-1]`` (strictly decreasing)
- Thin means fewer than ``min(min_acceptable_results, max_chunks)`` merged
  candidates, or, with ``require_high_relevance``, none at or above
  ``high_relevance_threshold``
- Exhausted returns the last, most relaxed attempt, possibly empty
- At most ``len(fallback_steps) + 1`` hybrid calls; no state survives a call

Every attempt is logged as a ``fallback_transition`` event and recorded in
``RetrievalResult.attempts`` with its threshold and candidate count, the
audit trail used to tune thresholds.

With a deadline, attempts run under the remaining time. A step is skipped
when the remaining time is shorter than the previous attempt took; the best
attempt so far is then returned with status ``deadline_exceeded``.
"""

import asyncio
import time
from concurrent.futures import Executor
from typing import List, Optional, Tuple

import structlog

from kbrag.config.retrieval import RetrievalConfig
from kbrag.retrieval.assembler import ContextAssembler, ContextBudget
from kbrag.retrieval.hybrid import HybridRetriever
from kbrag.retrieval.models import (
    FallbackAttempt,
    FallbackState,
    HybridOutcome,
    MergedCandidate,
    Query,
    RetrievalResult,
    RetrievalStatus,
)
from kbrag.storage.base import VectorStore

log = structlog.get_logger()


def fallback_plan(config: RetrievalConfig) -> List[Tuple[FallbackState, int, float]]:
    """Ordered (state, step, threshold) attempts for one call."""
    plan = [(FallbackState.STRICT, 0, config.similarity_threshold)]
    plan.extend(
        (FallbackState.RELAXED, i, threshold)
        for i, threshold in enumerate(config.fallback_steps, start=1)
    )
    return plan


def high_relevance_count(candidates: List[MergedCandidate], config: RetrievalConfig) -> int:
    return sum(1 for c in candidates if c.score >= config.high_relevance_threshold)


def required_results(config: RetrievalConfig) -> int:
    """Candidates needed to accept an attempt; merges never return more than max_chunks."""
    return min(config.min_acceptable_results, config.max_chunks)


def is_thin(candidates: List[MergedCandidate], config: RetrievalConfig) -> bool:
    if len(candidates) < required_results(config):
        return True
    if config.require_high_relevance and high_relevance_count(candidates, config) == 0:
        return True
    return False


class ProgressiveFallbackController:
    """
    Sequential threshold relaxation around a ``HybridRetriever``.

    Example:
        >>> controller = ProgressiveFallbackController(retriever, store)
        >>> result = await controller.retrieve_with_fallback(query, config)
        >>> [(a.state.value, a.threshold, a.candidate_count) for a in result.attempts]
        [('strict', 0.3, 1), ('relaxed', 0.2, 4)]
    """

    def __init__(
        self,
        retriever: HybridRetriever,
        store: VectorStore,
        assembler: Optional[ContextAssembler] = None,
        executor: Optional[Executor] = None,
    ):
        self.retriever = retriever
        self.store = store
        self.assembler = assembler or ContextAssembler()
        self.executor = executor

    async def retrieve_with_fallback(
        self,
        query: Query,
        config: RetrievalConfig,
        deadline_s: Optional[float] = None,
    ) -> RetrievalResult:
        """
        Retrieve with progressive relaxation, then assemble the context.

        Args:
            query: Query to retrieve for
            config: Immutable configuration snapshot
            deadline_s: Overall time budget in seconds (None = no deadline)

        Raises:
            DimensionMismatch: propagated from the vector signal
        """
        started = time.monotonic()
        deadline_at = started + deadline_s if deadline_s is not None else None

        # Route once; every attempt sees the same intent
        if query.intent is None:
            query = query.with_intent(self.retriever.router.classify(query, config))

        attempts: List[FallbackAttempt] = []
        best: Optional[Tuple[HybridOutcome, float]] = None
        last: Optional[Tuple[HybridOutcome, float]] = None
        deadline_hit = False
        accepted = False
        last_duration = 0.0

        for state, step, threshold in fallback_plan(config):
            remaining = None
            if deadline_at is not None:
                remaining = deadline_at - time.monotonic()
                if remaining <= 0 or (attempts and remaining < last_duration):
                    attempts.append(FallbackAttempt(
                        state=state, step=step, threshold=threshold, skipped=True
                    ))
                    log.warning(
                        "fallback_transition",
                        state=state.value,
                        step=step,
                        threshold=threshold,
                        skipped=True,
                        remaining_ms=round(max(remaining, 0.0) * 1000, 2),
                    )
                    deadline_hit = True
                    break

            attempt_config = config.with_threshold(threshold)
            attempt_started = time.monotonic()
            try:
                if remaining is None:
                    outcome = await self.retriever.retrieve(query, attempt_config)
                else:
                    outcome = await asyncio.wait_for(
                        self.retriever.retrieve(query, attempt_config), timeout=remaining
                    )
            except asyncio.TimeoutError:
                elapsed_ms = (time.monotonic() - attempt_started) * 1000
                attempts.append(FallbackAttempt(
                    state=state, step=step, threshold=threshold, elapsed_ms=elapsed_ms
                ))
                log.warning(
                    "fallback_transition",
                    state=state.value,
                    step=step,
                    threshold=threshold,
                    deadline_exceeded=True,
                    elapsed_ms=round(elapsed_ms, 2),
                )
                deadline_hit = True
                break

            last_duration = time.monotonic() - attempt_started
            count = len(outcome.candidates)
            high = high_relevance_count(outcome.candidates, config)
            accepted = not is_thin(outcome.candidates, config)
            attempts.append(FallbackAttempt(
                state=state,
                step=step,
                threshold=threshold,
                candidate_count=count,
                high_relevance_count=high,
                accepted=accepted,
                elapsed_ms=last_duration * 1000,
            ))
            log.info(
                "fallback_transition",
                state=state.value,
                step=step,
                threshold=threshold,
                candidates=count,
                high_relevance=high,
                accepted=accepted,
            )

            last = (outcome, threshold)
            if best is None or count > len(best[0].candidates):
                best = (outcome, threshold)
            if accepted:
                break

        if not accepted and not deadline_hit:
            log.warning(
                "fallback_transition",
                state=FallbackState.EXHAUSTED.value,
                attempts=len(attempts),
                candidates=len(last[0].candidates) if last else 0,
            )

        chosen = best if deadline_hit else last
        result = await self._assemble(chosen, config)
        result.attempts = attempts
        result.routing = query.intent
        if deadline_hit:
            result.status = RetrievalStatus.DEADLINE_EXCEEDED
        result.elapsed_ms = (time.monotonic() - started) * 1000
        return result

    async def _assemble(
        self,
        chosen: Optional[Tuple[HybridOutcome, float]],
        config: RetrievalConfig,
    ) -> RetrievalResult:
        if chosen is None:
            return RetrievalResult(status=RetrievalStatus.EMPTY)

        outcome, threshold = chosen
        ids = [c.chunk_id for c in outcome.candidates]
        lookup = {}
        if ids:
            loop = asyncio.get_running_loop()
            lookup = await loop.run_in_executor(self.executor, self.store.get_chunks, ids)

        result = self.assembler.assemble(
            outcome.candidates, lookup, ContextBudget.from_config(config)
        )
        result.threshold_used = threshold
        result.degraded_signals = dict(outcome.degraded_signals)
        result.vector_stats = outcome.vector_stats
        return result
