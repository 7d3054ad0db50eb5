"""
Hybrid Retriever
================

Runs the vector, keyword and graph signals for one query and merges them
into a single ranked candidate list.

Core algorithm:
1. Route the query once (CategoryRouter)
2. Vector pipeline: search restricted to the priority categories; only if
   that yields fewer than ``max_chunks`` results, top up with a
   pass over the chunks outside the priority categories (those were
   already scored against the same threshold)
3. Keyword matching and graph expansion run concurrently with (2), each
   under its own timeout
4. Merge by chunk id: merged score = combiner(signal scores), by default
   max(vector, keyword_weight * keyword, graph_weight * graph)
5. Sort by merged score desc, vector rank asc, ordinal asc, chunk id asc
6. Truncate to ``max_chunks``

Failure semantics: a keyword/graph failure or any signal timeout is logged
and that signal contributes nothing. ``DimensionMismatch`` and
``MergeInvariantError`` propagate and cancel the sibling signals.
"""

import asyncio
import math
import threading
import time
from typing import Callable, Dict, List, Optional, Tuple

import structlog

from kbrag.config.retrieval import MergeStrategy, RetrievalConfig
from kbrag.retrieval.batch_search import BatchSimilaritySearch
from kbrag.retrieval.errors import DimensionMismatch, MergeInvariantError, SignalUnavailable
from kbrag.retrieval.graph import GraphExpander
from kbrag.retrieval.keyword import KeywordMatcher, extract_terms
from kbrag.retrieval.models import (
    SIGNAL_ORDER,
    HybridOutcome,
    MergedCandidate,
    Query,
    RoutingDecision,
    ScoredCandidate,
    SearchStats,
    SourceSignal,
    VectorSearchOutcome,
)
from kbrag.retrieval.router import CategoryRouter

log = structlog.get_logger()


# (raw signal scores, config) -> (merged score, winning signal)
ScoreCombiner = Callable[[Dict[SourceSignal, float], RetrievalConfig], Tuple[float, SourceSignal]]

FATAL_ERRORS = (DimensionMismatch, MergeInvariantError)


def weighted_scores(
    signal_scores: Dict[SourceSignal, float],
    config: RetrievalConfig,
) -> Dict[SourceSignal, float]:
    """Apply per-signal weights; vector scores are used as they are."""
    weights = {
        SourceSignal.VECTOR: 1.0,
        SourceSignal.KEYWORD: config.keyword_weight,
        SourceSignal.GRAPH: config.graph_weight,
    }
    return {signal: weights[signal] * score for signal, score in signal_scores.items()}


def _strongest(weighted: Dict[SourceSignal, float]) -> SourceSignal:
    # Ties go to the earlier signal in SIGNAL_ORDER
    return max((s for s in SIGNAL_ORDER if s in weighted), key=lambda s: weighted[s])


def max_combiner(
    signal_scores: Dict[SourceSignal, float],
    config: RetrievalConfig,
) -> Tuple[float, SourceSignal]:
    """Best weighted signal wins; signals are not independent evidence."""
    weighted = weighted_scores(signal_scores, config)
    winner = _strongest(weighted)
    return weighted[winner], winner


def sum_combiner(
    signal_scores: Dict[SourceSignal, float],
    config: RetrievalConfig,
) -> Tuple[float, SourceSignal]:
    """Sum of weighted signals; the strongest one is reported as winner."""
    weighted = weighted_scores(signal_scores, config)
    return sum(weighted.values()), _strongest(weighted)


SCORE_COMBINERS: Dict[MergeStrategy, ScoreCombiner] = {
    MergeStrategy.MAX: max_combiner,
    MergeStrategy.SUM: sum_combiner,
}


def merge_candidates(
    signal_lists: Dict[SourceSignal, List[ScoredCandidate]],
    config: RetrievalConfig,
    combiner: Optional[ScoreCombiner] = None,
) -> List[MergedCandidate]:
    """
    Group candidates by chunk id, combine scores, rank and truncate.

    Raises:
        MergeInvariantError: a signal list contains the same chunk twice
    """
    combine = combiner or SCORE_COMBINERS[config.merge_strategy]
    scores: Dict[str, Dict[SourceSignal, float]] = {}
    vector_rank: Dict[str, int] = {}
    ordinals: Dict[str, int] = {}

    for signal in SIGNAL_ORDER:
        seen = set()
        for candidate in signal_lists.get(signal, ()):
            if candidate.chunk_id in seen:
                raise MergeInvariantError(signal.value, candidate.chunk_id)
            seen.add(candidate.chunk_id)
            scores.setdefault(candidate.chunk_id, {})[signal] = candidate.score
            ordinals.setdefault(candidate.chunk_id, candidate.ordinal)
            if signal is SourceSignal.VECTOR:
                vector_rank[candidate.chunk_id] = candidate.rank

    merged = []
    for chunk_id, signal_scores in scores.items():
        score, winner = combine(signal_scores, config)
        merged.append(MergedCandidate(
            chunk_id=chunk_id,
            score=score,
            signal_scores=signal_scores,
            winning_signal=winner,
            vector_rank=vector_rank.get(chunk_id),
            ordinal=ordinals[chunk_id],
        ))

    merged.sort(key=lambda m: (
        -m.score,
        m.vector_rank if m.vector_rank is not None else math.inf,
        m.ordinal,
        m.chunk_id,
    ))
    return merged[:config.max_chunks]


class HybridRetriever:
    """
    Orchestrates routing, the three signals and the merge.

    Flow:
        Query ──> CategoryRouter ──> priority categories, entities
          │
          ├── vector: priority pass ──(< max_chunks?)──> top-up pass
          ├── keyword: term coverage
          └── graph: one-hop entity expansion (optional)
                          ↓
                  merge / dedup / rank / truncate

    Example:
        >>> retriever = HybridRetriever(search, keyword, graph, router)
        >>> outcome = await retriever.retrieve(query, config)
        >>> [c.chunk_id for c in outcome.candidates]
    """

    def __init__(
        self,
        search: BatchSimilaritySearch,
        keyword: KeywordMatcher,
        graph: Optional[GraphExpander] = None,
        router: Optional[CategoryRouter] = None,
        combiner: Optional[ScoreCombiner] = None,
    ):
        self.search = search
        self.keyword = keyword
        self.graph = graph
        self.router = router or CategoryRouter()
        self.combiner = combiner

    async def _vector_pipeline(
        self,
        query: Query,
        routing: RoutingDecision,
        config: RetrievalConfig,
        cancel_token: threading.Event,
    ) -> VectorSearchOutcome:
        priority = await self.search.search(
            query.vector,
            top_k=config.max_chunks,
            threshold=config.similarity_threshold,
            category_filter=routing.priority_categories,
            batch_size=config.batch_size,
            cancel_token=cancel_token,
        )
        candidates = list(priority.candidates)
        stats = priority.stats
        if len(candidates) >= config.max_chunks:
            return VectorSearchOutcome(candidates=candidates, stats=stats)

        topup = await self.search.search(
            query.vector,
            top_k=config.max_chunks - len(candidates),
            threshold=config.similarity_threshold,
            category_filter=None,
            exclude_ids={c.chunk_id for c in candidates},
            exclude_categories=routing.priority_categories,
            batch_size=config.batch_size,
            cancel_token=cancel_token,
        )
        log.debug(
            "Vector top-up pass",
            priority_found=len(candidates),
            topup_found=len(topup.candidates),
        )
        offset = len(candidates)
        for c in topup.candidates:
            candidates.append(ScoredCandidate(
                chunk_id=c.chunk_id,
                score=c.score * config.category_weight,
                source_signal=SourceSignal.VECTOR,
                rank=offset + c.rank,
                ordinal=c.ordinal,
            ))
        return VectorSearchOutcome(candidates=candidates, stats=stats.add(topup.stats))

    async def retrieve(
        self,
        query: Query,
        config: RetrievalConfig,
        cancel_token: Optional[threading.Event] = None,
    ) -> HybridOutcome:
        """
        Run all signals for ``query`` and merge them.

        Args:
            query: Query with text and embedding; a precomputed ``intent`` is reused
            config: Immutable configuration snapshot for this call
            cancel_token: Shared with batch scoring workers; set on cancellation

        Raises:
            DimensionMismatch: corrupted corpus or embedder version skew
            MergeInvariantError: a signal emitted duplicate chunk ids
        """
        started = time.perf_counter()
        routing = query.intent or self.router.classify(query, config)
        token = cancel_token or threading.Event()

        timeouts = {
            SourceSignal.VECTOR: config.vector_timeout_s,
            SourceSignal.KEYWORD: config.keyword_timeout_s,
            SourceSignal.GRAPH: config.graph_timeout_s,
        }
        coros = {
            SourceSignal.VECTOR: self._vector_pipeline(query, routing, config, token),
            SourceSignal.KEYWORD: self.keyword.search(
                extract_terms(query.text), top_k=config.effective_keyword_top_k
            ),
        }
        if (
            self.graph is not None
            and self.graph.available
            and config.graph_enabled
            and routing.entities
        ):
            coros[SourceSignal.GRAPH] = self.graph.expand(routing.entities, config)

        tasks = {
            signal: asyncio.ensure_future(asyncio.wait_for(coro, timeout=timeouts[signal]))
            for signal, coro in coros.items()
        }

        pending = set(tasks.values())
        try:
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_EXCEPTION)
                for task in done:
                    error = None if task.cancelled() else task.exception()
                    if isinstance(error, FATAL_ERRORS):
                        raise error
        except (Exception, asyncio.CancelledError):
            token.set()
            for task in tasks.values():
                if not task.done():
                    task.cancel()
            raise

        signal_lists: Dict[SourceSignal, List[ScoredCandidate]] = {}
        degraded: Dict[str, str] = {}
        vector_stats = SearchStats()
        for signal, task in tasks.items():
            error = task.exception()
            if error is None:
                result = task.result()
                if isinstance(result, VectorSearchOutcome):
                    signal_lists[signal] = result.candidates
                    vector_stats = result.stats
                else:
                    signal_lists[signal] = result
                continue
            if isinstance(error, asyncio.TimeoutError):
                reason = f"timeout after {timeouts[signal]}s"
            elif isinstance(error, SignalUnavailable):
                reason = error.reason
            else:
                reason = f"{type(error).__name__}: {error}"
            degraded[signal.value] = reason
            log.warning("signal_unavailable", signal=signal.value, reason=reason)

        merged = merge_candidates(signal_lists, config, self.combiner)

        log.info(
            "Hybrid retrieval",
            threshold=config.similarity_threshold,
            priority=list(routing.priority_categories),
            vector=len(signal_lists.get(SourceSignal.VECTOR, ())),
            keyword=len(signal_lists.get(SourceSignal.KEYWORD, ())),
            graph=len(signal_lists.get(SourceSignal.GRAPH, ())),
            merged=len(merged),
            degraded=sorted(degraded),
            elapsed_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        return HybridOutcome(
            candidates=merged,
            routing=routing,
            degraded_signals=degraded,
            vector_stats=vector_stats,
        )
