"""
Batch Similarity Search
=======================

Dense-vector search over the corpus in bounded batches.

Flow:
    VectorStore.iter_batches ──> batch 0 ──┐
                                 batch 1 ──┼─> thread pool (cosine per batch)
                                 batch 2 ──┘             │
                                                         ↓
                     single-threaded reduction: filter >= threshold,
                     sort (score desc, ordinal asc, id asc), truncate top_k

At most ``max_workers`` batches are in flight, so memory stays bounded
by ``max_workers * batch_size`` chunks whatever the corpus size.

Partial-batch semantics for ``DimensionMismatch``: once a batch fails, no
further batches are fetched and the in-flight ones are drained. The error
with the lowest batch index is raised; its ``partial_candidates`` hold the
reduced candidates of every batch before it, which the bad chunk cannot
affect.
"""

import asyncio
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import structlog

from kbrag.retrieval.errors import DimensionMismatch
from kbrag.retrieval.models import (
    Chunk,
    ScoredCandidate,
    SearchStats,
    SourceSignal,
    VectorSearchOutcome,
)
from kbrag.retrieval.scorer import as_vector, batch_cosine, is_well_formed
from kbrag.storage.base import VectorStore

log = structlog.get_logger()


@dataclass
class _BatchResult:
    index: int
    hits: List[Tuple[float, int, str]] = field(default_factory=list)
    stats: SearchStats = field(default_factory=SearchStats)


def score_batch(
    index: int,
    batch: Sequence[Chunk],
    query: np.ndarray,
    threshold: float,
    exclude_ids: FrozenSet[str],
    cancel_token: threading.Event,
    exclude_categories: FrozenSet[str] = frozenset(),
) -> _BatchResult:
    """
    Score one batch against the query (runs in a worker thread).

    Raises:
        DimensionMismatch: a chunk vector has a different length than the query
    """
    result = _BatchResult(index=index)
    if cancel_token.is_set():
        return result

    result.stats.batches = 1
    dim = query.shape[0]
    rows = []
    kept: List[Chunk] = []
    for chunk in batch:
        if chunk.id in exclude_ids or not chunk.categories.isdisjoint(exclude_categories):
            continue
        result.stats.scanned += 1
        vector = chunk.vector
        if vector is None:
            result.stats.skipped_unembedded += 1
            continue
        if len(vector) == 0:
            result.stats.skipped_malformed += 1
            continue
        if len(vector) != dim:
            raise DimensionMismatch(expected=dim, actual=len(vector), chunk_id=chunk.id)
        if not is_well_formed(vector):
            result.stats.skipped_malformed += 1
            continue
        rows.append(vector)
        kept.append(chunk)

    if not kept:
        return result

    scores = batch_cosine(query, np.asarray(rows, dtype=np.float64))
    result.stats.scored = len(kept)
    for chunk, score in zip(kept, scores):
        score = float(score)
        if score >= threshold:
            result.hits.append((score, chunk.ordinal, chunk.id))
    result.stats.matched = len(result.hits)
    return result


def reduce_hits(results: Iterable[_BatchResult], top_k: int) -> List[ScoredCandidate]:
    """Merge batch hits deterministically: score desc, ordinal asc, id asc."""
    hits = [hit for r in results for hit in r.hits]
    hits.sort(key=lambda h: (-h[0], h[1], h[2]))
    return [
        ScoredCandidate(
            chunk_id=chunk_id,
            score=score,
            source_signal=SourceSignal.VECTOR,
            rank=rank,
            ordinal=ordinal,
        )
        for rank, (score, ordinal, chunk_id) in enumerate(hits[:top_k])
    ]


class BatchSimilaritySearch:
    """
    Parallel batch scan of the vector-bearing corpus.

    Example:
        >>> search = BatchSimilaritySearch(store, max_workers=4)
        >>> outcome = await search.search(query_vector, top_k=5, threshold=0.3)
        >>> [c.chunk_id for c in outcome.candidates]
        ['c12', 'c3', 'c40']
    """

    def __init__(
        self,
        store: VectorStore,
        executor: Optional[ThreadPoolExecutor] = None,
        max_workers: int = 4,
        batch_size: int = 50,
    ):
        if max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}")
        self.store = store
        self.max_workers = max_workers
        self.batch_size = batch_size
        self._executor = executor
        self._owns_executor = executor is None

    @property
    def executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            # One extra thread fetches batches while max_workers batches are scored
            self._executor = ThreadPoolExecutor(
                max_workers=self.max_workers + 1,
                thread_name_prefix="kbrag-score",
            )
        return self._executor

    def close(self) -> None:
        """Shut down the thread pool if this instance created it."""
        if self._owns_executor and self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None

    async def search(
        self,
        query_vector: Sequence[float],
        top_k: int,
        threshold: float,
        category_filter: Optional[Iterable[str]] = None,
        exclude_ids: Optional[Iterable[str]] = None,
        exclude_categories: Optional[Iterable[str]] = None,
        batch_size: Optional[int] = None,
        cancel_token: Optional[threading.Event] = None,
    ) -> VectorSearchOutcome:
        """
        Return up to ``top_k`` chunks scoring at least ``threshold``.

        Args:
            query_vector: Query embedding
            top_k: Maximum candidates returned
            threshold: Minimum cosine similarity
            category_filter: Restrict the scan to these categories (None = whole corpus)
            exclude_ids: Chunk ids to skip (e.g. already found by a previous pass)
            exclude_categories: Skip chunks in any of these categories (already
                scanned by a previous pass); they are not counted in the stats
            batch_size: Override of the configured batch size
            cancel_token: Set to stop workers from scoring further batches

        Raises:
            DimensionMismatch: a chunk vector has the wrong dimension
            ValueError: the query vector is empty or not finite
        """
        if top_k <= 0:
            return VectorSearchOutcome(candidates=[])

        query = as_vector(query_vector)
        if query.size == 0 or not np.all(np.isfinite(query)):
            raise ValueError("query vector must be non-empty and finite")

        started = time.perf_counter()
        size = batch_size or self.batch_size
        exclude = frozenset(exclude_ids or ())
        exclude_cats = frozenset(exclude_categories or ())
        token = cancel_token or threading.Event()
        categories = list(category_filter) if category_filter is not None else None

        loop = asyncio.get_running_loop()
        executor = self.executor
        batches = await loop.run_in_executor(
            executor, lambda: iter(self.store.iter_batches(categories, size))
        )

        pending: Dict[int, asyncio.Future] = {}
        completed: Dict[int, _BatchResult] = {}
        errors: Dict[int, DimensionMismatch] = {}
        next_index = 0
        exhausted = False

        try:
            while True:
                while not exhausted and not errors and len(pending) < self.max_workers:
                    if token.is_set():
                        exhausted = True
                        break
                    batch = await loop.run_in_executor(executor, next, batches, None)
                    if batch is None:
                        exhausted = True
                        break
                    pending[next_index] = loop.run_in_executor(
                        executor, score_batch,
                        next_index, batch, query, threshold, exclude, token, exclude_cats,
                    )
                    next_index += 1

                if not pending:
                    break

                done, _ = await asyncio.wait(
                    pending.values(), return_when=asyncio.FIRST_COMPLETED
                )
                for index in [i for i, f in pending.items() if f in done]:
                    future = pending.pop(index)
                    try:
                        completed[index] = future.result()
                    except DimensionMismatch as e:
                        errors[index] = e
        except asyncio.CancelledError:
            token.set()
            log.info("Batch search cancelled", batches_done=len(completed))
            raise
        finally:
            if pending:
                token.set()
                for future in pending.values():
                    future.cancel()

        if errors:
            first = min(errors)
            error = errors[first]
            error.partial_candidates = reduce_hits(
                (completed[i] for i in sorted(completed) if i < first), top_k
            )
            log.error(
                "Dimension mismatch during batch search",
                chunk_id=error.chunk_id,
                expected=error.expected,
                actual=error.actual,
                batch=first,
                partial=len(error.partial_candidates),
            )
            raise error

        ordered = [completed[i] for i in sorted(completed)]
        candidates = reduce_hits(ordered, top_k)
        stats = SearchStats()
        for r in ordered:
            stats = stats.add(r.stats)

        log.debug(
            "batch_search_complete",
            threshold=threshold,
            top_k=top_k,
            categories=categories,
            returned=len(candidates),
            elapsed_ms=round((time.perf_counter() - started) * 1000, 2),
            **stats.to_dict(),
        )
        return VectorSearchOutcome(candidates=candidates, stats=stats)
