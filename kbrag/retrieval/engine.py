"""
Knowledge Retrieval Engine
==========================

Facade wiring store, graph, router, signals, fallback and assembly.

Usage:
    from kbrag import KnowledgeRetrievalEngine, InMemoryVectorStore

    store = InMemoryVectorStore.from_records(records)
    async with KnowledgeRetrievalEngine(store) as engine:
        result = await engine.retrieve(
            "How many sets per week for quads?",
            query_vector=embedding,
        )
        context = "\\n\\n".join(result.texts())

The configuration snapshot is read once at the start of every call and the
same immutable object flows through every stage. Concurrent calls share no
mutable state besides the scoring thread pool.
"""

import time
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable, Optional, Sequence

import numpy as np
import structlog

from kbrag.config.environments import EngineEnvironment
from kbrag.config.retrieval import RetrievalConfig
from kbrag.config.store import ConfigStore, get_config_store
from kbrag.retrieval.batch_search import BatchSimilaritySearch
from kbrag.retrieval.fallback import ProgressiveFallbackController
from kbrag.retrieval.graph import GraphExpander
from kbrag.retrieval.hybrid import HybridRetriever, ScoreCombiner
from kbrag.retrieval.keyword import KeywordMatcher
from kbrag.retrieval.models import Query, RetrievalResult
from kbrag.retrieval.router import CategoryRouter
from kbrag.storage.base import VectorStore
from kbrag.storage.graph.base import GraphBackend

log = structlog.get_logger()


class KnowledgeRetrievalEngine:
    """
    Entry point of the retrieval library.

    Args:
        store: Corpus access
        graph: Optional relationship graph; None disables graph expansion
        config_store: Source of configuration snapshots (default: process singleton)
        environment: Process settings (thread pool size)
        known_categories: Corpus categories the router may match literally
        combiner: Score combiner overriding ``config.merge_strategy``
    """

    def __init__(
        self,
        store: VectorStore,
        graph: Optional[GraphBackend] = None,
        config_store: Optional[ConfigStore] = None,
        environment: Optional[EngineEnvironment] = None,
        known_categories: Optional[Iterable[str]] = None,
        combiner: Optional[ScoreCombiner] = None,
    ):
        self.store = store
        self.environment = environment or EngineEnvironment()
        self.config_store = config_store or get_config_store()

        workers = self.environment.max_workers
        # Scoring workers plus batch fetch, keyword and graph lookups
        self._executor = ThreadPoolExecutor(
            max_workers=workers + 3,
            thread_name_prefix="kbrag",
        )
        self.search = BatchSimilaritySearch(store, executor=self._executor, max_workers=workers)
        self.keyword = KeywordMatcher(store, executor=self._executor)
        self.graph = GraphExpander(store, backend=graph, executor=self._executor)
        self.router = CategoryRouter(
            config=self.config_store.snapshot(),
            known_categories=known_categories,
        )
        self.retriever = HybridRetriever(
            search=self.search,
            keyword=self.keyword,
            graph=self.graph,
            router=self.router,
            combiner=combiner,
        )
        self.controller = ProgressiveFallbackController(
            self.retriever, store, executor=self._executor
        )

        log.info(
            "KnowledgeRetrievalEngine initialized",
            max_workers=workers,
            graph=graph is not None,
        )

    async def retrieve(
        self,
        query_text: str,
        query_vector: Sequence[float],
        config: Optional[RetrievalConfig] = None,
        topics: Optional[Sequence[str]] = None,
        deadline_s: Optional[float] = None,
    ) -> RetrievalResult:
        """
        Retrieve ranked, bounded context for a query.

        Args:
            query_text: Raw user text
            query_vector: Embedding of ``query_text`` from the external embedder
            config: Explicit configuration (default: current ConfigStore snapshot)
            topics: Optional topic hints (muscles or category ids)
            deadline_s: Overall time budget in seconds

        Returns:
            RetrievalResult, possibly empty; ``status`` tells "nothing
            relevant" apart from "deadline exceeded"

        Raises:
            ValueError: the query vector is empty or not finite
            DimensionMismatch: the corpus holds a vector of another dimension
        """
        snapshot = config or self.config_store.snapshot()
        vector = tuple(float(v) for v in query_vector)
        if not vector or not np.all(np.isfinite(vector)):
            raise ValueError("query_vector must be non-empty and finite")

        query = Query(text=query_text, vector=vector, topics=tuple(topics or ()))
        started = time.perf_counter()
        result = await self.controller.retrieve_with_fallback(query, snapshot, deadline_s)

        log.info(
            "Knowledge retrieval complete",
            status=result.status.value,
            chunks=len(result.chunks),
            chars=result.total_chars,
            threshold=result.threshold_used,
            attempts=len(result.attempts),
            degraded=sorted(result.degraded_signals),
            elapsed_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        return result

    def close(self) -> None:
        """Shut down the worker pool."""
        self._executor.shutdown(wait=False, cancel_futures=True)

    async def __aenter__(self) -> "KnowledgeRetrievalEngine":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()
