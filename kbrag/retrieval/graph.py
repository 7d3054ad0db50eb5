"""
Graph Expander
==============

Best-effort candidate expansion through the relationship graph.

For each query entity (muscle or exercise name):
- chunks of documents the entity was extracted from score 1.0
- chunks of documents linked to a one-hop neighbour score ``graph_decay``
- a chunk reached several ways keeps its best score

The backend is optional. Without one the expander returns no candidates.
Backend failures are raised as ``SignalUnavailable`` so the caller can
record the graph signal as degraded.
"""

import asyncio
from concurrent.futures import Executor
from typing import Dict, List, Optional, Sequence

import structlog

from kbrag.config.retrieval import RetrievalConfig
from kbrag.retrieval.errors import SignalUnavailable
from kbrag.retrieval.models import ScoredCandidate, SourceSignal
from kbrag.storage.base import VectorStore
from kbrag.storage.graph.base import GraphBackend

log = structlog.get_logger()


class GraphExpander:
    """
    One-hop entity expansion over an optional ``GraphBackend``.

    Example:
        >>> expander = GraphExpander(store, backend=InMemoryGraphBackend())
        >>> await expander.expand(["squat"], config)
        [<ScoredCandidate(graph:c7, score=1.000, rank=0)>, ...]
    """

    def __init__(
        self,
        store: VectorStore,
        backend: Optional[GraphBackend] = None,
        executor: Optional[Executor] = None,
    ):
        self.store = store
        self.backend = backend
        self.executor = executor

    @property
    def available(self) -> bool:
        return self.backend is not None

    async def expand(
        self,
        entities: Sequence[str],
        config: Optional[RetrievalConfig] = None,
    ) -> List[ScoredCandidate]:
        """
        Return graph candidates for ``entities``.

        Empty without a backend, with ``graph_enabled=False`` or without entities.

        Raises:
            SignalUnavailable: the backend or the chunk lookup failed
        """
        config = config or RetrievalConfig()
        if self.backend is None or not config.graph_enabled or not entities:
            return []

        loop = asyncio.get_running_loop()
        try:
            candidates = await loop.run_in_executor(
                self.executor, self._expand_sync, list(entities), config
            )
        except Exception as e:
            raise SignalUnavailable(SourceSignal.GRAPH.value, f"{type(e).__name__}: {e}") from e

        log.debug("Graph expansion complete", entities=list(entities), returned=len(candidates))
        return candidates

    def _expand_sync(self, entities: List[str], config: RetrievalConfig) -> List[ScoredCandidate]:
        source_scores: Dict[str, float] = {}
        sources_cache: Dict[str, List[str]] = {}

        def sources(entity: str) -> List[str]:
            if entity not in sources_cache:
                sources_cache[entity] = self.backend.sources_for(entity)
            return sources_cache[entity]

        def credit(source_id: str, score: float):
            if score > source_scores.get(source_id, 0.0):
                source_scores[source_id] = score

        for entity in entities:
            for source_id in sources(entity):
                credit(source_id, 1.0)
            if config.graph_decay <= 0.0:
                continue
            for neighbor in self.backend.neighbors(entity):
                for source_id in sources(neighbor):
                    credit(source_id, config.graph_decay)

        if not source_scores:
            return []

        hits = {}
        for chunk in self.store.chunks_by_source(source_scores.keys()):
            if chunk.id not in hits:
                hits[chunk.id] = (source_scores[chunk.source_id], chunk.ordinal, chunk.id)

        ordered = sorted(hits.values(), key=lambda h: (-h[0], h[1], h[2]))[:config.max_chunks]
        return [
            ScoredCandidate(
                chunk_id=chunk_id,
                score=score,
                source_signal=SourceSignal.GRAPH,
                rank=rank,
                ordinal=ordinal,
            )
            for rank, (score, ordinal, chunk_id) in enumerate(ordered)
        ]
