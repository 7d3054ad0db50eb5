"""
In-Memory Vector Store
======================

``VectorStore`` backed by a Python list, for tests, small corpora and
exported snapshots of the knowledge base.

Example:
    >>> store = InMemoryVectorStore.from_records([
    ...     {"id": "c1", "source_id": "k1", "source_title": "Rep ranges",
    ...      "text": "Use 5-10 reps", "vector": [0.1, 0.9],
    ...      "categories": ["hypertrophy_principles"]},
    ... ])
    >>> len(store)
    1
"""

from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional

import structlog

from kbrag.retrieval.models import Chunk
from kbrag.storage.base import VectorStore, matches_categories

log = structlog.get_logger()


class InMemoryVectorStore(VectorStore):
    """
    List-backed corpus preserving insertion order.

    Chunk ids must be unique. Vector dimensions are not checked here: a
    mismatched vector surfaces as ``DimensionMismatch`` at search time.
    """

    def __init__(self, chunks: Optional[Iterable[Chunk]] = None):
        self._chunks: List[Chunk] = []
        self._by_id: Dict[str, Chunk] = {}
        for chunk in chunks or []:
            self.add(chunk)

    @classmethod
    def from_records(cls, records: Iterable[Mapping[str, Any]]) -> "InMemoryVectorStore":
        """Build a store from plain dicts (e.g. a JSON export)."""
        chunks = []
        for record in records:
            vector = record.get("vector")
            chunks.append(Chunk(
                id=str(record["id"]),
                source_id=str(record["source_id"]),
                source_title=record.get("source_title", ""),
                text=record.get("text", ""),
                ordinal=int(record.get("ordinal", 0)),
                vector=tuple(vector) if vector is not None else None,
                categories=frozenset(record.get("categories") or ()),
            ))
        store = cls(chunks)
        log.info("In-memory store loaded", chunks=len(store), embedded=store.embedded_count)
        return store

    def add(self, chunk: Chunk) -> None:
        if chunk.id in self._by_id:
            raise ValueError(f"Duplicate chunk id: {chunk.id}")
        self._chunks.append(chunk)
        self._by_id[chunk.id] = chunk

    def __len__(self) -> int:
        return len(self._chunks)

    @property
    def embedded_count(self) -> int:
        return sum(1 for c in self._chunks if c.has_vector)

    def iter_batches(
        self,
        category_filter: Optional[Iterable[str]] = None,
        batch_size: int = 50,
    ) -> Iterator[List[Chunk]]:
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        wanted = set(category_filter) if category_filter is not None else None
        batch: List[Chunk] = []
        for chunk in self._chunks:
            if not matches_categories(chunk, wanted):
                continue
            batch.append(chunk)
            if len(batch) == batch_size:
                yield batch
                batch = []
        if batch:
            yield batch

    def iter_keyword_chunks(
        self,
        category_filter: Optional[Iterable[str]] = None,
    ) -> Iterator[Chunk]:
        wanted = set(category_filter) if category_filter is not None else None
        for chunk in self._chunks:
            if matches_categories(chunk, wanted):
                yield chunk

    def get_chunks(self, ids: Iterable[str]) -> Dict[str, Chunk]:
        return {i: self._by_id[i] for i in ids if i in self._by_id}

    def chunks_by_source(self, source_ids: Iterable[str]) -> List[Chunk]:
        wanted = set(source_ids)
        return [c for c in self._chunks if c.source_id in wanted]
