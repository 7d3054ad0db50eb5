"""
Vector Store Interface
======================

Abstract read-only access to the chunk corpus.

Any backing store (relational database with a vector extension, flat file,
in-memory index) can serve the engine by implementing the three abstract
methods. Implementations are synchronous; the engine calls them from worker
threads, so they must be safe to call concurrently for reads.
"""

from abc import ABC, abstractmethod
from typing import Dict, Iterable, Iterator, List, Optional, Set

from kbrag.retrieval.models import Chunk


def matches_categories(chunk: Chunk, category_filter: Optional[Iterable[str]]) -> bool:
    """True when no filter is given or the chunk belongs to any filtered category."""
    if category_filter is None:
        return True
    wanted = category_filter if isinstance(category_filter, (set, frozenset)) else set(category_filter)
    return not chunk.categories.isdisjoint(wanted)


class VectorStore(ABC):
    """Read-only corpus of chunks with optional vectors."""

    @abstractmethod
    def iter_batches(
        self,
        category_filter: Optional[Iterable[str]] = None,
        batch_size: int = 50,
    ) -> Iterator[List[Chunk]]:
        """
        Stream chunks in batches of at most ``batch_size``.

        Batches must come in a stable order for an unchanged corpus.
        Unembedded chunks may be included; the search skips and counts them.
        """

    @abstractmethod
    def iter_keyword_chunks(
        self,
        category_filter: Optional[Iterable[str]] = None,
    ) -> Iterator[Chunk]:
        """Stream every chunk (embedded or not) for lexical matching."""

    @abstractmethod
    def get_chunks(self, ids: Iterable[str]) -> Dict[str, Chunk]:
        """Resolve chunk ids; unknown ids are absent from the result."""

    def chunks_by_source(self, source_ids: Iterable[str]) -> List[Chunk]:
        """Chunks belonging to any of the given parent documents."""
        wanted = set(source_ids)
        if not wanted:
            return []
        return [c for c in self.iter_keyword_chunks() if c.source_id in wanted]

    def categories(self) -> Set[str]:
        """All category identifiers present in the corpus."""
        found: Set[str] = set()
        for chunk in self.iter_keyword_chunks():
            found.update(chunk.categories)
        return found
