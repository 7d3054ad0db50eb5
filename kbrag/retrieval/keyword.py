"""
Keyword Matcher
===============

Lexical recall safety net over chunk text and parent titles.

Dense embeddings can miss chunks whose relevance hinges on a rare proper
noun or an exact numeric token (e.g. the rep range "5-10"). The matcher
scores each chunk by term coverage:

    score = |distinct query terms found| / |distinct query terms|

Terms are matched case-insensitively as whole tokens, so "5-10" does not
match "15-100". A trailing plural "s"/"es" is accepted for word terms.
"""

import asyncio
import re
from concurrent.futures import Executor
from typing import Iterable, List, Optional, Pattern, Sequence, Tuple

import structlog

from kbrag.retrieval.errors import SignalUnavailable
from kbrag.retrieval.models import ScoredCandidate, SourceSignal
from kbrag.storage.base import VectorStore

log = structlog.get_logger()


TOKEN_PATTERN = re.compile(r"[a-z0-9]+(?:[-/.][a-z0-9]+)*")

STOPWORDS = frozenset({
    "the", "and", "for", "with", "how", "what", "can", "are", "was", "were",
    "this", "that", "these", "those", "from", "into", "about", "your", "you",
    "have", "has", "had", "does", "did", "should", "would", "could", "will",
    "which", "when", "where", "why", "who", "whom", "there", "their", "them",
    "then", "than", "some", "any", "all", "more", "most", "much", "many",
    "very", "just", "also", "but", "not", "its", "our", "out", "per", "get",
    "tell", "please", "want", "need", "like",
})


def extract_terms(text: str) -> List[str]:
    """
    Distinct search terms of ``text`` in first-seen order.

    Stopwords and tokens shorter than 3 characters are dropped, except
    tokens containing a digit ("5", "3x8") which are always kept.

    Example:
        >>> extract_terms("How many sets for 5-10 reps on the squat?")
        ['sets', '5-10', 'reps', 'squat']
    """
    terms: List[str] = []
    seen = set()
    for token in TOKEN_PATTERN.findall(text.lower()):
        has_digit = any(ch.isdigit() for ch in token)
        if token in STOPWORDS:
            continue
        if len(token) < 3 and not has_digit:
            continue
        if token not in seen:
            seen.add(token)
            terms.append(token)
    return terms


def term_pattern(term: str) -> Pattern:
    suffix = r"(?:e?s)?" if term[-1].isalpha() else ""
    return re.compile(r"(?<![a-z0-9])" + re.escape(term) + suffix + r"(?![a-z0-9])")


class KeywordMatcher:
    """
    Term coverage search over ``VectorStore.iter_keyword_chunks``.

    Unembedded chunks are included, so the matcher also recovers chunks
    the vector signal cannot see.
    """

    def __init__(self, store: VectorStore, executor: Optional[Executor] = None):
        self.store = store
        self.executor = executor

    async def search(
        self,
        query_terms: Sequence[str],
        top_k: Optional[int] = None,
        category_filter: Optional[Iterable[str]] = None,
    ) -> List[ScoredCandidate]:
        """
        Rank chunks by coverage of ``query_terms``.

        Chunks matching no term are not returned.

        Raises:
            SignalUnavailable: the store could not be scanned
        """
        terms = list(dict.fromkeys(t.lower() for t in query_terms if t and t.strip()))
        if not terms or (top_k is not None and top_k <= 0):
            return []

        loop = asyncio.get_running_loop()
        try:
            candidates = await loop.run_in_executor(
                self.executor, self._search_sync, terms, top_k, category_filter
            )
        except Exception as e:
            raise SignalUnavailable(SourceSignal.KEYWORD.value, f"{type(e).__name__}: {e}") from e
        log.debug("Keyword search complete", terms=terms, returned=len(candidates))
        return candidates

    async def search_text(self, text: str, top_k: Optional[int] = None) -> List[ScoredCandidate]:
        """Extract terms from raw query text, then search."""
        return await self.search(extract_terms(text), top_k=top_k)

    def _search_sync(
        self,
        terms: List[str],
        top_k: Optional[int],
        category_filter: Optional[Iterable[str]],
    ) -> List[ScoredCandidate]:
        patterns = [(t, term_pattern(t)) for t in terms]
        total = len(terms)
        hits: List[Tuple[float, int, str]] = []
        seen = set()

        for chunk in self.store.iter_keyword_chunks(category_filter):
            if chunk.id in seen:
                continue
            seen.add(chunk.id)
            haystack = f"{chunk.source_title}\n{chunk.text}".lower()
            matched = sum(1 for _, pattern in patterns if pattern.search(haystack))
            if matched:
                hits.append((matched / total, chunk.ordinal, chunk.id))

        hits.sort(key=lambda h: (-h[0], h[1], h[2]))
        if top_k is not None:
            hits = hits[:top_k]

        return [
            ScoredCandidate(
                chunk_id=chunk_id,
                score=score,
                source_signal=SourceSignal.KEYWORD,
                rank=rank,
                ordinal=ordinal,
            )
            for rank, (score, ordinal, chunk_id) in enumerate(hits)
        ]
