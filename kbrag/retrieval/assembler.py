"""
Context Assembler
=================

Turns ranked candidates into the bounded chunk list handed to prompt
construction.

Two budgets apply: a chunk count (``max_chunks``) and a size budget (sum of
chunk text lengths). Assembly stops as soon as the next chunk would break
the size budget, even if the count budget is not reached, so a few very
long chunks cannot crowd out breadth.

Only chunk ids are deduplicated; several chunks of the same source
document are expected and kept.
"""

from dataclasses import dataclass
from typing import Callable, Iterable, List, Mapping, Sequence, Union

import structlog

from kbrag.config.retrieval import RetrievalConfig
from kbrag.retrieval.models import (
    BudgetStop,
    Chunk,
    MergedCandidate,
    RetrievalResult,
    RetrievalStatus,
    RetrievedChunk,
    ScoredCandidate,
)

log = structlog.get_logger()

ChunkLookup = Union[Mapping[str, Chunk], Callable[[List[str]], Mapping[str, Chunk]]]


@dataclass(frozen=True)
class ContextBudget:
    """Count and size limits of the assembled context."""
    max_chunks: int
    max_chars: int

    def __post_init__(self):
        if self.max_chunks < 0:
            raise ValueError(f"max_chunks must be >= 0, got {self.max_chunks}")
        if self.max_chars < 0:
            raise ValueError(f"max_chars must be >= 0, got {self.max_chars}")

    @classmethod
    def from_config(cls, config: RetrievalConfig) -> "ContextBudget":
        return cls(max_chunks=config.max_chunks, max_chars=config.max_context_chars)


class ContextAssembler:
    """Resolve candidates in rank order within the context budget."""

    def assemble(
        self,
        candidates: Sequence[Union[MergedCandidate, ScoredCandidate]],
        chunk_lookup: ChunkLookup,
        budget: ContextBudget,
    ) -> RetrievalResult:
        """
        Build a ``RetrievalResult`` from ranked candidates.

        Args:
            candidates: Best first
            chunk_lookup: Mapping of chunk id -> Chunk, or a callable
                resolving a list of ids to such a mapping
            budget: Count and size limits

        Ids missing from the lookup are skipped and logged.
        """
        lookup = self._resolve(candidates, chunk_lookup)

        chunks: List[RetrievedChunk] = []
        seen = set()
        total_chars = 0
        stop_reason = BudgetStop.NONE
        missing = []

        for candidate in candidates:
            if candidate.chunk_id in seen:
                continue
            if len(chunks) >= budget.max_chunks:
                stop_reason = BudgetStop.MAX_CHUNKS
                break
            chunk = lookup.get(candidate.chunk_id)
            if chunk is None:
                missing.append(candidate.chunk_id)
                continue
            size = len(chunk.text)
            if total_chars + size > budget.max_chars:
                stop_reason = BudgetStop.MAX_CHARS
                break

            seen.add(candidate.chunk_id)
            total_chars += size
            if isinstance(candidate, MergedCandidate):
                signals = candidate.contributing_signals
                winner = candidate.winning_signal
            else:
                signals = [candidate.source_signal]
                winner = candidate.source_signal
            chunks.append(RetrievedChunk(
                chunk_id=chunk.id,
                source_id=chunk.source_id,
                source_title=chunk.source_title,
                text=chunk.text,
                ordinal=chunk.ordinal,
                score=candidate.score,
                contributing_signals=list(signals),
                winning_signal=winner,
            ))

        if missing:
            log.warning("Candidates missing from chunk lookup", chunk_ids=missing)

        log.debug(
            "context_assembled",
            chunks=len(chunks),
            chars=total_chars,
            stop_reason=stop_reason.value,
            sources=len({c.source_id for c in chunks}),
        )
        return RetrievalResult(
            chunks=chunks,
            status=RetrievalStatus.OK if chunks else RetrievalStatus.EMPTY,
            stop_reason=stop_reason,
            total_chars=total_chars,
        )

    @staticmethod
    def _resolve(
        candidates: Iterable[Union[MergedCandidate, ScoredCandidate]],
        chunk_lookup: ChunkLookup,
    ) -> Mapping[str, Chunk]:
        if callable(chunk_lookup) and not isinstance(chunk_lookup, Mapping):
            ids = list(dict.fromkeys(c.chunk_id for c in candidates))
            return chunk_lookup(ids) if ids else {}
        return chunk_lookup
