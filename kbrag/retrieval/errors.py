"""
Retrieval Errors
================

Exception hierarchy for the knowledge retrieval engine.

Propagation policy:
- Correctness violations (``DimensionMismatch``, ``MergeInvariantError``)
  reach the caller.
- Availability problems (``GraphBackendError`` from a backend, store scan
  failures) are raised by the signal as ``SignalUnavailable`` and absorbed by
  ``HybridRetriever``, which records them in ``degraded_signals``.

Thin or empty result sets, budget truncation and deadline exhaustion are
result states, not exceptions (see ``RetrievalStatus`` and ``BudgetStop``).
"""

from typing import Any, List, Optional


class RetrievalError(Exception):
    """Base class for all retrieval engine errors."""


class DimensionMismatch(RetrievalError, ValueError):
    """
    A vector does not have the corpus dimension.

    Attributes:
        chunk_id: Offending chunk, or None when two bare vectors were compared
        expected: Dimension of the query vector
        actual: Dimension of the offending vector
        partial_candidates: Candidates from batches fully scored before the
            failing batch, already filtered, sorted and truncated
    """

    def __init__(
        self,
        expected: int,
        actual: int,
        chunk_id: Optional[str] = None,
        partial_candidates: Optional[List[Any]] = None,
    ):
        self.expected = expected
        self.actual = actual
        self.chunk_id = chunk_id
        self.partial_candidates = list(partial_candidates or [])
        where = f" for chunk {chunk_id!r}" if chunk_id is not None else ""
        super().__init__(
            f"Vector dimension mismatch{where}: expected {expected}, got {actual}"
        )


class SignalUnavailable(RetrievalError):
    """A keyword, graph or vector signal failed or timed out."""

    def __init__(self, signal: str, reason: str):
        self.signal = signal
        self.reason = reason
        super().__init__(f"Signal {signal} unavailable: {reason}")


class MergeInvariantError(RetrievalError):
    """A signal produced the same chunk id more than once."""

    def __init__(self, signal: str, chunk_id: str):
        self.signal = signal
        self.chunk_id = chunk_id
        super().__init__(f"Signal {signal} emitted chunk {chunk_id!r} twice")


class GraphBackendError(RetrievalError):
    """The relationship graph backend could not answer a lookup."""
