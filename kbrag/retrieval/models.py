"""
Retrieval Models
================

Dataclasses shared by every stage of the retrieval pipeline.

Every signal producer (vector, keyword, graph) emits ``ScoredCandidate``
records tagged with their ``SourceSignal``; the hybrid merge turns them into
exactly one ``MergedCandidate`` per chunk, and the context assembler resolves
those into ``RetrievedChunk`` entries of a ``RetrievalResult``.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple


class SourceSignal(str, Enum):
    """Signal that produced a candidate."""
    VECTOR = "vector"
    KEYWORD = "keyword"
    GRAPH = "graph"


SIGNAL_ORDER = (SourceSignal.VECTOR, SourceSignal.KEYWORD, SourceSignal.GRAPH)


class RetrievalStatus(str, Enum):
    """Outcome of a full retrieval call."""
    OK = "ok"
    EMPTY = "empty"
    DEADLINE_EXCEEDED = "deadline_exceeded"


class BudgetStop(str, Enum):
    """Why context assembly stopped adding chunks."""
    NONE = "none"
    MAX_CHUNKS = "max_chunks"
    MAX_CHARS = "max_chars"


class FallbackState(str, Enum):
    """States of the progressive fallback controller."""
    STRICT = "strict"
    RELAXED = "relaxed"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class Chunk:
    """
    Immutable unit of retrievable text.

    Attributes:
        id: Unique chunk identifier
        source_id: Parent document ("knowledge item") identifier
        source_title: Parent document title, used for keyword matching and citation
        text: Chunk content
        ordinal: Position of the chunk inside its parent document
        vector: Dense embedding, None when embedding generation failed
        categories: Categories of the parent document
    """
    id: str
    source_id: str
    source_title: str
    text: str
    ordinal: int = 0
    vector: Optional[Tuple[float, ...]] = None
    categories: FrozenSet[str] = frozenset()

    def __post_init__(self):
        if self.vector is not None and not isinstance(self.vector, tuple):
            object.__setattr__(self, "vector", tuple(self.vector))
        if not isinstance(self.categories, frozenset):
            object.__setattr__(self, "categories", frozenset(self.categories))

    @property
    def has_vector(self) -> bool:
        return self.vector is not None

    @property
    def dimension(self) -> Optional[int]:
        return len(self.vector) if self.vector is not None else None

    def __repr__(self) -> str:
        return (
            f"<Chunk(id={self.id}, source={self.source_id}, ordinal={self.ordinal}, "
            f"dim={self.dimension}, categories={sorted(self.categories)})>"
        )


@dataclass(frozen=True)
class RoutingDecision:
    """
    Category routing for a query.

    Attributes:
        priority_categories: Categories searched first, never empty
        is_construction_intent: The user asks for a constructed artifact
            (e.g. a full program), so synthesis across categories is allowed
        topic_categories: Categories derived from muscle/topic terms
        entities: Canonical muscle and exercise names for graph expansion
        matched_terms: Query terms that triggered a rule
        used_default: True when no rule matched and the default category was used
        reasoning: Human readable explanation
    """
    priority_categories: Tuple[str, ...]
    is_construction_intent: bool = False
    topic_categories: Tuple[str, ...] = ()
    entities: Tuple[str, ...] = ()
    matched_terms: Tuple[str, ...] = ()
    used_default: bool = False
    reasoning: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "priority_categories": list(self.priority_categories),
            "is_construction_intent": self.is_construction_intent,
            "topic_categories": list(self.topic_categories),
            "entities": list(self.entities),
            "matched_terms": list(self.matched_terms),
            "used_default": self.used_default,
            "reasoning": self.reasoning,
        }


@dataclass(frozen=True)
class Query:
    """
    A single retrieval request.

    The vector is computed by an external embedder; the engine never embeds.
    """
    text: str
    vector: Tuple[float, ...]
    topics: Tuple[str, ...] = ()
    intent: Optional[RoutingDecision] = None

    def __post_init__(self):
        if not isinstance(self.vector, tuple):
            object.__setattr__(self, "vector", tuple(self.vector))
        if not isinstance(self.topics, tuple):
            object.__setattr__(self, "topics", tuple(self.topics))

    def with_intent(self, intent: RoutingDecision) -> "Query":
        return replace(self, intent=intent)


@dataclass(frozen=True)
class ScoredCandidate:
    """
    Candidate emitted by one signal.

    Attributes:
        chunk_id: Candidate chunk
        score: Signal score (cosine for vector, [0, 1] for keyword and graph)
        source_signal: Producing signal
        rank: 0-based position within the producing signal
        ordinal: Chunk ordinal, used for deterministic tie-breaking
    """
    chunk_id: str
    score: float
    source_signal: SourceSignal
    rank: int = 0
    ordinal: int = 0

    def __repr__(self) -> str:
        return (
            f"<ScoredCandidate({self.source_signal.value}:{self.chunk_id}, "
            f"score={self.score:.3f}, rank={self.rank})>"
        )


@dataclass
class MergedCandidate:
    """
    One chunk after the hybrid merge.

    ``signal_scores`` holds the raw (unweighted) score of every signal that
    produced the chunk; ``score`` is the combined value used for ranking.
    """
    chunk_id: str
    score: float
    signal_scores: Dict[SourceSignal, float]
    winning_signal: SourceSignal
    vector_rank: Optional[int] = None
    ordinal: int = 0

    @property
    def contributing_signals(self) -> List[SourceSignal]:
        return [s for s in SIGNAL_ORDER if s in self.signal_scores]

    def __repr__(self) -> str:
        signals = ",".join(s.value for s in self.contributing_signals)
        return (
            f"<MergedCandidate({self.chunk_id}, score={self.score:.3f}, "
            f"win={self.winning_signal.value}, signals={signals})>"
        )


@dataclass
class SearchStats:
    """Counters collected while scanning the corpus."""
    batches: int = 0
    scanned: int = 0
    scored: int = 0
    skipped_unembedded: int = 0
    skipped_malformed: int = 0
    matched: int = 0

    def add(self, other: "SearchStats") -> "SearchStats":
        """Return the element-wise sum of two stats records."""
        return SearchStats(
            batches=self.batches + other.batches,
            scanned=self.scanned + other.scanned,
            scored=self.scored + other.scored,
            skipped_unembedded=self.skipped_unembedded + other.skipped_unembedded,
            skipped_malformed=self.skipped_malformed + other.skipped_malformed,
            matched=self.matched + other.matched,
        )

    def to_dict(self) -> Dict[str, int]:
        return {
            "batches": self.batches,
            "scanned": self.scanned,
            "scored": self.scored,
            "skipped_unembedded": self.skipped_unembedded,
            "skipped_malformed": self.skipped_malformed,
            "matched": self.matched,
        }


@dataclass
class VectorSearchOutcome:
    """Candidates and scan statistics of one batch similarity search."""
    candidates: List[ScoredCandidate]
    stats: SearchStats = field(default_factory=SearchStats)


@dataclass
class HybridOutcome:
    """Merged, ranked and truncated candidates of one hybrid attempt."""
    candidates: List[MergedCandidate]
    routing: RoutingDecision
    degraded_signals: Dict[str, str] = field(default_factory=dict)
    vector_stats: SearchStats = field(default_factory=SearchStats)


@dataclass
class RetrievedChunk:
    """A chunk handed to prompt construction, annotated with its score."""
    chunk_id: str
    source_id: str
    source_title: str
    text: str
    ordinal: int
    score: float
    contributing_signals: List[SourceSignal]
    winning_signal: SourceSignal

    @property
    def char_count(self) -> int:
        return len(self.text)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chunk_id": self.chunk_id,
            "source_id": self.source_id,
            "source_title": self.source_title,
            "text": self.text,
            "ordinal": self.ordinal,
            "score": round(self.score, 4),
            "contributing_signals": [s.value for s in self.contributing_signals],
            "winning_signal": self.winning_signal.value,
        }


@dataclass
class FallbackAttempt:
    """
    Audit record of one fallback attempt.

    Attributes:
        state: Controller state the attempt ran in
        step: 0 for the strict attempt, i for Relaxed[i]
        threshold: Similarity threshold used
        candidate_count: Merged candidates obtained
        high_relevance_count: Candidates at or above the high relevance threshold
        accepted: Whether the attempt ended the fallback sequence
        elapsed_ms: Wall time of the attempt
        skipped: The attempt was not run because the deadline did not allow it
    """
    state: FallbackState
    step: int
    threshold: float
    candidate_count: int = 0
    high_relevance_count: int = 0
    accepted: bool = False
    elapsed_ms: float = 0.0
    skipped: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "step": self.step,
            "threshold": self.threshold,
            "candidate_count": self.candidate_count,
            "high_relevance_count": self.high_relevance_count,
            "accepted": self.accepted,
            "elapsed_ms": round(self.elapsed_ms, 3),
            "skipped": self.skipped,
        }


@dataclass
class RetrievalResult:
    """
    Final output of the engine.

    Invariants: at most ``max_chunks`` entries, total text length within the
    character budget, chunk ids unique.
    """
    chunks: List[RetrievedChunk] = field(default_factory=list)
    status: RetrievalStatus = RetrievalStatus.OK
    stop_reason: BudgetStop = BudgetStop.NONE
    total_chars: int = 0
    threshold_used: Optional[float] = None
    attempts: List[FallbackAttempt] = field(default_factory=list)
    routing: Optional[RoutingDecision] = None
    degraded_signals: Dict[str, str] = field(default_factory=dict)
    vector_stats: Optional[SearchStats] = None
    elapsed_ms: float = 0.0

    @property
    def chunk_ids(self) -> List[str]:
        return [c.chunk_id for c in self.chunks]

    @property
    def is_empty(self) -> bool:
        return not self.chunks

    def texts(self) -> List[str]:
        """Chunk texts in rank order, ready for prompt construction."""
        return [c.text for c in self.chunks]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-serializable dict."""
        return {
            "chunks": [c.to_dict() for c in self.chunks],
            "status": self.status.value,
            "stop_reason": self.stop_reason.value,
            "total_chars": self.total_chars,
            "threshold_used": self.threshold_used,
            "attempts": [a.to_dict() for a in self.attempts],
            "routing": self.routing.to_dict() if self.routing else None,
            "degraded_signals": dict(self.degraded_signals),
            "vector_stats": self.vector_stats.to_dict() if self.vector_stats else None,
            "elapsed_ms": round(self.elapsed_ms, 3),
        }

    def __repr__(self) -> str:
        return (
            f"<RetrievalResult(status={self.status.value}, chunks={len(self.chunks)}, "
            f"chars={self.total_chars}, threshold={self.threshold_used}, "
            f"attempts={len(self.attempts)})>"
        )
