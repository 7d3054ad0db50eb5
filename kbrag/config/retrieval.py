"""
Retrieval Configuration
=======================

Pydantic model holding every threshold and weight the engine reads.

A ``RetrievalConfig`` is frozen: the engine captures one instance at the
start of a call and passes it down, so a concurrent admin update can never
produce a torn read. Relaxed fallback attempts derive copies through
``with_threshold``.

Example:
    >>> config = RetrievalConfig(similarity_threshold=0.35, max_chunks=10)
    >>> relaxed = config.with_threshold(0.1)
    >>> relaxed.similarity_threshold, config.similarity_threshold
    (0.1, 0.35)
"""

from enum import Enum
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


class MergeStrategy(str, Enum):
    """Named score combiners available to the hybrid merge."""
    MAX = "max"
    SUM = "sum"


class RetrievalConfig(BaseModel):
    """
    Immutable per-call retrieval settings.

    Attributes:
        similarity_threshold: Strict cosine threshold for vector candidates
        high_relevance_threshold: Score counted as "high relevance"
        max_chunks: Count budget of the assembled context
        max_context_chars: Size budget (sum of chunk text lengths)
        category_weight: Multiplier for vector scores found by the
            unrestricted top-up pass (chunks outside the priority categories)
        keyword_weight: Multiplier for keyword coverage scores
        graph_weight: Multiplier for graph expansion scores
        graph_decay: Graph score of a chunk reached through a one-hop neighbour
        graph_enabled: Run the graph signal when a backend is configured
        fallback_steps: Relaxed thresholds, strictly decreasing
        min_acceptable_results: Fewer merged candidates than this (capped at
            max_chunks) is "thin"
        require_high_relevance: Also treat results without any high
            relevance candidate as thin
        batch_size: Corpus batch size for similarity search
        keyword_top_k: Keyword candidates kept (defaults to max_chunks)
        vector_timeout_s / keyword_timeout_s / graph_timeout_s: Per-signal timeouts
        merge_strategy: Score combiner used by the hybrid merge
        default_category: Router fallback category
        construction_categories: Categories prioritised for program construction
    """
    model_config = ConfigDict(frozen=True, extra="forbid")

    similarity_threshold: float = Field(default=0.3, ge=-1.0, le=1.0)
    high_relevance_threshold: float = Field(default=0.7, ge=-1.0, le=1.0)
    max_chunks: int = Field(default=15, ge=1)
    max_context_chars: int = Field(default=12000, ge=1)

    category_weight: float = Field(default=1.0, ge=0.0, le=1.0)
    keyword_weight: float = Field(default=0.6, ge=0.0, le=1.0)
    graph_weight: float = Field(default=0.5, ge=0.0, le=1.0)
    graph_decay: float = Field(default=0.5, ge=0.0, le=1.0)
    graph_enabled: bool = True

    fallback_steps: Tuple[float, ...] = (0.2, 0.1, 0.05)
    min_acceptable_results: int = Field(default=3, ge=0)
    require_high_relevance: bool = False

    batch_size: int = Field(default=50, ge=1)
    keyword_top_k: Optional[int] = Field(default=None, ge=1)

    vector_timeout_s: float = Field(default=5.0, gt=0.0)
    keyword_timeout_s: float = Field(default=2.0, gt=0.0)
    graph_timeout_s: float = Field(default=2.0, gt=0.0)

    merge_strategy: MergeStrategy = MergeStrategy.MAX
    default_category: str = Field(default="hypertrophy_principles", min_length=1)
    construction_categories: Tuple[str, ...] = (
        "hypertrophy_programs",
        "hypertrophy_principles",
    )

    @field_validator("high_relevance_threshold")
    @classmethod
    def high_relevance_above_threshold(cls, v: float, info) -> float:
        if "similarity_threshold" in info.data and v < info.data["similarity_threshold"]:
            raise ValueError(
                f"high_relevance_threshold {v} must be >= similarity_threshold "
                f"{info.data['similarity_threshold']}"
            )
        return v

    @field_validator("fallback_steps")
    @classmethod
    def steps_strictly_decreasing(cls, v: Tuple[float, ...], info) -> Tuple[float, ...]:
        for step in v:
            if not -1.0 <= step <= 1.0:
                raise ValueError(f"fallback step {step} must be in [-1, 1]")
        for prev, nxt in zip(v, v[1:]):
            if nxt >= prev:
                raise ValueError(f"fallback_steps must be strictly decreasing, got {list(v)}")
        strict = info.data.get("similarity_threshold")
        if v and strict is not None and v[0] >= strict:
            raise ValueError(
                f"first fallback step {v[0]} must be below similarity_threshold {strict}"
            )
        return v

    @property
    def effective_keyword_top_k(self) -> int:
        return self.keyword_top_k or self.max_chunks

    def with_threshold(self, threshold: float) -> "RetrievalConfig":
        """Copy of this config with a different similarity threshold."""
        return self.model_copy(update={"similarity_threshold": threshold})
