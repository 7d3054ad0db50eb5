"""
KBRAG Retrieval
===============

Hybrid retrieval pipeline: routing, vector/keyword/graph signals, merge,
progressive fallback and context assembly.
"""

from kbrag.retrieval.assembler import ContextAssembler, ContextBudget
from kbrag.retrieval.batch_search import BatchSimilaritySearch
from kbrag.retrieval.engine import KnowledgeRetrievalEngine
from kbrag.retrieval.errors import (
    DimensionMismatch,
    GraphBackendError,
    MergeInvariantError,
    RetrievalError,
    SignalUnavailable,
)
from kbrag.retrieval.fallback import ProgressiveFallbackController, fallback_plan, is_thin
from kbrag.retrieval.graph import GraphExpander
from kbrag.retrieval.hybrid import (
    SCORE_COMBINERS,
    HybridRetriever,
    max_combiner,
    merge_candidates,
    sum_combiner,
)
from kbrag.retrieval.keyword import KeywordMatcher, extract_terms
from kbrag.retrieval.models import (
    BudgetStop,
    Chunk,
    FallbackAttempt,
    FallbackState,
    HybridOutcome,
    MergedCandidate,
    Query,
    RetrievalResult,
    RetrievalStatus,
    RetrievedChunk,
    RoutingDecision,
    ScoredCandidate,
    SearchStats,
    SourceSignal,
    VectorSearchOutcome,
)
from kbrag.retrieval.router import CategoryRouter
from kbrag.retrieval.scorer import batch_cosine, cosine_similarity, is_well_formed

__all__ = [
    "ContextAssembler",
    "ContextBudget",
    "BatchSimilaritySearch",
    "KnowledgeRetrievalEngine",
    "DimensionMismatch",
    "GraphBackendError",
    "MergeInvariantError",
    "RetrievalError",
    "SignalUnavailable",
    "ProgressiveFallbackController",
    "fallback_plan",
    "is_thin",
    "GraphExpander",
    "SCORE_COMBINERS",
    "HybridRetriever",
    "max_combiner",
    "merge_candidates",
    "sum_combiner",
    "KeywordMatcher",
    "extract_terms",
    "BudgetStop",
    "Chunk",
    "FallbackAttempt",
    "FallbackState",
    "HybridOutcome",
    "MergedCandidate",
    "Query",
    "RetrievalResult",
    "RetrievalStatus",
    "RetrievedChunk",
    "RoutingDecision",
    "ScoredCandidate",
    "SearchStats",
    "SourceSignal",
    "VectorSearchOutcome",
    "CategoryRouter",
    "batch_cosine",
    "cosine_similarity",
    "is_well_formed",
]
