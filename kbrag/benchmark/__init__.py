"""
KBRAG Benchmark
===============

Retrieval quality metrics and per-call diagnostics.
"""

from kbrag.benchmark.diagnostics import RetrievalDiagnostics, diagnose, quality_band
from kbrag.benchmark.metrics import (
    LatencyMetrics,
    RetrievalMetrics,
    compute_latency_metrics,
    compute_retrieval_metrics,
    dcg_at_k,
    evaluate_results,
    hit_at_k,
    hit_rate,
    mrr,
    ndcg_at_k,
    precision_at_k,
    recall_at_k,
    reciprocal_rank,
)

__all__ = [
    "RetrievalDiagnostics",
    "diagnose",
    "quality_band",
    "LatencyMetrics",
    "RetrievalMetrics",
    "compute_latency_metrics",
    "compute_retrieval_metrics",
    "dcg_at_k",
    "evaluate_results",
    "hit_at_k",
    "hit_rate",
    "mrr",
    "ndcg_at_k",
    "precision_at_k",
    "recall_at_k",
    "reciprocal_rank",
]
