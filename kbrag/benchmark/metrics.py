"""
Retrieval Quality Metrics
=========================

Information retrieval metrics for evaluating the engine against a labelled
query set (chunk ids or source ids as ground truth):
- Recall@K / Precision@K / Hit@K
- MRR: Mean Reciprocal Rank
- Hit Rate: share of queries with at least one relevant result in the top K
- NDCG@K: graded relevance

Usage:
    >>> from kbrag.benchmark.metrics import recall_at_k, mrr
    >>>
    >>> retrieved = ["c1", "c2", "c3"]
    >>> relevant = ["c2", "c4"]
    >>>
    >>> recall_at_k(retrieved, relevant, k=3)
    0.5
    >>> mrr([retrieved], [relevant])
    0.5
"""

import math
import statistics
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Set, Union

from kbrag.retrieval.models import RetrievalResult

Relevant = Union[Sequence[str], Set[str]]


@dataclass
class RetrievalMetrics:
    """
    Aggregated metrics over a query set.

    Attributes:
        recall_at_1 / recall_at_5 / recall_at_10: Mean recall at K
        precision_at_5: Mean precision at 5
        mrr: Mean Reciprocal Rank
        hit_rate_at_5: Share of queries with a relevant result in the top 5
        num_queries: Queries evaluated
        by_category: Same metrics per query category
    """
    recall_at_1: float
    recall_at_5: float
    recall_at_10: float
    precision_at_5: float
    mrr: float
    hit_rate_at_5: float
    num_queries: int
    by_category: Optional[Dict[str, "RetrievalMetrics"]] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "recall_at_1": round(self.recall_at_1, 4),
            "recall_at_5": round(self.recall_at_5, 4),
            "recall_at_10": round(self.recall_at_10, 4),
            "precision_at_5": round(self.precision_at_5, 4),
            "mrr": round(self.mrr, 4),
            "hit_rate_at_5": round(self.hit_rate_at_5, 4),
            "num_queries": self.num_queries,
        }
        if self.by_category:
            result["by_category"] = {
                cat: metrics.to_dict() for cat, metrics in self.by_category.items()
            }
        return result


@dataclass
class LatencyMetrics:
    """Latency distribution of one operation, in milliseconds."""
    operation: str
    num_samples: int
    min_ms: float
    max_ms: float
    mean_ms: float
    median_ms: float
    p90_ms: float
    p99_ms: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation": self.operation,
            "num_samples": self.num_samples,
            "min_ms": round(self.min_ms, 3),
            "max_ms": round(self.max_ms, 3),
            "mean_ms": round(self.mean_ms, 3),
            "median_ms": round(self.median_ms, 3),
            "p90_ms": round(self.p90_ms, 3),
            "p99_ms": round(self.p99_ms, 3),
        }


def recall_at_k(retrieved: Sequence[str], relevant: Relevant, k: int) -> float:
    """
    Share of the relevant ids found in the top ``k``.

    An empty ground truth counts as perfect recall.
    """
    if not relevant:
        return 1.0
    relevant_set = set(relevant)
    return len(set(retrieved[:k]) & relevant_set) / len(relevant_set)


def precision_at_k(retrieved: Sequence[str], relevant: Relevant, k: int) -> float:
    """Share of the top ``k`` slots holding a relevant id."""
    if k <= 0:
        return 0.0
    return len(set(retrieved[:k]) & set(relevant)) / k


def hit_at_k(retrieved: Sequence[str], relevant: Relevant, k: int) -> bool:
    """True if any relevant id is in the top ``k``."""
    return not set(retrieved[:k]).isdisjoint(relevant)


def reciprocal_rank(retrieved: Sequence[str], relevant: Relevant) -> float:
    """
    1 / position of the first relevant id, 0.0 if none is retrieved.

    Example:
        >>> reciprocal_rank(["a", "b", "c"], ["b"])
        0.5
    """
    relevant_set = set(relevant)
    for position, item in enumerate(retrieved, start=1):
        if item in relevant_set:
            return 1.0 / position
    return 0.0


def mrr(all_retrieved: Sequence[Sequence[str]], all_relevant: Sequence[Relevant]) -> float:
    """Mean Reciprocal Rank over a query set."""
    if not all_retrieved:
        return 0.0
    return statistics.mean(
        reciprocal_rank(ret, rel) for ret, rel in zip(all_retrieved, all_relevant)
    )


def hit_rate(
    all_retrieved: Sequence[Sequence[str]],
    all_relevant: Sequence[Relevant],
    k: int,
) -> float:
    """Share of queries with at least one relevant id in the top ``k``."""
    if not all_retrieved:
        return 0.0
    hits = sum(1 for ret, rel in zip(all_retrieved, all_relevant) if hit_at_k(ret, rel, k))
    return hits / len(all_retrieved)


def dcg_at_k(relevance_scores: Sequence[float], k: int) -> float:
    """DCG@K = sum (2^rel_i - 1) / log2(i + 1)."""
    return sum(
        (2 ** rel - 1) / math.log2(i + 1)
        for i, rel in enumerate(relevance_scores[:k], start=1)
    )


def ndcg_at_k(
    retrieved_relevance: Sequence[float],
    ideal_relevance: Sequence[float],
    k: int,
) -> float:
    """DCG of the retrieved order divided by DCG of the ideal order."""
    idcg = dcg_at_k(sorted(ideal_relevance, reverse=True), k)
    if idcg == 0:
        return 0.0
    return dcg_at_k(retrieved_relevance, k) / idcg


def compute_latency_metrics(latencies_ms: Sequence[float], operation: str) -> LatencyMetrics:
    """Summarize latency samples (nearest-rank percentiles)."""
    if not latencies_ms:
        return LatencyMetrics(operation, 0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0)

    ordered = sorted(latencies_ms)
    n = len(ordered)
    return LatencyMetrics(
        operation=operation,
        num_samples=n,
        min_ms=ordered[0],
        max_ms=ordered[-1],
        mean_ms=statistics.mean(ordered),
        median_ms=statistics.median(ordered),
        p90_ms=ordered[min(int(n * 0.90), n - 1)],
        p99_ms=ordered[min(int(n * 0.99), n - 1)],
    )


def _aggregate(
    all_retrieved: Sequence[Sequence[str]],
    all_relevant: Sequence[Relevant],
) -> RetrievalMetrics:
    if not all_retrieved:
        return RetrievalMetrics(0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0)

    def mean_of(fn, k):
        return statistics.mean(fn(ret, rel, k) for ret, rel in zip(all_retrieved, all_relevant))

    return RetrievalMetrics(
        recall_at_1=mean_of(recall_at_k, 1),
        recall_at_5=mean_of(recall_at_k, 5),
        recall_at_10=mean_of(recall_at_k, 10),
        precision_at_5=mean_of(precision_at_k, 5),
        mrr=mrr(all_retrieved, all_relevant),
        hit_rate_at_5=hit_rate(all_retrieved, all_relevant, k=5),
        num_queries=len(all_retrieved),
    )


def compute_retrieval_metrics(
    all_retrieved: Sequence[Sequence[str]],
    all_relevant: Sequence[Relevant],
    categories: Optional[Sequence[str]] = None,
) -> RetrievalMetrics:
    """
    Aggregate metrics over a query set, optionally broken down by category.

    Example:
        >>> metrics = compute_retrieval_metrics(
        ...     [["c1", "c2"], ["c9"]],
        ...     [["c2"], ["c3"]],
        ...     categories=["program", "muscle"],
        ... )
        >>> metrics.hit_rate_at_5
        0.5
    """
    metrics = _aggregate(all_retrieved, all_relevant)
    if categories:
        metrics.by_category = {}
        for cat in sorted(set(categories)):
            idx = [i for i, c in enumerate(categories) if c == cat]
            metrics.by_category[cat] = _aggregate(
                [all_retrieved[i] for i in idx],
                [all_relevant[i] for i in idx],
            )
    return metrics


def evaluate_results(
    results: Sequence[RetrievalResult],
    all_relevant: Sequence[Relevant],
    by: str = "chunk",
    categories: Optional[Sequence[str]] = None,
) -> RetrievalMetrics:
    """
    Score engine output against ground truth.

    Args:
        results: One RetrievalResult per query
        all_relevant: Relevant ids per query
        by: "chunk" to compare chunk ids, "source" to compare source ids
            (first occurrence order)
        categories: Optional query categories for the breakdown
    """
    if by not in ("chunk", "source"):
        raise ValueError(f"by must be 'chunk' or 'source', got {by!r}")

    if by == "chunk":
        retrieved = [r.chunk_ids for r in results]
    else:
        retrieved = [list(dict.fromkeys(c.source_id for c in r.chunks)) for r in results]
    return compute_retrieval_metrics(retrieved, all_relevant, categories)
