"""
Retrieval Diagnostics
=====================

Per-call quality report for a ``RetrievalResult``, for debugging threshold
tuning and category coverage in production.

Quality bands on chunk scores:
- excellent: >= 0.8
- good: >= 0.6
- acceptable: >= 0.4
- poor: below 0.4
"""

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List

import structlog

from kbrag.retrieval.models import RetrievalResult, RetrievalStatus

log = structlog.get_logger()

QUALITY_BANDS = (("excellent", 0.8), ("good", 0.6), ("acceptable", 0.4))


def quality_band(score: float) -> str:
    for name, floor in QUALITY_BANDS:
        if score >= floor:
            return name
    return "poor"


@dataclass
class RetrievalDiagnostics:
    """
    Quality summary of one retrieval.

    Attributes:
        chunk_count: Chunks returned
        average_score: Mean chunk score (0.0 when empty)
        high_relevance_count: Chunks at or above the high relevance threshold
        quality_distribution: Chunk count per quality band
        unique_sources: Distinct parent documents
        source_counts: Chunks per source title
        signal_mix: Chunks per winning signal
        warnings: Human readable issues
    """
    chunk_count: int
    average_score: float
    high_relevance_count: int
    quality_distribution: Dict[str, int]
    unique_sources: int
    source_counts: Dict[str, int]
    signal_mix: Dict[str, int]
    elapsed_ms: float
    warnings: List[str] = field(default_factory=list)

    @property
    def healthy(self) -> bool:
        return not self.warnings

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chunk_count": self.chunk_count,
            "average_score": round(self.average_score, 4),
            "high_relevance_count": self.high_relevance_count,
            "quality_distribution": dict(self.quality_distribution),
            "unique_sources": self.unique_sources,
            "source_counts": dict(self.source_counts),
            "signal_mix": dict(self.signal_mix),
            "elapsed_ms": round(self.elapsed_ms, 3),
            "warnings": list(self.warnings),
        }


def diagnose(
    result: RetrievalResult,
    high_relevance_threshold: float = 0.7,
    slow_ms: float = 3000.0,
    min_results: int = 3,
    low_average: float = 0.3,
) -> RetrievalDiagnostics:
    """
    Build a diagnostics report and log it.

    Example:
        >>> report = diagnose(result)
        >>> report.warnings
        ['Only 1 chunks retrieved (expected >= 3)']
    """
    scores = [c.score for c in result.chunks]
    average = sum(scores) / len(scores) if scores else 0.0

    distribution = {name: 0 for name, _ in QUALITY_BANDS}
    distribution["poor"] = 0
    for score in scores:
        distribution[quality_band(score)] += 1

    sources = Counter(c.source_title or c.source_id for c in result.chunks)
    signals = Counter(c.winning_signal.value for c in result.chunks)

    warnings = []
    if result.elapsed_ms > slow_ms:
        warnings.append(f"Slow retrieval: {result.elapsed_ms:.0f}ms (> {slow_ms:.0f}ms)")
    if len(scores) < min_results:
        warnings.append(f"Only {len(scores)} chunks retrieved (expected >= {min_results})")
    if scores and average < low_average:
        warnings.append(f"Low average score {average:.3f} (< {low_average})")
    if result.status is RetrievalStatus.DEADLINE_EXCEEDED:
        warnings.append("Deadline exceeded before fallback completed")
    for signal, reason in sorted(result.degraded_signals.items()):
        warnings.append(f"Signal {signal} degraded: {reason}")

    report = RetrievalDiagnostics(
        chunk_count=len(scores),
        average_score=average,
        high_relevance_count=sum(1 for s in scores if s >= high_relevance_threshold),
        quality_distribution=distribution,
        unique_sources=len({c.source_id for c in result.chunks}),
        source_counts=dict(sources),
        signal_mix=dict(signals),
        elapsed_ms=result.elapsed_ms,
        warnings=warnings,
    )

    log.info(
        "Retrieval diagnostics",
        chunks=report.chunk_count,
        average_score=round(average, 3),
        quality=report.quality_distribution,
        unique_sources=report.unique_sources,
        warnings=len(warnings),
    )
    return report
