"""
Scorer
======

Cosine similarity between a query vector and chunk vectors.

All functions are pure and safe to call from many threads at once.

Usage:
    >>> cosine_similarity([1.0, 0.0], [1.0, 0.0])
    1.0
    >>> cosine_similarity([1.0, 0.0], [0.0, 0.0])
    0.0
"""

from typing import Optional, Sequence

import numpy as np

from kbrag.retrieval.errors import DimensionMismatch


def as_vector(values: Sequence[float]) -> np.ndarray:
    """Convert a sequence of floats to a 1-D float64 array."""
    return np.asarray(values, dtype=np.float64).reshape(-1)


def is_well_formed(vector: Optional[Sequence[float]]) -> bool:
    """
    Check that a vector is present, non-empty and made of finite numbers.

    Vectors with NaN/inf or non-numeric values are malformed: batch search
    skips and counts them instead of scoring them.
    """
    if vector is None or len(vector) == 0:
        return False
    try:
        arr = as_vector(vector)
    except (TypeError, ValueError):
        return False
    return bool(np.all(np.isfinite(arr)))


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity in [-1, 1].

    Raises:
        DimensionMismatch: if the vectors have different lengths

    Returns 0.0 when either vector has zero norm.
    """
    if len(a) != len(b):
        raise DimensionMismatch(expected=len(a), actual=len(b))

    va = as_vector(a)
    vb = as_vector(b)
    norm_a = float(np.linalg.norm(va))
    norm_b = float(np.linalg.norm(vb))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0

    score = float(np.dot(va, vb) / (norm_a * norm_b))
    # Rounding can push identical vectors slightly past 1.0
    return max(-1.0, min(1.0, score))


def batch_cosine(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """
    Cosine similarity of one query against every row of ``matrix``.

    Rows (or a query) with zero norm score 0.0. The caller guarantees that
    ``matrix.shape[1] == query.shape[0]``.
    """
    if matrix.size == 0:
        return np.zeros(matrix.shape[0], dtype=np.float64)

    query_norm = float(np.linalg.norm(query))
    row_norms = np.linalg.norm(matrix, axis=1)
    if query_norm == 0.0:
        return np.zeros(matrix.shape[0], dtype=np.float64)

    dots = matrix @ query
    denom = row_norms * query_norm
    scores = np.zeros(matrix.shape[0], dtype=np.float64)
    nonzero = denom > 0.0
    scores[nonzero] = dots[nonzero] / denom[nonzero]
    return np.clip(scores, -1.0, 1.0)
