"""Vector math shared by the embeddings client and the ranking engine."""
from __future__ import annotations

from typing import List, Optional, Sequence

import numpy as np

NORM_EPSILON = 1e-12


def as_finite_array(vector: Sequence[float] | None) -> Optional[np.ndarray]:
    """Return ``vector`` as a float64 array, or ``None`` if it is empty or non-finite."""
    if vector is None or len(vector) == 0:
        return None
    try:
        arr = np.asarray(vector, dtype=np.float64)
    except (TypeError, ValueError):
        return None
    if arr.ndim != 1 or not np.all(np.isfinite(arr)):
        return None
    return arr


def normalize(vector: Sequence[float]) -> List[float]:
    """L2-normalize ``vector``.

    Raises:
        ValueError: if the vector is empty, non-finite or has zero norm.
    """
    arr = as_finite_array(vector)
    if arr is None:
        raise ValueError("vector is empty or contains non-finite values")
    norm = float(np.linalg.norm(arr))
    if norm < NORM_EPSILON:
        raise ValueError("vector has zero norm")
    return (arr / norm).tolist()


def cosine_similarity(query: Sequence[float] | None, candidate: Sequence[float] | None) -> float:
    """Cosine similarity clamped to [-1, 1].

    Empty, non-finite, zero-norm or differently sized inputs score 0.0.
    """
    a = as_finite_array(query)
    b = as_finite_array(candidate)
    if a is None or b is None or a.shape != b.shape:
        return 0.0
    denom = float(np.linalg.norm(a) * np.linalg.norm(b))
    if denom < NORM_EPSILON:
        return 0.0
    value = float(np.dot(a, b) / denom)
    return max(-1.0, min(1.0, value))


def l2_norm(vector: Sequence[float]) -> float:
    arr = as_finite_array(vector)
    if arr is None:
        return 0.0
    return float(np.linalg.norm(arr))


__all__ = ["as_finite_array", "cosine_similarity", "l2_norm", "normalize"]
