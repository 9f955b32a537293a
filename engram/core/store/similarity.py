"""Cosine similarity over the stored embedding matrix.

Exact, linear-scan scoring. Vectors are held as a float64 matrix with one
row per entry in insertion order, so a stable sort on the scores keeps
earlier entries first among equal scores.
"""

from collections.abc import Sequence

import numpy as np

from engram.domain.entities import Entry


def _scaled(v: np.ndarray, axis: int | None = None) -> np.ndarray:
    """Divide by the largest magnitude so norms and dots cannot overflow."""
    peak = np.max(np.abs(v), axis=axis, keepdims=axis is not None) if v.size else 0.0
    return np.divide(v, peak, out=np.zeros_like(v), where=peak != 0.0)


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Cosine similarity of two vectors.

    Returns 0.0 when either vector has zero magnitude, so scoring stays total
    over the stored set.
    """
    va = _scaled(np.asarray(a, dtype=np.float64))
    vb = _scaled(np.asarray(b, dtype=np.float64))
    denom = float(np.linalg.norm(va)) * float(np.linalg.norm(vb))
    if denom == 0.0:
        return 0.0
    score = float(np.dot(va, vb) / denom)
    if not np.isfinite(score):
        return 0.0
    return float(np.clip(score, -1.0, 1.0))


def score_all(matrix: np.ndarray, norms: np.ndarray, query: list[float]) -> np.ndarray:
    """Cosine similarity of ``query`` against every row of ``matrix``.

    Args:
        matrix: (n, d) float64 embeddings, each row scaled by its peak
            magnitude (see EmbeddingMatrix).
        norms: (n,) precomputed magnitudes of the scaled rows.
        query: Query vector of length d.

    Returns:
        (n,) float64 scores in [-1, 1]; rows or queries with zero magnitude
        score 0.
    """
    q = _scaled(np.asarray(query, dtype=np.float64))
    q_norm = float(np.linalg.norm(q))
    if matrix.shape[0] == 0 or q_norm == 0.0:
        return np.zeros(matrix.shape[0], dtype=np.float64)
    denom = norms * q_norm
    dots = matrix @ q
    scores = np.divide(dots, denom, out=np.zeros_like(dots), where=denom != 0.0)
    scores[~np.isfinite(scores)] = 0.0
    return np.clip(scores, -1.0, 1.0)


def rank(scores: np.ndarray, top_k: int, min_score: float | None = None) -> list[int]:
    """Row indices of the ``top_k`` best scores, best first.

    Ties keep ascending row order (insertion order). Rows scoring below
    ``min_score`` are dropped.
    """
    order = np.argsort(-scores, kind="stable")
    if min_score is not None:
        order = order[scores[order] >= min_score]
    return [int(i) for i in order[:top_k]]


class EmbeddingMatrix:
    """Lazily built matrix view of the store's embeddings.

    The store calls ``invalidate`` on every mutation; the next search rebuilds
    the matrix and row norms once.
    """

    def __init__(self) -> None:
        self._matrix: np.ndarray | None = None
        self._norms: np.ndarray | None = None

    def invalidate(self) -> None:
        self._matrix = None
        self._norms = None

    def get(self, entries: Sequence[Entry]) -> tuple[np.ndarray, np.ndarray]:
        if self._matrix is None or self._norms is None:
            vectors = [e.embedding for e in entries]
            if vectors:
                self._matrix = _scaled(np.asarray(vectors, dtype=np.float64), axis=1)
            else:
                self._matrix = np.zeros((0, 0), dtype=np.float64)
            self._norms = np.linalg.norm(self._matrix, axis=1) if vectors else np.zeros(0)
        return self._matrix, self._norms
