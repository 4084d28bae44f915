"""Cosine similarity and centroid math over embedding vectors."""

from __future__ import annotations

from typing import Sequence

import numpy as np

from .errors import DegenerateVectorError


def as_vector(values: Sequence[float]) -> np.ndarray:
    vector = np.asarray(values, dtype=float)
    if vector.ndim != 1 or vector.size == 0:
        raise DegenerateVectorError("Embedding must be a non-empty one-dimensional vector")
    if not np.all(np.isfinite(vector)):
        raise DegenerateVectorError("Embedding contains non-finite values")
    return vector


def cosine_similarity(left: Sequence[float], right: Sequence[float]) -> float:
    """Cosine similarity in [-1, 1].

    Raises DegenerateVectorError for zero-norm or mismatched vectors instead of
    returning 0, since a silent 0 would look like a legitimate distance.
    """
    a = as_vector(left)
    b = as_vector(right)
    if a.shape != b.shape:
        raise DegenerateVectorError(f"Dimension mismatch: {a.size} != {b.size}")

    left_norm = np.linalg.norm(a)
    right_norm = np.linalg.norm(b)
    if left_norm == 0 or right_norm == 0:
        raise DegenerateVectorError("Cosine similarity is undefined for a zero-norm vector")

    similarity = float(np.dot(a, b) / (left_norm * right_norm))
    return max(-1.0, min(1.0, similarity))


def cosine_distance(left: Sequence[float], right: Sequence[float]) -> float:
    return 1.0 - cosine_similarity(left, right)


def centroid(vectors: Sequence[Sequence[float]]) -> np.ndarray:
    """Coordinate-wise mean of a non-empty set of equal-length vectors."""
    if len(vectors) == 0:
        raise DegenerateVectorError("Centroid is undefined for an empty embedding set")

    rows = [as_vector(vector) for vector in vectors]
    dimension = rows[0].size
    if any(row.size != dimension for row in rows):
        raise DegenerateVectorError("All embeddings must share one dimension")
    return np.mean(np.vstack(rows), axis=0)


def similarity_to_centroid(vectors: Sequence[Sequence[float]]) -> list[float]:
    """Similarity of every vector to the set's centroid, clamped into [0, 1]."""
    center = centroid(vectors)
    return [max(0.0, cosine_similarity(vector, center)) for vector in vectors]
