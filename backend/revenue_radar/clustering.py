from __future__ import annotations

from collections import deque
from typing import Protocol, Sequence

import numpy as np
from sklearn.metrics.pairwise import cosine_distances

from .errors import DegenerateVectorError

DEFAULT_EPS = 0.3
DEFAULT_MIN_POINTS = 3

UNASSIGNED = -1


class NeighborIndex(Protocol):
    def neighbors(self, point: int) -> list[int]:
        """Indexes of every point within eps of `point`, itself included, in input order."""


def _embedding_matrix(vectors: Sequence[Sequence[float]]) -> np.ndarray:
    dimensions = {len(vector) for vector in vectors}
    if len(dimensions) != 1:
        raise DegenerateVectorError(f"Embeddings must share one dimension, got {sorted(dimensions)}")

    matrix = np.array(vectors, dtype=float)
    if matrix.shape[1] == 0:
        raise DegenerateVectorError("Embeddings must not be empty")
    if not np.all(np.isfinite(matrix)):
        raise DegenerateVectorError("Embeddings contain non-finite values")

    zero_rows = np.flatnonzero(np.linalg.norm(matrix, axis=1) == 0)
    if zero_rows.size:
        raise DegenerateVectorError(f"Zero-norm embedding at position {int(zero_rows[0])}")
    return matrix


class BruteForceNeighborIndex:
    """Exact O(n^2) pairwise scan; fine at the volume of one organization's issues."""

    def __init__(self, matrix: np.ndarray, eps: float) -> None:
        self._within = cosine_distances(matrix) <= eps

    def neighbors(self, point: int) -> list[int]:
        return np.flatnonzero(self._within[point]).tolist()


def dbscan(
    points: Sequence[tuple[str, Sequence[float]]],
    eps: float = DEFAULT_EPS,
    min_points: int = DEFAULT_MIN_POINTS,
    index_factory=BruteForceNeighborIndex,
) -> dict[int, list[str]]:
    """Density clustering over cosine distance.

    Returns cluster index (in discovery order) -> member ids (in the order they
    joined). Points that never reach a core point's neighbourhood are noise and
    are left out. A border point belongs to the first cluster whose expansion
    reaches it, so input order decides contested border points.
    """
    if eps <= 0:
        raise ValueError("eps must be positive")
    if min_points < 1:
        raise ValueError("min_points must be >= 1")
    if not points:
        return {}

    ids = [issue_id for issue_id, _ in points]
    if len(set(ids)) != len(ids):
        raise ValueError("Issue ids must be unique within one clustering run")

    index = index_factory(_embedding_matrix([vector for _, vector in points]), eps)
    n_points = len(ids)
    visited = np.zeros(n_points, dtype=bool)
    assignment = np.full(n_points, UNASSIGNED, dtype=int)
    clusters: dict[int, list[str]] = {}

    for point in range(n_points):
        if visited[point]:
            continue
        visited[point] = True

        neighbors = index.neighbors(point)
        if len(neighbors) < min_points:
            # Noise for now; may still be absorbed as a border point later.
            continue

        cluster_id = len(clusters)
        assignment[point] = cluster_id
        members = [point]

        frontier = deque(neighbors)
        queued = set(neighbors)
        while frontier:
            candidate = frontier.popleft()
            if not visited[candidate]:
                visited[candidate] = True
                candidate_neighbors = index.neighbors(candidate)
                if len(candidate_neighbors) >= min_points:
                    for neighbor in candidate_neighbors:
                        if neighbor not in queued:
                            queued.add(neighbor)
                            frontier.append(neighbor)

            if assignment[candidate] == UNASSIGNED:
                assignment[candidate] = cluster_id
                members.append(candidate)

        clusters[cluster_id] = [ids[member] for member in members]

    return clusters


def noise_points(points: Sequence[tuple[str, Sequence[float]]], clusters: dict[int, list[str]]) -> list[str]:
    clustered = {issue_id for members in clusters.values() for issue_id in members}
    return [issue_id for issue_id, _ in points if issue_id not in clustered]
