"""Cosine k-means over context embeddings.

Centroids are the plain mean of their members. A vector joins the most
similar centroid only when that similarity reaches the threshold; vectors
below it belong to no cluster. Iteration stops when every centroid stays
at least ``convergence`` similar to its previous position.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass, field

import numpy as np

from devmind.store.embedding import normalize_rows


@dataclass
class RawCluster:
    """k-means output: a centroid and the row indices assigned to it."""

    centroid: np.ndarray
    members: list[int] = field(default_factory=list)


def stack_vectors(vectors: Sequence[np.ndarray]) -> tuple[np.ndarray, list[int]]:
    """Stack vectors of the most common dimension into a matrix.

    Returns:
        The (n, d) float32 matrix and the input positions it holds. Vectors
        of any other dimension are left out.
    """
    if not vectors:
        return np.empty((0, 0), dtype=np.float32), []
    dim = Counter(v.shape[0] for v in vectors).most_common(1)[0][0]
    kept = [i for i, v in enumerate(vectors) if v.shape[0] == dim]
    return np.vstack([vectors[i] for i in kept]).astype(np.float32), kept


def kmeans(
    matrix: np.ndarray,
    k: int,
    similarity_threshold: float,
    *,
    max_iterations: int = 50,
    convergence: float = 0.99,
    rng: np.random.Generator | None = None,
) -> list[RawCluster]:
    """Cluster the rows of *matrix*.

    Args:
        matrix: (n, d) vectors.
        k: Upper bound on clusters; min(k, n) centroids are seeded from
            randomly chosen rows.
        similarity_threshold: Minimum cosine similarity for membership.
        max_iterations: Hard stop.
        convergence: Centroid-to-previous similarity that counts as settled.
        rng: Source of the seeding permutation.

    Returns:
        Non-empty clusters only.
    """
    n = matrix.shape[0]
    if n == 0 or k <= 0:
        return []
    rng = rng or np.random.default_rng()

    order = rng.permutation(n)[: min(k, n)]
    centroids = matrix[order].astype(np.float64)
    unit_rows = normalize_rows(matrix.astype(np.float64))
    assignment = np.full(n, -1)

    for _ in range(max_iterations):
        similarity = unit_rows @ normalize_rows(centroids).T
        best = np.argmax(similarity, axis=1)
        best_sim = similarity[np.arange(n), best]
        assignment = np.where(best_sim >= similarity_threshold, best, -1)

        changed = False
        for c in range(centroids.shape[0]):
            members = matrix[assignment == c]
            if members.shape[0] == 0:
                continue
            updated = members.mean(axis=0, dtype=np.float64)
            if _cosine(centroids[c], updated) < convergence:
                centroids[c] = updated
                changed = True
        if not changed:
            break

    clusters = []
    for c in range(centroids.shape[0]):
        members = np.flatnonzero(assignment == c).tolist()
        if members:
            clusters.append(RawCluster(centroid=centroids[c], members=members))
    return clusters


def _cosine(a: np.ndarray, b: np.ndarray) -> float:
    norm = float(np.linalg.norm(a) * np.linalg.norm(b))
    if norm == 0.0:
        return 0.0
    return float(np.dot(a, b) / norm)


def average_pairwise_similarity(matrix: np.ndarray) -> float:
    """Mean cosine similarity over all row pairs; 0.0 for fewer than two rows."""
    n = matrix.shape[0]
    if n < 2:
        return 0.0
    unit = normalize_rows(matrix.astype(np.float64))
    sims = unit @ unit.T
    upper = sims[np.triu_indices(n, k=1)]
    return float(upper.mean())
