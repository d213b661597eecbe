"""Tests for cosine k-means and its helpers."""

from __future__ import annotations

import numpy as np
import pytest

from devmind.optimizer import average_pairwise_similarity, kmeans, stack_vectors


class IdentityOrder:
    """Stand-in generator whose permutation keeps row order, so seeds are rows 0..k-1."""

    def permutation(self, n: int) -> np.ndarray:
        return np.arange(n)


# Rows alternate between a group near the x axis and a group near the y axis.
TWO_GROUPS = np.array(
    [
        [1.0, 0.0],
        [0.0, 1.0],
        [0.99, 0.1],
        [0.1, 0.99],
        [0.98, 0.05],
        [0.05, 0.98],
    ],
    dtype=np.float32,
)


class TestStackVectors:
    def test_empty(self) -> None:
        matrix, kept = stack_vectors([])
        assert matrix.shape == (0, 0)
        assert kept == []

    def test_keeps_most_common_dimension(self) -> None:
        vectors = [np.ones(3), np.ones(2), np.zeros(3)]

        matrix, kept = stack_vectors(vectors)

        assert kept == [0, 2]
        assert matrix.shape == (2, 3)
        assert matrix.dtype == np.float32


class TestKMeans:
    """Threshold-gated cosine k-means."""

    def test_separates_groups(self) -> None:
        clusters = kmeans(TWO_GROUPS, 2, 0.9, rng=IdentityOrder())

        assert sorted(c.members for c in clusters) == [[0, 2, 4], [1, 3, 5]]

    def test_centroid_settles_near_member_mean(self) -> None:
        """A centroid only moves while it is further than the convergence similarity from its mean."""
        clusters = kmeans(TWO_GROUPS, 2, 0.9, convergence=0.99, rng=IdentityOrder())
        first = next(c for c in clusters if c.members[0] == 0)
        mean = TWO_GROUPS[[0, 2, 4]].mean(axis=0)

        cosine = float(np.dot(first.centroid, mean) / (np.linalg.norm(first.centroid) * np.linalg.norm(mean)))
        assert cosine >= 0.99

    def test_dissimilar_rows_left_out(self) -> None:
        matrix = np.vstack([TWO_GROUPS[[0, 2, 4]], np.array([[-1.0, 0.0]], dtype=np.float32)])

        clusters = kmeans(matrix, 1, 0.9, rng=IdentityOrder())

        assert [c.members for c in clusters] == [[0, 1, 2]]

    def test_k_capped_by_rows(self) -> None:
        clusters = kmeans(TWO_GROUPS[:2], 10, 0.9, rng=IdentityOrder())
        assert sorted(c.members for c in clusters) == [[0], [1]]

    @pytest.mark.parametrize("k", [0, -1])
    def test_no_clusters_requested(self, k: int) -> None:
        assert kmeans(TWO_GROUPS, k, 0.5) == []

    def test_empty_matrix(self) -> None:
        assert kmeans(np.empty((0, 2), dtype=np.float32), 3, 0.5) == []

    def test_seeded_runs_repeat(self) -> None:
        first = kmeans(TWO_GROUPS, 2, 0.5, rng=np.random.default_rng(7))
        second = kmeans(TWO_GROUPS, 2, 0.5, rng=np.random.default_rng(7))
        assert [c.members for c in first] == [c.members for c in second]


class TestAveragePairwiseSimilarity:
    def test_single_row(self) -> None:
        assert average_pairwise_similarity(np.ones((1, 3))) == 0.0

    def test_identical_rows(self) -> None:
        assert average_pairwise_similarity(np.ones((3, 2))) == pytest.approx(1.0)

    def test_mixed(self) -> None:
        matrix = np.array([[1.0, 0.0], [0.0, 1.0], [1.0, 1.0]])
        expected = (0.0 + 2 / np.sqrt(2)) / 3  # pairs: 0, 1/sqrt(2), 1/sqrt(2)
        assert average_pairwise_similarity(matrix) == pytest.approx(expected)
