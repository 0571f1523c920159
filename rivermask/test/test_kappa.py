"""Tests for Cohen's Kappa coefficient."""

import numpy as np
import pytest

from rivermask.domain.kappa import compute, expected_agreement


class TestKappa:
    """Test Cohen's Kappa computation."""

    def test_perfect_agreement(self, perfect_matrix):
        kappa, ci = compute(perfect_matrix)
        assert kappa == pytest.approx(1.0)

    def test_known_2class(self, simple_2class_matrix):
        # OA = 0.80
        # p_e = (50*50 + 50*50) / 10000 = 0.50
        # Kappa = (0.80 - 0.50) / (1 - 0.50) = 0.60
        kappa, ci = compute(simple_2class_matrix)
        assert kappa == pytest.approx(0.60)

    def test_expected_agreement(self, simple_2class_matrix):
        assert expected_agreement(simple_2class_matrix) == pytest.approx(0.5)

    def test_ci_brackets_kappa(self, river_matrix):
        kappa, (lo, hi) = compute(river_matrix)
        assert lo <= kappa <= hi

    def test_empty_matrix_raises(self):
        with pytest.raises(ValueError, match="empty"):
            compute(np.zeros((2, 2), dtype=np.int64))

    def test_single_class_undefined(self):
        """Everything in one class on both sides: p_e = 1, Kappa undefined."""
        matrix = np.array([[100, 0], [0, 0]], dtype=np.int64)
        assert compute(matrix) == (None, None)

    def test_one_by_one_undefined(self):
        assert compute(np.array([[100]], dtype=np.int64)) == (None, None)

    def test_complete_disagreement(self):
        matrix = np.array([[0, 50], [50, 0]], dtype=np.int64)
        kappa, ci = compute(matrix)
        assert kappa < 0
