"""Tests for stratified random point generation."""

import numpy as np

from rivermask.domain.sampling import generate_stratified_random


def _grid_candidates(n, offset=0.0):
    return np.array([[i, j + offset] for i in range(n) for j in range(n)], dtype=float)


class TestStratifiedRandomSampling:
    """Test stratified random point generation."""

    def test_correct_count(self):
        candidates = {
            0: np.array([[i, 0] for i in range(100)], dtype=float),
            1: np.array([[i, 100] for i in range(100)], dtype=float),
        }
        points, warnings = generate_stratified_random(candidates, {0: 20, 1: 30}, seed=42)
        counts = {}
        for p in points:
            counts[p.stratum_class] = counts.get(p.stratum_class, 0) + 1
        assert counts == {0: 20, 1: 30}
        assert warnings == []

    def test_ids_sequential(self):
        candidates = {0: _grid_candidates(10), 1: _grid_candidates(10, 100)}
        points, _ = generate_stratified_random(candidates, {0: 5, 1: 5})
        assert [p.id for p in points] == list(range(1, 11))

    def test_reproducibility(self):
        candidates = {1: _grid_candidates(50)}
        points_a, _ = generate_stratified_random(candidates, {1: 25}, seed=42)
        points_b, _ = generate_stratified_random(candidates, {1: 25}, seed=42)
        assert [(p.x, p.y) for p in points_a] == [(p.x, p.y) for p in points_b]

    def test_different_seed_different_points(self):
        candidates = {1: _grid_candidates(50)}
        points_a, _ = generate_stratified_random(candidates, {1: 25}, seed=42)
        points_b, _ = generate_stratified_random(candidates, {1: 25}, seed=99)
        assert {(p.x, p.y) for p in points_a} != {(p.x, p.y) for p in points_b}

    def test_points_come_from_candidates(self):
        candidates = {1: _grid_candidates(20)}
        points, _ = generate_stratified_random(candidates, {1: 40}, seed=7)
        allowed = {tuple(c) for c in candidates[1]}
        assert all((p.x, p.y) in allowed for p in points)
        assert len({(p.x, p.y) for p in points}) == 40

    def test_min_distance_respected(self):
        candidates = {1: _grid_candidates(100) * 10}
        min_dist = 15.0
        points, _ = generate_stratified_random(
            candidates, {1: 50}, min_distance=min_dist, seed=42
        )
        coords = np.array([[p.x, p.y] for p in points])
        for i in range(len(coords)):
            d = np.sqrt(((coords[i + 1:] - coords[i]) ** 2).sum(axis=1))
            assert (d >= min_dist - 1e-6).all()

    def test_min_distance_across_strata(self):
        candidates = {0: np.array([[0.0, 0.0]]), 1: np.array([[1.0, 0.0], [50.0, 0.0]])}
        points, _ = generate_stratified_random(
            candidates, {0: 1, 1: 2}, min_distance=10.0, seed=1
        )
        assert [(p.x, p.stratum_class) for p in points] == [(0.0, 0), (50.0, 1)]

    def test_insufficient_candidates_warning(self):
        candidates = {1: np.array([[0, 0], [10, 10]], dtype=float)}
        points, warnings = generate_stratified_random(candidates, {1: 50}, seed=42)
        assert len(points) == 2
        assert "only 2 of 50" in warnings[0].lower()

    def test_empty_stratum_warning(self):
        candidates = {0: _grid_candidates(5), 1: np.empty((0, 2))}
        points, warnings = generate_stratified_random(candidates, {0: 5, 1: 5})
        assert len(points) == 5
        assert any("no candidate pixels" in w for w in warnings)

    def test_progress_callback(self):
        calls = []
        candidates = {0: _grid_candidates(5), 1: _grid_candidates(5, 10)}
        generate_stratified_random(candidates, {0: 2, 1: 2},
                                   progress_callback=lambda i, n: calls.append((i, n)))
        assert calls == [(1, 2), (2, 2)]
