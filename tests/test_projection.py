"""
Projection Tests
================

Deterministic power-iteration PCA, dimension choice and batch
normalization into scene coordinates.
"""

import numpy as np
import pytest

from conceptgraph.projection import (
    POWER_ITERATIONS,
    axis_directions,
    axis_labels,
    choose_dimensions,
    deterministic_pca,
    normalize_positions,
    positions_from_pc_values,
)

ROWS = np.array(
    [
        [0.9, 0.1, 0.0, 0.2],
        [0.1, 0.8, 0.3, 0.0],
        [0.0, 0.2, 0.9, 0.1],
        [0.4, 0.4, 0.1, 0.7],
        [0.2, 0.0, 0.5, 0.6],
    ]
)


class TestDeterministicPCA:
    def test_repeat_runs_are_bit_identical(self):
        a = deterministic_pca(ROWS, 3)
        b = deterministic_pca(ROWS.copy(), 3)
        assert np.array_equal(a.components, b.components)
        assert a.explained_variance == b.explained_variance

    def test_components_are_orthonormal(self):
        pca = deterministic_pca(ROWS, 3)
        assert np.allclose(pca.components @ pca.components.T, np.eye(3), atol=1e-8)

    def test_sign_is_canonical(self):
        pca = deterministic_pca(ROWS, 3)
        assert all(float(c.sum()) > 0 for c in pca.components)

    def test_single_axis_data(self):
        pca = deterministic_pca(np.array([[0.0, 0.0], [2.0, 0.0], [4.0, 0.0]]), 1)
        assert np.allclose(pca.components[0], [1.0, 0.0])
        assert pca.explained_ratio[0] == pytest.approx(1.0)

    def test_iterations_stop_at_the_cap(self):
        pca = deterministic_pca(ROWS, 3)
        assert all(1 <= steps <= POWER_ITERATIONS for steps in pca.iterations)


class TestChooseDimensions:
    def test_manual_mode_is_capped_by_entities(self):
        pca = deterministic_pca(ROWS[:2], 1)
        assert choose_dimensions(pca, 3, "manual", 0.9, n_entities=2) == 1

    def test_variance_target_stops_at_threshold(self):
        pca = deterministic_pca(np.array([[0.0, 0.0], [2.0, 0.0], [4.0, 0.0]]), 2)
        assert choose_dimensions(pca, 3, "variance-target", 0.9, n_entities=3) == 1


class TestPositions:
    def test_first_three_axes_are_the_basis(self):
        assert np.array_equal(axis_directions(3), np.eye(3))

    def test_extra_axes_lie_on_the_sphere(self):
        dirs = axis_directions(6)
        assert dirs.shape == (6, 3)
        assert np.allclose(np.linalg.norm(dirs, axis=1), 1.0)

    def test_normalize_centres_and_scales(self):
        out = normalize_positions(np.array([[0.0, 0.0, 0.0], [2.0, 4.0, 0.0]]), scale=10.0)
        assert np.allclose(out, [[-5.0, -10.0, 0.0], [5.0, 10.0, 0.0]])

    def test_identical_profiles_share_a_coordinate(self):
        out = positions_from_pc_values(np.array([[0.3, 0.1], [0.3, 0.1], [-0.2, 0.4]]), 2)
        assert np.array_equal(out[0], out[1])
        assert np.abs(out).max() <= 20.0

    def test_single_point_sits_at_origin(self):
        assert np.array_equal(normalize_positions(np.array([[3.0, 1.0, 2.0]])), np.zeros((1, 3)))


class TestAxisLabels:
    def test_poles_are_extreme_concepts(self):
        labels = axis_labels(["Light", "Roof", "Facade"], ["c0", "c1", "c2"], np.array([[-1.0], [0.0], [1.0]]))
        assert labels["pc1"]["name"] == "Light vs Facade"
        assert labels["pc1"]["negative_id"] == "c0"
        assert labels["x"] == labels["pc1"]
