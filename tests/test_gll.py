"""Tests for globemesh.gll: quadrature and element mapping."""

import numpy as np
import pytest

from globemesh.gll import gll_points, lagrange_basis, map_points, trilinear_control_points

UNIT_CUBE = np.array([
    [0, 0, 0], [1, 0, 0], [1, 1, 0], [0, 1, 0],
    [0, 0, 1], [1, 0, 1], [1, 1, 1], [0, 1, 1],
], dtype=float)


class TestGLLPoints:
    @pytest.mark.parametrize("ngll", [2, 3, 4, 5, 7])
    def test_weights_sum_to_two(self, ngll):
        _, weights = gll_points(ngll)
        assert weights.sum() == pytest.approx(2.0)

    @pytest.mark.parametrize("ngll", [3, 5, 6])
    def test_points_symmetric_and_sorted(self, ngll):
        points, _ = gll_points(ngll)
        assert points[0] == -1.0 and points[-1] == 1.0
        assert np.all(np.diff(points) > 0)
        np.testing.assert_allclose(points, -points[::-1], atol=1e-14)

    def test_five_point_rule(self):
        points, weights = gll_points(5)
        np.testing.assert_allclose(points, [-1, -np.sqrt(3 / 7), 0, np.sqrt(3 / 7), 1], atol=1e-14)
        np.testing.assert_allclose(weights, [0.1, 49 / 90, 32 / 45, 49 / 90, 0.1])

    def test_exact_for_polynomials(self):
        # n points integrate degree 2n - 3 exactly
        points, weights = gll_points(5)
        assert np.dot(weights, points ** 6) == pytest.approx(2.0 / 7.0)

    def test_too_few_points(self):
        with pytest.raises(ValueError):
            gll_points(1)


class TestLagrangeBasis:
    def test_cardinal_at_nodes(self):
        nodes, _ = gll_points(4)
        np.testing.assert_allclose(lagrange_basis(nodes, nodes), np.eye(4), atol=1e-12)

    def test_partition_of_unity(self):
        basis = lagrange_basis([-1.0, 0.0, 1.0], np.linspace(-1, 1, 11))
        np.testing.assert_allclose(basis.sum(axis=0), 1.0)


class TestMapping:
    def test_trilinear_control_points(self):
        control = trilinear_control_points(UNIT_CUBE)
        assert control.shape == (27, 3)
        np.testing.assert_allclose(control[0], [0, 0, 0])
        np.testing.assert_allclose(control[13], [0.5, 0.5, 0.5])
        np.testing.assert_allclose(control[26], [1, 1, 1])
        # a runs fastest
        np.testing.assert_allclose(control[1], [0.5, 0, 0])
        np.testing.assert_allclose(control[3], [0, 0.5, 0])
        np.testing.assert_allclose(control[9], [0, 0, 0.5])

    def test_map_points_affine(self):
        control = trilinear_control_points(2.0 * UNIT_CUBE + 1.0)
        points, _ = gll_points(5)
        mapped = map_points(control, points)
        assert mapped.shape == (5, 5, 5, 3)
        expected = points + 2.0  # 2 * (p + 1) / 2 + 1
        np.testing.assert_allclose(mapped[0, 0, :, 0], expected)
        np.testing.assert_allclose(mapped[0, :, 0, 1], expected)
        np.testing.assert_allclose(mapped[:, 0, 0, 2], expected)
