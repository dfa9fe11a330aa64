"""Tests for the Kerr-Schild metric evaluator."""

import numpy as np
import pytest

from kerrlight.geometry import kerr
from kerrlight.geometry.spacetime import Spacetime

pytestmark = pytest.mark.unit


@pytest.fixture
def points():
    rng = np.random.default_rng(7)
    xyz = rng.uniform(-20.0, 20.0, size=(25, 3))
    # Keep clear of the ring singularity
    xyz[:, 2] += np.where(xyz[:, 2] >= 0.0, 2.0, -2.0)
    return xyz


class TestMetric:

    @pytest.mark.parametrize("a", [0.0, 0.5, 0.99])
    def test_metric_inverse(self, points, a):
        x, y, z = points.T
        gcov = kerr.covariant_metric(x, y, z, a)
        gcon = kerr.contravariant_metric(x, y, z, a)

        product = np.einsum('nij,njk->nik', gcov, gcon)
        np.testing.assert_allclose(product, np.broadcast_to(np.eye(4), product.shape), atol=1e-10)

    def test_schwarzschild_radius_is_euclidean(self, points):
        x, y, z = points.T
        r = kerr.radial_coordinate(x, y, z, 0.0)
        np.testing.assert_allclose(r, np.linalg.norm(points, axis=1))

    def test_radius_inverts_spherical_chart(self):
        a = 0.9
        r = np.array([2.0, 5.0, 30.0])
        th = np.array([0.3, 1.2, 2.5])
        ph = np.array([0.0, 2.0, -1.0])
        x, y, z = kerr.spherical_to_cartesian(r, th, ph, a)
        np.testing.assert_allclose(kerr.radial_coordinate(x, y, z, a), r)

    def test_out_argument_is_filled(self, points):
        x, y, z = points.T
        out = np.empty((len(x), 4, 4))
        result = kerr.covariant_metric(x, y, z, 0.5, out=out)
        assert result is out
        np.testing.assert_allclose(out, kerr.covariant_metric(x, y, z, 0.5))

    def test_radius_floor(self):
        assert kerr.radial_coordinate(0.0, 0.0, 0.0, 0.0) == kerr.R_FLOOR

    @pytest.mark.parametrize("a", [0.0, 0.7])
    def test_contravariant_derivative_matches_finite_difference(self, points, a):
        eps = 1.0e-6
        x, y, z = points.T
        analytic = kerr.contravariant_metric_derivative(x, y, z, a)

        np.testing.assert_array_equal(analytic[:, 0], 0.0)
        coords = [x, y, z]
        for axis in range(3):
            plus = [c.copy() for c in coords]
            minus = [c.copy() for c in coords]
            plus[axis] += eps
            minus[axis] -= eps
            numeric = (kerr.contravariant_metric(*plus, a)
                       - kerr.contravariant_metric(*minus, a)) / (2.0 * eps)
            np.testing.assert_allclose(analytic[:, axis + 1], numeric, atol=1e-6)


class TestRadii:

    def test_horizon(self):
        assert kerr.horizon_radius(0.0) == pytest.approx(2.0)
        assert kerr.horizon_radius(1.0) == pytest.approx(1.0)

    def test_photon_orbit(self):
        assert kerr.photon_orbit_radius(0.0) == pytest.approx(3.0)
        assert kerr.photon_orbit_radius(1.0) == pytest.approx(1.0)


class TestSpacetime:

    def test_flat_ignores_spin(self):
        st = Spacetime(0.9, flat=True)
        pos = np.array([[0.0, 1.0, 2.0, 3.0]])

        assert st.a == 0.0
        np.testing.assert_array_equal(st.covariant(pos)[0], np.diag([-1.0, 1.0, 1.0, 1.0]))
        np.testing.assert_array_equal(st.contravariant_derivative(pos), 0.0)
        assert st.horizon_radius() == 0.0

    def test_complete_null(self):
        st = Spacetime(0.9)
        pos = np.array([[0.0, 10.0, 3.0, 4.0], [0.0, -5.0, 8.0, -2.0]])
        k = np.array([[0.0, -1.0, 0.2, 0.1], [0.0, 0.3, -0.5, 1.0]])

        k = st.complete_null(pos, k)
        norm = np.einsum('ni,nij,nj->n', k, st.contravariant(pos), k)

        np.testing.assert_allclose(norm, 0.0, atol=1e-12)

    def test_covariant_derivative_matches_finite_difference(self):
        st = Spacetime(0.6)
        pos = np.array([[0.0, 6.0, -3.0, 2.5]])
        eps = 1.0e-6
        analytic = st.covariant_derivative(pos)[0]
        for axis in range(1, 4):
            plus, minus = pos.copy(), pos.copy()
            plus[0, axis] += eps
            minus[0, axis] -= eps
            numeric = (st.covariant(plus) - st.covariant(minus))[0] / (2.0 * eps)
            np.testing.assert_allclose(analytic[axis], numeric, atol=1e-6)
