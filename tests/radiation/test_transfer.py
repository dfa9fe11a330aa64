"""Tests for unpolarized and polarized radiative transfer."""

import numpy as np
import pytest
from scipy.linalg import expm

from kerrlight.radiation.coefficients import Coefficients
from kerrlight.radiation.layout import ImageLayout
from kerrlight.radiation.polarization import rotate_linear
from kerrlight.radiation.transfer import (
    _expm,
    attenuated_fraction,
    find_z_turnings,
    integrate_polarized,
    integrate_unpolarized,
    mueller_matrix,
    segment_geometry,
    segment_propagator,
    write_pixel_quantities,
)

pytestmark = pytest.mark.unit


@pytest.fixture
def slab():
    """One pixel crossing two unit segments, plus an empty pixel."""
    pos = np.zeros((2, 3, 4))
    pos[0, :, 0] = [-2.0, -1.0, 0.0]
    length = np.array([[0.0, 1.0, 2.0], [0.0, 0.0, 0.0]])
    num_steps = np.array([3, 1])
    return segment_geometry(pos, length, num_steps, np.zeros(2), 1.0, 1.0)


def test_attenuated_fraction():
    values = attenuated_fraction(np.array([0.0, 1.0e-12, 1.0, 50.0]))

    np.testing.assert_allclose(values, [1.0, 1.0, 1.0 - np.exp(-1.0), 1.0 / 50.0])


def test_segment_geometry(slab):
    np.testing.assert_array_equal(slab.valid, [[True, True], [False, False]])
    np.testing.assert_array_equal(slab.d_len, [[1.0, 1.0], [0.0, 0.0]])
    np.testing.assert_array_equal(slab.total_length, [2.0, 0.0])
    # Distance from the camera of each segment midpoint
    np.testing.assert_array_equal(slab.dist_mid[0], [1.5, 0.5])
    np.testing.assert_array_equal(slab.t_mid[0], [1.5, 0.5])


class TestUnpolarized:

    def test_transparent_emission_adds_up(self, slab):
        j = np.ones((2, 3))
        out = integrate_unpolarized(j, np.zeros((2, 3)), slab)

        np.testing.assert_allclose(out["intensity"], [2.0, 0.0])
        np.testing.assert_allclose(out["tau"], [0.0, 0.0])
        np.testing.assert_allclose(out["emission"], [2.0, 0.0])
        # Equal weights on both segments
        assert out["length"][0] == pytest.approx(1.0)

    def test_uniform_slab_matches_closed_form(self, slab):
        j = np.ones((2, 3))
        alpha = np.ones((2, 3))
        out = integrate_unpolarized(j, alpha, slab)

        assert out["intensity"][0] == pytest.approx(1.0 - np.exp(-2.0))
        assert out["tau"][0] == pytest.approx(2.0)
        # The near segment is less attenuated, so emission is weighted toward the camera
        assert out["length"][0] < 1.0

    def test_cell_averages(self, slab):
        j = np.ones((2, 3))
        cells = np.zeros((2, 3, 7))
        cells[0, :, 0] = [1.0, 3.0, 5.0]
        out = integrate_unpolarized(j, np.zeros((2, 3)), slab, cells=cells)

        assert out["lambda_ave"].shape == (2, 7)
        assert out["lambda_ave"][0, 0] == pytest.approx(3.0)
        assert out["emission_ave"][0, 0] == pytest.approx(3.0)
        np.testing.assert_array_equal(out["tau_int"], 0.0)


class TestPolarized:

    def test_expm_matches_scipy(self):
        rng = np.random.default_rng(3)
        mat = rng.normal(size=(3, 5, 5))

        result = _expm(mat)

        for n in range(3):
            np.testing.assert_allclose(result[n], expm(mat[n]), rtol=1e-9, atol=1e-10)

    def test_pure_absorption_propagator(self):
        alpha = np.array([[0.5, 0.0, 0.0, 0.0]])
        k_mat = mueller_matrix(alpha, np.zeros((1, 3)))
        j_vec = np.array([[1.0, 0.0, 0.0, 0.0]])

        prop, source = segment_propagator(k_mat, j_vec, np.array([2.0]))

        np.testing.assert_allclose(prop[0], np.exp(-1.0) * np.eye(4), atol=1e-12)
        np.testing.assert_allclose(source[0], [(1.0 - np.exp(-1.0)) / 0.5, 0.0, 0.0, 0.0])

    def test_faraday_rotation_turns_q_into_u(self):
        rho = np.array([[0.0, 0.0, 0.3]])
        k_mat = mueller_matrix(np.zeros((1, 4)), rho)

        prop, _ = segment_propagator(k_mat, np.zeros((1, 4)), np.array([2.0]))
        stokes = prop[0] @ np.array([0.0, 1.0, 0.0, 0.0])

        np.testing.assert_allclose(stokes, [0.0, np.cos(0.6), np.sin(0.6), 0.0], atol=1e-12)

    def test_unpolarized_limit_matches_scalar_transfer(self, slab):
        j = np.array([[1.0, 2.0, 0.5], [0.0, 0.0, 0.0]])
        alpha = np.array([[0.2, 0.7, 1.5], [0.0, 0.0, 0.0]])
        zeros = np.zeros_like(j)
        coeffs = Coefficients(j_i=j, alpha_i=alpha, nan=np.zeros_like(j, dtype=bool),
                              j_q=zeros, j_v=zeros, alpha_q=zeros, alpha_v=zeros,
                              rho_q=zeros, rho_v=zeros)

        stokes = integrate_polarized(coeffs, zeros, slab)
        scalar = integrate_unpolarized(j, alpha, slab)

        np.testing.assert_allclose(stokes[:, 0], scalar["intensity"], rtol=1e-10)
        np.testing.assert_allclose(stokes[:, 1:], 0.0, atol=1e-14)

    def test_rotate_linear(self):
        q, u = rotate_linear(np.array([-1.0]), np.array([np.pi / 4.0]))

        np.testing.assert_allclose(q, [0.0], atol=1e-15)
        np.testing.assert_allclose(u, [-1.0])


def test_write_pixel_quantities_scales_intensity():
    layout = ImageLayout.from_flags(light=True, tau=True, emission=True)
    image = np.zeros((layout.num_quantities, 4))
    results = {"intensity": np.array([1.0, 2.0]), "tau": np.array([0.1, 0.2]),
               "emission": np.array([3.0, 4.0])}

    write_pixel_quantities(image, layout, results, 2.0, pixels=slice(2, 4))

    np.testing.assert_allclose(image[0], [0.0, 0.0, 8.0, 16.0])
    np.testing.assert_allclose(image[layout.offset("tau")], [0.0, 0.0, 0.1, 0.2])
    np.testing.assert_allclose(image[layout.offset("emission")], [0.0, 0.0, 24.0, 32.0])


class TestZTurnings:
    """Turning points of z counted from the camera end of each geodesic."""

    @pytest.fixture
    def wave(self):
        # Extrema of z at samples 20, 40 and 60
        return np.cos(np.linspace(0.0, 4.0 * np.pi, 81))[None, :]

    def test_counts_every_extremum(self, wave):
        count, start = find_z_turnings(wave, np.array([81]))

        assert count[0] == 3
        assert start[0] == 0

    @pytest.mark.parametrize("cut, expected", [(0, 50), (1, 30), (2, 10), (3, 0)])
    def test_cut_moves_start_towards_camera(self, wave, cut, expected):
        _, start = find_z_turnings(wave, np.array([81]), cut=cut)

        assert start[0] == expected

    def test_close_sign_changes_count_once(self):
        z = -np.abs(np.arange(41.0) - 20.0)
        # Wiggle adds sign changes of dz at samples 23 and 24
        z[24] = -2.5

        count, _ = find_z_turnings(z[None, :], np.array([41]))

        assert count[0] == 1

    def test_equatorial_ray_has_none(self):
        count, start = find_z_turnings(np.zeros((1, 50)), np.array([50]))

        assert count[0] == 0
        assert start[0] == 0

    def test_short_geodesic_is_not_searched(self, wave):
        count, _ = find_z_turnings(wave, np.array([20]))

        assert count[0] == 0

    def test_start_invalidates_source_side_segments(self, slab):
        pos = np.zeros((2, 3, 4))
        length = np.array([[0.0, 1.0, 2.0], [0.0, 0.0, 0.0]])
        cut = segment_geometry(pos, length, np.array([3, 1]), np.zeros(2), 1.0, 1.0,
                               start=np.array([1, 0]))

        np.testing.assert_array_equal(cut.valid, [[False, True], [False, False]])
        # Reported length is still the whole geodesic
        np.testing.assert_array_equal(cut.total_length, slab.total_length)

        j = np.ones((2, 3))
        alpha = np.full((2, 3), 0.5)
        full_out = integrate_unpolarized(j, alpha, slab)
        cut_out = integrate_unpolarized(j, alpha, cut)

        assert cut_out["intensity"][0] < full_out["intensity"][0]
        assert cut_out["tau"][0] == pytest.approx(0.5)
        assert full_out["tau"][0] == pytest.approx(1.0)

    def test_written_to_layout_row(self):
        layout = ImageLayout.from_flags(light=True, z_turnings=True)
        image = np.zeros((layout.num_quantities, 2))
        results = {"intensity": np.array([1.0, 1.0]), "z_turnings": np.array([0.0, 2.0])}

        write_pixel_quantities(image, layout, results, 1.0)

        np.testing.assert_array_equal(image[layout.offset("z_turnings")], [0.0, 2.0])
