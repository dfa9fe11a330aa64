"""Tests for synchrotron coefficients and the fluid frame."""

import numpy as np
import pytest

from kerrlight.constants import C, H, ME
from kerrlight.geometry.spacetime import Spacetime
from kerrlight.radiation.coefficients import (
    SynchrotronModel,
    fluid_frame,
    kappa_polarized,
    kirchhoff_absorption,
    power_law_synchrotron,
    thermal_faraday,
    thermal_synchrotron,
)

pytestmark = pytest.mark.unit

NU = 230.0e9
NU_C = 1.0e8


class TestFluidFrame:

    def test_static_fluid_in_flat_space(self):
        st = Spacetime(0.0, flat=True)
        pos = np.zeros((1, 4))
        uu = np.zeros((1, 3))
        bb = np.array([[0.1, 0.0, 0.0]])

        u_con, u_cov, b_con, _, bsq = fluid_frame(uu, bb, st.covariant(pos), st.contravariant(pos))

        np.testing.assert_allclose(u_con, [[1.0, 0.0, 0.0, 0.0]])
        np.testing.assert_allclose(u_cov, [[-1.0, 0.0, 0.0, 0.0]])
        np.testing.assert_allclose(b_con, [[0.0, 0.1, 0.0, 0.0]])
        assert bsq[0] == pytest.approx(0.01)

    def test_normalization_in_kerr(self):
        st = Spacetime(0.8)
        pos = np.array([[0.0, 6.0, -2.0, 1.5], [0.0, -3.0, 9.0, -4.0]])
        uu = np.array([[0.1, 0.3, -0.2], [-0.4, 0.05, 0.2]])
        bb = np.array([[0.5, -0.1, 0.2], [0.0, 0.3, 0.7]])
        gcov = st.covariant(pos)

        u_con, u_cov, b_con, b_cov, bsq = fluid_frame(uu, bb, gcov, st.contravariant(pos))

        np.testing.assert_allclose(np.einsum('ni,ni->n', u_con, u_cov), -1.0)
        np.testing.assert_allclose(np.einsum('ni,ni->n', b_con, u_cov), 0.0, atol=1e-12)
        np.testing.assert_allclose(np.einsum('ni,ni->n', b_con, b_cov), bsq)


def test_kirchhoff_absorption_inverts_planck():
    theta_e = np.array([0.5, 5.0, 50.0])
    x = H * NU / (ME * C * C * theta_e)
    planck = 2.0 * H * NU ** 3 / (C * C) / np.expm1(x)

    alpha = kirchhoff_absorption(planck, NU, theta_e)

    np.testing.assert_allclose(alpha, 1.0, rtol=1e-8)


class TestThermal:

    def test_emissivity_signs(self):
        out = thermal_synchrotron(1.0e5, np.array([10.0, 10.0]), NU, NU_C,
                                  np.array([0.6, 0.6]), np.array([0.8, -0.8]), polarized=True)

        assert np.all(out["j_i"] > 0.0)
        # Emission is polarized perpendicular to the field
        assert np.all(out["j_q"] < 0.0)
        assert np.all(np.abs(out["j_q"]) < out["j_i"])
        assert out["j_v"][0] > 0.0 > out["j_v"][1]

    def test_unpolarized_has_only_intensity(self):
        out = thermal_synchrotron(1.0e5, 10.0, NU, NU_C, 0.6, 0.8)

        assert set(out) == {"j_i"}

    def test_faraday_signs(self):
        rho_q, rho_v = thermal_faraday(1.0e5, np.array([10.0, 10.0]), NU, NU_C,
                                       np.array([0.6, 0.6]), np.array([0.8, -0.8]))

        assert np.all(rho_q < 0.0)
        assert rho_v[0] > 0.0 > rho_v[1]


class TestNonThermal:

    def test_power_law_linear_fraction(self):
        out = power_law_synchrotron(1.0e5, NU, NU_C, 0.6, 0.8, 3.0, 1.0, 1.0e3, polarized=True)

        assert out["j_i"] > 0.0 and out["alpha_i"] > 0.0
        assert out["j_q"] / out["j_i"] == pytest.approx(-0.75)
        assert out["rho_q"] == 0.0 and out["rho_v"] == 0.0

    def test_kappa_interpolates_between_table_entries(self):
        args = (1.0e5, NU, NU_C, 0.6, 0.8)
        w = 5.0
        low = kappa_polarized(*args, 4.0, w)
        high = kappa_polarized(*args, 4.5, w)
        mid = kappa_polarized(*args, 4.25, w)

        for name in ("j_i", "alpha_i", "j_q", "rho_v"):
            assert mid[name] == pytest.approx(0.5 * (low[name] + high[name]))
        assert low["j_i"] > 0.0


class TestSynchrotronModel:

    @pytest.fixture
    def model(self, make_config):
        config = make_config(MODEL_TYPE="simulation", plasma={"rat_low": 1.0, "rat_high": 1.0})
        return SynchrotronModel(config, Spacetime(0.0), 1.0)

    def test_plasma_state(self, model):
        state = model.plasma_state(np.array([2.0]), np.array([0.2]), np.array([0.04]))

        rho_cgs = model.simulation.rho_cgs
        assert state["rho"][0] == pytest.approx(2.0 * rho_cgs)
        assert state["sigma"][0] == pytest.approx(0.02)
        assert state["beta_inv"][0] == pytest.approx(0.1)
        assert state["theta_e"][0] > 0.0
        # Electron temperature scales with p / rho
        doubled = model.plasma_state(np.array([2.0]), np.array([0.4]), np.array([0.04]))
        assert doubled["theta_e"][0] == pytest.approx(2.0 * state["theta_e"][0])

    def test_thermal_population_only(self, model):
        assert model.populations == [("thermal", 1.0)]
