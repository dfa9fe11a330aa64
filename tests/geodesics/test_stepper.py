"""Tests for the Dormand-Prince geodesic stepper."""

import numpy as np
import pytest

from kerrlight.geodesics.bundle import reverse_samples
from kerrlight.geodesics.stepper import (
    GeodesicStatus,
    GeodesicStepper,
    dormand_prince_step,
    error_norm,
    step_factor,
)
from kerrlight.geometry.spacetime import Spacetime

pytestmark = pytest.mark.unit


def test_dormand_prince_exponential_decay():
    """One step of y' = -y matches exp(-h) to fifth order."""
    def rhs(y, out):
        out[...] = -y
        return out

    y = np.ones((2, 8))
    h = np.array([0.1, 0.2])
    y5, delta, k7 = dormand_prince_step(rhs, y, h, -y)

    np.testing.assert_allclose(y5[:, 0], np.exp(-h), rtol=1e-6)
    np.testing.assert_allclose(k7, -y5)
    assert np.all(np.abs(delta) < 1e-4)


def test_error_norm_non_finite_is_infinite():
    y = np.ones((2, 8))
    delta = np.zeros((2, 8))
    delta[1, 3] = np.nan

    err = error_norm(y, delta, 1e-8, 1e-8)

    assert err[0] == 0.0
    assert np.isinf(err[1])


def test_step_factor_is_clamped():
    fac = step_factor(np.array([0.0, 1.0, 1e12]), 0.9, 0.2, 10.0)

    np.testing.assert_allclose(fac, [10.0, 0.9, 0.2])


def test_reverse_samples_worked_example():
    """Camera distances [0, 2, 5] become lengths [0, 3, 5] in source-to-observer order."""
    samples = np.zeros((1, 4, 9))
    samples[0, :3, 1] = [10.0, 8.0, 5.0]
    samples[0, :3, 8] = [0.0, 2.0, 5.0]

    pos, direction, length = reverse_samples(samples, np.array([3]))

    np.testing.assert_array_equal(length[0], [0.0, 3.0, 5.0, 0.0])
    np.testing.assert_array_equal(pos[0, :, 1], [5.0, 8.0, 10.0, 0.0])
    assert direction.shape == (1, 4, 4)


class TestFlatSpace:

    @pytest.fixture
    def stepper(self, internal_config):
        return GeodesicStepper(
            Spacetime(0.0, flat=True),
            internal_config.ray,
            r_terminate=0.0,
            initial_step=1.0,
            plane_normal=np.array([1.0, 0.0, 0.0]),
            plane_distance=9.5,
        )

    def test_straight_line_to_plane(self, stepper):
        pos = np.array([[0.0, 10.0, 0.0, 0.0], [0.0, 10.0, 1.0, -1.0]])
        k_cov = np.array([[-1.0, 1.0, 0.0, 0.0], [-1.0, 1.0, 0.0, 0.0]])

        result = stepper.integrate(pos, k_cov)

        assert np.all(result.status == GeodesicStatus.CONVERGED)
        np.testing.assert_array_equal(result.num_samples, [21, 21])
        last = result.samples[:, 20]
        np.testing.assert_allclose(last[:, 1], -10.0)
        np.testing.assert_allclose(last[:, 0], -20.0)
        np.testing.assert_allclose(last[:, 8], 20.0)
        # Momentum is conserved and the transverse position is unchanged
        np.testing.assert_allclose(last[:, 4:8], k_cov)
        np.testing.assert_allclose(last[:, 2:4], pos[:, 2:4])

    def test_records_attempts(self, stepper):
        pos = np.array([[0.0, 10.0, 0.0, 0.0]])
        k_cov = np.array([[-1.0, 1.0, 0.0, 0.0]])

        result = stepper.integrate(pos, k_cov, record=True)

        assert len(result.attempts) == 20
        assert all(attempt.accepted for attempt in result.attempts)


def test_max_steps_terminates(small_config):
    config = small_config(SPIN=0.0, ray={"max_steps": 3})
    stepper = GeodesicStepper(Spacetime(0.0), config.ray, r_terminate=2.02, initial_step=1.0)
    pos = np.array([[0.0, 50.0, 0.0, 0.0]])
    k_cov = Spacetime(0.0).complete_null(pos, np.array([[0.0, 1.0, 0.0, 0.0]]))

    result = stepper.integrate(pos, k_cov)

    assert result.status[0] == GeodesicStatus.TERMINATED
    assert result.num_samples[0] == 4
