"""Tests for sampling block-grid data along geodesics."""

import numpy as np
import pytest

from kerrlight.geodesics.bundle import GeodesicBundle
from kerrlight.geodesics.stepper import GeodesicStatus
from kerrlight.radiation.sampler import GridSampler
from kerrlight.simulation.grid import SimulationGrid
from tests.helpers.fake_grid import make_fake_grid_ds

pytestmark = pytest.mark.unit


def make_bundle(points):
    """Single-sample geodesics at the given Cartesian points."""
    points = np.asarray(points, dtype=float)
    num = points.shape[0]
    pos = np.zeros((num, 1, 4))
    pos[:, 0, 1:] = points
    return GeodesicBundle(
        level=0,
        camera_pos=pos[:, 0].copy(),
        camera_dir=np.zeros((num, 4)),
        pos=pos,
        dir=np.zeros((num, 1, 4)),
        length=np.zeros((num, 1)),
        num_steps=np.ones(num, dtype=int),
        status=np.full(num, GeodesicStatus.CONVERGED, dtype=np.int8),
    )


@pytest.fixture
def sim_config(make_config):
    return make_config(MODEL_TYPE="simulation", SPIN=0.0)


class TestSphericalGrid:

    def test_grid_coordinates(self, fake_grid, sim_config):
        sampler = GridSampler(fake_grid, sim_config, 0.0)
        pos = np.array([[0.0, 0.0, -10.0, 0.0]])

        r, th, ph = sampler.grid_coordinates(pos)

        assert r[0] == pytest.approx(10.0)
        assert th[0] == pytest.approx(np.pi / 2.0)
        # Wrapped into [0, 2 pi)
        assert ph[0] == pytest.approx(1.5 * np.pi)

    def test_locate_blocks(self, fake_grid, sim_config):
        sampler = GridSampler(fake_grid, sim_config, 0.0)

        block = sampler.locate_blocks(np.array([10.0, 10.0, 50.0]),
                                      np.array([1.0, 1.0, 1.0]),
                                      np.array([1.0, 4.0, 1.0]))

        np.testing.assert_array_equal(block, [0, 1, -1])

    def test_uniform_fields_inside(self, fake_grid, sim_config):
        sampler = GridSampler(fake_grid, sim_config, 0.0)
        bundle = make_bundle([[10.0, 0.0, 0.0], [0.0, 12.0, 3.0]])

        state = sampler.sample(sampler.stencils(bundle), bundle)

        np.testing.assert_allclose(state.rho, 1.0)
        np.testing.assert_allclose(state.thermo, 0.1)
        assert not state.flags.any()
        # Radial field at (10, 0, 0) points along x
        np.testing.assert_allclose(state.bb[0, 0], [0.1, 0.0, 0.0], atol=1e-12)
        np.testing.assert_allclose(state.uu, 0.0, atol=1e-15)

    def test_fallback_outside_grid(self, fake_grid, sim_config):
        sampler = GridSampler(fake_grid, sim_config, 0.0)
        bundle = make_bundle([[100.0, 0.0, 0.0], [1.0, 0.0, 0.0]])

        state = sampler.sample(sampler.stencils(bundle), bundle)

        assert state.fallback.all()
        assert not state.nan.any()
        np.testing.assert_allclose(state.rho, sim_config.fallback.rho)
        np.testing.assert_allclose(state.thermo, sim_config.fallback.pgas)
        np.testing.assert_array_equal(state.bb, 0.0)

    def test_non_finite_position_is_nan(self, fake_grid, sim_config):
        sampler = GridSampler(fake_grid, sim_config, 0.0)
        bundle = make_bundle([[np.nan, 0.0, 0.0]])

        stencil = sampler.stencils(bundle)
        state = sampler.sample(stencil, bundle)

        assert stencil.nan.all()
        assert state.nan.all()
        assert state.rho[0, 0] == 0.0

    def test_nearest_cell_stencil(self, fake_grid, make_config):
        config = make_config(MODEL_TYPE="simulation", SPIN=0.0, simulation={"interp": False})
        sampler = GridSampler(fake_grid, config, 0.0)
        bundle = make_bundle([[10.0, 0.0, 0.0]])

        stencil = sampler.stencils(bundle)

        assert stencil.width == 1
        np.testing.assert_array_equal(stencil.weights, 1.0)
        assert sampler.sample(stencil, bundle).rho[0, 0] == pytest.approx(1.0)

    def test_trilinear_weights_sum_to_one(self, fake_grid, sim_config):
        sampler = GridSampler(fake_grid, sim_config, 0.0)
        bundle = make_bundle([[10.0, 0.0, 0.0], [-7.0, 3.0, 5.0], [0.0, 20.0, -1.0]])

        stencil = sampler.stencils(bundle)

        assert stencil.width == 8
        np.testing.assert_allclose(stencil.weights.sum(axis=-1), 1.0)


def test_cartesian_grid(make_config):
    grid = SimulationGrid(make_fake_grid_ds(coord="cart_ks", rho=2.0))
    config = make_config(MODEL_TYPE="simulation", SPIN=0.0, simulation={"coord": "cart_ks"})
    sampler = GridSampler(grid, config, 0.0)
    bundle = make_bundle([[5.0, -5.0, 5.0], [0.0, 0.0, 60.0]])

    state = sampler.sample(sampler.stencils(bundle), bundle)

    assert state.rho[0, 0] == pytest.approx(2.0)
    np.testing.assert_allclose(state.bb[0, 0], [0.1, 0.0, 0.0])
    np.testing.assert_array_equal(state.fallback[:, 0], [False, True])


def test_grid_coordinate_mismatch_raises(fake_grid, make_config):
    from kerrlight.contracts import ContractViolation

    config = make_config(MODEL_TYPE="simulation", simulation={"coord": "cart_ks"})
    with pytest.raises(ContractViolation):
        GridSampler(fake_grid, config, 0.0)
