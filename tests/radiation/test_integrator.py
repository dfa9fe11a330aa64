"""Tests for RadiationIntegrator with the formula and simulation models."""

import numpy as np
import pytest

from kerrlight.contracts import CheckpointMismatchError, ContractViolation
from kerrlight.geodesics.integrator import GeodesicIntegrator
from kerrlight.radiation.formula import formula_density
from kerrlight.radiation.integrator import RadiationIntegrator, length_unit
from kerrlight.radiation.checkpoint import sample_fingerprint
from kerrlight.schemas import ParamConfig, UserConfig, resolve_config

pytestmark = pytest.mark.unit


def run_snapshot(config, grid=None, snapshot=0):
    geo = GeodesicIntegrator(config)
    geo.integrate()
    rad = RadiationIntegrator(config, geo, grid)
    while not rad.integrate(snapshot):
        geo.add_geodesics(rad)
    return geo, rad


def test_formula_density_peak():
    assert formula_density(0.0, 0.0, 10.0, 2.0) == pytest.approx(1.0)
    assert formula_density(10.0, 0.0, 10.0, 2.0) == pytest.approx(np.exp(-0.5))


def test_length_unit(make_config):
    formula = make_config()
    assert length_unit(formula) == formula.formula.mass

    simulation = make_config(MODEL_TYPE="simulation")
    # Sgr A* gravitational radius is about 6e11 cm
    assert 5.0e11 < length_unit(simulation) < 7.0e11


@pytest.fixture(scope="module")
def formula_run():
    """Geodesics and radiation of one formula-model snapshot, shared by the module."""
    user = UserConfig(RESOLUTION=4, CAMERA_R=50.0, CAMERA_WIDTH=20.0,
                      ray={"tol_abs": 1.0e-6, "tol_rel": 1.0e-6, "step": 0.02,
                           "max_steps": 2000},
                      image={"tau": True, "time": True, "lambda": True})
    return run_snapshot(resolve_config(ParamConfig(), user, None))


class TestFormulaModel:

    def test_image_is_finite_and_non_negative(self, formula_run):
        _, rad = formula_run
        image = rad.merged_image()

        assert image.shape == (4, 4, 4)
        assert np.all(np.isfinite(image))
        intensity = image[rad.layout.offset("light")]
        assert np.all(intensity >= 0.0)
        assert intensity.max() > 0.0

    def test_optical_depth_non_negative(self, formula_run):
        _, rad = formula_run
        tau = rad.merged_image()[rad.layout.offset("tau")]

        assert np.all(tau >= 0.0)

    def test_coefficients_vanish_past_last_sample(self, formula_run):
        geo, rad = formula_run
        bundle = geo.view(0)
        j_inv, alpha_inv, nan = rad.model.coefficients(bundle)

        past = np.arange(bundle.num_samples)[None, :] >= bundle.num_steps[:, None]
        assert np.all(j_inv[past] == 0.0)
        assert np.all(alpha_inv[past] == 0.0)
        assert not nan[past].any()

    def test_image_dataset(self, formula_run):
        _, rad = formula_run
        ds = rad.image_dataset(snapshot=3)

        assert list(ds.data_vars) == ["I", "time", "lambda", "tau"]
        assert ds["I"].dims == ("y", "x")
        assert ds.attrs["snapshot"] == 3
        assert ds.attrs["model_type"] == "formula"
        np.testing.assert_allclose(ds["x"].values, [-7.5, -2.5, 2.5, 7.5])


class TestZTurnings:
    """Equatorial turnings counted along near edge-on Schwarzschild rays."""

    def test_cut_only_removes_emission(self, small_config):
        overrides = dict(SPIN=0.0, CAMERA_TH=1.5, image={"tau": True, "z_turnings": True})
        _, full = run_snapshot(small_config(**overrides))
        _, cut = run_snapshot(small_config(CUT_Z_TURNINGS=0, **overrides))
        full_image, cut_image = full.merged_image(), cut.merged_image()
        layout = full.layout

        counts = full_image[layout.offset("z_turnings")]
        assert np.all(counts >= 0.0)
        np.testing.assert_array_equal(counts, np.round(counts))
        np.testing.assert_array_equal(cut_image[layout.offset("z_turnings")], counts)

        for name in ("light", "tau"):
            before = full_image[layout.offset(name)]
            after = cut_image[layout.offset(name)]
            assert np.all(after <= before * (1.0 + 1.0e-12))
            # Rays without a turning keep their whole path
            np.testing.assert_allclose(after[counts == 0], before[counts == 0], rtol=1.0e-12)


class TestAdaptiveFormula:

    def test_refinement_adds_levels(self, small_config):
        config = small_config(SPIN=0.0, FLAT=True, RESOLUTION=4, ADAPTIVE_MAX_LEVEL=1,
                              ADAPTIVE_BLOCK_SIZE=2,
                              adaptive={"val_frac": 0.0, "val_cut": 0.0})
        geo, rad = run_snapshot(config)

        # Any pixel with positive intensity flags its block
        assert rad.adaptive_num_levels == 1
        assert len(geo.levels) == 2
        assert rad.merged_image().shape == (1, 8, 8)
        assert len(rad.images) == 2
        assert rad.adaptive_level == 0


class TestSimulationModel:

    def test_requires_grid(self, small_config):
        config = small_config(MODEL_TYPE="simulation", SPIN=0.0, FLAT=True)
        geo = GeodesicIntegrator(config)
        geo.integrate()
        rad = RadiationIntegrator(config, geo)

        with pytest.raises(ContractViolation):
            rad.integrate(0)

    def test_fallback_samples_flag_pixels(self, small_config, fake_grid):
        config = small_config(MODEL_TYPE="simulation", SPIN=0.0, FLAT=True)
        _, rad = run_snapshot(config, fake_grid)

        # Every ray starts outside the grid
        assert rad.pixel_flags[0].all()
        image = rad.merged_image()
        assert np.all(np.isfinite(image))
        assert np.all(image >= 0.0)

    def test_fallback_nan_blanks_flagged_pixels(self, small_config, fake_grid):
        config = small_config(MODEL_TYPE="simulation", SPIN=0.0, FLAT=True, FALLBACK_NAN=True)
        _, rad = run_snapshot(config, fake_grid)

        assert np.all(np.isnan(rad.merged_image()))

    def test_cell_quantities_and_polarization(self, small_config, fake_grid):
        config = small_config(MODEL_TYPE="simulation", SPIN=0.0, FLAT=True, POLARIZATION=True,
                              image={"lambda_ave": True, "tau_int": True})
        _, rad = run_snapshot(config, fake_grid)
        ds = rad.image_dataset()

        for name in ("I", "Q", "U", "V", "lambda_ave_rho", "tau_int_beta_inv"):
            assert name in ds
        assert np.all(np.isfinite(ds["I"].values))
        # Path average of a uniform density never exceeds it
        rho_cgs = config.simulation.rho_cgs
        assert np.all(ds["lambda_ave_rho"].values <= rho_cgs * (1.0 + 1e-9))
        assert np.all(ds["lambda_ave_rho"].values > 0.0)


class TestSampleCheckpoint:

    def test_round_trip(self, small_config, fake_grid, temp_dir):
        path = temp_dir / "samples.nc"
        writer_config = small_config(MODEL_TYPE="simulation", SPIN=0.0, FLAT=True,
                                     checkpoint={"sample_save": True, "sample_file": str(path)})
        _, writer = run_snapshot(writer_config, fake_grid)

        reader_config = small_config(MODEL_TYPE="simulation", SPIN=0.0, FLAT=True,
                                     checkpoint={"sample_load": True, "sample_file": str(path)})
        _, reader = run_snapshot(reader_config, fake_grid)

        assert path.exists()
        np.testing.assert_allclose(reader.merged_image(), writer.merged_image())

    def test_grid_layout_changes_fingerprint(self, small_config):
        config = small_config(MODEL_TYPE="simulation")

        assert sample_fingerprint(config, (2, 8, 4, 4)) != sample_fingerprint(config, (4, 8, 4, 4))

    def test_mismatch_raises(self, small_config, fake_grid, temp_dir):
        path = temp_dir / "samples.nc"
        run_snapshot(small_config(MODEL_TYPE="simulation", SPIN=0.0, FLAT=True,
                                  checkpoint={"sample_save": True, "sample_file": str(path)}),
                     fake_grid)

        config = small_config(MODEL_TYPE="simulation", SPIN=0.0, FLAT=True,
                              simulation={"interp": False},
                              checkpoint={"sample_load": True, "sample_file": str(path)})
        with pytest.raises(CheckpointMismatchError):
            run_snapshot(config, fake_grid)
