"""Test config resolution and validation with Pydantic."""

import logging

import pytest
from pydantic import ValidationError

from kerrlight.schemas import ParamConfig, UserConfig, CLIConfig, InternalConfig
from kerrlight.schemas.resolve import ConfigurationError, deep_merge, resolve_config

pytestmark = pytest.mark.unit


class TestConfigResolution:
    """Test resolve_config() precedence and merging."""

    def test_resolve_config_all_defaults(self):
        """Resolving with no user/CLI overrides uses all ParamConfig defaults."""
        config = resolve_config(ParamConfig(), None, None)

        assert isinstance(config, InternalConfig)
        assert config.model_type == "formula"
        assert config.camera.resolution == 64
        assert config.image.light is True
        assert config.adaptive.on is False

    def test_user_config_overrides_param_config(self):
        """UserConfig values override ParamConfig defaults."""
        user = UserConfig(RESOLUTION=32, CAMERA_R=200)
        config = resolve_config(ParamConfig(), user, None)

        assert config.camera.resolution == 32
        assert config.camera.r == 200.0

    def test_spin_goes_to_selected_model(self):
        """SPIN sets the spin of the chosen model only."""
        config = resolve_config(ParamConfig(), UserConfig(MODEL_TYPE="simulation", SPIN=0.3), None)

        assert config.simulation.a == 0.3
        assert config.formula.spin == ParamConfig().formula.spin
        assert config.black_hole_spin == 0.3

    def test_nested_section_wins_over_flat_alias(self):
        """Explicit nested sections override flat aliases."""
        user = UserConfig(RESOLUTION=32, camera={"resolution": 16})
        config = resolve_config(ParamConfig(), user, None)

        assert config.camera.resolution == 16

    def test_upper_case_section_keys(self):
        """Keys inside nested sections are case-insensitive."""
        user = UserConfig.model_validate({"camera": {"WIDTH": 25.0}})
        config = resolve_config(ParamConfig(), user, None)

        assert config.camera.width == 25.0

    def test_unknown_user_keys_are_ignored(self):
        """UserConfig is forgiving about legacy keys."""
        user = UserConfig.model_validate({"RESOLUTION": 8, "NOT_AN_OPTION": 1})
        config = resolve_config(ParamConfig(), user, None)

        assert config.camera.resolution == 8

    def test_cli_wins_over_user(self):
        """Full precedence: CLI > User > Param."""
        user = UserConfig(NUM_THREADS=2, OUTPUT_DIR="/tmp/user")
        cli = CLIConfig(num_threads=4)
        config = resolve_config(ParamConfig(), user, cli)

        assert config.runtime.num_threads == 4
        assert config.output.directory == "/tmp/user"

    def test_cli_does_not_mutate_user(self):
        user = UserConfig(NUM_THREADS=2)
        resolve_config(ParamConfig(), user, CLIConfig(num_threads=4))

        assert user.num_threads == 2

    def test_dict_inputs_are_accepted(self):
        config = resolve_config({}, {"RESOLUTION": 16}, {"log_level": "debug"})

        assert config.camera.resolution == 16
        assert config.logging.level == "DEBUG"

    def test_internal_config_is_frozen(self, internal_config):
        with pytest.raises(ValidationError):
            internal_config.camera.resolution = 8

    def test_lambda_alias(self):
        """The image 'lambda' option is reachable under both spellings."""
        config = resolve_config(ParamConfig(), UserConfig(image={"lambda_": True}), None)
        assert config.image.lambda_ is True

        config = resolve_config(ParamConfig(), UserConfig(image={"lambda": True}), None)
        assert config.image.lambda_ is True

    def test_cut_z_turnings_alias(self):
        config = resolve_config(ParamConfig(), UserConfig(CUT_Z_TURNINGS=1), None)

        assert config.image.cut_z_turnings == 1
        assert config.image.z_turnings is False

    def test_deep_merge(self):
        base = {"a": 1, "b": {"c": 2, "d": 3}}
        override = {"b": {"d": 4, "e": 5}, "f": 6}

        assert deep_merge(base, override) == {"a": 1, "b": {"c": 2, "d": 4, "e": 5}, "f": 6}
        assert base == {"a": 1, "b": {"c": 2, "d": 3}}


class TestApplicabilityRules:
    """Options that do not apply to the chosen model are reset with a warning."""

    def test_polarization_reset_for_formula(self, caplog):
        with caplog.at_level(logging.WARNING):
            config = resolve_config(ParamConfig(), UserConfig(POLARIZATION=True), None)

        assert config.image.polarization is False
        assert "image.polarization" in caplog.text

    def test_polarization_kept_for_simulation(self):
        user = UserConfig(MODEL_TYPE="simulation", POLARIZATION=True)
        config = resolve_config(ParamConfig(), user, None)

        assert config.image.polarization is True
        assert config.polarization_on is True

    def test_simulation_only_quantities_reset(self, caplog):
        user = UserConfig(image={"lambda_ave": True, "tau_int": True})
        with caplog.at_level(logging.WARNING):
            config = resolve_config(ParamConfig(), user, None)

        assert config.image.lambda_ave is False
        assert config.image.tau_int is False
        assert "lambda_ave" in caplog.text

    def test_slow_light_reset_for_formula(self):
        config = resolve_config(ParamConfig(), UserConfig(SLOW_LIGHT=True), None)

        assert config.slow_light.on is False
        assert config.slow_light_on is False

    def test_sample_checkpoint_ignored_for_formula(self, caplog):
        """Conflicting sample switches are dropped, not fatal, without a grid."""
        cli = CLIConfig(sample_save=True, sample_load=True, sample_file="samples.nc")
        with caplog.at_level(logging.WARNING):
            config = resolve_config(ParamConfig(), None, cli)

        assert config.checkpoint.sample_save is False
        assert config.checkpoint.sample_load is False
        assert "checkpoint.sample_save" in caplog.text
        assert "checkpoint.sample_load" in caplog.text

    def test_fraction_range_warning(self, caplog):
        user = UserConfig(MODEL_TYPE="simulation", plasma={"power_frac": 0.8, "kappa_frac": 0.5})
        with caplog.at_level(logging.WARNING):
            config = resolve_config(ParamConfig(), user, None)

        # Warned but kept
        assert config.plasma.kappa_frac == 0.5
        assert "thermal electrons outside" in caplog.text

    def test_interpolated_kappa_warning(self, caplog):
        user = UserConfig(MODEL_TYPE="simulation", POLARIZATION=True,
                          plasma={"kappa_frac": 1.0, "kappa": 3.75})
        with caplog.at_level(logging.WARNING):
            resolve_config(ParamConfig(), user, None)

        assert "interpolate" in caplog.text


class TestConstraints:
    """Fatal combinations are reported together."""

    def test_geodesic_checkpoint_save_and_load(self):
        cli = CLIConfig(geodesic_save=True, geodesic_load=True, geodesic_file="geo.nc")
        with pytest.raises(ConfigurationError) as exc:
            resolve_config(ParamConfig(), None, cli)

        assert "geodesic checkpoint" in str(exc.value)

    def test_sample_checkpoint_save_and_load(self):
        user = UserConfig(MODEL_TYPE="simulation")
        cli = CLIConfig(sample_save=True, sample_load=True, sample_file="samples.nc")
        with pytest.raises(ConfigurationError, match="sample checkpoint"):
            resolve_config(ParamConfig(), user, cli)

    def test_checkpoint_without_file(self):
        with pytest.raises(ConfigurationError, match="geodesic_file"):
            resolve_config(ParamConfig(), None, CLIConfig(geodesic_save=True))

    def test_slow_light_with_sample_checkpoint(self):
        user = UserConfig(MODEL_TYPE="simulation", SLOW_LIGHT=True)
        cli = CLIConfig(sample_save=True, sample_file="samples.nc")
        with pytest.raises(ConfigurationError, match="slow light"):
            resolve_config(ParamConfig(), user, cli)

    def test_no_image_quantity(self):
        with pytest.raises(ConfigurationError, match="No image quantity"):
            resolve_config(ParamConfig(), UserConfig(image={"light": False}), None)

    def test_z_turnings_alone_is_an_image_quantity(self):
        user = UserConfig(image={"light": False, "z_turnings": True})
        config = resolve_config(ParamConfig(), user, None)

        assert config.image.z_turnings is True

    def test_cut_z_turnings_lower_bound(self):
        with pytest.raises(ValidationError):
            resolve_config(ParamConfig(), UserConfig(CUT_Z_TURNINGS=-2), None)

    def test_block_size_must_divide_resolution(self):
        user = UserConfig(RESOLUTION=20, ADAPTIVE_MAX_LEVEL=1, ADAPTIVE_BLOCK_SIZE=8)
        with pytest.raises(ConfigurationError, match="divide"):
            resolve_config(ParamConfig(), user, None)

    def test_adaptive_requires_light(self):
        user = UserConfig(ADAPTIVE_MAX_LEVEL=1, image={"light": False, "tau": True})
        with pytest.raises(ConfigurationError, match="requires image.light"):
            resolve_config(ParamConfig(), user, None)

    def test_camera_on_axis_requires_pole(self):
        with pytest.raises(ConfigurationError, match="camera.pole"):
            resolve_config(ParamConfig(), UserConfig(CAMERA_TH=0.0), None)

        config = resolve_config(ParamConfig(), UserConfig(CAMERA_TH=0.0, camera={"pole": True}),
                                None)
        assert config.camera.pole is True

    def test_step_factor_bounds(self):
        with pytest.raises(ConfigurationError, match="min_factor"):
            resolve_config(ParamConfig(), UserConfig(ray={"min_factor": 1.5}), None)

    def test_polarized_kappa_range(self):
        user = UserConfig(MODEL_TYPE="simulation", POLARIZATION=True,
                          plasma={"kappa_frac": 1.0, "kappa": 6.0})
        with pytest.raises(ConfigurationError, match="kappa"):
            resolve_config(ParamConfig(), user, None)

    def test_all_errors_reported_together(self):
        user = UserConfig(RESOLUTION=0, ray={"max_factor": 0.5})
        with pytest.raises(ConfigurationError) as exc:
            resolve_config(ParamConfig(), user, None)

        assert len(exc.value.errors) == 2
        assert "camera.resolution" in str(exc.value)
        assert "max_factor" in str(exc.value)

    def test_invalid_type_raises_validation_error(self):
        with pytest.raises(ValidationError):
            resolve_config(ParamConfig(), UserConfig(camera={"type": "fisheye"}), None)
