"""Option rules evaluated once during configuration resolution.

Three kinds of rules run against a validated (but not yet final)
InternalConfig:

- Applicability rules: an option set away from its default while the
  option does not apply to the chosen model produces a warning and is
  reset to the default.
- Range warnings: suspicious but usable values (electron fractions
  outside [0, 1], interpolated polarized kappa).
- Constraints: contradictory or unusable combinations. All failing
  constraints are collected so the caller can report them together.

Runtime code never calls these functions; resolve_config() does.
"""

import math
from dataclasses import dataclass
from typing import Callable

from kerrlight.schemas.internal import InternalConfig

__all__ = [
    'ApplicabilityRule',
    'APPLICABILITY_RULES',
    'POLARIZED_KAPPA_TABLE',
    'check_applicability',
    'check_ranges',
    'check_constraints',
]

POLARIZED_KAPPA_TABLE = (3.5, 4.0, 4.5, 5.0)


def _simulation(cfg: InternalConfig) -> bool:
    return cfg.model_type == "simulation"


@dataclass(frozen=True)
class ApplicabilityRule:
    """An option that only applies when ``applies(config)`` is true."""
    section: str
    key: str
    applies: Callable[[InternalConfig], bool]
    message: str


APPLICABILITY_RULES = (
    ApplicabilityRule(
        "image", "polarization",
        lambda cfg: _simulation(cfg) and cfg.image.light,
        "Ignoring image.polarization selection (requires simulation model and image.light).",
    ),
    ApplicabilityRule(
        "image", "lambda_ave", _simulation,
        "Ignoring image.lambda_ave selection (simulation model only).",
    ),
    ApplicabilityRule(
        "image", "emission_ave", _simulation,
        "Ignoring image.emission_ave selection (simulation model only).",
    ),
    ApplicabilityRule(
        "image", "tau_int", _simulation,
        "Ignoring image.tau_int selection (simulation model only).",
    ),
    ApplicabilityRule(
        "checkpoint", "sample_save", _simulation,
        "Ignoring checkpoint.sample_save selection (simulation model only).",
    ),
    ApplicabilityRule(
        "checkpoint", "sample_load", _simulation,
        "Ignoring checkpoint.sample_load selection (simulation model only).",
    ),
    ApplicabilityRule(
        "slow_light", "on", _simulation,
        "Ignoring slow_light.on selection (simulation model only).",
    ),
)


def check_applicability(config: InternalConfig, defaults: InternalConfig) -> tuple[dict, list[str]]:
    """Find inapplicable options that were moved away from their defaults.

    Parameters
    ----------
    config : InternalConfig
        Merged configuration to inspect.
    defaults : InternalConfig
        Configuration built from ParamConfig alone.

    Returns
    -------
    resets : dict
        Nested overrides restoring the defaults of inapplicable options.
    warnings : list of str
        One message per reset option.
    """
    resets: dict = {}
    warnings: list[str] = []
    for rule in APPLICABILITY_RULES:
        value = getattr(getattr(config, rule.section), rule.key)
        default = getattr(getattr(defaults, rule.section), rule.key)
        if value != default and not rule.applies(config):
            resets.setdefault(rule.section, {})[rule.key] = default
            warnings.append(rule.message)
    return resets, warnings


def check_ranges(config: InternalConfig) -> list[str]:
    """Collect non-fatal range warnings."""
    warnings: list[str] = []
    if not _simulation(config):
        return warnings

    plasma = config.plasma
    if not 0.0 <= plasma.power_frac <= 1.0:
        warnings.append("Fraction of power-law electrons outside [0, 1].")
    if not 0.0 <= plasma.kappa_frac <= 1.0:
        warnings.append("Fraction of kappa-distribution electrons outside [0, 1].")
    if not 0.0 <= plasma.thermal_frac <= 1.0:
        warnings.append("Fraction of thermal electrons outside [0, 1].")

    if (config.polarization_on and plasma.kappa_frac != 0.0
            and 3.5 <= plasma.kappa <= 5.0 and plasma.kappa not in POLARIZED_KAPPA_TABLE):
        warnings.append("Polarized transport will interpolate formulas based on kappa.")
    return warnings


def check_constraints(config: InternalConfig) -> list[str]:
    """Collect every fatal configuration problem.

    Returns
    -------
    list of str
        Empty when the configuration is usable.
    """
    errors: list[str] = []
    checkpoint = config.checkpoint
    image = config.image
    camera = config.camera
    adaptive = config.adaptive

    if checkpoint.sample_save and checkpoint.sample_load:
        errors.append("Cannot both save and load a sample checkpoint.")
    if checkpoint.geodesic_save and checkpoint.geodesic_load:
        errors.append("Cannot both save and load a geodesic checkpoint.")
    if (checkpoint.geodesic_save or checkpoint.geodesic_load) and not checkpoint.geodesic_file:
        errors.append("Geodesic checkpoint requested without checkpoint.geodesic_file.")
    if (_simulation(config) and (checkpoint.sample_save or checkpoint.sample_load)
            and not checkpoint.sample_file):
        errors.append("Sample checkpoint requested without checkpoint.sample_file.")
    if (config.slow_light_on and _simulation(config)
            and (checkpoint.sample_save or checkpoint.sample_load)):
        errors.append("Cannot use sample checkpoints with slow light.")

    if (config.polarization_on and _simulation(config) and config.plasma.kappa_frac != 0.0
            and not 3.5 <= config.plasma.kappa <= 5.0):
        errors.append("Polarized transport only supports kappa in [3.5, 5].")

    simulation_only = _simulation(config) and (
        image.lambda_ave or image.emission_ave or image.tau_int)
    if not (image.light or image.time or image.length or image.lambda_ or image.emission
            or image.tau or image.z_turnings or simulation_only):
        errors.append("No image quantity selected.")

    if camera.resolution <= 0:
        errors.append("Must have positive camera.resolution.")
    if not camera.pole and camera.th in (0.0, math.pi):
        errors.append("Camera on the polar axis requires camera.pole.")

    if config.ray.min_factor >= 1.0:
        errors.append("Must have ray.min_factor < 1.")
    if config.ray.max_factor <= 1.0:
        errors.append("Must have ray.max_factor > 1.")

    if adaptive.on:
        if not image.light:
            errors.append("Adaptive ray tracing requires image.light.")
        if adaptive.block_size <= 0:
            errors.append("Must have positive adaptive.block_size.")
        elif camera.resolution > 0 and camera.resolution % adaptive.block_size != 0:
            errors.append("Must have adaptive.block_size divide camera.resolution.")

    return errors
