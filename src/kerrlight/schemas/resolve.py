"""Resolution of the layered run configuration.

resolve_config() is the only way an InternalConfig is built. Layers are
merged lowest to highest precedence::

    ParamConfig (expert defaults) < UserConfig (user file) < CLIConfig

after which the option rules in :mod:`kerrlight.schemas.rules` are
applied: inapplicable options are reset with a warning, suspicious
values are reported, and fatal conflicts are raised together.
"""

import logging
from typing import Union, Optional

from kerrlight.schemas.param import ParamConfig
from kerrlight.schemas.user import UserConfig
from kerrlight.schemas.cli import CLIConfig
from kerrlight.schemas.internal import InternalConfig
from kerrlight.schemas.rules import check_applicability, check_ranges, check_constraints

logger = logging.getLogger(__name__)


class ConfigurationError(ValueError):
    """Raised when a configuration cannot be used.

    Attributes
    ----------
    errors : list of str
        Every fatal problem found, in rule order.
    """

    def __init__(self, errors):
        if isinstance(errors, str):
            errors = [errors]
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))


def deep_merge(base: dict, *overrides: dict) -> dict:
    """Recursively merge ``overrides`` into a copy of ``base``.

    Nested dicts merge key by key; any other value in a later mapping
    replaces the earlier one.

    Examples
    --------
    >>> deep_merge({"ray": {"step": 0.1, "flat": False}}, {"ray": {"flat": True}})
    {'ray': {'step': 0.1, 'flat': True}}
    """
    merged = dict(base)
    for override in overrides:
        for key, value in override.items():
            current = merged.get(key)
            if isinstance(current, dict) and isinstance(value, dict):
                merged[key] = deep_merge(current, value)
            else:
                merged[key] = value
    return merged


def _as_model(value, model):
    """Validate a dict (or None) into ``model``; pass instances through."""
    if isinstance(value, model):
        return value
    if not value:
        return model()
    return model.model_validate(value)


def _normalize_image_keys(overrides: dict) -> dict:
    """Map the ``lambda_`` spelling onto the ``lambda`` alias."""
    image = overrides.get("image")
    if isinstance(image, dict) and "lambda_" in image:
        image = dict(image)
        image["lambda"] = image.pop("lambda_")
        overrides = dict(overrides, image=image)
    return overrides


def resolve_config(
    param_cfg: Union[dict, ParamConfig],
    user_cfg: Optional[Union[dict, UserConfig]] = None,
    cli_cfg: Optional[Union[dict, CLIConfig]] = None,
) -> InternalConfig:
    """Build the frozen runtime configuration.

    Parameters
    ----------
    param_cfg : dict or ParamConfig
        Complete expert defaults.
    user_cfg : dict or UserConfig, optional
        User-file overrides.
    cli_cfg : dict or CLIConfig, optional
        Command-line overrides; highest precedence.

    Returns
    -------
    InternalConfig

    Raises
    ------
    pydantic.ValidationError
        If an individual option has the wrong type or range.
    ConfigurationError
        If any constraint rule fails; ``errors`` lists all of them.

    Examples
    --------
    >>> from kerrlight.schemas import resolve_config, ParamConfig, UserConfig
    >>> config = resolve_config(ParamConfig(), UserConfig(SPIN=0.5, RESOLUTION=32))
    >>> config.formula.spin, config.camera.resolution
    (0.5, 32)
    """
    param = _as_model(param_cfg, ParamConfig)
    user = _as_model(user_cfg, UserConfig)
    cli = _as_model(cli_cfg, CLIConfig)

    # by_alias keeps the "lambda" key that InternalImageConfig expects
    defaults_dict = param.model_dump(by_alias=True)
    merged = deep_merge(
        defaults_dict,
        _normalize_image_keys(user.to_internal_overrides()),
        cli.to_internal_overrides(),
    )
    candidate = InternalConfig.model_validate(merged)
    defaults = InternalConfig.model_validate(defaults_dict)

    # Inapplicable options are reset before constraints see them
    resets, warnings = check_applicability(candidate, defaults)
    if resets:
        candidate = InternalConfig.model_validate(
            deep_merge(merged, _normalize_image_keys(resets)))
    warnings.extend(check_ranges(candidate))
    for message in warnings:
        logger.warning(message)

    errors = check_constraints(candidate)
    if errors:
        for message in errors:
            logger.error(message)
        raise ConfigurationError(errors)
    return candidate
