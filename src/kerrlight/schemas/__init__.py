"""Pydantic configuration schemas for kerrlight.

This module provides strictly typed configuration models for the
kerrlight ray tracer. All configuration validation, coercion, and
normalization happens at schema validation time via Pydantic, followed
by the option rules in ``kerrlight.schemas.rules``.

Exports
-------
resolve_config : function
    Single entrypoint for configuration resolution
ConfigurationError : exception
    Fatal configuration problems, aggregated
InternalConfig : class
    Fully validated, authoritative runtime configuration
ParamConfig : class
    Expert defaults (complete)
UserConfig : class
    User-facing configuration (forgiving, minimal)
CLIConfig : class
    Command-line operational overrides
"""

from kerrlight.schemas.resolve import resolve_config, ConfigurationError
from kerrlight.schemas.internal import InternalConfig
from kerrlight.schemas.param import ParamConfig
from kerrlight.schemas.user import UserConfig
from kerrlight.schemas.cli import CLIConfig

__all__ = [
    'resolve_config',
    'ConfigurationError',
    'InternalConfig',
    'ParamConfig',
    'UserConfig',
    'CLIConfig',
]
