"""Shared fixtures for the kerrlight test suite.

Configurations are always built through ``resolve_config`` so tests see
exactly what a run would see, including rule resets and warnings.
"""

import pytest
from pathlib import Path
import tempfile
import shutil

from kerrlight.schemas import ParamConfig, UserConfig, resolve_config
from kerrlight.schemas.resolve import deep_merge
from kerrlight.simulation.grid import SimulationGrid
from tests.helpers.fake_grid import make_fake_grid_ds


# =============================================================================
# Configuration
# =============================================================================

@pytest.fixture
def param_config():
    """Expert defaults; the bottom layer of every test configuration."""
    return ParamConfig()


@pytest.fixture
def internal_config(param_config):
    """Resolved defaults, for constructors that only need some valid config.

    Examples
    --------
    >>> def test_layout_default(internal_config):
    ...     layout = ImageLayout.from_config(internal_config)
    ...     assert layout.num_quantities == 1
    """
    return resolve_config(param_config)


@pytest.fixture
def make_config(param_config):
    """Build an InternalConfig from UserConfig keyword arguments.

    Flat aliases and nested sections are both accepted::

        config = make_config(RESOLUTION=4, camera={"width": 10.0})
    """
    def _make(**user_overrides):
        return resolve_config(param_config, UserConfig(**user_overrides))

    return _make


@pytest.fixture
def small_config(make_config):
    """Like make_config, over a 4x4 camera with loose ray tolerances."""
    small = {
        "RESOLUTION": 4,
        "CAMERA_R": 50.0,
        "CAMERA_WIDTH": 20.0,
        "ray": {"tol_abs": 1.0e-6, "tol_rel": 1.0e-6, "step": 0.02, "max_steps": 2000},
    }

    def _make(**overrides):
        return make_config(**deep_merge(small, overrides))

    return _make


# =============================================================================
# Simulation grids
# =============================================================================

@pytest.fixture
def fake_grid():
    """Two-block spherical Kerr-Schild grid with uniform fields."""
    return SimulationGrid(make_fake_grid_ds())


# =============================================================================
# Filesystem
# =============================================================================

@pytest.fixture
def temp_dir():
    """Scratch directory removed after the test."""
    path = Path(tempfile.mkdtemp(prefix="kerrlight_"))
    yield path
    shutil.rmtree(path, ignore_errors=True)
