"""Command-line ray-tracing run.

``scripts/run_raytrace.py`` only parses arguments; everything else,
from loading the user file to writing images, happens here.
"""

import json
import logging
import importlib.util
from pathlib import Path
from typing import Optional, Dict, Any, Iterable

import pandas as pd

from kerrlight.pipeline.runner import RayTracer, setup_logging
from kerrlight.schemas import resolve_config, ParamConfig, UserConfig, CLIConfig
from kerrlight.schemas.internal import InternalConfig
from kerrlight.simulation.grid import open_simulation_grid


logger = logging.getLogger(__name__)


def load_user_config_dict(config_path: str) -> dict:
    """Execute a user config file and return its ``CONFIG`` mapping.

    The dict is returned unvalidated; :class:`UserConfig` checks it.

    Raises
    ------
    FileNotFoundError
        If ``config_path`` does not exist.
    ValueError
        If the file defines no ``CONFIG`` dict.
    """
    path = Path(config_path)
    if not path.is_file():
        raise FileNotFoundError(f"User config file not found: {path}")

    loader_spec = importlib.util.spec_from_file_location(f"kerrlight_user_{path.stem}", path)
    module = importlib.util.module_from_spec(loader_spec)
    loader_spec.loader.exec_module(module)

    config = getattr(module, "CONFIG", None)
    if not isinstance(config, dict):
        raise ValueError(f"No CONFIG dict defined in {path}")
    return config


def build_config(user_config_path: str, cli_args: Optional[Dict[str, Any]] = None,
                 verbose: bool = False) -> InternalConfig:
    """Resolve the run configuration (Param < User file < CLI)."""
    user_cfg = UserConfig.model_validate(load_user_config_dict(user_config_path))

    overrides = {key: value for key, value in (cli_args or {}).items() if value is not None}
    if verbose:
        overrides.setdefault("log_level", "DEBUG")

    return resolve_config(ParamConfig(), user_cfg, CLIConfig.model_validate(overrides))


def _print_summary(config: InternalConfig, user_config_path: str, verbose: bool):
    rule = "-" * 60
    print(rule)
    print(f"kerrlight  {config.model_type} model, spin {config.black_hole_spin}")
    print(f"  user config : {user_config_path}")
    print(f"  camera      : r={config.camera.r} res={config.camera.resolution} "
          f"nu={config.image.frequency:.3g} Hz")
    print(f"  output      : {config.output.directory or '(none)'}")
    if verbose:
        print(json.dumps(config.model_dump(by_alias=True), indent=2))
    print(rule)


def run_raytrace(
    user_config_path: str,
    cli_args: Optional[Dict[str, Any]] = None,
    snapshots: Optional[Iterable[int]] = None,
    verbose: bool = False,
) -> pd.DataFrame:
    """Resolve the configuration and trace every requested snapshot.

    Parameters
    ----------
    user_config_path : str
        Python file defining a ``CONFIG`` dict.
    cli_args : dict, optional
        Overrides with keys num_threads, output_dir, log_level,
        geodesic_save, geodesic_load, geodesic_file, sample_save,
        sample_load, sample_file, save_plot. ``None`` values are ignored.
    snapshots : iterable of int, optional
        Snapshot indices; defaults to ``[0]``.
    verbose : bool, optional
        DEBUG logging and a dump of the resolved configuration.

    Returns
    -------
    pandas.DataFrame
        Per-snapshot statistics.

    Raises
    ------
    FileNotFoundError
        If the config file or the simulation file does not exist.
    ValueError
        If the simulation model is selected without ``simulation.file``.
    ConfigurationError
        If the resolved options violate a constraint.

    Examples
    --------
    ::

        run_raytrace("scripts/user_config.py",
                     cli_args={"num_threads": 8, "output_dir": "out"},
                     snapshots=range(10))
    """
    config = build_config(user_config_path, cli_args, verbose=verbose)
    setup_logging(config)
    _print_summary(config, user_config_path, verbose)

    grid = None
    if config.model_type == "simulation":
        if not config.simulation.file:
            raise ValueError("The simulation model needs simulation.file")
        grid = open_simulation_grid(config.simulation.file, coord=config.simulation.coord)

    tracer = RayTracer(config, grid)
    return tracer.run(snapshots)
