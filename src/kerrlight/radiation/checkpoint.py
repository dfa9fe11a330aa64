"""Sample checkpoints stored as NetCDF through xarray.

A sample checkpoint holds the root-level stencils: which cells each
geodesic sample reads, with what weights, and its fallback and NaN
flags. Reloading it skips locating samples in the grid on later runs
with unchanged geometry and grid layout.
"""

import logging
from pathlib import Path

import numpy as np
import xarray as xr

from kerrlight.contracts.failure import CheckpointMismatchError
from kerrlight.geodesics.checkpoint import NETCDF_ENGINE, fingerprint, geodesic_fingerprint
from kerrlight.radiation.sampler import SampleStencil
from kerrlight.schemas.internal import InternalConfig

logger = logging.getLogger(__name__)

__all__ = ['sample_fingerprint', 'save_samples', 'load_samples']


def sample_fingerprint(config: InternalConfig, grid_shape) -> str:
    """Fingerprint of every option that changes the root-level stencils."""
    sim = config.simulation
    payload = {
        "geodesics": geodesic_fingerprint(config),
        "coord": sim.coord,
        "interp": sim.interp,
        "block_interp": sim.block_interp,
        "grid_shape": [int(n) for n in grid_shape],
    }
    return fingerprint(payload)


def save_samples(stencil: SampleStencil, path, config_hash: str) -> Path:
    """Write root-level stencils to ``path``."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    ds = xr.Dataset(
        {
            "cells": (("pixel", "sample", "slot"), stencil.cells.astype(np.int32)),
            "weights": (("pixel", "sample", "slot"), stencil.weights),
            "fallback": (("pixel", "sample"), stencil.fallback.astype(np.int8)),
            "nan": (("pixel", "sample"), stencil.nan.astype(np.int8)),
        },
        attrs={"fingerprint": config_hash},
    )
    ds.to_netcdf(path, engine=NETCDF_ENGINE)
    logger.info("Saved sample checkpoint: %s (%d pixels)", path, stencil.cells.shape[0])
    return path


def load_samples(path, config_hash: str) -> SampleStencil:
    """Read stencils written by save_samples().

    Raises
    ------
    FileNotFoundError
        If ``path`` does not exist.
    CheckpointMismatchError
        If the stored fingerprint differs from ``config_hash``.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Sample checkpoint not found: {path}")

    with xr.open_dataset(path, engine=NETCDF_ENGINE) as ds:
        if ds.attrs.get("fingerprint") != config_hash:
            raise CheckpointMismatchError(
                f"Sample checkpoint {path} was written under a different configuration"
            )
        stencil = SampleStencil(
            cells=ds["cells"].values.astype(int),
            weights=ds["weights"].values.astype(float),
            fallback=ds["fallback"].values.astype(bool),
            nan=ds["nan"].values.astype(bool),
        )

    logger.info("Loaded sample checkpoint: %s (%d pixels)", path, stencil.cells.shape[0])
    return stencil
