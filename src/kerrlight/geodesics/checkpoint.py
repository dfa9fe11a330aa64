"""Geodesic checkpoints stored as NetCDF through xarray.

A checkpoint holds the root-level geodesic bundle. Booleans and small
integers are stored as int8/int32 (NetCDF3 has no bool or int64), and a
fingerprint of the options that determine the geodesics is stored in
the file attributes. Loading under a different fingerprint raises
CheckpointMismatchError.
"""

import hashlib
import json
import logging
from pathlib import Path

import numpy as np
import xarray as xr

from kerrlight.contracts.failure import CheckpointMismatchError
from kerrlight.geodesics.bundle import GeodesicBundle
from kerrlight.schemas.internal import InternalConfig

logger = logging.getLogger(__name__)

__all__ = ['fingerprint', 'geodesic_fingerprint', 'save_geodesics', 'load_geodesics']

NETCDF_ENGINE = "scipy"


def fingerprint(payload: dict) -> str:
    """Stable hash of a JSON-serializable dictionary."""
    text = json.dumps(payload, sort_keys=True, default=str)
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def geodesic_fingerprint(config: InternalConfig) -> str:
    """Fingerprint of every option that changes the root-level geodesics."""
    payload = {
        "model_type": config.model_type,
        "spin": config.black_hole_spin,
        "camera": config.camera.model_dump(),
        "ray": config.ray.model_dump(),
        "frequency": config.image.frequency,
        "normalization": config.image.normalization,
    }
    return fingerprint(payload)


def save_geodesics(bundle: GeodesicBundle, path, config_hash: str) -> Path:
    """Write a geodesic bundle to ``path``.

    Returns
    -------
    Path
        The written file.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    ds = xr.Dataset(
        {
            "camera_pos": (("pixel", "component"), bundle.camera_pos),
            "camera_dir": (("pixel", "component"), bundle.camera_dir),
            "pos": (("pixel", "sample", "component"), bundle.pos),
            "dir": (("pixel", "sample", "component"), bundle.dir),
            "length": (("pixel", "sample"), bundle.length),
            "num_steps": ("pixel", bundle.num_steps.astype(np.int32)),
            "status": ("pixel", bundle.status.astype(np.int8)),
        },
        attrs={"fingerprint": config_hash, "level": int(bundle.level)},
    )
    ds.to_netcdf(path, engine=NETCDF_ENGINE)
    logger.info("Saved geodesic checkpoint: %s (%d pixels, %d samples)",
                path, bundle.num_pix, bundle.num_samples)
    return path


def load_geodesics(path, config_hash: str) -> GeodesicBundle:
    """Read a geodesic bundle written by save_geodesics().

    Raises
    ------
    FileNotFoundError
        If ``path`` does not exist.
    CheckpointMismatchError
        If the stored fingerprint differs from ``config_hash``.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Geodesic checkpoint not found: {path}")

    with xr.open_dataset(path, engine=NETCDF_ENGINE) as ds:
        stored = ds.attrs.get("fingerprint")
        if stored != config_hash:
            raise CheckpointMismatchError(
                f"Geodesic checkpoint {path} was written under a different configuration"
            )
        bundle = GeodesicBundle(
            level=int(ds.attrs.get("level", 0)),
            camera_pos=ds["camera_pos"].values.astype(float),
            camera_dir=ds["camera_dir"].values.astype(float),
            pos=ds["pos"].values.astype(float),
            dir=ds["dir"].values.astype(float),
            length=ds["length"].values.astype(float),
            num_steps=ds["num_steps"].values.astype(int),
            status=ds["status"].values.astype(np.int8),
        )

    logger.info("Loaded geodesic checkpoint: %s (%d pixels)", path, bundle.num_pix)
    return bundle
