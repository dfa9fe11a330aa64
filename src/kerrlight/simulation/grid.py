"""Gridded simulation data handed to the sampler.

The grid is an xarray Dataset produced by an external reader. Required
layout:

- dimensions ``block``, ``k``, ``j``, ``i`` for cells, with optional
  leading ``time``; face dimensions ``i_face``, ``j_face``, ``k_face``
- coordinates ``x1f`` (block, i_face), ``x2f`` (block, j_face) and
  ``x3f`` (block, k_face) holding the face positions of every block
- variables ``rho``, one of ``pgas`` / ``kappa``, velocities
  ``uu1``-``uu3`` and fields ``bb1``-``bb3`` on the cell dimensions
- attribute ``coord`` ("sph_ks" or "cart_ks"); optional
  ``extrapolation_tolerance`` (in time-slice spacings)

For ``sph_ks`` grids x1, x2, x3 are r, theta, phi; for ``cart_ks``
grids they are x, y, z.
"""

import logging
from pathlib import Path
from typing import Optional

import numpy as np
import xarray as xr

from kerrlight.contracts.base import require

logger = logging.getLogger(__name__)

__all__ = ['SimulationGrid', 'open_simulation_grid']

CELL_DIMS = ("block", "k", "j", "i")
VECTOR_FIELDS = ("uu1", "uu2", "uu3", "bb1", "bb2", "bb3")


class SimulationGrid:
    """Read-only view of simulation data organized in blocks.

    Parameters
    ----------
    dataset : xr.Dataset
        Grid in the layout described in the module docstring.
    coord : {"sph_ks", "cart_ks"}, optional
        Coordinate system; defaults to ``dataset.attrs["coord"]``.
    extrapolation_tolerance : float, optional
        How far (in slice spacings) slow-light sampling may reach beyond
        the first or last time slice; defaults to the dataset attribute
        or 1.0.
    """

    def __init__(self, dataset: xr.Dataset, coord: Optional[str] = None,
                 extrapolation_tolerance: Optional[float] = None):
        self.coord = coord or dataset.attrs.get("coord", "sph_ks")
        require(self.coord in ("sph_ks", "cart_ks"),
                f"Grid contract violated: unknown coordinate system '{self.coord}'")
        for name in ("x1f", "x2f", "x3f", "rho") + VECTOR_FIELDS:
            require(name in dataset.variables,
                    f"Grid contract violated: missing '{name}'")
        require("pgas" in dataset.data_vars or "kappa" in dataset.data_vars,
                "Grid contract violated: need 'pgas' or 'kappa'")

        if extrapolation_tolerance is None:
            extrapolation_tolerance = float(dataset.attrs.get("extrapolation_tolerance", 1.0))
        self.extrapolation_tolerance = extrapolation_tolerance

        self.x1f = np.asarray(dataset["x1f"].values, dtype=float)
        self.x2f = np.asarray(dataset["x2f"].values, dtype=float)
        self.x3f = np.asarray(dataset["x3f"].values, dtype=float)
        self.x1v = 0.5 * (self.x1f[:, :-1] + self.x1f[:, 1:])
        self.x2v = 0.5 * (self.x2f[:, :-1] + self.x2f[:, 1:])
        self.x3v = 0.5 * (self.x3f[:, :-1] + self.x3f[:, 1:])

        self.has_time = "time" in dataset["rho"].dims
        self.times = (np.asarray(dataset["time"].values, dtype=float) if self.has_time
                      else None)

        self._fields = {}
        for name in ("rho", "pgas", "kappa") + VECTOR_FIELDS:
            if name not in dataset.data_vars:
                continue
            arr = dataset[name]
            dims = (("time",) if self.has_time else ()) + CELL_DIMS
            arr = np.ascontiguousarray(arr.transpose(*dims).values, dtype=float)
            arr.flags.writeable = False
            self._fields[name] = arr

        self.shape = self._fields["rho"].shape[-4:]
        num_blocks, nk, nj, ni = self.shape
        require(self.x1f.shape == (num_blocks, ni + 1),
                "Grid contract violated: x1f does not match cell dimension 'i'")
        require(self.x2f.shape == (num_blocks, nj + 1),
                "Grid contract violated: x2f does not match cell dimension 'j'")
        require(self.x3f.shape == (num_blocks, nk + 1),
                "Grid contract violated: x3f does not match cell dimension 'k'")

        self.bounds = np.stack([
            self.x1f[:, 0], self.x1f[:, -1],
            self.x2f[:, 0], self.x2f[:, -1],
            self.x3f[:, 0], self.x3f[:, -1],
        ], axis=1)

        logger.info("Simulation grid: %d blocks of %dx%dx%d cells (%s)%s",
                    num_blocks, nk, nj, ni, self.coord,
                    f", {len(self.times)} time slices" if self.has_time else "")

    @classmethod
    def from_dataset(cls, dataset: xr.Dataset, **kwargs) -> "SimulationGrid":
        return cls(dataset, **kwargs)

    @property
    def num_blocks(self) -> int:
        return int(self.shape[0])

    @property
    def num_cells(self) -> int:
        return int(np.prod(self.shape))

    @property
    def thermo_field(self) -> str:
        """Name of the thermodynamic field present ("pgas" or "kappa")."""
        return "pgas" if "pgas" in self._fields else "kappa"

    def has_field(self, name: str) -> bool:
        return name in self._fields

    def field(self, name: str) -> np.ndarray:
        """Read-only array of shape ([time,] block, k, j, i)."""
        return self._fields[name]

    def flat_field(self, name: str) -> np.ndarray:
        """Field with the cell dimensions flattened: ([time,] num_cells)."""
        arr = self._fields[name]
        if self.has_time:
            return arr.reshape(arr.shape[0], -1)
        return arr.reshape(-1)

    def flat_index(self, block, k, j, i):
        """Flat cell index of (block, k, j, i) in row-major order."""
        return np.ravel_multi_index((block, k, j, i), self.shape)


def open_simulation_grid(path, coord: Optional[str] = None) -> SimulationGrid:
    """Open a NetCDF grid file and load it into memory.

    Raises
    ------
    FileNotFoundError
        If ``path`` does not exist.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Simulation grid not found: {path}")
    with xr.open_dataset(path) as ds:
        ds = ds.load()
    logger.info("Opened simulation grid: %s", path)
    return SimulationGrid(ds, coord=coord)
