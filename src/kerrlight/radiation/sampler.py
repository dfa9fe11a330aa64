"""Sampling of simulation data along geodesics.

Sampling runs in two phases. ``GridSampler.stencils()`` locates every
geodesic sample in the block grid and records which cells it reads and
with what weights; this depends only on geometry, so it can be cached
across snapshots and checkpointed. ``GridSampler.sample()`` then reads
the fields of the current snapshot through the stencils, applies slow
light in time, and converts vector components to Cartesian Kerr-Schild.

Samples outside every block are flagged fallback and carry the
configured fallback state. Samples whose interpolated values are not
finite are flagged NaN and carry zeros.
"""

import itertools
import logging
import math
from dataclasses import dataclass
from typing import Optional

import numpy as np

from kerrlight.contracts.base import require
from kerrlight.geodesics.bundle import GeodesicBundle
from kerrlight.geometry import kerr
from kerrlight.parallel import run_chunks
from kerrlight.schemas.internal import InternalConfig
from kerrlight.simulation.grid import SimulationGrid

logger = logging.getLogger(__name__)

__all__ = ['SampleStencil', 'SampleState', 'GridSampler']


@dataclass(frozen=True)
class SampleStencil:
    """Cells and weights read by every sample of one level.

    ``cells`` and ``weights`` have shape (num_pix, num_samples, width)
    with width 8 for trilinear and 1 for nearest-cell sampling. Unused
    slots hold cell 0 with weight 0.
    """
    cells: np.ndarray
    weights: np.ndarray
    fallback: np.ndarray
    nan: np.ndarray

    @property
    def width(self) -> int:
        return int(self.cells.shape[-1])


@dataclass
class SampleState:
    """Fluid state at every geodesic sample of one level.

    Vector components are Cartesian Kerr-Schild. ``thermo`` holds gas
    pressure or electron entropy, as named by ``thermo_name``.
    """
    rho: np.ndarray
    thermo: np.ndarray
    uu: np.ndarray
    bb: np.ndarray
    fallback: np.ndarray
    nan: np.ndarray
    thermo_name: str = "pgas"

    @property
    def flags(self) -> np.ndarray:
        return self.fallback | self.nan


class GridSampler:
    """Maps geodesic samples onto a block grid.

    Parameters
    ----------
    grid : SimulationGrid
    config : InternalConfig
    spin : float
        Spin used to convert Cartesian positions to spherical grid
        coordinates (zero in flat space).
    """

    def __init__(self, grid: SimulationGrid, config: InternalConfig, spin: float):
        self.grid = grid
        self.config = config
        self.spin = spin
        self.interp = config.simulation.interp
        self.block_interp = config.simulation.block_interp and self.interp
        self.width = 8 if self.interp else 1
        self._x3_min = float(np.min(grid.x3f[:, 0]))

        require(grid.coord == config.simulation.coord,
                f"Grid contract violated: grid is '{grid.coord}', "
                f"configuration expects '{config.simulation.coord}'")

    # ------------------------------------------------------------------
    # Geometry
    # ------------------------------------------------------------------

    def grid_coordinates(self, pos):
        """Grid coordinates (x1, x2, x3) of 4-positions."""
        x, y, z = pos[..., 1], pos[..., 2], pos[..., 3]
        if self.grid.coord == "cart_ks":
            return x, y, z
        r = kerr.radial_coordinate(x, y, z, self.spin)
        th = np.arccos(np.clip(z / r, -1.0, 1.0))
        ph = np.arctan2(y, x) - np.arctan2(self.spin, r)
        ph = self._x3_min + np.mod(ph - self._x3_min, 2.0 * math.pi)
        return r, th, ph

    def locate_blocks(self, q1, q2, q3):
        """Index of the block containing each point, or -1."""
        block = np.full(np.shape(q1), -1, dtype=int)
        for b, (lo1, hi1, lo2, hi2, lo3, hi3) in enumerate(self.grid.bounds):
            inside = ((block < 0)
                      & (q1 >= lo1) & (q1 < hi1)
                      & (q2 >= lo2) & (q2 < hi2)
                      & (q3 >= lo3) & (q3 < hi3))
            block[inside] = b
        return block

    def _containing_cell(self, b, q1, q2, q3):
        grid = self.grid
        ni, nj, nk = grid.x1v.shape[1], grid.x2v.shape[1], grid.x3v.shape[1]
        i = np.clip(np.searchsorted(grid.x1f[b], q1, side="right") - 1, 0, ni - 1)
        j = np.clip(np.searchsorted(grid.x2f[b], q2, side="right") - 1, 0, nj - 1)
        k = np.clip(np.searchsorted(grid.x3f[b], q3, side="right") - 1, 0, nk - 1)
        return k, j, i

    def _nearest_cells(self, q1, q2, q3):
        """Flat index of the cell containing each point, or -1."""
        block = self.locate_blocks(q1, q2, q3)
        cells = np.full(np.shape(q1), -1, dtype=int)
        for b in np.unique(block[block >= 0]):
            sel = block == b
            k, j, i = self._containing_cell(b, q1[sel], q2[sel], q3[sel])
            cells[sel] = self.grid.flat_index(np.full(k.shape, b), k, j, i)
        return cells

    @staticmethod
    def _axis_stencil(centers, faces, q, allow_ghost):
        """Lower/upper center indices and fraction along one axis.

        With ``allow_ghost`` the indices may reach -1 or n, meaning the
        cell center mirrored across the block face.
        """
        n = centers.shape[0]
        if n == 1 and not allow_ghost:
            zeros = np.zeros(q.shape, dtype=int)
            return zeros, zeros, np.zeros(q.shape), np.full(q.shape, centers[0]), \
                np.full(q.shape, centers[0])

        lo = np.searchsorted(centers, q, side="right") - 1
        if allow_ghost:
            lo = np.clip(lo, -1, n - 1)
        else:
            lo = np.clip(lo, 0, n - 2)
        hi = lo + 1

        ghost_lo = 2.0 * faces[0] - centers[0]
        ghost_hi = 2.0 * faces[-1] - centers[-1]
        c_lo = np.where(lo < 0, ghost_lo, centers[np.clip(lo, 0, n - 1)])
        c_hi = np.where(hi > n - 1, ghost_hi, centers[np.clip(hi, 0, n - 1)])
        frac = np.clip((q - c_lo) / (c_hi - c_lo), 0.0, 1.0)
        return lo, hi, frac, c_lo, c_hi

    def _block_stencil(self, b, q1, q2, q3):
        """Cells and weights of points that lie in block ``b``."""
        grid = self.grid
        num = q1.shape[0]
        cells = np.zeros((num, self.width), dtype=int)
        weights = np.zeros((num, self.width))

        if not self.interp:
            k, j, i = self._containing_cell(b, q1, q2, q3)
            cells[:, 0] = grid.flat_index(np.full(num, b), k, j, i)
            weights[:, 0] = 1.0
            return cells, weights

        axes = [
            self._axis_stencil(grid.x3v[b], grid.x3f[b], q3, self.block_interp),
            self._axis_stencil(grid.x2v[b], grid.x2f[b], q2, self.block_interp),
            self._axis_stencil(grid.x1v[b], grid.x1f[b], q1, self.block_interp),
        ]
        sizes = (grid.x3v.shape[1], grid.x2v.shape[1], grid.x1v.shape[1])

        for slot, corner in enumerate(itertools.product((0, 1), repeat=3)):
            idx = []
            coords = []
            weight = np.ones(num)
            for (lo, hi, frac, c_lo, c_hi), upper in zip(axes, corner):
                idx.append(hi if upper else lo)
                coords.append(c_hi if upper else c_lo)
                weight = weight * (frac if upper else 1.0 - frac)

            inside = np.ones(num, dtype=bool)
            for ax_idx, n in zip(idx, sizes):
                inside &= (ax_idx >= 0) & (ax_idx < n)
            clamped = [np.clip(ax_idx, 0, n - 1) for ax_idx, n in zip(idx, sizes)]
            flat = grid.flat_index(np.full(num, b), *clamped)

            outside = ~inside
            if np.any(outside):
                # Corner lies past the block face: read the neighbouring block
                neighbour = self._nearest_cells(coords[2][outside], coords[1][outside],
                                                coords[0][outside])
                flat_out = flat[outside]
                found = neighbour >= 0
                flat_out[found] = neighbour[found]
                flat[outside] = flat_out

            cells[:, slot] = flat
            weights[:, slot] = weight
        return cells, weights

    def _stencil_chunk(self, pos, num_steps):
        num_pix, num_samples = pos.shape[:2]
        valid = np.arange(num_samples)[None, :] < num_steps[:, None]
        cells = np.zeros((num_pix, num_samples, self.width), dtype=int)
        weights = np.zeros((num_pix, num_samples, self.width))
        finite = np.all(np.isfinite(pos), axis=-1)
        nan = valid & ~finite
        fallback = np.zeros((num_pix, num_samples), dtype=bool)

        use = valid & finite
        if not np.any(use):
            return cells, weights, fallback, nan

        q1, q2, q3 = self.grid_coordinates(pos[use])
        block = self.locate_blocks(q1, q2, q3)
        fallback_use = block < 0
        fallback[use] = fallback_use

        cells_use = np.zeros((q1.shape[0], self.width), dtype=int)
        weights_use = np.zeros((q1.shape[0], self.width))
        for b in np.unique(block[~fallback_use]):
            sel = block == b
            cells_use[sel], weights_use[sel] = self._block_stencil(b, q1[sel], q2[sel], q3[sel])
        cells[use] = cells_use
        weights[use] = weights_use
        return cells, weights, fallback, nan

    def stencils(self, bundle: GeodesicBundle) -> SampleStencil:
        """Locate every sample of a level in the grid."""
        runtime = self.config.runtime
        results = run_chunks(
            lambda sl: self._stencil_chunk(bundle.pos[sl], bundle.num_steps[sl]),
            bundle.num_pix, runtime.chunk_size, runtime.num_threads,
        )
        if results:
            cells, weights, fallback, nan = (np.concatenate(parts, axis=0)
                                             for parts in zip(*results))
        else:
            shape = (0, bundle.num_samples)
            cells = np.zeros(shape + (self.width,), dtype=int)
            weights = np.zeros(shape + (self.width,))
            fallback = np.zeros(shape, dtype=bool)
            nan = np.zeros(shape, dtype=bool)

        logger.debug("Level %d stencils: %d fallback samples, %d NaN samples",
                     bundle.level, int(fallback.sum()), int(nan.sum()))
        return SampleStencil(cells=cells, weights=weights, fallback=fallback, nan=nan)

    # ------------------------------------------------------------------
    # Values
    # ------------------------------------------------------------------

    def _time_slices(self, pos, camera_time, snapshot):
        """Time-slice indices and weights for slow light.

        Returns
        -------
        lo, hi : ndarray of int
        weight : ndarray
            Weight of ``hi``; outside [0, 1] when extrapolating.
        out_of_range : ndarray of bool
        """
        times = self.grid.times
        slow = self.config.slow_light
        shape = pos.shape[:-1]
        num_times = times.shape[0]
        if num_times == 1:
            zeros = np.zeros(shape, dtype=int)
            return zeros, zeros, np.zeros(shape), np.zeros(shape, dtype=bool)

        t_sim = slow.t_start + snapshot * slow.dt + (pos[..., 0] - camera_time[:, None])
        tol = self.grid.extrapolation_tolerance
        dt_first = times[1] - times[0]
        dt_last = times[-1] - times[-2]
        out_of_range = ((t_sim < times[0] - tol * dt_first)
                        | (t_sim > times[-1] + tol * dt_last))

        index = np.interp(t_sim, times, np.arange(num_times, dtype=float))
        index = np.where(t_sim < times[0], (t_sim - times[0]) / dt_first, index)
        index = np.where(t_sim > times[-1],
                         num_times - 1 + (t_sim - times[-1]) / dt_last, index)

        if slow.interp:
            lo = np.clip(np.floor(index).astype(int), 0, num_times - 2)
            return lo, lo + 1, index - lo, out_of_range
        nearest = np.clip(np.rint(index).astype(int), 0, num_times - 1)
        return nearest, nearest, np.zeros(shape), out_of_range

    def _gather(self, name, cells, weights, time_slices):
        flat = self.grid.flat_field(name)
        if not self.grid.has_time:
            return np.sum(flat[cells] * weights, axis=-1)
        if time_slices is None:
            return np.sum(flat[0][cells] * weights, axis=-1)
        lo, hi, w, _ = time_slices
        v_lo = np.sum(flat[lo[..., None], cells] * weights, axis=-1)
        v_hi = np.sum(flat[hi[..., None], cells] * weights, axis=-1)
        return (1.0 - w) * v_lo + w * v_hi

    def _sample_chunk(self, stencil_parts, pos, num_steps, camera_time, snapshot, slow_light):
        cells, weights, fallback, nan = stencil_parts
        fallback = fallback.copy()
        nan = nan.copy()
        num_samples = pos.shape[1]
        valid = np.arange(num_samples)[None, :] < num_steps[:, None]

        time_slices = None
        if slow_light and self.grid.has_time:
            time_slices = self._time_slices(pos, camera_time, snapshot)
            fallback |= valid & ~nan & time_slices[3]

        thermo_name = self.grid.thermo_field
        values = {name: self._gather(name, cells, weights, time_slices)
                  for name in ("rho", thermo_name, "uu1", "uu2", "uu3", "bb1", "bb2", "bb3")}

        rho = values["rho"]
        thermo = values[thermo_name]
        uu = np.stack([values["uu1"], values["uu2"], values["uu3"]], axis=-1)
        bb = np.stack([values["bb1"], values["bb2"], values["bb3"]], axis=-1)

        if self.grid.coord == "sph_ks":
            safe_pos = np.where(np.isfinite(pos), pos, 0.0)
            r, th, ph = self.grid_coordinates(safe_pos)
            jac = kerr.spherical_jacobian(r, th, ph, self.spin)
            uu = np.einsum('...ij,...j->...i', jac, uu)
            bb = np.einsum('...ij,...j->...i', jac, bb)

        finite = (np.isfinite(rho) & np.isfinite(thermo)
                  & np.all(np.isfinite(uu), axis=-1) & np.all(np.isfinite(bb), axis=-1))
        nan |= valid & ~fallback & ~finite

        fb = self.config.fallback
        fb_thermo = fb.pgas if thermo_name == "pgas" else fb.kappa
        rho = np.where(fallback, fb.rho, rho)
        thermo = np.where(fallback, fb_thermo, thermo)
        uu = np.where(fallback[..., None], 0.0, uu)
        bb = np.where(fallback[..., None], 0.0, bb)

        invalid = nan | ~valid
        rho = np.where(invalid, 0.0, rho)
        thermo = np.where(invalid, 0.0, thermo)
        uu = np.where(invalid[..., None], 0.0, uu)
        bb = np.where(invalid[..., None], 0.0, bb)
        return rho, thermo, uu, bb, fallback, nan

    def sample(self, stencil: SampleStencil, bundle: GeodesicBundle, snapshot: int = 0,
               slow_light: Optional[bool] = None) -> SampleState:
        """Read the current grid through ``stencil``.

        Parameters
        ----------
        stencil : SampleStencil
            From stencils() on the same bundle.
        bundle : GeodesicBundle
        snapshot : int
            Snapshot counter used for the slow-light time.
        slow_light : bool, optional
            Defaults to the resolved configuration.
        """
        if slow_light is None:
            slow_light = self.config.slow_light_on
        require(stencil.cells.shape[:2] == bundle.pos.shape[:2],
                "Sampling contract violated: stencil does not match geodesic samples")

        camera_time = bundle.camera_pos[:, 0]
        runtime = self.config.runtime
        results = run_chunks(
            lambda sl: self._sample_chunk(
                (stencil.cells[sl], stencil.weights[sl], stencil.fallback[sl], stencil.nan[sl]),
                bundle.pos[sl], bundle.num_steps[sl], camera_time[sl], snapshot, slow_light),
            bundle.num_pix, runtime.chunk_size, runtime.num_threads,
        )
        if results:
            rho, thermo, uu, bb, fallback, nan = (np.concatenate(parts, axis=0)
                                                  for parts in zip(*results))
        else:
            shape = (0, bundle.num_samples)
            rho, thermo = np.zeros(shape), np.zeros(shape)
            uu, bb = np.zeros(shape + (3,)), np.zeros(shape + (3,))
            fallback, nan = np.zeros(shape, dtype=bool), np.zeros(shape, dtype=bool)

        return SampleState(rho=rho, thermo=thermo, uu=uu, bb=bb, fallback=fallback, nan=nan,
                           thermo_name=self.grid.thermo_field)
