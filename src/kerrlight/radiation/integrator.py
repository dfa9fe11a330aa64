"""Radiation integration driver.

``RadiationIntegrator`` turns the geodesic bundles of a
``GeodesicIntegrator`` into image buffers, one refinement level per call
of ``integrate(snapshot)``:

1. simulation model: locate samples in the grid (root stencils are
   computed once, or loaded from a checkpoint) and read the snapshot
2. coefficients (formula or synchrotron)
3. polarized or unpolarized transfer into the level's image buffer
4. refinement check; either the snapshot is complete or the next level
   must be traced

Buffers and helpers are allocated once in the constructor; each call only
fills them.
"""

import logging
import time
from typing import Optional

import numpy as np
import xarray as xr

from kerrlight.constants import C, GG_MSUN
from kerrlight.contracts.base import require
from kerrlight.contracts.image import assert_image
from kerrlight.geometry import kerr
from kerrlight.parallel import run_chunks
from kerrlight.radiation.adaptive import RefinementController
from kerrlight.radiation.checkpoint import load_samples, sample_fingerprint, save_samples
from kerrlight.radiation.coefficients import Coefficients, SynchrotronModel
from kerrlight.radiation.formula import FormulaModel
from kerrlight.radiation.layout import ImageLayout
from kerrlight.radiation.polarization import field_angle, transport_basis
from kerrlight.radiation.sampler import GridSampler
from kerrlight.radiation.transfer import (
    find_z_turnings,
    integrate_polarized,
    integrate_unpolarized,
    segment_geometry,
    write_pixel_quantities,
)
from kerrlight.schemas.internal import InternalConfig
from kerrlight.simulation.grid import SimulationGrid

logger = logging.getLogger(__name__)

__all__ = ['RadiationIntegrator', 'length_unit']


def length_unit(config: InternalConfig) -> float:
    """Gravitational radius GM/c^2 in cm for the selected model."""
    if config.model_type == "formula":
        return config.formula.mass
    return GG_MSUN * config.simulation.m_msun / (C * C)


class RadiationIntegrator:
    """Integrates radiation along the geodesics of every refinement level.

    Parameters
    ----------
    config : InternalConfig
    geodesics : GeodesicIntegrator
        Owner of the geodesic bundles; this integrator only reads them.
    grid : SimulationGrid, optional
        Simulation data; required for the simulation model before the
        first call of integrate().

    Examples
    --------
    >>> geo = GeodesicIntegrator(config)
    >>> geo.integrate()
    >>> rad = RadiationIntegrator(config, geo)
    >>> while not rad.integrate(snapshot=0):
    ...     geo.add_geodesics(rad)
    >>> image = rad.merged_image()
    """

    def __init__(self, config: InternalConfig, geodesics, grid: Optional[SimulationGrid] = None):
        self.config = config
        self.geodesics = geodesics
        self.spacetime = geodesics.spacetime
        self.momentum_factor = geodesics.momentum_factor
        self.length_unit = length_unit(config)
        self.layout = ImageLayout.from_config(config)
        self.simulation = config.model_type == "simulation"
        self.polarized = self.layout.polarized
        self.need_cells = any(self.layout.has(name)
                              for name in ("lambda_ave", "emission_ave", "tau_int"))
        self.cut_z_turnings = config.image.cut_z_turnings
        self.track_turnings = self.layout.has("z_turnings") or self.cut_z_turnings >= 0

        require(self.layout.num_quantities > 0,
                "Image contract violated: no image quantity enabled")

        self.refinement = RefinementController(config) if config.adaptive.on else None
        self.adaptive_level = 0
        self.adaptive_num_levels = 0
        self.images: list[np.ndarray] = []
        self.pixel_flags: list[np.ndarray] = []
        self.last_timings = {"sample": 0.0, "integrate": 0.0}

        frame = geodesics.camera.frame
        gcov = self.spacetime.covariant(frame.position)
        self.basis_cov = np.stack([kerr.lower(gcov, frame.vert_con),
                                   kerr.lower(gcov, frame.hor_con)])

        self.grid = None
        self.sampler = None
        self._root_stencil = None
        if self.simulation:
            self.model = SynchrotronModel(config, self.spacetime, self.momentum_factor,
                                          polarized=self.polarized, cells=self.need_cells)
            if grid is not None:
                self.set_grid(grid)
        else:
            self.model = FormulaModel(config, self.spacetime.a, self.momentum_factor)

        logger.info("Radiation integrator ready: %s model, %d image rows (%s)",
                    config.model_type, self.layout.num_quantities,
                    ", ".join(self.layout.row_names()))

    # ------------------------------------------------------------------
    # Grid
    # ------------------------------------------------------------------

    def set_grid(self, grid: SimulationGrid):
        """Use ``grid`` for the following snapshots.

        Root stencils are kept when the block layout is unchanged.
        """
        if self.grid is not None and self.grid.shape != grid.shape:
            self._root_stencil = None
        self.grid = grid
        self.sampler = GridSampler(grid, self.config, self.spacetime.a)

    # ------------------------------------------------------------------
    # Refinement interface used by GeodesicIntegrator
    # ------------------------------------------------------------------

    def refinement_blocks(self, level: int) -> np.ndarray:
        """Block (row, column) indices traced at ``level``."""
        require(self.refinement is not None and level < len(self.refinement.blocks),
                f"Refinement contract violated: no blocks for level {level}")
        return self.refinement.blocks[level]

    # ------------------------------------------------------------------
    # Integration
    # ------------------------------------------------------------------

    def integrate(self, snapshot: int = 0) -> bool:
        """Integrate the current refinement level of ``snapshot``.

        Returns
        -------
        bool
            True when no further level is needed for this snapshot.
        """
        level = self.adaptive_level
        bundle = self.geodesics.view(level)
        if level == 0:
            self.images = []
            self.pixel_flags = []
            if self.refinement is not None:
                self.refinement.reset()

        sample_start = time.perf_counter()
        if self.simulation:
            require(self.sampler is not None,
                    "Sampling contract violated: simulation model needs a grid")
            stencil = self._stencil(level, bundle)
            state = self.sampler.sample(stencil, bundle, snapshot)
        sample_end = time.perf_counter()

        if self.simulation:
            coeffs = self.model.compute(state, bundle)
            sample_flags = state.fallback | coeffs.nan
        else:
            j_inv, alpha_inv, nan = self.model.coefficients(bundle)
            coeffs = None
            sample_flags = nan

        image = np.zeros((self.layout.num_quantities, bundle.num_pix))
        runtime = self.config.runtime
        if self.simulation:
            run_chunks(lambda sl: self._transfer_chunk(image, sl, bundle, coeffs.j_i,
                                                       coeffs.alpha_i, coeffs),
                       bundle.num_pix, runtime.chunk_size, runtime.num_threads)
        else:
            run_chunks(lambda sl: self._transfer_chunk(image, sl, bundle, j_inv, alpha_inv),
                       bundle.num_pix, runtime.chunk_size, runtime.num_threads)

        flags = self._apply_flags(image, bundle, sample_flags)
        assert_image(image, self.layout, bundle.num_pix)
        del self.images[level:]
        del self.pixel_flags[level:]
        self.images.append(image)
        self.pixel_flags.append(flags)

        complete = self._check_refinement(level, image)
        if complete:
            self.adaptive_num_levels = level
            self.adaptive_level = 0
        else:
            self.adaptive_level = level + 1
        integrate_end = time.perf_counter()

        self.last_timings = {"sample": sample_end - sample_start,
                             "integrate": integrate_end - sample_end}
        logger.info("Snapshot %d level %d: %d pixels, %d flagged (sample %.2f s, integrate %.2f s)",
                    snapshot, level, bundle.num_pix, int(flags.sum()),
                    self.last_timings["sample"], self.last_timings["integrate"])
        return complete

    def _stencil(self, level, bundle):
        if level > 0:
            return self.sampler.stencils(bundle)
        if self._root_stencil is not None:
            return self._root_stencil

        ckpt = self.config.checkpoint
        config_hash = sample_fingerprint(self.config, self.grid.shape)
        if ckpt.sample_load:
            stencil = load_samples(ckpt.sample_file, config_hash)
            require(stencil.cells.shape[:2] == bundle.pos.shape[:2],
                    "Sampling contract violated: checkpoint does not match the root geodesics")
        else:
            stencil = self.sampler.stencils(bundle)
        if ckpt.sample_save:
            save_samples(stencil, ckpt.sample_file, config_hash)
        self._root_stencil = stencil
        return stencil

    def _transfer_chunk(self, image, sl, bundle, j_inv, alpha_inv, coeffs=None):
        pos = bundle.pos[sl]
        turnings = start = None
        if self.track_turnings:
            turnings, start = find_z_turnings(pos[..., 3], bundle.num_steps[sl],
                                              self.cut_z_turnings)
        geometry = segment_geometry(pos, bundle.length[sl], bundle.num_steps[sl],
                                    bundle.camera_pos[sl, 0], self.length_unit,
                                    self.momentum_factor, start=start)
        cells = coeffs.cells[sl] if coeffs is not None and coeffs.cells is not None else None
        results = integrate_unpolarized(j_inv[sl], alpha_inv[sl], geometry, cells)
        results["z_turnings"] = turnings

        stokes = None
        if self.polarized and self.layout.has("light"):
            stokes = integrate_polarized(_slice_coefficients(coeffs, sl),
                                         self._field_angles(bundle, sl, coeffs), geometry)
        write_pixel_quantities(image, self.layout, results, self.momentum_factor,
                               stokes=stokes, pixels=sl)

    def _field_angles(self, bundle, sl, coeffs):
        pos, k_cov = bundle.pos[sl], bundle.dir[sl]
        with np.errstate(all="ignore"):
            basis = transport_basis(self.spacetime, pos, k_cov, bundle.length[sl],
                                    bundle.num_steps[sl], self.basis_cov)
            gcov = self.spacetime.covariant(pos)
            gcon = self.spacetime.contravariant(pos)
            f_con = np.einsum('...ij,...j->...i', gcon, basis[0])
            h_con = np.einsum('...ij,...j->...i', gcon, basis[1])
            k_con = np.einsum('...ij,...j->...i', gcon, k_cov)
            chi = field_angle(gcov, coeffs.u_con[sl], k_con, coeffs.b_con[sl], f_con, h_con)
        return np.where(np.isfinite(chi), chi, 0.0)

    def _apply_flags(self, image, bundle, sample_flags):
        valid = np.arange(bundle.num_samples)[None, :] < bundle.num_steps[:, None]
        flags = bundle.flags | np.any(sample_flags & valid, axis=1)
        if self.config.fallback.nan and np.any(flags):
            image[:, flags] = np.nan
        return flags

    def _check_refinement(self, level, image) -> bool:
        if self.refinement is None or level >= self.config.adaptive.max_level:
            return True
        intensity = image[self.layout.offset("light")]
        flags = self.refinement.evaluate(level, intensity)
        if not np.any(flags):
            return True
        self.refinement.refine(level)
        return False

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def merged_image(self) -> np.ndarray:
        """All levels composited at the finest resolution reached.

        Returns
        -------
        ndarray, shape (num_quantities, res, res)
        """
        require(len(self.images) > 0, "Image contract violated: nothing integrated yet")
        num_levels = self.adaptive_num_levels
        if self.refinement is None or num_levels == 0:
            res = self.config.camera.resolution
            return self.images[0].reshape(self.layout.num_quantities, res, res).copy()
        return self.refinement.merge(self.images, num_levels)

    def image_dataset(self, snapshot: int = 0) -> xr.Dataset:
        """Merged image as a Dataset with one variable per buffer row."""
        merged = self.merged_image()
        res = merged.shape[-1]
        width = self.config.camera.width
        coord = (np.arange(res) + 0.5 - 0.5 * res) * width / res
        data_vars = {name: (("y", "x"), merged[n])
                     for n, name in enumerate(self.layout.row_names())}
        return xr.Dataset(
            data_vars,
            coords={"x": coord, "y": coord},
            attrs={
                "snapshot": int(snapshot),
                "model_type": self.config.model_type,
                "frequency": self.config.image.frequency,
                "momentum_factor": self.momentum_factor,
                "camera_r": self.config.camera.r,
                "camera_width": width,
                "num_levels": int(self.adaptive_num_levels),
            },
        )


def _slice_coefficients(coeffs, sl):
    """View of polarized coefficients restricted to a pixel slice."""
    return Coefficients(
        j_i=coeffs.j_i[sl], alpha_i=coeffs.alpha_i[sl], nan=coeffs.nan[sl],
        j_q=coeffs.j_q[sl], j_v=coeffs.j_v[sl],
        alpha_q=coeffs.alpha_q[sl], alpha_v=coeffs.alpha_v[sl],
        rho_q=coeffs.rho_q[sl], rho_v=coeffs.rho_v[sl],
    )
