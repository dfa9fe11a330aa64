"""Geodesic integration driver.

GeodesicIntegrator owns the camera, the stepper and the geodesic bundle
of every refinement level. ``integrate()`` traces the root level once
per run (or loads it from a checkpoint); ``add_geodesics()`` traces the
children of the blocks the radiation side flagged for refinement.

The radiation side only ever sees read-only views of the bundles; their
lifetime is tied to this integrator.
"""

import logging
import time

import numpy as np

from kerrlight.contracts.base import require
from kerrlight.contracts.geodesics import assert_geodesics
from kerrlight.geodesics.bundle import GeodesicBundle, reverse_samples
from kerrlight.geodesics.camera import Camera
from kerrlight.geodesics.checkpoint import geodesic_fingerprint, load_geodesics, save_geodesics
from kerrlight.geodesics.stepper import GeodesicStatus, GeodesicStepper
from kerrlight.geometry.spacetime import Spacetime
from kerrlight.parallel import run_chunks
from kerrlight.schemas.internal import InternalConfig

logger = logging.getLogger(__name__)

__all__ = ['GeodesicIntegrator', 'termination_radius']


def termination_radius(spacetime: Spacetime, terminate: str, factor: float) -> float:
    """Radius at which inbound geodesics are considered captured.

    Parameters
    ----------
    spacetime : Spacetime
    terminate : {"multiplicative", "additive", "photon"}
        ``factor * r_horizon``, ``r_horizon + factor``, or the prograde
        photon orbit.
    factor : float

    Returns
    -------
    float
        Zero in flat space.
    """
    if spacetime.flat:
        return 0.0
    r_hor = spacetime.horizon_radius()
    if terminate == "multiplicative":
        return factor * r_hor
    if terminate == "additive":
        return r_hor + factor
    return spacetime.photon_orbit_radius()


class GeodesicIntegrator:
    """Traces geodesics for every pixel of every refinement level.

    Parameters
    ----------
    config : InternalConfig
        Resolved configuration.

    Examples
    --------
    >>> geo = GeodesicIntegrator(config)
    >>> elapsed = geo.integrate()
    >>> bundle = geo.view(0)
    """

    def __init__(self, config: InternalConfig):
        self.config = config
        self.spacetime = Spacetime(config.black_hole_spin, flat=config.ray.flat)
        self.camera = Camera(config, self.spacetime)
        self.r_terminate = termination_radius(self.spacetime, config.ray.terminate,
                                              config.ray.factor)

        cam_pos = self.camera.frame.position[1:]
        self.stepper = GeodesicStepper(
            self.spacetime,
            config.ray,
            r_terminate=self.r_terminate,
            initial_step=config.ray.step * config.camera.r,
            plane_normal=cam_pos / np.linalg.norm(cam_pos),
            plane_distance=config.camera.r,
        )
        self.fingerprint = geodesic_fingerprint(config)
        self.levels: list[GeodesicBundle] = []

        logger.info("Geodesic integrator ready: %s, r_terminate=%.4f, %d root pixels",
                    self.spacetime, self.r_terminate, config.camera.resolution ** 2)

    @property
    def momentum_factor(self) -> float:
        return self.camera.frame.momentum_factor

    def view(self, level: int) -> GeodesicBundle:
        """Read-only view of the bundle at ``level``."""
        return self.levels[level].read_only()

    def integrate(self) -> float:
        """Trace (or load) the root-level geodesics.

        Returns
        -------
        float
            Elapsed wall-clock seconds.
        """
        start = time.perf_counter()
        ckpt = self.config.checkpoint

        if ckpt.geodesic_load:
            bundle = load_geodesics(ckpt.geodesic_file, self.fingerprint)
            require(bundle.num_pix == self.config.camera.resolution ** 2,
                    f"Geodesic contract violated: checkpoint has {bundle.num_pix} pixels")
        else:
            pos, dir_cov = self.camera.level_initial_conditions(0)
            bundle = self._trace(0, pos, dir_cov)

        assert_geodesics(bundle, self.config.camera.resolution ** 2)
        if ckpt.geodesic_save:
            save_geodesics(bundle, ckpt.geodesic_file, self.fingerprint)

        self.levels = [bundle]
        elapsed = time.perf_counter() - start
        self._log_level_summary(bundle, elapsed)
        return elapsed

    def add_geodesics(self, radiation) -> float:
        """Trace the children of every block flagged at the previous level.

        Parameters
        ----------
        radiation : RadiationIntegrator
            Supplies ``adaptive_level`` (the level about to be integrated)
            and ``refinement_blocks(level)``.

        Returns
        -------
        float
            Elapsed wall-clock seconds.
        """
        start = time.perf_counter()
        level = radiation.adaptive_level
        require(1 <= level <= len(self.levels),
                f"Geodesic contract violated: cannot add level {level} after {len(self.levels)}")

        blocks = radiation.refinement_blocks(level)
        pos, dir_cov = self.camera.level_initial_conditions(level, blocks)
        bundle = self._trace(level, pos, dir_cov, blocks)
        assert_geodesics(bundle, pos.shape[0])

        del self.levels[level:]
        self.levels.append(bundle)
        elapsed = time.perf_counter() - start
        self._log_level_summary(bundle, elapsed)
        return elapsed

    def _trace(self, level, pos, dir_cov, blocks=None) -> GeodesicBundle:
        num_pix = pos.shape[0]
        runtime = self.config.runtime
        results = run_chunks(
            lambda sl: self.stepper.integrate(pos[sl], dir_cov[sl]),
            num_pix, runtime.chunk_size, runtime.num_threads,
        )

        max_samples = max(res.samples.shape[1] for res in results)
        samples = np.zeros((num_pix, max_samples, 9))
        num = np.empty(num_pix, dtype=int)
        status = np.empty(num_pix, dtype=np.int8)
        offset = 0
        for res in results:
            count, width = res.samples.shape[:2]
            samples[offset:offset + count, :width] = res.samples
            num[offset:offset + count] = res.num_samples
            status[offset:offset + count] = res.status
            offset += count

        require(not np.any(status == GeodesicStatus.ACTIVE),
                "Geodesic contract violated: active geodesics after integration")
        s_pos, s_dir, s_len = reverse_samples(samples, num)
        return GeodesicBundle(
            level=level,
            camera_pos=np.array(pos, dtype=float),
            camera_dir=np.array(dir_cov, dtype=float),
            pos=s_pos,
            dir=s_dir,
            length=s_len,
            num_steps=num,
            status=status,
            blocks=None if blocks is None else np.asarray(blocks, dtype=int),
        )

    def _log_level_summary(self, bundle: GeodesicBundle, elapsed: float):
        counts = np.bincount(bundle.status, minlength=len(GeodesicStatus))
        logger.info(
            "Level %d geodesics: %d pixels, max %d samples, %d terminated, %d failed (%.2f s)",
            bundle.level, bundle.num_pix, bundle.num_samples,
            counts[GeodesicStatus.TERMINATED], counts[GeodesicStatus.FAILED], elapsed,
        )
