"""Camera construction: observer tetrad and per-pixel initial conditions.

The camera sits at spherical Kerr-Schild coordinates (r, theta, phi). Its
tetrad is built from the normal observer and the coordinate directions
of the spherical chart, orthonormalized with the local metric. Pixels are
laid out on a square image plane of side ``camera.width``:

- ``plane`` cameras shift the starting point across the image plane and
  give every pixel the same momentum direction (parallel rays).
- ``pinhole`` cameras start every ray at the camera and tilt the momentum
  by the pixel's angular offset.

Pixel coordinates at refinement level L use resolution ``res * 2**L``.
Level 0 pixels are row-major over the whole image; higher levels are
block-major, listing the ``block_size**2`` pixels of each refined block
in turn.
"""

import logging
from dataclasses import dataclass

import numpy as np

from kerrlight.geometry import kerr
from kerrlight.geometry.spacetime import Spacetime
from kerrlight.schemas.internal import InternalConfig
from kerrlight.schemas.resolve import ConfigurationError

logger = logging.getLogger(__name__)

__all__ = ['CameraFrame', 'Camera']


@dataclass(frozen=True)
class CameraFrame:
    """Observer state at the camera, all in Cartesian Kerr-Schild components."""
    position: np.ndarray
    u_con: np.ndarray
    u_cov: np.ndarray
    norm_con: np.ndarray
    hor_con: np.ndarray
    vert_con: np.ndarray
    momentum_factor: float


def _dot(g, v, w):
    return float(v @ g @ w)


class Camera:
    """Builds the observer frame and pixel initial conditions.

    Parameters
    ----------
    config : InternalConfig
        Resolved configuration; reads ``camera``, ``image`` and ``ray``.
    spacetime : Spacetime
        Metric used for the tetrad and for null-completing momenta.

    Raises
    ------
    ConfigurationError
        If the resolution is non-positive, the block size does not divide
        it, or the frame is degenerate (camera on the axis without
        ``camera.pole``, zero momentum direction).
    """

    def __init__(self, config: InternalConfig, spacetime: Spacetime):
        cam = config.camera
        if cam.resolution <= 0:
            raise ConfigurationError("Must have positive camera.resolution.")
        if config.adaptive.on and cam.resolution % config.adaptive.block_size != 0:
            raise ConfigurationError("Must have adaptive.block_size divide camera.resolution.")

        self.config = config
        self.spacetime = spacetime
        self.type = cam.type
        self.r = cam.r
        self.width = cam.width
        self.resolution = cam.resolution
        self.block_size = config.adaptive.block_size
        self.frame = self._build_frame()

        logger.debug("Camera frame at %s, momentum factor %.6e",
                     self.frame.position, self.frame.momentum_factor)

    def _build_frame(self) -> CameraFrame:
        cam = self.config.camera
        st = self.spacetime
        a = st.a

        sth = np.sin(cam.th)
        on_axis = cam.th in (0.0, np.pi) or abs(sth) < 1.0e-12
        if on_axis and not cam.pole:
            raise ConfigurationError("Camera on the polar axis requires camera.pole.")

        x, y, z = kerr.spherical_to_cartesian(cam.r, cam.th, cam.ph, a)
        position = np.array([0.0, x, y, z])
        gcov = st.covariant(position)
        gcon = st.contravariant(position)

        # Normal observer
        alpha = 1.0 / np.sqrt(-gcon[0, 0])
        n_con = gcon @ np.array([-alpha, 0.0, 0.0, 0.0])

        # Spherical coordinate directions in Cartesian components
        jac = kerr.spherical_jacobian(cam.r, cam.th, cam.ph, a)
        if on_axis:
            sph, cph = np.sin(cam.ph), np.cos(cam.ph)
            jac[:, 2] = [-cam.r * sph - a * cph, cam.r * cph - a * sph, 0.0]
        basis = []
        for col in range(3):
            v = np.concatenate(([0.0], jac[:, col]))
            v = v + _dot(gcov, n_con, v) * n_con
            for e in basis:
                v = v - _dot(gcov, e, v) * e
            basis.append(v / np.sqrt(_dot(gcov, v, v)))
        e_r, e_th, e_ph = basis

        gamma = np.sqrt(1.0 + cam.urn ** 2 + cam.uthn ** 2 + cam.uphn ** 2)
        u_con = gamma * n_con + cam.urn * e_r + cam.uthn * e_th + cam.uphn * e_ph
        u_cov = gcov @ u_con

        k_dir = cam.k_r * e_r + cam.k_th * e_th + cam.k_ph * e_ph
        norm = k_dir + _dot(gcov, u_con, k_dir) * u_con
        norm_sq = _dot(gcov, norm, norm)
        if not norm_sq > 0.0:
            raise ConfigurationError("Camera momentum direction (k_r, k_th, k_ph) is degenerate.")
        norm = norm / np.sqrt(norm_sq)

        vert = -e_th
        vert = vert + _dot(gcov, u_con, vert) * u_con
        vert = vert - _dot(gcov, norm, vert) * norm
        vert = vert / np.sqrt(_dot(gcov, vert, vert))

        hor = e_ph
        hor = hor + _dot(gcov, u_con, hor) * u_con
        hor = hor - _dot(gcov, norm, hor) * norm
        hor = hor - _dot(gcov, vert, hor) * vert
        hor = hor / np.sqrt(_dot(gcov, hor, hor))

        crot, srot = np.cos(cam.rotation), np.sin(cam.rotation)
        hor, vert = crot * hor + srot * vert, -srot * hor + crot * vert

        # Energy at infinity of the central ray sets the frequency scale
        k_center = gcov @ (u_con + norm)
        if self.config.image.normalization == "camera":
            momentum_factor = self.config.image.frequency
        else:
            momentum_factor = self.config.image.frequency / -k_center[0]

        return CameraFrame(
            position=position,
            u_con=u_con,
            u_cov=u_cov,
            norm_con=norm,
            hor_con=hor,
            vert_con=vert,
            momentum_factor=float(momentum_factor),
        )

    def level_resolution(self, level: int) -> int:
        """Linear pixel count of the full image at a refinement level."""
        return self.resolution * 2 ** level

    def pixel_indices(self, level: int, blocks=None):
        """Row and column of every pixel at ``level``.

        Parameters
        ----------
        level : int
            Refinement level.
        blocks : ndarray of shape (num_blocks, 2), optional
            Block (row, column) indices at ``level``; required for level > 0.

        Returns
        -------
        rows, cols : ndarray of int
        """
        if level == 0:
            res = self.resolution
            idx = np.arange(res * res)
            return idx // res, idx % res
        blocks = np.asarray(blocks, dtype=int).reshape(-1, 2)
        bs = self.block_size
        local = np.arange(bs * bs)
        rows = blocks[:, 0, None] * bs + (local // bs)[None, :]
        cols = blocks[:, 1, None] * bs + (local % bs)[None, :]
        return rows.ravel(), cols.ravel()

    def pixel_coordinates(self, level: int, blocks=None):
        """Image-plane coordinates (u, v) of every pixel at ``level``."""
        rows, cols = self.pixel_indices(level, blocks)
        res = self.level_resolution(level)
        pix = self.width / res
        u = (cols + 0.5 - 0.5 * res) * pix
        v = (rows + 0.5 - 0.5 * res) * pix
        return u, v

    def initial_conditions(self, u, v):
        """4-positions and covariant 4-momenta for image coordinates.

        Parameters
        ----------
        u, v : ndarray
            Horizontal and vertical image coordinates.

        Returns
        -------
        pos : ndarray, shape (num_pix, 4)
        dir_cov : ndarray, shape (num_pix, 4)
            Null, future-directed photon momenta, normalized so the camera
            measures unit energy for the central ray.
        """
        u = np.asarray(u, dtype=float)
        v = np.asarray(v, dtype=float)
        frame = self.frame
        num_pix = u.size

        if self.type == "plane":
            pos = (frame.position[None, :] + u[:, None] * frame.hor_con[None, :]
                   + v[:, None] * frame.vert_con[None, :])
            k_con = np.broadcast_to(frame.u_con + frame.norm_con, (num_pix, 4))
        else:
            pos = np.broadcast_to(frame.position, (num_pix, 4)).copy()
            gcov = self.spacetime.covariant(frame.position)
            direction = (frame.norm_con[None, :] - (u / self.r)[:, None] * frame.hor_con[None, :]
                         - (v / self.r)[:, None] * frame.vert_con[None, :])
            length = np.sqrt(np.einsum('ni,ij,nj->n', direction, gcov, direction))
            k_con = frame.u_con[None, :] + direction / length[:, None]

        gcov = self.spacetime.covariant(pos)
        k_cov = kerr.lower(gcov, k_con)
        k_cov = self.spacetime.complete_null(pos, k_cov)
        return pos, k_cov

    def level_initial_conditions(self, level: int, blocks=None):
        """Initial conditions for every pixel at a refinement level."""
        u, v = self.pixel_coordinates(level, blocks)
        return self.initial_conditions(u, v)
