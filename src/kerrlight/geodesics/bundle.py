"""Per-level geodesic sample arrays.

A ``GeodesicBundle`` owns the samples of every pixel at one refinement
level. Samples are stored source-to-observer: index 0 is the far end of
the ray and index ``num_steps - 1`` is the camera. ``length`` is the
affine distance from the far end, so it is non-decreasing along the
samples. Entries past ``num_steps`` are zero.
"""

from dataclasses import dataclass, replace
from typing import Optional

import numpy as np

from kerrlight.geodesics.stepper import GeodesicStatus

__all__ = ['GeodesicBundle', 'reverse_samples']


@dataclass(frozen=True)
class GeodesicBundle:
    """Geodesic samples of one refinement level."""
    level: int
    camera_pos: np.ndarray
    camera_dir: np.ndarray
    pos: np.ndarray
    dir: np.ndarray
    length: np.ndarray
    num_steps: np.ndarray
    status: np.ndarray
    blocks: Optional[np.ndarray] = None

    @property
    def num_pix(self) -> int:
        return int(self.num_steps.shape[0])

    @property
    def num_samples(self) -> int:
        return int(self.pos.shape[1])

    @property
    def flags(self) -> np.ndarray:
        """True for pixels whose geodesic did not converge."""
        return self.status != GeodesicStatus.CONVERGED

    def read_only(self) -> "GeodesicBundle":
        """Non-owning view whose arrays cannot be written through."""
        views = {}
        for name in ("camera_pos", "camera_dir", "pos", "dir", "length", "num_steps", "status",
                     "blocks"):
            arr = getattr(self, name)
            if arr is None:
                continue
            view = arr.view()
            view.flags.writeable = False
            views[name] = view
        return replace(self, **views)


def reverse_samples(samples: np.ndarray, num: np.ndarray):
    """Reorder camera-to-source samples into source-to-observer order.

    Parameters
    ----------
    samples : ndarray, shape (num_pix, max_samples, 9)
        Per-sample (x^mu, k_mu, s) with s the affine distance from the camera.
    num : ndarray, shape (num_pix,)
        Valid samples per pixel.

    Returns
    -------
    pos, dir : ndarray, shape (num_pix, max_samples, 4)
    length : ndarray, shape (num_pix, max_samples)
        Affine distance from the far end, ``s_total - s``.

    Examples
    --------
    Camera distances [0, 2, 5] become lengths [0, 3, 5].
    """
    num_pix, max_samples = samples.shape[:2]
    out_idx = np.arange(max_samples)[None, :]
    src_idx = num[:, None] - 1 - out_idx
    valid = src_idx >= 0
    gathered = np.take_along_axis(samples, np.clip(src_idx, 0, None)[:, :, None], axis=1)
    gathered[~valid] = 0.0

    total = samples[np.arange(num_pix), np.maximum(num - 1, 0), 8]
    length = np.where(valid, total[:, None] - gathered[:, :, 8], 0.0)
    return gathered[:, :, :4].copy(), gathered[:, :, 4:8].copy(), length
