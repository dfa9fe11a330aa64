"""Adaptive refinement of the camera plane.

The image of a level is cut into square blocks of ``block_size`` pixels
on a side. Every enabled criterion (fraction >= 0) counts the pixels of
a block whose intensity metric exceeds its cut; a block is flagged when
that count exceeds ``fraction * block_size**2`` for any criterion. Each
flagged block is split into four children at the next level, which
doubles the linear resolution locally.

Metrics, on the total intensity with pixel spacing in gravitational
radii:

- ``val``: the intensity
- ``abs_grad``: magnitude of the intensity gradient
- ``rel_grad``: gradient magnitude divided by the intensity
- ``abs_lapl``: magnitude of the Laplacian
- ``rel_lapl``: Laplacian magnitude divided by the intensity
"""

import logging
import threading

import numpy as np

from kerrlight.contracts.base import require
from kerrlight.parallel import run_chunks
from kerrlight.schemas.internal import InternalConfig

logger = logging.getLogger(__name__)

__all__ = ['CRITERIA', 'block_view', 'root_blocks', 'child_blocks', 'block_metrics',
           'RefinementController']

CRITERIA = ("val", "abs_grad", "rel_grad", "abs_lapl", "rel_lapl")
CHILD_OFFSETS = np.array([[0, 0], [0, 1], [1, 0], [1, 1]])


def root_blocks(resolution: int, block_size: int) -> np.ndarray:
    """Block (row, column) indices of the root level in row-major order."""
    num = resolution // block_size
    idx = np.arange(num * num)
    return np.stack([idx // num, idx % num], axis=1)


def block_view(values: np.ndarray, level: int, resolution: int, block_size: int) -> np.ndarray:
    """Arrange one image row of a level as (num_blocks, block_size, block_size).

    The root level is stored row-major over the whole image; refined
    levels are stored block-major already.
    """
    bs = block_size
    if level == 0:
        num = resolution // bs
        require(values.size == resolution * resolution,
                "Refinement contract violated: root image does not match the resolution")
        return values.reshape(num, bs, num, bs).transpose(0, 2, 1, 3).reshape(-1, bs, bs)
    require(values.size % (bs * bs) == 0,
            "Refinement contract violated: refined image is not a whole number of blocks")
    return values.reshape(-1, bs, bs)


def child_blocks(blocks: np.ndarray, flags: np.ndarray) -> np.ndarray:
    """Four children of every flagged block, in parent order.

    Children of block (r, c) are (2r, 2c), (2r, 2c+1), (2r+1, 2c) and
    (2r+1, 2c+1) at the next level.
    """
    parents = np.asarray(blocks, dtype=int).reshape(-1, 2)[np.asarray(flags, dtype=bool)]
    children = 2 * parents[:, None, :] + CHILD_OFFSETS[None, :, :]
    return children.reshape(-1, 2)


def block_metrics(block: np.ndarray, spacing: float) -> dict:
    """Every criterion metric over one block."""
    with np.errstate(invalid="ignore", divide="ignore"):
        if min(block.shape) >= 2:
            grad_y, grad_x = np.gradient(block, spacing)
            grad = np.hypot(grad_x, grad_y)
            lapl = np.abs(np.gradient(grad_y, spacing, axis=0)
                          + np.gradient(grad_x, spacing, axis=1))
        else:
            grad = np.zeros_like(block)
            lapl = np.zeros_like(block)
        magnitude = np.abs(block)
        return {
            "val": block,
            "abs_grad": grad,
            "rel_grad": grad / magnitude,
            "abs_lapl": lapl,
            "rel_lapl": lapl / magnitude,
        }


class RefinementController:
    """Per-level block bookkeeping and refinement decisions.

    Parameters
    ----------
    config : InternalConfig
    """

    def __init__(self, config: InternalConfig):
        self.adaptive = config.adaptive
        self.resolution = config.camera.resolution
        self.width = config.camera.width
        self.block_size = config.adaptive.block_size
        self.max_level = config.adaptive.max_level
        self.num_threads = config.runtime.num_threads
        self.criteria = [(name,
                          getattr(self.adaptive, f"{name}_frac"),
                          getattr(self.adaptive, f"{name}_cut"))
                         for name in CRITERIA
                         if getattr(self.adaptive, f"{name}_frac") >= 0.0]
        self._scratch = threading.local()

        self.blocks = [root_blocks(self.resolution, self.block_size)]
        self.flags = []

    def reset(self):
        """Forget every level above the root."""
        del self.blocks[1:]
        self.flags = []

    def spacing(self, level: int) -> float:
        return self.width / (self.resolution * 2 ** level)

    def _scratch_block(self) -> np.ndarray:
        block = getattr(self._scratch, "block", None)
        if block is None:
            block = np.empty((self.block_size, self.block_size))
            self._scratch.block = block
        return block

    def block_flagged(self, block: np.ndarray, spacing: float) -> bool:
        """Whether one block fails any enabled criterion."""
        scratch = self._scratch_block()
        scratch[...] = block
        metrics = block_metrics(scratch, spacing)
        limit = scratch.size
        for name, frac, cut in self.criteria:
            count = int(np.count_nonzero(metrics[name] > cut))
            if count > frac * limit:
                return True
        return False

    def evaluate(self, level: int, intensity: np.ndarray) -> np.ndarray:
        """Flag the blocks of ``level`` that need refinement.

        Parameters
        ----------
        level : int
        intensity : ndarray, shape (num_pix,)
            Total intensity of the level, in the level's pixel order.

        Returns
        -------
        ndarray of bool, shape (num_blocks,)
        """
        view = block_view(intensity, level, self.resolution, self.block_size)
        require(view.shape[0] == len(self.blocks[level]),
                f"Refinement contract violated: level {level} has {view.shape[0]} blocks, "
                f"expected {len(self.blocks[level])}")
        spacing = self.spacing(level)

        def run(sl):
            return [self.block_flagged(view[n], spacing) for n in range(sl.start, sl.stop)]

        chunk = max(1, view.shape[0] // max(self.num_threads, 1))
        parts = run_chunks(run, view.shape[0], chunk, self.num_threads)
        flags = np.array([flag for part in parts for flag in part], dtype=bool)

        del self.flags[level:]
        self.flags.append(flags)
        logger.info("Level %d refinement: %d of %d blocks flagged",
                    level, int(flags.sum()), flags.size)
        return flags

    def refine(self, level: int) -> np.ndarray:
        """Create the blocks of ``level + 1`` from the flags of ``level``."""
        children = child_blocks(self.blocks[level], self.flags[level])
        require(len(children) == 4 * int(self.flags[level].sum()),
                "Refinement contract violated: flagged blocks must yield four children each")
        del self.blocks[level + 1:]
        self.blocks.append(children)
        return children

    def merge(self, images: list, num_levels: int) -> np.ndarray:
        """Composite levels 0..num_levels into one image at the finest resolution.

        Returns
        -------
        ndarray, shape (num_quantities, res, res)
            ``res = resolution * 2**num_levels``.
        """
        final_res = self.resolution * 2 ** num_levels
        num_q = images[0].shape[0]
        merged = np.empty((num_q, final_res, final_res))
        bs = self.block_size

        for level in range(num_levels + 1):
            scale = 2 ** (num_levels - level)
            offsets = np.arange(scale)
            if level == 0:
                idx = np.arange(self.resolution * self.resolution)
                rows, cols = idx // self.resolution, idx % self.resolution
            else:
                blocks = self.blocks[level]
                local = np.arange(bs * bs)
                rows = (blocks[:, 0, None] * bs + (local // bs)[None, :]).ravel()
                cols = (blocks[:, 1, None] * bs + (local % bs)[None, :]).ravel()
            r_idx = rows[:, None, None] * scale + offsets[None, :, None]
            c_idx = cols[:, None, None] * scale + offsets[None, None, :]
            r_idx, c_idx = np.broadcast_arrays(r_idx, c_idx)
            for q in range(num_q):
                merged[q][r_idx, c_idx] = images[level][q][:, None, None]
        return merged
