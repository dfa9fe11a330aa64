"""Geodesic stage contract.

Enforces the guarantee that after integration, every pixel of a level
carries source-to-observer samples with a final status.
"""

from typing import TYPE_CHECKING

import numpy as np

from kerrlight.contracts.base import require

if TYPE_CHECKING:
    from kerrlight.geodesics.bundle import GeodesicBundle

# GeodesicStatus.ACTIVE; kept numeric so this module does not import the stepper
STATUS_ACTIVE = 0


def assert_geodesics(bundle: "GeodesicBundle", num_pix: int) -> None:
    """Enforce geodesic stage contract.

    Called before the radiation side consumes a level.

    Parameters
    ----------
    bundle : GeodesicBundle
        Bundle produced by GeodesicIntegrator.

    num_pix : int
        Expected number of pixels at this level.

    Raises
    ------
    ContractViolation
        If any invariant is violated
    """
    require(
        bundle.num_pix == num_pix,
        f"Geodesic contract violated: {bundle.num_pix} pixels, expected {num_pix}"
    )
    require(
        bundle.pos.shape == (num_pix, bundle.num_samples, 4)
        and bundle.dir.shape == bundle.pos.shape,
        f"Geodesic contract violated: sample arrays have shape {bundle.pos.shape}"
    )
    require(
        bundle.length.shape == bundle.pos.shape[:2],
        "Geodesic contract violated: length does not match the sample arrays"
    )
    require(
        not np.any(bundle.status == STATUS_ACTIVE),
        "Geodesic contract violated: active geodesics after integration"
    )
    require(
        np.all(bundle.num_steps <= bundle.num_samples),
        "Geodesic contract violated: num_steps exceeds stored samples"
    )

    # Length is non-decreasing over the valid samples
    valid = np.arange(bundle.num_samples)[None, 1:] < bundle.num_steps[:, None]
    steps = np.diff(bundle.length, axis=1)
    require(
        not np.any(steps[valid] < 0.0),
        "Geodesic contract violated: length decreases along a geodesic"
    )
