"""Image stage contract.

Enforces the guarantee that after radiative transfer, the image buffer of
a level matches the quantity layout.
"""

import numpy as np

from kerrlight.contracts.base import require


def assert_image(image: np.ndarray, layout, num_pix: int) -> None:
    """Enforce image stage contract.

    Parameters
    ----------
    image : ndarray
        Buffer of shape (num_quantities, num_pix).

    layout : ImageLayout
        Offsets of the enabled quantities.

    num_pix : int
        Pixels at this level.

    Raises
    ------
    ContractViolation
        If any invariant is violated
    """
    require(
        image.shape == (layout.num_quantities, num_pix),
        f"Image contract violated: buffer shape {image.shape}, "
        f"expected {(layout.num_quantities, num_pix)}"
    )

    if layout.has("tau"):
        tau = image[layout.offset("tau")]
        # NaN marks flagged pixels
        require(
            not np.any(tau[np.isfinite(tau)] < 0.0),
            "Image contract violated: negative optical depth"
        )
