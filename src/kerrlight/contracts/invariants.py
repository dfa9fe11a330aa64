"""Formal stage invariants.

This file documents what each stage MUST produce. This is architecture, not code.
Use this file as a reviewer anchor and system reference.
"""

STAGE_INVARIANTS = {
    "camera": [
        "One 4-position and one covariant 4-momentum per pixel",
        "Every initial momentum is null under the metric at its position",
        "Level 0 pixels are row-major; refined levels are block-major",
    ],

    "geodesics": [
        "pos and dir have shape (num_pix, num_samples, 4); length has (num_pix, num_samples)",
        "Sample 0 is nearest the source, sample num_steps-1 is at the camera",
        "Length is non-decreasing over the first num_steps samples of each pixel",
        "Status is one of CONVERGED, TERMINATED, FAILED; never ACTIVE after integration",
        "Arrays handed to the radiation side are read-only views",
    ],

    "sampling": [
        "Fallback and NaN flags have the shape of the sample arrays",
        "Flagged samples never carry interpolated grid values",
    ],

    "image": [
        "Quantity offsets are a strictly increasing partition of the buffer",
        "Each offset equals the count of quantities enabled before it",
        "Image buffer shape is (num_quantities, num_pix) at every level",
        "Optical depth is non-negative and non-decreasing along the accumulation order",
    ],

    "refinement": [
        "Level 0 image reshapes into (num_blocks, block_size, block_size)",
        "Each flagged block yields exactly four children at the next level",
        "A block that passes every enabled criterion is never flagged on re-evaluation",
    ],
}

# Which stages run for which model
STAGE_REQUIREMENTS = {
    "camera": "REQUIRED",
    "geodesics": "REQUIRED",
    "sampling": "SIMULATION",   # Formula model evaluates the plasma in closed form
    "image": "REQUIRED",
    "refinement": "OPTIONAL",   # Only if adaptive.max_level > 0
}
