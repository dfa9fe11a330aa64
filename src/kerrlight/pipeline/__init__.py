"""Pipeline modules.

- runner: Snapshot driver (geodesics once, refinement loop per snapshot)
"""

from kerrlight.pipeline.runner import RayTracer, setup_logging

__all__ = [
    "RayTracer",
    "setup_logging",
]
