"""Camera setup and geodesic integration.

- camera: pixel layout and initial conditions
- stepper: adaptive Dormand-Prince integration of null geodesics
- bundle: per-level sample arrays
- checkpoint: NetCDF save/load of the root level
- integrator: driver over refinement levels
"""

from kerrlight.geodesics.bundle import GeodesicBundle
from kerrlight.geodesics.camera import Camera
from kerrlight.geodesics.integrator import GeodesicIntegrator
from kerrlight.geodesics.stepper import GeodesicStatus, GeodesicStepper

__all__ = [
    "Camera",
    "GeodesicBundle",
    "GeodesicIntegrator",
    "GeodesicStatus",
    "GeodesicStepper",
]
