"""Radiation side: sampling, coefficients, transfer and refinement.

- layout: image buffer offsets
- sampler: simulation-grid sampling along geodesics
- formula: closed-form torus model
- coefficients: synchrotron coefficients for simulation data
- polarization: parallel-transported image basis
- transfer: radiative transfer along samples
- adaptive: block refinement of the camera plane
- checkpoint: NetCDF save/load of root-level stencils
- integrator: per-level driver
"""

from kerrlight.radiation.integrator import RadiationIntegrator
from kerrlight.radiation.layout import ImageLayout

__all__ = [
    "ImageLayout",
    "RadiationIntegrator",
]
