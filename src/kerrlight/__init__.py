"""`kerrlight` - ray tracing and radiative transfer around Kerr black holes.

Subpackages:
- geometry: Kerr-Schild metric evaluation
- geodesics: Camera construction, adaptive geodesic integration, checkpoints
- radiation: Sampling, transfer coefficients, transfer integration, adaptive refinement
- simulation: Interface to gridded simulation data
- pipeline: Snapshot runner
- visualization: Quick-look plots
"""

__version__ = "0.1.0"
