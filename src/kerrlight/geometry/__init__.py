"""Kerr geometry in Cartesian Kerr-Schild coordinates."""

from kerrlight.geometry.spacetime import Spacetime
from kerrlight.geometry.kerr import (
    radial_coordinate,
    covariant_metric,
    contravariant_metric,
    contravariant_metric_derivative,
    horizon_radius,
    photon_orbit_radius,
)

__all__ = [
    "Spacetime",
    "radial_coordinate",
    "covariant_metric",
    "contravariant_metric",
    "contravariant_metric_derivative",
    "horizon_radius",
    "photon_orbit_radius",
]
