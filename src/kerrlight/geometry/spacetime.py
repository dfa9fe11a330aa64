"""Spacetime selection for the geodesic and radiation stages.

A ``Spacetime`` bundles the spin, mass and flat-space switch so callers
evaluate the metric from 4-positions without repeating parameters.
"""

import numpy as np

from kerrlight.geometry import kerr

__all__ = ['Spacetime']


class Spacetime:
    """Kerr (or flat) metric evaluated at 4-positions of shape (..., 4).

    Parameters
    ----------
    a : float
        Dimensionless spin. Ignored when ``flat`` is True.
    m : float, optional
        Mass in code units.
    flat : bool, optional
        Use the Minkowski metric everywhere.
    """

    def __init__(self, a: float, m: float = 1.0, flat: bool = False):
        self.flat = flat
        self.a = 0.0 if flat else float(a)
        self.m = m

    def __repr__(self):
        return f"Spacetime(a={self.a}, m={self.m}, flat={self.flat})"

    def radius(self, pos):
        """Kerr-Schild radius at 4-positions."""
        return kerr.radial_coordinate(pos[..., 1], pos[..., 2], pos[..., 3], self.a)

    def covariant(self, pos, out=None):
        """g_{mu nu} at 4-positions."""
        if self.flat:
            if out is None:
                return kerr.minkowski_metric(pos.shape[:-1])
            out[...] = kerr.minkowski_metric()
            return out
        return kerr.covariant_metric(pos[..., 1], pos[..., 2], pos[..., 3], self.a, self.m, out=out)

    def contravariant(self, pos, out=None):
        """g^{mu nu} at 4-positions."""
        if self.flat:
            if out is None:
                return kerr.minkowski_metric(pos.shape[:-1])
            out[...] = kerr.minkowski_metric()
            return out
        return kerr.contravariant_metric(pos[..., 1], pos[..., 2], pos[..., 3], self.a, self.m,
                                         out=out)

    def contravariant_derivative(self, pos, out=None):
        """Derivative of g^{mu nu}, indexed [..., i, mu, nu]."""
        if self.flat:
            if out is None:
                return np.zeros(pos.shape[:-1] + (4, 4, 4))
            out[...] = 0.0
            return out
        return kerr.contravariant_metric_derivative(pos[..., 1], pos[..., 2], pos[..., 3],
                                                    self.a, self.m, out=out)

    def covariant_derivative(self, pos):
        """Derivative of g_{mu nu}, indexed [..., i, mu, nu].

        Uses d(g_cov) = -g_cov d(g^con) g_cov.
        """
        gcov = self.covariant(pos)
        dgcon = self.contravariant_derivative(pos)
        return -np.einsum('...ma,...iab,...bn->...imn', gcov, dgcon, gcov)

    def horizon_radius(self):
        """Outer horizon radius (zero in flat space)."""
        if self.flat:
            return 0.0
        return float(kerr.horizon_radius(self.a, self.m))

    def photon_orbit_radius(self):
        """Prograde photon orbit radius (zero in flat space)."""
        if self.flat:
            return 0.0
        return float(kerr.photon_orbit_radius(self.a, self.m))

    def complete_null(self, pos, k_cov):
        """Replace k_0 so that k is null and future-directed.

        Parameters
        ----------
        pos : ndarray, shape (..., 4)
        k_cov : ndarray, shape (..., 4)
            Covariant momentum; spatial components are kept.

        Returns
        -------
        ndarray, shape (..., 4)
        """
        gcon = self.contravariant(pos)
        k_cov = np.array(k_cov, dtype=float, copy=True)
        coef_a = gcon[..., 0, 0]
        coef_b = np.einsum('...i,...i->...', gcon[..., 0, 1:], k_cov[..., 1:])
        coef_c = np.einsum('...i,...ij,...j->...', k_cov[..., 1:], gcon[..., 1:, 1:], k_cov[..., 1:])
        disc = np.sqrt(np.maximum(coef_b * coef_b - coef_a * coef_c, 0.0))
        k_cov[..., 0] = (-coef_b + disc) / coef_a
        return k_cov
