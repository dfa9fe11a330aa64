"""Kerr metric in Cartesian Kerr-Schild coordinates.

All functions are vectorized over the leading axis of their inputs and
write into caller-supplied ``out`` arrays when given, so the geodesic
stepper can reuse per-thread scratch buffers across steps.

The metric is written in Kerr-Schild form

    g_{mu nu} = eta_{mu nu} + f l_mu l_nu
    g^{mu nu} = eta^{mu nu} - f l^mu l^nu

with f = 2 m r^3 / (r^4 + a^2 z^2) and the ingoing null covector
l_mu = (1, (r x + a y)/(r^2 + a^2), (r y - a x)/(r^2 + a^2), z/r).
Coordinates are ordered (t, x, y, z); the signature is (-,+,+,+).
"""

import logging

import numpy as np

logger = logging.getLogger(__name__)

__all__ = [
    'R_FLOOR',
    'radial_coordinate',
    'null_covector',
    'covariant_metric',
    'contravariant_metric',
    'contravariant_metric_derivative',
    'minkowski_metric',
    'horizon_radius',
    'photon_orbit_radius',
    'spherical_to_cartesian',
    'spherical_jacobian',
    'lower',
    'raise_index',
]

# Smallest radius handed to the metric; keeps r = 0 from dividing by zero
R_FLOOR = 1.0e-6

_ETA = np.diag([-1.0, 1.0, 1.0, 1.0])


def radial_coordinate(x, y, z, a):
    """Kerr-Schild radius r from Cartesian position.

    Solves (x^2 + y^2)/(r^2 + a^2) + z^2/r^2 = 1 for r >= 0.

    Parameters
    ----------
    x, y, z : array_like
        Cartesian Kerr-Schild position.
    a : float
        Dimensionless spin.

    Returns
    -------
    ndarray
        Radius, floored at R_FLOOR.
    """
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    z = np.asarray(z, dtype=float)
    a2 = a * a
    rr2 = x * x + y * y + z * z
    b = rr2 - a2
    r2 = 0.5 * (b + np.sqrt(b * b + 4.0 * a2 * z * z))
    return np.maximum(np.sqrt(np.maximum(r2, 0.0)), R_FLOOR)


def null_covector(x, y, z, a, r=None):
    """Kerr-Schild null covector l_mu and the radius it was built from.

    Returns
    -------
    l_cov : ndarray, shape (..., 4)
    r : ndarray, shape (...)
    """
    if r is None:
        r = radial_coordinate(x, y, z, a)
    denom = r * r + a * a
    l_cov = np.empty(np.shape(r) + (4,))
    l_cov[..., 0] = 1.0
    l_cov[..., 1] = (r * x + a * y) / denom
    l_cov[..., 2] = (r * y - a * x) / denom
    l_cov[..., 3] = z / r
    return l_cov, r


def _f_factor(r, z, a, m):
    return 2.0 * m * r ** 3 / (r ** 4 + a * a * z * z)


def covariant_metric(x, y, z, a, m=1.0, out=None):
    """Covariant metric g_{mu nu}, shape (..., 4, 4)."""
    l_cov, r = null_covector(x, y, z, a)
    f = _f_factor(r, np.asarray(z, dtype=float), a, m)
    if out is None:
        out = np.empty(np.shape(r) + (4, 4))
    np.multiply(l_cov[..., :, None], l_cov[..., None, :], out=out)
    out *= f[..., None, None]
    out += _ETA
    return out


def contravariant_metric(x, y, z, a, m=1.0, out=None):
    """Contravariant metric g^{mu nu}, shape (..., 4, 4)."""
    l_cov, r = null_covector(x, y, z, a)
    f = _f_factor(r, np.asarray(z, dtype=float), a, m)
    l_con = l_cov
    l_con[..., 0] = -1.0
    if out is None:
        out = np.empty(np.shape(r) + (4, 4))
    np.multiply(l_con[..., :, None], l_con[..., None, :], out=out)
    out *= -f[..., None, None]
    out += _ETA
    return out


def contravariant_metric_derivative(x, y, z, a, m=1.0, out=None):
    """Coordinate derivative of the contravariant metric.

    Parameters
    ----------
    x, y, z : array_like
        Cartesian Kerr-Schild position.
    a : float
        Dimensionless spin.
    m : float, optional
        Mass in code units.
    out : ndarray, optional
        Array of shape (..., 4, 4, 4) to fill.

    Returns
    -------
    ndarray, shape (..., 4, 4, 4)
        ``out[..., i, mu, nu]`` is the derivative of g^{mu nu} with respect
        to coordinate i. The time slot (i = 0) is zero.
    """
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    z = np.asarray(z, dtype=float)
    l_cov, r = null_covector(x, y, z, a)
    a2 = a * a
    r2 = r * r
    denom = r2 + a2
    q = r2 * r2 + a2 * z * z
    f = 2.0 * m * r * r2 / q

    # dr/dx^i
    dr = np.zeros(np.shape(r) + (4,))
    dr[..., 1] = x * r * r2 / q
    dr[..., 2] = y * r * r2 / q
    dr[..., 3] = z * r * denom / q

    # df/dx^i
    df_dr = 2.0 * m * r2 * (3.0 * a2 * z * z - r2 * r2) / (q * q)
    df = df_dr[..., None] * dr
    df[..., 3] += -4.0 * m * a2 * z * r * r2 / (q * q)

    # dl^mu/dx^i, indexed [..., i, mu]
    dl = np.zeros(np.shape(r) + (4, 4))
    lx = l_cov[..., 1]
    ly = l_cov[..., 2]
    two_r_dr = 2.0 * r[..., None] * dr / denom[..., None]
    dl[..., :, 1] = (x[..., None] * dr) / denom[..., None] - lx[..., None] * two_r_dr
    dl[..., :, 2] = (y[..., None] * dr) / denom[..., None] - ly[..., None] * two_r_dr
    dl[..., :, 3] = -z[..., None] * dr / r2[..., None]
    dl[..., 1, 1] += r / denom
    dl[..., 2, 1] += a / denom
    dl[..., 2, 2] += r / denom
    dl[..., 1, 2] -= a / denom
    dl[..., 3, 3] += 1.0 / r

    l_con = l_cov
    l_con[..., 0] = -1.0
    ll = l_con[..., :, None] * l_con[..., None, :]
    if out is None:
        out = np.empty(np.shape(r) + (4, 4, 4))
    np.multiply(-df[..., :, None, None], ll[..., None, :, :], out=out)
    sym = dl[..., :, :, None] * l_con[..., None, None, :]
    sym += dl[..., :, None, :] * l_con[..., None, :, None]
    out -= f[..., None, None, None] * sym
    out[..., 0, :, :] = 0.0
    return out


def minkowski_metric(shape=()):
    """Flat metric diag(-1, 1, 1, 1) broadcast to ``shape + (4, 4)``."""
    return np.broadcast_to(_ETA, tuple(shape) + (4, 4)).copy()


def horizon_radius(a, m=1.0):
    """Outer event horizon radius."""
    return m + np.sqrt(m * m - a * a)


def photon_orbit_radius(a, m=1.0):
    """Prograde equatorial circular photon orbit radius."""
    return 2.0 * m * (1.0 + np.cos(2.0 / 3.0 * np.arccos(-a / m)))


def spherical_to_cartesian(r, th, ph, a):
    """Spherical Kerr-Schild (r, theta, phi) to Cartesian Kerr-Schild (x, y, z)."""
    sth, cth = np.sin(th), np.cos(th)
    sph, cph = np.sin(ph), np.cos(ph)
    x = sth * (r * cph - a * sph)
    y = sth * (r * sph + a * cph)
    z = r * cth
    return x, y, z


def spherical_jacobian(r, th, ph, a):
    """Jacobian d(x, y, z)/d(r, theta, phi) of the spherical Kerr-Schild chart.

    Returns
    -------
    ndarray, shape (..., 3, 3)
        ``jac[..., i, j]`` is dx^i/dq^j with q = (r, theta, phi).
    """
    r = np.asarray(r, dtype=float)
    th = np.asarray(th, dtype=float)
    ph = np.asarray(ph, dtype=float)
    sth, cth = np.sin(th), np.cos(th)
    sph, cph = np.sin(ph), np.cos(ph)
    jac = np.zeros(np.broadcast(r, th, ph).shape + (3, 3))
    jac[..., 0, 0] = sth * cph
    jac[..., 1, 0] = sth * sph
    jac[..., 2, 0] = cth
    jac[..., 0, 1] = cth * (r * cph - a * sph)
    jac[..., 1, 1] = cth * (r * sph + a * cph)
    jac[..., 2, 1] = -r * sth
    jac[..., 0, 2] = sth * (-r * sph - a * cph)
    jac[..., 1, 2] = sth * (r * cph - a * sph)
    return jac


def lower(g, v):
    """Lower the index of a vector: v_mu = g_{mu nu} v^nu."""
    return np.einsum('...ij,...j->...i', g, v)


def raise_index(gcon, v):
    """Raise the index of a covector: v^mu = g^{mu nu} v_nu."""
    return np.einsum('...ij,...j->...i', gcon, v)
