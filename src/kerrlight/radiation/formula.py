"""Closed-form emission model.

A rotating Gaussian torus with power-law emissivity and absorptivity,
as used in the 2020 code comparison (Gold et al., ApJ 897, 148,
appendix C). Every quantity is analytic in the sample position, so no
grid and no sampling stage are needed.
"""

import logging

import numpy as np

from kerrlight.geometry import kerr
from kerrlight.parallel import run_chunks
from kerrlight.schemas.internal import InternalConfig

logger = logging.getLogger(__name__)

__all__ = ['formula_velocity', 'formula_density', 'FormulaModel']


def formula_velocity(pos, a, l0, q, m=1.0):
    """Contravariant Cartesian Kerr-Schild 4-velocity of the torus.

    The fluid has zero radial and polar velocity in Boyer-Lindquist
    coordinates, with specific angular momentum
    ``l = l0 / (1 + R) * R**(1 + q)`` for cylindrical radius R.
    Returns an array of shape (..., 4).
    """
    return _FormulaFlow(pos, a, l0, q, m).u_con


class _FormulaFlow:
    """Shared geometry of one batch of formula samples."""

    def __init__(self, pos, a, l0, q, m=1.0):
        x, y, z = pos[..., 1], pos[..., 2], pos[..., 3]
        r = kerr.radial_coordinate(x, y, z, a)
        self.r = r
        self.cth = np.clip(z / r, -1.0, 1.0)
        self.rr = np.sqrt(np.maximum(r * r - z * z, 0.0))
        self._a, self._m = a, m
        self._pos = pos
        self.l0 = l0
        self.q = q

    @property
    def u_con(self):
        a, m, r, cth = self._a, self._m, self.r, self.cth
        sth2 = np.maximum(1.0 - cth * cth, 1.0e-300)
        delta = r * r - 2.0 * m * r + a * a
        sigma = r * r + a * a * cth * cth
        gtt = -(1.0 + 2.0 * m * r * (r * r + a * a) / (delta * sigma))
        gtph = -2.0 * m * a * r / (delta * sigma)
        gphph = (sigma - 2.0 * m * r) / (delta * sigma * sth2)

        ll = self.l0 / (1.0 + self.rr) * self.rr ** (1.0 + self.q)
        u_norm = 1.0 / np.sqrt(-gtt + 2.0 * gtph * ll - gphph * ll * ll)
        ut = gtt * -u_norm + gtph * u_norm * ll
        uph = gtph * -u_norm + gphph * u_norm * ll

        # Only u^phi survives the map to Cartesian components
        x, y = self._pos[..., 1], self._pos[..., 2]
        ph = np.arctan2(y, x) - np.arctan2(a, r)
        sth = np.sqrt(sth2)
        u = np.empty(np.shape(r) + (4,))
        u[..., 0] = ut
        u[..., 1] = sth * (-r * np.sin(ph) - a * np.cos(ph)) * uph
        u[..., 2] = sth * (r * np.cos(ph) - a * np.sin(ph)) * uph
        u[..., 3] = 0.0
        return u


def formula_density(r, cth, r0, h):
    """Fluid-frame density relative to its peak: exp(-(r^2/r0^2 + h^2 cos^2 theta) / 2)."""
    return np.exp(-0.5 * (r * r / (r0 * r0) + h * h * cth * cth))


class FormulaModel:
    """Invariant emission and absorption coefficients of the formula torus.

    Parameters
    ----------
    config : InternalConfig
    spin : float
        Spin used by the fluid model (zero in flat space).
    momentum_factor : float
        Converts code-unit photon energies to Hz.
    """

    def __init__(self, config: InternalConfig, spin: float, momentum_factor: float):
        self.config = config
        self.formula = config.formula
        self.spin = spin
        self.momentum_factor = momentum_factor

    def _chunk(self, pos, dir_cov, num_steps):
        f = self.formula
        num_samples = pos.shape[1]
        valid = np.arange(num_samples)[None, :] < num_steps[:, None]

        with np.errstate(invalid="ignore", divide="ignore", over="ignore"):
            flow = _FormulaFlow(pos, self.spin, f.l0, f.q)
            u_con = flow.u_con
            n_n0 = formula_density(flow.r, flow.cth, f.r0, f.h)
            nu = -np.einsum('...i,...i->...', u_con, dir_cov) * self.momentum_factor
            j_nu = f.cn0 * n_n0 * (nu / f.nup) ** (-f.alpha)
            alpha_nu = f.a * f.cn0 * n_n0 * (nu / f.nup) ** (-f.beta - f.alpha)
            j_inv = j_nu / (nu * nu)
            alpha_inv = alpha_nu * nu

        nan = valid & ~(np.isfinite(j_inv) & np.isfinite(alpha_inv))
        j_inv = np.where(valid & ~nan, j_inv, 0.0)
        alpha_inv = np.where(valid & ~nan, alpha_inv, 0.0)
        return j_inv, alpha_inv, nan

    def coefficients(self, bundle):
        """Evaluate coefficients at every sample of a level.

        Returns
        -------
        j_inv, alpha_inv : ndarray, shape (num_pix, num_samples)
            Invariant emissivity j/nu^2 and absorptivity alpha*nu (CGS).
            Entries past ``num_steps`` are zero.
        nan : ndarray of bool
            Samples whose coefficients were not finite.
        """
        runtime = self.config.runtime
        results = run_chunks(
            lambda sl: self._chunk(bundle.pos[sl], bundle.dir[sl], bundle.num_steps[sl]),
            bundle.num_pix, runtime.chunk_size, runtime.num_threads,
        )
        if not results:
            empty = np.zeros((0, bundle.num_samples))
            return empty, empty.copy(), empty.astype(bool)
        j_inv, alpha_inv, nan = (np.concatenate(parts, axis=0) for parts in zip(*results))
        if np.any(nan):
            logger.debug("Formula coefficients: %d non-finite samples", int(nan.sum()))
        return j_inv, alpha_inv, nan
