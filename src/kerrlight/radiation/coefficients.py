"""Synchrotron transfer coefficients for simulation data.

The sampled fluid state (code units) is converted to CGS plasma
quantities in the fluid frame. Emissivities, absorptivities and, for
polarized transfer, Faraday coefficients are then evaluated for a blend
of thermal, power-law and kappa electron populations and converted to
their invariant forms j/nu^2, alpha*nu and rho*nu.

Polarized coefficients are expressed in the frame whose first axis is
the magnetic field projected onto the sky of the fluid frame, so U
terms vanish there. Synchrotron light is polarized perpendicular to the
field, which makes j_Q, alpha_Q and rho_Q negative in this frame. The
transfer stage rotates them into the parallel-transported image basis.

References: Dexter (2016, MNRAS 462, 115) thermal fits; Pandya et al.
(2016, ApJ 822, 34) power-law and kappa fits; Shcherbakov (2008) Faraday
coefficients.
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional

import numpy as np
from scipy import special

from kerrlight.constants import C, E, H, HZ_PER_GAUSS, ME, MP
from kerrlight.geodesics.bundle import GeodesicBundle
from kerrlight.geometry.spacetime import Spacetime
from kerrlight.parallel import run_chunks
from kerrlight.radiation.sampler import SampleState
from kerrlight.schemas.internal import InternalConfig
from kerrlight.schemas.rules import POLARIZED_KAPPA_TABLE

logger = logging.getLogger(__name__)

__all__ = [
    'Coefficients', 'SynchrotronModel', 'fluid_frame',
    'thermal_synchrotron', 'thermal_faraday', 'kirchhoff_absorption',
    'power_law_synchrotron', 'kappa_synchrotron', 'kappa_polarized',
]

SIN_MIN = 1.0e-10
THETA_E_MIN = 1.0e-10
SQRT3 = math.sqrt(3.0)

POLARIZED_NAMES = ("j_q", "j_v", "alpha_q", "alpha_v", "rho_q", "rho_v")


@dataclass
class Coefficients:
    """Invariant transfer coefficients at every sample of one level.

    Arrays have shape (num_pix, num_samples). Polarized entries, the
    fluid 4-vectors and the cell values are None unless requested.
    """
    j_i: np.ndarray
    alpha_i: np.ndarray
    nan: np.ndarray
    j_q: Optional[np.ndarray] = None
    j_v: Optional[np.ndarray] = None
    alpha_q: Optional[np.ndarray] = None
    alpha_v: Optional[np.ndarray] = None
    rho_q: Optional[np.ndarray] = None
    rho_v: Optional[np.ndarray] = None
    u_con: Optional[np.ndarray] = None
    b_con: Optional[np.ndarray] = None
    cells: Optional[np.ndarray] = None

    @property
    def polarized(self) -> bool:
        return self.j_q is not None


def fluid_frame(uu, bb, gcov, gcon):
    """Fluid 4-velocity and magnetic 4-vector from normal-frame primitives.

    Parameters
    ----------
    uu : ndarray, shape (..., 3)
        Velocity components measured by the normal observer.
    bb : ndarray, shape (..., 3)
        Magnetic field components B^i.
    gcov, gcon : ndarray, shape (..., 4, 4)

    Returns
    -------
    u_con, u_cov, b_con, b_cov : ndarray, shape (..., 4)
    bsq : ndarray
        b^mu b_mu, floored at zero.
    """
    gamma = np.sqrt(1.0 + np.einsum('...i,...ij,...j->...', uu, gcov[..., 1:, 1:], uu))
    lapse = 1.0 / np.sqrt(-gcon[..., 0, 0])

    u_con = np.empty(uu.shape[:-1] + (4,))
    u_con[..., 0] = gamma / lapse
    u_con[..., 1:] = uu - (gamma * lapse)[..., None] * gcon[..., 0, 1:]
    u_cov = np.einsum('...ij,...j->...i', gcov, u_con)

    b_con = np.empty_like(u_con)
    b_con[..., 0] = np.einsum('...i,...i->...', bb, u_cov[..., 1:])
    b_con[..., 1:] = (bb + b_con[..., 0:1] * u_con[..., 1:]) / u_con[..., 0:1]
    b_cov = np.einsum('...ij,...j->...i', gcov, b_con)
    bsq = np.maximum(np.einsum('...i,...i->...', b_con, b_cov), 0.0)
    return u_con, u_cov, b_con, b_cov, bsq


def kirchhoff_absorption(j, nu, theta_e):
    """Absorptivity j / B_nu(T_e), evaluated in log space."""
    x = H * nu / (ME * C * C * theta_e)
    with np.errstate(divide="ignore"):
        log_alpha = (np.log(j) + np.log(C * C / (2.0 * H * nu ** 3))
                     + x + np.log(-np.expm1(-x)))
    return np.exp(log_alpha)


def thermal_synchrotron(n_e, theta_e, nu, nu_c, sin_th, cos_th, polarized=False):
    """Thermal synchrotron emissivities (Dexter 2016 fits).

    Returns
    -------
    dict
        ``j_i`` and, when ``polarized``, ``j_q`` and ``j_v`` (field frame).
    """
    x = nu / (1.5 * nu_c * sin_th * theta_e * theta_e)
    xm13 = x ** (-1.0 / 3.0)
    decay = np.exp(-1.8899 * x ** (1.0 / 3.0))
    pref = n_e * E * E * nu / (2.0 * SQRT3 * C * theta_e * theta_e)

    out = {"j_i": pref * 2.5651 * (1.0 + 1.92 * xm13 + 0.9977 * xm13 * xm13) * decay}
    if polarized:
        out["j_q"] = -pref * 2.5651 * (1.0 + 0.932 * xm13 + 0.4998 * xm13 * xm13) * decay
        i_v = (1.8138 / x + 3.423 * xm13 * xm13 + 0.02955 * x ** -0.5 + 2.0377 * xm13) * decay
        out["j_v"] = (2.0 * n_e * E * E * nu * (cos_th / sin_th)
                      / (3.0 * SQRT3 * C * theta_e ** 3) * i_v)
    return out


def thermal_faraday(n_e, theta_e, nu, nu_c, sin_th, cos_th):
    """Faraday conversion and rotation of thermal electrons (field frame)."""
    z = 1.0 / theta_e
    k2 = special.kve(2, z)
    rho_v = (2.0 * n_e * E * E * nu_c * cos_th / (ME * C * nu * nu)
             * special.kve(0, z) / k2)
    rho_q = -(n_e * E * E * nu_c * nu_c * sin_th * sin_th / (ME * C * nu ** 3)
              * (special.kve(1, z) / k2 + 6.0 * theta_e))
    return rho_q, rho_v


def _blend(low, high, x):
    """Smooth joint (low^-x + high^-x)^(-1/x) of two asymptotic fits."""
    with np.errstate(divide="ignore", over="ignore"):
        return (low ** -x + high ** -x) ** (-1.0 / x)


def power_law_synchrotron(n_e, nu, nu_c, sin_th, cos_th, p, gamma_min, gamma_max,
                          polarized=False):
    """Power-law synchrotron emissivity and absorptivity (Pandya et al. 2016)."""
    norm = (p - 1.0) / (gamma_min ** (1.0 - p) - gamma_max ** (1.0 - p))
    x = nu / (nu_c * sin_th)

    j_i = (n_e * E * E * nu_c / C * norm * 3.0 ** (p / 2.0) * sin_th / (2.0 * (p + 1.0))
           * special.gamma((3.0 * p - 1.0) / 12.0) * special.gamma((3.0 * p + 19.0) / 12.0)
           * x ** (-(p - 1.0) / 2.0))
    alpha_i = (n_e * E * E / (nu * ME * C) * norm * 3.0 ** ((p + 1.0) / 2.0) / 4.0
               * special.gamma((3.0 * p + 2.0) / 12.0) * special.gamma((3.0 * p + 22.0) / 12.0)
               * x ** (-(p + 2.0) / 2.0))

    out = {"j_i": j_i, "alpha_i": alpha_i}
    if polarized:
        circ = (171.0 / 250.0) * p ** 0.49 * (cos_th / sin_th) * (nu / (3.0 * nu_c * sin_th)) ** -0.5
        out["j_q"] = -(p + 1.0) / (p + 7.0 / 3.0) * j_i
        out["alpha_q"] = -(p + 2.0) / (p + 10.0 / 3.0) * alpha_i
        out["j_v"] = circ * j_i
        out["alpha_v"] = circ * alpha_i
        # Faraday effects of non-thermal electrons are not modeled
        out["rho_q"] = np.zeros_like(j_i)
        out["rho_v"] = np.zeros_like(j_i)
    return out


def _kappa_parts(nu, nu_c, sin_th, kappa, w):
    """Low- and high-frequency asymptotes of the kappa fits."""
    nu_k = nu_c * (w * kappa) ** 2 * sin_th
    x = nu / nu_k

    j_low = (x ** (1.0 / 3.0) * sin_th * 4.0 * math.pi * special.gamma(kappa - 4.0 / 3.0)
             / (3.0 ** (7.0 / 3.0) * special.gamma(kappa - 2.0)))
    j_high = (x ** (-(kappa - 2.0) / 2.0) * sin_th * 3.0 ** ((kappa - 1.0) / 2.0)
              * (kappa - 2.0) * (kappa - 1.0) / 4.0
              * special.gamma(kappa / 4.0 - 1.0 / 3.0) * special.gamma(kappa / 4.0 + 4.0 / 3.0))

    a_low = (x ** (-2.0 / 3.0) * 3.0 ** (1.0 / 6.0) * (10.0 / 41.0) * 2.0 * math.pi
             / (w * kappa) ** (10.0 / 3.0 - kappa)
             * (kappa - 2.0) * (kappa - 1.0) * kappa / (3.0 * kappa - 1.0)
             * special.gamma(5.0 / 3.0)
             * special.hyp2f1(kappa - 1.0 / 3.0, kappa + 1.0, kappa + 2.0 / 3.0, -kappa * w))
    a_high = (x ** (-(1.0 + kappa) / 2.0) * math.pi ** 1.5 / 3.0
              * (kappa - 2.0) * (kappa - 1.0) * kappa / (w * kappa) ** 3
              * (2.0 * special.gamma(2.0 + kappa / 2.0) / (2.0 + kappa) - 1.0))
    return x, j_low, j_high, a_low, a_high


def kappa_synchrotron(n_e, nu, nu_c, sin_th, kappa, w):
    """Kappa-distribution emissivity and absorptivity (Pandya et al. 2016)."""
    _, j_low, j_high, a_low, a_high = _kappa_parts(nu, nu_c, sin_th, kappa, w)
    j_i = n_e * E * E * nu_c / C * _blend(j_low, j_high, 3.0 * kappa ** -1.5)
    x_a = (-7.0 / 4.0 + 8.0 * kappa / 5.0) ** (-43.0 / 50.0)
    alpha_i = n_e * E * E / (ME * C * nu) * _blend(a_low, a_high, x_a)
    return {"j_i": j_i, "alpha_i": alpha_i}


def _kappa_polarized_at(n_e, nu, nu_c, sin_th, cos_th, kappa, w):
    x, j_low, j_high, a_low, a_high = _kappa_parts(nu, nu_c, sin_th, kappa, w)
    j_scale = n_e * E * E * nu_c / C
    a_scale = n_e * E * E / (ME * C * nu)
    x_j = 3.0 * kappa ** -1.5
    x_q = 3.7 * kappa ** -1.6
    x_a = (-7.0 / 4.0 + 8.0 * kappa / 5.0) ** (-43.0 / 50.0)
    q_high = 16.0 / 25.0 + kappa / 50.0

    v_low = ((3.0 / 4.0) ** 2 * (sin_th ** -2.4 - 1.0) ** 0.48 * kappa ** (-66.0 / 125.0) / w
             * x ** -0.35)
    v_high = ((7.0 / 8.0) ** 2 * (sin_th ** -2.5 - 1.0) ** 0.44 * kappa ** -0.44 / w
              * x ** -0.5)
    sign = np.sign(cos_th)

    out = {
        "j_i": j_scale * _blend(j_low, j_high, x_j),
        "j_q": -j_scale * _blend(0.5 * j_low, q_high * j_high, x_q),
        "j_v": sign * j_scale * _blend(v_low * j_low, v_high * j_high, x_j),
        "alpha_i": a_scale * _blend(a_low, a_high, x_a),
        "alpha_q": -a_scale * _blend(25.0 / 48.0 * a_low, q_high * a_high, x_a),
        "alpha_v": sign * a_scale * _blend(v_low * a_low, v_high * a_high, x_a),
    }
    # Faraday terms of the thermal population with the same mean energy
    theta_eff = w * kappa / (kappa - 3.0)
    out["rho_q"], out["rho_v"] = thermal_faraday(n_e, theta_eff, nu, nu_c, sin_th, cos_th)
    return out


def kappa_polarized(n_e, nu, nu_c, sin_th, cos_th, kappa, w):
    """Polarized kappa coefficients, interpolated between tabulated kappa values.

    Exact at kappa in POLARIZED_KAPPA_TABLE; linear in kappa between
    neighbouring entries. Kappa must lie within the table range.
    """
    table = np.asarray(POLARIZED_KAPPA_TABLE)
    if np.any(np.isclose(table, kappa)):
        return _kappa_polarized_at(n_e, nu, nu_c, sin_th, cos_th, kappa, w)
    upper = int(np.clip(np.searchsorted(table, kappa), 1, len(table) - 1))
    k_lo, k_hi = table[upper - 1], table[upper]
    frac = (kappa - k_lo) / (k_hi - k_lo)
    lo = _kappa_polarized_at(n_e, nu, nu_c, sin_th, cos_th, k_lo, w)
    hi = _kappa_polarized_at(n_e, nu, nu_c, sin_th, cos_th, k_hi, w)
    return {name: (1.0 - frac) * lo[name] + frac * hi[name] for name in lo}


class SynchrotronModel:
    """Coefficient calculator for sampled simulation data.

    Parameters
    ----------
    config : InternalConfig
    spacetime : Spacetime
    momentum_factor : float
        Converts code-unit photon energies to Hz.
    polarized : bool
        Also compute Q and V coefficients and the fluid 4-vectors.
    cells : bool
        Also compute the per-sample cell values for averaged quantities.
    """

    def __init__(self, config: InternalConfig, spacetime: Spacetime, momentum_factor: float,
                 polarized: bool = False, cells: bool = False):
        self.config = config
        self.plasma = config.plasma
        self.simulation = config.simulation
        self.spacetime = spacetime
        self.momentum_factor = momentum_factor
        self.polarized = polarized
        self.cells = cells

        plasma = self.plasma
        self.populations = []
        if plasma.thermal_frac > 0.0:
            self.populations.append(("thermal", plasma.thermal_frac))
        if plasma.power_frac > 0.0:
            self.populations.append(("power", plasma.power_frac))
        if plasma.kappa_frac > 0.0:
            self.populations.append(("kappa", plasma.kappa_frac))
        logger.debug("Electron populations: %s", self.populations)

    def plasma_state(self, rho, thermo, bsq):
        """CGS plasma quantities from code-unit fluid values.

        Returns
        -------
        dict
            ``rho``, ``n_e``, ``p_gas``, ``theta_e``, ``b`` (Gauss),
            ``sigma`` and ``beta_inv``.
        """
        plasma = self.plasma
        rho_unit = self.simulation.rho_cgs
        mass_ratio = MP / ME
        with np.errstate(divide="ignore", invalid="ignore"):
            if plasma.model == "code_kappa":
                pressure = thermo * np.abs(rho) ** (4.0 / 3.0)
                theta_e = (mass_ratio * plasma.mu * (1.0 + plasma.ne_ni) / plasma.ne_ni
                           * thermo * np.abs(rho) ** (1.0 / 3.0))
                beta_inv = bsq / (2.0 * pressure)
            else:
                pressure = thermo
                beta_inv = bsq / (2.0 * pressure)
                ratio = ((plasma.rat_high + plasma.rat_low * beta_inv ** 2)
                         / (1.0 + beta_inv ** 2))
                ratio = np.where(np.isfinite(beta_inv), ratio, plasma.rat_low)
                theta_e = (mass_ratio * plasma.mu * (1.0 + plasma.ne_ni)
                           / (plasma.ne_ni + ratio) * pressure / rho)
            sigma = bsq / rho

        rho_cgs = rho * rho_unit
        return {
            "rho": rho_cgs,
            "n_e": rho_cgs / (plasma.mu * MP) * plasma.ne_ni / (1.0 + plasma.ne_ni),
            "p_gas": pressure * rho_unit * C * C,
            "theta_e": theta_e,
            "b": math.sqrt(4.0 * math.pi * rho_unit) * C * np.sqrt(bsq),
            "sigma": sigma,
            "beta_inv": beta_inv,
        }

    def _population(self, kind, n_e, theta_e, nu, nu_c, sin_th, cos_th):
        plasma = self.plasma
        if kind == "thermal":
            out = thermal_synchrotron(n_e, theta_e, nu, nu_c, sin_th, cos_th, self.polarized)
            out["alpha_i"] = kirchhoff_absorption(out["j_i"], nu, theta_e)
            if self.polarized:
                out["alpha_q"] = -kirchhoff_absorption(-out["j_q"], nu, theta_e)
                out["alpha_v"] = (np.sign(out["j_v"])
                                  * kirchhoff_absorption(np.abs(out["j_v"]), nu, theta_e))
                out["rho_q"], out["rho_v"] = thermal_faraday(n_e, theta_e, nu, nu_c,
                                                             sin_th, cos_th)
            return out
        if kind == "power":
            return power_law_synchrotron(n_e, nu, nu_c, sin_th, cos_th, plasma.p,
                                         plasma.gamma_min, plasma.gamma_max, self.polarized)
        w = plasma.w if plasma.w > 0.0 else theta_e * (plasma.kappa - 3.0) / plasma.kappa
        if self.polarized:
            return kappa_polarized(n_e, nu, nu_c, sin_th, cos_th, plasma.kappa, w)
        return kappa_synchrotron(n_e, nu, nu_c, sin_th, plasma.kappa, w)

    def _chunk(self, parts, pos, k_cov, num_steps):
        rho, thermo, uu, bb, nan = parts
        num_pix, num_samples = rho.shape
        valid = np.arange(num_samples)[None, :] < num_steps[:, None]
        names = ("j_i", "alpha_i") + (POLARIZED_NAMES if self.polarized else ())
        out = {name: np.zeros((num_pix, num_samples)) for name in names}

        with np.errstate(all="ignore"):
            gcov = self.spacetime.covariant(pos)
            gcon = self.spacetime.contravariant(pos)
            u_con, _, b_con, _, bsq = fluid_frame(uu, bb, gcov, gcon)
            state = self.plasma_state(rho, thermo, bsq)

            u_k = np.einsum('...i,...i->...', u_con, k_cov)
            b_k = np.einsum('...i,...i->...', b_con, k_cov)
            nu = -u_k * self.momentum_factor
            cos_th = np.clip(b_k / (np.sqrt(bsq) * -u_k), -1.0, 1.0)

            active = (valid & ~nan & (state["n_e"] > 0.0) & (bsq > 0.0) & (nu > 0.0)
                      & (state["theta_e"] > 0.0) & (state["sigma"] <= self.plasma.sigma_max)
                      & np.isfinite(cos_th))

            n_e = state["n_e"][active]
            theta_e = np.maximum(state["theta_e"][active], THETA_E_MIN)
            nu_a = nu[active]
            nu_c = HZ_PER_GAUSS * state["b"][active]
            cos_a = cos_th[active]
            sin_a = np.maximum(np.sqrt(1.0 - cos_a * cos_a), SIN_MIN)

            for kind, frac in self.populations:
                coeffs = self._population(kind, frac * n_e, theta_e, nu_a, nu_c, sin_a, cos_a)
                for name in names:
                    out[name][active] += coeffs[name]

            out["j_i"] /= nu * nu
            out["alpha_i"] *= nu
            if self.polarized:
                for name in ("j_q", "j_v"):
                    out[name] /= nu * nu
                for name in ("alpha_q", "alpha_v", "rho_q", "rho_v"):
                    out[name] *= nu

        finite = np.ones((num_pix, num_samples), dtype=bool)
        for name in names:
            out[name] = np.where(active, out[name], 0.0)
            finite &= np.isfinite(out[name])
        nan = nan | (valid & ~finite)
        for name in names:
            out[name][~finite] = 0.0

        extras = {}
        if self.polarized:
            extras["u_con"] = u_con
            extras["b_con"] = b_con
        if self.cells:
            cells = np.stack([state["rho"], state["n_e"], state["p_gas"], state["theta_e"],
                              state["b"], state["sigma"], state["beta_inv"]], axis=-1)
            cells[~valid | nan] = 0.0
            extras["cells"] = cells
        return out, nan, extras

    def compute(self, state: SampleState, bundle: GeodesicBundle) -> Coefficients:
        """Evaluate coefficients at every sample of a level."""
        runtime = self.config.runtime
        results = run_chunks(
            lambda sl: self._chunk(
                (state.rho[sl], state.thermo[sl], state.uu[sl], state.bb[sl], state.nan[sl]),
                bundle.pos[sl], bundle.dir[sl], bundle.num_steps[sl]),
            bundle.num_pix, runtime.chunk_size, runtime.num_threads,
        )

        shape = (bundle.num_pix, bundle.num_samples)
        if results:
            outs, nans, extras = zip(*results)
            merged = {name: np.concatenate([o[name] for o in outs], axis=0) for name in outs[0]}
            nan = np.concatenate(nans, axis=0)
            extra = {name: np.concatenate([e[name] for e in extras], axis=0)
                     for name in extras[0]}
        else:
            names = ("j_i", "alpha_i") + (POLARIZED_NAMES if self.polarized else ())
            merged = {name: np.zeros(shape) for name in names}
            nan = np.zeros(shape, dtype=bool)
            extra = {}

        num_new = int(nan.sum() - state.nan.sum())
        if num_new:
            logger.debug("Level %d coefficients: %d non-finite samples", bundle.level, num_new)
        return Coefficients(nan=nan, **merged, **extra)
