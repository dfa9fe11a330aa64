"""Radiative transfer along geodesic samples.

Samples are ordered source to observer, so transfer runs from index 0
to ``num_steps - 1`` and optical depth accumulates in that order.
Coefficients are invariant (j/nu^2, alpha*nu, rho*nu); over a segment
they are averaged between its two end samples. The invariant intensity
is converted to specific intensity at the camera by ``momentum_factor**3``.

Unpolarized transfer has the closed form

    I = sum_m dI_m exp(-tau_after_m),  dI_m = j_m dl_m (1 - exp(-dtau_m)) / dtau_m

which is evaluated without a per-sample loop. Polarized transfer solves
dS/dl = J - K S segment by segment with the exact matrix exponential.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from kerrlight.radiation.layout import ImageLayout
from kerrlight.radiation.polarization import rotate_linear

logger = logging.getLogger(__name__)

__all__ = ['SegmentGeometry', 'segment_geometry', 'find_z_turnings', 'attenuated_fraction',
           'integrate_unpolarized', 'integrate_polarized', 'mueller_matrix',
           'segment_propagator', 'write_pixel_quantities']

TAYLOR_ORDER = 12
# Sign changes of dz closer than this many samples count as one turning
MIN_TURNING_GAP = 10


@dataclass
class SegmentGeometry:
    """Per-segment quantities shared by every transferred quantity.

    Arrays have shape (num_pix, num_samples - 1); segment m joins
    samples m and m + 1. Invalid segments have zero length.
    """
    valid: np.ndarray
    d_len: np.ndarray
    d_lambda: np.ndarray
    t_mid: np.ndarray
    dist_mid: np.ndarray
    total_length: np.ndarray


def segment_geometry(pos, length, num_steps, camera_time, length_unit, momentum_factor,
                     start=None):
    """Segment lengths in code units and in CGS affine units.

    Parameters
    ----------
    pos : ndarray, shape (num_pix, num_samples, 4)
    length : ndarray, shape (num_pix, num_samples)
    num_steps : ndarray, shape (num_pix,)
    camera_time : ndarray, shape (num_pix,)
    length_unit : float
        GM/c^2 in cm.
    momentum_factor : float
    start : ndarray of int, shape (num_pix,), optional
        First sample that takes part in transfer; earlier segments are
        invalid. ``lambda`` still reports the full geodesic length.
    """
    num_pix, num_samples = length.shape
    seg = np.arange(max(num_samples - 1, 0))[None, :]
    valid = seg + 1 < num_steps[:, None]
    if start is not None:
        valid &= seg >= np.asarray(start)[:, None]

    d_len = np.where(valid, np.diff(length, axis=1), 0.0)
    d_lambda = d_len * length_unit / momentum_factor

    rows = np.arange(num_pix)
    total = np.where(num_steps > 0, length[rows, np.maximum(num_steps - 1, 0)], 0.0)

    t = pos[..., 0]
    t_mid = np.where(valid, 0.5 * (t[:, :-1] + t[:, 1:]), 0.0)
    len_mid = 0.5 * (length[:, :-1] + length[:, 1:])
    return SegmentGeometry(
        valid=valid,
        d_len=d_len,
        d_lambda=d_lambda,
        t_mid=np.where(valid, camera_time[:, None] - t_mid, 0.0),
        dist_mid=np.where(valid, total[:, None] - len_mid, 0.0),
        total_length=total,
    )


def find_z_turnings(z, num_steps, cut=-1, min_gap=MIN_TURNING_GAP):
    """Count turning points of z along each geodesic, walking from the camera.

    A turning is a sign change of dz between neighbouring samples (or,
    where dz vanishes, between samples ``min_gap`` apart). After each
    turning the next ``min_gap`` samples are skipped. Turnings within
    ``min_gap`` samples of either end are not searched.

    Parameters
    ----------
    z : ndarray, shape (num_pix, num_samples)
        Cartesian z of the samples, source to observer.
    num_steps : ndarray, shape (num_pix,)
    cut : int
        Keep only the part of the geodesic up to ``cut`` turnings from the
        camera. Negative keeps the whole geodesic.
    min_gap : int

    Returns
    -------
    count : ndarray of float, shape (num_pix,)
    start : ndarray of int, shape (num_pix,)
        First sample to integrate; 0 when nothing is cut.

    Examples
    --------
    >>> z = np.cos(np.linspace(0.0, 4.0 * np.pi, 81))[None, :]
    >>> count, start = find_z_turnings(z, np.array([81]), cut=0)
    >>> int(count[0]), int(start[0])
    (3, 50)
    """
    num_pix = z.shape[0]
    count = np.zeros(num_pix)
    start = np.zeros(num_pix, dtype=int)
    for m in range(num_pix):
        steps = int(num_steps[m])
        last = steps - min_gap - 1
        if last < min_gap:
            continue
        zm = z[m, :steps]
        dz = np.diff(zm)
        # Product of the steps on either side of every sample n in [1, steps - 2]
        turn = dz[1:] * dz[:-1]
        candidates = np.nonzero(turn[min_gap - 1:last] <= 0.0)[0] + min_gap

        turnings = 0
        found = -1
        upper = last
        for n in candidates[::-1]:
            if n > upper:
                continue
            if turn[n - 1] == 0.0:
                far = (zm[n + min_gap] - zm[n]) * (zm[n] - zm[n - min_gap])
                if not far < 0.0:
                    continue
            turnings += 1
            n -= min_gap
            upper = n - 1
            if cut >= 0 and found < 0 and turnings == cut + 1:
                found = n
        count[m] = turnings
        start[m] = max(found, 0)
    return count, start


def attenuated_fraction(d_tau):
    """(1 - exp(-dtau)) / dtau, equal to 1 at dtau = 0."""
    small = d_tau < 1.0e-8
    safe = np.where(small, 1.0, d_tau)
    return np.where(small, 1.0 - 0.5 * d_tau, -np.expm1(-safe) / safe)


def _segment_average(values, valid):
    return np.where(valid, 0.5 * (values[:, :-1] + values[:, 1:]), 0.0)


def integrate_unpolarized(j_inv, alpha_inv, geometry: SegmentGeometry, cells=None):
    """Integrate invariant intensity and its weighted auxiliaries.

    Returns
    -------
    dict
        ``intensity`` (invariant), ``tau``, ``emission`` (invariant,
        unattenuated), ``time`` and ``length`` (emission weighted) and,
        when ``cells`` is given, ``lambda_ave``, ``emission_ave`` and
        ``tau_int`` of shape (num_pix, num_cells).
    """
    valid = geometry.valid
    j_seg = _segment_average(j_inv, valid)
    a_seg = _segment_average(alpha_inv, valid)
    d_tau = np.maximum(a_seg * geometry.d_lambda, 0.0)

    tau_total = np.sum(d_tau, axis=1)
    # Optical depth between the far side of each segment and the camera
    tau_after = tau_total[:, None] - np.cumsum(d_tau, axis=1)
    d_emit = j_seg * geometry.d_lambda
    contribution = d_emit * attenuated_fraction(d_tau) * np.exp(-tau_after)
    intensity = np.sum(contribution, axis=1)

    with np.errstate(invalid="ignore", divide="ignore"):
        weight = np.where(intensity > 0.0, 1.0 / intensity, 0.0)
    out = {
        "intensity": intensity,
        "tau": tau_total,
        "emission": np.sum(d_emit, axis=1),
        "time": np.sum(contribution * geometry.t_mid, axis=1) * weight,
        "length": np.sum(contribution * geometry.dist_mid, axis=1) * weight,
        "lambda": geometry.total_length,
    }

    if cells is not None:
        c_seg = np.where(valid[..., None], 0.5 * (cells[:, :-1] + cells[:, 1:]), 0.0)
        path = np.sum(geometry.d_len, axis=1)
        with np.errstate(invalid="ignore", divide="ignore"):
            path_weight = np.where(path > 0.0, 1.0 / path, 0.0)
        out["lambda_ave"] = np.sum(c_seg * geometry.d_len[..., None], axis=1) * path_weight[:, None]
        out["emission_ave"] = (np.sum(c_seg * contribution[..., None], axis=1)
                               * weight[:, None])
        out["tau_int"] = np.sum(c_seg * d_tau[..., None], axis=1)
    return out


def mueller_matrix(alpha, rho):
    """Transfer matrix K for absorption (I, Q, U, V) and Faraday (Q, U, V) coefficients.

    Parameters
    ----------
    alpha, rho : ndarray, shape (..., 4) and (..., 3)
        ``rho`` holds (rho_Q, rho_U, rho_V).
    """
    a_i, a_q, a_u, a_v = (alpha[..., n] for n in range(4))
    r_q, r_u, r_v = (rho[..., n] for n in range(3))
    k = np.empty(alpha.shape[:-1] + (4, 4))
    k[..., 0, :] = np.stack([a_i, a_q, a_u, a_v], axis=-1)
    k[..., 1, :] = np.stack([a_q, a_i, r_v, -r_u], axis=-1)
    k[..., 2, :] = np.stack([a_u, -r_v, a_i, r_q], axis=-1)
    k[..., 3, :] = np.stack([a_v, r_u, -r_q, a_i], axis=-1)
    return k


def _expm(mat):
    """Batched matrix exponential by scaling and squaring of a Taylor series."""
    norm = np.max(np.sum(np.abs(mat), axis=-2), axis=-1)
    peak = float(np.max(norm, initial=0.0))
    squarings = int(max(0, np.ceil(np.log2(peak)) + 1)) if peak > 0.5 else 0
    scaled = mat / 2.0 ** squarings

    result = np.broadcast_to(np.eye(mat.shape[-1]), mat.shape).copy()
    term = result.copy()
    for order in range(1, TAYLOR_ORDER + 1):
        term = term @ scaled / order
        result = result + term
    for _ in range(squarings):
        result = result @ result
    return result


def segment_propagator(k_mat, j_vec, d_lambda):
    """Propagator and source of one segment with constant coefficients.

    Returns ``(E, s)`` with ``S_out = E S_in + s``, from the exponential
    of the augmented matrix [[-K dl, J dl], [0, 0]].
    """
    batch = k_mat.shape[:-2]
    aug = np.zeros(batch + (5, 5))
    aug[..., :4, :4] = -k_mat * d_lambda[..., None, None]
    aug[..., :4, 4] = j_vec * d_lambda[..., None]
    ex = _expm(aug)
    return ex[..., :4, :4], ex[..., :4, 4]


def integrate_polarized(coeffs, chi, geometry: SegmentGeometry):
    """Integrate invariant Stokes parameters (I, Q, U, V).

    Parameters
    ----------
    coeffs : Coefficients
        Field-frame invariant coefficients.
    chi : ndarray, shape (num_pix, num_samples)
        Angle of the projected field from the transported basis.
    geometry : SegmentGeometry

    Returns
    -------
    ndarray, shape (num_pix, 4)
    """
    valid = geometry.valid
    j_q, j_u = rotate_linear(coeffs.j_q, chi)
    a_q, a_u = rotate_linear(coeffs.alpha_q, chi)
    r_q, r_u = rotate_linear(coeffs.rho_q, chi)

    j_all = np.stack([coeffs.j_i, j_q, j_u, coeffs.j_v], axis=-1)
    a_all = np.stack([coeffs.alpha_i, a_q, a_u, coeffs.alpha_v], axis=-1)
    r_all = np.stack([r_q, r_u, coeffs.rho_v], axis=-1)

    num_pix, num_segments = valid.shape
    stokes = np.zeros((num_pix, 4))
    for m in range(num_segments):
        active = valid[:, m]
        if not np.any(active):
            continue
        j_seg = 0.5 * (j_all[active, m] + j_all[active, m + 1])
        a_seg = 0.5 * (a_all[active, m] + a_all[active, m + 1])
        r_seg = 0.5 * (r_all[active, m] + r_all[active, m + 1])
        prop, source = segment_propagator(mueller_matrix(a_seg, r_seg), j_seg,
                                          geometry.d_lambda[active, m])
        stokes[active] = np.einsum('...ij,...j->...i', prop, stokes[active]) + source
    return stokes


def write_pixel_quantities(image: np.ndarray, layout: ImageLayout, results: dict,
                           momentum_factor: float, stokes: Optional[np.ndarray] = None,
                           pixels=slice(None)):
    """Copy transfer results into the image buffer rows of ``pixels``."""
    scale = momentum_factor ** 3
    if layout.has("light"):
        rows = layout.rows("light")
        if stokes is not None:
            image[rows, pixels] = (stokes * scale).T
        else:
            image[rows.start, pixels] = results["intensity"] * scale
    for name in ("time", "length", "lambda", "tau"):
        if layout.has(name):
            image[layout.offset(name), pixels] = results[name]
    if layout.has("emission"):
        image[layout.offset("emission"), pixels] = results["emission"] * scale
    for name in ("lambda_ave", "emission_ave", "tau_int"):
        if layout.has(name):
            image[layout.rows(name), pixels] = results[name].T
    if layout.has("z_turnings"):
        image[layout.offset("z_turnings"), pixels] = results["z_turnings"]
