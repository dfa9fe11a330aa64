"""Polarization basis along geodesics.

The image basis (vertical, horizontal) defined at the camera is parallel
transported back along every geodesic. At each sample the magnetic field
and the basis are projected onto the plane perpendicular to the photon
in the fluid frame; the angle between them rotates field-frame
coefficients into the transported basis.
"""

import numpy as np

from kerrlight.geometry.spacetime import Spacetime

__all__ = ['transport_rhs', 'transport_basis', 'field_angle', 'rotate_linear']


def transport_rhs(dgcov, gcon, k_cov, f_cov):
    """Derivative d f_mu / d lambda of a parallel-transported covector.

    ``df_mu/dlambda = 1/2 f^b k^a (d_mu g_ba + d_a g_bm - d_b g_ma)``,
    with ``dgcov`` indexed [..., derivative, mu, nu].
    """
    f_con = np.einsum('...ij,...j->...i', gcon, f_cov)
    k_con = np.einsum('...ij,...j->...i', gcon, k_cov)
    term1 = np.einsum('...mba,...b,...a->...m', dgcov, f_con, k_con)
    term2 = np.einsum('...abm,...b,...a->...m', dgcov, f_con, k_con)
    term3 = np.einsum('...bma,...b,...a->...m', dgcov, f_con, k_con)
    return 0.5 * (term1 + term2 - term3)


def transport_basis(spacetime: Spacetime, pos, k_cov, length, num_steps, basis_cov):
    """Carry covectors from the camera end of each geodesic to its source end.

    Parameters
    ----------
    spacetime : Spacetime
    pos, k_cov : ndarray, shape (num_pix, num_samples, 4)
        Source-to-observer samples.
    length : ndarray, shape (num_pix, num_samples)
    num_steps : ndarray, shape (num_pix,)
    basis_cov : ndarray, shape (num_vectors, 4)
        Covectors at the camera, shared by all pixels.

    Returns
    -------
    ndarray, shape (num_vectors, num_pix, num_samples, 4)
        Transported covectors; zero past ``num_steps``.
    """
    num_pix, num_samples = pos.shape[:2]
    num_vec = basis_cov.shape[0]
    out = np.zeros((num_vec, num_pix, num_samples, 4))
    if num_pix == 0 or num_samples == 0:
        return out

    dgcov = spacetime.covariant_derivative(pos)
    gcon = spacetime.contravariant(pos)
    rows = np.arange(num_pix)

    start = np.maximum(num_steps - 1, 0)
    has = num_steps > 0
    f = np.broadcast_to(basis_cov[:, None, :], (num_vec, num_pix, 4)).copy()
    out[:, rows[has], start[has]] = f[:, has]

    # Heun steps from the camera toward the source, one sample at a time
    for back in range(1, int(num_steps.max(initial=0))):
        cur = num_steps - back
        active = cur >= 1
        if not np.any(active):
            break
        p = rows[active]
        hi, lo = cur[active], cur[active] - 1
        d_len = (length[p, lo] - length[p, hi])[None, :, None]
        f_hi = f[:, active]
        slope_hi = transport_rhs(dgcov[p, hi], gcon[p, hi], k_cov[p, hi], f_hi)
        guess = f_hi + d_len * slope_hi
        slope_lo = transport_rhs(dgcov[p, lo], gcon[p, lo], k_cov[p, lo], guess)
        f_lo = f_hi + 0.5 * d_len * (slope_hi + slope_lo)
        f[:, active] = f_lo
        out[:, p, lo] = f_lo
    return out


def _dot(gcov, v, w):
    return np.einsum('...i,...ij,...j->...', v, gcov, w)


def field_angle(gcov, u_con, k_con, b_con, f_con, h_con):
    """Angle of the projected field measured from f toward h.

    All vectors are contravariant with shape (..., 4). Vectors are
    projected orthogonal to the fluid velocity and to the photon
    direction in the fluid frame.
    """
    energy = -_dot(gcov, u_con, k_con)
    k_hat = k_con / energy[..., None] - u_con

    def project(v):
        return (v + _dot(gcov, v, u_con)[..., None] * u_con
                - _dot(gcov, v, k_hat)[..., None] * k_hat)

    b_perp = project(b_con)
    f_perp = project(f_con)
    h_perp = project(h_con)
    f_norm = np.sqrt(np.maximum(_dot(gcov, f_perp, f_perp), 0.0))
    h_norm = np.sqrt(np.maximum(_dot(gcov, h_perp, h_perp), 0.0))
    return np.arctan2(_dot(gcov, b_perp, h_perp) / h_norm, _dot(gcov, b_perp, f_perp) / f_norm)


def rotate_linear(value_q, chi):
    """Q and U in the transported basis of a field-frame Q (field-frame U is zero)."""
    return value_q * np.cos(2.0 * chi), value_q * np.sin(2.0 * chi)
