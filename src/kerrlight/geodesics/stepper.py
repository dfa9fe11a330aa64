"""Adaptive Dormand-Prince integration of null geodesics.

Geodesics are traced backward from the camera using the Hamiltonian form
of the geodesic equation with covariant momentum k_mu:

    dx^mu/dlambda = g^{mu nu} k_nu
    dk_mu/dlambda = -1/2 (d_mu g^{alpha beta}) k_alpha k_beta

The integration variable is s = -lambda, the affine distance from the
camera, so every step advances s by a positive amount h. The state has
nine components: x^mu, k_mu and s.

All pixels of a chunk advance together. Each pixel keeps its own step
size, retry counter and status; rejected pixels retry with a smaller
step while accepted pixels move on, and finished pixels drop out of the
active set.

Status values:

- ACTIVE: still integrating
- CONVERGED: reached the termination radius (or plane in flat space),
  or escaped back past its starting radius
- TERMINATED: hit ``ray.max_steps`` first; the geodesic is kept but flagged
- FAILED: exhausted ``ray.max_retries`` on a single step
"""

import logging
import threading
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Optional

import numpy as np

from kerrlight.geometry.spacetime import Spacetime

logger = logging.getLogger(__name__)

__all__ = [
    'GeodesicStatus',
    'StepAttempt',
    'ChunkResult',
    'dormand_prince_step',
    'error_norm',
    'step_factor',
    'GeodesicStepper',
]


class GeodesicStatus(IntEnum):
    """Per-geodesic integration state."""
    ACTIVE = 0
    CONVERGED = 1
    TERMINATED = 2
    FAILED = 3


# Dormand-Prince 5(4) tableau
_C = np.array([0.0, 1.0 / 5.0, 3.0 / 10.0, 4.0 / 5.0, 8.0 / 9.0, 1.0, 1.0])
_A = (
    (),
    (1.0 / 5.0,),
    (3.0 / 40.0, 9.0 / 40.0),
    (44.0 / 45.0, -56.0 / 15.0, 32.0 / 9.0),
    (19372.0 / 6561.0, -25360.0 / 2187.0, 64448.0 / 6561.0, -212.0 / 729.0),
    (9017.0 / 3168.0, -355.0 / 33.0, 46732.0 / 5247.0, 49.0 / 176.0, -5103.0 / 18656.0),
    (35.0 / 384.0, 0.0, 500.0 / 1113.0, 125.0 / 192.0, -2187.0 / 6784.0, 11.0 / 84.0),
)
_B5 = np.array([35.0 / 384.0, 0.0, 500.0 / 1113.0, 125.0 / 192.0, -2187.0 / 6784.0,
                11.0 / 84.0, 0.0])
_B4 = np.array([5179.0 / 57600.0, 0.0, 7571.0 / 16695.0, 393.0 / 640.0, -92097.0 / 339200.0,
                187.0 / 2100.0, 1.0 / 40.0])
_E = _B5 - _B4

_INITIAL_CAPACITY = 64
_NUM_VARS = 9


@dataclass(frozen=True)
class StepAttempt:
    """One attempted step, recorded when the stepper runs with ``record=True``."""
    pixel: int
    h: float
    err: float
    accepted: bool


@dataclass
class ChunkResult:
    """Samples of a chunk of geodesics in camera-to-source order.

    ``samples[p, n]`` holds (x^mu, k_mu, s) of the n-th sample of pixel p;
    only the first ``num_samples[p]`` entries are meaningful.
    """
    samples: np.ndarray
    num_samples: np.ndarray
    status: np.ndarray
    attempts: list = field(default_factory=list)


class _Workspace(threading.local):
    """Per-thread scratch buffers reused across chunks."""

    def __init__(self):
        self.size = 0

    def ensure(self, size: int):
        if size <= self.size:
            return
        self.size = size
        self.gcon = np.empty((size, 4, 4))
        self.dgcon = np.empty((size, 4, 4, 4))
        self.stages = np.empty((7, size, 8))
        self.y_stage = np.empty((size, 8))


def dormand_prince_step(rhs, y, h, k1, stages=None, y_stage=None):
    """Advance one Dormand-Prince 5(4) step.

    Parameters
    ----------
    rhs : callable
        ``rhs(y, out)`` writes dy/ds for states of shape (n, 8) into ``out``.
    y : ndarray, shape (n, 8)
    h : ndarray, shape (n,)
    k1 : ndarray, shape (n, 8)
        Derivative at ``y`` (first-same-as-last from the previous step).
    stages, y_stage : ndarray, optional
        Scratch arrays of shape (7, >=n, 8) and (>=n, 8).

    Returns
    -------
    y5 : ndarray, shape (n, 8)
        Fifth-order solution.
    delta : ndarray, shape (n, 8)
        Difference between the fifth- and fourth-order solutions.
    k7 : ndarray, shape (n, 8)
        Derivative at ``y5``.
    """
    n = y.shape[0]
    if stages is None:
        stages = np.empty((7, n, 8))
    if y_stage is None:
        y_stage = np.empty((n, 8))
    ks = stages[:, :n]
    ys = y_stage[:n]
    hh = h[:, None]
    ks[0] = k1
    for i in range(1, 7):
        ys[...] = y
        for j, coeff in enumerate(_A[i]):
            if coeff != 0.0:
                ys += hh * coeff * ks[j]
        rhs(ys, ks[i])
    y5 = ys.copy()
    delta = hh * np.tensordot(_E, ks, axes=(0, 0))
    return y5, delta, ks[6].copy()


def error_norm(y, delta, tol_abs, tol_rel):
    """Largest component of the error relative to ``tol_abs + tol_rel * |y|``.

    A step is acceptable when the result is at most one; non-finite
    errors are reported as infinity.
    """
    scale = tol_abs + tol_rel * np.abs(y)
    with np.errstate(invalid='ignore', over='ignore'):
        err = np.max(np.abs(delta) / scale, axis=-1)
    return np.where(np.isfinite(err), err, np.inf)


def step_factor(err, err_factor, min_factor, max_factor):
    """Step-size multiplier ``err_factor * err**(-1/5)`` clamped to the allowed range."""
    with np.errstate(divide='ignore'):
        fac = err_factor * np.power(np.asarray(err, dtype=float), -0.2)
    return np.clip(fac, min_factor, max_factor)


class GeodesicStepper:
    """Integrates chunks of geodesics from the camera toward the source.

    Parameters
    ----------
    spacetime : Spacetime
        Metric to integrate in.
    ray : InternalRayConfig
        Step-control settings.
    r_terminate : float
        Radius below which a geodesic has converged.
    initial_step : float
        Starting step size in affine distance.
    plane_normal : ndarray of shape (3,), optional
        Unit vector from the origin to the camera; flat-space rays stop once
        their projection onto it falls below ``-plane_distance``.
    plane_distance : float, optional
        Distance of the stopping plane beyond the origin.
    """

    def __init__(self, spacetime: Spacetime, ray, r_terminate: float, initial_step: float,
                 plane_normal: Optional[np.ndarray] = None, plane_distance: float = 0.0):
        self.spacetime = spacetime
        self.ray = ray
        self.r_terminate = r_terminate
        self.initial_step = initial_step
        self.plane_normal = plane_normal
        self.plane_distance = plane_distance
        self._workspace = _Workspace()

    def _rhs(self, y, out):
        """dy/ds for states of shape (n, 8); s runs away from the camera."""
        ws = self._workspace
        n = y.shape[0]
        gcon = self.spacetime.contravariant(y[:, :4], out=ws.gcon[:n])
        k = y[:, 4:]
        np.einsum('nij,nj->ni', gcon, k, out=out[:, :4])
        out[:, :4] *= -1.0
        if self.spacetime.flat:
            out[:, 4:] = 0.0
        else:
            dgcon = self.spacetime.contravariant_derivative(y[:, :4], out=ws.dgcon[:n])
            np.einsum('nimj,nm,nj->ni', dgcon, k, k, out=out[:, 4:])
            out[:, 4:] *= 0.5
        return out

    def _finished(self, pos, r_new, r_old, r_start):
        if self.spacetime.flat:
            along = pos[:, 1:4] @ self.plane_normal
            return along <= -self.plane_distance
        converged = r_new < self.r_terminate
        escaped = (r_new > r_start) & (r_new > r_old)
        return converged | escaped

    def integrate(self, pos, dir_cov, record: bool = False) -> ChunkResult:
        """Trace one chunk of geodesics.

        Parameters
        ----------
        pos : ndarray, shape (n, 4)
            Starting 4-positions.
        dir_cov : ndarray, shape (n, 4)
            Starting covariant momenta.
        record : bool, optional
            Keep a StepAttempt for every attempted step.

        Returns
        -------
        ChunkResult
        """
        ray = self.ray
        n = pos.shape[0]
        ws = self._workspace
        ws.ensure(n)

        y = np.concatenate([pos, dir_cov], axis=1).astype(float)
        s = np.zeros(n)
        h = np.full(n, self.initial_step)
        retries = np.zeros(n, dtype=int)
        status = np.full(n, GeodesicStatus.ACTIVE, dtype=np.int8)
        attempts = []

        capacity = _INITIAL_CAPACITY
        samples = np.empty((n, capacity, _NUM_VARS))
        samples[:, 0, :8] = y
        samples[:, 0, 8] = 0.0
        num = np.ones(n, dtype=int)

        r_start = self.spacetime.radius(y[:, :4])
        r_prev = r_start.copy()
        k1 = np.empty((n, 8))
        self._rhs(y, k1)

        while True:
            idx = np.flatnonzero(status == GeodesicStatus.ACTIVE)
            if idx.size == 0:
                break
            ya = y[idx]
            ha = h[idx]
            y5, delta, k7 = dormand_prince_step(self._rhs, ya, ha, k1[idx], ws.stages, ws.y_stage)

            if self.spacetime.flat:
                err = np.where(np.all(np.isfinite(y5), axis=1), 0.0, np.inf)
            else:
                err = error_norm(ya, delta, ray.tol_abs, ray.tol_rel)
            accept = err <= 1.0
            fac = step_factor(err, ray.err_factor, ray.min_factor, ray.max_factor)

            if record:
                attempts.extend(StepAttempt(int(p), float(hp), float(e), bool(ok))
                                for p, hp, e, ok in zip(idx, ha, err, accept))

            # Accepted steps
            acc = idx[accept]
            if acc.size:
                y[acc] = y5[accept]
                k1[acc] = k7[accept]
                s[acc] += ha[accept]
                retries[acc] = 0
                if not self.spacetime.flat:
                    h[acc] = ha[accept] * fac[accept]

                if np.max(num[acc]) >= capacity:
                    grown = np.empty((n, 2 * capacity, _NUM_VARS))
                    grown[:, :capacity] = samples
                    samples = grown
                    capacity *= 2
                samples[acc, num[acc], :8] = y[acc]
                samples[acc, num[acc], 8] = s[acc]
                num[acc] += 1

                r_new = self.spacetime.radius(y[acc, :4])
                done = self._finished(y[acc], r_new, r_prev[acc], r_start[acc])
                r_prev[acc] = r_new
                status[acc[done]] = GeodesicStatus.CONVERGED
                out_of_steps = (~done) & (num[acc] - 1 >= ray.max_steps)
                status[acc[out_of_steps]] = GeodesicStatus.TERMINATED

            # Rejected steps
            rej = idx[~accept]
            if rej.size:
                retries[rej] += 1
                h[rej] = ha[~accept] * fac[~accept]
                status[rej[retries[rej] > ray.max_retries]] = GeodesicStatus.FAILED

        counts = np.bincount(status, minlength=len(GeodesicStatus))
        logger.debug("Chunk of %d geodesics: %d converged, %d terminated, %d failed",
                     n, counts[GeodesicStatus.CONVERGED], counts[GeodesicStatus.TERMINATED],
                     counts[GeodesicStatus.FAILED])
        return ChunkResult(samples=samples[:, :int(num.max())], num_samples=num,
                           status=status, attempts=attempts)
