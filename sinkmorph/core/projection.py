"""Turning converged Sinkhorn duals into a displacement map and a plan.

Barycentric projection
----------------------
Given per-row weights :math:`w_{ij} = K_{ij} v_j` the displacement map is the
conditional expectation of the target under the plan,

.. math::

    T_i = \\frac{\\sum_j w_{ij} y_j}{\\sum_j w_{ij}}

(the ``u_i`` factor cancels).  A row whose total weight is at most
:data:`~sinkmorph.constants.DEGENERATE_ROW_MASS` carries no usable mass and
maps to the source point itself, so the map is always finite.

Plan materialisation
--------------------
:math:`P_{ij} = u_i K_{ij} v_j` is only built when ``N * M`` fits in the
caller's cell budget; otherwise ``None`` is returned.  This is a capacity
policy and never an error.
"""

from __future__ import annotations

import math

import numpy as np

from sinkmorph.constants import DEGENERATE_ROW_MASS
from sinkmorph.core.backends import ComputeBackend

_LOG_DEGENERATE_ROW_MASS = math.log(DEGENERATE_ROW_MASS)


def _finish_map(x: np.ndarray, num: np.ndarray, den: np.ndarray) -> np.ndarray:
    out = np.array(x, dtype=np.float64, copy=True)
    ok = den > DEGENERATE_ROW_MASS
    out[ok] = num[ok] / den[ok, np.newaxis]
    return out


def barycentric_map(x: np.ndarray, y: np.ndarray, row_weights: np.ndarray) -> np.ndarray:
    """Barycentric projection from dense non-negative row weights ``(N, M)``.

    Non-finite weights are ignored (treated as zero) so a single overflowed
    entry cannot turn a row into NaN.
    """
    w = np.where(np.isfinite(row_weights), row_weights, 0.0)
    den = w.sum(axis=1)
    num = w @ y
    return _finish_map(x, num, den)


def barycentric_map_from_log(x: np.ndarray, y: np.ndarray, log_weights: np.ndarray) -> np.ndarray:
    """Barycentric projection from log row weights ``log(K_ij v_j)``.

    Each row is shifted by its maximum before exponentiating, which leaves
    the normalised weights unchanged but cannot overflow.  The degenerate-row
    test is applied to the unshifted log row mass.
    """
    out = np.array(x, dtype=np.float64, copy=True)
    lw = np.where(np.isnan(log_weights), -np.inf, log_weights)
    row_max = lw.max(axis=1)
    finite = np.isfinite(row_max)
    if not finite.any():
        return out
    shifted = np.exp(lw[finite] - row_max[finite, np.newaxis])
    scaled_den = shifted.sum(axis=1)
    log_den = row_max[finite] + np.log(scaled_den)
    rows = np.flatnonzero(finite)
    keep = log_den > _LOG_DEGENERATE_ROW_MASS
    num = shifted[keep] @ y
    out[rows[keep]] = num / scaled_den[keep, np.newaxis]
    return out


def barycentric_map_products(
    backend: ComputeBackend,
    x: np.ndarray,
    y: np.ndarray,
    v: np.ndarray,
    epsilon: float,
) -> np.ndarray:
    """Barycentric projection through kernel products only.

    Uses linearity of ``K @ (.)``: the numerator is ``K @ (v * y[:, d])`` for
    each coordinate, the denominator ``K @ v``.  No dense kernel is formed.
    """
    den = backend.kv(x, y, v, epsilon)
    num = np.stack(
        [backend.kv(x, y, v * y[:, 0], epsilon), backend.kv(x, y, v * y[:, 1], epsilon)],
        axis=1,
    )
    return _finish_map(x, num, den)


def plan_allowed(n: int, m: int, compute_plan: bool, plan_max_cells: int) -> bool:
    """Whether a dense ``n x m`` plan may be materialised."""
    return bool(compute_plan) and n * m <= plan_max_cells


def materialize_plan(u: np.ndarray, kernel: np.ndarray, v: np.ndarray) -> np.ndarray:
    """Dense plan ``P = diag(u) K diag(v)`` from linear-domain duals."""
    return u[:, np.newaxis] * kernel * v[np.newaxis, :]


def materialize_log_plan(f: np.ndarray, g: np.ndarray, cost: np.ndarray, epsilon: float) -> np.ndarray:
    """Dense plan ``P = exp(f_i + g_j - C_ij / epsilon)`` from log-domain duals."""
    return np.exp(f[:, np.newaxis] + g[np.newaxis, :] - cost / epsilon)
