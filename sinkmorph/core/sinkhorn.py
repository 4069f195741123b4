"""Sinkhorn-Knopp solvers for entropic optimal transport between point clouds.

Two numerically distinct schemes solve the same problem

.. math::

    \\min_{P \\in U(a, b)} \\langle C, P \\rangle - \\varepsilon H(P),
    \\qquad C_{ij} = |x_i - y_j|^2

whose solution has the form :math:`P = \\mathrm{diag}(u) K \\mathrm{diag}(v)`
with the Gibbs kernel :math:`K = e^{-C / \\varepsilon}`.

- :class:`LinearSinkhorn` alternates the scalings directly,
  :math:`u \\leftarrow a / Kv`, :math:`v \\leftarrow b / K^\\top u`.  It is
  fast and can delegate both products to a
  :class:`~sinkmorph.core.backends.ComputeBackend`, but the kernel underflows
  once ``epsilon`` is small against the squared distances.  Underflow is
  clamped (never raised); it shows up only as a residual that stops falling.

- :class:`LogDomainSinkhorn` iterates the potentials :math:`f = \\log u`,
  :math:`g = \\log v` through log-sum-exp reductions and stays stable at any
  ``epsilon``.  Non-finite updates are skipped, so the duals never become NaN.

Both solvers emit the current residual to an optional progress callback at a
fixed iteration cadence and check an optional cancellation token between
iterations.  A cancelled solve returns the map derived from the duals reached
so far.

References
----------
- Cuturi, M. (2013). Sinkhorn Distances: Lightspeed Computation of
  Optimal Transport. NeurIPS 26.
- Peyre, G. & Cuturi, M. (2019). Computational Optimal Transport.
  Foundations and Trends in Machine Learning, 11(5-6), 355-607.
- Schmitzer, B. (2019). Stabilized Sparse Scaling Algorithms for Entropy
  Regularized Transport Problems. SIAM J. Sci. Comput. 41(3).
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass

import numpy as np

from sinkmorph.constants import (
    EPSILON_FLOOR,
    KERNEL_PRODUCT_FLOOR,
    LINEAR_PROGRESS_EVERY,
    LOG_DUAL_V_FLOOR,
    LOG_PROGRESS_EVERY,
    LOG_WEIGHT_FLOOR,
)
from sinkmorph.core.backends import ComputeBackend
from sinkmorph.core.cost import squared_euclidean_cost
from sinkmorph.core.projection import (
    barycentric_map,
    barycentric_map_from_log,
    barycentric_map_products,
    materialize_log_plan,
    materialize_plan,
    plan_allowed,
)
from sinkmorph.core.types import (
    CancelToken,
    PointSet,
    ProgressCallback,
    SinkhornParams,
    SinkhornResult,
    SolveMode,
)

logger = logging.getLogger(__name__)

__all__ = [
    "SinkhornSolver",
    "LinearSinkhorn",
    "LogDomainSinkhorn",
    "build_solver",
    "logsumexp",
]


# ---------------------------------------------------------------------------
# Log-sum-exp helpers
# ---------------------------------------------------------------------------


def logsumexp(values: np.ndarray) -> float:
    """Stable ``log(sum(exp(values)))``; ``-inf`` when every entry is ``-inf``."""
    arr = np.asarray(values, dtype=np.float64)
    if arr.size == 0:
        return float("-inf")
    m = float(arr.max())
    if not np.isfinite(m):
        return m if m > 0 or np.isnan(m) else float("-inf")
    return m + float(np.log(np.exp(arr - m).sum()))


def _logsumexp_rows(M: np.ndarray) -> np.ndarray:
    """Numerically stable logsumexp along axis=1 (rows).

    Rows whose maximum is not finite are left as ``-inf`` (all entries
    ``-inf``) or propagated (``+inf`` / NaN) so the caller can skip them.
    """
    row_max = M.max(axis=1)
    finite_mask = np.isfinite(row_max)
    result = np.where(np.isneginf(row_max), -np.inf, row_max)
    if finite_mask.any():
        shifted = M[finite_mask] - row_max[finite_mask, np.newaxis]
        result[finite_mask] = row_max[finite_mask] + np.log(np.exp(shifted).sum(axis=1))
    return result


def _logsumexp_cols(M: np.ndarray) -> np.ndarray:
    """Numerically stable logsumexp along axis=0 (columns)."""
    return _logsumexp_rows(M.T)


# ---------------------------------------------------------------------------
# Dual iterations
# ---------------------------------------------------------------------------


@dataclass
class _IterationOutcome:
    iterations: int
    residual: float
    cancelled: bool


def _cancelled(cancel: CancelToken | None) -> bool:
    return cancel is not None and cancel.is_set()


def _linear_iterations(
    kv: Callable[[np.ndarray], np.ndarray],
    ktu: Callable[[np.ndarray], np.ndarray],
    a: np.ndarray,
    b: np.ndarray,
    u: np.ndarray,
    v: np.ndarray,
    max_iter: int,
    tol: float,
    on_progress: ProgressCallback | None,
    cancel: CancelToken | None,
) -> _IterationOutcome:
    """Alternating scaling updates, mutating ``u`` and ``v`` in place.

    The residual is the L1 marginal violation of the plan the duals describe
    after the sweep.  The row term needs ``K v`` for the updated ``v``; that
    product is carried into the next sweep's ``u`` update, so each sweep
    still costs exactly one ``kv`` and one ``kTu``.
    """
    kv_v = kv(v)
    residual = float("inf")
    iterations = 0
    for it in range(max_iter):
        if _cancelled(cancel):
            break
        u[:] = a / np.maximum(kv_v, KERNEL_PRODUCT_FLOOR)
        ktu_u = ktu(u)
        v[:] = b / np.maximum(ktu_u, KERNEL_PRODUCT_FLOOR)
        kv_v = kv(v)
        residual = float(np.abs(u * kv_v - a).sum() + np.abs(v * ktu_u - b).sum())
        iterations = it + 1
        if on_progress is not None and it % LINEAR_PROGRESS_EVERY == 0:
            on_progress(residual)
        if residual < tol:
            break
    cancelled = _cancelled(cancel) and residual >= tol and iterations < max_iter
    if iterations == 0:
        residual = float(np.abs(u * kv_v - a).sum() + np.abs(v * ktu(u) - b).sum())
    return _IterationOutcome(iterations=iterations, residual=residual, cancelled=cancelled)


def _log_iterations(
    log_k: np.ndarray,
    log_a: np.ndarray,
    log_b: np.ndarray,
    f: np.ndarray,
    g: np.ndarray,
    max_iter: int,
    tol: float,
    on_progress: ProgressCallback | None,
    cancel: CancelToken | None,
) -> _IterationOutcome:
    """Log-domain potential updates, mutating ``f`` and ``g`` in place.

    .. math::

        f_i \\leftarrow \\log a_i - \\mathrm{LSE}_j(g_j - C_{ij}/\\varepsilon)

        g_j \\leftarrow \\log b_j - \\mathrm{LSE}_i(f_i - C_{ij}/\\varepsilon)

    which is the logarithm of the linear-domain update with ``u = exp(f)``
    and ``v = exp(g)``.  Entries whose new value is not finite keep their
    previous value.  The residual is the largest absolute change of any
    potential during the sweep.
    """
    residual = float("inf")
    iterations = 0
    for it in range(max_iter):
        if _cancelled(cancel):
            break
        f_new = log_a - _logsumexp_rows(log_k + g[np.newaxis, :])
        ok_f = np.isfinite(f_new)
        change_f = float(np.abs(f_new[ok_f] - f[ok_f]).max(initial=0.0))
        f[ok_f] = f_new[ok_f]

        g_new = log_b - _logsumexp_cols(log_k + f[:, np.newaxis])
        ok_g = np.isfinite(g_new)
        change_g = float(np.abs(g_new[ok_g] - g[ok_g]).max(initial=0.0))
        g[ok_g] = g_new[ok_g]

        residual = max(change_f, change_g)
        iterations = it + 1
        if on_progress is not None and it % LOG_PROGRESS_EVERY == 0:
            on_progress(residual)
        if residual < tol:
            break
    cancelled = _cancelled(cancel) and residual >= tol and iterations < max_iter
    if iterations == 0:
        residual = _log_marginal_violation(log_k, log_a, log_b, f, g)
    return _IterationOutcome(iterations=iterations, residual=residual, cancelled=cancelled)


def _log_marginal_violation(
    log_k: np.ndarray, log_a: np.ndarray, log_b: np.ndarray, f: np.ndarray, g: np.ndarray,
) -> float:
    log_p = f[:, np.newaxis] + log_k + g[np.newaxis, :]
    rows = np.exp(_logsumexp_rows(log_p))
    cols = np.exp(_logsumexp_cols(log_p))
    return float(np.abs(rows - np.exp(log_a)).sum() + np.abs(cols - np.exp(log_b)).sum())


# ---------------------------------------------------------------------------
# Solvers
# ---------------------------------------------------------------------------


class SinkhornSolver(ABC):
    """Common driver: validate, iterate, project, log.

    Subclasses implement :meth:`_solve`; instances hold no per-solve state and
    may be shared between threads.
    """

    mode: SolveMode

    def solve(
        self,
        source: PointSet,
        target: PointSet,
        params: SinkhornParams,
        *,
        on_progress: ProgressCallback | None = None,
        cancel: CancelToken | None = None,
    ) -> SinkhornResult:
        """Solve entropic OT from ``source`` to ``target``.

        Args:
            source: Source measure (``N`` points).
            target: Target measure (``M`` points).
            params: Regularisation, iteration budget, tolerance and plan policy.
            on_progress: Called with the current residual every few
                iterations.  Must not raise.
            cancel: Checked between iterations; when set the solve stops
                and returns its partial result.

        Returns:
            :class:`SinkhornResult` with the barycentric displacement map,
            the number of iterations performed (never above ``max_iter``),
            the final residual and, if requested and within budget, the
            dense plan.
        """
        t0 = time.perf_counter()
        result = self._solve(source, target, params, on_progress, cancel)
        duration_ms = (time.perf_counter() - t0) * 1000
        if result.cancelled:
            logger.info(
                "%s solve cancelled after %d iterations (residual=%.3e)",
                self.mode.value, result.iterations, result.residual,
            )
        elif result.residual >= params.tol:
            logger.warning(
                "%s Sinkhorn did not converge after %d iterations "
                "(residual=%.3e, tol=%.2e, epsilon=%.4g, n=%d, m=%d). "
                "Consider increasing max_iter or epsilon.",
                self.mode.value, result.iterations, result.residual,
                params.tol, params.epsilon, len(source), len(target),
            )
        else:
            logger.debug(
                "%s Sinkhorn converged at iteration %d (residual=%.2e, eps=%.4g)",
                self.mode.value, result.iterations, result.residual, params.epsilon,
                extra={"duration_ms": round(duration_ms, 2)},
            )
        return result

    @abstractmethod
    def _solve(
        self,
        source: PointSet,
        target: PointSet,
        params: SinkhornParams,
        on_progress: ProgressCallback | None,
        cancel: CancelToken | None,
    ) -> SinkhornResult:
        raise NotImplementedError


class LinearSinkhorn(SinkhornSolver):
    """Direct-domain Sinkhorn-Knopp on the exponentiated kernel.

    Without a backend the dense kernel ``K = exp(-C / eps)`` is built once
    per solve.  With a backend, ``K v`` and ``K^T u`` are delegated to it and
    no ``N x M`` array is allocated unless a plan is requested.
    """

    mode = SolveMode.DIRECT

    def __init__(self, backend: ComputeBackend | None = None) -> None:
        self.backend = backend

    def _solve(
        self,
        source: PointSet,
        target: PointSet,
        params: SinkhornParams,
        on_progress: ProgressCallback | None,
        cancel: CancelToken | None,
    ) -> SinkhornResult:
        x, y = source.positions, target.positions
        a, b = source.weights, target.weights
        n, m = len(a), len(b)
        eps = max(params.epsilon, EPSILON_FLOOR)

        u = np.full(n, 1.0 / n)
        v = np.full(m, 1.0 / m)
        backend = self.backend
        kernel: np.ndarray | None = None

        if backend is None:
            kernel = np.exp(-squared_euclidean_cost(x, y) / eps)
            dense = kernel
            outcome = _linear_iterations(
                lambda vec: dense @ vec,
                lambda vec: vec @ dense,
                a, b, u, v, params.max_iter, params.tol, on_progress, cancel,
            )
            t_map = barycentric_map(x, y, kernel * v[np.newaxis, :])
        else:
            outcome = _linear_iterations(
                lambda vec: backend.kv(x, y, vec, eps),
                lambda vec: backend.kTu(x, y, vec, eps),
                a, b, u, v, params.max_iter, params.tol, on_progress, cancel,
            )
            t_map = barycentric_map_products(backend, x, y, v, eps)

        plan = None
        if plan_allowed(n, m, params.compute_plan, params.plan_max_cells):
            if kernel is None:
                kernel = np.exp(-squared_euclidean_cost(x, y) / eps)
            plan = materialize_plan(u, kernel, v)

        return SinkhornResult(
            displacement_map=t_map,
            iterations=outcome.iterations,
            residual=outcome.residual,
            plan=plan,
            cancelled=outcome.cancelled,
        )


class LogDomainSinkhorn(SinkhornSolver):
    """Stabilised Sinkhorn on the dual potentials ``f = log u``, ``g = log v``.

    Every reduction over the kernel goes through log-sum-exp, so no
    exponential of ``-C / eps`` is ever formed during iteration.  The map is
    recombined from ``v = exp(g)`` and ``K``, evaluated row-wise in log space.
    """

    mode = SolveMode.LOG_DOMAIN

    def _solve(
        self,
        source: PointSet,
        target: PointSet,
        params: SinkhornParams,
        on_progress: ProgressCallback | None,
        cancel: CancelToken | None,
    ) -> SinkhornResult:
        x, y = source.positions, target.positions
        a, b = source.weights, target.weights
        n, m = len(a), len(b)
        eps = max(params.epsilon, EPSILON_FLOOR)

        cost = squared_euclidean_cost(x, y)
        log_k = -cost / eps
        log_a = np.log(np.maximum(a, LOG_WEIGHT_FLOOR))
        log_b = np.log(np.maximum(b, LOG_WEIGHT_FLOOR))
        f = np.zeros(n)
        g = np.zeros(m)

        outcome = _log_iterations(
            log_k, log_a, log_b, f, g, params.max_iter, params.tol, on_progress, cancel,
        )

        log_v = np.where(np.isfinite(g), g, np.log(LOG_DUAL_V_FLOOR))
        t_map = barycentric_map_from_log(x, y, log_k + log_v[np.newaxis, :])

        plan = None
        if plan_allowed(n, m, params.compute_plan, params.plan_max_cells):
            plan = materialize_log_plan(f, g, cost, eps)

        return SinkhornResult(
            displacement_map=t_map,
            iterations=outcome.iterations,
            residual=outcome.residual,
            plan=plan,
            cancelled=outcome.cancelled,
        )


def build_solver(mode: SolveMode | str, backend: ComputeBackend | None = None) -> SinkhornSolver:
    """Explicit dispatch from a :class:`SolveMode` to a solver instance.

    The backend only applies to the direct-domain solver; log-domain
    reductions always run in NumPy.
    """
    resolved = SolveMode(mode)
    if resolved is SolveMode.DIRECT:
        return LinearSinkhorn(backend=backend)
    if resolved is SolveMode.LOG_DOMAIN:
        return LogDomainSinkhorn()
    raise ValueError(f"unsupported solve mode {mode!r}")
