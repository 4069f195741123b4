"""Multi-target displacement blending with optional epsilon annealing.

A blend transports one source cloud towards ``K`` targets at once: every
target is solved independently and the per-target barycentric maps are mixed
with normalised weights,

.. math::

    T = \\sum_k w_k T_k, \\qquad w_k = r_k / \\sum_l r_l .

With an :class:`~sinkmorph.core.types.AnnealSchedule` the whole blend is
recomputed at each epsilon of the schedule (stages are strictly sequential
cold starts) and only the final stage's blend is returned.  Targets inside a
stage are independent and may be solved on a thread pool.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

import numpy as np

from sinkmorph.constants import STAGE_RESIDUAL_FLOOR
from sinkmorph.core.backends import ComputeBackend
from sinkmorph.core.sinkhorn import SinkhornSolver, build_solver
from sinkmorph.core.types import (
    AnnealSchedule,
    CancelToken,
    PointSet,
    ProgressCallback,
    SinkhornParams,
    SinkhornResult,
    SolveMode,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BlendTarget:
    """One target cloud and its raw (unnormalised, non-negative) blend weight."""

    points: PointSet
    weight: float = 1.0

    def __post_init__(self) -> None:
        if not math.isfinite(self.weight) or self.weight < 0:
            raise ValueError(f"blend weight must be finite and >= 0, got {self.weight}")


def normalize_blend_weights(raw: Sequence[float]) -> np.ndarray:
    """Scale raw weights to sum to 1.

    When the raw weights sum to zero (or less) the sum is taken as 1, so the
    weights are returned unchanged instead of dividing by zero.
    """
    w = np.asarray(raw, dtype=np.float64)
    total = float(w.sum())
    if total <= 0:
        total = 1.0
    return w / total


class BlendOrchestrator:
    """Runs the per-target solves of a blend and combines their maps.

    Args:
        solver: Solver used for every target solve.
        max_workers: Upper bound on targets solved concurrently within one
            stage.  ``1`` solves targets sequentially in the calling thread.
    """

    def __init__(self, solver: SinkhornSolver, max_workers: int = 1) -> None:
        if max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}")
        self.solver = solver
        self.max_workers = max_workers

    def run(
        self,
        source: PointSet,
        targets: Sequence[BlendTarget],
        params: SinkhornParams,
        *,
        schedule: AnnealSchedule | None = None,
        on_progress: ProgressCallback | None = None,
        cancel: CancelToken | None = None,
    ) -> SinkhornResult:
        """Blend the displacement maps of ``source`` towards every target.

        ``iterations`` in the result is summed over all target solves and
        ``residual`` is that of the last target (in order) of the last stage
        that ran.  No plan is ever materialised.  If ``cancel`` is set, no
        further solve starts and the result holds the best blend available,
        flagged ``cancelled``.
        """
        if not targets:
            raise ValueError("blend requires at least one target")
        weights = normalize_blend_weights([t.weight for t in targets])
        base = SinkhornParams(
            epsilon=params.epsilon,
            max_iter=params.max_iter,
            tol=params.tol,
            compute_plan=False,
            plan_max_cells=params.plan_max_cells,
        )
        epsilons = list(schedule.values()) if schedule is not None else [params.epsilon]

        t0 = time.perf_counter()
        blended = np.array(source.positions, dtype=np.float64, copy=True)
        stage_done = False
        total_iterations = 0
        last_residual = math.inf

        for stage, eps in enumerate(epsilons):
            stage_params = base.with_epsilon(eps)
            results = self._solve_stage(source, targets, stage_params, on_progress, cancel)
            done = [(k, r) for k, r in enumerate(results) if r is not None]
            total_iterations += sum(r.iterations for _, r in done)
            if done:
                last_residual = done[-1][1].residual

            complete = len(done) == len(targets) and not any(r.cancelled for _, r in done)
            if not complete:
                if not stage_done:
                    blended = _partial_blend(source, done, weights)
                logger.info(
                    "blend cancelled at stage %d/%d (%d/%d targets solved)",
                    stage + 1, len(epsilons), len(done), len(targets),
                    extra={"stage": stage, "epsilon": eps},
                )
                return SinkhornResult(
                    displacement_map=blended,
                    iterations=total_iterations,
                    residual=last_residual,
                    cancelled=True,
                )

            blended = _weighted_sum(source, [r for _, r in done], weights)
            stage_done = True
            if schedule is not None:
                logger.debug(
                    "blend stage %d/%d finished (eps=%.4g, residual=%.3e)",
                    stage + 1, len(epsilons), eps, last_residual,
                    extra={"stage": stage, "epsilon": eps},
                )
                if on_progress is not None:
                    on_progress(max(STAGE_RESIDUAL_FLOOR, last_residual))

        logger.debug(
            "blend of %d targets finished in %d iterations",
            len(targets), total_iterations,
            extra={"duration_ms": round((time.perf_counter() - t0) * 1000, 2)},
        )
        return SinkhornResult(
            displacement_map=blended,
            iterations=total_iterations,
            residual=last_residual,
        )

    def _solve_stage(
        self,
        source: PointSet,
        targets: Sequence[BlendTarget],
        params: SinkhornParams,
        on_progress: ProgressCallback | None,
        cancel: CancelToken | None,
    ) -> list[SinkhornResult | None]:
        """Solve every target at one epsilon; ``None`` marks a solve never started."""

        def solve_one(target: BlendTarget) -> SinkhornResult | None:
            if cancel is not None and cancel.is_set():
                return None
            return self.solver.solve(
                source, target.points, params, on_progress=on_progress, cancel=cancel,
            )

        if self.max_workers == 1 or len(targets) == 1:
            results: list[SinkhornResult | None] = []
            for target in targets:
                res = solve_one(target)
                results.append(res)
                if res is None or res.cancelled:
                    break
            return results + [None] * (len(targets) - len(results))

        with ThreadPoolExecutor(
            max_workers=min(self.max_workers, len(targets)),
            thread_name_prefix="sinkmorph-blend",
        ) as pool:
            return list(pool.map(solve_one, targets))


def _weighted_sum(source: PointSet, results: Sequence[SinkhornResult], weights: np.ndarray) -> np.ndarray:
    out = np.zeros_like(source.positions)
    for w, res in zip(weights, results):
        out += w * res.displacement_map
    return out


def _partial_blend(
    source: PointSet,
    done: Sequence[tuple[int, SinkhornResult]],
    weights: np.ndarray,
) -> np.ndarray:
    """Blend of the targets solved so far, weights renormalised over them.

    With nothing solved the identity map is returned.
    """
    if not done:
        return np.array(source.positions, dtype=np.float64, copy=True)
    sub = normalize_blend_weights([weights[k] for k, _ in done])
    return _weighted_sum(source, [r for _, r in done], sub)


def blend_displacement(
    source: PointSet,
    targets: Sequence[BlendTarget],
    params: SinkhornParams,
    *,
    mode: SolveMode | str = SolveMode.DIRECT,
    schedule: AnnealSchedule | None = None,
    backend: ComputeBackend | None = None,
    max_workers: int = 1,
    on_progress: ProgressCallback | None = None,
    cancel: CancelToken | None = None,
) -> SinkhornResult:
    """Convenience wrapper: build the solver for ``mode`` and run one blend."""
    orchestrator = BlendOrchestrator(build_solver(mode, backend), max_workers=max_workers)
    return orchestrator.run(
        source, targets, params, schedule=schedule, on_progress=on_progress, cancel=cancel,
    )
