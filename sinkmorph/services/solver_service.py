"""Request dispatch: protocol models in, core solves, protocol models out."""

import logging
import time
from typing import Any

from sinkmorph.config import Settings
from sinkmorph.core.backends import ComputeBackend
from sinkmorph.core.blend import BlendOrchestrator, BlendTarget
from sinkmorph.core.sinkhorn import SinkhornSolver, build_solver
from sinkmorph.core.types import (
    CancelToken,
    PointSet,
    ProgressCallback,
    SinkhornParams,
    SolveMode,
)
from sinkmorph.exceptions import ValidationError
from sinkmorph.logging_config import log_context
from sinkmorph.schemas import (
    BlendRequest,
    BlendResponse,
    PointSetModel,
    SolveRequest,
    SolveResponse,
)

logger = logging.getLogger(__name__)


class SolverService:
    """Validates requests against the server limits and runs them.

    Core ``ValueError``s raised while building point sets or parameters are
    re-raised as :class:`~sinkmorph.exceptions.ValidationError`.  Nothing else
    is translated: a solve that fails numerically still returns a result.
    """

    def __init__(self, settings: Settings, backend: ComputeBackend | None = None) -> None:
        self.settings = settings
        self.backend = backend
        self._solvers: dict[SolveMode, SinkhornSolver] = {
            mode: build_solver(mode, backend) for mode in SolveMode
        }

    def backend_info(self) -> dict[str, Any]:
        if self.backend is None:
            return {"name": "dense"}
        return self.backend.describe()

    # ------------------------------------------------------------------
    # Single solve
    # ------------------------------------------------------------------

    def solve(
        self,
        req: SolveRequest,
        *,
        on_progress: ProgressCallback | None = None,
        cancel: CancelToken | None = None,
    ) -> SolveResponse:
        self._check_size(req.source, "source")
        self._check_size(req.target, "target")
        self._check_cells(req.mode, req.source, req.target, "target")
        source = self._point_set(req.source, "source")
        target = self._point_set(req.target, "target")
        params = self._params(
            epsilon=req.epsilon,
            max_iter=req.max_iter,
            tol=req.tol,
            compute_plan=req.compute_plan,
            plan_max_cells=req.plan_max_cells,
        )
        with log_context(mode=req.mode.value):
            t0 = time.perf_counter()
            result = self._solvers[req.mode].solve(
                source, target, params, on_progress=on_progress, cancel=cancel,
            )
            logger.info(
                "solve finished n=%d m=%d",
                len(source), len(target),
                extra={
                    "iterations": result.iterations,
                    "residual": result.residual,
                    "epsilon": params.epsilon,
                    "duration_ms": round((time.perf_counter() - t0) * 1000, 2),
                },
            )
        return SolveResponse.from_result(result)

    # ------------------------------------------------------------------
    # Blend
    # ------------------------------------------------------------------

    def blend(
        self,
        req: BlendRequest,
        *,
        on_progress: ProgressCallback | None = None,
        cancel: CancelToken | None = None,
    ) -> BlendResponse:
        self._check_size(req.source, "source")
        for idx, tgt in enumerate(req.targets):
            self._check_size(tgt, f"targets[{idx}]")
            self._check_cells(req.mode, req.source, tgt, f"targets[{idx}]")
        source = self._point_set(req.source, "source")
        targets = [
            BlendTarget(points=self._point_set(tgt, f"targets[{idx}]"), weight=tgt.weight)
            for idx, tgt in enumerate(req.targets)
        ]
        params = self._params(epsilon=req.epsilon, max_iter=req.max_iter, tol=req.tol)
        schedule = None
        if req.schedule is not None:
            try:
                schedule = req.schedule.to_core()
            except ValueError as exc:
                raise ValidationError(str(exc), error_code="INVALID_SCHEDULE") from exc

        orchestrator = BlendOrchestrator(
            self._solvers[req.mode], max_workers=self.settings.blend_max_workers,
        )
        with log_context(mode=req.mode.value):
            t0 = time.perf_counter()
            result = orchestrator.run(
                source, targets, params, schedule=schedule, on_progress=on_progress, cancel=cancel,
            )
            logger.info(
                "blend finished targets=%d stages=%d",
                len(targets), schedule.steps if schedule else 1,
                extra={
                    "iterations": result.iterations,
                    "residual": result.residual,
                    "duration_ms": round((time.perf_counter() - t0) * 1000, 2),
                },
            )
        return BlendResponse.from_result(result)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _check_size(self, model: PointSetModel, field: str) -> None:
        count = model.point_count()
        if count > self.settings.max_points:
            raise ValidationError(
                f"{field} has {count} points, limit is {self.settings.max_points}",
                error_code="TOO_MANY_POINTS",
                context={"field": field, "points": count, "limit": self.settings.max_points},
            )

    def _check_cells(
        self, mode: SolveMode, source: PointSetModel, target: PointSetModel, field: str,
    ) -> None:
        """Reject pairs whose dense ``N x M`` kernel would exceed ``max_cells``.

        The log-domain solver always builds the dense kernel; the direct
        solver does only when no compute backend is configured.
        """
        if mode is not SolveMode.LOG_DOMAIN and self.backend is not None:
            return
        cells = source.point_count() * target.point_count()
        if cells > self.settings.max_cells:
            raise ValidationError(
                f"{field}: dense kernel of {cells} cells exceeds limit {self.settings.max_cells}",
                error_code="TOO_MANY_CELLS",
                context={"field": field, "cells": cells, "limit": self.settings.max_cells},
            )

    @staticmethod
    def _point_set(model: PointSetModel, field: str) -> PointSet:
        try:
            return model.to_core()
        except ValueError as exc:
            raise ValidationError(
                f"{field}: {exc}", error_code="INVALID_POINT_SET", context={"field": field},
            ) from exc

    def _params(
        self,
        *,
        epsilon: float | None,
        max_iter: int | None,
        tol: float | None,
        compute_plan: bool = False,
        plan_max_cells: int | None = None,
    ) -> SinkhornParams:
        s = self.settings
        try:
            return SinkhornParams(
                epsilon=epsilon if epsilon is not None else s.default_epsilon,
                max_iter=max_iter if max_iter is not None else s.default_max_iter,
                tol=tol if tol is not None else s.default_tol,
                compute_plan=compute_plan,
                plan_max_cells=plan_max_cells if plan_max_cells is not None else s.plan_max_cells,
            )
        except ValueError as exc:
            raise ValidationError(str(exc), error_code="INVALID_PARAMS") from exc
