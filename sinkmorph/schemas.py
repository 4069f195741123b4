from __future__ import annotations

import math
from typing import TYPE_CHECKING, Any, Literal

from pydantic import BaseModel, Field

from sinkmorph.core.types import SolveMode

if TYPE_CHECKING:
    from sinkmorph.core.types import AnnealSchedule as CoreAnnealSchedule
    from sinkmorph.core.types import PointSet, SinkhornResult


def _finite_or_none(value: float) -> float | None:
    return value if math.isfinite(value) else None


class PointSetModel(BaseModel):
    model_config = {"json_schema_extra": {"examples": [{"positions": [[0.0, 0.0], [1.0, 0.0]], "weights": [0.5, 0.5]}]}}

    positions: list[list[float]] | list[float] = Field(
        description="Support points as [[x, y], ...] pairs or a flat [x0, y0, x1, y1, ...] list",
    )
    weights: list[float] | None = Field(
        default=None,
        description="Per-point masses (> 0, summing to 1). Uniform when omitted",
    )

    def point_count(self) -> int:
        if self.positions and isinstance(self.positions[0], list):
            return len(self.positions)
        return len(self.positions) // 2

    def to_core(self) -> PointSet:
        from sinkmorph.core.types import PointSet

        if self.weights is None:
            return PointSet.uniform(self.positions)
        return PointSet(positions=self.positions, weights=self.weights)


class SolveRequest(BaseModel):
    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "mode": "log_domain",
                    "source": {"positions": [[0.0, 0.0], [1.0, 0.0]]},
                    "target": {"positions": [[0.0, 1.0], [1.0, 1.0]]},
                    "epsilon": 0.05,
                    "compute_plan": True,
                }
            ]
        }
    }

    mode: SolveMode = Field(default=SolveMode.DIRECT, description="Iteration scheme: direct or log_domain")
    source: PointSetModel = Field(description="Source measure")
    target: PointSetModel = Field(description="Target measure")
    epsilon: float | None = Field(default=None, gt=0.0, description="Entropic regularisation (server default when omitted)")
    max_iter: int | None = Field(default=None, ge=1, description="Iteration cap (server default when omitted)")
    tol: float | None = Field(default=None, gt=0.0, description="Residual threshold for early stop (server default when omitted)")
    compute_plan: bool = Field(default=False, description="Materialise the dense N x M transport plan")
    plan_max_cells: int | None = Field(default=None, ge=0, description="Largest N*M for which the plan is returned")


class TargetModel(PointSetModel):
    weight: float = Field(default=1.0, ge=0.0, description="Raw blend weight (normalised over all targets)")


class AnnealScheduleModel(BaseModel):
    model_config = {"json_schema_extra": {"examples": [{"start": 0.5, "end": 0.02, "steps": 5}]}}

    start: float = Field(gt=0.0, description="Epsilon of the first stage")
    end: float = Field(gt=0.0, description="Epsilon of the last stage")
    steps: int = Field(ge=1, description="Number of stages")

    def to_core(self) -> CoreAnnealSchedule:
        from sinkmorph.core.types import AnnealSchedule as CoreAnnealSchedule

        return CoreAnnealSchedule(start=self.start, end=self.end, steps=self.steps)


class BlendRequest(BaseModel):
    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "mode": "direct",
                    "source": {"positions": [[0.0, 0.0], [1.0, 0.0]]},
                    "targets": [
                        {"positions": [[0.0, 1.0], [1.0, 1.0]], "weight": 2.0},
                        {"positions": [[0.0, -1.0], [1.0, -1.0]], "weight": 8.0},
                    ],
                    "schedule": {"start": 0.5, "end": 0.05, "steps": 4},
                }
            ]
        }
    }

    mode: SolveMode = Field(default=SolveMode.DIRECT, description="Iteration scheme: direct or log_domain")
    source: PointSetModel = Field(description="Source measure")
    targets: list[TargetModel] = Field(min_length=1, description="Target measures with raw blend weights")
    epsilon: float | None = Field(default=None, gt=0.0, description="Epsilon when no schedule is given")
    schedule: AnnealScheduleModel | None = Field(default=None, description="Optional epsilon annealing schedule")
    max_iter: int | None = Field(default=None, ge=1, description="Iteration cap per target solve")
    tol: float | None = Field(default=None, gt=0.0, description="Residual threshold per target solve")


class SolveResponse(BaseModel):
    displacement_map: list[list[float]] = Field(description="Barycentric image T_i of every source point")
    iterations: int = Field(description="Iterations performed")
    residual: float | None = Field(description="Final residual (null when no finite residual exists)")
    plan: list[list[float]] | None = Field(default=None, description="Dense transport plan, when requested and within budget")
    plan_rows: int | None = Field(default=None, description="Plan row count (N)")
    plan_cols: int | None = Field(default=None, description="Plan column count (M)")
    cancelled: bool = Field(default=False, description="True if the solve was cancelled and the result is partial")

    @classmethod
    def from_result(cls, result: SinkhornResult) -> SolveResponse:
        shape = result.plan_shape
        return cls(
            displacement_map=result.displacement_map.tolist(),
            iterations=result.iterations,
            residual=_finite_or_none(result.residual),
            plan=result.plan.tolist() if result.plan is not None else None,
            plan_rows=shape[0] if shape else None,
            plan_cols=shape[1] if shape else None,
            cancelled=result.cancelled,
        )


class BlendResponse(BaseModel):
    displacement_map: list[list[float]] = Field(description="Weighted blend of the per-target maps")
    iterations: int = Field(description="Iterations summed over every target solve")
    residual: float | None = Field(description="Residual of the last target solve (null when nothing was solved)")
    cancelled: bool = Field(default=False, description="True if the blend was cancelled and the result is partial")

    @classmethod
    def from_result(cls, result: SinkhornResult) -> BlendResponse:
        return cls(
            displacement_map=result.displacement_map.tolist(),
            iterations=result.iterations,
            residual=_finite_or_none(result.residual),
            cancelled=result.cancelled,
        )


class ProgressEvent(BaseModel):
    seq: int = Field(description="Monotonic sequence number within the job")
    residual: float | None = Field(description="Residual reported by the solver")


JobKind = Literal["solve", "blend"]
JobStatus = Literal["queued", "running", "completed", "cancelled", "failed"]


class JobSubmitResponse(BaseModel):
    job_id: str = Field(description="Identifier of the queued job")
    kind: JobKind = Field(description="solve or blend")
    status: JobStatus = Field(description="Initial job status")


class JobResponse(BaseModel):
    model_config = {"json_schema_extra": {"examples": [{"job_id": "3f2a9c", "kind": "solve", "status": "running", "progress": 0.0012}]}}

    job_id: str = Field(description="Job identifier")
    kind: JobKind = Field(description="solve or blend")
    status: JobStatus = Field(description="queued, running, completed, cancelled or failed")
    progress: float | None = Field(default=None, description="Most recent residual reported by the solver")
    created_at: str = Field(description="ISO-8601 timestamp when the job was submitted")
    finished_at: str | None = Field(default=None, description="ISO-8601 timestamp when the job ended")
    result: dict[str, Any] | None = Field(default=None, description="SolveResponse or BlendResponse payload once finished")
    error: str | None = Field(default=None, description="Error message if the job failed")


class HealthResponse(BaseModel):
    status: str = Field(description="ok")
    version: str = Field(description="Package version")


class StatusResponse(BaseModel):
    compute_backend: dict[str, Any] = Field(description="Active compute backend")
    backends: dict[str, dict[str, Any]] = Field(description="Availability probe of every backend")
    queue_depth: int = Field(description="Jobs waiting for a worker")
    worker_threads: int = Field(description="Solve worker threads")
