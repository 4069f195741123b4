"""Numerical core: cost, Sinkhorn solvers, projection, blending and backends."""

from sinkmorph.core.blend import BlendOrchestrator, BlendTarget, blend_displacement, normalize_blend_weights
from sinkmorph.core.cost import squared_euclidean_cost
from sinkmorph.core.interpolate import displacement_interpolate, interpolation_frames
from sinkmorph.core.sinkhorn import LinearSinkhorn, LogDomainSinkhorn, SinkhornSolver, build_solver
from sinkmorph.core.types import AnnealSchedule, PointSet, SinkhornParams, SinkhornResult, SolveMode

__all__ = [
    "AnnealSchedule",
    "BlendOrchestrator",
    "BlendTarget",
    "LinearSinkhorn",
    "LogDomainSinkhorn",
    "PointSet",
    "SinkhornParams",
    "SinkhornResult",
    "SinkhornSolver",
    "SolveMode",
    "blend_displacement",
    "build_solver",
    "displacement_interpolate",
    "interpolation_frames",
    "normalize_blend_weights",
    "squared_euclidean_cost",
]
