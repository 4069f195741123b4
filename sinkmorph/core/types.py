"""Value types shared by the Sinkhorn solvers and the blend orchestrator."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

import numpy as np

from sinkmorph.constants import DEFAULT_PLAN_MAX_CELLS, WEIGHT_SUM_TOL

ProgressCallback = Callable[[float], None]


class SolveMode(str, Enum):
    """Which Sinkhorn iteration scheme a solve uses."""

    DIRECT = "direct"
    LOG_DOMAIN = "log_domain"


class CancelToken(Protocol):
    """Anything with an ``is_set()`` method, e.g. :class:`threading.Event`."""

    def is_set(self) -> bool: ...


def _frozen(arr: np.ndarray) -> np.ndarray:
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True)
class PointSet:
    """A discrete probability measure on the plane.

    Attributes:
        positions: ``(N, 2)`` float64 array of support points.
        weights: ``(N,)`` float64 array of strictly positive masses, rescaled
            to sum to 1.

    Both arrays are copied and made read-only at construction, so a point
    set can be shared by concurrent solves without copying.
    Non-finite positions are not rejected; they propagate through the cost.

    Raises:
        ValueError: On empty input, inconsistent lengths, non-positive or
            non-finite weights, or weights that do not sum to 1.
    """

    positions: np.ndarray
    weights: np.ndarray

    def __post_init__(self) -> None:
        w = np.array(self.weights, dtype=np.float64).ravel()
        raw = np.array(self.positions, dtype=np.float64)
        if w.size == 0:
            raise ValueError("point set must contain at least one point")
        if raw.ndim == 1:
            if raw.size != 2 * w.size:
                raise ValueError(
                    f"flat positions must have length 2*len(weights)={2 * w.size}, got {raw.size}"
                )
            raw = raw.reshape(-1, 2)
        if raw.ndim != 2 or raw.shape[1] != 2:
            raise ValueError(f"positions must have shape (N, 2), got {raw.shape}")
        if raw.shape[0] != w.size:
            raise ValueError(
                f"positions and weights length mismatch: {raw.shape[0]} points, {w.size} weights"
            )
        if not np.all(np.isfinite(w)):
            raise ValueError("weights must be finite")
        if np.any(w <= 0.0):
            raise ValueError("weights must be strictly positive")
        total = float(w.sum())
        if abs(total - 1.0) > WEIGHT_SUM_TOL:
            raise ValueError(f"weights must sum to 1.0, got {total:.8f}")
        object.__setattr__(self, "positions", _frozen(raw))
        object.__setattr__(self, "weights", _frozen(w / total))

    def __len__(self) -> int:
        return int(self.weights.shape[0])

    @classmethod
    def uniform(cls, positions: np.ndarray) -> PointSet:
        """Point set with equal mass ``1/N`` on every position."""
        pts = np.asarray(positions, dtype=np.float64)
        n = pts.size // 2 if pts.ndim == 1 else pts.shape[0]
        if n == 0:
            raise ValueError("point set must contain at least one point")
        return cls(positions=pts, weights=np.full(n, 1.0 / n))

    def flat_positions(self) -> np.ndarray:
        """Interleaved ``[x0, y0, x1, y1, ...]`` copy of the positions."""
        return self.positions.reshape(-1).copy()


@dataclass(frozen=True)
class SinkhornParams:
    """Per-solve parameters.

    Attributes:
        epsilon: Entropic regularisation strength (> 0).
        max_iter: Hard cap on iterations (> 0); never exceeded.
        tol: Residual threshold for early termination (> 0).
        compute_plan: Whether to materialise the dense plan.
        plan_max_cells: Largest ``N*M`` for which a plan is materialised.
    """

    epsilon: float
    max_iter: int
    tol: float
    compute_plan: bool = False
    plan_max_cells: int = DEFAULT_PLAN_MAX_CELLS

    def __post_init__(self) -> None:
        if not np.isfinite(self.epsilon) or self.epsilon <= 0:
            raise ValueError(f"epsilon must be > 0, got {self.epsilon}")
        if self.max_iter < 1:
            raise ValueError(f"max_iter must be >= 1, got {self.max_iter}")
        if not np.isfinite(self.tol) or self.tol <= 0:
            raise ValueError(f"tol must be > 0, got {self.tol}")
        if self.plan_max_cells < 0:
            raise ValueError(f"plan_max_cells must be >= 0, got {self.plan_max_cells}")

    def with_epsilon(self, epsilon: float) -> SinkhornParams:
        return SinkhornParams(
            epsilon=epsilon,
            max_iter=self.max_iter,
            tol=self.tol,
            compute_plan=self.compute_plan,
            plan_max_cells=self.plan_max_cells,
        )


@dataclass(frozen=True)
class AnnealSchedule:
    """Linear epsilon schedule from ``start`` to ``end`` over ``steps`` stages."""

    start: float
    end: float
    steps: int

    def __post_init__(self) -> None:
        if self.steps < 1:
            raise ValueError(f"schedule steps must be >= 1, got {self.steps}")
        if not (np.isfinite(self.start) and self.start > 0):
            raise ValueError(f"schedule start must be > 0, got {self.start}")
        if not (np.isfinite(self.end) and self.end > 0):
            raise ValueError(f"schedule end must be > 0, got {self.end}")

    def values(self) -> Iterator[float]:
        if self.steps == 1:
            yield float(self.start)
            return
        denom = self.steps - 1
        for s in range(self.steps):
            yield float(self.start + (self.end - self.start) * (s / denom))


@dataclass(frozen=True)
class SinkhornResult:
    """Outcome of one solve (or one blend).

    ``cancelled`` marks a best-effort partial result; ``iterations`` below
    ``max_iter`` together with a residual above ``tol`` tells the same story
    for callers that ignore the flag.
    """

    displacement_map: np.ndarray
    iterations: int
    residual: float
    plan: np.ndarray | None = None
    cancelled: bool = False

    @property
    def plan_shape(self) -> tuple[int, int] | None:
        if self.plan is None:
            return None
        rows, cols = self.plan.shape
        return int(rows), int(cols)
