from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal

from sinkmorph.constants import (
    DEFAULT_EPSILON,
    DEFAULT_MAX_CELLS,
    DEFAULT_MAX_ITER,
    DEFAULT_PLAN_MAX_CELLS,
    DEFAULT_TOL,
)

BackendName = Literal["dense", "reference", "cupy", "torch", "auto"]
_BACKEND_NAMES: frozenset[str] = frozenset({"dense", "reference", "cupy", "torch", "auto"})


def _env_int(key: str, default: int) -> int:
    raw = os.getenv(key)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(key: str, default: float) -> float:
    raw = os.getenv(key)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_bool(key: str, default: bool) -> bool:
    raw = os.getenv(key)
    if raw is None:
        return default
    val = raw.strip().lower()
    if val in {"1", "true", "yes", "on"}:
        return True
    if val in {"0", "false", "no", "off"}:
        return False
    return default


def _env_str(key: str, default: str) -> str:
    raw = os.getenv(key)
    if raw is None:
        return default
    return raw


@dataclass(frozen=True)
class Settings:
    log_level: str = "INFO"
    log_json: bool = True
    compute_backend: BackendName = "dense"
    torch_device: str = "auto"
    solve_worker_threads: int = 1
    blend_max_workers: int = 1
    max_queued_jobs: int = 64
    job_retention: int = 256
    progress_history: int = 1000
    default_epsilon: float = DEFAULT_EPSILON
    default_max_iter: int = DEFAULT_MAX_ITER
    default_tol: float = DEFAULT_TOL
    plan_max_cells: int = DEFAULT_PLAN_MAX_CELLS
    max_points: int = 20000
    max_cells: int = DEFAULT_MAX_CELLS
    cors_origins: tuple[str, ...] = ("http://localhost:5173", "http://127.0.0.1:5173")

    def __post_init__(self) -> None:
        """Validate cross-field constraints at construction time."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if self.log_level not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}, got {self.log_level!r}")
        if self.compute_backend not in _BACKEND_NAMES:
            raise ValueError(f"compute_backend must be one of {sorted(_BACKEND_NAMES)}, got {self.compute_backend!r}")
        if self.default_epsilon <= 0:
            raise ValueError(f"default_epsilon must be > 0, got {self.default_epsilon}")
        if self.default_tol <= 0:
            raise ValueError(f"default_tol must be > 0, got {self.default_tol}")
        if self.default_max_iter < 1:
            raise ValueError(f"default_max_iter must be >= 1, got {self.default_max_iter}")
        if self.plan_max_cells < 0:
            raise ValueError(f"plan_max_cells must be >= 0, got {self.plan_max_cells}")
        if self.max_points < 1:
            raise ValueError(f"max_points must be >= 1, got {self.max_points}")
        if self.max_cells < 1:
            raise ValueError(f"max_cells must be >= 1, got {self.max_cells}")

    @staticmethod
    def from_env() -> Settings:
        backend_raw = _env_str("SINKMORPH_COMPUTE_BACKEND", "dense").strip().lower()
        backend: BackendName = backend_raw if backend_raw in _BACKEND_NAMES else "dense"  # type: ignore[assignment]
        origins = tuple(
            o.strip() for o in _env_str("SINKMORPH_CORS_ORIGINS", "").split(",") if o.strip()
        )
        return Settings(
            log_level=_env_str("SINKMORPH_LOG_LEVEL", "INFO").strip().upper() or "INFO",
            log_json=_env_bool("SINKMORPH_LOG_JSON", True),
            compute_backend=backend,
            torch_device=_env_str("SINKMORPH_TORCH_DEVICE", "auto").strip() or "auto",
            solve_worker_threads=max(1, _env_int("SINKMORPH_SOLVE_WORKERS", 1)),
            blend_max_workers=max(1, _env_int("SINKMORPH_BLEND_MAX_WORKERS", 1)),
            max_queued_jobs=max(1, _env_int("SINKMORPH_MAX_QUEUED_JOBS", 64)),
            job_retention=max(1, _env_int("SINKMORPH_JOB_RETENTION", 256)),
            progress_history=max(1, _env_int("SINKMORPH_PROGRESS_HISTORY", 1000)),
            default_epsilon=_env_float("SINKMORPH_DEFAULT_EPSILON", DEFAULT_EPSILON),
            default_max_iter=max(1, _env_int("SINKMORPH_DEFAULT_MAX_ITER", DEFAULT_MAX_ITER)),
            default_tol=_env_float("SINKMORPH_DEFAULT_TOL", DEFAULT_TOL),
            plan_max_cells=max(0, _env_int("SINKMORPH_PLAN_MAX_CELLS", DEFAULT_PLAN_MAX_CELLS)),
            max_points=max(1, _env_int("SINKMORPH_MAX_POINTS", 20000)),
            max_cells=max(1, _env_int("SINKMORPH_MAX_CELLS", DEFAULT_MAX_CELLS)),
            cors_origins=origins or ("http://localhost:5173", "http://127.0.0.1:5173"),
        )


def get_settings() -> Settings:
    return Settings.from_env()
