"""Linear displacement interpolation between a source cloud and its image."""

from __future__ import annotations

from collections.abc import Iterator

import numpy as np


def displacement_interpolate(x: np.ndarray, t_map: np.ndarray, t: float) -> np.ndarray:
    """Positions a fraction ``t`` of the way along the displacement.

    ``(1 - t) * x + t * t_map`` with ``t`` in ``[0, 1]``.

    Raises:
        ValueError: If ``t`` is outside ``[0, 1]`` or the shapes differ.
    """
    if not (0.0 <= t <= 1.0):
        raise ValueError(f"t must be in [0, 1], got {t}")
    src = np.asarray(x, dtype=np.float64)
    dst = np.asarray(t_map, dtype=np.float64)
    if src.shape != dst.shape:
        raise ValueError(f"shape mismatch: source {src.shape} vs map {dst.shape}")
    return (1.0 - t) * src + t * dst


def interpolation_frames(x: np.ndarray, t_map: np.ndarray, n_frames: int) -> Iterator[np.ndarray]:
    """Yield ``n_frames`` evenly spaced frames from ``t=0`` to ``t=1``."""
    if n_frames < 1:
        raise ValueError(f"n_frames must be >= 1, got {n_frames}")
    if n_frames == 1:
        yield displacement_interpolate(x, t_map, 1.0)
        return
    for t in np.linspace(0.0, 1.0, n_frames):
        yield displacement_interpolate(x, t_map, float(t))
