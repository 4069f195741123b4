"""Ground cost between two planar point sets."""

from __future__ import annotations

import numpy as np


def _as_points(arr: np.ndarray) -> np.ndarray:
    pts = np.asarray(arr, dtype=np.float64)
    if pts.ndim == 1:
        if pts.size % 2:
            raise ValueError(f"flat positions must have even length, got {pts.size}")
        pts = pts.reshape(-1, 2)
    if pts.ndim != 2 or pts.shape[1] != 2:
        raise ValueError(f"positions must have shape (N, 2), got {pts.shape}")
    return pts


def squared_euclidean_cost(x: np.ndarray, y: np.ndarray) -> np.ndarray:
    """Pairwise squared Euclidean distances ``C[i, j] = |x_i - y_j|^2``.

    Computed from explicit coordinate differences rather than the
    ``|x|^2 + |y|^2 - 2<x, y>`` expansion, so small integer inputs give
    exact results.  NaN/Inf coordinates propagate into the matrix.

    Args:
        x: Source positions, ``(N, 2)`` or flat ``(2N,)``.
        y: Target positions, ``(M, 2)`` or flat ``(2M,)``.

    Returns:
        ``(N, M)`` float64 cost matrix.
    """
    xp = _as_points(x)
    yp = _as_points(y)
    dx = xp[:, 0, np.newaxis] - yp[np.newaxis, :, 0]
    dy = xp[:, 1, np.newaxis] - yp[np.newaxis, :, 1]
    return dx * dx + dy * dy
