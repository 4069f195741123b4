"""Point-cloud generators used to feed the solvers.

- :func:`random_point_cloud`: a jittered annulus, deterministic per seed.
- :func:`sample_from_mass`: inverse-CDF importance sampling of a 2-D mass
  grid onto ``[-1, 1]^2``.
- :func:`sample_points_from_image`: the same, with the mass taken from the
  squared luminance of an image file read through OpenCV.

Every generator returns a uniform-weight :class:`~sinkmorph.core.types.PointSet`.
"""

from __future__ import annotations

import logging
from pathlib import Path

import cv2
import numpy as np

from sinkmorph.constants import EMPTY_MASS_THRESHOLD, SAMPLING_GRID_SIZE
from sinkmorph.core.types import PointSet

logger = logging.getLogger(__name__)


def random_point_cloud(n: int, seed: int = 1) -> PointSet:
    """``n`` points on an annulus of radius 0.2-0.8 with small jitter."""
    if n < 1:
        raise ValueError(f"n must be >= 1, got {n}")
    rng = np.random.default_rng(seed)
    r = 0.2 + 0.6 * rng.random(n)
    theta = 2.0 * np.pi * rng.random(n)
    jitter = 0.05 * (rng.random(n) - 0.5)
    pts = np.stack([r * np.cos(theta) + jitter, r * np.sin(theta) + jitter], axis=1)
    return PointSet.uniform(pts)


def normalize_weights(w: np.ndarray) -> np.ndarray:
    """Scale ``w`` to sum to 1; returned unchanged when the sum is not positive."""
    arr = np.asarray(w, dtype=np.float64)
    total = float(arr.sum())
    if total <= 0:
        return arr
    return arr / total


def sample_from_mass(
    mass: np.ndarray,
    n: int,
    rng: np.random.Generator | None = None,
) -> PointSet:
    """Draw ``n`` points with probability proportional to ``mass``.

    ``mass`` is an ``(H, W)`` grid whose row index runs along ``y``.  Each
    drawn cell is jittered uniformly within its pixel and mapped to
    ``[-1, 1]^2``.  An (almost) empty grid falls back to
    :func:`random_point_cloud`.
    """
    if n < 1:
        raise ValueError(f"n must be >= 1, got {n}")
    grid = np.asarray(mass, dtype=np.float64)
    if grid.ndim != 2:
        raise ValueError(f"mass must be a 2-D grid, got shape {grid.shape}")
    flat = np.clip(np.nan_to_num(grid.ravel(), nan=0.0, posinf=0.0), 0.0, None)
    total = float(flat.sum())
    if total <= EMPTY_MASS_THRESHOLD:
        logger.info("mass grid is empty, falling back to a random point cloud")
        return random_point_cloud(n)

    rng = rng if rng is not None else np.random.default_rng()
    h, w = grid.shape
    cdf = np.cumsum(flat) / total
    cells = np.searchsorted(cdf, rng.random(n), side="right")
    cells = np.minimum(cells, flat.size - 1)
    py, px = np.divmod(cells, w)
    jx = rng.random(n) - 0.5
    jy = rng.random(n) - 0.5
    pts = np.stack(
        [((px + 0.5 + jx) / w) * 2.0 - 1.0, ((py + 0.5 + jy) / h) * 2.0 - 1.0],
        axis=1,
    )
    return PointSet.uniform(pts)


def luminance_mass(image_bgr: np.ndarray) -> np.ndarray:
    """Squared Rec.601 luminance in ``[0, 1]`` of an 8-bit BGR (or gray) image."""
    img = np.asarray(image_bgr)
    if img.ndim == 2:
        y = img.astype(np.float64) / 255.0
    else:
        b, g, r = (img[..., c].astype(np.float64) for c in range(3))
        y = (0.299 * r + 0.587 * g + 0.114 * b) / 255.0
    return y * y


def sample_points_from_image(
    path: str | Path,
    n: int,
    rng: np.random.Generator | None = None,
    size: int = SAMPLING_GRID_SIZE,
) -> PointSet:
    """Importance-sample ``n`` points from the bright regions of an image.

    The image is resized to ``size x size`` so sampling cost does not depend
    on its resolution.

    Raises:
        ValueError: If the file cannot be decoded as an image.
    """
    image = cv2.imread(str(path), cv2.IMREAD_COLOR)
    if image is None:
        raise ValueError(f"cannot read image: {path}")
    small = cv2.resize(image, (size, size), interpolation=cv2.INTER_AREA)
    return sample_from_mass(luminance_mass(small), n, rng)
