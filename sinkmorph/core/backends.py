"""Pluggable kernel matrix-vector products for the direct-domain solver.

The Gibbs kernel ``K[i, j] = exp(-|x_i - y_j|^2 / epsilon)`` never has to
exist as a dense matrix: a backend only has to provide

- ``kv(x, y, v, epsilon)``  -> ``(K @ v)``, one reduction per source row
- ``kTu(x, y, u, epsilon)`` -> ``(K.T @ u)``, one reduction per target column

:class:`ReferenceBackend` is the sequential NumPy implementation every other
backend is checked against.  Accelerated implementations live in
:mod:`sinkmorph.core.backends_gpu` and are selected by the caller through
:func:`build_backend`, never by the solver itself.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

import numpy as np

from sinkmorph.constants import EPSILON_FLOOR, REFERENCE_BLOCK_SIZE

logger = logging.getLogger(__name__)


class ComputeBackend(ABC):
    """Provider of the two kernel products used by Sinkhorn iterations.

    Implementations must be stateless with respect to a solve: every call
    receives the full inputs and returns a new float64 NumPy array.
    """

    name: str = "abstract"

    @abstractmethod
    def kv(self, x: np.ndarray, y: np.ndarray, v: np.ndarray, epsilon: float) -> np.ndarray:
        """Return ``Kv_i = sum_j exp(-|x_i - y_j|^2 / epsilon) * v_j``, shape ``(N,)``."""
        raise NotImplementedError

    @abstractmethod
    def kTu(self, x: np.ndarray, y: np.ndarray, u: np.ndarray, epsilon: float) -> np.ndarray:
        """Return ``KTu_j = sum_i exp(-|x_i - y_j|^2 / epsilon) * u_i``, shape ``(M,)``."""
        raise NotImplementedError

    def describe(self) -> dict[str, Any]:
        return {"name": self.name}


def _block_kernel(xp: Any, x_block: Any, y_block: Any, epsilon: float) -> Any:
    dx = x_block[:, 0, None] - y_block[None, :, 0]
    dy = x_block[:, 1, None] - y_block[None, :, 1]
    return xp.exp(-(dx * dx + dy * dy) / max(epsilon, EPSILON_FLOOR))


def blocked_kv(xp: Any, x: Any, y: Any, v: Any, epsilon: float, block: int) -> Any:
    """Row-blocked ``K @ v`` for any NumPy-compatible array module ``xp``."""
    n = x.shape[0]
    out = xp.empty(n, dtype=v.dtype)
    for start in range(0, n, block):
        stop = min(start + block, n)
        out[start:stop] = _block_kernel(xp, x[start:stop], y, epsilon) @ v
    return out


def blocked_kTu(xp: Any, x: Any, y: Any, u: Any, epsilon: float, block: int) -> Any:
    """Column-blocked ``K.T @ u`` for any NumPy-compatible array module ``xp``."""
    m = y.shape[0]
    out = xp.empty(m, dtype=u.dtype)
    for start in range(0, m, block):
        stop = min(start + block, m)
        out[start:stop] = u @ _block_kernel(xp, x, y[start:stop], epsilon)
    return out


class ReferenceBackend(ComputeBackend):
    """Sequential NumPy backend.

    Recomputes the kernel from positions in blocks of ``block_size`` rows
    (or columns), so peak memory is ``O(block_size * max(N, M))`` instead of
    ``O(N * M)``.
    """

    name = "reference"

    def __init__(self, block_size: int = REFERENCE_BLOCK_SIZE) -> None:
        if block_size < 1:
            raise ValueError(f"block_size must be >= 1, got {block_size}")
        self.block_size = block_size

    def kv(self, x: np.ndarray, y: np.ndarray, v: np.ndarray, epsilon: float) -> np.ndarray:
        return blocked_kv(
            np,
            np.asarray(x, dtype=np.float64),
            np.asarray(y, dtype=np.float64),
            np.asarray(v, dtype=np.float64),
            epsilon,
            self.block_size,
        )

    def kTu(self, x: np.ndarray, y: np.ndarray, u: np.ndarray, epsilon: float) -> np.ndarray:
        return blocked_kTu(
            np,
            np.asarray(x, dtype=np.float64),
            np.asarray(y, dtype=np.float64),
            np.asarray(u, dtype=np.float64),
            epsilon,
            self.block_size,
        )

    def describe(self) -> dict[str, Any]:
        return {"name": self.name, "block_size": self.block_size}


def probe_backends() -> dict[str, dict[str, Any]]:
    """Report which compute backends can be constructed on this machine."""
    from sinkmorph.core import backends_gpu

    return {
        "dense": {"available": True},
        "reference": {"available": True},
        "cupy": backends_gpu.get_cupy_info(),
        "torch": backends_gpu.get_torch_info(),
    }


def build_backend(name: str, *, torch_device: str = "auto") -> ComputeBackend | None:
    """Construct the backend selected by configuration.

    ``"dense"`` returns ``None``: the solver then builds the dense kernel
    itself.  ``"auto"`` prefers CuPy, then a CUDA torch device, then the
    dense in-solver kernel.

    Raises:
        RuntimeError: If an explicitly requested accelerator is unavailable.
        ValueError: On an unknown backend name.
    """
    from sinkmorph.core import backends_gpu

    if name == "dense":
        return None
    if name == "reference":
        return ReferenceBackend()
    if name == "cupy":
        return backends_gpu.CupyBackend()
    if name == "torch":
        return backends_gpu.TorchBackend(device=torch_device)
    if name == "auto":
        if backends_gpu.is_cupy_available():
            return backends_gpu.CupyBackend()
        if backends_gpu.is_torch_cuda_available():
            return backends_gpu.TorchBackend(device="cuda")
        logger.info("no accelerator detected, using dense in-solver kernel")
        return None
    raise ValueError(f"unknown compute backend {name!r}")
