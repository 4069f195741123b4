"""
Accelerator-backed kernel products using CuPy or PyTorch.

Both backends evaluate the Gibbs kernel on the fly, block by block, and reduce
per source row (``kv``) or per target column (``kTu``) on the device.  They
honour the :class:`~sinkmorph.core.backends.ComputeBackend` contract exactly,
so the direct-domain solver produces the same iterates (up to floating-point
summation order) whichever backend computes the products.

Neither library is required: availability is probed at import time and the
caller decides which backend to construct.
"""

from __future__ import annotations

import logging
from typing import Any

import numpy as np

from sinkmorph.constants import EPSILON_FLOOR
from sinkmorph.core.backends import ComputeBackend, blocked_kTu, blocked_kv

logger = logging.getLogger(__name__)

try:
    import cupy as cp

    CUPY_AVAILABLE = True
except ImportError:
    CUPY_AVAILABLE = False
    cp = None  # type: ignore

try:
    import torch

    TORCH_AVAILABLE = True
except ImportError:
    TORCH_AVAILABLE = False
    torch = None  # type: ignore


_DEVICE_BLOCK_SIZE = 4096


class CupyBackend(ComputeBackend):
    """CUDA backend on top of CuPy (float64 throughout)."""

    name = "cupy"

    def __init__(self, block_size: int = _DEVICE_BLOCK_SIZE) -> None:
        if cp is None or not CUPY_AVAILABLE:
            raise RuntimeError("CuPy not available. Install with: pip install cupy-cuda12x")
        self.block_size = block_size

    def kv(self, x: np.ndarray, y: np.ndarray, v: np.ndarray, epsilon: float) -> np.ndarray:
        out = blocked_kv(
            cp,
            cp.asarray(x, dtype=cp.float64),
            cp.asarray(y, dtype=cp.float64),
            cp.asarray(v, dtype=cp.float64),
            epsilon,
            self.block_size,
        )
        return cp.asnumpy(out)

    def kTu(self, x: np.ndarray, y: np.ndarray, u: np.ndarray, epsilon: float) -> np.ndarray:
        out = blocked_kTu(
            cp,
            cp.asarray(x, dtype=cp.float64),
            cp.asarray(y, dtype=cp.float64),
            cp.asarray(u, dtype=cp.float64),
            epsilon,
            self.block_size,
        )
        return cp.asnumpy(out)

    def describe(self) -> dict[str, Any]:
        return {"name": self.name, "block_size": self.block_size, **get_cupy_info()}


def _resolve_torch_device(device: str) -> str:
    if device != "auto":
        return device
    if torch.cuda.is_available():
        return "cuda"
    mps = getattr(torch.backends, "mps", None)
    if mps is not None and mps.is_available():
        return "mps"
    return "cpu"


class TorchBackend(ComputeBackend):
    """PyTorch backend for CUDA, Apple MPS or CPU devices.

    MPS has no float64 support, so on that device the reductions run in
    float32 and are returned as float64.
    """

    name = "torch"

    def __init__(self, device: str = "auto", block_size: int = _DEVICE_BLOCK_SIZE) -> None:
        if torch is None or not TORCH_AVAILABLE:
            raise RuntimeError("PyTorch not available. Install with: pip install torch")
        self.device = torch.device(_resolve_torch_device(device))
        self.dtype = torch.float32 if self.device.type == "mps" else torch.float64
        self.block_size = block_size

    def _tensor(self, arr: np.ndarray) -> Any:
        return torch.as_tensor(np.asarray(arr, dtype=np.float64), device=self.device).to(self.dtype)

    def _kernel(self, x_block: Any, y_block: Any, epsilon: float) -> Any:
        diff = x_block[:, None, :] - y_block[None, :, :]
        return torch.exp(-(diff * diff).sum(dim=-1) / max(epsilon, EPSILON_FLOOR))

    def kv(self, x: np.ndarray, y: np.ndarray, v: np.ndarray, epsilon: float) -> np.ndarray:
        xt, yt, vt = self._tensor(x), self._tensor(y), self._tensor(v)
        with torch.no_grad():
            parts = [
                self._kernel(xt[start:start + self.block_size], yt, epsilon) @ vt
                for start in range(0, xt.shape[0], self.block_size)
            ]
            out = torch.cat(parts)
        return out.to("cpu", torch.float64).numpy()

    def kTu(self, x: np.ndarray, y: np.ndarray, u: np.ndarray, epsilon: float) -> np.ndarray:
        xt, yt, ut = self._tensor(x), self._tensor(y), self._tensor(u)
        with torch.no_grad():
            parts = [
                ut @ self._kernel(xt, yt[start:start + self.block_size], epsilon)
                for start in range(0, yt.shape[0], self.block_size)
            ]
            out = torch.cat(parts)
        return out.to("cpu", torch.float64).numpy()

    def describe(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "device": str(self.device),
            "dtype": str(self.dtype).replace("torch.", ""),
            "block_size": self.block_size,
        }


def is_cupy_available() -> bool:
    """Check if a CUDA device is reachable through CuPy."""
    if not CUPY_AVAILABLE or cp is None:
        return False
    try:
        _ = cp.cuda.Device(0).compute_capability
        return True
    except Exception:
        return False


def is_torch_cuda_available() -> bool:
    if not TORCH_AVAILABLE or torch is None:
        return False
    return bool(torch.cuda.is_available())


def get_cupy_info() -> dict[str, Any]:
    """Get CuPy device information for diagnostics."""
    if not CUPY_AVAILABLE or cp is None:
        return {"available": False, "reason": "CuPy not installed"}
    try:
        device = cp.cuda.Device(0)
        props = cp.cuda.runtime.getDeviceProperties(device.id)
        return {
            "available": True,
            "name": props["name"].decode("utf-8"),
            "total_memory_gb": props["totalGlobalMem"] / (1024**3),
            "compute_capability": f"{props['major']}.{props['minor']}",
        }
    except Exception as e:
        return {"available": False, "reason": str(e)}


def get_torch_info() -> dict[str, Any]:
    """Get PyTorch device information for diagnostics."""
    if not TORCH_AVAILABLE or torch is None:
        return {"available": False, "reason": "PyTorch not installed"}
    devices = ["cpu"]
    if torch.cuda.is_available():
        devices.append("cuda")
    mps = getattr(torch.backends, "mps", None)
    if mps is not None and mps.is_available():
        devices.append("mps")
    return {"available": True, "version": torch.__version__, "devices": devices}
