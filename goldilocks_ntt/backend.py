"""
Array backend discovery for the NTT engine.

The "device" is whichever array module runs the kernels: CuPy on a CUDA or
ROCm GPU, or NumPy on the host.  CuPy is used when it imports and reports at
least one device; the choice can be forced with the GOLDILOCKS_NTT_BACKEND
environment variable or the engine config.
"""

import os
import subprocess
import warnings
from pathlib import Path
from typing import Any, Dict, Tuple

import numpy as np

from .errors import PreconditionError

BACKEND_ENV = "GOLDILOCKS_NTT_BACKEND"
BACKENDS = ("numpy", "cupy")

# ---------------------------------------------------------------------------
# Load CuPy (best-effort)
# ---------------------------------------------------------------------------

HAS_CUPY = False
cp = None
cupyx = None

try:
    import cupy as cp
    import cupyx
except ImportError:
    cp = None
else:
    try:
        HAS_CUPY = cp.cuda.runtime.getDeviceCount() > 0
    except Exception as exc:
        # Installed but no usable driver/device; expected on dev machines
        warnings.warn(
            f"CuPy is installed but no GPU device is usable: {exc}. "
            "Falling back to the NumPy backend.",
            RuntimeWarning,
        )


def resolve_backend(name: str = "auto") -> str:
    """Turn a requested backend name into a concrete one.

    "auto" honours GOLDILOCKS_NTT_BACKEND, then prefers CuPy when present.
    """
    if name == "auto":
        name = os.environ.get(BACKEND_ENV, "auto").strip().lower() or "auto"
    if name == "auto":
        return "cupy" if HAS_CUPY else "numpy"
    if name not in BACKENDS:
        raise PreconditionError(
            f"Unknown backend {name!r}; expected one of {BACKENDS} or 'auto'"
        )
    if name == "cupy" and not HAS_CUPY:
        raise PreconditionError(
            "CuPy backend requested but CuPy or a GPU device is not available"
        )
    return name


def array_module(backend: str):
    return cp if backend == "cupy" else np


def get_array_module(*arrays):
    """numpy or cupy, whichever owns the given arrays."""
    if HAS_CUPY:
        return cp.get_array_module(*arrays)
    return np


def is_device_array(arr: Any) -> bool:
    return HAS_CUPY and isinstance(arr, cp.ndarray)


def to_device(host: np.ndarray, xp):
    if xp is np:
        return host
    return xp.asarray(host)


def copy_to_host(dev, out: np.ndarray) -> np.ndarray:
    """Copy a device array into a preallocated host array."""
    if is_device_array(dev):
        dev.get(out=out)
    else:
        np.copyto(out, dev)
    return out


def synchronize(xp) -> None:
    """Block the host until queued device work is done."""
    if xp is not np:
        xp.cuda.get_current_stream().synchronize()


def device_errors() -> Tuple[type, ...]:
    """Exception types raised by the device runtime during execution."""
    if not HAS_CUPY:
        return ()
    return (cp.cuda.runtime.CUDARuntimeError, cp.cuda.driver.CUDADriverError)


def allocation_errors() -> Tuple[type, ...]:
    if not HAS_CUPY:
        return (MemoryError,)
    return (MemoryError, cp.cuda.memory.OutOfMemoryError)


def zeros_pinned(shape, dtype=np.uint64) -> np.ndarray:
    """Zero-filled page-locked host array (requires CuPy)."""
    return cupyx.zeros_pinned(shape, dtype=dtype)


# ---------------------------------------------------------------------------
# Diagnostics
# ---------------------------------------------------------------------------

def check_device_availability() -> Dict[str, Any]:
    """Check GPU and array backend availability.

    Returns dict with status information for diagnostics.
    """
    result = {
        "cupy_available": HAS_CUPY,
        "cupy_version": getattr(cp, "__version__", None),
        "numpy_version": np.__version__,
        "device_count": 0,
        "gpu_detected": False,
        "gpu_backend": "none",
        "rocm_version": "unknown",
        "default_backend": "cupy" if HAS_CUPY else "numpy",
    }

    if HAS_CUPY:
        result["device_count"] = int(cp.cuda.runtime.getDeviceCount())
        result["gpu_detected"] = result["device_count"] > 0
        result["gpu_backend"] = "rocm" if cp.cuda.runtime.is_hip else "cuda"

    # Check GPU tooling (NVIDIA first, then ROCm)
    if not result["gpu_detected"]:
        try:
            r = subprocess.run(["nvidia-smi", "--query-gpu=name",
                                "--format=csv,noheader"],
                               capture_output=True, text=True, timeout=5)
            if r.returncode == 0 and r.stdout.strip():
                result["gpu_detected"] = True
                result["gpu_backend"] = "cuda"
        except (OSError, subprocess.SubprocessError):
            pass

    if not result["gpu_detected"]:
        try:
            r = subprocess.run(["rocm-smi", "--showid"], capture_output=True,
                               text=True, timeout=5)
            if r.returncode == 0 and "GPU" in r.stdout:
                result["gpu_detected"] = True
                result["gpu_backend"] = "rocm"
        except (OSError, subprocess.SubprocessError):
            pass

    if result["gpu_backend"] == "rocm":
        version_file = Path("/opt/rocm/.info/version")
        if version_file.exists():
            result["rocm_version"] = version_file.read_text().strip()

    return result
