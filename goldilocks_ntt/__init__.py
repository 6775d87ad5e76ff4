"""
goldilocks-ntt: GPU-accelerated Number-Theoretic Transform over the
Goldilocks field p = 2^64 - 2^32 + 1.

Polynomial evaluation/interpolation backend for STARK/SNARK provers:
  evaluate_poly(vec, result, n, group)                 coefficients -> evaluations
  evaluate_poly_with_offset(vec, n, h, blowup, ...)    coset LDE
  interpolate_poly(vec, result, n, group)              evaluations -> coefficients
  interpolate_poly_with_offset(vec, result, n, h, ...) undo a coset shift

  group = GPU_init(max_n)     twiddle tables for every size <= max_n
  buf = Vec_init(n)           pinned staging buffer; release with Vec_free(buf)

Kernels run on CuPy when a GPU is present, NumPy otherwise.
"""

__version__ = "0.1.0"

from .errors import (
    NttError, PreconditionError, TeardownError,
    ResourceExhaustedError, DeviceExecutionError,
)
from .field import ORDER, MULTIPLICATIVE_GENERATOR, COSET_SHIFT, TWO_ADICITY
from .backend import HAS_CUPY, resolve_backend, check_device_availability
from .twiddles import NttParams, build_params, is_power_of_two
from .kernel import stockham_ntt
from .device import DeviceContext, ParamGroup, GPU_init, teardown
from .staging import PinnedVector, StagingAllocator, Vec_init, Vec_free
from .coset import (
    evaluate_poly, evaluate_poly_with_offset,
    interpolate_poly, interpolate_poly_with_offset,
    lde, coset_lde, reverse_index_bits,
)
from .config import EngineConfig
from .logging import TransformLogger, EngineManifest
from .engine import NttEngine

__all__ = [
    "NttError", "PreconditionError", "TeardownError",
    "ResourceExhaustedError", "DeviceExecutionError",
    "ORDER", "MULTIPLICATIVE_GENERATOR", "COSET_SHIFT", "TWO_ADICITY",
    "HAS_CUPY", "resolve_backend", "check_device_availability",
    "NttParams", "build_params", "is_power_of_two",
    "stockham_ntt",
    "DeviceContext", "ParamGroup", "GPU_init", "teardown",
    "PinnedVector", "StagingAllocator", "Vec_init", "Vec_free",
    "evaluate_poly", "evaluate_poly_with_offset",
    "interpolate_poly", "interpolate_poly_with_offset",
    "lde", "coset_lde", "reverse_index_bits",
    "EngineConfig", "TransformLogger", "EngineManifest",
    "NttEngine",
]
