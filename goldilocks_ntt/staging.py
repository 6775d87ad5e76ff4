"""
Host staging allocator: pinned (page-locked) uint64 buffers.

Vectors handed to and from the device go fastest through page-locked host
memory.  With the CuPy backend, Vec_init() returns buffers from
cupyx.zeros_pinned; with the NumPy backend there is no device transfer and
ordinary host arrays are returned.

Each buffer is owned by the caller from Vec_init() until Vec_free().  The
allocator tracks every live handle so that double frees and frees of
foreign handles fail deterministically instead of corrupting memory.
"""

import itertools
import threading
from contextlib import contextmanager
from typing import Dict, Optional

import numpy as np

from .backend import HAS_CUPY, allocation_errors, is_device_array, zeros_pinned
from .errors import PreconditionError, ResourceExhaustedError, TeardownError
from .field.vector import to_field_array


class PinnedVector:
    """Owned handle to one staging buffer of n field elements."""

    def __init__(self, handle_id: int, array: np.ndarray, pinned: bool,
                 allocator: "StagingAllocator"):
        self.handle_id = handle_id
        self.pinned = pinned
        self._array = array
        self._allocator = allocator

    def __repr__(self) -> str:
        state = "freed" if self.freed else f"shape={self._array.shape}"
        return f"PinnedVector(id={self.handle_id}, pinned={self.pinned}, {state})"

    @property
    def freed(self) -> bool:
        return self._array is None

    @property
    def array(self) -> np.ndarray:
        """The backing host array.

        Raises:
            TeardownError: if the buffer was already released.
        """
        if self._array is None:
            raise TeardownError(f"PinnedVector {self.handle_id} used after Vec_free")
        return self._array

    @property
    def shape(self):
        return self.array.shape

    def __len__(self) -> int:
        return len(self.array)

    def __array__(self, dtype=None, copy=None):
        arr = self.array
        if dtype is not None and np.dtype(dtype) != arr.dtype:
            return arr.astype(dtype)
        return arr.copy() if copy else arr

    def __getitem__(self, key):
        return self.array[key]

    def __setitem__(self, key, value):
        self.array[key] = value

    def fill_from(self, values) -> "PinnedVector":
        """Copy reduced field elements into the front of the buffer.

        Raises:
            PreconditionError: on unreduced values or more values than fit.
        """
        src = to_field_array(values)
        if is_device_array(src):
            src = src.get()
        flat = self.array.reshape(-1)
        if src.size > flat.size:
            raise PreconditionError(
                f"{src.size} values do not fit in PinnedVector {self.handle_id} "
                f"of {flat.size} elements"
            )
        flat[:src.size] = src.reshape(-1)
        return self


class StagingAllocator:
    """Allocates and releases staging buffers and tracks their ownership."""

    def __init__(self, pinned: Optional[bool] = None):
        if pinned is None:
            pinned = HAS_CUPY
        if pinned and not HAS_CUPY:
            raise PreconditionError(
                "Pinned host memory requires CuPy with a usable GPU device"
            )
        self.pinned = pinned
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._live: Dict[int, PinnedVector] = {}

    @property
    def live_count(self) -> int:
        with self._lock:
            return len(self._live)

    def Vec_init(self, n: int, batch: Optional[int] = None) -> PinnedVector:
        """Allocate a zero-filled buffer of n (or batch x n) field elements.

        Raises:
            PreconditionError: if n or batch is not a positive integer.
            ResourceExhaustedError: if the host memory cannot be allocated.
        """
        if not isinstance(n, (int, np.integer)) or n <= 0:
            raise PreconditionError(f"Vector length must be positive, got {n!r}")
        if batch is not None and (not isinstance(batch, (int, np.integer)) or batch <= 0):
            raise PreconditionError(f"Batch size must be positive, got {batch!r}")
        shape = (int(n),) if batch is None else (int(batch), int(n))
        try:
            if self.pinned:
                array = zeros_pinned(shape, dtype=np.uint64)
            else:
                array = np.zeros(shape, dtype=np.uint64)
        except allocation_errors() as exc:
            raise ResourceExhaustedError(
                f"Could not allocate {'pinned ' if self.pinned else ''}host "
                f"buffer of shape {shape}: {exc}"
            ) from exc

        with self._lock:
            vec = PinnedVector(next(self._ids), array, self.pinned, self)
            self._live[vec.handle_id] = vec
        return vec

    def Vec_free(self, vec: PinnedVector) -> None:
        """Release a buffer previously returned by Vec_init.

        Raises:
            PreconditionError: on a double free or a handle this allocator
                did not issue.
        """
        if not isinstance(vec, PinnedVector):
            raise PreconditionError(
                f"Vec_free expects a PinnedVector, got {type(vec).__name__}"
            )
        with self._lock:
            if vec._allocator is not self:
                raise PreconditionError(
                    f"PinnedVector {vec.handle_id} was not allocated here"
                )
            if vec.freed:
                raise PreconditionError(
                    f"Double free of PinnedVector {vec.handle_id}"
                )
            if self._live.get(vec.handle_id) is not vec:
                raise PreconditionError(
                    f"Unknown PinnedVector {vec.handle_id}"
                )
            del self._live[vec.handle_id]
            vec._array = None

    alloc = Vec_init
    free = Vec_free

    @contextmanager
    def vector(self, n: int, batch: Optional[int] = None):
        """Scoped buffer, released on every exit path.

        Usage:
            with allocator.vector(n) as buf:
                buf.fill_from(coeffs)
                evaluate_poly(buf, out, n, group)
        """
        vec = self.Vec_init(n, batch)
        try:
            yield vec
        finally:
            self.Vec_free(vec)

    def free_all(self) -> int:
        """Release every outstanding buffer; returns how many were live."""
        with self._lock:
            live = list(self._live.values())
        for vec in live:
            self.Vec_free(vec)
        return len(live)


# ---------------------------------------------------------------------------
# Module-level C-style entry points
# ---------------------------------------------------------------------------

_default_allocator: Optional[StagingAllocator] = None
_default_lock = threading.Lock()


def default_allocator() -> StagingAllocator:
    global _default_allocator
    with _default_lock:
        if _default_allocator is None:
            _default_allocator = StagingAllocator()
        return _default_allocator


def Vec_init(n: int) -> PinnedVector:
    """Allocate a staging buffer of n field elements from the default allocator."""
    return default_allocator().Vec_init(n)


def Vec_free(vec: PinnedVector) -> None:
    """Release a buffer obtained from Vec_init()."""
    default_allocator().Vec_free(vec)
