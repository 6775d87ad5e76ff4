"""
Device memory management: parameter groups and per-call work buffers.

A DeviceContext owns everything that lives on the device:
  - twiddle tables, uploaded once per maximum size by init() / GPU_init()
  - one max-size ping-pong pair allocated by init(); single-vector
    transforms of any size <= max_n run in views of it
  - a bounded pool of batch-shaped pairs, evicted oldest shape first

Work buffers are checked out per transform call, so two in-flight calls
never share scratch storage.

init() returns a ParamGroup, the handle every transform entry point takes.
The handle is proof that tables exist for every power-of-two size up to its
max_n.  teardown() releases all device storage and kills every handle the
context issued; a dead handle is rejected by the next transform call.
"""

import threading
from collections import OrderedDict
from contextlib import contextmanager
from typing import Dict, List, Optional, Tuple

import numpy as np

from .backend import allocation_errors, array_module, resolve_backend
from .errors import PreconditionError, ResourceExhaustedError, TeardownError
from .field import reference as ref
from .twiddles import (
    NttParams, bit_reverse_indices, build_params, derive_params, log2_exact,
)

# Batch-shaped work pairs kept for reuse, across all shapes
MAX_POOLED_PAIRS = 8


class ParamGroup:
    """Opaque handle to the twiddle tables for all sizes up to ``max_n``.

    Read-only once built; safe to share between concurrent transform calls.
    """

    def __init__(self, group_id: int, base: NttParams,
                 context: "DeviceContext"):
        self.group_id = group_id
        self.max_log_n = base.log_n
        self.context = context
        self._base = base
        self._params: Dict[int, NttParams] = {base.log_n: base}
        self._bit_reverse: Dict[int, object] = {}
        self._lock = threading.Lock()
        self._alive = True

    def __repr__(self) -> str:
        state = "alive" if self._alive else "released"
        return (f"ParamGroup(id={self.group_id}, max_n={self.max_n}, "
                f"backend={self.backend!r}, {state})")

    @property
    def max_n(self) -> int:
        return 1 << self.max_log_n

    @property
    def alive(self) -> bool:
        return self._alive

    @property
    def backend(self) -> str:
        return self.context.backend

    @property
    def xp(self):
        return self.context.xp

    def ensure_alive(self) -> None:
        if not self._alive:
            raise TeardownError(
                f"ParamGroup {self.group_id} was released by teardown()"
            )

    def params(self, n: int) -> NttParams:
        """Bundle for size n, sliced from the max-size tables on first use.

        Raises:
            PreconditionError: if n is not a power of two or exceeds max_n.
            TeardownError: if the group has been released.
        """
        self.ensure_alive()
        log_n = log2_exact(n)
        if log_n > self.max_log_n:
            raise PreconditionError(
                f"Transform size {n} not initialised; GPU_init was called "
                f"with max size {self.max_n}"
            )
        with self._lock:
            p = self._params.get(log_n)
            if p is None:
                p = derive_params(self._base, log_n, self.xp)
                self._params[log_n] = p
            return p

    def bit_reverse(self, n: int):
        """Cached bit-reversal permutation for size n, on the device."""
        self.ensure_alive()
        log_n = log2_exact(n)
        if log_n > self.max_log_n:
            raise PreconditionError(f"Transform size {n} not initialised")
        with self._lock:
            perm = self._bit_reverse.get(log_n)
            if perm is None:
                perm = bit_reverse_indices(log_n, self.xp)
                self._bit_reverse[log_n] = perm
            return perm

    def _release(self) -> None:
        with self._lock:
            self._alive = False
            self._params.clear()
            self._bit_reverse.clear()
            self._base = None


class DeviceContext:
    """Process-scoped device state with an explicit init/teardown lifecycle.

    Usage:
        with DeviceContext() as ctx:
            group = ctx.init(1 << 20)
            evaluate_poly(coeffs, result, n, group)
    """

    def __init__(self, backend: str = "auto"):
        self.backend = resolve_backend(backend)
        self.xp = array_module(self.backend)
        self._lock = threading.Lock()
        self._groups: Dict[int, ParamGroup] = {}
        self._current: Optional[ParamGroup] = None
        self._next_id = 1
        self._reserve: List[Tuple] = []     # flat (max_n,) pairs
        self._reserve_n = 0
        self._work_pool: "OrderedDict[Tuple[int, ...], List[Tuple]]" = OrderedDict()
        self._closed = False

    def __repr__(self) -> str:
        return (f"DeviceContext(backend={self.backend!r}, "
                f"groups={len(self._groups)}, closed={self._closed})")

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def current_group(self) -> Optional[ParamGroup]:
        return self._current

    # -- lifecycle -----------------------------------------------------------

    def init(self, max_n: int) -> ParamGroup:
        """Build and upload tables for every size up to max_n, and allocate
        the max_n work pair every single-vector transform runs in.

        Returns the existing group if it already covers max_n.

        Raises:
            PreconditionError: max_n not a power of two, or above 2^32.
            TeardownError: the context was torn down.
            ResourceExhaustedError: tables or work buffers could not be
                allocated; nothing is registered.
        """
        if self._closed:
            raise TeardownError("DeviceContext has been torn down")
        log_n = log2_exact(max_n)
        if log_n > ref.TWO_ADICITY:
            raise PreconditionError(
                f"max_n=2^{log_n} exceeds the field's two-adicity 2^{ref.TWO_ADICITY}"
            )

        with self._lock:
            if self._current is not None and self._current.max_log_n >= log_n:
                return self._current
            try:
                base = build_params(log_n, self.xp)
                reserve = self._alloc_pair((1 << log_n,))
            except allocation_errors() as exc:
                raise ResourceExhaustedError(
                    f"Could not allocate device storage for n={max_n}: {exc}"
                ) from exc
            # Pairs for the old size still in flight are dropped on return
            self._reserve = [reserve]
            self._reserve_n = 1 << log_n
            group = ParamGroup(self._next_id, base, self)
            self._groups[group.group_id] = group
            self._next_id += 1
            self._current = group
            return group

    def teardown(self) -> None:
        """Release all device allocations and invalidate every group."""
        with self._lock:
            for group in self._groups.values():
                group._release()
            self._groups.clear()
            self._current = None
            self._reserve = []
            self._reserve_n = 0
            self._work_pool.clear()
            self._closed = True
        if self.xp is not np:
            self.xp.get_default_memory_pool().free_all_blocks()

    close = teardown

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.teardown()

    def owns(self, group: ParamGroup) -> bool:
        return self._groups.get(group.group_id) is group

    # -- work buffers --------------------------------------------------------

    def _alloc_pair(self, shape: Tuple[int, ...]) -> Tuple:
        return (self.xp.empty(shape, dtype=np.uint64),
                self.xp.empty(shape, dtype=np.uint64))

    def _pool_pair(self, shape: Tuple[int, ...], pair: Tuple) -> None:
        """Return a batch pair to the pool, evicting the stalest shapes."""
        self._work_pool.setdefault(shape, []).append(pair)
        self._work_pool.move_to_end(shape)
        total = sum(len(v) for v in self._work_pool.values())
        while total > MAX_POOLED_PAIRS:
            oldest, free = next(iter(self._work_pool.items()))
            free.pop(0)
            if not free:
                del self._work_pool[oldest]
            total -= 1

    @contextmanager
    def work_buffers(self, shape: Tuple[int, int]):
        """Check out a private (rows, n) ping-pong pair.

        A single row of any size up to max_n gets views of the reserved
        max-size pair while it is free.  A pair is never handed to two
        in-flight calls at once; it is returned when the block exits,
        whether or not it raised.
        """
        shape = tuple(int(s) for s in shape)
        rows, size = shape
        reserved = pair = None
        with self._lock:
            if self._closed:
                raise TeardownError("DeviceContext has been torn down")
            if rows == 1 and size <= self._reserve_n and self._reserve:
                reserved = self._reserve.pop()
            else:
                free = self._work_pool.get(shape)
                pair = free.pop() if free else None

        if reserved is not None:
            pair = tuple(buf[:size].reshape(shape) for buf in reserved)
        elif pair is None:
            try:
                pair = self._alloc_pair(shape)
            except allocation_errors() as exc:
                raise ResourceExhaustedError(
                    f"Could not allocate device work buffers of shape {shape}: {exc}"
                ) from exc
        try:
            yield pair
        finally:
            with self._lock:
                if self._closed:
                    pass
                elif reserved is not None:
                    if reserved[0].shape[0] == self._reserve_n:
                        self._reserve.append(reserved)
                else:
                    self._pool_pair(shape, pair)

    def pooled_buffer_count(self) -> int:
        """Work pairs currently held for reuse, reserved pair included."""
        with self._lock:
            return len(self._reserve) + sum(len(v) for v in self._work_pool.values())


# ---------------------------------------------------------------------------
# Module-level C-style entry points
# ---------------------------------------------------------------------------

_default_context: Optional[DeviceContext] = None
_default_lock = threading.Lock()


def default_context(backend: str = "auto") -> DeviceContext:
    """The process-wide context used by GPU_init(); created on first call."""
    global _default_context
    with _default_lock:
        if _default_context is None or _default_context.closed:
            _default_context = DeviceContext(backend)
        return _default_context


def GPU_init(n: int, parameter_group: Optional[ParamGroup] = None) -> ParamGroup:
    """Initialise device tables for sizes up to n and return the group handle.

    If parameter_group is a live handle that already covers n it is returned
    unchanged; otherwise its context (or the default one) is (re)initialised.
    """
    if parameter_group is not None and not parameter_group.context.closed:
        ctx = parameter_group.context
        if parameter_group.alive and parameter_group.max_n >= n:
            log2_exact(n)
            return parameter_group
    else:
        ctx = default_context()
    return ctx.init(n)


def teardown() -> None:
    """Tear down the default context, if one exists."""
    global _default_context
    with _default_lock:
        if _default_context is not None:
            _default_context.teardown()
            _default_context = None
