"""
Vectorised Goldilocks arithmetic on uint64 arrays (NumPy or CuPy).

Every lane holds a reduced field element.  Lanes wrap modulo 2^64 like the
registers of a GPU thread, so carries and borrows are recovered by
comparison rather than by widening.  The 128-bit product needed by mul is
assembled from four 32x32-bit partial products.
"""

import numpy as np

from ..backend import get_array_module, is_device_array
from ..errors import PreconditionError
from . import reference as ref

ORDER_U64 = np.uint64(ref.ORDER)
EPSILON_U64 = np.uint64(ref.EPSILON)

_MASK32 = np.uint64(0xFFFFFFFF)
_SHIFT32 = np.uint64(32)


# ---------------------------------------------------------------------------
# Lane arithmetic
# ---------------------------------------------------------------------------

def add(a, b):
    """(a + b) mod p, element-wise."""
    xp = get_array_module(a, b)
    s = a + b
    s = xp.where(s < a, s + EPSILON_U64, s)  # carry out of bit 63
    return xp.where(s >= ORDER_U64, s - ORDER_U64, s)


def sub(a, b):
    """(a - b) mod p, element-wise."""
    xp = get_array_module(a, b)
    d = a - b
    return xp.where(a < b, d - EPSILON_U64, d)


def mul_wide(a, b):
    """Full 128-bit products of a and b as a (hi, lo) pair of uint64 arrays."""
    a_lo = a & _MASK32
    a_hi = a >> _SHIFT32
    b_lo = b & _MASK32
    b_hi = b >> _SHIFT32

    ll = a_lo * b_lo
    lh = a_lo * b_hi
    hl = a_hi * b_lo
    hh = a_hi * b_hi

    mid = (ll >> _SHIFT32) + (lh & _MASK32) + (hl & _MASK32)
    lo = (ll & _MASK32) | (mid << _SHIFT32)
    hi = hh + (lh >> _SHIFT32) + (hl >> _SHIFT32) + (mid >> _SHIFT32)
    return hi, lo


def reduce128(hi, lo):
    """Reduce hi * 2^64 + lo modulo p, element-wise."""
    xp = get_array_module(hi, lo)
    hi_hi = hi >> _SHIFT32
    hi_lo = hi & _MASK32

    t0 = lo - hi_hi
    t0 = xp.where(lo < hi_hi, t0 - EPSILON_U64, t0)
    t1 = hi_lo * EPSILON_U64
    t2 = t0 + t1
    t2 = xp.where(t2 < t1, t2 + EPSILON_U64, t2)
    return xp.where(t2 >= ORDER_U64, t2 - ORDER_U64, t2)


def mul(a, b):
    """(a * b) mod p, element-wise."""
    hi, lo = mul_wide(a, b)
    return reduce128(hi, lo)


def scale(a, scalar: int):
    """Multiply every lane by one field element."""
    xp = get_array_module(a)
    return mul(a, xp.asarray(scalar, dtype=np.uint64))


def powers(base: int, count: int, xp=np):
    """[base^0, ..., base^(count-1)] as a uint64 array, by repeated doubling."""
    out = xp.empty(count, dtype=np.uint64)
    if count == 0:
        return out
    out[0] = 1
    filled = 1
    while filled < count:
        take = min(filled, count - filled)
        step = xp.asarray(ref.power(base, filled), dtype=np.uint64)
        out[filled:filled + take] = mul(out[:take], step)
        filled += take
    return out


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def _from_python_ints(arr):
    """Range-check an object array of ints element by element, then cast."""
    for v in arr.flat:
        if not isinstance(v, (int, np.integer)) or isinstance(v, bool):
            raise PreconditionError(
                f"Field elements must be integers, got {type(v).__name__}"
            )
        if v < 0:
            raise PreconditionError("Input contains negative values")
        if v >= ref.ORDER:
            raise PreconditionError("Input contains unreduced field elements")
    return arr.astype(np.uint64)


def to_field_array(values):
    """Convert caller data to a uint64 array, rejecting unreduced elements.

    Device arrays are validated in place; everything else lands on the host.
    Sequences are read as Python ints, so elements at or above 2^63 keep
    their exact value instead of being inferred as float64.

    Raises:
        PreconditionError: on non-integer data, negatives, or values >= p.
    """
    if is_device_array(values):
        if values.dtype != np.uint64:
            raise PreconditionError(
                f"Device input must be uint64, got {values.dtype}"
            )
        if values.size and bool((values >= ORDER_U64).any()):
            raise PreconditionError("Input contains unreduced field elements")
        return values

    if not isinstance(values, np.ndarray):
        return _from_python_ints(np.array(values, dtype=object))

    arr = values
    if arr.dtype.kind == "O":
        return _from_python_ints(arr)
    if arr.dtype.kind not in "iu":
        raise PreconditionError(
            f"Field elements must be integers, got dtype {arr.dtype}"
        )
    if arr.dtype.kind == "i" and arr.size and (arr < 0).any():
        raise PreconditionError("Input contains negative values")
    arr = arr.astype(np.uint64, copy=False)
    if arr.size and (arr >= ORDER_U64).any():
        raise PreconditionError("Input contains unreduced field elements")
    return arr
