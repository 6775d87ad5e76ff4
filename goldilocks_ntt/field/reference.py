"""
Pure-Python Goldilocks field arithmetic.

p = 2^64 - 2^32 + 1.  Scalars are plain Python ints in [0, p).  These are
the host-side primitives used to build twiddle tables and coset powers, and
the ground truth the vectorised kernels are tested against.

Multiplication forms the full 128-bit product and folds it back with the
Goldilocks identities 2^64 = 2^32 - 1 and 2^96 = -1 (mod p), exactly as the
device kernels do on 64-bit lanes.
"""

from typing import List

from ..errors import PreconditionError


ORDER = 0xFFFFFFFF00000001
EPSILON = 0xFFFFFFFF            # 2^64 mod p
TWO_ADICITY = 32
MULTIPLICATIVE_GENERATOR = 7
COSET_SHIFT = MULTIPLICATIVE_GENERATOR

_MASK64 = (1 << 64) - 1
_TWO64 = 1 << 64


# ---------------------------------------------------------------------------
# Reduction
# ---------------------------------------------------------------------------

def is_reduced(a: int) -> bool:
    return 0 <= a < ORDER


def canonicalize(a: int) -> int:
    """Map a 64-bit value to [0, p).  One subtraction suffices since 2p > 2^64."""
    return a - ORDER if a >= ORDER else a


def reduce128(x: int) -> int:
    """Reduce a 128-bit value modulo p.

    Splits x = x_hi_hi * 2^96 + x_hi_lo * 2^64 + x_lo, then
    x = x_lo - x_hi_hi + x_hi_lo * EPSILON (mod p), tracking the 64-bit
    borrow and carry the way the device lanes do.
    """
    x_lo = x & _MASK64
    x_hi = x >> 64
    x_hi_hi = x_hi >> 32
    x_hi_lo = x_hi & EPSILON

    t0 = x_lo - x_hi_hi
    if t0 < 0:
        t0 += _TWO64
        t0 -= EPSILON
    t1 = x_hi_lo * EPSILON
    t2 = t0 + t1
    if t2 >= _TWO64:
        t2 = t2 - _TWO64 + EPSILON
    return canonicalize(t2)


# ---------------------------------------------------------------------------
# Scalar field operations
# ---------------------------------------------------------------------------

def add(a: int, b: int) -> int:
    """(a + b) mod p.  Assumes 0 <= a, b < p."""
    s = a + b
    return s - ORDER if s >= ORDER else s


def sub(a: int, b: int) -> int:
    """(a - b) mod p.  Assumes 0 <= a, b < p."""
    return a - b if a >= b else a + ORDER - b


def neg(a: int) -> int:
    return 0 if a == 0 else ORDER - a


def mul(a: int, b: int) -> int:
    """(a * b) mod p via the 128-bit product."""
    return reduce128(a * b)


def power(base: int, exp: int) -> int:
    """base^exp mod p by square-and-multiply."""
    result = 1
    base = canonicalize(base)
    while exp > 0:
        if exp & 1:
            result = mul(result, base)
        base = mul(base, base)
        exp >>= 1
    return result


def inv(a: int) -> int:
    """Multiplicative inverse via Fermat's little theorem.

    Raises:
        PreconditionError: if a == 0.
    """
    if a % ORDER == 0:
        raise PreconditionError("Cannot invert zero in the Goldilocks field")
    return power(a, ORDER - 2)


def div(a: int, b: int) -> int:
    return mul(a, inv(b))


# ---------------------------------------------------------------------------
# Roots of unity
# ---------------------------------------------------------------------------

def primitive_root_of_unity(log_n: int) -> int:
    """Primitive 2^log_n-th root of unity, g^((p-1) / 2^log_n)."""
    if log_n < 0 or log_n > TWO_ADICITY:
        raise PreconditionError(
            f"log_n={log_n} outside supported range [0, {TWO_ADICITY}]"
        )
    return power(MULTIPLICATIVE_GENERATOR, (ORDER - 1) >> log_n)


def powers(base: int, count: int) -> List[int]:
    """[base^0, base^1, ..., base^(count-1)]."""
    out: List[int] = []
    cur = 1
    for _ in range(count):
        out.append(cur)
        cur = mul(cur, base)
    return out
