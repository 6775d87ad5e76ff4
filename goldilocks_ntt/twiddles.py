"""
Twiddle and root-of-unity tables.

For a size n = 2^log_n the parameter bundle holds the primitive n-th root of
unity w, its inverse, n^-1, and the tables w^0..w^(n/2-1) and
w^-0..w^-(n/2-1) in natural index order (the Stockham kernel indexes them
directly, so no bit-reversed layout is needed).

Only the largest table is computed from scratch.  Since w_n = w_N^(N/n),
the table for any smaller n is every (N/n)-th entry of the size-N table.
"""

from dataclasses import dataclass
from typing import Any

import numpy as np

from .errors import PreconditionError
from .field import reference as ref
from .field import vector


def is_power_of_two(n: int) -> bool:
    return isinstance(n, (int, np.integer)) and n > 0 and (n & (n - 1)) == 0


def log2_exact(n: int) -> int:
    """log2(n) for a power of two n.

    Raises:
        PreconditionError: if n is not a positive power of two.
    """
    if not is_power_of_two(n):
        raise PreconditionError(f"Transform size must be a power of two, got {n}")
    return int(n).bit_length() - 1


@dataclass(frozen=True, eq=False)
class NttParams:
    """Precomputed per-size state consumed by the transform kernel."""
    n: int
    log_n: int
    omega: int
    omega_inv: int
    n_inv: int
    twiddles: Any         # device array, w^k for k < max(n/2, 1)
    inv_twiddles: Any     # device array, w^-k for k < max(n/2, 1)

    @property
    def half(self) -> int:
        return max(self.n >> 1, 1)


def build_params(log_n: int, xp=np) -> NttParams:
    """Compute the bundle for size 2^log_n from scratch on the given device."""
    omega = ref.primitive_root_of_unity(log_n)
    omega_inv = ref.inv(omega)
    n = 1 << log_n
    half = max(n >> 1, 1)
    return NttParams(
        n=n,
        log_n=log_n,
        omega=omega,
        omega_inv=omega_inv,
        n_inv=ref.inv(n),
        twiddles=vector.powers(omega, half, xp),
        inv_twiddles=vector.powers(omega_inv, half, xp),
    )


def derive_params(base: NttParams, log_n: int, xp=np) -> NttParams:
    """Bundle for a smaller size, sliced out of a larger bundle's tables."""
    if log_n > base.log_n:
        raise PreconditionError(
            f"Cannot derive size 2^{log_n} from tables of size 2^{base.log_n}"
        )
    if log_n == base.log_n:
        return base
    stride = 1 << (base.log_n - log_n)
    n = 1 << log_n
    half = max(n >> 1, 1)
    return NttParams(
        n=n,
        log_n=log_n,
        omega=ref.power(base.omega, stride),
        omega_inv=ref.power(base.omega_inv, stride),
        n_inv=ref.inv(n),
        twiddles=xp.ascontiguousarray(base.twiddles[::stride][:half]),
        inv_twiddles=xp.ascontiguousarray(base.inv_twiddles[::stride][:half]),
    )


def bit_reverse_indices(log_n: int, xp=np):
    """Permutation i -> reverse of the log_n low bits of i."""
    n = 1 << log_n
    idx = np.arange(n, dtype=np.int64)
    rev = np.zeros(n, dtype=np.int64)
    for bit in range(log_n):
        rev |= ((idx >> bit) & 1) << (log_n - 1 - bit)
    return xp.asarray(rev)
