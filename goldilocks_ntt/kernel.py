"""
Radix-2 Stockham NTT kernel.

Stage s (Ns = 2^s) reads the current buffer as two halves a = x[:n/2] and
b = x[n/2:].  For j < n/2 with k = j mod Ns and t = w^(k * n / (2 Ns)) it
writes

    y[(j div Ns) * 2 Ns + k]      = a[j] + t * b[j]
    y[(j div Ns) * 2 Ns + k + Ns] = a[j] - t * b[j]

into the other buffer.  Viewing a and b as (n / 2Ns, Ns) and y as
(n / 2Ns, 2, Ns) makes each stage a single whole-array butterfly, so one
stage is fully written before the next one reads it.  After log2(n) stages
the result is in natural order, with no bit-reversal pass.

Rows of a (batch, n) buffer are transformed independently.
"""

from typing import Tuple

from .backend import get_array_module
from .errors import PreconditionError
from .field import vector
from .twiddles import NttParams


def _butterfly_stage(src, dst, twiddles, n: int, ns: int) -> None:
    half = n >> 1
    groups = half // ns
    rows = src.shape[0]

    a = src[:, :half].reshape(rows, groups, ns)
    b = src[:, half:].reshape(rows, groups, ns)
    # w^(k * n / 2Ns) for k < Ns
    t = twiddles[::groups][:ns]
    tb = vector.mul(b, t)

    out = dst.reshape(rows, groups, 2, ns)
    out[:, :, 0, :] = vector.add(a, tb)
    out[:, :, 1, :] = vector.sub(a, tb)


def run_stages(front, back, params: NttParams, inverse: bool = False):
    """Transform the data held in ``front`` using ``back`` as the ping-pong partner.

    Both buffers are (rows, n) uint64 device arrays owned by the caller; their
    contents are clobbered.  Returns whichever of the two holds the result.
    """
    n = front.shape[-1]
    if n != params.n:
        raise PreconditionError(
            f"Buffer length {n} does not match parameter bundle size {params.n}"
        )
    if back.shape != front.shape:
        raise PreconditionError("Ping-pong buffers must have identical shapes")

    twiddles = params.inv_twiddles if inverse else params.twiddles
    src, dst = front, back
    ns = 1
    while ns < n:
        _butterfly_stage(src, dst, twiddles, n, ns)
        src, dst = dst, src
        ns <<= 1

    if inverse and n > 1:
        src[...] = vector.scale(src, params.n_inv)
    return src


def stockham_ntt(x, params: NttParams, inverse: bool = False,
                 scratch: Tuple = None):
    """Forward (or inverse) NTT of x, shaped (n,) or (rows, n).

    Args:
        x: Reduced uint64 device array.  Not modified.
        params: Bundle for n = x.shape[-1].
        inverse: Use the inverse table and scale by n^-1.
        scratch: Optional pair of (rows, n) work buffers; allocated if None.

    Returns:
        New array with the shape of x, in natural order.
    """
    xp = get_array_module(x)
    n = x.shape[-1]
    rows = x.reshape(-1, n)
    if scratch is None:
        scratch = (xp.empty_like(rows), xp.empty_like(rows))
    front, back = scratch
    front[...] = rows
    out = run_stages(front, back, params, inverse=inverse)
    return out.reshape(x.shape).copy()
