"""
Naive O(n^2) transforms in pure Python.

These serve as ground truth for correctness testing.  Production
transforms use the Stockham kernel.

All operations are exact (Python ints, field.reference arithmetic).
"""

from typing import List, Sequence

from .field import reference as ref


def evaluate_at(coeffs: Sequence[int], x: int) -> int:
    """Horner evaluation of sum(c_i x^i)."""
    acc = 0
    for c in reversed(coeffs):
        acc = ref.add(ref.mul(acc, x), int(c))
    return acc


def naive_evaluate(coeffs: Sequence[int], size: int = None,
                   offset: int = 1) -> List[int]:
    """Evaluate over offset * <w>, |<w>| = size (default len(coeffs)).

    Points are offset * w^i for i = 0..size-1, natural order.
    """
    if size is None:
        size = len(coeffs)
    omega = ref.primitive_root_of_unity(size.bit_length() - 1)
    points = [ref.mul(offset, w) for w in ref.powers(omega, size)]
    return [evaluate_at(coeffs, x) for x in points]


def naive_interpolate(evals: Sequence[int], offset: int = 1) -> List[int]:
    """Coefficients of the degree < n polynomial taking evals over offset * <w>."""
    n = len(evals)
    omega_inv = ref.inv(ref.primitive_root_of_unity(n.bit_length() - 1))
    n_inv = ref.inv(n)
    offset_inv = ref.inv(offset)

    coeffs = []
    scale = n_inv
    for j in range(n):
        step = ref.power(omega_inv, j)
        acc = 0
        w = 1
        for v in evals:
            acc = ref.add(acc, ref.mul(int(v), w))
            w = ref.mul(w, step)
        coeffs.append(ref.mul(acc, scale))
        scale = ref.mul(scale, offset_inv)
    return coeffs
