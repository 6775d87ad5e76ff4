"""
Goldilocks field arithmetic (p = 2^64 - 2^32 + 1).

Provides:
1. Pure-Python scalar operations (host side, ground truth)
2. Vectorised uint64 lane operations for NumPy / CuPy arrays
"""

from .reference import (
    ORDER, EPSILON, TWO_ADICITY, MULTIPLICATIVE_GENERATOR, COSET_SHIFT,
    is_reduced, canonicalize, reduce128,
    add, sub, neg, mul, power, inv, div,
    primitive_root_of_unity, powers,
)
from . import vector

__all__ = [
    "ORDER", "EPSILON", "TWO_ADICITY", "MULTIPLICATIVE_GENERATOR", "COSET_SHIFT",
    "is_reduced", "canonicalize", "reduce128",
    "add", "sub", "neg", "mul", "power", "inv", "div",
    "primitive_root_of_unity", "powers",
    "vector",
]
