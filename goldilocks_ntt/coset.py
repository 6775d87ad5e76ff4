"""
Transform entry points: plain, coset-shifted and low-degree-extended.

    evaluate_poly                 coefficients -> evaluations over H
    evaluate_poly_with_offset     coefficients -> evaluations over h * H', |H'| = n * blowup
    interpolate_poly              evaluations over H -> coefficients
    interpolate_poly_with_offset  evaluations over h * H -> coefficients

Coset shift: evaluating f over h * H equals evaluating g(x) = f(h x) over H,
and g has coefficients c_i * h^i.  The forward path scales coefficients by
h^i before the transform; the inverse path scales the recovered coefficients
by h^-i after it.

Low-degree extension: coefficients are zero-padded at the high-degree end to
n * blowup before the larger transform, so the output extends the polynomial
rather than resampling it.  Every blowup-th output of the extension equals
the blowup = 1 evaluation over the same coset.

Every entry point accepts a single vector (n,) or a batch (rows, n); rows are
transformed independently.  Inputs may be lists, NumPy arrays, PinnedVector
handles or (with the CuPy backend) device arrays; they are never modified.
A row length other than n is rejected rather than truncated or padded.
"""

from typing import Optional

import numpy as np

from .backend import (
    copy_to_host, device_errors, get_array_module, is_device_array,
    synchronize, to_device,
)
from .device import ParamGroup
from .errors import DeviceExecutionError, PreconditionError
from .field import reference as ref
from .field import vector
from .kernel import run_stages
from .staging import PinnedVector
from .twiddles import bit_reverse_indices, is_power_of_two, log2_exact


# ---------------------------------------------------------------------------
# Argument handling
# ---------------------------------------------------------------------------

def _load(vec, n: int, group: ParamGroup):
    """Validate caller input of exactly n columns as reduced uint64 data."""
    if not isinstance(group, ParamGroup):
        raise PreconditionError(
            f"Expected a ParamGroup from GPU_init, got {type(group).__name__}"
        )
    group.ensure_alive()
    log2_exact(n)
    if isinstance(vec, PinnedVector):
        vec = vec.array
    if is_device_array(vec) and group.backend != "cupy":
        raise PreconditionError(
            f"Device array passed to a {group.backend!r} parameter group"
        )
    vec = vector.to_field_array(vec)
    if vec.ndim not in (1, 2):
        raise PreconditionError(f"Expected a 1-D or 2-D input, got {vec.ndim}-D")
    if vec.shape[-1] != n:
        raise PreconditionError(
            f"Input holds {vec.shape[-1]} elements per row, expected n={n}"
        )
    return vec


def _result_view(result, out_shape):
    """The caller's result buffer, checked and trimmed to out_shape."""
    if isinstance(result, PinnedVector):
        result = result.array
    if result is None:
        return np.empty(out_shape, dtype=np.uint64)
    if not (isinstance(result, np.ndarray) or is_device_array(result)):
        raise PreconditionError(
            f"Result buffer must be an array or PinnedVector, got {type(result).__name__}"
        )
    if result.dtype != np.uint64:
        raise PreconditionError(f"Result buffer must be uint64, got {result.dtype}")

    if len(out_shape) == 1:
        if result.ndim != 1 or result.shape[0] < out_shape[0]:
            raise PreconditionError(
                f"Result buffer of shape {result.shape} cannot hold {out_shape[0]} elements"
            )
        return result[:out_shape[0]]
    if result.shape != tuple(out_shape):
        raise PreconditionError(
            f"Result buffer shape {result.shape} != expected {tuple(out_shape)}"
        )
    return result


def _check_offset(domain_offset: int) -> int:
    if not isinstance(domain_offset, (int, np.integer)) or not ref.is_reduced(int(domain_offset)):
        raise PreconditionError(f"Domain offset must be a reduced field element, got {domain_offset!r}")
    if domain_offset == 0:
        raise PreconditionError("Domain offset must be nonzero")
    return int(domain_offset)


def _check_blowup(blowup_factor: int) -> int:
    if not is_power_of_two(blowup_factor):
        raise PreconditionError(
            f"Blowup factor must be a positive power of two, got {blowup_factor!r}"
        )
    return int(blowup_factor)


# ---------------------------------------------------------------------------
# Core dispatch
# ---------------------------------------------------------------------------

def _execute(group: ParamGroup, coeffs, size: int, inverse: bool,
             pre_offset: int = 1, post_offset: int = 1, result=None):
    """Pad, shift, transform and copy back; blocks until the device is done."""
    params = group.params(size)
    xp = group.xp
    n = coeffs.shape[-1]
    rows = 1 if coeffs.ndim == 1 else coeffs.shape[0]
    out_shape = (size,) if coeffs.ndim == 1 else (rows, size)
    view = _result_view(result, out_shape)

    try:
        with group.context.work_buffers((rows, size)) as (front, back):
            src = to_device(coeffs, xp).reshape(rows, n)
            if pre_offset != 1:
                src = vector.mul(src, vector.powers(pre_offset, n, xp))
            front[:, :n] = src
            if size > n:
                front[:, n:] = 0

            out = run_stages(front, back, params, inverse=inverse)
            if post_offset != 1:
                out[...] = vector.mul(out, vector.powers(post_offset, size, xp))

            out = out.reshape(out_shape)
            if is_device_array(view):
                view[...] = out
            else:
                copy_to_host(out, view)
            synchronize(xp)
    except device_errors() as exc:
        raise DeviceExecutionError(
            f"Device fault during size-{size} {'inverse' if inverse else 'forward'} "
            f"transform: {exc}"
        ) from exc
    return view


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------

def evaluate_poly(vec, result, n: int, group: ParamGroup):
    """Evaluate coefficients[n] over the size-n subgroup, natural order."""
    coeffs = _load(vec, n, group)
    return _execute(group, coeffs, n, inverse=False, result=result)


def evaluate_poly_with_offset(vec, n: int, domain_offset: int,
                              blowup_factor: int, result, result_len: int,
                              group: ParamGroup):
    """Evaluate coefficients[n] over domain_offset * H, |H| = n * blowup_factor.

    Raises:
        PreconditionError: result_len != n * blowup_factor, zero offset, or a
            size that is not a power of two / not initialised.
    """
    blowup_factor = _check_blowup(blowup_factor)
    size = n * blowup_factor
    if result_len != size:
        raise PreconditionError(
            f"result_len={result_len} must equal n * blowup_factor = {size}"
        )
    offset = _check_offset(domain_offset)
    coeffs = _load(vec, n, group)
    return _execute(group, coeffs, size, inverse=False,
                    pre_offset=offset, result=result)


def interpolate_poly(vec, result, n: int, group: ParamGroup):
    """Recover coefficients[n] from evaluations over the size-n subgroup."""
    evals = _load(vec, n, group)
    return _execute(group, evals, n, inverse=True, result=result)


def interpolate_poly_with_offset(vec, result, n: int, domain_offset: int,
                                 group: ParamGroup):
    """Recover coefficients[n] from evaluations over domain_offset * H."""
    offset = _check_offset(domain_offset)
    evals = _load(vec, n, group)
    return _execute(group, evals, n, inverse=True,
                    post_offset=ref.inv(offset), result=result)


def lde(vec, n: int, blowup_factor: int, group: ParamGroup, result=None):
    """Low-degree extension over the unshifted subgroup of size n * blowup."""
    return evaluate_poly_with_offset(vec, n, 1, blowup_factor, result,
                                     n * blowup_factor, group)


def coset_lde(vec, n: int, blowup_factor: int, group: ParamGroup,
              shift: int = ref.COSET_SHIFT, result=None):
    """Low-degree extension over shift * H, the layout FRI commits to."""
    return evaluate_poly_with_offset(vec, n, shift, blowup_factor, result,
                                     n * blowup_factor, group)


def reverse_index_bits(values, group: Optional[ParamGroup] = None):
    """Permute the last axis into bit-reversed index order.

    Uses the group's cached permutation when a group is given.
    """
    if isinstance(values, PinnedVector):
        values = values.array
    if not is_device_array(values):
        values = np.asarray(values)
    n = values.shape[-1]
    if group is not None:
        perm = group.bit_reverse(n)
    else:
        perm = bit_reverse_indices(log2_exact(n), np)
    if is_device_array(values):
        perm = get_array_module(values).asarray(perm)
    elif is_device_array(perm):
        perm = perm.get()
    return values[..., perm]
