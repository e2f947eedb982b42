"""Sorting Engine.

Stable in-place sorts of index arrays together with a permutation ``P``:

    - ``P`` is in/out. On return ``P = P_in[perm]`` where ``perm`` is the
      sorting permutation, so starting from the identity
      (:func:`create_identity_permutation`) the values are reordered with
      ``gthr(handle, original_val, sorted_val, P, IndexBase.ZERO)``.
    - Duplicates are never merged; equal keys keep their input order.

Each sort needs a scratch buffer sized by its ``*_buffer_size`` function.
"""

import logging

import numpy as np

from . import _kernel as K
from ._dispatch import kind_for, require_descr, require_index_output, require_instance
from .descr import IndexBase, MatDescr
from .error import InvalidValueError
from .handle import Handle, require_handle
from .workspace import Arena, array_bytes, check_buffer

logger = logging.getLogger("acsparse.sorting")

__all__ = [
    'create_identity_permutation',
    'coosort_buffer_size', 'coosort_by_row', 'coosort_by_column',
    'csrsort_buffer_size', 'csrsort',
    'cscsort_buffer_size', 'cscsort',
    'gthr',
]


def _check_dims(m: int, n: int, nnz: int) -> None:
    if m < 0 or n < 0 or nnz < 0:
        raise InvalidValueError(f"m, n and nnz must be >= 0, got {m}, {n}, {nnz}")


def _scratch_bytes(nnz: int) -> int:
    return array_bytes(nnz, np.int64)


def create_identity_permutation(handle: Handle, n: int, P: np.ndarray) -> None:
    """P[k] = k for k < n."""
    handle = require_handle(handle)
    if n < 0:
        raise InvalidValueError(f"n must be >= 0, got {n}")
    require_index_output(P, n, "P")
    handle.enqueue(lambda: K.identity_permutation(n, P), "create_identity_permutation")


# =============================================================================
# COO
# =============================================================================

def coosort_buffer_size(handle: Handle, m: int, n: int, nnz: int,
                        row_ind: np.ndarray, col_ind: np.ndarray) -> int:
    require_handle(handle)
    _check_dims(m, n, nnz)
    return _scratch_bytes(nnz)


def _coosort(handle, m, n, nnz, row_ind, col_ind, P, buffer, by_row: bool) -> None:
    op = "coosort_by_row" if by_row else "coosort_by_column"
    handle = require_handle(handle)
    _check_dims(m, n, nnz)
    require_index_output(row_ind, nnz, "row_ind")
    require_index_output(col_ind, nnz, "col_ind")
    require_index_output(P, nnz, "P")
    check_buffer(buffer, _scratch_bytes(nnz), op)
    primary, secondary = (row_ind, col_ind) if by_row else (col_ind, row_ind)

    def sort():
        scratch = Arena(buffer).take(np.int64, nnz)
        K.sort_coo(primary, secondary, nnz, P, scratch)

    handle.enqueue(sort, op)


def coosort_by_row(handle: Handle, m: int, n: int, nnz: int, row_ind: np.ndarray,
                   col_ind: np.ndarray, P: np.ndarray, buffer: np.ndarray) -> None:
    """Stable sort of COO entries by (row, column)."""
    _coosort(handle, m, n, nnz, row_ind, col_ind, P, buffer, True)


def coosort_by_column(handle: Handle, m: int, n: int, nnz: int, row_ind: np.ndarray,
                      col_ind: np.ndarray, P: np.ndarray, buffer: np.ndarray) -> None:
    """Stable sort of COO entries by (column, row)."""
    _coosort(handle, m, n, nnz, row_ind, col_ind, P, buffer, False)


# =============================================================================
# CSR / CSC
# =============================================================================

def csrsort_buffer_size(handle: Handle, m: int, n: int, nnz: int,
                        row_ptr: np.ndarray, col_ind: np.ndarray) -> int:
    require_handle(handle)
    _check_dims(m, n, nnz)
    return _scratch_bytes(nnz)


def cscsort_buffer_size(handle: Handle, m: int, n: int, nnz: int,
                        col_ptr: np.ndarray, row_ind: np.ndarray) -> int:
    require_handle(handle)
    _check_dims(m, n, nnz)
    return _scratch_bytes(nnz)


def _compressed_sort(handle, count, nnz, descr, ptr, ind, P, buffer, op) -> None:
    require_descr(descr)
    require_index_output(ptr, count + 1, "ptr")
    require_index_output(ind, nnz, "indices")
    require_index_output(P, nnz, "P")
    check_buffer(buffer, _scratch_bytes(nnz), op)

    def sort():
        # The pointer may come from earlier work on the stream
        spanned = int(ptr[count]) - int(ptr[0])
        if spanned != nnz:
            raise InvalidValueError(f"{op}: pointer spans {spanned} entries, nnz is {nnz}")
        scratch = Arena(buffer).take(np.int64, nnz)
        K.sort_compressed(count, ptr, ind, P, scratch)

    handle.enqueue(sort, op)


def csrsort(handle: Handle, m: int, n: int, nnz: int, descr: MatDescr, row_ptr: np.ndarray,
            col_ind: np.ndarray, P: np.ndarray, buffer: np.ndarray) -> None:
    """Stable sort of column indices within each row."""
    handle = require_handle(handle)
    _check_dims(m, n, nnz)
    _compressed_sort(handle, m, nnz, descr, row_ptr, col_ind, P, buffer, "csrsort")


def cscsort(handle: Handle, m: int, n: int, nnz: int, descr: MatDescr, col_ptr: np.ndarray,
            row_ind: np.ndarray, P: np.ndarray, buffer: np.ndarray) -> None:
    """Stable sort of row indices within each column."""
    handle = require_handle(handle)
    _check_dims(m, n, nnz)
    _compressed_sort(handle, n, nnz, descr, col_ptr, row_ind, P, buffer, "cscsort")


# =============================================================================
# Gather
# =============================================================================

def gthr(handle: Handle, y: np.ndarray, x_val: np.ndarray, x_ind: np.ndarray,
         index_base: IndexBase) -> None:
    """Gather ``x_val[k] = y[x_ind[k] - base]`` for every ``k < len(x_ind)``."""
    handle = require_handle(handle)
    require_instance(y, np.ndarray, "y")
    require_instance(x_val, np.ndarray, "x_val")
    try:
        base = int(IndexBase(index_base))
    except ValueError as e:
        raise InvalidValueError(f"index_base: {e}") from e
    nnz = require_index_output(x_ind, 0, "x_ind").shape[0]
    kind_for(handle, y.dtype, "gthr")
    if x_val.dtype != y.dtype or x_val.ndim != 1 or x_val.shape[0] < nnz:
        raise InvalidValueError(
            f"x_val must be a 1-D {y.dtype} array of at least {nnz} entries"
        )
    if not x_val.flags.writeable:
        raise InvalidValueError("x_val must be writeable")
    handle.enqueue(lambda: K.gather(y, x_ind, nnz, base, x_val), "gthr")
