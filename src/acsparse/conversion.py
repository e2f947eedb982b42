"""Conversion Engine.

Layout-changing conversions run in two phases:

    1. *count*: writes the destination pointer array and returns the
       total entry (or block) count so the caller can size the index and
       value arrays. Never touches value data and may be repeated.
    2. *fill*: writes destination indices and values given that pointer.

Count phases hand a host value back, so they synchronize the handle's
stream before returning. Fill phases are enqueued and return at once.

Example:
    >>> nnz_per_row = np.empty(m, dtype=np.int32)
    >>> total = acsparse.nnz(handle, Direction.ROW, A, descr, nnz_per_row)
    >>> row_ptr = np.empty(m + 1, np.int32)
    >>> col_ind, val = np.empty(total, np.int32), np.empty(total, A.dtype)
    >>> acsparse.dense2csr(handle, A, descr, nnz_per_row, val, row_ptr, col_ind)
"""

import logging
from typing import Any, Optional

import numpy as np

from . import _kernel as K
from ._dispatch import (
    kind_for,
    require_dense,
    require_descr,
    require_index_output,
    require_instance,
    require_same_base,
    require_value_output,
    submit_and_wait,
)
from .descr import Action, Direction, HybPartition, IndexBase, MatDescr
from .error import InvalidValueError
from .handle import Handle, require_handle
from .sparse import BSRMatrix, CSCMatrix, CSRMatrix, GEBSRMatrix, HybMatrix
from .sparse._bsr import block_counts
from .workspace import Arena, array_bytes, check_buffer

logger = logging.getLogger("acsparse.conversion")

__all__ = [
    # Dense
    'nnz', 'dense2csr', 'dense2csc', 'csr2dense', 'csc2dense',
    # COO
    'coo2csr', 'csr2coo',
    # Transpose
    'csr2csc',
    # Blocked
    'csr2bsr_nnz', 'csr2bsr', 'bsr2csr',
    'csr2gebsr_buffer_size', 'csr2gebsr_nnz', 'csr2gebsr', 'gebsr2csr',
    'gebsr2gebsr_buffer_size', 'gebsr2gebsr_nnz', 'gebsr2gebsr',
    # HYB
    'csr2hyb', 'hyb2csr', 'dense2hyb', 'hyb2dense',
    # Compress
    'nnz_compress', 'csr2csr_compress',
]


def _index_base(index_base: Any) -> int:
    try:
        return int(IndexBase(index_base))
    except ValueError as e:
        raise InvalidValueError(f"index_base: {e}") from e


def _direction(direction: Any) -> Direction:
    try:
        return Direction(direction)
    except ValueError as e:
        raise InvalidValueError(f"direction: {e}") from e


def _require_capacity(nnz: int, ind: np.ndarray, val: np.ndarray, op: str) -> None:
    """Output room for an entry count only known once earlier work has run."""
    if ind.shape[0] < nnz or val.shape[0] < nnz:
        raise InvalidValueError(
            f"{op}: outputs must hold {nnz} entries, got {ind.shape[0]}/{val.shape[0]}"
        )


# =============================================================================
# Dense
# =============================================================================

def nnz(handle: Handle, direction: Direction, A: np.ndarray, descr: MatDescr,
        nnz_per_row_col: np.ndarray) -> int:
    """Count nonzeros per row (ROW) or per column (COLUMN) of a dense matrix.

    Returns:
        Total number of nonzeros.
    """
    handle = require_handle(handle)
    direction = _direction(direction)
    require_descr(descr)
    A = require_dense(A, None, "A")
    kind_for(handle, A.dtype, "nnz")
    length = A.shape[0] if direction == Direction.ROW else A.shape[1]
    require_index_output(nnz_per_row_col, length, "nnz_per_row_col")

    total = submit_and_wait(handle, lambda: K.dense_count(A, direction, nnz_per_row_col), "nnz")
    logger.debug("nnz: %d nonzeros over %d %ss", total, length, direction.name.lower())
    return total


def _dense2compressed(handle, A, descr, counts, val, ind, ptr, by_row: bool) -> None:
    op = "dense2csr" if by_row else "dense2csc"
    handle = require_handle(handle)
    require_descr(descr)
    A = require_dense(A, None, "A")
    kind_for(handle, A.dtype, op)
    count = A.shape[0] if by_row else A.shape[1]
    require_index_output(counts, count, "nnz_per_row" if by_row else "nnz_per_col")
    total = int(np.sum(counts[:count], dtype=np.int64))
    require_index_output(ptr, count + 1, "row_ptr" if by_row else "col_ptr")
    require_index_output(ind, total, "col_ind" if by_row else "row_ind")
    require_value_output(val, total, A.dtype, "val")
    base = descr.base
    fill = K.dense2csr_fill if by_row else K.dense2csc_fill
    handle.enqueue(lambda: fill(A, counts, base, ptr, ind, val), op)


def dense2csr(handle: Handle, A: np.ndarray, descr: MatDescr, nnz_per_row: np.ndarray,
              csr_val: np.ndarray, csr_row_ptr: np.ndarray, csr_col_ind: np.ndarray) -> None:
    """Fill CSR arrays from a dense matrix using counts from :func:`nnz`."""
    _dense2compressed(handle, A, descr, nnz_per_row, csr_val, csr_col_ind, csr_row_ptr, True)


def dense2csc(handle: Handle, A: np.ndarray, descr: MatDescr, nnz_per_col: np.ndarray,
              csc_val: np.ndarray, csc_row_ind: np.ndarray, csc_col_ptr: np.ndarray) -> None:
    """Fill CSC arrays from a dense matrix using counts from :func:`nnz`."""
    _dense2compressed(handle, A, descr, nnz_per_col, csc_val, csc_row_ind, csc_col_ptr, False)


def csr2dense(handle: Handle, descr: MatDescr, csr: CSRMatrix, out: np.ndarray) -> None:
    handle = require_handle(handle)
    require_descr(descr)
    require_instance(csr, CSRMatrix, "csr")
    require_same_base(descr, csr, "csr2dense")
    kind_for(handle, csr.dtype, "csr2dense")
    require_dense(out, csr.shape, "out", dtype=csr.dtype, writeable=True)
    base = descr.base
    handle.enqueue(
        lambda: K.compressed2dense(csr.m, csr.row_ptr, csr.col_ind, csr.val, base, out, True),
        "csr2dense",
    )


def csc2dense(handle: Handle, descr: MatDescr, csc: CSCMatrix, out: np.ndarray) -> None:
    handle = require_handle(handle)
    require_descr(descr)
    require_instance(csc, CSCMatrix, "csc")
    require_same_base(descr, csc, "csc2dense")
    kind_for(handle, csc.dtype, "csc2dense")
    require_dense(out, csc.shape, "out", dtype=csc.dtype, writeable=True)
    base = descr.base
    handle.enqueue(
        lambda: K.compressed2dense(csc.n, csc.col_ptr, csc.row_ind, csc.val, base, out, False),
        "csc2dense",
    )


# =============================================================================
# COO
# =============================================================================

def coo2csr(handle: Handle, coo_row_ind: np.ndarray, m: int, index_base: IndexBase,
            csr_row_ptr: np.ndarray) -> None:
    """Compress row-sorted COO row indices into a CSR row pointer."""
    handle = require_handle(handle)
    base = _index_base(index_base)
    if m < 0:
        raise InvalidValueError(f"m must be >= 0, got {m}")
    nnz = require_index_output(coo_row_ind, 0, "coo_row_ind").shape[0]
    require_index_output(csr_row_ptr, m + 1, "csr_row_ptr")
    handle.enqueue(lambda: K.coo2csr(coo_row_ind, nnz, m, base, csr_row_ptr), "coo2csr")


def csr2coo(handle: Handle, csr_row_ptr: np.ndarray, nnz: int, index_base: IndexBase,
            coo_row_ind: np.ndarray) -> None:
    """Expand a CSR row pointer into COO row indices."""
    handle = require_handle(handle)
    base = _index_base(index_base)
    m = require_index_output(csr_row_ptr, 1, "csr_row_ptr").shape[0] - 1
    if nnz < 0:
        raise InvalidValueError(f"nnz must be >= 0, got {nnz}")
    require_index_output(coo_row_ind, nnz, "coo_row_ind")
    handle.enqueue(lambda: K.csr2coo(csr_row_ptr, nnz, m, base, coo_row_ind), "csr2coo")


# =============================================================================
# Transpose
# =============================================================================

def csr2csc(handle: Handle, csr: CSRMatrix, action: Action, index_base: IndexBase,
            csc_val: Optional[np.ndarray], csc_row_ind: np.ndarray,
            csc_col_ptr: np.ndarray) -> None:
    """Stable transpose of CSR storage into CSC.

    ``Action.SYMBOLIC`` fills only the structure; ``csc_val`` may be None.
    """
    handle = require_handle(handle)
    require_instance(csr, CSRMatrix, "csr")
    try:
        action = Action(action)
    except ValueError as e:
        raise InvalidValueError(f"action: {e}") from e
    base_out = _index_base(index_base)
    kind_for(handle, csr.dtype, "csr2csc")
    nnz = csr.nnz
    require_index_output(csc_row_ind, nnz, "csc_row_ind")
    require_index_output(csc_col_ptr, csr.n + 1, "csc_col_ptr")
    if action == Action.NUMERIC:
        require_value_output(csc_val, nnz, csr.dtype, "csc_val")
    handle.enqueue(
        lambda: K.csr2csc(csr.m, csr.n, csr.row_ptr, csr.col_ind, csr.val, csr.base,
                          action, base_out, csc_val, csc_row_ind, csc_col_ptr),
        "csr2csc",
    )


# =============================================================================
# Blocked
# =============================================================================

def _check_block_dims(row_block_dim: int, col_block_dim: int) -> None:
    if row_block_dim < 1 or col_block_dim < 1:
        raise InvalidValueError(
            f"block dimensions must be >= 1, got {row_block_dim}x{col_block_dim}"
        )


def csr2gebsr_buffer_size(handle: Handle, direction: Direction, csr: CSRMatrix,
                          row_block_dim: int, col_block_dim: int) -> int:
    """Scratch bytes for :func:`csr2gebsr_nnz` / :func:`csr2gebsr`."""
    require_handle(handle)
    _direction(direction)
    require_instance(csr, CSRMatrix, "csr")
    _check_block_dims(row_block_dim, col_block_dim)
    return 2 * array_bytes(csr.nnz, np.int64)


def _block_scratch(csr: CSRMatrix, buffer: np.ndarray):
    rows, cols, _ = csr.scalar_entries()
    arena = Arena(buffer)
    r = arena.take(np.int64, rows.size)
    c = arena.take(np.int64, cols.size)
    r[:] = rows
    c[:] = cols
    return r, c


def csr2gebsr_nnz(handle: Handle, direction: Direction, csr: CSRMatrix, descr_c: MatDescr,
                  bsr_row_ptr: np.ndarray, row_block_dim: int, col_block_dim: int,
                  buffer: np.ndarray) -> int:
    """Count nonzero blocks per block row.

    Returns:
        nnzb, the number of nonzero blocks.
    """
    handle = require_handle(handle)
    _direction(direction)
    require_instance(csr, CSRMatrix, "csr")
    require_descr(descr_c, "descr_c")
    _check_block_dims(row_block_dim, col_block_dim)
    mb, nb = block_counts(csr.shape, row_block_dim, col_block_dim)
    require_index_output(bsr_row_ptr, mb + 1, "bsr_row_ptr")
    check_buffer(buffer, 2 * array_bytes(csr.nnz, np.int64), "csr2gebsr_nnz")
    base_c = descr_c.base

    def count():
        rows, cols = _block_scratch(csr, buffer)
        return K.gebsr_count(rows, cols, mb, nb, row_block_dim, col_block_dim,
                             base_c, bsr_row_ptr)

    nnzb = submit_and_wait(handle, count, "csr2gebsr_nnz")
    logger.debug("csr2gebsr_nnz: %d blocks of %dx%d", nnzb, row_block_dim, col_block_dim)
    return nnzb


def csr2gebsr(handle: Handle, direction: Direction, csr: CSRMatrix, descr_c: MatDescr,
              bsr_val: np.ndarray, bsr_row_ptr: np.ndarray, bsr_col_ind: np.ndarray,
              row_block_dim: int, col_block_dim: int, buffer: np.ndarray) -> None:
    """Fill block column indices and block values (pointer from the count phase)."""
    handle = require_handle(handle)
    direction = _direction(direction)
    require_instance(csr, CSRMatrix, "csr")
    require_descr(descr_c, "descr_c")
    _check_block_dims(row_block_dim, col_block_dim)
    kind_for(handle, csr.dtype, "csr2gebsr")
    mb, nb = block_counts(csr.shape, row_block_dim, col_block_dim)
    require_index_output(bsr_row_ptr, mb + 1, "bsr_row_ptr")
    nnzb = int(bsr_row_ptr[mb]) - int(bsr_row_ptr[0])
    require_index_output(bsr_col_ind, nnzb, "bsr_col_ind")
    require_value_output(bsr_val, nnzb * row_block_dim * col_block_dim, csr.dtype, "bsr_val")
    check_buffer(buffer, 2 * array_bytes(csr.nnz, np.int64), "csr2gebsr")
    base_c = descr_c.base

    def fill():
        rows, cols = _block_scratch(csr, buffer)
        K.gebsr_fill(rows, cols, csr.val[:csr.nnz], nb, row_block_dim, col_block_dim,
                     direction, base_c, bsr_col_ind, bsr_val)

    handle.enqueue(fill, "csr2gebsr")


def csr2bsr_nnz(handle: Handle, direction: Direction, csr: CSRMatrix, block_dim: int,
                descr_c: MatDescr, bsr_row_ptr: np.ndarray) -> int:
    """Count nonzero square blocks per block row; returns nnzb."""
    handle = require_handle(handle)
    _direction(direction)
    require_instance(csr, CSRMatrix, "csr")
    require_descr(descr_c, "descr_c")
    _check_block_dims(block_dim, block_dim)
    mb, nb = block_counts(csr.shape, block_dim, block_dim)
    require_index_output(bsr_row_ptr, mb + 1, "bsr_row_ptr")
    base_c = descr_c.base

    def count():
        rows, cols, _ = csr.scalar_entries()
        return K.gebsr_count(rows, cols, mb, nb, block_dim, block_dim, base_c, bsr_row_ptr)

    return submit_and_wait(handle, count, "csr2bsr_nnz")


def csr2bsr(handle: Handle, direction: Direction, csr: CSRMatrix, block_dim: int,
            descr_c: MatDescr, bsr_val: np.ndarray, bsr_row_ptr: np.ndarray,
            bsr_col_ind: np.ndarray) -> None:
    handle = require_handle(handle)
    direction = _direction(direction)
    require_instance(csr, CSRMatrix, "csr")
    require_descr(descr_c, "descr_c")
    _check_block_dims(block_dim, block_dim)
    kind_for(handle, csr.dtype, "csr2bsr")
    mb, nb = block_counts(csr.shape, block_dim, block_dim)
    require_index_output(bsr_row_ptr, mb + 1, "bsr_row_ptr")
    nnzb = int(bsr_row_ptr[mb]) - int(bsr_row_ptr[0])
    require_index_output(bsr_col_ind, nnzb, "bsr_col_ind")
    require_value_output(bsr_val, nnzb * block_dim * block_dim, csr.dtype, "bsr_val")
    base_c = descr_c.base

    def fill():
        rows, cols, _ = csr.scalar_entries()
        K.gebsr_fill(rows, cols, csr.val[:csr.nnz], nb, block_dim, block_dim,
                     direction, base_c, bsr_col_ind, bsr_val)

    handle.enqueue(fill, "csr2bsr")


def gebsr2csr(handle: Handle, gebsr: GEBSRMatrix, descr_c: MatDescr, csr_val: np.ndarray,
              csr_row_ptr: np.ndarray, csr_col_ind: np.ndarray) -> None:
    """Expand block storage to CSR.

    Every stored cell inside the scalar shape becomes an entry, explicit
    zeros included; padding cells beyond ``m``/``n`` are dropped.
    """
    handle = require_handle(handle)
    require_instance(gebsr, GEBSRMatrix, "gebsr")
    require_descr(descr_c, "descr_c")
    kind_for(handle, gebsr.dtype, "gebsr2csr")
    require_index_output(csr_row_ptr, gebsr.m + 1, "csr_row_ptr")
    require_index_output(csr_col_ind, 0, "csr_col_ind")
    require_value_output(csr_val, 0, gebsr.dtype, "csr_val")
    base_c = descr_c.base

    def expand():
        rows, cols, pos = gebsr.scalar_entries()
        _require_capacity(rows.size, csr_col_ind, csr_val, "gebsr2csr")
        K.counts_to_ptr(np.bincount(rows, minlength=gebsr.m), base_c, csr_row_ptr)
        csr_col_ind[:cols.size] = cols + base_c
        csr_val[:pos.size] = gebsr.val[pos]

    handle.enqueue(expand, "gebsr2csr")


def bsr2csr(handle: Handle, bsr: BSRMatrix, descr_c: MatDescr, csr_val: np.ndarray,
            csr_row_ptr: np.ndarray, csr_col_ind: np.ndarray) -> None:
    """Expand square-block storage to CSR (see :func:`gebsr2csr`)."""
    require_instance(bsr, GEBSRMatrix, "bsr")
    if bsr.row_block_dim != bsr.col_block_dim:
        raise InvalidValueError(
            f"bsr2csr needs square blocks, got {bsr.row_block_dim}x{bsr.col_block_dim}"
        )
    gebsr2csr(handle, bsr, descr_c, csr_val, csr_row_ptr, csr_col_ind)


def _gebsr_scratch_bytes(gebsr: GEBSRMatrix) -> int:
    return 2 * array_bytes(gebsr.nnzb * gebsr.block_size, np.int64)


def gebsr2gebsr_buffer_size(handle: Handle, gebsr: GEBSRMatrix, row_block_dim_c: int,
                            col_block_dim_c: int) -> int:
    """Scratch bytes for re-blocking ``gebsr``."""
    require_handle(handle)
    require_instance(gebsr, GEBSRMatrix, "gebsr")
    _check_block_dims(row_block_dim_c, col_block_dim_c)
    return _gebsr_scratch_bytes(gebsr)


def _cell_scratch(gebsr: GEBSRMatrix, buffer: np.ndarray):
    rows, cols, pos = gebsr.scalar_entries()
    arena = Arena(buffer)
    r = arena.take(np.int64, rows.size)
    c = arena.take(np.int64, cols.size)
    r[:] = rows
    c[:] = cols
    return r, c, pos


def gebsr2gebsr_nnz(handle: Handle, gebsr: GEBSRMatrix, descr_c: MatDescr,
                    bsr_row_ptr_c: np.ndarray, row_block_dim_c: int, col_block_dim_c: int,
                    buffer: np.ndarray) -> int:
    """Count blocks of the re-blocked matrix; returns nnzb of the result."""
    handle = require_handle(handle)
    require_instance(gebsr, GEBSRMatrix, "gebsr")
    require_descr(descr_c, "descr_c")
    _check_block_dims(row_block_dim_c, col_block_dim_c)
    mb, nb = block_counts(gebsr.shape, row_block_dim_c, col_block_dim_c)
    require_index_output(bsr_row_ptr_c, mb + 1, "bsr_row_ptr_c")
    check_buffer(buffer, _gebsr_scratch_bytes(gebsr), "gebsr2gebsr_nnz")
    base_c = descr_c.base

    def count():
        rows, cols, _ = _cell_scratch(gebsr, buffer)
        return K.gebsr_count(rows, cols, mb, nb, row_block_dim_c, col_block_dim_c,
                             base_c, bsr_row_ptr_c)

    return submit_and_wait(handle, count, "gebsr2gebsr_nnz")


def gebsr2gebsr(handle: Handle, gebsr: GEBSRMatrix, descr_c: MatDescr,
                bsr_val_c: np.ndarray, bsr_row_ptr_c: np.ndarray, bsr_col_ind_c: np.ndarray,
                row_block_dim_c: int, col_block_dim_c: int, direction_c: Direction,
                buffer: np.ndarray) -> None:
    """Re-block into ``row_block_dim_c x col_block_dim_c`` blocks stored in ``direction_c``."""
    handle = require_handle(handle)
    require_instance(gebsr, GEBSRMatrix, "gebsr")
    require_descr(descr_c, "descr_c")
    direction_c = _direction(direction_c)
    _check_block_dims(row_block_dim_c, col_block_dim_c)
    kind_for(handle, gebsr.dtype, "gebsr2gebsr")
    mb, nb = block_counts(gebsr.shape, row_block_dim_c, col_block_dim_c)
    require_index_output(bsr_row_ptr_c, mb + 1, "bsr_row_ptr_c")
    nnzb = int(bsr_row_ptr_c[mb]) - int(bsr_row_ptr_c[0])
    require_index_output(bsr_col_ind_c, nnzb, "bsr_col_ind_c")
    require_value_output(bsr_val_c, nnzb * row_block_dim_c * col_block_dim_c,
                         gebsr.dtype, "bsr_val_c")
    check_buffer(buffer, _gebsr_scratch_bytes(gebsr), "gebsr2gebsr")
    base_c = descr_c.base

    def fill():
        rows, cols, pos = _cell_scratch(gebsr, buffer)
        K.gebsr_fill(rows, cols, gebsr.val[pos], nb, row_block_dim_c, col_block_dim_c,
                     direction_c, base_c, bsr_col_ind_c, bsr_val_c)

    handle.enqueue(fill, "gebsr2gebsr")


# =============================================================================
# HYB
# =============================================================================

def _partition(partition: Any, user_ell_width: int) -> HybPartition:
    try:
        partition = HybPartition(partition)
    except ValueError as e:
        raise InvalidValueError(f"partition: {e}") from e
    if partition == HybPartition.USER and user_ell_width < 0:
        raise InvalidValueError(f"user_ell_width must be >= 0, got {user_ell_width}")
    return partition


def csr2hyb(handle: Handle, csr: CSRMatrix, hyb: HybMatrix, user_ell_width: int = 0,
            partition: HybPartition = HybPartition.AUTO) -> None:
    """Split a CSR matrix into the ELL and COO parts of ``hyb``.

    ``AUTO`` picks the mean row length (rounded up) as ELL width, ``MAX``
    the longest row, ``USER`` takes ``user_ell_width``.
    """
    handle = require_handle(handle)
    require_instance(csr, CSRMatrix, "csr")
    require_instance(hyb, HybMatrix, "hyb")
    hyb._check_alive()
    partition = _partition(partition, user_ell_width)
    kind_for(handle, csr.dtype, "csr2hyb")
    hyb._declare(csr.shape, csr.dtype, partition, csr.descr)

    def convert():
        storage = K.csr2hyb(csr.m, csr.n, csr.row_ptr, csr.col_ind, csr.val, csr.base,
                            partition, user_ell_width)
        hyb._assign(storage)
        logger.debug("csr2hyb: ell width %d, %d overflow entries",
                     storage.ell_width, storage.coo_row.size)

    handle.enqueue(convert, "csr2hyb")


def dense2hyb(handle: Handle, A: np.ndarray, descr: MatDescr, nnz_per_row: np.ndarray,
              hyb: HybMatrix, user_ell_width: int = 0,
              partition: HybPartition = HybPartition.AUTO) -> None:
    """Fill ``hyb`` from a dense matrix using counts from :func:`nnz`."""
    handle = require_handle(handle)
    require_descr(descr)
    A = require_dense(A, None, "A")
    require_instance(hyb, HybMatrix, "hyb")
    hyb._check_alive()
    partition = _partition(partition, user_ell_width)
    kind_for(handle, A.dtype, "dense2hyb")
    m, n = A.shape
    require_index_output(nnz_per_row, m, "nnz_per_row")
    hyb._declare(A.shape, A.dtype, partition, descr)

    def convert():
        total = int(np.sum(nnz_per_row[:m], dtype=np.int64))
        row_ptr = np.empty(m + 1, dtype=np.int64)
        col_ind = np.empty(total, dtype=np.int64)
        val = np.empty(total, dtype=A.dtype)
        K.dense2csr_fill(A, nnz_per_row, 0, row_ptr, col_ind, val)
        hyb._assign(K.csr2hyb(m, n, row_ptr, col_ind, val, 0, partition, user_ell_width))

    handle.enqueue(convert, "dense2hyb")


def hyb2csr(handle: Handle, hyb: HybMatrix, descr: MatDescr, csr_val: np.ndarray,
            csr_row_ptr: np.ndarray, csr_col_ind: np.ndarray) -> None:
    """Merge the ELL and COO parts back into CSR (ELL entries of a row first)."""
    handle = require_handle(handle)
    require_instance(hyb, HybMatrix, "hyb")
    require_descr(descr)
    (m, _), dtype = hyb.layout
    kind_for(handle, dtype, "hyb2csr")
    require_index_output(csr_row_ptr, m + 1, "csr_row_ptr")
    require_index_output(csr_col_ind, 0, "csr_col_ind")
    require_value_output(csr_val, 0, dtype, "csr_val")
    base = descr.base

    def convert():
        storage = hyb.storage
        _require_capacity(storage.nnz, csr_col_ind, csr_val, "hyb2csr")
        K.hyb2csr_count(storage, base, csr_row_ptr)
        K.hyb2csr_fill(storage, base, csr_col_ind, csr_val)

    handle.enqueue(convert, "hyb2csr")


def hyb2dense(handle: Handle, descr: MatDescr, hyb: HybMatrix, out: np.ndarray) -> None:
    handle = require_handle(handle)
    require_descr(descr)
    require_instance(hyb, HybMatrix, "hyb")
    shape, dtype = hyb.layout
    kind_for(handle, dtype, "hyb2dense")
    require_dense(out, shape, "out", dtype=dtype, writeable=True)

    def convert():
        storage = hyb.storage
        row_ptr = np.empty(storage.m + 1, dtype=np.int64)
        col_ind = np.empty(storage.nnz, dtype=np.int64)
        val = np.empty(storage.nnz, dtype=storage.ell_val.dtype)
        K.hyb2csr_count(storage, 0, row_ptr)
        K.hyb2csr_fill(storage, 0, col_ind, val)
        K.compressed2dense(storage.m, row_ptr, col_ind, val, 0, out, True)

    handle.enqueue(convert, "hyb2dense")


# =============================================================================
# Compress
# =============================================================================

def nnz_compress(handle: Handle, csr: CSRMatrix, tol: float, nnz_per_row: np.ndarray) -> int:
    """Count entries with ``|v| > tol`` per row; returns the total."""
    handle = require_handle(handle)
    require_instance(csr, CSRMatrix, "csr")
    if tol < 0:
        raise InvalidValueError(f"tol must be >= 0, got {tol}")
    kind_for(handle, csr.dtype, "nnz_compress")
    require_index_output(nnz_per_row, csr.m, "nnz_per_row")
    return submit_and_wait(
        handle,
        lambda: K.compress_count(csr.m, csr.row_ptr, csr.val, tol, nnz_per_row),
        "nnz_compress",
    )


def csr2csr_compress(handle: Handle, csr: CSRMatrix, tol: float, nnz_per_row: np.ndarray,
                     csr_val_c: np.ndarray, csr_row_ptr_c: np.ndarray,
                     csr_col_ind_c: np.ndarray, descr_c: Optional[MatDescr] = None) -> None:
    """Copy ``csr`` dropping entries with ``|v| <= tol``; order is preserved."""
    handle = require_handle(handle)
    require_instance(csr, CSRMatrix, "csr")
    if tol < 0:
        raise InvalidValueError(f"tol must be >= 0, got {tol}")
    kind_for(handle, csr.dtype, "csr2csr_compress")
    require_index_output(nnz_per_row, csr.m, "nnz_per_row")
    total = int(np.sum(nnz_per_row[:csr.m], dtype=np.int64))
    require_index_output(csr_row_ptr_c, csr.m + 1, "csr_row_ptr_c")
    require_index_output(csr_col_ind_c, total, "csr_col_ind_c")
    require_value_output(csr_val_c, total, csr.dtype, "csr_val_c")
    base_c = (descr_c or csr.descr).base
    handle.enqueue(
        lambda: K.compress_fill(csr.m, csr.row_ptr, csr.col_ind, csr.val, csr.base, tol,
                                base_c, csr_row_ptr_c, csr_col_ind_c, csr_val_c),
        "csr2csr_compress",
    )
