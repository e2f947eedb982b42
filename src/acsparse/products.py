"""Sparse-dense and sparse-sparse products.

    csrmv / csrmm   y = alpha * op(A) x + beta * y   (x, y vectors or dense blocks)
    bsrmv           block storage, non-transposed only
    hybmv           HYB storage, non-transposed only
    csrgeam         C = alpha A + beta B             (two-phase)
    csrgemm         C = op(A) op(B)                  (two-phase)

Matrices are used as stored: GENERAL and TRIANGULAR descriptors are
accepted, SYMMETRIC/HERMITIAN storage is rejected. When ``beta`` is zero
the output is overwritten without being read, so it may hold NaN.

The sparse-sparse products follow the count/fill protocol of the
conversion engine: ``*_nnz`` writes the row pointer of ``C`` and returns
its entry count; the fill call writes sorted column indices and values.
"""

import logging
from typing import Any

import numpy as np

from . import _kernel as K
from ._dispatch import (
    kind_for,
    require_dense,
    require_descr,
    require_general_storage,
    require_index_output,
    require_instance,
    require_operation,
    require_same_base,
    require_value_output,
    require_vector,
    submit_and_wait,
)
from .descr import MatDescr, Operation
from .error import InvalidValueError, NotSupportedError
from .handle import Handle, ScalarArg, require_handle
from .sparse import CSRMatrix, GEBSRMatrix, HybMatrix

logger = logging.getLogger("acsparse.products")

__all__ = [
    'csrmv', 'csrmm', 'bsrmv', 'hybmv',
    'csrgeam_nnz', 'csrgeam',
    'csrgemm_nnz', 'csrgemm',
]


def _check_matrix(descr: MatDescr, mat: Any, cls, name: str, context: str) -> None:
    require_descr(descr)
    require_instance(mat, cls, name)
    require_same_base(descr, mat, context)
    require_general_storage(descr, context)


def _op_shape(shape, trans: Operation):
    return shape if trans == Operation.NON_TRANSPOSE else (shape[1], shape[0])


def _scipy(csr: CSRMatrix):
    return K.as_scipy_csr(csr.m, csr.n, csr.row_ptr, csr.col_ind, csr.val, csr.base)


def _require_non_transpose(trans: Operation, context: str) -> None:
    if trans != Operation.NON_TRANSPOSE:
        raise NotSupportedError(f"{context}: only the non-transposed operation is supported")


# =============================================================================
# Sparse x Dense
# =============================================================================

def csrmv(handle: Handle, trans: Operation, alpha: ScalarArg, descr: MatDescr,
          csr: CSRMatrix, x: np.ndarray, beta: ScalarArg, y: np.ndarray) -> None:
    """y = alpha * op(A) x + beta * y."""
    handle = require_handle(handle)
    trans = require_operation(trans)
    _check_matrix(descr, csr, CSRMatrix, "csr", "csrmv")
    kind = kind_for(handle, csr.dtype, "csrmv")
    read_alpha = handle.resolve_scalar(alpha, kind, "alpha")
    read_beta = handle.resolve_scalar(beta, kind, "beta")
    rows, cols = _op_shape(csr.shape, trans)
    require_vector(x, cols, csr.dtype, "x")
    require_vector(y, rows, csr.dtype, "y", writeable=True)
    handle.enqueue(
        lambda: K.spmv(_scipy(csr), trans, read_alpha(), x, read_beta(), y),
        "csrmv",
    )


def csrmm(handle: Handle, trans: Operation, alpha: ScalarArg, descr: MatDescr,
          csr: CSRMatrix, B: np.ndarray, beta: ScalarArg, C: np.ndarray) -> None:
    """C = alpha * op(A) B + beta * C for dense ``B`` and ``C``."""
    handle = require_handle(handle)
    trans = require_operation(trans)
    _check_matrix(descr, csr, CSRMatrix, "csr", "csrmm")
    kind = kind_for(handle, csr.dtype, "csrmm")
    read_alpha = handle.resolve_scalar(alpha, kind, "alpha")
    read_beta = handle.resolve_scalar(beta, kind, "beta")
    rows, cols = _op_shape(csr.shape, trans)
    B = require_dense(B, None, "B", dtype=csr.dtype)
    if B.shape[0] != cols:
        raise InvalidValueError(f"B must have {cols} rows, got {B.shape[0]}")
    require_dense(C, (rows, B.shape[1]), "C", dtype=csr.dtype, writeable=True)
    handle.enqueue(
        lambda: K.spmv(_scipy(csr), trans, read_alpha(), B, read_beta(), C),
        "csrmm",
    )


def bsrmv(handle: Handle, trans: Operation, alpha: ScalarArg, descr: MatDescr,
          bsr: GEBSRMatrix, x: np.ndarray, beta: ScalarArg, y: np.ndarray) -> None:
    """y = alpha * A x + beta * y over square-block storage.

    Vectors have the scalar lengths ``n`` and ``m``; padding cells of the
    last block row/column do not contribute.
    """
    handle = require_handle(handle)
    trans = require_operation(trans)
    _require_non_transpose(trans, "bsrmv")
    _check_matrix(descr, bsr, GEBSRMatrix, "bsr", "bsrmv")
    if bsr.row_block_dim != bsr.col_block_dim:
        raise InvalidValueError("bsrmv: blocks must be square")
    kind = kind_for(handle, bsr.dtype, "bsrmv")
    read_alpha = handle.resolve_scalar(alpha, kind, "alpha")
    read_beta = handle.resolve_scalar(beta, kind, "beta")
    require_vector(x, bsr.n, bsr.dtype, "x")
    require_vector(y, bsr.m, bsr.dtype, "y", writeable=True)
    bd = bsr.row_block_dim

    def run():
        padded_x = np.zeros(bsr.nb * bd, dtype=bsr.dtype)
        padded_x[:bsr.n] = x
        padded_y = np.zeros(bsr.mb * bd, dtype=bsr.dtype)
        padded_y[:bsr.m] = y
        K.bsrmv(bsr.mb, bsr.nb, bsr.row_ptr, bsr.col_ind, bsr.val, bd, bsr.direction,
                bsr.base, read_alpha(), padded_x, read_beta(), padded_y)
        y[...] = padded_y[:bsr.m]

    handle.enqueue(run, "bsrmv")


def hybmv(handle: Handle, trans: Operation, alpha: ScalarArg, descr: MatDescr,
          hyb: HybMatrix, x: np.ndarray, beta: ScalarArg, y: np.ndarray) -> None:
    """y = alpha * A x + beta * y over HYB storage."""
    handle = require_handle(handle)
    trans = require_operation(trans)
    _require_non_transpose(trans, "hybmv")
    require_descr(descr)
    require_general_storage(descr, "hybmv")
    require_instance(hyb, HybMatrix, "hyb")
    (m, n), dtype = hyb.layout
    kind = kind_for(handle, dtype, "hybmv")
    read_alpha = handle.resolve_scalar(alpha, kind, "alpha")
    read_beta = handle.resolve_scalar(beta, kind, "beta")
    require_vector(x, n, dtype, "x")
    require_vector(y, m, dtype, "y", writeable=True)
    handle.enqueue(
        lambda: K.hybmv(hyb.storage, read_alpha(), x, read_beta(), y),
        "hybmv",
    )


# =============================================================================
# C = alpha A + beta B
# =============================================================================

def _check_geam(descr_a, A, descr_b, B, descr_c, context):
    _check_matrix(descr_a, A, CSRMatrix, "A", context)
    _check_matrix(descr_b, B, CSRMatrix, "B", context)
    require_descr(descr_c, "descr_c")
    require_general_storage(descr_c, context)
    if A.shape != B.shape:
        raise InvalidValueError(f"{context}: shapes {A.shape} and {B.shape} differ")


def csrgeam_nnz(handle: Handle, descr_a: MatDescr, A: CSRMatrix, descr_b: MatDescr,
                B: CSRMatrix, descr_c: MatDescr, csr_row_ptr_c: np.ndarray) -> int:
    """Row pointer of the structural union of A and B; returns nnz of C."""
    handle = require_handle(handle)
    _check_geam(descr_a, A, descr_b, B, descr_c, "csrgeam_nnz")
    m, n = A.shape
    require_index_output(csr_row_ptr_c, m + 1, "csr_row_ptr_c")
    base_c = descr_c.base

    def count():
        counts = K.geam_count(m, n, A.row_ptr, A.col_ind, A.base, B.row_ptr, B.col_ind, B.base)
        return K.counts_to_ptr(counts, base_c, csr_row_ptr_c)

    total = submit_and_wait(handle, count, "csrgeam_nnz")
    logger.debug("csrgeam_nnz: %d + %d -> %d entries", A.nnz, B.nnz, total)
    return total


def csrgeam(handle: Handle, alpha: ScalarArg, descr_a: MatDescr, A: CSRMatrix,
            beta: ScalarArg, descr_b: MatDescr, B: CSRMatrix, descr_c: MatDescr,
            csr_val_c: np.ndarray, csr_row_ptr_c: np.ndarray, csr_col_ind_c: np.ndarray) -> None:
    """C = alpha A + beta B on the union pattern; columns of C come out sorted."""
    handle = require_handle(handle)
    _check_geam(descr_a, A, descr_b, B, descr_c, "csrgeam")
    if A.dtype != B.dtype:
        raise InvalidValueError(f"csrgeam: dtypes {A.dtype} and {B.dtype} differ")
    kind = kind_for(handle, A.dtype, "csrgeam")
    read_alpha = handle.resolve_scalar(alpha, kind, "alpha")
    read_beta = handle.resolve_scalar(beta, kind, "beta")
    m, n = A.shape
    require_index_output(csr_row_ptr_c, m + 1, "csr_row_ptr_c")
    nnz_c = int(csr_row_ptr_c[m]) - int(csr_row_ptr_c[0])
    require_index_output(csr_col_ind_c, nnz_c, "csr_col_ind_c")
    require_value_output(csr_val_c, nnz_c, A.dtype, "csr_val_c")
    base_c = descr_c.base

    handle.enqueue(
        lambda: K.geam_fill(m, n, read_alpha(), A.row_ptr, A.col_ind, A.val, A.base,
                            read_beta(), B.row_ptr, B.col_ind, B.val, B.base, base_c,
                            csr_col_ind_c, csr_val_c),
        "csrgeam",
    )


# =============================================================================
# C = op(A) op(B)
# =============================================================================

def _check_gemm(trans_a, trans_b, descr_a, A, descr_b, B, descr_c, context):
    trans_a = require_operation(trans_a)
    trans_b = require_operation(trans_b)
    if trans_a != Operation.NON_TRANSPOSE and trans_b != Operation.NON_TRANSPOSE:
        raise NotSupportedError(f"{context}: both operands transposed is not supported")
    _check_matrix(descr_a, A, CSRMatrix, "A", context)
    _check_matrix(descr_b, B, CSRMatrix, "B", context)
    require_descr(descr_c, "descr_c")
    require_general_storage(descr_c, context)
    m, k = _op_shape(A.shape, trans_a)
    k_b, n = _op_shape(B.shape, trans_b)
    if k != k_b:
        raise InvalidValueError(
            f"{context}: inner dimensions differ, op(A) is {m}x{k}, op(B) is {k_b}x{n}"
        )
    return trans_a, trans_b, m, n


def csrgemm_nnz(handle: Handle, trans_a: Operation, trans_b: Operation,
                descr_a: MatDescr, A: CSRMatrix, descr_b: MatDescr, B: CSRMatrix,
                descr_c: MatDescr, csr_row_ptr_c: np.ndarray) -> int:
    """Row pointer of the structural product; returns nnz of C.

    The pattern is structural: entries that cancel numerically are kept.
    """
    handle = require_handle(handle)
    trans_a, trans_b, m, _ = _check_gemm(trans_a, trans_b, descr_a, A, descr_b, B,
                                         descr_c, "csrgemm_nnz")
    require_index_output(csr_row_ptr_c, m + 1, "csr_row_ptr_c")
    base_c = descr_c.base

    def count():
        pattern = K.gemm_count(_scipy(A), _scipy(B), trans_a, trans_b)
        return K.counts_to_ptr(np.diff(pattern.indptr), base_c, csr_row_ptr_c)

    return submit_and_wait(handle, count, "csrgemm_nnz")


def csrgemm(handle: Handle, trans_a: Operation, trans_b: Operation,
            descr_a: MatDescr, A: CSRMatrix, descr_b: MatDescr, B: CSRMatrix,
            descr_c: MatDescr, csr_val_c: np.ndarray, csr_row_ptr_c: np.ndarray,
            csr_col_ind_c: np.ndarray) -> None:
    """C = op(A) op(B) on the pattern counted by :func:`csrgemm_nnz`."""
    handle = require_handle(handle)
    trans_a, trans_b, m, _ = _check_gemm(trans_a, trans_b, descr_a, A, descr_b, B,
                                         descr_c, "csrgemm")
    if A.dtype != B.dtype:
        raise InvalidValueError(f"csrgemm: dtypes {A.dtype} and {B.dtype} differ")
    kind_for(handle, A.dtype, "csrgemm")
    require_index_output(csr_row_ptr_c, m + 1, "csr_row_ptr_c")
    nnz_c = int(csr_row_ptr_c[m]) - int(csr_row_ptr_c[0])
    require_index_output(csr_col_ind_c, nnz_c, "csr_col_ind_c")
    require_value_output(csr_val_c, nnz_c, A.dtype, "csr_val_c")
    base_c = descr_c.base

    def fill():
        a, b = _scipy(A), _scipy(B)
        pattern = K.gemm_count(a, b, trans_a, trans_b)
        K.gemm_fill(a, b, trans_a, trans_b, pattern, base_c, csr_col_ind_c, csr_val_c)

    handle.enqueue(fill, "csrgemm")
