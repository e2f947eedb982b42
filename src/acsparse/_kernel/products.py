"""Sparse-dense and sparse-sparse product kernels.

Arithmetic is delegated to ``scipy.sparse``; these kernels only adapt the
index-based layouts (bases, block storage order, HYB split) and honour
the two-phase pattern/value contract of the sparse-sparse products.
"""

import numpy as np
import scipy.sparse as sp

from ..descr import Direction, Operation
from .conversion import HybStorage
from .utils import expand_ptr, offsets

__all__ = [
    'as_scipy_csr', 'apply_op', 'spmv', 'bsrmv', 'hybmv',
    'geam_count', 'geam_fill', 'gemm_count', 'gemm_fill',
]


def as_scipy_csr(m: int, n: int, row_ptr: np.ndarray, col_ind: np.ndarray,
                 val: np.ndarray, base: int) -> sp.csr_matrix:
    """Zero-based scipy view of a CSR triple (index arrays are copied)."""
    offs = offsets(row_ptr, m)
    nnz = int(offs[-1])
    cols = np.asarray(col_ind[:nnz], dtype=np.int64) - base
    data = val[:nnz] if val is not None else np.ones(nnz, dtype=np.int64)
    return sp.csr_matrix((data, cols, offs), shape=(m, n))


def apply_op(A, trans: Operation):
    if trans == Operation.TRANSPOSE:
        return A.T
    if trans == Operation.CONJUGATE_TRANSPOSE:
        return A.conj().T
    return A


def spmv(A, trans: Operation, alpha, x: np.ndarray, beta, y: np.ndarray) -> None:
    """y = alpha * op(A) @ x + beta * y (x, y vectors or column blocks)."""
    prod = apply_op(A, trans) @ x
    if beta == 0:
        y[...] = alpha * prod
    else:
        y[...] = alpha * prod + beta * y


def bsrmv(mb: int, nb: int, row_ptr: np.ndarray, col_ind: np.ndarray, val: np.ndarray,
          block_dim: int, direction: Direction, base: int,
          alpha, x: np.ndarray, beta, y: np.ndarray) -> None:
    offs = offsets(row_ptr, mb)
    nnzb = int(offs[-1])
    blocks = val[:nnzb * block_dim * block_dim].reshape(nnzb, block_dim, block_dim)
    if direction == Direction.COLUMN:
        blocks = blocks.transpose(0, 2, 1)
    cols = np.asarray(col_ind[:nnzb], dtype=np.int64) - base
    A = sp.bsr_matrix((np.ascontiguousarray(blocks), cols, offs),
                      shape=(mb * block_dim, nb * block_dim))
    spmv(A, Operation.NON_TRANSPOSE, alpha, x, beta, y)


def hybmv(hyb: HybStorage, alpha, x: np.ndarray, beta, y: np.ndarray) -> None:
    prod = np.zeros(hyb.m, dtype=np.result_type(hyb.ell_val, x))
    if hyb.ell_width:
        mask = hyb.ell_col >= 0
        gathered = np.where(mask, x[np.where(mask, hyb.ell_col, 0)], 0)
        prod += np.sum(hyb.ell_val * gathered, axis=1)
    if hyb.coo_row.size:
        np.add.at(prod, hyb.coo_row, hyb.coo_val * x[hyb.coo_col])
    if beta == 0:
        y[...] = alpha * prod
    else:
        y[...] = alpha * prod + beta * y


# =============================================================================
# Sparse + Sparse
# =============================================================================

def _entries(m: int, row_ptr, col_ind, base):
    offs = offsets(row_ptr, m)
    nnz = int(offs[-1])
    return expand_ptr(offs, m), np.asarray(col_ind[:nnz], dtype=np.int64) - base, nnz


def _union_keys(m, n, a, b):
    ra, ca, _ = a
    rb, cb, _ = b
    keys = np.concatenate([ra * n + ca, rb * n + cb])
    return keys


def geam_count(m: int, n: int, a_ptr, a_ind, a_base, b_ptr, b_ind, b_base) -> np.ndarray:
    """Per-row entry counts of the structural union of A and B."""
    keys = np.unique(_union_keys(m, n, _entries(m, a_ptr, a_ind, a_base),
                                 _entries(m, b_ptr, b_ind, b_base)))
    return np.bincount(keys // n, minlength=m) if n else np.zeros(m, dtype=np.int64)


def geam_fill(m: int, n: int, alpha, a_ptr, a_ind, a_val, a_base,
              beta, b_ptr, b_ind, b_val, b_base, c_base,
              c_col_ind: np.ndarray, c_val: np.ndarray) -> int:
    """C = alpha A + beta B on the union pattern (explicit zeros kept)."""
    a = _entries(m, a_ptr, a_ind, a_base)
    b = _entries(m, b_ptr, b_ind, b_base)
    keys = _union_keys(m, n, a, b)
    vals = np.concatenate([alpha * a_val[:a[2]], beta * b_val[:b[2]]])
    unique, inverse = np.unique(keys, return_inverse=True)
    summed = np.zeros(unique.size, dtype=c_val.dtype)
    np.add.at(summed, inverse, vals)
    c_col_ind[:unique.size] = unique % n + c_base
    c_val[:unique.size] = summed
    return int(unique.size)


# =============================================================================
# Sparse x Sparse
# =============================================================================

def _pattern(A):
    P = A.copy()
    P.data = np.ones(P.nnz, dtype=np.int64)
    return P


def gemm_count(A, B, trans_a: Operation, trans_b: Operation) -> sp.csr_matrix:
    """Structural product pattern (no cancellation), sorted, as CSR."""
    P = (apply_op(_pattern(A), trans_a) @ apply_op(_pattern(B), trans_b)).tocsr()
    P.sum_duplicates()
    P.sort_indices()
    return P


def gemm_fill(A, B, trans_a: Operation, trans_b: Operation, pattern: sp.csr_matrix,
              c_base: int, c_col_ind: np.ndarray, c_val: np.ndarray) -> int:
    """Numeric product values written onto the structural pattern."""
    numeric = sp.coo_matrix(apply_op(A, trans_a) @ apply_op(B, trans_b))
    n = pattern.shape[1]
    rows = expand_ptr(pattern.indptr, pattern.shape[0])
    keys = rows * n + pattern.indices
    nnz = int(pattern.nnz)
    c_col_ind[:nnz] = pattern.indices + c_base
    c_val[:nnz] = 0
    if numeric.nnz:
        where = np.searchsorted(keys, numeric.row.astype(np.int64) * n + numeric.col)
        np.add.at(c_val, where, numeric.data.astype(c_val.dtype, copy=False))
    return nnz
