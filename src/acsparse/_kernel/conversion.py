"""Format conversion kernels.

Layout-changing conversions come as a pair: a *count* kernel that writes
the destination pointer array and returns the total, and a *fill* kernel
that writes destination indices and values given that pointer array.
Count kernels never touch value data.

Index arguments are 0-based offsets; ``base`` arguments give the index
base written into destination index arrays.
"""

from typing import Tuple

import numpy as np

from ..descr import Action, Direction, HybPartition
from .utils import block_cell_offset, counts_to_ptr, expand_ptr, offsets

__all__ = [
    # Dense
    'dense_count', 'dense2csr_fill', 'dense2csc_fill', 'compressed2dense',
    # COO
    'coo2csr', 'csr2coo',
    # Transpose
    'csr2csc',
    # Blocked
    'gebsr_count', 'gebsr_fill', 'gebsr_cells',
    # Compress
    'compress_count', 'compress_fill',
    # HYB
    'HybStorage', 'csr2hyb', 'hyb2csr_count', 'hyb2csr_fill', 'hyb_ell_width',
]


# =============================================================================
# Dense
# =============================================================================

def dense_count(A: np.ndarray, direction: Direction, out: np.ndarray) -> int:
    """Nonzeros per row (ROW) or per column (COLUMN) of a dense matrix."""
    axis = 1 if direction == Direction.ROW else 0
    counts = np.count_nonzero(A, axis=axis)
    out[:counts.size] = counts
    return int(counts.sum())


def dense2csr_fill(A: np.ndarray, nnz_per_row: np.ndarray, base: int,
                   row_ptr: np.ndarray, col_ind: np.ndarray, val: np.ndarray) -> int:
    """Fill CSR arrays from a dense matrix, scanning rows left to right."""
    total = counts_to_ptr(np.asarray(nnz_per_row[:A.shape[0]], dtype=np.int64), base, row_ptr)
    rows, cols = np.nonzero(A)
    col_ind[:total] = cols + base
    val[:total] = A[rows, cols]
    return total


def dense2csc_fill(A: np.ndarray, nnz_per_col: np.ndarray, base: int,
                   col_ptr: np.ndarray, row_ind: np.ndarray, val: np.ndarray) -> int:
    """Fill CSC arrays from a dense matrix, scanning columns top to bottom."""
    total = counts_to_ptr(np.asarray(nnz_per_col[:A.shape[1]], dtype=np.int64), base, col_ptr)
    cols, rows = np.nonzero(A.T)
    row_ind[:total] = rows + base
    val[:total] = A[rows, cols]
    return total


def compressed2dense(count: int, ptr: np.ndarray, ind: np.ndarray, val: np.ndarray,
                     base: int, out: np.ndarray, by_row: bool = True) -> None:
    """Scatter a CSR (``by_row``) or CSC matrix into a zeroed dense array."""
    out[...] = 0
    offs = offsets(ptr, count)
    nnz = int(offs[-1])
    owner = expand_ptr(offs, count)
    other = np.asarray(ind[:nnz], dtype=np.int64) - base
    if by_row:
        out[owner, other] = val[:nnz]
    else:
        out[other, owner] = val[:nnz]


# =============================================================================
# COO
# =============================================================================

def coo2csr(row_ind: np.ndarray, nnz: int, m: int, base: int, row_ptr: np.ndarray) -> None:
    """Compress sorted COO row indices into a CSR row pointer."""
    rows = np.asarray(row_ind[:nnz], dtype=np.int64) - base
    counts = np.bincount(rows, minlength=m)
    counts_to_ptr(counts, base, row_ptr)


def csr2coo(row_ptr: np.ndarray, nnz: int, m: int, base: int, row_ind: np.ndarray) -> None:
    """Expand a CSR row pointer into COO row indices."""
    row_ind[:nnz] = expand_ptr(offsets(row_ptr, m), m) + base


# =============================================================================
# Transpose
# =============================================================================

def csr2csc(m: int, n: int, row_ptr: np.ndarray, col_ind: np.ndarray, val: np.ndarray,
            base_in: int, action: Action, base_out: int,
            csc_val: np.ndarray, csc_row_ind: np.ndarray, csc_col_ptr: np.ndarray) -> int:
    """Stable transpose of CSR into CSC.

    Entries of a column keep their CSR (row-major) order, so rows come out
    sorted within each column and duplicates keep their relative order.
    """
    offs = offsets(row_ptr, m)
    nnz = int(offs[-1])
    rows = expand_ptr(offs, m)
    cols = np.asarray(col_ind[:nnz], dtype=np.int64) - base_in
    order = np.argsort(cols, kind='stable')
    counts_to_ptr(np.bincount(cols, minlength=n), base_out, csc_col_ptr)
    csc_row_ind[:nnz] = rows[order] + base_out
    if action == Action.NUMERIC:
        csc_val[:nnz] = val[:nnz][order]
    return nnz


# =============================================================================
# Blocked (BSR / GEBSR)
# =============================================================================

def _block_keys(rows: np.ndarray, cols: np.ndarray, rbd: int, cbd: int, nb: int) -> np.ndarray:
    return (rows // rbd) * nb + (cols // cbd)


def gebsr_count(rows: np.ndarray, cols: np.ndarray, mb: int, nb: int,
                rbd: int, cbd: int, base: int, bsr_row_ptr: np.ndarray) -> int:
    """Count nonzero blocks per block row for scalar entries (rows, cols).

    Returns:
        nnzb, the number of distinct nonzero blocks.
    """
    keys = np.unique(_block_keys(rows, cols, rbd, cbd, nb))
    counts = np.bincount(keys // nb, minlength=mb) if nb else np.zeros(mb, dtype=np.int64)
    return counts_to_ptr(counts[:mb], base, bsr_row_ptr)


def gebsr_fill(rows: np.ndarray, cols: np.ndarray, vals: np.ndarray, nb: int,
               rbd: int, cbd: int, direction: Direction, base: int,
               bsr_col_ind: np.ndarray, bsr_val: np.ndarray) -> int:
    """Fill block column indices and block values.

    Block columns come out sorted within each block row; cells not covered
    by an entry are zero.
    """
    all_keys = _block_keys(rows, cols, rbd, cbd, nb)
    keys = np.unique(all_keys)
    nnzb = keys.size
    bsr_col_ind[:nnzb] = keys % nb + base if nb else 0
    block_size = rbd * cbd
    bsr_val[:nnzb * block_size] = 0
    if vals is not None and rows.size:
        block = np.searchsorted(keys, all_keys)
        cell = block_cell_offset(rows % rbd, cols % cbd, rbd, cbd, direction)
        bsr_val[block * block_size + cell] = vals
    return nnzb


def gebsr_cells(mb: int, row_ptr: np.ndarray, col_ind: np.ndarray, val: np.ndarray,
                rbd: int, cbd: int, direction: Direction, base: int,
                m: int, n: int) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Every stored block cell of a GEBSR matrix inside an ``m x n`` bound.

    Returns:
        (rows, cols, vals) in row-major order: by row, then by block order
        within the block row, then by column inside the block.
    """
    offs = offsets(row_ptr, mb)
    nnzb = int(offs[-1])
    block_rows = expand_ptr(offs, mb)
    block_cols = np.asarray(col_ind[:nnzb], dtype=np.int64) - base
    r, c = np.meshgrid(np.arange(rbd), np.arange(cbd), indexing='ij')
    r = r.ravel()
    c = c.ravel()
    block_ids = np.repeat(np.arange(nnzb, dtype=np.int64), rbd * cbd)
    cell_r = np.tile(r, nnzb)
    cell_c = np.tile(c, nnzb)
    rows = block_rows[block_ids] * rbd + cell_r
    cols = block_cols[block_ids] * cbd + cell_c
    positions = block_ids * (rbd * cbd) + block_cell_offset(cell_r, cell_c, rbd, cbd, direction)
    keep = (rows < m) & (cols < n)
    rows, cols, positions, block_ids, cell_c = (
        rows[keep], cols[keep], positions[keep], block_ids[keep], cell_c[keep]
    )
    order = np.lexsort((cell_c, block_ids, rows))
    vals = val[positions[order]] if val is not None else None
    return rows[order], cols[order], vals


# =============================================================================
# Compress
# =============================================================================

def compress_count(m: int, row_ptr: np.ndarray, val: np.ndarray, tol: float,
                   nnz_per_row: np.ndarray) -> int:
    """Entries per row with ``|v| > tol``."""
    offs = offsets(row_ptr, m)
    nnz = int(offs[-1])
    keep = np.abs(val[:nnz]) > tol
    counts = np.bincount(expand_ptr(offs, m)[keep], minlength=m)
    nnz_per_row[:m] = counts
    return int(counts.sum())


def compress_fill(m: int, row_ptr: np.ndarray, col_ind: np.ndarray, val: np.ndarray,
                  base_in: int, tol: float, base_out: int, out_row_ptr: np.ndarray,
                  out_col_ind: np.ndarray, out_val: np.ndarray) -> int:
    """Copy entries with ``|v| > tol``, preserving order."""
    offs = offsets(row_ptr, m)
    nnz = int(offs[-1])
    keep = np.abs(val[:nnz]) > tol
    total = counts_to_ptr(np.bincount(expand_ptr(offs, m)[keep], minlength=m),
                          base_out, out_row_ptr)
    out_col_ind[:total] = np.asarray(col_ind[:nnz], dtype=np.int64)[keep] - base_in + base_out
    out_val[:total] = val[:nnz][keep]
    return total


# =============================================================================
# HYB
# =============================================================================

class HybStorage:
    """Internal arrays of a HYB matrix (0-based)."""

    __slots__ = ('m', 'n', 'ell_width', 'ell_col', 'ell_val',
                 'coo_row', 'coo_col', 'coo_val')

    def __init__(self, m, n, ell_width, ell_col, ell_val, coo_row, coo_col, coo_val):
        self.m = m
        self.n = n
        self.ell_width = ell_width
        self.ell_col = ell_col      # (m, ell_width), -1 marks padding
        self.ell_val = ell_val      # (m, ell_width)
        self.coo_row = coo_row
        self.coo_col = coo_col
        self.coo_val = coo_val

    @property
    def nnz(self) -> int:
        return int(np.count_nonzero(self.ell_col >= 0)) + int(self.coo_row.size)


def hyb_ell_width(lengths: np.ndarray, partition: HybPartition, user_width: int) -> int:
    """ELL width chosen by a partition policy."""
    if partition == HybPartition.MAX:
        return int(lengths.max()) if lengths.size else 0
    if partition == HybPartition.USER:
        return int(user_width)
    # AUTO: the average row length, rounded up
    if lengths.size == 0:
        return 0
    return int(-(-int(lengths.sum()) // lengths.size))


def csr2hyb(m: int, n: int, row_ptr: np.ndarray, col_ind: np.ndarray, val: np.ndarray,
            base: int, partition: HybPartition, user_width: int) -> HybStorage:
    """Split a CSR matrix into a fixed-width ELL part and a COO overflow."""
    offs = offsets(row_ptr, m)
    nnz = int(offs[-1])
    lengths = np.diff(offs)
    width = hyb_ell_width(lengths, partition, user_width)
    rows = expand_ptr(offs, m)
    slot = np.arange(nnz, dtype=np.int64) - offs[rows]
    cols = np.asarray(col_ind[:nnz], dtype=np.int64) - base
    vals = val[:nnz]

    ell_col = np.full((m, width), -1, dtype=np.int64)
    ell_val = np.zeros((m, width), dtype=val.dtype)
    in_ell = slot < width
    ell_col[rows[in_ell], slot[in_ell]] = cols[in_ell]
    ell_val[rows[in_ell], slot[in_ell]] = vals[in_ell]
    over = ~in_ell
    return HybStorage(m, n, width, ell_col, ell_val,
                      rows[over].copy(), cols[over].copy(), vals[over].copy())


def _hyb_entries(hyb: HybStorage):
    rows_e, slots_e = np.nonzero(hyb.ell_col >= 0)
    rows = np.concatenate([rows_e, hyb.coo_row])
    cols = np.concatenate([hyb.ell_col[rows_e, slots_e], hyb.coo_col])
    vals = np.concatenate([hyb.ell_val[rows_e, slots_e], hyb.coo_val])
    # ELL entries of a row precede its overflow entries
    order = np.argsort(rows, kind='stable')
    return rows[order], cols[order], vals[order]


def hyb2csr_count(hyb: HybStorage, base: int, row_ptr: np.ndarray) -> int:
    rows, _, _ = _hyb_entries(hyb)
    return counts_to_ptr(np.bincount(rows, minlength=hyb.m), base, row_ptr)


def hyb2csr_fill(hyb: HybStorage, base: int, col_ind: np.ndarray, val: np.ndarray) -> int:
    _, cols, vals = _hyb_entries(hyb)
    col_ind[:cols.size] = cols + base
    val[:vals.size] = vals
    return int(cols.size)
