"""Pointer and index helpers shared by the kernels."""

import numpy as np

from ..descr import Direction

__all__ = [
    'expand_ptr',
    'counts_to_ptr',
    'offsets',
    'pointer_entries',
    'block_cell_offset',
]


def expand_ptr(ptr: np.ndarray, count: int) -> np.ndarray:
    """Owner (0-based row/column) of every entry spanned by a pointer array."""
    lengths = np.diff(np.asarray(ptr[:count + 1], dtype=np.int64))
    return np.repeat(np.arange(count, dtype=np.int64), lengths)


def counts_to_ptr(counts: np.ndarray, base: int, out: np.ndarray) -> int:
    """Exclusive prefix sum of ``counts`` into ``out`` (length len(counts)+1).

    Returns:
        Total of ``counts``.
    """
    out[0] = base
    if counts.size:
        np.cumsum(counts, out=out[1:counts.size + 1])
        out[1:counts.size + 1] += base
    return int(out[counts.size]) - base


def offsets(ptr: np.ndarray, count: int) -> np.ndarray:
    """0-based entry offsets of a pointer array (``ptr - ptr[0]``)."""
    return np.asarray(ptr[:count + 1], dtype=np.int64) - int(ptr[0])


def pointer_entries(ptr: np.ndarray, ind: np.ndarray, count: int, base: int):
    """0-based (owner, index, position) of every entry of a compressed array pair."""
    offs = offsets(ptr, count)
    nnz = int(offs[-1])
    owners = expand_ptr(offs, count)
    return owners, ind[:nnz].astype(np.int64) - base, np.arange(nnz, dtype=np.int64)


def block_cell_offset(r, c, row_block_dim: int, col_block_dim: int,
                      direction: Direction):
    """Offset of cell (r, c) inside a block stored in ``direction`` order."""
    if direction == Direction.ROW:
        return r * col_block_dim + c
    return c * row_block_dim + r
