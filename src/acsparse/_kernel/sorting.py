"""Stable index sorting kernels.

Every sort is stable: entries comparing equal keep their input order, so
duplicate (row, col) pairs are never merged or reordered. Sorts permute
the index arrays in place and apply the same permutation to ``P``.
"""

import numpy as np

from .utils import expand_ptr, offsets

__all__ = ['sort_coo', 'sort_compressed', 'identity_permutation', 'gather']


def identity_permutation(n: int, P: np.ndarray) -> None:
    P[:n] = np.arange(n, dtype=P.dtype)


def _apply(perm: np.ndarray, P: np.ndarray, *arrays: np.ndarray) -> None:
    nnz = perm.size
    for arr in arrays:
        arr[:nnz] = arr[:nnz][perm]
    P[:nnz] = P[:nnz][perm]


def sort_coo(primary: np.ndarray, secondary: np.ndarray, nnz: int, P: np.ndarray,
             scratch: np.ndarray) -> None:
    """Sort COO entries by (primary, secondary) in place.

    Args:
        primary: Major key (row indices for a by-row sort).
        secondary: Minor key.
        nnz: Number of entries.
        P: Permutation, updated to ``P[perm]``.
        scratch: int64 view of at least ``nnz`` elements receiving ``perm``.
    """
    perm = scratch[:nnz]
    perm[:] = np.lexsort((secondary[:nnz], primary[:nnz]))
    _apply(perm, P, primary, secondary)


def sort_compressed(count: int, ptr: np.ndarray, ind: np.ndarray, P: np.ndarray,
                    scratch: np.ndarray) -> None:
    """Sort indices within each row (CSR) or column (CSC) in place."""
    offs = offsets(ptr, count)
    nnz = int(offs[-1])
    owner = expand_ptr(offs, count)
    perm = scratch[:nnz]
    perm[:] = np.lexsort((ind[:nnz], owner))
    _apply(perm, P, ind)


def gather(y: np.ndarray, x_ind: np.ndarray, nnz: int, base: int, x_val: np.ndarray) -> None:
    """x_val[k] = y[x_ind[k]]."""
    x_val[:nnz] = y[np.asarray(x_ind[:nnz], dtype=np.int64) - base]
