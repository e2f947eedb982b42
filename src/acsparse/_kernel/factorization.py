"""ILU(0) and IC(0) numeric factorization over a fixed pattern.

Both kernels overwrite the value array in place, row by row, using only
positions present in the pattern (no fill-in). Row ``i`` reads finished
rows ``k < i`` that it references in its lower part, so rows may be
visited either sequentially or one dependency level at a time with the
same result.

Pivot handling:
    - A pivot ``p`` with ``boost.enabled and boost.tol >= |p|`` is replaced
      by ``boost.value`` and not reported.
    - Otherwise a pivot equal to zero (IC: with non-positive real part) is
      reported; the smallest such row is returned.
"""

from dataclasses import dataclass
from typing import Iterable

import numpy as np

from .levels import FactorPattern

__all__ = ['Boost', 'ilu0', 'ic0', 'row_order']


@dataclass
class Boost:
    """Numeric boost settings of a factorization."""
    enabled: bool = False
    tol: float = 0.0
    value: complex = 0.0

    def applies(self, pivot) -> bool:
        return self.enabled and self.tol >= abs(pivot)


def row_order(pattern: FactorPattern, use_levels: bool) -> Iterable[int]:
    """Visiting order of rows: sequential or level by level."""
    if use_levels:
        for rows in pattern.groups:
            yield from rows.tolist()
    else:
        yield from range(pattern.m)


def _note(first: int, row: int) -> int:
    return row if first < 0 or row < first else first


def ilu0(pattern: FactorPattern, val: np.ndarray, boost: Boost, use_levels: bool) -> int:
    """In-place ILU(0): strict lower holds L (unit diagonal implied), rest U.

    Returns:
        Smallest row with a numerically zero pivot, or -1.
    """
    row_ptr, cols, pos, diag = pattern.row_ptr, pattern.cols, pattern.pos, pattern.diag
    zero_row = -1
    zero = val.dtype.type(0)
    with np.errstate(divide='ignore', invalid='ignore', over='ignore'):
        for i in row_order(pattern, use_levels):
            s, e = row_ptr[i], row_ptr[i + 1]
            rcols = cols[s:e]
            rpos = pos[s:e]
            n_lower = int(np.searchsorted(rcols, i))
            for t in range(n_lower):
                k = rcols[t]
                dk = diag[k]
                pivot = val[pos[dk]] if dk >= 0 else zero
                lik = val[rpos[t]] / pivot
                val[rpos[t]] = lik
                # Upper part of row k: columns > k
                ks, ke = row_ptr[k], row_ptr[k + 1]
                kcols = cols[ks:ke]
                start = int(np.searchsorted(kcols, k, side='right'))
                ucols = kcols[start:]
                upos = pos[ks + start:ke]
                if ucols.size == 0:
                    continue
                hit = np.searchsorted(rcols, ucols)
                hit_ok = hit < rcols.size
                match = np.zeros(ucols.size, dtype=bool)
                match[hit_ok] = rcols[hit[hit_ok]] == ucols[hit_ok]
                if match.any():
                    targets = rpos[hit[match]]
                    val[targets] = val[targets] - lik * val[upos[match]]
            di = diag[i]
            if di < 0:
                continue
            pivot = val[pos[di]]
            if boost.applies(pivot):
                val[pos[di]] = boost.value
            elif pivot == 0:
                zero_row = _note(zero_row, i)
    return zero_row


def ic0(pattern: FactorPattern, val: np.ndarray, boost: Boost, use_levels: bool) -> int:
    """In-place IC(0) on the lower triangle: A ~= L L^H. Upper entries untouched.

    Returns:
        Smallest row with a zero or non-positive pivot, or -1.
    """
    row_ptr, cols, pos, diag = pattern.row_ptr, pattern.cols, pattern.pos, pattern.diag
    is_complex = np.iscomplexobj(val)
    zero_row = -1
    zero = val.dtype.type(0)
    with np.errstate(divide='ignore', invalid='ignore', over='ignore'):
        for i in row_order(pattern, use_levels):
            s, e = row_ptr[i], row_ptr[i + 1]
            rcols = cols[s:e]
            rpos = pos[s:e]
            n_lower = int(np.searchsorted(rcols, i))
            for t in range(n_lower):
                k = rcols[t]
                ks, ke = row_ptr[k], row_ptr[k + 1]
                kcols = cols[ks:ke]
                k_lower = int(np.searchsorted(kcols, k))
                acc = val[rpos[t]]
                if t and k_lower:
                    # sum over j < k present in both rows i and k
                    common, ii, kk = np.intersect1d(rcols[:t], kcols[:k_lower],
                                                    assume_unique=True, return_indices=True)
                    if common.size:
                        li = val[rpos[ii]]
                        lk = val[pos[ks + kk]]
                        acc = acc - np.sum(li * (np.conj(lk) if is_complex else lk))
                dk = diag[k]
                pivot = val[pos[dk]] if dk >= 0 else zero
                val[rpos[t]] = acc / pivot
            di = diag[i]
            if di < 0:
                continue
            lrow = val[rpos[:n_lower]]
            d = val[pos[di]] - np.sum(lrow * np.conj(lrow) if is_complex else lrow * lrow)
            if boost.applies(d):
                d = val.dtype.type(boost.value)
            elif np.real(d) <= 0:
                zero_row = _note(zero_row, i)
            val[pos[di]] = np.sqrt(d)
    return zero_row
