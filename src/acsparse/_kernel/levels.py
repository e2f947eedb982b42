"""Level-schedule plans for triangular dependency structures.

A plan describes the *effective* triangular operator of a solve: the
triangle selected by the fill mode, transposed if the operation asks for
it. Rows are partitioned into levels so that every row of level ``k``
depends only on rows of levels ``< k``.

Plans are built from a list of scalar entries ``(row, col, pos)`` where
``pos`` is the index of the entry in the caller's value array. CSR
matrices pass ``pos = arange(nnz)``; block matrices pass the position of
each block cell, which lets the scalar machinery run unchanged over them.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import numpy as np

__all__ = ['TriangularPlan', 'build_plan', 'compute_levels', 'FactorPattern', 'build_factor_pattern']


def compute_levels(m: int, row_ptr: np.ndarray, cols: np.ndarray, lower: bool,
                   level: Optional[np.ndarray] = None) -> Tuple[np.ndarray, List[np.ndarray]]:
    """Level of every row of a strictly triangular dependency pattern.

    Args:
        m: Number of rows.
        row_ptr: 0-based pointer (length m+1) over ``cols``.
        cols: Dependencies of each row (all < row if ``lower``, else > row).
        lower: Direction of the dependencies.
        level: Optional int64 scratch of length ``m`` receiving the levels.

    Returns:
        (level, groups): per-row level and the rows of each level, ascending.
    """
    if level is None:
        level = np.empty(m, dtype=np.int64)
    level[:m] = 0
    sweep = range(m) if lower else range(m - 1, -1, -1)
    for i in sweep:
        s, e = row_ptr[i], row_ptr[i + 1]
        if e > s:
            level[i] = level[cols[s:e]].max() + 1
    if m == 0:
        return level[:0], []
    order = np.argsort(level[:m], kind='stable')
    bounds = np.flatnonzero(np.diff(level[:m][order])) + 1
    return level[:m], np.split(order, bounds)


@dataclass
class TriangularPlan:
    """Effective triangular operator of a solve.

    Attributes:
        m: Dimension.
        nnz: Entry count of the source pattern (for reuse checks).
        lower: Whether the effective operator is lower triangular.
        conj: Whether values are conjugated (conjugate transpose).
        unit: Whether the diagonal is implicitly one.
        row_ptr: 0-based pointer over the strictly triangular entries.
        cols: Column of each strictly triangular entry.
        pos: Value-array position of each strictly triangular entry.
        diag_pos: Value-array position of each diagonal, -1 when missing.
        groups: Rows of each level.
        structural_zero: Smallest row with a missing diagonal (non-unit
            only), or -1.
    """
    m: int
    nnz: int
    lower: bool
    conj: bool
    unit: bool
    row_ptr: np.ndarray
    cols: np.ndarray
    pos: np.ndarray
    diag_pos: np.ndarray
    groups: List[np.ndarray]
    structural_zero: int = -1
    _batches: Optional[list] = field(default=None, repr=False)

    @property
    def n_levels(self) -> int:
        return len(self.groups)

    @property
    def sweep_order(self) -> np.ndarray:
        """Rows in sequential dependency order."""
        rows = np.arange(self.m, dtype=np.int64)
        return rows if self.lower else rows[::-1]

    def batches(self) -> list:
        """Per level: (rows, entry indices, local owner of each entry)."""
        if self._batches is None:
            batches = []
            for rows in self.groups:
                starts = self.row_ptr[rows]
                lengths = self.row_ptr[rows + 1] - starts
                owner = np.repeat(np.arange(rows.size, dtype=np.int64), lengths)
                within = np.arange(int(lengths.sum()), dtype=np.int64) - np.repeat(
                    np.cumsum(lengths) - lengths, lengths)
                entries = np.repeat(starts, lengths) + within
                batches.append((rows, entries, owner))
            self._batches = batches
        return self._batches


def _compress(m: int, rows: np.ndarray, cols: np.ndarray, pos: np.ndarray):
    order = np.lexsort((cols, rows))
    rows, cols, pos = rows[order], cols[order], pos[order]
    row_ptr = np.zeros(m + 1, dtype=np.int64)
    np.cumsum(np.bincount(rows, minlength=m), out=row_ptr[1:])
    return row_ptr, cols, pos


def build_plan(m: int, rows: np.ndarray, cols: np.ndarray, pos: np.ndarray,
               fill_lower: bool, transpose: bool, conj: bool, unit: bool,
               nnz: int, level_scratch: Optional[np.ndarray] = None) -> TriangularPlan:
    """Build the plan of ``op(tri(A))``.

    Args:
        m: Dimension.
        rows, cols, pos: 0-based scalar entries of A and their value positions.
        fill_lower: Triangle of A to use.
        transpose: Whether op transposes.
        conj: Whether op conjugates.
        unit: Unit diagonal (stored diagonal ignored).
        nnz: Source entry count recorded for reuse checks.
        level_scratch: Optional int64 scratch of length ``m``.
    """
    rows = np.asarray(rows, dtype=np.int64)
    cols = np.asarray(cols, dtype=np.int64)
    pos = np.asarray(pos, dtype=np.int64)

    diag = rows == cols
    diag_pos = np.full(m, -1, dtype=np.int64)
    if not unit:
        # First stored diagonal wins; assigning in reverse keeps the first
        diag_pos[rows[diag][::-1]] = pos[diag][::-1]

    strict = (cols < rows) if fill_lower else (cols > rows)
    r, c, p = rows[strict], cols[strict], pos[strict]
    if transpose:
        r, c = c, r
    lower = fill_lower != transpose
    row_ptr, c, p = _compress(m, r, c, p)

    _, groups = compute_levels(m, row_ptr, c, lower, level_scratch)
    missing = np.flatnonzero(diag_pos < 0) if not unit else np.empty(0, dtype=np.int64)
    structural_zero = int(missing[0]) if missing.size else -1
    return TriangularPlan(
        m=m, nnz=nnz, lower=lower, conj=conj, unit=unit,
        row_ptr=row_ptr, cols=c, pos=p, diag_pos=diag_pos,
        groups=groups, structural_zero=structural_zero,
    )


# =============================================================================
# Factorization Pattern
# =============================================================================

@dataclass
class FactorPattern:
    """Sorted full pattern used by ILU(0) / IC(0).

    Attributes:
        m: Dimension.
        nnz: Entry count of the source pattern.
        row_ptr: 0-based pointer over all entries of each row.
        cols: Sorted columns within each row.
        pos: Value-array position of each entry.
        diag: Entry index (into ``cols``) of each row's diagonal, -1 if missing.
        groups: Rows of each level of the lower-triangular dependency.
        structural_zero: Smallest row with a missing diagonal, or -1.
    """
    m: int
    nnz: int
    row_ptr: np.ndarray
    cols: np.ndarray
    pos: np.ndarray
    diag: np.ndarray
    groups: List[np.ndarray]
    structural_zero: int = -1


def build_factor_pattern(m: int, rows: np.ndarray, cols: np.ndarray, pos: np.ndarray,
                         nnz: int, level_scratch: Optional[np.ndarray] = None) -> FactorPattern:
    rows = np.asarray(rows, dtype=np.int64)
    cols = np.asarray(cols, dtype=np.int64)
    pos = np.asarray(pos, dtype=np.int64)
    row_ptr, cols, pos = _compress(m, rows, cols, pos)
    owner = np.repeat(np.arange(m, dtype=np.int64), np.diff(row_ptr))

    diag = np.full(m, -1, dtype=np.int64)
    hits = np.flatnonzero(cols == owner)
    diag[owner[hits][::-1]] = hits[::-1]

    lower = cols < owner
    lower_ptr = np.zeros(m + 1, dtype=np.int64)
    np.cumsum(np.bincount(owner[lower], minlength=m), out=lower_ptr[1:])
    _, groups = compute_levels(m, lower_ptr, cols[lower], True, level_scratch)

    missing = np.flatnonzero(diag < 0)
    return FactorPattern(
        m=m, nnz=nnz, row_ptr=row_ptr, cols=cols, pos=pos, diag=diag,
        groups=groups, structural_zero=int(missing[0]) if missing.size else -1,
    )
