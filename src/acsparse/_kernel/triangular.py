"""Forward/backward substitution over a level-schedule plan.

Two sweeps compute the same result:
    - ``sweep_sequential``: one row at a time in dependency order.
    - ``sweep_levels``: one vectorized batch per level.

Right-hand sides are ``(m,)`` vectors or ``(m, k)`` blocks of columns.
Rows whose diagonal is zero (or missing) divide by zero and produce
inf/nan; the caller learns about them through the zero-pivot report.
"""

from typing import Optional

import numpy as np

from .levels import TriangularPlan

__all__ = ['diagonal', 'numeric_zero', 'sweep_sequential', 'sweep_levels']


def diagonal(plan: TriangularPlan, val: np.ndarray) -> np.ndarray:
    """Effective diagonal of the operator (ones for unit diagonal)."""
    if plan.unit:
        return np.ones(plan.m, dtype=val.dtype)
    d = np.zeros(plan.m, dtype=val.dtype)
    present = plan.diag_pos >= 0
    d[present] = val[plan.diag_pos[present]]
    if plan.conj:
        d = np.conj(d)
    return d


def numeric_zero(plan: TriangularPlan, d: np.ndarray) -> int:
    """Smallest row whose stored diagonal is exactly zero, or -1."""
    if plan.unit:
        return -1
    hits = np.flatnonzero((d == 0) & (plan.diag_pos >= 0))
    return int(hits[0]) if hits.size else -1


def _offdiag(plan: TriangularPlan, val: np.ndarray) -> np.ndarray:
    off = val[plan.pos]
    return np.conj(off) if plan.conj else off


def sweep_sequential(plan: TriangularPlan, val: np.ndarray, b: np.ndarray,
                     y: np.ndarray, inv_diag: Optional[np.ndarray] = None) -> None:
    """Solve row by row in dependency order. ``b`` and ``y`` may alias."""
    off = _offdiag(plan, val)
    d = diagonal(plan, val) if inv_diag is None else None
    row_ptr, cols = plan.row_ptr, plan.cols
    with np.errstate(divide='ignore', invalid='ignore', over='ignore'):
        for i in plan.sweep_order:
            s, e = row_ptr[i], row_ptr[i + 1]
            acc = b[i] - off[s:e] @ y[cols[s:e]] if e > s else b[i]
            y[i] = acc * inv_diag[i] if inv_diag is not None else acc / d[i]


def sweep_levels(plan: TriangularPlan, val: np.ndarray, b: np.ndarray,
                 y: np.ndarray, inv_diag: Optional[np.ndarray] = None) -> None:
    """Solve one level at a time. ``b`` and ``y`` may alias."""
    off = _offdiag(plan, val)
    d = diagonal(plan, val) if inv_diag is None else None
    cols = plan.cols
    with np.errstate(divide='ignore', invalid='ignore', over='ignore'):
        for rows, entries, owner in plan.batches():
            rhs = b[rows]
            if entries.size:
                contrib = off[entries]
                if y.ndim == 2:
                    contrib = contrib[:, None]
                acc = np.zeros_like(rhs)
                np.add.at(acc, owner, contrib * y[cols[entries]])
                rhs = rhs - acc
            if inv_diag is not None:
                scale = inv_diag[rows]
                y[rows] = rhs * (scale[:, None] if y.ndim == 2 else scale)
            else:
                pivots = d[rows]
                y[rows] = rhs / (pivots[:, None] if y.ndim == 2 else pivots)
