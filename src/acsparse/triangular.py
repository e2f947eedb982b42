"""Analysis/Solve Engine for sparse triangular systems.

Solves ``op(A) y = alpha x`` where ``op`` is identity, transpose or
conjugate transpose and only the triangle of ``A`` named by the
descriptor's fill mode (plus its diagonal unless the diagonal is UNIT)
is read. Entries outside that triangle are ignored.

Every solve is split in two:

    analysis: pattern only. Builds the level schedule of the effective
              operator, locates the diagonal of every row and records the
              first structural zero pivot (missing diagonal).
    solve:    numeric. Sequential (``SolvePolicy.NO_LEVEL``) or one
              vectorized batch per level (``SolvePolicy.USE_LEVEL``);
              the first exactly-zero diagonal is recorded in the info.

Families:
    - legacy ``csrsv_analysis`` / ``csrsv_solve`` / ``csrsm_solve``: no
      workspace, the analysis also caches the inverse diagonal and must
      be repeated when values change.
    - ``csrsv2_*``, ``csrsm2_*``, ``bsrsv2_*``: caller-owned workspace and
      explicit policy; the analysis depends on the pattern only and stays
      valid when values are refreshed in place.

Example:
    >>> info = acsparse.create_csrsv2_info()
    >>> buffer = workspace.allocate(csrsv2_buffer_size(handle, trans, descr, csr, info))
    >>> csrsv2_analysis(handle, trans, descr, csr, info, SolvePolicy.USE_LEVEL, buffer)
    >>> csrsv2_solve(handle, trans, 1.0, descr, csr, info, x, y,
    ...              SolvePolicy.USE_LEVEL, buffer)
    >>> csrsv2_zero_pivot(handle, info)
    ZeroPivotResult(found=False, position=-1)
"""

import logging
from typing import Any, Callable, Tuple

import numpy as np

from . import _kernel as K
from ._dispatch import (
    kind_for,
    require_dense,
    require_descr,
    require_instance,
    require_operation,
    require_policy,
    require_same_base,
    require_square,
    require_vector,
)
from .config import config
from .descr import Direction, MatDescr, MatrixType, Operation, SolvePolicy
from .error import InvalidValueError, MatrixTypeNotSupportedError
from .handle import Handle, ScalarArg, require_handle
from .info import (
    AnalysisInfo,
    Bsrsv2Info,
    Csrsm2Info,
    Csrsv2Info,
    SolveAnalysisInfo,
    ZeroPivotResult,
    check_info,
    zero_pivot,
)
from .sparse import CSRMatrix, GEBSRMatrix
from .workspace import Arena, array_bytes, check_buffer

logger = logging.getLogger("acsparse.triangular")

__all__ = [
    # Legacy
    'csrsv_analysis', 'csrsv_solve', 'csrsm_solve',
    # csrsv2
    'csrsv2_buffer_size', 'csrsv2_analysis', 'csrsv2_solve', 'csrsv2_zero_pivot',
    # csrsm2
    'csrsm2_buffer_size', 'csrsm2_analysis', 'csrsm2_solve', 'csrsm2_zero_pivot',
    # bsrsv2
    'bsrsv2_buffer_size', 'bsrsv2_analysis', 'bsrsv2_solve', 'bsrsv2_zero_pivot',
]


# =============================================================================
# Helpers
# =============================================================================

def _require_triangular(descr: MatDescr, context: str, allow_general: bool = False) -> None:
    require_descr(descr)
    allowed = (MatrixType.TRIANGULAR, MatrixType.GENERAL) if allow_general else (
        MatrixType.TRIANGULAR,)
    if descr.matrix_type not in allowed:
        raise MatrixTypeNotSupportedError(
            f"{context}: matrix type {descr.matrix_type.name} is not supported"
        )


def _signature(trans: Operation, descr: MatDescr) -> Tuple[Operation, Any, Any]:
    return trans, descr.fill_mode, descr.diag_type


def _build_plan(m: int, entries, trans: Operation, descr: MatDescr, nnz: int,
                level_scratch=None) -> K.TriangularPlan:
    rows, cols, pos = entries
    return K.build_plan(
        m, rows, cols, pos,
        fill_lower=descr.is_lower,
        transpose=trans != Operation.NON_TRANSPOSE,
        conj=trans == Operation.CONJUGATE_TRANSPOSE,
        unit=descr.is_unit,
        nnz=nnz,
        level_scratch=level_scratch,
    )


def _sweep(policy: SolvePolicy) -> Callable:
    return K.sweep_levels if policy == SolvePolicy.USE_LEVEL else K.sweep_sequential


def _solve(info: AnalysisInfo, val: np.ndarray, rhs: np.ndarray, out: np.ndarray,
           policy: SolvePolicy, inv_diag=None) -> None:
    """Run one solve against the plan stored in ``info`` and record pivots."""
    plan = info.plan
    _sweep(policy)(plan, val, rhs, out, inv_diag)
    if inv_diag is None:
        info.record_numeric_zero(K.numeric_zero(plan, K.diagonal(plan, val)))


def _analysis_buffer_bytes(m: int) -> int:
    return array_bytes(m, np.int64)


def _analyze_into(info: AnalysisInfo, m: int, nnz: int, base: int, entries_fn: Callable,
                  trans: Operation, descr: MatDescr, policy: SolvePolicy,
                  buffer, block_dim: int = 1) -> Callable[[], None]:
    """Closure building the plan of ``op(tri(A))`` into ``info``."""

    def analyze():
        scratch = Arena(buffer).take(np.int64, m) if buffer is not None else None
        plan = _build_plan(m, entries_fn(), trans, descr, nnz, scratch)
        info.record_analysis(plan, m, nnz, base, plan.structural_zero, policy, block_dim)
        logger.debug("%s: m=%d nnz=%d, %d levels (%s, %s)", info.name, m, nnz,
                     plan.n_levels, trans.name, descr.fill_mode.name)

    return analyze


# =============================================================================
# Legacy
# =============================================================================

def csrsv_analysis(handle: Handle, trans: Operation, descr: MatDescr, csr: CSRMatrix,
                   info: SolveAnalysisInfo) -> None:
    """Analyze ``csr`` for :func:`csrsv_solve` / :func:`csrsm_solve`.

    A GENERAL descriptor is accepted so the info can feed ``csrilu0`` /
    ``csric0``; the fill mode and diagonal type are then taken as given.
    The inverse diagonal of the current values is cached in the info.
    """
    handle = require_handle(handle)
    trans = require_operation(trans)
    _require_triangular(descr, "csrsv_analysis", allow_general=True)
    require_instance(csr, CSRMatrix, "csr")
    require_same_base(descr, csr, "csrsv_analysis")
    check_info(info, SolveAnalysisInfo, "csrsv_analysis")
    require_square(csr.shape, "csrsv_analysis")
    kind_for(handle, csr.dtype, "csrsv_analysis")
    m, nnz, base = csr.m, csr.nnz, csr.base
    policy = config.execution.policy
    info.mark_pending(m, nnz, base, signature=_signature(trans, descr))
    info.trans = trans
    info.descr = descr

    def analyze():
        entries = csr.scalar_entries()
        plan = _build_plan(m, entries, trans, descr, nnz)
        factor = K.build_factor_pattern(m, *entries, nnz)
        d = K.diagonal(plan, csr.val)
        with np.errstate(divide='ignore', invalid='ignore'):
            inv_diag = 1 / d
        info.record_analysis(plan, m, nnz, base, plan.structural_zero, policy)
        info.factor = factor
        info.inv_diag = inv_diag
        info.record_numeric_zero(K.numeric_zero(plan, d))
        logger.debug("csrsv_analysis: m=%d nnz=%d, %d levels", m, nnz, plan.n_levels)

    handle.enqueue(analyze, "csrsv_analysis")


def csrsv_solve(handle: Handle, trans: Operation, alpha: ScalarArg, descr: MatDescr,
                csr: CSRMatrix, info: SolveAnalysisInfo, x: np.ndarray, y: np.ndarray) -> None:
    """y = alpha * op(A)^-1 x using a legacy analysis."""
    handle = require_handle(handle)
    trans = require_operation(trans)
    _require_triangular(descr, "csrsv_solve", allow_general=True)
    require_instance(csr, CSRMatrix, "csr")
    require_same_base(descr, csr, "csrsv_solve")
    check_info(info, SolveAnalysisInfo, "csrsv_solve")
    info.require_analyzed(csr.m, csr.nnz, "csrsv_solve", _signature(trans, descr))
    kind = kind_for(handle, csr.dtype, "csrsv_solve")
    read_alpha = handle.resolve_scalar(alpha, kind, "alpha")
    require_vector(x, csr.m, csr.dtype, "x")
    require_vector(y, csr.m, csr.dtype, "y", writeable=True)

    def solve():
        rhs = kind.mul(read_alpha(), x)
        _solve(info, csr.val, rhs, y, info.policy, info.inv_diag)

    handle.enqueue(solve, "csrsv_solve")


def csrsm_solve(handle: Handle, trans: Operation, alpha: ScalarArg, descr: MatDescr,
                csr: CSRMatrix, info: SolveAnalysisInfo, B: np.ndarray, X: np.ndarray) -> None:
    """X = alpha * op(A)^-1 B for a dense ``(m, k)`` right-hand side."""
    handle = require_handle(handle)
    trans = require_operation(trans)
    _require_triangular(descr, "csrsm_solve", allow_general=True)
    require_instance(csr, CSRMatrix, "csr")
    require_same_base(descr, csr, "csrsm_solve")
    check_info(info, SolveAnalysisInfo, "csrsm_solve")
    info.require_analyzed(csr.m, csr.nnz, "csrsm_solve", _signature(trans, descr))
    kind = kind_for(handle, csr.dtype, "csrsm_solve")
    read_alpha = handle.resolve_scalar(alpha, kind, "alpha")
    B = require_dense(B, None, "B", dtype=csr.dtype)
    if B.shape[0] != csr.m:
        raise InvalidValueError(f"B must have {csr.m} rows, got {B.shape[0]}")
    require_dense(X, B.shape, "X", dtype=csr.dtype, writeable=True)

    def solve():
        rhs = kind.mul(read_alpha(), B)
        _solve(info, csr.val, rhs, X, info.policy, info.inv_diag)

    handle.enqueue(solve, "csrsm_solve")


# =============================================================================
# csrsv2
# =============================================================================

def _check_csr_solve_args(handle, trans, descr, csr, info, info_cls, context):
    handle = require_handle(handle)
    trans = require_operation(trans)
    _require_triangular(descr, context)
    require_instance(csr, CSRMatrix, "csr")
    require_same_base(descr, csr, context)
    check_info(info, info_cls, context)
    require_square(csr.shape, context)
    kind = kind_for(handle, csr.dtype, context)
    return handle, trans, kind


def csrsv2_buffer_size(handle: Handle, trans: Operation, descr: MatDescr, csr: CSRMatrix,
                       info: Csrsv2Info) -> int:
    """Workspace bytes for :func:`csrsv2_analysis` and :func:`csrsv2_solve`."""
    _check_csr_solve_args(handle, trans, descr, csr, info, Csrsv2Info, "csrsv2_buffer_size")
    return _analysis_buffer_bytes(csr.m)


def csrsv2_analysis(handle: Handle, trans: Operation, descr: MatDescr, csr: CSRMatrix,
                    info: Csrsv2Info, policy: SolvePolicy, buffer: np.ndarray) -> None:
    handle, trans, _ = _check_csr_solve_args(handle, trans, descr, csr, info, Csrsv2Info,
                                             "csrsv2_analysis")
    policy = require_policy(policy)
    check_buffer(buffer, _analysis_buffer_bytes(csr.m), "csrsv2_analysis")
    info.mark_pending(csr.m, csr.nnz, csr.base, signature=_signature(trans, descr))
    handle.enqueue(
        _analyze_into(info, csr.m, csr.nnz, csr.base, csr.scalar_entries,
                      trans, descr, policy, buffer),
        "csrsv2_analysis",
    )


def csrsv2_solve(handle: Handle, trans: Operation, alpha: ScalarArg, descr: MatDescr,
                 csr: CSRMatrix, info: Csrsv2Info, x: np.ndarray, y: np.ndarray,
                 policy: SolvePolicy, buffer: np.ndarray) -> None:
    """y = alpha * op(A)^-1 x. ``x`` and ``y`` may be the same array."""
    handle, trans, kind = _check_csr_solve_args(handle, trans, descr, csr, info, Csrsv2Info,
                                                "csrsv2_solve")
    policy = require_policy(policy)
    info.require_analyzed(csr.m, csr.nnz, "csrsv2_solve", _signature(trans, descr))
    check_buffer(buffer, _analysis_buffer_bytes(csr.m), "csrsv2_solve")
    read_alpha = handle.resolve_scalar(alpha, kind, "alpha")
    require_vector(x, csr.m, csr.dtype, "x")
    require_vector(y, csr.m, csr.dtype, "y", writeable=True)

    def solve():
        rhs = kind.mul(read_alpha(), x)
        _solve(info, csr.val, rhs, y, policy)

    handle.enqueue(solve, "csrsv2_solve")


def csrsv2_zero_pivot(handle: Handle, info: Csrsv2Info) -> ZeroPivotResult:
    check_info(info, Csrsv2Info, "csrsv2_zero_pivot")
    return zero_pivot(handle, info)


# =============================================================================
# csrsm2
# =============================================================================

def _check_rhs(csr: CSRMatrix, B: np.ndarray) -> np.ndarray:
    B = require_dense(B, None, "B", dtype=csr.dtype, writeable=True)
    if B.shape[0] != csr.m:
        raise InvalidValueError(f"B must have {csr.m} rows, got {B.shape[0]}")
    return B


def csrsm2_buffer_size(handle: Handle, trans: Operation, descr: MatDescr, csr: CSRMatrix,
                       B: np.ndarray, info: Csrsm2Info) -> int:
    """Workspace bytes for :func:`csrsm2_analysis` and :func:`csrsm2_solve`."""
    _check_csr_solve_args(handle, trans, descr, csr, info, Csrsm2Info, "csrsm2_buffer_size")
    _check_rhs(csr, B)
    return _analysis_buffer_bytes(csr.m)


def csrsm2_analysis(handle: Handle, trans: Operation, descr: MatDescr, csr: CSRMatrix,
                    B: np.ndarray, info: Csrsm2Info, policy: SolvePolicy,
                    buffer: np.ndarray) -> None:
    handle, trans, _ = _check_csr_solve_args(handle, trans, descr, csr, info, Csrsm2Info,
                                             "csrsm2_analysis")
    policy = require_policy(policy)
    _check_rhs(csr, B)
    check_buffer(buffer, _analysis_buffer_bytes(csr.m), "csrsm2_analysis")
    info.mark_pending(csr.m, csr.nnz, csr.base, signature=_signature(trans, descr))
    handle.enqueue(
        _analyze_into(info, csr.m, csr.nnz, csr.base, csr.scalar_entries,
                      trans, descr, policy, buffer),
        "csrsm2_analysis",
    )


def csrsm2_solve(handle: Handle, trans: Operation, alpha: ScalarArg, descr: MatDescr,
                 csr: CSRMatrix, B: np.ndarray, info: Csrsm2Info, policy: SolvePolicy,
                 buffer: np.ndarray) -> None:
    """Overwrite the dense ``(m, k)`` block ``B`` with ``alpha * op(A)^-1 B``."""
    handle, trans, kind = _check_csr_solve_args(handle, trans, descr, csr, info, Csrsm2Info,
                                                "csrsm2_solve")
    policy = require_policy(policy)
    info.require_analyzed(csr.m, csr.nnz, "csrsm2_solve", _signature(trans, descr))
    B = _check_rhs(csr, B)
    check_buffer(buffer, _analysis_buffer_bytes(csr.m), "csrsm2_solve")
    read_alpha = handle.resolve_scalar(alpha, kind, "alpha")

    def solve():
        rhs = kind.mul(read_alpha(), B)
        _solve(info, csr.val, rhs, B, policy)

    handle.enqueue(solve, "csrsm2_solve")


def csrsm2_zero_pivot(handle: Handle, info: Csrsm2Info) -> ZeroPivotResult:
    check_info(info, Csrsm2Info, "csrsm2_zero_pivot")
    return zero_pivot(handle, info)


# =============================================================================
# bsrsv2
# =============================================================================

def _check_bsr_solve_args(handle, direction, trans, descr, bsr, info, context):
    handle = require_handle(handle)
    trans = require_operation(trans)
    _require_triangular(descr, context)
    require_instance(bsr, GEBSRMatrix, "bsr")
    require_same_base(descr, bsr, context)
    check_info(info, Bsrsv2Info, context)
    check_block_layout(bsr, direction, context)
    kind = kind_for(handle, bsr.dtype, context)
    return handle, trans, kind


def check_block_layout(bsr: GEBSRMatrix, direction: Direction, context: str) -> None:
    """Square matrix of square blocks stored in ``direction`` order."""
    try:
        direction = Direction(direction)
    except ValueError as e:
        raise InvalidValueError(f"direction: {e}") from e
    if direction != bsr.direction:
        raise InvalidValueError(
            f"{context}: direction {direction.name} does not match the "
            f"matrix storage order {bsr.direction.name}"
        )
    if bsr.row_block_dim != bsr.col_block_dim:
        raise InvalidValueError(f"{context}: blocks must be square")
    require_square(bsr.shape, context)


def bsrsv2_buffer_size(handle: Handle, direction: Direction, trans: Operation,
                       descr: MatDescr, bsr: GEBSRMatrix, info: Bsrsv2Info) -> int:
    _check_bsr_solve_args(handle, direction, trans, descr, bsr, info, "bsrsv2_buffer_size")
    return _analysis_buffer_bytes(bsr.m)


def bsrsv2_analysis(handle: Handle, direction: Direction, trans: Operation, descr: MatDescr,
                    bsr: GEBSRMatrix, info: Bsrsv2Info, policy: SolvePolicy,
                    buffer: np.ndarray) -> None:
    """Analyze the scalar triangle formed by the cells of the stored blocks."""
    handle, trans, _ = _check_bsr_solve_args(handle, direction, trans, descr, bsr, info,
                                             "bsrsv2_analysis")
    policy = require_policy(policy)
    check_buffer(buffer, _analysis_buffer_bytes(bsr.m), "bsrsv2_analysis")
    info.mark_pending(bsr.m, bsr.nnzb, bsr.base, bsr.row_block_dim,
                      signature=_signature(trans, descr))
    handle.enqueue(
        _analyze_into(info, bsr.m, bsr.nnzb, bsr.base, bsr.scalar_entries,
                      trans, descr, policy, buffer, bsr.row_block_dim),
        "bsrsv2_analysis",
    )


def bsrsv2_solve(handle: Handle, direction: Direction, trans: Operation, alpha: ScalarArg,
                 descr: MatDescr, bsr: GEBSRMatrix, info: Bsrsv2Info, x: np.ndarray,
                 y: np.ndarray, policy: SolvePolicy, buffer: np.ndarray) -> None:
    """y = alpha * op(A)^-1 x over block storage; vectors have length ``m``."""
    handle, trans, kind = _check_bsr_solve_args(handle, direction, trans, descr, bsr, info,
                                                "bsrsv2_solve")
    policy = require_policy(policy)
    info.require_analyzed(bsr.m, bsr.nnzb, "bsrsv2_solve", _signature(trans, descr))
    check_buffer(buffer, _analysis_buffer_bytes(bsr.m), "bsrsv2_solve")
    read_alpha = handle.resolve_scalar(alpha, kind, "alpha")
    require_vector(x, bsr.m, bsr.dtype, "x")
    require_vector(y, bsr.m, bsr.dtype, "y", writeable=True)

    def solve():
        rhs = kind.mul(read_alpha(), x)
        _solve(info, bsr.val, rhs, y, policy)

    handle.enqueue(solve, "bsrsv2_solve")


def bsrsv2_zero_pivot(handle: Handle, info: Bsrsv2Info) -> ZeroPivotResult:
    """First zero pivot as a block row (index base applied)."""
    check_info(info, Bsrsv2Info, "bsrsv2_zero_pivot")
    return zero_pivot(handle, info)
