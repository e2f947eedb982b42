"""Incomplete Factorization Engine: ILU(0) and IC(0).

Both factorizations keep the sparsity pattern of ``A`` (no fill-in) and
overwrite its values in place:

    ILU(0): strict lower part holds ``L`` (unit diagonal implied), the rest
            holds ``U``; ``A ~= L U`` on the pattern.
    IC(0):  the lower triangle is overwritten with ``L`` such that
            ``A ~= L L^H``; the upper triangle is left untouched.

Like the triangular solves, the v2 routines are split into a pattern-only
analysis (dependency levels of the lower triangle, diagonal positions,
structural zero pivots) and the numeric factorization, which records
numeric zero pivots. Both solve policies produce identical results.

Numeric boost (off by default): a pivot with ``tol >= |pivot|`` is
replaced by ``boost_val`` and is not reported as a zero pivot.

Block routines (``bsrilu02*``, ``bsric02*``) factorize the scalar matrix
formed by the cells of the stored blocks and report block rows.
"""

import logging
from typing import Callable

import numpy as np

from . import _kernel as K
from ._dispatch import (
    kind_for,
    require_descr,
    require_instance,
    require_operation,
    require_policy,
    require_same_base,
    require_square,
)
from .descr import Direction, FillMode, MatDescr, MatrixType, Operation, SolvePolicy
from .dtypes import ScalarKind
from .error import MatrixTypeNotSupportedError, NotSupportedError
from .handle import Handle, ScalarArg, require_handle
from .info import (
    AnalysisInfo,
    Bsric02Info,
    Bsrilu02Info,
    Csric02Info,
    Csrilu02Info,
    SolveAnalysisInfo,
    ZeroPivotResult,
    check_info,
    zero_pivot,
)
from .sparse import CSRMatrix, GEBSRMatrix
from .triangular import check_block_layout
from .workspace import Arena, array_bytes, check_buffer

logger = logging.getLogger("acsparse.factorization")

__all__ = [
    # Legacy
    'csrilu0', 'csric0',
    # csrilu02 / csric02
    'csrilu02_buffer_size', 'csrilu02_analysis', 'csrilu02', 'csrilu02_zero_pivot',
    'csrilu02_numeric_boost',
    'csric02_buffer_size', 'csric02_analysis', 'csric02', 'csric02_zero_pivot',
    'csric02_numeric_boost',
    # bsrilu02 / bsric02
    'bsrilu02_buffer_size', 'bsrilu02_analysis', 'bsrilu02', 'bsrilu02_zero_pivot',
    'bsrilu02_numeric_boost',
    'bsric02_buffer_size', 'bsric02_analysis', 'bsric02', 'bsric02_zero_pivot',
    'bsric02_numeric_boost',
]


# =============================================================================
# Descriptor Rules
# =============================================================================

def _require_ilu_descr(descr: MatDescr, context: str) -> None:
    require_descr(descr)
    if descr.matrix_type != MatrixType.GENERAL:
        raise MatrixTypeNotSupportedError(
            f"{context}: matrix type {descr.matrix_type.name} is not supported"
        )


def _require_ic_descr(descr: MatDescr, context: str) -> None:
    """IC(0) reads the lower triangle of GENERAL or lower-stored symmetric input."""
    require_descr(descr)
    if descr.matrix_type == MatrixType.GENERAL:
        return
    if descr.matrix_type in (MatrixType.SYMMETRIC, MatrixType.HERMITIAN):
        if descr.fill_mode != FillMode.LOWER:
            raise NotSupportedError(f"{context}: only the lower triangle is supported")
        return
    raise MatrixTypeNotSupportedError(
        f"{context}: matrix type {descr.matrix_type.name} is not supported"
    )


# =============================================================================
# Legacy
# =============================================================================

def _legacy(handle, trans, descr, csr, info, context, descr_rule, kernel) -> None:
    handle = require_handle(handle)
    trans = require_operation(trans)
    descr_rule(descr, context)
    require_instance(csr, CSRMatrix, "csr")
    require_same_base(descr, csr, context)
    check_info(info, SolveAnalysisInfo, context)
    if trans != Operation.NON_TRANSPOSE:
        raise NotSupportedError(f"{context}: only the non-transposed operation is supported")
    info.require_analyzed(csr.m, csr.nnz, context)
    analyzed_op, analyzed_fill, _ = info.signature
    if analyzed_op != Operation.NON_TRANSPOSE or analyzed_fill != FillMode.LOWER:
        raise NotSupportedError(
            f"{context}: the analysis must be of the non-transposed lower triangle"
        )
    kind = kind_for(handle, csr.dtype, context)
    use_levels = info.policy == SolvePolicy.USE_LEVEL

    def factorize():
        zero_row = kernel(info.factor, csr.val, K.Boost(), use_levels)
        info.record_numeric_zero(zero_row)
        logger.debug("%s%s: m=%d nnz=%d done", kind.prefix, context, csr.m, csr.nnz)

    handle.enqueue(factorize, context)


def csrilu0(handle: Handle, trans: Operation, descr: MatDescr, csr: CSRMatrix,
            info: SolveAnalysisInfo) -> None:
    """Legacy ILU(0) over the pattern analyzed by ``csrsv_analysis``."""
    _legacy(handle, trans, descr, csr, info, "csrilu0", _require_ilu_descr, K.ilu0)


def csric0(handle: Handle, trans: Operation, descr: MatDescr, csr: CSRMatrix,
           info: SolveAnalysisInfo) -> None:
    """Legacy IC(0) over the pattern analyzed by ``csrsv_analysis``."""
    _legacy(handle, trans, descr, csr, info, "csric0", _require_ic_descr, K.ic0)


# =============================================================================
# v2 Machinery
# =============================================================================

def _buffer_bytes(m: int) -> int:
    return array_bytes(m, np.int64)


def _analysis(handle: Handle, info: AnalysisInfo, m: int, nnz: int, base: int,
              entries_fn: Callable, policy: SolvePolicy, buffer: np.ndarray,
              block_dim: int, context: str) -> None:
    policy = require_policy(policy)
    check_buffer(buffer, _buffer_bytes(m), context)
    info.mark_pending(m, nnz, base, block_dim)

    def analyze():
        scratch = Arena(buffer).take(np.int64, m)
        pattern = K.build_factor_pattern(m, *entries_fn(), nnz, scratch)
        info.record_analysis(pattern, m, nnz, base, pattern.structural_zero, policy, block_dim)
        logger.debug("%s: m=%d nnz=%d, %d levels", context, m, nnz, len(pattern.groups))

    handle.enqueue(analyze, context)


def _factorize(handle: Handle, info, m: int, nnz: int, val: np.ndarray, kind: ScalarKind,
               policy: SolvePolicy, buffer: np.ndarray, kernel: Callable, context: str) -> None:
    policy = require_policy(policy)
    info.require_analyzed(m, nnz, context)
    check_buffer(buffer, _buffer_bytes(m), context)
    use_levels = policy == SolvePolicy.USE_LEVEL

    def factorize():
        zero_row = kernel(info.plan, val, info.boost_for(kind), use_levels)
        info.record_numeric_zero(zero_row)

    handle.enqueue(factorize, context)


def _numeric_boost(handle: Handle, info, info_cls, enable_boost: bool,
                   tol: ScalarArg, boost_val: ScalarArg, context: str) -> None:
    handle = require_handle(handle)
    check_info(info, info_cls, context)
    if not enable_boost:
        info.set_boost(False, lambda: 0.0, lambda: 0.0)
        return
    read_tol = handle.resolve_scalar(tol, ScalarKind.FLOAT64, "tol")
    read_val = handle.resolve_scalar(boost_val, ScalarKind.COMPLEX128, "boost_val")
    info.set_boost(True, read_tol, read_val)


def _check_csr(handle, descr, csr, info, info_cls, descr_rule, context):
    handle = require_handle(handle)
    descr_rule(descr, context)
    require_instance(csr, CSRMatrix, "csr")
    require_same_base(descr, csr, context)
    check_info(info, info_cls, context)
    require_square(csr.shape, context)
    kind = kind_for(handle, csr.dtype, context)
    return handle, kind


def _check_bsr(handle, direction, descr, bsr, info, info_cls, descr_rule, context):
    handle = require_handle(handle)
    descr_rule(descr, context)
    require_instance(bsr, GEBSRMatrix, "bsr")
    require_same_base(descr, bsr, context)
    check_info(info, info_cls, context)
    check_block_layout(bsr, direction, context)
    kind = kind_for(handle, bsr.dtype, context)
    return handle, kind


# =============================================================================
# csrilu02
# =============================================================================

def csrilu02_buffer_size(handle: Handle, descr: MatDescr, csr: CSRMatrix,
                         info: Csrilu02Info) -> int:
    _check_csr(handle, descr, csr, info, Csrilu02Info, _require_ilu_descr,
               "csrilu02_buffer_size")
    return _buffer_bytes(csr.m)


def csrilu02_analysis(handle: Handle, descr: MatDescr, csr: CSRMatrix, info: Csrilu02Info,
                      policy: SolvePolicy, buffer: np.ndarray) -> None:
    handle, _ = _check_csr(handle, descr, csr, info, Csrilu02Info, _require_ilu_descr,
                           "csrilu02_analysis")
    _analysis(handle, info, csr.m, csr.nnz, csr.base, csr.scalar_entries,
              policy, buffer, 1, "csrilu02_analysis")


def csrilu02(handle: Handle, descr: MatDescr, csr: CSRMatrix, info: Csrilu02Info,
             policy: SolvePolicy, buffer: np.ndarray) -> None:
    """Overwrite ``csr.val`` with its ILU(0) factors."""
    handle, kind = _check_csr(handle, descr, csr, info, Csrilu02Info, _require_ilu_descr,
                              "csrilu02")
    _factorize(handle, info, csr.m, csr.nnz, csr.val, kind, policy, buffer, K.ilu0, "csrilu02")


def csrilu02_zero_pivot(handle: Handle, info: Csrilu02Info) -> ZeroPivotResult:
    check_info(info, Csrilu02Info, "csrilu02_zero_pivot")
    return zero_pivot(handle, info)


def csrilu02_numeric_boost(handle: Handle, info: Csrilu02Info, enable_boost: bool,
                           tol: ScalarArg, boost_val: ScalarArg) -> None:
    _numeric_boost(handle, info, Csrilu02Info, enable_boost, tol, boost_val,
                   "csrilu02_numeric_boost")


# =============================================================================
# csric02
# =============================================================================

def csric02_buffer_size(handle: Handle, descr: MatDescr, csr: CSRMatrix,
                        info: Csric02Info) -> int:
    _check_csr(handle, descr, csr, info, Csric02Info, _require_ic_descr, "csric02_buffer_size")
    return _buffer_bytes(csr.m)


def csric02_analysis(handle: Handle, descr: MatDescr, csr: CSRMatrix, info: Csric02Info,
                     policy: SolvePolicy, buffer: np.ndarray) -> None:
    handle, _ = _check_csr(handle, descr, csr, info, Csric02Info, _require_ic_descr,
                           "csric02_analysis")
    _analysis(handle, info, csr.m, csr.nnz, csr.base, csr.scalar_entries,
              policy, buffer, 1, "csric02_analysis")


def csric02(handle: Handle, descr: MatDescr, csr: CSRMatrix, info: Csric02Info,
            policy: SolvePolicy, buffer: np.ndarray) -> None:
    """Overwrite the lower triangle of ``csr.val`` with its IC(0) factor."""
    handle, kind = _check_csr(handle, descr, csr, info, Csric02Info, _require_ic_descr,
                              "csric02")
    _factorize(handle, info, csr.m, csr.nnz, csr.val, kind, policy, buffer, K.ic0, "csric02")


def csric02_zero_pivot(handle: Handle, info: Csric02Info) -> ZeroPivotResult:
    check_info(info, Csric02Info, "csric02_zero_pivot")
    return zero_pivot(handle, info)


def csric02_numeric_boost(handle: Handle, info: Csric02Info, enable_boost: bool,
                          tol: ScalarArg, boost_val: ScalarArg) -> None:
    _numeric_boost(handle, info, Csric02Info, enable_boost, tol, boost_val,
                   "csric02_numeric_boost")


# =============================================================================
# bsrilu02
# =============================================================================

def bsrilu02_buffer_size(handle: Handle, direction: Direction, descr: MatDescr,
                         bsr: GEBSRMatrix, info: Bsrilu02Info) -> int:
    _check_bsr(handle, direction, descr, bsr, info, Bsrilu02Info, _require_ilu_descr,
               "bsrilu02_buffer_size")
    return _buffer_bytes(bsr.m)


def bsrilu02_analysis(handle: Handle, direction: Direction, descr: MatDescr,
                      bsr: GEBSRMatrix, info: Bsrilu02Info, policy: SolvePolicy,
                      buffer: np.ndarray) -> None:
    handle, _ = _check_bsr(handle, direction, descr, bsr, info, Bsrilu02Info,
                           _require_ilu_descr, "bsrilu02_analysis")
    _analysis(handle, info, bsr.m, bsr.nnzb, bsr.base, bsr.scalar_entries,
              policy, buffer, bsr.row_block_dim, "bsrilu02_analysis")


def bsrilu02(handle: Handle, direction: Direction, descr: MatDescr, bsr: GEBSRMatrix,
             info: Bsrilu02Info, policy: SolvePolicy, buffer: np.ndarray) -> None:
    """Overwrite the block values with ILU(0) factors of the block pattern."""
    handle, kind = _check_bsr(handle, direction, descr, bsr, info, Bsrilu02Info,
                              _require_ilu_descr, "bsrilu02")
    _factorize(handle, info, bsr.m, bsr.nnzb, bsr.val, kind, policy, buffer, K.ilu0,
               "bsrilu02")


def bsrilu02_zero_pivot(handle: Handle, info: Bsrilu02Info) -> ZeroPivotResult:
    """First zero pivot as a block row (index base applied)."""
    check_info(info, Bsrilu02Info, "bsrilu02_zero_pivot")
    return zero_pivot(handle, info)


def bsrilu02_numeric_boost(handle: Handle, info: Bsrilu02Info, enable_boost: bool,
                           tol: ScalarArg, boost_val: ScalarArg) -> None:
    _numeric_boost(handle, info, Bsrilu02Info, enable_boost, tol, boost_val,
                   "bsrilu02_numeric_boost")


# =============================================================================
# bsric02
# =============================================================================

def bsric02_buffer_size(handle: Handle, direction: Direction, descr: MatDescr,
                        bsr: GEBSRMatrix, info: Bsric02Info) -> int:
    _check_bsr(handle, direction, descr, bsr, info, Bsric02Info, _require_ic_descr,
               "bsric02_buffer_size")
    return _buffer_bytes(bsr.m)


def bsric02_analysis(handle: Handle, direction: Direction, descr: MatDescr,
                     bsr: GEBSRMatrix, info: Bsric02Info, policy: SolvePolicy,
                     buffer: np.ndarray) -> None:
    handle, _ = _check_bsr(handle, direction, descr, bsr, info, Bsric02Info,
                           _require_ic_descr, "bsric02_analysis")
    _analysis(handle, info, bsr.m, bsr.nnzb, bsr.base, bsr.scalar_entries,
              policy, buffer, bsr.row_block_dim, "bsric02_analysis")


def bsric02(handle: Handle, direction: Direction, descr: MatDescr, bsr: GEBSRMatrix,
            info: Bsric02Info, policy: SolvePolicy, buffer: np.ndarray) -> None:
    """Overwrite the lower block triangle with the IC(0) factor."""
    handle, kind = _check_bsr(handle, direction, descr, bsr, info, Bsric02Info,
                              _require_ic_descr, "bsric02")
    _factorize(handle, info, bsr.m, bsr.nnzb, bsr.val, kind, policy, buffer, K.ic0,
               "bsric02")


def bsric02_zero_pivot(handle: Handle, info: Bsric02Info) -> ZeroPivotResult:
    check_info(info, Bsric02Info, "bsric02_zero_pivot")
    return zero_pivot(handle, info)


def bsric02_numeric_boost(handle: Handle, info: Bsric02Info, enable_boost: bool,
                          tol: ScalarArg, boost_val: ScalarArg) -> None:
    _numeric_boost(handle, info, Bsric02Info, enable_boost, tol, boost_val,
                   "bsric02_numeric_boost")
