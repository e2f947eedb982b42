"""
Tests for the analysis/solve engine.
"""

import pytest
import numpy as np

import acsparse
from acsparse import (
    CSRMatrix,
    DiagType,
    Direction,
    FillMode,
    IndexBase,
    MatrixType,
    Operation,
    SolvePolicy,
)
from acsparse.error import InvalidValueError, MatrixTypeNotSupportedError

from conftest import assert_array_close, csr_from_dense, descr_for

N = Operation.NON_TRANSPOSE
T = Operation.TRANSPOSE
C = Operation.CONJUGATE_TRANSPOSE

POLICIES = [SolvePolicy.NO_LEVEL, SolvePolicy.USE_LEVEL]


def _tri_descr(fill=FillMode.LOWER, diag=DiagType.NON_UNIT, base=IndexBase.ZERO):
    return descr_for(MatrixType.TRIANGULAR, base, fill, diag)


def _analyze(handle, trans, descr, csr, policy=SolvePolicy.USE_LEVEL):
    info = acsparse.create_csrsv2_info()
    size = acsparse.csrsv2_buffer_size(handle, trans, descr, csr, info)
    buf = acsparse.allocate(size)
    acsparse.csrsv2_analysis(handle, trans, descr, csr, info, policy, buf)
    return info, buf


def _solve(handle, trans, descr, csr, x, policy=SolvePolicy.USE_LEVEL, alpha=1.0):
    info, buf = _analyze(handle, trans, descr, csr, policy)
    y = np.empty_like(x)
    acsparse.csrsv2_solve(handle, trans, alpha, descr, csr, info, x, y, policy, buf)
    return y, info


class TestCsrsv2:
    """Test single right-hand-side solves."""

    @pytest.mark.parametrize("policy", POLICIES)
    def test_lower_non_transpose(self, handle, random_lower, policy):
        csr = csr_from_dense(random_lower)
        x = np.arange(1.0, 41.0)
        y, info = _solve(handle, N, _tri_descr(), csr, x, policy, alpha=0.5)
        assert_array_close(y, np.linalg.solve(random_lower, 0.5 * x))
        assert not acsparse.csrsv2_zero_pivot(handle, info)

    def test_policies_agree(self, handle, random_lower):
        csr = csr_from_dense(random_lower)
        x = np.linspace(-1.0, 1.0, 40)
        y_seq, _ = _solve(handle, N, _tri_descr(), csr, x, SolvePolicy.NO_LEVEL)
        y_lvl, _ = _solve(handle, N, _tri_descr(), csr, x, SolvePolicy.USE_LEVEL)
        assert_array_close(y_seq, y_lvl)

    def test_other_triangle_ignored(self, handle, random_lower):
        """Only the triangle named by the fill mode is read."""
        full = random_lower + np.triu(np.ones((40, 40)), 1)
        csr = csr_from_dense(full)
        x = np.ones(40)
        y, _ = _solve(handle, N, _tri_descr(), csr, x)
        assert_array_close(y, np.linalg.solve(random_lower, x))

    @pytest.mark.parametrize("policy", POLICIES)
    def test_transpose(self, handle, random_lower, policy):
        csr = csr_from_dense(random_lower)
        x = np.arange(40.0)
        y, _ = _solve(handle, T, _tri_descr(), csr, x, policy)
        assert_array_close(y, np.linalg.solve(random_lower.T, x))

    def test_conjugate_transpose(self, handle, random_lower):
        A = random_lower + 1j * np.tril(random_lower, -1)
        csr = csr_from_dense(A)
        x = np.ones(40, dtype=np.complex128)
        y, _ = _solve(handle, C, _tri_descr(), csr, x)
        assert_array_close(y, np.linalg.solve(A.conj().T, x))

    def test_upper(self, handle, random_lower):
        U = random_lower.T.copy()
        csr = csr_from_dense(U)
        x = np.arange(40.0)
        y, _ = _solve(handle, N, _tri_descr(FillMode.UPPER), csr, x)
        assert_array_close(y, np.linalg.solve(U, x))

    def test_unit_diagonal(self, handle, random_lower):
        """A UNIT diagonal is taken as ones whatever is stored."""
        csr = csr_from_dense(random_lower)
        x = np.ones(40)
        y, info = _solve(handle, N, _tri_descr(diag=DiagType.UNIT), csr, x)
        L = np.tril(random_lower, -1) + np.eye(40)
        assert_array_close(y, np.linalg.solve(L, x))
        assert not acsparse.csrsv2_zero_pivot(handle, info)

    def test_single_precision(self, handle, dense_small):
        csr = csr_from_dense(dense_small.astype(np.float32))
        x = np.array([2.0, 4.0, 8.0], dtype=np.float32)
        y, _ = _solve(handle, N, _tri_descr(), csr, x)
        assert y.dtype == np.float32
        np.testing.assert_allclose(y, [1.0, 1.0, 2.0], rtol=1e-6)

    def test_in_place(self, handle, csr_small):
        """x and y may be the same array."""
        info, buf = _analyze(handle, N, _tri_descr(), csr_small)
        x = np.array([2.0, 4.0, 8.0])
        acsparse.csrsv2_solve(handle, N, 1.0, _tri_descr(), csr_small, info, x, x,
                              SolvePolicy.USE_LEVEL, buf)
        np.testing.assert_allclose(x, [1.0, 1.0, 2.0])

    def test_one_based(self, handle, random_lower):
        csr = csr_from_dense(random_lower, IndexBase.ONE, np.int64)
        x = np.ones(40)
        y, _ = _solve(handle, N, _tri_descr(base=IndexBase.ONE), csr, x)
        assert_array_close(y, np.linalg.solve(random_lower, x))

    def test_values_refreshed_in_place(self, handle, random_lower):
        """An analysis depends on the pattern only and survives new values."""
        csr = csr_from_dense(random_lower)
        descr = _tri_descr()
        info, buf = _analyze(handle, N, descr, csr)
        csr.val[:] *= 2.0
        x = np.ones(40)
        y = np.empty(40)
        acsparse.csrsv2_solve(handle, N, 1.0, descr, csr, info, x, y,
                              SolvePolicy.USE_LEVEL, buf)
        assert_array_close(y, np.linalg.solve(2.0 * random_lower, x))

    def test_empty_matrix(self, handle):
        csr = CSRMatrix(np.zeros(1, dtype=np.int32), np.zeros(0, dtype=np.int32),
                        np.zeros(0), shape=(0, 0))
        y, info = _solve(handle, N, _tri_descr(), csr, np.zeros(0))
        assert y.size == 0
        assert not acsparse.csrsv2_zero_pivot(handle, info)


class TestZeroPivot:
    """Test structural and numeric zero pivots."""

    def _missing_diagonal(self, base=IndexBase.ZERO):
        # Row 1 has no diagonal entry
        shift = int(base)
        return CSRMatrix(np.array([0, 1, 2, 4], dtype=np.int32) + shift,
                         np.array([0, 0, 0, 2], dtype=np.int32) + shift,
                         np.array([1.0, 1.0, 1.0, 1.0]), shape=(3, 3),
                         descr=descr_for(base=base))

    def test_structural_found_by_analysis(self, handle):
        csr = self._missing_diagonal()
        info, _ = _analyze(handle, N, _tri_descr(), csr)
        result = acsparse.csrsv2_zero_pivot(handle, info)
        assert result.found
        assert result.position == 1
        assert result.status == acsparse.Status.ZERO_PIVOT

    def test_structural_one_based(self, handle):
        csr = self._missing_diagonal(IndexBase.ONE)
        info, _ = _analyze(handle, N, _tri_descr(base=IndexBase.ONE), csr)
        assert acsparse.csrsv2_zero_pivot(handle, info).position == 2

    def test_numeric_found_by_solve(self, handle):
        csr = CSRMatrix(np.array([0, 1, 3, 5], dtype=np.int32),
                        np.array([0, 0, 1, 1, 2], dtype=np.int32),
                        np.array([1.0, 1.0, 1.0, 1.0, 0.0]), shape=(3, 3))
        descr = _tri_descr()
        info, buf = _analyze(handle, N, descr, csr)
        assert not acsparse.csrsv2_zero_pivot(handle, info)
        y = np.empty(3)
        acsparse.csrsv2_solve(handle, N, 1.0, descr, csr, info, np.ones(3), y,
                              SolvePolicy.USE_LEVEL, buf)
        result = acsparse.csrsv2_zero_pivot(handle, info)
        assert result.found and result.position == 2
        assert not np.isfinite(y[2])

        # Each solve replaces the numeric report
        csr.val[4] = 5.0
        acsparse.csrsv2_solve(handle, N, 1.0, descr, csr, info, np.ones(3), y,
                              SolvePolicy.USE_LEVEL, buf)
        assert not acsparse.csrsv2_zero_pivot(handle, info)

    def test_smallest_row_reported(self, handle):
        """With both kinds present the smaller row wins."""
        csr = CSRMatrix(np.array([0, 1, 2, 3], dtype=np.int32),
                        np.array([0, 0, 2], dtype=np.int32),
                        np.array([0.0, 1.0, 1.0]), shape=(3, 3))
        descr = _tri_descr()
        info, buf = _analyze(handle, N, descr, csr)
        assert acsparse.csrsv2_zero_pivot(handle, info).position == 1
        acsparse.csrsv2_solve(handle, N, 1.0, descr, csr, info, np.ones(3), np.empty(3),
                              SolvePolicy.NO_LEVEL, buf)
        assert acsparse.csrsv2_zero_pivot(handle, info).position == 0

    def test_generic_query(self, handle):
        csr = self._missing_diagonal()
        info, _ = _analyze(handle, N, _tri_descr(), csr)
        assert acsparse.zero_pivot(handle, info).position == 1


class TestInfoChecks:
    """Test info lifecycle and descriptor rules."""

    def test_solve_before_analysis(self, handle, csr_small):
        info = acsparse.create_csrsv2_info()
        buf = acsparse.allocate(1024)
        with pytest.raises(InvalidValueError):
            acsparse.csrsv2_solve(handle, N, 1.0, _tri_descr(), csr_small, info,
                                  np.ones(3), np.empty(3), SolvePolicy.USE_LEVEL, buf)

    def test_destroyed_info(self, handle, csr_small):
        info, buf = _analyze(handle, N, _tri_descr(), csr_small)
        info.destroy()
        with pytest.raises(InvalidValueError):
            acsparse.csrsv2_solve(handle, N, 1.0, _tri_descr(), csr_small, info,
                                  np.ones(3), np.empty(3), SolvePolicy.USE_LEVEL, buf)
        with pytest.raises(InvalidValueError):
            acsparse.csrsv2_zero_pivot(handle, info)

    def test_info_context_manager(self, handle, csr_small):
        with acsparse.create_csrsv2_info() as info:
            pass
        assert info.state == acsparse.InfoState.DESTROYED

    def test_operation_mismatch(self, handle, csr_small):
        """An info analyzed for one operation cannot serve another."""
        info, buf = _analyze(handle, N, _tri_descr(), csr_small)
        with pytest.raises(InvalidValueError):
            acsparse.csrsv2_solve(handle, T, 1.0, _tri_descr(), csr_small, info,
                                  np.ones(3), np.empty(3), SolvePolicy.USE_LEVEL, buf)
        with pytest.raises(InvalidValueError):
            acsparse.csrsv2_solve(handle, N, 1.0, _tri_descr(FillMode.UPPER), csr_small, info,
                                  np.ones(3), np.empty(3), SolvePolicy.USE_LEVEL, buf)

    def test_wrong_info_type(self, handle, csr_small):
        info = acsparse.create_csrsm2_info()
        with pytest.raises(InvalidValueError):
            acsparse.csrsv2_buffer_size(handle, N, _tri_descr(), csr_small, info)

    def test_general_rejected(self, handle, csr_small, general_descr):
        info = acsparse.create_csrsv2_info()
        with pytest.raises(MatrixTypeNotSupportedError):
            acsparse.csrsv2_buffer_size(handle, N, general_descr, csr_small, info)

    def test_not_square(self, handle, dense_rect):
        csr = csr_from_dense(dense_rect)
        with pytest.raises(InvalidValueError):
            acsparse.csrsv2_buffer_size(handle, N, _tri_descr(), csr,
                                        acsparse.create_csrsv2_info())

    def test_unknown_policy(self, handle, csr_small):
        info = acsparse.create_csrsv2_info()
        buf = acsparse.allocate(acsparse.csrsv2_buffer_size(handle, N, _tri_descr(), csr_small,
                                                            info))
        with pytest.raises(InvalidValueError):
            acsparse.csrsv2_analysis(handle, N, _tri_descr(), csr_small, info, 7, buf)

    def test_wrong_vector_length(self, handle, csr_small):
        info, buf = _analyze(handle, N, _tri_descr(), csr_small)
        with pytest.raises(InvalidValueError):
            acsparse.csrsv2_solve(handle, N, 1.0, _tri_descr(), csr_small, info,
                                  np.ones(4), np.empty(3), SolvePolicy.USE_LEVEL, buf)

    def test_async_analysis_then_solve(self, async_handle, random_lower):
        """A solve enqueued behind an async analysis sees its plan."""
        csr = csr_from_dense(random_lower)
        info, buf = _analyze(async_handle, N, _tri_descr(), csr)
        x = np.ones(40)
        y = np.empty(40)
        acsparse.csrsv2_solve(async_handle, N, 1.0, _tri_descr(), csr, info, x, y,
                              SolvePolicy.USE_LEVEL, buf)
        async_handle.synchronize()
        assert_array_close(y, np.linalg.solve(random_lower, x))


class TestCsrsm2:
    """Test multiple right-hand sides."""

    @pytest.mark.parametrize("trans", [N, T])
    def test_in_place(self, handle, random_lower, trans):
        csr = csr_from_dense(random_lower)
        descr = _tri_descr()
        B = np.arange(120.0).reshape(40, 3)
        expected = np.linalg.solve(random_lower if trans == N else random_lower.T, 2.0 * B)
        info = acsparse.create_csrsm2_info()
        buf = acsparse.allocate(acsparse.csrsm2_buffer_size(handle, trans, descr, csr, B, info))
        acsparse.csrsm2_analysis(handle, trans, descr, csr, B, info, SolvePolicy.NO_LEVEL, buf)
        acsparse.csrsm2_solve(handle, trans, 2.0, descr, csr, B, info, SolvePolicy.NO_LEVEL,
                              buf)
        assert_array_close(B, expected)
        assert not acsparse.csrsm2_zero_pivot(handle, info)

    def test_rhs_rows(self, handle, csr_small):
        with pytest.raises(InvalidValueError):
            acsparse.csrsm2_buffer_size(handle, N, _tri_descr(), csr_small, np.ones((4, 2)),
                                        acsparse.create_csrsm2_info())


class TestLegacy:
    """Test csrsv_analysis / csrsv_solve / csrsm_solve."""

    def test_csrsv(self, handle, random_lower):
        csr = csr_from_dense(random_lower)
        descr = _tri_descr()
        info = acsparse.create_solve_analysis_info()
        acsparse.csrsv_analysis(handle, N, descr, csr, info)
        x = np.ones(40)
        y = np.empty(40)
        acsparse.csrsv_solve(handle, N, 1.0, descr, csr, info, x, y)
        assert_array_close(y, np.linalg.solve(random_lower, x))

    def test_csrsm(self, handle, random_lower):
        csr = csr_from_dense(random_lower)
        descr = _tri_descr(FillMode.UPPER)
        info = acsparse.create_solve_analysis_info()
        acsparse.csrsv_analysis(handle, T, descr, csr, info)
        B = np.ones((40, 2))
        X = np.empty((40, 2))
        acsparse.csrsm_solve(handle, T, 1.0, descr, csr, info, B, X)
        U = np.diag(np.diag(random_lower))
        assert_array_close(X, np.linalg.solve(U.T, B))

    def test_general_descriptor_accepted(self, handle, csr_small, general_descr):
        info = acsparse.create_solve_analysis_info()
        acsparse.csrsv_analysis(handle, N, general_descr, csr_small, info)
        assert info.analyzed

    def test_numeric_zero_found_by_analysis(self, handle):
        csr = CSRMatrix(np.array([0, 1, 2], dtype=np.int32), np.array([0, 1], dtype=np.int32),
                        np.array([1.0, 0.0]), shape=(2, 2))
        info = acsparse.create_solve_analysis_info()
        acsparse.csrsv_analysis(handle, N, _tri_descr(), csr, info)
        assert acsparse.zero_pivot(handle, info).position == 1


class TestBsrsv2:
    """Test block solves."""

    def _analyze(self, handle, bsr, descr, policy=SolvePolicy.USE_LEVEL):
        info = acsparse.create_bsrsv2_info()
        size = acsparse.bsrsv2_buffer_size(handle, bsr.direction, N, descr, bsr, info)
        buf = acsparse.allocate(size)
        acsparse.bsrsv2_analysis(handle, bsr.direction, N, descr, bsr, info, policy, buf)
        return info, buf

    @pytest.mark.parametrize("direction", [Direction.ROW, Direction.COLUMN])
    @pytest.mark.parametrize("policy", POLICIES)
    def test_solve(self, handle, random_lower, direction, policy):
        # 40 is not a multiple of 3: the last block row is padded
        bsr = CSRMatrix.from_dense(random_lower).to_bsr(3, direction)
        descr = _tri_descr()
        info, buf = self._analyze(handle, bsr, descr, policy)
        x = np.arange(40.0)
        y = np.empty(40)
        acsparse.bsrsv2_solve(handle, direction, N, 1.0, descr, bsr, info, x, y, policy, buf)
        assert_array_close(y, np.linalg.solve(random_lower, x))
        assert not acsparse.bsrsv2_zero_pivot(handle, info)

    def test_zero_pivot_is_block_row(self, handle):
        A = np.eye(6)
        A[4, 4] = 0.0
        A[5, 4] = 1.0
        bsr = CSRMatrix.from_dense(A).to_bsr(2)
        descr = _tri_descr()
        info, buf = self._analyze(handle, bsr, descr)
        # The diagonal cell is stored inside a nonzero block: numeric, not structural
        assert not acsparse.bsrsv2_zero_pivot(handle, info)
        acsparse.bsrsv2_solve(handle, bsr.direction, N, 1.0, descr, bsr, info, np.ones(6),
                              np.empty(6), SolvePolicy.USE_LEVEL, buf)
        result = acsparse.bsrsv2_zero_pivot(handle, info)
        assert result.found
        assert result.position == 2

    def test_direction_mismatch(self, handle, random_lower):
        bsr = CSRMatrix.from_dense(random_lower).to_bsr(4, Direction.ROW)
        with pytest.raises(InvalidValueError):
            acsparse.bsrsv2_buffer_size(handle, Direction.COLUMN, N, _tri_descr(), bsr,
                                        acsparse.create_bsrsv2_info())

    def test_rectangular_blocks(self, handle, random_lower):
        gebsr = CSRMatrix.from_dense(random_lower).to_gebsr(2, 4)
        with pytest.raises(InvalidValueError):
            acsparse.bsrsv2_buffer_size(handle, Direction.ROW, N, _tri_descr(), gebsr,
                                        acsparse.create_bsrsv2_info())
