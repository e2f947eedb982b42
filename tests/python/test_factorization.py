"""
Tests for ILU(0) and IC(0).
"""

import pytest
import numpy as np

import acsparse
from acsparse import (
    CSRMatrix,
    Direction,
    FillMode,
    IndexBase,
    MatrixType,
    Operation,
    SolvePolicy,
)
from acsparse.error import InvalidValueError, MatrixTypeNotSupportedError, NotSupportedError

from conftest import assert_array_close, csr_from_dense, descr_for

POLICIES = [SolvePolicy.NO_LEVEL, SolvePolicy.USE_LEVEL]


# =============================================================================
# Dense References
# =============================================================================

def ilu0_reference(A):
    """ILU(0) on the nonzero pattern of ``A``, computed densely."""
    LU = A.copy()
    mask = A != 0
    n = A.shape[0]
    for i in range(1, n):
        for k in range(i):
            if not mask[i, k]:
                continue
            LU[i, k] /= LU[k, k]
            cols = np.flatnonzero(mask[i, k + 1:]) + k + 1
            LU[i, cols] -= LU[i, k] * LU[k, cols]
    return LU


def ic0_reference(A):
    """IC(0) on the lower pattern of ``A``; returns L."""
    L = np.tril(A).copy()
    n = A.shape[0]
    for i in range(n):
        for k in range(i):
            if L[i, k] != 0:
                L[i, k] = (L[i, k] - L[i, :k] @ L[k, :k]) / L[k, k]
        L[i, i] = np.sqrt(L[i, i] - L[i, :i] @ L[i, :i])
    return L


def _tridiagonal(n, off=-1.0, diag=4.0):
    return (np.diag(np.full(n, diag)) + np.diag(np.full(n - 1, off), 1)
            + np.diag(np.full(n - 1, off), -1))


def _nonsymmetric(spd):
    return spd + 0.5 * np.triu(spd, 1)


def _run_ilu(handle, csr, descr, policy=SolvePolicy.USE_LEVEL, boost=None):
    info = acsparse.create_csrilu02_info()
    buf = acsparse.allocate(acsparse.csrilu02_buffer_size(handle, descr, csr, info))
    if boost is not None:
        acsparse.csrilu02_numeric_boost(handle, info, True, *boost)
    acsparse.csrilu02_analysis(handle, descr, csr, info, policy, buf)
    acsparse.csrilu02(handle, descr, csr, info, policy, buf)
    return info


def _run_ic(handle, csr, descr, policy=SolvePolicy.USE_LEVEL, boost=None):
    info = acsparse.create_csric02_info()
    buf = acsparse.allocate(acsparse.csric02_buffer_size(handle, descr, csr, info))
    if boost is not None:
        acsparse.csric02_numeric_boost(handle, info, True, *boost)
    acsparse.csric02_analysis(handle, descr, csr, info, policy, buf)
    acsparse.csric02(handle, descr, csr, info, policy, buf)
    return info


class TestCsrilu02:
    """Test ILU(0)."""

    @pytest.mark.parametrize("policy", POLICIES)
    def test_matches_reference(self, handle, spd_matrix, policy, general_descr):
        A = _nonsymmetric(spd_matrix)
        csr = csr_from_dense(A)
        info = _run_ilu(handle, csr, general_descr, policy)
        assert_array_close(csr.to_dense(), ilu0_reference(A))
        assert not acsparse.csrilu02_zero_pivot(handle, info)

    def test_tridiagonal_is_exact_lu(self, handle, general_descr):
        """Without fill-in ILU(0) is the exact LU factorization."""
        A = _tridiagonal(12)
        csr = csr_from_dense(A)
        _run_ilu(handle, csr, general_descr)
        F = csr.to_dense()
        L = np.tril(F, -1) + np.eye(12)
        U = np.triu(F)
        assert_array_close(L @ U, A)

    def test_policies_identical(self, handle, spd_matrix, general_descr):
        A = _nonsymmetric(spd_matrix)
        a = csr_from_dense(A)
        b = csr_from_dense(A)
        _run_ilu(handle, a, general_descr, SolvePolicy.NO_LEVEL)
        _run_ilu(handle, b, general_descr, SolvePolicy.USE_LEVEL)
        np.testing.assert_array_equal(a.val, b.val)

    def test_one_based_complex(self, handle, spd_matrix):
        A = _nonsymmetric(spd_matrix) + 0.25j * np.tril(spd_matrix, -1)
        csr = csr_from_dense(A, IndexBase.ONE)
        _run_ilu(handle, csr, descr_for(base=IndexBase.ONE))
        assert_array_close(csr.to_dense(), ilu0_reference(A))

    def test_numeric_zero_pivot(self, handle, general_descr):
        csr = csr_from_dense(np.array([[1.0, 1.0], [1.0, 1.0]]))
        info = _run_ilu(handle, csr, general_descr)
        # U[1, 1] = 1 - 1 * 1 = 0
        result = acsparse.csrilu02_zero_pivot(handle, info)
        assert result.found and result.position == 1

    def test_structural_zero_pivot(self, handle, general_descr):
        csr = csr_from_dense(np.array([[0.0, 1.0], [1.0, 1.0]]), IndexBase.ONE)
        info = _run_ilu(handle, csr, descr_for(base=IndexBase.ONE))
        assert acsparse.csrilu02_zero_pivot(handle, info).position == 1

    def test_boost(self, handle, general_descr):
        """A boosted pivot is replaced and not reported."""
        csr = csr_from_dense(np.array([[1.0, 1.0], [1.0, 1.0]]))
        info = _run_ilu(handle, csr, general_descr, boost=(1e-8, 3.0))
        assert not acsparse.csrilu02_zero_pivot(handle, info)
        np.testing.assert_array_equal(csr.to_dense(), [[1.0, 1.0], [1.0, 3.0]])

    def test_boost_disabled_again(self, handle, general_descr):
        csr = csr_from_dense(np.array([[1.0, 1.0], [1.0, 1.0]]))
        info = acsparse.create_csrilu02_info()
        acsparse.csrilu02_numeric_boost(handle, info, True, 1e-8, 3.0)
        acsparse.csrilu02_numeric_boost(handle, info, False, 0.0, 0.0)
        assert not info.boost_enabled

    def test_triangular_descr_rejected(self, handle, csr_small):
        descr = descr_for(MatrixType.TRIANGULAR)
        with pytest.raises(MatrixTypeNotSupportedError):
            acsparse.csrilu02_buffer_size(handle, descr, csr_small,
                                          acsparse.create_csrilu02_info())

    def test_not_square(self, handle, dense_rect, general_descr):
        with pytest.raises(InvalidValueError):
            acsparse.csrilu02_buffer_size(handle, general_descr, csr_from_dense(dense_rect),
                                          acsparse.create_csrilu02_info())

    def test_unknown_policy(self, handle, spd_matrix, general_descr):
        csr = csr_from_dense(spd_matrix)
        info = acsparse.create_csrilu02_info()
        buf = acsparse.allocate(acsparse.csrilu02_buffer_size(handle, general_descr, csr, info))
        with pytest.raises(InvalidValueError):
            acsparse.csrilu02_analysis(handle, general_descr, csr, info, 7, buf)


class TestCsric02:
    """Test IC(0)."""

    @pytest.mark.parametrize("policy", POLICIES)
    def test_matches_reference(self, handle, spd_matrix, policy, general_descr):
        csr = csr_from_dense(spd_matrix)
        info = _run_ic(handle, csr, general_descr, policy)
        F = csr.to_dense()
        assert_array_close(np.tril(F), ic0_reference(spd_matrix))
        # Upper triangle untouched
        np.testing.assert_array_equal(np.triu(F, 1), np.triu(spd_matrix, 1))
        assert not acsparse.csric02_zero_pivot(handle, info)

    def test_tridiagonal_is_cholesky(self, handle):
        A = _tridiagonal(10)
        csr = csr_from_dense(np.tril(A))
        descr = descr_for(MatrixType.SYMMETRIC, fill=FillMode.LOWER)
        _run_ic(handle, csr, descr)
        assert_array_close(csr.to_dense(), np.linalg.cholesky(A))

    def test_not_positive_definite(self, handle, general_descr):
        csr = csr_from_dense(np.array([[1.0, 2.0], [2.0, 1.0]]))
        info = _run_ic(handle, csr, general_descr)
        result = acsparse.csric02_zero_pivot(handle, info)
        assert result.found and result.position == 1

    def test_boost(self, handle, general_descr):
        csr = csr_from_dense(np.array([[-1.0]]))
        info = _run_ic(handle, csr, general_descr, boost=(2.0, 4.0))
        assert not acsparse.csric02_zero_pivot(handle, info)
        assert csr.val[0] == 2.0

    def test_upper_storage_not_supported(self, handle, csr_small):
        descr = descr_for(MatrixType.SYMMETRIC, fill=FillMode.UPPER)
        with pytest.raises(NotSupportedError):
            acsparse.csric02_buffer_size(handle, descr, csr_small,
                                         acsparse.create_csric02_info())

    def test_triangular_rejected(self, handle, csr_small):
        with pytest.raises(MatrixTypeNotSupportedError):
            acsparse.csric02_buffer_size(handle, descr_for(MatrixType.TRIANGULAR), csr_small,
                                         acsparse.create_csric02_info())


class TestLegacy:
    """Test csrilu0 / csric0 on a csrsv_analysis info."""

    def test_csrilu0(self, handle, spd_matrix, general_descr):
        A = _nonsymmetric(spd_matrix)
        csr = csr_from_dense(A)
        info = acsparse.create_solve_analysis_info()
        acsparse.csrsv_analysis(handle, Operation.NON_TRANSPOSE, general_descr, csr, info)
        acsparse.csrilu0(handle, Operation.NON_TRANSPOSE, general_descr, csr, info)
        assert_array_close(csr.to_dense(), ilu0_reference(A))

    def test_csric0(self, handle, spd_matrix, general_descr):
        csr = csr_from_dense(spd_matrix)
        info = acsparse.create_solve_analysis_info()
        acsparse.csrsv_analysis(handle, Operation.NON_TRANSPOSE, general_descr, csr, info)
        acsparse.csric0(handle, Operation.NON_TRANSPOSE, general_descr, csr, info)
        assert_array_close(np.tril(csr.to_dense()), ic0_reference(spd_matrix))

    def test_transpose_not_supported(self, handle, csr_small, general_descr):
        info = acsparse.create_solve_analysis_info()
        acsparse.csrsv_analysis(handle, Operation.NON_TRANSPOSE, general_descr, csr_small, info)
        with pytest.raises(NotSupportedError):
            acsparse.csrilu0(handle, Operation.TRANSPOSE, general_descr, csr_small, info)

    def test_upper_analysis_not_supported(self, handle, csr_small, general_descr):
        info = acsparse.create_solve_analysis_info()
        upper = general_descr.replace(fill_mode=FillMode.UPPER)
        acsparse.csrsv_analysis(handle, Operation.NON_TRANSPOSE, upper, csr_small, info)
        with pytest.raises(NotSupportedError):
            acsparse.csric0(handle, Operation.NON_TRANSPOSE, general_descr, csr_small, info)


class TestBlockFactorization:
    """Test bsrilu02 / bsric02 on block tridiagonal matrices."""

    @staticmethod
    def _block_tridiagonal(nb=4, bd=2, seed=3):
        rng = np.random.default_rng(seed)
        n = nb * bd
        A = np.zeros((n, n))
        for b in range(nb):
            for c in (b - 1, b, b + 1):
                if 0 <= c < nb:
                    A[b * bd:(b + 1) * bd, c * bd:(c + 1) * bd] = rng.random((bd, bd)) + 0.1
        A = A + A.T
        A += np.diag(np.abs(A).sum(axis=1) + 1.0)
        return A

    @pytest.mark.parametrize("direction", [Direction.ROW, Direction.COLUMN])
    def test_bsrilu02_is_exact_lu(self, handle, general_descr, direction):
        A = self._block_tridiagonal()
        bsr = CSRMatrix.from_dense(A).to_bsr(2, direction)
        info = acsparse.create_bsrilu02_info()
        buf = acsparse.allocate(
            acsparse.bsrilu02_buffer_size(handle, direction, general_descr, bsr, info))
        acsparse.bsrilu02_analysis(handle, direction, general_descr, bsr, info,
                                   SolvePolicy.USE_LEVEL, buf)
        acsparse.bsrilu02(handle, direction, general_descr, bsr, info,
                          SolvePolicy.USE_LEVEL, buf)
        F = bsr.to_dense()
        L = np.tril(F, -1) + np.eye(8)
        assert_array_close(L @ np.triu(F), A)
        assert not acsparse.bsrilu02_zero_pivot(handle, info)

    def test_bsric02_is_cholesky(self, handle, general_descr):
        A = self._block_tridiagonal()
        bsr = CSRMatrix.from_dense(A).to_bsr(2)
        info = acsparse.create_bsric02_info()
        buf = acsparse.allocate(
            acsparse.bsric02_buffer_size(handle, Direction.ROW, general_descr, bsr, info))
        acsparse.bsric02_analysis(handle, Direction.ROW, general_descr, bsr, info,
                                  SolvePolicy.NO_LEVEL, buf)
        acsparse.bsric02(handle, Direction.ROW, general_descr, bsr, info,
                         SolvePolicy.NO_LEVEL, buf)
        assert_array_close(np.tril(bsr.to_dense()), np.linalg.cholesky(A))

    def test_zero_pivot_block_row(self, handle, general_descr):
        A = np.eye(6)
        A[3, 3] = 0.0
        A[3, 2] = 1.0
        bsr = CSRMatrix.from_dense(A).to_bsr(2)
        info = acsparse.create_bsrilu02_info()
        buf = acsparse.allocate(
            acsparse.bsrilu02_buffer_size(handle, Direction.ROW, general_descr, bsr, info))
        acsparse.bsrilu02_analysis(handle, Direction.ROW, general_descr, bsr, info,
                                   SolvePolicy.USE_LEVEL, buf)
        acsparse.bsrilu02(handle, Direction.ROW, general_descr, bsr, info,
                          SolvePolicy.USE_LEVEL, buf)
        # Scalar row 3 lives in block row 1
        assert acsparse.bsrilu02_zero_pivot(handle, info).position == 1
