"""
Tests for the stable sorting engine.
"""

import pytest
import numpy as np

import acsparse
from acsparse import IndexBase
from acsparse.error import ExecutionFailedError, InvalidValueError

from conftest import hold_stream


def _identity(handle, n, dtype=np.int32):
    P = np.empty(n, dtype=dtype)
    acsparse.create_identity_permutation(handle, n, P)
    return P


class TestPermutation:

    def test_identity(self, handle):
        np.testing.assert_array_equal(_identity(handle, 5), np.arange(5))

    def test_identity_empty(self, handle):
        assert _identity(handle, 0).size == 0

    def test_identity_negative(self, handle):
        with pytest.raises(InvalidValueError):
            acsparse.create_identity_permutation(handle, -1, np.empty(1, dtype=np.int32))


class TestCOOSort:
    """Test coosort_by_row and coosort_by_column."""

    def test_by_row(self, handle):
        rows = np.array([2, 0, 1, 0, 2], dtype=np.int32)
        cols = np.array([1, 2, 0, 0, 0], dtype=np.int32)
        val = np.array([10.0, 20.0, 30.0, 40.0, 50.0])
        P = _identity(handle, 5)
        buf = acsparse.allocate(acsparse.coosort_buffer_size(handle, 3, 3, 5, rows, cols))
        acsparse.coosort_by_row(handle, 3, 3, 5, rows, cols, P, buf)
        np.testing.assert_array_equal(rows, [0, 0, 1, 2, 2])
        np.testing.assert_array_equal(cols, [0, 2, 0, 0, 1])
        np.testing.assert_array_equal(P, [3, 1, 2, 4, 0])
        sorted_val = np.empty(5)
        acsparse.gthr(handle, val, sorted_val, P, IndexBase.ZERO)
        np.testing.assert_array_equal(sorted_val, [40.0, 20.0, 30.0, 50.0, 10.0])

    def test_by_column_stable(self, handle):
        """Equal (column, row) keys keep their input order."""
        rows = np.array([1, 0, 1, 1], dtype=np.int64)
        cols = np.array([0, 1, 0, 0], dtype=np.int64)
        P = _identity(handle, 4, np.int64)
        buf = acsparse.allocate(acsparse.coosort_buffer_size(handle, 2, 2, 4, rows, cols))
        acsparse.coosort_by_column(handle, 2, 2, 4, rows, cols, P, buf)
        np.testing.assert_array_equal(cols, [0, 0, 0, 1])
        np.testing.assert_array_equal(rows, [1, 1, 1, 0])
        np.testing.assert_array_equal(P, [0, 2, 3, 1])

    def test_permutation_composes(self, handle):
        """P is in/out: a non-identity input is permuted, not overwritten."""
        rows = np.array([1, 0], dtype=np.int32)
        cols = np.array([0, 0], dtype=np.int32)
        P = np.array([7, 9], dtype=np.int32)
        buf = acsparse.allocate(acsparse.coosort_buffer_size(handle, 2, 1, 2, rows, cols))
        acsparse.coosort_by_row(handle, 2, 1, 2, rows, cols, P, buf)
        np.testing.assert_array_equal(P, [9, 7])

    def test_missing_buffer(self, handle):
        rows = np.array([1, 0], dtype=np.int32)
        cols = np.array([0, 0], dtype=np.int32)
        with pytest.raises(InvalidValueError):
            acsparse.coosort_by_row(handle, 2, 1, 2, rows, cols,
                                    _identity(handle, 2), None)


class TestCompressedSort:
    """Test csrsort and cscsort."""

    def test_csrsort(self, handle, general_descr):
        ptr = np.array([0, 3, 3, 5], dtype=np.int32)
        cols = np.array([2, 0, 1, 1, 0], dtype=np.int32)
        P = _identity(handle, 5)
        buf = acsparse.allocate(acsparse.csrsort_buffer_size(handle, 3, 3, 5, ptr, cols))
        acsparse.csrsort(handle, 3, 3, 5, general_descr, ptr, cols, P, buf)
        np.testing.assert_array_equal(cols, [0, 1, 2, 0, 1])
        np.testing.assert_array_equal(P, [1, 2, 0, 4, 3])
        np.testing.assert_array_equal(ptr, [0, 3, 3, 5])

    def test_csrsort_one_based(self, handle):
        descr = acsparse.create_mat_descr(index_base=IndexBase.ONE)
        ptr = np.array([1, 3], dtype=np.int32)
        cols = np.array([2, 1], dtype=np.int32)
        P = _identity(handle, 2)
        buf = acsparse.allocate(acsparse.csrsort_buffer_size(handle, 1, 2, 2, ptr, cols))
        acsparse.csrsort(handle, 1, 2, 2, descr, ptr, cols, P, buf)
        np.testing.assert_array_equal(cols, [1, 2])
        np.testing.assert_array_equal(P, [1, 0])

    def test_cscsort(self, handle, general_descr):
        ptr = np.array([0, 2, 4], dtype=np.int32)
        rows = np.array([1, 0, 1, 1], dtype=np.int32)
        P = _identity(handle, 4)
        buf = acsparse.allocate(acsparse.cscsort_buffer_size(handle, 2, 2, 4, ptr, rows))
        acsparse.cscsort(handle, 2, 2, 4, general_descr, ptr, rows, P, buf)
        np.testing.assert_array_equal(rows, [0, 1, 1, 1])
        np.testing.assert_array_equal(P, [1, 0, 2, 3])

    def test_pointer_must_span_nnz(self, handle, general_descr):
        """The pointer is read when the sort runs, so the mismatch is a fault."""
        ptr = np.array([0, 1, 2], dtype=np.int32)
        cols = np.array([0, 1, 2], dtype=np.int32)
        buf = acsparse.allocate(1024)
        with pytest.raises(ExecutionFailedError) as exc:
            acsparse.csrsort(handle, 2, 3, 3, general_descr, ptr, cols,
                             _identity(handle, 3), buf)
        assert isinstance(exc.value.__cause__, InvalidValueError)

    def test_csrsort_after_queued_coo2csr(self, async_handle, general_descr):
        """csrsort waits for a row pointer still being built on the stream."""
        rows = np.array([0, 0, 1, 2], dtype=np.int32)
        cols = np.array([2, 0, 1, 1], dtype=np.int32)
        ptr = np.zeros(4, dtype=np.int32)
        P = np.empty(4, dtype=np.int32)
        buf = acsparse.allocate(acsparse.csrsort_buffer_size(async_handle, 3, 3, 4, ptr, cols))
        gate = hold_stream(async_handle)
        acsparse.coo2csr(async_handle, rows, 3, IndexBase.ZERO, ptr)
        acsparse.create_identity_permutation(async_handle, 4, P)
        acsparse.csrsort(async_handle, 3, 3, 4, general_descr, ptr, cols, P, buf)
        gate.set()
        async_handle.synchronize()
        np.testing.assert_array_equal(ptr, [0, 2, 3, 4])
        np.testing.assert_array_equal(cols, [0, 2, 1, 1])
        np.testing.assert_array_equal(P, [1, 0, 2, 3])


class TestGather:

    def test_gthr_one_based(self, handle):
        y = np.array([1.0, 2.0, 3.0])
        x_ind = np.array([3, 1], dtype=np.int32)
        x_val = np.empty(2)
        acsparse.gthr(handle, y, x_val, x_ind, IndexBase.ONE)
        np.testing.assert_array_equal(x_val, [3.0, 1.0])

    def test_gthr_dtype_mismatch(self, handle):
        with pytest.raises(InvalidValueError):
            acsparse.gthr(handle, np.ones(3), np.empty(2, dtype=np.float32),
                          np.array([0, 1], dtype=np.int32), IndexBase.ZERO)
