"""
Tests for workspace sizing and allocation.
"""

import pytest
import numpy as np

import acsparse
from acsparse import MemoryConfig, Operation, config
from acsparse.error import AllocationFailedError, InvalidValueError
from acsparse.workspace import Arena, align, allocate, array_bytes, check_buffer


class TestAllocate:
    """Test caller-owned buffer allocation."""

    def test_allocate_size(self):
        buf = allocate(100)
        assert buf.dtype == np.uint8
        assert buf.nbytes >= 100

    def test_allocate_zero(self):
        assert allocate(0).nbytes >= 0

    def test_negative_size(self):
        with pytest.raises(InvalidValueError):
            allocate(-1)

    def test_cap_exceeded(self):
        """Sizes above the configured cap fail with AllocationFailedError."""
        with config.local(memory=MemoryConfig(max_workspace_bytes=64)):
            allocate(64)
            with pytest.raises(AllocationFailedError) as exc:
                allocate(65)
        assert exc.value.status == acsparse.Status.ALLOC_FAILED


class TestSizing:
    """Test alignment and sizing helpers."""

    def test_align(self):
        assert align(1, 128) == 128
        assert align(128, 128) == 128
        assert align(0, 128) == 0

    def test_array_bytes(self):
        assert array_bytes(10, np.int64) == align(80)

    def test_sizing_is_pure(self, handle, csr_small, lower_descr):
        """Buffer sizes depend on shape only and are stable across calls."""
        info = acsparse.create_csrsv2_info()
        trans = Operation.NON_TRANSPOSE
        first = acsparse.csrsv2_buffer_size(handle, trans, lower_descr, csr_small, info)
        second = acsparse.csrsv2_buffer_size(handle, trans, lower_descr, csr_small, info)
        assert first == second > 0
        assert not info.analyzed


class TestCheckBuffer:
    """Test validation of caller buffers."""

    def test_missing_buffer(self):
        with pytest.raises(InvalidValueError):
            check_buffer(None, 8, "op")
        check_buffer(None, 0, "op")

    def test_small_buffer(self):
        with pytest.raises(InvalidValueError):
            check_buffer(np.empty(4, dtype=np.uint8), 8, "op")

    def test_wrong_dtype(self):
        with pytest.raises(InvalidValueError):
            check_buffer(np.empty(16, dtype=np.float64), 8, "op")

    def test_solve_rejects_small_buffer(self, handle, csr_small, lower_descr):
        info = acsparse.create_csrsv2_info()
        with pytest.raises(InvalidValueError):
            acsparse.csrsv2_analysis(handle, Operation.NON_TRANSPOSE, lower_descr, csr_small,
                                     info, acsparse.SolvePolicy.USE_LEVEL,
                                     np.empty(1, dtype=np.uint8))


class TestArena:
    """Test carving typed views out of a buffer."""

    def test_take_aligned(self):
        arena = Arena(allocate(1024))
        a = arena.take(np.int64, 3)
        assert a.shape == (3,)
        assert arena.used == align(24)
        b = arena.take(np.int32, 4)
        assert b.dtype == np.int32

    def test_exhausted(self):
        arena = Arena(allocate(16))
        with pytest.raises(InvalidValueError):
            arena.take(np.int64, 100)
