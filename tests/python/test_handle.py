"""
Tests for handles, streams, pointer mode and scalar resolution.
"""

import threading

import pytest
import numpy as np

import acsparse
from acsparse import (
    DeviceConfig,
    DeviceScalar,
    ExecutionConfig,
    HostScalar,
    Operation,
    PointerMode,
    ScalarKind,
    Status,
    Stream,
    config,
)
from acsparse.error import (
    ArchitectureMismatchError,
    ExecutionFailedError,
    InvalidValueError,
    NotInitializedError,
)


class TestHandleLifecycle:
    """Test handle creation and destruction."""

    def test_create_and_destroy(self):
        """A created handle is alive until destroyed."""
        h = acsparse.create()
        assert h.alive
        h.destroy()
        assert not h.alive

    def test_context_manager(self):
        """Leaving the context destroys the handle."""
        with acsparse.create() as h:
            assert h.alive
        assert not h.alive

    def test_use_after_destroy(self, csr_small, general_descr):
        """Operations on a destroyed handle raise NotInitializedError."""
        h = acsparse.create()
        h.destroy()
        with pytest.raises(NotInitializedError) as exc:
            acsparse.csr2dense(h, general_descr, csr_small, np.empty((3, 3)))
        assert exc.value.status == Status.NOT_INITIALIZED

    def test_missing_handle(self, csr_small, general_descr):
        """A None handle is reported as not initialized."""
        with pytest.raises(NotInitializedError):
            acsparse.csr2dense(None, general_descr, csr_small, np.empty((3, 3)))

    def test_destroy_twice(self):
        """Destroying twice is harmless."""
        h = acsparse.create()
        h.destroy()
        h.destroy()
        assert not h.alive

    def test_destroy_closes_own_stream(self):
        """The worker of a stream the handle created stops with the handle."""
        with config.local(execution=ExecutionConfig(async_streams=True)):
            h = acsparse.create()
        stream = h.get_stream()
        h.enqueue(lambda: None, "noop")
        h.destroy()
        workers = [t.name for t in threading.enumerate()
                   if t.name.startswith(f"acsparse-{stream.name}_")]
        assert workers == []
        with pytest.raises(NotInitializedError):
            stream.enqueue(lambda: None, "late")

    def test_destroy_leaves_given_stream_open(self):
        stream = Stream(blocking=False)
        h = acsparse.create(stream)
        h.destroy()
        out = []
        stream.enqueue(lambda: out.append(1), "append")
        stream.synchronize()
        assert out == [1]
        stream.close()

    def test_version(self):
        """Version tuple matches the package version string."""
        major, minor, patch = acsparse.get_version()
        assert acsparse.__version__ == f"{major}.{minor}.{patch}"


class TestPointerMode:
    """Test host/device scalar resolution."""

    def test_default_host(self, handle):
        assert handle.get_pointer_mode() == PointerMode.HOST

    def test_host_scalar(self, handle):
        read = handle.resolve_scalar(2.5, ScalarKind.FLOAT64)
        assert read() == 2.5
        read = handle.resolve_scalar(HostScalar(3), ScalarKind.FLOAT32)
        assert read() == np.float32(3)

    def test_device_scalar_read_at_execution(self, handle):
        """Device scalars are read when the work runs, not when it is enqueued."""
        handle.set_pointer_mode(PointerMode.DEVICE)
        ref = np.array([1.0])
        read = handle.resolve_scalar(DeviceScalar(ref), ScalarKind.FLOAT64)
        ref[0] = 4.0
        assert read() == 4.0

    def test_mode_mismatch(self, handle):
        """A scalar that does not match the pointer mode is invalid."""
        with pytest.raises(InvalidValueError):
            handle.resolve_scalar(np.array([1.0]), ScalarKind.FLOAT64)
        handle.set_pointer_mode(PointerMode.DEVICE)
        with pytest.raises(InvalidValueError):
            handle.resolve_scalar(1.0, ScalarKind.FLOAT64)

    def test_device_scalar_needs_one_element(self):
        with pytest.raises(InvalidValueError):
            DeviceScalar(np.array([1.0, 2.0]))

    def test_device_alpha_in_solve(self, handle, csr_small, lower_descr):
        """alpha in DEVICE mode scales the solution."""
        handle.set_pointer_mode(PointerMode.DEVICE)
        info = acsparse.create_csrsv2_info()
        trans = Operation.NON_TRANSPOSE
        buf = acsparse.allocate(acsparse.csrsv2_buffer_size(handle, trans, lower_descr,
                                                            csr_small, info))
        acsparse.csrsv2_analysis(handle, trans, lower_descr, csr_small, info,
                                 acsparse.SolvePolicy.USE_LEVEL, buf)
        x = np.array([2.0, 4.0, 8.0])
        y = np.empty(3)
        acsparse.csrsv2_solve(handle, trans, np.array([2.0]), lower_descr, csr_small, info,
                              x, y, acsparse.SolvePolicy.USE_LEVEL, buf)
        np.testing.assert_allclose(y, [2.0, 2.0, 4.0])


class TestStreams:
    """Test blocking and asynchronous streams."""

    def test_blocking_stream_runs_inline(self):
        stream = Stream(blocking=True)
        out = []
        stream.enqueue(lambda: out.append(1), "append")
        assert out == [1]
        assert stream.query()

    def test_async_stream_keeps_order(self):
        stream = Stream(blocking=False)
        out = []
        for i in range(20):
            stream.enqueue(lambda i=i: out.append(i), "append")
        stream.synchronize()
        assert out == list(range(20))
        stream.close()

    def test_async_fault_reported_at_sync(self):
        """A fault in async work is reported as ExecutionFailedError at sync."""
        stream = Stream(blocking=False)
        ran = []

        def boom():
            raise RuntimeError("kernel fault")

        stream.enqueue(boom, "boom")
        stream.enqueue(lambda: ran.append(True), "after")
        with pytest.raises(ExecutionFailedError) as exc:
            stream.synchronize()
        assert exc.value.status == Status.EXECUTION_FAILED
        assert ran == []
        # Fault is cleared after being reported
        stream.synchronize()
        stream.close()

    def test_blocking_fault_raised_from_call(self):
        stream = Stream(blocking=True)

        def boom():
            raise RuntimeError("kernel fault")

        with pytest.raises(ExecutionFailedError):
            stream.enqueue(boom, "boom")

    def test_blocking_faults_stay_with_their_thread(self):
        """Threads sharing a blocking stream only see their own faults."""
        stream = Stream(blocking=True)
        stray = []

        def boom():
            raise RuntimeError("kernel fault")

        def failing():
            for _ in range(200):
                try:
                    stream.enqueue(boom, "boom")
                except ExecutionFailedError:
                    continue
                stray.append("fault not raised")

        def passing():
            for _ in range(200):
                try:
                    stream.enqueue(lambda: None, "noop")
                except ExecutionFailedError as e:
                    stray.append(str(e))

        threads = [threading.Thread(target=failing), threading.Thread(target=passing)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert stray == []
        stream.synchronize()

    def test_set_stream(self, handle):
        stream = Stream(blocking=True, name="other")
        handle.set_stream(stream)
        assert handle.get_stream() is stream
        with pytest.raises(InvalidValueError):
            handle.set_stream("not a stream")

    def test_async_handle_round_trip(self, async_handle, dense_small):
        """Count-then-fill works across an asynchronous stream."""
        descr = acsparse.create_mat_descr()
        counts = np.empty(3, dtype=np.int32)
        total = acsparse.nnz(async_handle, acsparse.Direction.ROW, dense_small, descr, counts)
        row_ptr = np.empty(4, dtype=np.int32)
        col_ind = np.empty(total, dtype=np.int32)
        val = np.empty(total)
        acsparse.dense2csr(async_handle, dense_small, descr, counts, val, row_ptr, col_ind)
        async_handle.synchronize()
        np.testing.assert_array_equal(row_ptr, [0, 1, 3, 4])
        np.testing.assert_array_equal(col_ind, [0, 0, 1, 2])


class TestArchitecture:
    """Test the device capability gate."""

    def test_double_needs_capability(self, csr_small, general_descr):
        """Double precision is refused below capability 1.3; single is fine."""
        with config.local(device=DeviceConfig(compute_capability=(1, 2))):
            h = acsparse.create()
        with pytest.raises(ArchitectureMismatchError) as exc:
            acsparse.csr2dense(h, general_descr, csr_small, np.empty((3, 3)))
        assert exc.value.status == Status.ARCH_MISMATCH

        single = acsparse.CSRMatrix(csr_small.row_ptr, csr_small.col_ind,
                                    csr_small.val.astype(np.float32), csr_small.shape)
        out = np.empty((3, 3), dtype=np.float32)
        acsparse.csr2dense(h, general_descr, single, out)
        assert out[1, 1] == 3.0
        h.destroy()

    def test_capability_boundary(self):
        with config.local(device=DeviceConfig(compute_capability=(1, 3))):
            h = acsparse.create()
        assert h.device.supports_double
        h.destroy()
