"""Handle context: stream, pointer mode and scalar resolution.

A ``Handle`` owns the execution stream that every compute-bearing call is
enqueued on, the pointer mode deciding where ``alpha``/``beta`` style
scalars live, and the (emulated) device whose capability gates what may
run.

Streams:
    - A blocking stream runs each operation inline; a fault is raised as
      ``ExecutionFailedError`` from the call itself.
    - An asynchronous stream runs operations on a single worker thread,
      in program order, and returns to the caller immediately. Faults are
      reported at the next synchronization point as
      ``ExecutionFailedError``; work enqueued after a fault is skipped
      until that report.

Example:
    >>> with acsparse.create() as handle:
    ...     handle.set_pointer_mode(PointerMode.DEVICE)
    ...     alpha = DeviceScalar(np.array([2.0]))
"""

import itertools
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Tuple, Union

import numpy as np

from .config import config
from .descr import PointerMode
from .dtypes import ScalarKind
from .error import (
    ArchitectureMismatchError,
    ExecutionFailedError,
    InvalidValueError,
    NotInitializedError,
)

logger = logging.getLogger("acsparse.handle")
stream_logger = logging.getLogger("acsparse.stream")

__all__ = [
    'Stream', 'Device', 'Handle', 'HostScalar', 'DeviceScalar',
    'create', 'get_version',
]

VERSION = (0, 3, 0)

_stream_ids = itertools.count(1)


def get_version() -> Tuple[int, int, int]:
    """Library version as (major, minor, patch)."""
    return VERSION


# =============================================================================
# Stream
# =============================================================================

class Stream:
    """Ordered execution queue.

    Args:
        blocking: Run work inline instead of on a worker thread.
        name: Optional name used in logs.
    """

    def __init__(self, blocking: bool = True, name: Optional[str] = None):
        self.id = next(_stream_ids)
        self.name = name or f"stream-{self.id}"
        self.blocking = blocking
        self._lock = threading.Lock()
        self._pending: List[Any] = []
        self._fault: Optional[BaseException] = None
        self._fault_op: Optional[str] = None
        self._executor = None
        self._closed = False
        if not blocking:
            self._executor = ThreadPoolExecutor(
                max_workers=1, thread_name_prefix=f"acsparse-{self.name}"
            )

    def __repr__(self) -> str:
        mode = "blocking" if self.blocking else "async"
        return f"Stream({self.name}, {mode})"

    def _execute(self, fn: Callable[[], None], op: str) -> Optional[Exception]:
        try:
            fn()
        except Exception as e:
            stream_logger.warning("%s: %s failed: %s", self.name, op, e)
            return e
        return None

    def _run(self, fn: Callable[[], None], op: str) -> None:
        if self._fault is not None:
            stream_logger.debug("%s: skipping %s after earlier fault", self.name, op)
            return
        fault = self._execute(fn, op)
        if fault is not None:
            self._fault = fault
            self._fault_op = op

    def enqueue(self, fn: Callable[[], None], op: str = "operation") -> None:
        """Enqueue ``fn`` behind all previously enqueued work."""
        if self._closed:
            raise NotInitializedError(f"{self.name} is closed")
        if self.blocking:
            # Faults go straight back to the calling thread
            fault = self._execute(fn, op)
            if fault is not None:
                raise ExecutionFailedError(f"{op} failed on {self.name}: {fault}") from fault
            return
        with self._lock:
            self._pending.append(self._executor.submit(self._run, fn, op))

    def synchronize(self) -> None:
        """Block until all enqueued work completes.

        Raises:
            ExecutionFailedError: If any enqueued operation faulted since
                the previous synchronization. The fault is cleared.
        """
        with self._lock:
            pending, self._pending = self._pending, []
        for future in pending:
            future.result()
        if self._fault is not None:
            fault, op = self._fault, self._fault_op
            self._fault = None
            self._fault_op = None
            raise ExecutionFailedError(f"{op} failed on {self.name}: {fault}") from fault

    def query(self) -> bool:
        """Whether all enqueued work has completed (non-blocking)."""
        with self._lock:
            return all(f.done() for f in self._pending)

    def close(self) -> None:
        """Wait for queued work and release the worker thread."""
        self._closed = True
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None


# =============================================================================
# Device
# =============================================================================

@dataclass(frozen=True)
class Device:
    """Emulated accelerator capabilities."""
    name: str
    compute_capability: Tuple[int, int]

    # Double precision arrived with capability 1.3
    DOUBLE_PRECISION_CAPABILITY = (1, 3)

    @classmethod
    def from_config(cls) -> "Device":
        dev = config.device
        return cls(dev.name, tuple(dev.compute_capability))

    @property
    def supports_double(self) -> bool:
        return self.compute_capability >= self.DOUBLE_PRECISION_CAPABILITY


# =============================================================================
# Scalars
# =============================================================================

@dataclass(frozen=True)
class HostScalar:
    """Scalar passed by value from the host."""
    value: Any


@dataclass(frozen=True)
class DeviceScalar:
    """Scalar residing in device memory, read when the work executes."""
    ref: np.ndarray

    def __post_init__(self):
        if not isinstance(self.ref, np.ndarray) or self.ref.size != 1:
            raise InvalidValueError("DeviceScalar needs a one-element array")


ScalarArg = Union[HostScalar, DeviceScalar, int, float, complex, np.generic, np.ndarray]


# =============================================================================
# Handle
# =============================================================================

class Handle:
    """Library context.

    Prefer :func:`create` over direct construction.
    """

    def __init__(self, stream: Optional[Stream] = None, device: Optional[Device] = None):
        # A stream made here belongs to the handle and is closed with it
        self._owned_stream: Optional[Stream] = None
        if stream is None:
            stream = Stream(blocking=not config.execution.async_streams)
            self._owned_stream = stream
        self._stream = stream
        self._device = device or Device.from_config()
        self._pointer_mode = PointerMode.HOST
        self._alive = True
        logger.info("Created handle on %s (device %s, capability %d.%d)",
                    stream, self._device.name, *self._device.compute_capability)

    def __repr__(self) -> str:
        state = "alive" if self._alive else "destroyed"
        return f"Handle({self._stream!r}, {self._pointer_mode.name}, {state})"

    def __enter__(self) -> "Handle":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.destroy()
        return False

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def ensure_alive(self) -> None:
        """Raise ``NotInitializedError`` if the handle was destroyed."""
        if not self._alive:
            raise NotInitializedError("handle used after destroy()")

    def destroy(self) -> None:
        """Synchronize outstanding work and invalidate the handle.

        A stream the handle created itself is closed; streams passed in by
        the caller stay open.
        """
        if not self._alive:
            return
        try:
            self._stream.synchronize()
        finally:
            self._alive = False
            if self._owned_stream is not None:
                self._owned_stream.close()
            logger.info("Destroyed handle on %s", self._stream)

    @property
    def alive(self) -> bool:
        return self._alive

    # -------------------------------------------------------------------------
    # Stream / Pointer Mode / Device
    # -------------------------------------------------------------------------

    @property
    def stream(self) -> Stream:
        self.ensure_alive()
        return self._stream

    def set_stream(self, stream: Stream) -> None:
        self.ensure_alive()
        if not isinstance(stream, Stream):
            raise InvalidValueError(f"Expected Stream, got {type(stream).__name__}")
        self._stream = stream

    def get_stream(self) -> Stream:
        return self.stream

    def set_pointer_mode(self, mode: PointerMode) -> None:
        self.ensure_alive()
        try:
            self._pointer_mode = PointerMode(mode)
        except ValueError as e:
            raise InvalidValueError(f"pointer mode: {e}") from e

    def get_pointer_mode(self) -> PointerMode:
        self.ensure_alive()
        return self._pointer_mode

    @property
    def device(self) -> Device:
        return self._device

    def synchronize(self) -> None:
        """Block until all work enqueued on the handle's stream completes."""
        self.ensure_alive()
        self._stream.synchronize()

    # -------------------------------------------------------------------------
    # Dispatch Helpers
    # -------------------------------------------------------------------------

    def check_kind(self, kind: ScalarKind, op: str) -> None:
        """Raise if the device cannot run ``kind`` arithmetic."""
        if kind.is_double and not self._device.supports_double:
            major, minor = self._device.compute_capability
            raise ArchitectureMismatchError(
                f"{kind.prefix}{op} needs double precision "
                f"(capability {major}.{minor} < 1.3)"
            )

    def resolve_scalar(self, value: ScalarArg, kind: ScalarKind, name: str = "alpha") -> Callable[[], Any]:
        """Resolve an alpha/beta style scalar against the pointer mode.

        Returns:
            A zero-argument reader producing the scalar as ``kind``. Host
            scalars are captured now; device scalars are read at execution.

        Raises:
            InvalidValueError: If the scalar does not match the pointer mode.
        """
        self.ensure_alive()
        if self._pointer_mode == PointerMode.HOST:
            if isinstance(value, DeviceScalar) or isinstance(value, np.ndarray):
                raise InvalidValueError(f"{name}: device scalar given in HOST pointer mode")
            if isinstance(value, HostScalar):
                value = value.value
            if value is None:
                raise InvalidValueError(f"{name} must not be None")
            try:
                captured = kind.cast(value)
            except (TypeError, ValueError) as e:
                raise InvalidValueError(f"{name}: {e}") from e
            return lambda: captured

        if isinstance(value, np.ndarray):
            value = DeviceScalar(value)
        if not isinstance(value, DeviceScalar):
            raise InvalidValueError(f"{name}: host scalar given in DEVICE pointer mode")
        ref = value.ref
        return lambda: kind.cast(ref.reshape(-1)[0])

    def enqueue(self, fn: Callable[[], None], op: str) -> None:
        """Enqueue work on the current stream."""
        self.ensure_alive()
        self._stream.enqueue(fn, op)


def create(stream: Optional[Stream] = None) -> Handle:
    """Create a library handle.

    Args:
        stream: Stream to enqueue on. A new one is created when omitted,
            asynchronous if ``config.execution.async_streams`` is set.
    """
    return Handle(stream)


_default_handle: Optional[Handle] = None
_default_lock = threading.Lock()


def default_handle() -> Handle:
    """Shared blocking handle used by the high-level format helpers."""
    global _default_handle
    with _default_lock:
        if _default_handle is None or not _default_handle.alive:
            _default_handle = Handle(Stream(blocking=True, name="default"))
        return _default_handle


def require_handle(handle: Any) -> Handle:
    """Validate the handle argument of a public operation."""
    if handle is None:
        raise NotInitializedError("no handle given")
    if not isinstance(handle, Handle):
        raise InvalidValueError(f"expected Handle, got {type(handle).__name__}")
    handle.ensure_alive()
    return handle
