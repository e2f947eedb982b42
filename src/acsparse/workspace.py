"""Workspace Manager.

Every non-trivial operation first reports the scratch size it needs; the
caller allocates and owns that buffer and passes it back in. Sizing
functions are pure and depend only on shape parameters.

Example:
    >>> size = csrsv2_buffer_size(handle, trans, descr, csr, info)
    >>> buffer = workspace.allocate(size)
    >>> csrsv2_analysis(handle, trans, descr, csr, info, policy, buffer)
"""

import logging
from typing import Optional

import numpy as np

from .config import config
from .error import AllocationFailedError, InvalidValueError

logger = logging.getLogger("acsparse.workspace")

__all__ = ['allocate', 'align', 'check_buffer', 'Arena', 'array_bytes']


def align(nbytes: int, alignment: Optional[int] = None) -> int:
    """Round ``nbytes`` up to the configured alignment."""
    if alignment is None:
        alignment = config.memory.alignment
    return ((int(nbytes) + alignment - 1) // alignment) * alignment


def array_bytes(count: int, dtype) -> int:
    """Aligned byte size of ``count`` elements of ``dtype``."""
    return align(int(count) * np.dtype(dtype).itemsize)


def allocate(nbytes: int) -> np.ndarray:
    """Allocate a caller-owned scratch buffer.

    Args:
        nbytes: Size in bytes, as returned by a sizing function.

    Returns:
        A ``uint8`` array of at least ``nbytes`` bytes.

    Raises:
        InvalidValueError: If ``nbytes`` is negative.
        AllocationFailedError: If the size exceeds the configured cap or
            the allocation itself fails.
    """
    nbytes = int(nbytes)
    if nbytes < 0:
        raise InvalidValueError(f"buffer size must be >= 0, got {nbytes}")
    cap = config.memory.max_workspace_bytes
    if cap and nbytes > cap:
        raise AllocationFailedError(
            f"workspace of {nbytes} bytes exceeds the configured cap of {cap} bytes"
        )
    try:
        buffer = np.empty(max(nbytes, 1), dtype=np.uint8)
    except MemoryError as e:
        raise AllocationFailedError(f"cannot allocate {nbytes} bytes") from e
    logger.debug("Allocated workspace of %d bytes", nbytes)
    return buffer


def check_buffer(buffer: Optional[np.ndarray], required: int, context: str) -> None:
    """Validate a caller-supplied scratch buffer before work is enqueued.

    Raises:
        InvalidValueError: If the buffer is missing, not a byte buffer, or
            smaller than ``required``.
    """
    if required == 0 and buffer is None:
        return
    if buffer is None:
        raise InvalidValueError(f"{context}: buffer is required ({required} bytes)")
    if not isinstance(buffer, np.ndarray) or buffer.dtype != np.uint8 or buffer.ndim != 1:
        raise InvalidValueError(f"{context}: buffer must be a 1-D uint8 array")
    if buffer.nbytes < required:
        raise InvalidValueError(
            f"{context}: buffer of {buffer.nbytes} bytes is smaller than the "
            f"required {required} bytes"
        )


class Arena:
    """Carves aligned, typed views out of a caller-owned buffer.

    Views alias the buffer, so their contents live only as long as the
    caller keeps the buffer untouched.
    """

    def __init__(self, buffer: np.ndarray):
        self._buffer = buffer
        self._offset = 0

    @property
    def used(self) -> int:
        return self._offset

    @property
    def capacity(self) -> int:
        return self._buffer.nbytes

    def take(self, dtype, count: int) -> np.ndarray:
        """Next aligned view of ``count`` elements of ``dtype``."""
        dtype = np.dtype(dtype)
        nbytes = int(count) * dtype.itemsize
        start = self._offset
        end = start + nbytes
        if end > self.capacity:
            raise InvalidValueError(
                f"workspace exhausted: need {end} bytes, have {self.capacity}"
            )
        self._offset = align(end)
        return self._buffer[start:end].view(dtype)
