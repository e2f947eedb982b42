"""
Error handling for acsparse.

Status codes follow the numbering used by accelerator sparse libraries so
that callers can branch on them directly. Every failing operation raises a
``SparseError`` subclass carrying its code; the zero-pivot status is an
informational outcome and is returned, never raised.
"""

from __future__ import annotations

from enum import IntEnum
from typing import Dict, Optional, Type


__all__ = [
    'Status',
    'SparseError',
    'NotInitializedError',
    'AllocationFailedError',
    'InvalidValueError',
    'ArchitectureMismatchError',
    'ExecutionFailedError',
    'InternalError',
    'MatrixTypeNotSupportedError',
    'NotSupportedError',
    'check_status',
    'status_message',
]


# =============================================================================
# Status Codes
# =============================================================================

class Status(IntEnum):
    """Status returned by every operation."""
    SUCCESS = 0
    NOT_INITIALIZED = 1
    ALLOC_FAILED = 2
    INVALID_VALUE = 3
    ARCH_MISMATCH = 4
    EXECUTION_FAILED = 6
    INTERNAL_ERROR = 7
    MATRIX_TYPE_NOT_SUPPORTED = 8
    ZERO_PIVOT = 9
    NOT_SUPPORTED = 10


_STATUS_MESSAGES = {
    Status.SUCCESS: "Success",
    Status.NOT_INITIALIZED: "Handle not initialized",
    Status.ALLOC_FAILED: "Allocation failed",
    Status.INVALID_VALUE: "Invalid value",
    Status.ARCH_MISMATCH: "Architecture mismatch",
    Status.EXECUTION_FAILED: "Execution failed",
    Status.INTERNAL_ERROR: "Internal error",
    Status.MATRIX_TYPE_NOT_SUPPORTED: "Matrix type not supported",
    Status.ZERO_PIVOT: "Zero pivot",
    Status.NOT_SUPPORTED: "Not supported",
}


def status_message(code: int) -> str:
    """Human-readable message for a status code."""
    try:
        return _STATUS_MESSAGES[Status(code)]
    except ValueError:
        return f"Unknown status (code={code})"


# =============================================================================
# Exception Classes
# =============================================================================

class SparseError(Exception):
    """
    Base exception for all acsparse errors.

    Attributes:
        code: Status code of the failure.
        message: Detailed message.
    """

    code: int = Status.INTERNAL_ERROR

    def __init__(self, message: Optional[str] = None, code: Optional[int] = None):
        if code is not None:
            self.code = Status(code)
        if message is None:
            message = status_message(self.code)
        self.message = message
        super().__init__(f"[{Status(self.code).name}] {message}")

    @property
    def status(self) -> Status:
        return Status(self.code)

    @classmethod
    def from_code(cls, code: int, context: str = "") -> "SparseError":
        """Create the exception matching ``code`` with optional context."""
        base_msg = status_message(code)
        msg = f"{context}: {base_msg}" if context else base_msg
        try:
            status = Status(code)
        except ValueError:
            return SparseError(msg, code=Status.INTERNAL_ERROR)
        exc_type = _CODE_TO_EXCEPTION.get(status, SparseError)
        if exc_type is SparseError:
            return SparseError(msg, code=status)
        return exc_type(msg)


class NotInitializedError(SparseError):
    """Handle or engine used before setup or after destruction."""
    code = Status.NOT_INITIALIZED


class AllocationFailedError(SparseError, MemoryError):
    """Scratch or output buffer allocation failed."""
    code = Status.ALLOC_FAILED


class InvalidValueError(SparseError, ValueError):
    """A parameter violates a documented precondition."""
    code = Status.INVALID_VALUE


class ArchitectureMismatchError(SparseError):
    """Operation not supported on the current device capability."""
    code = Status.ARCH_MISMATCH


class ExecutionFailedError(SparseError):
    """Enqueued work faulted; reported at the next synchronization point."""
    code = Status.EXECUTION_FAILED


class InternalError(SparseError):
    """Unexpected internal inconsistency."""
    code = Status.INTERNAL_ERROR


class MatrixTypeNotSupportedError(SparseError):
    """Descriptor matrix type not accepted by the operation."""
    code = Status.MATRIX_TYPE_NOT_SUPPORTED


class NotSupportedError(SparseError):
    """Parameter combination understood but deliberately unimplemented."""
    code = Status.NOT_SUPPORTED


_CODE_TO_EXCEPTION: Dict[Status, Type[SparseError]] = {
    Status.NOT_INITIALIZED: NotInitializedError,
    Status.ALLOC_FAILED: AllocationFailedError,
    Status.INVALID_VALUE: InvalidValueError,
    Status.ARCH_MISMATCH: ArchitectureMismatchError,
    Status.EXECUTION_FAILED: ExecutionFailedError,
    Status.INTERNAL_ERROR: InternalError,
    Status.MATRIX_TYPE_NOT_SUPPORTED: MatrixTypeNotSupportedError,
    Status.NOT_SUPPORTED: NotSupportedError,
}


# =============================================================================
# Status Checking
# =============================================================================

def check_status(code: int, context: str = "") -> None:
    """
    Raise the exception mapped to ``code`` unless it is a non-error status.

    ``SUCCESS`` and ``ZERO_PIVOT`` return normally.

    Args:
        code: Status code.
        context: Optional context for the error message.

    Raises:
        SparseError: Subclass matching the code.
    """
    if code in (Status.SUCCESS, Status.ZERO_PIVOT):
        return
    raise SparseError.from_code(code, context)
