"""Argument checks and stream dispatch shared by the public operations.

Every public operation follows the same shape:

    1. ``require_handle`` and the checks below run synchronously and raise
       before anything is enqueued.
    2. The kernel call is wrapped in a closure and enqueued on the
       handle's stream with ``Handle.enqueue``.
    3. Operations that hand a host value back (totals, zero pivots) use
       :func:`submit_and_wait`, which synchronizes the stream.
"""

from typing import Any, Callable, Optional, Sequence, Tuple

import numpy as np

from .descr import MatDescr, MatrixType, Operation, SolvePolicy
from .dtypes import INDEX_DTYPES, ScalarKind
from .error import InvalidValueError, MatrixTypeNotSupportedError
from .handle import Handle

__all__ = [
    'submit_and_wait',
    'require_instance', 'require_descr', 'require_same_base', 'require_operation',
    'require_policy', 'require_square',
    'require_index_output', 'require_value_output', 'require_dense',
    'require_vector', 'require_general_storage', 'kind_for',
]


def submit_and_wait(handle: Handle, fn: Callable[[], Any], op: str) -> Any:
    """Enqueue ``fn`` and return its result once the stream has drained."""
    box = []
    handle.enqueue(lambda: box.append(fn()), op)
    handle.synchronize()
    return box[0]


# =============================================================================
# Argument Checks
# =============================================================================

def require_instance(obj: Any, cls, name: str) -> None:
    if not isinstance(obj, cls):
        expected = cls.__name__ if isinstance(cls, type) else " or ".join(c.__name__ for c in cls)
        raise InvalidValueError(f"{name} must be {expected}, got {type(obj).__name__}")


def require_descr(descr: Any, name: str = "descr") -> MatDescr:
    require_instance(descr, MatDescr, name)
    return descr


def require_same_base(descr: MatDescr, matrix: Any, context: str) -> None:
    """The descriptor passed with a matrix must agree with its index base."""
    if descr.base != matrix.base:
        raise InvalidValueError(
            f"{context}: descriptor index base {descr.base} does not match the "
            f"matrix index base {matrix.base}"
        )


def require_operation(trans: Any) -> Operation:
    try:
        return Operation(trans)
    except ValueError as e:
        raise InvalidValueError(f"trans: {e}") from e


def require_policy(policy: Any) -> SolvePolicy:
    try:
        return SolvePolicy(policy)
    except ValueError as e:
        raise InvalidValueError(f"policy: {e}") from e


def require_square(shape: Tuple[int, int], context: str) -> None:
    if shape[0] != shape[1]:
        raise InvalidValueError(f"{context}: matrix must be square, got {shape}")


def _require_array(arr: Any, name: str) -> np.ndarray:
    if not isinstance(arr, np.ndarray):
        raise InvalidValueError(f"{name} must be a numpy array, got {type(arr).__name__}")
    if not arr.flags.writeable:
        raise InvalidValueError(f"{name} must be writeable")
    return arr


def require_index_output(arr: Any, length: int, name: str) -> np.ndarray:
    """Writeable 1-D int32/int64 array of at least ``length`` entries."""
    arr = _require_array(arr, name)
    if arr.ndim != 1 or arr.dtype not in INDEX_DTYPES:
        raise InvalidValueError(f"{name} must be a 1-D int32/int64 array, got {arr.dtype} {arr.ndim}-D")
    if arr.shape[0] < length:
        raise InvalidValueError(f"{name} must hold {length} entries, got {arr.shape[0]}")
    return arr


def require_value_output(arr: Any, length: int, dtype: np.dtype, name: str) -> np.ndarray:
    """Writeable 1-D array of ``dtype`` with at least ``length`` entries."""
    arr = _require_array(arr, name)
    if arr.ndim != 1:
        raise InvalidValueError(f"{name} must be 1-D, got {arr.ndim}-D")
    if arr.dtype != dtype:
        raise InvalidValueError(f"{name} must have dtype {dtype}, got {arr.dtype}")
    if arr.shape[0] < length:
        raise InvalidValueError(f"{name} must hold {length} entries, got {arr.shape[0]}")
    return arr


def require_dense(A: Any, shape: Optional[Sequence[int]], name: str,
                  dtype: Optional[np.dtype] = None, writeable: bool = False) -> np.ndarray:
    """2-D array of a supported value dtype (and of ``shape``/``dtype`` if given)."""
    if not isinstance(A, np.ndarray):
        raise InvalidValueError(f"{name} must be a numpy array, got {type(A).__name__}")
    if A.ndim != 2:
        raise InvalidValueError(f"{name} must be 2-D, got {A.ndim}-D")
    ScalarKind.from_dtype(A.dtype)
    if shape is not None and tuple(A.shape) != tuple(shape):
        raise InvalidValueError(f"{name} must have shape {tuple(shape)}, got {A.shape}")
    if dtype is not None and A.dtype != dtype:
        raise InvalidValueError(f"{name} must have dtype {dtype}, got {A.dtype}")
    if writeable and not A.flags.writeable:
        raise InvalidValueError(f"{name} must be writeable")
    return A


def require_vector(x: Any, length: int, dtype: np.dtype, name: str,
                   writeable: bool = False) -> np.ndarray:
    if not isinstance(x, np.ndarray):
        raise InvalidValueError(f"{name} must be a numpy array, got {type(x).__name__}")
    if x.ndim != 1 or x.shape[0] != length:
        raise InvalidValueError(f"{name} must be a vector of length {length}, got shape {x.shape}")
    if x.dtype != dtype:
        raise InvalidValueError(f"{name} must have dtype {dtype}, got {x.dtype}")
    if writeable and not x.flags.writeable:
        raise InvalidValueError(f"{name} must be writeable")
    return x


def require_general_storage(descr: MatDescr, context: str) -> None:
    """Products use the matrix as stored; symmetric/Hermitian storage is rejected."""
    if descr.matrix_type in (MatrixType.SYMMETRIC, MatrixType.HERMITIAN):
        raise MatrixTypeNotSupportedError(
            f"{context}: matrix type {descr.matrix_type.name} is not supported"
        )


def kind_for(handle: Handle, dtype: np.dtype, op: str) -> ScalarKind:
    """Resolve the scalar kind of ``dtype`` and check the device can run it."""
    kind = ScalarKind.from_dtype(dtype)
    handle.check_kind(kind, op)
    return kind
