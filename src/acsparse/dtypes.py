"""
acsparse DTypes - Scalar Kinds

Every operation is written once and parameterized by a ``ScalarKind``: the
trait of one of the four supported value types (float32, float64,
complex64, complex128) providing addition, multiplication and conjugation.
Index arrays are int32 or int64.
"""

from __future__ import annotations

from enum import IntEnum
from typing import Any, Dict, Union

import numpy as np

from .error import InvalidValueError


# =============================================================================
# Scalar Kind Enumeration
# =============================================================================

class ScalarKind(IntEnum):
    """
    Supported value types.

    The single-letter ``prefix`` is the conventional routine prefix
    (S, D, C, Z) and is used in log and error messages.
    """
    FLOAT32 = 0
    FLOAT64 = 1
    COMPLEX64 = 2
    COMPLEX128 = 3

    @property
    def dtype(self) -> np.dtype:
        return np.dtype(_KIND_INFO[self]["dtype"])

    @property
    def prefix(self) -> str:
        return _KIND_INFO[self]["prefix"]

    @property
    def tolerance(self) -> float:
        """Default comparison tolerance for results of this precision."""
        return _KIND_INFO[self]["tolerance"]

    @property
    def is_complex(self) -> bool:
        return self in (ScalarKind.COMPLEX64, ScalarKind.COMPLEX128)

    @property
    def is_double(self) -> bool:
        """Whether the kind needs double-precision hardware support."""
        return self in (ScalarKind.FLOAT64, ScalarKind.COMPLEX128)

    @property
    def zero(self):
        return self.dtype.type(0)

    @property
    def one(self):
        return self.dtype.type(1)

    # Scalar arithmetic, elementwise on arrays as well
    def add(self, a, b):
        return np.add(a, b, dtype=self.dtype)

    def mul(self, a, b):
        return np.multiply(a, b, dtype=self.dtype)

    def conj(self, a):
        if self.is_complex:
            return np.conj(a)
        return a

    def cast(self, value: Any):
        """Cast a Python/numpy scalar into this kind."""
        return self.dtype.type(value)

    @classmethod
    def from_dtype(cls, dtype: Union[np.dtype, str, type, "ScalarKind"]) -> "ScalarKind":
        """Resolve the kind of a numpy dtype (or anything numpy accepts as one)."""
        if isinstance(dtype, ScalarKind):
            return dtype
        try:
            dt = np.dtype(dtype)
        except TypeError as e:
            raise InvalidValueError(f"Cannot interpret {dtype!r} as a dtype") from e
        kind = _DTYPE_TO_KIND.get(dt)
        if kind is None:
            raise InvalidValueError(
                f"Unsupported value dtype {dt}; expected one of "
                f"{', '.join(str(k.dtype) for k in ScalarKind)}"
            )
        return kind


# Kind information table
_KIND_INFO: Dict[ScalarKind, Dict[str, Any]] = {
    ScalarKind.FLOAT32: {"dtype": np.float32, "prefix": "S", "tolerance": 1e-5},
    ScalarKind.FLOAT64: {"dtype": np.float64, "prefix": "D", "tolerance": 1e-12},
    ScalarKind.COMPLEX64: {"dtype": np.complex64, "prefix": "C", "tolerance": 1e-5},
    ScalarKind.COMPLEX128: {"dtype": np.complex128, "prefix": "Z", "tolerance": 1e-12},
}

_DTYPE_TO_KIND: Dict[np.dtype, ScalarKind] = {
    np.dtype(info["dtype"]): kind for kind, info in _KIND_INFO.items()
}


# =============================================================================
# Index Types
# =============================================================================

INDEX_DTYPES = (np.dtype(np.int32), np.dtype(np.int64))


def validate_index_dtype(dtype: Any, name: str = "index array") -> np.dtype:
    """
    Validate an index dtype.

    Args:
        dtype: Candidate dtype.
        name: Array name for the error message.

    Returns:
        The validated numpy dtype.

    Raises:
        InvalidValueError: If the dtype is not int32 or int64.
    """
    dt = np.dtype(dtype)
    if dt not in INDEX_DTYPES:
        raise InvalidValueError(f"{name} must be int32 or int64, got {dt}")
    return dt


def default_index_dtype() -> np.dtype:
    """Index dtype configured for arrays the engine allocates."""
    from .config import config
    return np.dtype(config.index.dtype)


__all__ = [
    "ScalarKind",
    "INDEX_DTYPES",
    "validate_index_dtype",
    "default_index_dtype",
]
