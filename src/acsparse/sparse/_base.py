"""
Sparse Format Base Class

Defines the interface shared by every explicit storage format (CSR, CSC,
COO, BSR, GEBSR). Formats are thin records over caller-visible arrays:
the arrays *are* the interchange contract, indexed with the descriptor's
index base, and are never copied or re-based behind the caller's back.

Type Hierarchy:

    SparseFormat (ABC)
    ├── CSRMatrix   - row_ptr / col_ind / val
    ├── CSCMatrix   - col_ptr / row_ind / val
    ├── COOMatrix   - row_ind / col_ind / val
    └── GEBSRMatrix - block row_ptr / block col_ind / block val
        └── BSRMatrix - square blocks

Shape Rules:
    - The shape and index arrays are fixed for the lifetime of any analysis
      built against the matrix.
    - The value array may be overwritten in place (incomplete factorization
      does exactly that).
"""

from abc import ABC, abstractmethod
from typing import Any, Optional, Tuple

import numpy as np

from ..descr import MatDescr
from ..dtypes import ScalarKind, validate_index_dtype
from ..error import InvalidValueError

__all__ = ['SparseFormat', 'as_index_array', 'as_value_array', 'check_pointer_array']


# =============================================================================
# Array Helpers
# =============================================================================

def as_index_array(array: Any, name: str) -> np.ndarray:
    """Accept an index array, converting lists to the configured dtype."""
    if isinstance(array, np.ndarray):
        validate_index_dtype(array.dtype, name)
        if array.ndim != 1:
            raise InvalidValueError(f"{name} must be 1-D, got {array.ndim}-D")
        return array
    from ..dtypes import default_index_dtype
    return np.asarray(array, dtype=default_index_dtype())


def as_value_array(array: Any, name: str = "val", dtype: Any = None) -> np.ndarray:
    """Accept a value array of a supported scalar kind."""
    if not isinstance(array, np.ndarray):
        array = np.asarray(array, dtype=dtype if dtype is not None else np.float64)
    ScalarKind.from_dtype(array.dtype)
    if array.ndim != 1:
        raise InvalidValueError(f"{name} must be 1-D, got {array.ndim}-D")
    return array


def check_pointer_array(ptr: np.ndarray, count: int, base: int, name: str) -> int:
    """Validate a compressed pointer array and return the nnz it spans.

    Raises:
        InvalidValueError: On wrong length, wrong first entry, or decreasing
            entries.
    """
    if ptr.shape[0] != count + 1:
        raise InvalidValueError(f"{name} must have {count + 1} entries, got {ptr.shape[0]}")
    if int(ptr[0]) != base:
        raise InvalidValueError(f"{name}[0] must equal the index base {base}, got {int(ptr[0])}")
    if count > 0 and np.any(np.diff(ptr) < 0):
        raise InvalidValueError(f"{name} must be non-decreasing")
    return int(ptr[-1]) - int(ptr[0])


# =============================================================================
# Base Class
# =============================================================================

class SparseFormat(ABC):
    """
    Abstract base class for explicit sparse formats.

    Required Properties (subclasses must implement):
        nnz: Number of stored entries (scalars for scalar formats, blocks
            for block formats).
        format: Short format name.

    Required Methods (subclasses must implement):
        validate(): Check layout invariants.
        copy(): Deep copy.
        to_scipy(): Convert to a scipy sparse matrix.
    """

    format: str = ""

    def __init__(self, shape: Tuple[int, int], val: np.ndarray, descr: Optional[MatDescr]):
        m, n = (int(s) for s in shape)
        if m < 0 or n < 0:
            raise InvalidValueError(f"dimensions must be >= 0, got {(m, n)}")
        self._shape = (m, n)
        self._val = val
        self._descr = descr if descr is not None else MatDescr()

    # =========================================================================
    # Common Properties
    # =========================================================================

    @property
    def shape(self) -> Tuple[int, int]:
        """Matrix dimensions (rows, cols)."""
        return self._shape

    @property
    def m(self) -> int:
        return self._shape[0]

    @property
    def n(self) -> int:
        return self._shape[1]

    @property
    def descr(self) -> MatDescr:
        return self._descr

    @property
    def base(self) -> int:
        return self._descr.base

    @property
    def val(self) -> np.ndarray:
        """Value array (mutable in place)."""
        return self._val

    @property
    def dtype(self) -> np.dtype:
        return self._val.dtype

    @property
    def kind(self) -> ScalarKind:
        return ScalarKind.from_dtype(self._val.dtype)

    @property
    @abstractmethod
    def nnz(self) -> int:
        ...

    @property
    @abstractmethod
    def index_dtype(self) -> np.dtype:
        ...

    # =========================================================================
    # Abstract Methods
    # =========================================================================

    @abstractmethod
    def validate(self) -> None:
        """Check layout invariants.

        Raises:
            InvalidValueError: If any invariant is violated.
        """
        ...

    @abstractmethod
    def copy(self) -> "SparseFormat":
        ...

    @abstractmethod
    def to_scipy(self):
        ...

    # =========================================================================
    # Helpers
    # =========================================================================

    def _check_range(self, indices: np.ndarray, bound: int, name: str) -> None:
        if indices.size == 0:
            return
        lo, hi = int(indices.min()), int(indices.max())
        if lo < self.base or hi >= bound + self.base:
            raise InvalidValueError(
                f"{name} entries must lie in [{self.base}, {bound + self.base}), "
                f"got [{lo}, {hi}]"
            )

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(shape={self.shape}, nnz={self.nnz}, "
            f"dtype={self.dtype}, base={self.base})"
        )
