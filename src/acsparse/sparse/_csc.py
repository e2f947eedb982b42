"""CSC (Compressed Sparse Column) Matrix.

Layout:
    col_ptr: int[n+1], col_ptr[0] = base
    row_ind: int[nnz]
    val:     T[nnz]
"""

from typing import Any, Optional, Tuple, TYPE_CHECKING

import numpy as np

from ..descr import MatDescr
from ..error import InvalidValueError
from ._base import SparseFormat, as_index_array, as_value_array, check_pointer_array

if TYPE_CHECKING:
    from ..handle import Handle
    from ._csr import CSRMatrix

__all__ = ['CSCMatrix']


class CSCMatrix(SparseFormat):
    """Compressed sparse column matrix."""

    format = 'csc'

    def __init__(self, col_ptr: Any, row_ind: Any, val: Any,
                 shape: Tuple[int, int], descr: Optional[MatDescr] = None):
        super().__init__(shape, as_value_array(val), descr)
        self._col_ptr = as_index_array(col_ptr, 'col_ptr')
        self._row_ind = as_index_array(row_ind, 'row_ind')
        if self._col_ptr.shape[0] != self.n + 1:
            raise InvalidValueError(
                f"col_ptr must have {self.n + 1} entries, got {self._col_ptr.shape[0]}"
            )
        nnz = self.nnz
        if self._row_ind.shape[0] < nnz or self._val.shape[0] < nnz:
            raise InvalidValueError(f"row_ind/val must hold at least nnz={nnz} entries")

    @property
    def col_ptr(self) -> np.ndarray:
        return self._col_ptr

    @property
    def row_ind(self) -> np.ndarray:
        return self._row_ind

    @property
    def nnz(self) -> int:
        if self.n == 0:
            return 0
        return int(self._col_ptr[self.n]) - int(self._col_ptr[0])

    @property
    def index_dtype(self) -> np.dtype:
        return self._col_ptr.dtype

    def validate(self) -> None:
        check_pointer_array(self._col_ptr, self.n, self.base, 'col_ptr')
        self._check_range(self._row_ind[:self.nnz], self.m, 'row_ind')

    def has_sorted_indices(self) -> bool:
        """Whether rows are non-decreasing within every column."""
        from .._kernel.utils import expand_ptr, offsets

        nnz = self.nnz
        if nnz < 2:
            return True
        owner = expand_ptr(offsets(self._col_ptr, self.n), self.n)
        rows = self._row_ind[:nnz].astype(np.int64)
        same = owner[1:] == owner[:-1]
        return not np.any(same & (np.diff(rows) < 0))

    @classmethod
    def from_dense(cls, A: Any, descr: Optional[MatDescr] = None,
                   handle: Optional["Handle"] = None) -> "CSCMatrix":
        from ..conversion import nnz as count_nnz, dense2csc
        from ..descr import Direction
        from ..dtypes import default_index_dtype
        from ..handle import default_handle

        handle = handle or default_handle()
        A = np.asarray(A)
        if A.dtype.kind not in 'fc':
            A = A.astype(np.float64)
        descr = descr or MatDescr()
        m, n = A.shape
        index_dtype = default_index_dtype()
        nnz_per_col = np.zeros(n, dtype=index_dtype)
        total = count_nnz(handle, Direction.COLUMN, A, descr, nnz_per_col)
        col_ptr = np.empty(n + 1, dtype=index_dtype)
        row_ind = np.empty(total, dtype=index_dtype)
        val = np.empty(total, dtype=A.dtype)
        dense2csc(handle, A, descr, nnz_per_col, val, row_ind, col_ptr)
        handle.synchronize()
        return cls(col_ptr, row_ind, val, (m, n), descr)

    @classmethod
    def from_scipy(cls, mat, descr: Optional[MatDescr] = None) -> "CSCMatrix":
        from ..dtypes import default_index_dtype

        descr = descr or MatDescr()
        csc = mat.tocsc()
        index_dtype = default_index_dtype()
        data = csc.data if csc.data.dtype.kind in 'fc' else csc.data.astype(np.float64)
        return cls(csc.indptr.astype(index_dtype) + descr.base,
                   csc.indices.astype(index_dtype) + descr.base,
                   data.copy(), csc.shape, descr)

    def copy(self) -> "CSCMatrix":
        return CSCMatrix(self._col_ptr.copy(), self._row_ind.copy(), self._val.copy(),
                         self.shape, self._descr)

    def to_scipy(self):
        import scipy.sparse as sp
        from .._kernel.utils import offsets

        offs = offsets(self._col_ptr, self.n)
        nnz = int(offs[-1])
        rows = self._row_ind[:nnz].astype(np.int64) - self.base
        return sp.csc_matrix((self._val[:nnz].copy(), rows, offs), shape=self.shape)

    def to_dense(self, handle: Optional["Handle"] = None) -> np.ndarray:
        from ..conversion import csc2dense
        from ..handle import default_handle

        handle = handle or default_handle()
        out = np.empty(self.shape, dtype=self.dtype)
        csc2dense(handle, self._descr, self, out)
        handle.synchronize()
        return out

    def to_csr(self, handle: Optional["Handle"] = None) -> "CSRMatrix":
        """Transpose the storage back to CSR (a CSC of A is the CSR of A^T)."""
        from ..conversion import csr2csc
        from ..descr import Action
        from ..handle import default_handle
        from ._csr import CSRMatrix

        handle = handle or default_handle()
        as_transpose = CSRMatrix(self._col_ptr, self._row_ind, self._val,
                                 (self.n, self.m), self._descr)
        nnz = self.nnz
        val = np.empty(nnz, dtype=self.dtype)
        col_ind = np.empty(nnz, dtype=self.index_dtype)
        row_ptr = np.empty(self.m + 1, dtype=self.index_dtype)
        csr2csc(handle, as_transpose, Action.NUMERIC, self._descr.index_base,
                val, col_ind, row_ptr)
        handle.synchronize()
        return CSRMatrix(row_ptr, col_ind, val, self.shape, self._descr)
