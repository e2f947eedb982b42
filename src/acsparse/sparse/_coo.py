"""COO (Coordinate) Matrix.

Layout:
    row_ind: int[nnz]
    col_ind: int[nnz]
    val:     T[nnz]

Entries may appear in any order and duplicates are allowed; sorting via
:func:`acsparse.sorting.coosort_by_row` is stable and never merges them.
Compression to CSR requires row-sorted entries.
"""

from typing import Any, Optional, Tuple, TYPE_CHECKING

import numpy as np

from ..descr import MatDescr
from ..error import InvalidValueError
from ._base import SparseFormat, as_index_array, as_value_array

if TYPE_CHECKING:
    from ..handle import Handle
    from ._csr import CSRMatrix

__all__ = ['COOMatrix']


class COOMatrix(SparseFormat):
    """Coordinate-list matrix."""

    format = 'coo'

    def __init__(self, row_ind: Any, col_ind: Any, val: Any,
                 shape: Tuple[int, int], descr: Optional[MatDescr] = None):
        super().__init__(shape, as_value_array(val), descr)
        self._row_ind = as_index_array(row_ind, 'row_ind')
        self._col_ind = as_index_array(col_ind, 'col_ind')
        if not (self._row_ind.shape[0] == self._col_ind.shape[0] == self._val.shape[0]):
            raise InvalidValueError(
                f"row_ind, col_ind and val must have equal lengths, got "
                f"{self._row_ind.shape[0]}, {self._col_ind.shape[0]}, {self._val.shape[0]}"
            )

    @property
    def row_ind(self) -> np.ndarray:
        return self._row_ind

    @property
    def col_ind(self) -> np.ndarray:
        return self._col_ind

    @property
    def nnz(self) -> int:
        return int(self._row_ind.shape[0])

    @property
    def index_dtype(self) -> np.dtype:
        return self._row_ind.dtype

    def validate(self) -> None:
        self._check_range(self._row_ind, self.m, 'row_ind')
        self._check_range(self._col_ind, self.n, 'col_ind')

    def has_sorted_indices(self) -> bool:
        """Whether entries are sorted by (row, column)."""
        if self.nnz < 2:
            return True
        rows = self._row_ind.astype(np.int64)
        cols = self._col_ind.astype(np.int64)
        dr = np.diff(rows)
        return bool(np.all((dr > 0) | ((dr == 0) & (np.diff(cols) >= 0))))

    @classmethod
    def from_scipy(cls, mat, descr: Optional[MatDescr] = None) -> "COOMatrix":
        from ..dtypes import default_index_dtype

        descr = descr or MatDescr()
        coo = mat.tocoo()
        index_dtype = default_index_dtype()
        data = coo.data if coo.data.dtype.kind in 'fc' else coo.data.astype(np.float64)
        return cls(coo.row.astype(index_dtype) + descr.base,
                   coo.col.astype(index_dtype) + descr.base,
                   data.copy(), coo.shape, descr)

    def copy(self) -> "COOMatrix":
        return COOMatrix(self._row_ind.copy(), self._col_ind.copy(), self._val.copy(),
                         self.shape, self._descr)

    def to_scipy(self):
        import scipy.sparse as sp

        return sp.coo_matrix(
            (self._val.copy(),
             (self._row_ind.astype(np.int64) - self.base,
              self._col_ind.astype(np.int64) - self.base)),
            shape=self.shape,
        )

    def sort(self, by_row: bool = True, handle: Optional["Handle"] = None) -> np.ndarray:
        """Stable in-place sort of entries, values included.

        Returns:
            The permutation applied to the values.
        """
        from ..handle import default_handle
        from ..descr import IndexBase
        from ..sorting import (coosort_buffer_size, coosort_by_column, coosort_by_row,
                               create_identity_permutation, gthr)
        from ..workspace import allocate

        handle = handle or default_handle()
        nnz = self.nnz
        P = np.empty(nnz, dtype=self.index_dtype)
        create_identity_permutation(handle, nnz, P)
        buffer = allocate(coosort_buffer_size(handle, self.m, self.n, nnz,
                                              self._row_ind, self._col_ind))
        sort = coosort_by_row if by_row else coosort_by_column
        sort(handle, self.m, self.n, nnz, self._row_ind, self._col_ind, P, buffer)
        original = self._val.copy()
        gthr(handle, original, self._val, P, IndexBase.ZERO)
        handle.synchronize()
        return P

    def to_csr(self, handle: Optional["Handle"] = None) -> "CSRMatrix":
        """Compress to CSR; a row-sorted copy is made first if needed."""
        from ..conversion import coo2csr
        from ..handle import default_handle
        from ._csr import CSRMatrix

        handle = handle or default_handle()
        src = self
        if not self.has_sorted_indices():
            src = self.copy()
            src.sort(by_row=True, handle=handle)
        row_ptr = np.empty(self.m + 1, dtype=self.index_dtype)
        coo2csr(handle, src.row_ind, self.m, self._descr.index_base, row_ptr)
        handle.synchronize()
        return CSRMatrix(row_ptr, src.col_ind.copy(), src.val.copy(), self.shape, self._descr)
