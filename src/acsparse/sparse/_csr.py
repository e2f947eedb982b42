"""CSR (Compressed Sparse Row) Matrix.

Layout:
    row_ptr: int[m+1], non-decreasing, row_ptr[0] = base,
             row_ptr[m] - row_ptr[0] = nnz
    col_ind: int[nnz], column of each entry (index base applied)
    val:     T[nnz], index-aligned with col_ind

Column indices within a row need not be sorted unless the matrix passed
through :func:`acsparse.sorting.csrsort`. Kernels that need sorted rows
(incomplete factorization, sparse-sparse products) say so.

Example:
    >>> csr = CSRMatrix([0, 1, 3, 4], [0, 0, 1, 2], [2., 1., 3., 4.], shape=(3, 3))
    >>> csr.to_dense()
    array([[2., 0., 0.],
           [1., 3., 0.],
           [0., 0., 4.]])
"""

from typing import Any, Optional, Tuple, TYPE_CHECKING

import numpy as np

from ..descr import Direction, HybPartition, MatDescr, IndexBase
from ..error import InvalidValueError
from ._base import SparseFormat, as_index_array, as_value_array, check_pointer_array

if TYPE_CHECKING:
    from ..handle import Handle
    from ._coo import COOMatrix
    from ._csc import CSCMatrix
    from ._bsr import BSRMatrix, GEBSRMatrix
    from ._hyb import HybMatrix

__all__ = ['CSRMatrix']


class CSRMatrix(SparseFormat):
    """Compressed sparse row matrix.

    Args:
        row_ptr: Row pointer array (m+1).
        col_ind: Column index array (nnz).
        val: Value array (nnz).
        shape: (m, n).
        descr: Descriptor; general, zero-based when omitted.
    """

    format = 'csr'

    def __init__(self, row_ptr: Any, col_ind: Any, val: Any,
                 shape: Tuple[int, int], descr: Optional[MatDescr] = None):
        super().__init__(shape, as_value_array(val), descr)
        self._row_ptr = as_index_array(row_ptr, 'row_ptr')
        self._col_ind = as_index_array(col_ind, 'col_ind')
        if self._row_ptr.shape[0] != self.m + 1:
            raise InvalidValueError(
                f"row_ptr must have {self.m + 1} entries, got {self._row_ptr.shape[0]}"
            )
        nnz = self.nnz
        if self._col_ind.shape[0] < nnz or self._val.shape[0] < nnz:
            raise InvalidValueError(
                f"col_ind/val must hold at least nnz={nnz} entries, got "
                f"{self._col_ind.shape[0]}/{self._val.shape[0]}"
            )

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def row_ptr(self) -> np.ndarray:
        return self._row_ptr

    @property
    def col_ind(self) -> np.ndarray:
        return self._col_ind

    @property
    def nnz(self) -> int:
        if self.m == 0:
            return 0
        return int(self._row_ptr[self.m]) - int(self._row_ptr[0])

    @property
    def index_dtype(self) -> np.dtype:
        return self._row_ptr.dtype

    # =========================================================================
    # Validation
    # =========================================================================

    def validate(self) -> None:
        check_pointer_array(self._row_ptr, self.m, self.base, 'row_ptr')
        self._check_range(self._col_ind[:self.nnz], self.n, 'col_ind')

    def has_sorted_indices(self) -> bool:
        """Whether columns are non-decreasing within every row."""
        nnz = self.nnz
        if nnz < 2:
            return True
        cols = self._col_ind[:nnz].astype(np.int64)
        starts = self._row_ptr[1:self.m].astype(np.int64) - int(self._row_ptr[0])
        drops = np.diff(cols) < 0
        # A drop at a row boundary is allowed
        boundary = np.zeros(nnz - 1, dtype=bool)
        inner = starts[(starts > 0) & (starts < nnz)]
        boundary[inner - 1] = True
        return not np.any(drops & ~boundary)

    def scalar_entries(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """0-based (row, col, position in ``val``) of every stored entry."""
        from .._kernel.utils import pointer_entries

        return pointer_entries(self._row_ptr, self._col_ind, self.m, self.base)

    # =========================================================================
    # Construction
    # =========================================================================

    @classmethod
    def from_dense(cls, A: Any, descr: Optional[MatDescr] = None,
                   handle: Optional["Handle"] = None) -> "CSRMatrix":
        """Build from a dense 2-D array via the count-then-fill protocol."""
        from ..conversion import nnz as count_nnz, dense2csr
        from ..dtypes import default_index_dtype
        from ..handle import default_handle

        handle = handle or default_handle()
        A = np.asarray(A)
        if A.dtype.kind not in 'fc':
            A = A.astype(np.float64)
        descr = descr or MatDescr()
        m, n = A.shape
        index_dtype = default_index_dtype()
        nnz_per_row = np.zeros(m, dtype=index_dtype)
        total = count_nnz(handle, Direction.ROW, A, descr, nnz_per_row)
        row_ptr = np.empty(m + 1, dtype=index_dtype)
        col_ind = np.empty(total, dtype=index_dtype)
        val = np.empty(total, dtype=A.dtype)
        dense2csr(handle, A, descr, nnz_per_row, val, row_ptr, col_ind)
        handle.synchronize()
        return cls(row_ptr, col_ind, val, (m, n), descr)

    @classmethod
    def from_scipy(cls, mat, descr: Optional[MatDescr] = None) -> "CSRMatrix":
        """Build from a scipy sparse matrix (copies; converted to CSR first)."""
        from ..dtypes import default_index_dtype

        descr = descr or MatDescr()
        csr = mat.tocsr()
        index_dtype = default_index_dtype()
        data = csr.data
        if data.dtype.kind not in 'fc':
            data = data.astype(np.float64)
        return cls(
            csr.indptr.astype(index_dtype) + descr.base,
            csr.indices.astype(index_dtype) + descr.base,
            data.copy(),
            csr.shape,
            descr,
        )

    def copy(self) -> "CSRMatrix":
        return CSRMatrix(self._row_ptr.copy(), self._col_ind.copy(), self._val.copy(),
                         self.shape, self._descr)

    def with_base(self, index_base: IndexBase) -> "CSRMatrix":
        """Copy re-based to ``index_base``."""
        shift = int(index_base) - self.base
        return CSRMatrix(self._row_ptr + shift, self._col_ind + shift, self._val.copy(),
                         self.shape, self._descr.replace(index_base=index_base))

    # =========================================================================
    # Conversion
    # =========================================================================

    def to_scipy(self):
        from .._kernel.products import as_scipy_csr
        return as_scipy_csr(self.m, self.n, self._row_ptr, self._col_ind,
                            self._val, self.base).copy()

    def to_dense(self, handle: Optional["Handle"] = None) -> np.ndarray:
        from ..conversion import csr2dense
        from ..handle import default_handle

        handle = handle or default_handle()
        out = np.empty(self.shape, dtype=self.dtype)
        csr2dense(handle, self._descr, self, out)
        handle.synchronize()
        return out

    def to_csc(self, handle: Optional["Handle"] = None) -> "CSCMatrix":
        from ..conversion import csr2csc
        from ..descr import Action
        from ..handle import default_handle
        from ._csc import CSCMatrix

        handle = handle or default_handle()
        nnz = self.nnz
        csc_val = np.empty(nnz, dtype=self.dtype)
        csc_row_ind = np.empty(nnz, dtype=self.index_dtype)
        csc_col_ptr = np.empty(self.n + 1, dtype=self.index_dtype)
        csr2csc(handle, self, Action.NUMERIC, self._descr.index_base,
                csc_val, csc_row_ind, csc_col_ptr)
        handle.synchronize()
        return CSCMatrix(csc_col_ptr, csc_row_ind, csc_val, self.shape, self._descr)

    def to_coo(self, handle: Optional["Handle"] = None) -> "COOMatrix":
        from ..conversion import csr2coo
        from ..handle import default_handle
        from ._coo import COOMatrix

        handle = handle or default_handle()
        nnz = self.nnz
        row_ind = np.empty(nnz, dtype=self.index_dtype)
        csr2coo(handle, self._row_ptr, nnz, self._descr.index_base, row_ind)
        handle.synchronize()
        return COOMatrix(row_ind, self._col_ind[:nnz].copy(), self._val[:nnz].copy(),
                         self.shape, self._descr)

    def to_gebsr(self, row_block_dim: int, col_block_dim: int,
                 direction: Direction = Direction.ROW,
                 handle: Optional["Handle"] = None) -> "GEBSRMatrix":
        from ..conversion import csr2gebsr_buffer_size, csr2gebsr_nnz, csr2gebsr
        from ..handle import default_handle
        from ..workspace import allocate
        from ._bsr import GEBSRMatrix, block_counts

        handle = handle or default_handle()
        mb, nb = block_counts(self.shape, row_block_dim, col_block_dim)
        buffer = allocate(csr2gebsr_buffer_size(handle, direction, self, row_block_dim,
                                                col_block_dim))
        bsr_row_ptr = np.empty(mb + 1, dtype=self.index_dtype)
        nnzb = csr2gebsr_nnz(handle, direction, self, self._descr, bsr_row_ptr,
                             row_block_dim, col_block_dim, buffer)
        bsr_col_ind = np.empty(nnzb, dtype=self.index_dtype)
        bsr_val = np.empty(nnzb * row_block_dim * col_block_dim, dtype=self.dtype)
        csr2gebsr(handle, direction, self, self._descr, bsr_val, bsr_row_ptr, bsr_col_ind,
                  row_block_dim, col_block_dim, buffer)
        handle.synchronize()
        return GEBSRMatrix(bsr_row_ptr, bsr_col_ind, bsr_val, row_block_dim, col_block_dim,
                           shape=self.shape, direction=direction, descr=self._descr)

    def to_bsr(self, block_dim: int, direction: Direction = Direction.ROW,
               handle: Optional["Handle"] = None) -> "BSRMatrix":
        from ..conversion import csr2bsr_nnz, csr2bsr
        from ..handle import default_handle
        from ._bsr import BSRMatrix, block_counts

        handle = handle or default_handle()
        mb, _ = block_counts(self.shape, block_dim, block_dim)
        bsr_row_ptr = np.empty(mb + 1, dtype=self.index_dtype)
        nnzb = csr2bsr_nnz(handle, direction, self, block_dim, self._descr, bsr_row_ptr)
        bsr_col_ind = np.empty(nnzb, dtype=self.index_dtype)
        bsr_val = np.empty(nnzb * block_dim * block_dim, dtype=self.dtype)
        csr2bsr(handle, direction, self, block_dim, self._descr, bsr_val, bsr_row_ptr,
                bsr_col_ind)
        handle.synchronize()
        return BSRMatrix(bsr_row_ptr, bsr_col_ind, bsr_val, block_dim,
                         shape=self.shape, direction=direction, descr=self._descr)

    def to_hyb(self, partition: HybPartition = HybPartition.AUTO, ell_width: int = 0,
               handle: Optional["Handle"] = None) -> "HybMatrix":
        from ..conversion import csr2hyb
        from ..handle import default_handle
        from ._hyb import create_hyb_mat

        handle = handle or default_handle()
        hyb = create_hyb_mat()
        csr2hyb(handle, self, hyb, ell_width, partition)
        handle.synchronize()
        return hyb

    def sort_indices(self, handle: Optional["Handle"] = None) -> np.ndarray:
        """Sort columns within each row in place, values included.

        Returns:
            The permutation P with ``sorted_val[k] = original_val[P[k]]``.
        """
        from ..handle import default_handle
        from ..sorting import (create_identity_permutation, csrsort,
                               csrsort_buffer_size, gthr)
        from ..workspace import allocate

        handle = handle or default_handle()
        nnz = self.nnz
        P = np.empty(nnz, dtype=self.index_dtype)
        create_identity_permutation(handle, nnz, P)
        buffer = allocate(csrsort_buffer_size(handle, self.m, self.n, nnz,
                                              self._row_ptr, self._col_ind))
        csrsort(handle, self.m, self.n, nnz, self._descr, self._row_ptr, self._col_ind,
                P, buffer)
        original = self._val[:nnz].copy()
        gthr(handle, original, self._val, P, IndexBase.ZERO)
        handle.synchronize()
        return P
