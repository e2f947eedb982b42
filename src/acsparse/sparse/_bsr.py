"""Block sparse formats: GEBSR (general blocks) and BSR (square blocks).

Layout:
    row_ptr: int[mb+1] over block rows, row_ptr[0] = base
    col_ind: int[nnzb], block column of each stored block
    val:     T[nnzb * row_block_dim * col_block_dim], each block dense,
             its cells in ROW (row-major) or COLUMN (column-major) order

The scalar shape ``(m, n)`` is kept alongside the block counts
``mb = ceil(m / row_block_dim)`` and ``nb = ceil(n / col_block_dim)``.
Cells of the last block row/column beyond ``m``/``n`` are padding: they
are zero when produced by a conversion and ignored when converting back.

Block solves and factorizations view the matrix as the scalar ``m x n``
matrix formed by its cells, reporting positions as block rows.
"""

from typing import Any, Optional, Tuple, TYPE_CHECKING

import numpy as np

from ..descr import Direction, MatDescr
from ..error import InvalidValueError
from ._base import SparseFormat, as_index_array, as_value_array, check_pointer_array

if TYPE_CHECKING:
    from ..handle import Handle
    from ._csr import CSRMatrix

__all__ = ['GEBSRMatrix', 'BSRMatrix', 'block_counts']


def block_counts(shape: Tuple[int, int], row_block_dim: int,
                 col_block_dim: int) -> Tuple[int, int]:
    """Number of block rows and block columns covering ``shape``."""
    if row_block_dim < 1 or col_block_dim < 1:
        raise InvalidValueError(
            f"block dimensions must be >= 1, got {row_block_dim}x{col_block_dim}"
        )
    m, n = shape
    return -(-m // row_block_dim), -(-n // col_block_dim)


class GEBSRMatrix(SparseFormat):
    """General block sparse row matrix.

    Args:
        row_ptr: Block row pointer (mb+1).
        col_ind: Block column indices (nnzb).
        val: Block values (nnzb * row_block_dim * col_block_dim).
        row_block_dim: Rows per block.
        col_block_dim: Columns per block.
        shape: Scalar shape (m, n).
        direction: In-block storage order.
        descr: Descriptor; general, zero-based when omitted.
    """

    format = 'gebsr'

    def __init__(self, row_ptr: Any, col_ind: Any, val: Any,
                 row_block_dim: int, col_block_dim: int,
                 shape: Tuple[int, int], direction: Direction = Direction.ROW,
                 descr: Optional[MatDescr] = None):
        super().__init__(shape, as_value_array(val), descr)
        self._rbd = int(row_block_dim)
        self._cbd = int(col_block_dim)
        self._mb, self._nb = block_counts(self.shape, self._rbd, self._cbd)
        try:
            self._direction = Direction(direction)
        except ValueError as e:
            raise InvalidValueError(f"direction: {e}") from e
        self._row_ptr = as_index_array(row_ptr, 'row_ptr')
        self._col_ind = as_index_array(col_ind, 'col_ind')
        if self._row_ptr.shape[0] != self._mb + 1:
            raise InvalidValueError(
                f"row_ptr must have mb+1={self._mb + 1} entries, got {self._row_ptr.shape[0]}"
            )
        nnzb = self.nnzb
        if self._col_ind.shape[0] < nnzb:
            raise InvalidValueError(f"col_ind must hold at least nnzb={nnzb} entries")
        if self._val.shape[0] < nnzb * self.block_size:
            raise InvalidValueError(
                f"val must hold nnzb*{self.block_size}={nnzb * self.block_size} "
                f"entries, got {self._val.shape[0]}"
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
    def mb(self) -> int:
        return self._mb

    @property
    def nb(self) -> int:
        return self._nb

    @property
    def row_block_dim(self) -> int:
        return self._rbd

    @property
    def col_block_dim(self) -> int:
        return self._cbd

    @property
    def block_size(self) -> int:
        return self._rbd * self._cbd

    @property
    def direction(self) -> Direction:
        return self._direction

    @property
    def nnzb(self) -> int:
        if self._mb == 0:
            return 0
        return int(self._row_ptr[self._mb]) - int(self._row_ptr[0])

    @property
    def nnz(self) -> int:
        """Number of stored blocks."""
        return self.nnzb

    @property
    def index_dtype(self) -> np.dtype:
        return self._row_ptr.dtype

    # =========================================================================
    # Validation
    # =========================================================================

    def validate(self) -> None:
        check_pointer_array(self._row_ptr, self._mb, self.base, 'row_ptr')
        self._check_range(self._col_ind[:self.nnzb], self._nb, 'col_ind')

    def has_sorted_indices(self) -> bool:
        from .._kernel.utils import expand_ptr, offsets

        nnzb = self.nnzb
        if nnzb < 2:
            return True
        owner = expand_ptr(offsets(self._row_ptr, self._mb), self._mb)
        cols = self._col_ind[:nnzb].astype(np.int64)
        return not np.any((owner[1:] == owner[:-1]) & (np.diff(cols) < 0))

    # =========================================================================
    # Scalar View
    # =========================================================================

    def scalar_entries(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """0-based (row, col, position in ``val``) of every cell inside the shape."""
        from .._kernel.conversion import gebsr_cells

        positions = np.arange(self.nnzb * self.block_size, dtype=np.int64)
        return gebsr_cells(self._mb, self._row_ptr, self._col_ind, positions,
                           self._rbd, self._cbd, self._direction, self.base,
                           self.m, self.n)

    def blocks(self) -> np.ndarray:
        """Stored blocks as an ``(nnzb, row_block_dim, col_block_dim)`` array."""
        nnzb = self.nnzb
        if self._direction == Direction.ROW:
            return self._val[:nnzb * self.block_size].reshape(nnzb, self._rbd, self._cbd)
        cells = self._val[:nnzb * self.block_size].reshape(nnzb, self._cbd, self._rbd)
        return cells.transpose(0, 2, 1)

    # =========================================================================
    # Construction / Conversion
    # =========================================================================

    def copy(self) -> "GEBSRMatrix":
        return GEBSRMatrix(self._row_ptr.copy(), self._col_ind.copy(), self._val.copy(),
                           self._rbd, self._cbd, self.shape, self._direction, self._descr)

    def to_scipy(self):
        import scipy.sparse as sp

        rows, cols, pos = self.scalar_entries()
        return sp.csr_matrix((self._val[pos], (rows, cols)), shape=self.shape)

    @classmethod
    def from_scipy(cls, mat, descr: Optional[MatDescr] = None,
                   row_block_dim: int = 1, col_block_dim: int = 1,
                   direction: Direction = Direction.ROW) -> "GEBSRMatrix":
        from ._csr import CSRMatrix

        csr = CSRMatrix.from_scipy(mat, descr)
        return csr.to_gebsr(row_block_dim, col_block_dim, direction)

    def to_csr(self, handle: Optional["Handle"] = None) -> "CSRMatrix":
        """Expand to CSR; every stored cell inside the shape becomes an entry."""
        from ..conversion import gebsr2csr
        from ..handle import default_handle
        from ._csr import CSRMatrix

        handle = handle or default_handle()
        # Sizing reads col_ind, which earlier work on the stream may still fill
        handle.synchronize()
        nnz = self.scalar_entries()[0].size
        row_ptr = np.empty(self.m + 1, dtype=self.index_dtype)
        col_ind = np.empty(nnz, dtype=self.index_dtype)
        val = np.empty(nnz, dtype=self.dtype)
        gebsr2csr(handle, self, self._descr, val, row_ptr, col_ind)
        handle.synchronize()
        return CSRMatrix(row_ptr, col_ind, val, self.shape, self._descr)

    def to_dense(self, handle: Optional["Handle"] = None) -> np.ndarray:
        return self.to_csr(handle).to_dense(handle)

    def reblock(self, row_block_dim: int, col_block_dim: int,
                direction: Optional[Direction] = None,
                handle: Optional["Handle"] = None) -> "GEBSRMatrix":
        """Re-block to a new block shape (and optionally storage order)."""
        from ..conversion import gebsr2gebsr, gebsr2gebsr_buffer_size, gebsr2gebsr_nnz
        from ..handle import default_handle
        from ..workspace import allocate

        handle = handle or default_handle()
        direction = self._direction if direction is None else Direction(direction)
        mb_c, _ = block_counts(self.shape, row_block_dim, col_block_dim)
        buffer = allocate(gebsr2gebsr_buffer_size(handle, self, row_block_dim, col_block_dim))
        row_ptr = np.empty(mb_c + 1, dtype=self.index_dtype)
        nnzb = gebsr2gebsr_nnz(handle, self, self._descr, row_ptr,
                               row_block_dim, col_block_dim, buffer)
        col_ind = np.empty(nnzb, dtype=self.index_dtype)
        val = np.empty(nnzb * row_block_dim * col_block_dim, dtype=self.dtype)
        gebsr2gebsr(handle, self, self._descr, val, row_ptr, col_ind,
                    row_block_dim, col_block_dim, direction, buffer)
        handle.synchronize()
        return GEBSRMatrix(row_ptr, col_ind, val, row_block_dim, col_block_dim,
                           self.shape, direction, self._descr)

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(shape={self.shape}, blocks={self._rbd}x{self._cbd}, "
            f"nnzb={self.nnzb}, direction={self._direction.name}, dtype={self.dtype})"
        )


class BSRMatrix(GEBSRMatrix):
    """Block sparse row matrix with square ``block_dim x block_dim`` blocks."""

    format = 'bsr'

    def __init__(self, row_ptr: Any, col_ind: Any, val: Any, block_dim: int,
                 shape: Tuple[int, int], direction: Direction = Direction.ROW,
                 descr: Optional[MatDescr] = None):
        super().__init__(row_ptr, col_ind, val, block_dim, block_dim, shape,
                         direction, descr)

    @property
    def block_dim(self) -> int:
        return self._rbd

    def copy(self) -> "BSRMatrix":
        return BSRMatrix(self._row_ptr.copy(), self._col_ind.copy(), self._val.copy(),
                         self._rbd, self.shape, self._direction, self._descr)

    @classmethod
    def from_scipy(cls, mat, descr: Optional[MatDescr] = None, block_dim: int = 1,
                   direction: Direction = Direction.ROW) -> "BSRMatrix":
        from ._csr import CSRMatrix

        return CSRMatrix.from_scipy(mat, descr).to_bsr(block_dim, direction)
