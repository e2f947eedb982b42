"""HYB (hybrid ELL + COO) matrix.

The layout is opaque: callers create an empty matrix with
:func:`create_hyb_mat`, fill it through ``csr2hyb`` / ``dense2hyb`` and
read it back through ``hyb2csr`` / ``hyb2dense`` or use it in ``hybmv``.

A fill declares the shape and dtype when it is enqueued; the arrays
themselves exist once the fill has run on the stream.
"""

from typing import Optional, Tuple

import numpy as np

from ..descr import HybPartition, MatDescr
from ..error import InvalidValueError
from .._kernel.conversion import HybStorage

__all__ = ['HybMatrix', 'create_hyb_mat']


class HybMatrix:
    """Opaque hybrid-format matrix."""

    format = 'hyb'

    def __init__(self):
        self._storage: Optional[HybStorage] = None
        self._layout: Optional[Tuple[Tuple[int, int], np.dtype]] = None
        self._partition = HybPartition.AUTO
        self._descr = MatDescr()
        self._destroyed = False

    def __repr__(self) -> str:
        if self._layout is None:
            return "HybMatrix(empty)"
        if self._storage is None:
            return f"HybMatrix(shape={self.shape}, pending)"
        return (f"HybMatrix(shape={self.shape}, nnz={self.nnz}, "
                f"ell_width={self.ell_width}, partition={self._partition.name})")

    def __enter__(self) -> "HybMatrix":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.destroy()
        return False

    def destroy(self) -> None:
        self._storage = None
        self._layout = None
        self._destroyed = True

    @property
    def is_filled(self) -> bool:
        return self._storage is not None

    @property
    def layout(self) -> Tuple[Tuple[int, int], np.dtype]:
        """(shape, dtype) declared by the last fill, pending or not."""
        self._check_alive()
        if self._layout is None:
            raise InvalidValueError("HYB matrix has not been filled")
        return self._layout

    @property
    def shape(self) -> Tuple[int, int]:
        return self.layout[0]

    @property
    def dtype(self) -> np.dtype:
        return self.layout[1]

    @property
    def nnz(self) -> int:
        return self.storage.nnz

    @property
    def ell_width(self) -> int:
        return self.storage.ell_width

    @property
    def partition(self) -> HybPartition:
        return self._partition

    @property
    def descr(self) -> MatDescr:
        return self._descr

    @property
    def storage(self) -> HybStorage:
        """Internal arrays; raises until a fill has run."""
        self._check_alive()
        if self._storage is None:
            raise InvalidValueError("HYB matrix has not been filled")
        return self._storage

    def _check_alive(self) -> None:
        if self._destroyed:
            raise InvalidValueError("HYB matrix used after destroy()")

    def _declare(self, shape: Tuple[int, int], dtype: np.dtype, partition: HybPartition,
                 descr: MatDescr) -> None:
        self._check_alive()
        self._layout = (tuple(shape), np.dtype(dtype))
        self._partition = HybPartition(partition)
        self._descr = descr

    def _assign(self, storage: HybStorage) -> None:
        self._storage = storage


def create_hyb_mat() -> HybMatrix:
    """Create an empty HYB matrix."""
    return HybMatrix()
