"""
acsparse Sparse Format Module

Caller-visible storage formats. Each explicit format is a thin record
over numpy arrays that act as the interchange contract with the engine;
HYB is opaque.

Classes:
- CSRMatrix: Compressed sparse row
- CSCMatrix: Compressed sparse column
- COOMatrix: Coordinate list
- GEBSRMatrix: Block sparse row with rectangular blocks
- BSRMatrix: Block sparse row with square blocks
- HybMatrix: Hybrid ELL + COO (opaque)

Usage:
    from acsparse.sparse import CSRMatrix

    csr = CSRMatrix.from_dense(A)
    bsr = csr.to_bsr(2)
    back = bsr.to_csr()

    # scipy interop
    mat = csr.to_scipy()
    csr2 = CSRMatrix.from_scipy(mat)
"""

from ._base import SparseFormat
from ._csr import CSRMatrix
from ._csc import CSCMatrix
from ._coo import COOMatrix
from ._bsr import GEBSRMatrix, BSRMatrix, block_counts
from ._hyb import HybMatrix, create_hyb_mat

__all__ = [
    'SparseFormat',
    'CSRMatrix',
    'CSCMatrix',
    'COOMatrix',
    'GEBSRMatrix',
    'BSRMatrix',
    'HybMatrix',
    'create_hyb_mat',
    'block_counts',
]
