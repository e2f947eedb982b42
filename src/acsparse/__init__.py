"""
acsparse - Sparse Matrix Engine

Sparse linear-algebra primitives with a device-library calling convention:
- CSR, CSC, COO, BSR, GEBSR and HYB storage with two-phase conversions
- Stable sorting of COO/CSR/CSC entries with a reorder permutation
- Level-scheduled triangular solves (csrsv, csrsm, bsrsv)
- Incomplete factorizations ILU(0)/IC(0) with zero-pivot query and boost
- Caller-owned workspaces (buffer size, then execute)
- Handles owning a stream, a pointer mode and an emulated device

Modules:
- sparse: Storage formats
- conversion: Format conversions
- sorting: Sorting engine and gather
- triangular: Sparse triangular solves
- factorization: Incomplete factorizations
- products: Sparse-dense and sparse-sparse products
- workspace: Buffer sizing and allocation

Architecture:
    ┌──────────────────────────────────────────────┐
    │   Handle (stream, pointer mode, device)      │
    ├──────────────────────────────────────────────┤
    │  validate -> enqueue -> kernel (_kernel)     │
    │  Info: analysis plan + zero-pivot record     │
    └──────────────────────────────────────────────┘

Example:
    >>> import numpy as np
    >>> import acsparse
    >>> from acsparse import CSRMatrix, FillMode, MatrixType, Operation, SolvePolicy
    >>>
    >>> A = CSRMatrix.from_dense(np.array([[2.0, 0.0], [1.0, 4.0]]))
    >>> descr = acsparse.create_mat_descr(MatrixType.TRIANGULAR, fill_mode=FillMode.LOWER)
    >>>
    >>> with acsparse.create() as handle, acsparse.create_csrsv2_info() as info:
    ...     size = acsparse.csrsv2_buffer_size(handle, Operation.NON_TRANSPOSE, descr, A, info)
    ...     buf = acsparse.allocate(size)
    ...     acsparse.csrsv2_analysis(handle, Operation.NON_TRANSPOSE, descr, A, info,
    ...                              SolvePolicy.USE_LEVEL, buf)
    ...     y = np.empty(2)
    ...     acsparse.csrsv2_solve(handle, Operation.NON_TRANSPOSE, 1.0, descr, A, info,
    ...                           np.array([2.0, 9.0]), y, SolvePolicy.USE_LEVEL, buf)
    >>> y
    array([1., 2.])
"""

__version__ = '0.3.0'

# Import main modules
from . import error
from . import descr
from . import dtypes
from . import config as _config_module
from . import handle
from . import workspace
from . import sparse
from . import info
from . import conversion
from . import sorting
from . import triangular
from . import factorization
from . import products

from .error import *
from .descr import *
from .dtypes import *
from .config import *
from .handle import *
from .workspace import *
from .sparse import *
from .info import *
from .conversion import *
from .sorting import *
from .triangular import *
from .factorization import *
from .products import *

__all__ = (
    [
        # Version
        '__version__',
        # Modules
        'error', 'descr', 'dtypes', 'handle', 'workspace', 'sparse', 'info',
        'conversion', 'sorting', 'triangular', 'factorization', 'products',
    ]
    + error.__all__
    + descr.__all__
    + dtypes.__all__
    + _config_module.__all__
    + handle.__all__
    + workspace.__all__
    + sparse.__all__
    + info.__all__
    + conversion.__all__
    + sorting.__all__
    + triangular.__all__
    + factorization.__all__
    + products.__all__
)
