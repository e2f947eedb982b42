"""acsparse Private Kernel Layer (_kernel).

Host backend that executes the enqueued work of the public API.

Architecture:
    - Functions operate on raw numpy arrays (the "device memory")
    - Index arguments are 0-based offsets; callers translate index bases
    - Outputs are written in place into caller-provided arrays
    - No validation: the public layer checks preconditions before enqueueing

Modules:
    - utils: Pointer/index helpers shared by every kernel
    - conversion: Count and fill kernels for format conversion
    - sorting: Stable index sorts producing permutations
    - levels: Level-schedule plans for triangular dependency structures
    - triangular: Forward/backward substitution over a plan
    - factorization: ILU(0) / IC(0) numeric factorization over a pattern
    - products: SpMV, SpMM, sparse-sparse addition and multiplication

Usage (Internal only):
    >>> from acsparse import _kernel as K
    >>> nnzb = K.gebsr_count(rows, cols, mb, nb, 2, 2, 0, bsr_row_ptr)
"""

from . import utils
from . import conversion
from . import sorting
from . import levels
from . import triangular
from . import factorization
from . import products

from .utils import *
from .conversion import *
from .sorting import *
from .levels import *
from .triangular import *
from .factorization import *
from .products import *

__all__ = [
    'utils',
    'conversion',
    'sorting',
    'levels',
    'triangular',
    'factorization',
    'products',
] + utils.__all__ + conversion.__all__ + sorting.__all__ + levels.__all__ + \
    triangular.__all__ + factorization.__all__ + products.__all__
