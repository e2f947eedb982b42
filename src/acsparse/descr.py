"""Matrix descriptor and operation enumerations.

A ``MatDescr`` describes the logical shape properties of a matrix: its
type, the index base of its index arrays, and (for triangular use) which
triangle is stored and whether the diagonal is implicitly unit. It is an
immutable value attached to every format instance and passed to every
kernel call.
"""

from dataclasses import dataclass, replace as _replace
from enum import IntEnum

from .error import InvalidValueError


__all__ = [
    'MatrixType', 'IndexBase', 'FillMode', 'DiagType',
    'Operation', 'Direction', 'Action', 'SolvePolicy',
    'HybPartition', 'PointerMode',
    'MatDescr', 'create_mat_descr',
]


# =============================================================================
# Enumerations
# =============================================================================

class MatrixType(IntEnum):
    GENERAL = 0
    SYMMETRIC = 1
    HERMITIAN = 2
    TRIANGULAR = 3


class IndexBase(IntEnum):
    ZERO = 0
    ONE = 1


class FillMode(IntEnum):
    LOWER = 0
    UPPER = 1


class DiagType(IntEnum):
    NON_UNIT = 0
    UNIT = 1


class Operation(IntEnum):
    """op(A) applied by a kernel."""
    NON_TRANSPOSE = 0
    TRANSPOSE = 1
    CONJUGATE_TRANSPOSE = 2


class Direction(IntEnum):
    """Row- or column-major: dense count direction and in-block storage."""
    ROW = 0
    COLUMN = 1


class Action(IntEnum):
    """Whether a conversion fills values or only the structure."""
    SYMBOLIC = 0
    NUMERIC = 1


class SolvePolicy(IntEnum):
    """Whether solves exploit the analysis level schedule."""
    NO_LEVEL = 0
    USE_LEVEL = 1


class HybPartition(IntEnum):
    """Width policy of the regular part of a HYB matrix."""
    AUTO = 0
    USER = 1
    MAX = 2


class PointerMode(IntEnum):
    """Where alpha/beta style scalars reside."""
    HOST = 0
    DEVICE = 1


# =============================================================================
# Matrix Descriptor
# =============================================================================

@dataclass(frozen=True)
class MatDescr:
    """Immutable matrix descriptor.

    Attributes:
        matrix_type: General, symmetric, Hermitian or triangular.
        index_base: Base of every index array described (0 or 1).
        fill_mode: Stored/used triangle. Meaningful for triangular use.
        diag_type: Unit or non-unit diagonal. Meaningful for triangular use.
    """
    matrix_type: MatrixType = MatrixType.GENERAL
    index_base: IndexBase = IndexBase.ZERO
    fill_mode: FillMode = FillMode.LOWER
    diag_type: DiagType = DiagType.NON_UNIT

    def __post_init__(self):
        # Normalise plain ints into their enums
        for name, enum_type in (('matrix_type', MatrixType), ('index_base', IndexBase),
                                ('fill_mode', FillMode), ('diag_type', DiagType)):
            try:
                object.__setattr__(self, name, enum_type(getattr(self, name)))
            except ValueError as e:
                raise InvalidValueError(f"MatDescr.{name}: {e}") from e

    @property
    def base(self) -> int:
        """Index base as an integer offset."""
        return int(self.index_base)

    @property
    def is_triangular(self) -> bool:
        return self.matrix_type == MatrixType.TRIANGULAR

    @property
    def is_lower(self) -> bool:
        return self.fill_mode == FillMode.LOWER

    @property
    def is_unit(self) -> bool:
        return self.diag_type == DiagType.UNIT

    def replace(self, **changes) -> "MatDescr":
        """Return a copy with the given fields replaced."""
        return _replace(self, **changes)

    def __repr__(self) -> str:
        parts = [self.matrix_type.name, f"base={self.base}"]
        if self.is_triangular:
            parts += [self.fill_mode.name, self.diag_type.name]
        return f"MatDescr({', '.join(parts)})"


def create_mat_descr(
    matrix_type: MatrixType = MatrixType.GENERAL,
    index_base: IndexBase = IndexBase.ZERO,
    fill_mode: FillMode = FillMode.LOWER,
    diag_type: DiagType = DiagType.NON_UNIT,
) -> MatDescr:
    """Create a matrix descriptor.

    Example:
        >>> descr = create_mat_descr(MatrixType.TRIANGULAR, fill_mode=FillMode.UPPER)
    """
    return MatDescr(matrix_type, index_base, fill_mode, diag_type)
