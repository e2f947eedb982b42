"""Analysis info objects.

An info holds everything an analysis phase learned about a sparsity
pattern: the level schedule of the operator it will solve or factorize,
the diagonal positions, the first structural zero pivot, and the shape
(``m``, ``nnz``) it was built for. Solve and factorization calls check
that shape and record numeric zero pivots back into the info.

Lifecycle:

    UNINITIALIZED --analysis--> ANALYZED --destroy()--> DESTROYED

Any use of a destroyed info raises ``InvalidValueError``; so does solving
or factorizing with an info that has not been analyzed.

Example:
    >>> with acsparse.create_csrsv2_info() as info:
    ...     csrsv2_analysis(handle, trans, descr, csr, info, policy, buffer)
    ...     csrsv2_solve(handle, trans, 1.0, descr, csr, info, x, y, policy, buffer)
    ...     result = csrsv2_zero_pivot(handle, info)
"""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional, Type

import numpy as np

from .descr import MatDescr, Operation, SolvePolicy
from .dtypes import ScalarKind
from .error import InvalidValueError, Status
from ._kernel.factorization import Boost

logger = logging.getLogger("acsparse.info")

__all__ = [
    'InfoState', 'ZeroPivotResult', 'AnalysisInfo',
    'SolveAnalysisInfo', 'Csrsv2Info', 'Csrsm2Info', 'Bsrsv2Info',
    'Csrilu02Info', 'Csric02Info', 'Bsrilu02Info', 'Bsric02Info',
    'create_solve_analysis_info', 'create_csrsv2_info', 'create_csrsm2_info',
    'create_bsrsv2_info', 'create_csrilu02_info', 'create_csric02_info',
    'create_bsrilu02_info', 'create_bsric02_info',
    'check_info', 'zero_pivot',
]


class InfoState(Enum):
    UNINITIALIZED = "uninitialized"
    ANALYZED = "analyzed"
    DESTROYED = "destroyed"


@dataclass(frozen=True)
class ZeroPivotResult:
    """Outcome of a zero-pivot query.

    Attributes:
        found: Whether a zero pivot exists.
        position: Row (block row for block formats) of the first zero
            pivot, in the matrix's index base; -1 when none.
    """
    found: bool
    position: int = -1

    @property
    def status(self) -> Status:
        return Status.ZERO_PIVOT if self.found else Status.SUCCESS

    def __bool__(self) -> bool:
        return self.found


# =============================================================================
# Base
# =============================================================================

class AnalysisInfo:
    """Common state of every analysis info."""

    name = "info"

    def __init__(self):
        self._state = InfoState.UNINITIALIZED
        self._lock = threading.Lock()
        self.plan: Any = None
        self.m = 0
        self.nnz = 0
        self.base = 0
        self.block_dim = 1
        self.policy = SolvePolicy.USE_LEVEL
        self.signature: Any = None
        self._structural_zero = -1
        self._numeric_zero = -1

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._state.value}, m={self.m}, nnz={self.nnz})"

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.destroy()
        return False

    @property
    def state(self) -> InfoState:
        return self._state

    @property
    def analyzed(self) -> bool:
        return self._state == InfoState.ANALYZED

    def destroy(self) -> None:
        self._state = InfoState.DESTROYED
        self.plan = None

    def ensure_alive(self, context: str) -> None:
        if self._state == InfoState.DESTROYED:
            raise InvalidValueError(f"{context}: {self.name} used after destroy()")

    def require_analyzed(self, m: int, nnz: int, context: str, signature: Any = None) -> None:
        """Check the info was analyzed for a pattern of this shape.

        Raises:
            InvalidValueError: If destroyed, never analyzed, analyzed for a
                different ``m``/``nnz``, or for a different operation
                (``signature``).
        """
        self.ensure_alive(context)
        if self._state != InfoState.ANALYZED:
            raise InvalidValueError(f"{context}: {self.name} has not been analyzed")
        if (m, nnz) != (self.m, self.nnz):
            raise InvalidValueError(
                f"{context}: {self.name} was analyzed for m={self.m}, nnz={self.nnz}, "
                f"got m={m}, nnz={nnz}"
            )
        if signature is not None and signature != self.signature:
            raise InvalidValueError(
                f"{context}: {self.name} was analyzed for {self.signature}, got {signature}"
            )

    # -------------------------------------------------------------------------
    # Recording
    # -------------------------------------------------------------------------

    def record_analysis(self, plan: Any, m: int, nnz: int, base: int,
                        structural_zero: int, policy: SolvePolicy,
                        block_dim: int = 1) -> None:
        """Store an analysis result; called from enqueued work."""
        with self._lock:
            self.plan = plan
            self.m = m
            self.nnz = nnz
            self.base = base
            self.block_dim = block_dim
            self.policy = SolvePolicy(policy)
            self._structural_zero = structural_zero
            self._numeric_zero = -1
            self._state = InfoState.ANALYZED
        if structural_zero >= 0:
            logger.warning("%s: structural zero pivot at row %d", self.name, structural_zero)

    def mark_pending(self, m: int, nnz: int, base: int, block_dim: int = 1,
                     signature: Any = None) -> None:
        """Mark the info analyzed for a shape before the plan is built.

        Lets solves be enqueued behind an asynchronous analysis on the same
        stream; the plan itself is read when the solve executes.
        """
        with self._lock:
            self.m = m
            self.nnz = nnz
            self.base = base
            self.block_dim = block_dim
            self.signature = signature
            self._state = InfoState.ANALYZED

    def record_numeric_zero(self, row: int) -> None:
        """Replace the numeric zero pivot found by the latest solve/factorization."""
        with self._lock:
            self._numeric_zero = row
        if row >= 0:
            logger.warning("%s: numeric zero pivot at row %d", self.name, row)

    def zero_pivot_row(self) -> int:
        """Smallest 0-based scalar row with a zero pivot, or -1."""
        with self._lock:
            hits = [r for r in (self._structural_zero, self._numeric_zero) if r >= 0]
        return min(hits) if hits else -1

    def zero_pivot_result(self) -> ZeroPivotResult:
        row = self.zero_pivot_row()
        if row < 0:
            return ZeroPivotResult(False, -1)
        return ZeroPivotResult(True, row // self.block_dim + self.base)


class _FactorInfo(AnalysisInfo):
    """Info of an incomplete factorization; carries numeric boost settings.

    Boost scalars follow the handle's pointer mode, so they are kept as
    readers and resolved each time a factorization executes.
    """

    def __init__(self):
        super().__init__()
        self._boost_enabled = False
        self._boost_tol: Callable[[], Any] = lambda: 0.0
        self._boost_value: Callable[[], Any] = lambda: 0.0

    def set_boost(self, enabled: bool, tol: Callable[[], Any],
                  value: Callable[[], Any]) -> None:
        self._boost_enabled = bool(enabled)
        self._boost_tol = tol
        self._boost_value = value

    @property
    def boost_enabled(self) -> bool:
        return self._boost_enabled

    def boost_for(self, kind: ScalarKind) -> Boost:
        """Boost settings cast to ``kind``; read when the work executes."""
        if not self._boost_enabled:
            return Boost()
        value = self._boost_value()
        if not kind.is_complex:
            value = np.real(value)
        return Boost(True, float(np.real(self._boost_tol())), kind.cast(value))


# =============================================================================
# Concrete Info Types
# =============================================================================

class SolveAnalysisInfo(AnalysisInfo):
    """Legacy analysis info shared by ``csrsv_*``/``csrsm_solve`` and ``csrilu0``/``csric0``.

    Besides the plan it caches the inverse diagonal computed from the
    values seen at analysis time, so it must be rebuilt when values change.
    """

    name = "solve analysis info"

    def __init__(self):
        super().__init__()
        self.factor: Any = None
        self.inv_diag: Any = None
        self.trans = Operation.NON_TRANSPOSE
        self.descr: Optional[MatDescr] = None


class Csrsv2Info(AnalysisInfo):
    name = "csrsv2 info"


class Csrsm2Info(AnalysisInfo):
    name = "csrsm2 info"


class Bsrsv2Info(AnalysisInfo):
    name = "bsrsv2 info"


class Csrilu02Info(_FactorInfo):
    name = "csrilu02 info"


class Csric02Info(_FactorInfo):
    name = "csric02 info"


class Bsrilu02Info(_FactorInfo):
    name = "bsrilu02 info"


class Bsric02Info(_FactorInfo):
    name = "bsric02 info"


def create_solve_analysis_info() -> SolveAnalysisInfo:
    return SolveAnalysisInfo()


def create_csrsv2_info() -> Csrsv2Info:
    return Csrsv2Info()


def create_csrsm2_info() -> Csrsm2Info:
    return Csrsm2Info()


def create_bsrsv2_info() -> Bsrsv2Info:
    return Bsrsv2Info()


def create_csrilu02_info() -> Csrilu02Info:
    return Csrilu02Info()


def create_csric02_info() -> Csric02Info:
    return Csric02Info()


def create_bsrilu02_info() -> Bsrilu02Info:
    return Bsrilu02Info()


def create_bsric02_info() -> Bsric02Info:
    return Bsric02Info()


# =============================================================================
# Helpers
# =============================================================================

def check_info(info: Any, cls: Type[AnalysisInfo], context: str) -> None:
    """Raise ``InvalidValueError`` unless ``info`` is a live ``cls``."""
    if not isinstance(info, cls):
        raise InvalidValueError(
            f"{context}: expected {cls.__name__}, got {type(info).__name__}"
        )
    info.ensure_alive(context)


def zero_pivot(handle, info: AnalysisInfo) -> ZeroPivotResult:
    """Synchronize the handle's stream and report the first zero pivot.

    Works for every info type, including the legacy one.
    """
    from .handle import require_handle

    handle = require_handle(handle)
    check_info(info, AnalysisInfo, "zero_pivot")
    handle.synchronize()
    return info.zero_pivot_result()
