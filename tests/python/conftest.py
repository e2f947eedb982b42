"""
Pytest configuration and shared fixtures for acsparse tests.
"""

import pytest
import numpy as np
from pathlib import Path
import sys
import threading

# Add src to path for imports
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root / "src"))

import acsparse
from acsparse import (
    CSRMatrix,
    DiagType,
    FillMode,
    IndexBase,
    MatrixType,
    Stream,
    create_mat_descr,
)


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def handle():
    """Blocking handle, destroyed after the test."""
    h = acsparse.create()
    yield h
    if h.alive:
        h.destroy()


@pytest.fixture
def async_handle():
    """Handle on an asynchronous stream."""
    stream = Stream(blocking=False, name="test-async")
    h = acsparse.create(stream)
    yield h
    if h.alive:
        h.destroy()
    stream.close()


@pytest.fixture
def general_descr():
    return create_mat_descr()


@pytest.fixture
def lower_descr():
    return create_mat_descr(MatrixType.TRIANGULAR, fill_mode=FillMode.LOWER)


@pytest.fixture
def upper_descr():
    return create_mat_descr(MatrixType.TRIANGULAR, fill_mode=FillMode.UPPER)


@pytest.fixture
def dense_small():
    """Lower triangular 3x3 matrix.

    Matrix:
    [[2, 0, 0],
     [1, 3, 0],
     [0, 0, 4]]
    """
    return np.array([
        [2.0, 0.0, 0.0],
        [1.0, 3.0, 0.0],
        [0.0, 0.0, 4.0],
    ])


@pytest.fixture
def csr_small(dense_small):
    """CSR form of ``dense_small`` (zero-based, int32 indices)."""
    return CSRMatrix(
        np.array([0, 1, 3, 4], dtype=np.int32),
        np.array([0, 0, 1, 2], dtype=np.int32),
        np.array([2.0, 1.0, 3.0, 4.0]),
        shape=(3, 3),
    )


@pytest.fixture
def dense_rect():
    """Rectangular 3x4 matrix.

    Matrix:
    [[1, 0, 2, 0],
     [0, 3, 0, 4],
     [5, 0, 0, 6]]
    """
    return np.array([
        [1.0, 0.0, 2.0, 0.0],
        [0.0, 3.0, 0.0, 4.0],
        [5.0, 0.0, 0.0, 6.0],
    ])


@pytest.fixture
def random_lower():
    """Random 40x40 lower triangular, diagonally dominant, ~15% dense."""
    rng = np.random.default_rng(42)
    n = 40
    A = np.tril(rng.standard_normal((n, n)) * (rng.random((n, n)) < 0.15), -1)
    A += np.diag(np.abs(A).sum(axis=1) + 1.0 + rng.random(n))
    return A


@pytest.fixture
def spd_matrix():
    """Random 30x30 sparse symmetric positive definite matrix."""
    rng = np.random.default_rng(7)
    n = 30
    B = rng.standard_normal((n, n)) * (rng.random((n, n)) < 0.1)
    A = np.tril(B, -1)
    A = A + A.T
    A += np.diag(np.abs(A).sum(axis=1) + 1.0)
    return A


# =============================================================================
# Helper Functions
# =============================================================================

def descr_for(matrix_type=MatrixType.GENERAL, base=IndexBase.ZERO,
              fill=FillMode.LOWER, diag=DiagType.NON_UNIT):
    """Descriptor shortcut used across test modules."""
    return create_mat_descr(matrix_type, base, fill, diag)


def csr_from_dense(A, base=IndexBase.ZERO, index_dtype=np.int32):
    """CSR of ``A`` built directly with scipy, independent of the engine."""
    import scipy.sparse as sp

    S = sp.csr_matrix(A)
    S.sort_indices()
    shift = int(base)
    return CSRMatrix(
        S.indptr.astype(index_dtype) + shift,
        S.indices.astype(index_dtype) + shift,
        S.data.astype(A.dtype).copy(),
        shape=A.shape,
        descr=descr_for(base=base),
    )


def assert_array_close(a1, a2, rtol=1e-10, atol=1e-12):
    """Assert two arrays are approximately equal."""
    np.testing.assert_allclose(np.asarray(a1), np.asarray(a2), rtol=rtol, atol=atol)


def hold_stream(handle):
    """Stall ``handle``'s stream until the returned event is set."""
    gate = threading.Event()
    handle.enqueue(lambda: gate.wait(10), "hold")
    return gate
