"""
SVD backends for the 3x3 cross-covariance decomposition.

The Procrustes solver only needs ``A = U @ diag(S) @ V.T`` for a 3x3 matrix.
Backends are plain callables ``(A) -> (U, S, V)`` registered by name, so the
rotation logic does not depend on a particular library's conventions.

Note that backends return ``V`` itself, not ``V.T`` as numpy and scipy do.
Sign and ordering conventions of the singular vectors differ between
libraries; the reflection correction computes its sign from the returned
``U`` and ``V`` directly, which makes it independent of those conventions.

Available backends:
- numpy: numpy.linalg.svd (LAPACK gesdd)
- scipy: scipy.linalg.svd with the gesvd driver
"""

from __future__ import annotations

from typing import Callable, Dict, NamedTuple

import numpy as np

from ..utils.logging import setup_logger
from .errors import NumericFailure

logger = setup_logger(__name__)


class SVDResult(NamedTuple):
    U: np.ndarray
    S: np.ndarray
    V: np.ndarray


SVDBackend = Callable[[np.ndarray], tuple]

_BACKENDS: Dict[str, SVDBackend] = {}


def register_svd_backend(name: str, backend: SVDBackend) -> None:
    """Register (or replace) an SVD backend under the given name."""
    if not callable(backend):
        raise TypeError(f"SVD backend '{name}' must be callable")
    _BACKENDS[name.lower()] = backend


def get_svd_backend(name: str) -> SVDBackend:
    try:
        return _BACKENDS[name.lower()]
    except KeyError:
        raise ValueError(
            f"Unknown SVD backend '{name}'. Available: {', '.join(available_svd_backends())}"
        ) from None


def available_svd_backends() -> list[str]:
    return sorted(_BACKENDS)


def _numpy_svd(A: np.ndarray) -> tuple:
    U, S, Vt = np.linalg.svd(A)
    return U, S, Vt.T


def _scipy_svd(A: np.ndarray) -> tuple:
    from scipy import linalg

    U, S, Vt = linalg.svd(A, lapack_driver="gesvd")
    return U, S, Vt.T


register_svd_backend("numpy", _numpy_svd)
register_svd_backend("scipy", _scipy_svd)


def svd3(A: np.ndarray, backend: str | SVDBackend = "numpy") -> SVDResult:
    """
    Singular value decomposition of a 3x3 matrix.

    Args:
        A: 3x3 matrix
        backend: Registered backend name or a callable returning (U, S, V)

    Returns:
        SVDResult(U, S, V) with ``A ~= U @ diag(S) @ V.T``

    Raises:
        ValueError: If A is not a finite 3x3 matrix or the backend name is unknown
        NumericFailure: If the backend fails to converge or returns malformed output
    """
    A = np.asarray(A, dtype=np.float64)
    if A.shape != (3, 3):
        raise ValueError(f"Expected 3x3 matrix, got shape {A.shape}")
    if not np.all(np.isfinite(A)):
        raise ValueError("Cannot decompose a matrix with non-finite entries")

    if isinstance(backend, str):
        backend_name = backend
        func = get_svd_backend(backend)
    else:
        backend_name = getattr(backend, "__name__", "custom")
        func = backend

    try:
        U, S, V = func(A)
    except np.linalg.LinAlgError as e:
        logger.error("SVD backend '%s' failed: %s", backend_name, e)
        raise NumericFailure(f"SVD did not converge ({backend_name}): {e}") from e

    U = np.asarray(U, dtype=np.float64)
    S = np.asarray(S, dtype=np.float64)
    V = np.asarray(V, dtype=np.float64)
    if U.shape != (3, 3) or V.shape != (3, 3) or S.shape != (3,):
        raise NumericFailure(
            f"SVD backend '{backend_name}' returned shapes U{U.shape}, S{S.shape}, V{V.shape}"
        )
    if not (np.all(np.isfinite(U)) and np.all(np.isfinite(S)) and np.all(np.isfinite(V))):
        logger.error("SVD backend '%s' returned non-finite values.", backend_name)
        raise NumericFailure(f"SVD backend '{backend_name}' returned non-finite values")

    return SVDResult(U, S, V)
