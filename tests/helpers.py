"""Geometry helpers shared by the tests."""

import numpy as np


def random_rotation(rng: np.random.Generator) -> np.ndarray:
    """Uniformly distributed proper rotation via QR of a Gaussian matrix."""
    Q, R = np.linalg.qr(rng.normal(size=(3, 3)))
    Q = Q @ np.diag(np.sign(np.diag(R)))
    if np.linalg.det(Q) < 0:
        Q[:, 2] *= -1
    return Q


def rotation_about_axis(axis, angle: float) -> np.ndarray:
    """Rodrigues rotation about a (not necessarily unit) axis."""
    k = np.asarray(axis, dtype=float)
    k = k / np.linalg.norm(k)
    K = np.array([[0.0, -k[2], k[1]], [k[2], 0.0, -k[0]], [-k[1], k[0], 0.0]])
    return np.eye(3) + np.sin(angle) * K + (1.0 - np.cos(angle)) * (K @ K)


def make_landmarks(n: int = 6, seed: int = 0) -> np.ndarray:
    rng = np.random.default_rng(seed)
    # Anisotropic spread to avoid degenerate layouts
    return rng.normal(size=(n, 3)) * np.array([40.0, 25.0, 10.0]) + np.array([100.0, -50.0, 20.0])
