"""
Rigid transforms (rotation + translation).
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from ..utils.coordinate_space import CoordinateSpace, as_point


@dataclass(frozen=True, eq=False)
class RigidTransform:
    """
    A proper rotation R followed by a translation t: ``x' = R @ x + t``.

    Attributes:
        rotation: 3x3 rotation matrix (R @ R.T = I, det(R) = +1)
        translation: Translation vector (3,)
        low_confidence: True when the landmarks that produced this transform
            were degenerate (collinear or coincident)
    """

    rotation: np.ndarray
    translation: np.ndarray
    low_confidence: bool = False

    def __post_init__(self) -> None:
        R = np.array(self.rotation, dtype=np.float64)
        if R.shape != (3, 3):
            raise ValueError(f"Rotation must be 3x3, got shape {R.shape}")
        if not np.all(np.isfinite(R)):
            raise ValueError("Rotation contains non-finite values")
        R.setflags(write=False)
        object.__setattr__(self, "rotation", R)
        object.__setattr__(self, "translation", as_point(self.translation, name="translation"))

    @classmethod
    def identity(cls) -> "RigidTransform":
        return cls(np.eye(3), np.zeros(3))

    @classmethod
    def from_matrix(cls, matrix: np.ndarray) -> "RigidTransform":
        """Build from a 4x4 homogeneous matrix."""
        matrix = np.asarray(matrix, dtype=np.float64)
        if matrix.shape != (4, 4):
            raise ValueError(f"Transform must be 4x4 matrix, got {matrix.shape}")
        return cls(matrix[:3, :3], matrix[:3, 3])

    def as_matrix(self) -> np.ndarray:
        """4x4 homogeneous matrix."""
        T = np.eye(4)
        T[:3, :3] = self.rotation
        T[:3, 3] = self.translation
        return T

    def apply(self, points: np.ndarray) -> np.ndarray:
        """
        Apply the transform to a point (3,) or an Nx3 array of points.
        """
        pts = np.asarray(points, dtype=np.float64)
        if pts.size == 0:
            return pts.copy()
        return pts @ self.rotation.T + self.translation

    def inverse(self) -> "RigidTransform":
        R_inv = self.rotation.T
        return RigidTransform(R_inv, -(R_inv @ self.translation), self.low_confidence)

    def compose(self, other: "RigidTransform") -> "RigidTransform":
        """Transform equivalent to applying ``other`` first, then ``self``."""
        return RigidTransform(
            self.rotation @ other.rotation,
            self.rotation @ other.translation + self.translation,
            self.low_confidence or other.low_confidence,
        )

    def compose_space(self, space: CoordinateSpace, *, reorthonormalize: bool = True) -> CoordinateSpace:
        """Return the data set space moved by this transform."""
        return space.transform(self.rotation, self.translation, reorthonormalize=reorthonormalize)

    def rotation_angle(self) -> float:
        """Rotation magnitude in radians."""
        # Clamp argument to arccos to valid range to avoid NaNs
        cos_theta = max(min((float(np.trace(self.rotation)) - 1.0) * 0.5, 1.0), -1.0)
        return float(np.arccos(cos_theta))

    def allclose(self, other: "RigidTransform", *, atol: float = 1e-9) -> bool:
        return bool(
            np.allclose(self.rotation, other.rotation, atol=atol)
            and np.allclose(self.translation, other.translation, atol=atol)
        )

    def __str__(self) -> str:
        t = self.translation
        return (
            f"RigidTransform(angle={np.rad2deg(self.rotation_angle()):.3f} deg, "
            f"t=[{t[0]:.3f}, {t[1]:.3f}, {t[2]:.3f}]"
            + (", low confidence)" if self.low_confidence else ")")
        )
