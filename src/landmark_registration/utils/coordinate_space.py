"""
Coordinate spaces for data sets.

Every data set (image volume) carries its own pose in world ("base") space:
an offset point plus three orthonormal axis vectors. A point expressed in the
data set's local coordinates maps to world space as

    world = offset + x * axes[0] + y * axes[1] + z * axes[2]

and back again by projecting onto the axes. Because the axes are orthonormal
the inverse is the transpose, so no matrix inversion is needed.

Example:
    >>> space = CoordinateSpace(offset=[10.0, 0.0, 0.0])
    >>> space.s2b([1.0, 2.0, 3.0])       # -> [11, 2, 3]
    >>> space.b2s([11.0, 2.0, 3.0])      # -> [1, 2, 3]
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import numpy as np

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, NDArray


def as_point(value: "ArrayLike", *, name: str = "point") -> "NDArray[np.float64]":
    """Convert to a read-only float64 array of shape (3,).

    Raises:
        ValueError: If the value is not three finite numbers
    """
    point = np.array(value, dtype=np.float64)
    if point.shape != (3,):
        raise ValueError(f"Expected {name} with 3 coordinates, got shape {point.shape}")
    if not np.all(np.isfinite(point)):
        raise ValueError(f"{name} has non-finite coordinates: {point}")
    point.setflags(write=False)
    return point


def make_orthonormal(axes: "ArrayLike") -> "NDArray[np.float64]":
    """Gram-Schmidt re-orthonormalization of a set of three axis vectors.

    Repeated compositions accumulate rounding error; this pulls the axes back
    onto an orthonormal frame of the same handedness. The first axis keeps its direction,
    the second is made perpendicular to it, and the third is rebuilt from the
    cross product.

    Args:
        axes: 3x3 array, row k is axis k

    Returns:
        3x3 orthonormal array
    """
    axes = np.array(axes, dtype=np.float64)
    if axes.shape != (3, 3):
        raise ValueError(f"Expected 3x3 axes, got shape {axes.shape}")

    x = axes[0]
    norm = np.linalg.norm(x)
    if norm == 0.0:
        raise ValueError("Cannot orthonormalize axes with a zero-length first axis")
    x = x / norm

    y = axes[1] - np.dot(axes[1], x) * x
    norm = np.linalg.norm(y)
    if norm == 0.0:
        raise ValueError("Cannot orthonormalize axes with parallel first and second axes")
    y = y / norm

    z = np.cross(x, y)
    # keep the handedness of the input frame
    if np.dot(z, axes[2]) < 0:
        z = -z

    return np.vstack([x, y, z])


@dataclass(frozen=True, eq=False)
class CoordinateSpace:
    """Pose of a data set in world space.

    Instances are immutable value objects; operations such as
    :meth:`transform` return a new space and never modify the original.

    Attributes:
        offset: Origin of the space, expressed in world coordinates
        axes: 3x3 array whose rows are the space's unit axis vectors in world coordinates
    """

    offset: np.ndarray = field(default_factory=lambda: np.zeros(3))
    axes: np.ndarray = field(default_factory=lambda: np.eye(3))

    def __post_init__(self) -> None:
        offset = as_point(self.offset, name="offset")
        axes = np.array(self.axes, dtype=np.float64)
        if axes.shape != (3, 3):
            raise ValueError(f"Expected 3x3 axes, got shape {axes.shape}")
        if not np.all(np.isfinite(axes)):
            raise ValueError("Axes contain non-finite values")
        if not np.allclose(axes @ axes.T, np.eye(3), atol=1e-6):
            raise ValueError("Axes must be orthonormal")
        axes.setflags(write=False)
        object.__setattr__(self, "offset", offset)
        object.__setattr__(self, "axes", axes)

    @classmethod
    def identity(cls) -> "CoordinateSpace":
        """World space itself: zero offset, unit axes."""
        return cls(offset=np.zeros(3), axes=np.eye(3))

    def s2b(self, points: "ArrayLike") -> "NDArray[np.float64]":
        """Map points from this space to base (world) coordinates.

        Args:
            points: A single point (3,) or an Nx3 array in local coordinates

        Returns:
            Array of the same shape in world coordinates
        """
        pts = np.asarray(points, dtype=np.float64)
        return pts @ self.axes + self.offset

    def b2s(self, points: "ArrayLike") -> "NDArray[np.float64]":
        """Map points from base (world) coordinates into this space."""
        pts = np.asarray(points, dtype=np.float64)
        return (pts - self.offset) @ self.axes.T

    def transform(
        self,
        rotation: "ArrayLike",
        translation: "ArrayLike",
        *,
        reorthonormalize: bool = True,
    ) -> "CoordinateSpace":
        """Apply a rigid motion to the space's frame.

        The frame itself is rotated, not just points: every axis vector is
        rotated and the offset is rotated then translated, so that for any
        local point p, ``new.s2b(p) == R @ old.s2b(p) + t``.

        Args:
            rotation: 3x3 proper rotation matrix R
            translation: Translation vector t
            reorthonormalize: Clean up rounding drift in the composed axes

        Returns:
            New CoordinateSpace
        """
        R = np.asarray(rotation, dtype=np.float64)
        if R.shape != (3, 3):
            raise ValueError(f"Expected 3x3 rotation, got shape {R.shape}")
        t = as_point(translation, name="translation")

        new_axes = self.axes @ R.T
        new_offset = R @ self.offset + t
        moved = CoordinateSpace(offset=new_offset, axes=new_axes)
        return moved.make_orthonormal() if reorthonormalize else moved

    def make_orthonormal(self) -> "CoordinateSpace":
        """Return a copy with Gram-Schmidt cleaned axes."""
        return CoordinateSpace(offset=self.offset, axes=make_orthonormal(self.axes))

    def is_right_handed(self) -> bool:
        return bool(np.linalg.det(self.axes) > 0)

    def equals(self, other: "CoordinateSpace", *, atol: float = 1e-9) -> bool:
        """Approximate equality of offset and axes."""
        return bool(
            np.allclose(self.offset, other.offset, atol=atol)
            and np.allclose(self.axes, other.axes, atol=atol)
        )

    def to_dict(self) -> dict:
        """Serialize to a plain dictionary (lists of floats)."""
        return {
            "offset": [float(v) for v in self.offset],
            "axes": [[float(v) for v in row] for row in self.axes],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CoordinateSpace":
        """Deserialize from a dictionary; missing axes default to identity."""
        return cls(
            offset=data.get("offset", [0.0, 0.0, 0.0]),
            axes=data.get("axes", np.eye(3)),
        )

    def __str__(self) -> str:
        o = self.offset
        return f"CoordinateSpace(offset=[{o[0]:.3f}, {o[1]:.3f}, {o[2]:.3f}])"
