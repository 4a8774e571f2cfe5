"""
Procrustes Registration Implementation

This module computes the rigid motion (rotation + translation) that best
superimposes a moving set of landmarks onto a fixed set in the least-squares
sense, following the point-based method reviewed in "Medical Image
Registration" (Hill, Batchelor, Holden and Hawkes, Phys. Med. Biol. 46, 2001).

Pipeline:
1. Match landmarks by name into a PointSet
2. Demean both point sets about their centroids
3. Build the 3x3 cross-covariance A = Xm^T Xf
4. Decompose A = U S V^T
5. R = V diag(1, 1, d) U^T with d = sign(det(V U^T)), so R is never a reflection
6. t = fixed_centroid - R moving_centroid
"""

from __future__ import annotations

import inspect
import warnings
from dataclasses import dataclass, field
from typing import Iterable, NamedTuple, Optional, Tuple

import numpy as np

from ..utils.config import AlignmentConfig, AppConfig
from ..utils.coordinate_space import CoordinateSpace
from ..utils.logging import setup_logger
from .errors import DegenerateConfiguration, InsufficientLandmarks, NumericFailure
from .landmarks import MIN_POINT_PAIRS, LandmarkCollection, PointSet, match_landmarks
from .rigid_transform import RigidTransform
from .svd_backends import SVDBackend, svd3

logger = setup_logger(__name__)


class Demeaned(NamedTuple):
    moving_centroid: np.ndarray
    fixed_centroid: np.ndarray
    moving: np.ndarray
    fixed: np.ndarray


def demean_pairs(point_set: PointSet) -> Demeaned:
    """
    Compute both centroids and subtract them from every point.

    Row i of the demeaned arrays refers to pair i of the point set.
    """
    if len(point_set) == 0:
        raise ValueError("Cannot compute centroids of an empty point set")

    moving = point_set.moving_points()
    fixed = point_set.fixed_points()
    moving_centroid = np.mean(moving, axis=0)
    fixed_centroid = np.mean(fixed, axis=0)
    return Demeaned(moving_centroid, fixed_centroid, moving - moving_centroid, fixed - fixed_centroid)


def cross_covariance(moving_demeaned: np.ndarray, fixed_demeaned: np.ndarray) -> np.ndarray:
    """A = Xm^T @ Xf, i.e. the sum of outer(moving_i, fixed_i)."""
    Xm = np.asarray(moving_demeaned, dtype=np.float64)
    Xf = np.asarray(fixed_demeaned, dtype=np.float64)
    if Xm.shape != Xf.shape or Xm.ndim != 2 or Xm.shape[1] != 3:
        raise ValueError(f"Expected two Nx3 arrays of equal shape, got {Xm.shape} and {Xf.shape}")
    if len(Xm) == 0:
        raise ValueError("Cannot build a cross-covariance from empty point sets")
    return Xm.T @ Xf


def rotation_from_svd(
    U: np.ndarray,
    V: np.ndarray,
    *,
    correct_reflection: bool = True,
) -> Tuple[np.ndarray, float]:
    """
    Compose the rotation R = V diag(1, 1, d) U^T.

    Args:
        U: Left singular vectors of the cross-covariance (columns)
        V: Right singular vectors of the cross-covariance (columns)
        correct_reflection: If False, return the naive V U^T (may be a reflection)

    Returns:
        Tuple of (R, d) where d is +1 or -1, the sign of det(V U^T)
    """
    U = np.asarray(U, dtype=np.float64)
    V = np.asarray(V, dtype=np.float64)
    naive = V @ U.T
    d = 1.0 if np.linalg.det(naive) >= 0 else -1.0
    if not correct_reflection:
        return naive, d

    D = np.diag([1.0, 1.0, d])
    return V @ D @ U.T, d


def check_rotation(R: np.ndarray, tolerance: float = 1e-9) -> None:
    """
    Verify that R is a proper rotation.

    Raises:
        NumericFailure: If R R^T deviates from I or det(R) from +1 by more than tolerance
    """
    if not np.all(np.isfinite(R)):
        raise NumericFailure("Rotation contains non-finite values")
    ortho_err = float(np.max(np.abs(R @ R.T - np.eye(3))))
    det = float(np.linalg.det(R))
    if ortho_err > tolerance:
        raise NumericFailure(f"Rotation is not orthonormal (max |R R^T - I| = {ortho_err:.3e})")
    if abs(det - 1.0) > tolerance:
        raise NumericFailure(f"Rotation is not proper (det = {det:.6f})")


def solve_translation(R: np.ndarray, moving_centroid: np.ndarray, fixed_centroid: np.ndarray) -> np.ndarray:
    """t = fixed_centroid - R @ moving_centroid."""
    return np.asarray(fixed_centroid, dtype=np.float64) - np.asarray(R) @ np.asarray(moving_centroid, dtype=np.float64)


class Degeneracy(NamedTuple):
    reason: str
    side: str
    singular_values: np.ndarray


def layout_singular_values(demeaned: np.ndarray) -> np.ndarray:
    """Singular values (descending, length 3) of one demeaned Nx3 point set."""
    s = np.linalg.svd(np.asarray(demeaned, dtype=np.float64), compute_uv=False)
    return np.pad(s, (0, 3 - len(s)))


def classify_layout(
    demeaned: np.ndarray,
    centroid: np.ndarray,
    *,
    relative_tolerance: float = 1e-6,
    absolute_tolerance: float = 1e-12,
) -> Optional[str]:
    """
    Classify one landmark set by its own spread.

    The spread is measured against the set's coordinate magnitude, so the
    result does not depend on the units the landmarks are given in.

    Returns:
        None for a well-spread set, otherwise "coincident" or "collinear"
    """
    s = layout_singular_values(demeaned)
    magnitude = float(np.max(np.linalg.norm(demeaned + centroid, axis=1)))
    if s[0] <= max(absolute_tolerance, relative_tolerance * magnitude):
        return "coincident"
    if s[1] <= relative_tolerance * s[0]:
        return "collinear"
    return None


def detect_degeneracy(
    demeaned: Demeaned,
    *,
    relative_tolerance: float = 1e-6,
    absolute_tolerance: float = 1e-12,
) -> Optional[Degeneracy]:
    """
    Check both landmark sets for layouts that leave the rotation undetermined.

    Planar layouts (rank 2) are fine; the reflection correction resolves them.
    Collinear layouts (rank 1) leave the rotation about the line undetermined,
    and a coincident set determines no rotation at all. Each set is judged on
    its own: a collapsed moving set can still give a cross-covariance that
    looks well-conditioned.

    Returns:
        None when both sets are well spread, otherwise the worst finding
    """
    found = None
    for side, points, centroid in (
        ("moving", demeaned.moving, demeaned.moving_centroid),
        ("fixed", demeaned.fixed, demeaned.fixed_centroid),
    ):
        reason = classify_layout(
            points,
            centroid,
            relative_tolerance=relative_tolerance,
            absolute_tolerance=absolute_tolerance,
        )
        if reason is None:
            continue
        degeneracy = Degeneracy(reason, side, layout_singular_values(points))
        if reason == "coincident":
            return degeneracy
        if found is None:
            found = degeneracy
    return found


def _find_stack_level() -> int:
    """Stack level of the first frame outside this package, for warnings.warn."""
    package = __name__.split(".")[0]
    frame = inspect.currentframe()
    level = 0
    try:
        while frame is not None and frame.f_globals.get("__name__", "").split(".")[0] == package:
            frame = frame.f_back
            level += 1
    finally:
        del frame
    return level


@dataclass(frozen=True, eq=False)
class AlignmentResult:
    """
    Outcome of a successful alignment request.

    Attributes:
        transform: Rigid transform taking moving points onto fixed points
        point_set: The matched pairs used for the estimate
        singular_values: Singular values of the cross-covariance (descending)
        reflection_corrected: True if the naive solution was a reflection
        residuals: Per-landmark distance |R m + t - f|, keyed by name
        new_space: Moving data set space after applying the transform (set
            by the data set workflow, None for bare point alignment)
    """

    transform: RigidTransform
    point_set: PointSet
    singular_values: np.ndarray
    reflection_corrected: bool
    residuals: dict = field(default_factory=dict)
    new_space: Optional[CoordinateSpace] = None

    @property
    def low_confidence(self) -> bool:
        return self.transform.low_confidence

    @property
    def fre(self) -> float:
        """Fiducial registration error: mean residual distance."""
        if not self.residuals:
            return float("nan")
        return float(np.mean(list(self.residuals.values())))

    @property
    def rmse(self) -> float:
        if not self.residuals:
            return float("nan")
        values = np.asarray(list(self.residuals.values()))
        return float(np.sqrt(np.mean(values ** 2)))

    def with_space(self, new_space: CoordinateSpace) -> "AlignmentResult":
        return AlignmentResult(
            transform=self.transform,
            point_set=self.point_set,
            singular_values=self.singular_values,
            reflection_corrected=self.reflection_corrected,
            residuals=dict(self.residuals),
            new_space=new_space,
        )


def compute_residuals(transform: RigidTransform, point_set: PointSet) -> dict:
    """Distance between each transformed moving point and its fixed partner."""
    moved = transform.apply(point_set.moving_points())
    distances = np.linalg.norm(moved - point_set.fixed_points(), axis=1)
    return {name: float(d) for name, d in zip(point_set.names, distances)}


class ProcrustesRegistration:
    """
    Landmark-based rigid registration via SVD of the cross-covariance.

    The estimate is a closed-form least-squares solution: no iterations, no
    initial guess. Each call is independent and returns either a complete
    result or raises an ``AlignmentError``.
    """

    def __init__(
        self,
        min_pairs: int = MIN_POINT_PAIRS,
        svd_backend: str | SVDBackend = "numpy",
        degeneracy_tolerance: float = 1e-6,
        absolute_tolerance: float = 1e-12,
        orthonormality_tolerance: float = 1e-9,
        strict: bool = False,
        reorthonormalize_axes: bool = True,
    ):
        """
        Initialize registration parameters.

        Args:
            min_pairs: Minimum number of matched landmark pairs (at least 3).
            svd_backend: Registered SVD backend name or a callable returning (U, S, V).
            degeneracy_tolerance: Relative spread threshold for collinear and coincident layouts.
            absolute_tolerance: Spread (length units) at or below which a set is coincident.
            orthonormality_tolerance: Allowed deviation in the rotation sanity checks.
            strict: If True, raise DegenerateConfiguration instead of warning.
            reorthonormalize_axes: Clean up composed data set axes with Gram-Schmidt.
        """
        if min_pairs < MIN_POINT_PAIRS:
            raise ValueError(f"min_pairs must be at least {MIN_POINT_PAIRS}, got {min_pairs}")
        self.min_pairs = min_pairs
        self.svd_backend = svd_backend
        self.degeneracy_tolerance = degeneracy_tolerance
        self.absolute_tolerance = absolute_tolerance
        self.orthonormality_tolerance = orthonormality_tolerance
        self.strict = strict
        self.reorthonormalize_axes = reorthonormalize_axes

    @classmethod
    def from_config(cls, config: AlignmentConfig | AppConfig) -> "ProcrustesRegistration":
        if isinstance(config, AppConfig):
            config = config.alignment
        return cls(
            min_pairs=config.min_pairs,
            svd_backend=config.svd_backend,
            degeneracy_tolerance=config.degeneracy_tolerance,
            absolute_tolerance=config.absolute_tolerance,
            orthonormality_tolerance=config.orthonormality_tolerance,
            strict=config.strict,
            reorthonormalize_axes=config.reorthonormalize_axes,
        )

    def align(
        self,
        moving: LandmarkCollection,
        fixed: LandmarkCollection,
        names: Optional[Iterable[str]] = None,
    ) -> AlignmentResult:
        """
        Match landmarks by name and estimate the moving -> fixed transform.

        Both collections must already be expressed in the same (world) space.

        Args:
            moving: Landmarks of the data set to be moved.
            fixed: Landmarks of the reference data set.
            names: Optional subset of landmark names to use.

        Returns:
            AlignmentResult

        Raises:
            InsufficientLandmarks: Fewer than ``min_pairs`` names matched.
            NumericFailure: The SVD failed or produced an invalid rotation.
            DegenerateConfiguration: Only when ``strict`` is set.
        """
        point_set = match_landmarks(moving, fixed, names, min_pairs=self.min_pairs)
        return self.estimate_transformation(point_set)

    def estimate_transformation(self, point_set: PointSet) -> AlignmentResult:
        """
        Estimate the optimal rigid transformation for matched point pairs.

        Args:
            point_set: Matched moving/fixed pairs (at least ``min_pairs``).

        Returns:
            AlignmentResult
        """
        if len(point_set) < self.min_pairs:
            logger.error(
                "Cannot perform an alignment with %d point pair(s), need at least %d.",
                len(point_set),
                self.min_pairs,
            )
            raise InsufficientLandmarks(len(point_set), self.min_pairs, point_set.names)

        # Center the point sets
        demeaned = demean_pairs(point_set)

        # Compute cross-covariance matrix
        A = cross_covariance(demeaned.moving, demeaned.fixed)

        # Singular Value Decomposition
        U, S, V = svd3(A, backend=self.svd_backend)
        singular_values = np.sort(S)[::-1]

        degeneracy = detect_degeneracy(
            demeaned,
            relative_tolerance=self.degeneracy_tolerance,
            absolute_tolerance=self.absolute_tolerance,
        )
        if degeneracy is not None:
            error = DegenerateConfiguration(degeneracy.singular_values, degeneracy.reason, degeneracy.side)
            if self.strict:
                logger.error(
                    "%s landmarks are %s; refusing low-confidence alignment.",
                    degeneracy.side.capitalize(),
                    degeneracy.reason,
                )
                raise error
            logger.warning(
                "%s landmarks are %s (singular values %s); rotation is poorly determined.",
                degeneracy.side.capitalize(),
                degeneracy.reason,
                np.array2string(degeneracy.singular_values, precision=3),
            )
            warnings.warn(error, stacklevel=_find_stack_level())

        # Compute rotation, ensuring a proper rotation (det(R) = +1)
        R, d = rotation_from_svd(U, V)
        if d < 0:
            logger.debug("Naive rotation was a reflection; flipped third principal axis.")
        check_rotation(R, self.orthonormality_tolerance)

        # Compute translation
        t = solve_translation(R, demeaned.moving_centroid, demeaned.fixed_centroid)

        transform = RigidTransform(R, t, low_confidence=degeneracy is not None)
        residuals = compute_residuals(transform, point_set)
        result = AlignmentResult(
            transform=transform,
            point_set=point_set,
            singular_values=singular_values,
            reflection_corrected=d < 0,
            residuals=residuals,
        )
        logger.info(
            "Aligned %d landmark pairs: rotation %.3f deg, FRE %.6f.",
            len(point_set),
            np.rad2deg(transform.rotation_angle()),
            result.fre,
        )
        return result

    def compose_space(self, space: CoordinateSpace, result: AlignmentResult) -> CoordinateSpace:
        """Moving data set space after applying the result's transform."""
        return result.transform.compose_space(space, reorthonormalize=self.reorthonormalize_axes)


def align(
    moving_landmarks: LandmarkCollection,
    fixed_landmarks: LandmarkCollection,
    names: Optional[Iterable[str]] = None,
    *,
    config: Optional[AlignmentConfig | AppConfig] = None,
) -> AlignmentResult:
    """
    Align two landmark collections given in a common space.

    Convenience wrapper around :class:`ProcrustesRegistration`.
    """
    registration = ProcrustesRegistration.from_config(config) if config is not None else ProcrustesRegistration()
    return registration.align(moving_landmarks, fixed_landmarks, names)
