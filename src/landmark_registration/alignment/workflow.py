"""
Data set alignment workflow.

Each data set keeps its landmarks in its own local coordinates. Aligning two
data sets maps both landmark collections into world space, estimates the
moving -> fixed transform, and composes it into the moving data set's pose.
The moving data set is only modified by :func:`apply_alignment`, in a single
assignment, after the whole estimate has succeeded.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional

from ..utils.coordinate_space import CoordinateSpace
from ..utils.logging import setup_logger
from .landmarks import FiducialMark, Landmark, index_landmarks
from .procrustes import AlignmentResult, ProcrustesRegistration

logger = setup_logger(__name__)


@dataclass
class DataSet:
    """
    An image volume's pose and its landmarks.

    Attributes:
        name: Data set name
        space: Pose of the data set in world space
        landmarks: Landmarks by name, positions in the data set's local coordinates
    """

    name: str
    space: CoordinateSpace = field(default_factory=CoordinateSpace.identity)
    landmarks: dict = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.landmarks = index_landmarks(self.landmarks)

    def add_landmark(self, landmark: Landmark) -> None:
        if landmark.name in self.landmarks:
            raise ValueError(f"Data set '{self.name}' already has a landmark named '{landmark.name}'")
        self.landmarks[landmark.name] = landmark

    def add_fiducial(self, name: str, point) -> FiducialMark:
        """Add a fiducial mark given in local coordinates."""
        mark = FiducialMark(name, point)
        self.add_landmark(mark)
        return mark

    def world_landmarks(self) -> dict[str, FiducialMark]:
        """Snapshot of all landmarks mapped to world coordinates."""
        return {
            name: FiducialMark(name, self.space.s2b(landmark.position))
            for name, landmark in self.landmarks.items()
        }

    def set_space(self, space: CoordinateSpace) -> None:
        if not isinstance(space, CoordinateSpace):
            raise TypeError(f"Expected CoordinateSpace, got {type(space).__name__}")
        self.space = space


def common_landmark_names(moving: DataSet, fixed: DataSet) -> list[str]:
    """Names present in both data sets, in the fixed data set's order."""
    return [name for name in fixed.landmarks if name in moving.landmarks]


def align_data_sets(
    moving: DataSet,
    fixed: DataSet,
    names: Optional[Iterable[str]] = None,
    *,
    registration: Optional[ProcrustesRegistration] = None,
) -> AlignmentResult:
    """
    Estimate the transform moving ``moving`` onto ``fixed``.

    Neither data set is modified. The returned result carries the moving
    data set's new pose in ``new_space``; pass it to :func:`apply_alignment`.

    Args:
        moving: Data set to be moved
        fixed: Reference data set
        names: Optional subset of landmark names to use
        registration: Configured solver (defaults to ProcrustesRegistration())

    Returns:
        AlignmentResult with ``new_space`` set
    """
    registration = registration or ProcrustesRegistration()
    logger.info("Aligning data set '%s' onto '%s'.", moving.name, fixed.name)

    result = registration.align(moving.world_landmarks(), fixed.world_landmarks(), names)
    new_space = registration.compose_space(moving.space, result)
    return result.with_space(new_space)


def apply_alignment(moving: DataSet, result: AlignmentResult) -> None:
    """Replace the moving data set's pose with the aligned one."""
    if result.new_space is None:
        raise ValueError("Alignment result has no composed space; use align_data_sets()")
    if result.low_confidence:
        logger.warning(
            "Applying a low-confidence alignment to data set '%s' (degenerate landmarks).",
            moving.name,
        )
    moving.set_space(result.new_space)
    logger.info("Applied alignment to data set '%s' (FRE %.6f).", moving.name, result.fre)
