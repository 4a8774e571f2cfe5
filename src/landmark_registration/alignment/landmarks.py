"""
Landmarks and landmark matching.

A landmark is anything with a unique name inside its data set and a position:
a dedicated fiducial mark, or a whole sub-volume whose center is used as the
mark. The matcher only relies on the ``Landmark`` protocol, so callers may pass
any object exposing ``name`` and ``position``.

Matching pairs landmarks by identical name across the moving and fixed
collections and produces an ordered ``PointSet`` that the Procrustes solver
consumes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Iterator, Mapping, Optional, Protocol, Sequence, Union, runtime_checkable

import numpy as np

from ..utils.coordinate_space import CoordinateSpace, as_point
from ..utils.logging import setup_logger
from .errors import InsufficientLandmarks

logger = setup_logger(__name__)

MIN_POINT_PAIRS = 3


@runtime_checkable
class Landmark(Protocol):
    """Capability shared by every object usable as an alignment landmark."""

    @property
    def name(self) -> str: ...

    @property
    def position(self) -> np.ndarray: ...


@dataclass(frozen=True, eq=False)
class FiducialMark:
    """A named point placed by the user on an image volume."""

    name: str
    point: np.ndarray

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name:
            raise ValueError("Fiducial mark name must be a non-empty string")
        object.__setattr__(self, "point", as_point(self.point, name=f"fiducial mark '{self.name}'"))

    @property
    def position(self) -> np.ndarray:
        return self.point

    def __repr__(self) -> str:
        x, y, z = self.point
        return f"FiducialMark({self.name!r}, [{x:.3f}, {y:.3f}, {z:.3f}])"


@dataclass(frozen=True, eq=False)
class VolumeLandmark:
    """A box-shaped volume used as a landmark through its center.

    Attributes:
        name: Landmark name
        space: Pose of the volume
        corner: Far corner of the volume in its own space (the near corner is the origin)
    """

    name: str
    space: CoordinateSpace
    corner: np.ndarray

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name:
            raise ValueError("Volume landmark name must be a non-empty string")
        object.__setattr__(self, "corner", as_point(self.corner, name=f"corner of '{self.name}'"))

    @property
    def position(self) -> np.ndarray:
        center = self.space.s2b(self.corner / 2.0)
        center.setflags(write=False)
        return center


@dataclass(frozen=True, eq=False)
class PointPair:
    """One moving/fixed correspondence, joined by landmark name."""

    name: str
    moving: np.ndarray
    fixed: np.ndarray

    def __post_init__(self) -> None:
        object.__setattr__(self, "moving", as_point(self.moving, name=f"moving '{self.name}'"))
        object.__setattr__(self, "fixed", as_point(self.fixed, name=f"fixed '{self.name}'"))


@dataclass(frozen=True, eq=False)
class PointSet:
    """Ordered sequence of matched point pairs.

    Row i of :meth:`moving_points` and :meth:`fixed_points` always refers to
    the same pair.
    """

    pairs: tuple[PointPair, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        object.__setattr__(self, "pairs", tuple(self.pairs))

    def __len__(self) -> int:
        return len(self.pairs)

    def __iter__(self) -> Iterator[PointPair]:
        return iter(self.pairs)

    def __getitem__(self, index: int) -> PointPair:
        return self.pairs[index]

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(pair.name for pair in self.pairs)

    def moving_points(self) -> np.ndarray:
        if not self.pairs:
            return np.empty((0, 3))
        return np.vstack([pair.moving for pair in self.pairs])

    def fixed_points(self) -> np.ndarray:
        if not self.pairs:
            return np.empty((0, 3))
        return np.vstack([pair.fixed for pair in self.pairs])

    @classmethod
    def from_arrays(
        cls,
        moving: np.ndarray,
        fixed: np.ndarray,
        names: Optional[Sequence[str]] = None,
    ) -> "PointSet":
        """Build a point set from two Nx3 arrays with corresponding rows."""
        moving = np.asarray(moving, dtype=np.float64)
        fixed = np.asarray(fixed, dtype=np.float64)
        if moving.shape != fixed.shape or moving.ndim != 2 or moving.shape[1] != 3:
            raise ValueError(
                f"Expected two Nx3 arrays of equal shape, got {moving.shape} and {fixed.shape}"
            )
        if names is None:
            names = [f"P{i}" for i in range(len(moving))]
        if len(names) != len(moving):
            raise ValueError("The number of names must match the number of points.")
        return cls(tuple(PointPair(n, m, f) for n, m, f in zip(names, moving, fixed)))


LandmarkCollection = Union[Mapping[str, Landmark], Iterable[Landmark]]


def index_landmarks(landmarks: LandmarkCollection) -> dict[str, Landmark]:
    """Index a landmark collection by name, preserving its order.

    Raises:
        ValueError: If two landmarks share a name, or a mapping key differs
            from the landmark's own name
    """
    indexed: dict[str, Landmark] = {}
    if isinstance(landmarks, Mapping):
        for key, landmark in landmarks.items():
            if landmark.name != key:
                raise ValueError(f"Landmark keyed as '{key}' is named '{landmark.name}'")
            indexed[key] = landmark
        return indexed

    for landmark in landmarks:
        if landmark.name in indexed:
            raise ValueError(f"Duplicate landmark name '{landmark.name}' within one data set")
        indexed[landmark.name] = landmark
    return indexed


def match_landmarks(
    moving: LandmarkCollection,
    fixed: LandmarkCollection,
    names: Optional[Iterable[str]] = None,
    *,
    min_pairs: int = MIN_POINT_PAIRS,
) -> PointSet:
    """
    Pair landmarks present under the same name in both collections.

    Args:
        moving: Landmarks of the data set to be moved
        fixed: Landmarks of the reference data set
        names: Candidate names to consider, in order. Defaults to every name
            in either collection (moving order first, then fixed-only names).
        min_pairs: Minimum number of pairs required (never less than 3)

    Returns:
        PointSet of matched pairs, ordered by candidate name order

    Raises:
        InsufficientLandmarks: If fewer than ``min_pairs`` names match
        TypeError: If ``names`` is a single string
    """
    required = max(int(min_pairs), MIN_POINT_PAIRS)
    moving_index = index_landmarks(moving)
    fixed_index = index_landmarks(fixed)

    if names is None:
        candidates = list(moving_index)
        candidates += [name for name in fixed_index if name not in moving_index]
    elif isinstance(names, str):
        raise TypeError(f"Expected an iterable of landmark names, got the string '{names}'")
    else:
        candidates = list(dict.fromkeys(names))

    pairs = []
    for name in candidates:
        moving_mark = moving_index.get(name)
        fixed_mark = fixed_index.get(name)
        if moving_mark is None and fixed_mark is None:
            logger.debug("Skipping landmark '%s': not found in either data set.", name)
            continue
        if moving_mark is None or fixed_mark is None:
            side = "fixed" if moving_mark is None else "moving"
            logger.debug("Skipping landmark '%s': present in %s data set only.", name, side)
            continue
        pairs.append(PointPair(name, moving_mark.position, fixed_mark.position))

    point_set = PointSet(tuple(pairs))
    if len(point_set) < required:
        logger.error(
            "Cannot perform an alignment with %d matched landmark pair(s), need at least %d.",
            len(point_set),
            required,
        )
        raise InsufficientLandmarks(len(point_set), required, point_set.names)

    logger.debug("Matched %d landmark pairs: %s", len(point_set), ", ".join(point_set.names))
    return point_set
