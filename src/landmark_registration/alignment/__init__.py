"""
Landmark Alignment Module

This module provides tools for rigidly aligning two data sets from pairs of
corresponding landmarks (fiducial marks), using the Procrustes method with
reflection correction, and for applying the result to a data set's pose.
"""

from .errors import (
    AlignmentError,
    InsufficientLandmarks,
    DegenerateConfiguration,
    NumericFailure,
)
from .landmarks import (
    Landmark,
    FiducialMark,
    VolumeLandmark,
    PointPair,
    PointSet,
    match_landmarks,
)
from .svd_backends import svd3, register_svd_backend, available_svd_backends
from .rigid_transform import RigidTransform
from .procrustes import ProcrustesRegistration, AlignmentResult, align
from .workflow import DataSet, align_data_sets, apply_alignment, common_landmark_names

__all__ = [
    "AlignmentError",
    "InsufficientLandmarks",
    "DegenerateConfiguration",
    "NumericFailure",
    "Landmark",
    "FiducialMark",
    "VolumeLandmark",
    "PointPair",
    "PointSet",
    "match_landmarks",
    "svd3",
    "register_svd_backend",
    "available_svd_backends",
    "RigidTransform",
    "ProcrustesRegistration",
    "AlignmentResult",
    "align",
    "DataSet",
    "align_data_sets",
    "apply_alignment",
    "common_landmark_names",
]
