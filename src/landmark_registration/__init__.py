"""
Landmark Registration Package

A Python package for rigid registration of medical image data sets from
user-placed landmarks (fiducial marks). Given landmarks with matching names in
a moving and a fixed data set, it computes the rotation and translation that
best superimpose the moving landmarks onto the fixed ones in the least-squares
sense, and composes that motion into the moving data set's coordinate space.
"""

__version__ = "0.1.0"

from .alignment import *
from .utils import *

__all__ = [
    "alignment",
    "utils",
    "visualization",
]
