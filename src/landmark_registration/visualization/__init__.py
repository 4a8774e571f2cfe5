"""
Visualization Module

This module provides visualization tools for landmark alignment results,
using Plotly as the rendering backend.
"""

from .landmarks import LandmarkVisualizer

__all__ = [
    "LandmarkVisualizer",
]
