"""
Utility Functions Module

This module provides common utilities used across the landmark registration project.
- Logging setup
- Configuration loading
- Data set coordinate spaces
"""

from .logging import setup_logger, set_package_log_level
from .config import load_config, AppConfig
from .coordinate_space import CoordinateSpace, make_orthonormal

__all__ = [
    "setup_logger",
    "set_package_log_level",
    "load_config",
    "AppConfig",
    "CoordinateSpace",
    "make_orthonormal",
]
