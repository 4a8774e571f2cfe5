"""Shared fixtures for landmark registration tests."""

from pathlib import Path
import sys

import numpy as np
import pytest

# Ensure src is importable
sys.path.append(str(Path(__file__).parent.parent / "src"))


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(42)


@pytest.fixture
def scenario_points():
    """Moving A, B, C rotated 90 degrees about Z then shifted by (5, 5, 5)."""
    moving = {"A": (0.0, 0.0, 0.0), "B": (1.0, 0.0, 0.0), "C": (0.0, 1.0, 0.0)}
    fixed = {"A": (5.0, 5.0, 5.0), "B": (5.0, 6.0, 5.0), "C": (4.0, 5.0, 5.0)}
    return moving, fixed


@pytest.fixture
def config_dir() -> Path:
    return Path(__file__).parent.parent / "config"
