"""Tests for the Plotly landmark alignment figure."""

import numpy as np
import pytest

from landmark_registration.alignment.procrustes import align
from landmark_registration.alignment.landmarks import FiducialMark
from landmark_registration.visualization import LandmarkVisualizer


@pytest.fixture
def result(scenario_points):
    moving, fixed = scenario_points
    return align(
        [FiducialMark(n, p) for n, p in moving.items()],
        [FiducialMark(n, p) for n, p in fixed.items()],
    )


def test_figure_traces(result):
    fig = LandmarkVisualizer().build_figure(result)

    assert [trace.name for trace in fig.data] == [
        "Fixed",
        "Moving (original)",
        "Moving (aligned)",
        "Residuals",
    ]
    np.testing.assert_allclose(fig.data[0].x, [5.0, 5.0, 4.0])
    np.testing.assert_allclose(fig.data[2].x, fig.data[0].x, atol=1e-9)
    assert list(fig.data[0].text) == ["A", "B", "C"]


def test_residual_segments_separated(result):
    fig = LandmarkVisualizer().build_figure(result)
    xs = list(fig.data[3].x)

    assert len(xs) == 9
    assert xs[2] is None and xs[5] is None and xs[8] is None


def test_default_and_custom_title(result):
    viz = LandmarkVisualizer(marker_size=3)

    assert viz.build_figure(result).layout.title.text.startswith("Landmark alignment (FRE 0.0000)")
    assert viz.build_figure(result, title="PET -> CT").layout.title.text == "PET -> CT"
    assert viz.build_figure(result).data[0].marker.size == 3


def test_unsupported_backend():
    with pytest.raises(ValueError, match="Unsupported backend"):
        LandmarkVisualizer(backend="pyvista")
