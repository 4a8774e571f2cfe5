"""
Landmark Alignment Visualization

Plots the fixed landmarks, the moving landmarks before alignment, and the
moving landmarks after applying the estimated transform, with a segment per
pair showing the remaining residual.
"""

from typing import Optional

import numpy as np
import plotly.graph_objects as go

from ..alignment.procrustes import AlignmentResult


class LandmarkVisualizer:
    """Visualize a landmark alignment result with Plotly."""

    def __init__(self, backend: str = 'plotly', marker_size: int = 6):
        """
        Args:
            backend: Only 'plotly' is supported
            marker_size: Marker size for landmark points
        """
        if backend != 'plotly':
            raise ValueError(f"Unsupported backend: '{backend}'. Choose 'plotly'.")
        self.backend = backend
        self.marker_size = marker_size

    def build_figure(self, result: AlignmentResult, title: Optional[str] = None) -> go.Figure:
        point_set = result.point_set
        names = list(point_set.names)
        fixed = point_set.fixed_points()
        moving = point_set.moving_points()
        aligned = result.transform.apply(moving)

        fig = go.Figure()
        fig.add_trace(self._markers(fixed, names, "Fixed", 'blue'))
        fig.add_trace(self._markers(moving, names, "Moving (original)", 'gray'))
        fig.add_trace(self._markers(aligned, names, "Moving (aligned)", 'red'))

        # Residual segments, separated by None gaps in a single trace
        seg = np.full((3 * len(names), 3), np.nan)
        seg[0::3] = aligned
        seg[1::3] = fixed
        fig.add_trace(go.Scatter3d(
            x=self._with_gaps(seg[:, 0]), y=self._with_gaps(seg[:, 1]), z=self._with_gaps(seg[:, 2]),
            mode='lines',
            line=dict(color='black', width=2),
            name="Residuals",
        ))

        if title is None:
            title = f"Landmark alignment (FRE {result.fre:.4f})"
            if result.low_confidence:
                title += " - low confidence"
        fig.update_layout(
            title=title,
            scene=dict(aspectmode='data'),
            margin=dict(l=0, r=0, t=40, b=0),
        )
        return fig

    def show(self, result: AlignmentResult, title: Optional[str] = None) -> None:
        self.build_figure(result, title).show(renderer="browser")

    # ----------------- Internal helpers -----------------
    def _markers(self, points: np.ndarray, names: list[str], label: str, color: str) -> go.Scatter3d:
        return go.Scatter3d(
            x=points[:, 0], y=points[:, 1], z=points[:, 2],
            mode='markers+text',
            text=names,
            marker=dict(size=self.marker_size, color=color),
            name=label,
        )

    @staticmethod
    def _with_gaps(values: np.ndarray) -> list:
        return [None if np.isnan(v) else float(v) for v in values]
