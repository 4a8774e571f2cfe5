"""
Configuration management for landmark-registration.

Provides a typed pydantic model and YAML loader with sensible defaults.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Literal, Any, Dict

from pydantic import BaseModel, Field, ValidationError
import yaml


# -----------------------
# Typed config structures
# -----------------------


class AlignmentConfig(BaseModel):
    min_pairs: int = Field(
        default=3,
        ge=3,
        description="Minimum number of matched landmark pairs required to estimate a rotation",
    )
    svd_backend: Literal["numpy", "scipy"] = Field(default="numpy")
    degeneracy_tolerance: float = Field(
        default=1e-6,
        gt=0.0,
        description=(
            "Relative threshold on each landmark set's singular values: collinear when s1 <= tol * s0, "
            "coincident when s0 <= tol * coordinate magnitude"
        ),
    )
    absolute_tolerance: float = Field(
        default=1e-12,
        ge=0.0,
        description="Spread (length units) at or below which a landmark set counts as coincident",
    )
    orthonormality_tolerance: float = Field(
        default=1e-9,
        gt=0.0,
        description="Allowed deviation of R*R^T from identity and of det(R) from +1",
    )
    strict: bool = Field(
        default=False,
        description="Raise DegenerateConfiguration instead of flagging a low-confidence result",
    )
    reorthonormalize_axes: bool = Field(
        default=True,
        description="Re-orthonormalize the moving data set axes after composing the transform",
    )


class VisualizationConfig(BaseModel):
    backend: Literal["plotly"] = Field(default="plotly")
    marker_size: int = Field(default=6, gt=0)


class LoggingConfig(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(default="INFO")
    file: Optional[str] = Field(default=None)


class AppConfig(BaseModel):
    alignment: AlignmentConfig = Field(default_factory=AlignmentConfig)
    visualization: VisualizationConfig = Field(default_factory=VisualizationConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# -----------------------
# Loader
# -----------------------


def _project_root() -> Path:
    """
    Resolve the repository root directory.

    File is at: repo_root/src/landmark_registration/utils/config.py
    parents sequence:
      0 -> .../src/landmark_registration/utils
      1 -> .../src/landmark_registration
      2 -> .../src
      3 -> repo_root
    """
    return Path(__file__).resolve().parents[3]


def load_config(path: Optional[str | Path] = None, *, allow_missing: bool = True) -> AppConfig:
    """
    Load configuration from YAML into a typed AppConfig.

    Search order when path is None:
    1) repo_root/config/default.yaml
    2) if missing and allow_missing=True: return default AppConfig()

    Args:
        path: Explicit YAML file path.
        allow_missing: If True, returns defaults when file missing; otherwise raises.

    Returns:
        AppConfig instance
    """
    cfg_path: Path
    if path is None:
        cfg_path = _project_root() / "config" / "default.yaml"
    else:
        cfg_path = Path(path)

    if not cfg_path.exists():
        if allow_missing:
            return AppConfig()
        raise FileNotFoundError(f"Config file not found: {cfg_path}")

    with cfg_path.open("r", encoding="utf-8") as f:
        raw: Dict[str, Any] = yaml.safe_load(f) or {}

    try:
        return AppConfig.model_validate(raw)
    except ValidationError as e:
        # Re-raise with context to help users fix the YAML
        raise ValueError(f"Invalid configuration in {cfg_path}: {e}") from e
