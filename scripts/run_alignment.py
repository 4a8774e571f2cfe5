"""
Example script for a landmark alignment between two data sets

Reads the data set poses and their landmarks from a YAML file, aligns the
moving data set onto the fixed one, and reports the transform, the fiducial
registration error and the moving data set's new pose.

Input layout:

    moving:
      name: PET
      space: {offset: [0, 0, 0], axes: [[1, 0, 0], [0, 1, 0], [0, 0, 1]]}
      landmarks: {A: [0, 0, 0], B: [1, 0, 0], C: [0, 1, 0]}
    fixed:
      name: CT
      landmarks: {A: [5, 5, 5], B: [5, 6, 5], C: [4, 5, 5]}
    names: [A, B, C]   # optional subset
"""

import sys
import argparse
import logging
from pathlib import Path

import numpy as np
import yaml

# Add the src to the path to import modules
sys.path.append(str(Path(__file__).parent.parent / "src"))

from landmark_registration.alignment import (
    AlignmentError,
    DataSet,
    ProcrustesRegistration,
    align_data_sets,
    apply_alignment,
    common_landmark_names,
)
from landmark_registration.utils.config import load_config, AppConfig
from landmark_registration.utils.coordinate_space import CoordinateSpace
from landmark_registration.utils.logging import setup_logger, set_package_log_level


def _data_set_from_dict(data: dict) -> DataSet:
    data_set = DataSet(
        name=str(data.get("name", "unnamed")),
        space=CoordinateSpace.from_dict(data.get("space") or {}),
    )
    for name, point in (data.get("landmarks") or {}).items():
        data_set.add_fiducial(str(name), point)
    return data_set


def main():
    """
    Main function to run the landmark alignment.
    """
    parser = argparse.ArgumentParser(description="Landmark Alignment")
    parser.add_argument(
        "landmarks",
        type=str,
        help="YAML file with the moving and fixed data sets and their landmarks",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to YAML configuration file (defaults to config/default.yaml)",
    )
    parser.add_argument(
        "--svd-backend",
        type=str,
        choices=["numpy", "scipy"],
        default=None,
        help="Override the SVD backend from the configuration.",
    )
    parser.add_argument(
        "--show",
        action="store_true",
        help="Open an interactive plot of the aligned landmarks in the browser.",
    )
    args = parser.parse_args()

    # Load configuration
    cfg: AppConfig = load_config(args.config)
    if args.svd_backend:
        cfg.alignment.svd_backend = args.svd_backend

    # Setup logging from config
    log_level = getattr(logging, cfg.logging.level.upper(), logging.INFO)
    logger = setup_logger(__name__, level=log_level, log_file=cfg.logging.file)
    set_package_log_level(log_level, cfg.logging.file)

    landmarks_path = Path(args.landmarks)
    if not landmarks_path.exists():
        logger.error(f"Landmark file {landmarks_path} does not exist.")
        return 1

    with landmarks_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    try:
        moving = _data_set_from_dict(raw["moving"])
        fixed = _data_set_from_dict(raw["fixed"])
    except KeyError as e:
        logger.error(f"Landmark file is missing the {e} section.")
        return 1
    except ValueError as e:
        logger.error(f"Invalid landmark file: {e}")
        return 1

    names = raw.get("names") or common_landmark_names(moving, fixed)
    logger.info(f"Candidate landmarks: {', '.join(names) if names else '(none)'}")

    registration = ProcrustesRegistration.from_config(cfg)
    try:
        result = align_data_sets(moving, fixed, names, registration=registration)
    except AlignmentError as e:
        logger.error(f"Alignment failed: {e}")
        return 1

    apply_alignment(moving, result)

    np.set_printoptions(precision=6, suppress=True)
    logger.info(f"Transform: {result.transform}")
    logger.info(f"Rotation:\n{result.transform.rotation}")
    logger.info(f"Translation: {result.transform.translation}")
    for name, residual in result.residuals.items():
        logger.info(f"  {name}: residual {residual:.6f}")
    logger.info(f"Fiducial registration error: {result.fre:.6f} (RMSE {result.rmse:.6f})")
    logger.info(f"New pose of '{moving.name}': offset {moving.space.offset}")
    logger.info(f"  axes:\n{moving.space.axes}")

    if args.show:
        from landmark_registration.visualization import LandmarkVisualizer

        LandmarkVisualizer(marker_size=cfg.visualization.marker_size).show(result)

    return 0


if __name__ == "__main__":
    sys.exit(main())
