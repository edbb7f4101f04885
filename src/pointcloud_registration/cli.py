"""
Command line entry point: 3D-3D registration of two point clouds.

Example:
    pointcloud-register -s sfm.ply -t lidar.laz -o sfm_aligned.ply --scale-ratio 0.5
"""

import argparse
import sys
from typing import List, Optional

from .alignment.estimators import AlignmentMethod
from .alignment.transforms import save_transform_matrix
from .exceptions import RegistrationError
from .pipeline import PointCloudRegistration
from .utils.config import AppConfig, load_config
from .utils.logging import VERBOSE_LEVELS, set_log_level, setup_logger

logger = setup_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pointcloud-register",
        description="Perform registration of 3D models (e.g. SfM & LiDAR model).",
    )
    required = parser.add_argument_group("Required parameters")
    required.add_argument("-s", "--source", required=True, help="Path to the source (moving) 3D model.")
    required.add_argument("-t", "--target", required=True, help="Path to the target (fixed) 3D model.")

    optional = parser.add_argument_group("Optional parameters")
    optional.add_argument(
        "-o", "--output", default=None, help="Path to save the transformed source 3D model."
    )
    optional.add_argument(
        "-m",
        "--method",
        default=None,
        help="Alignment method: "
        + ", ".join(m.value for m in AlignmentMethod)
        + " (aliases such as GICP, ICP or ICP_normals are accepted; default from config: gicp).",
    )
    optional.add_argument(
        "--scale-ratio",
        type=float,
        default=None,
        help="Scale ratio between the two 3D models (= target size / source size).",
    )
    optional.add_argument(
        "--source-measurement",
        type=float,
        default=None,
        help="Measurement made on the source 3D model (same unit as --target-measurement).",
    )
    optional.add_argument(
        "--target-measurement",
        type=float,
        default=None,
        help="Measurement made on the target 3D model (same unit as --source-measurement).",
    )
    optional.add_argument(
        "--voxel-size",
        type=float,
        default=None,
        help="Size of the voxel grid used to downsample both models (default 0.1).",
    )
    optional.add_argument(
        "--show-timeline",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Show the duration of each stage of the alignment pipeline (default on).",
    )
    optional.add_argument("--max-iterations", type=int, default=None, help="ICP iteration cap.")
    optional.add_argument(
        "--max-correspondence-distance",
        type=float,
        default=None,
        help="Reject correspondences farther than this distance.",
    )
    optional.add_argument(
        "--multiscale",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Run coarse-to-fine passes over a voxel pyramid.",
    )
    optional.add_argument(
        "--save-transform", default=None, help="Write the final 4x4 transform to this text file."
    )
    optional.add_argument(
        "--config",
        default=None,
        help="Path to YAML configuration file (defaults to config/default.yaml)",
    )

    log_params = parser.add_argument_group("Log parameters")
    log_params.add_argument(
        "-v",
        "--verbose-level",
        default=None,
        choices=list(VERBOSE_LEVELS),
        help="Verbosity level (default from config: info).",
    )
    return parser


def apply_overrides(cfg: AppConfig, args: argparse.Namespace) -> AppConfig:
    """Copy explicitly given command line options over the configuration."""
    if args.method is not None:
        cfg.alignment.method = AlignmentMethod.from_name(args.method).value
    if args.scale_ratio is not None:
        cfg.scale.ratio = args.scale_ratio
    if args.source_measurement is not None:
        cfg.scale.source_measurement = args.source_measurement
    if args.target_measurement is not None:
        cfg.scale.target_measurement = args.target_measurement
    if args.voxel_size is not None:
        cfg.preprocessing.voxel_size = args.voxel_size
    if args.show_timeline is not None:
        cfg.timeline.show = args.show_timeline
    if args.max_iterations is not None:
        cfg.alignment.max_iterations = args.max_iterations
    if args.max_correspondence_distance is not None:
        cfg.alignment.max_correspondence_distance = args.max_correspondence_distance
    if args.multiscale is not None:
        cfg.alignment.multiscale.enabled = args.multiscale
    return cfg


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        cfg = apply_overrides(load_config(args.config), args)
    except (FileNotFoundError, ValueError) as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    set_log_level(args.verbose_level or cfg.logging.level, log_file=cfg.logging.file)
    logger.info(f"Program called with: source={args.source}, target={args.target}, output={args.output}")

    reg = PointCloudRegistration(cfg)
    try:
        result = reg.run(args.source, args.target, output_path=args.output)
    except RegistrationError as e:
        logger.error(str(e))
        return 1

    logger.info(f"Alignment method: {result.method.value}")
    if not result.is_valid:
        logger.error("3D-3D registration failed. Final matrix contains NaN.")
        return 1

    if cfg.timeline.show:
        reg.show_timeline()

    if args.save_transform:
        try:
            save_transform_matrix(result.transform, args.save_transform)
        except OSError as e:
            logger.error(f"Could not save transform to {args.save_transform}: {e}")
            return 1

    if result.output_path is None:
        logger.warning("Output file empty, nothing exported.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
