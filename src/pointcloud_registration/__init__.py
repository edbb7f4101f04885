"""
Point Cloud Registration Package

A Python package for pairwise registration of 3D point clouds, e.g. a
photogrammetric (SfM) reconstruction onto a LiDAR scan.
The source cloud is rescaled (explicit ratio or measurements), both clouds are
voxel downsampled, and an ICP variant (Generalized ICP, point-to-point or
point-to-plane, optionally coarse-to-fine) estimates the 4x4 transform that is
finally applied to the full-resolution source. The ICP family is implemented
from scratch on top of NumPy and scikit-learn nearest-neighbor search for
fine-grained control of the alignment.
"""

__version__ = "0.1.0"

from .exceptions import (
    RegistrationError,
    LoadError,
    ConfigError,
    InvalidVoxelSizeError,
    InvalidMeasurementError,
    InvalidScaleRatioError,
    UnknownMethodError,
    AlignmentError,
    EmptyCloudError,
    InsufficientCorrespondencesError,
    ExportError,
)
from .utils import AppConfig, load_config, setup_logger, Timeline, TimelineEntry
from .preprocessing import (
    PointCloud,
    PointCloudLoader,
    voxel_downsample,
    resolve_scale,
    apply_scale,
)
from .alignment import (
    ICPRegistration,
    AlignmentResult,
    AlignmentStatus,
    AlignmentMethod,
    align_multiscale,
)
from .utils.export import export_transformed, export_point_cloud
from .pipeline import PointCloudRegistration, RegistrationResult

__all__ = [
    "RegistrationError",
    "LoadError",
    "ConfigError",
    "InvalidVoxelSizeError",
    "InvalidMeasurementError",
    "InvalidScaleRatioError",
    "UnknownMethodError",
    "AlignmentError",
    "EmptyCloudError",
    "InsufficientCorrespondencesError",
    "ExportError",
    "AppConfig",
    "load_config",
    "setup_logger",
    "Timeline",
    "TimelineEntry",
    "PointCloud",
    "PointCloudLoader",
    "voxel_downsample",
    "resolve_scale",
    "apply_scale",
    "ICPRegistration",
    "AlignmentResult",
    "AlignmentStatus",
    "AlignmentMethod",
    "align_multiscale",
    "export_transformed",
    "export_point_cloud",
    "PointCloudRegistration",
    "RegistrationResult",
]
