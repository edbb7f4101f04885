"""
Spatial Alignment Module

This module provides tools for aligning a source point cloud onto a target
using the ICP (Iterative Closest Point) family: point-to-point ICP,
point-to-plane ICP and Generalized ICP, optionally coarse-to-fine.
"""

from .fine_registration import (
    ICPRegistration,
    AlignmentResult,
    AlignmentStatus,
    registration_rmse,
)
from .estimators import (
    AlignmentMethod,
    Correspondences,
    PointToPointEstimator,
    PointToPlaneEstimator,
    GeneralizedICPEstimator,
    create_estimator,
)
from .multiscale import align_multiscale, voxel_pyramid
from .transforms import (
    apply_transform,
    decompose_transform,
    format_transform,
    save_transform_matrix,
    load_transform_matrix,
)

__all__ = [
    "ICPRegistration",
    "AlignmentResult",
    "AlignmentStatus",
    "registration_rmse",
    "AlignmentMethod",
    "Correspondences",
    "PointToPointEstimator",
    "PointToPlaneEstimator",
    "GeneralizedICPEstimator",
    "create_estimator",
    "align_multiscale",
    "voxel_pyramid",
    "apply_transform",
    "decompose_transform",
    "format_transform",
    "save_transform_matrix",
    "load_transform_matrix",
]
