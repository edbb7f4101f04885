"""
Point Cloud Data Preprocessing Module

This module contains functions for preparing point clouds before alignment.
It includes methods for:
- Data loading and validation (PointCloudLoader)
- Voxel grid downsampling
- Scale resolution and application
"""

from .point_cloud import PointCloud
from .loader import PointCloudLoader, SUPPORTED_EXTENSIONS, describe_cloud
from .downsampling import voxel_downsample, check_voxel_size
from .scaling import resolve_scale, apply_scale, scaling_transform

__all__ = [
    "PointCloud",
    "PointCloudLoader",
    "SUPPORTED_EXTENSIONS",
    "describe_cloud",
    "voxel_downsample",
    "check_voxel_size",
    "resolve_scale",
    "apply_scale",
    "scaling_transform",
]
