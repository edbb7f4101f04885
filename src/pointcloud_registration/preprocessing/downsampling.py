"""
Voxel grid downsampling.

Space is split into cubes of edge `voxel_size`; each occupied cube is replaced
by the centroid of the points that fall into it. This keeps the iterative
nearest-neighbor stage of the alignment tractable on dense clouds.
"""

import math

import numpy as np

from ..exceptions import InvalidVoxelSizeError
from ..utils.logging import setup_logger
from .point_cloud import PointCloud

logger = setup_logger(__name__)


def check_voxel_size(voxel_size: float) -> float:
    """Return voxel_size as float, raising InvalidVoxelSizeError unless it is finite and > 0."""
    try:
        value = float(voxel_size)
    except (TypeError, ValueError) as e:
        raise InvalidVoxelSizeError(f"Voxel size must be a number, got {voxel_size!r}") from e
    if not math.isfinite(value) or value <= 0.0:
        raise InvalidVoxelSizeError(f"Voxel size must be > 0, got {voxel_size}")
    return value


def voxel_indices(points: np.ndarray, voxel_size: float) -> np.ndarray:
    """Integer voxel coordinates (floor division) of each point, shape (N, 3)."""
    return np.floor(points / voxel_size).astype(np.int64)


def voxel_downsample(cloud: PointCloud, voxel_size: float) -> PointCloud:
    """
    Reduce a cloud to one representative point per occupied voxel.

    Args:
        cloud: Input cloud (left untouched)
        voxel_size: Edge length of the voxel cubes, must be > 0

    Returns:
        New PointCloud holding the voxel centroids. Normals, when present, are
        averaged per voxel and renormalized. Per-point attributes are not carried
        over. Output order follows the sorted voxel keys, not the input order.

    Raises:
        InvalidVoxelSizeError: If voxel_size <= 0
    """
    voxel_size = check_voxel_size(voxel_size)

    if cloud.is_empty:
        return cloud.with_points(np.empty((0, 3)), keep_attributes=False)

    points = cloud.points
    keys = voxel_indices(points, voxel_size)
    _, inverse, counts = np.unique(keys, axis=0, return_inverse=True, return_counts=True)
    inverse = inverse.reshape(-1)
    n_voxels = len(counts)

    centroids = np.empty((n_voxels, 3), dtype=np.float64)
    for axis in range(3):
        centroids[:, axis] = np.bincount(inverse, weights=points[:, axis], minlength=n_voxels) / counts

    normals = None
    if cloud.has_normals:
        normals = np.empty((n_voxels, 3), dtype=np.float64)
        for axis in range(3):
            normals[:, axis] = np.bincount(inverse, weights=cloud.normals[:, axis], minlength=n_voxels)
        norms = np.linalg.norm(normals, axis=1, keepdims=True)
        # Opposite normals can cancel out; leave those as zero vectors
        np.divide(normals, norms, out=normals, where=norms > 0)

    logger.debug(
        f"Voxel downsampling ({voxel_size}): {len(cloud):,} -> {n_voxels:,} points"
    )
    return cloud.with_points(centroids, normals=normals, keep_attributes=False)
