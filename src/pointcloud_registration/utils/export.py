"""
Export utilities for registration results.

Applies the final transform to the full-resolution source cloud and writes it
in the container implied by the output extension:
- LAS/LAZ via laspy (attributes carried over)
- PLY/PCD via open3d
- ASCII XYZ/TXT/CSV/PTS and NumPy .npy
"""

from pathlib import Path
from typing import Optional, Union

import numpy as np

from ..alignment.transforms import apply_transform, has_nan, rotate_normals
from ..exceptions import ExportError
from ..preprocessing.loader import (
    ASCII_EXTENSIONS,
    LAS_EXTENSIONS,
    NUMPY_EXTENSIONS,
    OPEN3D_EXTENSIONS,
    PointCloudLoader,
    import_open3d,
)
from ..preprocessing.point_cloud import PointCloud
from .logging import setup_logger

logger = setup_logger(__name__)

# Largest integer coordinate a LAS record can hold
_LAS_MAX_INT = 2**31 - 1


def transform_cloud(cloud: PointCloud, transform: np.ndarray) -> PointCloud:
    """Return a new cloud with every point (and normal) transformed."""
    points = apply_transform(cloud.points, transform)
    normals = rotate_normals(cloud.normals, transform) if cloud.has_normals else None
    return cloud.with_points(points, normals=normals)


def export_point_cloud(
    cloud: PointCloud,
    output_path: Union[str, Path],
    *,
    las_scale: float = 1e-4,
) -> str:
    """
    Write a point cloud; the format is chosen from the file extension.

    Args:
        cloud: Cloud to write
        output_path: Destination file
        las_scale: Coordinate quantization for LAS/LAZ output

    Returns:
        Path to created file

    Raises:
        ExportError: If the extension is unsupported or writing fails
    """
    output_path = Path(output_path)
    suffix = output_path.suffix.lower()

    try:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        if suffix in LAS_EXTENSIONS:
            _write_las(cloud, output_path, las_scale)
        elif suffix in OPEN3D_EXTENSIONS:
            _write_open3d(cloud, output_path)
        elif suffix in ASCII_EXTENSIONS:
            delimiter = ',' if suffix == '.csv' else ' '
            np.savetxt(output_path, _stack_columns(cloud), fmt='%.9f', delimiter=delimiter)
        elif suffix in NUMPY_EXTENSIONS:
            np.save(output_path, _stack_columns(cloud))
        else:
            raise ExportError(output_path, f"unsupported file format '{output_path.suffix}'")
    except ExportError:
        raise
    except Exception as e:
        logger.error(f"Error exporting point cloud to {output_path}: {e}")
        raise ExportError(output_path, str(e)) from e

    logger.info(f"Exported {len(cloud):,} points to {output_path}")
    return str(output_path)


def export_transformed(
    source: Union[str, Path, PointCloud],
    transform: np.ndarray,
    output_path: Optional[Union[str, Path]],
    *,
    las_scale: float = 1e-4,
) -> Optional[str]:
    """
    Apply `transform` to the full-resolution source cloud and write it.

    Args:
        source: Original source file path (reloaded) or the loaded original cloud.
            Never pass a downsampled working copy.
        transform: Final 4x4 transform
        output_path: Destination file; None or "" means compute-only, nothing is written
        las_scale: Coordinate quantization for LAS/LAZ output

    Returns:
        Path to created file, or None when export was skipped

    Raises:
        ExportError: If the transform is invalid or the file cannot be written
        LoadError: If the source has to be reloaded and cannot be read
    """
    if output_path is None or str(output_path) == "":
        logger.info("Output path empty, nothing to export.")
        return None

    transform = np.asarray(transform, dtype=np.float64)
    if transform.shape != (4, 4):
        raise ExportError(output_path, f"transform must be 4x4, got {transform.shape}")
    if has_nan(transform):
        raise ExportError(output_path, "transform contains NaN")

    cloud = source if isinstance(source, PointCloud) else PointCloudLoader().load(str(source))
    return export_point_cloud(transform_cloud(cloud, transform), output_path, las_scale=las_scale)


# ------------------------ Writers ------------------------


def _stack_columns(cloud: PointCloud) -> np.ndarray:
    if cloud.has_normals:
        return np.hstack([cloud.points, cloud.normals])
    return np.asarray(cloud.points)


def _write_las(cloud: PointCloud, output_path: Path, las_scale: float) -> None:
    import laspy

    points = np.asarray(cloud.points, dtype=np.float64)
    has_colors = 'colors' in cloud.attributes

    # LAS 1.4 point formats 6/7 hold 8-bit classes and GPS time; 7 adds RGB
    header = laspy.LasHeader(point_format=7 if has_colors else 6, version="1.4")
    if len(points):
        offsets = np.floor(points.min(axis=0))
        extent = float(np.max(points.max(axis=0) - offsets))
    else:
        offsets = np.zeros(3)
        extent = 0.0
    # Coarsen the quantization when the extent does not fit the integer range
    scale = max(las_scale, extent / _LAS_MAX_INT * 2.0)
    header.offsets = offsets
    header.scales = np.array([scale, scale, scale])

    las = laspy.LasData(header)
    las.x = points[:, 0]
    las.y = points[:, 1]
    las.z = points[:, 2]

    for name in ('intensity', 'classification', 'return_number', 'number_of_returns', 'gps_time'):
        if name in cloud.attributes:
            setattr(las, name, np.asarray(cloud.attributes[name]))

    if has_colors:
        rgb = np.clip(np.round(np.asarray(cloud.attributes['colors']) * 65535.0), 0, 65535).astype(np.uint16)
        las.red = rgb[:, 0]
        las.green = rgb[:, 1]
        las.blue = rgb[:, 2]

    las.write(str(output_path))


def _write_open3d(cloud: PointCloud, output_path: Path) -> None:
    o3d = import_open3d()
    pcd = o3d.geometry.PointCloud()
    pcd.points = o3d.utility.Vector3dVector(np.asarray(cloud.points, dtype=np.float64))
    if cloud.has_normals:
        pcd.normals = o3d.utility.Vector3dVector(np.asarray(cloud.normals, dtype=np.float64))
    if 'colors' in cloud.attributes:
        pcd.colors = o3d.utility.Vector3dVector(np.asarray(cloud.attributes['colors'], dtype=np.float64))
    if not o3d.io.write_point_cloud(str(output_path), pcd):
        raise ExportError(output_path, "open3d could not write the file")
