"""
Point Cloud Data Loader

This module handles loading and initial validation of point cloud files
(LAS/LAZ, PLY/PCD, ASCII XYZ and NumPy arrays) into PointCloud objects.
"""

from pathlib import Path
from typing import Optional, Tuple, Dict

import laspy
import numpy as np

from ..exceptions import LoadError
from ..utils.logging import setup_logger
from .point_cloud import PointCloud

logger = setup_logger(__name__)

LAS_EXTENSIONS = ('.las', '.laz')
OPEN3D_EXTENSIONS = ('.ply', '.pcd')
ASCII_EXTENSIONS = ('.xyz', '.txt', '.csv', '.pts')
NUMPY_EXTENSIONS = ('.npy',)
SUPPORTED_EXTENSIONS = LAS_EXTENSIONS + OPEN3D_EXTENSIONS + ASCII_EXTENSIONS + NUMPY_EXTENSIONS


def import_open3d():
    """Import open3d lazily; it is only needed for PLY/PCD containers."""
    try:
        import open3d as o3d
    except ImportError as e:
        raise ImportError(
            "PLY/PCD support requires open3d: pip install 'pointcloud-registration[open3d]'"
        ) from e
    return o3d


class PointCloudLoader:
    """
    A class for loading point clouds from the supported containers.

    Features:
    - LAS/LAZ via laspy, with intensity/classification/returns/GPS time/RGB attributes
    - PLY/PCD via open3d, with normals and colors when present
    - ASCII XYZ (optionally followed by normals) and NumPy .npy arrays
    - Rejection of empty files and of rows with non-finite coordinates
    """

    def __init__(self, *, drop_non_finite: bool = True):
        """
        Initialize the point cloud loader.

        Args:
            drop_non_finite: If True, rows with NaN/inf coordinates are removed with a warning
        """
        self.drop_non_finite = drop_non_finite

    def load(self, file_path: str) -> PointCloud:
        """
        Load a point cloud file.

        Args:
            file_path: Path to the point cloud file

        Returns:
            PointCloud with the file's points and available attributes

        Raises:
            LoadError: If the file is missing, unsupported, unreadable or empty
        """
        file_path = Path(file_path)

        if not file_path.exists():
            raise LoadError(file_path, "file not found")

        suffix = file_path.suffix.lower()
        if suffix not in SUPPORTED_EXTENSIONS:
            raise LoadError(file_path, f"unsupported file format '{file_path.suffix}'")

        logger.info(f"Loading point cloud data from {file_path}")

        try:
            if suffix in LAS_EXTENSIONS:
                points, normals, attributes = self._read_las(file_path)
            elif suffix in OPEN3D_EXTENSIONS:
                points, normals, attributes = self._read_open3d(file_path)
            elif suffix in NUMPY_EXTENSIONS:
                points, normals, attributes = self._read_numpy(file_path)
            else:
                points, normals, attributes = self._read_ascii(file_path)
        except LoadError:
            raise
        except Exception as e:
            logger.error(f"Error loading point cloud data from {file_path}: {e}")
            raise LoadError(file_path, f"unreadable file ({e})") from e

        if len(points) == 0:
            raise LoadError(file_path, "empty point cloud")

        if self.drop_non_finite:
            finite = np.isfinite(points).all(axis=1)
            n_bad = int(np.count_nonzero(~finite))
            if n_bad:
                logger.warning(f"Dropping {n_bad} points with non-finite coordinates from {file_path}")
                points = points[finite]
                if normals is not None:
                    normals = normals[finite]
                attributes = {k: v[finite] for k, v in attributes.items()}
                if len(points) == 0:
                    raise LoadError(file_path, "no finite points")

        cloud = PointCloud(
            points=points,
            normals=normals,
            attributes=attributes,
            source_path=str(file_path),
        )
        logger.info(f"Loaded {cloud.describe()}")
        return cloud

    # ------------------------ Readers ------------------------
    def _read_las(self, file_path: Path) -> Tuple[np.ndarray, Optional[np.ndarray], Dict[str, np.ndarray]]:
        las = laspy.read(file_path)
        points = np.column_stack([
            np.array(las.x, dtype=np.float64),
            np.array(las.y, dtype=np.float64),
            np.array(las.z, dtype=np.float64),
        ])

        dimensions = set(las.point_format.dimension_names)
        attributes = {}
        for name in ('intensity', 'classification', 'return_number', 'number_of_returns', 'gps_time'):
            if name in dimensions:
                attributes[name] = np.array(las[name])

        # RGB colors if available, stored normalized to [0, 1]
        if {'red', 'green', 'blue'} <= dimensions:
            attributes['colors'] = np.column_stack([
                np.array(las.red),
                np.array(las.green),
                np.array(las.blue),
            ]).astype(np.float64) / 65535.0

        return points, None, attributes

    def _read_open3d(self, file_path: Path) -> Tuple[np.ndarray, Optional[np.ndarray], Dict[str, np.ndarray]]:
        o3d = import_open3d()
        pcd = o3d.io.read_point_cloud(str(file_path))
        points = np.asarray(pcd.points, dtype=np.float64)
        normals = np.asarray(pcd.normals, dtype=np.float64) if pcd.has_normals() else None
        attributes = {}
        if pcd.has_colors():
            attributes['colors'] = np.asarray(pcd.colors, dtype=np.float64)
        return points, normals, attributes

    def _read_ascii(self, file_path: Path) -> Tuple[np.ndarray, Optional[np.ndarray], Dict[str, np.ndarray]]:
        suffix = file_path.suffix.lower()
        delimiter = ',' if suffix == '.csv' else None
        # PTS files (and some XYZ exports) start with a point-count line
        skiprows = 1 if _has_count_header(file_path, delimiter) else 0
        data = np.loadtxt(file_path, delimiter=delimiter, ndmin=2, comments='#', skiprows=skiprows)
        if suffix == '.pts':
            return self._split_pts_columns(data, file_path)
        return self._split_columns(data, file_path)

    def _read_numpy(self, file_path: Path) -> Tuple[np.ndarray, Optional[np.ndarray], Dict[str, np.ndarray]]:
        data = np.load(file_path, allow_pickle=False)
        return self._split_columns(np.atleast_2d(data), file_path)

    @staticmethod
    def _split_columns(data: np.ndarray, file_path: Path):
        """x y z, optionally followed by three columns of unit normals or RGB."""
        if data.size == 0:
            return np.empty((0, 3)), None, {}
        if data.ndim != 2 or data.shape[1] < 3:
            raise LoadError(file_path, f"expected at least 3 columns (x, y, z), got shape {data.shape}")
        points = np.asarray(data[:, :3], dtype=np.float64)
        normals, attributes = None, {}
        if data.shape[1] >= 6:
            normals, attributes = _normals_or_colors(np.asarray(data[:, 3:6], dtype=np.float64), file_path)
        return points, normals, attributes

    @staticmethod
    def _split_pts_columns(data: np.ndarray, file_path: Path):
        """PTS rows: x y z [intensity [r g b]]."""
        if data.size == 0:
            return np.empty((0, 3)), None, {}
        if data.ndim != 2 or data.shape[1] < 3:
            raise LoadError(file_path, f"expected at least 3 columns (x, y, z), got shape {data.shape}")
        n_columns = data.shape[1]
        if n_columns == 6:
            return PointCloudLoader._split_columns(data, file_path)

        points = np.asarray(data[:, :3], dtype=np.float64)
        attributes = {}
        if n_columns >= 4:
            attributes['intensity'] = np.asarray(data[:, 3], dtype=np.float64)
        if n_columns >= 7:
            attributes['colors'] = _as_colors(np.asarray(data[:, 4:7], dtype=np.float64))
        return points, None, attributes

    # ------------------------ Inspection ------------------------
    def validate_file(self, file_path: str) -> bool:
        """
        Validate a point cloud file.

        Args:
            file_path: Path to the point cloud file

        Returns:
            True if the file can be loaded and holds at least one point, False otherwise
        """
        try:
            self.load(file_path)
        except LoadError as e:
            logger.warning(f"File validation failed: {e}")
            return False
        logger.info(f"File validated successfully: {file_path}")
        return True

    def get_metadata(self, file_path: str) -> dict:
        """
        Extract provenance metadata from a point cloud file.

        Args:
            file_path: Path to the point cloud file

        Returns:
            Dictionary containing metadata information
        """
        cloud = self.load(file_path)
        return describe_cloud(cloud)


def describe_cloud(cloud: PointCloud) -> dict:
    """Summarize a cloud as a metadata dictionary."""
    lo, hi = cloud.bounds
    path = Path(cloud.source_path) if cloud.source_path else None
    return {
        'filename': path.name if path else None,
        'file_path': str(path) if path else None,
        'file_size_mb': (path.stat().st_size / (1024 * 1024)) if path and path.exists() else None,
        'num_points': len(cloud),
        'bounds': {
            'min_x': float(lo[0]),
            'max_x': float(hi[0]),
            'min_y': float(lo[1]),
            'max_y': float(hi[1]),
            'min_z': float(lo[2]),
            'max_z': float(hi[2]),
        },
        'centroid': [float(c) for c in cloud.centroid],
        'has_normals': cloud.has_normals,
        'attributes': sorted(cloud.attributes),
    }


def _has_count_header(file_path: Path, delimiter: Optional[str]) -> bool:
    """True if the first line holds a single value (the point count of PTS files)."""
    with open(file_path, 'r', encoding='utf-8', errors='replace') as f:
        first = f.readline().split('#', 1)[0].strip()
    if not first:
        return False
    return len(first.split(delimiter)) == 1


def _as_colors(rgb: np.ndarray) -> np.ndarray:
    """RGB columns normalized to [0, 1] (8-bit values are divided by 255)."""
    if rgb.size and rgb.max() > 1.0:
        return rgb / 255.0
    return rgb


def _normals_or_colors(columns: np.ndarray, file_path: Path):
    """Interpret three extra ASCII columns as unit normals, else as RGB colors."""
    norms = np.linalg.norm(columns, axis=1)
    finite = np.isfinite(norms)
    if finite.any() and np.allclose(norms[finite], 1.0, atol=1e-3):
        return columns, {}
    if finite.all() and columns.min() >= 0.0 and columns.max() <= 255.0:
        logger.debug(f"Reading columns 4-6 of {file_path} as RGB colors")
        return None, {'colors': _as_colors(columns)}
    logger.warning(f"Ignoring columns 4-6 of {file_path}: neither unit normals nor RGB values")
    return None, {}
