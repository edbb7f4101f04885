"""
Test suite for point cloud loading and the PointCloud container.
"""

from pathlib import Path
import sys

import laspy
import numpy as np
import pytest

sys.path.append(str(Path(__file__).parent.parent / "src"))

from pointcloud_registration.exceptions import LoadError
from pointcloud_registration.preprocessing.loader import PointCloudLoader, describe_cloud
from pointcloud_registration.preprocessing.point_cloud import PointCloud


# ============================================================
# Test fixtures and helpers
# ============================================================


@pytest.fixture
def loader():
    return PointCloudLoader()


@pytest.fixture
def sample_points():
    rng = np.random.default_rng(42)
    return rng.uniform(0, 100, (200, 3))


def _write_las(path: Path, points: np.ndarray) -> None:
    header = laspy.LasHeader(point_format=3, version="1.2")
    header.offsets = np.floor(points.min(axis=0))
    header.scales = np.array([0.001, 0.001, 0.001])
    las = laspy.LasData(header)
    las.x = points[:, 0]
    las.y = points[:, 1]
    las.z = points[:, 2]
    las.intensity = np.arange(len(points), dtype=np.uint16)
    las.classification = np.full(len(points), 2, dtype=np.uint8)
    las.red = np.full(len(points), 65535, dtype=np.uint16)
    las.green = np.zeros(len(points), dtype=np.uint16)
    las.blue = np.full(len(points), 32768, dtype=np.uint16)
    las.write(str(path))


# ============================================================
# Loading
# ============================================================


def test_load_las_with_attributes(loader, sample_points, tmp_path):
    path = tmp_path / "cloud.las"
    _write_las(path, sample_points)

    cloud = loader.load(str(path))

    assert len(cloud) == len(sample_points)
    assert np.allclose(cloud.points, sample_points, atol=1e-3)
    assert cloud.source_path == str(path)
    assert not cloud.has_normals
    assert np.array_equal(cloud.attributes["intensity"], np.arange(len(sample_points)))
    assert (cloud.attributes["classification"] == 2).all()
    assert np.allclose(cloud.attributes["colors"][0], [1.0, 0.0, 32768 / 65535])


def test_load_xyz_with_normals(loader, tmp_path):
    data = np.array(
        [
            [0.0, 0.0, 0.0, 0.0, 0.0, 1.0],
            [1.0, 0.0, 0.0, 0.0, 0.0, 1.0],
            [0.0, 1.0, 0.5, 0.0, 1.0, 0.0],
        ]
    )
    path = tmp_path / "cloud.xyz"
    np.savetxt(path, data, header="x y z nx ny nz")

    cloud = loader.load(str(path))

    assert np.allclose(cloud.points, data[:, :3])
    assert cloud.has_normals
    assert np.allclose(cloud.normals, data[:, 3:])


def test_load_pts_with_count_header(loader, tmp_path):
    path = tmp_path / "scan.pts"
    path.write_text(
        "3\n"
        "0 0 0 10 255 0 0\n"
        "1 0 0 20 0 255 0\n"
        "0 1 0 30 0 0 255\n"
    )

    cloud = loader.load(str(path))

    assert np.allclose(cloud.points, [[0, 0, 0], [1, 0, 0], [0, 1, 0]])
    assert not cloud.has_normals
    assert np.allclose(cloud.attributes["intensity"], [10, 20, 30])
    assert np.allclose(cloud.attributes["colors"], np.eye(3))


def test_load_pts_with_intensity_only(loader, tmp_path):
    path = tmp_path / "scan.pts"
    path.write_text("2\n0 0 0 -5\n1 1 1 7\n")

    cloud = loader.load(str(path))

    assert len(cloud) == 2
    assert np.allclose(cloud.attributes["intensity"], [-5, 7])
    assert "colors" not in cloud.attributes


def test_xyz_rgb_columns_are_colors_not_normals(loader, tmp_path):
    path = tmp_path / "scan.xyz"
    path.write_text(
        "0 0 0 255 0 0\n"
        "1 0 0 0 255 0\n"
        "0 1 0 0 0 255\n"
    )

    cloud = loader.load(str(path))

    assert not cloud.has_normals
    assert np.allclose(cloud.attributes["colors"], np.eye(3))


def test_load_csv_and_single_row(loader, tmp_path):
    path = tmp_path / "one.csv"
    path.write_text("1.5,2.5,3.5\n")

    cloud = loader.load(str(path))

    assert cloud.points.shape == (1, 3)
    assert np.allclose(cloud.points[0], [1.5, 2.5, 3.5])


def test_load_npy(loader, sample_points, tmp_path):
    path = tmp_path / "cloud.npy"
    np.save(path, sample_points)

    cloud = loader.load(str(path))

    assert np.array_equal(cloud.points, sample_points)


def test_missing_file_raises(loader, tmp_path):
    with pytest.raises(LoadError) as excinfo:
        loader.load(str(tmp_path / "nope.las"))
    assert excinfo.value.path.endswith("nope.las")
    assert "not found" in excinfo.value.reason


def test_unsupported_extension_raises(loader, tmp_path):
    path = tmp_path / "cloud.obj"
    path.write_text("v 0 0 0\n")
    with pytest.raises(LoadError, match="unsupported"):
        loader.load(str(path))


def test_empty_cloud_raises(loader, tmp_path):
    path = tmp_path / "empty.npy"
    np.save(path, np.empty((0, 3)))
    with pytest.raises(LoadError, match="empty"):
        loader.load(str(path))


def test_garbage_file_raises(loader, tmp_path):
    path = tmp_path / "broken.las"
    path.write_bytes(b"this is not a las file")
    with pytest.raises(LoadError, match="unreadable"):
        loader.load(str(path))


def test_too_few_columns_raises(loader, tmp_path):
    path = tmp_path / "flat.txt"
    np.savetxt(path, np.ones((5, 2)))
    with pytest.raises(LoadError):
        loader.load(str(path))


def test_non_finite_rows_are_dropped(loader, tmp_path):
    data = np.array([[0.0, 0.0, 0.0], [np.nan, 1.0, 1.0], [2.0, 2.0, 2.0]])
    path = tmp_path / "nan.npy"
    np.save(path, data)

    cloud = loader.load(str(path))

    assert len(cloud) == 2
    assert np.isfinite(cloud.points).all()

    only_nan = tmp_path / "only_nan.npy"
    np.save(only_nan, np.full((3, 3), np.inf))
    with pytest.raises(LoadError, match="no finite points"):
        loader.load(str(only_nan))


def test_validate_file_and_metadata(loader, sample_points, tmp_path):
    path = tmp_path / "cloud.npy"
    np.save(path, sample_points)

    assert loader.validate_file(str(path))
    assert not loader.validate_file(str(tmp_path / "missing.npy"))

    metadata = loader.get_metadata(str(path))
    assert metadata["filename"] == "cloud.npy"
    assert metadata["num_points"] == len(sample_points)
    assert metadata["bounds"]["min_x"] == pytest.approx(sample_points[:, 0].min())
    assert metadata["file_size_mb"] > 0


# ============================================================
# PointCloud container
# ============================================================


def test_point_cloud_arrays_are_read_only(sample_points):
    cloud = PointCloud(points=sample_points)
    with pytest.raises(ValueError):
        cloud.points[0, 0] = 1.0
    # The caller's array is copied, not frozen
    sample_points[0, 0] = -1.0
    assert cloud.points[0, 0] != -1.0


def test_point_cloud_attributes_are_read_only():
    cloud = PointCloud(points=np.zeros((2, 3)), attributes={"intensity": np.array([1, 2])})

    with pytest.raises(TypeError):
        cloud.attributes["intensity"] = np.array([3, 4])
    with pytest.raises(TypeError):
        cloud.attributes["new"] = np.zeros(2)
    with pytest.raises(ValueError):
        cloud.attributes["intensity"][0] = 9
    assert list(cloud.attributes) == ["intensity"]


def test_point_cloud_properties():
    cloud = PointCloud(points=[[0.0, 0.0, 0.0], [2.0, 4.0, 6.0]])

    assert cloud.point_count == 2
    assert np.allclose(cloud.centroid, [1.0, 2.0, 3.0])
    assert np.allclose(cloud.extent, [2.0, 4.0, 6.0])
    assert "2 points" in cloud.describe()


def test_empty_point_cloud():
    cloud = PointCloud(points=np.empty((0, 3)))

    assert cloud.is_empty
    assert np.isnan(cloud.centroid).all()
    assert describe_cloud(cloud)["num_points"] == 0


def test_point_cloud_shape_validation():
    with pytest.raises(ValueError):
        PointCloud(points=np.ones((4, 2)))
    with pytest.raises(ValueError):
        PointCloud(points=np.ones((4, 3)), normals=np.ones((3, 3)))
    with pytest.raises(ValueError):
        PointCloud(points=np.ones((4, 3)), attributes={"intensity": np.ones(2)})
