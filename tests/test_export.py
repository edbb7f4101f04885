"""
Tests for export utilities.

Tests that the transformed full-resolution source is written in the container
implied by the output extension, and that invalid transforms are never written.
"""

from pathlib import Path
import sys

import numpy as np
import pytest

sys.path.append(str(Path(__file__).parent.parent / "src"))

from pointcloud_registration.alignment.transforms import rigid_transform
from pointcloud_registration.exceptions import ExportError
from pointcloud_registration.preprocessing.loader import PointCloudLoader
from pointcloud_registration.preprocessing.point_cloud import PointCloud
from pointcloud_registration.utils.export import (
    export_point_cloud,
    export_transformed,
    transform_cloud,
)


# ============================================================
# Test fixtures and helpers
# ============================================================


@pytest.fixture
def sample_cloud():
    """Generate sample point cloud data with LAS-like attributes."""
    rng = np.random.default_rng(42)
    n_points = 100
    points = rng.uniform(0, 100, (n_points, 3)) + np.array([500000.0, 6700000.0, 100.0])
    return PointCloud(
        points=points,
        attributes={
            "intensity": rng.integers(0, 1000, n_points).astype(np.uint16),
            "classification": np.full(n_points, 2, dtype=np.uint8),
        },
    )


@pytest.fixture
def shift():
    return rigid_transform(np.eye(3), np.array([10.0, -20.0, 5.0]))


# ============================================================
# Tests
# ============================================================


def test_empty_output_path_is_noop(sample_cloud, shift, tmp_path):
    assert export_transformed(sample_cloud, shift, None) is None
    assert export_transformed(sample_cloud, shift, "") is None
    assert list(tmp_path.iterdir()) == []


def test_nan_transform_is_rejected(sample_cloud, tmp_path):
    bad = np.eye(4)
    bad[0, 3] = np.nan
    out = tmp_path / "out.npy"

    with pytest.raises(ExportError):
        export_transformed(sample_cloud, bad, out)
    assert not out.exists()


def test_non_homogeneous_transform_is_rejected(sample_cloud, tmp_path):
    with pytest.raises(ExportError):
        export_transformed(sample_cloud, np.eye(3), tmp_path / "out.npy")


@pytest.mark.parametrize("suffix", [".npy", ".xyz", ".csv"])
def test_array_formats_preserve_points(sample_cloud, shift, tmp_path, suffix):
    out = tmp_path / f"aligned{suffix}"

    written = export_transformed(sample_cloud, shift, out)

    assert written == str(out)
    reloaded = PointCloudLoader().load(written)
    assert len(reloaded) == len(sample_cloud)
    assert np.allclose(reloaded.points, sample_cloud.points + shift[:3, 3], atol=1e-6)


def test_las_keeps_attributes(sample_cloud, shift, tmp_path):
    out = tmp_path / "aligned.laz"

    export_transformed(sample_cloud, shift, out, las_scale=1e-3)

    reloaded = PointCloudLoader().load(str(out))
    assert len(reloaded) == len(sample_cloud)
    assert np.allclose(reloaded.points, sample_cloud.points + shift[:3, 3], atol=1e-3)
    assert np.array_equal(reloaded.attributes["intensity"], sample_cloud.attributes["intensity"])
    assert (reloaded.attributes["classification"] == 2).all()


def test_source_path_is_reloaded(sample_cloud, shift, tmp_path):
    src = tmp_path / "source.npy"
    np.save(src, sample_cloud.points)
    out = tmp_path / "aligned.npy"

    export_transformed(str(src), shift, out)

    assert np.allclose(np.load(out), sample_cloud.points + shift[:3, 3])


def test_normals_follow_rotation(tmp_path):
    th = np.deg2rad(90.0)
    R = np.array([[np.cos(th), -np.sin(th), 0.0], [np.sin(th), np.cos(th), 0.0], [0.0, 0.0, 1.0]])
    cloud = PointCloud(points=np.zeros((2, 3)), normals=[[1.0, 0.0, 0.0], [0.0, 0.0, 1.0]])

    moved = transform_cloud(cloud, rigid_transform(R, np.zeros(3)))
    assert np.allclose(moved.normals, [[0.0, 1.0, 0.0], [0.0, 0.0, 1.0]])

    out = tmp_path / "with_normals.npy"
    export_point_cloud(moved, out)
    assert np.load(out).shape == (2, 6)


def test_unsupported_extension_raises(sample_cloud, shift, tmp_path):
    with pytest.raises(ExportError, match="unsupported"):
        export_transformed(sample_cloud, shift, tmp_path / "aligned.obj")


def test_output_directory_is_created(sample_cloud, shift, tmp_path):
    out = tmp_path / "nested" / "dir" / "aligned.npy"
    export_transformed(sample_cloud, shift, out)
    assert out.exists()
