"""
Tests for coarse-to-fine (multiscale) alignment.
"""

from pathlib import Path
import sys

import numpy as np
import pytest

sys.path.append(str(Path(__file__).parent.parent / "src"))

from pointcloud_registration.alignment.estimators import PointToPointEstimator
from pointcloud_registration.alignment.fine_registration import AlignmentStatus, ICPRegistration
from pointcloud_registration.alignment.multiscale import align_multiscale, voxel_pyramid
from pointcloud_registration.alignment.transforms import apply_transform, rigid_transform
from pointcloud_registration.exceptions import InvalidVoxelSizeError
from pointcloud_registration.preprocessing.point_cloud import PointCloud


def _make_terrain(n: int = 3000, seed: int = 0) -> np.ndarray:
    rng = np.random.default_rng(seed)
    xy = rng.uniform(-5.0, 5.0, size=(n, 2))
    z = 0.6 * np.sin(0.9 * xy[:, 0]) + 0.5 * np.cos(0.7 * xy[:, 1]) + 0.05 * xy[:, 0] * xy[:, 1]
    return np.column_stack([xy, z])


def test_voxel_pyramid_coarsest_first():
    assert voxel_pyramid(0.1, levels=3, factor=2.0) == pytest.approx([0.4, 0.2, 0.1])
    assert voxel_pyramid(0.5, levels=1) == pytest.approx([0.5])


def test_voxel_pyramid_rejects_bad_input():
    with pytest.raises(ValueError):
        voxel_pyramid(0.1, levels=0)
    with pytest.raises(InvalidVoxelSizeError):
        voxel_pyramid(0.0)


def test_multiscale_recovers_translation():
    src = _make_terrain(seed=1)
    T_true = rigid_transform(np.eye(3), np.array([0.4, -0.3, 0.1]))
    source = PointCloud(points=src)
    target = PointCloud(points=apply_transform(src, T_true))

    engine = ICPRegistration(method="gicp", max_iterations=100, tolerance=1e-12)
    # Last level is fine enough to keep every point
    result = align_multiscale(engine, source, target, [0.8, 1e-3])

    assert result.is_valid
    assert np.allclose(result.transform, T_true, atol=1e-3)


def test_multiscale_stops_on_divergence(monkeypatch):
    calls = []

    def nan_step(self, correspondences, transform):
        calls.append(1)
        return np.full((4, 4), np.nan)

    monkeypatch.setattr(PointToPointEstimator, "estimate", nan_step)
    cloud = PointCloud(points=_make_terrain(n=500, seed=2))

    result = align_multiscale(ICPRegistration(method="icp"), cloud, cloud, [0.4, 0.2, 0.1])

    assert result.status is AlignmentStatus.DIVERGED
    assert len(calls) == 1


def test_empty_pyramid_rejected():
    cloud = PointCloud(points=_make_terrain(n=100))
    with pytest.raises(ValueError):
        align_multiscale(ICPRegistration(), cloud, cloud, [])
