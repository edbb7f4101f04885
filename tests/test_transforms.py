"""
Tests for homogeneous transform helpers (apply, decompose, save/load).
"""

from pathlib import Path
import sys

import numpy as np
import pytest

sys.path.append(str(Path(__file__).parent.parent / "src"))

from pointcloud_registration.alignment.transforms import (
    apply_transform,
    decompose_transform,
    format_transform,
    freeze,
    has_nan,
    is_similarity_transform,
    load_transform_matrix,
    rigid_transform,
    rotate_normals,
    rotation_angle,
    save_transform_matrix,
)
from pointcloud_registration.preprocessing.scaling import scaling_transform


def _rotation_z(deg: float) -> np.ndarray:
    th = np.deg2rad(deg)
    return np.array([[np.cos(th), -np.sin(th), 0.0], [np.sin(th), np.cos(th), 0.0], [0.0, 0.0, 1.0]])


def test_apply_transform_matches_homogeneous_product():
    rng = np.random.default_rng(0)
    points = rng.normal(size=(10, 3))
    T = rigid_transform(_rotation_z(30.0), np.array([1.0, -2.0, 3.0]))

    homogeneous = np.hstack([points, np.ones((10, 1))]) @ T.T

    assert np.allclose(apply_transform(points, T), homogeneous[:, :3])
    assert apply_transform(np.empty((0, 3)), T).shape == (0, 3)


def test_decompose_similarity_transform():
    T = rigid_transform(_rotation_z(25.0), np.array([4.0, 5.0, 6.0])) @ scaling_transform(np.zeros(3), 2.5)

    scale, rotation, translation, euler = decompose_transform(T)

    assert scale == pytest.approx(2.5)
    assert np.allclose(rotation, _rotation_z(25.0))
    assert np.allclose(translation, [4.0, 5.0, 6.0])
    assert np.allclose(euler, [0.0, 0.0, 25.0])
    assert is_similarity_transform(T)


def test_shear_is_not_similarity():
    T = np.eye(4)
    T[0, 1] = 0.5
    assert not is_similarity_transform(T)
    assert not is_similarity_transform(np.full((4, 4), np.nan))


def test_rotation_angle():
    assert rotation_angle(np.eye(3)) == pytest.approx(0.0)
    assert rotation_angle(_rotation_z(90.0)) == pytest.approx(np.pi / 2)


def test_rotate_normals_stay_unit_and_perpendicular():
    normals = np.array([[0.0, 0.0, 1.0], [1.0, 0.0, 0.0]])
    T = rigid_transform(_rotation_z(90.0), np.array([10.0, 0.0, 0.0])) @ scaling_transform(np.zeros(3), 3.0)

    rotated = rotate_normals(normals, T)

    assert np.allclose(np.linalg.norm(rotated, axis=1), 1.0)
    assert np.allclose(rotated[0], [0.0, 0.0, 1.0])
    assert np.allclose(rotated[1], [0.0, 1.0, 0.0])


def test_freeze_and_nan_checks():
    frozen = freeze(np.eye(4))
    with pytest.raises(ValueError):
        frozen[0, 3] = 1.0
    with pytest.raises(ValueError):
        freeze(np.eye(3))

    assert not has_nan(frozen)
    bad = np.eye(4)
    bad[1, 2] = np.nan
    assert has_nan(bad)


def test_save_and_load_transform(tmp_path):
    T = rigid_transform(_rotation_z(12.3456789), np.array([123456.789, -0.000123, 42.0]))
    out = tmp_path / "transform.txt"

    save_transform_matrix(T, str(out))
    loaded = load_transform_matrix(str(out))

    assert np.array_equal(loaded, T)


def test_load_rejects_wrong_shape(tmp_path):
    out = tmp_path / "bad.txt"
    np.savetxt(out, np.eye(3))
    with pytest.raises(ValueError):
        load_transform_matrix(str(out))


def test_format_transform_mentions_components():
    report = format_transform(np.eye(4))
    assert "Rotation" in report
    assert "Translation" in report
    assert "Scale: 1" in report
