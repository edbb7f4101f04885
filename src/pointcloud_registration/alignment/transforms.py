"""
Homogeneous transform utilities

Helpers to apply, validate, decompose and persist 4x4 transforms made of a
rotation, a translation and an optional uniform scale.
"""

from typing import NamedTuple

import numpy as np
from scipy.spatial.transform import Rotation

from ..utils.logging import setup_logger

logger = setup_logger(__name__)


class TransformComponents(NamedTuple):
    scale: float
    rotation: np.ndarray
    translation: np.ndarray
    euler_xyz_deg: np.ndarray


def freeze(transform: np.ndarray) -> np.ndarray:
    """Return a read-only float64 copy of a 4x4 transform."""
    frozen = np.array(transform, dtype=np.float64, copy=True)
    if frozen.shape != (4, 4):
        raise ValueError(f"Transform must be 4x4 matrix, got {frozen.shape}")
    frozen.flags.writeable = False
    return frozen


def has_nan(transform: np.ndarray) -> bool:
    return bool(np.isnan(transform).any())


def apply_transform(points: np.ndarray, transform: np.ndarray) -> np.ndarray:
    """
    Apply a transformation matrix to a set of points.

    Args:
        points: Point cloud (N x 3).
        transform: Transformation matrix (4 x 4).

    Returns:
        Transformed point cloud (N x 3).
    """
    if points.size == 0:
        return np.asarray(points, dtype=np.float64).reshape(0, 3)
    # Direct affine transform (faster and less memory than homogeneous coords)
    A = transform[:3, :3]
    t = transform[:3, 3]
    return points @ A.T + t


def rotate_normals(normals: np.ndarray, transform: np.ndarray) -> np.ndarray:
    """Rotate unit normals by the linear part of a transform (scale removed)."""
    A = transform[:3, :3]
    # Inverse transpose keeps normals perpendicular under any non-singular linear map
    rotated = normals @ np.linalg.inv(A)
    norms = np.linalg.norm(rotated, axis=1, keepdims=True)
    np.divide(rotated, norms, out=rotated, where=norms > 0)
    return rotated


def rigid_transform(rotation: np.ndarray, translation: np.ndarray) -> np.ndarray:
    T = np.eye(4)
    T[:3, :3] = rotation
    T[:3, 3] = translation
    return T


def decompose_transform(transform: np.ndarray) -> TransformComponents:
    """
    Split a similarity transform into uniform scale, rotation and translation.

    The scale is the cube root of the determinant of the linear block; the
    rotation is that block divided by the scale.
    """
    A = np.asarray(transform, dtype=np.float64)[:3, :3]
    det = float(np.linalg.det(A))
    scale = float(np.cbrt(det)) if np.isfinite(det) and det > 0 else float("nan")
    rotation = A / scale
    translation = np.asarray(transform, dtype=np.float64)[:3, 3].copy()
    if np.isfinite(rotation).all():
        euler = Rotation.from_matrix(rotation).as_euler("xyz", degrees=True)
    else:
        euler = np.full(3, np.nan)
    return TransformComponents(scale, rotation, translation, euler)


def rotation_angle(rotation: np.ndarray) -> float:
    """Angle (radians) of a rotation matrix."""
    # Clamp argument to arccos to valid range to avoid NaNs
    cos_theta = max(min((float(np.trace(rotation)) - 1.0) * 0.5, 1.0), -1.0)
    return float(np.arccos(cos_theta))


def is_similarity_transform(transform: np.ndarray, atol: float = 1e-6) -> bool:
    """True if the linear block is a positive uniform scale times a proper rotation."""
    T = np.asarray(transform, dtype=np.float64)
    if T.shape != (4, 4) or not np.isfinite(T).all():
        return False
    if not np.allclose(T[3], [0.0, 0.0, 0.0, 1.0], atol=atol):
        return False
    scale, rotation, _, _ = decompose_transform(T)
    if not np.isfinite(scale):
        return False
    return bool(np.allclose(rotation @ rotation.T, np.eye(3), atol=atol))


def format_transform(transform: np.ndarray) -> str:
    """Human-readable report of a transform and its components."""
    scale, rotation, translation, euler = decompose_transform(transform)
    with np.printoptions(precision=6, suppress=True):
        return (
            f"Transform:\n{np.asarray(transform)}\n"
            f"Rotation:\n{rotation}\n"
            f"Translation: {translation}\n"
            f"Scale: {scale:.6g}\n"
            f"Euler XYZ (deg): {euler}"
        )


def save_transform_matrix(transform: np.ndarray, output_file: str) -> None:
    """Save a transformation matrix to a text file.

    Args:
        transform: 4x4 transformation matrix
        output_file: Path to output file
    """
    np.savetxt(output_file, np.asarray(transform), fmt='%.18e', header='4x4 transformation matrix')
    logger.info(f"Saved transformation matrix to {output_file}")


def load_transform_matrix(input_file: str) -> np.ndarray:
    """Load a transformation matrix from a text file.

    Args:
        input_file: Path to input file

    Returns:
        4x4 transformation matrix
    """
    transform = np.loadtxt(input_file)
    if transform.shape != (4, 4):
        raise ValueError(f"Expected 4x4 matrix, got shape {transform.shape}")
    logger.info(f"Loaded transformation matrix from {input_file}")
    return transform
