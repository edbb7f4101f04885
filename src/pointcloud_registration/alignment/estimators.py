"""
Transformation estimators for the ICP family.

Each estimator turns one set of correspondences into the incremental rigid
transform that best aligns them under its own error metric:

- point_to_point: Euclidean point distance, closed form (SVD)
- point_to_plane: distance along the target normal, linearized least squares
- generalized: Mahalanobis distance under combined local covariances
  (Generalized ICP), one Gauss-Newton step per call

All of them share ICPRegistration's iterate-and-converge loop.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

import numpy as np
from scipy.spatial.transform import Rotation

from ..exceptions import UnknownMethodError
from ..utils.logging import setup_logger
from .local_geometry import compute_covariances, estimate_normals, regularize_covariances

logger = setup_logger(__name__)

# Combined covariances with a smaller determinant are treated as non-invertible
MIN_COVARIANCE_DET = 1e-12


class AlignmentMethod(str, Enum):
    GICP = "gicp"
    ICP = "icp"
    ICP_POINT_TO_PLANE = "icp_point_to_plane"

    @classmethod
    def from_name(cls, name: "str | AlignmentMethod") -> "AlignmentMethod":
        if isinstance(name, cls):
            return name
        key = str(name).strip().lower().replace("-", "_")
        key = _METHOD_ALIASES.get(key, key)
        for method in cls:
            if method.value == key:
                return method
        raise UnknownMethodError(
            f"Unknown alignment method '{name}' (expected one of: {', '.join(m.value for m in cls)})"
        )


_METHOD_ALIASES = {
    "generalized_icp": "gicp",
    "generalizedicp": "gicp",
    "point_to_point": "icp",
    "icp_point_to_point": "icp",
    "point_to_plane": "icp_point_to_plane",
    "icp_normals": "icp_point_to_plane",
}


@dataclass(frozen=True, eq=False)
class Correspondences:
    """Paired points used by one ICP iteration."""

    source_points: np.ndarray
    target_points: np.ndarray
    source_indices: np.ndarray
    target_indices: np.ndarray

    def __len__(self) -> int:
        return len(self.source_indices)


def _skew(vectors: np.ndarray) -> np.ndarray:
    """Stack of cross-product matrices [v]x for (N, 3) vectors."""
    out = np.zeros((len(vectors), 3, 3))
    out[:, 0, 1] = -vectors[:, 2]
    out[:, 0, 2] = vectors[:, 1]
    out[:, 1, 0] = vectors[:, 2]
    out[:, 1, 2] = -vectors[:, 0]
    out[:, 2, 0] = -vectors[:, 1]
    out[:, 2, 1] = vectors[:, 0]
    return out


def solve_weighted_linearized(
    source_points: np.ndarray,
    target_points: np.ndarray,
    weights: np.ndarray,
) -> np.ndarray:
    """
    One Gauss-Newton step minimizing sum_i d_i^T W_i d_i over a rigid motion.

    The motion is linearized about the centroid of the source points, which
    keeps the normal equations well conditioned for georeferenced coordinates.

    Args:
        source_points: (N, 3) current source points
        target_points: (N, 3) corresponding target points
        weights: (N, 3, 3) symmetric positive semi-definite weight matrices

    Returns:
        Incremental 4x4 transform
    """
    center = source_points.mean(axis=0)
    p = source_points - center
    d = target_points - source_points

    # Residual after a small motion (w, v): d - (w x p + v) = d - J [w, v]
    J = np.zeros((len(p), 3, 6))
    J[:, :, :3] = -_skew(p)
    J[:, :, 3:] = np.eye(3)

    JtW = np.einsum("nki,nkl->nil", J, weights)
    H = np.einsum("nil,nlj->ij", JtW, J)
    g = np.einsum("nil,nl->i", JtW, d)

    # lstsq gives the minimum-norm step along unconstrained directions (sliding planes)
    x, *_ = np.linalg.lstsq(H, g, rcond=None)

    R = Rotation.from_rotvec(x[:3]).as_matrix()
    T = np.eye(4)
    T[:3, :3] = R
    T[:3, 3] = center + x[3:] - R @ center
    return T


class PointToPointEstimator:
    """Closed-form rigid fit of paired points (Kabsch / Umeyama without scale)."""

    method = AlignmentMethod.ICP

    def estimate(self, correspondences: Correspondences, transform: np.ndarray) -> np.ndarray:
        source_points = correspondences.source_points
        target_points = correspondences.target_points

        # Center the point sets
        source_centroid = np.mean(source_points, axis=0)
        target_centroid = np.mean(target_points, axis=0)

        source_centered = source_points - source_centroid
        target_centered = target_points - target_centroid

        # Cross-covariance matrix
        H = source_centered.T @ target_centered

        U, _, Vt = np.linalg.svd(H)
        R = Vt.T @ U.T

        # Ensure proper rotation (det(R) should be 1)
        if np.linalg.det(R) < 0:
            Vt[-1, :] *= -1
            R = Vt.T @ U.T

        t = target_centroid - R @ source_centroid

        delta = np.eye(4)
        delta[:3, :3] = R
        delta[:3, 3] = t
        return delta


class PointToPlaneEstimator:
    """Minimizes the distance of source points to the tangent planes of the target."""

    method = AlignmentMethod.ICP_POINT_TO_PLANE

    def __init__(self, target_normals: np.ndarray, valid: Optional[np.ndarray] = None):
        self.target_normals = np.asarray(target_normals, dtype=np.float64)
        norms = np.linalg.norm(self.target_normals, axis=1)
        usable = np.isfinite(norms) & (norms > 0)
        if valid is not None:
            usable &= valid
        self.valid = usable

    def estimate(self, correspondences: Correspondences, transform: np.ndarray) -> np.ndarray:
        keep = self.valid[correspondences.target_indices]
        if np.count_nonzero(keep) < 6:
            logger.debug("Too few correspondences with normals; using point-to-point step.")
            return PointToPointEstimator().estimate(correspondences, transform)

        normals = self.target_normals[correspondences.target_indices[keep]]
        normals = normals / np.linalg.norm(normals, axis=1, keepdims=True)
        weights = np.einsum("ni,nj->nij", normals, normals)
        return solve_weighted_linearized(
            correspondences.source_points[keep],
            correspondences.target_points[keep],
            weights,
        )


class GeneralizedICPEstimator:
    """
    Generalized ICP (plane-to-plane) step.

    Both clouds carry plane-regularized covariances; a correspondence (i, j) is
    weighted by (C_target[j] + R C_source[i] R^T)^-1 where R is the rotation of
    the current cumulative transform.
    """

    method = AlignmentMethod.GICP

    def __init__(
        self,
        source_covariances: np.ndarray,
        target_covariances: np.ndarray,
        source_valid: Optional[np.ndarray] = None,
        target_valid: Optional[np.ndarray] = None,
    ):
        self.source_covariances = source_covariances
        self.target_covariances = target_covariances
        self.source_valid = (
            np.ones(len(source_covariances), dtype=bool) if source_valid is None else source_valid
        )
        self.target_valid = (
            np.ones(len(target_covariances), dtype=bool) if target_valid is None else target_valid
        )

    def estimate(self, correspondences: Correspondences, transform: np.ndarray) -> np.ndarray:
        src_idx = correspondences.source_indices
        tgt_idx = correspondences.target_indices
        keep = self.source_valid[src_idx] & self.target_valid[tgt_idx]

        R = transform[:3, :3]
        combined = (
            self.target_covariances[tgt_idx]
            + np.einsum("ij,njk,lk->nil", R, self.source_covariances[src_idx], R)
        )
        det = np.linalg.det(combined)
        keep &= np.isfinite(det) & (det > MIN_COVARIANCE_DET)

        n_kept = int(np.count_nonzero(keep))
        if n_kept < 6:
            logger.debug("Too few invertible covariance pairs; using point-to-point step.")
            return PointToPointEstimator().estimate(correspondences, transform)
        if n_kept < len(keep):
            logger.debug(f"Skipping {len(keep) - n_kept} correspondences with degenerate covariances")

        weights = np.linalg.inv(combined[keep])
        return solve_weighted_linearized(
            correspondences.source_points[keep],
            correspondences.target_points[keep],
            weights,
        )


def create_estimator(
    method: "str | AlignmentMethod",
    source_points: np.ndarray,
    target_points: np.ndarray,
    *,
    target_normals: Optional[np.ndarray] = None,
    k_neighbors: int = 20,
    covariance_epsilon: float = 1e-3,
    n_jobs: Optional[int] = None,
):
    """
    Build the estimator for a method, precomputing the local geometry it needs.

    Args:
        method: Method name or AlignmentMethod
        source_points: (N, 3) source points, in their untransformed pose
        target_points: (M, 3) target points
        target_normals: Optional (M, 3) normals shipped with the target cloud
        k_neighbors: Neighborhood size for covariances/normals
        covariance_epsilon: GICP plane regularization
        n_jobs: Worker threads for neighbor queries

    Returns:
        Estimator exposing estimate(correspondences, transform)
    """
    method = AlignmentMethod.from_name(method)

    if method is AlignmentMethod.ICP:
        return PointToPointEstimator()

    if method is AlignmentMethod.ICP_POINT_TO_PLANE:
        if target_normals is not None:
            logger.debug("Using normals stored with the target cloud.")
            return PointToPlaneEstimator(target_normals)
        logger.debug(f"Estimating target normals from {k_neighbors} neighbors.")
        normals, valid = estimate_normals(target_points, k_neighbors=k_neighbors, n_jobs=n_jobs)
        return PointToPlaneEstimator(normals, valid)

    logger.debug(f"Estimating GICP covariances from {k_neighbors} neighbors.")
    src_cov, src_valid = compute_covariances(source_points, k_neighbors=k_neighbors, n_jobs=n_jobs)
    tgt_cov, tgt_valid = compute_covariances(target_points, k_neighbors=k_neighbors, n_jobs=n_jobs)
    return GeneralizedICPEstimator(
        regularize_covariances(src_cov, covariance_epsilon),
        regularize_covariances(tgt_cov, covariance_epsilon),
        src_valid,
        tgt_valid,
    )
