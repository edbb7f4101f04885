"""
Local surface geometry from k nearest neighbors.

Per-point covariances feed Generalized ICP, per-point normals feed the
point-to-plane variant. Points whose neighborhood is too small to describe a
surface are flagged invalid so the estimators can skip them.
"""

from typing import Optional, Tuple

import numpy as np
from sklearn.neighbors import NearestNeighbors

from ..utils.logging import setup_logger

logger = setup_logger(__name__)

MIN_NEIGHBORS = 3


def compute_covariances(
    points: np.ndarray,
    k_neighbors: int = 20,
    n_jobs: Optional[int] = None,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Sample covariance of each point's k-neighborhood.

    Args:
        points: (N, 3) coordinates
        k_neighbors: Neighborhood size (the point itself included)
        n_jobs: Worker threads for the neighbor query

    Returns:
        Tuple of (covariances (N, 3, 3), valid mask (N,)). Invalid entries are
        set to the identity.
    """
    n = len(points)
    if n < MIN_NEIGHBORS:
        return np.tile(np.eye(3), (n, 1, 1)), np.zeros(n, dtype=bool)

    k = min(k_neighbors, n)
    nbrs = NearestNeighbors(n_neighbors=k, algorithm="kd_tree", n_jobs=n_jobs).fit(points)
    _, indices = nbrs.kneighbors(points)

    neighborhoods = points[indices]  # (N, k, 3)
    centered = neighborhoods - neighborhoods.mean(axis=1, keepdims=True)
    covariances = np.einsum("nki,nkj->nij", centered, centered) / k

    valid = np.isfinite(covariances).all(axis=(1, 2))
    # A neighborhood collapsed onto a single location carries no surface information
    valid &= np.trace(covariances, axis1=1, axis2=2) > 0.0
    covariances[~valid] = np.eye(3)

    n_invalid = int(np.count_nonzero(~valid))
    if n_invalid:
        logger.debug(f"{n_invalid} of {n} points have a degenerate neighborhood")
    return covariances, valid


def regularize_covariances(covariances: np.ndarray, epsilon: float = 1e-3) -> np.ndarray:
    """
    Plane-regularize covariances: eigenvalues become (epsilon, 1, 1).

    The smallest eigenvector (surface normal direction) keeps a small variance,
    the two tangent directions get unit variance.
    """
    if len(covariances) == 0:
        return covariances.copy()
    _, eigvecs = np.linalg.eigh(covariances)  # ascending eigenvalues
    values = np.array([epsilon, 1.0, 1.0])
    return np.einsum("nij,j,nkj->nik", eigvecs, values, eigvecs)


def normals_from_covariances(covariances: np.ndarray) -> np.ndarray:
    """Unit eigenvector of the smallest eigenvalue of each covariance."""
    if len(covariances) == 0:
        return np.empty((0, 3))
    _, eigvecs = np.linalg.eigh(covariances)
    return eigvecs[:, :, 0]


def estimate_normals(
    points: np.ndarray,
    k_neighbors: int = 20,
    n_jobs: Optional[int] = None,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Estimate unoriented surface normals by local PCA.

    Returns:
        Tuple of (normals (N, 3), valid mask (N,)). Invalid normals are zero.
    """
    covariances, valid = compute_covariances(points, k_neighbors=k_neighbors, n_jobs=n_jobs)
    normals = normals_from_covariances(covariances)
    normals[~valid] = 0.0
    return normals, valid
