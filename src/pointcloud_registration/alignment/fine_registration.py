"""
ICP Registration Implementation

This module implements the Iterative Closest Point (ICP) family used to align
a source point cloud onto a target point cloud: plain point-to-point ICP,
point-to-plane ICP and Generalized ICP. The variants share one
iterate-and-converge loop and differ only in the estimator that turns
correspondences into an incremental transform.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple, Union
import time

import numpy as np
from sklearn.neighbors import NearestNeighbors

from ..exceptions import EmptyCloudError, InsufficientCorrespondencesError
from ..preprocessing.point_cloud import PointCloud
from ..utils.logging import setup_logger
from .estimators import AlignmentMethod, Correspondences, create_estimator
from .transforms import apply_transform, freeze, has_nan, rotation_angle

logger = setup_logger(__name__)

CloudLike = Union[PointCloud, np.ndarray]

MIN_CORRESPONDENCES = 3


class AlignmentStatus(str, Enum):
    INITIALIZED = "initialized"
    ITERATING = "iterating"
    CONVERGED = "converged"
    MAX_ITERATIONS_REACHED = "max_iterations_reached"
    DIVERGED = "diverged"


@dataclass(frozen=True, eq=False)
class AlignmentResult:
    """
    Outcome of one alignment run.

    Attributes:
        transform: Read-only 4x4 transform mapping the source onto the target
        status: Terminal state of the iteration
        method: Estimator used
        iterations: Number of iterations performed
        rmse: RMSE of the valid correspondences under the final transform
        fitness: Fraction of source points with a valid correspondence at the end
        mse_history: Mean squared correspondence error of each iteration
    """

    transform: np.ndarray
    status: AlignmentStatus
    method: AlignmentMethod
    iterations: int
    rmse: float
    fitness: float
    mse_history: Tuple[float, ...] = ()

    @property
    def is_valid(self) -> bool:
        """False when any entry of the transform is NaN."""
        return not has_nan(self.transform)

    @property
    def converged(self) -> bool:
        return self.status is AlignmentStatus.CONVERGED


def _as_points(cloud: CloudLike) -> np.ndarray:
    if isinstance(cloud, PointCloud):
        return cloud.points
    points = np.asarray(cloud, dtype=np.float64)
    if points.size == 0:
        return points.reshape(0, 3)
    return points


class ICPRegistration:
    """
    Implementation of the ICP algorithm family for point cloud registration.

    The ICP algorithm iteratively:
    1. Finds closest point correspondences
    2. Estimates the incremental transformation with the selected estimator
    3. Composes it into the cumulative transform and re-applies it to the source
    4. Repeats until convergence, the iteration cap, or divergence (NaN)
    """

    def __init__(
        self,
        method: Union[str, AlignmentMethod] = AlignmentMethod.GICP,
        max_iterations: int = 50,
        tolerance: float = 1e-8,
        max_correspondence_distance: Optional[float] = None,
        convergence_translation_epsilon: float = 1e-6,
        convergence_rotation_epsilon_deg: float = 1e-3,
        k_neighbors: int = 20,
        covariance_epsilon: float = 1e-3,
        n_jobs: Optional[int] = None,
    ):
        """
        Initialize ICP parameters.

        Args:
            method: 'gicp', 'icp' or 'icp_point_to_plane'.
            max_iterations: Maximum number of ICP iterations.
            tolerance: Convergence tolerance on change in mean squared error.
            max_correspondence_distance: Maximum distance for point correspondences
                (None keeps every nearest-neighbor pair).
            convergence_translation_epsilon: Translation step below which the
                algorithm is considered converged.
            convergence_rotation_epsilon_deg: Rotation step (degrees) below which
                the algorithm is considered converged.
            k_neighbors: Neighborhood size for covariance/normal estimation.
            covariance_epsilon: Plane regularization of GICP covariances.
            n_jobs: Worker threads used by the nearest-neighbor queries.
        """
        self.method = AlignmentMethod.from_name(method)
        self.max_iterations = int(max_iterations)
        self.tolerance = tolerance
        self.max_correspondence_distance = max_correspondence_distance
        self.convergence_translation_epsilon = convergence_translation_epsilon
        # Store rotation epsilon in radians for internal use
        self.convergence_rotation_epsilon_rad = np.deg2rad(convergence_rotation_epsilon_deg)
        self.k_neighbors = k_neighbors
        self.covariance_epsilon = covariance_epsilon
        self.n_jobs = n_jobs

    @classmethod
    def from_config(cls, cfg, method: Optional[Union[str, AlignmentMethod]] = None) -> "ICPRegistration":
        """Build an engine from an AlignmentConfig section."""
        return cls(
            method=method if method is not None else cfg.method,
            max_iterations=cfg.max_iterations,
            tolerance=cfg.tolerance,
            max_correspondence_distance=cfg.max_correspondence_distance,
            convergence_translation_epsilon=cfg.convergence_translation_epsilon,
            convergence_rotation_epsilon_deg=cfg.convergence_rotation_epsilon_deg,
            k_neighbors=cfg.k_neighbors,
            covariance_epsilon=cfg.covariance_epsilon,
            n_jobs=cfg.n_jobs,
        )

    def align(
        self,
        source: CloudLike,
        target: CloudLike,
        initial_transform: Optional[np.ndarray] = None,
    ) -> AlignmentResult:
        """
        Align source point cloud to target.

        Args:
            source: Source cloud (PointCloud or N x 3 array), never modified.
            target: Target cloud (PointCloud or M x 3 array), never modified.
            initial_transform: Initial transformation matrix (4 x 4) or None.

        Returns:
            AlignmentResult. Check `is_valid` before using the transform.

        Raises:
            EmptyCloudError: If either cloud has no points.
            InsufficientCorrespondencesError: If an iteration finds fewer than
                3 valid correspondences.
        """
        source_points = _as_points(source)
        target_points = _as_points(target)
        target_normals = target.normals if isinstance(target, PointCloud) else None

        n_src = len(source_points)
        n_tgt = len(target_points)
        if n_src == 0 or n_tgt == 0:
            raise EmptyCloudError(
                f"Cannot align empty point clouds (source={n_src}, target={n_tgt})"
            )

        status = AlignmentStatus.INITIALIZED
        logger.info(
            "Starting %s alignment with %d source points and %d target points.",
            self.method.value,
            n_src,
            n_tgt,
        )

        transform = np.eye(4) if initial_transform is None else np.array(initial_transform, dtype=np.float64)

        # Build the nearest-neighbor search structure for the target ONCE
        build_start = time.time()
        nbrs = NearestNeighbors(n_neighbors=1, algorithm="kd_tree", n_jobs=self.n_jobs).fit(target_points)
        estimator = create_estimator(
            self.method,
            source_points,
            target_points,
            target_normals=target_normals,
            k_neighbors=self.k_neighbors,
            covariance_epsilon=self.covariance_epsilon,
            n_jobs=self.n_jobs,
        )
        logger.debug("Search structure and local geometry built in %.4f s.", time.time() - build_start)

        current_source = apply_transform(source_points, transform)
        previous_error = float("inf")
        best_error = float("inf")
        best_transform = transform.copy()
        history = []
        n_iterations = 0
        icp_start = time.time()

        status = AlignmentStatus.ITERATING
        for iteration in range(self.max_iterations):
            correspondences, distances = self.find_correspondences(current_source, nbrs)

            valid_mask = self._valid_mask(distances)
            n_valid = int(np.count_nonzero(valid_mask))
            if n_valid < MIN_CORRESPONDENCES:
                raise InsufficientCorrespondencesError(
                    f"Only {n_valid} valid correspondences at iteration {iteration + 1} "
                    f"(max distance {self.max_correspondence_distance})"
                )

            source_indices = np.flatnonzero(valid_mask)
            target_indices = correspondences[valid_mask]
            current_error = float(np.mean(distances[valid_mask] ** 2))
            history.append(current_error)
            if current_error < best_error:
                best_error = current_error
                best_transform = transform.copy()

            delta_transform = estimator.estimate(
                Correspondences(
                    source_points=current_source[source_indices],
                    target_points=target_points[target_indices],
                    source_indices=source_indices,
                    target_indices=target_indices,
                ),
                transform,
            )
            n_iterations = iteration + 1

            # new_transform = delta_transform * current_transform
            transform = delta_transform @ transform
            if has_nan(transform):
                status = AlignmentStatus.DIVERGED
                logger.error("ICP diverged at iteration %d: transform contains NaN.", n_iterations)
                break

            # Apply the cumulative transformation to the ORIGINAL source cloud
            # to avoid compounding floating point errors
            current_source = apply_transform(source_points, transform)

            trans_step = float(np.linalg.norm(delta_transform[:3, 3]))
            rot_step = rotation_angle(delta_transform[:3, :3])

            logger.debug(
                "Iteration %d: MSE=%.6g, |Δt|=%.6e, Δθ=%.6e rad, correspondences=%d",
                n_iterations,
                current_error,
                trans_step,
                rot_step,
                n_valid,
            )

            if abs(previous_error - current_error) < self.tolerance:
                status = AlignmentStatus.CONVERGED
                logger.info(
                    "ICP converged after %d iterations (MSE change < %.3e).",
                    n_iterations,
                    self.tolerance,
                )
                break

            if (
                trans_step < self.convergence_translation_epsilon
                and rot_step < self.convergence_rotation_epsilon_rad
            ):
                status = AlignmentStatus.CONVERGED
                logger.info(
                    "ICP converged after %d iterations (motion below thresholds: "
                    "|Δt|=%.3e, Δθ=%.3e rad).",
                    n_iterations,
                    trans_step,
                    rot_step,
                )
                break

            previous_error = current_error
        else:
            status = AlignmentStatus.MAX_ITERATIONS_REACHED
            logger.warning("ICP did not converge after %d iterations.", self.max_iterations)

        if status is AlignmentStatus.DIVERGED:
            return AlignmentResult(
                transform=freeze(transform),
                status=status,
                method=self.method,
                iterations=n_iterations,
                rmse=float("nan"),
                fitness=0.0,
                mse_history=tuple(history),
            )

        rmse, fitness = self.compute_registration_error(current_source, nbrs)
        if status is AlignmentStatus.MAX_ITERATIONS_REACHED and rmse ** 2 > best_error:
            # Keep the best transform seen so far
            transform = best_transform
            current_source = apply_transform(source_points, transform)
            rmse, fitness = self.compute_registration_error(current_source, nbrs)

        logger.info(
            "ICP finished in %.4f s (%d iterations, status=%s). Final RMSE: %.6g, fitness: %.3f",
            time.time() - icp_start,
            n_iterations,
            status.value,
            rmse,
            fitness,
        )

        return AlignmentResult(
            transform=freeze(transform),
            status=status,
            method=self.method,
            iterations=n_iterations,
            rmse=rmse,
            fitness=fitness,
            mse_history=tuple(history),
        )

    def _valid_mask(self, distances: np.ndarray) -> np.ndarray:
        valid = np.isfinite(distances)
        if self.max_correspondence_distance is not None:
            valid &= distances <= self.max_correspondence_distance
        return valid

    def find_correspondences(
        self,
        source: np.ndarray,
        nbrs: NearestNeighbors,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """
        Find closest point correspondences between source and target.

        Args:
            source: Source point cloud (N x 3).
            nbrs: NearestNeighbors instance fitted on the target.

        Returns:
            Tuple of (correspondence_indices, distances).
        """
        distances, indices = nbrs.kneighbors(source)
        return indices.ravel(), distances.ravel()

    def compute_registration_error(
        self,
        source: np.ndarray,
        nbrs: NearestNeighbors,
    ) -> Tuple[float, float]:
        """
        Compute the registration error (RMSE) and fitness of an aligned source.

        Args:
            source: Aligned source point cloud.
            nbrs: NearestNeighbors instance fitted on the target.

        Returns:
            Tuple of (RMSE over valid correspondences, fraction of valid correspondences).
        """
        _, distances = self.find_correspondences(source, nbrs)
        valid_mask = self._valid_mask(distances)
        n_valid = int(np.count_nonzero(valid_mask))
        if n_valid == 0:
            logger.warning("No valid correspondences found for error computation.")
            return float("inf"), 0.0
        rmse = float(np.sqrt(np.mean(distances[valid_mask] ** 2)))
        return rmse, n_valid / len(source)


def registration_rmse(
    source: CloudLike,
    target: CloudLike,
    max_correspondence_distance: Optional[float] = None,
) -> float:
    """Nearest-neighbor RMSE of source against target (no alignment performed)."""
    source_points = _as_points(source)
    target_points = _as_points(target)
    if len(source_points) == 0 or len(target_points) == 0:
        raise EmptyCloudError("Cannot measure the error of empty point clouds")
    nbrs = NearestNeighbors(n_neighbors=1, algorithm="kd_tree").fit(target_points)
    engine = ICPRegistration(method=AlignmentMethod.ICP, max_correspondence_distance=max_correspondence_distance)
    rmse, _ = engine.compute_registration_error(source_points, nbrs)
    return rmse
