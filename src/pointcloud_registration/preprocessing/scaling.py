"""
Scale resolution between the source and the target models.

The scale either comes from an explicit ratio or from two measurements of the
same feature taken on each model (ratio = target / source). It is applied to
the source about its own centroid so scaling alone never moves the cloud.
"""

import math
from typing import Optional, Tuple

import numpy as np

from ..exceptions import InvalidMeasurementError, InvalidScaleRatioError
from ..utils.logging import setup_logger
from .point_cloud import PointCloud

logger = setup_logger(__name__)

DEFAULT_SCALE_RATIO = 1.0
MIN_MEASUREMENT = 1e-12


def resolve_scale(
    scale_ratio: Optional[float] = None,
    source_measurement: float = 1.0,
    target_measurement: float = 1.0,
) -> float:
    """
    Resolve the scale factor applied to the source cloud.

    An explicit ratio takes precedence unless it is left at its default
    (None or 1.0), in which case the ratio is target_measurement / source_measurement.
    With every argument at its default the result is 1.0.

    Args:
        scale_ratio: Explicit ratio target size / source size
        source_measurement: Measurement made on the source model
        target_measurement: Same measurement made on the target model

    Returns:
        Positive scale factor

    Raises:
        InvalidScaleRatioError: If the explicit ratio is not a positive finite number
        InvalidMeasurementError: If the source measurement is (near) zero or the
            measured ratio is not positive
    """
    if scale_ratio is not None and scale_ratio != DEFAULT_SCALE_RATIO:
        ratio = float(scale_ratio)
        if not math.isfinite(ratio) or ratio <= 0.0:
            raise InvalidScaleRatioError(f"Scale ratio must be > 0, got {scale_ratio}")
        logger.debug(f"Using explicit scale ratio {ratio}")
        return ratio

    source_measurement = float(source_measurement)
    target_measurement = float(target_measurement)
    if not math.isfinite(source_measurement) or abs(source_measurement) < MIN_MEASUREMENT:
        raise InvalidMeasurementError(
            f"Source measurement must be a non-zero number, got {source_measurement}"
        )
    ratio = target_measurement / source_measurement
    if not math.isfinite(ratio) or ratio <= 0.0:
        raise InvalidMeasurementError(
            f"Measurements must give a positive ratio, got "
            f"{target_measurement} / {source_measurement} = {ratio}"
        )
    if ratio != DEFAULT_SCALE_RATIO:
        logger.debug(
            f"Scale ratio from measurements: {target_measurement} / {source_measurement} = {ratio}"
        )
    return ratio


def scaling_transform(center: np.ndarray, factor: float) -> np.ndarray:
    """
    4x4 matrix scaling uniformly by `factor` about `center`.

    p' = center + factor * (p - center)
    """
    center = np.asarray(center, dtype=np.float64).reshape(3)
    T = np.eye(4)
    T[:3, :3] *= factor
    T[:3, 3] = center * (1.0 - factor)
    return T


def apply_scale(cloud: PointCloud, factor: float) -> Tuple[PointCloud, np.ndarray]:
    """
    Scale a cloud about its centroid.

    Args:
        cloud: Cloud to scale (left untouched)
        factor: Positive scale factor

    Returns:
        Tuple of (scaled_cloud, scale_transform). The transform maps the input
        coordinates to the scaled ones and is the identity when factor == 1.
    """
    if factor == 1.0 or cloud.is_empty:
        return cloud, np.eye(4)

    T = scaling_transform(cloud.centroid, factor)
    scaled = cloud.points @ T[:3, :3].T + T[:3, 3]
    logger.info(f"Scaled source cloud by {factor:.6g} about its centroid")
    return cloud.with_points(scaled, normals=cloud.normals), T
