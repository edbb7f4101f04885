"""
Coarse-to-fine alignment.

Runs the ICP engine on a pyramid of voxel sizes, coarsest first. Each pass is
seeded with the transform of the previous one so the fine pass only has to
refine a nearly aligned pair.
"""

from typing import List, Optional

import numpy as np

from ..preprocessing.downsampling import check_voxel_size, voxel_downsample
from ..preprocessing.point_cloud import PointCloud
from ..utils.logging import setup_logger
from .fine_registration import AlignmentResult, ICPRegistration

logger = setup_logger(__name__)


def voxel_pyramid(voxel_size: float, levels: int = 3, factor: float = 2.0) -> List[float]:
    """Voxel sizes from coarsest to finest, ending at voxel_size."""
    voxel_size = check_voxel_size(voxel_size)
    if levels < 1:
        raise ValueError(f"levels must be >= 1, got {levels}")
    return [voxel_size * factor ** level for level in reversed(range(levels))]


def align_multiscale(
    engine: ICPRegistration,
    source: PointCloud,
    target: PointCloud,
    voxel_sizes: List[float],
    initial_transform: Optional[np.ndarray] = None,
) -> AlignmentResult:
    """
    Align full-resolution clouds with one ICP pass per voxel size.

    Args:
        engine: Configured ICP engine
        source: Source cloud (full resolution)
        target: Target cloud (full resolution)
        voxel_sizes: Voxel sizes, coarsest first
        initial_transform: Optional 4x4 seed for the first pass

    Returns:
        AlignmentResult of the finest pass. A diverged pass ends the pyramid and
        its (invalid) result is returned.
    """
    if not voxel_sizes:
        raise ValueError("voxel_sizes must not be empty")

    transform = initial_transform
    result = None
    for level, voxel_size in enumerate(voxel_sizes, start=1):
        src = voxel_downsample(source, voxel_size)
        tgt = voxel_downsample(target, voxel_size)
        logger.info(
            "Multiscale level %d/%d (voxel %.4g): %d source / %d target points",
            level,
            len(voxel_sizes),
            voxel_size,
            len(src),
            len(tgt),
        )
        result = engine.align(src, tgt, initial_transform=transform)
        if not result.is_valid:
            logger.error("Multiscale level %d diverged; stopping.", level)
            break
        transform = np.array(result.transform)
    return result
