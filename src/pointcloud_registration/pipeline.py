"""
Registration pipeline

Chains the stages of a pairwise registration:
load source/target -> resolve and apply scale -> voxel downsampling ->
ICP alignment -> transform and export of the full-resolution source.
Every stage is timed by a Timeline without affecting the results.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Optional, Union

import numpy as np

from .alignment.estimators import AlignmentMethod
from .alignment.fine_registration import AlignmentResult, AlignmentStatus, ICPRegistration
from .alignment.multiscale import align_multiscale, voxel_pyramid
from .alignment.transforms import format_transform, freeze, has_nan
from .exceptions import RegistrationError
from .preprocessing.downsampling import check_voxel_size, voxel_downsample
from .preprocessing.loader import PointCloudLoader
from .preprocessing.point_cloud import PointCloud
from .preprocessing.scaling import apply_scale, resolve_scale
from .utils.config import AppConfig
from .utils.export import export_transformed
from .utils.logging import setup_logger
from .utils.timeline import Timeline

logger = setup_logger(__name__)


@dataclass(frozen=True, eq=False)
class RegistrationResult:
    """
    Final outcome of a registration run.

    Attributes:
        transform: 4x4 transform mapping the ORIGINAL source onto the target
            (alignment composed with the scale step)
        alignment: Result of the ICP engine on the scaled, downsampled clouds
        scale: Scale factor applied to the source before alignment
        output_path: Written file, or None when export was skipped
    """

    transform: np.ndarray
    alignment: AlignmentResult
    scale: float
    output_path: Optional[str] = None

    @property
    def is_valid(self) -> bool:
        return not has_nan(self.transform)

    @property
    def status(self) -> AlignmentStatus:
        return self.alignment.status

    @property
    def method(self) -> AlignmentMethod:
        return self.alignment.method


class PointCloudRegistration:
    """
    Pairwise registration of a moving source cloud onto a fixed target cloud.

    Example:
        reg = PointCloudRegistration(load_config())
        reg.load_source_cloud("sfm.ply")
        reg.load_target_cloud("lidar.laz")
        result = reg.align()
        if result.is_valid:
            reg.transform_and_save_cloud(result.transform, "sfm_aligned.ply")
    """

    def __init__(self, config: Optional[AppConfig] = None, loader: Optional[PointCloudLoader] = None):
        self.config = config if config is not None else AppConfig()
        self.loader = loader if loader is not None else PointCloudLoader()
        self.timeline = Timeline()
        self.source_cloud: Optional[PointCloud] = None
        self.target_cloud: Optional[PointCloud] = None

    # ------------------------ Stages ------------------------
    def load_source_cloud(self, path: str) -> PointCloud:
        self.source_cloud = self.timeline.record("load source", self.loader.load, path)
        return self.source_cloud

    def load_target_cloud(self, path: str) -> PointCloud:
        self.target_cloud = self.timeline.record("load target", self.loader.load, path)
        return self.target_cloud

    def resolve_scale(self) -> float:
        scale_cfg = self.config.scale
        return resolve_scale(
            scale_cfg.ratio,
            source_measurement=scale_cfg.source_measurement,
            target_measurement=scale_cfg.target_measurement,
        )

    def validate(self) -> None:
        """Fail fast on invalid voxel size, scale ratio, measurements or method."""
        check_voxel_size(self.config.preprocessing.voxel_size)
        self.resolve_scale()
        AlignmentMethod.from_name(self.config.alignment.method)

    def align(self, method: Optional[Union[str, AlignmentMethod]] = None) -> RegistrationResult:
        """
        Scale, downsample and align the loaded clouds.

        Args:
            method: Overrides config.alignment.method

        Returns:
            RegistrationResult; check `is_valid` before using the transform.
        """
        if self.source_cloud is None or self.target_cloud is None:
            raise RegistrationError("Source and target clouds must be loaded before alignment")

        voxel_size = check_voxel_size(self.config.preprocessing.voxel_size)
        scale = self.resolve_scale()
        engine = ICPRegistration.from_config(self.config.alignment, method=method)
        logger.info(f"Alignment method: {engine.method.value}")

        scaled_source, scale_transform = self.timeline.record(
            "scale", apply_scale, self.source_cloud, scale
        )

        multiscale = self.config.alignment.multiscale
        if multiscale.enabled:
            voxel_sizes = voxel_pyramid(voxel_size, multiscale.levels, multiscale.factor)
            alignment = self.timeline.record(
                "align", align_multiscale, engine, scaled_source, self.target_cloud, voxel_sizes
            )
        else:
            source_ds = self.timeline.record("downsample source", voxel_downsample, scaled_source, voxel_size)
            target_ds = self.timeline.record("downsample target", voxel_downsample, self.target_cloud, voxel_size)
            logger.info(
                f"Downsampled with voxel size {voxel_size}: source {len(self.source_cloud):,} -> "
                f"{len(source_ds):,}, target {len(self.target_cloud):,} -> {len(target_ds):,} points"
            )
            alignment = self.timeline.record("align", engine.align, source_ds, target_ds)

        transform = freeze(np.asarray(alignment.transform) @ scale_transform)
        return RegistrationResult(transform=transform, alignment=alignment, scale=scale)

    def transform_and_save_cloud(self, transform: np.ndarray, output_path: Optional[str]) -> Optional[str]:
        """Apply transform to the full-resolution source and write it (no-op without output_path)."""
        if self.source_cloud is None:
            raise RegistrationError("Source cloud must be loaded before export")
        return self.timeline.record(
            "export",
            export_transformed,
            self.source_cloud,
            transform,
            output_path,
            las_scale=self.config.export.las_scale,
        )

    def show_timeline(self) -> str:
        return self.timeline.emit()

    # ------------------------ Full run ------------------------
    def run(
        self,
        source_path: str,
        target_path: str,
        output_path: Optional[str] = None,
        method: Optional[Union[str, AlignmentMethod]] = None,
    ) -> RegistrationResult:
        """
        Run the whole pipeline.

        Export is skipped when output_path is empty or when the transform is
        invalid (NaN); callers must check `result.is_valid`.
        """
        self.validate()
        if method is not None:
            AlignmentMethod.from_name(method)

        self.load_source_cloud(source_path)
        self.load_target_cloud(target_path)
        logger.info("Point clouds loaded.")

        result = self.align(method)
        logger.info("Alignment %s after %d iterations.", result.status.value, result.alignment.iterations)
        logger.info(format_transform(result.transform))

        if not result.is_valid:
            logger.error("Registration failed: final transform contains NaN; export skipped.")
            return result

        output = self.transform_and_save_cloud(result.transform, output_path)
        return replace(result, output_path=output)
