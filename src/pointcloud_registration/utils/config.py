"""
Configuration management for pointcloud-registration.

Provides a typed pydantic model and YAML loader with sensible defaults.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Literal, Any, Dict

from pydantic import BaseModel, Field, ValidationError, field_validator
import yaml

from ..alignment.estimators import AlignmentMethod


# -----------------------
# Typed config structures
# -----------------------


class PreprocessingConfig(BaseModel):
    voxel_size: float = Field(
        default=0.1,
        description="Leaf size of the voxel grid applied to both clouds before alignment",
    )


class ScaleConfig(BaseModel):
    ratio: Optional[float] = Field(
        default=None,
        description="Scale ratio between the two models (= target size / source size). "
        "None or 1.0 means: derive it from the measurements",
    )
    source_measurement: float = Field(
        default=1.0,
        description="Measurement made on the source model (same unit as target_measurement)",
    )
    target_measurement: float = Field(
        default=1.0,
        description="Measurement made on the target model (same unit as source_measurement)",
    )


class AlignmentMultiscaleConfig(BaseModel):
    enabled: bool = Field(
        default=False,
        description="Enable coarse-to-fine alignment (one pass per voxel level)",
    )
    levels: int = Field(default=3, ge=1, description="Number of voxel levels, finest last")
    factor: float = Field(
        default=2.0,
        gt=1.0,
        description="Voxel size multiplier between two consecutive levels",
    )


class AlignmentConfig(BaseModel):
    method: str = Field(
        default="gicp",
        description="gicp | icp | icp_point_to_plane (aliases such as GICP or ICP_normals accepted)",
    )
    max_iterations: int = Field(default=50, ge=1)
    tolerance: float = Field(
        default=1e-8,
        description="Convergence tolerance on the change in mean squared error",
    )
    max_correspondence_distance: Optional[float] = Field(
        default=None,
        description="Reject correspondences farther than this (None = keep all pairs)",
    )
    convergence_translation_epsilon: float = Field(
        default=1e-6,
        description="Translation step (model units) below which ICP is considered converged",
    )
    convergence_rotation_epsilon_deg: float = Field(
        default=1e-3,
        description="Rotation step (degrees) below which ICP is considered converged",
    )
    k_neighbors: int = Field(
        default=20,
        ge=3,
        description="Neighbors used for local covariance and normal estimation",
    )
    covariance_epsilon: float = Field(
        default=1e-3,
        description="Smallest eigenvalue of the plane-regularized GICP covariances",
    )
    n_jobs: Optional[int] = Field(
        default=None,
        description="Worker threads for nearest-neighbor queries (None = 1, -1 = all cores)",
    )
    multiscale: AlignmentMultiscaleConfig = Field(default_factory=AlignmentMultiscaleConfig)

    @field_validator("method")
    @classmethod
    def _canonical_method(cls, value: str) -> str:
        return AlignmentMethod.from_name(value).value


class ExportConfig(BaseModel):
    las_scale: float = Field(
        default=1e-4,
        gt=0.0,
        description="Coordinate quantization used when a new LAS/LAZ header is written",
    )


class TimelineConfig(BaseModel):
    show: bool = Field(default=True, description="Print the duration of each pipeline stage")


class LoggingConfig(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(default="INFO")
    file: Optional[str] = Field(default=None)


class AppConfig(BaseModel):
    preprocessing: PreprocessingConfig = Field(default_factory=PreprocessingConfig)
    scale: ScaleConfig = Field(default_factory=ScaleConfig)
    alignment: AlignmentConfig = Field(default_factory=AlignmentConfig)
    export: ExportConfig = Field(default_factory=ExportConfig)
    timeline: TimelineConfig = Field(default_factory=TimelineConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# -----------------------
# Loader
# -----------------------


def _project_root() -> Path:
    """
    Resolve the repository root directory.

    File is at: repo_root/src/pointcloud_registration/utils/config.py
    parents sequence:
      0 -> .../src/pointcloud_registration/utils
      1 -> .../src/pointcloud_registration
      2 -> .../src
      3 -> repo_root
    """
    return Path(__file__).resolve().parents[3]


def load_config(path: Optional[str | Path] = None, *, allow_missing: bool = True) -> AppConfig:
    """
    Load configuration from YAML into a typed AppConfig.

    Search order when path is None:
    1) repo_root/config/default.yaml
    2) if missing and allow_missing=True: return default AppConfig()

    Args:
        path: Explicit YAML file path.
        allow_missing: If True, returns defaults when file missing; otherwise raises.

    Returns:
        AppConfig instance
    """
    cfg_path: Path
    if path is None:
        cfg_path = _project_root() / "config" / "default.yaml"
    else:
        cfg_path = Path(path)

    if not cfg_path.exists():
        if allow_missing:
            return AppConfig()
        raise FileNotFoundError(f"Config file not found: {cfg_path}")

    with cfg_path.open("r", encoding="utf-8") as f:
        raw: Dict[str, Any] = yaml.safe_load(f) or {}

    try:
        return AppConfig.model_validate(raw)
    except ValidationError as e:
        raise ValueError(f"Invalid configuration in {cfg_path}: {e}")
