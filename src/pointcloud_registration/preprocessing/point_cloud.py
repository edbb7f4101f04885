"""
In-memory point cloud container.

A PointCloud owns read-only coordinate arrays plus the provenance needed for
diagnostics. Every processing step (downsampling, scaling, transforming)
returns a new instance instead of editing the arrays in place.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional, Tuple

import numpy as np


def _readonly(array: np.ndarray) -> np.ndarray:
    array = np.array(array, copy=True)
    array.flags.writeable = False
    return array


@dataclass(frozen=True, eq=False)
class PointCloud:
    """
    Ordered set of 3D points with optional normals and per-point attributes.

    Attributes:
        points: (N, 3) float64 coordinates
        normals: Optional (N, 3) unit normals
        attributes: Optional per-point arrays (colors, intensity, classification, ...)
        source_path: File the cloud was read from, if any
    """

    points: np.ndarray
    normals: Optional[np.ndarray] = None
    attributes: Mapping[str, np.ndarray] = field(default_factory=dict)
    source_path: Optional[str] = None

    def __post_init__(self):
        points = np.asarray(self.points, dtype=np.float64)
        if points.size == 0:
            points = points.reshape(0, 3)
        if points.ndim != 2 or points.shape[1] != 3:
            raise ValueError(f"points must be (N, 3), got {points.shape}")
        object.__setattr__(self, "points", _readonly(points))

        if self.normals is not None:
            normals = np.asarray(self.normals, dtype=np.float64)
            if normals.shape != points.shape:
                raise ValueError(
                    f"normals must match points shape {points.shape}, got {normals.shape}"
                )
            object.__setattr__(self, "normals", _readonly(normals))

        attributes = {}
        for name, values in self.attributes.items():
            values = np.asarray(values)
            if len(values) != len(points):
                raise ValueError(
                    f"attribute '{name}' has {len(values)} values for {len(points)} points"
                )
            attributes[name] = _readonly(values)
        object.__setattr__(self, "attributes", MappingProxyType(attributes))

    def __len__(self) -> int:
        return int(self.points.shape[0])

    @property
    def point_count(self) -> int:
        return len(self)

    @property
    def is_empty(self) -> bool:
        return len(self) == 0

    @property
    def has_normals(self) -> bool:
        return self.normals is not None

    @property
    def bounds(self) -> Tuple[np.ndarray, np.ndarray]:
        """Axis-aligned bounding box as (min_xyz, max_xyz)."""
        if self.is_empty:
            nan = np.full(3, np.nan)
            return nan, nan.copy()
        return self.points.min(axis=0), self.points.max(axis=0)

    @property
    def extent(self) -> np.ndarray:
        lo, hi = self.bounds
        return hi - lo

    @property
    def centroid(self) -> np.ndarray:
        if self.is_empty:
            return np.full(3, np.nan)
        return self.points.mean(axis=0)

    def with_points(
        self,
        points: np.ndarray,
        normals: Optional[np.ndarray] = None,
        keep_attributes: bool = True,
    ) -> "PointCloud":
        """Return a new cloud sharing provenance (and optionally attributes)."""
        return PointCloud(
            points=points,
            normals=normals,
            attributes=dict(self.attributes) if keep_attributes else {},
            source_path=self.source_path,
        )

    def describe(self) -> str:
        lo, hi = self.bounds
        name = self.source_path or "<memory>"
        return (
            f"{name}: {len(self):,} points, "
            f"bounds min=({lo[0]:.3f}, {lo[1]:.3f}, {lo[2]:.3f}) "
            f"max=({hi[0]:.3f}, {hi[1]:.3f}, {hi[2]:.3f})"
        )
