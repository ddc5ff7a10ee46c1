"""
Data types produced by the outage polygon pipeline.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pandas as pd

from ..spatial.devices import Device
from ..spatial.geometry import BoundingBox, Coordinate, haversine_m


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class OutagePolygon:
    """
    Boundary of one outage region.

    ``coordinates`` is a closed ring with the closing vertex implied (first
    and last are not duplicated).
    """
    coordinates: List[Coordinate]
    cluster_index: int
    confidence: float
    devices: List[Device] = field(default_factory=list)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=_utcnow)

    @property
    def device_count(self) -> int:
        return len(self.devices)

    @property
    def center(self) -> Coordinate:
        """Mean of member coordinates (``(0, 0)`` without members)."""
        if not self.devices:
            return (0.0, 0.0)
        n = len(self.devices)
        return (
            sum(d.lat for d in self.devices) / n,
            sum(d.lng for d in self.devices) / n,
        )

    @property
    def bounding_radius_m(self) -> float:
        """Largest distance from :attr:`center` to a member device."""
        if not self.devices:
            return 0.0
        center = self.center
        return max(haversine_m(center, d.coordinate) for d in self.devices)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "cluster_index": self.cluster_index,
            "confidence": self.confidence,
            "coordinates": [list(c) for c in self.coordinates],
            "device_ids": [d.device_id for d in self.devices],
            "device_count": self.device_count,
            "center": list(self.center),
            "bounding_radius_m": self.bounding_radius_m,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class Viewport:
    """Map viewport handed through to the render sink."""
    min_lat: float
    max_lat: float
    min_lng: float
    max_lng: float
    zoom_level: int = 12

    @property
    def bounds(self) -> BoundingBox:
        return (self.min_lat, self.max_lat, self.min_lng, self.max_lng)

    def contains(self, point: Coordinate) -> bool:
        return self.min_lat <= point[0] <= self.max_lat and self.min_lng <= point[1] <= self.max_lng


@dataclass
class PipelineMetrics:
    """
    Timings and counts for the most recent pipeline run.

    Attributes:
        total_time_sec: Wall time of the whole run
        clustering_time_sec: Time spent in DBSCAN
        hull_time_sec: Time spent generating hulls
        render_time_sec: Time spent in the render sink
        device_count: Devices received
        eligible_count: Devices kept after preparation
        cluster_count: Clusters found (including ones too small for a polygon)
        noise_count: Points left as noise
        core_count: Core points
        border_count: Border points
        polygon_count: Polygons returned
        strategy: Strategy used for the run
        fallback_count: Times this pipeline fell back after a failure
        fallback_reason: Reason for the most recent fallback
    """
    total_time_sec: float = 0.0
    clustering_time_sec: float = 0.0
    hull_time_sec: float = 0.0
    render_time_sec: float = 0.0
    device_count: int = 0
    eligible_count: int = 0
    cluster_count: int = 0
    noise_count: int = 0
    core_count: int = 0
    border_count: int = 0
    polygon_count: int = 0
    strategy: Optional[str] = None
    fallback_count: int = 0
    fallback_reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


@dataclass(frozen=True)
class ProgressUpdate:
    """One progress notification."""
    progress: float
    status: str
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass
class PipelineState:
    """Snapshot of the pipeline as seen by an observer."""
    is_processing: bool = False
    progress: float = 0.0
    status: str = "Ready"
    polygons: List[OutagePolygon] = field(default_factory=list)
    metrics: PipelineMetrics = field(default_factory=PipelineMetrics)


def polygons_to_dataframe(polygons: List[OutagePolygon]) -> pd.DataFrame:
    """One row per polygon with its summary fields."""
    columns = ["id", "cluster_index", "confidence", "device_count", "vertex_count",
               "center_lat", "center_lng", "bounding_radius_m"]
    rows = []
    for polygon in polygons:
        center = polygon.center
        rows.append({
            "id": polygon.id,
            "cluster_index": polygon.cluster_index,
            "confidence": polygon.confidence,
            "device_count": polygon.device_count,
            "vertex_count": len(polygon.coordinates),
            "center_lat": center[0],
            "center_lng": center[1],
            "bounding_radius_m": polygon.bounding_radius_m,
        })
    return pd.DataFrame(rows, columns=columns)
