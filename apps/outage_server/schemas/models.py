"""Pydantic models for the outage polygon HTTP server."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator


class DeviceIn(BaseModel):
    """One device as received over HTTP."""

    device_id: str = Field(..., alias="deviceId")
    lat: float = Field(..., description="Latitude in decimal degrees")
    lng: float = Field(..., description="Longitude in decimal degrees")
    is_offline: bool = Field(False, alias="isOffline")
    can_aggregate: bool = Field(True, alias="canAggregate")

    model_config = {"populate_by_name": True}


class ViewportIn(BaseModel):
    min_lat: float = Field(..., alias="minLat")
    max_lat: float = Field(..., alias="maxLat")
    min_lng: float = Field(..., alias="minLng")
    max_lng: float = Field(..., alias="maxLng")
    zoom_level: int = Field(12, alias="zoomLevel", ge=0, le=22)

    model_config = {"populate_by_name": True}

    @model_validator(mode="after")
    def _check_bounds(self) -> "ViewportIn":
        if self.min_lat > self.max_lat or self.min_lng > self.max_lng:
            raise ValueError("Viewport minimums must not exceed maximums")
        return self


class OutagePolygonsRequest(BaseModel):
    devices: List[DeviceIn]
    profile: Optional[str] = Field(
        default=None, description="Configuration profile; defaults to OUTAGE_PROFILE or 'default'"
    )
    viewport: Optional[ViewportIn] = None


class PolygonOut(BaseModel):
    id: str
    cluster_index: int = Field(..., alias="clusterIndex")
    confidence: float
    coordinates: List[List[float]]
    device_ids: List[str] = Field(..., alias="deviceIds")
    device_count: int = Field(..., alias="deviceCount")
    center: List[float]
    bounding_radius_m: float = Field(..., alias="boundingRadiusM")
    timestamp: str

    model_config = {"populate_by_name": True}


class OutagePolygonsResponse(BaseModel):
    strategy: Optional[str]
    polygons: List[PolygonOut]
    metrics: Dict[str, Any]


class ClusterDevicesRequest(BaseModel):
    devices: List[DeviceIn]
    eps: float = Field(500.0, description="Neighborhood radius in meters")
    min_pts: int = Field(5, alias="minPts")

    model_config = {"populate_by_name": True}


class ClusterOut(BaseModel):
    cluster_index: int = Field(..., alias="clusterIndex")
    device_ids: List[str] = Field(..., alias="deviceIds")

    model_config = {"populate_by_name": True}


class ClusterDevicesResponse(BaseModel):
    clusters: List[ClusterOut]
    noise: List[str]
    metrics: Dict[str, Any]
