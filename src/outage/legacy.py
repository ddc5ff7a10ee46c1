"""
Legacy hull generator used as the pipeline's fallback path.

Groups offline devices by simple proximity and draws a hexagonal buffer
around each group's centroid. Groups of fewer than three devices produce no
region, so a single device can never be located from a polygon.
"""

from __future__ import annotations

import logging
import math
from typing import List, Protocol, Sequence, runtime_checkable

from ..spatial.devices import Device
from ..spatial.geometry import Coordinate, haversine_m
from .models import OutagePolygon

logger = logging.getLogger(__name__)

METERS_PER_DEGREE_LAT = 111_000.0
MIN_GROUP_SIZE = 3
HEXAGON_STEP_DEG = 60


@runtime_checkable
class LegacyHullGenerator(Protocol):
    """Fallback generator contract: devices in, polygons out."""

    def generate(self, devices: Sequence[Device]) -> List[OutagePolygon]:
        ...


def hexagon_around(center: Coordinate, radius_m: float) -> List[Coordinate]:
    """Six vertices at 60 degree steps, ``radius_m`` from ``center`` (flat-earth offsets)."""
    lat, lng = center
    lng_scale = METERS_PER_DEGREE_LAT * math.cos(math.radians(lat))
    vertices: List[Coordinate] = []
    for angle in range(0, 360, HEXAGON_STEP_DEG):
        theta = math.radians(angle)
        d_lat = radius_m / METERS_PER_DEGREE_LAT * math.cos(theta)
        d_lng = radius_m / lng_scale * math.sin(theta) if lng_scale else 0.0
        vertices.append((lat + d_lat, lng + d_lng))
    return vertices


class ProximityHullGenerator:
    """
    Greedy proximity grouping plus hexagonal buffers.

    Each unprocessed offline device starts a group and claims every other
    unprocessed offline device within ``2 * buffer_radius_m`` of it. Groups
    with at least three members become polygons with confidence
    ``min(1, size / 10)``.
    """

    def __init__(self, buffer_radius_m: float = 200.0):
        if buffer_radius_m <= 0:
            raise ValueError(f"buffer_radius_m must be > 0, got {buffer_radius_m}")
        self.buffer_radius_m = buffer_radius_m

    def group(self, devices: Sequence[Device]) -> List[List[Device]]:
        max_distance = self.buffer_radius_m * 2
        groups: List[List[Device]] = []
        processed = set()

        for device in devices:
            if device.device_id in processed:
                continue
            group = [device]
            processed.add(device.device_id)

            for other in devices:
                if other.device_id in processed:
                    continue
                if haversine_m(device.coordinate, other.coordinate) <= max_distance:
                    group.append(other)
                    processed.add(other.device_id)

            if len(group) >= MIN_GROUP_SIZE:
                groups.append(group)
        return groups

    def generate(self, devices: Sequence[Device]) -> List[OutagePolygon]:
        offline = [d for d in devices if d.is_offline and d.has_valid_coordinate]
        if len(offline) < MIN_GROUP_SIZE:
            logger.info(f"Legacy generator: {len(offline)} offline devices, no regions")
            return []

        polygons: List[OutagePolygon] = []
        for index, group in enumerate(self.group(offline)):
            n = len(group)
            center = (sum(d.lat for d in group) / n, sum(d.lng for d in group) / n)
            polygons.append(OutagePolygon(
                coordinates=hexagon_around(center, self.buffer_radius_m),
                cluster_index=index,
                confidence=min(1.0, n / 10.0),
                devices=list(group),
            ))

        logger.info(
            f"Legacy generator produced {len(polygons)} polygons from {len(offline)} offline devices"
        )
        return polygons
