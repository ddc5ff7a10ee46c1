"""
Unit Tests for the Legacy Proximity Generator (src/outage/legacy.py)
"""

import pytest

from src.outage.legacy import LegacyHullGenerator, ProximityHullGenerator, hexagon_around
from src.spatial.geometry import destination_point, haversine_m, point_in_polygon
from tests.conftest import ORIGIN, make_group


class TestProximityHullGenerator:
    """Hexagonal buffers around proximity groups."""

    def test_protocol(self):
        assert isinstance(ProximityHullGenerator(), LegacyHullGenerator)

    def test_group_becomes_hexagon(self):
        group = make_group("g", count=5)
        polygons = ProximityHullGenerator(buffer_radius_m=200).generate(group)
        assert len(polygons) == 1
        polygon = polygons[0]
        assert len(polygon.coordinates) == 6
        assert polygon.confidence == pytest.approx(0.5)
        assert point_in_polygon(polygon.center, polygon.coordinates)

    def test_fewer_than_three_offline(self):
        devices = make_group("off", count=2) + make_group("on", count=5, is_offline=False)
        assert ProximityHullGenerator().generate(devices) == []

    def test_separate_groups(self):
        far = destination_point(ORIGIN, 3_000.0, 90.0)
        farther = destination_point(ORIGIN, 6_000.0, 90.0)
        devices = (
            make_group("a", count=3)
            + make_group("b", center=far, count=4)
            + make_group("c", center=farther, count=2)
        )
        polygons = ProximityHullGenerator(buffer_radius_m=200).generate(devices)
        assert [p.device_count for p in polygons] == [3, 4]
        assert [p.cluster_index for p in polygons] == [0, 1]

    def test_invalid_radius(self):
        with pytest.raises(ValueError):
            ProximityHullGenerator(buffer_radius_m=0)


class TestHexagon:
    def test_vertices_at_radius(self):
        for vertex in hexagon_around(ORIGIN, 500.0):
            assert haversine_m(ORIGIN, vertex) == pytest.approx(500.0, rel=0.02)
