"""
Unit Tests for Neighbor Indexes (src/spatial/index.py)

Both backends must agree on radius queries: boundary inclusive, origin
included, no eligibility filtering.
"""

import pytest

from src.spatial.devices import Device
from src.spatial.geometry import destination_point, haversine_m
from src.spatial.index import (
    BallTreeNeighborIndex,
    H3NeighborIndex,
    NeighborIndex,
    build_index,
)
from tests.conftest import ORIGIN, make_chain, make_grid


BACKENDS = [BallTreeNeighborIndex, H3NeighborIndex]


@pytest.fixture(params=BACKENDS, ids=["balltree", "h3"])
def index_cls(request):
    return request.param


# ==============================================================================
# Radius Queries
# ==============================================================================

class TestRadiusQuery:
    """Radius query contract, for every backend."""

    def test_protocol(self, index_cls):
        assert isinstance(index_cls(), NeighborIndex)

    def test_uninitialized_returns_empty(self, index_cls):
        assert index_cls().query(ORIGIN, 1_000.0) == []

    def test_includes_origin_and_online_devices(self, index_cls):
        online = Device("online", *destination_point(ORIGIN, 50.0, 0.0), is_offline=False)
        origin = Device("origin", *ORIGIN, is_offline=True)
        index = index_cls()
        index.initialize([origin, online])

        ids = {d.device_id for d in index.query(ORIGIN, 100.0)}
        assert ids == {"origin", "online"}

    def test_matches_brute_force(self, index_cls):
        devices = make_grid("g", rows=8, cols=8, spacing_m=120.0)
        index = index_cls()
        index.initialize(devices)

        center = devices[27].coordinate
        for radius in (50.0, 130.0, 250.0, 600.0):
            expected = {
                d.device_id for d in devices
                if haversine_m(center, d.coordinate) <= radius - 1e-6
            }
            got = {d.device_id for d in index.query(center, radius)}
            assert expected <= got
            for device_id in got - expected:
                device = next(d for d in devices if d.device_id == device_id)
                assert haversine_m(center, device.coordinate) == pytest.approx(radius, abs=1e-3)

    def test_invalid_coordinates_skipped(self, index_cls):
        devices = make_chain("c", count=3, spacing_m=10.0) + [Device("bad", 95.0, 0.0, is_offline=True)]
        index = index_cls()
        index.initialize(devices)
        assert index.size == 3

    def test_reinitialize_replaces_points(self, index_cls):
        index = index_cls()
        index.initialize(make_chain("first", count=3, spacing_m=10.0))
        index.initialize(make_chain("second", count=2, spacing_m=10.0))
        ids = {d.device_id for d in index.query(ORIGIN, 100.0)}
        assert ids == {"second-0", "second-1"}

    def test_stats_recorded(self, index_cls):
        index = index_cls()
        index.initialize(make_chain("c", count=4, spacing_m=10.0))
        index.query(ORIGIN, 50.0)
        index.query(ORIGIN, 50.0)
        assert index.stats.indexed_points == 4
        assert index.stats.query_count == 2
        assert index.stats.to_dict()["avg_query_time_sec"] >= 0.0


# ==============================================================================
# Factory
# ==============================================================================

class TestBuildIndex:
    """Backend factory."""

    def test_known_backends(self):
        assert isinstance(build_index("balltree"), BallTreeNeighborIndex)
        h3_index = build_index("h3", resolution=8)
        assert isinstance(h3_index, H3NeighborIndex)
        assert h3_index.resolution == 8

    def test_unknown_backend(self):
        with pytest.raises(ValueError, match="Unknown index backend"):
            build_index("quadtree")

    def test_invalid_h3_resolution(self):
        with pytest.raises(ValueError):
            H3NeighborIndex(resolution=16)
