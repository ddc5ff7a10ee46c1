"""
Pytest configuration and shared fixtures for the outage pipeline tests.

This file provides:
- Device fixtures (tight groups, chains, scattered points)
- Index helpers
- Stub collaborators (failing clusterer, recording sink, failing legacy generator)
"""

import math
from typing import List, Sequence

import pytest
import pandas as pd

from src.spatial.devices import Device
from src.spatial.geometry import destination_point
from src.spatial.index import BallTreeNeighborIndex


# ==============================================================================
# Device Builders
# ==============================================================================

ORIGIN = (40.7128, -74.0060)  # Lower Manhattan


def make_group(
    prefix: str,
    center=ORIGIN,
    count: int = 5,
    radius_m: float = 40.0,
    is_offline: bool = True,
    can_aggregate: bool = True,
) -> List[Device]:
    """``count`` devices on a circle of ``radius_m`` around ``center``."""
    devices = []
    for i in range(count):
        lat, lng = destination_point(center, radius_m, 360.0 * i / count)
        devices.append(Device(
            device_id=f"{prefix}-{i}",
            lat=lat,
            lng=lng,
            is_offline=is_offline,
            can_aggregate=can_aggregate,
        ))
    return devices


def make_chain(prefix: str, count: int, spacing_m: float, start=ORIGIN, bearing: float = 90.0) -> List[Device]:
    """``count`` offline devices in a straight line, ``spacing_m`` apart."""
    devices = []
    for i in range(count):
        lat, lng = destination_point(start, spacing_m * i, bearing)
        devices.append(Device(device_id=f"{prefix}-{i}", lat=lat, lng=lng, is_offline=True))
    return devices


def make_grid(prefix: str, rows: int, cols: int, spacing_m: float, start=ORIGIN) -> List[Device]:
    devices = []
    for r in range(rows):
        row_start = destination_point(start, spacing_m * r, 0.0)
        for c in range(cols):
            lat, lng = destination_point(row_start, spacing_m * c, 90.0)
            devices.append(Device(device_id=f"{prefix}-{r}-{c}", lat=lat, lng=lng, is_offline=True))
    return devices


def indexed(devices: Sequence[Device]) -> BallTreeNeighborIndex:
    index = BallTreeNeighborIndex()
    index.initialize(list(devices))
    return index


# ==============================================================================
# Device Fixtures
# ==============================================================================

@pytest.fixture
def tight_group() -> List[Device]:
    """5 offline devices within 100 m of each other."""
    return make_group("tight", count=5, radius_m=40.0)


@pytest.fixture
def two_groups() -> List[Device]:
    """Two well-separated groups of 6 offline devices each (~5 km apart)."""
    far_center = destination_point(ORIGIN, 5_000.0, 45.0)
    return make_group("a", count=6) + make_group("b", center=far_center, count=6)


@pytest.fixture
def scattered() -> List[Device]:
    """Offline devices 2 km apart from each other."""
    return make_chain("lone", count=6, spacing_m=2_000.0)


@pytest.fixture
def devices_df(two_groups) -> pd.DataFrame:
    return pd.DataFrame([
        {
            "device_id": d.device_id,
            "lat": d.lat,
            "lng": d.lng,
            "is_offline": d.is_offline,
            "can_aggregate": d.can_aggregate,
        }
        for d in two_groups
    ])


@pytest.fixture
def unit_square():
    return [(0.0, 0.0), (0.0, 1.0), (1.0, 1.0), (1.0, 0.0)]


# ==============================================================================
# Stub Collaborators
# ==============================================================================

class FailingClusterer:
    """Clusterer that always raises, to exercise the fallback path."""

    def __init__(self, exc: Exception = RuntimeError("index exploded")):
        self.exc = exc
        self.calls = 0

    def cluster_with_labels(self, points, config, index):
        self.calls += 1
        raise self.exc


class FailingLegacy:
    def __init__(self):
        self.calls = 0

    def generate(self, devices):
        self.calls += 1
        raise RuntimeError("legacy generator unavailable")


class RecordingLegacy:
    """Legacy generator that records its input and returns nothing."""

    def __init__(self):
        self.inputs = []

    def generate(self, devices):
        self.inputs.append(list(devices))
        return []


@pytest.fixture
def failing_clusterer() -> FailingClusterer:
    return FailingClusterer()


@pytest.fixture
def recording_legacy() -> RecordingLegacy:
    return RecordingLegacy()


# ==============================================================================
# Test Utilities
# ==============================================================================

def assert_approx_equal(a: float, b: float, tolerance: float = 0.01):
    """Assert two floats are approximately equal."""
    assert math.isclose(a, b, abs_tol=tolerance), f"{a} != {b} (tolerance {tolerance})"
