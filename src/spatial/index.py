"""
Neighbor indexes for radius queries over devices.

The clustering engine only depends on the :class:`NeighborIndex` protocol:

- ``initialize(points)`` rebuilds the index. It must not run while queries
  against the same index are in flight; callers enforce the exclusion.
- ``query(center, radius_m)`` returns every indexed point within
  ``radius_m`` meters of ``center`` (boundary inclusive, unordered). Nothing
  is excluded: removing the query origin and filtering eligibility is the
  caller's job.

Two backends ship with the package:

- :class:`BallTreeNeighborIndex` - scikit-learn BallTree on the haversine metric
- :class:`H3NeighborIndex` - points bucketed by H3 cell, exact distance filter
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections import defaultdict
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional, Protocol, Sequence, runtime_checkable

import h3
import numpy as np
from sklearn.neighbors import BallTree

from .geometry import Coordinate, EARTH_RADIUS_M

logger = logging.getLogger(__name__)

SLOW_QUERY_THRESHOLD_SEC = 0.010


@runtime_checkable
class IndexedPoint(Protocol):
    """Anything with a stable id and a position."""

    device_id: str
    lat: float
    lng: float


@runtime_checkable
class NeighborIndex(Protocol):
    """Spatial index contract consumed by the clustering engine."""

    def initialize(self, points: Sequence[Any]) -> None:
        ...

    def query(self, center: Coordinate, radius_m: float) -> List[Any]:
        ...


@dataclass
class IndexStats:
    """Accumulated query statistics for one index instance."""

    build_time_sec: float = 0.0
    indexed_points: int = 0
    query_count: int = 0
    total_query_time_sec: float = 0.0
    slowest_query_sec: float = 0.0
    slow_queries: int = 0

    @property
    def avg_query_time_sec(self) -> float:
        return self.total_query_time_sec / self.query_count if self.query_count else 0.0

    def to_dict(self) -> Dict[str, float]:
        data = asdict(self)
        data["avg_query_time_sec"] = self.avg_query_time_sec
        return data


class _StatsMixin:
    """Thread-safe query bookkeeping shared by the concrete indexes."""

    def _init_stats(self) -> None:
        self.stats = IndexStats()
        self._stats_lock = threading.Lock()

    def _record_query(self, elapsed: float, candidates: int) -> None:
        with self._stats_lock:
            self.stats.query_count += 1
            self.stats.total_query_time_sec += elapsed
            self.stats.slowest_query_sec = max(self.stats.slowest_query_sec, elapsed)
            if elapsed > SLOW_QUERY_THRESHOLD_SEC:
                self.stats.slow_queries += 1
        if elapsed > SLOW_QUERY_THRESHOLD_SEC:
            logger.warning(
                f"Neighbor query slow: {elapsed:.6f}s for {candidates} candidates"
            )

    def _record_build(self, elapsed: float, count: int) -> None:
        with self._stats_lock:
            self.stats = IndexStats(build_time_sec=elapsed, indexed_points=count)


def _valid_coordinate(lat: float, lng: float) -> bool:
    return (
        math.isfinite(lat) and math.isfinite(lng)
        and -90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0
    )


class BallTreeNeighborIndex(_StatsMixin):
    """
    Haversine BallTree index (O(log n + k) per query).

    Coordinates are converted to radians and radii from meters to radians
    using a spherical Earth of radius 6,371 km.
    """

    def __init__(self, leaf_size: int = 40):
        self.leaf_size = leaf_size
        self._points: List[Any] = []
        self._tree: Optional[BallTree] = None
        self._init_stats()
        self._initialized = False

    @property
    def size(self) -> int:
        return len(self._points)

    def initialize(self, points: Sequence[Any]) -> None:
        start = time.perf_counter()
        valid = [p for p in points if _valid_coordinate(p.lat, p.lng)]
        skipped = len(points) - len(valid)
        if skipped:
            logger.warning(f"Skipped {skipped} points with invalid coordinates while indexing")

        self._points = valid
        if valid:
            coords = np.radians(np.array([[p.lat, p.lng] for p in valid], dtype=float))
            self._tree = BallTree(coords, leaf_size=self.leaf_size, metric="haversine")
        else:
            self._tree = None

        elapsed = time.perf_counter() - start
        self._record_build(elapsed, len(valid))
        self._initialized = True
        logger.info(f"BallTree index built with {len(valid)} points in {elapsed:.3f}s")

    def query(self, center: Coordinate, radius_m: float) -> List[Any]:
        if self._tree is None:
            if not self._initialized:
                logger.warning("Query against an uninitialized BallTree index")
            return []

        start = time.perf_counter()
        target = np.radians(np.array([[center[0], center[1]]], dtype=float))
        indices = self._tree.query_radius(target, r=radius_m / EARTH_RADIUS_M)[0]
        result = [self._points[i] for i in indices]
        self._record_query(time.perf_counter() - start, len(result))
        return result


class H3NeighborIndex(_StatsMixin):
    """
    Points bucketed by H3 cell.

    A query walks the ``grid_disk`` of cells around the center cell, wide
    enough to cover ``radius_m``, and keeps candidates whose haversine
    distance is within the radius.
    """

    def __init__(self, resolution: int = 9):
        if not 0 <= resolution <= 15:
            raise ValueError(f"H3 resolution must be in [0, 15], got {resolution}")
        self.resolution = resolution
        self._buckets: Dict[str, List[int]] = {}
        self._points: List[Any] = []
        self._coords = np.empty((0, 2), dtype=float)
        self._edge_length_m = h3.average_hexagon_edge_length(resolution, unit="m")
        self._init_stats()
        self._initialized = False

    @property
    def size(self) -> int:
        return len(self._points)

    def _steps_for_radius(self, radius_m: float) -> int:
        """Return the number of rings required to cover ``radius_m`` meters."""
        if self._edge_length_m == 0:
            return 1
        # One extra ring covers a center sitting on the edge of its own cell.
        return max(1, int(math.ceil(radius_m / self._edge_length_m)) + 1)

    def initialize(self, points: Sequence[Any]) -> None:
        start = time.perf_counter()
        valid = [p for p in points if _valid_coordinate(p.lat, p.lng)]
        skipped = len(points) - len(valid)
        if skipped:
            logger.warning(f"Skipped {skipped} points with invalid coordinates while indexing")

        buckets: Dict[str, List[int]] = defaultdict(list)
        for i, point in enumerate(valid):
            buckets[h3.latlng_to_cell(point.lat, point.lng, self.resolution)].append(i)

        self._points = valid
        self._buckets = dict(buckets)
        self._coords = np.array([[p.lat, p.lng] for p in valid], dtype=float).reshape(-1, 2)

        elapsed = time.perf_counter() - start
        self._record_build(elapsed, len(valid))
        self._initialized = True
        logger.info(
            f"H3 index built with {len(valid)} points in {len(self._buckets)} cells "
            f"(res {self.resolution}) in {elapsed:.3f}s"
        )

    def query(self, center: Coordinate, radius_m: float) -> List[Any]:
        if not self._points:
            if not self._initialized:
                logger.warning("Query against an uninitialized H3 index")
            return []

        start = time.perf_counter()
        origin = h3.latlng_to_cell(center[0], center[1], self.resolution)
        candidates: List[int] = []
        for cell in h3.grid_disk(origin, self._steps_for_radius(radius_m)):
            candidates.extend(self._buckets.get(cell, ()))

        if not candidates:
            self._record_query(time.perf_counter() - start, 0)
            return []

        idx = np.asarray(candidates, dtype=int)
        distances = haversine_vector_m(center, self._coords[idx])
        result = [self._points[i] for i in idx[distances <= radius_m]]
        self._record_query(time.perf_counter() - start, len(candidates))
        return result


def haversine_vector_m(center: Coordinate, coords: np.ndarray) -> np.ndarray:
    """Vectorised haversine distance from ``center`` to each ``(lat, lng)`` row."""
    lat1 = math.radians(center[0])
    lng1 = math.radians(center[1])
    lat2 = np.radians(coords[:, 0])
    lng2 = np.radians(coords[:, 1])
    h = (
        np.sin((lat2 - lat1) / 2.0) ** 2
        + math.cos(lat1) * np.cos(lat2) * np.sin((lng2 - lng1) / 2.0) ** 2
    )
    return 2.0 * EARTH_RADIUS_M * np.arcsin(np.minimum(1.0, np.sqrt(h)))


INDEX_BACKENDS = {
    "balltree": BallTreeNeighborIndex,
    "h3": H3NeighborIndex,
}


def build_index(backend: str = "balltree", **kwargs: Any) -> NeighborIndex:
    """
    Create an empty index by backend name.

    Raises:
        ValueError: If ``backend`` is unknown
    """
    try:
        factory = INDEX_BACKENDS[backend]
    except KeyError:
        raise ValueError(
            f"Unknown index backend '{backend}'. Available: {', '.join(sorted(INDEX_BACKENDS))}"
        ) from None
    return factory(**kwargs)


__all__ = [
    "BallTreeNeighborIndex",
    "H3NeighborIndex",
    "INDEX_BACKENDS",
    "IndexStats",
    "IndexedPoint",
    "NeighborIndex",
    "build_index",
    "haversine_vector_m",
]
