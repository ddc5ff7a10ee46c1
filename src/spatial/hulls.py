"""
Convex hull generation for device clusters.

One hull per cluster. Coordinates are deduplicated before hulling, hulls
are optionally checked for convexity, and batches run under a concurrency
bound with results returned in cluster-index order.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import threading
import time
from dataclasses import dataclass
from typing import Hashable, List, Optional, Sequence, Tuple

from cachetools import TTLCache

from .devices import Device
from .geometry import Coordinate, convex_hull, is_convex, polygon_perimeter_m

logger = logging.getLogger(__name__)


# -----------------------------
# Configuration
# -----------------------------

@dataclass(frozen=True)
class HullConfig:
    """Hull generation parameters."""

    minimum_points: int = 3
    """Clusters (and deduplicated coordinate sets) smaller than this yield no hull."""

    max_processing_time: float = 0.010
    """Advisory per-hull time in seconds; exceeding it logs a warning."""

    enable_geometric_validation: bool = True
    """Check hull convexity after construction."""

    coordinate_precision: float = 1e-8
    """Coordinates closer than this in both axes are treated as duplicates."""


DEFAULT_HULL_CONFIG = HullConfig()


@dataclass
class HullResult:
    """A hull plus the cluster it came from."""

    cluster_index: int
    hull: List[Coordinate]
    cluster: List[Device]
    processing_time_sec: float = 0.0
    perimeter_m: float = 0.0
    is_valid: bool = True


# -----------------------------
# Hull construction
# -----------------------------

def remove_duplicates(coords: Sequence[Coordinate], precision: float = 1e-8) -> List[Coordinate]:
    """Drop coordinates within ``precision`` of an earlier one, keeping first occurrence."""
    if precision <= 0:
        return list(dict.fromkeys(coords))

    seen = set()
    unique: List[Coordinate] = []
    for lat, lng in coords:
        key = (round(lat / precision), round(lng / precision))
        if key in seen:
            continue
        seen.add(key)
        unique.append((lat, lng))
    return unique


def generate_hull(
    cluster: Sequence[Device],
    config: HullConfig = DEFAULT_HULL_CONFIG,
) -> List[Coordinate]:
    """
    Convex hull of a cluster's member coordinates.

    Returns:
        Hull vertices, or ``[]`` when the cluster or its deduplicated
        coordinates number fewer than ``config.minimum_points``.
    """
    if len(cluster) < config.minimum_points:
        logger.debug(f"Cluster too small for hull: {len(cluster)} < {config.minimum_points}")
        return []

    start = time.perf_counter()
    coords = remove_duplicates([d.coordinate for d in cluster], config.coordinate_precision)
    if len(coords) < config.minimum_points:
        logger.debug(f"Only {len(coords)} unique coordinates after deduplication")
        return []

    hull = convex_hull(coords)
    if len(hull) < config.minimum_points:
        return []

    if config.enable_geometric_validation and not is_convex(hull):
        logger.warning(f"Generated hull with {len(hull)} vertices failed convexity check")

    elapsed = time.perf_counter() - start
    if elapsed > config.max_processing_time:
        logger.warning(
            f"Hull generation exceeded target time: {elapsed:.4f}s for {len(cluster)} devices"
        )
    return hull


def _build_result(index: int, cluster: List[Device], config: HullConfig) -> HullResult:
    start = time.perf_counter()
    hull = generate_hull(cluster, config)
    return HullResult(
        cluster_index=index,
        hull=hull,
        cluster=cluster,
        processing_time_sec=time.perf_counter() - start,
        perimeter_m=polygon_perimeter_m(hull) if hull else 0.0,
        is_valid=bool(hull) and is_convex(hull),
    )


async def generate_hulls_batch(
    clusters: Sequence[Sequence[Device]],
    max_concurrency: Optional[int] = 4,
    config: HullConfig = DEFAULT_HULL_CONFIG,
    cache: Optional["HullCache"] = None,
) -> List[HullResult]:
    """
    Build hulls for many clusters concurrently.

    At most ``max_concurrency`` hulls are computed at once (``None`` means
    one task per cluster with no bound). Results are ordered by cluster
    index and include clusters that produced no hull (``hull == []``), so
    callers can count them.
    """
    if max_concurrency is not None and max_concurrency < 1:
        raise ValueError(f"max_concurrency must be >= 1, got {max_concurrency}")
    if not clusters:
        return []

    semaphore = asyncio.Semaphore(max_concurrency or len(clusters))
    start = time.perf_counter()

    async def _one(index: int, cluster: List[Device]) -> HullResult:
        if cache is not None:
            cached = cache.get(cluster)
            if cached is not None:
                return HullResult(
                    cluster_index=index,
                    hull=list(cached),
                    cluster=cluster,
                    perimeter_m=polygon_perimeter_m(cached) if cached else 0.0,
                    is_valid=bool(cached),
                )
        async with semaphore:
            result = await asyncio.to_thread(_build_result, index, cluster, config)
        if cache is not None:
            cache.put(cluster, result.hull)
        return result

    results = await asyncio.gather(*(
        _one(i, list(cluster)) for i, cluster in enumerate(clusters)
    ))
    results = sorted(results, key=lambda r: r.cluster_index)

    built = sum(1 for r in results if r.hull)
    logger.info(
        f"Generated {built} hulls from {len(clusters)} clusters in "
        f"{time.perf_counter() - start:.3f}s (concurrency {max_concurrency})"
    )
    return results


# -----------------------------
# Caching
# -----------------------------

def cluster_fingerprint(cluster: Sequence[Device]) -> str:
    """Stable key over member ids and coordinates, independent of member order."""
    digest = hashlib.sha1()
    for device in sorted(cluster, key=lambda d: d.device_id):
        digest.update(f"{device.device_id}:{device.lat:.8f}:{device.lng:.8f};".encode())
    return digest.hexdigest()


class HullCache:
    """TTL cache of hulls keyed by cluster fingerprint."""

    def __init__(self, maxsize: int = 4096, ttl: float = 300.0):
        self._cache: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl)
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def _key(self, cluster: Sequence[Device]) -> Hashable:
        return cluster_fingerprint(cluster)

    def get(self, cluster: Sequence[Device]) -> Optional[Tuple[Coordinate, ...]]:
        key = self._key(cluster)
        with self._lock:
            hull = self._cache.get(key)
            if hull is None:
                self.misses += 1
            else:
                self.hits += 1
            return hull

    def put(self, cluster: Sequence[Device], hull: Sequence[Coordinate]) -> None:
        key = self._key(cluster)
        with self._lock:
            self._cache[key] = tuple(hull)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()
            self.hits = 0
            self.misses = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)


__all__ = [
    "DEFAULT_HULL_CONFIG",
    "HullCache",
    "HullConfig",
    "HullResult",
    "cluster_fingerprint",
    "generate_hull",
    "generate_hulls_batch",
    "remove_duplicates",
]
