"""
DBSCAN density clustering over a shared neighbor index.

This module provides:
1. Config validation (``eps > 0``, ``min_pts >= 1``) as a pure check
2. Deterministic DBSCAN with iterative seed-list expansion
3. Per-run metrics (core/border/noise counts, query statistics)
4. Partitioned, batch and benchmark runs fanned out over a thread pool

Per-run point state lives in parallel arrays addressed by the point's
position in the run input, so concurrent runs over the same devices never
share mutable state. The index itself is only read during a run.

Partitioned runs do not evaluate density-reachability across partition
boundaries: a chain of points that forms one cluster in a global run can
come back as several clusters when the chain is split between partitions.
Neighborhood sizes are still computed against the whole index, so core
point classification matches the global run.
"""

from __future__ import annotations

import json
import logging
import math
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, asdict
from enum import IntEnum
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .devices import Device, is_eligible
from .index import NeighborIndex

logger = logging.getLogger(__name__)

NOISE_LABEL = -1

Cluster = List[Device]
EligibilityFilter = Callable[[Device], bool]


class PointStatus(IntEnum):
    """Per-run state of one point."""
    UNVISITED = 0
    VISITED = 1
    NOISE = 2
    CORE = 3
    BORDER = 4


@dataclass(frozen=True)
class DBSCANConfig:
    """DBSCAN parameters plus advisory performance thresholds."""

    eps: float = 500.0
    """Maximum neighbor distance in meters."""

    min_pts: int = 5
    """Neighborhood size required for a core point."""

    count_self: bool = True
    """Whether a point counts toward its own neighborhood size, as in standard
    DBSCAN. When False only the other eligible points within ``eps`` count,
    the noise test ``neighbors < min_pts`` with the point itself excluded."""

    max_clustering_time: float = 0.050
    """Advisory run-time target in seconds; exceeding it logs a warning."""

    log_detailed_metrics: bool = True
    """Whether to log the detailed per-run analysis at debug level."""

    def validated(self) -> "DBSCANConfig":
        """
        Return ``self`` if valid.

        Raises:
            ValueError: If ``eps <= 0`` or ``min_pts < 1``
        """
        if not validate_config(self):
            raise ValueError(
                f"Invalid clustering config: eps={self.eps}, min_pts={self.min_pts}. "
                "eps must be > 0 and min_pts must be >= 1."
            )
        return self


DEFAULT_CONFIG = DBSCANConfig()


def validate_config(config: DBSCANConfig) -> bool:
    """Pure validity check; callers must reject invalid configs before running."""
    eps = config.eps
    valid = (
        isinstance(eps, (int, float))
        and math.isfinite(eps)
        and eps > 0
        and isinstance(config.min_pts, (int, np.integer))
        and config.min_pts >= 1
    )
    if not valid:
        logger.error(f"Invalid DBSCAN config: eps={eps}, min_pts={config.min_pts}")
    return valid


@dataclass
class ClusteringMetrics:
    """Observability counters for one run. Never used for control flow."""

    total_points: int = 0
    clusters: int = 0
    noise_points: int = 0
    core_points: int = 0
    border_points: int = 0
    avg_cluster_size: float = 0.0
    clustering_time_sec: float = 0.0
    neighbor_queries: int = 0
    avg_neighbors_per_query: float = 0.0

    @property
    def noise_ratio(self) -> float:
        return self.noise_points / self.total_points if self.total_points else 0.0

    def to_dict(self) -> Dict[str, float]:
        data = asdict(self)
        data["noise_ratio"] = self.noise_ratio
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def combine(cls, parts: Sequence["ClusteringMetrics"]) -> "ClusteringMetrics":
        """Aggregate metrics from independent runs (e.g. partitions)."""
        combined = cls()
        total_neighbors = 0.0
        for part in parts:
            combined.total_points += part.total_points
            combined.clusters += part.clusters
            combined.noise_points += part.noise_points
            combined.core_points += part.core_points
            combined.border_points += part.border_points
            combined.neighbor_queries += part.neighbor_queries
            combined.clustering_time_sec = max(combined.clustering_time_sec, part.clustering_time_sec)
            total_neighbors += part.avg_neighbors_per_query * part.neighbor_queries
        clustered = combined.total_points - combined.noise_points
        combined.avg_cluster_size = clustered / combined.clusters if combined.clusters else 0.0
        if combined.neighbor_queries:
            combined.avg_neighbors_per_query = total_neighbors / combined.neighbor_queries
        return combined


@dataclass
class ClusteringResult:
    """Clusters plus per-point labels and statuses (input order)."""

    clusters: List[Cluster]
    labels: np.ndarray
    statuses: np.ndarray
    metrics: ClusteringMetrics
    devices: List[Device] = field(default_factory=list)

    @property
    def noise(self) -> List[Device]:
        return [d for d, label in zip(self.devices, self.labels) if label == NOISE_LABEL]

    def to_dataframe(self) -> pd.DataFrame:
        """One row per input device with its cluster label and status."""
        return pd.DataFrame({
            "device_id": [d.device_id for d in self.devices],
            "lat": [d.lat for d in self.devices],
            "lng": [d.lng for d in self.devices],
            "cluster": self.labels.astype(int),
            "status": [PointStatus(int(s)).name.lower() for s in self.statuses],
        })


class DBSCANClusterer:
    """
    DBSCAN over a :class:`~src.spatial.index.NeighborIndex`.

    Points are processed in input order and cluster indices are assigned in
    discovery order, so identical input and index answers give identical
    output. The instance holds no per-run state and may be shared between
    threads.
    """

    def __init__(self, eligible: EligibilityFilter = is_eligible):
        self.eligible = eligible

    def cluster(
        self,
        points: Sequence[Device],
        config: DBSCANConfig = DEFAULT_CONFIG,
        index: Optional[NeighborIndex] = None,
    ) -> List[Cluster]:
        """Cluster ``points``; noise is implicit (points in no cluster)."""
        return self.cluster_with_labels(points, config, index).clusters

    def cluster_with_labels(
        self,
        points: Sequence[Device],
        config: DBSCANConfig = DEFAULT_CONFIG,
        index: Optional[NeighborIndex] = None,
    ) -> ClusteringResult:
        """
        Run DBSCAN and return clusters with per-point labels.

        Args:
            points: Devices to cluster (ids must be unique within the run)
            config: Validated clustering configuration
            index: Initialized neighbor index covering at least ``points``

        Returns:
            ClusteringResult; empty input returns immediately without
            touching the index.
        """
        points = list(points)
        n = len(points)
        metrics = ClusteringMetrics(total_points=n)

        if n == 0:
            logger.info("DBSCAN: no devices provided for clustering")
            return ClusteringResult(
                clusters=[],
                labels=np.empty(0, dtype=np.int64),
                statuses=np.empty(0, dtype=np.int8),
                metrics=metrics,
            )
        if index is None:
            raise ValueError("A neighbor index is required for non-empty input")

        start = time.perf_counter()
        logger.info(
            f"DBSCAN clustering started with {n} devices "
            f"(eps={config.eps:.0f}m, min_pts={config.min_pts})"
        )

        status = np.full(n, PointStatus.UNVISITED, dtype=np.int8)
        labels = np.full(n, NOISE_LABEL, dtype=np.int64)
        position: Dict[str, int] = {p.device_id: i for i, p in enumerate(points)}
        neighbor_total = 0

        def neighbors_of(i: int) -> List[Device]:
            nonlocal neighbor_total
            origin = points[i]
            found = [
                candidate
                for candidate in index.query(origin.coordinate, config.eps)
                if candidate.device_id != origin.device_id and self.eligible(candidate)
            ]
            metrics.neighbor_queries += 1
            neighbor_total += len(found)
            return found

        self_weight = 1 if config.count_self else 0

        def is_core(neighbors: List[Device]) -> bool:
            return len(neighbors) + self_weight >= config.min_pts

        clusters: List[Cluster] = []
        cluster_id = 0

        for i in range(n):
            if status[i] != PointStatus.UNVISITED:
                continue

            status[i] = PointStatus.VISITED
            neighbors = neighbors_of(i)

            if not is_core(neighbors):
                status[i] = PointStatus.NOISE
                continue

            status[i] = PointStatus.CORE
            labels[i] = cluster_id
            members = [points[i]]

            seeds = list(neighbors)
            in_seeds = {d.device_id for d in seeds}
            cursor = 0
            while cursor < len(seeds):
                seed = seeds[cursor]
                cursor += 1

                j = position.get(seed.device_id)
                if j is None:
                    # Indexed but not part of this run (e.g. another partition)
                    continue

                if status[j] == PointStatus.NOISE:
                    status[j] = PointStatus.BORDER
                    labels[j] = cluster_id
                    members.append(points[j])
                    continue

                if status[j] != PointStatus.UNVISITED:
                    continue

                status[j] = PointStatus.VISITED
                labels[j] = cluster_id
                members.append(points[j])

                seed_neighbors = neighbors_of(j)
                if is_core(seed_neighbors):
                    status[j] = PointStatus.CORE
                    for neighbor in seed_neighbors:
                        if neighbor.device_id not in in_seeds:
                            in_seeds.add(neighbor.device_id)
                            seeds.append(neighbor)
                else:
                    status[j] = PointStatus.BORDER

            clusters.append(members)
            logger.debug(f"Cluster {cluster_id} formed with {len(members)} devices")
            cluster_id += 1

        elapsed = time.perf_counter() - start
        metrics.clusters = len(clusters)
        metrics.core_points = int(np.count_nonzero(status == PointStatus.CORE))
        metrics.border_points = int(np.count_nonzero(status == PointStatus.BORDER))
        metrics.noise_points = int(np.count_nonzero(status == PointStatus.NOISE))
        metrics.clustering_time_sec = elapsed
        metrics.avg_cluster_size = (
            sum(len(c) for c in clusters) / len(clusters) if clusters else 0.0
        )
        metrics.avg_neighbors_per_query = (
            neighbor_total / metrics.neighbor_queries if metrics.neighbor_queries else 0.0
        )

        _log_results(metrics, config)

        return ClusteringResult(
            clusters=clusters,
            labels=labels,
            statuses=status,
            metrics=metrics,
            devices=points,
        )


def _log_results(metrics: ClusteringMetrics, config: DBSCANConfig) -> None:
    logger.info(
        f"DBSCAN completed: {metrics.total_points} points, {metrics.clusters} clusters, "
        f"{metrics.core_points} core, {metrics.border_points} border, "
        f"{metrics.noise_points} noise in {metrics.clustering_time_sec:.3f}s"
    )

    if metrics.clustering_time_sec > config.max_clustering_time:
        logger.warning(
            f"DBSCAN clustering exceeded target time: "
            f"{metrics.clustering_time_sec:.3f}s > {config.max_clustering_time:.3f}s"
        )

    if metrics.clusters == 0:
        logger.warning(
            f"No clusters found - consider adjusting eps ({config.eps:.0f}m) "
            f"or min_pts ({config.min_pts})"
        )
    elif metrics.noise_ratio > 0.5:
        logger.warning(f"High noise ratio ({metrics.noise_ratio:.1%}) - consider increasing eps")

    if config.log_detailed_metrics and logger.isEnabledFor(logging.DEBUG):
        logger.debug(f"DBSCAN metrics: {metrics.to_json()}")


# -----------------------------
# Concurrent runs
# -----------------------------

def partition_points(points: Sequence[Device], partitions: int) -> List[List[Device]]:
    """
    Split ``points`` into ``partitions`` contiguous, disjoint chunks.

    Chunk sizes differ by at most one; empty chunks are dropped, so fewer
    than ``partitions`` chunks come back when there are fewer points.
    """
    if partitions < 1:
        raise ValueError(f"partitions must be >= 1, got {partitions}")
    points = list(points)
    base, extra = divmod(len(points), partitions)
    chunks: List[List[Device]] = []
    start = 0
    for i in range(partitions):
        size = base + (1 if i < extra else 0)
        if size:
            chunks.append(points[start:start + size])
        start += size
    return chunks


def cluster_batch(
    point_sets: Sequence[Sequence[Device]],
    config: DBSCANConfig = DEFAULT_CONFIG,
    index: Optional[NeighborIndex] = None,
    *,
    max_workers: Optional[int] = None,
    clusterer: Optional[DBSCANClusterer] = None,
) -> List[ClusteringResult]:
    """
    Cluster independent point sets concurrently.

    Workers only read the shared index and write their own result, and the
    results come back in the order of ``point_sets`` regardless of
    completion order.
    """
    if not point_sets:
        logger.warning("No device sets provided for batch clustering")
        return []

    clusterer = clusterer or DBSCANClusterer()
    start = time.perf_counter()
    workers = max_workers or len(point_sets)

    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="dbscan") as pool:
        futures = [
            pool.submit(clusterer.cluster_with_labels, points, config, index)
            for points in point_sets
        ]
        results = [future.result() for future in futures]

    logger.info(
        f"Batch clustering of {len(point_sets)} device sets completed in "
        f"{time.perf_counter() - start:.3f}s"
    )
    return results


def cluster_partitioned(
    points: Sequence[Device],
    config: DBSCANConfig = DEFAULT_CONFIG,
    index: Optional[NeighborIndex] = None,
    *,
    partitions: int = 4,
    clusterer: Optional[DBSCANClusterer] = None,
) -> ClusteringResult:
    """
    Partitioned DBSCAN: each chunk clustered independently against the index.

    Clusters are concatenated in partition order and relabelled so indices
    stay unique. Clusters that would merge across a partition boundary in a
    global run are returned separately.
    """
    points = list(points)
    chunks = partition_points(points, partitions)
    if len(chunks) <= 1:
        return (clusterer or DBSCANClusterer()).cluster_with_labels(points, config, index)

    results = cluster_batch(chunks, config, index, max_workers=len(chunks), clusterer=clusterer)

    clusters: List[Cluster] = []
    labels: List[np.ndarray] = []
    statuses: List[np.ndarray] = []
    offset = 0
    for result in results:
        clusters.extend(result.clusters)
        shifted = result.labels.copy()
        shifted[shifted != NOISE_LABEL] += offset
        labels.append(shifted)
        statuses.append(result.statuses)
        offset += len(result.clusters)

    metrics = ClusteringMetrics.combine([r.metrics for r in results])
    logger.info(
        f"Partitioned clustering ({len(chunks)} partitions) produced {len(clusters)} clusters"
    )
    return ClusteringResult(
        clusters=clusters,
        labels=np.concatenate(labels),
        statuses=np.concatenate(statuses),
        metrics=metrics,
        devices=points,
    )


def benchmark(
    points: Sequence[Device],
    index: NeighborIndex,
    configs: Sequence[DBSCANConfig],
    *,
    max_workers: Optional[int] = None,
) -> List[Tuple[DBSCANConfig, float, int]]:
    """
    Run every config concurrently over the same points.

    Returns:
        ``(config, seconds, cluster_count)`` rows sorted by time
    """
    if not configs:
        logger.warning("No configurations provided for benchmark")
        return []

    clusterer = DBSCANClusterer()

    def _timed(config: DBSCANConfig) -> Tuple[DBSCANConfig, float, int]:
        start = time.perf_counter()
        clusters = clusterer.cluster(points, config, index)
        return config, time.perf_counter() - start, len(clusters)

    with ThreadPoolExecutor(max_workers=max_workers or len(configs), thread_name_prefix="bench") as pool:
        rows = list(pool.map(_timed, configs))

    rows.sort(key=lambda row: row[1])
    optimal = next((row for row in rows if row[2] > 0), None)
    if optimal is not None:
        logger.info(
            f"Optimal config: eps={optimal[0].eps:.0f}, min_pts={optimal[0].min_pts} "
            f"({optimal[1]:.3f}s)"
        )
    return rows


__all__ = [
    "Cluster",
    "ClusteringMetrics",
    "ClusteringResult",
    "DBSCANClusterer",
    "DBSCANConfig",
    "DEFAULT_CONFIG",
    "NOISE_LABEL",
    "PointStatus",
    "benchmark",
    "cluster_batch",
    "cluster_partitioned",
    "partition_points",
    "validate_config",
]
