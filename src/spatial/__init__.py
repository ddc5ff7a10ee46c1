"""
src/spatial: Devices, neighbor indexes, DBSCAN clustering, geometry and hulls.
"""

from .devices import Device, coerce_devices, devices_to_dataframe, is_eligible
from .dbscan import (
    ClusteringMetrics,
    ClusteringResult,
    DBSCANClusterer,
    DBSCANConfig,
    DEFAULT_CONFIG,
    NOISE_LABEL,
    PointStatus,
    benchmark,
    cluster_batch,
    cluster_partitioned,
    partition_points,
    validate_config,
)
from .hulls import (
    HullCache,
    HullConfig,
    HullResult,
    generate_hull,
    generate_hulls_batch,
    remove_duplicates,
)
from .index import (
    BallTreeNeighborIndex,
    H3NeighborIndex,
    IndexStats,
    NeighborIndex,
    build_index,
)

__all__ = [
    "BallTreeNeighborIndex",
    "ClusteringMetrics",
    "ClusteringResult",
    "DBSCANClusterer",
    "DBSCANConfig",
    "DEFAULT_CONFIG",
    "Device",
    "H3NeighborIndex",
    "HullCache",
    "HullConfig",
    "HullResult",
    "IndexStats",
    "NOISE_LABEL",
    "NeighborIndex",
    "PointStatus",
    "benchmark",
    "build_index",
    "cluster_batch",
    "cluster_partitioned",
    "coerce_devices",
    "devices_to_dataframe",
    "generate_hull",
    "generate_hulls_batch",
    "is_eligible",
    "partition_points",
    "remove_duplicates",
    "validate_config",
]
