"""
Unit Tests for DBSCAN Clustering (src/spatial/dbscan.py)

Tests the reference scenarios, clustering invariants, determinism,
partitioned/batch runs and config validation.
"""

import logging

import numpy as np
import pytest

from src.spatial.dbscan import (
    ClusteringMetrics,
    DBSCANClusterer,
    DBSCANConfig,
    NOISE_LABEL,
    PointStatus,
    benchmark,
    cluster_batch,
    cluster_partitioned,
    partition_points,
    validate_config,
)
from src.spatial.devices import Device
from src.spatial.geometry import haversine_m
from tests.conftest import ORIGIN, indexed, make_chain, make_group


# ==============================================================================
# Reference Scenarios
# ==============================================================================

class TestScenarios:
    """Small, fully specified inputs."""

    def test_five_close_devices_form_one_cluster(self, tight_group):
        result = DBSCANClusterer().cluster_with_labels(
            tight_group, DBSCANConfig(eps=500, min_pts=5), indexed(tight_group)
        )
        assert len(result.clusters) == 1
        assert {d.device_id for d in result.clusters[0]} == {d.device_id for d in tight_group}
        assert result.metrics.noise_points == 0

    def test_min_pts_above_group_size_gives_noise(self, tight_group):
        result = DBSCANClusterer().cluster_with_labels(
            tight_group, DBSCANConfig(eps=500, min_pts=6), indexed(tight_group)
        )
        assert result.clusters == []
        assert result.metrics.noise_points == 5
        assert all(label == NOISE_LABEL for label in result.labels)

    def test_excluding_self_from_density(self, tight_group):
        config = DBSCANConfig(eps=500, min_pts=5, count_self=False)
        clusters = DBSCANClusterer().cluster(tight_group, config, indexed(tight_group))
        # Each point only has 4 other neighbors
        assert clusters == []

    def test_empty_input_skips_index(self):
        result = DBSCANClusterer().cluster_with_labels([], DBSCANConfig(), index=None)
        assert result.clusters == []
        assert result.metrics.total_points == 0

    def test_missing_index_rejected(self, tight_group):
        with pytest.raises(ValueError):
            DBSCANClusterer().cluster(tight_group, DBSCANConfig(), index=None)

    def test_two_groups(self, two_groups):
        clusters = DBSCANClusterer().cluster(two_groups, DBSCANConfig(eps=200, min_pts=3), indexed(two_groups))
        assert len(clusters) == 2
        assert {d.device_id[0] for d in clusters[0]} == {"a"}
        assert {d.device_id[0] for d in clusters[1]} == {"b"}

    def test_scattered_is_all_noise(self, scattered):
        result = DBSCANClusterer().cluster_with_labels(
            scattered, DBSCANConfig(eps=500, min_pts=2), indexed(scattered)
        )
        assert result.clusters == []
        assert len(result.noise) == len(scattered)


# ==============================================================================
# Eligibility
# ==============================================================================

class TestEligibility:
    """Neighborhoods only count offline, aggregatable devices."""

    def test_online_neighbors_ignored(self):
        offline = make_group("off", count=3)
        online = make_group("on", count=5, is_offline=False)
        index = indexed(offline + online)
        clusters = DBSCANClusterer().cluster(offline, DBSCANConfig(eps=500, min_pts=4), index)
        assert clusters == []

    def test_non_aggregatable_neighbors_ignored(self):
        ok = make_group("ok", count=3)
        index = indexed(ok + make_group("no", count=4, can_aggregate=False))
        clusters = DBSCANClusterer().cluster(ok, DBSCANConfig(eps=500, min_pts=4), index)
        assert clusters == []

    def test_custom_filter(self):
        devices = make_group("on", count=5, is_offline=False)
        clusterer = DBSCANClusterer(eligible=lambda d: True)
        clusters = clusterer.cluster(devices, DBSCANConfig(eps=500, min_pts=5), indexed(devices))
        assert len(clusters) == 1


# ==============================================================================
# Invariants
# ==============================================================================

class TestInvariants:
    """Properties that must hold for any input."""

    @pytest.fixture
    def mixed(self):
        rng = np.random.default_rng(7)
        devices = []
        for i in range(150):
            lat = ORIGIN[0] + rng.normal(0, 0.01)
            lng = ORIGIN[1] + rng.normal(0, 0.01)
            devices.append(Device(f"d{i}", lat, lng, is_offline=bool(rng.random() < 0.8)))
        return devices

    def test_each_point_in_one_cluster_or_noise(self, mixed):
        result = DBSCANClusterer().cluster_with_labels(mixed, DBSCANConfig(eps=300, min_pts=4), indexed(mixed))
        seen = [d.device_id for cluster in result.clusters for d in cluster]
        assert len(seen) == len(set(seen))
        noise_ids = {d.device_id for d in result.noise}
        assert noise_ids.isdisjoint(seen)
        assert len(seen) + len(noise_ids) == len(mixed)

    def test_labels_match_clusters(self, mixed):
        result = DBSCANClusterer().cluster_with_labels(mixed, DBSCANConfig(eps=300, min_pts=4), indexed(mixed))
        position = {d.device_id: i for i, d in enumerate(mixed)}
        for cluster_id, cluster in enumerate(result.clusters):
            for device in cluster:
                assert result.labels[position[device.device_id]] == cluster_id

    def test_every_cluster_has_core_point(self, mixed):
        config = DBSCANConfig(eps=300, min_pts=4)
        result = DBSCANClusterer().cluster_with_labels(mixed, config, indexed(mixed))
        position = {d.device_id: i for i, d in enumerate(mixed)}
        eligible = [d for d in mixed if d.is_eligible]

        for cluster in result.clusters:
            cores = [d for d in cluster if result.statuses[position[d.device_id]] == PointStatus.CORE]
            assert cores
            for core in cores:
                neighbors = [
                    other for other in eligible
                    if other.device_id != core.device_id
                    and haversine_m(core.coordinate, other.coordinate) <= config.eps
                ]
                assert len(neighbors) + 1 >= config.min_pts

    def test_statuses_are_final(self, mixed):
        result = DBSCANClusterer().cluster_with_labels(mixed, DBSCANConfig(eps=300, min_pts=4), indexed(mixed))
        allowed = {PointStatus.CORE, PointStatus.BORDER, PointStatus.NOISE}
        assert {PointStatus(int(s)) for s in result.statuses} <= allowed
        counts = result.metrics
        assert counts.core_points + counts.border_points + counts.noise_points == len(mixed)

    def test_deterministic(self, mixed):
        index = indexed(mixed)
        config = DBSCANConfig(eps=300, min_pts=4)
        first = DBSCANClusterer().cluster(mixed, config, index)
        second = DBSCANClusterer().cluster(mixed, config, index)
        assert [[d.device_id for d in c] for c in first] == [[d.device_id for d in c] for c in second]

    def test_noise_becomes_border(self):
        # The first chain end is marked noise, then claimed by its core neighbor
        devices = make_chain("c", count=4, spacing_m=100.0)
        result = DBSCANClusterer().cluster_with_labels(
            devices, DBSCANConfig(eps=150, min_pts=3), indexed(devices)
        )
        assert len(result.clusters) == 1
        assert result.statuses[0] == PointStatus.BORDER
        assert result.statuses[3] == PointStatus.BORDER
        assert result.statuses[1] == PointStatus.CORE

    def test_dataframe_export(self, tight_group):
        result = DBSCANClusterer().cluster_with_labels(tight_group, DBSCANConfig(eps=500, min_pts=5), indexed(tight_group))
        df = result.to_dataframe()
        assert list(df.columns) == ["device_id", "lat", "lng", "cluster", "status"]
        assert (df["cluster"] == 0).all()


# ==============================================================================
# Partitioned And Batch Runs
# ==============================================================================

class TestConcurrentRuns:
    """Thread pool fan-out over a shared index."""

    def test_partition_points(self):
        devices = make_chain("c", count=10, spacing_m=10.0)
        chunks = partition_points(devices, 4)
        assert [len(c) for c in chunks] == [3, 3, 2, 2]
        assert [d for c in chunks for d in c] == devices
        assert len(partition_points(devices[:2], 4)) == 2
        with pytest.raises(ValueError):
            partition_points(devices, 0)

    def test_split_chain_forms_two_clusters(self):
        chain = make_chain("c", count=8, spacing_m=100.0)
        index = indexed(chain)
        config = DBSCANConfig(eps=150, min_pts=3)

        global_run = DBSCANClusterer().cluster(chain, config, index)
        split_run = cluster_partitioned(chain, config, index, partitions=2)

        assert len(global_run) == 1
        assert len(split_run.clusters) == 2
        assert sorted(split_run.labels.tolist()) == [0] * 4 + [1] * 4

    def test_single_partition_matches_global(self, two_groups):
        index = indexed(two_groups)
        config = DBSCANConfig(eps=200, min_pts=3)
        global_run = DBSCANClusterer().cluster_with_labels(two_groups, config, index)
        one = cluster_partitioned(two_groups, config, index, partitions=1)
        assert np.array_equal(global_run.labels, one.labels)

    def test_partitioned_metrics_combined(self, two_groups):
        index = indexed(two_groups)
        result = cluster_partitioned(two_groups, DBSCANConfig(eps=200, min_pts=3), index, partitions=2)
        assert result.metrics.total_points == len(two_groups)
        assert result.metrics.clusters == len(result.clusters) == 2

    def test_batch_preserves_order(self, two_groups, tight_group):
        devices = two_groups + tight_group
        index = indexed(devices)
        results = cluster_batch(
            [tight_group, two_groups, []], DBSCANConfig(eps=200, min_pts=3), index, max_workers=3
        )
        assert [r.metrics.total_points for r in results] == [5, 12, 0]

    def test_batch_empty(self):
        assert cluster_batch([], DBSCANConfig()) == []

    def test_benchmark_sorted_by_time(self, two_groups):
        configs = [DBSCANConfig(eps=200, min_pts=3), DBSCANConfig(eps=50, min_pts=10)]
        rows = benchmark(two_groups, indexed(two_groups), configs)
        assert len(rows) == 2
        assert rows[0][1] <= rows[1][1]
        found = {row[0]: row[2] for row in rows}
        assert found[configs[0]] == 2
        assert found[configs[1]] == 0


# ==============================================================================
# Configuration
# ==============================================================================

class TestConfig:
    """Validation and metrics helpers."""

    @pytest.mark.parametrize("eps, min_pts, valid", [
        (0, 5, False),
        (500, 0, False),
        (500, 5, True),
        (-1, 5, False),
        (float("nan"), 5, False),
        (0.5, 1, True),
    ])
    def test_validate_config(self, eps, min_pts, valid):
        assert validate_config(DBSCANConfig(eps=eps, min_pts=min_pts)) is valid

    def test_validated_raises(self):
        with pytest.raises(ValueError, match="eps"):
            DBSCANConfig(eps=0, min_pts=5).validated()
        config = DBSCANConfig()
        assert config.validated() is config

    def test_defaults(self):
        config = DBSCANConfig()
        assert config.eps == 500.0
        assert config.min_pts == 5
        assert config.max_clustering_time == pytest.approx(0.05)

    def test_slow_run_warns(self, tight_group, caplog):
        config = DBSCANConfig(eps=500, min_pts=5, max_clustering_time=0.0)
        with caplog.at_level(logging.WARNING, logger="src.spatial.dbscan"):
            DBSCANClusterer().cluster(tight_group, config, indexed(tight_group))
        assert "exceeded target time" in caplog.text

    def test_metrics_combine(self):
        a = ClusteringMetrics(total_points=10, clusters=2, noise_points=2, neighbor_queries=10,
                              avg_neighbors_per_query=3.0)
        b = ClusteringMetrics(total_points=6, clusters=1, noise_points=0, neighbor_queries=6,
                              avg_neighbors_per_query=1.0)
        combined = ClusteringMetrics.combine([a, b])
        assert combined.total_points == 16
        assert combined.clusters == 3
        assert combined.avg_cluster_size == pytest.approx(14 / 3)
        assert combined.avg_neighbors_per_query == pytest.approx(36 / 16)
        assert combined.noise_ratio == pytest.approx(2 / 16)
