"""
Strategy selection for the outage polygon pipeline.

The number of eligible devices picks one of four strategies. Each maps to
a DBSCAN config, a partition count and a hull fan-out:

    n < small_max                       -> SMALL    (eps 500 m, min_pts 5)
    small_max <= n < medium_max         -> MEDIUM   (eps 300 m, min_pts 3, 6 hull workers)
    medium_max <= n < optimized_max     -> LARGE    (eps 400 m, min_pts 5, 4 partitions, 8 hull workers)
    n >= optimized_max or disabled      -> FALLBACK (legacy proximity generator)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from ..spatial.dbscan import DBSCANConfig

logger = logging.getLogger(__name__)


class Strategy(Enum):
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class StrategyPlan:
    """How one strategy clusters and hulls."""

    dbscan: DBSCANConfig
    """Clustering parameters."""

    partitions: int = 1
    """Contiguous input chunks clustered concurrently (1 = global run)."""

    hull_concurrency: Optional[int] = None
    """Maximum concurrent hull computations (None = one task per cluster)."""


def _default_plans() -> Dict[Strategy, StrategyPlan]:
    return {
        Strategy.SMALL: StrategyPlan(
            dbscan=DBSCANConfig(eps=500.0, min_pts=5, max_clustering_time=0.050),
        ),
        Strategy.MEDIUM: StrategyPlan(
            dbscan=DBSCANConfig(eps=300.0, min_pts=3, max_clustering_time=0.100),
            hull_concurrency=6,
        ),
        Strategy.LARGE: StrategyPlan(
            dbscan=DBSCANConfig(eps=400.0, min_pts=5, max_clustering_time=0.200),
            partitions=4,
            hull_concurrency=8,
        ),
    }


@dataclass
class PipelineConfig:
    """
    Everything the pipeline needs to choose and run a strategy.

    All thresholds are counts of eligible devices.
    """

    use_optimized_clustering: bool = True
    """When False every run goes to the legacy generator."""

    small_max: int = 100
    """Counts below this use SMALL."""

    medium_max: int = 10_000
    """Counts below this (and >= small_max) use MEDIUM."""

    max_optimized_threshold: int = 100_000
    """Counts at or above this are routed to the legacy generator."""

    plans: Dict[Strategy, StrategyPlan] = field(default_factory=_default_plans)
    """Per-strategy clustering plan (FALLBACK has none)."""

    index_backend: str = "balltree"
    """Neighbor index backend name, see ``src.spatial.index.INDEX_BACKENDS``."""

    index_options: Dict[str, Any] = field(default_factory=dict)
    """Keyword arguments for the index constructor (e.g. ``resolution`` for h3)."""

    legacy_buffer_radius_m: float = 200.0
    """Hexagon radius used by the legacy generator."""

    hull_cache_ttl_sec: float = 300.0
    """Lifetime of cached hulls; 0 disables the cache."""

    hull_cache_size: int = 4096

    def __post_init__(self):
        if not 0 < self.small_max <= self.medium_max <= self.max_optimized_threshold:
            raise ValueError(
                "Strategy thresholds must satisfy 0 < small_max <= medium_max <= "
                f"max_optimized_threshold, got {self.small_max}, {self.medium_max}, "
                f"{self.max_optimized_threshold}"
            )
        for strategy, plan in self.plans.items():
            if plan.partitions < 1:
                raise ValueError(f"{strategy.value}: partitions must be >= 1")
            plan.dbscan.validated()

    def plan_for(self, strategy: Strategy) -> StrategyPlan:
        if strategy is Strategy.FALLBACK:
            raise ValueError("The fallback strategy has no clustering plan")
        return self.plans[strategy]

    @classmethod
    def from_profile(cls, profile: Mapping[str, Any]) -> "PipelineConfig":
        """
        Build a config from a loaded YAML profile.

        Missing sections keep their defaults. Recognised sections:
        ``strategy``, ``small``, ``medium``, ``large``, ``index``,
        ``legacy`` and ``hull_cache``.

        Raises:
            ValueError: If a value is invalid
        """
        profile = profile or {}
        thresholds = profile.get("strategy", {}) or {}
        plans = _default_plans()

        for strategy in (Strategy.SMALL, Strategy.MEDIUM, Strategy.LARGE):
            section = profile.get(strategy.value)
            if not section:
                continue
            base = plans[strategy]
            dbscan = replace(
                base.dbscan,
                eps=float(section.get("eps", base.dbscan.eps)),
                min_pts=int(section.get("min_pts", base.dbscan.min_pts)),
                max_clustering_time=float(
                    section.get("max_clustering_time", base.dbscan.max_clustering_time)
                ),
            )
            plans[strategy] = StrategyPlan(
                dbscan=dbscan,
                partitions=int(section.get("partitions", base.partitions)),
                hull_concurrency=section.get("hull_concurrency", base.hull_concurrency),
            )

        index = profile.get("index", {}) or {}
        legacy = profile.get("legacy", {}) or {}
        cache = profile.get("hull_cache", {}) or {}
        index_options = {k: v for k, v in index.items() if k != "backend"}
        logger.debug(f"Building pipeline config from profile sections: {sorted(profile)}")

        return cls(
            use_optimized_clustering=bool(thresholds.get("use_optimized_clustering", True)),
            small_max=int(thresholds.get("small_max", 100)),
            medium_max=int(thresholds.get("medium_max", 10_000)),
            max_optimized_threshold=int(thresholds.get("max_optimized_threshold", 100_000)),
            plans=plans,
            index_backend=str(index.get("backend", "balltree")),
            index_options=index_options,
            legacy_buffer_radius_m=float(legacy.get("buffer_radius_m", 200.0)),
            hull_cache_ttl_sec=float(cache.get("ttl_sec", 300.0)),
            hull_cache_size=int(cache.get("maxsize", 4096)),
        )


DEFAULT_PIPELINE_CONFIG = PipelineConfig()


def select_strategy(eligible_count: int, config: PipelineConfig = DEFAULT_PIPELINE_CONFIG) -> Strategy:
    """Map an eligible device count to a strategy."""
    if not config.use_optimized_clustering:
        return Strategy.FALLBACK
    if eligible_count < config.small_max:
        return Strategy.SMALL
    if eligible_count < config.medium_max:
        return Strategy.MEDIUM
    if eligible_count < config.max_optimized_threshold:
        return Strategy.LARGE
    return Strategy.FALLBACK
