"""
Confidence and quality scores for outage clusters.

Per-polygon confidence blends the share of offline members with a size
factor that saturates at ten devices. The run-level quality score rates a
whole clustering result and is used to compare parameter sets.
"""

from dataclasses import dataclass, asdict
from typing import Dict, Sequence
import json
import logging

import numpy as np

from ..spatial.devices import Device

logger = logging.getLogger(__name__)

OFFLINE_WEIGHT = 0.8
SIZE_WEIGHT = 0.2
SIZE_SATURATION = 10


def cluster_confidence(cluster: Sequence[Device]) -> float:
    """
    Confidence that ``cluster`` is a real outage, in [0, 1].

    ``0.8 * offline_ratio + 0.2 * min(1, size / 10)``, clipped.
    """
    size = len(cluster)
    if size == 0:
        return 0.0
    offline_ratio = sum(1 for d in cluster if d.is_offline) / size
    size_factor = min(1.0, size / SIZE_SATURATION)
    return float(np.clip(offline_ratio * OFFLINE_WEIGHT + size_factor * SIZE_WEIGHT, 0.0, 1.0))


def size_variance_score(clusters: Sequence[Sequence[Device]]) -> float:
    """1.0 for equal-size clusters, falling toward 0 as sizes spread out."""
    if not clusters:
        return 0.0
    sizes = np.array([len(c) for c in clusters], dtype=float)
    mean = sizes.mean()
    coefficient = sizes.var() / max(mean, 1.0)
    return max(0.0, 1.0 - coefficient / 2.0)


@dataclass
class QualityBreakdown:
    """
    Components of a clustering quality score.

    Attributes:
        clustering_ratio: Share of points assigned to a cluster
        noise_score: ``1 - noise_ratio``
        size_variance_score: Consistency of cluster sizes
        density_score: Clusters per 100 points, scaled into [0, 1]
        quality: Weighted total
    """
    clustering_ratio: float
    noise_score: float
    size_variance_score: float
    density_score: float
    quality: float

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


def quality_breakdown(
    total_points: int,
    clusters: Sequence[Sequence[Device]],
    noise_points: int,
) -> QualityBreakdown:
    """Score a clustering run; see :func:`clustering_quality_score`."""
    if total_points <= 0:
        return QualityBreakdown(0.0, 0.0, 0.0, 0.0, 0.0)

    clustering_ratio = (total_points - noise_points) / total_points
    noise_score = 1.0 - noise_points / total_points
    variance = size_variance_score(clusters)
    density = min(1.0, (len(clusters) / total_points * 100) / 10.0) if clusters else 0.0

    quality = clustering_ratio * 0.4 + noise_score * 0.3 + variance * 0.2 + density * 0.1
    breakdown = QualityBreakdown(
        clustering_ratio=clustering_ratio,
        noise_score=noise_score,
        size_variance_score=variance,
        density_score=density,
        quality=quality,
    )
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(f"Clustering quality: {breakdown.to_json()}")
    return breakdown


def clustering_quality_score(
    total_points: int,
    clusters: Sequence[Sequence[Device]],
    noise_points: int,
) -> float:
    """
    Weighted quality of a clustering result in [0, 1].

    40% clustered share, 30% low noise, 20% size consistency and 10% cluster
    density. Returns 0 for empty input.
    """
    return quality_breakdown(total_points, clusters, noise_points).quality
