"""
Scoring for outage clusters.

Usage:
    from src.scoring import cluster_confidence, clustering_quality_score

    confidence = cluster_confidence(cluster)
    quality = clustering_quality_score(len(devices), clusters, noise_count)
"""

from .confidence import (
    QualityBreakdown,
    cluster_confidence,
    clustering_quality_score,
    quality_breakdown,
    size_variance_score,
)

__all__ = [
    "QualityBreakdown",
    "cluster_confidence",
    "clustering_quality_score",
    "quality_breakdown",
    "size_variance_score",
]
