"""
src/outage: Outage polygon pipeline (strategy selection, fallback, progress).

Usage:
    from src.outage import PolygonPipeline, PipelineConfig

    pipeline = PolygonPipeline(PipelineConfig())
    polygons = await pipeline.generate_polygons(devices_df)
    print(pipeline.metrics.to_json())
"""

from .legacy import LegacyHullGenerator, ProximityHullGenerator, hexagon_around
from .models import (
    OutagePolygon,
    PipelineMetrics,
    PipelineState,
    ProgressUpdate,
    Viewport,
    polygons_to_dataframe,
)
from .orchestrator import PolygonPipeline, hulls_to_polygons, prepare_devices
from .render import MemoryRenderSink, NullRenderSink, RenderSink
from .strategy import (
    DEFAULT_PIPELINE_CONFIG,
    PipelineConfig,
    Strategy,
    StrategyPlan,
    select_strategy,
)

__all__ = [
    "DEFAULT_PIPELINE_CONFIG",
    "LegacyHullGenerator",
    "MemoryRenderSink",
    "NullRenderSink",
    "OutagePolygon",
    "PipelineConfig",
    "PipelineMetrics",
    "PipelineState",
    "PolygonPipeline",
    "ProgressUpdate",
    "ProximityHullGenerator",
    "RenderSink",
    "Strategy",
    "StrategyPlan",
    "Viewport",
    "hexagon_around",
    "hulls_to_polygons",
    "polygons_to_dataframe",
    "prepare_devices",
    "select_strategy",
]
