"""
Outage polygon pipeline.

Turns a device snapshot into outage polygons:

1. Select a strategy from the number of processible devices (10%)
2. Prepare devices: valid coordinates and ``can_aggregate`` (20%)
3. Rebuild the neighbor index (30%)
4. Cluster and build hulls under the strategy's plan (30% - 80%)
5. Hand the polygons to the render sink (80%)
6. Store the result (90%) and complete (100%)

Any exception in steps 1-5 is logged and the legacy generator is run over
the same input instead. Inputs at or above the optimized threshold go to the
legacy generator directly, as a normal strategy.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, AsyncIterator, Callable, Iterable, List, Optional, Sequence

from ..scoring.confidence import cluster_confidence
from ..spatial.dbscan import ClusteringResult, DBSCANClusterer, cluster_partitioned
from ..spatial.devices import Device, coerce_devices
from ..spatial.hulls import DEFAULT_HULL_CONFIG, HullCache, HullConfig, HullResult, generate_hulls_batch
from ..spatial.index import NeighborIndex, build_index
from .legacy import LegacyHullGenerator, ProximityHullGenerator
from .models import OutagePolygon, PipelineMetrics, PipelineState, ProgressUpdate, Viewport
from .render import NullRenderSink, RenderSink
from .strategy import DEFAULT_PIPELINE_CONFIG, PipelineConfig, Strategy, select_strategy

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float, str], None]
IndexFactory = Callable[[], NeighborIndex]

CLUSTER_PHASE = (0.3, 0.8)
MIN_POLYGON_DEVICES = 3


def prepare_devices(devices: Iterable[Device]) -> List[Device]:
    """Keep devices with a finite, in-range position that may be aggregated."""
    return [d for d in devices if d.can_aggregate and d.has_valid_coordinate]


def hulls_to_polygons(hull_results: Sequence[HullResult]) -> List[OutagePolygon]:
    """Wrap non-empty hulls of clusters with at least three members."""
    polygons: List[OutagePolygon] = []
    for result in hull_results:
        if not result.hull or len(result.cluster) < MIN_POLYGON_DEVICES:
            continue
        polygons.append(OutagePolygon(
            coordinates=list(result.hull),
            cluster_index=result.cluster_index,
            confidence=cluster_confidence(result.cluster),
            devices=list(result.cluster),
        ))
    return polygons


class PolygonPipeline:
    """
    Adaptive clustering and hull pipeline with progress and fallback.

    One instance owns one neighbor index; an ``asyncio.Lock`` keeps index
    rebuilds from overlapping with runs that are still querying it.
    """

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        *,
        legacy: Optional[LegacyHullGenerator] = None,
        render_sink: Optional[RenderSink] = None,
        index_factory: Optional[IndexFactory] = None,
        hull_cache: Optional[HullCache] = None,
        hull_config: HullConfig = DEFAULT_HULL_CONFIG,
        clusterer: Optional[DBSCANClusterer] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ):
        self.config = config or DEFAULT_PIPELINE_CONFIG
        self.legacy = legacy or ProximityHullGenerator(self.config.legacy_buffer_radius_m)
        self.render_sink = render_sink or NullRenderSink()
        self.index_factory = index_factory or (
            lambda: build_index(self.config.index_backend, **self.config.index_options)
        )
        if hull_cache is None and self.config.hull_cache_ttl_sec > 0:
            hull_cache = HullCache(maxsize=self.config.hull_cache_size, ttl=self.config.hull_cache_ttl_sec)
        self.hull_cache = hull_cache
        self.hull_config = hull_config
        self.clusterer = clusterer or DBSCANClusterer()
        self.progress_callback = progress_callback

        self.state = PipelineState()
        self.index: Optional[NeighborIndex] = None
        self._index_lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None
        self._subscribers: List[asyncio.Queue] = []
        self._fallback_count = 0

    # -----------------------------
    # Observation
    # -----------------------------

    @property
    def polygons(self) -> List[OutagePolygon]:
        return list(self.state.polygons)

    @property
    def metrics(self) -> PipelineMetrics:
        return self.state.metrics

    def progress_stream(self) -> AsyncIterator[ProgressUpdate]:
        """
        Iterate progress updates of the next run(s) as they happen.

        The iterator ends when a run completes or is cancelled. Subscribe
        before starting the run to see every update.
        """
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.append(queue)
        return self._drain(queue)

    async def _drain(self, queue: asyncio.Queue) -> AsyncIterator[ProgressUpdate]:
        try:
            while True:
                update = await queue.get()
                if update is None:
                    return
                yield update
        finally:
            if queue in self._subscribers:
                self._subscribers.remove(queue)

    def _publish(self, update: Optional[ProgressUpdate]) -> None:
        for queue in list(self._subscribers):
            queue.put_nowait(update)

    async def _update_progress(self, progress: float, status: str) -> None:
        # Never move backwards within a run
        progress = max(self.state.progress, min(1.0, max(0.0, progress)))
        self.state.progress = progress
        self.state.status = status
        logger.debug(f"Pipeline progress: {progress:.0%} - {status}")

        update = ProgressUpdate(progress=progress, status=status)
        if self.progress_callback is not None:
            self.progress_callback(progress, status)
        self._publish(update)
        await asyncio.sleep(0)

    # -----------------------------
    # Control
    # -----------------------------

    def cancel(self) -> bool:
        """Cancel the in-flight run; returns False when nothing is running."""
        if self._task is None or self._task.done():
            return False
        logger.info("Cancelling polygon generation")
        return self._task.cancel()

    def clear_polygons(self) -> None:
        """Forget stored polygons and clear the render sink."""
        self.state.polygons = []
        self.state.metrics.polygon_count = 0
        self.render_sink.clear()
        logger.info("Cleared all outage polygons")

    def _reset(self) -> None:
        self.state.is_processing = False
        self.state.progress = 0.0
        self.state.status = "Ready"
        self.state.polygons = []
        self.render_sink.clear()
        self._publish(None)

    # -----------------------------
    # Generation
    # -----------------------------

    async def generate_polygons(
        self,
        devices: Any,
        viewport: Optional[Viewport] = None,
    ) -> List[OutagePolygon]:
        """
        Generate outage polygons for ``devices``.

        Records that cannot be converted, and devices without valid
        coordinates, are logged and excluded.

        Args:
            devices: Device objects, mappings or a DataFrame
            viewport: Passed unchanged to the render sink

        Returns:
            Polygons ordered by cluster index; an empty list if even the
            legacy generator fails.

        Raises:
            asyncio.CancelledError: If :meth:`cancel` was called; the state
                and the render sink are reset first
        """
        device_list = coerce_devices(devices, skip_invalid=True)
        self._task = asyncio.current_task()
        start = time.perf_counter()

        self.state.is_processing = True
        self.state.progress = 0.0
        self.state.status = "Starting"
        metrics = PipelineMetrics(device_count=len(device_list), fallback_count=self._fallback_count)
        self.state.metrics = metrics
        logger.info(f"Starting polygon generation for {len(device_list)} devices")

        strategy: Optional[Strategy] = None
        try:
            try:
                await self._update_progress(0.1, "Analyzing processing requirements")
                prepared = prepare_devices(device_list)
                strategy = select_strategy(len(prepared), self.config)
                metrics.strategy = strategy.value
                metrics.eligible_count = len(prepared)
                logger.info(f"Selected {strategy.value} strategy for {len(prepared)} devices")

                await self._update_progress(0.2, "Preparing spatial data")
                excluded = len(device_list) - len(prepared)
                if excluded:
                    logger.debug(f"Excluded {excluded} devices without valid coordinates or aggregation")

                if not prepared:
                    logger.info("No processible devices; skipping clustering")
                    polygons = []
                elif strategy is Strategy.FALLBACK:
                    await self._update_progress(0.3, "Skipping spatial index")
                    polygons = await self._run_legacy_strategy(prepared)
                else:
                    polygons = await self._run_optimized(strategy, prepared)

                await self._update_progress(0.8, "Optimizing for rendering")
                render_start = time.perf_counter()
                self.render_sink.update_polygons(polygons, viewport)
                metrics.render_time_sec = time.perf_counter() - render_start
            except Exception as exc:
                polygons = await self._fallback(device_list, exc, strategy)

            await self._update_progress(0.9, "Finalizing polygons")
            self.state.polygons = polygons
            metrics.polygon_count = len(polygons)
            metrics.total_time_sec = time.perf_counter() - start

            await self._update_progress(1.0, "Completed")
            self.state.is_processing = False
            self._publish(None)
        except asyncio.CancelledError:
            logger.info("Polygon generation cancelled; discarding partial results")
            self._reset()
            raise
        finally:
            self._task = None

        logger.info(
            f"Polygon generation completed: strategy={metrics.strategy}, "
            f"{metrics.eligible_count} devices, {metrics.polygon_count} polygons "
            f"in {metrics.total_time_sec:.3f}s"
        )
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(f"Pipeline metrics: {metrics.to_json()}")
        return list(polygons)

    def _phase_progress(self, fraction: float) -> float:
        low, high = CLUSTER_PHASE
        return low + (high - low) * fraction

    async def _run_optimized(self, strategy: Strategy, prepared: List[Device]) -> List[OutagePolygon]:
        plan = self.config.plan_for(strategy)
        metrics = self.state.metrics

        async with self._index_lock:
            await self._update_progress(0.3, "Building spatial index")
            index = self.index_factory()
            await asyncio.to_thread(index.initialize, prepared)
            self.index = index

            await self._update_progress(self._phase_progress(0.4), f"Clustering devices ({strategy.value})")
            cluster_start = time.perf_counter()
            if plan.partitions > 1:
                result: ClusteringResult = await asyncio.to_thread(
                    cluster_partitioned, prepared, plan.dbscan, index,
                    partitions=plan.partitions, clusterer=self.clusterer,
                )
            else:
                result = await asyncio.to_thread(
                    self.clusterer.cluster_with_labels, prepared, plan.dbscan, index,
                )
            metrics.clustering_time_sec = time.perf_counter() - cluster_start

        metrics.cluster_count = len(result.clusters)
        metrics.noise_count = result.metrics.noise_points
        metrics.core_count = result.metrics.core_points
        metrics.border_count = result.metrics.border_points

        await self._update_progress(self._phase_progress(0.8), "Generating convex hulls")
        hull_start = time.perf_counter()
        hull_results = await generate_hulls_batch(
            result.clusters,
            max_concurrency=plan.hull_concurrency,
            config=self.hull_config,
            cache=self.hull_cache,
        )
        metrics.hull_time_sec = time.perf_counter() - hull_start
        return hulls_to_polygons(hull_results)

    async def _run_legacy_strategy(self, prepared: List[Device]) -> List[OutagePolygon]:
        logger.info(
            f"{len(prepared)} devices at or above optimized threshold "
            f"({self.config.max_optimized_threshold}) or optimized clustering disabled; "
            "using legacy generator"
        )
        await self._update_progress(self._phase_progress(0.5), "Legacy polygon generation")
        return await asyncio.to_thread(self.legacy.generate, prepared)

    async def _fallback(
        self,
        devices: List[Device],
        exc: Exception,
        strategy: Optional[Strategy],
    ) -> List[OutagePolygon]:
        self._fallback_count += 1
        metrics = self.state.metrics
        metrics.fallback_count = self._fallback_count
        metrics.fallback_reason = f"{type(exc).__name__}: {exc}"
        logger.exception(f"Polygon generation failed, falling back to legacy generator: {exc}")

        if strategy is Strategy.FALLBACK:
            # The legacy generator was already the strategy that failed
            return []

        await self._update_progress(self.state.progress, "Falling back to legacy generation")
        try:
            return await asyncio.to_thread(self.legacy.generate, devices)
        except Exception:
            logger.exception("Legacy polygon generation failed; returning no polygons")
            return []
