"""FastAPI server exposing the outage polygon pipeline."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from .schemas.models import (
    ClusterDevicesRequest,
    ClusterDevicesResponse,
    ClusterOut,
    OutagePolygonsRequest,
    OutagePolygonsResponse,
    PolygonOut,
)
from src.outage import PipelineConfig, PolygonPipeline, Viewport
from src.scoring import clustering_quality_score
from src.spatial import (
    ClusteringResult,
    DBSCANClusterer,
    DBSCANConfig,
    Device,
    build_index,
    coerce_devices,
    validate_config,
)
from src.tools.config_loader import ConfigLoader

# OUTAGE_PROFILE may come from a local .env file
load_dotenv()

logger = logging.getLogger(__name__)

app = FastAPI(title="Outage Polygon Server", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health_check() -> Dict[str, str]:
    return {"status": "ok"}


def _load_profile(name: Optional[str]) -> Dict[str, Any]:
    try:
        if name:
            return ConfigLoader.load_profile(name)
        return ConfigLoader.load_default_or_env_profile()
    except FileNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


def _pipeline_config(profile: Dict[str, Any]) -> PipelineConfig:
    try:
        return PipelineConfig.from_profile(profile)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


@app.post("/actions/outage_polygons")
async def outage_polygons_action(request: OutagePolygonsRequest) -> Dict[str, Any]:
    config = _pipeline_config(_load_profile(request.profile))
    pipeline = PolygonPipeline(config)

    viewport = None
    if request.viewport is not None:
        viewport = Viewport(**request.viewport.model_dump())

    devices = coerce_devices(request.devices)
    logger.info(f"Outage polygon request: {len(devices)} devices, profile={request.profile or 'env/default'}")
    polygons = await pipeline.generate_polygons(devices, viewport=viewport)

    response = OutagePolygonsResponse(
        strategy=pipeline.metrics.strategy,
        polygons=[PolygonOut(**polygon.to_dict()) for polygon in polygons],
        metrics=pipeline.metrics.to_dict(),
    )
    return response.model_dump(by_alias=True)


def _cluster_devices(devices: List[Device], config: DBSCANConfig) -> ClusteringResult:
    index = build_index("balltree")
    index.initialize(devices)
    return DBSCANClusterer().cluster_with_labels(devices, config, index)


@app.post("/actions/cluster_devices")
async def cluster_devices_action(request: ClusterDevicesRequest) -> Dict[str, Any]:
    config = DBSCANConfig(eps=request.eps, min_pts=request.min_pts)
    if not validate_config(config):
        raise HTTPException(
            status_code=422,
            detail=f"Invalid clustering config: eps must be > 0 and minPts >= 1 "
                   f"(got eps={request.eps}, minPts={request.min_pts})",
        )

    devices = [d for d in coerce_devices(request.devices) if d.has_valid_coordinate]
    result = await asyncio.to_thread(_cluster_devices, devices, config)

    metrics = result.metrics.to_dict()
    metrics["quality_score"] = clustering_quality_score(
        len(devices), result.clusters, result.metrics.noise_points
    )
    response = ClusterDevicesResponse(
        clusters=[
            ClusterOut(cluster_index=i, device_ids=[d.device_id for d in cluster])
            for i, cluster in enumerate(result.clusters)
        ],
        noise=[d.device_id for d in result.noise],
        metrics=metrics,
    )
    return response.model_dump(by_alias=True)
