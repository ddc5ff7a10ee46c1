"""Render sink boundary: where finished polygons are handed for display."""

from __future__ import annotations

import logging
from typing import List, Optional, Protocol, Sequence, runtime_checkable

from .models import OutagePolygon, Viewport

logger = logging.getLogger(__name__)


@runtime_checkable
class RenderSink(Protocol):
    def update_polygons(self, polygons: Sequence[OutagePolygon], viewport: Optional[Viewport]) -> None:
        ...

    def clear(self) -> None:
        ...


class NullRenderSink:
    """Sink that discards everything; the default when nothing renders."""

    def update_polygons(self, polygons: Sequence[OutagePolygon], viewport: Optional[Viewport]) -> None:
        logger.debug(f"NullRenderSink received {len(polygons)} polygons")

    def clear(self) -> None:
        pass


class MemoryRenderSink:
    """Keeps the last handoff in memory; useful for tests and the HTTP adapter."""

    def __init__(self):
        self.polygons: List[OutagePolygon] = []
        self.viewport: Optional[Viewport] = None
        self.updates = 0

    def update_polygons(self, polygons: Sequence[OutagePolygon], viewport: Optional[Viewport]) -> None:
        if viewport is not None:
            self.polygons = [p for p in polygons if viewport.contains(p.center)]
        else:
            self.polygons = list(polygons)
        self.viewport = viewport
        self.updates += 1

    def clear(self) -> None:
        self.polygons = []
        self.viewport = None
