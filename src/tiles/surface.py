"""
Headless map surface.

Stands in for a rendering widget: it owns the view (center, zoom, rotation,
size), a list of visible layers and the on-demand TileQueue that loads what is
on screen. Interaction is simulated with ``begin_move`` / ``end_move`` and
frames with ``render``.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import TYPE_CHECKING

from prefetch.extent import get_for_view_and_size
from prefetch.interfaces import TERMINAL_TILE_STATES, TileState
from prefetch.types import ViewState
from shared.constants import WEB_MERCATOR_CODE, SurfaceEvent
from tiles.grid import get_grid_for_projection

if TYPE_CHECKING:
    from collections.abc import Callable

    from prefetch.interfaces import TileHandle
    from prefetch.types import Coordinate, Size
    from tiles.layer import TileLayer

logger = logging.getLogger(__name__)


class TileQueue:
    """On-demand loading of visible tiles; ``tiles_loading`` counts in-flight ones."""

    def __init__(self) -> None:
        self._loading: dict[int, Callable[[], None]] = {}

    @property
    def tiles_loading(self) -> int:
        return len(self._loading)

    def load(self, tile: TileHandle) -> None:
        key = id(tile)
        if key in self._loading or tile.get_state() == TileState.LOADED:
            return

        def on_change() -> None:
            if tile.get_state() in TERMINAL_TILE_STATES:
                detach = self._loading.pop(key, None)
                if detach is not None:
                    detach()

        self._loading[key] = tile.on_change(on_change)
        tile.load()
        # Tiles already in flight elsewhere stay tracked until they settle
        on_change()

    def clear(self) -> None:
        for detach in self._loading.values():
            detach()
        self._loading.clear()


class MapSurface:
    def __init__(
        self,
        center: Coordinate,
        zoom: float,
        size: Size,
        *,
        rotation: float = 0.0,
        pixel_ratio: float = 1.0,
        projection: str = WEB_MERCATOR_CODE,
    ) -> None:
        self.center = center
        self.zoom = zoom
        self.size = size
        self.rotation = rotation
        self.pixel_ratio = pixel_ratio
        self.projection = projection
        self.tile_queue = TileQueue()
        self.layers: list[TileLayer] = []
        self._grid = get_grid_for_projection(projection)
        self._listeners: dict[str, list[Callable[[], None]]] = defaultdict(list)
        self._moving = False

    # -- view ---------------------------------------------------------------

    def get_view_state(self) -> ViewState | None:
        return ViewState(
            center=self.center,
            resolution=self.get_resolution_for_zoom(self.zoom),
            rotation=self.rotation,
            zoom=self.zoom,
            projection=self.projection,
        )

    def get_size(self) -> Size | None:
        return self.size

    def get_resolution_for_zoom(self, zoom: float) -> float:
        return self._grid.get_resolution(zoom)

    def set_view(self, center: Coordinate | None = None, zoom: float | None = None) -> None:
        if center is not None:
            self.center = tuple(center)
        if zoom is not None:
            self.zoom = zoom

    def add_layer(self, layer: TileLayer) -> None:
        if layer not in self.layers:
            self.layers.append(layer)

    # -- events -------------------------------------------------------------

    def on(self, event: str, listener: Callable[[], None]) -> Callable[[], None]:
        listeners = self._listeners[SurfaceEvent(event).value]
        listeners.append(listener)

        def detach() -> None:
            if listener in listeners:
                listeners.remove(listener)

        return detach

    def listener_count(self, event: str) -> int:
        return len(self._listeners[SurfaceEvent(event).value])

    def _emit(self, event: SurfaceEvent) -> None:
        for listener in list(self._listeners[event.value]):
            try:
                listener()
            except Exception:
                logger.exception('Listener for %s failed', event.value)

    # -- interaction ----------------------------------------------------------

    def begin_move(self) -> None:
        if not self._moving:
            self._moving = True
            self._emit(SurfaceEvent.MOVESTART)

    def end_move(self) -> None:
        if self._moving:
            self._moving = False
            self._emit(SurfaceEvent.MOVEEND)

    def move_to(self, center: Coordinate, zoom: float | None = None) -> None:
        """Full pan/zoom gesture: start, change the view, render, end."""
        self.begin_move()
        self.set_view(center, zoom)
        self.render()
        self.end_move()

    def render(self) -> None:
        """Queue the visible tiles of every visible layer, then signal a frame."""
        extent = get_for_view_and_size(
            self.center,
            self.get_resolution_for_zoom(self.zoom),
            self.rotation,
            self.size,
        )
        z = round(self.zoom)
        for layer in self.layers:
            source = layer.get_source()
            if not layer.visible or source is None:
                continue
            tile_range = self._grid.get_tile_range_for_extent_and_z(extent, z)
            for x, y in tile_range:
                tile = source.get_tile(z, x, y, self.pixel_ratio, self.projection)
                if tile is not None:
                    self.tile_queue.load(tile)
        self._emit(SurfaceEvent.POSTRENDER)
