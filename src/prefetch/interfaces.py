"""
Narrow capability interfaces the engine consumes from its host.

Only the methods the engine actually calls are declared, so a different
rendering surface can be adapted without touching the scheduler.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from prefetch.types import Extent, Size, TileRange, ViewState


class TileState(str, Enum):
    IDLE = 'idle'
    LOADING = 'loading'
    LOADED = 'loaded'
    ERROR = 'error'
    EMPTY = 'empty'


TERMINAL_TILE_STATES = frozenset({TileState.LOADED, TileState.ERROR, TileState.EMPTY})


class TileHandle(Protocol):
    """Host-owned tile with a lifecycle state."""

    def get_state(self) -> TileState: ...

    def on_change(self, listener: Callable[[], None]) -> Callable[[], None]:
        """Subscribe to state changes; returns a detach handle."""
        ...

    def load(self) -> None: ...


class TileGrid(Protocol):
    def get_tile_range_for_extent_and_z(self, extent: Extent, z: int) -> TileRange: ...


class TileSource(Protocol):
    def get_tile_grid_for_projection(self, projection: str) -> TileGrid: ...

    def get_tile(
        self,
        z: int,
        x: int,
        y: int,
        pixel_ratio: float,
        projection: str,
    ) -> TileHandle | None: ...


@runtime_checkable
class UrlTileSource(Protocol):
    def get_urls(self) -> Sequence[str] | None: ...


class TileLayer(Protocol):
    uid: str
    name: str | None

    def get_source(self) -> TileSource | None: ...


class HostTileQueue(Protocol):
    """The host's own on-demand loading queue."""

    @property
    def tiles_loading(self) -> int: ...


class HostSurface(Protocol):
    """
    Rendering surface the engine plans against.

    ``tile_queue`` is optional on real hosts: when absent the host is never
    considered busy.
    """

    pixel_ratio: float

    def get_view_state(self) -> ViewState | None: ...

    def get_size(self) -> Size | None: ...

    def get_resolution_for_zoom(self, zoom: float) -> float: ...

    def on(self, event: str, listener: Callable[[], None]) -> Callable[[], None]: ...
