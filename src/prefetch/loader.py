"""In-flight prefetch downloads."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING
from urllib.parse import urlsplit

from prefetch.interfaces import TERMINAL_TILE_STATES, TileState, UrlTileSource
from prefetch.types import PrefetchError
from shared.constants import DEFAULT_ERROR_REASON, UNKNOWN_LAYER_NAME

if TYPE_CHECKING:
    from collections.abc import Callable

    from prefetch.interfaces import HostSurface, TileHandle, TileLayer
    from prefetch.stats import PrefetchStats
    from prefetch.types import PrefetchTask

logger = logging.getLogger(__name__)


@dataclass
class _InFlight:
    task: PrefetchTask
    detach: Callable[[], None]


class TileLoader:
    """
    Starts prefetch loads and tracks them until the host tile settles.

    Abandoning only forgets the bookkeeping: the host owns the request and a
    late completion of an abandoned task finds no listener and is ignored.
    """

    def __init__(
        self,
        on_slot_freed: Callable[[], None],
        on_stats_changed: Callable[[], None],
    ) -> None:
        self._on_slot_freed = on_slot_freed
        self._on_stats_changed = on_stats_changed
        self._loading: dict[str, _InFlight] = {}

    @property
    def active_count(self) -> int:
        return len(self._loading)

    def is_loading(self, task_id: str) -> bool:
        return task_id in self._loading

    def in_flight(self) -> list[PrefetchTask]:
        return [entry.task for entry in self._loading.values()]

    def start_task(
        self,
        task: PrefetchTask,
        surface: HostSurface,
        stats: PrefetchStats,
    ) -> None:
        category = task.category
        try:
            source = task.layer.get_source()
            if source is None:
                return
            view_state = surface.get_view_state()
            if view_state is None:
                return
            pixel_ratio = getattr(surface, 'pixel_ratio', None) or 1
            z, x, y = task.tile_coord
            tile = source.get_tile(z, x, y, pixel_ratio, view_state.projection)
            if tile is None:
                return
            state = tile.get_state()
        except Exception as e:
            logger.debug('Dropping malformed task %s: %s', task.id, e)
            return

        if state == TileState.LOADED:
            stats.record_already_loaded(category)
            return
        if state == TileState.LOADING:
            # Another path already owns this load
            return
        if task.id in self._loading:
            return

        def on_tile_change() -> None:
            new_state = tile.get_state()
            if new_state not in TERMINAL_TILE_STATES:
                return
            self._finish(task, tile, new_state, stats)

        try:
            detach = tile.on_change(on_tile_change)
        except Exception as e:
            logger.debug('Cannot watch tile %s: %s', task.id, e)
            return

        stats.record_loading_start(category)
        self._loading[task.id] = _InFlight(task=task, detach=detach)
        try:
            tile.load()
        except Exception as e:
            logger.debug('Tile %s failed to start loading: %s', task.id, e)
            entry = self._loading.pop(task.id, None)
            if entry is None:
                return
            entry.detach()
            stats.record_loading_end(category)
            stats.record_error(category, self._build_error_entry(task, tile, str(e)))
            self._on_stats_changed()
            self._on_slot_freed()

    def _finish(
        self,
        task: PrefetchTask,
        tile: TileHandle,
        new_state: TileState,
        stats: PrefetchStats,
    ) -> None:
        entry = self._loading.pop(task.id, None)
        if entry is None:
            return
        entry.detach()

        category = task.category
        stats.record_loading_end(category)
        if new_state == TileState.LOADED:
            stats.record_loaded(category)
        elif new_state == TileState.ERROR:
            error = self._build_error_entry(task, tile)
            logger.debug('Prefetch of %s failed: %s', task.id, error.reason)
            stats.record_error(category, error)
        else:
            stats.record_empty(category)

        self._on_stats_changed()
        self._on_slot_freed()

    def abandon_all(self, stats: PrefetchStats) -> None:
        """Forget every in-flight load without cancelling the requests."""
        for entry in self._loading.values():
            entry.detach()
            stats.record_loading_end(entry.task.category)
        if self._loading:
            logger.debug('Abandoned %d in-flight prefetch loads', len(self._loading))
        self._loading.clear()

    def abandon_non_active(
        self,
        active_layer: TileLayer | None,
        stats: PrefetchStats,
    ) -> None:
        """Like abandon_all, but in-flight loads of the active layer survive."""
        for task_id, entry in list(self._loading.items()):
            if active_layer is not None and entry.task.layer is active_layer:
                continue
            entry.detach()
            stats.record_loading_end(entry.task.category)
            del self._loading[task_id]

    def _build_error_entry(
        self,
        task: PrefetchTask,
        tile: TileHandle,
        reason: str | None = None,
    ) -> PrefetchError:
        layer_name = getattr(task.layer, 'name', None) or UNKNOWN_LAYER_NAME
        reason = reason or getattr(tile, 'error_reason', None)
        if not reason:
            reason = _reason_from_source(task.layer)
        return PrefetchError(
            tile_coord=task.tile_coord,
            category=task.category,
            layer_name=layer_name,
            reason=reason,
        )

    def dispose(self) -> None:
        for entry in self._loading.values():
            entry.detach()
        self._loading.clear()


def _reason_from_source(layer: TileLayer) -> str:
    try:
        source = layer.get_source()
        urls = source.get_urls() if isinstance(source, UrlTileSource) else None
        if urls:
            host = urlsplit(urls[0]).hostname
            if host:
                return f'{DEFAULT_ERROR_REASON} ({host})'
    except Exception as e:
        logger.debug('Cannot derive error reason from source: %s', e)
    return DEFAULT_ERROR_REASON
