"""
Prefetch orchestration.

Priority order:
1. User interaction (pan/zoom) always wins: the host's own tile queue loads
   on-screen tiles and prefetch yields while it is busy.
2. Spatial prefetch: offscreen ring around the viewport for the active layer.
3. Background layers: hidden layers at the current viewport.
4. Next navigation: the active and background layers at anticipated targets.

Category weights are reconfigurable, so the order of 2-4 may change; within a
category, earlier targets and lower-priority background layers go first.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from enum import Enum
from typing import TYPE_CHECKING

from domain.models import PrefetchOptions
from prefetch.categories import (
    DEFAULT_CATEGORY_PRIORITIES,
    NEXT_NAV_CATEGORIES,
    PrefetchCategory,
    check_priority_spacing,
)
from prefetch.loader import TileLoader
from prefetch.planner import PrefetchPlanner
from prefetch.scheduler import PrefetchScheduler
from prefetch.stats import PrefetchStats
from prefetch.types import BackgroundLayerEntry, PrefetchTarget
from shared.constants import SurfaceEvent

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping

    from prefetch.interfaces import HostSurface, TileLayer
    from prefetch.stats import StatsListener
    from prefetch.types import Coordinate, PrefetchTask, StatsSnapshot

logger = logging.getLogger(__name__)


class ManagerState(str, Enum):
    DISABLED = 'disabled'
    ACTIVE = 'active'
    INTERACTING = 'interacting'


class PrefetchManager:
    """
    Controlled prefetching of tiles across layers and locations.

    Must be created inside a running asyncio loop (or given one explicitly):
    ticks, the interaction debounce and idle timeouts are loop timers. All
    public methods are synchronous; after ``dispose()`` they do nothing.
    """

    def __init__(
        self,
        surface: HostSurface,
        options: PrefetchOptions | None = None,
        *,
        excluded_layers: Iterable[TileLayer] = (),
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        options = options or PrefetchOptions()
        self._surface = surface
        self._loop = loop or asyncio.get_running_loop()
        self._max_concurrent = options.max_concurrent_prefetches
        self._idle_delay = options.idle_delay
        self._idle_timeout = options.idle_timeout
        self._enabled = options.enabled
        self._keep_active = options.load_active_during_interaction
        self._user_interacting = False
        self._idle_timer: asyncio.TimerHandle | None = None
        self._filling = False
        self._disposed = False

        self._background_layers: list[BackgroundLayerEntry] = []
        self._registration_seq = itertools.count()
        self._active_layer: TileLayer | None = None
        self._next_targets: list[PrefetchTarget] = []
        self._excluded: dict[str, TileLayer] = {layer.uid: layer for layer in excluded_layers}
        self._category_priorities: dict[PrefetchCategory, float] = {
            **DEFAULT_CATEGORY_PRIORITIES,
            **options.category_priorities,
        }
        check_priority_spacing(self._category_priorities)

        self._queue: list[PrefetchTask] = []

        self._stats = PrefetchStats()
        self._planner = PrefetchPlanner(options.spatial_buffer_factor)
        self._loader = TileLoader(
            on_slot_freed=self._fill_slots,
            on_stats_changed=self._notify_stats,
        )
        self._scheduler = PrefetchScheduler(
            on_rebuild_needed=self._rebuild_queue,
            on_fill_slots=self._fill_slots,
            on_stats_changed=self._notify_stats,
            is_host_busy=self._host_busy,
            tick_interval=options.tick_interval,
            loop=self._loop,
        )
        self._scheduler.enabled = self._enabled

        self._listener_detaches: list[Callable[[], None]] = []
        self._setup_listeners()
        logger.info(
            'Prefetch manager started: max_concurrent=%d buffer=%.2f enabled=%s',
            self._max_concurrent,
            options.spatial_buffer_factor,
            self._enabled,
        )

    # -- host events ----------------------------------------------------

    def _setup_listeners(self) -> None:
        surface = self._surface
        self._listener_detaches.extend(
            [
                surface.on(SurfaceEvent.MOVESTART.value, self._on_move_start),
                surface.on(SurfaceEvent.MOVEEND.value, self._on_move_end),
                surface.on(SurfaceEvent.POSTRENDER.value, self._on_post_render),
            ],
        )

    def _on_move_start(self) -> None:
        if self._disposed:
            return
        self._user_interacting = True
        self._cancel_idle_timer()
        if self._keep_active:
            self._loader.abandon_non_active(self._active_layer, self._stats)
            self._queue = [
                task
                for task in self._queue
                if task.category in NEXT_NAV_CATEGORIES or self._is_active_spatial(task)
            ]
        else:
            self._loader.abandon_all(self._stats)
            self._queue = [
                task for task in self._queue if task.category in NEXT_NAV_CATEGORIES
            ]
        self._stats.recount_queued(self._queue)
        self._scheduler.suspend()
        self._notify_stats()

    def _on_move_end(self) -> None:
        if self._disposed:
            return
        self._cancel_idle_timer()
        self._idle_timer = self._loop.call_later(self._idle_delay, self._on_interaction_settled)

    def _on_interaction_settled(self) -> None:
        self._idle_timer = None
        if self._disposed:
            return
        self._user_interacting = False
        self._scheduler.resume()
        self._rebuild_queue()
        self._scheduler.schedule_tick()
        self._notify_stats()

    def _on_post_render(self) -> None:
        if self._disposed or not self._enabled:
            return
        if not self._user_interacting:
            self._scheduler.schedule_tick()
        elif self._keep_active:
            self._rebuild_queue()
            self._fill_slots()

    def _cancel_idle_timer(self) -> None:
        if self._idle_timer is not None:
            self._idle_timer.cancel()
            self._idle_timer = None

    # -- planning and dispatch -----------------------------------------

    def _effective_active_layer(self) -> TileLayer | None:
        layer = self._active_layer
        if layer is None or layer.uid in self._excluded:
            return None
        return layer

    def _planning_layers(self) -> list[BackgroundLayerEntry]:
        return [
            entry
            for entry in self._background_layers
            if entry.layer.uid not in self._excluded
        ]

    def _is_active_spatial(self, task: PrefetchTask) -> bool:
        return (
            task.category == PrefetchCategory.SPATIAL_ACTIVE
            and task.layer is self._active_layer
        )

    def _rebuild_queue(self) -> None:
        if self._disposed:
            return
        active_layer = self._effective_active_layer()
        if self._user_interacting:
            if not self._keep_active:
                return
            queue = [task for task in self._queue if task.category in NEXT_NAV_CATEGORIES]
            if active_layer is not None:
                queue.extend(
                    self._planner.build_active_spatial_queue(
                        self._surface,
                        active_layer,
                        self._category_priorities,
                    ),
                )
            queue.sort(key=lambda task: task.priority)
            self._queue = queue
            self._stats.recount_queued(queue)
        else:
            self._queue = self._planner.build_queue(
                self._surface,
                active_layer,
                self._planning_layers(),
                self._next_targets,
                self._category_priorities,
                self._stats,
            )
        self._notify_stats()

    def _replan(self) -> None:
        self._rebuild_queue()
        if self._user_interacting and self._keep_active:
            # The scheduler is suspended until the move settles
            self._fill_slots()
        else:
            self._scheduler.schedule_tick()

    def _is_eligible(self, task: PrefetchTask) -> bool:
        if not self._user_interacting:
            return True
        return self._is_active_spatial(task)

    def _next_eligible_index(self) -> int | None:
        for index, task in enumerate(self._queue):
            if self._is_eligible(task):
                return index
        return None

    def _fill_slots(self) -> None:
        if self._disposed or not self._enabled:
            return
        if self._user_interacting and not self._keep_active:
            return
        if self._filling:
            # A synchronous completion inside start_task; the running loop refills
            return

        self._filling = True
        try:
            while self._loader.active_count < self._max_concurrent and self._queue:
                if self._host_busy():
                    self._scheduler.schedule_tick()
                    break
                index = self._next_eligible_index()
                if index is None:
                    self._scheduler.schedule_tick()
                    break
                task = self._queue.pop(index)
                self._loader.start_task(task, self._surface, self._stats)

            if self._queue and self._loader.active_count == 0:
                self._scheduler.schedule_tick()
        finally:
            self._filling = False

        self._notify_stats()

    def _host_busy(self) -> bool:
        tile_queue = getattr(self._surface, 'tile_queue', None)
        if tile_queue is None:
            return False
        return tile_queue.tiles_loading > 0

    def _snapshot(self) -> StatsSnapshot:
        return self._stats.snapshot(
            len(self._queue),
            self._loader.active_count,
            self._user_interacting,
            self._next_targets,
            self._category_priorities,
            enabled=self._enabled,
        )

    def _notify_stats(self) -> None:
        if self._disposed:
            return
        self._stats.notify(self._snapshot())

    # -- background layers ---------------------------------------------

    def add_background_layer(self, layer: TileLayer, priority: float = 0) -> None:
        """Register a layer for background prefetch (lower priority loads first)."""
        if self._disposed:
            return
        if any(entry.layer is layer for entry in self._background_layers):
            return
        self._background_layers.append(
            BackgroundLayerEntry(
                layer=layer,
                priority=priority,
                order=next(self._registration_seq),
            ),
        )
        self._sort_background_layers()
        self._replan()

    def remove_background_layer(self, layer: TileLayer) -> None:
        if self._disposed:
            return
        for index, entry in enumerate(self._background_layers):
            if entry.layer is layer:
                del self._background_layers[index]
                self._replan()
                return

    def set_background_layer_priority(self, layer: TileLayer, priority: float) -> None:
        if self._disposed:
            return
        for entry in self._background_layers:
            if entry.layer is layer:
                entry.priority = priority
                self._sort_background_layers()
                self._replan()
                return

    def get_background_layers(self) -> list[BackgroundLayerEntry]:
        return [
            BackgroundLayerEntry(layer=entry.layer, priority=entry.priority, order=entry.order)
            for entry in self._background_layers
        ]

    def _sort_background_layers(self) -> None:
        self._background_layers.sort(key=lambda entry: (entry.priority, entry.order))

    # -- active layer ---------------------------------------------------

    def set_active_layer(self, layer: TileLayer | None) -> None:
        if self._disposed:
            return
        self._active_layer = layer
        self._replan()

    def get_active_layer(self) -> TileLayer | None:
        return self._active_layer

    # -- next navigation targets ---------------------------------------

    def set_next_target(self, center: Coordinate, zoom: float) -> None:
        """Replace the target list with a single anticipated viewport."""
        self.set_next_targets([PrefetchTarget(center=tuple(center), zoom=zoom)])

    def set_next_targets(
        self,
        targets: Iterable[PrefetchTarget | tuple[Coordinate, float]],
    ) -> None:
        if self._disposed:
            return
        self._next_targets = [_to_target(target) for target in targets]
        self._replan()

    def add_next_target(self, center: Coordinate, zoom: float) -> None:
        if self._disposed:
            return
        self._next_targets.append(PrefetchTarget(center=tuple(center), zoom=zoom))
        self._replan()

    def remove_next_target(self, index: int) -> None:
        if self._disposed:
            return
        if not -len(self._next_targets) <= index < len(self._next_targets):
            logger.warning(
                'No next target at index %d (have %d)', index, len(self._next_targets)
            )
            return
        del self._next_targets[index]
        self._replan()

    def clear_next_targets(self) -> None:
        if self._disposed or not self._next_targets:
            return
        self._next_targets = []
        self._replan()

    def get_next_targets(self) -> list[PrefetchTarget]:
        return list(self._next_targets)

    # -- exclusion ------------------------------------------------------

    def exclude_layer(self, layer: TileLayer) -> None:
        """Suppress a layer from all planning without dropping its registration."""
        if self._disposed or layer.uid in self._excluded:
            return
        self._excluded[layer.uid] = layer
        logger.debug('Layer %s excluded from prefetch', layer.name)
        self._replan()

    def include_layer(self, layer: TileLayer) -> None:
        if self._disposed or layer.uid not in self._excluded:
            return
        del self._excluded[layer.uid]
        logger.debug('Layer %s included in prefetch', layer.name)
        self._replan()

    def is_layer_excluded(self, layer: TileLayer) -> bool:
        return layer.uid in self._excluded

    def get_excluded_layers(self) -> list[TileLayer]:
        return list(self._excluded.values())

    # -- tuning ---------------------------------------------------------

    def set_max_concurrent(self, max_concurrent: int) -> None:
        if self._disposed:
            return
        self._max_concurrent = max(1, int(max_concurrent))
        self._fill_slots()

    def get_max_concurrent(self) -> int:
        return self._max_concurrent

    def set_category_priorities(
        self,
        priorities: Mapping[PrefetchCategory | str, float | None],
    ) -> None:
        """
        Update some or all category weights.

        Weights of different categories should stay at least 1 apart: target
        and layer sub-priorities are added on top of the weight and must not
        push a task past the next category. Closer weights are accepted but
        logged.
        """
        if self._disposed:
            return
        for key, value in priorities.items():
            category = PrefetchCategory.parse(key)
            if category is None:
                logger.warning('Ignoring unknown prefetch category %r', key)
                continue
            if value is None:
                continue
            self._category_priorities[category] = float(value)
        check_priority_spacing(self._category_priorities)
        self._replan()
        self._notify_stats()

    def get_category_priorities(self) -> dict[PrefetchCategory, float]:
        return dict(self._category_priorities)

    # -- enable / state -------------------------------------------------

    def set_enabled(self, enabled: bool) -> None:
        if self._disposed:
            return
        self._enabled = enabled
        self._scheduler.enabled = enabled
        logger.info('Prefetch %s', 'enabled' if enabled else 'disabled')
        if enabled:
            self._rebuild_queue()
            self._scheduler.schedule_tick()
        self._notify_stats()

    def get_enabled(self) -> bool:
        return self._enabled

    @property
    def state(self) -> ManagerState:
        if not self._enabled:
            return ManagerState.DISABLED
        if self._user_interacting:
            return ManagerState.INTERACTING
        return ManagerState.ACTIVE

    @property
    def disposed(self) -> bool:
        return self._disposed

    def get_queued_tasks(self) -> list[PrefetchTask]:
        """Planned tasks in dispatch order."""
        return list(self._queue)

    # -- stats ----------------------------------------------------------

    def on_stats(self, callback: StatsListener) -> Callable[[], None]:
        return self._stats.on_stats(callback)

    def on_idle(
        self,
        callback: StatsListener,
        timeout: float | None = None,
    ) -> Callable[[], None]:
        """
        Call ``callback`` once when nothing is queued or loading.

        Fires immediately (on the current snapshot) if the engine is already
        idle; ``timeout`` defaults to the configured idle timeout.
        """
        if self._disposed:
            return _noop
        detach = self._stats.on_idle(
            callback,
            self._idle_timeout if timeout is None else timeout,
            loop=self._loop,
        )
        self._notify_stats()
        return detach

    def get_stats(self) -> StatsSnapshot:
        return self._snapshot()

    # -- teardown -------------------------------------------------------

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        for detach in self._listener_detaches:
            detach()
        self._listener_detaches.clear()
        self._cancel_idle_timer()
        self._scheduler.dispose()
        self._loader.abandon_all(self._stats)
        self._loader.dispose()
        self._stats.dispose()
        self._queue = []
        self._background_layers = []
        self._next_targets = []
        self._excluded = {}
        self._active_layer = None
        logger.info('Prefetch manager disposed')


def _to_target(target: PrefetchTarget | tuple[Coordinate, float]) -> PrefetchTarget:
    if isinstance(target, PrefetchTarget):
        return target
    center, zoom = target
    return PrefetchTarget(center=tuple(center), zoom=zoom)


def _noop() -> None:
    return None
