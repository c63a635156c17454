"""
Prefetch planning: decides WHAT tiles to load.

Builds the prioritised prefetch queue from the current view, the active
layer, the background layer registry and the next navigation targets.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from prefetch.categories import PrefetchCategory
from prefetch.extent import buffer_extent, get_for_view_and_size, spatial_buffer_value
from prefetch.interfaces import TileState
from prefetch.types import PrefetchTask
from shared.constants import (
    LAYER_OFFSET_SPAN,
    LAYER_PRIORITY_STEP,
    SPATIAL_BUFFER_FACTOR,
    TARGET_OFFSET_SPAN,
    TARGET_PRIORITY_STEP,
)

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from prefetch.interfaces import HostSurface, TileLayer, TileSource
    from prefetch.stats import PrefetchStats
    from prefetch.types import (
        BackgroundLayerEntry,
        Extent,
        PrefetchTarget,
        Size,
        TileCoord,
    )

logger = logging.getLogger(__name__)


@dataclass
class _PlanContext:
    projection: str
    pixel_ratio: float
    stats: PrefetchStats | None
    queue: list[PrefetchTask] = field(default_factory=list)
    seen_tiles: set[str] = field(default_factory=set)


@dataclass(frozen=True)
class _Viewport:
    extent: Extent
    z: int
    size: Size
    projection: str


def tile_key(layer: TileLayer, tile_coord: TileCoord) -> str:
    """Deterministic task id for one physical tile of one layer."""
    z, x, y = tile_coord
    return f'{layer.uid}/{z}/{x}/{y}'


class PrefetchPlanner:
    """Builds sorted prefetch queues; holds no state besides target continuity."""

    def __init__(self, spatial_buffer_factor: float = SPATIAL_BUFFER_FACTOR) -> None:
        self.spatial_buffer_factor = spatial_buffer_factor
        self._last_next_targets_key: str | None = None

    def build_active_spatial_queue(
        self,
        surface: HostSurface,
        active_layer: TileLayer,
        category_priorities: Mapping[PrefetchCategory, float],
    ) -> list[PrefetchTask]:
        """
        Queue of the active layer's offscreen buffer only.

        Used while the user interacts with the surface, so the active layer
        keeps loading while background and next-nav prefetch wait. Stats are
        left to the caller.
        """
        viewport = self._resolve_viewport(surface)
        if viewport is None:
            return []
        ctx = _PlanContext(
            projection=viewport.projection,
            pixel_ratio=_pixel_ratio(surface),
            stats=None,
        )
        self._enqueue_spatial_buffer(
            ctx,
            active_layer,
            viewport.extent,
            viewport.z,
            category_priorities[PrefetchCategory.SPATIAL_ACTIVE],
            PrefetchCategory.SPATIAL_ACTIVE,
        )
        ctx.queue.sort(key=lambda task: task.priority)
        return ctx.queue

    def build_queue(
        self,
        surface: HostSurface,
        active_layer: TileLayer | None,
        background_layers: Sequence[BackgroundLayerEntry],
        next_targets: Sequence[PrefetchTarget],
        category_priorities: Mapping[PrefetchCategory, float],
        stats: PrefetchStats,
    ) -> list[PrefetchTask]:
        next_targets_key = _targets_key(next_targets)
        preserve_next_counts = (
            next_targets_key is not None
            and next_targets_key == self._last_next_targets_key
        )
        counts = stats.category_counts
        prev_next_nav_active = (
            counts[PrefetchCategory.NEXT_NAV_ACTIVE].queued if preserve_next_counts else 0
        )
        prev_next_nav_background = (
            counts[PrefetchCategory.NEXT_NAV_BACKGROUND].queued
            if preserve_next_counts
            else 0
        )

        stats.reset_queued_counts()

        viewport = self._resolve_viewport(surface)
        if viewport is None:
            return []

        ctx = _PlanContext(
            projection=viewport.projection,
            pixel_ratio=_pixel_ratio(surface),
            stats=stats,
        )
        layer_offsets = layer_priority_offsets(background_layers)
        target_step = target_priority_step(len(next_targets))

        if active_layer is not None:
            self._enqueue_spatial_buffer(
                ctx,
                active_layer,
                viewport.extent,
                viewport.z,
                category_priorities[PrefetchCategory.SPATIAL_ACTIVE],
                PrefetchCategory.SPATIAL_ACTIVE,
            )

        for entry in background_layers:
            if entry.layer is active_layer:
                continue
            self._enqueue_viewport_tiles(
                ctx,
                entry.layer,
                viewport.extent,
                viewport.z,
                category_priorities[PrefetchCategory.BACKGROUND_LAYERS_VIEWPORT]
                + layer_offsets[entry.layer.uid],
                PrefetchCategory.BACKGROUND_LAYERS_VIEWPORT,
            )

        # target[0] tiles always precede target[1] tiles within a category
        for index, target in enumerate(next_targets):
            target_offset = index * target_step
            next_z = round(target.zoom)
            try:
                next_resolution = surface.get_resolution_for_zoom(target.zoom)
            except Exception as e:
                logger.debug('Skipping next target %s: %s', target, e)
                continue
            next_extent = get_for_view_and_size(
                target.center, next_resolution, 0, viewport.size
            )

            if active_layer is not None:
                priority = (
                    category_priorities[PrefetchCategory.NEXT_NAV_ACTIVE] + target_offset
                )
                self._enqueue_viewport_tiles(
                    ctx,
                    active_layer,
                    next_extent,
                    next_z,
                    priority,
                    PrefetchCategory.NEXT_NAV_ACTIVE,
                )
                self._enqueue_spatial_buffer(
                    ctx,
                    active_layer,
                    next_extent,
                    next_z,
                    priority,
                    PrefetchCategory.NEXT_NAV_ACTIVE,
                )

            for entry in background_layers:
                if entry.layer is active_layer:
                    continue
                self._enqueue_viewport_tiles(
                    ctx,
                    entry.layer,
                    next_extent,
                    next_z,
                    category_priorities[PrefetchCategory.NEXT_NAV_BACKGROUND]
                    + target_offset
                    + layer_offsets[entry.layer.uid],
                    PrefetchCategory.NEXT_NAV_BACKGROUND,
                )

        self._last_next_targets_key = next_targets_key
        if preserve_next_counts:
            # Display continuity only: the task list itself is untouched
            if counts[PrefetchCategory.NEXT_NAV_ACTIVE].queued == 0:
                stats.set_queued_count(
                    PrefetchCategory.NEXT_NAV_ACTIVE, prev_next_nav_active
                )
            if counts[PrefetchCategory.NEXT_NAV_BACKGROUND].queued == 0:
                stats.set_queued_count(
                    PrefetchCategory.NEXT_NAV_BACKGROUND, prev_next_nav_background
                )

        ctx.queue.sort(key=lambda task: task.priority)
        return ctx.queue

    # ------------------------------------------------------------------

    def _resolve_viewport(self, surface: HostSurface) -> _Viewport | None:
        view_state = surface.get_view_state()
        if view_state is None or view_state.zoom is None:
            return None
        size = surface.get_size()
        if not size:
            return None
        extent = get_for_view_and_size(
            view_state.center,
            view_state.resolution,
            view_state.rotation,
            size,
        )
        return _Viewport(
            extent=extent,
            z=round(view_state.zoom),
            size=size,
            projection=view_state.projection,
        )

    def _enqueue_viewport_tiles(
        self,
        ctx: _PlanContext,
        layer: TileLayer,
        extent: Extent,
        z: int,
        priority: float,
        category: PrefetchCategory,
    ) -> None:
        source = layer.get_source()
        if source is None:
            return
        try:
            tile_grid = source.get_tile_grid_for_projection(ctx.projection)
            tile_range = tile_grid.get_tile_range_for_extent_and_z(extent, z)
        except Exception as e:
            logger.debug('No tile grid for layer %s: %s', layer.name, e)
            return

        for x, y in tile_range:
            self._enqueue_tile(ctx, layer, source, (z, x, y), priority, category)

    def _enqueue_spatial_buffer(
        self,
        ctx: _PlanContext,
        layer: TileLayer,
        view_extent: Extent,
        z: int,
        priority: float,
        category: PrefetchCategory,
    ) -> None:
        source = layer.get_source()
        if source is None:
            return
        buffered_extent = buffer_extent(
            view_extent, spatial_buffer_value(view_extent, self.spatial_buffer_factor)
        )
        try:
            tile_grid = source.get_tile_grid_for_projection(ctx.projection)
            buffered_range = tile_grid.get_tile_range_for_extent_and_z(buffered_extent, z)
            viewport_range = tile_grid.get_tile_range_for_extent_and_z(view_extent, z)
        except Exception as e:
            logger.debug('No tile grid for layer %s: %s', layer.name, e)
            return

        for x, y in buffered_range:
            if viewport_range.contains_xy(x, y):
                continue
            self._enqueue_tile(ctx, layer, source, (z, x, y), priority, category)

    def _enqueue_tile(
        self,
        ctx: _PlanContext,
        layer: TileLayer,
        source: TileSource,
        tile_coord: TileCoord,
        priority: float,
        category: PrefetchCategory,
    ) -> None:
        task_id = tile_key(layer, tile_coord)
        if task_id in ctx.seen_tiles:
            return
        ctx.seen_tiles.add(task_id)

        z, x, y = tile_coord
        try:
            tile = source.get_tile(z, x, y, ctx.pixel_ratio, ctx.projection)
            state = tile.get_state() if tile is not None else None
        except Exception as e:
            logger.debug('Cannot resolve tile %s of layer %s: %s', task_id, layer.name, e)
            return
        if state is None or state in (TileState.LOADED, TileState.LOADING):
            return

        ctx.queue.append(
            PrefetchTask(
                id=task_id,
                priority=priority,
                category=category,
                layer=layer,
                tile_coord=tile_coord,
            ),
        )
        if ctx.stats is not None:
            ctx.stats.record_queued(category)


def target_priority_step(target_count: int) -> float:
    """Per-target offset, shrunk so the last target stays inside TARGET_OFFSET_SPAN."""
    if target_count <= 1:
        return TARGET_PRIORITY_STEP
    return min(TARGET_PRIORITY_STEP, TARGET_OFFSET_SPAN / target_count)


def layer_priority_offsets(
    background_layers: Sequence[BackgroundLayerEntry],
) -> dict[str, float]:
    """
    Sub-priority of each background layer by rank of its registered priority.

    Layers sharing a priority share an offset; the largest offset stays below
    LAYER_OFFSET_SPAN however large the registered priorities are.
    """
    distinct = sorted({entry.priority for entry in background_layers})
    if not distinct:
        return {}
    step = min(LAYER_PRIORITY_STEP, LAYER_OFFSET_SPAN / len(distinct))
    rank = {priority: index for index, priority in enumerate(distinct)}
    return {entry.layer.uid: rank[entry.priority] * step for entry in background_layers}


def _pixel_ratio(surface: HostSurface) -> float:
    return getattr(surface, 'pixel_ratio', None) or 1


def _targets_key(next_targets: Sequence[PrefetchTarget]) -> str | None:
    if not next_targets:
        return None
    return ';'.join(f'{t.center[0]}|{t.center[1]}|{t.zoom}' for t in next_targets)
