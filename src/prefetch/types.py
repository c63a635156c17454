"""Value shapes shared by the planner, loader, stats and manager."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from shared.constants import PrefetchCategory

if TYPE_CHECKING:
    from prefetch.interfaces import TileLayer

Coordinate = tuple[float, float]
Extent = tuple[float, float, float, float]
TileCoord = tuple[int, int, int]
Size = tuple[int, int]


@dataclass(frozen=True)
class PrefetchTarget:
    """Anticipated future viewport."""

    center: Coordinate
    zoom: float


@dataclass
class BackgroundLayerEntry:
    """Layer registered for background prefetch."""

    layer: TileLayer
    priority: float
    order: int = field(default=0, compare=False, repr=False)


@dataclass
class PrefetchTask:
    """One planned tile load."""

    id: str
    priority: float
    category: PrefetchCategory
    layer: TileLayer
    tile_coord: TileCoord
    timestamp: float = field(default_factory=time.time)


@dataclass
class CategoryStats:
    queued: int = 0
    loading: int = 0
    loaded: int = 0
    errors: int = 0


@dataclass(frozen=True)
class PrefetchError:
    """Structured record of a failed prefetch load."""

    tile_coord: TileCoord
    category: PrefetchCategory
    layer_name: str
    reason: str
    timestamp: float = field(default_factory=time.time)

    @property
    def category_name(self) -> str:
        from prefetch.categories import get_category_name

        return get_category_name(self.category)


@dataclass(frozen=True)
class TileRange:
    """Inclusive range of tile grid coordinates at one zoom level."""

    min_x: int
    max_x: int
    min_y: int
    max_y: int

    def contains_xy(self, x: int, y: int) -> bool:
        return self.min_x <= x <= self.max_x and self.min_y <= y <= self.max_y

    def __iter__(self):
        for x in range(self.min_x, self.max_x + 1):
            for y in range(self.min_y, self.max_y + 1):
                yield x, y

    def __len__(self) -> int:
        if self.max_x < self.min_x or self.max_y < self.min_y:
            return 0
        return (self.max_x - self.min_x + 1) * (self.max_y - self.min_y + 1)


@dataclass(frozen=True)
class ViewState:
    """What the host surface reports about its current view."""

    center: Coordinate
    resolution: float
    rotation: float
    zoom: float | None
    projection: str


@dataclass(frozen=True)
class StatsSnapshot:
    """Immutable copy of the engine statistics at one instant."""

    queued: int
    loading: int
    loaded: int
    errors: int
    paused: bool
    enabled: bool
    categories: dict[PrefetchCategory, CategoryStats]
    next_targets: tuple[PrefetchTarget, ...]
    recent_errors: tuple[PrefetchError, ...]
    category_priorities: dict[PrefetchCategory, float]

    @property
    def spatial_active(self) -> CategoryStats:
        return self.categories[PrefetchCategory.SPATIAL_ACTIVE]

    @property
    def bg_viewport(self) -> CategoryStats:
        return self.categories[PrefetchCategory.BACKGROUND_LAYERS_VIEWPORT]

    @property
    def bg_buffer(self) -> CategoryStats:
        return self.categories[PrefetchCategory.BACKGROUND_LAYERS_BUFFER]

    @property
    def next_nav_active(self) -> CategoryStats:
        return self.categories[PrefetchCategory.NEXT_NAV_ACTIVE]

    @property
    def next_nav_background(self) -> CategoryStats:
        return self.categories[PrefetchCategory.NEXT_NAV_BACKGROUND]

    @property
    def next_target(self) -> PrefetchTarget | None:
        return self.next_targets[0] if self.next_targets else None

    @property
    def idle(self) -> bool:
        return self.queued + self.loading == 0
