"""Anticipatory tile prefetch engine.

This package provides:
- PrefetchManager: public surface, interaction state machine
- PrefetchPlanner: builds the prioritised task queue
- TileLoader: bounded in-flight loads with cooperative abandonment
- PrefetchScheduler: coalesced tick timer yielding to the host's own loading
- PrefetchStats: counters, recent errors and snapshots
"""

from prefetch.categories import (
    DEFAULT_CATEGORY_PRIORITIES,
    PrefetchCategory,
    get_category_name,
)
from prefetch.interfaces import TileState
from prefetch.loader import TileLoader
from prefetch.manager import ManagerState, PrefetchManager
from prefetch.planner import PrefetchPlanner
from prefetch.scheduler import PrefetchScheduler
from prefetch.stats import PrefetchStats
from prefetch.types import (
    BackgroundLayerEntry,
    CategoryStats,
    PrefetchError,
    PrefetchTarget,
    PrefetchTask,
    StatsSnapshot,
    TileRange,
    ViewState,
)

__all__ = [
    'DEFAULT_CATEGORY_PRIORITIES',
    'BackgroundLayerEntry',
    'CategoryStats',
    'ManagerState',
    'PrefetchCategory',
    'PrefetchError',
    'PrefetchManager',
    'PrefetchPlanner',
    'PrefetchScheduler',
    'PrefetchStats',
    'PrefetchTarget',
    'PrefetchTask',
    'StatsSnapshot',
    'TileLoader',
    'TileRange',
    'TileState',
    'ViewState',
    'get_category_name',
]
