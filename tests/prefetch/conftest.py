"""In-memory host doubles for the prefetch engine tests.

The fake grid uses one projection unit per tile at every zoom. With the default
surface (center (0, 0), resolution 1, size 4x4) the viewport covers tiles
x, y in -2..1 (16 tiles) and the 1.5 buffer adds a ring of 20 tiles around it.
"""

from __future__ import annotations

import itertools
import math
from collections import defaultdict
from collections.abc import Callable

import pytest

from prefetch.interfaces import TileState
from prefetch.types import TileRange, ViewState

# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

_uids = itertools.count(1)


class FakeTile:
    def __init__(self, coord, auto_state=None):
        self.coord = coord
        self.state = TileState.IDLE
        self.error_reason = None
        self.load_calls = 0
        self.auto_state = auto_state
        self.fail_on_load = None
        self._listeners: list[Callable[[], None]] = []

    def get_state(self):
        return self.state

    def on_change(self, listener):
        self._listeners.append(listener)

        def detach():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return detach

    @property
    def listener_count(self):
        return len(self._listeners)

    def load(self):
        self.load_calls += 1
        if self.fail_on_load is not None:
            raise self.fail_on_load
        self.set_state(TileState.LOADING)
        if self.auto_state is not None:
            self.set_state(self.auto_state)

    def set_state(self, state, reason=None):
        self.state = state
        if reason is not None:
            self.error_reason = reason
        for listener in list(self._listeners):
            listener()


class FakeGrid:
    def get_tile_range_for_extent_and_z(self, extent, z):
        min_x, min_y, max_x, max_y = extent
        return TileRange(
            min_x=math.floor(min_x),
            max_x=math.ceil(max_x) - 1,
            min_y=math.floor(min_y),
            max_y=math.ceil(max_y) - 1,
        )


class BrokenGrid:
    def get_tile_range_for_extent_and_z(self, extent, z):
        msg = 'grid exploded'
        raise RuntimeError(msg)


class FakeSource:
    def __init__(self, urls=None, auto_state=None, grid=None):
        self.urls = urls
        self.auto_state = auto_state
        self.grid = grid or FakeGrid()
        self.tiles: dict[tuple[int, int, int], FakeTile] = {}

    def get_tile_grid_for_projection(self, projection):
        return self.grid

    def get_tile(self, z, x, y, pixel_ratio, projection):
        coord = (z, x, y)
        if coord not in self.tiles:
            self.tiles[coord] = FakeTile(coord, auto_state=self.auto_state)
        return self.tiles[coord]

    def get_urls(self):
        return self.urls

    def loading_tiles(self):
        return [t for t in self.tiles.values() if t.state == TileState.LOADING]

    def resolve_all(self, state=TileState.LOADED):
        for tile in self.loading_tiles():
            tile.set_state(state)


class FakeLayer:
    def __init__(self, name=None, source=None):
        self.uid = f'layer-{next(_uids)}'
        self.name = name
        self._source = source if source is not None else FakeSource()

    def __repr__(self):
        return f'FakeLayer({self.name})'

    @property
    def source(self):
        return self._source

    def get_source(self):
        return self._source


class FakeTileQueue:
    def __init__(self):
        self.tiles_loading = 0


class FakeSurface:
    def __init__(self, center=(0.0, 0.0), zoom=5, size=(4, 4), resolution=1.0):
        self.center = center
        self.zoom = zoom
        self.size = size
        self.resolution = resolution
        self.pixel_ratio = 1
        self.projection = 'EPSG:3857'
        self.tile_queue = FakeTileQueue()
        self.view_available = True
        self._listeners: dict[str, list[Callable[[], None]]] = defaultdict(list)

    def get_view_state(self):
        if not self.view_available:
            return None
        return ViewState(
            center=self.center,
            resolution=self.resolution,
            rotation=0.0,
            zoom=self.zoom,
            projection=self.projection,
        )

    def get_size(self):
        return self.size

    def get_resolution_for_zoom(self, zoom):
        return self.resolution

    def on(self, event, listener):
        self._listeners[event].append(listener)

        def detach():
            if listener in self._listeners[event]:
                self._listeners[event].remove(listener)

        return detach

    def listener_count(self):
        return sum(len(v) for v in self._listeners.values())

    def emit(self, event):
        for listener in list(self._listeners[event]):
            listener()


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def surface():
    return FakeSurface()


@pytest.fixture
def make_layer():
    """Factory: make_layer(name, urls=None, auto_state=None, grid=None)."""

    def _make(name=None, **source_kwargs):
        return FakeLayer(name, FakeSource(**source_kwargs))

    return _make


@pytest.fixture
def broken_grid():
    return BrokenGrid()
