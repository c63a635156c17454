"""Web Mercator XYZ tile grid."""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

from prefetch.types import TileRange
from shared.constants import EARTH_RADIUS_M, MAX_ZOOM, TILE_SIZE, WEB_MERCATOR_CODE, XY_EPSILON

if TYPE_CHECKING:
    from prefetch.types import Extent

# Half of the world width in EPSG:3857 meters
HALF_WORLD_M = math.pi * EARTH_RADIUS_M


class XyzTileGrid:
    """Standard XYZ layout: origin at the top-left corner, y grows southwards."""

    def __init__(self, tile_size: int = TILE_SIZE, max_zoom: int = MAX_ZOOM) -> None:
        self.tile_size = tile_size
        self.max_zoom = max_zoom
        self.origin = (-HALF_WORLD_M, HALF_WORLD_M)

    def get_resolution(self, z: float) -> float:
        """Meters per pixel at zoom ``z`` (fractional zooms allowed)."""
        return 2 * HALF_WORLD_M / (self.tile_size * 2**z)

    def get_tile_range_for_extent_and_z(self, extent: Extent, z: int) -> TileRange:
        """
        Tiles intersecting ``extent`` at zoom ``z``, clamped to the grid.

        A tile touching the extent only along an edge is not included.
        """
        if not 0 <= z <= self.max_zoom:
            msg = f'Zoom {z} outside of grid range 0..{self.max_zoom}'
            raise ValueError(msg)
        span = self.tile_size * self.get_resolution(z)
        ox, oy = self.origin
        min_x, min_y, max_x, max_y = extent

        last = 2**z - 1
        tx_min = math.floor((min_x - ox) / span + XY_EPSILON)
        tx_max = math.ceil((max_x - ox) / span - XY_EPSILON) - 1
        ty_min = math.floor((oy - max_y) / span + XY_EPSILON)
        ty_max = math.ceil((oy - min_y) / span - XY_EPSILON) - 1
        return TileRange(
            min_x=max(0, tx_min),
            max_x=min(last, tx_max),
            min_y=max(0, ty_min),
            max_y=min(last, ty_max),
        )

    def get_tile_extent(self, z: int, x: int, y: int) -> Extent:
        span = self.tile_size * self.get_resolution(z)
        ox, oy = self.origin
        return (ox + x * span, oy - (y + 1) * span, ox + (x + 1) * span, oy - y * span)


_GRIDS: dict[str, XyzTileGrid] = {}


def get_grid_for_projection(projection: str) -> XyzTileGrid:
    if projection != WEB_MERCATOR_CODE:
        msg = f'Unsupported projection: {projection}'
        raise ValueError(msg)
    if projection not in _GRIDS:
        _GRIDS[projection] = XyzTileGrid()
    return _GRIDS[projection]


def lonlat_to_web_mercator(lon: float, lat: float) -> tuple[float, float]:
    """WGS84 degrees to EPSG:3857 meters (spherical formulas)."""
    x = math.radians(lon) * EARTH_RADIUS_M
    y = math.log(math.tan(math.pi / 4 + math.radians(lat) / 2)) * EARTH_RADIUS_M
    return x, y
