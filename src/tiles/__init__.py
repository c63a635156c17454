"""Headless XYZ host for the prefetch engine.

This module provides:
- XyzTileGrid: Web Mercator tile grid
- ImageTile: HTTP tile with a load lifecycle, decoded with Pillow
- XyzSource: URL-template tile source sharing one tile per coordinate
- TileLayer: named layer over a source
- MapSurface / TileQueue: view, events and on-demand loading of visible tiles
"""

from tiles.grid import XyzTileGrid, get_grid_for_projection, lonlat_to_web_mercator
from tiles.layer import TileLayer
from tiles.source import XyzSource, expand_url
from tiles.surface import MapSurface, TileQueue
from tiles.tile import ImageTile

__all__ = [
    'ImageTile',
    'MapSurface',
    'TileLayer',
    'TileQueue',
    'XyzSource',
    'XyzTileGrid',
    'expand_url',
    'get_grid_for_projection',
    'lonlat_to_web_mercator',
]
