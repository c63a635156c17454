from __future__ import annotations

import re
import string
from typing import TYPE_CHECKING

from infrastructure.http.client import fetch_tile_bytes
from shared.constants import HTTP_TIMEOUT_DEFAULT, WEB_MERCATOR_CODE
from tiles.grid import get_grid_for_projection
from tiles.tile import ImageTile

if TYPE_CHECKING:
    import aiohttp

    from prefetch.types import TileCoord
    from tiles.grid import XyzTileGrid

_RANGE_RE = re.compile(r'\{([a-z])-([a-z])\}|\{(\d+)-(\d+)\}')


def expand_url(url: str) -> list[str]:
    """
    Expand a ``{a-c}`` or ``{1-4}`` range in a template into one URL each.

    >>> expand_url('https://{a-b}.tile.example/{z}/{x}/{y}.png')
    ['https://a.tile.example/{z}/{x}/{y}.png', 'https://b.tile.example/{z}/{x}/{y}.png']
    """
    match = _RANGE_RE.search(url)
    if match is None:
        return [url]
    if match.group(1):
        letters = string.ascii_lowercase
        start, stop = letters.index(match.group(1)), letters.index(match.group(2))
        values = [letters[i] for i in range(start, stop + 1)]
    else:
        values = [str(i) for i in range(int(match.group(3)), int(match.group(4)) + 1)]
    return [url[: match.start()] + value + url[match.end() :] for value in values]


def format_tile_url(template: str, z: int, x: int, y: int) -> str:
    return (
        template.replace('{z}', str(z))
        .replace('{x}', str(x))
        .replace('{y}', str(y))
        .replace('{-y}', str(2**z - 1 - y))
    )


class XyzSource:
    """
    Tile source over one or more ``{z}/{x}/{y}`` URL templates.

    Tiles are created on first request and kept per coordinate, so the engine
    and the surface share one handle (and one load) per tile.
    """

    def __init__(
        self,
        url: str | list[str],
        client: aiohttp.ClientSession,
        *,
        projection: str = WEB_MERCATOR_CODE,
        timeout: float = HTTP_TIMEOUT_DEFAULT,
    ) -> None:
        templates = [url] if isinstance(url, str) else list(url)
        self._urls = [expanded for tpl in templates for expanded in expand_url(tpl)]
        if not self._urls:
            msg = 'XyzSource needs at least one URL template'
            raise ValueError(msg)
        self._client = client
        self._timeout = timeout
        self.projection = projection
        self._tiles: dict[TileCoord, ImageTile] = {}

    def get_urls(self) -> list[str]:
        return list(self._urls)

    def get_tile_grid_for_projection(self, projection: str) -> XyzTileGrid:
        return get_grid_for_projection(projection)

    def get_tile(
        self,
        z: int,
        x: int,
        y: int,
        pixel_ratio: float = 1,
        projection: str = WEB_MERCATOR_CODE,
    ) -> ImageTile:
        if projection != self.projection:
            msg = f'Source serves {self.projection}, not {projection}'
            raise ValueError(msg)
        coord = (z, x, y)
        tile = self._tiles.get(coord)
        if tile is None:
            template = self._urls[(x + y) % len(self._urls)]
            tile = ImageTile(coord, format_tile_url(template, z, x, y), self._fetch)
            self._tiles[coord] = tile
        return tile

    @property
    def tile_count(self) -> int:
        return len(self._tiles)

    def clear(self) -> None:
        for tile in self._tiles.values():
            tile.dispose()
        self._tiles.clear()

    async def _fetch(self, url: str) -> bytes | None:
        return await fetch_tile_bytes(self._client, url, timeout=self._timeout)
