"""Tests for ImageTile and XyzSource."""

from __future__ import annotations

import asyncio
from io import BytesIO
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from PIL import Image

from prefetch.interfaces import TERMINAL_TILE_STATES, TileState, UrlTileSource
from tiles.source import XyzSource, expand_url, format_tile_url
from tiles.tile import ImageTile


def _png_bytes() -> bytes:
    buf = BytesIO()
    Image.new('RGB', (256, 256), (10, 20, 30)).save(buf, format='PNG')
    return buf.getvalue()


async def _settled(tile: ImageTile) -> TileState:
    for _ in range(100):
        if tile.get_state() in TERMINAL_TILE_STATES:
            break
        await asyncio.sleep(0.001)
    return tile.get_state()


class TestImageTile:
    @pytest.mark.asyncio
    async def test_load_decodes_image(self):
        fetch = AsyncMock(return_value=_png_bytes())
        tile = ImageTile((1, 0, 0), 'https://t.example/1/0/0.png', fetch)
        changes = []
        tile.on_change(lambda: changes.append(tile.get_state()))

        tile.load()
        assert tile.get_state() == TileState.LOADING
        assert await _settled(tile) == TileState.LOADED
        assert tile.image.size == (256, 256)
        assert changes == [TileState.LOADING, TileState.LOADED]
        fetch.assert_awaited_once_with('https://t.example/1/0/0.png')

    @pytest.mark.asyncio
    async def test_repeated_load_while_loading_is_noop(self):
        fetch = AsyncMock(return_value=_png_bytes())
        tile = ImageTile((1, 0, 0), 'u', fetch)
        tile.load()
        tile.load()
        await _settled(tile)
        tile.load()
        assert fetch.await_count == 1

    @pytest.mark.asyncio
    async def test_fetch_error(self):
        fetch = AsyncMock(side_effect=RuntimeError('HTTP 404 for tile u'))
        tile = ImageTile((1, 0, 0), 'u', fetch)
        tile.load()
        assert await _settled(tile) == TileState.ERROR
        assert tile.error_reason == 'HTTP 404 for tile u'

    @pytest.mark.asyncio
    async def test_undecodable_payload(self):
        tile = ImageTile((1, 0, 0), 'u', AsyncMock(return_value=b'not an image'))
        tile.load()
        assert await _settled(tile) == TileState.ERROR
        assert tile.error_reason.startswith('Cannot decode tile image')

    @pytest.mark.asyncio
    async def test_empty_payload(self):
        tile = ImageTile((1, 0, 0), 'u', AsyncMock(return_value=None))
        tile.load()
        assert await _settled(tile) == TileState.EMPTY

    @pytest.mark.asyncio
    async def test_failed_tile_loads_again(self):
        fetch = AsyncMock(side_effect=[RuntimeError('boom'), _png_bytes()])
        tile = ImageTile((1, 0, 0), 'u', fetch)
        tile.load()
        await _settled(tile)
        tile.load()
        assert tile.error_reason is None
        assert await _settled(tile) == TileState.LOADED

    @pytest.mark.asyncio
    async def test_detached_listener_not_called(self):
        tile = ImageTile((1, 0, 0), 'u', AsyncMock(return_value=None))
        listener = MagicMock()
        detach = tile.on_change(listener)
        detach()
        detach()
        tile.load()
        await _settled(tile)
        listener.assert_not_called()

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_tile(self):
        tile = ImageTile((1, 0, 0), 'u', AsyncMock(return_value=_png_bytes()))
        tile.on_change(MagicMock(side_effect=RuntimeError('listener bug')))
        tile.load()
        assert await _settled(tile) == TileState.LOADED

    @pytest.mark.asyncio
    async def test_dispose_cancels_fetch(self):
        started = asyncio.Event()

        async def slow_fetch(url):
            started.set()
            await asyncio.sleep(10)

        tile = ImageTile((1, 0, 0), 'u', slow_fetch)
        tile.load()
        await started.wait()
        task = tile._task
        tile.dispose()
        await asyncio.gather(task, return_exceptions=True)
        assert task.cancelled()
        assert tile.get_state() == TileState.LOADING


class TestUrls:
    def test_expand_letters(self):
        assert expand_url('https://{a-c}.t.example/{z}/{x}/{y}.png') == [
            'https://a.t.example/{z}/{x}/{y}.png',
            'https://b.t.example/{z}/{x}/{y}.png',
            'https://c.t.example/{z}/{x}/{y}.png',
        ]

    def test_expand_numbers(self):
        assert expand_url('https://mt{0-1}.example/{z}/{x}/{y}') == [
            'https://mt0.example/{z}/{x}/{y}',
            'https://mt1.example/{z}/{x}/{y}',
        ]

    def test_no_range(self):
        assert expand_url('https://t.example/{z}/{x}/{y}') == ['https://t.example/{z}/{x}/{y}']

    def test_format(self):
        assert format_tile_url('/{z}/{x}/{y}', 3, 1, 2) == '/3/1/2'
        assert format_tile_url('/{z}/{x}/{-y}', 3, 1, 2) == '/3/1/5'


class TestXyzSource:
    def test_tiles_are_shared_per_coordinate(self):
        source = XyzSource('https://t.example/{z}/{x}/{y}.png', MagicMock())
        tile = source.get_tile(3, 1, 2)
        assert source.get_tile(3, 1, 2) is tile
        assert tile.url == 'https://t.example/3/1/2.png'
        assert source.tile_count == 1

    def test_subdomains_spread_requests(self):
        source = XyzSource('https://{a-b}.t.example/{z}/{x}/{y}.png', MagicMock())
        assert source.get_urls() == [
            'https://a.t.example/{z}/{x}/{y}.png',
            'https://b.t.example/{z}/{x}/{y}.png',
        ]
        hosts = {source.get_tile(2, x, 0).url.split('.')[0] for x in range(2)}
        assert hosts == {'https://a', 'https://b'}

    def test_is_url_source(self):
        assert isinstance(XyzSource('u/{z}/{x}/{y}', MagicMock()), UrlTileSource)

    def test_wrong_projection(self):
        source = XyzSource('u/{z}/{x}/{y}', MagicMock())
        with pytest.raises(ValueError):
            source.get_tile(1, 0, 0, 1, 'EPSG:4326')
        with pytest.raises(ValueError):
            source.get_tile_grid_for_projection('EPSG:4326')

    def test_requires_url(self):
        with pytest.raises(ValueError):
            XyzSource([], MagicMock())

    @pytest.mark.asyncio
    async def test_fetch_goes_through_http_client(self):
        client = MagicMock()
        with patch(
            'tiles.source.fetch_tile_bytes', AsyncMock(return_value=_png_bytes())
        ) as fetch:
            source = XyzSource('https://t.example/{z}/{x}/{y}.png', client, timeout=5)
            tile = source.get_tile(1, 1, 1)
            tile.load()
            assert await _settled(tile) == TileState.LOADED
        fetch.assert_awaited_once_with(client, 'https://t.example/1/1/1.png', timeout=5)

    def test_clear(self):
        source = XyzSource('u/{z}/{x}/{y}', MagicMock())
        source.get_tile(1, 0, 0)
        source.clear()
        assert source.tile_count == 0
