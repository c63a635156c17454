from __future__ import annotations

import contextlib
import logging
import sqlite3
import ssl
from datetime import timedelta
from pathlib import Path

import aiohttp
import certifi
from aiohttp_client_cache import CachedSession, SQLiteBackend

from shared.constants import (
    HTTP_CACHE_DIR,
    HTTP_CACHE_ENABLED,
    HTTP_CACHE_EXPIRE_HOURS,
    HTTP_CACHE_RESPECT_HEADERS,
    HTTP_NO_CONTENT,
    HTTP_OK,
    HTTP_TIMEOUT_DEFAULT,
    HTTP_USER_AGENT,
)

logger = logging.getLogger(__name__)


def resolve_cache_dir() -> Path | None:
    if not HTTP_CACHE_ENABLED:
        return None
    raw_dir = Path(HTTP_CACHE_DIR)
    if raw_dir.is_absolute():
        return raw_dir
    return (Path.home() / raw_dir / 'tiles').resolve()


def make_http_session(cache_dir: Path | None) -> aiohttp.ClientSession:
    """
    Create the session tiles are fetched with.

    With a cache directory, responses are kept in a SQLite HTTP cache so that
    tiles prefetched in one run are served locally in the next.
    """
    ssl_context = ssl.create_default_context(cafile=certifi.where())
    connector = aiohttp.TCPConnector(ssl=ssl_context)
    headers = {'User-Agent': HTTP_USER_AGENT}

    if cache_dir is None:
        return aiohttp.ClientSession(connector=connector, headers=headers)

    cache_dir.mkdir(parents=True, exist_ok=True)
    cache_path = cache_dir / 'http_cache.sqlite'
    with contextlib.suppress(sqlite3.Error):
        if not cache_path.exists():
            with sqlite3.connect(cache_path) as conn:
                conn.execute('PRAGMA journal_mode=WAL;')
    expire_td = timedelta(hours=max(0, int(HTTP_CACHE_EXPIRE_HOURS)))
    backend = SQLiteBackend(str(cache_path), expire_after=expire_td)
    logger.debug('HTTP cache at %s (expire %s)', cache_path, expire_td)
    return CachedSession(
        cache=backend,
        connector=connector,
        headers=headers,
        expire_after=expire_td,
        cache_control=bool(HTTP_CACHE_RESPECT_HEADERS),
    )


async def fetch_tile_bytes(
    client: aiohttp.ClientSession,
    url: str,
    *,
    timeout: float = HTTP_TIMEOUT_DEFAULT,
) -> bytes | None:
    """
    Download one tile.

    Returns None for an empty tile (204 or zero-length body). Any other
    non-200 status and network failures raise RuntimeError.
    """
    client_timeout = aiohttp.ClientTimeout(total=timeout)
    try:
        async with client.get(url, timeout=client_timeout) as resp:
            sc = resp.status
            if sc == HTTP_NO_CONTENT:
                return None
            if sc != HTTP_OK:
                msg = f'HTTP {sc} for tile {url}'
                raise RuntimeError(msg)
            data = await resp.read()
    except (TimeoutError, aiohttp.ClientError) as e:
        msg = f'Network error for tile {url}: {e.__class__.__name__}'
        raise RuntimeError(msg) from e
    return data or None
