"""HTTP client infrastructure."""
from infrastructure.http.client import (
    fetch_tile_bytes,
    make_http_session,
    resolve_cache_dir,
)

__all__ = [
    'fetch_tile_bytes',
    'make_http_session',
    'resolve_cache_dir',
]
