from __future__ import annotations

import asyncio
import logging
from io import BytesIO
from typing import TYPE_CHECKING

from PIL import Image, UnidentifiedImageError

from prefetch.interfaces import TileState

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from prefetch.types import TileCoord

logger = logging.getLogger(__name__)


class ImageTile:
    """
    Raster tile loaded over HTTP and decoded with Pillow.

    ``load()`` is fire-and-forget: it starts an asyncio task and returns; the
    outcome is reported through ``on_change`` listeners. A tile in ERROR or
    EMPTY state fetches again on the next ``load()``.
    """

    def __init__(
        self,
        tile_coord: TileCoord,
        url: str,
        fetch: Callable[[str], Awaitable[bytes | None]],
    ) -> None:
        self.tile_coord = tile_coord
        self.url = url
        self._fetch = fetch
        self._state = TileState.IDLE
        self._listeners: list[Callable[[], None]] = []
        self._task: asyncio.Task | None = None
        self.image: Image.Image | None = None
        self.error_reason: str | None = None

    def __repr__(self) -> str:
        return f'ImageTile({self.tile_coord}, {self._state.value})'

    def get_state(self) -> TileState:
        return self._state

    def on_change(self, listener: Callable[[], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def detach() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return detach

    def load(self) -> None:
        if self._state in (TileState.LOADING, TileState.LOADED):
            return
        self.error_reason = None
        self._set_state(TileState.LOADING)
        self._task = asyncio.get_running_loop().create_task(self._run())

    def dispose(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        self._listeners.clear()
        self.image = None

    async def _run(self) -> None:
        try:
            data = await self._fetch(self.url)
        except Exception as e:
            self.error_reason = str(e)
            logger.debug('Tile %s failed: %s', self.tile_coord, e)
            self._set_state(TileState.ERROR)
            return

        if not data:
            self._set_state(TileState.EMPTY)
            return

        try:
            with Image.open(BytesIO(data)) as img:
                img.load()
                self.image = img.copy()
        except (UnidentifiedImageError, OSError) as e:
            self.error_reason = f'Cannot decode tile image: {e}'
            self._set_state(TileState.ERROR)
            return
        self._set_state(TileState.LOADED)

    def _set_state(self, state: TileState) -> None:
        self._state = state
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                logger.exception('Tile state listener failed')
