from __future__ import annotations

import itertools
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from tiles.source import XyzSource

_uid_counter = itertools.count(1)


class TileLayer:
    """Named tile layer; ``uid`` is unique per process."""

    def __init__(
        self,
        source: XyzSource | None,
        name: str | None = None,
        *,
        visible: bool = True,
    ) -> None:
        self.uid = str(next(_uid_counter))
        self.name = name
        self.visible = visible
        self._source = source

    def __repr__(self) -> str:
        return f'TileLayer(uid={self.uid!r}, name={self.name!r})'

    def get_source(self) -> XyzSource | None:
        return self._source

    def set_source(self, source: XyzSource | None) -> None:
        self._source = source
