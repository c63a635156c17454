"""
Prefetch scheduling: decides WHEN to load.

Owns one coalesced tick timer on the asyncio loop and yields to the host's
own loading queue before asking the manager to fill download slots.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from shared.constants import TICK_INTERVAL_S

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)


class PrefetchScheduler:
    def __init__(
        self,
        on_rebuild_needed: Callable[[], None],
        on_fill_slots: Callable[[], None],
        on_stats_changed: Callable[[], None],
        is_host_busy: Callable[[], bool] | None = None,
        *,
        tick_interval: float = TICK_INTERVAL_S,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self.tick_interval = tick_interval
        self._on_rebuild_needed = on_rebuild_needed
        self._on_fill_slots = on_fill_slots
        self._on_stats_changed = on_stats_changed
        self._is_host_busy = is_host_busy or (lambda: False)
        self._loop = loop
        self._tick_timer: asyncio.TimerHandle | None = None
        self._enabled = True
        self._suspended = False
        self._disposed = False

    @property
    def enabled(self) -> bool:
        return self._enabled

    @enabled.setter
    def enabled(self, enabled: bool) -> None:
        self._enabled = enabled
        if not enabled:
            self._cancel_timer()

    @property
    def suspended(self) -> bool:
        return self._suspended

    @property
    def pending(self) -> bool:
        return self._tick_timer is not None

    def schedule_tick(self) -> None:
        """Arm the tick timer unless one is already pending."""
        if (
            self._tick_timer is not None
            or not self._enabled
            or self._suspended
            or self._disposed
        ):
            return
        loop = self._loop or asyncio.get_running_loop()
        self._tick_timer = loop.call_later(self.tick_interval, self._on_tick)

    def _on_tick(self) -> None:
        self._tick_timer = None
        self.run_tick()

    def run_tick(self, user_interacting: bool = False) -> None:
        if not self._enabled or self._disposed or user_interacting:
            return
        if self._host_busy():
            # On-screen demand owns the bandwidth; try again next tick
            self._on_stats_changed()
            self.schedule_tick()
            return
        self._on_rebuild_needed()
        self._on_fill_slots()

    def _host_busy(self) -> bool:
        try:
            return bool(self._is_host_busy())
        except Exception as e:
            logger.debug('Host busy check failed, assuming idle: %s', e)
            return False

    def suspend(self) -> None:
        self._suspended = True
        self._cancel_timer()

    def resume(self) -> None:
        self._suspended = False

    def _cancel_timer(self) -> None:
        if self._tick_timer is not None:
            self._tick_timer.cancel()
            self._tick_timer = None

    def dispose(self) -> None:
        self._disposed = True
        self._cancel_timer()
