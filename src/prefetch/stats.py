"""Prefetch statistics: per-category counters, error log and subscriptions."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import replace
from typing import TYPE_CHECKING

from prefetch.categories import PrefetchCategory, create_initial_category_counts
from prefetch.types import StatsSnapshot
from shared.constants import ERROR_LOG_LIMIT, IDLE_TIMEOUT_S

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping, Sequence

    from prefetch.types import CategoryStats, PrefetchError, PrefetchTarget, PrefetchTask

    StatsListener = Callable[[StatsSnapshot], None]

logger = logging.getLogger(__name__)


class _IdleSubscription:
    """One-shot listener fired on the first idle snapshot or on timeout."""

    def __init__(self, callback: StatsListener) -> None:
        self.callback = callback
        self.fired = False
        self.timer: asyncio.TimerHandle | None = None

    def cancel(self) -> None:
        self.fired = True
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None


class PrefetchStats:
    """
    Tracks prefetch counters per category, keeps a ring of recent errors and
    notifies listeners with immutable snapshots.

    Totals (``loaded``, ``errors``) accumulate over the lifetime of the engine;
    ``queued`` counters reflect only the current plan.
    """

    def __init__(self, error_log_limit: int = ERROR_LOG_LIMIT) -> None:
        self._loaded_count = 0
        self._error_count = 0
        self._category_counts = create_initial_category_counts()
        self._error_log: deque[PrefetchError] = deque(maxlen=error_log_limit)
        self._listeners: list[StatsListener] = []
        self._idle_subscriptions: list[_IdleSubscription] = []
        self._last_snapshot: StatsSnapshot | None = None
        self._disposed = False

    @property
    def category_counts(self) -> Mapping[PrefetchCategory, CategoryStats]:
        return self._category_counts

    @property
    def loaded_count(self) -> int:
        return self._loaded_count

    @property
    def error_count(self) -> int:
        return self._error_count

    @property
    def recent_errors(self) -> list[PrefetchError]:
        return list(self._error_log)

    # -- queued ---------------------------------------------------------

    def reset_queued_counts(self) -> None:
        for counts in self._category_counts.values():
            counts.queued = 0

    def record_queued(self, category: PrefetchCategory) -> None:
        self._category_counts[category].queued += 1

    def set_queued_count(self, category: PrefetchCategory, queued: int) -> None:
        self._category_counts[category].queued = queued

    def recount_queued(self, tasks: Iterable[PrefetchTask]) -> None:
        """Make queued counters match exactly the given tasks."""
        self.reset_queued_counts()
        for task in tasks:
            self.record_queued(task.category)

    # -- loading lifecycle ----------------------------------------------

    def record_loading_start(self, category: PrefetchCategory) -> None:
        counts = self._category_counts[category]
        counts.loading += 1
        counts.queued = max(0, counts.queued - 1)

    def record_loading_end(self, category: PrefetchCategory) -> None:
        counts = self._category_counts[category]
        counts.loading = max(0, counts.loading - 1)

    def record_already_loaded(self, category: PrefetchCategory) -> None:
        self._loaded_count += 1
        counts = self._category_counts[category]
        counts.loaded += 1
        counts.queued = max(0, counts.queued - 1)

    def record_loaded(self, category: PrefetchCategory) -> None:
        self._loaded_count += 1
        self._category_counts[category].loaded += 1

    def record_error(self, category: PrefetchCategory, error: PrefetchError) -> None:
        self._error_count += 1
        self._category_counts[category].errors += 1
        self._error_log.appendleft(error)

    def record_empty(self, category: PrefetchCategory) -> None:
        # "No data" shares the category error counter with real failures
        self._category_counts[category].errors += 1

    # -- snapshots ------------------------------------------------------

    def snapshot(
        self,
        queue_length: int,
        loading_size: int,
        paused: bool,
        next_targets: Sequence[PrefetchTarget],
        category_priorities: Mapping[PrefetchCategory, float],
        *,
        enabled: bool = True,
    ) -> StatsSnapshot:
        return StatsSnapshot(
            queued=queue_length,
            loading=loading_size,
            loaded=self._loaded_count,
            errors=self._error_count,
            paused=paused,
            enabled=enabled,
            categories={
                category: replace(counts)
                for category, counts in self._category_counts.items()
            },
            next_targets=tuple(next_targets),
            recent_errors=tuple(self._error_log),
            category_priorities=dict(category_priorities),
        )

    # -- subscriptions --------------------------------------------------

    def on_stats(self, callback: StatsListener) -> Callable[[], None]:
        """Subscribe to every published snapshot; returns an unsubscribe."""
        if self._disposed:
            return _noop
        self._listeners.append(callback)

        def detach() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return detach

    def on_idle(
        self,
        callback: StatsListener,
        timeout: float = IDLE_TIMEOUT_S,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> Callable[[], None]:
        """
        Fire ``callback`` once, the first time ``queued + loading == 0``.

        A safety timer fires it with the last known snapshot if the engine
        never settles, e.g. under persistent errors.
        """
        if self._disposed:
            return _noop
        sub = _IdleSubscription(callback)
        self._idle_subscriptions.append(sub)
        if timeout is not None and timeout > 0:
            loop = loop or asyncio.get_running_loop()
            sub.timer = loop.call_later(timeout, self._fire_idle_timeout, sub)

        def detach() -> None:
            sub.cancel()
            if sub in self._idle_subscriptions:
                self._idle_subscriptions.remove(sub)

        return detach

    def _fire_idle_timeout(self, sub: _IdleSubscription) -> None:
        sub.timer = None
        if sub.fired:
            return
        logger.debug('Idle subscription timed out before the queue drained')
        self._fire_idle(sub, self._last_snapshot)

    def _fire_idle(self, sub: _IdleSubscription, snapshot: StatsSnapshot | None) -> None:
        sub.cancel()
        if sub in self._idle_subscriptions:
            self._idle_subscriptions.remove(sub)
        try:
            sub.callback(snapshot)
        except Exception:
            logger.exception('Idle listener failed')

    def notify(self, snapshot: StatsSnapshot) -> None:
        if self._disposed:
            return
        self._last_snapshot = snapshot
        for callback in list(self._listeners):
            try:
                callback(snapshot)
            except Exception:
                logger.exception('Stats listener failed')
        if snapshot.idle and self._idle_subscriptions:
            for sub in list(self._idle_subscriptions):
                if not sub.fired:
                    self._fire_idle(sub, snapshot)

    def dispose(self) -> None:
        self._disposed = True
        for sub in self._idle_subscriptions:
            sub.cancel()
        self._idle_subscriptions.clear()
        self._listeners.clear()
        self._error_log.clear()
        self._last_snapshot = None


def _noop() -> None:
    return None
