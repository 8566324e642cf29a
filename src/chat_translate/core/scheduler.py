"""Staggered release of newly observed feed entries."""

from __future__ import annotations

from collections import Counter, deque
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from loguru import logger

from ..config.schemas import TranslationSettings
from .feed import FeedEntryRef, FeedSource, Provenance, Subscription
from .session import ChannelTransitionTracker
from .timers import TimerHandle, Timers

EntrySink = Callable[[FeedEntryRef, int], None]

# Timer callbacks may run marginally before their deadline.
_DUE_TOLERANCE = 1e-3


@dataclass
class _PendingRelease:
    due: float
    entry: FeedEntryRef
    generation: int
    token: int


class IngestScheduler:
    """Throttle feed bursts and tag each entry as historical or live.

    Entry ``i`` of a batch is released ``i * request_delay`` after the batch
    arrived, never before an entry of an earlier batch. At release the current
    generation, grace period and ``process_existing`` setting are re-read; the
    entry is either handed to ``sink(entry, generation)`` or dropped.
    """

    def __init__(
        self,
        tracker: ChannelTransitionTracker,
        timers: Timers,
        sink: EntrySink,
        settings: Callable[[], TranslationSettings] = TranslationSettings,
    ) -> None:
        self._tracker = tracker
        self._timers = timers
        self._sink = sink
        self._settings = settings

        self._feed: Optional[FeedSource] = None
        self._subscription: Optional[Subscription] = None
        self._token = 0
        self._line: deque[_PendingRelease] = deque()
        self._last_due = 0.0
        self._timer: Optional[TimerHandle] = None
        self._historical_ids: set[str] = set()
        self.dropped: Counter[str] = Counter()
        self.released = 0

    @property
    def attached(self) -> bool:
        return self._subscription is not None

    @property
    def pending(self) -> int:
        return len(self._line)

    def attach(self, feed: FeedSource) -> bool:
        if self.attached:
            self.detach()
        if not feed.locate():
            logger.warning("未找到聊天容器，稍后重试")
            return False

        self._feed = feed
        self._token += 1
        self._historical_ids.clear()
        self._subscription = feed.subscribe(self.on_batch)
        logger.info("开始监视聊天消息")

        if self._settings().process_existing:
            existing = feed.snapshot()
            logger.info(f"处理 {len(existing)} 条已有消息")
            self._enqueue([entry.tagged(Provenance.HISTORICAL) for entry in existing])
        return True

    def detach(self) -> None:
        if self._subscription is not None:
            self._subscription.close()
            logger.info("停止监视聊天消息")
        self._subscription = None
        self._feed = None
        self._token += 1
        self._line.clear()
        self._last_due = 0.0
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def on_batch(self, entries: Sequence[FeedEntryRef]) -> None:
        if not self.attached:
            return
        self._enqueue(entries)

    def mark_existing_historical(self) -> int:
        """Treat everything currently rendered in the feed as historical."""
        if self._feed is None:
            return 0
        ids = {entry.entry_id for entry in self._feed.snapshot()}
        self._historical_ids |= ids
        logger.debug(f"{len(ids)} 条消息标记为历史消息")
        return len(ids)

    # ------------------------------------------------------------------
    # Release line
    # ------------------------------------------------------------------
    def _enqueue(self, entries: Sequence[FeedEntryRef]) -> None:
        if not entries:
            return
        generation = self._tracker.current_generation()
        delay = self._settings().request_delay_ms / 1000.0
        now = self._timers.now()
        for index, entry in enumerate(entries):
            due = max(now + index * delay, self._last_due)
            self._last_due = due
            self._line.append(_PendingRelease(due, entry, generation, self._token))
        self._arm()

    def _arm(self) -> None:
        if self._timer is not None or not self._line:
            return
        delay = self._line[0].due - self._timers.now()
        self._timer = self._timers.call_later(max(0.0, delay), self._fire)

    def _fire(self) -> None:
        self._timer = None
        now = self._timers.now()
        while self._line and self._line[0].due <= now + _DUE_TOLERANCE:
            self._release(self._line.popleft())
        self._arm()

    def _release(self, pending: _PendingRelease) -> None:
        entry = pending.entry
        if pending.token != self._token:
            self._drop(entry, "detached")
            return
        if self._tracker.current_generation() != pending.generation:
            self._drop(entry, "stale_generation")
            return
        if self._tracker.is_in_grace_period():
            self._drop(entry.tagged(Provenance.HISTORICAL), "grace_period")
            return

        if entry.entry_id in self._historical_ids:
            entry = entry.tagged(Provenance.HISTORICAL)
        if entry.provenance is Provenance.HISTORICAL:
            session = self._tracker.session
            if not self._settings().process_existing:
                self._drop(entry, "historical_disabled")
                return
            if session is None or session.entered_by_navigation:
                self._drop(entry, "historical_after_transition")
                return

        self.released += 1
        self._sink(entry, pending.generation)

    def _drop(self, entry: FeedEntryRef, reason: str) -> None:
        self.dropped[reason] += 1
        logger.debug(f"跳过消息 {entry.entry_id} ({entry.provenance.value}): {reason}")
