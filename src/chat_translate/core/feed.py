"""Feed entries and the feed-source capability consumed by the scheduler."""

from __future__ import annotations

import itertools
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, Optional, Protocol, Sequence

from loguru import logger


class Provenance(str, Enum):
    HISTORICAL = "historical"
    LIVE = "live"


_counter = itertools.count()


def synthesize_entry_id() -> str:
    """Build an id from arrival time for entries the host did not label."""
    return f"entry-{time.time_ns()}-{next(_counter)}"


@dataclass(frozen=True)
class FeedEntryRef:
    entry_id: str
    text: str
    provenance: Provenance = Provenance.LIVE

    @classmethod
    def create(
        cls,
        text: str,
        entry_id: Optional[str] = None,
        provenance: Provenance = Provenance.LIVE,
    ) -> "FeedEntryRef":
        return cls(entry_id=entry_id or synthesize_entry_id(), text=text, provenance=provenance)

    def tagged(self, provenance: Provenance) -> "FeedEntryRef":
        if provenance is self.provenance:
            return self
        return FeedEntryRef(self.entry_id, self.text, provenance)


BatchCallback = Callable[[Sequence[FeedEntryRef]], None]


class Subscription(Protocol):
    def close(self) -> None: ...


class FeedSource(Protocol):
    """Locate the feed container, list its children and report appended ones."""

    def locate(self) -> bool: ...

    def snapshot(self) -> list[FeedEntryRef]: ...

    def subscribe(self, callback: BatchCallback) -> Subscription: ...


class _MemorySubscription:
    def __init__(self, feed: "MemoryFeed", callback: BatchCallback) -> None:
        self._feed = feed
        self._callback = callback

    def close(self) -> None:
        self._feed._unsubscribe(self._callback)


class MemoryFeed:
    """In-process append-only feed; ``append`` notifies subscribers with one batch."""

    def __init__(self, entries: Iterable[FeedEntryRef] = ()) -> None:
        self._entries: list[FeedEntryRef] = list(entries)
        self._callbacks: list[BatchCallback] = []
        self.available = True

    def locate(self) -> bool:
        return self.available

    def snapshot(self) -> list[FeedEntryRef]:
        return list(self._entries)

    def subscribe(self, callback: BatchCallback) -> Subscription:
        self._callbacks.append(callback)
        return _MemorySubscription(self, callback)

    def append(self, *entries: FeedEntryRef) -> None:
        if not entries:
            return
        self._entries.extend(entries)
        for callback in list(self._callbacks):
            try:
                callback(list(entries))
            except Exception as exc:
                logger.error(f"订阅回调执行失败: {exc}")

    def clear(self) -> None:
        """Drop the rendered entries, e.g. when the host swaps channels."""
        self._entries.clear()

    def _unsubscribe(self, callback: BatchCallback) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)
