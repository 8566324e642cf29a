"""Pytest fixtures for timer-driven components."""

from __future__ import annotations

import heapq
import itertools
from typing import Callable

import pytest


class ManualHandle:
    def __init__(self, when: float, callback: Callable[[], None]) -> None:
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualTimers:
    """Deterministic clock: callbacks only run inside ``advance``."""

    def __init__(self, start: float = 0.0) -> None:
        self._now = start
        self._heap: list = []
        self._seq = itertools.count()

    def now(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callable[[], None]) -> ManualHandle:
        handle = ManualHandle(self._now + max(0.0, delay), callback)
        heapq.heappush(self._heap, (handle.when, next(self._seq), handle))
        return handle

    def advance(self, seconds: float) -> None:
        target = self._now + seconds
        while self._heap and self._heap[0][0] <= target:
            when, _, handle = heapq.heappop(self._heap)
            if handle.cancelled:
                continue
            self._now = when
            handle.callback()
        self._now = target

    def advance_ms(self, ms: float) -> None:
        self.advance(ms / 1000.0)

    @property
    def scheduled(self) -> int:
        return sum(1 for _, _, handle in self._heap if not handle.cancelled)


@pytest.fixture
def timers() -> ManualTimers:
    return ManualTimers()
