"""Bounded-concurrency dispatcher in front of the translate operation."""

from __future__ import annotations

import asyncio
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from loguru import logger

from .cache import CacheEntry, TranslationCache
from .errors import EnvironmentInvalidated, ErrorKind, QueueCancelled, TranslateError
from .translator import CACHED_ENGINE, TranslationResult

TranslateFn = Callable[[str, str], Awaitable[TranslationResult]]

DEFAULT_MAX_CONCURRENT = 3


@dataclass
class QueueItem:
    text: str
    source_lang: str
    future: asyncio.Future
    enqueued_at: float = field(default_factory=time.monotonic)


class RequestQueue:
    """Dispatch queued translations with at most ``max_concurrent`` in flight.

    A failing item only rejects its own future. ``EnvironmentInvalidated`` halts
    draining and is reported through ``on_invalidated``; ``resume`` restarts it.
    """

    def __init__(
        self,
        translate: TranslateFn,
        cache: Optional[TranslationCache] = None,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT,
        dispatch_delay: float = 0.0,
        on_invalidated: Optional[Callable[[EnvironmentInvalidated], None]] = None,
    ) -> None:
        self._translate = translate
        self.cache = cache
        self.max_concurrent = max(1, max_concurrent)
        self.dispatch_delay = dispatch_delay
        self.on_invalidated = on_invalidated

        self._pending: deque[QueueItem] = deque()
        self._active = 0
        self._peak = 0
        self._halted = False
        self._drain_task: Optional[asyncio.Task] = None
        self._tasks: set[asyncio.Task] = set()

    @property
    def active(self) -> int:
        return self._active

    @property
    def peak(self) -> int:
        return self._peak

    @property
    def halted(self) -> bool:
        return self._halted

    def __len__(self) -> int:
        return len(self._pending)

    def configure(self, max_concurrent: Optional[int] = None, dispatch_delay: Optional[float] = None) -> None:
        if max_concurrent is not None:
            self.max_concurrent = max(1, max_concurrent)
        if dispatch_delay is not None:
            self.dispatch_delay = max(0.0, dispatch_delay)
        self._schedule_drain()

    def enqueue(self, text: str, source_lang: str = "auto") -> "asyncio.Future[TranslationResult]":
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        if not text or not text.strip():
            future.set_exception(TranslateError("翻译文本为空", ErrorKind.VALIDATION))
            return future
        self._pending.append(QueueItem(text=text, source_lang=source_lang, future=future))
        self._schedule_drain()
        return future

    def cancel_all(self, reason: str = "队列已清空") -> int:
        cancelled = 0
        while self._pending:
            item = self._pending.popleft()
            if not item.future.done():
                item.future.set_exception(QueueCancelled(reason))
                cancelled += 1
        if cancelled:
            logger.info(f"已取消 {cancelled} 个待处理请求: {reason}")
        return cancelled

    def resume(self) -> None:
        if self._halted:
            logger.info("请求队列恢复处理")
        self._halted = False
        self._schedule_drain()

    def status(self) -> dict[str, Any]:
        oldest = time.monotonic() - self._pending[0].enqueued_at if self._pending else None
        return {
            "size": len(self._pending),
            "active": self._active,
            "halted": self._halted,
            "maxConcurrent": self.max_concurrent,
            "oldestRequest": oldest,
        }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _schedule_drain(self) -> None:
        if self._drain_task is not None and not self._drain_task.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._drain_task = loop.create_task(self._drain())

    async def _drain(self) -> None:
        while not self._halted and self._pending and self._active < self.max_concurrent:
            item = self._pending.popleft()
            if item.future.done():
                continue
            self._active += 1
            self._peak = max(self._peak, self._active)
            task = asyncio.create_task(self._dispatch(item))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            if self.dispatch_delay and self._pending:
                await asyncio.sleep(self.dispatch_delay)

    async def _dispatch(self, item: QueueItem) -> None:
        try:
            result = await self._translate(item.text, item.source_lang)
        except EnvironmentInvalidated as exc:
            self._halted = True
            logger.warning(f"运行环境已失效，暂停请求队列: {exc}")
            self._reject(item, exc)
            if self.on_invalidated is not None:
                self.on_invalidated(exc)
        except Exception as exc:
            logger.warning(f"翻译请求失败: {exc}")
            self._reject(item, exc)
        else:
            if result.success and result.engine != CACHED_ENGINE and self.cache is not None:
                self.cache.put(
                    item.source_lang,
                    item.text,
                    CacheEntry(translated_text=result.translated_text, engine=result.engine),
                )
            if not item.future.done():
                item.future.set_result(result)
        finally:
            self._active -= 1
            self._schedule_drain()

    @staticmethod
    def _reject(item: QueueItem, exc: BaseException) -> None:
        if not item.future.done():
            item.future.set_exception(exc)
