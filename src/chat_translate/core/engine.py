"""Ingestion side: navigation tracking, throttled feed release and rendering."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Optional, Protocol

from loguru import logger
from pydantic import ValidationError

from ..config.schemas import PageRules, TranslationSettings
from .dedup import DeduplicationStore
from .eligibility import Thresholds, is_eligible
from .errors import EnvironmentInvalidated
from .feed import FeedEntryRef, FeedSource
from .retry import RetryPolicy
from .scheduler import IngestScheduler
from .session import ChannelSession, ChannelTransitionTracker, TrackerState
from .timers import LoopTimers, TimerHandle, Timers
from .translator import TranslationResult

Renderer = Callable[[FeedEntryRef, TranslationResult], None]

# The feed container may render some time after navigation settles.
ATTACH_RETRY_INTERVAL = 1.0
ATTACH_MAX_ATTEMPTS = 10


class MessageChannel(Protocol):
    def send(self, message: dict[str, Any]) -> Awaitable[dict[str, Any]]: ...


class TranslationEngine:
    """Drive the pipeline from navigation events down to the renderer.

    Released entries are classified, deduplicated and sent to the background
    side as ``translate`` messages. A result is rendered only while the
    generation it was released under is still current.
    """

    def __init__(
        self,
        channel: MessageChannel,
        feed: FeedSource,
        renderer: Renderer,
        timers: Optional[Timers] = None,
        rules: Optional[PageRules] = None,
        retry: Optional[RetryPolicy] = None,
    ) -> None:
        self._channel = channel
        self._feed = feed
        self._renderer = renderer
        self._timers = timers or LoopTimers()
        self._retry = retry or RetryPolicy()
        self._settings = TranslationSettings()

        self.dedup = DeduplicationStore()
        self.tracker = ChannelTransitionTracker(
            self.dedup,
            self._timers,
            grace_period=self._settings.grace_period_ms / 1000.0,
            debounce=self._settings.navigation_debounce_ms / 1000.0,
            rules=rules,
            on_transition=self._on_transition,
            on_active=self._on_active,
            on_stop=self._on_stop,
        )
        self.scheduler = IngestScheduler(self.tracker, self._timers, self._submit, settings=lambda: self._settings)

        self._location: Optional[str] = None
        self._running = False
        self._attach_handle: Optional[TimerHandle] = None
        self._tasks: set[asyncio.Task] = set()
        self._reconnect_task: Optional[asyncio.Task] = None
        self.rendered = 0

    @property
    def settings(self) -> TranslationSettings:
        return self._settings

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def reconnecting(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    async def start(self, location: Optional[str]) -> None:
        if self._running:
            return
        self._running = True
        await self.refresh_settings()
        if not self._running:
            return
        logger.info(f"翻译引擎已启动: {location}")
        self._location = location
        self.tracker.on_navigation(None, location)

    def navigate(self, location: Optional[str]) -> None:
        previous, self._location = self._location, location
        if not self._running:
            return
        self.tracker.on_navigation(previous, location)

    def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        self._cancel_attach_retry()
        self.scheduler.detach()
        self.tracker.stop()
        task = self._reconnect_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        logger.info("翻译引擎已停止")

    async def refresh_settings(self) -> TranslationSettings:
        """Fetch the current settings from the background side."""
        try:
            response = await self._channel.send({"action": "getSettings"})
        except EnvironmentInvalidated as exc:
            self._on_invalidated(exc)
            return self._settings
        if not response.get("success"):
            logger.warning(f"获取设置失败，继续使用当前设置: {response.get('error')}")
            return self._settings
        try:
            self._settings = TranslationSettings.model_validate(response["settings"]["translation"])
        except (KeyError, TypeError, ValidationError) as exc:
            logger.warning(f"设置格式错误，继续使用当前设置: {exc}")
            return self._settings
        self.tracker.grace_period = self._settings.grace_period_ms / 1000.0
        self.tracker.debounce = self._settings.navigation_debounce_ms / 1000.0
        return self._settings

    async def on_settings_updated(self) -> TranslationSettings:
        """Re-fetch settings after a ``settingsUpdated`` notice and follow ``enabled``."""
        settings = await self.refresh_settings()
        if not self._running or self.reconnecting:
            return settings
        if not settings.enabled:
            if self.scheduler.attached:
                logger.info("翻译已关闭，停止监视")
            self._cancel_attach_retry()
            self.scheduler.detach()
        elif not self.scheduler.attached and self.tracker.state in (TrackerState.GRACE, TrackerState.ACTIVE):
            logger.info("翻译已开启，开始监视")
            self._attach(self.tracker.current_generation(), attempt=1)
        return settings

    async def drain(self) -> None:
        """Wait for every in-flight entry to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # Tracker callbacks
    # ------------------------------------------------------------------
    def _on_transition(self, session: ChannelSession) -> None:
        logger.info(f"进入频道 {session.session_id} (generation={session.generation})")
        self._attach(session.generation, attempt=1)

    def _on_active(self, session: ChannelSession) -> None:
        if not session.entered_by_navigation:
            return
        # Everything rendered during the grace period stays untranslated.
        self._attach(session.generation, attempt=1)
        self.scheduler.mark_existing_historical()

    def _on_stop(self) -> None:
        self._cancel_attach_retry()
        self.scheduler.detach()

    def _attach(self, generation: int, attempt: int) -> None:
        self._attach_handle = None
        if not self._running or generation != self.tracker.current_generation():
            return
        if not self._settings.enabled:
            return
        if self.scheduler.attach(self._feed):
            return
        if attempt >= ATTACH_MAX_ATTEMPTS:
            logger.error(f"多次尝试后仍未找到聊天容器 ({attempt} 次)")
            return
        self._cancel_attach_retry()
        self._attach_handle = self._timers.call_later(
            ATTACH_RETRY_INTERVAL, lambda: self._attach(generation, attempt + 1)
        )

    def _cancel_attach_retry(self) -> None:
        if self._attach_handle is not None:
            self._attach_handle.cancel()
            self._attach_handle = None

    # ------------------------------------------------------------------
    # Entry processing
    # ------------------------------------------------------------------
    def _submit(self, entry: FeedEntryRef, generation: int) -> None:
        task = asyncio.get_running_loop().create_task(self._process(entry, generation))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _process(self, entry: FeedEntryRef, generation: int) -> None:
        settings = self._settings
        if not is_eligible(entry.text, settings.mode, Thresholds.from_settings(settings)):
            logger.debug(f"无需翻译: {entry.text[:30]}")
            return
        if self.dedup.has_processed(entry.entry_id):
            return
        if generation != self.tracker.current_generation():
            return
        self.dedup.mark_processed(entry.entry_id)

        source_lang = "auto" if settings.mode == "all" else "en"
        try:
            response = await self._channel.send(
                {"action": "translate", "text": entry.text, "sourceLang": source_lang}
            )
        except EnvironmentInvalidated as exc:
            self._on_invalidated(exc)
            return

        result = TranslationResult.from_message(response)
        if generation != self.tracker.current_generation():
            logger.debug(f"频道已切换，丢弃译文: {entry.entry_id}")
            return
        if not result.success:
            logger.warning(f"翻译失败: {result.error}")
            return
        try:
            self._renderer(entry, result)
        except Exception:
            logger.exception("渲染译文失败")
            return
        self.rendered += 1

    # ------------------------------------------------------------------
    # Reconnection
    # ------------------------------------------------------------------
    def _on_invalidated(self, exc: EnvironmentInvalidated) -> None:
        if self.reconnecting or not self._running:
            return
        logger.warning(f"与后台服务的连接已断开，暂停监视: {exc}")
        self._cancel_attach_retry()
        self.scheduler.detach()
        self._reconnect_task = asyncio.get_running_loop().create_task(self._reconnect())

    async def _reconnect(self) -> bool:
        try:
            async for attempt in self._retry.retrying():
                with attempt:
                    if not self._running:
                        return False
                    response = await self._channel.send({"action": "ping"})
                    if not response.get("success"):
                        raise EnvironmentInvalidated(f"后台服务无响应: {response.get('error')}")
        except EnvironmentInvalidated:
            logger.error(f"重连失败 ({self._retry.max_attempts} 次)，请重新启动翻译")
            self.stop()
            return False
        logger.info("已重新连接后台服务")
        await self.refresh_settings()
        if self.tracker.state is not TrackerState.IDLE:
            self._attach(self.tracker.current_generation(), attempt=1)
        return True
