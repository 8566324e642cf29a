"""Background side: owns settings, cache, request queue and statistics."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Optional

from loguru import logger

from ..config.manager import ConfigManager
from ..infra.storage import KeyValueStore, MemoryStore
from .cache import TranslationCache
from .errors import ChatTranslateError, EnvironmentInvalidated, classify_error
from .request_queue import RequestQueue, TranslateFn
from .stats import TranslationStats
from .translator import CACHED_ENGINE, TranslationResult, Translator

Message = dict[str, Any]
Handler = Callable[[Message], Awaitable[Message]]


class BackgroundService:
    """Answer action-tagged messages sent by the ingestion side.

    Every response is a mapping with a ``success`` flag. Failures of a single
    translation come back as ``{"success": False, "error": ...}``; only a closed
    service raises :class:`EnvironmentInvalidated`.
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        store: Optional[KeyValueStore] = None,
        translate: Optional[TranslateFn] = None,
    ) -> None:
        self._config_manager = config_manager
        self._store: KeyValueStore = store if store is not None else MemoryStore()
        self._translator = Translator(config_manager.config.api)
        self._custom_translate = translate

        self.cache = TranslationCache()
        self.queue = RequestQueue(self._translate, cache=self.cache, on_invalidated=self._on_queue_invalidated)
        self.stats = TranslationStats.load(self._store)
        self._closed = False

        self._handlers: dict[str, Handler] = {
            "translate": self._handle_translate,
            "getSettings": self._handle_get_settings,
            "settingsUpdated": self._handle_settings_updated,
            "clearCache": self._handle_clear_cache,
            "getStats": self._handle_get_stats,
            "resetStats": self._handle_reset_stats,
            "ping": self._handle_ping,
        }

        self._apply_settings()
        self.cache.load(self._store)

    @property
    def closed(self) -> bool:
        return self._closed

    async def handle(self, message: Message) -> Message:
        if self._closed:
            raise EnvironmentInvalidated("后台服务已关闭")
        action = message.get("action")
        handler = self._handlers.get(action)
        if handler is None:
            logger.warning(f"收到未知操作: {action!r}")
            return {"success": False, "error": f"未知操作: {action}"}
        try:
            return await handler(message)
        except EnvironmentInvalidated:
            raise
        except Exception as exc:
            logger.error(f"处理消息 {action} 失败: {exc}")
            return {"success": False, "error": str(exc), "kind": classify_error(exc).value}

    def shutdown(self) -> None:
        """Flush persistent state and stop answering messages."""
        if self._closed:
            return
        self._closed = True
        self.queue.cancel_all("后台服务已关闭")
        self.cache.flush(self._store)
        self.stats.save(self._store)
        logger.info("后台服务已关闭")

    def reopen(self) -> None:
        if not self._closed:
            return
        self._closed = False
        self.queue.resume()
        logger.info("后台服务已重新启动")

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------
    async def _handle_translate(self, message: Message) -> Message:
        text = str(message.get("text") or "")
        source_lang = str(message.get("sourceLang") or "auto")
        config = self._config_manager.config

        if not config.translation.enabled:
            return TranslationResult.failure("翻译功能已关闭").to_message()

        self.stats.record_request()
        if config.cache.use_cache:
            entry = self.cache.get(source_lang, text)
            if entry is not None:
                self.stats.record_cache_hit()
                logger.debug(f"缓存命中: {text[:30]}")
                return TranslationResult(True, entry.translated_text, CACHED_ENGINE).to_message()

        try:
            result = await self.queue.enqueue(text, source_lang)
        except EnvironmentInvalidated:
            self.stats.record_error()
            raise
        except ChatTranslateError as exc:
            self.stats.record_error()
            return {"success": False, "error": str(exc), "kind": exc.kind.value}

        if result.success:
            self.stats.record_success(text, result.engine)
        else:
            self.stats.record_error()
        if self.cache.maybe_flush(self._store):
            self.stats.save(self._store)
        return result.to_message()

    async def _handle_get_settings(self, message: Message) -> Message:
        settings = self._config_manager.config.model_dump(exclude={"api": {"api_key"}})
        return {"success": True, "settings": settings}

    async def _handle_settings_updated(self, message: Message) -> Message:
        self._config_manager.reload()
        self._apply_settings()
        logger.info("设置已更新")
        return await self._handle_get_settings(message)

    async def _handle_clear_cache(self, message: Message) -> Message:
        cleared = self.cache.clear()
        self.cache.forget(self._store)
        logger.info(f"已清除 {cleared} 条缓存")
        return {"success": True, "clearedItems": cleared}

    async def _handle_get_stats(self, message: Message) -> Message:
        stats = self.stats.to_message()
        stats["cacheSize"] = len(self.cache)
        stats["cacheMaxSize"] = self.cache.max_size
        stats["queue"] = self.queue.status()
        return {"success": True, "stats": stats}

    async def _handle_reset_stats(self, message: Message) -> Message:
        self.stats.reset()
        self.stats.save(self._store)
        return {"success": True}

    async def _handle_ping(self, message: Message) -> Message:
        if self.queue.halted:
            self.queue.resume()
        return {"success": True, "message": "pong"}

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    async def _translate(self, text: str, source_lang: str) -> TranslationResult:
        if self._custom_translate is not None:
            return await self._custom_translate(text, source_lang)
        return await self._translator.translate_async(text, source_lang)

    def _apply_settings(self) -> None:
        config = self._config_manager.config
        self._translator = Translator(config.api)
        self.cache.configure(
            ttl_seconds=config.cache.ttl_hours * 3600,
            max_size=config.cache.max_size,
            snapshot_interval=config.cache.snapshot_interval_s,
        )
        self.queue.cache = self.cache if config.cache.use_cache else None
        self.queue.configure(
            max_concurrent=config.queue.max_concurrent,
            dispatch_delay=config.queue.dispatch_delay_ms / 1000.0,
        )

    def _on_queue_invalidated(self, exc: EnvironmentInvalidated) -> None:
        logger.error(f"翻译服务不可用，请求队列已暂停: {exc}")


class LocalChannel:
    """In-process message channel from the ingestion side to a service."""

    def __init__(self, service: BackgroundService) -> None:
        self._service = service

    async def send(self, message: Message) -> Message:
        if self._service.closed:
            raise EnvironmentInvalidated("扩展上下文已失效，无法连接后台服务")
        return await self._service.handle(message)
