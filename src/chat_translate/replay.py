"""Drive the pipeline from a recorded JSON-lines event file."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated, Any, Callable, Literal, Optional, Union

from loguru import logger
from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from .config.manager import ConfigManager
from .core.background import BackgroundService, LocalChannel
from .core.engine import TranslationEngine
from .core.feed import FeedEntryRef, MemoryFeed
from .core.request_queue import TranslateFn
from .core.retry import RetryPolicy
from .core.timers import LoopTimers
from .core.translator import TranslationResult
from .infra.storage import JsonFileStore, KeyValueStore

SETTLE_POLL_INTERVAL = 0.05


class NavigateEvent(BaseModel):
    type: Literal["navigate"]
    url: str


class FeedMessage(BaseModel):
    id: Optional[str] = None
    text: str


class MessagesEvent(BaseModel):
    type: Literal["messages"]
    entries: list[FeedMessage]


class WaitEvent(BaseModel):
    type: Literal["wait"]
    ms: int = Field(ge=0)


class SettingsEvent(BaseModel):
    type: Literal["settings"]
    translation: dict[str, Any] = Field(default_factory=dict)


ReplayEvent = Annotated[Union[NavigateEvent, MessagesEvent, WaitEvent, SettingsEvent], Field(discriminator="type")]
_event_adapter: TypeAdapter[Any] = TypeAdapter(ReplayEvent)


def load_events(path: Path) -> list[Any]:
    """Parse one event per line; blank lines and ``#`` comments are skipped."""
    events = []
    for lineno, line in enumerate(path.read_text(encoding="utf-8").splitlines(), start=1):
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        try:
            events.append(_event_adapter.validate_json(line))
        except ValidationError as exc:
            raise ValueError(f"第 {lineno} 行无法解析: {exc}") from exc
    return events


def format_translation(entry: FeedEntryRef, result: TranslationResult) -> str:
    return f"[{result.engine}] {entry.text} -> {result.translated_text}"


async def run_replay(
    events: list[Any],
    config_manager: ConfigManager,
    echo: Callable[[str], None] = print,
    store: Optional[KeyValueStore] = None,
    translate: Optional[TranslateFn] = None,
) -> dict[str, Any]:
    """Replay ``events`` against a fresh pipeline and return the final statistics."""
    config = config_manager.config
    if store is None:
        store = JsonFileStore(config_manager.config_path.with_name("storage.json"))
    service = BackgroundService(config_manager, store=store, translate=translate)
    feed = MemoryFeed()
    engine = TranslationEngine(
        LocalChannel(service),
        feed,
        lambda entry, result: echo(format_translation(entry, result)),
        timers=LoopTimers(),
        rules=config.pages,
        retry=RetryPolicy.from_settings(config.retry),
    )

    for event in events:
        if isinstance(event, NavigateEvent):
            if engine.is_running:
                engine.navigate(event.url)
            else:
                await engine.start(event.url)
        elif isinstance(event, MessagesEvent):
            feed.append(*(FeedEntryRef.create(item.text, item.id) for item in event.entries))
        elif isinstance(event, WaitEvent):
            await asyncio.sleep(event.ms / 1000.0)
        elif isinstance(event, SettingsEvent):
            config_manager.update(translation=event.translation)
            await service.handle({"action": "settingsUpdated"})
            if engine.is_running:
                await engine.on_settings_updated()

    while engine.scheduler.pending:
        await asyncio.sleep(SETTLE_POLL_INTERVAL)
    await engine.drain()
    engine.stop()

    response = await service.handle({"action": "getStats"})
    service.shutdown()
    logger.info(f"回放结束，共渲染 {engine.rendered} 条译文")
    return response.get("stats", {})
