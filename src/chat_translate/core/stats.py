"""Request, cache-hit and error counters reported through ``getStats``."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from typing import Any

from loguru import logger

from ..infra.storage import KeyValueStore
from .errors import StorageError

STATS_KEY = "translationStats"


@dataclass
class TranslationStats:
    total_requests: int = 0
    api_requests: int = 0
    cache_hits: int = 0
    errors: int = 0
    characters_translated: int = 0
    engines: dict[str, int] = field(default_factory=dict)

    def record_request(self) -> None:
        self.total_requests += 1

    def record_cache_hit(self) -> None:
        self.cache_hits += 1

    def record_success(self, text: str, engine: str) -> None:
        self.api_requests += 1
        self.characters_translated += len(text)
        self.engines[engine] = self.engines.get(engine, 0) + 1

    def record_error(self) -> None:
        self.errors += 1

    def reset(self) -> None:
        for item in fields(self):
            setattr(self, item.name, item.default_factory() if item.name == "engines" else 0)

    def to_message(self) -> dict[str, Any]:
        hit_rate = self.cache_hits / self.total_requests if self.total_requests else 0.0
        return {
            "totalRequests": self.total_requests,
            "apiRequests": self.api_requests,
            "cacheHits": self.cache_hits,
            "cacheHitRate": round(hit_rate, 4),
            "errors": self.errors,
            "charactersTranslated": self.characters_translated,
            "engines": dict(self.engines),
        }

    def save(self, store: KeyValueStore) -> None:
        try:
            store.set({STATS_KEY: asdict(self)})
        except StorageError as exc:
            logger.warning(f"统计数据保存失败: {exc}")

    @classmethod
    def load(cls, store: KeyValueStore) -> "TranslationStats":
        try:
            payload = store.get([STATS_KEY]).get(STATS_KEY) or {}
        except StorageError as exc:
            logger.warning(f"统计数据读取失败: {exc}")
            return cls()
        known = {item.name for item in fields(cls)}
        try:
            return cls(**{key: value for key, value in payload.items() if key in known})
        except (AttributeError, TypeError):
            logger.debug(f"忽略无法解析的统计数据: {payload!r}")
            return cls()
