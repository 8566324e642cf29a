"""LRU + TTL translation cache with best-effort snapshot persistence."""

from __future__ import annotations

import time
from collections import OrderedDict
from dataclasses import asdict, dataclass
from typing import Any, Optional

from loguru import logger

from ..infra.storage import KeyValueStore
from .errors import StorageError

SNAPSHOT_KEY = "translationCache"
DEFAULT_TTL_SECONDS = 24 * 60 * 60
DEFAULT_MAX_SIZE = 1000
DEFAULT_SNAPSHOT_INTERVAL = 30 * 60

CacheKey = tuple[str, str]


@dataclass
class CacheEntry:
    translated_text: str
    engine: str
    created_at: float = 0.0
    last_accessed: float = 0.0
    expires_at: float = 0.0

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


class TranslationCache:
    """Keep translated text keyed by ``(source_lang, text)``.

    Entries are ordered from least to most recently used. ``get`` refreshes an
    entry, ``put`` evicts the least recently used one once ``max_size`` is
    reached, and expired entries are dropped lazily on access.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_size: int = DEFAULT_MAX_SIZE,
        snapshot_interval: float = DEFAULT_SNAPSHOT_INTERVAL,
    ) -> None:
        self._ttl = ttl_seconds
        self._max_size = max(1, max_size)
        self._snapshot_interval = snapshot_interval
        self._entries: OrderedDict[CacheKey, CacheEntry] = OrderedDict()
        self._last_flush = time.time()

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def max_size(self) -> int:
        return self._max_size

    def configure(
        self,
        ttl_seconds: Optional[float] = None,
        max_size: Optional[int] = None,
        snapshot_interval: Optional[float] = None,
    ) -> None:
        if ttl_seconds is not None:
            self._ttl = ttl_seconds
        if max_size is not None:
            self._max_size = max(1, max_size)
            while len(self._entries) > self._max_size:
                self._entries.popitem(last=False)
        if snapshot_interval is not None:
            self._snapshot_interval = snapshot_interval

    def get(self, source_lang: str, text: str) -> Optional[CacheEntry]:
        key = (source_lang, text)
        entry = self._entries.get(key)
        if entry is None:
            return None
        now = time.time()
        if entry.is_expired(now):
            logger.debug(f"缓存已过期: {text[:20]}")
            del self._entries[key]
            return None
        entry.last_accessed = now
        self._entries.move_to_end(key)
        return entry

    def put(self, source_lang: str, text: str, entry: CacheEntry) -> None:
        key = (source_lang, text)
        now = time.time()
        if not entry.created_at:
            entry.created_at = now
        entry.last_accessed = now
        if not entry.expires_at:
            entry.expires_at = now + self._ttl
        if key in self._entries:
            del self._entries[key]
        elif len(self._entries) >= self._max_size:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug(f"缓存已满，移除最久未使用的条目: {evicted[1][:20]}")
        self._entries[key] = entry

    def clear(self) -> int:
        count = len(self._entries)
        self._entries.clear()
        return count

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def snapshot(self) -> list[dict[str, Any]]:
        """Return live entries in LRU order, expired ones filtered out."""
        now = time.time()
        return [
            {"source_lang": lang, "text": text, **asdict(entry)}
            for (lang, text), entry in self._entries.items()
            if not entry.is_expired(now)
        ]

    def flush(self, store: KeyValueStore) -> int:
        items = self.snapshot()
        self._last_flush = time.time()
        try:
            store.set({SNAPSHOT_KEY: items})
        except StorageError as exc:
            logger.warning(f"缓存快照保存失败: {exc}")
            return 0
        logger.info(f"缓存快照已保存 ({len(items)} 条)")
        return len(items)

    def maybe_flush(self, store: KeyValueStore) -> bool:
        if time.time() - self._last_flush < self._snapshot_interval:
            return False
        self.flush(store)
        return True

    def load(self, store: KeyValueStore) -> int:
        try:
            payload = store.get([SNAPSHOT_KEY]).get(SNAPSHOT_KEY) or []
        except StorageError as exc:
            logger.warning(f"缓存快照读取失败，以空缓存启动: {exc}")
            return 0

        now = time.time()
        loaded = 0
        for item in payload:
            try:
                entry = CacheEntry(
                    translated_text=item["translated_text"],
                    engine=item["engine"],
                    created_at=float(item["created_at"]),
                    last_accessed=float(item["last_accessed"]),
                    expires_at=float(item["expires_at"]),
                )
                key = (item["source_lang"], item["text"])
            except (KeyError, TypeError, ValueError):
                logger.debug(f"忽略无法解析的缓存条目: {item!r}")
                continue
            if entry.is_expired(now):
                continue
            self._entries[key] = entry
            self._entries.move_to_end(key)
            loaded += 1
        while len(self._entries) > self._max_size:
            self._entries.popitem(last=False)
        self._last_flush = now
        logger.info(f"已从快照恢复缓存 ({loaded} 条)")
        return loaded

    def forget(self, store: KeyValueStore) -> None:
        try:
            store.remove([SNAPSHOT_KEY])
        except StorageError as exc:
            logger.warning(f"缓存快照删除失败: {exc}")
