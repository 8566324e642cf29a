"""Durable key-value stores used for cache snapshots and statistics."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Iterable, Mapping, Protocol

from ..core.errors import StorageError


class KeyValueStore(Protocol):
    def get(self, keys: Iterable[str]) -> dict[str, Any]: ...

    def set(self, items: Mapping[str, Any]) -> None: ...

    def remove(self, keys: Iterable[str]) -> None: ...


class MemoryStore:
    """Process-local store, mostly useful for tests and dry runs."""

    def __init__(self, initial: Mapping[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = dict(initial or {})

    def get(self, keys: Iterable[str]) -> dict[str, Any]:
        return {key: self._data[key] for key in keys if key in self._data}

    def set(self, items: Mapping[str, Any]) -> None:
        self._data.update(items)

    def remove(self, keys: Iterable[str]) -> None:
        for key in keys:
            self._data.pop(key, None)


class JsonFileStore:
    """Store every key in a single JSON document on disk."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def get(self, keys: Iterable[str]) -> dict[str, Any]:
        data = self._read()
        return {key: data[key] for key in keys if key in data}

    def set(self, items: Mapping[str, Any]) -> None:
        data = self._read()
        data.update(items)
        self._write(data)

    def remove(self, keys: Iterable[str]) -> None:
        data = self._read()
        for key in keys:
            data.pop(key, None)
        self._write(data)

    def _read(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise StorageError(f"无法读取存储文件 {self.path}: {exc}") from exc
        if not isinstance(payload, dict):
            raise StorageError(f"存储文件格式错误: {self.path}")
        return payload

    def _write(self, data: dict[str, Any]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp_path.write_text(json.dumps(data, ensure_ascii=False), encoding="utf-8")
            tmp_path.replace(self.path)
        except (OSError, TypeError, ValueError) as exc:
            raise StorageError(f"无法写入存储文件 {self.path}: {exc}") from exc
