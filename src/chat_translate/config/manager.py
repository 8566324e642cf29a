"""Configuration manager for Chat Translate."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import ValidationError

from .schemas import AppConfig


@dataclass
class ConfigManager:
    """Load, manage, and persist application configuration."""

    config_path: Path = field(default_factory=lambda: Path.home() / ".chat_translate" / "config.json")
    _config: AppConfig = field(init=False)

    def __post_init__(self) -> None:
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        self._config = self._load_or_default()

    @property
    def config(self) -> AppConfig:
        """Return the current configuration model."""
        return self._config

    def update(self, **kwargs: Any) -> None:
        """Update configuration sections and persist to disk.

        Section values may be models or plain mappings; mappings are merged into
        the current section and re-validated so out-of-range numbers get clamped.
        """
        payload = self._config.model_dump()
        for key, value in kwargs.items():
            if isinstance(value, dict) and isinstance(payload.get(key), dict):
                payload[key] = {**payload[key], **value}
            elif hasattr(value, "model_dump"):
                payload[key] = value.model_dump()
            else:
                payload[key] = value
        self._config = AppConfig.model_validate(payload)
        self.save()

    def reload(self) -> AppConfig:
        """Re-read the configuration file."""
        self._config = self._load_or_default()
        return self._config

    def save(self) -> None:
        """Persist configuration to disk."""
        try:
            self.config_path.write_text(
                self._config.model_dump_json(indent=2), encoding="utf-8"
            )
        except OSError as exc:
            logger.warning(f"配置保存失败，继续使用内存中的配置: {exc}")

    def _load_or_default(self) -> AppConfig:
        if self.config_path.exists():
            try:
                return AppConfig.model_validate_json(self.config_path.read_text(encoding="utf-8"))
            except (OSError, ValidationError) as exc:
                logger.warning(f"配置文件无法解析，使用默认配置: {exc}")
                return AppConfig()
        config = AppConfig()
        self._config = config
        self.save()
        return config
