"""Pydantic schemas for pipeline configuration."""

from __future__ import annotations

import math
from typing import Any, ClassVar, Literal, Optional

from loguru import logger
from pydantic import BaseModel, Field, ValidationInfo, field_validator

TranslationMode = Literal["selective", "all", "target_script_only"]
TRANSLATION_MODES = ("selective", "all", "target_script_only")


def clamp(value: Any, low: float, high: float, default: Any) -> Any:
    """Coerce ``value`` into ``[low, high]``, falling back to ``default`` when unusable."""
    if isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(number):
        return default
    return max(low, min(high, number))


class ClampedModel(BaseModel):
    """Base model that clamps out-of-range numbers instead of rejecting them."""

    CLAMP_RANGES: ClassVar[dict[str, tuple[float, float]]] = {}

    @field_validator("*", mode="before")
    @classmethod
    def _clamp_ranges(cls, value: Any, info: ValidationInfo) -> Any:
        bounds = cls.CLAMP_RANGES.get(info.field_name)
        if bounds is None:
            return value
        field = cls.model_fields[info.field_name]
        clamped = clamp(value, bounds[0], bounds[1], field.default)
        if field.annotation is int:
            clamped = int(round(clamped))
        if clamped != value:
            logger.debug(f"设置值已修正: {info.field_name}={value!r} -> {clamped!r}")
        return clamped


class TranslationSettings(ClampedModel):
    """Parameters controlling which entries are translated and when."""

    CLAMP_RANGES: ClassVar[dict[str, tuple[float, float]]] = {
        "native_threshold": (0, 100),
        "foreign_threshold": (0, 100),
        "script_ratio": (0.0, 1.0),
        "request_delay_ms": (0, 5000),
        "grace_period_ms": (0, 60000),
        "navigation_debounce_ms": (0, 5000),
    }

    enabled: bool = True
    mode: TranslationMode = "selective"
    native_threshold: int = 30
    foreign_threshold: int = 50
    script_ratio: float = 0.5
    request_delay_ms: int = 100
    process_existing: bool = False
    grace_period_ms: int = 5000
    navigation_debounce_ms: int = 500

    @field_validator("mode", mode="before")
    @classmethod
    def _default_unknown_mode(cls, value: Any) -> Any:
        if value not in TRANSLATION_MODES:
            logger.debug(f"未知的翻译模式 {value!r}，使用 selective")
            return "selective"
        return value


class QueueSettings(ClampedModel):
    """Limits applied to the outgoing request queue."""

    CLAMP_RANGES: ClassVar[dict[str, tuple[float, float]]] = {
        "max_concurrent": (1, 10),
        "dispatch_delay_ms": (0, 5000),
    }

    max_concurrent: int = 3
    dispatch_delay_ms: int = 0


class CacheSettings(ClampedModel):
    """Translation cache sizing and persistence."""

    CLAMP_RANGES: ClassVar[dict[str, tuple[float, float]]] = {
        "ttl_hours": (1, 168),
        "max_size": (1, 10000),
        "snapshot_interval_s": (10, 86400),
    }

    use_cache: bool = True
    ttl_hours: float = 24.0
    max_size: int = 1000
    snapshot_interval_s: int = 1800


class RetrySettings(ClampedModel):
    """Reconnection policy after the background side went away."""

    CLAMP_RANGES: ClassVar[dict[str, tuple[float, float]]] = {
        "max_attempts": (1, 20),
        "base_delay_ms": (0, 60000),
        "max_delay_ms": (0, 300000),
    }

    max_attempts: int = 5
    base_delay_ms: int = 2000
    max_delay_ms: int = 10000


class ApiConfig(ClampedModel):
    """Credentials and endpoint configuration for translation API."""

    CLAMP_RANGES: ClassVar[dict[str, tuple[float, float]]] = {"timeout_s": (1.0, 120.0)}

    endpoint: str = "https://api.openai.com/v1/chat/completions"
    api_key: Optional[str] = Field(default=None, repr=False)
    model: str = "gpt-4o-mini"
    target_language: str = "ja"
    timeout_s: float = 15.0


class PageRules(BaseModel):
    """Rules deciding whether a URL points at a live channel page."""

    host_suffix: str = "twitch.tv"
    denied_prefixes: list[str] = Field(
        default_factory=lambda: [
            "/directory",
            "/settings",
            "/wallet",
            "/drops",
            "/privacy",
            "/following",
            "/search",
            "/subscriptions",
            "/inventory",
            "/store",
            "/games",
            "/downloads",
            "/events",
            "/messages",
            "/turbo",
            "/prime",
            "/p",
            "/products",
            "/user",
            "/notifications",
        ]
    )
    denied_fragments: list[str] = Field(
        default_factory=lambda: ["/clip/", "/videos/", "/about/", "/schedule", "/chat"]
    )
    denied_subdomains: list[str] = Field(
        default_factory=lambda: ["dashboard", "dev", "blog", "help", "clips"]
    )


class AppConfig(BaseModel):
    """Root configuration model for the application."""

    translation: TranslationSettings = TranslationSettings()
    queue: QueueSettings = QueueSettings()
    cache: CacheSettings = CacheSettings()
    retry: RetrySettings = RetrySettings()
    api: ApiConfig = ApiConfig()
    pages: PageRules = PageRules()
