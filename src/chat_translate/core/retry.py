"""Capped linear backoff used when reconnecting to the background service."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from loguru import logger
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
)

from ..config.schemas import RetrySettings
from .errors import EnvironmentInvalidated


def _log_retry(retry_state: RetryCallState) -> None:
    delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
    logger.info(f"第 {retry_state.attempt_number} 次重连失败，{delay:.1f} 秒后重试")


@dataclass(frozen=True)
class RetryPolicy:
    """After failed attempt ``n`` wait ``n * base_delay`` seconds, capped at ``max_delay``."""

    max_attempts: int = 5
    base_delay: float = 2.0
    max_delay: float = 10.0

    @classmethod
    def from_settings(cls, settings: RetrySettings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.max_attempts,
            base_delay=settings.base_delay_ms / 1000.0,
            max_delay=settings.max_delay_ms / 1000.0,
        )

    def retrying(self, sleep: Optional[Callable[[float], Awaitable[None]]] = None) -> AsyncRetrying:
        """Retry only on ``EnvironmentInvalidated``; the last failure is re-raised."""
        return AsyncRetrying(
            sleep=sleep or asyncio.sleep,
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_incrementing(start=self.base_delay, increment=self.base_delay, max=self.max_delay),
            retry=retry_if_exception_type(EnvironmentInvalidated),
            before_sleep=_log_retry,
            reraise=True,
        )
