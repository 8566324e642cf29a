"""Error taxonomy shared by the ingestion and background sides."""

from __future__ import annotations

from enum import Enum
from typing import Optional

import requests


class ErrorKind(str, Enum):
    NETWORK = "network"
    API = "api"
    ENVIRONMENT_INVALIDATED = "environment_invalidated"
    STORAGE = "storage"
    VALIDATION = "validation"
    UNKNOWN = "unknown"


class ChatTranslateError(Exception):
    """Base error carrying an :class:`ErrorKind`."""

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(self, message: str, kind: Optional[ErrorKind] = None) -> None:
        super().__init__(message)
        if kind is not None:
            self.kind = kind


class TranslateError(ChatTranslateError):
    """The translate operation failed for a single item."""


class EnvironmentInvalidated(ChatTranslateError):
    """The host side went away; requires reconnection rather than a retry."""

    kind = ErrorKind.ENVIRONMENT_INVALIDATED


class StorageError(ChatTranslateError):
    kind = ErrorKind.STORAGE


class QueueCancelled(ChatTranslateError):
    """Pending request dropped by ``RequestQueue.cancel_all``."""


def classify_error(exc: BaseException) -> ErrorKind:
    """Map an arbitrary exception onto the error taxonomy."""
    if isinstance(exc, ChatTranslateError):
        return exc.kind
    if isinstance(exc, (requests.Timeout, requests.ConnectionError)):
        return ErrorKind.NETWORK
    if isinstance(exc, requests.HTTPError):
        return ErrorKind.API
    if isinstance(exc, (TimeoutError, ConnectionError)):
        return ErrorKind.NETWORK
    if isinstance(exc, OSError):
        return ErrorKind.STORAGE
    if isinstance(exc, ValueError):
        return ErrorKind.VALIDATION
    return ErrorKind.UNKNOWN
