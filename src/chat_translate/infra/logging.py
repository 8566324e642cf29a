"""Logging utilities for Chat Translate."""

from __future__ import annotations

import logging
import sys

from loguru import logger as loguru_logger

LOG_FORMAT = "<green>{time:HH:mm:ss.SSS}</green> [<level>{level}</level>] {name}: {message}"


def setup_logging(verbose: bool = False, bridge_stdlib: bool = True) -> None:
    """Configure application-wide logging.

    Args:
        verbose: Emit debug messages (dropped entries, cache hits) as well.
        bridge_stdlib: Redirect stdlib logging (requests, urllib3) into loguru.
    """
    level = "DEBUG" if verbose else "INFO"
    loguru_logger.remove()
    loguru_logger.add(sys.stderr, level=level, format=LOG_FORMAT)

    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING)
    if bridge_stdlib:
        _bridge_standard_logging()


class LoguruHandler(logging.Handler):
    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = loguru_logger.level(record.levelname).name
        except ValueError:
            level = record.levelno
        loguru_logger.opt(depth=6, exception=record.exc_info).log(level, record.getMessage())


def _bridge_standard_logging() -> None:
    """Redirect stdlib logging messages to loguru."""
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(LoguruHandler())
