"""Script-ratio heuristics deciding whether a chat entry needs translation."""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from typing import Optional

from ..config.schemas import TranslationSettings

# Hiragana, katakana and CJK unified ideographs.
NATIVE_SCRIPT = re.compile(r"[\u3040-\u309F\u30A0-\u30FF\u4E00-\u9FAF]")
TARGET_SCRIPT = re.compile(r"[a-zA-Z]")

MIN_SUBSTANTIVE_CHARS = 3


@dataclass(frozen=True)
class Thresholds:
    """Percentages (0-100) plus the plain ratio used by ``target_script_only``."""

    native: float = 30
    foreign: float = 50
    script_ratio: float = 0.5

    @classmethod
    def from_settings(cls, settings: TranslationSettings) -> "Thresholds":
        return cls(settings.native_threshold, settings.foreign_threshold, settings.script_ratio)


def native_count(text: str) -> int:
    return len(NATIVE_SCRIPT.findall(text))


def foreign_count(text: str) -> int:
    return len(TARGET_SCRIPT.findall(text))


def substantive_count(text: str) -> int:
    """Characters left once whitespace, digits and punctuation are removed."""
    ignored = sum(
        1
        for ch in text
        if ch.isspace() or ch.isdigit() or unicodedata.category(ch).startswith("P")
    )
    return len(text) - ignored


def is_target_script(text: str, ratio: float = 0.5) -> bool:
    if not text:
        return False
    return foreign_count(text) / len(text) >= ratio


def is_selective_match(text: str, thresholds: Thresholds) -> bool:
    if not text:
        return False

    natives = native_count(text)
    foreigners = foreign_count(text)
    native_ratio = natives / len(text)
    foreign_ratio = foreigners / len(text)

    # Already in the reader's language.
    if native_ratio >= thresholds.native / 100:
        return False
    if foreign_ratio >= thresholds.foreign / 100:
        return True
    # Emotes, symbols, numbers only.
    if substantive_count(text) < MIN_SUBSTANTIVE_CHARS:
        return False
    if foreigners > natives:
        return True
    return False


def is_eligible(text: Optional[str], mode: str = "selective", thresholds: Optional[Thresholds] = None) -> bool:
    """Return True when ``text`` should be submitted for translation under ``mode``."""
    if not text:
        return False
    thresholds = thresholds or Thresholds()
    if mode == "all":
        return True
    if mode == "target_script_only":
        return is_target_script(text, thresholds.script_ratio)
    return is_selective_match(text, thresholds)
