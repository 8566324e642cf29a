"""Tests for the script-ratio eligibility heuristics."""

from __future__ import annotations

import pytest

from chat_translate.config.schemas import TranslationSettings
from chat_translate.core.eligibility import Thresholds, is_eligible, substantive_count


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("hello world", True),
        ("こんにちは", False),
        ("!!!", False),
        ("123 456", False),
        ("gg", True),
        ("", False),
        (None, False),
        ("草 lol", True),
        ("今日は楽しい stream", False),
    ],
)
def test_selective_mode(text, expected) -> None:
    assert is_eligible(text, "selective") is expected


def test_all_mode_accepts_any_text() -> None:
    assert is_eligible("こんにちは", "all") is True
    assert is_eligible("!!!", "all") is True
    assert is_eligible("", "all") is False


def test_target_script_only_mode_uses_ratio() -> None:
    assert is_eligible("hello", "target_script_only") is True
    assert is_eligible("hi 123456", "target_script_only") is False
    assert is_eligible("hi 123456", "target_script_only", Thresholds(script_ratio=0.2)) is True


def test_short_or_mixed_text_falls_back_to_character_counts() -> None:
    assert is_eligible("ok!! 1234 ??", "selective") is False
    assert is_eligible("ab ...... 草", "selective", Thresholds(foreign=50)) is True


def test_thresholds_from_settings() -> None:
    settings = TranslationSettings(native_threshold=10, foreign_threshold=90, script_ratio=0.8)

    thresholds = Thresholds.from_settings(settings)

    assert thresholds == Thresholds(native=10, foreign=90, script_ratio=0.8)


def test_substantive_count_ignores_punctuation_and_digits() -> None:
    assert substantive_count("a, b! 12") == 2
    assert substantive_count("「草」") == 1
