"""Tests for event-file replay and the command line interface."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from chat_translate.app import app
from chat_translate.config.manager import ConfigManager
from chat_translate.core.translator import TranslationResult
from chat_translate.infra.storage import MemoryStore
from chat_translate.replay import MessagesEvent, NavigateEvent, SettingsEvent, WaitEvent, load_events, run_replay


def _write_events(path: Path, events: list) -> Path:
    path.write_text("\n".join(json.dumps(event) for event in events), encoding="utf-8")
    return path


EVENTS = [
    {"type": "navigate", "url": "https://www.twitch.tv/alice"},
    {"type": "messages", "entries": [{"id": "1", "text": "hello world"}, {"id": "2", "text": "こんにちは"}]},
    {"type": "wait", "ms": 300},
    {"type": "settings", "translation": {"mode": "selective"}},
]


def test_load_events_parses_each_kind(tmp_path: Path) -> None:
    path = _write_events(tmp_path / "events.jsonl", EVENTS)

    events = load_events(path)

    assert [type(event) for event in events] == [NavigateEvent, MessagesEvent, WaitEvent, SettingsEvent]
    assert events[1].entries[0].id == "1"


def test_load_events_reports_bad_line(tmp_path: Path) -> None:
    path = tmp_path / "events.jsonl"
    path.write_text('# comment\n{"type": "navigate", "url": "x"}\n{"type": "teleport"}\n', encoding="utf-8")

    with pytest.raises(ValueError, match="第 3 行"):
        load_events(path)


def test_run_replay_prints_translations(tmp_path: Path) -> None:
    manager = ConfigManager(config_path=tmp_path / "config.json")
    events = load_events(_write_events(tmp_path / "events.jsonl", EVENTS))
    lines = []

    async def translate(text: str, source_lang: str) -> TranslationResult:
        return TranslationResult(True, f"JA:{text}", "api")

    stats = asyncio.run(run_replay(events, manager, echo=lines.append, store=MemoryStore(), translate=translate))

    assert lines == ["[api] hello world -> JA:hello world"]
    assert stats["totalRequests"] == 1
    assert stats["errors"] == 0


def test_cli_replay_without_api_key_reports_errors(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setattr("chat_translate.app.setup_logging", lambda verbose=False: None)
    events = _write_events(tmp_path / "events.jsonl", EVENTS)
    config = tmp_path / "config.json"

    result = CliRunner().invoke(app, ["replay", str(events), "--config", str(config)])

    assert result.exit_code == 0
    assert "请求 1 次" in result.output
    assert "错误 1 次" in result.output
    assert (tmp_path / "storage.json").exists()


def test_cli_rejects_malformed_events(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setattr("chat_translate.app.setup_logging", lambda verbose=False: None)
    events = tmp_path / "events.jsonl"
    events.write_text("not json\n", encoding="utf-8")

    result = CliRunner().invoke(app, ["replay", str(events), "--config", str(tmp_path / "config.json")])

    assert result.exit_code == 1


def test_run_replay_applies_settings_events(tmp_path: Path) -> None:
    manager = ConfigManager(config_path=tmp_path / "config.json")
    events = load_events(
        _write_events(
            tmp_path / "events.jsonl",
            [
                {"type": "navigate", "url": "https://www.twitch.tv/alice"},
                {"type": "settings", "translation": {"mode": "all"}},
                {"type": "messages", "entries": [{"id": "1", "text": "こんにちは"}]},
                {"type": "wait", "ms": 300},
            ],
        )
    )
    lines = []

    async def translate(text: str, source_lang: str) -> TranslationResult:
        return TranslationResult(True, f"JA:{text}", "api")

    asyncio.run(run_replay(events, manager, echo=lines.append, store=MemoryStore(), translate=translate))

    assert lines == ["[api] こんにちは -> JA:こんにちは"]
    assert manager.config.translation.mode == "all"
