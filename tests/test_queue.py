"""Tests for the bounded-concurrency request queue."""

from __future__ import annotations

import asyncio

import pytest

from chat_translate.core.cache import TranslationCache
from chat_translate.core.errors import EnvironmentInvalidated, ErrorKind, QueueCancelled, TranslateError
from chat_translate.core.request_queue import RequestQueue
from chat_translate.core.translator import TranslationResult


async def _settle(rounds: int = 10) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


def test_never_more_than_max_concurrent_in_flight() -> None:
    async def scenario():
        calls = []
        never = asyncio.get_running_loop().create_future()

        async def translate(text, source_lang):
            calls.append(text)
            return await never

        queue = RequestQueue(translate, max_concurrent=3)
        futures = [queue.enqueue(f"message {i}", "en") for i in range(10)]
        await _settle()

        assert queue.active == 3
        assert len(calls) == 3
        assert len(queue) == 7
        for future in futures:
            future.cancel()
        never.cancel()
        await _settle()

    asyncio.run(scenario())


def test_settlement_drains_next_item() -> None:
    async def scenario():
        gates = {}

        async def translate(text, source_lang):
            gates[text] = asyncio.get_running_loop().create_future()
            await gates[text]
            return TranslationResult(True, text.upper(), "api")

        queue = RequestQueue(translate, max_concurrent=1)
        first = queue.enqueue("one")
        second = queue.enqueue("two")
        await _settle()
        assert list(gates) == ["one"]

        gates["one"].set_result(None)
        assert (await first).translated_text == "ONE"
        await _settle()
        gates["two"].set_result(None)
        assert (await second).translated_text == "TWO"
        assert queue.peak == 1

    asyncio.run(scenario())


def test_failure_is_isolated_to_its_item() -> None:
    async def scenario():
        async def translate(text, source_lang):
            if text == "bad":
                raise TranslateError("boom", ErrorKind.API)
            return TranslationResult(True, f"<{text}>", "api")

        queue = RequestQueue(translate, max_concurrent=1)
        bad = queue.enqueue("bad")
        good = queue.enqueue("good")

        with pytest.raises(TranslateError):
            await bad
        assert (await good).translated_text == "<good>"
        assert queue.active == 0

    asyncio.run(scenario())


def test_empty_text_is_rejected_immediately() -> None:
    async def scenario():
        async def translate(text, source_lang):
            raise AssertionError("must not be called")

        queue = RequestQueue(translate)
        future = queue.enqueue("   ")

        assert future.done()
        with pytest.raises(TranslateError) as info:
            await future
        assert info.value.kind is ErrorKind.VALIDATION

    asyncio.run(scenario())


def test_successful_results_are_written_to_cache() -> None:
    async def scenario():
        async def translate(text, source_lang):
            engine = "cached" if text == "from-cache" else "api"
            return TranslationResult(True, text[::-1], engine)

        cache = TranslationCache()
        queue = RequestQueue(translate, cache=cache)
        await queue.enqueue("hello", "en")
        await queue.enqueue("from-cache", "en")

        assert cache.get("en", "hello").translated_text == "olleh"
        assert cache.get("en", "from-cache") is None

    asyncio.run(scenario())


def test_cancel_all_rejects_pending_items() -> None:
    async def scenario():
        never = asyncio.get_running_loop().create_future()

        async def translate(text, source_lang):
            return await never

        queue = RequestQueue(translate, max_concurrent=1)
        queue.enqueue("in-flight")
        pending = [queue.enqueue(f"waiting {i}") for i in range(3)]
        await _settle()

        assert queue.cancel_all("navigation") == 3
        for future in pending:
            with pytest.raises(QueueCancelled):
                await future
        never.cancel()
        await _settle()

    asyncio.run(scenario())


def test_environment_invalidation_halts_until_resume() -> None:
    async def scenario():
        invalidated = []
        broken = {"value": True}

        async def translate(text, source_lang):
            if broken["value"]:
                raise EnvironmentInvalidated("gone")
            return TranslationResult(True, text, "api")

        queue = RequestQueue(translate, max_concurrent=1, on_invalidated=invalidated.append)
        first = queue.enqueue("first")
        second = queue.enqueue("second")

        with pytest.raises(EnvironmentInvalidated):
            await first
        await _settle()
        assert queue.halted is True
        assert len(invalidated) == 1
        assert not second.done()

        broken["value"] = False
        queue.resume()
        assert (await second).translated_text == "second"

    asyncio.run(scenario())


def test_status_reports_queue_state() -> None:
    async def scenario():
        never = asyncio.get_running_loop().create_future()

        async def translate(text, source_lang):
            return await never

        queue = RequestQueue(translate, max_concurrent=1)
        queue.enqueue("a")
        queue.enqueue("b")
        await _settle()

        status = queue.status()
        assert status["size"] == 1
        assert status["active"] == 1
        assert status["maxConcurrent"] == 1
        assert status["oldestRequest"] >= 0
        never.cancel()
        await _settle()

    asyncio.run(scenario())
