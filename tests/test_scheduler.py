"""Tests for staggered feed release and historical/live tagging."""

from __future__ import annotations

from chat_translate.config.schemas import TranslationSettings
from chat_translate.core.dedup import DeduplicationStore
from chat_translate.core.feed import FeedEntryRef, MemoryFeed, Provenance
from chat_translate.core.scheduler import IngestScheduler
from chat_translate.core.session import ChannelTransitionTracker

CHANNEL_A = "https://www.twitch.tv/alice"
CHANNEL_B = "https://www.twitch.tv/bob"


class Pipeline:
    def __init__(self, timers, feed=None, **settings) -> None:
        self.timers = timers
        self.settings = TranslationSettings(**settings)
        self.feed = feed if feed is not None else MemoryFeed()
        self.tracker = ChannelTransitionTracker(DeduplicationStore(), timers)
        self.released = []
        self.scheduler = IngestScheduler(
            self.tracker,
            timers,
            lambda entry, generation: self.released.append((entry.entry_id, entry.provenance, generation)),
            settings=lambda: self.settings,
        )
        self.tracker.on_transition = lambda session: self.scheduler.attach(self.feed)

    def ids(self) -> list:
        return [entry_id for entry_id, _, _ in self.released]


def _entries(*ids: str) -> list:
    return [FeedEntryRef.create(f"message {entry_id}", entry_id) for entry_id in ids]


def test_nothing_is_released_during_grace_period(timers) -> None:
    pipeline = Pipeline(timers)
    pipeline.tracker.on_navigation(None, CHANNEL_A)
    pipeline.tracker.on_navigation(CHANNEL_A, CHANNEL_B)

    timers.advance_ms(1000)
    pipeline.feed.append(*_entries("during-grace"))
    timers.advance_ms(0)
    assert pipeline.released == []
    assert pipeline.scheduler.dropped["grace_period"] == 1

    timers.advance_ms(5000)
    pipeline.feed.append(*_entries("after-grace"))
    timers.advance_ms(0)
    assert pipeline.released == [("after-grace", Provenance.LIVE, 2)]


def test_entries_are_staggered_in_order(timers) -> None:
    pipeline = Pipeline(timers)
    pipeline.tracker.on_navigation(None, CHANNEL_A)

    pipeline.feed.append(*_entries("a", "b", "c"))
    timers.advance_ms(50)
    pipeline.feed.append(*_entries("d"))

    assert pipeline.ids() == ["a"]
    timers.advance_ms(100)
    assert pipeline.ids() == ["a", "b"]
    timers.advance_ms(100)
    assert pipeline.ids() == ["a", "b", "c", "d"]
    assert pipeline.scheduler.pending == 0


def test_zero_delay_releases_batch_at_once(timers) -> None:
    pipeline = Pipeline(timers, request_delay_ms=0)
    pipeline.tracker.on_navigation(None, CHANNEL_A)

    pipeline.feed.append(*_entries("a", "b", "c"))
    timers.advance_ms(0)

    assert pipeline.ids() == ["a", "b", "c"]


def test_stale_generation_entries_are_dropped(timers) -> None:
    pipeline = Pipeline(timers)
    pipeline.tracker.on_navigation(None, CHANNEL_A)
    pipeline.feed.append(*_entries("a", "b", "c"))
    timers.advance_ms(0)

    pipeline.tracker.on_navigation(CHANNEL_A, CHANNEL_B)
    timers.advance_ms(300)

    assert pipeline.ids() == ["a"]
    assert pipeline.scheduler.dropped["stale_generation"] == 2


def test_process_existing_drains_snapshot_as_historical(timers) -> None:
    feed = MemoryFeed(_entries("old1", "old2"))
    pipeline = Pipeline(timers, feed=feed, process_existing=True)

    pipeline.tracker.on_navigation(None, CHANNEL_A)
    timers.advance_ms(150)

    assert pipeline.released == [
        ("old1", Provenance.HISTORICAL, 1),
        ("old2", Provenance.HISTORICAL, 1),
    ]


def test_snapshot_is_ignored_without_process_existing(timers) -> None:
    feed = MemoryFeed(_entries("old1"))
    pipeline = Pipeline(timers, feed=feed)

    pipeline.tracker.on_navigation(None, CHANNEL_A)
    timers.advance_ms(500)

    assert pipeline.released == []


def test_historical_entries_need_process_existing(timers) -> None:
    pipeline = Pipeline(timers)
    pipeline.tracker.on_navigation(None, CHANNEL_A)

    pipeline.scheduler.on_batch([FeedEntryRef.create("old", "h1", Provenance.HISTORICAL)])
    timers.advance_ms(0)

    assert pipeline.released == []
    assert pipeline.scheduler.dropped["historical_disabled"] == 1


def test_historical_entries_after_transition_are_dropped(timers) -> None:
    pipeline = Pipeline(timers, process_existing=True)
    pipeline.tracker.on_navigation(None, CHANNEL_A)
    pipeline.tracker.on_navigation(CHANNEL_A, CHANNEL_B)
    timers.advance_ms(6000)

    pipeline.feed.append(*_entries("rendered-before"))
    timers.advance_ms(0)
    pipeline.released.clear()
    assert pipeline.scheduler.mark_existing_historical() == 1

    pipeline.scheduler.on_batch(_entries("rendered-before", "fresh"))
    timers.advance_ms(200)

    assert pipeline.released == [("fresh", Provenance.LIVE, 2)]
    assert pipeline.scheduler.dropped["historical_after_transition"] == 1


def test_settings_are_read_at_release_time(timers) -> None:
    feed = MemoryFeed(_entries("old1", "old2"))
    pipeline = Pipeline(timers, feed=feed, process_existing=True)
    pipeline.tracker.on_navigation(None, CHANNEL_A)
    timers.advance_ms(0)

    pipeline.settings = TranslationSettings(process_existing=False)
    timers.advance_ms(150)

    assert pipeline.ids() == ["old1"]
    assert pipeline.scheduler.dropped["historical_disabled"] == 1


def test_detach_drops_pending_entries(timers) -> None:
    pipeline = Pipeline(timers)
    pipeline.tracker.on_navigation(None, CHANNEL_A)
    pipeline.feed.append(*_entries("a", "b"))
    timers.advance_ms(0)

    pipeline.scheduler.detach()
    pipeline.feed.append(*_entries("c"))
    timers.advance_ms(500)

    assert pipeline.ids() == ["a"]
    assert pipeline.scheduler.attached is False
    assert pipeline.scheduler.pending == 0


def test_attach_fails_when_feed_is_missing(timers) -> None:
    feed = MemoryFeed()
    feed.available = False
    pipeline = Pipeline(timers, feed=feed)

    pipeline.tracker.on_navigation(None, CHANNEL_A)

    assert pipeline.scheduler.attached is False
