"""Channel/session transition tracking with a grace period."""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Optional

from loguru import logger

from ..config.schemas import PageRules
from .dedup import DeduplicationStore
from .timers import TimerHandle, Timers
from .urls import channel_from_url, is_channel_like_page

DEFAULT_GRACE_PERIOD = 5.0
DEFAULT_DEBOUNCE = 0.5


class TrackerState(str, Enum):
    IDLE = "idle"
    TRANSITIONING = "transitioning"
    GRACE = "grace"
    ACTIVE = "active"


@dataclass(frozen=True)
class ChannelSession:
    session_id: str
    generation: int
    grace_deadline: Optional[float] = None
    entered_by_navigation: bool = True


SessionCallback = Callable[[ChannelSession], None]


class ChannelTransitionTracker:
    """State machine over navigation events.

    ``IDLE -> TRANSITIONING -> GRACE -> ACTIVE``. Every transition onto a
    channel page advances the generation and clears the dedup store; this is
    the only place either happens. Rapid navigation is debounced so only the
    last target settles into ``GRACE``.

    Callbacks:
        on_transition: the session settled and the feed should be (re)attached.
        on_active: the grace period ended; visible entries count as historical.
        on_stop: navigation left channel pages; ingestion should stop.
    """

    def __init__(
        self,
        dedup: DeduplicationStore,
        timers: Timers,
        grace_period: float = DEFAULT_GRACE_PERIOD,
        debounce: float = DEFAULT_DEBOUNCE,
        rules: Optional[PageRules] = None,
        on_transition: Optional[SessionCallback] = None,
        on_active: Optional[SessionCallback] = None,
        on_stop: Optional[Callable[[], None]] = None,
    ) -> None:
        self._dedup = dedup
        self._timers = timers
        self.grace_period = grace_period
        self.debounce = debounce
        self._rules = rules or PageRules()
        self.on_transition = on_transition
        self.on_active = on_active
        self.on_stop = on_stop

        self._state = TrackerState.IDLE
        self._generation = 0
        self._session: Optional[ChannelSession] = None
        self._debounce_handle: Optional[TimerHandle] = None
        self._grace_handle: Optional[TimerHandle] = None

    @property
    def state(self) -> TrackerState:
        return self._state

    @property
    def session(self) -> Optional[ChannelSession]:
        return self._session

    def current_generation(self) -> int:
        return self._generation

    def is_channel_like_page(self, url: Optional[str]) -> bool:
        return is_channel_like_page(url, self._rules)

    def is_in_grace_period(self) -> bool:
        if self._state is TrackerState.TRANSITIONING:
            return True
        session = self._session
        if session is None or session.grace_deadline is None:
            return False
        return self._timers.now() < session.grace_deadline

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------
    def on_navigation(self, previous_location: Optional[str], current_location: Optional[str]) -> None:
        if current_location == previous_location:
            return

        if not self.is_channel_like_page(current_location):
            if self._state is not TrackerState.IDLE:
                logger.info(f"离开频道页面，停止监视: {current_location}")
                self.stop()
                self._notify_stop()
            return

        self._generation += 1
        cleared = self._dedup.reset()
        session_id = channel_from_url(current_location, self._rules) or current_location
        logger.info(
            f"频道切换: {previous_location or '-'} -> {current_location} "
            f"(generation={self._generation}, 清除 {cleared} 条处理记录)"
        )

        if previous_location is None and self._state is TrackerState.IDLE:
            # Fresh page load: nothing to wait out.
            self._session = ChannelSession(session_id, self._generation, None, entered_by_navigation=False)
            self._state = TrackerState.ACTIVE
            self._notify(self.on_transition, self._session)
            self._notify(self.on_active, self._session)
            return

        self._cancel_timers()
        deadline = self._timers.now() + self.debounce + self.grace_period
        self._session = ChannelSession(session_id, self._generation, deadline, entered_by_navigation=True)
        self._state = TrackerState.TRANSITIONING
        generation = self._generation
        self._debounce_handle = self._timers.call_later(self.debounce, lambda: self._settle(generation))

    def stop(self) -> None:
        self._cancel_timers()
        self._state = TrackerState.IDLE
        self._session = None

    # ------------------------------------------------------------------
    # Timer callbacks
    # ------------------------------------------------------------------
    def _settle(self, generation: int) -> None:
        self._debounce_handle = None
        if generation != self._generation or self._state is not TrackerState.TRANSITIONING or self._session is None:
            return
        self._session = replace(self._session, grace_deadline=self._timers.now() + self.grace_period)
        self._state = TrackerState.GRACE
        logger.info(f"宽限期开始: {self.grace_period:.1f} 秒内不翻译任何消息")
        self._grace_handle = self._timers.call_later(self.grace_period, lambda: self._end_grace(generation))
        self._notify(self.on_transition, self._session)

    def _end_grace(self, generation: int) -> None:
        self._grace_handle = None
        if generation != self._generation or self._state is not TrackerState.GRACE or self._session is None:
            return
        self._session = replace(self._session, grace_deadline=None)
        self._state = TrackerState.ACTIVE
        logger.info("宽限期结束，开始翻译新消息")
        self._notify(self.on_active, self._session)

    def _cancel_timers(self) -> None:
        for handle in (self._debounce_handle, self._grace_handle):
            if handle is not None:
                handle.cancel()
        self._debounce_handle = None
        self._grace_handle = None

    @staticmethod
    def _notify(callback: Optional[SessionCallback], session: ChannelSession) -> None:
        if callback is None:
            return
        try:
            callback(session)
        except Exception:
            logger.exception("会话回调执行失败")

    def _notify_stop(self) -> None:
        if self.on_stop is None:
            return
        try:
            self.on_stop()
        except Exception:
            logger.exception("停止回调执行失败")
