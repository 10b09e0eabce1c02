from __future__ import annotations

"""
Bounded-lifetime session clock: Active -> Warning -> Expired.

Design intent:
- The only component allowed to wipe the registry and override log wholesale.
- Expiry is a scheduled state transition, never an error path.
- Due timers always run before activity is recorded, so a passed deadline
  purges data before a late interaction could revive it.
"""

import datetime as _dt
import logging
import uuid
from typing import Callable, Optional

from speakerbind.internal_core.clock import Scheduler, TimerHandle
from speakerbind.internal_core.config import SessionConfig
from speakerbind.internal_core.contracts import SessionPhase, SessionState, SessionStatus
from speakerbind.internal_core.pubsub import ChangeFeed
from speakerbind.overrides.tracker import OverrideTracker
from speakerbind.registry.store import SpeakerRegistry

logger = logging.getLogger(__name__)

PurgeHook = Callable[[str], None]
RestartHook = Callable[[str], None]


def _new_session_id() -> str:
    return uuid.uuid4().hex


def _format_size(size_bytes: int) -> str:
    if size_bytes < 1024:
        return f"{size_bytes} B"
    if size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    return f"{size_bytes / (1024 * 1024):.1f} MB"


class SessionLifecycleManager:
    def __init__(
        self,
        config: SessionConfig,
        scheduler: Scheduler,
        feed: ChangeFeed,
        *,
        registry: SpeakerRegistry,
        tracker: OverrideTracker,
        on_purge: Optional[PurgeHook] = None,
        on_restart: Optional[RestartHook] = None,
    ) -> None:
        self._config = config
        self._scheduler = scheduler
        self._clock = scheduler.clock
        self._feed = feed
        self._registry = registry
        self._tracker = tracker
        self._on_purge = on_purge
        self._on_restart = on_restart
        self._timers: list[TimerHandle] = []
        self._expired = False
        self._expired_at: Optional[float] = None
        self._state = self._fresh_state()
        self._arm()

    # -- read side -----------------------------------------------------------

    @property
    def session_id(self) -> str:
        return self._state.session_id

    @property
    def state(self) -> SessionState:
        self.sync()
        return self._state.model_copy()

    @property
    def expired_at(self) -> Optional[float]:
        return self._expired_at

    def remaining_minutes(self) -> float:
        self.sync()
        if self._expired:
            return 0.0
        return max(0.0, self._remaining_seconds() / 60.0)

    def phase(self) -> SessionPhase:
        self.sync()
        return self._phase_now()

    def warning_visible(self) -> bool:
        self.sync()
        return self._warning_visible_now()

    def status(self) -> SessionStatus:
        self.sync()
        now = self._clock.monotonic()
        state = self._state
        last_activity_wall = self._clock.wall() - _dt.timedelta(seconds=now - state.last_activity_at)
        override_count = self._tracker.override_count
        return SessionStatus(
            state=self._phase_now(),
            remaining_minutes=0.0 if self._expired else round(max(0.0, self._remaining_seconds() / 60.0), 3),
            session_id=state.session_id,
            session_duration_minutes=round((now - state.started_at) / 60.0, 3),
            last_activity_at=last_activity_wall,
            extension_minutes=state.extension_minutes,
            warning_visible=self._warning_visible_now(),
            override_count=override_count,
            has_overrides=override_count > 0,
            data_size=_format_size(self._data_size_bytes()),
        )

    # -- commands ------------------------------------------------------------

    def sync(self) -> int:
        """Run any timers that have come due. Safe to call at any time."""
        return self._scheduler.run_due()

    def touch(self) -> None:
        self.sync()
        if self._expired:
            self._restart("activity_after_expiry")
            return
        was_warning = self._phase_now() == "Warning"
        self._state.last_activity_at = self._clock.monotonic()
        self._state.warning_dismissed_at = None
        self._arm()
        if was_warning:
            logger.info("session back to active session_id=%s", self.session_id)
            self._feed.publish("session", "activity_resumed")

    def extend(self, minutes: float) -> SessionStatus:
        minutes = float(minutes)
        if minutes <= 0:
            raise ValueError("Extension must be a positive number of minutes")
        self.sync()
        if self._expired:
            self._restart("extend_after_expiry")
        self._state.extension_minutes += minutes
        self._state.last_activity_at = self._clock.monotonic()
        self._state.warning_dismissed_at = None
        self._arm()
        logger.info(
            "session extended session_id=%s minutes=%.2f total_extension=%.2f",
            self.session_id,
            minutes,
            self._state.extension_minutes,
        )
        self._feed.publish("session", "extended")
        return self.status()

    def keep_working(self) -> SessionStatus:
        return self.extend(self._config.SPEAKERBIND_KEEP_WORKING_MINUTES)

    def extend_long(self) -> SessionStatus:
        return self.extend(self._config.SPEAKERBIND_EXTEND_MINUTES)

    def dismiss_warning(self) -> None:
        self.sync()
        if self._phase_now() != "Warning":
            return
        self._state.warning_dismissed_at = self._clock.monotonic()
        rearm_seconds = self._config.SPEAKERBIND_WARNING_REARM_MINUTES * 60.0
        self._timers.append(
            self._scheduler.call_later(rearm_seconds, self._on_warning_rearm, name="warning_rearm")
        )
        self._feed.publish("session", "warning_dismissed")

    def clear(self) -> None:
        self.sync()
        self._purge("cleared")
        self._restart("cleared")

    def shutdown(self) -> None:
        """Cancel every timer and drop all data; used when the workspace itself goes away."""
        self._cancel_timers()
        self._purge("shutdown")
        self._expired = True
        self._expired_at = self._clock.monotonic()

    # -- internals -----------------------------------------------------------

    def _fresh_state(self) -> SessionState:
        now = self._clock.monotonic()
        return SessionState(
            session_id=_new_session_id(),
            started_at=now,
            last_activity_at=now,
            timeout_budget_minutes=self._config.SPEAKERBIND_SESSION_TIMEOUT_MINUTES,
            warning_threshold_minutes=self._config.SPEAKERBIND_WARNING_THRESHOLD_MINUTES,
        )

    def _deadline(self) -> float:
        state = self._state
        budget_seconds = (state.timeout_budget_minutes + state.extension_minutes) * 60.0
        return state.last_activity_at + budget_seconds

    def _remaining_seconds(self) -> float:
        return self._deadline() - self._clock.monotonic()

    def _phase_now(self) -> SessionPhase:
        if self._expired:
            return "Expired"
        remaining = self._remaining_seconds()
        if remaining <= 0:
            return "Expired"
        if remaining <= self._state.warning_threshold_minutes * 60.0:
            return "Warning"
        return "Active"

    def _warning_visible_now(self) -> bool:
        if self._phase_now() != "Warning":
            return False
        dismissed_at = self._state.warning_dismissed_at
        if dismissed_at is None:
            return True
        rearm_seconds = self._config.SPEAKERBIND_WARNING_REARM_MINUTES * 60.0
        return self._clock.monotonic() - dismissed_at >= rearm_seconds

    def _data_size_bytes(self) -> int:
        size = len(self._state.model_dump_json())
        size += sum(len(entry.model_dump_json()) for entry in self._registry.entries)
        size += sum(len(action.model_dump_json()) for action in self._tracker.history())
        return size

    def _cancel_timers(self) -> None:
        for handle in self._timers:
            handle.cancel()
        self._timers = []

    def _arm(self) -> None:
        self._cancel_timers()
        deadline = self._deadline()
        warning_at = deadline - self._state.warning_threshold_minutes * 60.0
        self._timers.append(self._scheduler.call_at(warning_at, self._on_warning_due, name="warning"))
        self._timers.append(self._scheduler.call_at(deadline, self._on_expiry_due, name="expiry"))

    def _on_warning_due(self) -> None:
        if self._phase_now() != "Warning":
            return
        logger.info(
            "session warning session_id=%s remaining_minutes=%.2f",
            self.session_id,
            self._remaining_seconds() / 60.0,
        )
        self._feed.publish("session", "warning")

    def _on_warning_rearm(self) -> None:
        if self._phase_now() != "Warning":
            return
        self._state.warning_dismissed_at = None
        self._feed.publish("session", "warning_rearmed")

    def _on_expiry_due(self) -> None:
        if self._expired or self._remaining_seconds() > 0:
            return
        self._expire()

    def _expire(self) -> None:
        expired_id = self.session_id
        self._cancel_timers()
        self._purge("expired")
        self._expired = True
        self._expired_at = self._clock.monotonic()
        logger.info("session expired session_id=%s", expired_id)
        self._feed.publish("session", "expired")

    def _purge(self, reason: str) -> None:
        self._registry.purge()
        self._tracker.clear_all()
        logger.info("session data purged session_id=%s reason=%s", self.session_id, reason)
        if self._on_purge is not None:
            self._on_purge(reason)

    def _restart(self, reason: str) -> None:
        self._cancel_timers()
        self._expired = False
        self._expired_at = None
        self._state = self._fresh_state()
        self._arm()
        logger.info("session started session_id=%s reason=%s", self.session_id, reason)
        if self._on_restart is not None:
            self._on_restart(reason)
        self._feed.publish("session", "started")
