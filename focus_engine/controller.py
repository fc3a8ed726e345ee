"""FocusController: the phase clock wired to the session lifecycle and settings."""

from __future__ import annotations

from typing import Optional

from .errors import TransportError, ValidationFailed
from .lifecycle import (
    BeginOutcome,
    BeginResult,
    CompleteResult,
    LifecycleEvent,
    Notification,
    Notifier,
    SessionLifecycleManager,
)
from .log import get_logger
from .models import UpdateSessionRequest
from .settings import SettingsProvider
from .timer import (
    Phase,
    PhaseClock,
    PhaseComplete,
    Status,
    TickResult,
    TimerState,
    break_phase_for,
    phase_seconds,
)

logger = get_logger("controller")


class FocusController:
    """Owns one PhaseClock and keeps its focus phases backed by server sessions.

    All time-dependent methods take the caller's monotonic now_ms. Lifecycle
    failures never propagate out of tick(); they surface through `notify`
    and the lifecycle manager's state. Only a ValidationFailed from start()
    is raised, and then the clock stays idle.
    """

    def __init__(
        self,
        lifecycle: SessionLifecycleManager,
        settings: SettingsProvider | None = None,
        notify: Notifier | None = None,
        session_type: str = "pomodoro",
        task_id: str | None = None,
    ):
        self.lifecycle = lifecycle
        self.settings = settings or SettingsProvider()
        self.clock = PhaseClock(self.settings.get())
        self._notify = notify or (lambda notification: None)
        self.session_type = session_type
        self.task_id = task_id

        self.last_begin: Optional[BeginResult] = None
        self.last_completion: Optional[CompleteResult] = None

    @property
    def state(self) -> TimerState:
        return self.clock.state

    # ---- User actions ----

    def start(self, now_ms: int) -> TickResult:
        if not self.clock.can_start:
            return TickResult(state=self.clock.state)

        if self._is_new_focus_phase():
            if self.lifecycle.pending_completion:
                self.last_completion = self.lifecycle.retry_pending_completion()
            self.last_begin = self.lifecycle.begin_focus_session(self._session_request())
            if self.last_begin.outcome == BeginOutcome.CONFLICT:
                # Stay idle; the UI offers resume_existing() instead.
                return TickResult(state=self.clock.state)

        return self.clock.start(now_ms)

    def pause(self, now_ms: int) -> TickResult:
        result = self.clock.pause(now_ms)
        if result.events and self.clock.phase == Phase.FOCUS:
            self._push_counters(now_ms)
        return result

    def resume(self, now_ms: int) -> TickResult:
        return self.clock.resume(now_ms)

    def reset(self) -> TickResult:
        if self.clock.phase == Phase.FOCUS and self.lifecycle.has_session:
            self.lifecycle.abandon_focus_session()
        return self.clock.reset()

    def record_interruption(self) -> TickResult:
        return self.clock.record_interruption()

    def skip_phase(self, now_ms: int) -> TickResult:
        return self._handle(self.clock.skip_phase(now_ms))

    def tick(self, now_ms: int) -> TickResult:
        return self._handle(self.clock.tick(now_ms))

    def resume_existing(self, now_ms: int, elapsed_seconds: int = 0) -> Optional[TickResult]:
        """Attach to the detached server session and run the clock for it.

        `elapsed_seconds` is how long the session has already been running,
        so the countdown picks up where the other timer left off.
        """
        session = self.lifecycle.detached_session
        if session is None:
            return None
        self.lifecycle.attach(session)

        total = int(session["duration"]) * 60
        self.clock.load(TimerState(
            phase=Phase.FOCUS,
            status=Status.IDLE,
            time_left_seconds=max(1, total - max(0, elapsed_seconds)),
            total_seconds=total,
            session_count=self.clock.state.session_count,
            interruptions=session.get("interruptions") or 0,
        ))
        return self.clock.start(now_ms)

    # ---- Background work ----

    def poll(self) -> Optional[dict]:
        """Periodic resync: retry a deferred completion, then refresh the active session."""
        if self.lifecycle.pending_completion:
            self.last_completion = self.lifecycle.retry_pending_completion()
        try:
            return self.lifecycle.query_active_session()
        except TransportError as e:
            logger.debug(f"Active session poll failed: {e}")
            return None

    def refresh_settings(self) -> None:
        self.clock.apply_settings(self.settings.refresh())

    # ---- Internal ----

    def _is_new_focus_phase(self) -> bool:
        s = self.clock.state
        return s.phase == Phase.FOCUS and s.is_idle and not self.lifecycle.has_session

    def _session_request(self) -> dict:
        """Create-session body; validated by the lifecycle manager."""
        settings = self.clock.settings
        upcoming_break = break_phase_for(
            self.clock.state.session_count + 1, settings.pomodoros_until_long_break
        )
        return {
            "type": self.session_type,
            "duration": settings.default_pomodoro_length,
            "breakDuration": phase_seconds(settings, upcoming_break) // 60,
            "taskId": self.task_id,
        }

    def _push_counters(self, now_ms: int) -> None:
        s = self.clock.state
        update = UpdateSessionRequest(
            interruptions=s.interruptions,
            paused_time=self.clock.paused_seconds(now_ms) // 60,
        )
        try:
            self.lifecycle.update_focus_session(update)
        except TransportError:
            logger.debug("Interim counters not saved; they go out again with completion")

    def _handle(self, result: TickResult) -> TickResult:
        completed = result.completed
        if completed is None:
            return result

        if completed.phase == Phase.FOCUS:
            self.last_completion = self.lifecycle.complete_focus_session(update=UpdateSessionRequest(
                actual_duration=completed.focused_seconds // 60,
                interruptions=completed.interruptions,
                paused_time=completed.paused_seconds // 60,
            ))

        self._announce(completed)

        if completed.auto_started and completed.next_phase == Phase.FOCUS:
            try:
                self.last_begin = self.lifecycle.begin_focus_session(self._session_request())
            except ValidationFailed as e:
                logger.warning(f"Auto-started focus phase not tracked: {e}")
                self.clock.reset()
                return TickResult(state=self.clock.state, events=result.events, completed=completed)
            if self.last_begin.outcome == BeginOutcome.CONFLICT:
                self.clock.reset()
                return TickResult(state=self.clock.state, events=result.events, completed=completed)
        return result

    def _announce(self, completed: PhaseComplete) -> None:
        settings = self.clock.settings
        if not (settings.sound_enabled or settings.notifications_enabled):
            return
        self._notify(Notification(LifecycleEvent.PHASE_COMPLETE, {
            "phase": completed.phase.value,
            "nextPhase": completed.next_phase.value,
            "sessionCount": completed.session_count,
            "sound": settings.sound_enabled,
            "notification": settings.notifications_enabled,
        }))
