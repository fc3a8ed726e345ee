"""Phase clock: pure logic, no I/O.

The countdown is an immutable TimerState plus reducer functions. Pause
bookkeeping uses integer milliseconds from an injected monotonic clock
(now_ms), so every transition is deterministic under test. The one-second
scheduling lives in runner.py.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum

from .settings import FocusSettings


class Phase(str, Enum):
    FOCUS = "focus"
    BREAK = "break"
    LONG_BREAK = "longBreak"


class Status(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"


class ClockEvent(Enum):
    STARTED = "started"
    PAUSED = "paused"
    RESUMED = "resumed"
    RESET = "reset"
    INTERRUPTION = "interruption"
    PHASE_COMPLETE = "phase_complete"
    PHASE_CHANGED = "phase_changed"


@dataclass(frozen=True)
class TimerState:
    phase: Phase = Phase.FOCUS
    status: Status = Status.IDLE
    time_left_seconds: int = 0
    total_seconds: int = 0
    session_count: int = 0
    interruptions: int = 0
    paused_ms: int = 0
    paused_at_ms: int | None = None
    skipped_seconds: int = 0  # remaining time discarded by skip_phase

    @property
    def is_running(self) -> bool:
        return self.status == Status.RUNNING

    @property
    def is_paused(self) -> bool:
        return self.status == Status.PAUSED

    @property
    def is_idle(self) -> bool:
        return self.status == Status.IDLE

    def to_export_dict(self) -> dict:
        """CamelCase dict matching the client-side TimerState shape."""
        return {
            "isRunning": self.is_running,
            "isPaused": self.is_paused,
            "timeLeft": self.time_left_seconds,
            "totalTime": self.total_seconds,
            "currentPhase": self.phase.value,
            "sessionCount": self.session_count,
            "interruptions": self.interruptions,
        }


@dataclass(frozen=True)
class PhaseComplete:
    """Payload raised when a phase reaches zero, by expiry or by skip."""

    phase: Phase
    total_seconds: int
    paused_seconds: int
    interruptions: int
    focused_seconds: int
    session_count: int
    next_phase: Phase
    auto_started: bool
    time_left_seconds: int = 0


@dataclass
class TickResult:
    state: TimerState
    events: list[ClockEvent] = field(default_factory=list)
    completed: PhaseComplete | None = None


def format_time(seconds: int) -> str:
    """Format seconds as 'MM:SS'."""
    seconds = max(0, seconds)
    return f"{seconds // 60:02d}:{seconds % 60:02d}"


def break_phase_for(session_count: int, cadence: int) -> Phase:
    """Long break after every `cadence` completed focus phases."""
    if session_count > 0 and session_count % cadence == 0:
        return Phase.LONG_BREAK
    return Phase.BREAK


def phase_seconds(settings: FocusSettings, phase: Phase) -> int:
    if phase == Phase.FOCUS:
        minutes = settings.default_pomodoro_length
    elif phase == Phase.LONG_BREAK:
        minutes = settings.default_long_break_length
    else:
        minutes = settings.default_break_length
    return minutes * 60


def initial_state(settings: FocusSettings) -> TimerState:
    total = phase_seconds(settings, Phase.FOCUS)
    return TimerState(time_left_seconds=total, total_seconds=total)


def progress(state: TimerState) -> float:
    """Elapsed fraction of the current phase, clamped to [0, 1]."""
    if state.total_seconds <= 0:
        return 0.0
    fraction = (state.total_seconds - state.time_left_seconds) / state.total_seconds
    return min(1.0, max(0.0, fraction))


# ---- Reducers ----

def _paused_ms_at(state: TimerState, now_ms: int) -> int:
    """Accumulated pause time, including a still-open pause interval."""
    if state.paused_at_ms is None:
        return state.paused_ms
    return state.paused_ms + max(0, now_ms - state.paused_at_ms)


def start(state: TimerState, now_ms: int) -> TimerState:
    """idle/paused -> running. Ignored when already running or at 0:00."""
    if state.status == Status.RUNNING or state.time_left_seconds <= 0:
        return state
    return replace(
        state,
        status=Status.RUNNING,
        paused_ms=_paused_ms_at(state, now_ms),
        paused_at_ms=None,
    )


def pause(state: TimerState, now_ms: int) -> TimerState:
    if state.status != Status.RUNNING:
        return state
    return replace(state, status=Status.PAUSED, paused_at_ms=now_ms)


def resume(state: TimerState, now_ms: int) -> TimerState:
    if state.status != Status.PAUSED:
        return state
    return start(state, now_ms)


def reset(state: TimerState, settings: FocusSettings) -> TimerState:
    """Back to idle with the duration recomputed for the current phase.

    Break phases re-evaluate the long-break cadence, since session_count or
    the cadence setting may have changed since the phase began.
    """
    phase = state.phase
    if phase != Phase.FOCUS:
        phase = break_phase_for(state.session_count, settings.pomodoros_until_long_break)
    total = phase_seconds(settings, phase)
    return TimerState(
        phase=phase,
        status=Status.IDLE,
        time_left_seconds=total,
        total_seconds=total,
        session_count=state.session_count,
    )


def record_interruption(state: TimerState) -> TimerState:
    """Count an interruption. Only meaningful during an active focus phase."""
    if state.phase != Phase.FOCUS or state.status == Status.IDLE:
        return state
    return replace(state, interruptions=state.interruptions + 1)


def skip_phase(state: TimerState) -> TimerState:
    """Force 0:00 so completion goes through evaluate(), same as natural expiry."""
    return replace(
        state,
        time_left_seconds=0,
        skipped_seconds=state.skipped_seconds + state.time_left_seconds,
    )


def tick(state: TimerState, settings: FocusSettings, now_ms: int) -> TickResult:
    """One-second tick. Decrements only while running; never goes below 0."""
    if state.status == Status.RUNNING and state.time_left_seconds > 0:
        state = replace(state, time_left_seconds=state.time_left_seconds - 1)
    return evaluate(state, settings, now_ms)


def evaluate(state: TimerState, settings: FocusSettings, now_ms: int) -> TickResult:
    """Fire phase completion if the countdown is at zero."""
    if state.time_left_seconds > 0 or state.total_seconds <= 0:
        return TickResult(state=state)
    return _complete_phase(state, settings, now_ms)


def _complete_phase(state: TimerState, settings: FocusSettings, now_ms: int) -> TickResult:
    if state.phase == Phase.FOCUS:
        session_count = state.session_count + 1
        next_phase = break_phase_for(session_count, settings.pomodoros_until_long_break)
        auto_start = settings.auto_start_breaks
    else:
        session_count = state.session_count
        next_phase = Phase.FOCUS
        auto_start = settings.auto_start_pomodoros

    completed = PhaseComplete(
        phase=state.phase,
        total_seconds=state.total_seconds,
        paused_seconds=_paused_ms_at(state, now_ms) // 1000,
        interruptions=state.interruptions,
        focused_seconds=max(0, state.total_seconds - state.skipped_seconds),
        session_count=session_count,
        next_phase=next_phase,
        auto_started=auto_start,
    )

    total = phase_seconds(settings, next_phase)
    next_state = TimerState(
        phase=next_phase,
        status=Status.RUNNING if auto_start else Status.IDLE,
        time_left_seconds=total,
        total_seconds=total,
        session_count=session_count,
    )

    events = [ClockEvent.PHASE_COMPLETE, ClockEvent.PHASE_CHANGED]
    if auto_start:
        events.append(ClockEvent.STARTED)
    return TickResult(state=next_state, events=events, completed=completed)


class PhaseClock:
    """Mutable holder around the reducers, for callers that want an object.

    Every method takes the caller's monotonic now_ms where time matters and
    returns a TickResult describing what happened.
    """

    def __init__(self, settings: FocusSettings | None = None):
        self._settings = settings or FocusSettings()
        self._state = initial_state(self._settings)

    # ---- Read-only properties ----

    @property
    def state(self) -> TimerState:
        return self._state

    @property
    def settings(self) -> FocusSettings:
        return self._settings

    @property
    def phase(self) -> Phase:
        return self._state.phase

    @property
    def progress(self) -> float:
        return progress(self._state)

    @property
    def formatted_time_left(self) -> str:
        return format_time(self._state.time_left_seconds)

    @property
    def can_start(self) -> bool:
        return not self._state.is_running and self._state.time_left_seconds > 0

    @property
    def can_pause(self) -> bool:
        return self._state.is_running

    @property
    def can_resume(self) -> bool:
        return self._state.is_paused

    @property
    def is_break(self) -> bool:
        return self._state.phase != Phase.FOCUS

    def paused_seconds(self, now_ms: int) -> int:
        return _paused_ms_at(self._state, now_ms) // 1000

    # ---- Operations ----

    def load(self, state: TimerState) -> None:
        """Replace the state wholesale (re-attaching to a running session)."""
        self._state = state

    def apply_settings(self, settings: FocusSettings) -> None:
        """Swap settings. An untouched idle phase picks up the new length immediately."""
        self._settings = settings
        s = self._state
        if s.is_idle and s.time_left_seconds == s.total_seconds and s.interruptions == 0:
            self._state = reset(s, settings)

    def start(self, now_ms: int) -> TickResult:
        return self._transition(start(self._state, now_ms), ClockEvent.STARTED)

    def pause(self, now_ms: int) -> TickResult:
        return self._transition(pause(self._state, now_ms), ClockEvent.PAUSED)

    def resume(self, now_ms: int) -> TickResult:
        return self._transition(resume(self._state, now_ms), ClockEvent.RESUMED)

    def reset(self) -> TickResult:
        self._state = reset(self._state, self._settings)
        return TickResult(state=self._state, events=[ClockEvent.RESET])

    def record_interruption(self) -> TickResult:
        return self._transition(record_interruption(self._state), ClockEvent.INTERRUPTION)

    def skip_phase(self, now_ms: int) -> TickResult:
        result = evaluate(skip_phase(self._state), self._settings, now_ms)
        self._state = result.state
        return result

    def tick(self, now_ms: int) -> TickResult:
        result = tick(self._state, self._settings, now_ms)
        self._state = result.state
        return result

    def _transition(self, new_state: TimerState, event: ClockEvent) -> TickResult:
        changed = new_state != self._state
        self._state = new_state
        return TickResult(state=new_state, events=[event] if changed else [])
