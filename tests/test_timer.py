"""Unit tests for the phase clock: pure reducers and the PhaseClock holder, no I/O."""

import dataclasses

import pytest

from focus_engine import timer
from focus_engine.settings import FocusSettings
from focus_engine.timer import (
    ClockEvent,
    Phase,
    PhaseClock,
    PhaseComplete,
    Status,
    TickResult,
    TimerState,
    break_phase_for,
    format_time,
)


# ---- Helpers ----

def make_clock(focus=25, short=5, long=15, cadence=4, **flags) -> PhaseClock:
    return PhaseClock(FocusSettings(
        default_pomodoro_length=focus,
        default_break_length=short,
        default_long_break_length=long,
        pomodoros_until_long_break=cadence,
        **flags,
    ))


def advance(clock: PhaseClock, start_ms: int, seconds: int) -> TickResult:
    """Tick once per second for `seconds` seconds, returning the last result."""
    result = TickResult(state=clock.state)
    for i in range(seconds):
        result = clock.tick(start_ms + (i + 1) * 1000)
    return result


def run_phase(clock: PhaseClock, start_ms: int = 0) -> TickResult:
    """Start the current phase and tick it down to completion."""
    clock.start(start_ms)
    return advance(clock, start_ms, clock.state.time_left_seconds)


# ---- Initial state ----

class TestInitialState:
    def test_starts_idle_in_focus(self):
        clock = make_clock(focus=25)
        assert clock.phase == Phase.FOCUS
        assert clock.state.status == Status.IDLE
        assert clock.state.time_left_seconds == 1500
        assert clock.state.total_seconds == 1500
        assert clock.state.session_count == 0

    def test_export_dict_shape(self):
        exported = make_clock().state.to_export_dict()
        assert exported == {
            "isRunning": False,
            "isPaused": False,
            "timeLeft": 1500,
            "totalTime": 1500,
            "currentPhase": "focus",
            "sessionCount": 0,
            "interruptions": 0,
        }


# ---- Start / tick ----

class TestStartAndTick:
    def test_start_runs(self):
        clock = make_clock()
        result = clock.start(0)
        assert clock.state.is_running
        assert result.events == [ClockEvent.STARTED]

    def test_start_while_running_is_ignored(self):
        clock = make_clock()
        clock.start(0)
        result = clock.start(500)
        assert result.events == []
        assert clock.state.is_running

    def test_start_at_zero_is_ignored(self):
        state = TimerState(time_left_seconds=0, total_seconds=60)
        assert timer.start(state, 0) is state

    def test_idle_clock_does_not_count_down(self):
        clock = make_clock(focus=1)
        advance(clock, 0, 10)
        assert clock.state.time_left_seconds == 60

    @pytest.mark.parametrize("minutes", [1, 5, 25, 90])
    def test_ticks_reach_exactly_zero(self, minutes):
        settings = FocusSettings(default_pomodoro_length=minutes)
        state = timer.start(timer.initial_state(settings), 0)
        total = state.total_seconds

        for i in range(total - 1):
            result = timer.tick(state, settings, (i + 1) * 1000)
            state = result.state
            assert result.completed is None
            assert state.time_left_seconds > 0
        assert state.time_left_seconds == 1

        result = timer.tick(state, settings, total * 1000)
        assert result.completed is not None
        assert result.completed.time_left_seconds == 0
        assert result.completed.total_seconds == total

    def test_tick_never_goes_negative(self):
        settings = FocusSettings()
        state = TimerState(status=Status.RUNNING, time_left_seconds=0, total_seconds=0)
        result = timer.tick(state, settings, 1000)
        assert result.state.time_left_seconds == 0
        assert result.completed is None

    def test_completion_events(self):
        clock = make_clock(focus=1)
        result = run_phase(clock)
        assert result.events == [ClockEvent.PHASE_COMPLETE, ClockEvent.PHASE_CHANGED]
        assert clock.phase == Phase.BREAK
        assert clock.state.is_idle
        assert clock.state.time_left_seconds == 300


# ---- Pause / resume ----

class TestPauseResume:
    def test_pause_then_resume_preserves_visible_state(self):
        clock = make_clock()
        clock.start(0)
        advance(clock, 0, 10)
        before = clock.state.to_export_dict()

        clock.pause(10_000)
        clock.resume(10_000)

        assert clock.state.to_export_dict() == before

    def test_pause_duration_does_not_change_remaining_time(self):
        clock = make_clock()
        clock.start(0)
        advance(clock, 0, 10)
        clock.pause(10_000)
        # Ticks while paused are ignored
        advance(clock, 10_000, 120)
        clock.resume(130_000)

        assert clock.state.time_left_seconds == 1490
        assert clock.state.paused_ms == 120_000
        assert clock.paused_seconds(130_000) == 120

    def test_open_pause_interval_counts_toward_paused_seconds(self):
        clock = make_clock()
        clock.start(0)
        clock.pause(5_000)
        assert clock.paused_seconds(65_000) == 60

    def test_pause_only_from_running(self):
        clock = make_clock()
        assert clock.pause(0).events == []
        assert clock.state.is_idle

    def test_resume_only_from_paused(self):
        clock = make_clock()
        assert clock.resume(0).events == []
        assert clock.state.is_idle

    def test_paused_time_reported_on_completion(self):
        clock = make_clock(focus=1)
        clock.start(0)
        advance(clock, 0, 30)
        clock.pause(30_000)
        clock.resume(150_000)
        result = advance(clock, 150_000, 30)
        assert result.completed.paused_seconds == 120


# ---- Interruptions ----

class TestInterruptions:
    def test_counts_during_running_focus(self):
        clock = make_clock()
        clock.start(0)
        clock.record_interruption()
        clock.record_interruption()
        assert clock.state.interruptions == 2

    def test_counts_while_paused(self):
        clock = make_clock()
        clock.start(0)
        clock.pause(1000)
        clock.record_interruption()
        assert clock.state.interruptions == 1

    def test_does_not_affect_countdown(self):
        clock = make_clock()
        clock.start(0)
        advance(clock, 0, 5)
        clock.record_interruption()
        assert clock.state.is_running
        assert clock.state.time_left_seconds == 1495

    def test_idle_focus_is_noop(self):
        clock = make_clock()
        result = clock.record_interruption()
        assert result.events == []
        assert clock.state.interruptions == 0

    @pytest.mark.parametrize("start_break", [True, False])
    def test_break_is_noop(self, start_break):
        clock = make_clock(focus=1)
        run_phase(clock)
        assert clock.phase == Phase.BREAK
        if start_break:
            clock.start(100_000)
        clock.record_interruption()
        assert clock.state.interruptions == 0

    def test_counter_resets_for_next_focus_phase(self):
        clock = make_clock(focus=1, short=1)
        clock.start(0)
        clock.record_interruption()
        result = advance(clock, 0, 60)
        assert result.completed.interruptions == 1

        run_phase(clock, 100_000)
        assert clock.phase == Phase.FOCUS
        assert clock.state.interruptions == 0


# ---- Phase transitions ----

class TestCadence:
    @pytest.mark.parametrize("cadence", [1, 2, 3, 4, 5])
    def test_long_break_every_cadence_focus_phases(self, cadence):
        clock = make_clock(focus=1, short=1, long=2, cadence=cadence)
        t = 0
        for n in range(1, 2 * cadence + 1):
            assert clock.phase == Phase.FOCUS
            result = run_phase(clock, t)
            t += 200_000
            expected = Phase.LONG_BREAK if n % cadence == 0 else Phase.BREAK
            assert result.completed.next_phase == expected
            assert clock.phase == expected
            assert clock.state.session_count == n
            run_phase(clock, t)
            t += 200_000

    def test_break_phase_for(self):
        assert break_phase_for(0, 4) == Phase.BREAK
        assert break_phase_for(3, 4) == Phase.BREAK
        assert break_phase_for(4, 4) == Phase.LONG_BREAK
        assert break_phase_for(8, 4) == Phase.LONG_BREAK

    def test_four_pomodoro_cycle_phase_order(self):
        clock = make_clock(focus=25, short=5, long=15, cadence=4)
        order = [clock.phase]
        t = 0
        while len(order) < 8:
            result = run_phase(clock, t)
            t += result.completed.total_seconds * 1000 + 1000
            order.append(clock.phase)
            assert clock.state.is_idle  # no auto-start

        assert order == [
            Phase.FOCUS, Phase.BREAK,
            Phase.FOCUS, Phase.BREAK,
            Phase.FOCUS, Phase.BREAK,
            Phase.FOCUS, Phase.LONG_BREAK,
        ]
        assert clock.state.time_left_seconds == 15 * 60

    def test_auto_start_breaks(self):
        clock = make_clock(focus=1, auto_start_breaks=True)
        result = run_phase(clock)
        assert result.completed.auto_started
        assert ClockEvent.STARTED in result.events
        assert clock.phase == Phase.BREAK
        assert clock.state.is_running

    def test_auto_start_pomodoros(self):
        clock = make_clock(focus=1, short=1, auto_start_pomodoros=True)
        first = run_phase(clock)
        assert not first.completed.auto_started
        assert clock.state.is_idle

        result = run_phase(clock, 100_000)
        assert result.completed.auto_started
        assert clock.phase == Phase.FOCUS
        assert clock.state.is_running


# ---- Skip ----

class TestSkipPhase:
    def test_skip_at_fifteen_minutes_matches_natural_payload(self):
        skipped_clock = make_clock(focus=25)
        skipped_clock.start(0)
        advance(skipped_clock, 0, 600)
        assert skipped_clock.state.time_left_seconds == 900
        skipped = skipped_clock.skip_phase(600_000)

        natural_clock = make_clock(focus=25)
        natural = run_phase(natural_clock)

        assert isinstance(skipped.completed, PhaseComplete)
        assert skipped.events == natural.events
        assert dataclasses.asdict(skipped.completed).keys() == dataclasses.asdict(natural.completed).keys()
        assert skipped.completed.time_left_seconds == 0
        assert skipped.completed.total_seconds == 1500
        assert skipped.completed.phase == Phase.FOCUS
        assert skipped.completed.next_phase == Phase.BREAK
        assert skipped.completed.focused_seconds == 600
        assert natural.completed.focused_seconds == 1500

    def test_skip_goes_through_same_transition(self):
        clock = make_clock()
        clock.start(0)
        clock.skip_phase(1000)
        assert clock.phase == Phase.BREAK
        assert clock.state.session_count == 1

    def test_skip_break_returns_to_focus(self):
        clock = make_clock(focus=1)
        run_phase(clock)
        result = clock.skip_phase(100_000)
        assert result.completed.phase == Phase.BREAK
        assert clock.phase == Phase.FOCUS
        assert clock.state.session_count == 1

    def test_skip_reducer_only_zeroes_time(self):
        state = TimerState(status=Status.RUNNING, time_left_seconds=900, total_seconds=1500)
        skipped = timer.skip_phase(state)
        assert skipped.time_left_seconds == 0
        assert skipped.skipped_seconds == 900
        assert skipped.status == Status.RUNNING


# ---- Reset / settings ----

class TestReset:
    def test_reset_restores_phase_duration(self):
        clock = make_clock()
        clock.start(0)
        advance(clock, 0, 100)
        result = clock.reset()
        assert result.events == [ClockEvent.RESET]
        assert clock.state.is_idle
        assert clock.state.time_left_seconds == 1500

    def test_reset_clears_pause_and_interruptions(self):
        clock = make_clock()
        clock.start(0)
        clock.record_interruption()
        clock.pause(1000)
        clock.reset()
        assert clock.state.paused_ms == 0
        assert clock.state.paused_at_ms is None
        assert clock.state.interruptions == 0
        assert clock.paused_seconds(500_000) == 0

    def test_reset_recomputes_break_kind_from_cadence(self):
        clock = make_clock(focus=1, cadence=4)
        run_phase(clock)
        assert clock.phase == Phase.BREAK

        clock.apply_settings(clock.settings.model_copy(update={"pomodoros_until_long_break": 1}))
        clock.reset()
        assert clock.phase == Phase.LONG_BREAK
        assert clock.state.time_left_seconds == 15 * 60

    def test_apply_settings_updates_untouched_idle_phase(self):
        clock = make_clock(focus=25)
        clock.apply_settings(FocusSettings(default_pomodoro_length=50))
        assert clock.state.time_left_seconds == 3000

    def test_apply_settings_keeps_running_phase(self):
        clock = make_clock(focus=25)
        clock.start(0)
        clock.apply_settings(FocusSettings(default_pomodoro_length=50))
        assert clock.state.total_seconds == 1500


# ---- Display helpers ----

class TestDisplay:
    def test_progress_clamped(self):
        assert timer.progress(TimerState(time_left_seconds=1500, total_seconds=1500)) == 0.0
        assert timer.progress(TimerState(time_left_seconds=750, total_seconds=1500)) == 0.5
        assert timer.progress(TimerState(time_left_seconds=0, total_seconds=1500)) == 1.0
        assert timer.progress(TimerState(time_left_seconds=2000, total_seconds=1500)) == 0.0
        assert timer.progress(TimerState()) == 0.0

    def test_format_time(self):
        assert format_time(1500) == "25:00"
        assert format_time(65) == "01:05"
        assert format_time(0) == "00:00"
        assert format_time(-5) == "00:00"

    def test_clock_properties(self):
        clock = make_clock()
        assert clock.can_start and not clock.can_pause and not clock.can_resume
        clock.start(0)
        assert clock.can_pause and not clock.can_start
        clock.pause(1000)
        assert clock.can_resume and clock.can_start
        assert clock.formatted_time_left == "25:00"
        assert not clock.is_break
