"""Tests for FocusController and the run_timer shell, wired to the in-memory fake API."""

import pytest

from fakes import FakeFocusApi, Recorder
from focus_engine.controller import FocusController
from focus_engine.errors import ValidationFailed
from focus_engine.lifecycle import (
    BeginOutcome,
    CompleteOutcome,
    LifecycleEvent,
    SessionLifecycleManager,
)
from focus_engine.models import CreateSessionRequest
from focus_engine.runner import run_timer
from focus_engine.settings import FocusSettings, SettingsProvider
from focus_engine.timer import Phase


# ---- Helpers ----

@pytest.fixture
def api():
    return FakeFocusApi()


@pytest.fixture
def notes():
    return Recorder()


def make_controller(api, notes, session_type="pomodoro", **settings) -> FocusController:
    api.settings = FocusSettings(**settings)
    lifecycle = SessionLifecycleManager(api, notify=notes)
    return FocusController(lifecycle, SettingsProvider(api), notify=notes, session_type=session_type)


def tick_seconds(controller: FocusController, start_ms: int, seconds: int):
    result = None
    for i in range(seconds):
        result = controller.tick(start_ms + (i + 1) * 1000)
    return result


def bound_session(api, controller):
    return api.sessions[controller.lifecycle.session_id]


class FakeTime:
    def __init__(self, interrupt_after=None):
        self.now = 0.0
        self.sleeps = 0
        self.interrupt_after = interrupt_after

    def sleep(self, seconds):
        self.sleeps += 1
        if self.interrupt_after is not None and self.sleeps > self.interrupt_after:
            raise KeyboardInterrupt
        self.now += seconds

    def clock(self):
        return self.now


# ---- Start / pause ----

class TestStart:
    def test_start_begins_session_for_new_focus_phase(self, api, notes):
        controller = make_controller(api, notes)
        controller.start(0)
        assert controller.state.is_running
        assert controller.last_begin.outcome == BeginOutcome.STARTED
        session = bound_session(api, controller)
        assert session["duration"] == 25
        assert session["breakDuration"] == 5

    def test_break_duration_follows_cadence(self, api, notes):
        controller = make_controller(api, notes, pomodoros_until_long_break=1)
        controller.start(0)
        assert bound_session(api, controller)["breakDuration"] == 15

    def test_start_while_running_is_ignored(self, api, notes):
        controller = make_controller(api, notes)
        controller.start(0)
        controller.start(1000)
        assert api.calls.count("start_session") == 1

    def test_resume_does_not_begin_another_session(self, api, notes):
        controller = make_controller(api, notes)
        controller.start(0)
        tick_seconds(controller, 0, 5)
        controller.pause(5000)
        controller.start(65_000)
        assert controller.state.is_running
        assert api.calls.count("start_session") == 1

    def test_pause_pushes_interim_counters(self, api, notes):
        controller = make_controller(api, notes)
        controller.start(0)
        controller.record_interruption()
        controller.pause(5000)
        assert bound_session(api, controller)["interruptions"] == 1

    def test_pause_while_offline_keeps_running_locally(self, api, notes):
        controller = make_controller(api, notes)
        controller.start(0)
        api.offline = True
        controller.pause(5000)
        assert controller.state.is_paused

    def test_pause_after_server_lost_session(self, api, notes):
        controller = make_controller(api, notes)
        controller.start(0)
        del api.sessions[controller.lifecycle.session_id]

        controller.pause(5000)
        assert controller.state.is_paused
        assert not controller.lifecycle.has_session
        assert controller.lifecycle.last_error == "session not found"

        controller.resume(6000)
        controller.skip_phase(7000)
        assert controller.last_completion.outcome == CompleteOutcome.NO_SESSION
        assert LifecycleEvent.SESSION_UNRECORDED in notes.events

    def test_validation_failure_keeps_clock_idle(self, api, notes):
        controller = make_controller(api, notes, session_type="marathon")
        with pytest.raises(ValidationFailed):
            controller.start(0)
        assert controller.state.is_idle
        assert "start_session" not in api.calls


# ---- Conflicts / degraded mode ----

class TestConflictAndDegraded:
    def test_conflict_leaves_clock_idle(self, api, notes):
        other = SessionLifecycleManager(api)
        other.begin_focus_session(CreateSessionRequest(duration=25))

        controller = make_controller(api, notes)
        controller.start(0)
        assert controller.state.is_idle
        assert controller.last_begin.outcome == BeginOutcome.CONFLICT
        assert controller.lifecycle.detached_session["id"] == other.session_id

    def test_resume_existing_session(self, api, notes):
        other = SessionLifecycleManager(api)
        other.begin_focus_session(CreateSessionRequest(duration=25))
        controller = make_controller(api, notes)
        controller.start(0)

        controller.resume_existing(0, elapsed_seconds=600)
        assert controller.state.is_running
        assert controller.state.time_left_seconds == 900
        assert controller.lifecycle.session_id == other.session_id

        controller.skip_phase(1000)
        assert controller.last_completion.rewarded
        assert api.sessions[other.session_id]["completed"]

    def test_resume_existing_without_detached_session(self, api, notes):
        controller = make_controller(api, notes)
        assert controller.resume_existing(0) is None

    def test_degraded_mode_runs_and_reports_unrecorded(self, api, notes):
        controller = make_controller(api, notes)
        api.offline = True
        controller.start(0)
        assert controller.state.is_running
        assert controller.last_begin.outcome == BeginOutcome.DEGRADED

        controller.skip_phase(1000)
        assert controller.last_completion.outcome == CompleteOutcome.NO_SESSION
        assert controller.state.phase == Phase.BREAK
        assert notes.events == [
            LifecycleEvent.SESSION_DEGRADED,
            LifecycleEvent.SESSION_UNRECORDED,
            LifecycleEvent.PHASE_COMPLETE,
        ]


# ---- Completion ----

class TestCompletion:
    def test_focus_completion_pushes_counters_and_completes(self, api, notes):
        controller = make_controller(api, notes, default_pomodoro_length=1)
        controller.start(0)
        sid = controller.lifecycle.session_id
        controller.record_interruption()
        tick_seconds(controller, 0, 30)
        controller.pause(30_000)
        controller.resume(150_000)
        result = tick_seconds(controller, 150_000, 30)

        assert result.completed.phase == Phase.FOCUS
        session = api.sessions[sid]
        assert session["completed"]
        assert session["actualDuration"] == 1
        assert session["interruptions"] == 1
        assert session["pausedTime"] == 2
        assert controller.last_completion.rewarded
        assert controller.lifecycle.session_id is None

    def test_skip_reports_focused_minutes_only(self, api, notes):
        controller = make_controller(api, notes)
        controller.start(0)
        sid = controller.lifecycle.session_id
        tick_seconds(controller, 0, 600)
        controller.skip_phase(600_000)
        assert api.sessions[sid]["actualDuration"] == 10
        assert api.sessions[sid]["completed"]

    def test_break_completion_touches_no_session(self, api, notes):
        controller = make_controller(api, notes)
        controller.start(0)
        controller.skip_phase(1000)
        calls = len(api.calls)
        controller.start(2000)
        controller.skip_phase(3000)
        assert len(api.calls) == calls
        assert controller.state.phase == Phase.FOCUS

    def test_auto_started_focus_begins_new_session(self, api, notes):
        controller = make_controller(
            api, notes,
            default_pomodoro_length=1, default_break_length=1,
            auto_start_breaks=True, auto_start_pomodoros=True,
        )
        controller.start(0)
        tick_seconds(controller, 0, 60)
        assert controller.state.phase == Phase.BREAK
        assert controller.state.is_running

        tick_seconds(controller, 60_000, 60)
        assert controller.state.phase == Phase.FOCUS
        assert controller.state.is_running
        assert api.calls.count("start_session") == 2
        assert controller.lifecycle.has_session

    def test_auto_start_conflict_returns_to_idle(self, api, notes):
        controller = make_controller(
            api, notes,
            default_pomodoro_length=1, default_break_length=1,
            auto_start_breaks=True, auto_start_pomodoros=True,
        )
        controller.start(0)
        tick_seconds(controller, 0, 60)

        other = SessionLifecycleManager(api)
        other.begin_focus_session(CreateSessionRequest(duration=25))
        tick_seconds(controller, 60_000, 60)

        assert controller.state.phase == Phase.FOCUS
        assert controller.state.is_idle
        assert controller.last_begin.outcome == BeginOutcome.CONFLICT

    def test_phase_complete_notification_gated_by_settings(self, api, notes):
        controller = make_controller(api, notes, sound_enabled=False, notifications_enabled=False)
        controller.start(0)
        controller.skip_phase(1000)
        assert LifecycleEvent.PHASE_COMPLETE not in notes.events

    def test_phase_complete_notification_payload(self, api, notes):
        controller = make_controller(api, notes, sound_enabled=False)
        controller.start(0)
        controller.skip_phase(1000)
        note = notes.notifications[-1]
        assert note.event == LifecycleEvent.PHASE_COMPLETE
        assert note.data["phase"] == "focus"
        assert note.data["nextPhase"] == "break"
        assert note.data["sound"] is False
        assert note.data["notification"] is True


# ---- Reset / deferred completion / settings ----

class TestResetAndRecovery:
    def test_reset_abandons_bound_session(self, api, notes):
        controller = make_controller(api, notes)
        controller.start(0)
        sid = controller.lifecycle.session_id
        controller.reset()

        assert api.sessions[sid]["endTime"] is not None
        assert not api.sessions[sid]["completed"]
        assert controller.state.is_idle

        controller.start(1000)
        assert controller.last_begin.outcome == BeginOutcome.STARTED
        assert api.calls.count("start_session") == 2

    def test_reset_during_break_does_not_abandon(self, api, notes):
        controller = make_controller(api, notes)
        controller.start(0)
        controller.skip_phase(1000)
        controller.reset()
        assert "abandon_session" not in api.calls

    def test_poll_retries_deferred_completion(self, api, notes):
        controller = make_controller(api, notes)
        api.fail_complete = 1
        controller.start(0)
        controller.skip_phase(1000)
        assert controller.last_completion.outcome == CompleteOutcome.DEFERRED

        controller.poll()
        assert controller.last_completion.outcome == CompleteOutcome.COMPLETED
        assert api.xp == 125

    def test_next_start_flushes_deferred_completion_first(self, api, notes):
        controller = make_controller(api, notes)
        api.fail_complete = 1
        controller.start(0)
        controller.skip_phase(1000)
        controller.start(2000)
        controller.skip_phase(3000)

        controller.start(4000)
        assert controller.last_begin.outcome == BeginOutcome.STARTED
        assert controller.lifecycle.pending_completion is None
        assert controller.last_completion.outcome == CompleteOutcome.COMPLETED
        assert controller.last_completion.xp_earned == 125
        assert api.xp == 125

    def test_poll_offline_returns_none(self, api, notes):
        controller = make_controller(api, notes)
        api.offline = True
        assert controller.poll() is None

    def test_refresh_settings(self, api, notes):
        controller = make_controller(api, notes)
        api.settings = FocusSettings(default_pomodoro_length=50)
        controller.refresh_settings()
        assert controller.state.time_left_seconds == 3000


# ---- Runner ----

class TestRunTimer:
    def test_runs_phase_to_completion(self, api, notes):
        controller = make_controller(api, notes, default_pomodoro_length=1)
        controller.start(0)
        fake = FakeTime()
        seen = []

        ticks = run_timer(
            controller, sleep=fake.sleep, clock=fake.clock, poll_interval=5,
            on_tick=seen.append, until=lambda r: r.completed is not None,
        )

        assert ticks == 60
        assert len(seen) == 60
        assert seen[-1].completed is not None
        assert controller.last_completion.rewarded

    def test_polls_active_session_on_interval(self, api, notes):
        controller = make_controller(api, notes, default_pomodoro_length=1)
        controller.start(0)
        before = api.calls.count("get_active_session")
        fake = FakeTime()

        run_timer(controller, sleep=fake.sleep, clock=fake.clock, poll_interval=5, max_ticks=60)

        # first tick at t=1, then t=6, 11, ... 56
        assert api.calls.count("get_active_session") - before == 12

    def test_max_ticks(self, api, notes):
        controller = make_controller(api, notes)
        controller.start(0)
        fake = FakeTime()
        assert run_timer(controller, sleep=fake.sleep, clock=fake.clock, max_ticks=10) == 10
        assert controller.state.time_left_seconds == 1490

    def test_keyboard_interrupt_stops_cleanly(self, api, notes):
        controller = make_controller(api, notes)
        controller.start(0)
        fake = FakeTime(interrupt_after=3)
        assert run_timer(controller, sleep=fake.sleep, clock=fake.clock) == 3
        assert controller.state.time_left_seconds == 1497
