"""Focus Engine: pomodoro phase clock, session lifecycle and reward attribution."""

from .controller import FocusController
from .errors import (
    FocusEngineError,
    SessionAbandoned,
    SessionAlreadyCompleted,
    SessionConflict,
    SessionNotFound,
    TransportError,
    ValidationFailed,
)
from .lifecycle import (
    BeginOutcome,
    CompleteOutcome,
    LifecycleEvent,
    Notification,
    SessionLifecycleManager,
)
from .rewards import RewardPolicy, Rewards, compute_rewards
from .settings import FocusSettings, SettingsProvider
from .timer import ClockEvent, Phase, PhaseClock, Status, TickResult, TimerState

__all__ = [
    "BeginOutcome",
    "ClockEvent",
    "CompleteOutcome",
    "FocusController",
    "FocusEngineError",
    "FocusSettings",
    "LifecycleEvent",
    "Notification",
    "Phase",
    "PhaseClock",
    "RewardPolicy",
    "Rewards",
    "SessionAbandoned",
    "SessionAlreadyCompleted",
    "SessionConflict",
    "SessionLifecycleManager",
    "SessionNotFound",
    "SettingsProvider",
    "Status",
    "TickResult",
    "TimerState",
    "TransportError",
    "ValidationFailed",
    "compute_rewards",
]
