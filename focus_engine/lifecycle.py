"""Session lifecycle manager: keeps the local phase clock and the server's
active-session record consistent.

The manager never raises for conflicts or completion duplicates; it returns
an outcome the UI layer can present (resume prompt, degraded banner, toast).
Transport failures on begin/complete are reported as DEGRADED/DEFERRED
outcomes; the local countdown keeps running regardless.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

from pydantic import ValidationError

from .errors import (
    SessionAlreadyCompleted,
    SessionConflict,
    SessionNotFound,
    TransportError,
    ValidationFailed,
)
from .log import get_logger
from .models import CreateSessionRequest, UpdateSessionRequest

logger = get_logger("lifecycle")


class LifecycleEvent(str, Enum):
    FOCUS_SESSION_STARTED = "focus_session_started"
    FOCUS_SESSION_COMPLETED = "focus_session_completed"
    FOCUS_SESSION_ABANDONED = "focus_session_abandoned"
    SESSION_CONFLICT = "session_conflict"
    SESSION_DEGRADED = "session_degraded"
    SESSION_UNRECORDED = "session_unrecorded"
    PHASE_COMPLETE = "phase_complete"


@dataclass(frozen=True)
class Notification:
    event: LifecycleEvent
    data: dict[str, Any] = field(default_factory=dict)


Notifier = Callable[[Notification], None]


class BeginOutcome(str, Enum):
    STARTED = "started"
    ALREADY_BOUND = "already_bound"
    CONFLICT = "conflict"
    DEGRADED = "degraded"


class CompleteOutcome(str, Enum):
    COMPLETED = "completed"
    ALREADY_COMPLETED = "already_completed"
    DUPLICATE = "duplicate"
    DEFERRED = "deferred"
    NOT_FOUND = "not_found"
    NO_SESSION = "no_session"


@dataclass
class BeginResult:
    outcome: BeginOutcome
    session: Optional[dict] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome in (BeginOutcome.STARTED, BeginOutcome.ALREADY_BOUND)


@dataclass
class CompleteResult:
    outcome: CompleteOutcome
    session: Optional[dict] = None
    xp_earned: int = 0
    new_achievements: list[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def rewarded(self) -> bool:
        """True only for the call that actually attributed the reward."""
        return self.outcome == CompleteOutcome.COMPLETED

    @property
    def ok(self) -> bool:
        return self.outcome in (
            CompleteOutcome.COMPLETED,
            CompleteOutcome.ALREADY_COMPLETED,
            CompleteOutcome.DUPLICATE,
        )


class SessionLifecycleManager:
    """Bridges phase-clock events to the remote session store.

    `client` is any object with the FocusApiClient session methods.
    `notify` receives Notification values for the UI/notification layer.
    """

    def __init__(self, client, notify: Notifier | None = None):
        self._client = client
        self._notify = notify or (lambda notification: None)

        self.session_id: Optional[str] = None
        self.bound_session: Optional[dict] = None
        self.detached_session: Optional[dict] = None
        self.degraded = False
        self.last_error: Optional[str] = None
        self.pending_completion: Optional[str] = None

        self._pending_update: Optional[UpdateSessionRequest] = None
        self._completed: dict[str, CompleteResult] = {}

    # ---- Read-only helpers ----

    @property
    def has_session(self) -> bool:
        return self.session_id is not None

    def status(self) -> dict:
        return {
            "sessionId": self.session_id,
            "degraded": self.degraded,
            "detachedSessionId": self.detached_session["id"] if self.detached_session else None,
            "pendingCompletion": self.pending_completion,
            "lastError": self.last_error,
        }

    # ---- Lifecycle ----

    def begin_focus_session(self, request: CreateSessionRequest | dict) -> BeginResult:
        """Open the server session for a new focus phase (never on resume).

        Raises ValidationFailed for a bad request; nothing is sent and the
        caller must leave the clock idle.
        """
        request = _validated(request)

        if self.session_id is not None:
            return BeginResult(BeginOutcome.ALREADY_BOUND, self.bound_session)

        # Look before creating: another tab or a reload may own an open session.
        try:
            active = self._client.get_active_session()
        except TransportError as e:
            return self._degrade(e)
        if active is not None:
            return self._conflict(active)

        try:
            response = self._client.start_session(request)
        except SessionConflict as e:
            try:
                active = self.query_active_session()
            except TransportError:
                active = None
            return self._conflict(active or e.active_session)
        except TransportError as e:
            return self._degrade(e)

        session = response["session"]
        self._bind(session)
        self.degraded = False
        self.last_error = None
        logger.info(f"Focus session bound: {session['id'][:8]}")
        self._notify(Notification(LifecycleEvent.FOCUS_SESSION_STARTED, {
            "session": session,
            "message": response.get("message"),
        }))
        return BeginResult(BeginOutcome.STARTED, session)

    def update_focus_session(self, update: UpdateSessionRequest | dict) -> Optional[dict]:
        """Persist interim counters for the bound session. Raises TransportError.

        A session that no longer exists server-side is unbound and None is
        returned; the phase then finishes unrecorded.
        """
        if self.session_id is None:
            return None
        if isinstance(update, dict):
            update = UpdateSessionRequest(**update)
        sid = self.session_id
        try:
            session = self._client.update_session(sid, update)
        except SessionNotFound:
            logger.warning(f"Session {sid[:8]} no longer exists server-side; unbinding")
            self._finish(sid)
            self.last_error = "session not found"
            return None
        except TransportError as e:
            self.last_error = str(e)
            logger.warning(f"Interim update failed for {self.session_id[:8]}: {e}")
            raise
        self.bound_session = session
        return session

    def complete_focus_session(
        self,
        session_id: str | None = None,
        update: UpdateSessionRequest | dict | None = None,
    ) -> CompleteResult:
        """Complete a session, idempotently.

        "Already completed" from the server counts as success without a
        second reward or notification; a repeat call for an id this manager
        already completed is answered locally.
        """
        sid = session_id or self.session_id
        if isinstance(update, dict):
            update = UpdateSessionRequest(**update)

        if sid is None:
            logger.warning("Focus phase finished without a bound session; nothing recorded")
            self._notify(Notification(LifecycleEvent.SESSION_UNRECORDED, {
                "reason": self.last_error or "no session",
            }))
            return CompleteResult(CompleteOutcome.NO_SESSION, error=self.last_error)

        if sid in self._completed:
            previous = self._completed[sid]
            return CompleteResult(CompleteOutcome.DUPLICATE, session=previous.session)

        try:
            if update is not None:
                self._client.update_session(sid, update)
            response = self._client.complete_session(sid)
        except SessionAlreadyCompleted as e:
            logger.info(f"Session {sid[:8]} already completed; treating as success")
            result = CompleteResult(CompleteOutcome.ALREADY_COMPLETED, session=e.session)
        except SessionNotFound as e:
            # also covers SessionAbandoned: closed without reward
            logger.warning(f"Session {sid[:8]} cannot be completed: {e}")
            self._finish(sid)
            return CompleteResult(CompleteOutcome.NOT_FOUND, error=str(e))
        except TransportError as e:
            # Unbound so the next focus phase can't reuse it; retried via pending_completion.
            if self.session_id == sid:
                self._unbind()
            self.pending_completion = sid
            self._pending_update = update
            self.last_error = str(e)
            logger.warning(f"Completion deferred for {sid[:8]}: {e}")
            return CompleteResult(CompleteOutcome.DEFERRED, error=str(e))
        else:
            result = CompleteResult(
                CompleteOutcome.COMPLETED,
                session=response["session"],
                xp_earned=response.get("xpEarned", 0),
                new_achievements=response.get("newAchievements") or [],
            )
            self._notify(Notification(LifecycleEvent.FOCUS_SESSION_COMPLETED, {
                "session": result.session,
                "xpEarned": result.xp_earned,
                "newAchievements": result.new_achievements,
            }))

        self._completed[sid] = result
        self._finish(sid)
        return result

    def retry_pending_completion(self) -> Optional[CompleteResult]:
        """Re-issue a deferred completion, if any."""
        if self.pending_completion is None:
            return None
        return self.complete_focus_session(self.pending_completion, self._pending_update)

    def abandon_focus_session(self) -> Optional[dict]:
        """Explicitly abandon the bound session (e.g. the user reset the timer).

        The local binding is dropped first; if the call fails the session stays
        active server-side and shows up again through query_active_session().
        """
        sid = self.session_id
        if sid is None:
            return None
        self._unbind()
        try:
            session = self._client.abandon_session(sid)
        except (TransportError, SessionNotFound) as e:
            self.last_error = str(e)
            logger.warning(f"Abandon failed for {sid[:8]}: {e}")
            return None
        self._notify(Notification(LifecycleEvent.FOCUS_SESSION_ABANDONED, {"session": session}))
        return session

    def query_active_session(self) -> Optional[dict]:
        """Fetch the server's active session and reconcile local binding.

        A server-active session this timer is not bound to is kept in
        `detached_session` so the UI can offer to resume tracking it.
        Raises TransportError.
        """
        try:
            active = self._client.get_active_session()
        except TransportError as e:
            self.last_error = str(e)
            raise

        if active is None:
            self.detached_session = None
        elif active["id"] == self.session_id:
            self.bound_session = active
            self.detached_session = None
        else:
            self.detached_session = active
        return active

    def attach(self, session: dict | None = None) -> dict:
        """Bind an already-active server session (resume tracking after reload)."""
        session = session or self.detached_session
        if session is None:
            raise ValueError("No active session to attach")
        self._bind(session)
        self.detached_session = None
        self.degraded = False
        logger.info(f"Re-attached to active session {session['id'][:8]}")
        return session

    # ---- Internal ----

    def _bind(self, session: dict) -> None:
        self.session_id = session["id"]
        self.bound_session = session

    def _unbind(self) -> None:
        self.session_id = None
        self.bound_session = None

    def _finish(self, sid: str) -> None:
        if self.session_id == sid:
            self._unbind()
        if self.pending_completion == sid:
            self.pending_completion = None
            self._pending_update = None

    def _conflict(self, active: Optional[dict]) -> BeginResult:
        self.detached_session = active
        logger.info("Begin rejected: a focus session is already active")
        self._notify(Notification(LifecycleEvent.SESSION_CONFLICT, {"session": active}))
        return BeginResult(BeginOutcome.CONFLICT, active)

    def _degrade(self, error: TransportError) -> BeginResult:
        self.degraded = True
        self.last_error = str(error)
        logger.warning(f"Session store unreachable, running without a session: {error}")
        self._notify(Notification(LifecycleEvent.SESSION_DEGRADED, {"error": str(error)}))
        return BeginResult(BeginOutcome.DEGRADED, error=str(error))


def _validated(request: CreateSessionRequest | dict) -> CreateSessionRequest:
    if isinstance(request, CreateSessionRequest):
        return request
    try:
        return CreateSessionRequest(**request)
    except ValidationError as e:
        raise ValidationFailed(f"Invalid session request: {e.error_count()} error(s)") from e
