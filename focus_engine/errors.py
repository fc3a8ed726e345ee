"""Exception taxonomy shared by the session store, the REST service and the client.

The server raises these from the store and maps them to HTTP status codes;
the client maps HTTP responses back onto the same classes so the lifecycle
manager can branch on them without knowing about transport details.
"""

from __future__ import annotations

from typing import Any


class FocusEngineError(Exception):
    """Base class for every error raised by focus_engine."""


class ValidationFailed(FocusEngineError):
    """Request rejected before any state transition (e.g. non-positive duration)."""


class SessionNotFound(FocusEngineError):
    def __init__(self, session_id: str):
        super().__init__(f"Focus session not found: {session_id}")
        self.session_id = session_id


class SessionConflict(FocusEngineError):
    """A second open session was rejected because the user already has one."""

    def __init__(self, active_session: dict[str, Any] | None = None):
        super().__init__("A focus session is already active for this user")
        self.active_session = active_session


class SessionAlreadyCompleted(FocusEngineError):
    """Completion was requested for a session that is already completed."""

    def __init__(self, session: dict[str, Any] | None = None):
        super().__init__("Session already completed")
        self.session = session


class TransportError(FocusEngineError):
    """Network or server failure talking to the session store."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class SessionAbandoned(SessionNotFound):
    """Completion was requested for a session closed by abandonment; it earns nothing."""

    def __init__(self, session: dict[str, Any] | None = None):
        FocusEngineError.__init__(self, "Session was abandoned")
        self.session_id = session["id"] if session else None
        self.session = session
