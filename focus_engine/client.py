"""HTTP client for the Focus API.

Injected into the lifecycle manager and settings provider rather than
reached through a module-level singleton, so both can be tested against a
fake or an in-process test client. HTTP failures are mapped back onto the
focus_engine.errors taxonomy.
"""

from __future__ import annotations

from typing import Any, Optional

import requests

from .errors import (
    SessionAbandoned,
    SessionAlreadyCompleted,
    SessionConflict,
    SessionNotFound,
    TransportError,
    ValidationFailed,
)
from .models import CreateSessionRequest, UpdateSessionRequest
from .settings import FocusSettings, FocusSettingsUpdate


class FocusApiClient:
    def __init__(self, base_url: str, user_id: str, timeout: float = 5.0, session=None):
        self.base_url = base_url.rstrip("/")
        self.user_id = user_id
        self.timeout = timeout
        # Anything with a requests-style .request() works (requests.Session, TestClient)
        self.session = session or requests.Session()

    # ---- Sessions ----

    def start_session(self, request: CreateSessionRequest) -> dict:
        """POST /api/focus/start -> {session, message}. Raises SessionConflict on 409."""
        return self._request("POST", "/api/focus/start", payload=_dump(request))

    def get_active_session(self) -> Optional[dict]:
        return self._request("GET", "/api/focus/sessions/active")

    def get_session(self, session_id: str) -> dict:
        return self._request("GET", f"/api/focus/sessions/{session_id}")

    def update_session(self, session_id: str, update: UpdateSessionRequest) -> dict:
        return self._request("PUT", f"/api/focus/sessions/{session_id}", payload=_dump(update))

    def complete_session(self, session_id: str) -> dict:
        """-> {session, xpEarned, newAchievements?, message}. Raises SessionAlreadyCompleted."""
        return self._request("POST", f"/api/focus/sessions/{session_id}/complete")

    def abandon_session(self, session_id: str) -> dict:
        return self._request("POST", f"/api/focus/sessions/{session_id}/abandon")

    def delete_session(self, session_id: str) -> None:
        self._request("DELETE", f"/api/focus/sessions/{session_id}")

    def list_sessions(self, **filters: Any) -> dict:
        params = {k: v for k, v in filters.items() if v is not None}
        return self._request("GET", "/api/focus/sessions", params=params)

    def get_stats(self) -> dict:
        return self._request("GET", "/api/focus/stats")

    def recent_events(self, limit: int = 20) -> list[dict]:
        return self._request("GET", "/api/events/recent", params={"limit": limit})

    # ---- Settings ----

    def get_settings(self) -> FocusSettings:
        return FocusSettings(**self._request("GET", "/api/focus/settings"))

    def update_settings(self, patch: FocusSettingsUpdate) -> FocusSettings:
        return FocusSettings(**self._request("PUT", "/api/focus/settings", payload=_dump(patch)))

    def health(self) -> bool:
        try:
            return self._request("GET", "/health").get("status") == "ok"
        except TransportError:
            return False

    # ---- Internal ----

    def _request(self, method: str, path: str, payload: dict | None = None,
                 params: dict | None = None) -> Any:
        try:
            resp = self.session.request(
                method,
                f"{self.base_url}{path}",
                json=payload,
                params=params,
                headers={"X-User-Id": self.user_id},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise TransportError(f"{method} {path} failed: {e}") from e

        if resp.status_code == 204 or not resp.content:
            body = None
        else:
            try:
                body = resp.json()
            except ValueError as e:
                raise TransportError(f"{method} {path}: invalid JSON response", resp.status_code) from e

        if resp.status_code < 400:
            return body

        detail = body.get("detail") if isinstance(body, dict) else None
        if resp.status_code == 409:
            info = detail if isinstance(detail, dict) else {}
            if info.get("code") == "session_completed":
                raise SessionAlreadyCompleted(info.get("session"))
            if info.get("code") == "session_abandoned":
                raise SessionAbandoned(info.get("session"))
            raise SessionConflict(info.get("session"))
        if resp.status_code == 404:
            raise SessionNotFound(path.split("/sessions/", 1)[-1].split("/", 1)[0])
        if resp.status_code in (400, 422):
            raise ValidationFailed(str(detail or "Invalid request"))
        raise TransportError(f"{method} {path} returned {resp.status_code}: {detail}", resp.status_code)


def _dump(model) -> dict:
    return model.model_dump(by_alias=True, exclude_none=True)
