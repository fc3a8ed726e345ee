"""Request/response models for the focus session API."""

from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

SessionType = Literal["pomodoro", "custom"]

MAX_SESSION_MINUTES = 480
MAX_BREAK_MINUTES = 60
DEFAULT_BREAK_MINUTES = 5


class CreateSessionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: SessionType = "pomodoro"
    duration: int = Field(..., ge=1, le=MAX_SESSION_MINUTES)
    break_duration: Optional[int] = Field(None, alias="breakDuration", ge=0, le=MAX_BREAK_MINUTES)
    task_id: Optional[str] = Field(None, alias="taskId")
    notes: Optional[str] = Field(None, max_length=500)


class UpdateSessionRequest(BaseModel):
    """Partial update; only fields that are set are written."""

    model_config = ConfigDict(populate_by_name=True)

    actual_duration: Optional[int] = Field(None, alias="actualDuration", ge=0)
    interruptions: Optional[int] = Field(None, ge=0)
    paused_time: Optional[int] = Field(None, alias="pausedTime", ge=0)
    notes: Optional[str] = Field(None, max_length=500)
    completed: Optional[bool] = None

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class SessionFilters(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Optional[SessionType] = None
    completed: Optional[bool] = None
    task_id: Optional[str] = Field(None, alias="taskId")
    start_date: Optional[str] = Field(None, alias="startDate")
    end_date: Optional[str] = Field(None, alias="endDate")
    page: int = Field(1, ge=1)
    limit: int = Field(20, ge=1, le=100)
    sort_by: Literal["startTime", "duration", "productivity", "createdAt"] = Field(
        "startTime", alias="sortBy"
    )
    sort_order: Literal["asc", "desc"] = Field("desc", alias="sortOrder")


# snake_case row column -> camelCase API key
_API_KEYS = {
    "id": "id",
    "user_id": "userId",
    "type": "type",
    "duration": "duration",
    "actual_duration": "actualDuration",
    "break_duration": "breakDuration",
    "completed": "completed",
    "interruptions": "interruptions",
    "task_id": "taskId",
    "xp_earned": "xpEarned",
    "productivity": "productivity",
    "start_time": "startTime",
    "end_time": "endTime",
    "paused_time": "pausedTime",
    "notes": "notes",
    "created_at": "createdAt",
    "updated_at": "updatedAt",
}


def session_to_api(row: dict[str, Any] | None) -> dict[str, Any] | None:
    """Convert a store row to the API's camelCase session shape."""
    if row is None:
        return None
    data = {api_key: row.get(col) for col, api_key in _API_KEYS.items()}
    data["completed"] = bool(row.get("completed"))
    duration = row.get("duration") or 0
    data["efficiency"] = round((row.get("actual_duration") or 0) / duration * 100) if duration else 0
    return data
