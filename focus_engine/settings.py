"""Per-user focus settings and the provider that serves them to the timer."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import TransportError, ValidationFailed
from .log import get_logger

logger = get_logger("settings")


class FocusSettings(BaseModel):
    """Phase lengths are minutes. JSON keys are camelCase, attributes snake_case."""

    model_config = ConfigDict(populate_by_name=True)

    default_pomodoro_length: int = Field(25, alias="defaultPomodoroLength", gt=0, le=480)
    default_break_length: int = Field(5, alias="defaultBreakLength", gt=0, le=60)
    default_long_break_length: int = Field(15, alias="defaultLongBreakLength", gt=0, le=120)
    pomodoros_until_long_break: int = Field(4, alias="pomodorosUntilLongBreak", ge=1, le=12)
    auto_start_breaks: bool = Field(False, alias="autoStartBreaks")
    auto_start_pomodoros: bool = Field(False, alias="autoStartPomodoros")
    sound_enabled: bool = Field(True, alias="soundEnabled")
    notifications_enabled: bool = Field(True, alias="notificationsEnabled")
    xp_multiplier: float = Field(1.0, alias="xpMultiplier", gt=0, le=10)

    def to_api(self) -> dict:
        return self.model_dump(by_alias=True)


class FocusSettingsUpdate(BaseModel):
    """Partial settings update; unset fields keep their current value."""

    model_config = ConfigDict(populate_by_name=True)

    default_pomodoro_length: Optional[int] = Field(None, alias="defaultPomodoroLength", gt=0, le=480)
    default_break_length: Optional[int] = Field(None, alias="defaultBreakLength", gt=0, le=60)
    default_long_break_length: Optional[int] = Field(None, alias="defaultLongBreakLength", gt=0, le=120)
    pomodoros_until_long_break: Optional[int] = Field(None, alias="pomodorosUntilLongBreak", ge=1, le=12)
    auto_start_breaks: Optional[bool] = Field(None, alias="autoStartBreaks")
    auto_start_pomodoros: Optional[bool] = Field(None, alias="autoStartPomodoros")
    sound_enabled: Optional[bool] = Field(None, alias="soundEnabled")
    notifications_enabled: Optional[bool] = Field(None, alias="notificationsEnabled")
    xp_multiplier: Optional[float] = Field(None, alias="xpMultiplier", gt=0, le=10)

    def apply_to(self, current: FocusSettings) -> FocusSettings:
        merged = current.model_dump()
        merged.update(self.model_dump(exclude_none=True))
        return FocusSettings(**merged)


class SettingsProvider:
    """Read-mostly cache of the user's FocusSettings.

    Falls back to the last known (or default) settings when the store is
    unreachable, so the timer can always be constructed.
    """

    def __init__(self, client=None, defaults: FocusSettings | None = None):
        self._client = client
        self._settings: FocusSettings = defaults or FocusSettings()
        self._loaded = False
        self.stale = client is not None

    def get(self) -> FocusSettings:
        if not self._loaded and self._client is not None:
            return self.refresh()
        return self._settings

    def refresh(self) -> FocusSettings:
        if self._client is None:
            return self._settings
        try:
            self._settings = self._client.get_settings()
            self._loaded = True
            self.stale = False
        except TransportError as e:
            logger.warning(f"Settings unavailable, using cached values: {e}")
            self.stale = True
        return self._settings

    def update(self, **changes) -> FocusSettings:
        """Validate and persist a partial update. Raises ValidationFailed/TransportError."""
        try:
            patch = FocusSettingsUpdate(**changes)
        except ValidationError as e:
            raise ValidationFailed(str(e)) from e

        if self._client is None:
            self._settings = patch.apply_to(self._settings)
        else:
            self._settings = self._client.update_settings(patch)
            self._loaded = True
            self.stale = False
        return self._settings
