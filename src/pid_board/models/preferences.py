"""User preferences and named presets."""

from datetime import datetime

from pydantic import BaseModel, field_validator

from pid_board.models.board import AccessibilityFilter, StopGroup, TransportMode

MIN_REFRESH_SECONDS = 5
DEFAULT_MINUTES_AFTER = 20


class BoardFilters(BaseModel):
    """Filter, alert and interval configuration shared by preferences and presets."""

    minutes_after: int = DEFAULT_MINUTES_AFTER
    refresh_seconds: int = MIN_REFRESH_SECONDS
    show_bus: bool = True
    show_tram: bool = True
    show_metro: bool = True
    show_train: bool = True
    show_trolley: bool = True
    accessibility_filter: AccessibilityFilter = AccessibilityFilter.ALL
    show_on_time_only: bool = False
    alerts_enabled: bool = False
    alert_minutes_threshold: int = 3
    alert_delay_threshold: int = 5

    @field_validator("minutes_after")
    @classmethod
    def _clamp_minutes_after(cls, value: int) -> int:
        return value if value > 0 else DEFAULT_MINUTES_AFTER

    @field_validator("refresh_seconds")
    @classmethod
    def _clamp_refresh_seconds(cls, value: int) -> int:
        return max(value, MIN_REFRESH_SECONDS)

    @field_validator("alert_minutes_threshold", "alert_delay_threshold")
    @classmethod
    def _clamp_threshold(cls, value: int) -> int:
        return max(value, 0)

    def mode_visible(self, mode: TransportMode) -> bool:
        """Return True if departures of this mode should be shown.

        Unknown modes are always shown.
        """
        toggles = {
            TransportMode.TRAM: self.show_tram,
            TransportMode.METRO: self.show_metro,
            TransportMode.RAIL: self.show_train,
            TransportMode.BUS: self.show_bus,
            TransportMode.TROLLEYBUS: self.show_trolley,
        }
        return toggles.get(mode, True)


class Preset(BoardFilters):
    """A named stop selection bundled with its full filter/alert configuration."""

    name: str
    stops: list[StopGroup] = []


class UserPreferences(BoardFilters):
    """Everything persisted between sessions."""

    remember_settings: bool = True
    selected_stops: list[StopGroup] = []
    presets: list[Preset] = []


class CachedPreferences(BaseModel):
    saved_at: datetime
    preferences: UserPreferences
