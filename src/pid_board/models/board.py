"""Domain models for the departure board: stop groups, display rows and filters."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from pid_board.models.golemio import RawDeparture


class TransportMode(str, Enum):
    """Transport category derived from the numeric GTFS route type."""

    TRAM = "tram"
    METRO = "metro"
    RAIL = "rail"
    BUS = "bus"
    TROLLEYBUS = "trolleybus"
    UNKNOWN = "unknown"

    @classmethod
    def from_route_type(cls, route_type: int | None) -> "TransportMode":
        return ROUTE_TYPE_MODES.get(route_type, cls.UNKNOWN)


ROUTE_TYPE_MODES: dict[int | None, TransportMode] = {
    0: TransportMode.TRAM,
    1: TransportMode.METRO,
    2: TransportMode.RAIL,
    3: TransportMode.BUS,
    11: TransportMode.TROLLEYBUS,
}

# Scheduled urban transit ("MHD"); platform filters apply to these only
URBAN_MODES = frozenset({
    TransportMode.TRAM,
    TransportMode.METRO,
    TransportMode.BUS,
    TransportMode.TROLLEYBUS,
})


class AccessibilityFilter(str, Enum):
    """Tri-state accessibility filter."""

    ALL = "all"
    ACCESSIBLE_ONLY = "accessible_only"
    HIGH_FLOOR_ONLY = "high_floor_only"


class DelayCategory(str, Enum):
    NONE = "none"
    MINOR = "minor"
    MAJOR = "major"


class StopGroup(BaseModel):
    """A human-named physical stop merging one or more stop ids.

    Stop ids keep insertion order and are deduplicated case-insensitively.
    """

    name: str
    stop_ids: list[str] = []
    source_names: list[str] = []
    search_key: str = ""
    parent_id: str | None = None

    @property
    def primary_id(self) -> str | None:
        return self.stop_ids[0] if self.stop_ids else None

    def add_stop_id(self, stop_id: str) -> bool:
        """Append a stop id unless an id differing only in case is present."""
        stop_id = stop_id.strip()
        if not stop_id:
            return False
        folded = stop_id.casefold()
        if any(existing.casefold() == folded for existing in self.stop_ids):
            return False
        self.stop_ids.append(stop_id)
        return True

    def add_source_name(self, name: str) -> None:
        name = name.strip()
        if name and name.casefold() not in {n.casefold() for n in self.source_names}:
            self.source_names.append(name)

    def has_stop_id(self, stop_id: str) -> bool:
        folded = stop_id.casefold()
        return any(existing.casefold() == folded for existing in self.stop_ids)

    def __str__(self) -> str:
        return f"{self.name} ({self.primary_id})"


class DisplayRow(BaseModel):
    """Display-ready projection of one departure."""

    model_config = ConfigDict(frozen=True)

    line: str
    destination: str
    stop_name: str
    platform: str
    departure_time: str = Field(description="Local clock time, HH:MM")
    countdown: str
    delay: str
    delay_minutes: float | None = Field(
        default=None, description="Signed delay in minutes (positive=late), None when unknown"
    )
    delay_category: DelayCategory = DelayCategory.NONE
    accessibility: str = ""
    vehicle: str = ""
    when: datetime

    @property
    def alert_key(self) -> str:
        """Identity of this physical departure for alert deduplication."""
        return f"{self.line}|{self.destination}|{self.platform}|{self.departure_time}"


class FilterOption(BaseModel):
    """One selectable platform or line value observed in the current result set."""

    name: str
    is_selected: bool = True


class CachedDepartures(BaseModel):
    """Last successful departure fetch."""

    saved_at: datetime
    stop_ids: list[str] = []
    minutes_after: int = 20
    departures: list[RawDeparture] = []


class CachedStops(BaseModel):
    """Snapshot of the stop index."""

    saved_at: datetime
    stops: list[StopGroup] = []
