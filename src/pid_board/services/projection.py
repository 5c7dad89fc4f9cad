"""Departure projection: filtering, labeling and ordering of raw departures.

Turns raw departure board records plus live vehicle metadata into display rows.
Projection never fails on irregular records: missing optional fields degrade to
placeholders ("-", empty glyph, "none" delay category). Only records without any
usable timestamp are dropped.

Stages, in order:
1. Mode filter (per transport category toggle, unknown modes always pass)
2. Platform filter (urban modes only, selected platform options)
3. Line filter (selected line options)
4. On-time filter (optional, |delay| < 30 s)
5. Accessibility filter (all / accessible only / high floor only)
6. Countdown, delay and accessibility labels
7. Vehicle label
8. Ordering by effective departure instant
"""

import math
from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime, tzinfo

from pid_board.models.board import (
    URBAN_MODES,
    AccessibilityFilter,
    DelayCategory,
    DisplayRow,
    FilterOption,
    StopGroup,
    TransportMode,
)
from pid_board.models.golemio import RawDeparture
from pid_board.models.preferences import BoardFilters
from pid_board.models.vehicles import VehicleInfo

PLACEHOLDER = "-"
ACCESSIBLE_GLYPH = "♿"

ON_TIME_LABEL = "on time"
DEPARTED_LABEL = "departed"
UNDER_A_MINUTE_LABEL = "<1 min"

# Delays (and past departures) within this window count as on time / not yet gone
ON_TIME_TOLERANCE_MINUTES = 0.5
DEPARTED_GRACE_SECONDS = 30

MAJOR_DELAY_MINUTES = 5
MINOR_DELAY_MINUTES = 1

MODE_NAMES: dict[TransportMode, str] = {
    TransportMode.TRAM: "tram",
    TransportMode.METRO: "metro",
    TransportMode.RAIL: "train",
    TransportMode.BUS: "bus",
    TransportMode.TROLLEYBUS: "trolleybus",
}

MODE_GLYPHS: dict[TransportMode, str] = {
    TransportMode.TRAM: "🚋",
    TransportMode.METRO: "🚇",
    TransportMode.RAIL: "🚆",
    TransportMode.BUS: "🚌",
    TransportMode.TROLLEYBUS: "🚎",
}


def mode_of(departure: RawDeparture) -> TransportMode:
    return TransportMode.from_route_type(departure.route_type)


def is_urban(departure: RawDeparture) -> bool:
    """Scheduled urban transit (tram, metro, bus, trolleybus), not rail."""
    return mode_of(departure) in URBAN_MODES


def delay_info(departure: RawDeparture) -> tuple[str, float | None]:
    """Compute delay label and signed minutes (positive=late).

    Requires both predicted and scheduled timestamps; otherwise ("-", None).
    """
    timestamps = departure.departure_timestamp
    if timestamps is None or timestamps.predicted is None or timestamps.scheduled is None:
        return PLACEHOLDER, None

    minutes = (timestamps.predicted - timestamps.scheduled).total_seconds() / 60
    if abs(minutes) < ON_TIME_TOLERANCE_MINUTES:
        return ON_TIME_LABEL, minutes

    sign = "+" if minutes >= 0 else "-"
    # round half away from zero
    return f"{sign}{math.floor(abs(minutes) + 0.5)} min", minutes


def delay_category(minutes: float | None) -> DelayCategory:
    if minutes is None:
        return DelayCategory.NONE
    if minutes >= MAJOR_DELAY_MINUTES:
        return DelayCategory.MAJOR
    if minutes >= MINOR_DELAY_MINUTES:
        return DelayCategory.MINOR
    return DelayCategory.NONE


def countdown_label(when: datetime, now: datetime) -> str:
    diff_seconds = (when - now).total_seconds()
    if diff_seconds < -DEPARTED_GRACE_SECONDS:
        return DEPARTED_LABEL
    if diff_seconds < 60:
        return UNDER_A_MINUTE_LABEL
    return f"{round(diff_seconds / 60)} min"


def _vehicle_info_for(
    departure: RawDeparture, vehicle_info: Mapping[str, VehicleInfo]
) -> VehicleInfo | None:
    trip_id = departure.trip_id
    if not trip_id or not trip_id.strip() or trip_id not in vehicle_info:
        return None
    return vehicle_info[trip_id]


def is_accessible(departure: RawDeparture, vehicle_info: Mapping[str, VehicleInfo]) -> bool:
    """Resolve wheelchair accessibility from the first source that knows.

    Live vehicle flag, then the trip's boolean flag, then any of the GTFS
    codes and vehicle flags on the record.
    """
    info = _vehicle_info_for(departure, vehicle_info)
    if info is not None and info.wheelchair_accessible is not None:
        return info.wheelchair_accessible

    trip = departure.trip
    if trip is not None and trip.is_wheelchair_accessible is not None:
        return trip.is_wheelchair_accessible

    vehicle = departure.vehicle
    return (
        (trip is not None and trip.wheelchair_accessible == 1)
        or departure.wheelchair_accessible == 1
        or (vehicle is not None and vehicle.wheelchair_accessible is True)
        or (vehicle is not None and vehicle.low_floor is True)
    )


def vehicle_label(departure: RawDeparture, vehicle_info: Mapping[str, VehicleInfo]) -> str:
    """Live vehicle name (or category name), prefixed with the mode glyph."""
    mode = mode_of(departure)
    info = _vehicle_info_for(departure, vehicle_info)
    if info is not None and info.display_name and info.display_name.strip():
        name = info.display_name.strip()
    else:
        name = MODE_NAMES.get(mode, "")

    glyph = MODE_GLYPHS.get(mode, "")
    if not glyph:
        return name
    if not name:
        return glyph
    return f"{glyph} {name}"


def resolve_stop_name(departure: RawDeparture, selected_stops: Sequence[StopGroup] = ()) -> str:
    """Stop name from the record, else the selected group owning its id, else the id."""
    stop = departure.stop
    if stop is None:
        return ""
    if stop.name and stop.name.strip():
        return stop.name
    if stop.id and stop.id.strip():
        for group in selected_stops:
            if group.has_stop_id(stop.id):
                return group.name
        return stop.id
    return ""


def _selected_names(options: Iterable[FilterOption]) -> set[str]:
    return {option.name.casefold() for option in options if option.is_selected}


def platform_allowed(departure: RawDeparture, platform_options: Sequence[FilterOption]) -> bool:
    if not is_urban(departure):
        return True
    platform = departure.platform_code
    if not platform or not platform.strip():
        return True
    if not platform_options:
        return True
    return platform.strip().casefold() in _selected_names(platform_options)


def line_allowed(departure: RawDeparture, line_options: Sequence[FilterOption]) -> bool:
    if not line_options:
        return True
    line = departure.line
    if not line or not line.strip():
        return True
    return line.strip().casefold() in _selected_names(line_options)


def on_time_allowed(departure: RawDeparture, filters: BoardFilters) -> bool:
    if not filters.show_on_time_only:
        return True
    _, minutes = delay_info(departure)
    return minutes is not None and abs(minutes) < ON_TIME_TOLERANCE_MINUTES


def accessibility_allowed(
    departure: RawDeparture,
    filters: BoardFilters,
    vehicle_info: Mapping[str, VehicleInfo],
) -> bool:
    if filters.accessibility_filter == AccessibilityFilter.ALL:
        return True
    accessible = is_accessible(departure, vehicle_info)
    if filters.accessibility_filter == AccessibilityFilter.ACCESSIBLE_ONLY:
        return accessible
    return not accessible


def to_display_row(
    departure: RawDeparture,
    now: datetime,
    vehicle_info: Mapping[str, VehicleInfo],
    selected_stops: Sequence[StopGroup] = (),
    tz: tzinfo | None = None,
) -> DisplayRow | None:
    """Map one departure to a display row; None if it has no usable timestamp."""
    when = departure.effective_time
    if when is None:
        return None
    local_when = when.astimezone(tz)

    delay_text, delay_minutes = delay_info(departure)
    platform = departure.platform_code
    trip = departure.trip

    return DisplayRow(
        line=departure.line or PLACEHOLDER,
        destination=(trip.headsign if trip else None) or PLACEHOLDER,
        stop_name=resolve_stop_name(departure, selected_stops),
        platform=platform if platform and platform.strip() else PLACEHOLDER,
        departure_time=local_when.strftime("%H:%M"),
        countdown=countdown_label(when, now),
        delay=delay_text,
        delay_minutes=delay_minutes,
        delay_category=delay_category(delay_minutes),
        accessibility=ACCESSIBLE_GLYPH if is_accessible(departure, vehicle_info) else "",
        vehicle=vehicle_label(departure, vehicle_info),
        when=local_when,
    )


def project_departures(
    departures: Iterable[RawDeparture],
    vehicle_info: Mapping[str, VehicleInfo],
    now: datetime,
    filters: BoardFilters,
    platform_options: Sequence[FilterOption] = (),
    line_options: Sequence[FilterOption] = (),
    selected_stops: Sequence[StopGroup] = (),
    tz: tzinfo | None = None,
) -> list[DisplayRow]:
    """Filter, label and order departures for display.

    Args:
        departures: Raw departure board records.
        vehicle_info: Live vehicle info keyed by trip id.
        now: Reference instant for countdowns (timezone-aware).
        filters: Mode, on-time and accessibility configuration.
        platform_options: Current platform options; empty disables platform filtering.
        line_options: Current line options; empty disables line filtering.
        selected_stops: Selected stop groups, used to name stops missing a name.
        tz: Display timezone for clock times (system local time if None).

    Returns:
        Display rows sorted by effective departure instant.
    """
    rows: list[DisplayRow] = []
    for departure in departures:
        if not filters.mode_visible(mode_of(departure)):
            continue
        if not platform_allowed(departure, platform_options):
            continue
        if not line_allowed(departure, line_options):
            continue
        if not on_time_allowed(departure, filters):
            continue
        if not accessibility_allowed(departure, filters, vehicle_info):
            continue

        row = to_display_row(departure, now, vehicle_info, selected_stops, tz)
        if row is not None:
            rows.append(row)

    rows.sort(key=lambda r: r.when)
    return rows


def rebuild_options(values: Iterable[str | None], previous: Sequence[FilterOption]) -> list[FilterOption]:
    """Build options for the distinct values, keeping prior selection by name.

    Values are stripped and compared case-insensitively; new values start selected.
    """
    previous_selection = {option.name.casefold(): option.is_selected for option in previous}

    distinct: dict[str, str] = {}
    for value in values:
        cleaned = value.strip() if value else ""
        if cleaned and cleaned.casefold() not in distinct:
            distinct[cleaned.casefold()] = cleaned

    names = sorted(distinct.values(), key=lambda name: (name.casefold(), name))
    return [
        FilterOption(name=name, is_selected=previous_selection.get(name.casefold(), True))
        for name in names
    ]


class DepartureProjection:
    """Projection plus the platform/line option sets derived from each result set.

    Options are rebuilt from the unfiltered departures of every run, so values
    that disappear from the feed disappear from the options too.
    """

    def __init__(self, tz: tzinfo | None = None) -> None:
        self.tz = tz
        self.platforms: list[FilterOption] = []
        self.lines: list[FilterOption] = []

    @property
    def has_platform_filters(self) -> bool:
        return bool(self.platforms)

    @property
    def has_line_filters(self) -> bool:
        return bool(self.lines)

    def update_options(self, departures: Sequence[RawDeparture]) -> None:
        self.platforms = rebuild_options(
            (d.platform_code for d in departures if is_urban(d)), self.platforms
        )
        self.lines = rebuild_options((d.line for d in departures), self.lines)

    def clear_options(self) -> None:
        self.platforms = []
        self.lines = []

    def set_platform_selected(self, name: str, selected: bool) -> bool:
        """Change a platform option; returns True if anything changed."""
        return self._set_selected(self.platforms, name, selected)

    def set_line_selected(self, name: str, selected: bool) -> bool:
        """Change a line option; returns True if anything changed."""
        return self._set_selected(self.lines, name, selected)

    def run(
        self,
        departures: Sequence[RawDeparture],
        vehicle_info: Mapping[str, VehicleInfo],
        now: datetime,
        filters: BoardFilters,
        selected_stops: Sequence[StopGroup] = (),
    ) -> list[DisplayRow]:
        """Refresh the option sets from departures, then project them."""
        self.update_options(departures)
        return project_departures(
            departures,
            vehicle_info,
            now,
            filters,
            platform_options=self.platforms,
            line_options=self.lines,
            selected_stops=selected_stops,
            tz=self.tz,
        )

    @staticmethod
    def _set_selected(options: list[FilterOption], name: str, selected: bool) -> bool:
        folded = name.strip().casefold()
        for option in options:
            if option.name.casefold() == folded:
                if option.is_selected == selected:
                    return False
                option.is_selected = selected
                return True
        return False
