"""Edge-triggered departure alerts.

An alert fires once per physical departure (identified by its alert key) when
the departure is about to leave or has become delayed. Keys of departures that
vanish from the board are forgotten, so a departure that reappears can fire again.
"""

from collections.abc import Iterable
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from pid_board.models.board import DisplayRow


class AlertKind(str, Enum):
    DEPARTING_SOON = "departing_soon"
    DELAYED = "delayed"


class AlertThresholds(BaseModel):
    """When to alert: departing within N minutes, or delayed by at least M minutes."""

    minutes: int = Field(default=3, ge=0)
    delay_minutes: int = Field(default=5, ge=0)


class AlertEvent(BaseModel):
    kind: AlertKind
    row: DisplayRow
    minutes_to_departure: float
    message: str


class AlertEvaluator:
    """Remembers which departures already alerted."""

    def __init__(self) -> None:
        self._fired: set[str] = set()

    @property
    def fired_keys(self) -> frozenset[str]:
        return frozenset(self._fired)

    def reset(self) -> None:
        """Forget every fired alert (used when alerts are disabled)."""
        self._fired.clear()

    def evaluate(
        self,
        rows: Iterable[DisplayRow],
        thresholds: AlertThresholds,
        now: datetime,
    ) -> list[AlertEvent]:
        """Return alerts for rows that newly meet a threshold.

        Args:
            rows: Current display rows.
            thresholds: Alert thresholds.
            now: Reference instant (timezone-aware).

        Returns:
            One event per departure that had not alerted before.
        """
        events: list[AlertEvent] = []
        active: set[str] = set()

        for row in rows:
            key = row.alert_key.casefold()
            active.add(key)

            minutes_left = (row.when - now).total_seconds() / 60
            soon = 0 <= minutes_left <= thresholds.minutes
            delayed = row.delay_minutes is not None and row.delay_minutes >= thresholds.delay_minutes

            if (soon or delayed) and key not in self._fired:
                self._fired.add(key)
                events.append(_build_event(row, minutes_left, soon))

        self._fired &= active
        return events


def _build_event(row: DisplayRow, minutes_left: float, soon: bool) -> AlertEvent:
    if soon:
        return AlertEvent(
            kind=AlertKind.DEPARTING_SOON,
            row=row,
            minutes_to_departure=minutes_left,
            message=f"Departing in {minutes_left:.0f} min: {row.line} {row.destination} {row.platform}",
        )
    return AlertEvent(
        kind=AlertKind.DELAYED,
        row=row,
        minutes_to_departure=minutes_left,
        message=f"Delayed {row.delay_minutes:.0f} min: {row.line} {row.destination}",
    )
