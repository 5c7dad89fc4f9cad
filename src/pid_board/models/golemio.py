"""Pydantic models for Golemio departure board responses.

These models represent the subset of the departure board fields we actually use.
Every nested object is optional: records with missing pieces degrade to
placeholders during projection instead of failing validation.
"""

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, field_validator


class Route(BaseModel):
    """Line serving the departure."""

    model_config = ConfigDict(extra="ignore")

    short_name: str | None = None
    type: int | None = None  # GTFS route_type: 0=tram, 1=metro, 2=rail, 3=bus, 11=trolleybus


class Trip(BaseModel):
    """Trip the departure belongs to."""

    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    headsign: str | None = None
    is_wheelchair_accessible: bool | None = None
    wheelchair_accessible: int | None = None  # GTFS code: 1=accessible, 2=not accessible


class Stop(BaseModel):
    """Boarding point of the departure."""

    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    name: str | None = None
    platform_code: str | None = None


class Vehicle(BaseModel):
    """Vehicle flags attached to some departure records."""

    model_config = ConfigDict(extra="ignore")

    wheelchair_accessible: bool | None = None
    low_floor: bool | None = None


class DepartureTimestamp(BaseModel):
    """Scheduled, predicted and actual departure instants."""

    model_config = ConfigDict(extra="ignore")

    scheduled: datetime | None = None
    predicted: datetime | None = None
    actual: datetime | None = None

    @field_validator("scheduled", "predicted", "actual")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        # naive timestamps cannot be compared with aware ones
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value

    @property
    def effective(self) -> datetime | None:
        """Predicted time if present, else actual, else scheduled."""
        if self.predicted is not None:
            return self.predicted
        if self.actual is not None:
            return self.actual
        return self.scheduled


class DelayInfo(BaseModel):
    """Delay in seconds as reported by the feed."""

    model_config = ConfigDict(extra="ignore")

    total: int | None = None
    arrival: int | None = None
    departure: int | None = None


class RawDeparture(BaseModel):
    """A single departure record from the departure board endpoint."""

    model_config = ConfigDict(extra="ignore")

    route: Route | None = None
    trip: Trip | None = None
    stop: Stop | None = None
    vehicle: Vehicle | None = None
    departure_timestamp: DepartureTimestamp | None = None
    delay: DelayInfo | None = None
    wheelchair_accessible: int | None = None

    @property
    def route_type(self) -> int | None:
        return self.route.type if self.route else None

    @property
    def trip_id(self) -> str | None:
        return self.trip.id if self.trip else None

    @property
    def platform_code(self) -> str | None:
        return self.stop.platform_code if self.stop else None

    @property
    def line(self) -> str | None:
        return self.route.short_name if self.route else None

    @property
    def effective_time(self) -> datetime | None:
        return self.departure_timestamp.effective if self.departure_timestamp else None


class DepartureBoardResponse(BaseModel):
    """Top-level response from the departureboards endpoint."""

    model_config = ConfigDict(extra="ignore")

    departures: list[RawDeparture] = []
