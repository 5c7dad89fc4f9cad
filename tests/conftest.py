"""Shared fixtures for departure board tests."""

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from pid_board.data.config import BoardConfig
from pid_board.models.golemio import RawDeparture

NOW = datetime(2024, 5, 6, 8, 0, tzinfo=UTC)


def build_departure(
    line: str | None = "9",
    route_type: int | None = 0,
    headsign: str | None = "Sídliště Řepy",
    platform: str | None = "A",
    stop_id: str | None = "U1Z1P",
    stop_name: str | None = "Anděl",
    trip_id: str | None = "trip-1",
    minutes: float | None = 5,
    delay_minutes: float | None = 0,
    wheelchair: bool | None = None,
) -> RawDeparture:
    """Build a departure leaving ``minutes`` after NOW with the given delay."""
    timestamps = None
    if minutes is not None:
        scheduled = NOW + timedelta(minutes=minutes)
        timestamps = {"scheduled": scheduled.isoformat()}
        if delay_minutes is not None:
            timestamps["predicted"] = (scheduled + timedelta(minutes=delay_minutes)).isoformat()

    return RawDeparture.model_validate(
        {
            "route": {"short_name": line, "type": route_type},
            "trip": {"id": trip_id, "headsign": headsign, "is_wheelchair_accessible": wheelchair},
            "stop": {"id": stop_id, "name": stop_name, "platform_code": platform},
            "departure_timestamp": timestamps,
        }
    )


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def make_departure():
    """Factory for RawDeparture records relative to the ``now`` fixture."""
    return build_departure


@pytest.fixture
def config(tmp_path: Path) -> BoardConfig:
    """Create a test config."""
    return BoardConfig(
        GOLEMIO_API_KEY="test_token",
        golemio_base_url="https://api.example.com",
        stops_dataset_url="https://data.example.com/PID_GTFS.zip",
        PID_BOARD_DB_PATH=tmp_path / "board.db",
    )
