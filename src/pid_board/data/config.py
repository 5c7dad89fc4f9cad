from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BoardConfig(BaseSettings):
    """Configuration for Golemio API access and local storage.

    Automatically loads from environment variables and .env file.
    """

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)

    api_key: str | None = Field(default=None, alias="GOLEMIO_API_KEY")
    golemio_base_url: str = "https://api.golemio.cz"
    stops_dataset_url: str = "https://data.pid.cz/PID_GTFS.zip"
    preferred_timezone: str = "Europe/Prague"
    http_timeout_seconds: float = 30.0
    vehicle_positions_limit: int = 10000

    # local state
    db_path: Path = Field(default=Path("data/pid_board.db"), alias="PID_BOARD_DB_PATH")
    stop_index_ttl_hours: float = Field(default=12.0, alias="PID_BOARD_STOP_INDEX_TTL_HOURS")
    stop_snapshot_max_age_days: float = 7.0


@lru_cache
def get_board_config() -> BoardConfig:
    """Get board configuration (cached singleton).

    Returns:
        BoardConfig with values from .env file or environment variables.
    """
    return BoardConfig()
