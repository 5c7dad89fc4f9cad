"""Durable offline cache for stops, departures and user preferences.

Each resource is one JSON blob in a small SQLite table, keyed by a fixed
logical name and stamped with its save time. All failures are logged and
swallowed: a broken cache behaves like an empty one.
"""

import logging
from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path
from typing import TypeVar

import aiosqlite
from pydantic import BaseModel

from pid_board.models.board import CachedDepartures, CachedStops, StopGroup
from pid_board.models.golemio import RawDeparture
from pid_board.models.preferences import CachedPreferences, UserPreferences

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS blobs (
    key TEXT PRIMARY KEY,
    saved_at TEXT NOT NULL,
    payload TEXT NOT NULL
);
"""

STOPS_KEY = "stops"
DEPARTURES_KEY = "departures"
PREFERENCES_KEY = "preferences"

# Seconds to wait on a locked database before giving up
LOCK_TIMEOUT = 5.0

M = TypeVar("M", bound=BaseModel)


def _dedupe_ids(ids: Iterable[str] | None) -> list[str]:
    seen: set[str] = set()
    result: list[str] = []
    for stop_id in ids or []:
        if not stop_id or not stop_id.strip():
            continue
        folded = stop_id.casefold()
        if folded not in seen:
            seen.add(folded)
            result.append(stop_id)
    return result


class OfflineStore:
    """Key-to-blob persistence for the three cached resources."""

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)

    async def save_departures(
        self,
        stop_ids: Iterable[str],
        minutes_after: int,
        departures: Iterable[RawDeparture],
    ) -> bool:
        """Overwrite the last-good departures snapshot."""
        snapshot = CachedDepartures(
            saved_at=datetime.now(UTC),
            stop_ids=_dedupe_ids(stop_ids),
            minutes_after=minutes_after,
            departures=list(departures),
        )
        return await self._write(DEPARTURES_KEY, snapshot)

    async def load_departures(self) -> CachedDepartures | None:
        return await self._read(DEPARTURES_KEY, CachedDepartures)

    async def save_preferences(self, preferences: UserPreferences) -> bool:
        wrapped = CachedPreferences(saved_at=datetime.now(UTC), preferences=preferences)
        return await self._write(PREFERENCES_KEY, wrapped)

    async def load_preferences(self) -> CachedPreferences | None:
        return await self._read(PREFERENCES_KEY, CachedPreferences)

    async def clear_preferences(self) -> None:
        await self._delete(PREFERENCES_KEY)

    async def save_stop_index_snapshot(self, stops: Iterable[StopGroup]) -> bool:
        snapshot = CachedStops(saved_at=datetime.now(UTC), stops=list(stops))
        return await self._write(STOPS_KEY, snapshot)

    async def load_stop_index_snapshot(self) -> CachedStops | None:
        return await self._read(STOPS_KEY, CachedStops)

    @staticmethod
    def is_compatible(cached_stop_ids: Iterable[str], requested_stop_ids: Iterable[str]) -> bool:
        """Return True if a snapshot for cached_stop_ids may serve requested_stop_ids.

        Both sets must be non-empty and the cached set must cover every requested id
        (compared case-insensitively).
        """
        cached = {s.casefold() for s in cached_stop_ids or [] if s and s.strip()}
        requested = {s.casefold() for s in requested_stop_ids or [] if s and s.strip()}
        if not cached or not requested:
            return False
        return cached >= requested

    async def _write(self, key: str, payload: BaseModel) -> bool:
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            async with aiosqlite.connect(self.db_path, timeout=LOCK_TIMEOUT) as db:
                await db.executescript(SCHEMA_SQL)
                await db.execute(
                    "INSERT OR REPLACE INTO blobs (key, saved_at, payload) VALUES (?, ?, ?)",
                    (key, datetime.now(UTC).isoformat(), payload.model_dump_json()),
                )
                await db.commit()
            return True
        except Exception as e:
            logger.warning(f"Failed to save {key} to offline cache: {e}")
            return False

    async def _read(self, key: str, model: type[M]) -> M | None:
        if not self.db_path.exists():
            return None
        try:
            async with aiosqlite.connect(self.db_path, timeout=LOCK_TIMEOUT) as db:
                async with db.execute("SELECT payload FROM blobs WHERE key = ?", (key,)) as cursor:
                    row = await cursor.fetchone()
            if row is None:
                return None
            return model.model_validate_json(row[0])
        except Exception as e:
            logger.warning(f"Ignoring unreadable offline cache entry {key}: {e}")
            return None

    async def _delete(self, key: str) -> None:
        if not self.db_path.exists():
            return
        try:
            async with aiosqlite.connect(self.db_path, timeout=LOCK_TIMEOUT) as db:
                await db.executescript(SCHEMA_SQL)
                await db.execute("DELETE FROM blobs WHERE key = ?", (key,))
                await db.commit()
        except Exception as e:
            logger.warning(f"Failed to delete {key} from offline cache: {e}")
