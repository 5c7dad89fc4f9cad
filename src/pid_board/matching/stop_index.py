"""Searchable in-memory directory of PID stop groups."""

import asyncio
import logging
from collections.abc import Callable, Iterable
from datetime import UTC, datetime, timedelta

from rapidfuzz import fuzz, process

from pid_board.data.offline_store import OfflineStore
from pid_board.data.stops_dataset import StopRecord, StopsDatasetLoader
from pid_board.errors import ParseError
from pid_board.matching.normalizers import normalize_text
from pid_board.models.board import StopGroup

logger = logging.getLogger(__name__)

DEFAULT_TTL = timedelta(hours=12)
DEFAULT_SNAPSHOT_MAX_AGE = timedelta(days=7)

# Minimum rapidfuzz score for a suggestion
SUGGESTION_SCORE_CUTOFF = 70.0


def build_stop_groups(records: Iterable[StopRecord]) -> list[StopGroup]:
    """Merge boardable stop records sharing a normalized name into groups.

    Groups keep the order in which their first record appeared. Different
    parent stations (e.g. metro and surface stops) end up in one group when
    their names match.
    """
    groups: list[StopGroup] = []
    by_key: dict[str, StopGroup] = {}

    for record in records:
        if record.is_station:
            continue
        stop_id = record.stop_id.strip()
        name = record.stop_name.strip()
        if not stop_id:
            continue

        key = normalize_text(name)
        group = by_key.get(key)
        if group is None:
            group = StopGroup(
                name=name,
                search_key=key,
                parent_id=record.parent_station.strip() or None,
            )
            by_key[key] = group
            groups.append(group)

        group.add_source_name(name)
        group.add_stop_id(stop_id)

    return groups


class StopIndex:
    """Lazy-loaded stop directory with offline hydration and periodic refresh.

    Usage:
        index = StopIndex(StopsDatasetLoader(config), OfflineStore(config.db_path))
        groups = await index.search("Muzeum")

    The first search hydrates from the offline snapshot (if any) and loads the
    live dataset. Once the index is older than ``ttl`` a background reload is
    started; the current index keeps serving until it succeeds.
    """

    def __init__(
        self,
        loader: StopsDatasetLoader,
        store: OfflineStore | None = None,
        ttl: timedelta = DEFAULT_TTL,
        snapshot_max_age: timedelta = DEFAULT_SNAPSHOT_MAX_AGE,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._loader = loader
        self._store = store
        self._ttl = ttl
        self._snapshot_max_age = snapshot_max_age
        self._clock = clock or (lambda: datetime.now(UTC))

        self.stops: list[StopGroup] = []
        self.loaded_at: datetime | None = None
        self._is_loaded = False
        self._hydration_attempted = False
        self._load_task: asyncio.Task | None = None
        self._hydrate_lock = asyncio.Lock()

    @property
    def is_loaded(self) -> bool:
        """True once a live load succeeded or a fresh snapshot was restored."""
        return self._is_loaded

    @property
    def is_stale(self) -> bool:
        if self.loaded_at is None:
            return True
        return self._clock() - self.loaded_at > self._ttl

    @property
    def is_reloading(self) -> bool:
        return self._load_task is not None and not self._load_task.done()

    async def load(self) -> None:
        """Load the live dataset, sharing any load already in flight.

        Raises:
            UpstreamError: If the download fails.
            ParseError: If the dataset is malformed or has no boardable stops.
        """
        if self._load_task is None or self._load_task.done():
            self._load_task = asyncio.create_task(self._live_load())
        # shield: a cancelled caller must not cancel the shared load
        await asyncio.shield(self._load_task)

    async def ensure_loaded(self) -> None:
        """Make sure there is an index to search.

        Raises only when there is no in-memory index, the snapshot could not
        provide one and the live load failed.
        """
        if self._is_loaded:
            if self.is_stale and not self.is_reloading:
                self._start_background_reload()
            return

        await self._hydrate_from_snapshot()
        if self._is_loaded:
            if self.is_stale and not self.is_reloading:
                self._start_background_reload()
            return

        try:
            await self.load()
        except Exception as e:
            if not self.stops:
                raise
            logger.warning(f"Stop dataset load failed, serving cached stop index: {e}")

    async def search(self, query: str, limit: int = 20) -> list[StopGroup]:
        """Find stop groups by accent/case-insensitive name or stop id substring.

        Args:
            query: Stop name fragment or stop id fragment.
            limit: Maximum number of groups to return.

        Returns:
            Matching groups ordered by name, then primary stop id.
        """
        term = query.strip() if query else ""
        if not term or limit <= 0:
            return []

        await self.ensure_loaded()

        term_key = normalize_text(term)
        term_folded = term.casefold()
        results = [
            group
            for group in self.stops
            if term_key in group.search_key
            or any(term_folded in stop_id.casefold() for stop_id in group.stop_ids)
        ]
        results.sort(key=lambda g: (g.search_key, g.name, g.primary_id or ""))
        return results[:limit]

    async def suggest(self, query: str, limit: int = 5) -> list[StopGroup]:
        """Rank stop groups by fuzzy similarity, for "did you mean" hints.

        Used when substring search finds nothing (typos, missing words).
        """
        term_key = normalize_text(query)
        if not term_key or limit <= 0:
            return []

        await self.ensure_loaded()
        if not self.stops:
            return []

        choices = [group.search_key for group in self.stops]
        matches = process.extract(
            term_key,
            choices,
            scorer=fuzz.WRatio,
            limit=limit,
            score_cutoff=SUGGESTION_SCORE_CUTOFF,
        )
        return [self.stops[idx] for _, _, idx in matches]

    async def _live_load(self) -> None:
        records = await self._loader.fetch()
        groups = build_stop_groups(records)
        if not groups:
            raise ParseError("Stop dataset contains no boardable stops")

        self._install(groups, self._clock())
        self._is_loaded = True
        logger.info(f"Stop index loaded: {len(groups):,} stop groups")

        if self._store is not None:
            await self._store.save_stop_index_snapshot(groups)

    async def _hydrate_from_snapshot(self) -> None:
        """Restore the index from the offline snapshot, at most once."""
        async with self._hydrate_lock:
            if self._hydration_attempted or self._store is None:
                return
            self._hydration_attempted = True

            snapshot = await self._store.load_stop_index_snapshot()
            if snapshot is None or not snapshot.stops:
                return
            # a live load may have finished while we were reading
            if self._is_loaded:
                return

            self._install(snapshot.stops, snapshot.saved_at)
            age = self._clock() - snapshot.saved_at
            if age <= self._snapshot_max_age:
                self._is_loaded = True
                logger.info(f"Stop index restored from cache ({len(snapshot.stops):,} groups)")
            else:
                logger.info(f"Cached stop index is {age.days} days old, loading live dataset")

    def _start_background_reload(self) -> None:
        logger.info("Stop index is stale, reloading in background")
        self._load_task = asyncio.create_task(self._live_load())
        self._load_task.add_done_callback(self._log_background_failure)

    @staticmethod
    def _log_background_failure(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning(f"Background stop index reload failed, keeping previous index: {error}")

    def _install(self, groups: list[StopGroup], loaded_at: datetime) -> None:
        self.stops = groups
        self.loaded_at = loaded_at
