"""Board session: state updates and the single-flight refresh cycle.

The refresh cycle is the only error boundary between the data layer and the
presentation layer. Fetch failures fall back once to the cached departure
snapshot; everything that reaches the presentation layer is a status string
plus the row list.
"""

import asyncio
import logging
from collections.abc import Callable, Mapping, Sequence
from datetime import UTC, datetime, tzinfo
from typing import Any

from pydantic import BaseModel

from pid_board.data.golemio_client import GolemioClient
from pid_board.data.offline_store import OfflineStore
from pid_board.errors import ValidationError
from pid_board.models.board import DisplayRow, FilterOption, StopGroup
from pid_board.models.golemio import RawDeparture
from pid_board.models.preferences import UserPreferences
from pid_board.models.vehicles import TripInfoIndex, VehicleInfo
from pid_board.services import preferences as presets
from pid_board.services.alerts import AlertEvaluator, AlertEvent, AlertThresholds
from pid_board.services.projection import DepartureProjection

logger = logging.getLogger(__name__)

DEFAULT_RESULT_LIMIT = 60

# Preference fields whose change requires re-projecting the board
REFRESH_FIELDS = frozenset({
    "minutes_after",
    "show_bus",
    "show_tram",
    "show_metro",
    "show_train",
    "show_trolley",
    "accessibility_filter",
    "show_on_time_only",
})

StateListener = Callable[["BoardState", list[str]], None]
AlertNotifier = Callable[[AlertEvent], None]


class BoardState(BaseModel):
    """Everything the presentation layer renders."""

    rows: list[DisplayRow] = []
    status: str | None = None
    platforms: list[FilterOption] = []
    lines: list[FilterOption] = []
    offline: bool = False
    updated_at: datetime | None = None
    alerts: list[str] = []

    @property
    def has_platform_filters(self) -> bool:
        return bool(self.platforms)

    @property
    def has_line_filters(self) -> bool:
        return bool(self.lines)


def apply_changes(state: BoardState, **changes: Any) -> tuple[BoardState, list[str]]:
    """Return the updated state and the names of fields that actually changed."""
    changed = {name: value for name, value in changes.items() if getattr(state, name) != value}
    if not changed:
        return state, []
    return state.model_copy(update=changed), list(changed)


def selected_stop_ids(stops: Sequence[StopGroup]) -> list[str]:
    """Flatten the stop ids of the selected groups, deduplicated case-insensitively."""
    seen: set[str] = set()
    ids: list[str] = []
    for stop in stops:
        for stop_id in stop.stop_ids:
            if stop_id and stop_id.strip() and stop_id.casefold() not in seen:
                seen.add(stop_id.casefold())
                ids.append(stop_id)
    return ids


class RefreshCoordinator:
    """Runs fetch-and-project cycles for the selected stops.

    At most one cycle is in flight. Triggers that arrive meanwhile (timer ticks,
    user refreshes, filter changes) collapse into a single follow-up cycle.

    Usage:
        async with GolemioClient(config) as client:
            board = RefreshCoordinator(client, OfflineStore(config.db_path))
            await board.restore_preferences()
            await board.start()
            ...
            await board.stop()
    """

    def __init__(
        self,
        client: GolemioClient,
        store: OfflineStore,
        preferences: UserPreferences | None = None,
        projection: DepartureProjection | None = None,
        alerts: AlertEvaluator | None = None,
        on_update: StateListener | None = None,
        notifier: AlertNotifier | None = None,
        result_limit: int = DEFAULT_RESULT_LIMIT,
        clock: Callable[[], datetime] | None = None,
        tz: tzinfo | None = None,
    ) -> None:
        self._client = client
        self._store = store
        self.preferences = preferences or UserPreferences()
        self.projection = projection or DepartureProjection(tz=tz)
        self.alerts = alerts or AlertEvaluator()
        self._on_update = on_update
        self._notifier = notifier
        self._result_limit = result_limit
        self._clock = clock or (lambda: datetime.now(UTC))
        self._tz = tz

        self.state = BoardState()
        self._in_flight = False
        self._pending = False
        self._task: asyncio.Task | None = None

    @property
    def selected_stop_ids(self) -> list[str]:
        return selected_stop_ids(self.preferences.selected_stops)

    @property
    def is_refreshing(self) -> bool:
        return self._in_flight

    # -- lifecycle -----------------------------------------------------------

    async def start(self) -> None:
        """Start the interval refresh loop (first refresh runs immediately)."""
        if self._task is not None and not self._task.done():
            logger.warning("Refresh loop already running")
            return
        self._task = asyncio.create_task(self._poll_loop())
        logger.info("Started refresh loop")

    async def stop(self) -> None:
        """Stop the interval refresh loop."""
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                logger.info("Refresh loop cancelled")
            logger.info("Stopped refresh loop")
        self._task = None

    async def _poll_loop(self) -> None:
        while True:
            try:
                await self.request_refresh()
            except Exception:
                logger.exception("Refresh cycle failed, polling continues")
            # re-read every tick so interval changes apply without a restart
            await asyncio.sleep(self.preferences.refresh_seconds)

    # -- refresh cycle -------------------------------------------------------

    async def request_refresh(self) -> None:
        """Run a refresh cycle, or schedule one follow-up if a cycle is in flight."""
        if self._in_flight:
            self._pending = True
            return

        self._in_flight = True
        try:
            while True:
                self._pending = False
                await self.run_cycle()
                if not self._pending:
                    break
        finally:
            self._in_flight = False

    async def run_cycle(self) -> None:
        stop_ids = self.selected_stop_ids
        if not stop_ids:
            self.projection.clear_options()
            self._update(
                rows=[],
                status="Select a stop.",
                platforms=[],
                lines=[],
                offline=False,
            )
            return

        prefs = self.preferences
        self._update(status="Loading departures...")

        try:
            departures = await self._client.get_departures(
                stop_ids,
                minutes_after=prefs.minutes_after,
                limit=self._result_limit,
            )
        except Exception as e:
            logger.warning(f"Departure fetch failed: {e}")
            await self._fall_back_to_cache(stop_ids, e)
            return

        await self._store.save_departures(stop_ids, prefs.minutes_after, departures)
        vehicle_info = await self._fetch_vehicle_info(departures)

        now = self._clock()
        rows = self._project(departures, vehicle_info, now)
        self._publish(
            rows,
            now,
            status=f"Last update {self._local(now):%H:%M:%S}, {len(rows)} departures.",
            offline=False,
        )

    async def _fall_back_to_cache(self, stop_ids: list[str], error: Exception) -> None:
        cached = await self._store.load_departures()
        if cached is None or not OfflineStore.is_compatible(cached.stop_ids, stop_ids):
            self._update(
                rows=[],
                status=f"Failed to load data: {error}",
                offline=False,
            )
            return

        now = self._clock()
        rows = self._project(cached.departures, TripInfoIndex(), now)
        self._publish(
            rows,
            now,
            status=(
                f"Offline mode: cached data from {self._local(cached.saved_at):%H:%M} "
                f"({len(rows)} departures, window {cached.minutes_after} min)."
            ),
            offline=True,
        )

    async def _fetch_vehicle_info(self, departures: Sequence[RawDeparture]) -> Mapping[str, VehicleInfo]:
        trip_ids = [d.trip_id for d in departures if d.trip_id]
        if not trip_ids:
            return TripInfoIndex()
        try:
            return await self._client.get_vehicle_info(trip_ids)
        except Exception as e:
            logger.warning(f"Vehicle info unavailable, using static labels: {e}")
            return TripInfoIndex()

    def _project(
        self,
        departures: Sequence[RawDeparture],
        vehicle_info: Mapping[str, VehicleInfo],
        now: datetime,
    ) -> list[DisplayRow]:
        return self.projection.run(
            departures,
            vehicle_info,
            now,
            self.preferences,
            selected_stops=self.preferences.selected_stops,
        )

    def _publish(self, rows: list[DisplayRow], now: datetime, status: str, offline: bool) -> None:
        alert_messages = self._check_alerts(rows, now)
        self._update(
            rows=rows,
            status=status,
            platforms=[option.model_copy() for option in self.projection.platforms],
            lines=[option.model_copy() for option in self.projection.lines],
            offline=offline,
            updated_at=now,
            alerts=alert_messages,
        )

    def _check_alerts(self, rows: list[DisplayRow], now: datetime) -> list[str]:
        prefs = self.preferences
        if not prefs.alerts_enabled:
            self.alerts.reset()
            return []

        thresholds = AlertThresholds(
            minutes=prefs.alert_minutes_threshold,
            delay_minutes=prefs.alert_delay_threshold,
        )
        events = self.alerts.evaluate(rows, thresholds, now)
        for event in events:
            self._notify(event)
        return [event.message for event in events]

    def _notify(self, event: AlertEvent) -> None:
        if self._notifier is None:
            return
        try:
            self._notifier(event)
        except Exception as e:
            logger.warning(f"Alert notification failed: {e}")

    def _update(self, **changes: Any) -> None:
        self.state, changed = apply_changes(self.state, **changes)
        if changed and self._on_update is not None:
            try:
                self._on_update(self.state, changed)
            except Exception as e:
                logger.warning(f"State listener failed: {e}")

    def _local(self, moment: datetime) -> datetime:
        return moment.astimezone(self._tz)

    # -- user actions --------------------------------------------------------

    async def restore_preferences(self) -> bool:
        """Load persisted preferences; returns False if none were saved."""
        cached = await self._store.load_preferences()
        if cached is None:
            return False
        self.preferences = cached.preferences
        return True

    async def update_preferences(self, **changes: Any) -> list[str]:
        """Change preferences, persist them and refresh if the board is affected.

        Returns:
            Names of the preference fields that changed.
        """
        before = self.preferences
        after = presets.update_preferences(before, **changes)
        changed = [name for name in changes if getattr(before, name) != getattr(after, name)]
        if not changed:
            return []

        self.preferences = after
        if "alerts_enabled" in changed and not after.alerts_enabled:
            self.alerts.reset()

        if "remember_settings" in changed and not after.remember_settings:
            self.preferences = after.model_copy(update={"presets": []})
            await self._store.clear_preferences()
        else:
            await self._persist_preferences()

        if REFRESH_FIELDS.intersection(changed):
            await self.request_refresh()
        return changed

    async def set_platform_selected(self, name: str, selected: bool) -> bool:
        changed = self.projection.set_platform_selected(name, selected)
        if changed:
            await self.request_refresh()
        return changed

    async def set_line_selected(self, name: str, selected: bool) -> bool:
        changed = self.projection.set_line_selected(name, selected)
        if changed:
            await self.request_refresh()
        return changed

    async def select_stop(self, stop: StopGroup) -> bool:
        """Add a stop group to the selection (ignored if already selected)."""
        primary = (stop.primary_id or "").casefold()
        if any((s.primary_id or "").casefold() == primary for s in self.preferences.selected_stops):
            return False
        await self._set_selected_stops([*self.preferences.selected_stops, stop])
        return True

    async def remove_stop(self, primary_id: str) -> bool:
        folded = primary_id.casefold()
        remaining = [
            s for s in self.preferences.selected_stops if (s.primary_id or "").casefold() != folded
        ]
        if len(remaining) == len(self.preferences.selected_stops):
            return False
        await self._set_selected_stops(remaining)
        return True

    async def _set_selected_stops(self, stops: list[StopGroup]) -> None:
        self.preferences = self.preferences.model_copy(update={"selected_stops": stops})
        await self._persist_preferences()
        await self.request_refresh()

    async def save_preset(self, name: str) -> bool:
        if not self.preferences.remember_settings:
            self._update(status="Saving is disabled (enable Remember settings).")
            return False
        try:
            self.preferences = presets.save_preset(self.preferences, name)
        except ValidationError as e:
            self._update(status=str(e))
            return False
        self._update(status=f'Preset "{name.strip()}" saved.')
        await self._persist_preferences()
        return True

    async def apply_preset(self, name: str) -> bool:
        try:
            updated = presets.apply_preset(self.preferences, name)
        except ValidationError as e:
            self._update(status=str(e))
            return False
        if not updated.alerts_enabled:
            self.alerts.reset()
        self.preferences = updated
        self._update(status=f'Preset "{name.strip()}" loaded.')
        await self._persist_preferences()
        await self.request_refresh()
        return True

    async def delete_preset(self, name: str) -> bool:
        if presets.find_preset(self.preferences, name) is None:
            return False
        self.preferences = presets.delete_preset(self.preferences, name)
        self._update(status=f'Preset "{name.strip()}" removed.')
        await self._persist_preferences()
        return True

    async def _persist_preferences(self) -> None:
        if self.preferences.remember_settings:
            await self._store.save_preferences(self.preferences)
