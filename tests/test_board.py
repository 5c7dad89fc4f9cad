"""Tests for the board session and refresh coordinator."""

import asyncio
from datetime import UTC
from pathlib import Path

import pytest

from pid_board.data.offline_store import OfflineStore
from pid_board.errors import UpstreamError, ValidationError
from pid_board.models.board import StopGroup
from pid_board.models.golemio import RawDeparture
from pid_board.models.preferences import UserPreferences
from pid_board.models.vehicles import TripInfoIndex, VehicleInfo
from pid_board.services.board import BoardState, RefreshCoordinator, apply_changes, selected_stop_ids

ANDEL = StopGroup(name="Anděl", stop_ids=["U1Z1P", "U1Z2P"], search_key="andel")
MUZEUM = StopGroup(name="Muzeum", stop_ids=["U693Z2P"], search_key="muzeum")


class FakeClient:
    """Stands in for GolemioClient."""

    def __init__(self, departures: list[RawDeparture] | None = None):
        self.departures = departures or []
        self.vehicle_info: TripInfoIndex | Exception = TripInfoIndex()
        self.error: Exception | None = None
        self.calls: list[dict] = []
        self.gate: asyncio.Event | None = None

    async def get_departures(self, stop_ids, api_key=None, minutes_after=20, limit=60):
        self.calls.append({"stop_ids": list(stop_ids), "minutes_after": minutes_after, "limit": limit})
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return list(self.departures)

    async def get_vehicle_info(self, trip_ids, api_key=None):
        if isinstance(self.vehicle_info, Exception):
            raise self.vehicle_info
        return self.vehicle_info


@pytest.fixture
def store(tmp_path: Path) -> OfflineStore:
    return OfflineStore(tmp_path / "board.db")


@pytest.fixture
def client(make_departure) -> FakeClient:
    return FakeClient([make_departure(line="9", minutes=4), make_departure(line="22", minutes=2)])


def make_board(client, store, now, **kwargs) -> RefreshCoordinator:
    kwargs.setdefault("preferences", UserPreferences(selected_stops=[ANDEL]))
    return RefreshCoordinator(client, store, clock=lambda: now, tz=UTC, **kwargs)


class TestApplyChanges:
    def test_reports_changed_fields_only(self) -> None:
        state = BoardState(status="Select a stop.")
        updated, changed = apply_changes(state, status="Select a stop.", offline=True)

        assert changed == ["offline"]
        assert updated.offline is True
        assert state.offline is False

    def test_no_change_returns_same_state(self) -> None:
        state = BoardState()
        updated, changed = apply_changes(state, rows=[])
        assert updated is state
        assert changed == []


def test_selected_stop_ids_flatten_and_dedupe() -> None:
    groups = [ANDEL, StopGroup(name="Anděl 2", stop_ids=["u1z1p", "U5Z1P"])]
    assert selected_stop_ids(groups) == ["U1Z1P", "U1Z2P", "U5Z1P"]


class TestRefreshCycle:
    async def test_no_stops_selected(self, client, store, now) -> None:
        board = make_board(client, store, now, preferences=UserPreferences())
        await board.request_refresh()

        assert board.state.status == "Select a stop."
        assert board.state.rows == []
        assert client.calls == []

    async def test_successful_cycle(self, client, store, now) -> None:
        updates: list[list[str]] = []
        board = make_board(client, store, now, on_update=lambda state, changed: updates.append(changed))
        await board.request_refresh()

        state = board.state
        assert [r.line for r in state.rows] == ["22", "9"]
        assert state.status == "Last update 08:00:00, 2 departures."
        assert state.offline is False
        assert state.updated_at == now
        assert [o.name for o in state.lines] == ["22", "9"]
        assert client.calls == [{"stop_ids": ["U1Z1P", "U1Z2P"], "minutes_after": 20, "limit": 60}]
        assert updates[0] == ["status"]
        assert "rows" in updates[-1]

    async def test_snapshot_saved_after_success(self, client, store, now) -> None:
        board = make_board(client, store, now)
        await board.request_refresh()

        cached = await store.load_departures()
        assert cached.stop_ids == ["U1Z1P", "U1Z2P"]
        assert len(cached.departures) == 2

    async def test_vehicle_info_enriches_rows(self, client, store, now) -> None:
        client.vehicle_info = TripInfoIndex({"trip-1": VehicleInfo(display_name="Škoda 15T")})
        board = make_board(client, store, now)
        await board.request_refresh()
        assert board.state.rows[0].vehicle == "🚋 Škoda 15T"

    async def test_vehicle_info_failure_is_not_fatal(self, client, store, now) -> None:
        client.vehicle_info = UpstreamError(500, "boom")
        board = make_board(client, store, now)
        await board.request_refresh()

        assert len(board.state.rows) == 2
        assert board.state.rows[0].vehicle == "🚋 tram"
        assert board.state.status.startswith("Last update")

    async def test_falls_back_to_compatible_cache(self, client, store, now, make_departure) -> None:
        await store.save_departures(["U1Z1P", "U1Z2P", "U9Z1P"], 30, [make_departure(line="cached")])
        saved_at = (await store.load_departures()).saved_at
        client.error = UpstreamError(0, "offline")

        board = make_board(client, store, now)
        await board.request_refresh()

        state = board.state
        assert state.offline is True
        assert [r.line for r in state.rows] == ["cached"]
        expected_time = saved_at.strftime("%H:%M")
        assert state.status == f"Offline mode: cached data from {expected_time} (1 departures, window 30 min)."

    async def test_incompatible_cache_reports_failure(self, client, store, now, make_departure) -> None:
        await store.save_departures(["U693Z2P"], 20, [make_departure(line="cached")])
        client.error = UpstreamError(503, "unavailable")

        board = make_board(client, store, now)
        await board.request_refresh()

        assert board.state.rows == []
        assert board.state.offline is False
        assert board.state.status == "Failed to load data: Golemio API returned 503: unavailable"

    async def test_failure_clears_previous_rows(self, client, store, now) -> None:
        board = make_board(client, store, now)
        await board.request_refresh()
        assert board.state.rows

        await store.save_departures(["OTHER"], 20, [])
        client.error = UpstreamError(0, "offline")
        await board.request_refresh()
        assert board.state.rows == []
        assert board.state.status.startswith("Failed to load data")


class TestCoalescing:
    async def test_triggers_mid_flight_run_one_follow_up(self, client, store, now) -> None:
        client.gate = asyncio.Event()
        board = make_board(client, store, now)

        first = asyncio.create_task(board.request_refresh())
        await asyncio.sleep(0)
        assert board.is_refreshing

        await board.request_refresh()
        await board.request_refresh()
        assert len(client.calls) == 1

        client.gate.set()
        await first

        assert len(client.calls) == 2
        assert not board.is_refreshing

    async def test_no_follow_up_without_trigger(self, client, store, now) -> None:
        board = make_board(client, store, now)
        await board.request_refresh()
        assert len(client.calls) == 1


class TestUserActions:
    async def test_filter_change_refreshes_and_persists(self, client, store, now) -> None:
        board = make_board(client, store, now)
        await board.request_refresh()

        changed = await board.update_preferences(show_tram=False)

        assert changed == ["show_tram"]
        assert board.state.rows == []
        assert len(client.calls) == 2
        cached = await store.load_preferences()
        assert cached.preferences.show_tram is False

    async def test_unchanged_value_is_a_no_op(self, client, store, now) -> None:
        board = make_board(client, store, now)
        assert await board.update_preferences(show_tram=True) == []
        assert client.calls == []

    async def test_interval_change_does_not_refresh(self, client, store, now) -> None:
        board = make_board(client, store, now)
        assert await board.update_preferences(refresh_seconds=30) == ["refresh_seconds"]
        assert client.calls == []

    async def test_disabling_remember_settings_clears_storage(self, client, store, now) -> None:
        board = make_board(client, store, now)
        await board.save_preset("Work")
        assert (await store.load_preferences()) is not None

        await board.update_preferences(remember_settings=False)

        assert board.preferences.presets == []
        assert await store.load_preferences() is None
        await board.select_stop(MUZEUM)
        assert await store.load_preferences() is None

    async def test_restore_preferences(self, client, store, now) -> None:
        await store.save_preferences(UserPreferences(selected_stops=[MUZEUM], minutes_after=45))
        board = make_board(client, store, now, preferences=None)

        assert await board.restore_preferences()
        assert board.selected_stop_ids == ["U693Z2P"]
        assert board.preferences.minutes_after == 45

    async def test_restore_without_saved_preferences(self, client, store, now) -> None:
        board = make_board(client, store, now)
        assert not await board.restore_preferences()

    async def test_select_and_remove_stop(self, client, store, now) -> None:
        board = make_board(client, store, now)

        assert await board.select_stop(MUZEUM)
        assert not await board.select_stop(MUZEUM)
        assert board.selected_stop_ids == ["U1Z1P", "U1Z2P", "U693Z2P"]

        assert await board.remove_stop("u1z1p")
        assert not await board.remove_stop("missing")
        assert board.selected_stop_ids == ["U693Z2P"]
        assert len(client.calls) == 2

    async def test_line_selection_refreshes(self, client, store, now) -> None:
        board = make_board(client, store, now)
        await board.request_refresh()

        assert await board.set_line_selected("9", False)
        assert [r.line for r in board.state.rows] == ["22"]
        assert [(o.name, o.is_selected) for o in board.state.lines] == [("22", True), ("9", False)]
        assert not await board.set_line_selected("9", False)

    async def test_platform_selection_refreshes(self, client, store, now, make_departure) -> None:
        client.departures = [
            make_departure(line="9", platform="A"),
            make_departure(line="22", platform="B"),
        ]
        board = make_board(client, store, now)
        await board.request_refresh()

        assert await board.set_platform_selected("A", False)
        assert [r.line for r in board.state.rows] == ["22"]


class TestPresets:
    async def test_save_and_apply(self, client, store, now) -> None:
        board = make_board(client, store, now)
        assert await board.save_preset("Work")
        assert board.state.status == 'Preset "Work" saved.'

        await board.update_preferences(selected_stops=[MUZEUM], show_bus=False)
        assert await board.apply_preset("work")

        assert board.selected_stop_ids == ["U1Z1P", "U1Z2P"]
        assert board.preferences.show_bus is True
        assert board.state.status.startswith("Last update")

    async def test_save_blank_name(self, client, store, now) -> None:
        board = make_board(client, store, now)
        assert not await board.save_preset("  ")
        assert board.state.status == "Enter a preset name."

    async def test_save_disabled_without_remember_settings(self, client, store, now) -> None:
        board = make_board(
            client, store, now, preferences=UserPreferences(selected_stops=[ANDEL], remember_settings=False)
        )
        assert not await board.save_preset("Work")
        assert board.preferences.presets == []

    async def test_apply_missing(self, client, store, now) -> None:
        board = make_board(client, store, now)
        assert not await board.apply_preset("Nowhere")
        assert board.state.status == 'Preset "Nowhere" not found.'

    async def test_delete(self, client, store, now) -> None:
        board = make_board(client, store, now)
        await board.save_preset("Work")

        assert await board.delete_preset("WORK")
        assert not await board.delete_preset("WORK")
        assert board.preferences.presets == []
        cached = await store.load_preferences()
        assert cached.preferences.presets == []


class TestAlerts:
    async def test_alerts_dispatched_once(self, client, store, now) -> None:
        notified = []
        board = make_board(
            client,
            store,
            now,
            preferences=UserPreferences(selected_stops=[ANDEL], alerts_enabled=True),
            notifier=notified.append,
        )

        await board.request_refresh()
        assert [e.row.line for e in notified] == ["22"]
        assert board.state.alerts == [notified[0].message]

        await board.request_refresh()
        assert len(notified) == 1
        assert board.state.alerts == []

    async def test_notifier_failure_is_swallowed(self, client, store, now) -> None:
        def explode(event):
            raise RuntimeError("notification daemon gone")

        board = make_board(
            client,
            store,
            now,
            preferences=UserPreferences(selected_stops=[ANDEL], alerts_enabled=True),
            notifier=explode,
        )
        await board.request_refresh()
        assert len(board.state.alerts) == 1

    async def test_disabling_alerts_resets_fired_set(self, client, store, now) -> None:
        board = make_board(
            client, store, now, preferences=UserPreferences(selected_stops=[ANDEL], alerts_enabled=True)
        )
        await board.request_refresh()
        assert board.alerts.fired_keys

        await board.update_preferences(alerts_enabled=False)
        assert board.alerts.fired_keys == frozenset()


class TestPollLoop:
    async def test_start_refreshes_immediately_and_stop_cancels(self, client, store, now) -> None:
        board = make_board(client, store, now)
        await board.start()
        await asyncio.sleep(0.01)

        assert len(client.calls) == 1
        await board.stop()
        assert board._task is None

    async def test_loop_repeats_at_interval(self, client, store, now, monkeypatch) -> None:
        board = make_board(client, store, now)
        sleeps: list[float] = []
        real_sleep = asyncio.sleep

        async def fast_sleep(delay: float) -> None:
            sleeps.append(delay)
            await real_sleep(0)

        monkeypatch.setattr("pid_board.services.board.asyncio.sleep", fast_sleep)
        await board.start()
        while len(client.calls) < 3:
            await real_sleep(0)
        await board.stop()

        assert sleeps[0] == 5

    async def test_failing_listener_does_not_stop_polling(self, client, store, now, monkeypatch) -> None:
        def render(state, changed):
            raise RuntimeError("render failed")

        board = make_board(client, store, now, on_update=render)
        real_sleep = asyncio.sleep

        async def fast_sleep(delay: float) -> None:
            await real_sleep(0)

        monkeypatch.setattr("pid_board.services.board.asyncio.sleep", fast_sleep)
        await board.start()
        while len(client.calls) < 2:
            await real_sleep(0)

        assert not board._task.done()
        assert board.state.status.startswith("Last update")
        await board.stop()

    async def test_cycle_error_does_not_stop_polling(self, client, store, now, monkeypatch) -> None:
        board = make_board(client, store, now)
        calls = 0

        async def flaky_refresh() -> None:
            nonlocal calls
            calls += 1
            if calls == 1:
                raise RuntimeError("boom")

        real_sleep = asyncio.sleep

        async def fast_sleep(delay: float) -> None:
            await real_sleep(0)

        monkeypatch.setattr(board, "request_refresh", flaky_refresh)
        monkeypatch.setattr("pid_board.services.board.asyncio.sleep", fast_sleep)
        await board.start()
        while calls < 3:
            await real_sleep(0)

        assert not board._task.done()
        await board.stop()


class TestUpdatePreferencesValidation:
    async def test_unknown_field_rejected(self, client, store, now) -> None:
        board = make_board(client, store, now)
        with pytest.raises(ValidationError):
            await board.update_preferences(show_ferry=False)
        assert client.calls == []
