"""One-shot departure board: fetch, project and report like a single refresh cycle."""

from collections.abc import Iterable
from zoneinfo import ZoneInfo

from pid_board.data.config import get_board_config
from pid_board.data.golemio_client import GolemioClient
from pid_board.data.offline_store import OfflineStore
from pid_board.models.board import AccessibilityFilter, StopGroup
from pid_board.models.preferences import UserPreferences
from pid_board.models.responses import DepartureBoardResponse
from pid_board.services.board import DEFAULT_RESULT_LIMIT, RefreshCoordinator


async def get_departure_board(
    stop_ids: Iterable[str],
    minutes_after: int = 20,
    limit: int = DEFAULT_RESULT_LIMIT,
    show_bus: bool = True,
    show_tram: bool = True,
    show_metro: bool = True,
    show_train: bool = True,
    show_trolley: bool = True,
    accessibility_filter: AccessibilityFilter = AccessibilityFilter.ALL,
    show_on_time_only: bool = False,
    api_key: str | None = None,
) -> DepartureBoardResponse:
    """Build the departure board for a set of stop ids.

    Fetch failures fall back to the offline snapshot when it covers the requested
    stops; otherwise the failure is reported in ``status`` with no rows.
    """
    config = get_board_config()
    groups = [StopGroup(name=stop_id, stop_ids=[stop_id]) for stop_id in _clean_ids(stop_ids)]
    preferences = UserPreferences(
        remember_settings=False,
        selected_stops=groups,
        minutes_after=minutes_after,
        show_bus=show_bus,
        show_tram=show_tram,
        show_metro=show_metro,
        show_train=show_train,
        show_trolley=show_trolley,
        accessibility_filter=accessibility_filter,
        show_on_time_only=show_on_time_only,
    )

    async with GolemioClient(config, api_key=api_key) as client:
        board = RefreshCoordinator(
            client,
            OfflineStore(config.db_path),
            preferences=preferences,
            result_limit=limit,
            tz=ZoneInfo(config.preferred_timezone),
        )
        await board.run_cycle()

    state = board.state
    return DepartureBoardResponse(
        stop_ids=board.selected_stop_ids,
        rows=state.rows,
        count=len(state.rows),
        status=state.status,
        offline=state.offline,
        platforms=state.platforms,
        lines=state.lines,
        updated_at=state.updated_at,
    )


def _clean_ids(stop_ids: Iterable[str]) -> list[str]:
    return [stop_id.strip() for stop_id in stop_ids if stop_id and stop_id.strip()]
