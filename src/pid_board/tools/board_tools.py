from pid_board.app import mcp
from pid_board.models.board import AccessibilityFilter
from pid_board.models.responses import DepartureBoardResponse
from pid_board.services.departure_service import (
    get_departure_board as _get_departure_board,
)


@mcp.tool()
async def get_departure_board(
    stop_ids: list[str],
    minutes_after: int = 20,
    limit: int = 60,
    show_bus: bool = True,
    show_tram: bool = True,
    show_metro: bool = True,
    show_train: bool = True,
    show_trolley: bool = True,
    accessibility: AccessibilityFilter = AccessibilityFilter.ALL,
    on_time_only: bool = False,
) -> DepartureBoardResponse:
    """Get upcoming departures for one or more PID stops.

    Rows are sorted by departure time and carry line, destination, platform,
    countdown ("<1 min", "5 min", "departed"), delay ("on time", "+3 min"),
    wheelchair accessibility and the vehicle name when it is known.

    If the Golemio API is unreachable, the last saved departures are shown
    instead (``offline`` is true and ``status`` says when they were saved).

    Args:
        stop_ids: Stop ids to include (e.g. ["U693Z2P"]); use search_stops to find them.
        minutes_after: Time window in minutes (default 20).
        limit: Maximum number of departures to request (1-200, default 60).
        show_bus: Include buses.
        show_tram: Include trams.
        show_metro: Include metro.
        show_train: Include trains.
        show_trolley: Include trolleybuses.
        accessibility: "all", "accessible_only" or "high_floor_only".
        on_time_only: Only departures running on time.

    Returns:
        DepartureBoardResponse with rows, status and the platform/line values seen.
    """
    limit = max(1, min(200, limit))

    return await _get_departure_board(
        stop_ids=stop_ids,
        minutes_after=minutes_after,
        limit=limit,
        show_bus=show_bus,
        show_tram=show_tram,
        show_metro=show_metro,
        show_train=show_train,
        show_trolley=show_trolley,
        accessibility_filter=accessibility,
        show_on_time_only=on_time_only,
    )
