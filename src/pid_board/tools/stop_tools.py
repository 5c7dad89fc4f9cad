"""MCP tools for searching stops."""

from pid_board.app import mcp
from pid_board.models.responses import SearchStopsResponse
from pid_board.services.stop_service import search_stops as _search_stops


@mcp.tool()
async def search_stops(query: str, limit: int = 25) -> SearchStopsResponse:
    """Search for Prague PID stops by name or stop id.

    Matching ignores accents and case, so "nadrazi" finds "Nádraží". Stop ids
    match on substrings too (e.g. "U693"). Platforms sharing a name are merged
    into one stop with all of their ids.

    Examples:
        search_stops(query="Muzeum")
        search_stops(query="andel")
        search_stops(query="U693Z")

    Args:
        query: Stop name or stop id fragment (at least 2 characters).
        limit: Maximum number of stops to return (1-100, default 25).

    Returns:
        SearchStopsResponse with matching stops. When nothing matches,
        ``suggestions`` holds the closest fuzzy matches.
    """
    limit = max(1, min(100, limit))
    return await _search_stops(query=query, limit=limit)
