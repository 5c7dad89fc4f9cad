"""Stop search service backed by a process-wide stop index."""

import logging
from datetime import timedelta

from pid_board.data.config import BoardConfig, get_board_config
from pid_board.data.offline_store import OfflineStore
from pid_board.data.stops_dataset import StopsDatasetLoader
from pid_board.matching.stop_index import StopIndex
from pid_board.models.responses import SearchStopsResponse, StopResult
from pid_board.services.search import DEFAULT_SEARCH_LIMIT, MIN_QUERY_LENGTH

logger = logging.getLogger(__name__)

# Module-level singletons (lazy-initialized)
_config: BoardConfig | None = None
_index: StopIndex | None = None


def _get_config() -> BoardConfig:
    global _config
    if _config is None:
        _config = get_board_config()
    return _config


def get_stop_index() -> StopIndex:
    """Get or create the stop index singleton."""
    global _index
    if _index is None:
        config = _get_config()
        _index = StopIndex(
            StopsDatasetLoader(config),
            OfflineStore(config.db_path),
            ttl=timedelta(hours=config.stop_index_ttl_hours),
            snapshot_max_age=timedelta(days=config.stop_snapshot_max_age_days),
        )
    return _index


async def search_stops(query: str, limit: int = DEFAULT_SEARCH_LIMIT) -> SearchStopsResponse:
    """Search stops by name or stop id.

    Queries shorter than two characters return no stops. When nothing matches,
    fuzzy suggestions are returned instead.

    Raises:
        UpstreamError: If the stop dataset could not be loaded and no cached index exists.
        ParseError: If the stop dataset is malformed and no cached index exists.
    """
    term = query.strip() if query else ""
    if len(term) < MIN_QUERY_LENGTH:
        return SearchStopsResponse(
            query=term,
            stops=[],
            count=0,
            status=f"Enter at least {MIN_QUERY_LENGTH} characters.",
        )

    index = get_stop_index()
    groups = await index.search(term, limit=limit)
    if groups:
        stops = [StopResult.from_group(g) for g in groups]
        return SearchStopsResponse(query=term, stops=stops, count=len(stops))

    suggestions = [StopResult.from_group(g) for g in await index.suggest(term)]
    logger.debug(f"No stops for {term!r}, {len(suggestions)} suggestions")
    return SearchStopsResponse(
        query=term,
        stops=[],
        count=0,
        suggestions=suggestions,
        status="No stops found.",
    )


def reset_service() -> None:
    """Drop the stop index and config. Useful for testing."""
    global _config, _index
    _config = None
    _index = None
    if hasattr(get_board_config, "cache_clear"):
        get_board_config.cache_clear()
