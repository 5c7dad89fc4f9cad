"""Interactive stop search with last-writer-wins semantics."""

import asyncio
import logging

from pydantic import BaseModel

from pid_board.matching.stop_index import StopIndex
from pid_board.models.board import StopGroup

logger = logging.getLogger(__name__)

MIN_QUERY_LENGTH = 2
DEFAULT_SEARCH_LIMIT = 25


class SearchOutcome(BaseModel):
    """Results of one search plus the status line to show with them."""

    query: str
    results: list[StopGroup] = []
    suggestions: list[StopGroup] = []
    status: str | None = None


class StopSearchController:
    """Runs stop searches where only the latest query wins.

    Starting a search cancels the previous one. A search that completes after a
    newer one was started returns None and its results must be discarded.
    """

    def __init__(
        self,
        index: StopIndex,
        limit: int = DEFAULT_SEARCH_LIMIT,
        min_length: int = MIN_QUERY_LENGTH,
    ) -> None:
        self._index = index
        self._limit = limit
        self._min_length = min_length
        self._generation = 0
        self._task: asyncio.Task | None = None

    async def search(self, query: str) -> SearchOutcome | None:
        """Search for stops, superseding any search still running.

        Returns:
            The outcome, or None if a newer search started in the meantime.
        """
        self._generation += 1
        generation = self._generation

        if self._task is not None and not self._task.done():
            self._task.cancel()

        term = query.strip() if query else ""
        if len(term) < self._min_length:
            self._task = None
            return SearchOutcome(query=term)

        task = asyncio.create_task(self._run(term))
        self._task = task
        try:
            outcome = await task
        except asyncio.CancelledError:
            if generation != self._generation:
                return None
            raise
        except Exception as e:
            if generation != self._generation:
                return None
            logger.warning(f"Stop search for {term!r} failed: {e}")
            return SearchOutcome(query=term, status=f"Failed to load stops: {e}")

        if generation != self._generation:
            return None
        return outcome

    def cancel(self) -> None:
        """Cancel the running search (if any) and discard its results."""
        self._generation += 1
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def _run(self, term: str) -> SearchOutcome:
        results = await self._index.search(term, limit=self._limit)
        if results:
            return SearchOutcome(query=term, results=results)

        suggestions = await self._index.suggest(term)
        if suggestions:
            names = ", ".join(group.name for group in suggestions)
            status = f"No stops found. Did you mean: {names}?"
        else:
            status = "No stops found."
        return SearchOutcome(query=term, suggestions=suggestions, status=status)
