import argparse
import asyncio
import logging
from datetime import UTC, datetime

from pydantic import BaseModel

from pid_board.app import mcp
from pid_board.errors import BoardError
from pid_board.models.responses import DepartureBoardResponse, SearchStopsResponse

# Register tools with the MCP server
from pid_board.tools import board_tools, stop_tools  # noqa: F401


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    timestamp: str


@mcp.tool()
def health() -> HealthResponse:
    """Check if the PID departure board server is running and healthy.

    Returns the server status, version, and current timestamp.
    """
    from pid_board import __version__

    return HealthResponse(
        status="ok",
        version=__version__,
        timestamp=datetime.now(UTC).isoformat(),
    )


def format_search(response: SearchStopsResponse) -> str:
    lines = [f"{stop.name}  [{', '.join(stop.stop_ids)}]" for stop in response.stops]
    if response.status:
        lines.append(response.status)
    if response.suggestions:
        lines.append("Did you mean: " + ", ".join(s.name for s in response.suggestions) + "?")
    return "\n".join(lines)


def format_board(response: DepartureBoardResponse) -> str:
    lines = [
        f"{row.departure_time}  {row.countdown:>8}  {row.line:>4}  {row.destination:<28} "
        f"{row.platform:>3}  {row.delay:<8} {row.accessibility:1} {row.vehicle}"
        for row in response.rows
    ]
    if response.status:
        lines.append(response.status)
    return "\n".join(lines)


async def run_search(query: str, limit: int) -> None:
    from pid_board.services.stop_service import search_stops

    print(format_search(await search_stops(query, limit=limit)))


async def run_board(stop_ids: list[str], minutes_after: int, limit: int) -> None:
    from pid_board.services.departure_service import get_departure_board

    response = await get_departure_board(stop_ids, minutes_after=minutes_after, limit=limit)
    print(format_board(response))


def main() -> None:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    parser = argparse.ArgumentParser(
        prog="pid-board",
        description="Prague PID departure board (MCP server and CLI)",
    )
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser(
        "serve",
        parents=[common],
        help="Run the MCP server (default)",
    )

    search_parser = subparsers.add_parser(
        "search",
        parents=[common],
        help="Search stops by name or stop id",
    )
    search_parser.add_argument("query", help="Stop name or id fragment")
    search_parser.add_argument("--limit", type=int, default=25, help="Maximum results (default: 25)")

    board_parser = subparsers.add_parser(
        "board",
        parents=[common],
        help="Print upcoming departures for stop ids",
    )
    board_parser.add_argument("stop_ids", nargs="+", help="Stop ids (e.g. U693Z2P)")
    board_parser.add_argument(
        "--minutes",
        type=int,
        default=20,
        help="Time window in minutes (default: 20)",
    )
    board_parser.add_argument("--limit", type=int, default=60, help="Maximum departures (default: 60)")

    args = parser.parse_args()

    if args.command in ("search", "board"):
        log_level = logging.DEBUG if args.verbose else logging.INFO
        logging.basicConfig(
            level=log_level,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        )
        try:
            if args.command == "search":
                asyncio.run(run_search(args.query, args.limit))
            else:
                asyncio.run(run_board(args.stop_ids, args.minutes, args.limit))
        except BoardError as e:
            parser.exit(1, f"error: {e}\n")
    else:
        # Default: run MCP server
        if getattr(args, "verbose", False):
            logging.basicConfig(level=logging.DEBUG)
        mcp.run()


if __name__ == "__main__":
    main()
