"""MCP application instance.

This module exists to avoid circular import issues when running with `python -m`.
All tool modules should import `mcp` from here, not from server.py.
"""

from mcp.server.fastmcp import FastMCP

mcp = FastMCP(
    "PID Departure Board",
    instructions="Prague PID departure board - stop search and live departures with offline fallback",
)
