"""Quikim MCP server: entry point and FastMCP instance."""

from __future__ import annotations

import logging

from mcp.server.fastmcp import FastMCP

logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")

mcp = FastMCP("quikim")

# Register tools by importing the module (decorators run at import time)
import quikim.mcp.tools as _tools  # noqa: F401, E402


def main() -> None:
    """Run the Quikim MCP server over stdio transport."""
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
