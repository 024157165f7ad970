# Dune Query MCP Server
# File: transports/stdio_server.py
# Version: v1

"""STDIO entrypoint for the Dune Query MCP server.

This is the script behind the ``dune-mcp`` console command.

It:

- configures logging to stderr (stdout carries the MCP protocol),
- creates a FastMCP server,
- registers all Dune tools, and
- runs the built-in stdio transport.
"""

from __future__ import annotations

import logging
import sys

from mcp.server.fastmcp import FastMCP

from ..config import DuneConfig
from ..tools import tasks


def main() -> None:
    """Synchronous entrypoint for console_scripts."""
    cfg = DuneConfig.from_env()
    logging.basicConfig(
        level=getattr(logging, cfg.log_level, logging.WARNING),
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    mcp = FastMCP("dune-mcp")

    # Register MCP tools (ping, run_query, get_latest_result, get_results_page, …)
    tasks.register_tools(mcp)

    # Let FastMCP handle stdio + event loop setup.
    mcp.run()


if __name__ == "__main__":
    main()
