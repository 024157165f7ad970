# Dune Query MCP Server
# File: __init__.py
# Version: v1

"""Top-level package for the Dune Query MCP Server.

Exposes the execution client (submit / poll / fetch), the result codec and
the random-access paginator so the package can be used as a plain library
as well as through the MCP tools.
"""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

__all__ = [
    "__version__",
    "DuneClient",
    "DuneConfig",
    "ExecutionClient",
    "Paginator",
    "Page",
]


def _resolve_version() -> str:
    """Resolve installed distribution version.

    Uses Python package metadata so __version__ stays aligned with pyproject.toml.
    Falls back to a reasonable default when running from source without an
    installed distribution.
    """
    try:
        return version("mcp-dune-query-server")
    except PackageNotFoundError:
        # Running from source tree without installed package metadata.
        return "0.1.0"


__version__ = _resolve_version()

from .client import ExecutionClient  # noqa: E402
from .config import DuneConfig  # noqa: E402
from .execution import DuneClient  # noqa: E402
from .paginator import Page, Paginator  # noqa: E402
