# Dune Query MCP Server
# File: errors.py
# Version: v1

"""Error types raised by the Dune client.

All of them derive from RuntimeError so callers that only care about
"something went wrong talking to Dune" can keep catching that.
"""

from __future__ import annotations

from typing import Optional


class DuneError(RuntimeError):
    """Base class for every error raised by this package."""


class TransportError(DuneError):
    """Non-2xx HTTP response or network failure."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        url: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.url = url


class InconsistentStateError(DuneError):
    """Fetched results belong to a different execution than the one awaited."""


class IncompleteTerminalStateError(DuneError):
    """An execution reached a terminal state other than COMPLETED."""

    def __init__(self, state: str, execution_id: str) -> None:
        super().__init__(
            f"refresh (execution {execution_id}) yields incomplete terminal state {state}"
        )
        self.state = state
        self.execution_id = execution_id


class ResultMergeError(DuneError):
    """Two result pages cannot be concatenated."""


class PaginatorUsageError(DuneError):
    """Paginator built on a non-completed execution, or an expected page is missing."""
