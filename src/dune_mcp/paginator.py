# Dune Query MCP Server
# File: paginator.py
# Version: v1

"""Random-access pagination over a completed execution.

Pages are fixed-size ``limit``/``offset`` slices, so they can be requested
in any order. Every fetched page is cached for the lifetime of the
Paginator; a cache hit never contacts the API.

Not safe to share between concurrent tasks: two tasks asking for the same
uncached page may both fetch it.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from .errors import PaginatorUsageError
from .models import ExecutionState, ExecutionStatus, GetResultParams

if TYPE_CHECKING:
    from .client import ExecutionClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Page:
    number: int
    values: List[Dict[str, Any]]


class Paginator:
    """Cursor over the result pages of one completed execution."""

    def __init__(
        self,
        client: "ExecutionClient",
        execution_id: str,
        page_size: int,
        first_page: Page,
        total_rows: int,
    ) -> None:
        self._client = client
        self.execution_id = execution_id
        self.page_size = page_size
        self.total_rows = total_rows
        self.current_page_number = first_page.number
        self.page_cache: Dict[int, Page] = {first_page.number: first_page}

    @classmethod
    async def new(
        cls,
        client: "ExecutionClient",
        execution_status: ExecutionStatus,
        page_size: int,
    ) -> "Paginator":
        """Build a paginator; fetches page 1 to learn the total row count."""
        if execution_status.state is not ExecutionState.COMPLETED:
            raise PaginatorUsageError(
                "Paginator can only be constructed on Complete execution state."
            )
        if page_size < 1:
            raise ValueError("page_size must be a positive integer")

        execution_id = execution_status.execution_id
        results = await client.get_execution_results(
            execution_id, GetResultParams(limit=page_size, offset=0)
        )
        if results.result is None:
            raise PaginatorUsageError("Can't paginate execution without results.")

        first_page = Page(number=1, values=results.result.rows)
        return cls(
            client,
            execution_id,
            page_size,
            first_page,
            results.result.metadata.total_row_count,
        )

    def max_page(self) -> int:
        return math.ceil(self.total_rows / self.page_size)

    async def get_page(self, n: int) -> Optional[Page]:
        """Return page ``n`` (1-based), or None with a warning when out of range."""
        if not 1 <= n <= self.max_page():
            logger.warning(
                "Invalid page number requested %s: Must be contained in [1, %s]",
                n,
                self.max_page(),
            )
            return None

        cached = self.page_cache.get(n)
        if cached is not None:
            return cached

        results = await self._client.get_execution_results(
            self.execution_id,
            # page 1 has offset 0
            GetResultParams(limit=self.page_size, offset=self.page_size * (n - 1)),
        )
        if results.result is None:
            raise PaginatorUsageError(
                f"Expected results for page {n} of {self.max_page()}"
            )

        page = Page(number=n, values=results.result.rows)
        self.page_cache[n] = page
        return page

    async def next_page(self) -> Optional[Page]:
        if self.current_page_number >= self.max_page():
            logger.warning("You are already on the last page!")
            return None
        page = await self.get_page(self.current_page_number + 1)
        self.current_page_number += 1
        return page

    async def previous_page(self) -> Optional[Page]:
        if self.current_page_number <= 1:
            logger.warning("You are already on the first page.")
            return None
        page = await self.get_page(self.current_page_number - 1)
        self.current_page_number -= 1
        return page

    async def last_page(self) -> Optional[Page]:
        page = await self.get_page(self.max_page())
        if page is not None:
            self.current_page_number = page.number
        return page

    def get_current_page_values(self) -> Page:
        return self.page_cache[self.current_page_number]
