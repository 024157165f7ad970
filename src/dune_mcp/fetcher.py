# Dune Query MCP Server
# File: fetcher.py
# Version: v1

"""Follow continuation links until a result is fully materialised.

The JSON and CSV variants only differ in how a continuation page is fetched
and how two pages are merged, so both run through one PagedAccumulator.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Callable, Generic, Optional, TypeVar

from .codec import concat_result_csv, concat_result_response
from .models import CSVResponse, ResultsResponse

if TYPE_CHECKING:
    from .client import ExecutionClient

logger = logging.getLogger(__name__)

P = TypeVar("P", ResultsResponse, CSVResponse)


@dataclass
class PagedAccumulator(Generic[P]):
    """Sequential forward walk over a chain of continuation pages."""

    fetch: Callable[[str], Awaitable[P]]
    merge: Callable[[P, P], P]

    @staticmethod
    def next_reference(page: P) -> Optional[str]:
        return page.next_uri

    def has_continuation(self, page: P) -> bool:
        return self.next_reference(page) is not None

    async def accumulate(self, first_page: P) -> P:
        results = first_page
        next_uri = self.next_reference(first_page)
        pages = 1
        while next_uri is not None:
            batch = await self.fetch(next_uri)
            results = self.merge(results, batch)
            next_uri = self.next_reference(batch)
            pages += 1
        if pages > 1:
            logger.debug("Assembled result from %d pages", pages)
        return results


async def fetch_entire_result(
    client: "ExecutionClient", first_page: ResultsResponse
) -> ResultsResponse:
    """Concatenate ``first_page`` with every page reachable through ``next_uri``."""
    accumulator: PagedAccumulator[ResultsResponse] = PagedAccumulator(
        fetch=client.get_results_by_url,
        merge=concat_result_response,
    )
    return await accumulator.accumulate(first_page)


async def fetch_entire_result_csv(
    client: "ExecutionClient", first_page: CSVResponse
) -> CSVResponse:
    """CSV flavour of fetch_entire_result (header kept once)."""
    accumulator: PagedAccumulator[CSVResponse] = PagedAccumulator(
        fetch=client.get_csv_by_url,
        merge=concat_result_csv,
    )
    return await accumulator.accumulate(first_page)
