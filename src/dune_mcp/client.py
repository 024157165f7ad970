# Dune Query MCP Server
# File: client.py
# Version: v1
"""Typed wrappers around the Dune execution REST endpoints.

Implements:

- execute_query() / cancel_execution() / get_execution_status()
- get_execution_results() and get_execution_results_csv() (single page)
- get_last_execution_results() and get_last_result_csv() (whole result,
  continuation links followed)
- get_results_by_url() / get_csv_by_url() for continuation links
- create_query() / archive_query(), used by DuneClient.run_sql()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import httpx

from .config import THREE_MONTHS_IN_HOURS
from .fetcher import fetch_entire_result, fetch_entire_result_csv
from .models import (
    CSVResponse,
    ExecutionParams,
    ExecutionResponse,
    ExecutionStatus,
    GetResultParams,
    LatestResult,
    QueryParameter,
    ResultsResponse,
    age_in_hours,
)
from .transport import NEXT_OFFSET_HEADER, NEXT_URI_HEADER, Router

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_result_expired(
    ended_at: Optional[datetime],
    max_age_hours: float,
    now: Optional[datetime] = None,
) -> bool:
    """Staleness policy: a result older than ``max_age_hours`` is expired.

    The boundary is inclusive of "fresh". A result without an end timestamp
    never completed and counts as expired.
    """
    if ended_at is None:
        return True
    return age_in_hours(ended_at, now=now) > max_age_hours


def build_csv_response(response: httpx.Response) -> CSVResponse:
    """Read a CSV body and its pagination headers."""
    next_offset = response.headers.get(NEXT_OFFSET_HEADER)
    return CSVResponse(
        data=response.text,
        next_uri=response.headers.get(NEXT_URI_HEADER) or None,
        next_offset=int(next_offset) if next_offset else None,
    )


@dataclass
class ExecutionClient(Router):
    """Wrapper around the Dune execution and results endpoints."""

    clock: Callable[[], datetime] = field(default=_utcnow, repr=False)

    # ------------------------------------------------------------------
    # Executions
    # ------------------------------------------------------------------

    async def execute_query(
        self, query_id: int, params: Optional[ExecutionParams] = None
    ) -> ExecutionResponse:
        """Submit query ``query_id`` for execution and return its handle."""
        params = params or ExecutionParams()
        data = await self.post(f"query/{query_id}/execute", params.payload())
        logger.debug("execute response %s", data)
        return ExecutionResponse.from_dict(data, query_id=query_id)

    async def cancel_execution(self, execution_id: str) -> bool:
        """Ask the service to cancel an execution. Pollers will observe CANCELLED."""
        data = await self.post(f"execution/{execution_id}/cancel")
        return bool(data.get("success")) if isinstance(data, dict) else False

    async def get_execution_status(self, execution_id: str) -> ExecutionStatus:
        data = await self.get(f"execution/{execution_id}/status")
        logger.debug("get_status response %s", data)
        return ExecutionStatus.from_dict(data)

    # ------------------------------------------------------------------
    # Results: single page
    # ------------------------------------------------------------------

    async def get_execution_results(
        self, execution_id: str, params: Optional[GetResultParams] = None
    ) -> ResultsResponse:
        """Fetch one page of JSON results of an execution."""
        params = params or GetResultParams()
        data = await self.get(f"execution/{execution_id}/results", params.build())
        logger.debug("get_result response for %s: %s", execution_id, _summary(data))
        return ResultsResponse.from_dict(data)

    async def get_execution_results_csv(
        self, execution_id: str, params: Optional[GetResultParams] = None
    ) -> CSVResponse:
        """Fetch one page of CSV results of an execution."""
        params = params or GetResultParams()
        response = await self.get(
            f"execution/{execution_id}/results/csv", params.build(), raw=True
        )
        return build_csv_response(response)

    # ------------------------------------------------------------------
    # Results: last execution of a query
    # ------------------------------------------------------------------

    async def get_last_execution_page(
        self, query_id: int, params: Optional[GetResultParams] = None
    ) -> ResultsResponse:
        """Fetch only the first page of the query's most recent execution."""
        params = params or GetResultParams()
        data = await self.get(f"query/{query_id}/results", params.build())
        logger.debug("get_last_result response for query %s: %s", query_id, _summary(data))
        return ResultsResponse.from_dict(data)

    async def get_last_execution_results(
        self,
        query_id: int,
        params: Optional[GetResultParams] = None,
        expiry_age_hours: float = THREE_MONTHS_IN_HOURS,
    ) -> LatestResult:
        """Fetch the whole result of the query's most recent execution.

        No new execution is submitted. ``is_expired`` tells whether the
        result is older than ``expiry_age_hours``.
        """
        first_page = await self.get_last_execution_page(query_id, params)
        expired = is_result_expired(
            first_page.execution_ended_at, expiry_age_hours, now=self.clock()
        )
        return LatestResult(
            results=await fetch_entire_result(self, first_page),
            is_expired=expired,
        )

    async def get_last_result_csv(
        self, query_id: int, params: Optional[GetResultParams] = None
    ) -> CSVResponse:
        """Fetch the whole CSV result of the query's most recent execution."""
        params = params or GetResultParams()
        response = await self.get(f"query/{query_id}/results/csv", params.build(), raw=True)
        return await fetch_entire_result_csv(self, build_csv_response(response))

    # ------------------------------------------------------------------
    # Continuation links
    # ------------------------------------------------------------------

    async def get_results_by_url(self, url: str) -> ResultsResponse:
        data = await self.get_by_url(url)
        return ResultsResponse.from_dict(data)

    async def get_csv_by_url(self, url: str) -> CSVResponse:
        response = await self.get_by_url(url, raw=True)
        return build_csv_response(response)

    # ------------------------------------------------------------------
    # Query definitions (raw SQL runs only)
    # ------------------------------------------------------------------

    async def create_query(
        self,
        name: str,
        query_sql: str,
        query_parameters: Optional[List[QueryParameter]] = None,
        is_private: bool = True,
    ) -> int:
        """Create a query from raw SQL and return its id."""
        payload: Dict[str, Any] = {
            "name": name,
            "query_sql": query_sql,
            "is_private": is_private,
            "query_parameters": [
                {"key": p.name, "type": p.type.value, "value": p.value}
                for p in query_parameters or []
            ],
        }
        data = await self.post("query", payload)
        return int(data["query_id"])

    async def archive_query(self, query_id: int) -> bool:
        data = await self.post(f"query/{query_id}/archive")
        return isinstance(data, dict) and int(data.get("query_id", -1)) == query_id


def _summary(data: Any) -> str:
    """Short log-friendly description of a results payload."""
    if not isinstance(data, dict):
        return repr(data)[:200]
    rows = (data.get("result") or {}).get("rows") or []
    return (
        f"execution_id={data.get('execution_id')} state={data.get('state')} "
        f"rows={len(rows)} next_uri={data.get('next_uri')}"
    )
