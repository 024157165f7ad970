# Dune Query MCP Server
# File: execution.py
# Version: v1
"""Execution lifecycle: submit, poll until terminal, fetch the full result.

DuneClient is the entry point most callers want. It drives an execution
through PENDING / EXECUTING to a terminal state, materialises the result as
JSON rows or CSV text, and decides whether the last stored result of a query
is fresh enough to reuse.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from pathlib import Path
from typing import List, Optional, Set, Union

import httpx

from .auth import ApiKeyAuth
from .client import ExecutionClient, is_result_expired
from .config import DuneConfig
from .errors import IncompleteTerminalStateError, InconsistentStateError, TransportError
from .models import (
    CSVResponse,
    ExecutionParams,
    ExecutionState,
    ExecutionStatus,
    GetResultParams,
    QueryParameter,
    ResultsResponse,
)
from .paginator import Paginator

logger = logging.getLogger(__name__)

_WARNED_DEPRECATIONS: Set[str] = set()


def _deprecation_warning(method: str, alternative: str, since: str) -> None:
    """Log a deprecation warning once per method name."""
    if method in _WARNED_DEPRECATIONS:
        return
    _WARNED_DEPRECATIONS.add(method)
    logger.warning(
        "[DEPRECATION] since version %s: %s() is deprecated. Use %s() instead.",
        since,
        method,
        alternative,
    )


@dataclass
class DuneClient:
    """Runs Dune queries end to end."""

    config: DuneConfig
    executions: ExecutionClient

    @classmethod
    def from_config(
        cls,
        config: Optional[DuneConfig] = None,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "DuneClient":
        config = config or DuneConfig.from_env()
        executions = ExecutionClient(
            config=config, auth=ApiKeyAuth(config=config), http_transport=http_transport
        )
        return cls(config=config, executions=executions)

    # ------------------------------------------------------------------
    # Basic health
    # ------------------------------------------------------------------

    async def ping(self) -> bool:
        """Lightweight health check: is an API key configured?"""
        return self.executions.auth.configured

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    async def submit_and_await(
        self,
        query_id: int,
        params: Optional[ExecutionParams] = None,
        poll_interval_seconds: Optional[float] = None,
    ) -> ExecutionStatus:
        """Submit ``query_id`` and poll its status until it is terminal.

        There is no timeout; wrap the call in ``asyncio.wait_for`` to bound it.
        Transport errors abort the loop immediately.
        """
        interval = (
            self.config.poll_interval_seconds
            if poll_interval_seconds is None
            else poll_interval_seconds
        )
        logger.info(
            "refreshing query https://dune.com/queries/%s with parameters %s",
            query_id,
            QueryParameter.unravel(params.query_parameters) if params else {},
        )
        handle = await self.executions.execute_query(query_id, params)
        job_id = handle.execution_id

        status = await self.executions.get_execution_status(job_id)
        while not status.is_terminal:
            logger.info(
                "waiting for query execution %s to complete: current state %s",
                job_id,
                status.state.value,
            )
            await asyncio.sleep(interval)
            status = await self.executions.get_execution_status(job_id)
        return status

    # ------------------------------------------------------------------
    # Run & fetch
    # ------------------------------------------------------------------

    async def run_query(
        self,
        query_id: int,
        params: Optional[ExecutionParams] = None,
        batch_size: Optional[int] = None,
        poll_interval_seconds: Optional[float] = None,
        result_params: Optional[GetResultParams] = None,
    ) -> ResultsResponse:
        """Execute ``query_id``, wait for it and return every result row."""
        status = await self.submit_and_await(query_id, params, poll_interval_seconds)
        if status.state is not ExecutionState.COMPLETED:
            raise self._incomplete(status)

        latest = await self.executions.get_last_execution_results(
            query_id, self._result_params(params, batch_size, result_params)
        )
        results = latest.results
        if results.execution_id != status.execution_id:
            raise InconsistentStateError(
                f"invalid execution ID: expected {status.execution_id}, "
                f"got {results.execution_id}"
            )
        return results

    async def run_query_csv(
        self,
        query_id: int,
        params: Optional[ExecutionParams] = None,
        batch_size: Optional[int] = None,
        poll_interval_seconds: Optional[float] = None,
        result_params: Optional[GetResultParams] = None,
    ) -> CSVResponse:
        """Execute ``query_id``, wait for it and return the whole result as CSV."""
        status = await self.submit_and_await(query_id, params, poll_interval_seconds)
        if status.state is not ExecutionState.COMPLETED:
            raise self._incomplete(status)

        # The CSV route is keyed by query id and carries no execution id,
        # so the consistency check of run_query() cannot be made here.
        return await self.executions.get_last_result_csv(
            query_id, self._result_params(params, batch_size, result_params)
        )

    async def get_latest_result(
        self,
        query_id: int,
        params: Optional[ExecutionParams] = None,
        batch_size: Optional[int] = None,
        max_age_hours: Optional[float] = None,
        poll_interval_seconds: Optional[float] = None,
    ) -> ResultsResponse:
        """Return the last stored result of ``query_id``, re-running it when stale.

        A result is stale when it ended more than ``max_age_hours`` ago
        (default: three months) or when the query never ran.
        """
        max_age = self.config.max_age_hours if max_age_hours is None else max_age_hours
        # one-row probe; the full result is only fetched when fresh
        if await self._is_stale(query_id, params, max_age):
            return await self.run_query(query_id, params, batch_size, poll_interval_seconds)

        latest = await self.executions.get_last_execution_results(
            query_id, self._result_params(params, batch_size), expiry_age_hours=max_age
        )
        return latest.results

    async def download_csv(
        self,
        query_id: int,
        out_file: Union[str, Path],
        params: Optional[ExecutionParams] = None,
        batch_size: Optional[int] = None,
        max_age_hours: Optional[float] = None,
        poll_interval_seconds: Optional[float] = None,
    ) -> Path:
        """Write the latest CSV result of ``query_id`` to ``out_file``.

        The query is re-run first when its last result is stale.
        """
        max_age = self.config.max_age_hours if max_age_hours is None else max_age_hours
        if await self._is_stale(query_id, params, max_age):
            csv = await self.run_query_csv(query_id, params, batch_size, poll_interval_seconds)
        else:
            csv = await self.executions.get_last_result_csv(
                query_id, self._result_params(params, batch_size)
            )

        path = Path(out_file)
        path.write_text(csv.data, encoding="utf-8")
        logger.info("CSV data has been saved to %s", path)
        return path

    async def run_sql(
        self,
        query_sql: str,
        name: str = "API Query",
        is_private: bool = True,
        archive_after: bool = True,
        params: Optional[ExecutionParams] = None,
        batch_size: Optional[int] = None,
        poll_interval_seconds: Optional[float] = None,
    ) -> ResultsResponse:
        """Create a query from raw SQL, run it, and archive it afterwards."""
        query_parameters: List[QueryParameter] = params.query_parameters if params else []
        query_id = await self.executions.create_query(
            name, query_sql, query_parameters, is_private=is_private
        )
        try:
            return await self.run_query(query_id, params, batch_size, poll_interval_seconds)
        finally:
            if archive_after:
                await self.executions.archive_query(query_id)

    async def paginate(
        self, execution_id: str, page_size: Optional[int] = None
    ) -> Paginator:
        """Random-access paginator over a completed execution."""
        status = await self.executions.get_execution_status(execution_id)
        return await Paginator.new(
            self.executions, status, page_size or self.config.batch_size
        )

    async def refresh(
        self,
        query_id: int,
        parameters: Optional[List[QueryParameter]] = None,
        poll_interval_seconds: Optional[float] = None,
    ) -> ResultsResponse:
        """Deprecated alias of run_query()."""
        _deprecation_warning("refresh", "run_query", "0.0.2")
        return await self.run_query(
            query_id,
            ExecutionParams(query_parameters=list(parameters or [])),
            poll_interval_seconds=poll_interval_seconds,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _result_params(
        self,
        params: Optional[ExecutionParams],
        batch_size: Optional[int] = None,
        result_params: Optional[GetResultParams] = None,
    ) -> GetResultParams:
        """Results-endpoint arguments for the execution described by ``params``.

        Query parameters are forwarded so the service picks the last run
        with the same bindings.
        """
        base = result_params or GetResultParams()
        limit = base.limit
        if base.sample_count is None:
            limit = batch_size or base.limit or self.config.batch_size
        return replace(
            base,
            limit=limit,
            query_parameters=list(params.query_parameters) if params else list(base.query_parameters),
        )

    async def _is_stale(
        self, query_id: int, params: Optional[ExecutionParams], max_age_hours: float
    ) -> bool:
        probe = replace(self._result_params(params), limit=1)
        try:
            first_page = await self.executions.get_last_execution_page(query_id, probe)
        except TransportError as exc:
            if exc.status_code != 404:
                raise
            logger.info("no previous execution of query %s, running it.", query_id)
            return True
        expired = is_result_expired(
            first_page.execution_ended_at, max_age_hours, now=self.executions.clock()
        )
        if expired:
            logger.info("results expired, re-running query.")
        return expired

    @staticmethod
    def _incomplete(status: ExecutionStatus) -> IncompleteTerminalStateError:
        error = IncompleteTerminalStateError(status.state.value, status.execution_id)
        logger.error("%s", error)
        return error
