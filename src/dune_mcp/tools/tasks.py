# Dune Query MCP Server
# File: tools/tasks.py
# Version: v1
#
# NOTE: This module is the single place where we define "business logic"
# that is exposed as MCP tools.  The MCP transports (stdio) simply
# call `register_tools(server)` to wire these up.

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import parse_qs, urlparse

from ..auth import ApiKeyAuth
from ..cache import SessionCache
from ..client import is_result_expired
from ..config import THREE_MONTHS_IN_HOURS, DuneConfig
from ..errors import TransportError
from ..execution import DuneClient
from ..fetcher import fetch_entire_result, fetch_entire_result_csv
from ..models import (
    CSVResponse,
    ExecutionParams,
    ExecutionResponse,
    ExecutionResult,
    ExecutionState,
    ExecutionStatus,
    GetResultParams,
    LatestResult,
    QueryEngine,
    QueryParameter,
    ResultMetadata,
    ResultsResponse,
)
from ..paginator import Paginator


# ---------------------------------------------------------------------------
# Internal helpers (errors, caps, paginator sessions)
# ---------------------------------------------------------------------------


def _make_error(
    code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Small, LLM-friendly error shape used by tools and diagnostics."""
    err: Dict[str, Any] = {"code": code, "message": message}
    if details:
        err["details"] = details
    return err


def _cap_int(value: Optional[int], cap: int, min_value: int = 1) -> tuple[int, bool]:
    """Clamp an integer to [min_value, cap]. Returns (effective, cap_applied).

    ``None`` means "as many as allowed".
    """
    if value is None:
        return cap, False

    try:
        v = int(value)
    except (TypeError, ValueError):
        v = min_value

    if v < min_value:
        return min_value, True

    if cap > 0 and v > cap:
        return cap, True

    return v, False


_SESSIONS: SessionCache[Paginator] | None = None
_SESSIONS_SIGNATURE: tuple[int, int] | None = None


def _get_sessions(cfg: DuneConfig) -> SessionCache[Paginator]:
    """Lazily create (or re-create) the paginator session cache based on config."""
    global _SESSIONS, _SESSIONS_SIGNATURE

    signature = (int(cfg.cache_ttl_seconds), int(cfg.cache_max_entries))
    if _SESSIONS is None or _SESSIONS_SIGNATURE != signature:
        _SESSIONS = SessionCache(ttl_seconds=signature[0], max_entries=signature[1])
        _SESSIONS_SIGNATURE = signature
    return _SESSIONS


def _execution_params(
    parameters: Optional[Dict[str, Any]],
    performance: str = "medium",
) -> ExecutionParams:
    return ExecutionParams(
        query_parameters=[
            QueryParameter.text(name, str(value)) for name, value in (parameters or {}).items()
        ],
        performance=QueryEngine(performance),
    )


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _status_to_dict(status: ExecutionStatus) -> Dict[str, Any]:
    out: Dict[str, Any] = {
        "execution_id": status.execution_id,
        "query_id": status.query_id,
        "state": status.state.value,
        "is_terminal": status.is_terminal,
        "queue_position": status.queue_position,
        "submitted_at": _iso(status.submitted_at),
        "execution_started_at": _iso(status.execution_started_at),
        "execution_ended_at": _iso(status.execution_ended_at),
        "expires_at": _iso(status.expires_at),
        "cancelled_at": _iso(status.cancelled_at),
    }
    if status.result_metadata is not None:
        out["columns"] = status.result_metadata.column_names
        out["total_row_count"] = status.result_metadata.total_row_count
    if status.error is not None:
        out["error"] = {
            "type": status.error.type,
            "message": status.error.message,
            "line": status.error.line,
            "column": status.error.column,
        }
    return out


def _results_to_dict(
    results: ResultsResponse,
    requested_rows: Optional[int],
    cfg: DuneConfig,
) -> Dict[str, Any]:
    effective_rows, cap_applied = _cap_int(requested_rows, cfg.max_rows_returned)
    rows = results.rows
    metadata = results.result.metadata if results.result else ResultMetadata()

    return {
        "execution_id": results.execution_id,
        "query_id": results.query_id,
        "state": results.state.value,
        "execution_ended_at": _iso(results.execution_ended_at),
        "columns": metadata.column_names,
        "rows": rows[:effective_rows],
        "meta": {
            "row_count": len(rows),
            "total_row_count": metadata.total_row_count,
            "truncated": len(rows) > effective_rows,
            "requested_rows": requested_rows,
            "effective_rows": effective_rows,
            "cap_rows": cfg.max_rows_returned,
            "cap_applied": bool(cap_applied),
        },
    }


def _csv_to_dict(
    query_id: int,
    csv: CSVResponse,
    requested_rows: Optional[int],
    cfg: DuneConfig,
) -> Dict[str, Any]:
    effective_rows, cap_applied = _cap_int(requested_rows, cfg.max_rows_returned)
    lines = csv.data.rstrip("\n").split("\n") if csv.data else []
    header, body = lines[:1], lines[1:]
    kept = header + body[:effective_rows]

    return {
        "query_id": query_id,
        "csv": "\n".join(kept) + ("\n" if kept else ""),
        "meta": {
            "row_count": len(body),
            "truncated": len(body) > effective_rows,
            "requested_rows": requested_rows,
            "effective_rows": effective_rows,
            "cap_rows": cfg.max_rows_returned,
            "cap_applied": bool(cap_applied),
        },
    }


# ---------------------------------------------------------------------------
# Mock backend
# ---------------------------------------------------------------------------


_MOCK_QUERIES: Dict[int, Dict[str, Any]] = {
    1: {
        "name": "Mock block hashes",
        "columns": ["number", "hash"],
        "rows": [{"number": i, "hash": "0x" + format(i, "064x")} for i in range(1, 10)],
    },
    2: {
        "name": "Mock token prices",
        "columns": ["symbol", "price"],
        "rows": [
            {"symbol": "ETH", "price": 3100.5},
            {"symbol": "BTC", "price": 64000.0},
            {"symbol": "USDC", "price": 1.0},
        ],
    },
}


@dataclass
class _MockExecution:
    execution_id: str
    query_id: int
    submitted_at: datetime
    polls: int = 0
    cancelled: bool = False
    ended_at: Optional[datetime] = None


@dataclass
class MockExecutionClient:
    """Small in-memory stand-in for ExecutionClient.

    Activated when DUNE_MOCK_MODE is truthy. Executions report PENDING, then
    EXECUTING, then COMPLETED on successive status polls. JSON and CSV results
    are served in pages of ``server_page_size`` rows linked by ``next_uri``
    so the continuation walk is exercised as well.
    """

    config: DuneConfig
    server_page_size: int = 4
    auth: ApiKeyAuth = field(init=False)
    _executions: Dict[str, _MockExecution] = field(default_factory=dict, init=False)
    _counter: int = field(default=0, init=False)

    def __post_init__(self) -> None:
        self.auth = ApiKeyAuth(config=DuneConfig(api_key="mock"))
        now = self.clock()
        for query_id in _MOCK_QUERIES:
            # One historic run per query so "latest result" works out of the box.
            execution_id = f"01MOCK-Q{query_id}-0"
            self._executions[execution_id] = _MockExecution(
                execution_id=execution_id,
                query_id=query_id,
                submitted_at=now - timedelta(hours=1, minutes=1),
                polls=2,
                ended_at=now - timedelta(hours=1),
            )

    def clock(self) -> datetime:
        return datetime.now(timezone.utc)

    def _lookup(self, execution_id: str) -> _MockExecution:
        execution = self._executions.get(execution_id)
        if execution is None:
            raise TransportError(
                f"Unknown mock execution '{execution_id}'.", status_code=404
            )
        return execution

    def _state(self, execution: _MockExecution) -> ExecutionState:
        if execution.cancelled:
            return ExecutionState.CANCELLED
        if execution.polls >= 2:
            if execution.ended_at is None:
                execution.ended_at = self.clock()
            return ExecutionState.COMPLETED
        if execution.polls == 1:
            return ExecutionState.EXECUTING
        return ExecutionState.PENDING

    def _latest(self, query_id: int) -> _MockExecution:
        done = [
            e
            for e in self._executions.values()
            if e.query_id == query_id and e.ended_at is not None and not e.cancelled
        ]
        if not done:
            raise TransportError(f"No execution found for query {query_id}.", status_code=404)
        return max(done, key=lambda e: e.ended_at)  # type: ignore[arg-type, return-value]

    def _page(
        self, execution: _MockExecution, offset: int, limit: int, split: bool = True
    ) -> ResultsResponse:
        data = _MOCK_QUERIES[execution.query_id]
        all_rows = data["rows"]
        size = min(limit, self.server_page_size) if split else limit
        rows = [dict(r) for r in all_rows[offset : offset + size]]
        end = offset + len(rows)
        more = end < min(len(all_rows), offset + limit)
        next_uri = (
            f"mock://execution/{execution.execution_id}/results"
            f"?offset={end}&limit={limit - len(rows)}"
            if more
            else None
        )
        return ResultsResponse(
            execution_id=execution.execution_id,
            query_id=execution.query_id,
            state=ExecutionState.COMPLETED,
            is_execution_finished=True,
            submitted_at=execution.submitted_at,
            execution_ended_at=execution.ended_at,
            next_offset=end if more else None,
            next_uri=next_uri,
            result=ExecutionResult(
                rows=rows,
                metadata=ResultMetadata(
                    column_names=list(data["columns"]),
                    row_count=len(rows),
                    datapoint_count=len(rows) * len(data["columns"]),
                    total_row_count=len(all_rows),
                ),
            ),
        )

    def _csv(self, page: ResultsResponse) -> CSVResponse:
        columns = page.result.metadata.column_names if page.result else []
        lines = [",".join(columns)]
        for row in page.rows:
            lines.append(",".join(str(row.get(c, "")) for c in columns))
        return CSVResponse(
            data="\n".join(lines) + "\n",
            next_uri=page.next_uri.replace("/results?", "/results/csv?") if page.next_uri else None,
            next_offset=page.next_offset,
        )

    @staticmethod
    def _window(params: Optional[GetResultParams]) -> Tuple[int, int]:
        params = params or GetResultParams()
        rendered = params.build()
        return int(rendered.get("offset", 0)), int(rendered.get("limit", 1))

    # -- ExecutionClient surface ---------------------------------------

    async def execute_query(
        self, query_id: int, params: Optional[ExecutionParams] = None
    ) -> ExecutionResponse:
        if query_id not in _MOCK_QUERIES:
            raise TransportError(f"Unknown mock query {query_id}.", status_code=404)
        self._counter += 1
        execution_id = f"01MOCK-Q{query_id}-{self._counter}"
        self._executions[execution_id] = _MockExecution(
            execution_id=execution_id, query_id=query_id, submitted_at=self.clock()
        )
        return ExecutionResponse(execution_id, ExecutionState.PENDING, query_id)

    async def cancel_execution(self, execution_id: str) -> bool:
        execution = self._lookup(execution_id)
        if execution.ended_at is not None:
            return False
        execution.cancelled = True
        return True

    async def get_execution_status(self, execution_id: str) -> ExecutionStatus:
        execution = self._lookup(execution_id)
        state = self._state(execution)
        execution.polls += 1
        data = _MOCK_QUERIES[execution.query_id]
        return ExecutionStatus(
            execution_id=execution_id,
            query_id=execution.query_id,
            state=state,
            submitted_at=execution.submitted_at,
            execution_ended_at=execution.ended_at,
            result_metadata=(
                ResultMetadata(
                    column_names=list(data["columns"]),
                    total_row_count=len(data["rows"]),
                )
                if state is ExecutionState.COMPLETED
                else None
            ),
        )

    async def get_execution_results(
        self, execution_id: str, params: Optional[GetResultParams] = None
    ) -> ResultsResponse:
        offset, limit = self._window(params)
        return self._page(self._lookup(execution_id), offset, limit, split=False)

    async def get_last_execution_page(
        self, query_id: int, params: Optional[GetResultParams] = None
    ) -> ResultsResponse:
        offset, limit = self._window(params)
        return self._page(self._latest(query_id), offset, limit)

    async def get_last_execution_results(
        self,
        query_id: int,
        params: Optional[GetResultParams] = None,
        expiry_age_hours: float = THREE_MONTHS_IN_HOURS,
    ) -> LatestResult:
        first_page = await self.get_last_execution_page(query_id, params)
        return LatestResult(
            results=await fetch_entire_result(self, first_page),  # type: ignore[arg-type]
            is_expired=is_result_expired(
                first_page.execution_ended_at, expiry_age_hours, now=self.clock()
            ),
        )

    async def get_last_result_csv(
        self, query_id: int, params: Optional[GetResultParams] = None
    ) -> CSVResponse:
        first_page = self._csv(await self.get_last_execution_page(query_id, params))
        return await fetch_entire_result_csv(self, first_page)  # type: ignore[arg-type]

    async def get_results_by_url(self, url: str) -> ResultsResponse:
        parsed = urlparse(url)
        execution_id = parsed.path.strip("/").split("/")[0]
        query = parse_qs(parsed.query)
        offset = int(query.get("offset", ["0"])[0])
        limit = int(query.get("limit", ["1"])[0])
        return self._page(self._lookup(execution_id), offset, limit)

    async def get_csv_by_url(self, url: str) -> CSVResponse:
        return self._csv(await self.get_results_by_url(url.replace("/results/csv?", "/results?")))


_MOCK_CLIENT: MockExecutionClient | None = None


def _make_client(cfg: Optional[DuneConfig] = None) -> DuneClient:
    """Create a DuneClient from environment variables.

    If DUNE_MOCK_MODE is truthy, the client talks to a process-wide
    in-memory mock backend instead of the real API.

    Note: Callers should prefer invoking this with *no arguments* to keep
    unit tests monkeypatch-friendly (tests often replace _make_client with
    a no-arg lambda).
    """
    global _MOCK_CLIENT

    cfg = cfg or DuneConfig.from_env()

    if cfg.mock_mode:
        if _MOCK_CLIENT is None:
            _MOCK_CLIENT = MockExecutionClient(config=cfg)
        return DuneClient(config=cfg, executions=_MOCK_CLIENT)  # type: ignore[arg-type]

    return DuneClient.from_config(cfg)


# ---------------------------------------------------------------------------
# Core async tasks (library-style)
# ---------------------------------------------------------------------------


async def ping() -> Dict[str, Any]:
    client = _make_client()
    ok = await client.ping()
    return {"ok": bool(ok)}


async def run_query(
    query_id: int,
    parameters: Optional[Dict[str, Any]] = None,
    performance: str = "medium",
    batch_size: Optional[int] = None,
    max_rows: Optional[int] = None,
) -> Dict[str, Any]:
    cfg = DuneConfig.from_env()
    client = _make_client()
    results = await client.run_query(
        query_id, _execution_params(parameters, performance), batch_size=batch_size
    )
    return _results_to_dict(results, max_rows, cfg)


async def run_query_csv(
    query_id: int,
    parameters: Optional[Dict[str, Any]] = None,
    performance: str = "medium",
    batch_size: Optional[int] = None,
    max_rows: Optional[int] = None,
) -> Dict[str, Any]:
    cfg = DuneConfig.from_env()
    client = _make_client()
    csv = await client.run_query_csv(
        query_id, _execution_params(parameters, performance), batch_size=batch_size
    )
    return _csv_to_dict(query_id, csv, max_rows, cfg)


async def get_latest_result(
    query_id: int,
    parameters: Optional[Dict[str, Any]] = None,
    max_age_hours: Optional[float] = None,
    max_rows: Optional[int] = None,
) -> Dict[str, Any]:
    cfg = DuneConfig.from_env()
    client = _make_client()
    results = await client.get_latest_result(
        query_id, _execution_params(parameters), max_age_hours=max_age_hours
    )
    return _results_to_dict(results, max_rows, cfg)


async def download_csv(
    query_id: int,
    out_file: str,
    parameters: Optional[Dict[str, Any]] = None,
    max_age_hours: Optional[float] = None,
) -> Dict[str, Any]:
    client = _make_client()
    path = await client.download_csv(
        query_id, out_file, _execution_params(parameters), max_age_hours=max_age_hours
    )
    return {"query_id": query_id, "path": str(path), "bytes": Path(path).stat().st_size}


async def execution_status(execution_id: str) -> Dict[str, Any]:
    client = _make_client()
    status = await client.executions.get_execution_status(execution_id)
    return _status_to_dict(status)


async def cancel_execution(execution_id: str) -> Dict[str, Any]:
    client = _make_client()
    cancelled = await client.executions.cancel_execution(execution_id)
    return {"execution_id": execution_id, "cancelled": bool(cancelled)}


async def get_results_page(
    execution_id: str,
    page: int = 1,
    page_size: Optional[int] = None,
) -> Dict[str, Any]:
    """Random-access page of a completed execution.

    Paginators are kept in the session cache so repeated calls for the same
    execution and page size reuse already fetched pages.
    """
    cfg = DuneConfig.from_env()
    sessions = _get_sessions(cfg)
    effective_size, cap_applied = _cap_int(page_size or cfg.page_size, cfg.max_rows_returned)

    key = (execution_id, effective_size)
    paginator = sessions.get(key)
    reused = paginator is not None
    if paginator is None:
        client = _make_client()
        paginator = await client.paginate(execution_id, effective_size)
        sessions.put(key, paginator)

    result = await paginator.get_page(page)
    out: Dict[str, Any] = {
        "execution_id": execution_id,
        "page": page,
        "max_page": paginator.max_page(),
        "page_size": effective_size,
        "total_rows": paginator.total_rows,
        "rows": result.values if result is not None else [],
        "meta": {
            "session_reused": reused,
            "requested_page_size": page_size,
            "cap_applied": bool(cap_applied),
        },
    }
    if result is None:
        out["error"] = _make_error(
            "PAGE_OUT_OF_RANGE",
            f"Page {page} is outside [1, {paginator.max_page()}].",
        )
    return out


# ---------------------------------------------------------------------------
# Diagnostics
# ---------------------------------------------------------------------------


def _collect_config_info() -> Dict[str, Any]:
    """Redacted snapshot of configuration from env."""
    cfg = DuneConfig.from_env()
    return {
        "base_url": cfg.base_url,
        "api_version": cfg.api_version,
        "api_key_configured": bool(cfg.api_key),
        "mock_mode": bool(cfg.mock_mode),
        "defaults": {
            "poll_interval_seconds": cfg.poll_interval_seconds,
            "max_age_hours": cfg.max_age_hours,
            "batch_size": cfg.batch_size,
            "page_size": cfg.page_size,
        },
        "limits": {
            "max_rows_returned": cfg.max_rows_returned,
            "request_timeout_seconds": cfg.request_timeout_seconds,
        },
    }


async def diagnostics() -> Dict[str, Any]:
    started = time.time()
    cfg = DuneConfig.from_env()
    config_info = _collect_config_info()
    sessions = _get_sessions(cfg)

    checks: List[Dict[str, Any]] = []
    overall_ok = True

    t0 = time.time()
    client = _make_client()
    checks.append(
        {"name": "client_init", "ok": True, "error": None, "elapsed_ms": int((time.time() - t0) * 1000)}
    )

    t0 = time.time()
    ok_ping = await client.ping()
    if not ok_ping:
        overall_ok = False
    checks.append(
        {
            "name": "ping",
            "ok": bool(ok_ping),
            "error": None if ok_ping else _make_error("CONFIG_ERROR", "DUNE_API_KEY is not set."),
            "elapsed_ms": int((time.time() - t0) * 1000),
        }
    )

    return {
        "ok": overall_ok,
        "mock_mode": config_info["mock_mode"],
        "config": config_info,
        "checks": checks,
        "meta": {
            "elapsed_ms": int((time.time() - started) * 1000),
            "sessions": sessions.stats(),
        },
    }


# ---------------------------------------------------------------------------
# MCP tool registration
# ---------------------------------------------------------------------------


def register_tools(server: Any) -> None:
    """Register MCP tools on an MCP Server-like instance."""
    if server is None or not hasattr(server, "tool"):
        raise ValueError(
            "register_tools(server) expects an MCP Server-like object that exposes a .tool() decorator."
        )

    @server.tool(name="dune_ping", description="Basic health check for the Dune Query MCP server.")
    async def mcp_ping() -> Dict[str, Any]:
        return await ping()

    @server.tool(
        name="dune_run_query",
        description="Execute a saved Dune query, wait for completion and return its rows.",
    )
    async def mcp_run_query(
        query_id: int,
        parameters: Optional[Dict[str, Any]] = None,
        performance: str = "medium",
        max_rows: Optional[int] = None,
    ) -> Dict[str, Any]:
        return await run_query(
            query_id=query_id, parameters=parameters, performance=performance, max_rows=max_rows
        )

    @server.tool(
        name="dune_run_query_csv",
        description="Execute a saved Dune query, wait for completion and return the result as CSV text.",
    )
    async def mcp_run_query_csv(
        query_id: int,
        parameters: Optional[Dict[str, Any]] = None,
        performance: str = "medium",
        max_rows: Optional[int] = None,
    ) -> Dict[str, Any]:
        return await run_query_csv(
            query_id=query_id, parameters=parameters, performance=performance, max_rows=max_rows
        )

    @server.tool(
        name="dune_get_latest_result",
        description="Return the last stored result of a query, re-running it if older than max_age_hours.",
    )
    async def mcp_get_latest_result(
        query_id: int,
        parameters: Optional[Dict[str, Any]] = None,
        max_age_hours: Optional[float] = None,
        max_rows: Optional[int] = None,
    ) -> Dict[str, Any]:
        return await get_latest_result(
            query_id=query_id, parameters=parameters, max_age_hours=max_age_hours, max_rows=max_rows
        )

    @server.tool(
        name="dune_download_csv",
        description="Save the latest CSV result of a query to a local file.",
    )
    async def mcp_download_csv(
        query_id: int,
        out_file: str,
        parameters: Optional[Dict[str, Any]] = None,
        max_age_hours: Optional[float] = None,
    ) -> Dict[str, Any]:
        return await download_csv(
            query_id=query_id, out_file=out_file, parameters=parameters, max_age_hours=max_age_hours
        )

    @server.tool(name="dune_execution_status", description="Get the status of a query execution.")
    async def mcp_execution_status(execution_id: str) -> Dict[str, Any]:
        return await execution_status(execution_id=execution_id)

    @server.tool(name="dune_cancel_execution", description="Ask Dune to cancel a running execution.")
    async def mcp_cancel_execution(execution_id: str) -> Dict[str, Any]:
        return await cancel_execution(execution_id=execution_id)

    @server.tool(
        name="dune_get_results_page",
        description="Fetch one fixed-size page of a completed execution's results (random access, cached).",
    )
    async def mcp_get_results_page(
        execution_id: str,
        page: int = 1,
        page_size: Optional[int] = None,
    ) -> Dict[str, Any]:
        return await get_results_page(execution_id=execution_id, page=page, page_size=page_size)

    @server.tool(
        name="dune_diagnostics",
        description="Run high-level health checks against the MCP server configuration.",
    )
    async def mcp_diagnostics() -> Dict[str, Any]:
        return await diagnostics()
