# Dune Query MCP Server
# File: tests/conftest.py
# Version: v1

"""Shared fixtures: an in-memory Dune API served through httpx.MockTransport."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx
import pytest

from dune_mcp.config import DuneConfig
from dune_mcp.execution import DuneClient
from dune_mcp.tools import tasks

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
BASE = "https://api.dune.test/api/v1"


class FakeDuneAPI:
    """Route table keyed by (method, path). Unknown routes answer 404."""

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.routes: Dict[Tuple[str, str], Any] = {}

    def add(self, method: str, path: str, responder: Any) -> None:
        """``responder`` is a JSON body, an httpx.Response or a callable(request)."""
        self.routes[(method, "/api/v1/" + path.lstrip("/"))] = responder

    def calls(self, method: str, path: str) -> int:
        full = "/api/v1/" + path.lstrip("/")
        return sum(1 for r in self.requests if r.method == method and r.url.path == full)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        responder = self.routes.get((request.method, request.url.path))
        if responder is None:
            return httpx.Response(404, json={"error": f"no route {request.url.path}"})
        if callable(responder):
            responder = responder(request)
        if isinstance(responder, httpx.Response):
            return responder
        return httpx.Response(200, json=responder)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


def make_results_payload(
    execution_id: str,
    rows: List[Dict[str, Any]],
    *,
    query_id: int = 123,
    total_row_count: Optional[int] = None,
    next_uri: Optional[str] = None,
    next_offset: Optional[int] = None,
    ended_at: Optional[str] = "2024-06-01T11:00:00.123456Z",
    columns: Optional[List[str]] = None,
) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "execution_id": execution_id,
        "query_id": query_id,
        "state": "QUERY_STATE_COMPLETED",
        "is_execution_finished": True,
        "submitted_at": "2024-06-01T10:59:00Z",
        "execution_started_at": "2024-06-01T10:59:01Z",
        "execution_ended_at": ended_at,
        "result": {
            "rows": rows,
            "metadata": {
                "column_names": columns or (list(rows[0].keys()) if rows else []),
                "row_count": len(rows),
                "result_set_bytes": 10 * len(rows),
                "datapoint_count": len(rows),
                "total_row_count": len(rows) if total_row_count is None else total_row_count,
                "total_result_set_bytes": 1000,
                "execution_time_millis": 42,
                "pending_time_millis": 7,
            },
        },
    }
    if next_uri is not None:
        payload["next_uri"] = next_uri
        payload["next_offset"] = next_offset
    return payload


def make_status_payload(execution_id: str, state: str, query_id: int = 123) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "execution_id": execution_id,
        "query_id": query_id,
        "state": state,
        "submitted_at": "2024-06-01T10:59:00Z",
    }
    if state == "QUERY_STATE_COMPLETED":
        payload["execution_ended_at"] = "2024-06-01T11:00:00Z"
        payload["result_metadata"] = {
            "column_names": ["n"],
            "row_count": 0,
            "total_row_count": 6,
        }
    if state == "QUERY_STATE_FAILED":
        payload["error"] = {
            "type": "FAILED_TYPE_EXECUTION_FAILED",
            "message": "line 1:8: Column 'x' cannot be resolved",
            "metadata": {"line": 1, "column": 8},
        }
    return payload


@pytest.fixture
def api() -> FakeDuneAPI:
    return FakeDuneAPI()


@pytest.fixture
def config() -> DuneConfig:
    return DuneConfig(
        api_key="test-key",
        base_url="https://api.dune.test/api",
        poll_interval_seconds=0,
    )


@pytest.fixture
def dune(api: FakeDuneAPI, config: DuneConfig) -> DuneClient:
    client = DuneClient.from_config(config, http_transport=api.transport)
    client.executions.clock = lambda: NOW
    return client


@pytest.fixture
def results_payload() -> Callable[..., Dict[str, Any]]:
    return make_results_payload


@pytest.fixture
def status_payload() -> Callable[..., Dict[str, Any]]:
    return make_status_payload


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep tests independent of the developer's DUNE_* environment."""
    for name in (
        "DUNE_API_KEY",
        "DUNE_BASE_URL",
        "DUNE_API_VERSION",
        "DUNE_REQUEST_TIMEOUT_SECONDS",
        "DUNE_MAX_AGE_HOURS",
        "DUNE_BATCH_SIZE",
        "DUNE_LOG_LEVEL",
        "DUNE_MOCK_MODE",
        "DUNE_POLL_INTERVAL_SECONDS",
        "DUNE_MAX_ROWS_RETURNED",
        "DUNE_PAGE_SIZE",
        "DUNE_CACHE_TTL_SECONDS",
        "DUNE_CACHE_MAX_ENTRIES",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(tasks, "_MOCK_CLIENT", None)
    monkeypatch.setattr(tasks, "_SESSIONS", None)
    monkeypatch.setattr(tasks, "_SESSIONS_SIGNATURE", None)
