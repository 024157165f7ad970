# Dune Query MCP Server
# File: tests/test_client_http.py
# Version: v1

"""ExecutionClient against a mocked HTTP layer."""

from __future__ import annotations

import json

import httpx
import pytest

from conftest import BASE
from dune_mcp import __version__
from dune_mcp.auth import ApiKeyAuth
from dune_mcp.client import ExecutionClient
from dune_mcp.config import DuneConfig
from dune_mcp.errors import DuneError, TransportError
from dune_mcp.models import ExecutionState, GetResultParams


@pytest.mark.asyncio
async def test_requests_carry_api_key_and_user_agent(dune, api, status_payload) -> None:
    api.add("GET", "execution/01EXEC/status", status_payload("01EXEC", "QUERY_STATE_EXECUTING"))

    status = await dune.executions.get_execution_status("01EXEC")

    assert status.state is ExecutionState.EXECUTING
    request = api.requests[0]
    assert str(request.url) == f"{BASE}/execution/01EXEC/status"
    assert request.headers["X-Dune-Api-Key"] == "test-key"
    assert request.headers["User-Agent"] == f"mcp-dune-query-server/{__version__}"


@pytest.mark.asyncio
async def test_missing_api_key_fails_before_any_request(api) -> None:
    cfg = DuneConfig(api_key=None, base_url="https://api.dune.test/api")
    client = ExecutionClient(config=cfg, auth=ApiKeyAuth(config=cfg), http_transport=api.transport)

    with pytest.raises(DuneError, match="DUNE_API_KEY"):
        await client.get_execution_status("01EXEC")
    assert api.requests == []


@pytest.mark.asyncio
async def test_execute_query_returns_handle(dune, api) -> None:
    api.add("POST", "query/42/execute", {"execution_id": "01NEW", "state": "QUERY_STATE_PENDING"})

    handle = await dune.executions.execute_query(42)

    assert handle.execution_id == "01NEW"
    assert handle.state is ExecutionState.PENDING
    body = json.loads(api.requests[0].content)
    assert body == {"query_parameters": {}, "performance": "medium"}


@pytest.mark.asyncio
async def test_cancel_execution(dune, api) -> None:
    api.add("POST", "execution/01EXEC/cancel", {"success": True})

    assert await dune.executions.cancel_execution("01EXEC") is True


@pytest.mark.asyncio
async def test_failed_status_carries_error_details(dune, api, status_payload) -> None:
    api.add("GET", "execution/01EXEC/status", status_payload("01EXEC", "QUERY_STATE_FAILED"))

    status = await dune.executions.get_execution_status("01EXEC")

    assert status.is_terminal
    assert status.result_metadata is None
    assert status.error is not None
    assert status.error.type == "FAILED_TYPE_EXECUTION_FAILED"
    assert status.raw is not None and status.raw["state"] == "QUERY_STATE_FAILED"


@pytest.mark.asyncio
async def test_result_params_become_query_string(dune, api, results_payload) -> None:
    api.add("GET", "execution/01EXEC/results", results_payload("01EXEC", [{"a": 1}]))

    await dune.executions.get_execution_results(
        "01EXEC",
        GetResultParams(limit=5, offset=10, columns=["a", "b"], sort_by=["a desc", "b"]),
    )

    params = api.requests[0].url.params
    assert params["limit"] == "5"
    assert params["offset"] == "10"
    assert params["columns"] == '"a","b"'
    assert params["sort_by"] == "a desc,b"
    assert "sample_count" not in params


@pytest.mark.asyncio
async def test_csv_page_reads_pagination_headers(dune, api) -> None:
    api.add(
        "GET",
        "execution/01EXEC/results/csv",
        httpx.Response(
            200,
            text="a\n1\n",
            headers={"x-dune-next-uri": f"{BASE}/next", "x-dune-next-offset": "1"},
        ),
    )

    csv = await dune.executions.get_execution_results_csv("01EXEC")

    assert csv.data == "a\n1\n"
    assert csv.next_uri == f"{BASE}/next"
    assert csv.next_offset == 1


@pytest.mark.asyncio
async def test_last_execution_results_follows_continuations(dune, api, results_payload) -> None:
    api.add(
        "GET",
        "query/7/results",
        results_payload(
            "01EXEC",
            [{"a": 1}],
            query_id=7,
            total_row_count=2,
            next_uri=f"{BASE}/execution/01EXEC/results?offset=1&limit=1",
            next_offset=1,
        ),
    )
    api.add(
        "GET",
        "execution/01EXEC/results",
        results_payload("01EXEC", [{"a": 2}], query_id=7, total_row_count=2),
    )

    latest = await dune.executions.get_last_execution_results(7, GetResultParams(limit=1))

    assert latest.is_expired is False
    assert latest.results.rows == [{"a": 1}, {"a": 2}]
    # continuation URLs are used verbatim
    continuation = api.requests[1]
    assert continuation.url.params["offset"] == "1"
    assert continuation.url.params["limit"] == "1"


@pytest.mark.asyncio
async def test_non_2xx_becomes_transport_error(dune, api) -> None:
    api.add("GET", "execution/01EXEC/status", httpx.Response(429, text="rate limited"))

    with pytest.raises(TransportError) as excinfo:
        await dune.executions.get_execution_status("01EXEC")

    assert excinfo.value.status_code == 429
    assert excinfo.value.url == f"{BASE}/execution/01EXEC/status"
    assert "rate limited" in str(excinfo.value)


@pytest.mark.asyncio
async def test_non_json_body_becomes_transport_error(dune, api) -> None:
    api.add("GET", "execution/01EXEC/status", httpx.Response(200, text="<html>"))

    with pytest.raises(TransportError, match="non-JSON"):
        await dune.executions.get_execution_status("01EXEC")


@pytest.mark.asyncio
async def test_network_failure_becomes_transport_error(config) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = ExecutionClient(
        config=config, auth=ApiKeyAuth(config=config), http_transport=httpx.MockTransport(handler)
    )

    with pytest.raises(TransportError) as excinfo:
        await client.get_execution_status("01EXEC")

    assert excinfo.value.status_code is None
    assert isinstance(excinfo.value.__cause__, httpx.ConnectError)


@pytest.mark.asyncio
async def test_create_and_archive_query(dune, api) -> None:
    api.add("POST", "query", {"query_id": 99})
    api.add("POST", "query/99/archive", {"query_id": 99})

    query_id = await dune.executions.create_query("tmp", "SELECT 1")

    assert query_id == 99
    assert await dune.executions.archive_query(99) is True
