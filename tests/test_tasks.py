# Dune Query MCP Server
# File: tests/test_tasks.py
# Version: v1

"""Library-style tool tasks, driven through the in-memory mock backend."""

from __future__ import annotations

import inspect
from typing import Any, Callable, Dict

import pytest

from dune_mcp.config import THREE_MONTHS_IN_HOURS
from dune_mcp.errors import IncompleteTerminalStateError, TransportError
from dune_mcp.tools import tasks


@pytest.fixture
def mock_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    monkeypatch.setenv("DUNE_MOCK_MODE", "1")
    monkeypatch.setenv("DUNE_POLL_INTERVAL_SECONDS", "0")
    return monkeypatch


@pytest.mark.asyncio
async def test_ping_reflects_api_key(monkeypatch: pytest.MonkeyPatch) -> None:
    assert await tasks.ping() == {"ok": False}

    monkeypatch.setenv("DUNE_API_KEY", "k")
    assert await tasks.ping() == {"ok": True}


@pytest.mark.asyncio
async def test_ping_in_mock_mode(mock_env) -> None:
    assert await tasks.ping() == {"ok": True}


@pytest.mark.asyncio
async def test_run_query_returns_all_rows_across_pages(mock_env) -> None:
    out = await tasks.run_query(1)

    assert out["state"] == "QUERY_STATE_COMPLETED"
    assert out["execution_id"].startswith("01MOCK-Q1-")
    assert out["execution_id"] != "01MOCK-Q1-0"
    assert out["columns"] == ["number", "hash"]
    assert [r["number"] for r in out["rows"]] == list(range(1, 10))
    assert out["meta"]["total_row_count"] == 9
    assert out["meta"]["truncated"] is False
    assert out["meta"]["cap_applied"] is False


@pytest.mark.asyncio
async def test_run_query_caps_rows(mock_env) -> None:
    mock_env.setenv("DUNE_MAX_ROWS_RETURNED", "5")

    out = await tasks.run_query(1, max_rows=50)

    assert len(out["rows"]) == 5
    assert out["meta"]["row_count"] == 9
    assert out["meta"]["truncated"] is True
    assert out["meta"]["requested_rows"] == 50
    assert out["meta"]["effective_rows"] == 5
    assert out["meta"]["cap_applied"] is True


@pytest.mark.asyncio
async def test_run_query_unknown_query_propagates(mock_env) -> None:
    with pytest.raises(TransportError) as excinfo:
        await tasks.run_query(999)
    assert excinfo.value.status_code == 404


@pytest.mark.asyncio
async def test_run_query_csv_has_single_header(mock_env) -> None:
    out = await tasks.run_query_csv(2, max_rows=2)

    assert out["csv"] == "symbol,price\nETH,3100.5\nBTC,64000.0\n"
    assert out["meta"]["row_count"] == 3
    assert out["meta"]["truncated"] is True


@pytest.mark.asyncio
async def test_get_latest_result_uses_fresh_history(mock_env) -> None:
    out = await tasks.get_latest_result(2)

    assert out["execution_id"] == "01MOCK-Q2-0"
    assert len(out["rows"]) == 3


@pytest.mark.asyncio
async def test_get_latest_result_reruns_when_too_old(mock_env) -> None:
    # the seeded run ended one hour ago
    out = await tasks.get_latest_result(2, max_age_hours=0.5)

    assert out["execution_id"] != "01MOCK-Q2-0"


@pytest.mark.asyncio
async def test_download_csv_writes_file(mock_env, tmp_path) -> None:
    target = tmp_path / "prices.csv"

    out = await tasks.download_csv(2, str(target))

    assert out["path"] == str(target)
    assert target.read_text(encoding="utf-8").splitlines()[0] == "symbol,price"
    assert out["bytes"] == target.stat().st_size


@pytest.mark.asyncio
async def test_execution_status_and_cancel(mock_env) -> None:
    client = tasks._make_client()
    handle = await client.executions.execute_query(1)

    status = await tasks.execution_status(handle.execution_id)
    assert status["state"] == "QUERY_STATE_PENDING"
    assert status["is_terminal"] is False

    assert await tasks.cancel_execution(handle.execution_id) == {
        "execution_id": handle.execution_id,
        "cancelled": True,
    }
    status = await tasks.execution_status(handle.execution_id)
    assert status["state"] == "QUERY_STATE_CANCELLED"
    assert status["is_terminal"] is True


@pytest.mark.asyncio
async def test_cancelled_run_raises_incomplete_state(mock_env, monkeypatch) -> None:
    client = tasks._make_client()
    original = client.executions.get_execution_status

    async def cancel_then_poll(execution_id: str):
        await client.executions.cancel_execution(execution_id)
        return await original(execution_id)

    monkeypatch.setattr(client.executions, "get_execution_status", cancel_then_poll)

    with pytest.raises(IncompleteTerminalStateError, match="QUERY_STATE_CANCELLED"):
        await client.run_query(1)


@pytest.mark.asyncio
async def test_get_results_page_reuses_session(mock_env) -> None:
    first = await tasks.get_results_page("01MOCK-Q1-0", page=1, page_size=2)

    assert first["max_page"] == 5
    assert first["total_rows"] == 9
    assert [r["number"] for r in first["rows"]] == [1, 2]
    assert first["meta"]["session_reused"] is False

    last = await tasks.get_results_page("01MOCK-Q1-0", page=5, page_size=2)
    assert [r["number"] for r in last["rows"]] == [9]
    assert last["meta"]["session_reused"] is True

    out_of_range = await tasks.get_results_page("01MOCK-Q1-0", page=6, page_size=2)
    assert out_of_range["rows"] == []
    assert out_of_range["error"]["code"] == "PAGE_OUT_OF_RANGE"

    # a different page size is a different session
    other = await tasks.get_results_page("01MOCK-Q1-0", page=1, page_size=3)
    assert other["meta"]["session_reused"] is False
    assert other["max_page"] == 3


@pytest.mark.asyncio
async def test_get_results_page_without_cache(mock_env) -> None:
    mock_env.setenv("DUNE_CACHE_TTL_SECONDS", "0")

    await tasks.get_results_page("01MOCK-Q1-0", page=1, page_size=2)
    again = await tasks.get_results_page("01MOCK-Q1-0", page=1, page_size=2)

    assert again["meta"]["session_reused"] is False


@pytest.mark.asyncio
async def test_get_results_page_caps_page_size(mock_env) -> None:
    mock_env.setenv("DUNE_MAX_ROWS_RETURNED", "4")

    out = await tasks.get_results_page("01MOCK-Q1-0", page=1, page_size=100)

    assert out["page_size"] == 4
    assert out["meta"]["cap_applied"] is True
    assert len(out["rows"]) == 4


def test_cap_int() -> None:
    assert tasks._cap_int(None, 10) == (10, False)
    assert tasks._cap_int(5, 10) == (5, False)
    assert tasks._cap_int(50, 10) == (10, True)
    assert tasks._cap_int(0, 10) == (1, True)
    assert tasks._cap_int("oops", 10) == (1, False)  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_diagnostics_reports_missing_key() -> None:
    out = await tasks.diagnostics()

    assert out["ok"] is False
    assert out["config"]["api_key_configured"] is False
    names = [c["name"] for c in out["checks"]]
    assert names == ["client_init", "ping"]
    ping_check = out["checks"][1]
    assert ping_check["error"]["code"] == "CONFIG_ERROR"
    assert "sessions" in out["meta"]


@pytest.mark.asyncio
async def test_diagnostics_ok_in_mock_mode(mock_env) -> None:
    out = await tasks.diagnostics()

    assert out["ok"] is True
    assert out["mock_mode"] is True
    assert all(c["ok"] for c in out["checks"])


class DummyServer:
    def __init__(self) -> None:
        self.tools: Dict[str, Callable[..., Any]] = {}

    def tool(self, name: str, description: str):
        def decorator(fn):
            self.tools[name] = fn
            return fn

        return decorator


@pytest.mark.asyncio
async def test_register_tools_wires_every_tool(mock_env) -> None:
    server = DummyServer()
    tasks.register_tools(server)

    assert set(server.tools) == {
        "dune_ping",
        "dune_run_query",
        "dune_run_query_csv",
        "dune_get_latest_result",
        "dune_download_csv",
        "dune_execution_status",
        "dune_cancel_execution",
        "dune_get_results_page",
        "dune_diagnostics",
    }
    out = await server.tools["dune_run_query"](query_id=2, max_rows=1)
    assert len(out["rows"]) == 1


def test_register_tools_rejects_non_server() -> None:
    with pytest.raises(ValueError):
        tasks.register_tools(object())


@pytest.mark.asyncio
async def test_mock_latest_results_default_age_is_three_months(mock_env) -> None:
    client = tasks._make_client()

    latest = await client.executions.get_last_execution_results(2)

    assert latest.is_expired is False
    assert latest.results.execution_id == "01MOCK-Q2-0"
    default = inspect.signature(tasks.MockExecutionClient.get_last_execution_results).parameters[
        "expiry_age_hours"
    ].default
    assert default == THREE_MONTHS_IN_HOURS


@pytest.mark.asyncio
async def test_diagnostics_always_reports_both_checks(monkeypatch) -> None:
    monkeypatch.setenv("DUNE_API_KEY", "k")

    out = await tasks.diagnostics()

    assert out["ok"] is True
    assert [c["name"] for c in out["checks"]] == ["client_init", "ping"]
    assert out["checks"][0]["error"] is None
