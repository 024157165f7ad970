# Dune Query MCP Server
# File: models.py
# Version: v1

"""Domain models used by the Dune Query MCP server.

Everything here mirrors the JSON documents returned by the Dune execution
API. Each model has a ``from_dict`` constructor so transport code never has
to poke at raw payloads.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from .config import MAX_NUM_ROWS_PER_BATCH


class ExecutionState(str, Enum):
    """Lifecycle states of a query execution."""

    PENDING = "QUERY_STATE_PENDING"
    EXECUTING = "QUERY_STATE_EXECUTING"
    COMPLETED = "QUERY_STATE_COMPLETED"
    CANCELLED = "QUERY_STATE_CANCELLED"
    FAILED = "QUERY_STATE_FAILED"
    EXPIRED = "QUERY_STATE_EXPIRED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset(
    {
        ExecutionState.COMPLETED,
        ExecutionState.CANCELLED,
        ExecutionState.FAILED,
        ExecutionState.EXPIRED,
    }
)


class QueryEngine(str, Enum):
    """Engine tier the execution runs on. Large costs twice the credits."""

    MEDIUM = "medium"
    LARGE = "large"


class ParameterType(str, Enum):
    # Text fields may also be used for varbinary data.
    TEXT = "text"
    NUMBER = "number"
    DATE = "date"
    ENUM = "enum"


# ---------------------------------------------------------------------------
# Timestamp helpers
# ---------------------------------------------------------------------------

_FRACTION_RE = re.compile(r"\.(\d+)")


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an API timestamp into a timezone-aware datetime.

    Accepts a trailing ``Z`` and fractional seconds of any precision
    (the API sometimes reports nanoseconds).
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    text = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)

    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def age_in_hours(timestamp: Union[datetime, str], now: Optional[datetime] = None) -> float:
    """Hours elapsed between ``timestamp`` and ``now`` (defaults to current UTC)."""
    then = parse_timestamp(timestamp)
    if then is None:
        raise ValueError("age_in_hours() requires a timestamp")
    current = now or datetime.now(timezone.utc)
    if current.tzinfo is None:
        current = current.replace(tzinfo=timezone.utc)
    return (current - then).total_seconds() / 3600.0


def _opt_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    return int(value)


# ---------------------------------------------------------------------------
# Query parameters & request arguments
# ---------------------------------------------------------------------------


@dataclass
class QueryParameter:
    """A named query parameter. Values always travel as strings."""

    type: ParameterType
    name: str
    value: str

    def __post_init__(self) -> None:
        self.type = ParameterType(self.type)
        self.value = str(self.value)

    @classmethod
    def text(cls, name: str, value: str) -> "QueryParameter":
        return cls(ParameterType.TEXT, name, value)

    @classmethod
    def number(cls, name: str, value: Union[str, int, float]) -> "QueryParameter":
        return cls(ParameterType.NUMBER, name, str(value))

    @classmethod
    def date(cls, name: str, value: Union[str, date, datetime]) -> "QueryParameter":
        if isinstance(value, datetime):
            value = value.strftime("%Y-%m-%d %H:%M:%S")
        elif isinstance(value, date):
            value = value.strftime("%Y-%m-%d 00:00:00")
        return cls(ParameterType.DATE, name, value)

    @classmethod
    def enum(cls, name: str, value: str) -> "QueryParameter":
        return cls(ParameterType.ENUM, name, str(value))

    @staticmethod
    def unravel(params: Optional[Iterable["QueryParameter"]]) -> Dict[str, str]:
        """Collapse a parameter list into the ``{name: value}`` mapping the API expects."""
        return {p.name: p.value for p in params or []}


@dataclass
class ExecutionParams:
    """Optional parameters for a query execution."""

    query_parameters: List[QueryParameter] = field(default_factory=list)
    performance: QueryEngine = QueryEngine.MEDIUM

    def payload(self) -> Dict[str, Any]:
        return {
            "query_parameters": QueryParameter.unravel(self.query_parameters),
            "performance": QueryEngine(self.performance).value,
        }


@dataclass
class GetResultParams:
    """Arguments accepted by the results endpoints.

    ``limit``/``offset`` paginate, ``sample_count`` returns a random sample
    and is incompatible with pagination and ``filters``. ``filters`` and
    ``sort_by`` are SQL-like WHERE / ORDER BY expressions evaluated by the
    service.
    """

    limit: Optional[int] = None
    offset: Optional[int] = None
    sample_count: Optional[int] = None
    filters: Optional[str] = None
    sort_by: Union[Sequence[str], str, None] = None
    columns: Union[Sequence[str], str, None] = None
    query_parameters: List[QueryParameter] = field(default_factory=list)

    def build(self) -> Dict[str, Any]:
        """Validate and render as HTTP query parameters (``None`` values dropped)."""
        if self.sample_count is not None and (
            self.limit is not None or self.offset is not None or self.filters is not None
        ):
            raise ValueError("sampling cannot be combined with filters or pagination")

        limit = self.limit
        if limit is None and self.sample_count is None:
            limit = MAX_NUM_ROWS_PER_BATCH

        columns = self.columns
        if columns is not None:
            if isinstance(columns, str):
                columns = columns.split(",")
            columns = ",".join('"' + c.replace('"', '\\"') + '"' for c in columns)

        sort_by = self.sort_by
        if sort_by is not None and not isinstance(sort_by, str):
            sort_by = ",".join(sort_by)

        rendered: Dict[str, Any] = {
            "limit": limit,
            "offset": self.offset,
            "sample_count": self.sample_count,
            "filters": self.filters,
            "sort_by": sort_by,
            "columns": columns,
        }
        out = {k: v for k, v in rendered.items() if v is not None}
        for name, value in QueryParameter.unravel(self.query_parameters).items():
            out[f"params.{name}"] = value
        return out


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ExecutionResponse:
    """Handle returned by a query submission."""

    execution_id: str
    state: ExecutionState
    query_id: Optional[int] = None

    @classmethod
    def from_dict(cls, payload: Dict[str, Any], query_id: Optional[int] = None) -> "ExecutionResponse":
        return cls(
            execution_id=str(payload["execution_id"]),
            state=ExecutionState(payload.get("state", ExecutionState.PENDING)),
            query_id=query_id,
        )


@dataclass
class ResultMetadata:
    """Metadata attached to a results page.

    ``row_count``, ``result_set_bytes`` and ``datapoint_count`` describe the
    current page only; the ``total_*`` fields describe the whole result.
    """

    column_names: List[str] = field(default_factory=list)
    row_count: int = 0
    result_set_bytes: int = 0
    datapoint_count: int = 0
    total_row_count: int = 0
    total_result_set_bytes: int = 0
    execution_time_millis: int = 0
    pending_time_millis: int = 0

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "ResultMetadata":
        return cls(
            column_names=list(payload.get("column_names") or []),
            row_count=int(payload.get("row_count") or 0),
            result_set_bytes=int(payload.get("result_set_bytes") or 0),
            datapoint_count=int(payload.get("datapoint_count") or 0),
            total_row_count=int(payload.get("total_row_count") or 0),
            total_result_set_bytes=int(payload.get("total_result_set_bytes") or 0),
            execution_time_millis=int(payload.get("execution_time_millis") or 0),
            pending_time_millis=int(payload.get("pending_time_millis") or 0),
        )


@dataclass
class ErrorResult:
    type: str
    message: str
    line: Optional[int] = None
    column: Optional[int] = None

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "ErrorResult":
        meta = payload.get("metadata") or {}
        return cls(
            type=str(payload.get("type", "")),
            message=str(payload.get("message", "")),
            line=_opt_int(meta.get("line")),
            column=_opt_int(meta.get("column")),
        )


@dataclass
class ExecutionStatus:
    """Status of an execution. ``result_metadata`` is only set once COMPLETED."""

    execution_id: str
    query_id: int
    state: ExecutionState
    submitted_at: Optional[datetime] = None
    execution_started_at: Optional[datetime] = None
    execution_ended_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    queue_position: Optional[int] = None
    result_metadata: Optional[ResultMetadata] = None
    error: Optional[ErrorResult] = None

    # Raw JSON payload from the API, for debugging / advanced use.
    raw: Optional[Dict[str, Any]] = None

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "ExecutionStatus":
        state = ExecutionState(payload["state"])
        metadata = payload.get("result_metadata")
        error = payload.get("error")
        return cls(
            execution_id=str(payload["execution_id"]),
            query_id=int(payload.get("query_id") or 0),
            state=state,
            submitted_at=parse_timestamp(payload.get("submitted_at")),
            execution_started_at=parse_timestamp(payload.get("execution_started_at")),
            execution_ended_at=parse_timestamp(payload.get("execution_ended_at")),
            expires_at=parse_timestamp(payload.get("expires_at")),
            cancelled_at=parse_timestamp(payload.get("cancelled_at")),
            queue_position=_opt_int(payload.get("queue_position")),
            result_metadata=(
                ResultMetadata.from_dict(metadata)
                if state is ExecutionState.COMPLETED and metadata
                else None
            ),
            error=ErrorResult.from_dict(error) if error else None,
            raw=payload,
        )


@dataclass
class ExecutionResult:
    """Rows of a results page plus their metadata."""

    rows: List[Dict[str, Any]]
    metadata: ResultMetadata

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "ExecutionResult":
        return cls(
            rows=[r for r in payload.get("rows") or [] if isinstance(r, dict)],
            metadata=ResultMetadata.from_dict(payload.get("metadata") or {}),
        )


@dataclass
class ResultsResponse:
    """One page of JSON results, or the concatenation of all pages.

    ``next_uri`` is set iff more rows remain beyond this page.
    """

    execution_id: str
    query_id: int
    state: ExecutionState
    is_execution_finished: bool = False
    submitted_at: Optional[datetime] = None
    execution_started_at: Optional[datetime] = None
    execution_ended_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    next_offset: Optional[int] = None
    next_uri: Optional[str] = None
    result: Optional[ExecutionResult] = None
    error: Optional[ErrorResult] = None

    @property
    def rows(self) -> List[Dict[str, Any]]:
        return self.result.rows if self.result else []

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "ResultsResponse":
        result = payload.get("result")
        error = payload.get("error")
        return cls(
            execution_id=str(payload["execution_id"]),
            query_id=int(payload.get("query_id") or 0),
            state=ExecutionState(payload["state"]),
            is_execution_finished=bool(payload.get("is_execution_finished", False)),
            submitted_at=parse_timestamp(payload.get("submitted_at")),
            execution_started_at=parse_timestamp(payload.get("execution_started_at")),
            execution_ended_at=parse_timestamp(payload.get("execution_ended_at")),
            expires_at=parse_timestamp(payload.get("expires_at")),
            cancelled_at=parse_timestamp(payload.get("cancelled_at")),
            next_offset=_opt_int(payload.get("next_offset")),
            next_uri=payload.get("next_uri") or None,
            result=ExecutionResult.from_dict(result) if result else None,
            error=ErrorResult.from_dict(error) if error else None,
        )


@dataclass
class CSVResponse:
    """A page of CSV results. The first line of ``data`` is the header row."""

    data: str
    next_uri: Optional[str] = None
    next_offset: Optional[int] = None


@dataclass
class LatestResult:
    """Last execution results of a query plus the staleness verdict."""

    results: ResultsResponse
    is_expired: bool
