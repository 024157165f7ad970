# Dune Query MCP Server
# File: config.py
# Version: v1

"""Configuration loading for the Dune Query MCP Server."""

from __future__ import annotations

from dataclasses import dataclass
import os

DEFAULT_BASE_URL = "https://api.dune.com/api"

# Seconds between checking execution status.
POLL_FREQUENCY_SECONDS = 1

# Expiry age of old query results (roughly three months).
THREE_MONTHS_IN_HOURS = 2191

# Default maximum number of rows to retrieve per batch of results.
MAX_NUM_ROWS_PER_BATCH = 32_000


def _parse_bool_env(name: str, default: bool = False) -> bool:
    """Parse a boolean-like environment variable.

    Accepts 1/0, true/false, yes/no, on/off (case-insensitive).
    """
    val = os.getenv(name)
    if val is None:
        return default
    return str(val).strip().lower() in {"1", "true", "yes", "on"}


def _parse_int_env(
    name: str,
    default: int,
    min_value: int | None = None,
    max_value: int | None = None,
) -> int:
    """Parse an int environment variable with clamping and safe fallback."""
    raw = os.getenv(name)
    if raw is None or not str(raw).strip():
        value = int(default)
    else:
        try:
            value = int(str(raw).strip())
        except ValueError:
            value = int(default)

    if min_value is not None and value < min_value:
        value = min_value
    if max_value is not None and value > max_value:
        value = max_value

    return value


def _parse_float_env(
    name: str,
    default: float,
    min_value: float | None = None,
    max_value: float | None = None,
) -> float:
    """Float flavour of _parse_int_env (poll intervals may be fractional)."""
    raw = os.getenv(name)
    if raw is None or not str(raw).strip():
        value = float(default)
    else:
        try:
            value = float(str(raw).strip())
        except ValueError:
            value = float(default)

    if min_value is not None and value < min_value:
        value = min_value
    if max_value is not None and value > max_value:
        value = max_value

    return value


@dataclass
class DuneConfig:
    """Configuration values required to talk to the Dune API.

    Every value here is only a default: the client methods accept per-call
    overrides for batch size, poll interval and result age.
    """

    api_key: str | None
    mock_mode: bool = False
    base_url: str = DEFAULT_BASE_URL
    api_version: str = "v1"

    request_timeout_seconds: int = 60

    # Execution lifecycle defaults
    poll_interval_seconds: float = POLL_FREQUENCY_SECONDS
    max_age_hours: float = THREE_MONTHS_IN_HOURS
    batch_size: int = MAX_NUM_ROWS_PER_BATCH

    # MCP tool guardrails
    page_size: int = 100
    max_rows_returned: int = 1000

    # Paginator session cache
    cache_ttl_seconds: int = 300
    cache_max_entries: int = 32

    log_level: str = "WARNING"

    @classmethod
    def from_env(cls) -> "DuneConfig":
        """Create configuration from environment variables."""
        api_key = os.getenv("DUNE_API_KEY")
        base_url = os.getenv("DUNE_BASE_URL") or DEFAULT_BASE_URL
        api_version = os.getenv("DUNE_API_VERSION") or "v1"

        mock_mode = _parse_bool_env("DUNE_MOCK_MODE", default=False)

        request_timeout_seconds = _parse_int_env(
            "DUNE_REQUEST_TIMEOUT_SECONDS", default=60, min_value=1, max_value=600
        )
        poll_interval_seconds = _parse_float_env(
            "DUNE_POLL_INTERVAL_SECONDS",
            default=POLL_FREQUENCY_SECONDS,
            min_value=0,
            max_value=3600,
        )
        max_age_hours = _parse_float_env(
            "DUNE_MAX_AGE_HOURS", default=THREE_MONTHS_IN_HOURS, min_value=0
        )
        batch_size = _parse_int_env(
            "DUNE_BATCH_SIZE",
            default=MAX_NUM_ROWS_PER_BATCH,
            min_value=1,
            max_value=1_000_000,
        )

        page_size = _parse_int_env(
            "DUNE_PAGE_SIZE",
            default=100,
            min_value=1,
            max_value=MAX_NUM_ROWS_PER_BATCH,
        )
        max_rows_returned = _parse_int_env(
            "DUNE_MAX_ROWS_RETURNED", default=1000, min_value=1, max_value=1_000_000
        )

        cache_ttl_seconds = _parse_int_env(
            "DUNE_CACHE_TTL_SECONDS", default=300, min_value=0, max_value=86400
        )
        cache_max_entries = _parse_int_env(
            "DUNE_CACHE_MAX_ENTRIES", default=32, min_value=0, max_value=10000
        )

        log_level = (os.getenv("DUNE_LOG_LEVEL") or "WARNING").strip().upper()

        return cls(
            api_key=api_key,
            mock_mode=mock_mode,
            base_url=base_url,
            api_version=api_version,
            request_timeout_seconds=request_timeout_seconds,
            poll_interval_seconds=poll_interval_seconds,
            max_age_hours=max_age_hours,
            batch_size=batch_size,
            page_size=page_size,
            max_rows_returned=max_rows_returned,
            cache_ttl_seconds=cache_ttl_seconds,
            cache_max_entries=cache_max_entries,
            log_level=log_level,
        )
