# Dune Query MCP Server
# File: auth.py
# Version: v1

"""API-key authentication for the Dune API."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict

from .config import DuneConfig
from .errors import DuneError

API_KEY_HEADER = "X-Dune-Api-Key"


@dataclass
class ApiKeyAuth:
    """Attaches the opaque Dune API key to every request.

    The key is read once from configuration; there is no token exchange
    and nothing to refresh.
    """

    config: DuneConfig

    def headers(self) -> Dict[str, str]:
        """Return the authentication headers for a single request."""
        if not self.config.api_key:
            raise DuneError(
                "Dune API key is not configured. "
                "Set DUNE_API_KEY before calling the Dune API."
            )
        return {API_KEY_HEADER: self.config.api_key}

    @property
    def configured(self) -> bool:
        return bool(self.config.api_key)
