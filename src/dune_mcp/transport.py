# Dune Query MCP Server
# File: transport.py
# Version: v1

"""Low-level HTTP routing for the Dune API.

One request per call, no retries. Anything that is not a 2xx response
(or a network failure) becomes a TransportError.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx
from httpx import HTTPStatusError, RequestError

from . import __version__
from .auth import ApiKeyAuth
from .config import DuneConfig
from .errors import TransportError

logger = logging.getLogger(__name__)

# Headers used for pagination of CSV results.
NEXT_URI_HEADER = "x-dune-next-uri"
NEXT_OFFSET_HEADER = "x-dune-next-offset"


@dataclass
class Router:
    """Sends GET and POST requests to the Dune API.

    ``http_transport`` lets tests plug in an ``httpx.MockTransport``.
    """

    config: DuneConfig
    auth: ApiKeyAuth
    http_transport: Optional[httpx.AsyncBaseTransport] = None

    def url(self, route: str = "") -> str:
        base_url = self.config.base_url.rstrip("/")
        return f"{base_url}/{self.config.api_version}/{route.lstrip('/')}"

    def _headers(self) -> Dict[str, str]:
        headers = {
            "User-Agent": f"mcp-dune-query-server/{__version__}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        headers.update(self.auth.headers())
        return headers

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=float(self.config.request_timeout_seconds),
            transport=self.http_transport,
        )

    async def request(
        self,
        method: str,
        url: str,
        payload: Optional[Dict[str, Any]] = None,
        raw: bool = False,
    ) -> Any:
        """Send one request and return the decoded JSON body.

        With ``raw=True`` the ``httpx.Response`` itself is returned so the
        caller can read text bodies and response headers.
        """
        headers = self._headers()
        params = None
        body = None
        if method == "GET":
            params = payload or None
        else:
            body = json.dumps(payload or {})

        logger.debug("%s %s params=%s payload=%s", method, url, params, body)

        async with self._client() as http_client:
            try:
                response = await http_client.request(
                    method, url, headers=headers, params=params, content=body
                )
            except RequestError as exc:
                raise TransportError(
                    f"Error calling Dune API at '{url}': {exc}", url=url
                ) from exc

            try:
                response.raise_for_status()
            except HTTPStatusError as exc:
                status = response.status_code
                body_preview = response.text[:500]
                raise TransportError(
                    f"Dune API request {method} '{url}' failed (HTTP {status}). "
                    f"Response snippet: {body_preview}",
                    status_code=status,
                    url=url,
                ) from exc

        if raw:
            return response

        try:
            data = response.json()
        except ValueError as exc:
            raise TransportError(
                f"Dune API at '{url}' returned a non-JSON body "
                f"(HTTP {response.status_code}): {response.text[:500]}",
                status_code=response.status_code,
                url=url,
            ) from exc

        logger.debug("%s %s response=%s", method, url, data)
        return data

    async def get(
        self, route: str, params: Optional[Dict[str, Any]] = None, raw: bool = False
    ) -> Any:
        return await self.request("GET", self.url(route), params, raw=raw)

    async def post(self, route: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        return await self.request("POST", self.url(route), payload)

    async def get_by_url(self, url: str, raw: bool = False) -> Any:
        """Fetch an absolute URL (continuation links) without touching its query."""
        return await self.request("GET", url, raw=raw)
