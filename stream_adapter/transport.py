"""
HTTP transport for the stream adapter.

This module wraps a pooled httpx.AsyncClient with:
- Configurable timeout and connection pool limits
- Streaming POST delivering the response body as raw byte chunks
- JSON GET for the models endpoint
- Mapping of httpx errors and non-success statuses onto TransportError

Requests are never retried; a transport failure is terminal for the call.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from typing import Any

import httpx
from pydantic import BaseModel

from .errors import TransportError

logger = logging.getLogger(__name__)

ERROR_BODY_LIMIT = 500


class HttpConfig(BaseModel):
    """Configuration for the HTTP transport."""

    # Timeouts (seconds)
    timeout: float = 60.0
    connect_timeout: float = 10.0

    # Connection pool
    max_keepalive_connections: int = 20
    max_connections: int = 100
    keepalive_expiry: float = 30.0

    user_agent: str = "stream-adapter/0.1"


def _error_message(status_code: int, body: bytes) -> str:
    """Extract a readable message from an error response body."""
    try:
        data = json.loads(body)
    except ValueError:
        text = body.decode("utf-8", errors="replace")[:ERROR_BODY_LIMIT]
        return f"HTTP {status_code}: {text}" if text else f"HTTP {status_code}"

    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return f"HTTP {status_code}: {error['message']}"
        if isinstance(error, str) and error:
            return f"HTTP {status_code}: {error}"
        if data.get("message"):
            return f"HTTP {status_code}: {data['message']}"
    return f"HTTP {status_code}: {body[:ERROR_BODY_LIMIT].decode('utf-8', 'replace')}"


class HttpTransport:
    """
    Thin wrapper over httpx.AsyncClient used by the completion call and the
    model registry.
    """

    def __init__(
        self,
        config: HttpConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize the transport.

        Args:
            config: HTTP configuration settings
            transport: Optional httpx transport (tests pass a MockTransport)
        """
        self.config = config or HttpConfig()

        self.http = httpx.AsyncClient(
            timeout=httpx.Timeout(
                self.config.timeout, connect=self.config.connect_timeout
            ),
            headers={"User-Agent": self.config.user_agent},
            limits=httpx.Limits(
                max_keepalive_connections=self.config.max_keepalive_connections,
                max_connections=self.config.max_connections,
                keepalive_expiry=self.config.keepalive_expiry,
            ),
            transport=transport,
        )

    async def stream_post(
        self,
        url: str,
        payload: dict[str, Any],
        headers: dict[str, str] | None = None,
    ) -> AsyncIterator[bytes]:
        """
        POST a JSON payload and yield the response body as byte chunks.

        Closing the generator early (cancellation) closes the response and
        releases the connection.

        Raises:
            TransportError: on connection failure or a non-success status.
        """
        logger.debug("POST %s (streaming)", url)
        try:
            async with self.http.stream(
                "POST", url, json=payload, headers=headers
            ) as response:
                if response.status_code >= 400:
                    body = await response.aread()
                    raise TransportError(
                        _error_message(response.status_code, body),
                        status_code=response.status_code,
                    )
                async for chunk in response.aiter_bytes():
                    if chunk:
                        yield chunk
        except httpx.TimeoutException as e:
            raise TransportError(f"Request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise TransportError(f"HTTP error: {e}") from e

    async def get_json(
        self,
        url: str,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """GET a URL and return its decoded JSON body."""
        try:
            response = await self.http.get(url, headers=headers)
        except httpx.TimeoutException as e:
            raise TransportError(f"Request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise TransportError(f"HTTP error: {e}") from e

        if response.status_code >= 400:
            raise TransportError(
                _error_message(response.status_code, response.content),
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as e:
            raise TransportError(f"Invalid JSON from {url}: {e}") from e

    async def close(self) -> None:
        """Close the HTTP client and clean up resources."""
        await self.http.aclose()

    async def __aenter__(self) -> HttpTransport:
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()


def create_http_config_from_dict(config_dict: dict[str, Any]) -> HttpConfig:
    """
    Create HttpConfig from a dictionary (e.g., from YAML config).

    Args:
        config_dict: Dictionary containing an optional ``http`` section

    Returns:
        HttpConfig instance with validated settings
    """
    http_config = config_dict.get("http") or {}
    return HttpConfig.model_validate(http_config)
