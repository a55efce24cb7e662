"""
Shared plumbing for the REST clients.

Both the Asana and the GitHub client talk JSON over a pooled httpx client and
report failures as ``ExternalServiceError`` so that the retry decorator can
classify them uniformly.
"""

from typing import Any

import httpx
import structlog

from asana_sync.exceptions import ExternalServiceError
from asana_sync.utils.connection_pool import HTTPConnectionPool

log = structlog.get_logger(__name__)

# Substrings of resolver/socket errors, mapped to the conventional errno names
_NETWORK_ERROR_MARKERS = (
    ("temporary failure in name resolution", "EAI_AGAIN"),
    ("name or service not known", "ENOTFOUND"),
    ("nodename nor servname", "ENOTFOUND"),
    ("getaddrinfo", "ENOTFOUND"),
    ("network is unreachable", "ENETUNREACH"),
    ("connection refused", "ECONNREFUSED"),
)


def network_error_code(error: httpx.TransportError) -> str:
    """Map an httpx transport failure to a network error code."""
    if isinstance(error, httpx.TimeoutException):
        return "ETIMEDOUT"

    text = str(error).lower()
    for marker, code in _NETWORK_ERROR_MARKERS:
        if marker in text:
            return code

    if isinstance(error, httpx.ConnectError):
        return "ENOTFOUND"
    return "ECONNRESET"


class RestClient:
    """JSON REST client on top of an ``HTTPConnectionPool``.

    Subclasses set ``service`` (used in error messages and logs) and provide
    the pool configuration through ``base_url`` and ``headers``.
    """

    service = "api"

    def __init__(self, base_url: str, headers: dict[str, str], pool: HTTPConnectionPool | None = None):
        self.base_url = base_url
        self.headers = headers
        self._pool = pool

    async def connect(self) -> None:
        """Initialize the connection pool."""
        if self._pool is None:
            self._pool = HTTPConnectionPool(base_url=self.base_url, headers=self.headers)
        await self._pool.initialize()

    async def disconnect(self) -> None:
        """Close the connection pool."""
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def __aenter__(self) -> Any:
        await self.connect()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.disconnect()

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Send a request and raise ``ExternalServiceError`` on failure."""
        if self._pool is None:
            await self.connect()
        assert self._pool is not None

        try:
            response = await self._pool.request(method, path, **kwargs)
        except httpx.TransportError as e:
            error_code = network_error_code(e)
            log.debug("request_transport_error", service=self.service, method=method, path=path, code=error_code)
            raise ExternalServiceError(
                f"{self.service} request failed: {method} {path}: {e}",
                error_code=error_code,
            ) from e

        if response.is_error:
            log.debug(
                "request_failed",
                service=self.service,
                method=method,
                path=path,
                status_code=response.status_code,
            )
            raise ExternalServiceError(
                f"{self.service} API error: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
                response_text=response.text,
            )
        return response
