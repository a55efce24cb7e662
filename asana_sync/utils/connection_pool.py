"""
HTTP connection pooling for API requests.

One pool per remote service (Asana, GitHub, the Asana GitHub integration)
keeps connections alive across the sequential per-task calls of a run. The
underlying ``httpx.AsyncClient`` is created lazily on the first request.
"""

import asyncio
import time
from typing import Any

import httpx
import structlog

from asana_sync import __version__

log = structlog.get_logger(__name__)

USER_AGENT = f"asana-github-sync/{__version__}"

# Connects fail fast; slow Asana writes get the full read timeout
CONNECT_TIMEOUT = 10.0


class HTTPConnectionPool:
    """Lazily created, shared ``httpx.AsyncClient`` for one base URL.

    Args:
        base_url: Service root, e.g. ``https://app.asana.com/api/1.0``
        max_connections: Upper bound on open connections
        max_keepalive_connections: Idle connections kept for reuse
        timeout: Read/write/pool timeout in seconds
        headers: Default headers sent with every request
        transport: Optional transport, mainly for tests
    """

    def __init__(
        self,
        base_url: str,
        max_connections: int = 10,
        max_keepalive_connections: int = 5,
        timeout: float = 30.0,
        headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url
        self.max_connections = max_connections
        self.max_keepalive_connections = max_keepalive_connections
        self.timeout = timeout
        self.headers = {"User-Agent": USER_AGENT, **(headers or {})}
        self.transport = transport
        self._client: httpx.AsyncClient | None = None
        self._lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        return self._client is not None

    async def initialize(self) -> None:
        """Create the client if it does not exist yet."""
        async with self._lock:
            if self._client is not None:
                return

            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                limits=httpx.Limits(
                    max_keepalive_connections=self.max_keepalive_connections,
                    max_connections=self.max_connections,
                ),
                timeout=httpx.Timeout(self.timeout, connect=min(CONNECT_TIMEOUT, self.timeout)),
                http2=self.transport is None,
                headers=self.headers,
                transport=self.transport,
            )
            log.debug("connection_pool_initialized", base_url=self.base_url)

    async def close(self) -> None:
        """Close the client; the next request reopens it."""
        async with self._lock:
            if self._client is None:
                return
            await self._client.aclose()
            self._client = None
            log.debug("connection_pool_closed", base_url=self.base_url)

    async def request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Send a request relative to ``base_url``.

        Transport errors propagate as ``httpx.TransportError``; HTTP error
        statuses are returned, not raised.
        """
        if self._client is None:
            await self.initialize()
        assert self._client is not None

        started = time.monotonic()
        response = await self._client.request(method, path, **kwargs)
        log.debug(
            "http_request",
            method=method,
            url=str(response.request.url),
            status_code=response.status_code,
            elapsed_ms=round((time.monotonic() - started) * 1000),
        )
        return response

    async def post(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.request("POST", path, **kwargs)
