"""Tests for asana_sync/utils/connection_pool.py."""

import httpx
import pytest

from asana_sync.utils.connection_pool import USER_AGENT, HTTPConnectionPool


def echo_transport(seen: list[httpx.Request]) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"path": request.url.path})

    return httpx.MockTransport(handler)


class TestHTTPConnectionPool:
    """Tests for HTTPConnectionPool."""

    @pytest.mark.asyncio
    async def test_lazy_client(self) -> None:
        """Should open the client on the first request."""
        seen: list[httpx.Request] = []
        pool = HTTPConnectionPool("https://app.asana.com/api/1.0", transport=echo_transport(seen))

        assert pool.is_open is False
        response = await pool.request("GET", "/tasks/2001")

        assert pool.is_open is True
        assert response.json() == {"path": "/api/1.0/tasks/2001"}
        await pool.close()
        assert pool.is_open is False

    @pytest.mark.asyncio
    async def test_default_headers(self) -> None:
        """Should send the user agent along with the configured headers."""
        seen: list[httpx.Request] = []
        pool = HTTPConnectionPool(
            "https://api.github.com",
            headers={"Authorization": "Bearer gh-token"},
            transport=echo_transport(seen),
        )

        await pool.post("/repos/acme/widgets/issues/42/comments", json={"body": "hi"})
        await pool.close()

        request = seen[0]
        assert request.method == "POST"
        assert request.headers["User-Agent"] == USER_AGENT
        assert request.headers["Authorization"] == "Bearer gh-token"

    @pytest.mark.asyncio
    async def test_error_status_returned(self) -> None:
        """Should return error responses instead of raising."""
        pool = HTTPConnectionPool(
            "https://app.asana.com/api/1.0",
            transport=httpx.MockTransport(lambda request: httpx.Response(503)),
        )

        response = await pool.request("GET", "/tasks/1")
        await pool.close()

        assert response.status_code == 503

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self) -> None:
        """Should allow closing an unopened pool."""
        pool = HTTPConnectionPool("https://app.asana.com/api/1.0")

        await pool.close()

        assert pool.is_open is False
