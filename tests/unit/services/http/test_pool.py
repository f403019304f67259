"""
Tests for the per-host connection pool manager.
"""

from __future__ import annotations

import httpx
import pytest

from watchlens.services.http.pool import ConnectionPoolManager

pytestmark = pytest.mark.asyncio


def _transport() -> httpx.MockTransport:
    return httpx.MockTransport(
        lambda request: httpx.Response(200, text=f"{request.url.host}{request.url.path}")
    )


class TestConnectionPoolManager:
    """Test pooled client reuse."""

    async def test_same_host_reuses_client(self) -> None:
        """Test that a host maps to one client."""
        async with ConnectionPoolManager(transport=_transport()) as pools:
            first = pools.get_client("www.youtube.com")
            second = pools.get_client("WWW.YOUTUBE.COM")
            assert first is second
            assert pools.hosts == ["www.youtube.com"]

    async def test_hosts_get_separate_clients(self) -> None:
        """Test that different hosts get independent pools."""
        async with ConnectionPoolManager(transport=_transport()) as pools:
            youtube = pools.get_client("www.youtube.com")
            api = pools.get_client("openrouter.ai")
            assert youtube is not api
            assert pools.hosts == ["openrouter.ai", "www.youtube.com"]

    async def test_client_uses_host_base_url(self) -> None:
        """Test that relative requests go to the client's host."""
        async with ConnectionPoolManager(transport=_transport()) as pools:
            response = await pools.get_client("www.youtube.com").get("/watch")
            assert response.text == "www.youtube.com/watch"

    async def test_aclose_closes_clients(self) -> None:
        """Test that closing releases every pool."""
        pools = ConnectionPoolManager(transport=_transport())
        client = pools.get_client("www.youtube.com")
        await pools.aclose()
        assert client.is_closed
        assert pools.hosts == []

    async def test_closed_client_is_recreated(self) -> None:
        """Test that a pool is rebuilt after the manager was closed."""
        pools = ConnectionPoolManager(transport=_transport())
        first = pools.get_client("www.youtube.com")
        await pools.aclose()
        second = pools.get_client("www.youtube.com")
        assert second is not first
        await pools.aclose()

    async def test_limits_configured(self) -> None:
        """Test that timeouts follow the configuration."""
        async with ConnectionPoolManager(
            max_connections_per_host=3, request_timeout=5.0, pool_timeout=2.0
        ) as pools:
            client = pools.get_client("www.youtube.com")
            assert client.timeout.read == 5.0
            assert client.timeout.pool == 2.0
