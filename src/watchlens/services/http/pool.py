"""
Per-host connection pools for outbound HTTP.

Each distinct host gets one lazily-created ``httpx.AsyncClient`` whose
connection pool is capped at ``max_connections_per_host``. When the pool
is saturated, httpx queues new requests; a request that cannot get a
connection within ``pool_timeout`` fails with ``httpx.PoolTimeout``,
which callers treat as a transient timeout.
"""

from __future__ import annotations

import logging
import threading
from types import TracebackType
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


class ConnectionPoolManager:
    """
    Registry of reusable per-host ``httpx.AsyncClient`` pools.

    Parameters
    ----------
    max_connections_per_host : int, optional
        Connection cap for each host's pool (default: 10).
    request_timeout : float, optional
        Connect/read/write timeout in seconds (default: 30.0).
    pool_timeout : float, optional
        Seconds a request may wait for a free connection (default: 10.0).
    transport : httpx.AsyncBaseTransport | None, optional
        Transport shared by every client, e.g. ``httpx.MockTransport`` in
        tests (default: a real pooled transport per client).

    Examples
    --------
    >>> async with ConnectionPoolManager(max_connections_per_host=5) as pools:
    ...     client = pools.get_client("www.youtube.com")
    ...     response = await client.get("/watch?v=dQw4w9WgXcQ")
    """

    def __init__(
        self,
        max_connections_per_host: int = 10,
        request_timeout: float = 30.0,
        pool_timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.max_connections_per_host = max_connections_per_host
        self.request_timeout = request_timeout
        self.pool_timeout = pool_timeout
        self._transport = transport
        self._clients: dict[str, httpx.AsyncClient] = {}
        self._lock = threading.Lock()

    @property
    def hosts(self) -> list[str]:
        """Hosts with an open pool."""
        with self._lock:
            return sorted(self._clients)

    def get_client(self, host: str) -> httpx.AsyncClient:
        """
        Get the pooled client for a host, creating it on first use.

        Parameters
        ----------
        host : str
            Target host name (e.g. ``"www.youtube.com"``).

        Returns
        -------
        httpx.AsyncClient
            Client with ``base_url`` ``https://{host}`` and a bounded pool.
        """
        host = host.lower()
        with self._lock:
            client = self._clients.get(host)
            if client is None or client.is_closed:
                client = httpx.AsyncClient(
                    base_url=f"https://{host}",
                    limits=httpx.Limits(
                        max_connections=self.max_connections_per_host,
                        max_keepalive_connections=self.max_connections_per_host,
                    ),
                    timeout=httpx.Timeout(self.request_timeout, pool=self.pool_timeout),
                    follow_redirects=True,
                    transport=self._transport,
                )
                self._clients[host] = client
                logger.debug(
                    "Created connection pool for %s (max %d connections)",
                    host,
                    self.max_connections_per_host,
                )
            return client

    async def aclose(self) -> None:
        """Close every pool and release its sockets."""
        with self._lock:
            clients = list(self._clients.values())
            self._clients.clear()
        for client in clients:
            await client.aclose()
        if clients:
            logger.debug("Closed %d connection pools", len(clients))

    async def __aenter__(self) -> ConnectionPoolManager:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()
