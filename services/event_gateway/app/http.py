from __future__ import annotations

import httpx


def async_http_client(
    base_url: str = "",
    timeout: float = 10.0,
    max_connections: int = 20,
    max_keepalive: int = 10,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Create an httpx.AsyncClient with sane limits for our workloads."""
    limits = httpx.Limits(max_connections=max_connections, max_keepalive_connections=max_keepalive)
    return httpx.AsyncClient(base_url=base_url, timeout=timeout, limits=limits, transport=transport)
