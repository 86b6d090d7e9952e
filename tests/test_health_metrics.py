import asyncio

import httpx


async def _get(path: str) -> httpx.Response:
    from app.main import app

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        return await client.get(path)


def test_healthz_ok():
    resp = asyncio.run(_get("/healthz"))
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert resp.headers.get("x-correlation-id")


def test_metrics_exposed():
    asyncio.run(_get("/healthz"))
    resp = asyncio.run(_get("/metrics"))
    assert resp.status_code == 200
    body = resp.text
    assert "eventgate_requests_total" in body
    assert "eventgate_readiness" in body
    assert "eventgate_circuit_state" in body


def test_circuits_lists_add_event_breaker():
    resp = asyncio.run(_get("/circuits"))
    assert resp.status_code == 200
    data = resp.json()
    assert data["addEvent"]["state"] == "CLOSED"
    assert data["addEvent"]["nextRetryIn"] == 0
