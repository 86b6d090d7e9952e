import httpx
import pytest

from app.events_client import EventServiceClient, EventServiceError
from app.resilience import CircuitBreaker, CircuitBreakerConfig, CircuitState


def _client(handler) -> EventServiceClient:
    http = httpx.AsyncClient(base_url="http://event.com", transport=httpx.MockTransport(handler))
    return EventServiceClient(http, CircuitBreaker("addEvent", CircuitBreakerConfig(failure_threshold=2)))


@pytest.mark.asyncio
async def test_user_without_events_returns_empty_list():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"id": 7})

    events = _client(handler)
    assert await events.get_events_by_user_id("7") == []


@pytest.mark.asyncio
async def test_non_json_error_body_uses_default_message():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="<html>oops</html>")

    events = _client(handler)
    with pytest.raises(EventServiceError) as ei:
        await events.add_event({"name": "x"})
    assert ei.value.status == 500
    assert str(ei.value) == "External service error"
    assert ei.value.data == {}


@pytest.mark.asyncio
async def test_read_errors_do_not_touch_the_breaker():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, json={"message": "down"})

    events = _client(handler)
    for _ in range(3):
        with pytest.raises(EventServiceError):
            await events.get_users()
    assert events.add_event_breaker.state == CircuitState.CLOSED
    assert events.add_event_breaker.failure_count == 0


@pytest.mark.asyncio
async def test_transport_errors_on_reads_are_retried():
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] == 1:
            raise httpx.ConnectError("refused", request=request)
        return httpx.Response(200, json=[])

    events = _client(handler)
    assert await events.get_events() == []
    assert calls["n"] == 2


@pytest.mark.asyncio
async def test_malformed_user_payload_raises_service_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=["not", "a", "user"])

    events = _client(handler)
    with pytest.raises(EventServiceError) as ei:
        await events.get_events_by_user_id("7")
    assert ei.value.status == 502
