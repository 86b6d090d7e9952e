import asyncio

import pytest

from app.http import async_http_client
from app.resilience import CircuitBreaker, CircuitBreakerConfig, CircuitBreakerRegistry, CircuitState


@pytest.mark.asyncio
async def test_async_http_client_context():
    async with async_http_client(timeout=0.1, max_connections=1, max_keepalive=1) as client:
        assert client is not None


@pytest.mark.asyncio
async def test_circuit_breaker_open_and_recover_real_clock():
    cb = CircuitBreaker(
        "flaky",
        CircuitBreakerConfig(failure_threshold=2, failure_window=5.0, base_reset_timeout=0.05, max_reset_timeout=0.2),
    )

    async def failing():
        raise RuntimeError("boom")

    # Two failures -> OPEN
    with pytest.raises(RuntimeError):
        await cb.execute(failing)
    with pytest.raises(RuntimeError):
        await cb.execute(failing)
    assert cb.state == CircuitState.OPEN
    # After reset timeout the probe goes through and closes the circuit
    await asyncio.sleep(0.06)

    async def ok():
        return 1

    assert await cb.execute(ok) == 1
    assert cb.state == CircuitState.CLOSED


def test_registry_returns_one_breaker_per_name():
    reg = CircuitBreakerRegistry(CircuitBreakerConfig(failure_threshold=5))
    a = reg.get("addEvent")
    assert reg.get("addEvent") is a
    assert a.config.failure_threshold == 5
    b = reg.get("search", CircuitBreakerConfig(failure_threshold=1))
    assert b is not a
    assert b.config.failure_threshold == 1
    assert reg.names() == ["addEvent", "search"]
    assert set(reg.snapshots()) == {"addEvent", "search"}


@pytest.mark.asyncio
async def test_registry_reset_and_unknown_name():
    reg = CircuitBreakerRegistry(CircuitBreakerConfig(failure_threshold=1))
    cb = reg.get("addEvent")

    async def failing():
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        await cb.execute(failing)
    assert reg.snapshots()["addEvent"].state == CircuitState.OPEN
    reg.reset("addEvent")
    assert cb.state == CircuitState.CLOSED
    with pytest.raises(KeyError):
        reg.reset("nope")
