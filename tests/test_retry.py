import httpx
import pytest

from app.retry import net_retry


def test_net_retry_retries_transport_errors_then_succeeds():
    calls = {"n": 0}

    @net_retry(max_attempts=3, initial=0.01, maximum=0.02)
    def sometimes_fails():
        calls["n"] += 1
        if calls["n"] < 2:
            raise httpx.ConnectError("transient")
        return 42

    assert sometimes_fails() == 42
    assert calls["n"] == 2


def test_net_retry_does_not_retry_other_errors():
    calls = {"n": 0}

    @net_retry(max_attempts=3, initial=0.01, maximum=0.02)
    def bad():
        calls["n"] += 1
        raise ValueError("not transient")

    with pytest.raises(ValueError):
        bad()
    assert calls["n"] == 1


@pytest.mark.asyncio
async def test_net_retry_async_gives_up_and_reraises():
    calls = {"n": 0}

    @net_retry(max_attempts=2, initial=0.01, maximum=0.02)
    async def always_fails():
        calls["n"] += 1
        raise httpx.ReadTimeout("slow")

    with pytest.raises(httpx.ReadTimeout):
        await always_fails()
    assert calls["n"] == 2
