from __future__ import annotations

from typing import Iterable, Type

import httpx
from tenacity import retry, stop_after_attempt, wait_exponential_jitter, retry_if_exception_type

from .config import settings


def net_retry(
    max_attempts: int | None = None,
    *,
    initial: float | None = None,
    maximum: float | None = None,
    retry_on: Iterable[Type[BaseException]] | None = None,
):
    """Retry decorator for idempotent network reads.

    Defaults come from settings: RETRY_MAX_ATTEMPTS, RETRY_INITIAL_DELAY, RETRY_MAX_DELAY.
    Only transport errors are retried unless ``retry_on`` says otherwise. Never wrap a
    breaker-guarded write with this.
    """
    attempts = int(max_attempts or settings.retry_max_attempts)
    init = float(initial or settings.retry_initial_delay)
    mx = float(maximum or settings.retry_max_delay)
    cond = retry_if_exception_type(tuple(retry_on) if retry_on else httpx.TransportError)
    return retry(
        reraise=True,
        stop=stop_after_attempt(attempts),
        wait=wait_exponential_jitter(initial=init, max=mx),
        retry=cond,
    )
