from __future__ import annotations

import asyncio
import json
import time
from typing import Any

import httpx

from .logging_metrics import downstream_failures_total
from .resilience import CircuitBreaker
from .retry import net_retry


class EventServiceError(Exception):
    """Non-2xx answer from the events service. Carries its status and JSON body."""

    def __init__(self, message: str, status: int, data: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.status = status
        self.data = data or {}


def _error_from(resp: httpx.Response) -> EventServiceError:
    try:
        data = resp.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        data = {}
    if not isinstance(data, dict):
        data = {}
    return EventServiceError(data.get("message") or "External service error", resp.status_code, data)


class EventServiceClient:
    """Async client for the downstream events service.

    Reads are idempotent and retried on transport errors. ``add_event`` is the only
    write and goes through the circuit breaker instead, so a failing service is not
    hammered by retries.
    """

    def __init__(self, client: httpx.AsyncClient, add_event_breaker: CircuitBreaker) -> None:
        self.client = client
        self.add_event_breaker = add_event_breaker

    async def _get_json(self, op: str, path: str) -> Any:
        try:
            resp = await self.client.get(path)
        except httpx.HTTPError:
            downstream_failures_total.labels(op=op).inc()
            raise
        if not resp.is_success:
            downstream_failures_total.labels(op=op).inc()
            raise _error_from(resp)
        return resp.json()

    @net_retry()
    async def get_users(self) -> Any:
        return await self._get_json("get_users", "/getUsers")

    @net_retry()
    async def get_events(self) -> Any:
        return await self._get_json("get_events", "/getEvents")

    @net_retry()
    async def get_user(self, user_id: str) -> Any:
        return await self._get_json("get_user", f"/getUserById/{user_id}")

    @net_retry()
    async def get_event(self, event_id: Any) -> Any:
        return await self._get_json("get_event", f"/getEventById/{event_id}")

    async def get_events_by_user_id(self, user_id: str) -> list[Any]:
        user = await self.get_user(user_id)
        if not isinstance(user, dict):
            raise EventServiceError("Malformed user response", 502)
        event_ids = user.get("events") or []
        return list(await asyncio.gather(*(self.get_event(eid) for eid in event_ids)))

    async def add_event(self, body: dict[str, Any]) -> Any:
        payload = {"id": int(time.time() * 1000), **body}

        async def _post() -> Any:
            try:
                resp = await self.client.post("/addEvent", json=payload)
            except httpx.HTTPError:
                downstream_failures_total.labels(op="add_event").inc()
                raise
            if not resp.is_success:
                downstream_failures_total.labels(op="add_event").inc()
                raise _error_from(resp)
            return resp.json()

        return await self.add_event_breaker.execute(_post)
