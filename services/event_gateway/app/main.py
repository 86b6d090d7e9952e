from __future__ import annotations

import hashlib
import logging
import math
import os
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, cast

import httpx
import uvicorn
from fastapi import APIRouter, Body, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor

from .config import settings
from .events_client import EventServiceClient, EventServiceError
from .http import async_http_client
from .logging_metrics import (
    correlation_id,
    latency_hist,
    metrics_router,
    req_counter,
    set_ready,
    set_unready,
    setup_logging,
)
from .models import CircuitOpenOut, CircuitResetOut, CircuitStateOut
from .resilience import CircuitBreakerConfig, CircuitBreakerRegistry, CircuitOpenError


logger = logging.getLogger(__name__)

ADD_EVENT_CIRCUIT = "addEvent"

router = APIRouter()


def _events(request: Request) -> EventServiceClient:
    return request.app.state.events


def _breakers(request: Request) -> CircuitBreakerRegistry:
    return request.app.state.breakers


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok", "env": settings.env}


@router.get("/getUsers")
async def get_users(request: Request) -> Any:
    return await _events(request).get_users()


@router.post("/addEvent")
async def add_event(request: Request, body: dict[str, Any] = Body(...)) -> Any:
    return await _events(request).add_event(body)


@router.get("/getEvents")
async def get_events(request: Request) -> Any:
    return await _events(request).get_events()


@router.get("/getEventsByUserId/{user_id}")
async def get_events_by_user_id(user_id: str, request: Request) -> list[Any]:
    return await _events(request).get_events_by_user_id(user_id)


@router.get("/circuits")
async def circuits(request: Request) -> dict[str, CircuitStateOut]:
    snaps = _breakers(request).snapshots()
    return {name: CircuitStateOut(**snap.as_dict()) for name, snap in snaps.items()}


@router.post("/circuits/{name}/reset", response_model=CircuitResetOut)
async def reset_circuit(name: str, request: Request) -> CircuitResetOut:
    registry = _breakers(request)
    if name not in registry.names():
        raise HTTPException(status_code=404, detail=f"unknown circuit: {name}")
    registry.reset(name)
    logger.info(f"circuit {name} reset by operator")
    snap = registry.get(name).get_state()
    return CircuitResetOut(ok=True, name=name, state=CircuitStateOut(**snap.as_dict()))


async def circuit_open_handler(_request: Request, exc: Exception) -> JSONResponse:
    err = cast(CircuitOpenError, exc)
    # Never advertise 0: a probe may still be in flight
    retry_after = max(1, math.ceil(err.retry_after))
    body = CircuitOpenOut(retryAfter=retry_after, circuitBreakerState=err.state.value)
    return JSONResponse(
        body.model_dump(),
        status_code=503,
        headers={"Retry-After": str(retry_after)},
    )


async def event_service_error_handler(_request: Request, exc: Exception) -> JSONResponse:
    err = cast(EventServiceError, exc)
    return JSONResponse({"success": False, "error": str(err), **err.data}, status_code=err.status)


async def http_error_handler(_request: Request, exc: Exception) -> JSONResponse:
    logger.warning(f"events service unreachable: {exc!r}")
    return JSONResponse({"success": False, "error": str(exc) or "Failed to reach events service"}, status_code=502)


async def unhandled(_request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error")
    return JSONResponse({"code": "ERR_UNKNOWN", "message": str(exc)}, status_code=500)


def create_app(
    events_transport: httpx.AsyncBaseTransport | None = None,
    breaker_config: CircuitBreakerConfig | None = None,
) -> FastAPI:
    """Build the gateway. ``events_transport`` replaces the network (tests use MockTransport)."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        setup_logging(settings.log_level)
        # OTel instrumentation (safe if exporter unset)
        try:
            FastAPIInstrumentor.instrument_app(app)
            HTTPXClientInstrumentor().instrument()
        except Exception as e:
            logger.warning(f"OTel instrumentation failed: {e}")
        cfg = app.state.breakers.default_config
        logger.info(
            f"events={settings.events_base_url} breaker threshold={cfg.failure_threshold} "
            f"window={cfg.failure_window}s reset={cfg.base_reset_timeout}s max={cfg.max_reset_timeout}s"
        )
        set_ready()
        yield
        set_unready()
        await app.state.events.client.aclose()

    app = FastAPI(title="EventGate", version="0.1.0", lifespan=lifespan)

    breakers = CircuitBreakerRegistry(breaker_config or settings.breaker_config())
    client = async_http_client(
        base_url=settings.events_base_url,
        timeout=settings.events_timeout,
        max_connections=settings.events_max_connections,
        transport=events_transport,
    )
    app.state.breakers = breakers
    app.state.events = EventServiceClient(client, breakers.get(ADD_EVENT_CIRCUIT))

    app.include_router(metrics_router)
    app.include_router(router)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def correlation_mw(request: Request, call_next):  # type: ignore[no-untyped-def]
        cid = request.headers.get("x-correlation-id") or hashlib.sha256(
            f"{request.url}{time.time_ns()}".encode()
        ).hexdigest()[:16]
        token = correlation_id.set(cid)
        try:
            response = await call_next(request)
            response.headers["x-correlation-id"] = cid
            return response
        finally:
            correlation_id.reset(token)

    @app.middleware("http")
    async def metrics_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
        start = time.perf_counter()
        status = "500"
        try:
            response = await call_next(request)
            status = str(getattr(response, "status_code", 500))
            return response
        finally:
            elapsed = time.perf_counter() - start
            route = request.scope.get("route")
            path = getattr(route, "path", request.url.path)
            latency_hist.labels(path=path).observe(elapsed)
            req_counter.labels(path=path, method=request.method, status=status).inc()

    app.add_exception_handler(CircuitOpenError, circuit_open_handler)
    app.add_exception_handler(EventServiceError, event_service_error_handler)
    app.add_exception_handler(httpx.HTTPError, http_error_handler)
    app.add_exception_handler(Exception, unhandled)
    return app


app = create_app()


def main() -> None:
    host = os.getenv("HOST", settings.api_host)
    port = int(os.getenv("PORT", str(settings.api_port)))
    uvicorn.run(
        "app.main:app",
        host=host,
        port=port,
        reload=False,
        log_level=settings.log_level.lower(),
        factory=False,
    )


if __name__ == "__main__":
    main()
