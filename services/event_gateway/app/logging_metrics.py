from __future__ import annotations

import contextvars
import json
import logging
import time
from typing import Any

from fastapi import APIRouter, Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)


# Prometheus custom registry and metrics
registry = CollectorRegistry()
req_counter = Counter(
    "eventgate_requests_total",
    "Total requests",
    ["path", "method", "status"],
    registry=registry,
)
latency_hist = Histogram(
    "eventgate_latency_seconds",
    "Latency by path",
    ["path"],
    registry=registry,
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5),
)

downstream_failures_total = Counter(
    "eventgate_downstream_failures_total",
    "Failed calls to the events service",
    ["op"],
    registry=registry,
)

# Circuit breaker state: 0=closed, 1=half-open, 2=open
circuit_state_gauge = Gauge(
    "eventgate_circuit_state", "Circuit breaker state", ["name"], registry=registry
)
circuit_rejections_total = Counter(
    "eventgate_circuit_rejections_total",
    "Calls rejected while the circuit was open",
    ["name"],
    registry=registry,
)
circuit_transitions_total = Counter(
    "eventgate_circuit_transitions_total",
    "Circuit state transitions",
    ["name", "to_state"],
    registry=registry,
)

readiness_gauge = Gauge(
    "eventgate_readiness", "Readiness status (1=ready, 0=not ready)", registry=registry
)


def set_ready() -> None:
    readiness_gauge.set(1)


def set_unready() -> None:
    readiness_gauge.set(0)


# Correlation id context
correlation_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "correlation_id", default=None
)


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "time": time.strftime("%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "correlation_id": correlation_id.get(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def setup_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    root.handlers.clear()
    h = logging.StreamHandler()
    h.setFormatter(JsonFormatter())
    root.addHandler(h)
    root.setLevel(level)


# Metrics router
metrics_router = APIRouter()


@metrics_router.get("/metrics")
def metrics() -> Response:
    data = generate_latest(registry)
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
