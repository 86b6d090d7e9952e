from __future__ import annotations

from pydantic import BaseModel


class CircuitOpenOut(BaseModel):
    success: bool = False
    error: str = "Service temporarily unavailable"
    message: str = "Event service is currently experiencing issues. Please try again later."
    retryAfter: int
    circuitBreakerState: str


class CircuitStateOut(BaseModel):
    state: str
    failureCount: int
    openedAt: float | None
    nextRetryIn: float


class CircuitResetOut(BaseModel):
    ok: bool
    name: str
    state: CircuitStateOut
