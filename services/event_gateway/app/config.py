from __future__ import annotations

import os
from dataclasses import dataclass

from .resilience import CircuitBreakerConfig


@dataclass
class Settings:
    api_host: str = os.getenv("API_HOST", "0.0.0.0")
    api_port: int = int(os.getenv("API_PORT", "3000"))
    env: str = os.getenv("ENV", "dev")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # Downstream events service
    events_base_url: str = os.getenv("EVENTS_BASE_URL", "http://event.com")
    events_timeout: float = float(os.getenv("EVENTS_TIMEOUT", "10"))
    events_max_connections: int = int(os.getenv("EVENTS_MAX_CONNECTIONS", "20"))

    # Circuit breaker guarding POST /addEvent (seconds)
    cb_failure_threshold: int = int(os.getenv("CB_FAILURE_THRESHOLD", "3"))
    cb_failure_window_seconds: float = float(os.getenv("CB_FAILURE_WINDOW_SECONDS", "30"))
    cb_reset_timeout_seconds: float = float(os.getenv("CB_RESET_TIMEOUT_SECONDS", "10"))
    cb_max_reset_timeout_seconds: float = float(os.getenv("CB_MAX_RESET_TIMEOUT_SECONDS", "60"))

    # Retry/backoff defaults (idempotent reads only)
    retry_max_attempts: int = int(os.getenv("RETRY_MAX_ATTEMPTS", "3"))
    retry_initial_delay: float = float(os.getenv("RETRY_INITIAL_DELAY", "0.25"))
    retry_max_delay: float = float(os.getenv("RETRY_MAX_DELAY", "5"))

    # Observability
    otel_exporter_otlp_endpoint: str | None = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")

    def breaker_config(self) -> CircuitBreakerConfig:
        return CircuitBreakerConfig(
            failure_threshold=self.cb_failure_threshold,
            failure_window=self.cb_failure_window_seconds,
            base_reset_timeout=self.cb_reset_timeout_seconds,
            max_reset_timeout=self.cb_max_reset_timeout_seconds,
        )


settings = Settings()
