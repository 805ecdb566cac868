"""Prometheus metrics definitions and helpers."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests processed",
    ("method", "route", "status"),
)

REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ("method", "route"),
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

ERROR_COUNTER = Counter(
    "app_internal_errors_total",
    "Number of requests ending in internal server error responses",
    ("method", "route"),
)

PROVIDER_CALLS = Counter(
    "provider_calls_total",
    "Outbound AI provider calls by operation and outcome",
    ("provider", "operation", "outcome"),
)

PROVIDER_LATENCY = Histogram(
    "provider_call_duration_seconds",
    "Outbound AI provider call duration in seconds",
    ("provider", "operation"),
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
)

STEP_OUTCOMES = Counter(
    "feedback_steps_total",
    "Feedback pipeline steps by kind and outcome",
    ("step", "outcome"),
)

FEED_RUNS = Counter(
    "feedback_feeds_total",
    "Feedback feed runs by final status",
    ("status",),
)


def _non_negative(value: float) -> float:
    return value if value >= 0 else 0


def observe_request(
    method: str,
    route: str,
    status_code: int,
    duration_seconds: float,
) -> None:
    """Record metrics for a completed HTTP request."""

    safe_route = route or "unknown"
    safe_method = method or "UNKNOWN"

    REQUEST_COUNT.labels(method=safe_method, route=safe_route, status=str(status_code)).inc()
    REQUEST_LATENCY.labels(method=safe_method, route=safe_route).observe(
        _non_negative(duration_seconds)
    )

    if status_code >= 500:
        ERROR_COUNTER.labels(method=safe_method, route=safe_route).inc()


def observe_provider_call(
    provider: str,
    operation: str,
    outcome: str,
    duration_seconds: float,
) -> None:
    """Record one outbound provider call."""

    safe_provider = provider or "unknown"
    PROVIDER_CALLS.labels(provider=safe_provider, operation=operation, outcome=outcome).inc()
    PROVIDER_LATENCY.labels(provider=safe_provider, operation=operation).observe(
        _non_negative(duration_seconds)
    )


def record_step_outcome(step: str, outcome: str) -> None:
    """Count a step ending as ``generated``, ``reused`` or ``failed``."""

    STEP_OUTCOMES.labels(step=step or "unknown", outcome=outcome).inc()


def record_feed_run(status: str) -> None:
    FEED_RUNS.labels(status=status).inc()
