"""Prometheus instrumentation for requests, provider calls and feedback runs."""

from .metrics import (
    observe_provider_call,
    observe_request,
    record_feed_run,
    record_step_outcome,
)

__all__ = [
    "observe_provider_call",
    "observe_request",
    "record_feed_run",
    "record_step_outcome",
]
