"""Request metrics middleware."""

from __future__ import annotations

import time

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from speaking_feedback.telemetry import observe_request

UNTRACKED_PATHS = frozenset({"/metrics", "/health"})


def route_label(request: Request) -> str:
    """Templated route path (``/speaking/feedback/records/{record_id}/preferred``)."""

    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


class TelemetryMiddleware(BaseHTTPMiddleware):
    """Count requests and observe latency per method and route.

    For event streams the latency covers handler work up to the response
    headers, not the lifetime of the stream.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        if request.url.path in UNTRACKED_PATHS:
            return await call_next(request)

        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            observe_request(
                request.method,
                route_label(request),
                status_code,
                time.perf_counter() - started,
            )
