"""Request logging middleware.

Each request produces one coloured console line and, at debug level, the same
record as compact JSON. Feedback requests also carry the feed and subject they
target so a stream can be traced through the pipeline log.
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Any

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

logger = logging.getLogger("speaking_feedback.middleware.structured")

REQUEST_ID_HEADER = "X-Request-Id"

_RESET = "\u001b[0m"
_STATUS_COLOURS = {2: "\u001b[32m", 4: "\u001b[33m", 5: "\u001b[31m"}
_DEFAULT_COLOUR = "\u001b[36m"

# Query parameters copied into the record for feedback routes.
_TRACE_PARAMS = ("feed_id", "UUID", "attempt_id", "refetch")


class StructuredLoggingMiddleware(BaseHTTPMiddleware):
    """Log method, path, status, latency, caller and feedback target per request."""

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        started = time.perf_counter()
        record = self._request_record(request)

        try:
            response = await call_next(request)
        except Exception as exc:  # pragma: no cover
            record.update(status_code=500, duration_ms=_elapsed_ms(started), error=repr(exc))
            logger.exception(_console_line(record))
            raise

        record.update(status_code=response.status_code, duration_ms=_elapsed_ms(started))
        response.headers[REQUEST_ID_HEADER] = record["request_id"]
        logger.info(_console_line(record))
        logger.debug(json.dumps(record, default=str, separators=(",", ":")))
        return response

    @staticmethod
    def _request_record(request: Request) -> dict[str, Any]:
        record: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "request_id": request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex,
            "method": request.method,
            "path": request.url.path,
            "client_ip": request.client.host if request.client else None,
            "user_id": request.headers.get("x-user-id"),
        }
        if request.url.path.startswith("/speaking"):
            target = {
                name: request.query_params[name]
                for name in _TRACE_PARAMS
                if name in request.query_params
            }
            if target:
                record["target"] = target
        return record


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


def _console_line(record: dict[str, Any]) -> str:
    status = record.get("status_code") or 0
    colour = _STATUS_COLOURS.get(min(status // 100, 5), _DEFAULT_COLOUR)

    parts = [
        f"{record['method']} {record['path']}",
        f"status={status or '-'}",
        f"{record.get('duration_ms', '-')}ms",
        f"request_id={record['request_id']}",
        f"user={record.get('user_id') or '-'}",
        f"client={record.get('client_ip') or '-'}",
    ]
    target = record.get("target")
    if target:
        parts.append(" ".join(f"{key}={value}" for key, value in target.items()))
    return f"{colour}{' | '.join(parts)}{_RESET}"
