"""Progress events and the queue that carries them to the transport.

The executor and orchestrator only ever build :class:`DataEvent`,
:class:`ErrorEvent` and :class:`DoneEvent` values; turning them into
server-sent-event frames is the transport's job (:func:`encode_sse`).
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Optional, Union


@dataclass(frozen=True)
class DataEvent:
    event_type: str
    payload: Any = field(default_factory=dict)


@dataclass(frozen=True)
class ErrorEvent:
    event_type: str
    payload: Any = field(default_factory=dict)


@dataclass(frozen=True)
class DoneEvent:
    event_type: Optional[str] = None


ProgressEvent = Union[DataEvent, ErrorEvent, DoneEvent]

_CLOSED = object()


class EventEmitter:
    """Ordered, unbounded channel of progress events.

    Producers call :meth:`emit` (or the ``data``/``error``/``done`` helpers);
    a single consumer iterates the emitter until :meth:`close` is called.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._closed = False

    def emit(
        self,
        event_type: Optional[str],
        payload: Any = None,
        *,
        is_error: bool = False,
        is_done: bool = False,
    ) -> None:
        if is_done:
            self.put(DoneEvent(event_type))
        elif is_error:
            self.put(ErrorEvent(event_type or "error", payload))
        else:
            self.put(DataEvent(event_type or "message", payload))

    def data(self, event_type: str, payload: Any) -> None:
        self.put(DataEvent(event_type, payload))

    def error(self, event_type: str, payload: Any) -> None:
        self.put(ErrorEvent(event_type, payload))

    def done(self, event_type: Optional[str] = None) -> None:
        self.put(DoneEvent(event_type))

    def put(self, event: ProgressEvent) -> None:
        if self._closed:
            raise RuntimeError("Cannot emit on a closed event stream")
        self._queue.put_nowait(event)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(_CLOSED)

    @property
    def closed(self) -> bool:
        return self._closed

    async def __aiter__(self) -> AsyncIterator[ProgressEvent]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item

    def drain(self) -> list[ProgressEvent]:
        """Return every queued event without waiting."""

        events: list[ProgressEvent] = []
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if item is _CLOSED:
                break
            events.append(item)
        return events


def _dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, default=str)


def encode_sse(event: ProgressEvent) -> str:
    """Serialise one event as a server-sent-event frame."""

    if isinstance(event, DoneEvent):
        prefix = f"event: {event.event_type}\n" if event.event_type else ""
        return f"{prefix}data: [DONE]\n\n"
    key = "error" if isinstance(event, ErrorEvent) else "data"
    return f"event: {event.event_type}\ndata: {_dumps({key: event.payload})}\n\n"


__all__ = [
    "DataEvent",
    "DoneEvent",
    "ErrorEvent",
    "EventEmitter",
    "ProgressEvent",
    "encode_sse",
]
