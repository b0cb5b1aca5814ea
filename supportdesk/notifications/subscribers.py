from __future__ import annotations

import asyncio
import json
import uuid
from typing import Any, AsyncIterator, Mapping, Protocol


class Subscriber(Protocol):
    subscriber_id: str

    async def send(self, message: Mapping[str, Any]) -> None:
        ...


class SubscriberOverflowError(RuntimeError):
    """Raised when a buffered subscriber cannot keep up with its events."""


class WebSocketSubscriber:
    """Deliver events as JSON frames over an accepted WebSocket."""

    def __init__(self, websocket: Any, *, subscriber_id: str | None = None) -> None:
        self.subscriber_id = subscriber_id or str(uuid.uuid4())
        self._websocket = websocket

    async def send(self, message: Mapping[str, Any]) -> None:
        await self._websocket.send_json(dict(message))


class QueueSubscriber:
    """Buffer events for a Server-Sent Events response.

    A full buffer raises :class:`SubscriberOverflowError` so the hub drops the
    subscriber instead of blocking other deliveries.
    """

    _CLOSED = object()

    def __init__(self, *, maxsize: int = 100, subscriber_id: str | None = None) -> None:
        self.subscriber_id = subscriber_id or str(uuid.uuid4())
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    async def send(self, message: Mapping[str, Any]) -> None:
        if self._closed:
            raise SubscriberOverflowError(f"Subscriber {self.subscriber_id} is closed")
        try:
            self._queue.put_nowait(dict(message))
        except asyncio.QueueFull as exc:
            raise SubscriberOverflowError(f"Subscriber {self.subscriber_id} buffer is full") from exc

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._queue.put_nowait(self._CLOSED)
        except asyncio.QueueFull:
            # Drop the oldest event so the stream still terminates.
            self._queue.get_nowait()
            self._queue.put_nowait(self._CLOSED)

    async def iter_sse(self) -> AsyncIterator[str]:
        """Yield Server-Sent Event frames until the subscriber is closed."""

        yield "event: ready\ndata: {}\n\n"
        while True:
            message = await self._queue.get()
            if message is self._CLOSED:
                return
            yield f"event: {message['type']}\ndata: {json.dumps(message, ensure_ascii=False)}\n\n"
