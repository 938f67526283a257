"""
events.py — Progress event plumbing shared by the claim and apply runners.

Runners publish JSON-able dicts through anything with an async send_json()
(a FastAPI WebSocket, the CLI printer, or an EventChannel). EventChannel
turns those pushes into an async iterator for callers that want a stream.
"""

import asyncio
from datetime import datetime

COLORS = {
    "info":    "#e0eeff",
    "success": "#00e676",
    "warn":    "#ffd600",
    "error":   "#ff4444",
    "accent":  "#00c8ff",
    "muted":   "#4a6080",
}

_CLOSED = object()


def now() -> str:
    return datetime.now().strftime("%H:%M:%S")


class EventChannel:
    """Single-consumer async queue with a WebSocket-shaped producer side."""

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()
        self.closed = False

    async def send_json(self, data: dict):
        if self.closed:
            return
        await self._queue.put(data)

    def close(self):
        if not self.closed:
            self.closed = True
            self._queue.put_nowait(_CLOSED)

    def __aiter__(self):
        return self

    async def __anext__(self) -> dict:
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item
