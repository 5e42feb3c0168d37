"""
Progress events emitted by the agent loop, and the stream that carries them.

The loop is the single producer of an EventStream and closes it on every
exit path, so ``async for event in stream`` always terminates.
"""

import asyncio
from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class IterationEvent:
    iteration: int
    type: str = "iteration"


@dataclass(frozen=True)
class ToolStartEvent:
    name: str
    type: str = "tool_start"


@dataclass(frozen=True)
class ToolResultEvent:
    name: str
    is_error: bool
    preview: str
    duration_ms: int
    status_code: int | None = None
    bytes: int = 0
    error_type: str | None = None
    type: str = "tool_result"


@dataclass(frozen=True)
class TextDeltaEvent:
    delta: str
    type: str = "text_delta"


@dataclass(frozen=True)
class FinalResponseEvent:
    text: str
    type: str = "final_response"


AgentEvent = Union[IterationEvent, ToolStartEvent, ToolResultEvent, TextDeltaEvent, FinalResponseEvent]

_CLOSED = object()


class EventStream:
    """Bounded queue of AgentEvents with explicit close."""

    def __init__(self, maxsize: int = 256):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, event: AgentEvent) -> None:
        """Queue an event, waiting while the queue is full. Dropped after close."""
        if self._closed:
            return
        await self._queue.put(event)

    def close(self) -> None:
        """Mark the stream finished. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        try:
            self._queue.put_nowait(_CLOSED)
        except asyncio.QueueFull:
            # Consumer drains the backlog, then sees the closed flag.
            pass

    def __aiter__(self) -> "EventStream":
        return self

    async def __anext__(self) -> AgentEvent:
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item
