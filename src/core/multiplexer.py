"""
Stream multiplexer for one chat turn.

Merges the model's own stream with the out-of-band events of tool executions
into a single ordered log that the HTTP response drains as NDJSON frames.

- Each producer writes through its own ``SubStream`` handle; events from one
  handle are delivered in append order.
- Appends are serialized under one lock, so concurrent producers interleave
  only at event boundaries.
- ``close(handle)`` emits that sub-stream's ``finish`` exactly once.
- ``close_all`` is the terminal signal: it finishes any handle still open,
  optionally writes an ``error`` frame, then writes the single ``turn``
  ``finish`` frame. It is idempotent.
- The buffer is bounded; producers wait when the client reads slowly. Once
  the consumer detaches, appends are dropped instead of blocking.
"""

from __future__ import annotations

import asyncio

from collections.abc import AsyncIterator
from types import TracebackType
from typing import Any

from core.constants import DEFAULT_STREAM_BUFFER_SIZE, FRAME_ERROR, FRAME_FINISH, TURN_STREAM
from core.exceptions import StreamClosedError
from models.event_models import StreamEvent, StreamEventType
from utils.logger import logger
from utils.metrics import stream_events_total


class SubStream:
    """Handle for one producer's ordered events. Usable as an async context manager
    that closes the handle on exit, whether the body succeeded or raised."""

    __slots__ = ("_closed", "_multiplexer", "stream_id")

    def __init__(self, multiplexer: StreamMultiplexer, stream_id: str):
        self._multiplexer = multiplexer
        self.stream_id = stream_id
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def append(self, event_type: StreamEventType, content: Any = None) -> StreamEvent:
        return await self._multiplexer.append(self, event_type, content)

    async def close(self) -> None:
        await self._multiplexer.close(self)

    async def __aenter__(self) -> SubStream:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    def __repr__(self) -> str:
        return f"SubStream({self.stream_id!r}, closed={self._closed})"


class StreamMultiplexer:
    """Bounded, ordered, append-only event log with one terminal marker."""

    def __init__(self, max_buffered_events: int = DEFAULT_STREAM_BUFFER_SIZE):
        self._queue: asyncio.Queue[StreamEvent | None] = asyncio.Queue(maxsize=max_buffered_events)
        self._lock = asyncio.Lock()
        self._handles: dict[str, SubStream] = {}
        self._seq = 0
        self._closed = False
        self._detached = False
        self.finish_reason: str | None = None

    @property
    def closed(self) -> bool:
        """True once the terminal ``finish`` frame has been written."""
        return self._closed

    @property
    def open_streams(self) -> list[str]:
        return [stream_id for stream_id, handle in self._handles.items() if not handle.closed]

    def open(self, stream_id: str) -> SubStream:
        """Register a new sub-stream. Ids are unique for the life of the turn."""
        if self._closed:
            raise StreamClosedError(stream_id)
        if stream_id in self._handles or stream_id == TURN_STREAM:
            raise ValueError(f"Stream '{stream_id}' was already opened")
        handle = SubStream(self, stream_id)
        self._handles[stream_id] = handle
        return handle

    async def append(self, handle: SubStream, event_type: StreamEventType, content: Any = None) -> StreamEvent:
        """Write one event for ``handle``.

        Raises:
            StreamClosedError: If the handle or the whole multiplexer is closed
        """
        async with self._lock:
            if handle.closed or self._closed:
                raise StreamClosedError(handle.stream_id)
            return await self._emit(handle.stream_id, event_type, content)

    async def close(self, handle: SubStream) -> None:
        """Finish one sub-stream. Safe to call more than once."""
        async with self._lock:
            if handle.closed:
                return
            handle._closed = True
            if not self._closed:
                await self._emit(handle.stream_id, FRAME_FINISH, None)

    async def close_all(self, finish_reason: str = "stop", error: dict[str, Any] | None = None) -> bool:
        """Write the terminal signal. Returns False if it was already written."""
        async with self._lock:
            if self._closed:
                return False
            for handle in self._handles.values():
                if not handle.closed:
                    handle._closed = True
                    await self._emit(handle.stream_id, FRAME_FINISH, {"reason": finish_reason})
            if error is not None:
                await self._emit(TURN_STREAM, FRAME_ERROR, error)
            await self._emit(TURN_STREAM, FRAME_FINISH, {"finish_reason": finish_reason})
            self._closed = True
            self.finish_reason = finish_reason
            await self._put(None)
        logger.debug(f"Stream closed ({finish_reason}) after {self._seq} events")
        return True

    def detach(self) -> None:
        """Called by the consumer when it stops reading; unblocks any waiting producer."""
        self._detached = True
        while not self._queue.empty():
            self._queue.get_nowait()

    async def events(self) -> AsyncIterator[StreamEvent]:
        """Yield events in emission order until the terminal marker. Single consumer."""
        while True:
            item = await self._queue.get()
            if item is None:
                return
            stream_events_total.labels(type=item.type).inc()
            yield item

    async def frames(self) -> AsyncIterator[str]:
        """Yield NDJSON lines, one per event."""
        async for event in self.events():
            yield event.to_frame()

    async def _emit(self, stream_id: str, event_type: StreamEventType, content: Any) -> StreamEvent:
        self._seq += 1
        event = StreamEvent(seq=self._seq, stream=stream_id, type=event_type, content=content)
        await self._put(event)
        return event

    async def _put(self, item: StreamEvent | None) -> None:
        if self._detached:
            return
        await self._queue.put(item)


__all__ = ["StreamMultiplexer", "SubStream"]
