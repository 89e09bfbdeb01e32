"""
Wire - trace event channel for a run.

A Wire can be handed to ExecutionEngine.run() as the trace sink; every
invocation of the run writes to it and the host reads from it concurrently.

Usage:
    wire = Wire()
    task = asyncio.create_task(engine.run("root", input, trace=wire))

    async for event in wire.read():
        print(event.type, event.deck)
"""

import asyncio
from typing import AsyncIterator

from deckrun.domain.events import TraceEvent


class Wire:
    """
    Trace streaming channel.

    A thin wrapper around asyncio.Queue:
    - write() / write_nowait(): put an event into the channel
    - read(): async iterate over events until closed
    - close(): signal that no more events will be written
    """

    # Sentinel value to signal end of stream
    _SENTINEL = object()

    def __init__(self, maxsize: int = 0):
        """
        Args:
            maxsize: Maximum queue size (0 = unlimited)
        """
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    async def write(self, event: TraceEvent) -> None:
        if self._closed:
            # Writes after close are ignored
            return
        await self._queue.put(event)

    def write_nowait(self, event: TraceEvent) -> None:
        """
        Write an event without waiting.

        Raises:
            asyncio.QueueFull: bounded wire is full
        """
        if self._closed:
            return
        self._queue.put_nowait(event)

    async def close(self) -> None:
        """Close the wire; readers stop after draining queued events."""
        if self._closed:
            return
        self._closed = True
        await self._queue.put(self._SENTINEL)

    async def read(self) -> AsyncIterator[TraceEvent]:
        while True:
            item = await self._queue.get()
            if item is self._SENTINEL:
                # Re-put sentinel for other readers (if any)
                await self._queue.put(self._SENTINEL)
                break
            yield item

    @property
    def closed(self) -> bool:
        return self._closed

    def __repr__(self) -> str:
        return f"Wire(closed={self._closed}, qsize={self._queue.qsize()})"


__all__ = ["Wire"]
