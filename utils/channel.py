"""
Bounded async channel: many producers, one consumer.

The owner closes the channel once every producer is done; the consumer's
`async for` loop ends after the buffered items are drained.
"""

import asyncio
from typing import AsyncIterator, Generic, TypeVar

T = TypeVar("T")

_CLOSED = object()


class ChannelClosed(RuntimeError):
    """Raised when sending on a closed channel."""


class Channel(Generic[T]):
    def __init__(self, maxsize: int = 0) -> None:
        self._queue: asyncio.Queue = asyncio.Queue(maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, item: T) -> None:
        """Send one item, waiting while the channel is full."""
        if self._closed:
            raise ChannelClosed("send on closed channel")
        await self._queue.put(item)

    async def close(self) -> None:
        """Close the channel. Idempotent and never blocks.

        A full channel gets no end marker; its consumer stops once the
        buffer is drained instead.
        """
        if self._closed:
            return
        self._closed = True
        try:
            self._queue.put_nowait(_CLOSED)
        except asyncio.QueueFull:
            pass

    async def __aiter__(self) -> AsyncIterator[T]:
        while not (self._closed and self._queue.empty()):
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item
