"""Bridge between a controller run and a caller-facing chunk stream.

A controller run is a coroutine that reports chunks through an ``emit``
callback. ``stream_from`` runs it as a producer task and yields the chunks
to the consumer in order. Producer errors are re-raised in the consumer
once the buffered chunks have been delivered; closing the consumer cancels
the producer.
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Emit = Callable[[T], Awaitable[None]]

_DONE = object()


async def stream_from(produce: Callable[[Emit], Awaitable[object]]) -> AsyncIterator[T]:
    """
    Run ``produce(emit)`` in a task and yield everything it emits.

    Args:
        produce: Coroutine function receiving the emit callback

    Yields:
        Items in the order they were emitted
    """
    queue: asyncio.Queue = asyncio.Queue()

    async def emit(item: T) -> None:
        queue.put_nowait(item)

    async def runner() -> None:
        try:
            await produce(emit)
        finally:
            queue.put_nowait(_DONE)

    task = asyncio.create_task(runner())
    try:
        while True:
            item = await queue.get()
            if item is _DONE:
                break
            yield item
        await task
    finally:
        if not task.done():
            logger.debug("Stream consumer closed early, cancelling producer")
            task.cancel()
            await asyncio.wait({task})
