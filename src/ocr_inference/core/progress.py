"""Progress channel.

Pipelines publish ProgressEvent values into a channel; a consumer iterates
over it asynchronously. ``publish`` is safe to call from worker threads.
After ``close()`` or ``cancel()`` further events are dropped, so a consumer
that stops listening never blocks the pipeline.

Examples
--------
    channel = ProgressChannel()
    task = asyncio.create_task(engine.process_image(image, progress=channel.publish))
    async for event in channel:
        print(event.message, event.percent)
"""

import asyncio
import threading
from typing import Callable, Optional

from ..types import ProgressEvent

_CLOSED = object()


class ProgressChannel:
    """Asynchronous stream of progress events."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        if loop is None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                loop = None
        self._loop = loop
        self._queue: Optional[asyncio.Queue] = None
        self._closed = False
        self._lock = threading.Lock()

    def _bind(self) -> asyncio.Queue:
        if self._queue is None:
            if self._loop is None:
                self._loop = asyncio.get_running_loop()
            self._queue = asyncio.Queue()
        return self._queue

    @property
    def closed(self) -> bool:
        return self._closed

    def _put(self, item) -> None:
        if item is not _CLOSED and self._closed:
            return
        self._bind().put_nowait(item)

    def _dispatch(self, item) -> None:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if self._loop is None or running is self._loop:
            self._put(item)
        else:
            self._loop.call_soon_threadsafe(self._put, item)

    def publish(self, event: ProgressEvent) -> None:
        with self._lock:
            if self._closed:
                return
        self._dispatch(event)

    def close(self) -> None:
        """End the stream after events already published."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._dispatch(_CLOSED)

    cancel = close

    def __aiter__(self):
        self._bind()
        return self

    async def __anext__(self) -> ProgressEvent:
        item = await self._bind().get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item


def threadsafe_callback(callback: Optional[Callable[[ProgressEvent], None]],
                        loop: asyncio.AbstractEventLoop) -> Optional[Callable[[ProgressEvent], None]]:
    """Wrap a loop-bound progress callback so worker threads can call it."""
    if callback is None:
        return None

    def relay(event: ProgressEvent) -> None:
        loop.call_soon_threadsafe(callback, event)

    return relay


__all__ = ["ProgressChannel", "threadsafe_callback"]
