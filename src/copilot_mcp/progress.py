"""
Best-effort progress forwarding from a running subprocess to an MCP client.

The process runner calls ``ProgressRelay.emit`` synchronously for every
stdout chunk. Chunks are queued and delivered in order by a background
task, so a slow or failing client never blocks or breaks the run. Each
sink call and the final flush are bounded; a stalled client loses
notifications instead of holding back the tool result.
"""

import asyncio
import itertools
import logging
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

# Interval between heartbeats while the CLI is silent
KEEPALIVE_INTERVAL = 25.0
HEARTBEAT_MESSAGE = "Still processing..."
# Upper bound for one sink call
DELIVERY_TIMEOUT = 5.0
# Upper bound for flushing the queue on close
CLOSE_TIMEOUT = 10.0

ProgressSink = Callable[[str], Awaitable[None]]

_CLOSE = object()


class ProgressRelay:
    """
    Ordered, non-blocking channel between a producer and an async sink.

    Usage:
        async with ProgressRelay(sink) as relay:
            await run(..., on_progress=relay.emit)
        # every queued chunk has been delivered here

    Attributes:
        emitted: Number of chunks accepted by emit()
        delivered: Number of sink calls that completed without error
        failures: Number of sink calls that raised or timed out
        dropped: Number of chunks discarded because the flush deadline passed
    """

    def __init__(
        self,
        sink: ProgressSink,
        *,
        keepalive_interval: Optional[float] = KEEPALIVE_INTERVAL,
        heartbeat_message: str = HEARTBEAT_MESSAGE,
        delivery_timeout: float = DELIVERY_TIMEOUT,
        close_timeout: float = CLOSE_TIMEOUT,
    ):
        self._sink = sink
        self._keepalive_interval = keepalive_interval
        self._heartbeat_message = heartbeat_message
        self._delivery_timeout = delivery_timeout
        self._close_timeout = close_timeout
        self._queue: asyncio.Queue = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None
        self._closed = False
        self.emitted = 0
        self.delivered = 0
        self.failures = 0
        self.dropped = 0

    def emit(self, chunk: str) -> None:
        """Queue a chunk for delivery. Never blocks and never raises."""
        if self._closed or not chunk:
            return
        self._queue.put_nowait(chunk)
        self.emitted += 1

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.ensure_future(self._drain())

    async def aclose(self) -> None:
        """
        Stop accepting chunks and wait for queued chunks to be delivered.

        Gives up after ``close_timeout`` seconds; whatever is still queued
        at that point is dropped.
        """
        if self._closed:
            return
        self._closed = True
        if self._task is None:
            return
        self._queue.put_nowait(_CLOSE)
        done, _ = await asyncio.wait({self._task}, timeout=self._close_timeout)
        if done:
            return
        self._task.cancel()
        await asyncio.wait({self._task})
        # the close marker is still queued behind the undelivered chunks
        self.dropped = max(self._queue.qsize() - 1, 0)
        logger.warning(
            f"Progress flush timed out after {self._close_timeout}s, "
            f"dropped {self.dropped} pending notification(s)"
        )

    async def __aenter__(self) -> "ProgressRelay":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def _next_item(self) -> Any:
        if self._keepalive_interval is None:
            return await self._queue.get()
        while True:
            try:
                return await asyncio.wait_for(self._queue.get(), self._keepalive_interval)
            except asyncio.TimeoutError:
                await self._deliver(self._heartbeat_message)

    async def _drain(self) -> None:
        while True:
            item = await self._next_item()
            if item is _CLOSE:
                break
            await self._deliver(item)

    async def _deliver(self, message: str) -> None:
        try:
            await asyncio.wait_for(self._sink(message), self._delivery_timeout)
            self.delivered += 1
        except asyncio.TimeoutError:
            self.failures += 1
            logger.warning(f"Progress notification timed out after {self._delivery_timeout}s")
        except Exception as e:
            self.failures += 1
            logger.warning(f"Progress notification failed: {e}")


def mcp_progress_sink(ctx) -> ProgressSink:
    """
    Adapt a fastmcp Context to a progress sink.

    Each delivered message becomes a progress notification with a
    monotonically increasing progress counter. Build one sink per tool
    call and share it between relays that report on the same request.
    """
    counter = itertools.count(1)
    lock = asyncio.Lock()

    async def sink(message: str) -> None:
        async with lock:
            await ctx.report_progress(progress=next(counter), message=message)

    return sink
