"""Per-project publish/subscribe channels for server-sent events.

A SubscriberChannel is a bounded queue of pre-formatted SSE frames drained by
one streaming response. A write to a closed or full channel raises
ChannelClosedError; SubscriberSet.broadcast evicts such channels in the same
pass. Closing a channel removes it from its set.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable

import structlog

from src.infra.errors import ChannelClosedError

logger = structlog.get_logger()


def format_sse(event: str, data: str) -> str:
    """One named SSE frame. data must be a single-line JSON document."""
    return f"event: {event}\ndata: {data}\n\n"


class SubscriberChannel:
    def __init__(self, maxsize: int = 64) -> None:
        self._queue: asyncio.Queue[str] = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self._close_callbacks: list[Callable[[SubscriberChannel], None]] = []

    @property
    def closed(self) -> bool:
        return self._closed

    def write(self, frame: str) -> None:
        if self._closed:
            raise ChannelClosedError()
        try:
            self._queue.put_nowait(frame)
        except asyncio.QueueFull as e:
            raise ChannelClosedError("Subscriber channel is saturated") from e

    async def get(self, timeout: float | None = None) -> str:
        """Next queued frame. Raises TimeoutError if none arrives within timeout."""
        return await asyncio.wait_for(self._queue.get(), timeout=timeout)

    def pending(self) -> int:
        return self._queue.qsize()

    def on_close(self, callback: Callable[[SubscriberChannel], None]) -> None:
        self._close_callbacks.append(callback)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        callbacks, self._close_callbacks = self._close_callbacks, []
        for callback in callbacks:
            callback(self)


class SubscriberSet:
    """Live channels of one project."""

    def __init__(self, project: str) -> None:
        self._project = project
        self._channels: set[SubscriberChannel] = set()

    def __len__(self) -> int:
        return len(self._channels)

    def __contains__(self, channel: object) -> bool:
        return channel in self._channels

    def add(self, channel: SubscriberChannel) -> None:
        if channel.closed:
            raise ChannelClosedError()
        self._channels.add(channel)
        channel.on_close(self._discard)
        logger.info("subscriber_added", project=self._project, subscribers=len(self._channels))

    def _discard(self, channel: SubscriberChannel) -> None:
        if channel in self._channels:
            self._channels.discard(channel)
            logger.info(
                "subscriber_removed", project=self._project, subscribers=len(self._channels)
            )

    def broadcast(self, event: str, data: str) -> int:
        """Write one frame to every channel, evicting failures. Returns deliveries."""
        frame = format_sse(event, data)
        delivered = 0
        for channel in list(self._channels):
            try:
                channel.write(frame)
            except ChannelClosedError as e:
                logger.warning(
                    "subscriber_evicted", project=self._project, sse_event=event, reason=str(e)
                )
                channel.close()
                continue
            delivered += 1
        return delivered

    def close_all(self) -> None:
        for channel in list(self._channels):
            channel.close()
