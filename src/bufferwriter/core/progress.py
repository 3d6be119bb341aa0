"""
Progress events and the channel that carries them to the caller.
"""

import asyncio
from dataclasses import dataclass
from typing import AsyncIterator, Union

import structlog

from solders.pubkey import Pubkey

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Idle:
    """Session created, nothing sent yet."""

    is_terminal = False


@dataclass(frozen=True)
class Sending:
    """`sent` of `total` transactions handed off in the current round."""

    sent: int
    total: int

    is_terminal = False

    @property
    def fraction(self) -> float:
        return self.sent / self.total if self.total else 0.0


@dataclass(frozen=True)
class Completed:
    """Every chunk is confirmed in `account`."""

    account: Pubkey

    is_terminal = True


@dataclass(frozen=True)
class Failed:
    """The session aborted."""

    reason: str

    is_terminal = True


ProgressEvent = Union[Idle, Sending, Completed, Failed]

_CLOSED = object()


class ProgressReporter:
    """
    Single-producer, single-consumer progress channel.

    Emitting never blocks: when the consumer falls behind, intermediate events
    are dropped. The terminal event is delivered exactly once and always fits,
    evicting the oldest queued event if it has to.

    Usage:
        ```python
        reporter = ProgressReporter()
        async for event in reporter.events():
            ...
        ```
    """

    def __init__(self, maxsize: int = 256):
        """
        Initialize the reporter.

        Args:
            maxsize: Capacity of the underlying queue
        """
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._finished = False
        self._closed = False
        self.dropped = 0

    @property
    def finished(self) -> bool:
        """Whether the terminal event has been emitted."""
        return self._finished

    def emit(self, event: ProgressEvent) -> bool:
        """
        Emit a non-terminal event without blocking.

        Returns:
            True if the event was queued, False if it was dropped
        """
        if event.is_terminal:
            raise ValueError("Terminal events must be emitted with finish()")

        if self._finished or self._closed:
            return False

        try:
            self._queue.put_nowait(event)
            return True
        except asyncio.QueueFull:
            self.dropped += 1
            return False

    def finish(self, event: ProgressEvent) -> bool:
        """
        Emit the terminal event. Only the first call has any effect.

        Returns:
            True if this call delivered the terminal event
        """
        if not event.is_terminal:
            raise ValueError(f"{type(event).__name__} is not a terminal event")

        if self._finished or self._closed:
            return False

        self._finished = True
        self._force_put(event)
        logger.debug("progress_finished", terminal=type(event).__name__, dropped=self.dropped)
        return True

    def close(self) -> None:
        """End the stream. Without a prior terminal event the consumer sees a bare close."""
        if self._finished or self._closed:
            return
        self._closed = True
        self._force_put(_CLOSED)

    def _force_put(self, item: object) -> None:
        while True:
            try:
                self._queue.put_nowait(item)
                return
            except asyncio.QueueFull:
                self._queue.get_nowait()
                self.dropped += 1

    async def events(self) -> AsyncIterator[ProgressEvent]:
        """Yield events until the terminal event or a close."""
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item
            if item.is_terminal:
                return

    def __aiter__(self) -> AsyncIterator[ProgressEvent]:
        return self.events()
