"""Bounded record queue between the reader and the writer stage.

The queue is the only flow control in the pipeline: a full queue
suspends the producer until the consumer makes room. Nothing is sampled
or dropped. Closing the queue marks end of input; the consumer still
receives everything enqueued before the close.
"""

import asyncio
from collections.abc import AsyncIterator
from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

from acctflow.common.exceptions import QueueClosedError
from acctflow.common.logging import get_logger
from acctflow.common.metrics import QUEUE_SIZE

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_QUEUE_SIZE = 100

# Marks end of input inside the underlying queue
_CLOSED = object()


class QueueState(str, Enum):
    """Lifecycle of a record queue."""

    OPEN = "open"
    DRAINING = "draining"
    CLOSED = "closed"


@dataclass
class QueueStats:
    """Statistics about queue usage."""

    state: QueueState
    queue_size: int
    queue_max_size: int
    total_put: int
    total_got: int

    @property
    def queue_utilization(self) -> float:
        """Queue utilization as percentage."""
        return (self.queue_size / self.queue_max_size) * 100


class RecordQueue(Generic[T]):
    """Bounded FIFO queue with an explicit closed state.

    States:
    - OPEN: accepting items.
    - DRAINING: closed for writing, items still waiting.
    - CLOSED: closed and empty; get() raises QueueClosedError.
    """

    def __init__(self, maxsize: int = DEFAULT_QUEUE_SIZE) -> None:
        """Initialize queue.

        Args:
            maxsize: Number of items the queue holds before put() blocks.
        """
        if maxsize < 1:
            raise ValueError(f"Queue size must be positive, got {maxsize}")

        # One extra slot so the end marker always fits
        self._queue: asyncio.Queue[object] = asyncio.Queue(maxsize=maxsize + 1)
        self._max_size = maxsize
        self._slots = asyncio.Semaphore(maxsize)
        self._closed = False

        # Counters
        self._total_put = 0
        self._total_got = 0

    @property
    def state(self) -> QueueState:
        """Current queue state."""
        if not self._closed:
            return QueueState.OPEN
        if self.size > 0:
            return QueueState.DRAINING
        return QueueState.CLOSED

    @property
    def closed(self) -> bool:
        """Whether end of input was signalled."""
        return self._closed

    @property
    def size(self) -> int:
        """Number of items waiting."""
        return self._total_put - self._total_got

    @property
    def stats(self) -> QueueStats:
        """Get current statistics."""
        return QueueStats(
            state=self.state,
            queue_size=self.size,
            queue_max_size=self._max_size,
            total_put=self._total_put,
            total_got=self._total_got,
        )

    async def put(self, item: T) -> None:
        """Add item, waiting while the queue is full.

        Raises:
            QueueClosedError: If the queue was closed.
        """
        if self._closed:
            raise QueueClosedError("Put on a closed queue")

        await self._slots.acquire()
        if self._closed:
            self._slots.release()
            raise QueueClosedError("Queue closed while waiting for room")

        self._queue.put_nowait(item)
        self._total_put += 1
        QUEUE_SIZE.set(self.size)

    def close(self) -> None:
        """Signal end of input.

        Idempotent. Items already enqueued stay available to get().
        """
        if self._closed:
            return

        self._closed = True
        self._queue.put_nowait(_CLOSED)
        logger.debug("Queue closed", pending=self.size)

    async def get(self) -> T:
        """Get next item, waiting while the queue is empty and open.

        Raises:
            QueueClosedError: If the queue is closed and fully drained.
        """
        item = await self._queue.get()
        if item is _CLOSED:
            # Leave the marker for any later get()
            self._queue.put_nowait(_CLOSED)
            raise QueueClosedError("Queue drained")

        self._total_got += 1
        self._slots.release()
        QUEUE_SIZE.set(self.size)
        return item  # type: ignore[return-value]

    async def drain(self) -> AsyncIterator[T]:
        """Iterate over items until the queue is closed and empty."""
        while True:
            try:
                item = await self.get()
            except QueueClosedError:
                return
            yield item
