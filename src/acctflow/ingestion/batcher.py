"""Fixed-capacity batching of classified records.

A batch is handed to the writer exactly once: when it reaches capacity,
or at end of input if it is not empty. The batch is detached before the
write starts, so a failed write is never retried from here.
"""

import time

from acctflow.classification.classifier import ClassifiedRecord
from acctflow.common.logging import get_logger
from acctflow.common.metrics import BATCH_SIZE, BATCHES_FLUSHED, FLUSH_LATENCY, RECORDS_FLUSHED
from acctflow.storage.writer import BatchWriter

logger = get_logger(__name__)

DEFAULT_BUNCH_SIZE = 100000


class Batcher:
    """Accumulates classified records and flushes them in bunches."""

    def __init__(self, writer: BatchWriter, capacity: int = DEFAULT_BUNCH_SIZE) -> None:
        """Initialize batcher.

        Args:
            writer: Storage writer receiving full batches.
            capacity: Records per batch.
        """
        if capacity < 1:
            raise ValueError(f"Batch capacity must be positive, got {capacity}")

        self._writer = writer
        self._capacity = capacity
        self._records: list[ClassifiedRecord] = []

        self._batches_flushed = 0
        self._records_flushed = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def pending(self) -> int:
        """Records waiting in the current batch."""
        return len(self._records)

    @property
    def batches_flushed(self) -> int:
        return self._batches_flushed

    @property
    def records_flushed(self) -> int:
        return self._records_flushed

    async def add(self, record: ClassifiedRecord) -> None:
        """Append a record, flushing if the batch is now full."""
        self._records.append(record)
        if len(self._records) >= self._capacity:
            await self.flush()

    async def flush(self) -> int:
        """Write the current batch if it holds any records.

        Returns:
            Number of records written.
        """
        if not self._records:
            return 0

        batch, self._records = self._records, []

        start = time.perf_counter()
        await self._writer.write_batch(batch)
        duration = time.perf_counter() - start

        self._batches_flushed += 1
        self._records_flushed += len(batch)
        BATCHES_FLUSHED.inc()
        RECORDS_FLUSHED.inc(len(batch))
        BATCH_SIZE.observe(len(batch))
        FLUSH_LATENCY.observe(duration)

        logger.info(
            "Batch flushed",
            count=len(batch),
            capacity=self._capacity,
            duration_ms=round(duration * 1000, 2),
        )
        return len(batch)
