"""Streaming classification and batching pipeline.

Two tasks per run, connected by a bounded queue:

- source: reads lines, parses them and enqueues accepted records. It
  suspends while the queue is full and closes the queue when input ends
  or a stop is requested.
- sink: dequeues records, classifies them and appends them to the
  current batch, flushing every full batch. After the queue is closed
  and drained it flushes the final partial batch, if any.

Run states: RUNNING while the source is reading, DRAINING once the queue
is closed, CLOSED after the final flush. Any error in the sink aborts the
run; records are never silently dropped after parsing.
"""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import aclosing
from dataclasses import dataclass
from enum import Enum

from acctflow.classification.classifier import Classifier
from acctflow.common.logging import get_logger
from acctflow.common.metrics import LINES_READ
from acctflow.ingestion.batcher import DEFAULT_BUNCH_SIZE, Batcher
from acctflow.ingestion.parsers.base import FlowParser, FlowRecord
from acctflow.ingestion.queue import DEFAULT_QUEUE_SIZE, RecordQueue
from acctflow.storage.writer import BatchWriter

logger = get_logger(__name__)


class PipelineState(str, Enum):
    """Lifecycle of a pipeline run."""

    IDLE = "idle"
    RUNNING = "running"
    DRAINING = "draining"
    CLOSED = "closed"


@dataclass
class PipelineStats:
    """Counters for one pipeline run."""

    lines_read: int = 0
    records_parsed: int = 0
    records_classified: int = 0
    batches_flushed: int = 0
    records_flushed: int = 0

    @property
    def lines_rejected(self) -> int:
        """Lines the parser skipped."""
        return self.lines_read - self.records_parsed


class Pipeline:
    """Single-use source/sink pipeline.

    Example:
        pipeline = Pipeline(parser, Classifier(tables), writer)
        stats = await pipeline.run(read_lines(sys.stdin.buffer))
    """

    def __init__(
        self,
        parser: FlowParser,
        classifier: Classifier,
        writer: BatchWriter,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        bunch_size: int = DEFAULT_BUNCH_SIZE,
    ) -> None:
        """Initialize pipeline.

        Args:
            parser: Line parser, bound to the run context.
            classifier: Classifier over the run's tables.
            writer: Storage writer for full batches.
            queue_size: Records buffered between source and sink.
            bunch_size: Records per storage write.
        """
        self._parser = parser
        self._classifier = classifier
        self._queue: RecordQueue[FlowRecord] = RecordQueue(queue_size)
        self._batcher = Batcher(writer, bunch_size)

        self._stats = PipelineStats()
        self._state = PipelineState.IDLE
        self._stop_requested = False
        self._source_task: asyncio.Task[None] | None = None

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def stats(self) -> PipelineStats:
        self._stats.batches_flushed = self._batcher.batches_flushed
        self._stats.records_flushed = self._batcher.records_flushed
        return self._stats

    def stop(self) -> None:
        """Ask the source to stop reading.

        Records already parsed are still classified and written.
        """
        if self._stop_requested:
            return

        self._stop_requested = True
        logger.info("Pipeline stop requested", state=self._state.value)
        if self._source_task is not None and not self._source_task.done():
            self._source_task.cancel()

    async def run(self, lines: AsyncGenerator[str, None]) -> PipelineStats:
        """Process a line source to completion.

        Args:
            lines: Async source of input lines.

        Returns:
            Run statistics.

        Raises:
            AcctFlowError: On any fatal classification or storage error.
        """
        if self._state != PipelineState.IDLE:
            raise RuntimeError("Pipeline can only be run once")

        self._state = PipelineState.RUNNING
        logger.info(
            "Pipeline started",
            collected=self._parser.context.collected.isoformat(),
            queue_size=self._queue.stats.queue_max_size,
            bunch_size=self._batcher.capacity,
        )

        source = asyncio.create_task(self._produce(lines), name="acctflow-source")
        sink = asyncio.create_task(self._consume(), name="acctflow-sink")
        self._source_task = source

        # Runs even if the source is cancelled before its first step
        source.add_done_callback(self._input_finished)

        try:
            await asyncio.wait({source, sink}, return_when=asyncio.FIRST_EXCEPTION)
            if sink.done() and sink.exception() is not None:
                source.cancel()
            await sink
            # A stop before the first step cancels the source outright
            if source.cancelled() and self._stop_requested:
                await lines.aclose()
            else:
                await source
        finally:
            for task in (source, sink):
                if not task.done():
                    task.cancel()
            await asyncio.gather(source, sink, return_exceptions=True)

        stats = self.stats
        logger.info(
            "Pipeline finished",
            lines_read=stats.lines_read,
            records_parsed=stats.records_parsed,
            lines_rejected=stats.lines_rejected,
            records_classified=stats.records_classified,
            batches_flushed=stats.batches_flushed,
            records_flushed=stats.records_flushed,
        )
        return stats

    async def _produce(self, lines: AsyncGenerator[str, None]) -> None:
        """Source stage: parse lines into the queue."""
        # Parsed but not yet enqueued
        record: FlowRecord | None = None
        try:
            async with aclosing(lines):
                async for line in lines:
                    if self._stop_requested:
                        break

                    self._stats.lines_read += 1
                    LINES_READ.inc()

                    record = self._parser.parse(line)
                    if record is None:
                        continue

                    self._stats.records_parsed += 1
                    await self._queue.put(record)
                    record = None
        except asyncio.CancelledError:
            if not self._stop_requested:
                raise
            if record is not None:
                await self._queue.put(record)
            logger.info("Source stopped", lines_read=self._stats.lines_read)

    def _input_finished(self, task: asyncio.Task[None]) -> None:
        self._queue.close()
        if self._state == PipelineState.RUNNING:
            self._state = PipelineState.DRAINING
        logger.debug("Input finished, draining", pending=self._queue.size)

    async def _consume(self) -> None:
        """Sink stage: classify, batch and flush."""
        async for record in self._queue.drain():
            classified = self._classifier.classify(record)
            self._stats.records_classified += 1
            await self._batcher.add(classified)

        await self._batcher.flush()
        self._state = PipelineState.CLOSED
