"""Storage writers for classified flow batches.

The ClickHouse writer sends each batch as a single insert inside one
transaction. Rows are encoded up front, so a record that does not fit
the destination columns abandons the whole batch before anything is
sent.
"""

import asyncio
import json
import sys
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, TextIO

from sqlalchemy import insert, text
from sqlalchemy.ext.asyncio import AsyncEngine

from acctflow.classification.classifier import ClassifiedRecord
from acctflow.classification.tables import ip_to_int
from acctflow.common.exceptions import AcctFlowError, RecordEncodingError, SchemaError, StorageError
from acctflow.common.logging import get_logger
from acctflow.common.metrics import WRITE_FAILURES
from acctflow.ingestion.parsers.base import UINT8_MAX, UINT16_MAX, UINT64_MAX
from acctflow.storage.schema import SCHEMA_DDL, details

logger = get_logger(__name__)


class BatchWriter(ABC):
    """Abstract base class for batch storage."""

    @abstractmethod
    async def ensure_schema(self) -> None:
        """Create destination tables if they do not exist."""
        ...

    @abstractmethod
    async def write_batch(self, records: Sequence[ClassifiedRecord]) -> int:
        """Store a batch of classified records as one unit.

        Args:
            records: Records in input order.

        Returns:
            Number of records stored.
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release resources."""
        ...


def _check_range(index: int, column: str, value: int, maximum: int) -> int:
    if not isinstance(value, int) or not 0 <= value <= maximum:
        raise RecordEncodingError(
            f"Value out of range for column {column}",
            details={"stage": "encode", "index": index, "column": column, "value": repr(value)},
        )
    return value


def encode_record(index: int, item: ClassifiedRecord) -> dict[str, Any]:
    """Encode one classified record as a detail table row.

    Args:
        index: Position in the batch, for error reporting.
        item: Record to encode.

    Raises:
        RecordEncodingError: If a value does not fit its column.
    """
    record = item.record
    if record.src_ip is None or record.dst_ip is None:
        raise RecordEncodingError(
            "Record without source or destination address",
            details={"stage": "encode", "index": index, "record": repr(record)},
        )

    return {
        "collected": record.collected,
        "user_id": item.user_id,
        "dir": item.direction.value,
        "class": item.traffic_class.value,
        "src_ip": ip_to_int(record.src_ip),
        "src_port": _check_range(index, "src_port", record.src_port, UINT16_MAX),
        "dst_ip": ip_to_int(record.dst_ip),
        "dst_port": _check_range(index, "dst_port", record.dst_port, UINT16_MAX),
        "packets": _check_range(index, "packets", record.packets, UINT64_MAX),
        "bytes": _check_range(index, "bytes", record.bytes, UINT64_MAX),
        "proto": _check_range(index, "proto", record.protocol, UINT8_MAX),
    }


class ClickHouseWriter(BatchWriter):
    """Write batches to the ClickHouse detail table."""

    def __init__(self, engine: AsyncEngine) -> None:
        """Initialize writer.

        Args:
            engine: Async engine bound to the destination database.
        """
        self._engine = engine

    async def ensure_schema(self) -> None:
        """Create the detail table and rollup views.

        Raises:
            SchemaError: If any statement fails.
        """
        logger.info("Checking tables exist in ClickHouse")

        try:
            async with self._engine.begin() as conn:
                for ddl in SCHEMA_DDL:
                    await conn.execute(text(ddl))
        except Exception as e:
            WRITE_FAILURES.labels(operation="ensure_schema").inc()
            logger.error("Schema provisioning failed", error=str(e))
            raise SchemaError(
                "Could not create ClickHouse schema",
                details={"stage": "ensure_schema"},
                cause=e,
            ) from e

    async def write_batch(self, records: Sequence[ClassifiedRecord]) -> int:
        """Insert a batch in a single transaction.

        Raises:
            RecordEncodingError: If a record cannot be encoded; nothing is sent.
            StorageError: If the insert or commit fails.
        """
        if not records:
            return 0

        rows = [encode_record(i, item) for i, item in enumerate(records)]

        logger.debug("Saving batch to ClickHouse", count=len(rows))

        try:
            async with self._engine.begin() as conn:
                await conn.execute(insert(details), rows)
        except AcctFlowError:
            raise
        except Exception as e:
            WRITE_FAILURES.labels(operation="write_batch").inc()
            logger.error("Failed to insert batch", error=str(e), count=len(rows))
            raise StorageError(
                "Could not write batch to ClickHouse",
                details={"stage": "write_batch", "count": len(rows)},
                cause=e,
            ) from e

        return len(rows)

    async def close(self) -> None:
        """Dispose of the engine's connections."""
        await self._engine.dispose()


class RetryingWriter(BatchWriter):
    """Bounded retry wrapper around another writer.

    Retries storage failures with a fixed delay. Encoding errors are
    not retried. With one attempt this adds nothing to the wrapped
    writer's behavior.
    """

    def __init__(self, writer: BatchWriter, attempts: int = 1, delay: float = 1.0) -> None:
        if attempts < 1:
            raise ValueError(f"Attempts must be positive, got {attempts}")
        self._writer = writer
        self._attempts = attempts
        self._delay = delay

    async def _call(
        self,
        operation: str,
        func: Callable[..., Awaitable[Any]],
        *args: Any,
    ) -> Any:
        for attempt in range(1, self._attempts + 1):
            try:
                return await func(*args)
            except RecordEncodingError:
                raise
            except StorageError as e:
                if attempt >= self._attempts:
                    raise
                logger.warning(
                    "Storage operation failed, retrying",
                    operation=operation,
                    attempt=attempt,
                    max_attempts=self._attempts,
                    delay=self._delay,
                    error=str(e),
                )
                await asyncio.sleep(self._delay)

    async def ensure_schema(self) -> None:
        await self._call("ensure_schema", self._writer.ensure_schema)

    async def write_batch(self, records: Sequence[ClassifiedRecord]) -> int:
        return await self._call("write_batch", self._writer.write_batch, records)

    async def close(self) -> None:
        await self._writer.close()


class MemoryWriter(BatchWriter):
    """In-memory writer for testing.

    Keeps every batch it receives, in order.
    """

    def __init__(self) -> None:
        self.batches: list[list[ClassifiedRecord]] = []
        self.schema_ensured = False

    @property
    def records(self) -> list[ClassifiedRecord]:
        """All stored records in write order."""
        return [record for batch in self.batches for record in batch]

    async def ensure_schema(self) -> None:
        self.schema_ensured = True

    async def write_batch(self, records: Sequence[ClassifiedRecord]) -> int:
        self.batches.append(list(records))
        return len(records)

    async def close(self) -> None:
        """No-op for memory writer."""
        pass


class StdoutWriter(BatchWriter):
    """Dry-run writer printing records as JSON lines."""

    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream or sys.stdout

    async def ensure_schema(self) -> None:
        """Nothing to provision."""
        pass

    async def write_batch(self, records: Sequence[ClassifiedRecord]) -> int:
        for record in records:
            self._stream.write(json.dumps(record.to_dict()) + "\n")
        self._stream.flush()
        return len(records)

    async def close(self) -> None:
        self._stream.flush()
