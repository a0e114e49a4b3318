"""Unit tests for storage writers."""

import io
import json
from collections.abc import AsyncIterator, Callable, Sequence
from contextlib import asynccontextmanager
from dataclasses import replace
from typing import Any

import pytest

from acctflow.classification.classifier import ClassifiedRecord, Classifier
from acctflow.classification.constants import Direction, TrafficClass
from acctflow.common.exceptions import RecordEncodingError, SchemaError, StorageError
from acctflow.ingestion.parsers.base import FlowRecord
from acctflow.storage.schema import (
    CLASS_ENUM,
    DETAILS_TABLE,
    DIRECTION_ENUM,
    ROLLUPS,
    SCHEMA_DDL,
    rollup_ddl,
)
from acctflow.storage.writer import (
    ClickHouseWriter,
    MemoryWriter,
    RetryingWriter,
    StdoutWriter,
    encode_record,
)


class FakeConnection:
    """Collects statements executed inside a transaction."""

    def __init__(self, engine: "FakeEngine") -> None:
        self._engine = engine
        self.pending: list[tuple[Any, Any]] = []

    async def execute(self, statement: Any, parameters: Any = None) -> None:
        if self._engine.fail_with is not None:
            raise self._engine.fail_with
        self.pending.append((statement, parameters))


class FakeEngine:
    """Stands in for AsyncEngine; commits statements only on success."""

    def __init__(self, fail_with: Exception | None = None) -> None:
        self.fail_with = fail_with
        self.committed: list[tuple[Any, Any]] = []
        self.transactions = 0
        self.disposed = False

    @asynccontextmanager
    async def begin(self) -> AsyncIterator[FakeConnection]:
        self.transactions += 1
        conn = FakeConnection(self)
        yield conn
        self.committed.extend(conn.pending)

    async def dispose(self) -> None:
        self.disposed = True


class FlakyWriter(MemoryWriter):
    """Fails the first `failures` writes."""

    def __init__(self, failures: int, error: Exception | None = None) -> None:
        super().__init__()
        self.failures = failures
        self.error = error or StorageError("connection reset")
        self.calls = 0

    async def write_batch(self, records: Sequence[ClassifiedRecord]) -> int:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return await super().write_batch(records)


@pytest.fixture
def classified(classifier: Classifier, make_record: Callable[..., FlowRecord]) -> list[ClassifiedRecord]:
    return [
        classifier.classify(make_record("192.168.0.1", "10.10.0.1")),
        classifier.classify(make_record("8.8.8.8", "192.168.0.2", bytes=2**64 - 1)),
    ]


class TestSchema:
    """Test cases for the ClickHouse DDL."""

    def test_enum_types(self):
        assert DIRECTION_ENUM == "Enum8('unknown' = 0, 'in' = 1, 'out' = 2)"
        assert CLASS_ENUM == (
            "Enum8('unknown' = 0, 'local' = 1, 'peering' = 2, 'internet' = 3, 'multicast' = 4)"
        )

    def test_detail_columns(self):
        ddl = SCHEMA_DDL[0]

        assert "packets UInt64" in ddl
        assert "bytes UInt64" in ddl
        assert "src_ip UInt32" in ddl
        assert "proto UInt8" in ddl
        assert "PARTITION BY toYYYYMMDD(collected)" in ddl

    def test_rollup_buckets(self):
        assert "toStartOfHour(collected)" in rollup_ddl("hourly", *ROLLUPS["hourly"])
        assert "sumState(bytes)" in rollup_ddl("daily", *ROLLUPS["daily"])


class TestEncodeRecord:
    """Test cases for row encoding."""

    def test_row_layout(self, classified: list[ClassifiedRecord], collected):
        row = encode_record(0, classified[0])

        assert row == {
            "collected": collected,
            "user_id": "1",
            "dir": "out",
            "class": "peering",
            "src_ip": 0xC0A80001,
            "src_port": 40000,
            "dst_ip": 0x0A0A0001,
            "dst_port": 443,
            "packets": 10,
            "bytes": 1500,
            "proto": 6,
        }

    def test_uint64_max(self, classified: list[ClassifiedRecord]):
        assert encode_record(1, classified[1])["bytes"] == 2**64 - 1

    def test_missing_address(self, classified: list[ClassifiedRecord]):
        item = replace(classified[0], record=replace(classified[0].record, src_ip=None))

        with pytest.raises(RecordEncodingError) as exc_info:
            encode_record(3, item)

        assert exc_info.value.details["index"] == 3

    def test_unclassified_record(self, classifier: Classifier, make_record: Callable[..., FlowRecord]):
        item = classifier.classify(make_record("8.8.8.8", "1.1.1.1"))

        row = encode_record(0, item)

        assert row["dir"] == Direction.UNKNOWN.value
        assert row["class"] == TrafficClass.UNKNOWN.value
        assert row["user_id"] == ""


class TestClickHouseWriter:
    """Test cases for ClickHouseWriter."""

    @pytest.mark.asyncio
    async def test_ensure_schema_order(self):
        engine = FakeEngine()
        writer = ClickHouseWriter(engine)  # type: ignore[arg-type]

        await writer.ensure_schema()

        statements = [str(statement) for statement, _ in engine.committed]
        assert statements == SCHEMA_DDL
        assert f"CREATE TABLE IF NOT EXISTS {DETAILS_TABLE}" in statements[0]
        for statement, name in zip(statements[1:], ROLLUPS):
            assert f"CREATE MATERIALIZED VIEW IF NOT EXISTS {name}" in statement
            assert "AggregatingMergeTree" in statement

    @pytest.mark.asyncio
    async def test_ensure_schema_failure(self):
        writer = ClickHouseWriter(FakeEngine(fail_with=RuntimeError("syntax error")))  # type: ignore[arg-type]

        with pytest.raises(SchemaError) as exc_info:
            await writer.ensure_schema()

        assert isinstance(exc_info.value.cause, RuntimeError)

    @pytest.mark.asyncio
    async def test_write_batch_single_insert(self, classified: list[ClassifiedRecord]):
        engine = FakeEngine()
        writer = ClickHouseWriter(engine)  # type: ignore[arg-type]

        written = await writer.write_batch(classified)

        assert written == 2
        assert engine.transactions == 1
        assert len(engine.committed) == 1
        statement, rows = engine.committed[0]
        assert statement.table.name == DETAILS_TABLE
        assert [row["user_id"] for row in rows] == ["1", "2"]

    @pytest.mark.asyncio
    async def test_empty_batch(self):
        engine = FakeEngine()
        writer = ClickHouseWriter(engine)  # type: ignore[arg-type]

        assert await writer.write_batch([]) == 0
        assert engine.transactions == 0

    @pytest.mark.asyncio
    async def test_encoding_error_sends_nothing(self, classified: list[ClassifiedRecord]):
        engine = FakeEngine()
        writer = ClickHouseWriter(engine)  # type: ignore[arg-type]
        bad = replace(classified[1], record=replace(classified[1].record, dst_ip=None))

        with pytest.raises(RecordEncodingError):
            await writer.write_batch([classified[0], bad])

        assert engine.transactions == 0
        assert engine.committed == []

    @pytest.mark.asyncio
    async def test_insert_failure_wrapped(self, classified: list[ClassifiedRecord]):
        engine = FakeEngine(fail_with=ConnectionError("broken pipe"))
        writer = ClickHouseWriter(engine)  # type: ignore[arg-type]

        with pytest.raises(StorageError) as exc_info:
            await writer.write_batch(classified)

        assert exc_info.value.details["count"] == 2
        assert engine.committed == []

    @pytest.mark.asyncio
    async def test_close_disposes_engine(self):
        engine = FakeEngine()

        await ClickHouseWriter(engine).close()  # type: ignore[arg-type]

        assert engine.disposed


class TestRetryingWriter:
    """Test cases for RetryingWriter."""

    def test_invalid_attempts(self):
        with pytest.raises(ValueError):
            RetryingWriter(MemoryWriter(), attempts=0)

    @pytest.mark.asyncio
    async def test_single_attempt_does_not_retry(self, classified: list[ClassifiedRecord]):
        inner = FlakyWriter(failures=1)
        writer = RetryingWriter(inner, attempts=1, delay=0)

        with pytest.raises(StorageError):
            await writer.write_batch(classified)

        assert inner.calls == 1

    @pytest.mark.asyncio
    async def test_retries_until_success(self, classified: list[ClassifiedRecord]):
        inner = FlakyWriter(failures=2)
        writer = RetryingWriter(inner, attempts=3, delay=0)

        assert await writer.write_batch(classified) == 2
        assert inner.calls == 3
        assert inner.records == classified

    @pytest.mark.asyncio
    async def test_gives_up(self, classified: list[ClassifiedRecord]):
        inner = FlakyWriter(failures=5)
        writer = RetryingWriter(inner, attempts=3, delay=0)

        with pytest.raises(StorageError):
            await writer.write_batch(classified)

        assert inner.calls == 3

    @pytest.mark.asyncio
    async def test_encoding_error_not_retried(self, classified: list[ClassifiedRecord]):
        inner = FlakyWriter(failures=5, error=RecordEncodingError("bad row"))
        writer = RetryingWriter(inner, attempts=3, delay=0)

        with pytest.raises(RecordEncodingError):
            await writer.write_batch(classified)

        assert inner.calls == 1

    @pytest.mark.asyncio
    async def test_delegates_schema_and_close(self):
        inner = MemoryWriter()
        writer = RetryingWriter(inner)

        await writer.ensure_schema()
        await writer.close()

        assert inner.schema_ensured


class TestStdoutWriter:
    """Test cases for StdoutWriter."""

    @pytest.mark.asyncio
    async def test_json_lines(self, classified: list[ClassifiedRecord]):
        stream = io.StringIO()
        writer = StdoutWriter(stream)

        assert await writer.write_batch(classified) == 2

        rows = [json.loads(line) for line in stream.getvalue().splitlines()]
        assert [row["class"] for row in rows] == ["peering", "internet"]
        assert rows[1]["bytes"] == 2**64 - 1
