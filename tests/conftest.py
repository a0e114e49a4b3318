"""Pytest configuration and fixtures for acctflow tests."""

from collections.abc import Callable
from datetime import datetime, timezone
from ipaddress import ip_address
from typing import Any

import pytest

from acctflow.classification.classifier import Classifier
from acctflow.classification.tables import ClassificationTables, build_tables
from acctflow.ingestion.parsers.base import FlowRecord, RunContext
from acctflow.ingestion.parsers.ipcad import IpcadParser
from acctflow.storage.writer import MemoryWriter


@pytest.fixture
def collected() -> datetime:
    """Fixed collection timestamp."""
    return datetime(2024, 3, 1, 12, 30, 0, tzinfo=timezone.utc)


@pytest.fixture
def run_context(collected: datetime) -> RunContext:
    """Run context with a fixed collection time."""
    return RunContext.create(collected)


@pytest.fixture
def parser(run_context: RunContext) -> IpcadParser:
    """ipcad parser bound to the fixed run context."""
    return IpcadParser(run_context)


@pytest.fixture
def sample_users() -> dict[str, str]:
    """Users owning local addresses."""
    return {
        "192.168.0.1": "1",
        "192.168.0.2": "2",
    }


@pytest.fixture
def sample_networks() -> dict[str, str]:
    """One local network and one peering network."""
    return {
        "192.168.0.0/16": "local",
        "10.10.0.0/8": "peering",
    }


@pytest.fixture
def tables(sample_users: dict[str, str], sample_networks: dict[str, str]) -> ClassificationTables:
    """Tables with local and peering networks."""
    return build_tables(sample_users, sample_networks)


@pytest.fixture
def classifier(tables: ClassificationTables) -> Classifier:
    return Classifier(tables)


@pytest.fixture
def memory_writer() -> MemoryWriter:
    return MemoryWriter()


@pytest.fixture
def make_record(collected: datetime) -> Callable[..., FlowRecord]:
    """Factory for flow records with sensible defaults."""

    def _make(src: str = "192.168.0.1", dst: str = "8.8.8.8", **overrides: Any) -> FlowRecord:
        fields: dict[str, Any] = {
            "src_ip": ip_address(src),
            "dst_ip": ip_address(dst),
            "packets": 10,
            "bytes": 1500,
            "src_port": 40000,
            "dst_port": 443,
            "protocol": 6,
            "iface": "em0",
            "collected": collected,
        }
        fields.update(overrides)
        return FlowRecord(**fields)

    return _make


@pytest.fixture
def make_lines() -> Callable[[int], list[str]]:
    """Factory for ipcad data lines with distinct byte counts."""

    def _make(count: int) -> list[str]:
        return [
            f"192.168.0.1 10.20.30.{i % 250 + 1} 1 {i + 1} 1024 80 6 em0\n"
            for i in range(count)
        ]

    return _make


@pytest.fixture
def sample_ipcad_output() -> str:
    """Typical `show ip accounting` output."""
    return (
        "Source           Destination    Packets        Bytes  SrcPt DstPt Proto   IF\n"
        "188.218.183.98   121.82.188.202       1           82  18218   888     8  em1\n"
        "192.168.0.1      8.8.8.8              3          180  53011    53    17  em0\n"
        "8.8.8.8          192.168.0.2          3          420     53 53011    17  em0\n"
        "\n"
        "Accounting threshold exceeded for 0 packets (0 bytes)\n"
    )
