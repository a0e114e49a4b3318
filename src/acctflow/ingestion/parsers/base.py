"""Base flow record dataclass and parser interface.

Defines the typed flow record every accounting line parser produces and
the per-run context parsers are constructed with.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from ipaddress import IPv4Address, IPv6Address
from typing import Any

IPAddress = IPv4Address | IPv6Address

UINT8_MAX = 0xFF
UINT16_MAX = 0xFFFF
UINT64_MAX = 0xFFFFFFFFFFFFFFFF


@dataclass(frozen=True, slots=True)
class RunContext:
    """Values fixed for the lifetime of one pipeline run.

    Every record parsed during the run carries the same collection time.
    """

    collected: datetime

    @classmethod
    def create(cls, collected: datetime | None = None) -> "RunContext":
        """Build a context, defaulting to the current time.

        ClickHouse DateTime has second precision, so microseconds are
        dropped. Naive timestamps are taken as UTC.
        """
        if collected is None:
            collected = datetime.now(timezone.utc)
        elif collected.tzinfo is None:
            collected = collected.replace(tzinfo=timezone.utc)
        return cls(collected=collected.replace(microsecond=0))


@dataclass(frozen=True, slots=True)
class FlowRecord:
    """One accounted flow between two endpoints.

    Created by a parser from one input line and never mutated.
    """

    src_ip: IPAddress
    dst_ip: IPAddress
    packets: int
    bytes: int
    src_port: int
    dst_port: int
    protocol: int
    iface: str
    collected: datetime

    def __post_init__(self) -> None:
        """Validate flow record fields."""
        # Missing addresses are rejected by the classifier as a fatal error
        if (
            self.src_ip is not None
            and self.dst_ip is not None
            and self.src_ip.version != self.dst_ip.version
        ):
            raise ValueError(
                f"Address family mismatch: {self.src_ip} -> {self.dst_ip}"
            )
        if not 0 <= self.src_port <= UINT16_MAX:
            raise ValueError(f"Invalid source port: {self.src_port}")
        if not 0 <= self.dst_port <= UINT16_MAX:
            raise ValueError(f"Invalid destination port: {self.dst_port}")
        if not 0 <= self.protocol <= UINT8_MAX:
            raise ValueError(f"Invalid protocol: {self.protocol}")
        if not 0 <= self.packets <= UINT64_MAX:
            raise ValueError(f"Invalid packets count: {self.packets}")
        if not 0 <= self.bytes <= UINT64_MAX:
            raise ValueError(f"Invalid bytes count: {self.bytes}")

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging and dry-run output."""
        return {
            "collected": self.collected.isoformat(),
            "src_ip": str(self.src_ip),
            "dst_ip": str(self.dst_ip),
            "src_port": self.src_port,
            "dst_port": self.dst_port,
            "protocol": self.protocol,
            "packets": self.packets,
            "bytes": self.bytes,
            "iface": self.iface,
        }


class FlowParser(ABC):
    """Abstract base class for line-oriented accounting parsers.

    Parsers never raise on malformed input; a line that is not a data
    row is rejected by returning None.
    """

    def __init__(self, context: RunContext) -> None:
        """Initialize parser.

        Args:
            context: Run context shared by all records of the run.
        """
        self._context = context

    @property
    def context(self) -> RunContext:
        """Run context records are stamped with."""
        return self._context

    @property
    @abstractmethod
    def format_name(self) -> str:
        """Return the input format name (e.g., 'ipcad')."""
        ...

    @abstractmethod
    def parse(self, line: str) -> FlowRecord | None:
        """Parse one input line.

        Args:
            line: Raw text line, with or without trailing newline.

        Returns:
            Parsed flow record, or None if the line is rejected.
        """
        ...
