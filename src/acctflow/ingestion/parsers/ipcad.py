"""ipcad accounting table parser.

ipcad prints its accounting table as whitespace separated columns:

    Source           Destination    Packets   Bytes  SrcPt DstPt Proto  IF
    188.218.183.98   121.82.188.202       1      82  18218   888     8  em1

Anything that is not an eight column data row (the header, blank lines,
the trailing summary) is skipped.
"""

from ipaddress import IPv6Address, ip_address

from acctflow.common.logging import get_logger
from acctflow.common.metrics import LINES_REJECTED, RECORDS_PARSED
from acctflow.ingestion.parsers.base import (
    UINT8_MAX,
    UINT16_MAX,
    UINT64_MAX,
    FlowParser,
    FlowRecord,
    IPAddress,
    RunContext,
)

logger = get_logger(__name__)

IPCAD_FIELD_COUNT = 8
DEFAULT_HEADER_TOKEN = "Source"


class LineRejected(Exception):
    """Internal signal that a line is not a data row."""

    def __init__(self, reason: str, value: str = "") -> None:
        super().__init__(reason)
        self.reason = reason
        self.value = value


def _parse_uint(value: str, maximum: int) -> int:
    # int() also accepts signs, underscores and non-ASCII digits
    if not (value.isascii() and value.isdigit()):
        raise LineRejected("bad_number", value)
    # Bound the length before int(), which refuses very long digit strings
    digits = value.lstrip("0") or "0"
    if len(digits) > len(str(maximum)):
        raise LineRejected("out_of_range", value)
    number = int(digits)
    if number > maximum:
        raise LineRejected("out_of_range", value)
    return number


def _parse_address(value: str) -> IPAddress:
    try:
        address = ip_address(value)
    except ValueError:
        raise LineRejected("bad_address", value) from None
    if isinstance(address, IPv6Address) and address.ipv4_mapped is not None:
        return address.ipv4_mapped
    return address


class IpcadParser(FlowParser):
    """Parser for ipcad `show ip accounting` output."""

    def __init__(
        self,
        context: RunContext,
        header_token: str = DEFAULT_HEADER_TOKEN,
    ) -> None:
        """Initialize parser.

        Args:
            context: Run context shared by all records of the run.
            header_token: First field of the table header row.
        """
        super().__init__(context)
        self._header_token = header_token

    @property
    def format_name(self) -> str:
        return "ipcad"

    def parse(self, line: str) -> FlowRecord | None:
        """Parse one accounting line.

        Args:
            line: Raw text line.

        Returns:
            Flow record, or None if the line is not a valid data row.
        """
        fields = line.split()
        if not fields:
            return None

        try:
            record = self._parse_fields(fields)
        except LineRejected as e:
            LINES_REJECTED.labels(reason=e.reason).inc()
            logger.debug(
                "Skipping line",
                reason=e.reason,
                value=e.value,
                line=line.rstrip("\n"),
            )
            return None

        RECORDS_PARSED.inc()
        return record

    def _parse_fields(self, fields: list[str]) -> FlowRecord:
        if len(fields) != IPCAD_FIELD_COUNT:
            raise LineRejected("field_count", str(len(fields)))

        if fields[0] == self._header_token:
            raise LineRejected("header", fields[0])

        src_ip = _parse_address(fields[0])
        dst_ip = _parse_address(fields[1])
        if src_ip.version != dst_ip.version:
            raise LineRejected("mixed_family", f"{fields[0]} {fields[1]}")

        return FlowRecord(
            src_ip=src_ip,
            dst_ip=dst_ip,
            packets=_parse_uint(fields[2], UINT64_MAX),
            bytes=_parse_uint(fields[3], UINT64_MAX),
            src_port=_parse_uint(fields[4], UINT16_MAX),
            dst_port=_parse_uint(fields[5], UINT16_MAX),
            protocol=_parse_uint(fields[6], UINT8_MAX),
            iface=fields[7],
            collected=self._context.collected,
        )
