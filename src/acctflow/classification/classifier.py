"""Flow classification by network membership.

Determines direction, traffic class and owning user of a flow from the
local, peering and multicast networks and the user table.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, NamedTuple

from acctflow.classification.constants import Direction, TrafficClass
from acctflow.classification.tables import ClassificationTables
from acctflow.common.exceptions import ClassificationError
from acctflow.common.metrics import RECORDS_CLASSIFIED
from acctflow.ingestion.parsers.base import FlowRecord, IPAddress


class Classification(NamedTuple):
    """Result of classifying one flow."""

    direction: Direction
    traffic_class: TrafficClass
    user_id: str


UNCLASSIFIED = Classification(Direction.UNKNOWN, TrafficClass.UNKNOWN, "")


@dataclass(frozen=True, slots=True)
class ClassifiedRecord:
    """A flow record together with its classification."""

    record: FlowRecord
    user_id: str
    direction: Direction
    traffic_class: TrafficClass

    @property
    def src_ip(self) -> IPAddress:
        return self.record.src_ip

    @property
    def dst_ip(self) -> IPAddress:
        return self.record.dst_ip

    @property
    def collected(self) -> datetime:
        return self.record.collected

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for dry-run output."""
        result = self.record.to_dict()
        result.update({
            "user_id": self.user_id,
            "dir": self.direction.value,
            "class": self.traffic_class.value,
        })
        return result


def classify(record: FlowRecord, tables: ClassificationTables) -> Classification:
    """Classify a flow record.

    Local networks are scanned in configured order and a later match
    overrides an earlier one; this is not a longest-prefix match. The
    remote side is then checked against the peering networks, and
    multicast overrides peering.

    Args:
        record: Parsed flow record.
        tables: Classification tables.

    Returns:
        Direction, traffic class and user id. Flows with neither endpoint
        in a local network are unclassified.

    Raises:
        ClassificationError: If the record lacks an address.
    """
    src, dst = record.src_ip, record.dst_ip
    if src is None or dst is None:
        raise ClassificationError(
            "Flow record without source or destination address",
            details={"stage": "classify", "record": repr(record)},
        )

    direction = Direction.UNKNOWN
    traffic_class = TrafficClass.UNKNOWN
    client: IPAddress | None = None
    remote: IPAddress | None = None

    for network in tables.local:
        if src in network:
            client, remote = src, dst
            direction = Direction.OUT
            traffic_class = TrafficClass.INTERNET

        if dst in network:
            client, remote = dst, src
            direction = Direction.IN
            traffic_class = TrafficClass.INTERNET

        if remote is not None and remote in network:
            traffic_class = TrafficClass.LOCAL

    if remote is not None:
        for network in tables.peering:
            if remote in network:
                traffic_class = TrafficClass.PEERING

        if remote in tables.multicast:
            traffic_class = TrafficClass.MULTICAST

    if client is None:
        return UNCLASSIFIED

    return Classification(direction, traffic_class, tables.user_for(client) or "")


class Classifier:
    """Classifies flow records against a fixed set of tables."""

    def __init__(self, tables: ClassificationTables) -> None:
        self._tables = tables

    @property
    def tables(self) -> ClassificationTables:
        return self._tables

    def classify(self, record: FlowRecord) -> ClassifiedRecord:
        """Classify a record and wrap it with its classification."""
        result = classify(record, self._tables)
        RECORDS_CLASSIFIED.labels(
            direction=result.direction.value,
            traffic_class=result.traffic_class.value,
        ).inc()
        return ClassifiedRecord(
            record=record,
            user_id=result.user_id,
            direction=result.direction,
            traffic_class=result.traffic_class,
        )
