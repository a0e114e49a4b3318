"""Constants for traffic classification.

Defines the direction and traffic class domains. Enum values double as
the ClickHouse Enum8 labels, and the codes below are their stored values.
"""

from enum import Enum
from ipaddress import IPv4Network
from typing import Final


class Direction(str, Enum):
    """Which side of the flow the local endpoint was on."""

    UNKNOWN = "unknown"
    IN = "in"
    OUT = "out"


class TrafficClass(str, Enum):
    """Network class of the remote endpoint."""

    UNKNOWN = "unknown"
    LOCAL = "local"
    PEERING = "peering"
    INTERNET = "internet"
    MULTICAST = "multicast"


class NetworkTag(str, Enum):
    """Class tags accepted for configured networks."""

    LOCAL = "local"
    PEERING = "peering"


DIRECTION_CODES: Final[dict[Direction, int]] = {
    Direction.UNKNOWN: 0,
    Direction.IN: 1,
    Direction.OUT: 2,
}

TRAFFIC_CLASS_CODES: Final[dict[TrafficClass, int]] = {
    TrafficClass.UNKNOWN: 0,
    TrafficClass.LOCAL: 1,
    TrafficClass.PEERING: 2,
    TrafficClass.INTERNET: 3,
    TrafficClass.MULTICAST: 4,
}

MULTICAST_NETWORK: Final[IPv4Network] = IPv4Network("224.0.0.0/4")
