"""Classification lookup tables.

Tables are built once from the user and network mappings before the
first record is classified and are read-only afterwards.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from ipaddress import IPv4Address, IPv4Network, IPv6Network, ip_address, ip_network
from types import MappingProxyType

from acctflow.classification.constants import MULTICAST_NETWORK, NetworkTag
from acctflow.common.logging import get_logger
from acctflow.ingestion.parsers.base import IPAddress

logger = get_logger(__name__)

IPNetwork = IPv4Network | IPv6Network


def ip_to_int(address: IPAddress) -> int:
    """Reduce an address to an unsigned 32-bit integer.

    IPv4 addresses convert directly. For 16-byte addresses the low-order
    four bytes are taken, which is exact for IPv4-mapped and
    IPv4-compatible addresses.

    Args:
        address: IPv4 or IPv6 address.

    Returns:
        Big-endian integer value of the last four bytes.
    """
    return int.from_bytes(address.packed[-4:], byteorder="big")


def int_to_ip(value: int) -> IPv4Address:
    """Inverse of ip_to_int for IPv4 addresses."""
    return IPv4Address(value)


@dataclass(frozen=True)
class ClassificationTables:
    """Immutable lookup structures used by the classifier.

    Network sequences keep their configured order; the classifier relies
    on it.
    """

    users: Mapping[int, str] = field(default_factory=lambda: MappingProxyType({}))
    local: tuple[IPNetwork, ...] = ()
    peering: tuple[IPNetwork, ...] = ()
    multicast: IPv4Network = MULTICAST_NETWORK

    def user_for(self, address: IPAddress) -> str | None:
        """Look up the user owning an address."""
        return self.users.get(ip_to_int(address))

    def summary(self) -> dict[str, int]:
        """Table sizes for logging."""
        return {
            "users": len(self.users),
            "local_networks": len(self.local),
            "peering_networks": len(self.peering),
        }


def build_tables(
    users: Mapping[str, str] | None = None,
    networks: Mapping[str, str] | None = None,
) -> ClassificationTables:
    """Build classification tables from raw mappings.

    Entries that fail to parse are logged and left out.

    Args:
        users: IP address string -> user id.
        networks: CIDR string -> class tag ("local" or "peering").

    Returns:
        Fully built, read-only tables.
    """
    user_table: dict[int, str] = {}
    for ip, user_id in (users or {}).items():
        try:
            address = ip_address(ip.strip())
        except ValueError:
            logger.warning("Could not parse user address, skipping", ip=ip, user_id=user_id)
            continue

        key = ip_to_int(address)
        previous = user_table.get(key)
        if previous is not None and previous != user_id:
            logger.warning(
                "Duplicate user address, last entry wins",
                ip=ip,
                previous_user_id=previous,
                user_id=user_id,
            )
        user_table[key] = str(user_id)

    local: list[IPNetwork] = []
    peering: list[IPNetwork] = []
    for cidr, tag in (networks or {}).items():
        try:
            network = ip_network(cidr.strip(), strict=False)
        except ValueError as e:
            logger.warning("Could not parse network, skipping", cidr=cidr, tag=tag, error=str(e))
            continue

        tag = tag.strip().lower()
        if tag == NetworkTag.LOCAL.value:
            local.append(network)
        elif tag == NetworkTag.PEERING.value:
            peering.append(network)
        else:
            logger.warning("Unknown network class, skipping", cidr=cidr, tag=tag)

    tables = ClassificationTables(
        users=MappingProxyType(user_table),
        local=tuple(local),
        peering=tuple(peering),
    )
    logger.info("Classification tables built", **tables.summary())
    return tables
