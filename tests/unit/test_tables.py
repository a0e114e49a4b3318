"""Unit tests for classification table construction."""

from ipaddress import IPv4Address, IPv6Address, ip_network

import pytest

from acctflow.classification.constants import MULTICAST_NETWORK
from acctflow.classification.tables import ClassificationTables, build_tables, int_to_ip, ip_to_int


class TestIpToInt:
    """Test cases for address reduction."""

    @pytest.mark.parametrize(
        "address,expected",
        [
            ("0.0.0.0", 0),
            ("192.168.0.1", 0xC0A80001),
            ("255.255.255.255", 0xFFFFFFFF),
        ],
    )
    def test_ipv4(self, address: str, expected: int):
        assert ip_to_int(IPv4Address(address)) == expected

    def test_ipv4_mapped(self):
        assert ip_to_int(IPv6Address("::ffff:192.168.0.1")) == 0xC0A80001

    def test_ipv6_uses_low_bytes(self):
        assert ip_to_int(IPv6Address("2001:db8::c0a8:1")) == 0xC0A80001

    def test_inverse(self):
        value = ip_to_int(IPv4Address("10.20.30.40"))
        assert int_to_ip(value) == IPv4Address("10.20.30.40")


class TestBuildTables:
    """Test cases for build_tables."""

    def test_empty(self):
        tables = build_tables()

        assert len(tables.users) == 0
        assert tables.local == ()
        assert tables.peering == ()
        assert tables.multicast == MULTICAST_NETWORK

    def test_users_keyed_by_integer(self, tables: ClassificationTables):
        assert tables.users[0xC0A80001] == "1"
        assert tables.user_for(IPv4Address("192.168.0.2")) == "2"
        assert tables.user_for(IPv4Address("192.168.0.3")) is None

    def test_bad_user_address_skipped(self):
        tables = build_tables(users={"not-an-ip": "7", "10.0.0.1": "8"})

        assert tables.summary()["users"] == 1
        assert tables.user_for(IPv4Address("10.0.0.1")) == "8"

    def test_duplicate_user_last_wins(self):
        tables = build_tables(users={"10.0.0.1": "8", "::ffff:10.0.0.1": "9"})

        assert tables.user_for(IPv4Address("10.0.0.1")) == "9"

    def test_network_order_preserved(self):
        networks = {
            "192.168.0.0/16": "local",
            "10.0.0.0/8": "local",
            "192.168.1.0/24": "local",
        }
        tables = build_tables(networks=networks)

        assert tables.local == tuple(ip_network(cidr) for cidr in networks)

    def test_network_tags_case_insensitive(self):
        tables = build_tables(networks={"10.0.0.0/8": " Peering ", "192.168.0.0/16": "LOCAL"})

        assert tables.peering == (ip_network("10.0.0.0/8"),)
        assert tables.local == (ip_network("192.168.0.0/16"),)

    def test_host_bits_allowed(self, tables: ClassificationTables):
        assert tables.peering == (ip_network("10.0.0.0/8"),)

    def test_unknown_tag_skipped(self):
        tables = build_tables(networks={"10.0.0.0/8": "transit"})

        assert tables.local == ()
        assert tables.peering == ()

    def test_bad_network_skipped(self):
        tables = build_tables(networks={"10.0.0.0/33": "local", "172.16.0.0/12": "local"})

        assert tables.local == (ip_network("172.16.0.0/12"),)

    def test_ipv6_network(self):
        tables = build_tables(networks={"2001:db8::/32": "local"})

        assert tables.local == (ip_network("2001:db8::/32"),)

    def test_tables_read_only(self, tables: ClassificationTables):
        with pytest.raises(TypeError):
            tables.users[1] = "x"  # type: ignore[index]

        with pytest.raises(AttributeError):
            tables.local = ()  # type: ignore[misc]

    def test_summary(self, tables: ClassificationTables):
        assert tables.summary() == {
            "users": 2,
            "local_networks": 1,
            "peering_networks": 1,
        }
