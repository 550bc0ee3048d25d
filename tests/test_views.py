import sys
import unittest
from datetime import datetime, timezone
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
SRC_DIR = ROOT_DIR / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from vyos_dashboard.core.normalize import canonicalize
from vyos_dashboard.vyos import views

CONFIG = canonicalize(
    {
        "interfaces": {
            "ethernet": {
                "eth2": {"description": "lab"},
                "eth1": {"address": "192.168.1.1/24", "description": "LAN"},
                "eth0": {"address": ["203.0.113.2/30"], "description": "Uplink"},
                "eth3": {"address": "dhcp"},
            }
        },
        "firewall": {
            "group": {
                "interface-group": {
                    "WAN": {"interface": "eth0"},
                    "LAN": {"interface": ["eth1", "eth3"]},
                }
            },
            "ipv4": {
                "input": {"filter": {"rule": {"10": {}, "20": {}}}},
                "name": {"LAN-LOCAL": {"rule": {"10": {}}}},
            },
        },
        "nat": {"source": {"rule": {"100": {}, "110": {}}}},
        "service": {"dhcp-server": {"shared-network-name": {"LAN": {}, "GUEST": {}}}},
        "protocols": {"static": {"route": {"0.0.0.0/0": {"next-hop": {"203.0.113.1": {}}}}}},
    }
)


class SafeAccessTests(unittest.TestCase):
    def test_safe_get_paths(self) -> None:
        self.assertEqual("lab", views.safe_get(CONFIG, "interfaces.ethernet.eth2.description"))
        self.assertEqual({}, views.safe_get(CONFIG, ["protocols", "static", "route", "0.0.0.0/0", "next-hop", "203.0.113.1"]))
        self.assertEqual("x", views.safe_get(CONFIG, "system.host-name", "x"))
        self.assertIsNone(views.safe_get(None, "a.b"))

    def test_safe_length(self) -> None:
        self.assertEqual(4, views.safe_length(CONFIG, "interfaces.ethernet"))
        self.assertEqual(1, views.safe_length(CONFIG, "interfaces.ethernet.eth1.address"))
        self.assertEqual(0, views.safe_length(CONFIG, "interfaces.ethernet.eth2.description"))
        self.assertEqual(0, views.safe_length(CONFIG, "vpn.ipsec"))


class ConfigViewTests(unittest.TestCase):
    def test_default_gateway(self) -> None:
        self.assertEqual("203.0.113.1", views.default_gateway(CONFIG))
        self.assertEqual("N/A", views.default_gateway(canonicalize({})))

    def test_interface_address_strips_prefix(self) -> None:
        self.assertEqual("192.168.1.1", views.interface_address(CONFIG, "eth1"))
        self.assertEqual("N/A", views.interface_address(CONFIG, "eth2"))
        self.assertEqual("N/A", views.interface_address(CONFIG, "eth9"))

    def test_interfaces_sorted_by_role_then_name(self) -> None:
        listed = views.interfaces(CONFIG)

        self.assertEqual(
            [("eth0", "WAN"), ("eth1", "LAN"), ("eth3", "LAN"), ("eth2", "OTHER")],
            [(view.name, view.role) for view in listed],
        )
        self.assertEqual("203.0.113.2", listed[0].address)
        self.assertEqual("Uplink", listed[0].description)
        self.assertEqual("dhcp", listed[2].address)

    def test_summary_counts(self) -> None:
        counts = views.summary_counts(CONFIG)

        self.assertEqual(4, counts["ethernet_interfaces"])
        self.assertEqual({"ipv4.input": 2, "ipv4.LAN-LOCAL": 1}, counts["firewall_rules"])
        self.assertEqual(2, counts["nat_source_rules"])
        self.assertEqual(0, counts["nat_destination_rules"])
        self.assertEqual(2, counts["dhcp_networks"])
        self.assertEqual(1, counts["static_routes"])


class LeaseTimeRemainingTests(unittest.TestCase):
    NOW = datetime(2025, 3, 18, 12, 0, 0, tzinfo=timezone.utc)

    def test_formats(self) -> None:
        self.assertEqual("1d 2h", views.lease_time_remaining("2025/03/19 14:30:00", self.NOW))
        self.assertEqual("3h 15m", views.lease_time_remaining("2025/03/18 15:15:30", self.NOW))
        self.assertEqual("42m", views.lease_time_remaining("2025/03/18 12:42:10", self.NOW))

    def test_expired(self) -> None:
        self.assertEqual("Expired", views.lease_time_remaining("2025/03/18 12:00:00", self.NOW))
        self.assertEqual("Expired", views.lease_time_remaining("2024/01/01 00:00:00", self.NOW))

    def test_invalid(self) -> None:
        self.assertEqual("Invalid date", views.lease_time_remaining("never", self.NOW))
        self.assertEqual("Invalid date", views.lease_time_remaining("", self.NOW))


if __name__ == "__main__":
    unittest.main()
