"""Read-only projections of a canonical configuration for the dashboard views."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Literal, Sequence

from vyos_dashboard.core.models import CanonicalConfig

InterfaceRole = Literal["WAN", "LAN", "OTHER"]

NOT_AVAILABLE = "N/A"
EXPIRY_FORMAT = "%Y/%m/%d %H:%M:%S"
DEFAULT_ROUTE = "0.0.0.0/0"

_ROLE_ORDER: dict[str, int] = {"WAN": 0, "LAN": 1, "OTHER": 2}


@dataclass(slots=True)
class InterfaceView:
    """One ethernet interface as shown in the interface list."""

    name: str
    description: str
    address: str
    role: InterfaceRole

    def to_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "description": self.description,
            "address": self.address,
            "role": self.role,
        }


def _split_path(path: str | Sequence[str]) -> list[str]:
    if isinstance(path, str):
        return path.split(".") if path else []
    return [str(part) for part in path]


def safe_get(obj: Any, path: str | Sequence[str], default: Any = None) -> Any:
    """Walk ``path`` through nested mappings, returning ``default`` on any miss.

    ``path`` is either a dotted string or a sequence of keys; use the
    sequence form for keys that contain dots, such as ``0.0.0.0/0``.
    """

    node = obj
    for key in _split_path(path):
        if not isinstance(node, dict) or node.get(key) is None:
            return default
        node = node[key]
    return node


def safe_length(obj: Any, path: str | Sequence[str]) -> int:
    value = safe_get(obj, path)
    if isinstance(value, (dict, list)):
        return len(value)
    return 0


def _first_key(value: Any) -> str | None:
    if isinstance(value, dict) and value:
        return str(next(iter(value)))
    if isinstance(value, list) and value:
        return str(value[0])
    if isinstance(value, str) and value:
        return value
    return None


def default_gateway(config: CanonicalConfig) -> str:
    next_hop = safe_get(config, ["protocols", "static", "route", DEFAULT_ROUTE, "next-hop"])
    return _first_key(next_hop) or NOT_AVAILABLE


def _strip_prefix(address: str) -> str:
    return address.split("/", 1)[0]


def interface_address(config: CanonicalConfig, name: str, kind: str = "ethernet") -> str:
    """First address of an interface without its prefix length, or ``N/A``."""

    address = _first_key(safe_get(config, ["interfaces", kind, name, "address"]))
    return _strip_prefix(address) if address else NOT_AVAILABLE


def _group_members(config: CanonicalConfig, group: str) -> list[str]:
    members = safe_get(config, ["firewall", "group", "interface-group", group, "interface"], [])
    if isinstance(members, str):
        return [members]
    return [str(member) for member in members] if isinstance(members, list) else []


def interfaces(config: CanonicalConfig) -> list[InterfaceView]:
    """Ethernet interfaces with roles from the WAN/LAN interface groups.

    Sorted WAN first, then LAN, then everything else, each by name.
    """

    ethernet = safe_get(config, ["interfaces", "ethernet"], {})
    if not isinstance(ethernet, dict):
        return []
    wan = set(_group_members(config, "WAN"))
    lan = set(_group_members(config, "LAN"))

    views: list[InterfaceView] = []
    for name, details in ethernet.items():
        role: InterfaceRole = "WAN" if name in wan else "LAN" if name in lan else "OTHER"
        description = details.get("description", "") if isinstance(details, dict) else ""
        views.append(
            InterfaceView(
                name=name,
                description=str(description or ""),
                address=interface_address(config, name),
                role=role,
            )
        )

    views.sort(key=lambda view: (_ROLE_ORDER[view.role], view.name))
    return views


def _firewall_rule_counts(config: CanonicalConfig) -> dict[str, int]:
    counts: dict[str, int] = {}
    # 1.4+ layout: firewall.<family>.<hook>.filter.rule and firewall.<family>.name.<chain>.rule
    for family in ("ipv4", "ipv6"):
        hooks = safe_get(config, ["firewall", family], {})
        if not isinstance(hooks, dict):
            continue
        for hook, body in hooks.items():
            if hook == "name" and isinstance(body, dict):
                for chain_name, chain in body.items():
                    counts[f"{family}.{chain_name}"] = safe_length(chain, "rule")
            elif isinstance(body, dict) and "filter" in body:
                counts[f"{family}.{hook}"] = safe_length(body, "filter.rule")
    # 1.3 layout: firewall.name.<chain>.rule
    names = safe_get(config, ["firewall", "name"], {})
    if isinstance(names, dict):
        for chain_name, chain in names.items():
            counts[str(chain_name)] = safe_length(chain, "rule")
    return counts


def summary_counts(config: CanonicalConfig) -> dict[str, Any]:
    """Headline numbers for the overview page."""

    return {
        "ethernet_interfaces": safe_length(config, "interfaces.ethernet"),
        "firewall_rules": _firewall_rule_counts(config),
        "nat_source_rules": safe_length(config, "nat.source.rule"),
        "nat_destination_rules": safe_length(config, "nat.destination.rule"),
        "dhcp_networks": safe_length(config, "service.dhcp-server.shared-network-name"),
        "static_routes": safe_length(config, "protocols.static.route"),
    }


def _parse_expiry(value: str) -> datetime | None:
    try:
        parsed = datetime.strptime(value.strip(), EXPIRY_FORMAT)
    except (AttributeError, ValueError):
        return None
    return parsed.replace(tzinfo=timezone.utc)


def lease_time_remaining(expiry: str, now: datetime | None = None) -> str:
    """Format the time left on a lease, e.g. ``2d 3h``, ``4h 10m`` or ``Expired``.

    Router timestamps carry no zone and are read as UTC.
    """

    expires_at = _parse_expiry(expiry)
    if expires_at is None:
        return "Invalid date"

    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    seconds = int((expires_at - now).total_seconds())
    if seconds <= 0:
        return "Expired"

    days, remainder = divmod(seconds, 86400)
    hours, remainder = divmod(remainder, 3600)
    minutes = remainder // 60
    if days > 0:
        return f"{days}d {hours}h"
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"
