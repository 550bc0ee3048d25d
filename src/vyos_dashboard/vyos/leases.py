"""DHCP lease parsing.

Lease data reaches the dashboard either as structured JSON (a list of lease
objects, or objects keyed by IP address) or as the fixed-column text table
printed by ``show dhcp server leases``::

    IP Address      MAC address        State    Lease start          Lease expiration     Remaining  Pool  Hostname  Origin
    --------------  -----------------  -------  -------------------  -------------------  ---------  ----  --------  ------
    192.168.1.100   00:11:22:33:44:55  active   2025/03/18 10:00:00  2025/03/19 10:00:00  23:59:59   LAN   host1     local

Both are turned into a :data:`LeaseTable` keyed by shared-network name.
"""

from __future__ import annotations

import ipaddress
import json
import logging
import re
from typing import Any, Iterable, Iterator, Mapping

from vyos_dashboard.core.models import (
    DEFAULT_NETWORK,
    CanonicalConfig,
    LeaseRecord,
    LeaseState,
    LeaseTable,
    RawApiResponse,
    TextResponse,
)

logger = logging.getLogger(__name__)

HEADER_LINES = 2
MIN_ROW_FIELDS = 6
ORIGIN_ROW_FIELDS = 9

_COLUMN_SPLIT = re.compile(r"\s{2,}")
_WEEKDAY_PREFIX = re.compile(r"^[0-6]\s+(?=\d{4}/)")

_EXPIRED_STATES = frozenset({"expired", "free", "released", "abandoned", "backup"})

_IP_FIELDS = ("ip_address", "ip", "address")
_MAC_FIELDS = ("mac_address", "mac", "hardware-address", "mac-address")
_HOSTNAME_FIELDS = ("hostname", "client-hostname", "host")
_EXPIRY_FIELDS = ("ends", "expiry", "expires", "end")
_STATE_FIELDS = ("binding_state", "state")
_POOL_FIELDS = ("pool", "network")
_START_FIELDS = ("starts", "start", "lease_start")


def lease_state(value: Any) -> LeaseState:
    """Map a router binding state onto ``active``, ``expired`` or ``unknown``."""

    if not isinstance(value, str):
        return "unknown"
    state = value.strip().lower()
    if state == "active":
        return "active"
    if state in _EXPIRED_STATES:
        return "expired"
    return "unknown"


def configured_networks(config: CanonicalConfig) -> dict[str, list[str]]:
    """Return ``{shared-network-name: [subnet CIDRs]}`` from the DHCP server config."""

    service = config.get("service") if isinstance(config, Mapping) else None
    dhcp = service.get("dhcp-server") if isinstance(service, Mapping) else None
    shared = dhcp.get("shared-network-name") if isinstance(dhcp, Mapping) else None
    if not isinstance(shared, Mapping):
        return {}

    networks: dict[str, list[str]] = {}
    for name, network in shared.items():
        subnets = network.get("subnet") if isinstance(network, Mapping) else None
        if isinstance(subnets, Mapping):
            networks[str(name)] = [str(cidr) for cidr in subnets]
        elif isinstance(subnets, list):
            networks[str(name)] = [str(cidr) for cidr in subnets]
        else:
            networks[str(name)] = []
    return networks


def _compile_networks(
    networks: Mapping[str, Iterable[str]],
) -> list[tuple[str, ipaddress.IPv4Network | ipaddress.IPv6Network]]:
    compiled = []
    for name, subnets in networks.items():
        for cidr in subnets:
            try:
                compiled.append((name, ipaddress.ip_network(cidr, strict=False)))
            except ValueError:
                logger.debug("ignoring invalid subnet network=%s subnet=%s", name, cidr)
    return compiled


def match_network(
    ip: str,
    compiled: list[tuple[str, ipaddress.IPv4Network | ipaddress.IPv6Network]],
) -> str:
    """Return the first configured network containing ``ip``, else ``default``."""

    try:
        address = ipaddress.ip_address(ip.strip())
    except ValueError:
        return DEFAULT_NETWORK
    for name, network in compiled:
        if address in network:
            return name
    return DEFAULT_NETWORK


def _first(entry: Mapping[str, Any], fields: tuple[str, ...]) -> str:
    for field in fields:
        value = entry.get(field)
        if value not in (None, ""):
            return str(value)
    return ""


def _clean_expiry(value: str) -> str:
    return _WEEKDAY_PREFIX.sub("", value.strip())


def _record_from_entry(entry: Mapping[str, Any], fallback_ip: str = "", fallback_pool: str = "") -> LeaseRecord:
    return LeaseRecord(
        ip=_first(entry, _IP_FIELDS) or fallback_ip,
        mac=_first(entry, _MAC_FIELDS),
        hostname=_first(entry, _HOSTNAME_FIELDS),
        expiry=_clean_expiry(_first(entry, _EXPIRY_FIELDS)),
        state=lease_state(_first(entry, _STATE_FIELDS)),
        lease_start=_clean_expiry(_first(entry, _START_FIELDS)),
        remaining=_first(entry, ("remaining",)),
        pool=_first(entry, _POOL_FIELDS) or fallback_pool,
        origin=_first(entry, ("origin",)),
    )


def _looks_like_ip(value: str) -> bool:
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return False
    return True


_WRAPPER_KEYS = ("leases", "data", "dhcp_status", "server")


def _iter_structured(data: Any, known: frozenset[str] = frozenset(), pool: str = "") -> Iterator[LeaseRecord]:
    if isinstance(data, list):
        for entry in data:
            if isinstance(entry, Mapping):
                yield _record_from_entry(entry, fallback_pool=pool)
        return

    if not isinstance(data, Mapping):
        return

    # Status wrappers carry no network of their own; an empty one falls
    # through to the next.
    for wrapper in _WRAPPER_KEYS:
        inner = data.get(wrapper)
        if isinstance(inner, (list, Mapping)) and inner:
            yield from _iter_structured(inner, known, pool)
            return

    for key, entry in data.items():
        key = str(key)
        if isinstance(entry, list):
            # Grouped layout: {network: [lease, ...]}
            yield from _iter_structured(entry, known, pool or key)
            continue
        if not isinstance(entry, Mapping):
            continue
        if _looks_like_ip(key):
            yield _record_from_entry(entry, fallback_ip=key, fallback_pool=pool)
        elif "leases" in entry:
            # Pool layout: {network: {"leases": {ip: lease}}}
            yield from _iter_structured(entry["leases"], known, pool or (key if key in known else ""))
        elif any(field in entry for field in _IP_FIELDS):
            yield _record_from_entry(entry, fallback_pool=pool)


def _record_from_row(fields: list[str]) -> LeaseRecord:
    padded = fields + [""] * (ORIGIN_ROW_FIELDS - len(fields))
    ip, mac, state, lease_start, expiry, remaining, pool, hostname, origin = padded[:ORIGIN_ROW_FIELDS]
    return LeaseRecord(
        ip=ip,
        mac=mac,
        hostname=hostname,
        expiry=expiry,
        state=lease_state(state),
        lease_start=lease_start,
        remaining=remaining,
        pool=pool,
        origin=origin if len(fields) >= ORIGIN_ROW_FIELDS else "",
    )


def _iter_table(text: str) -> Iterator[LeaseRecord]:
    lines = text.splitlines()
    while lines and not lines[0].strip():
        lines.pop(0)

    dropped = 0
    for line in lines[HEADER_LINES:]:
        if not line.strip():
            continue
        fields = [field for field in _COLUMN_SPLIT.split(line.strip()) if field]
        if len(fields) < MIN_ROW_FIELDS:
            dropped += 1
            continue
        yield _record_from_row(fields)

    if dropped:
        logger.debug("lease table rows dropped=%d", dropped)


def _decode_text(text: str) -> Any:
    stripped = text.strip()
    if stripped[:1] in ("[", "{"):
        try:
            return json.loads(stripped)
        except ValueError:
            return None
    return None


def _iter_source(source: Any, known: frozenset[str] = frozenset()) -> Iterator[LeaseRecord]:
    if isinstance(source, RawApiResponse):
        if source.parsed_json is not None:
            yield from _iter_source(source.parsed_json, known)
        else:
            yield from _iter_source(source.body_text or "", known)
        return
    if isinstance(source, TextResponse):
        source = source.text
    if isinstance(source, str):
        decoded = _decode_text(source)
        if decoded is not None:
            yield from _iter_source(decoded, known)
        else:
            yield from _iter_table(source)
        return
    if isinstance(source, Mapping):
        data = source.get("data")
        if isinstance(data, str):
            yield from _iter_source(data, known)
            return
        if isinstance(data, Mapping) and isinstance(data.get("rawOutput"), str):
            yield from _iter_source(data["rawOutput"], known)
            return
    yield from _iter_structured(source, known)


def parse_leases(source: Any, networks: Mapping[str, Iterable[str]] | None = None) -> LeaseTable:
    """Parse lease data into a table keyed by network name.

    ``source`` may be a :class:`RawApiResponse`, a :class:`TextResponse`,
    table text, a list of lease mappings or a mapping wrapping them
    (``leases``, ``data``, ``dhcp_status``, ``server``, or lists already
    grouped by network name). An
    explicit pool name on the lease wins; otherwise the lease is placed in
    the first network in ``networks`` whose subnet contains its address, or
    in ``"default"`` when none does. Parse order is preserved within each
    network.
    """

    compiled = _compile_networks(networks or {})
    table: LeaseTable = {}
    for record in _iter_source(source, frozenset(networks or {})):
        if not record.ip:
            continue
        record.network = record.pool or match_network(record.ip, compiled)
        table.setdefault(record.network, []).append(record)
    return table


def lease_count(table: LeaseTable) -> int:
    return sum(len(records) for records in table.values())
