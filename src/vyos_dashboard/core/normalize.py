"""Normalization of VyOS API responses into a canonical configuration tree.

The router (and the proxy in front of it) answers the same call in several
shapes: the configuration nested under ``data.config``, directly under
``data``, unwrapped at the top level, or plain text for the ``show`` family
of commands. :func:`normalize` classifies a :class:`RawApiResponse` into
exactly one of :class:`ConfigResponse`, :class:`TextResponse` or
:class:`ApiError` and never raises for malformed input.
"""

from __future__ import annotations

import copy
import json
import re
from typing import Any, Iterable, Mapping

from vyos_dashboard.core.models import (
    CONFIG_SECTIONS,
    ApiError,
    CanonicalConfig,
    ConfigResponse,
    NormalizedResult,
    RawApiResponse,
    TextResponse,
)

_CERTIFICATE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"certificate", re.IGNORECASE),
    re.compile(r"self[-\s]signed", re.IGNORECASE),
    re.compile(r"DEPTH_ZERO_SELF_SIGNED_CERT", re.IGNORECASE),
    re.compile(r"CERTIFICATE_VERIFY_FAILED", re.IGNORECASE),
)

# Fields the router returns as a bare string when only one value is set.
_SERVICE_LIST_FIELDS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("dns", "forwarding"), "listen-address"),
    (("dns", "forwarding"), "allow-from"),
    (("ssh",), "port"),
    (("ntp", "allow-client"), "address"),
)

_FIREWALL_GROUP_FIELDS: tuple[tuple[str, str], ...] = (
    ("interface-group", "interface"),
    ("network-group", "network"),
    ("address-group", "address"),
)


def is_certificate_failure(text: str | None) -> bool:
    """Return True when ``text`` looks like a TLS certificate complaint."""

    if not text:
        return False
    return any(pattern.search(text) for pattern in _CERTIFICATE_PATTERNS)


def classify_failure(message: str, http_status: int | None) -> ApiError:
    """Build a certificate or server-rejected error from a failure message."""

    if is_certificate_failure(message):
        return ApiError(kind="certificate", message=message, http_status=http_status)
    return ApiError(kind="server_rejected", message=message, http_status=http_status)


def _decode_body(raw: RawApiResponse) -> tuple[bool, Any]:
    if raw.parsed_json is not None:
        return True, raw.parsed_json
    try:
        return True, json.loads(raw.body_text)
    except (TypeError, ValueError):
        return False, None


def _is_binary(text: str) -> bool:
    return "\x00" in text


def _classify_text(raw: RawApiResponse) -> NormalizedResult:
    text = raw.body_text or ""
    if not text.strip() or _is_binary(text):
        return ApiError(
            kind="malformed_response",
            message="Router returned an empty or unreadable response",
            http_status=raw.http_status,
        )
    if not raw.ok:
        return classify_failure(text.strip()[:500], raw.http_status)
    return TextResponse(text=text, http_status=raw.http_status)


def _is_envelope(document: Mapping[str, Any]) -> bool:
    return "success" in document or {"data", "error"} <= document.keys()


def _extract_root(document: Any, raw: RawApiResponse) -> CanonicalConfig | NormalizedResult:
    """Pick the configuration root, or return a final result for non-config shapes."""

    if not isinstance(document, dict):
        return ApiError(
            kind="malformed_response",
            message=f"Expected a JSON object, got {type(document).__name__}",
            http_status=raw.http_status,
        )

    data = document.get("data")

    if isinstance(data, str):
        if not raw.ok or document.get("success") is False:
            return classify_failure(str(document.get("error") or data), raw.http_status)
        return TextResponse(text=data, http_status=raw.http_status)

    if isinstance(data, dict) and "rawOutput" in data:
        output = data.get("rawOutput")
        if data.get("success") is False or output in (None, ""):
            return classify_failure(str(data.get("error") or "Empty response"), raw.http_status)
        return TextResponse(text=str(output), http_status=raw.http_status)

    if document.get("success") is False:
        return classify_failure(
            str(document.get("error") or document.get("message") or "Request rejected by router"),
            raw.http_status,
        )

    if isinstance(data, dict):
        nested = data.get("config")
        if isinstance(nested, dict):
            return nested
        return data

    if _is_envelope(document) and data is None and raw.ok:
        return {}

    if not raw.ok:
        message = document.get("error") or document.get("message") or f"HTTP {raw.http_status}"
        return classify_failure(str(message), raw.http_status)

    if _is_envelope(document):
        return ApiError(
            kind="malformed_response",
            message=f"Unexpected 'data' payload of type {type(data).__name__}",
            http_status=raw.http_status,
        )

    return document


def _leaf(value: Any) -> Any:
    if isinstance(value, (dict, list)):
        return value
    return str(value)


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return [_leaf(item) for item in value if item is not None]
    if isinstance(value, dict):
        # Multi-valued leaves occasionally arrive keyed by value.
        return [str(key) for key in value]
    return [_leaf(value)]


def _coerce_field(container: Any, key: str) -> None:
    if isinstance(container, dict):
        container[key] = _as_list(container.get(key))


def _walk(container: Any, path: Iterable[str]) -> Any:
    node = container
    for part in path:
        if not isinstance(node, dict):
            return None
        node = node.get(part)
    return node


def _coerce_interface(interface: Any) -> None:
    if not isinstance(interface, dict):
        return
    _coerce_field(interface, "address")
    vifs = interface.get("vif")
    if isinstance(vifs, dict):
        for vif in vifs.values():
            if isinstance(vif, dict):
                _coerce_field(vif, "address")


def _coerce_lists(config: CanonicalConfig) -> None:
    for interfaces in config["interfaces"].values():
        if not isinstance(interfaces, dict):
            continue
        for interface in interfaces.values():
            _coerce_interface(interface)

    service = config["service"]
    for parent_path, key in _SERVICE_LIST_FIELDS:
        parent = _walk(service, parent_path)
        if isinstance(parent, dict):
            _coerce_field(parent, key)

    shared_networks = _walk(service, ("dhcp-server", "shared-network-name"))
    if isinstance(shared_networks, dict):
        for network in shared_networks.values():
            subnets = _walk(network, ("subnet",))
            if not isinstance(subnets, dict):
                continue
            for subnet in subnets.values():
                if isinstance(subnet, dict) and "name-server" in subnet:
                    _coerce_field(subnet, "name-server")

    groups = _walk(config["firewall"], ("group",))
    if isinstance(groups, dict):
        for group_type, key in _FIREWALL_GROUP_FIELDS:
            members = groups.get(group_type)
            if not isinstance(members, dict):
                continue
            for group in members.values():
                _coerce_field(group, key)


def canonicalize(root: Mapping[str, Any]) -> CanonicalConfig:
    """Apply section defaults and list coercion to a configuration root.

    The input is copied, never mutated. Applying this to its own output
    yields an equal value.
    """

    config: CanonicalConfig = copy.deepcopy(dict(root))
    for section in CONFIG_SECTIONS:
        if not isinstance(config.get(section), dict):
            config[section] = {}
    if not isinstance(config["interfaces"].get("ethernet"), dict):
        config["interfaces"]["ethernet"] = {}

    _coerce_lists(config)
    return config


def normalize(raw: RawApiResponse) -> NormalizedResult:
    """Classify a raw response and extract the canonical configuration.

    Precedence, first match wins: non-JSON text, text wrapped in a JSON
    envelope, an explicit ``success: false``, ``data.config``, ``data``,
    then the document itself.
    """

    is_json, document = _decode_body(raw)
    if not is_json:
        return _classify_text(raw)

    root = _extract_root(document, raw)
    if isinstance(root, (ApiError, TextResponse, ConfigResponse)):
        return root

    return ConfigResponse(config=canonicalize(root), http_status=raw.http_status)
