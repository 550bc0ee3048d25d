"""Data models shared by the gateway, normalizer, cache and session."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Literal

REDACTED = "********"
DEFAULT_PORT = 443
DEFAULT_NETWORK = "default"

ApiErrorKind = Literal[
    "transport",
    "certificate",
    "server_rejected",
    "malformed_response",
    "timeout",
]
LeaseState = Literal["active", "expired", "unknown"]
Operation = Literal[
    "show",
    "showConfig",
    "returnValue",
    "returnValues",
    "exists",
    "set",
    "delete",
    "comment",
    "save",
    "load",
]

# Normalized router configuration tree. Always carries the six top-level
# sections listed in ``CONFIG_SECTIONS``.
CanonicalConfig = dict[str, Any]

CONFIG_SECTIONS: tuple[str, ...] = (
    "interfaces",
    "firewall",
    "nat",
    "service",
    "system",
    "protocols",
)


@dataclass(slots=True)
class ConnectionParams:
    """Router connection settings supplied by the operator."""

    host: str
    secret_key: str = field(repr=False)
    port: int = DEFAULT_PORT
    use_tls: bool = True
    allow_insecure_tls: bool = False

    @property
    def base_url(self) -> str:
        scheme = "https" if self.use_tls else "http"
        return f"{scheme}://{self.host}:{self.port}"

    def redacted(self) -> ConnectionParams:
        """Return a copy that is safe to log or persist."""

        return replace(self, secret_key=REDACTED)

    def to_dict(self) -> dict[str, object]:
        return {
            "host": self.host,
            "port": self.port,
            "secret_key": self.secret_key,
            "use_tls": self.use_tls,
            "allow_insecure_tls": self.allow_insecure_tls,
        }


@dataclass(slots=True)
class RawApiResponse:
    """Unprocessed result of one control-plane call."""

    http_status: int
    body_text: str
    parsed_json: Any | None = None

    @property
    def ok(self) -> bool:
        return 200 <= self.http_status < 300


@dataclass(slots=True)
class ApiError:
    """Tagged failure produced by the gateway or the normalizer."""

    kind: ApiErrorKind
    message: str
    http_status: int | None = None

    @property
    def remediation(self) -> str | None:
        if self.kind == "certificate":
            return "Enable insecure TLS ('allow insecure') to accept the router's certificate and retry."
        if self.kind == "timeout":
            return "The router did not answer in time. Check that it is reachable and retry."
        if self.kind == "transport":
            return "Ensure the router is reachable and the host and port are correct."
        return None

    def describe(self) -> str:
        """Human-readable message for the operator."""

        text = self.message
        if self.http_status is not None:
            text = f"{text} (HTTP {self.http_status})"
        hint = self.remediation
        return f"{text}. {hint}" if hint else text


@dataclass(slots=True)
class ConfigResponse:
    """Successful call that produced a configuration tree."""

    config: CanonicalConfig
    http_status: int = 200


@dataclass(slots=True)
class TextResponse:
    """Successful call whose payload is operational text output."""

    text: str
    http_status: int = 200


NormalizedResult = ConfigResponse | TextResponse | ApiError


@dataclass(slots=True)
class LeaseRecord:
    """A single DHCP lease."""

    ip: str
    mac: str
    hostname: str = ""
    expiry: str = ""
    state: LeaseState = "unknown"
    network: str = DEFAULT_NETWORK
    lease_start: str = ""
    remaining: str = ""
    pool: str = ""
    origin: str = ""

    def to_dict(self) -> dict[str, object]:
        return {
            "ip": self.ip,
            "mac": self.mac,
            "hostname": self.hostname,
            "expiry": self.expiry,
            "state": self.state,
            "network": self.network,
            "lease_start": self.lease_start,
            "remaining": self.remaining,
            "pool": self.pool,
            "origin": self.origin,
        }


LeaseTable = dict[str, list[LeaseRecord]]


@dataclass(slots=True, frozen=True)
class CacheEntry:
    """The last successfully fetched configuration and its lease data."""

    config: CanonicalConfig
    fetched_at: datetime
    connection_params: ConnectionParams
    leases: LeaseTable | None = None
    successful: bool = True
