"""Connection session manager.

A :class:`Session` owns the router credentials, the configuration cache and
the connection state machine::

    disconnected -> connecting -> connected -> disconnected

Gateway and normalizer failures arrive as :class:`ApiError` values and are
raised here as :class:`SessionError` so callers cannot silently ignore them.
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
from datetime import timedelta
from pathlib import Path
from typing import Any, Literal, Mapping, Protocol, Sequence

from vyos_dashboard.common.debug_log import DebugLog
from vyos_dashboard.core.config import parse_connection_params
from vyos_dashboard.core.models import (
    ApiError,
    CacheEntry,
    CanonicalConfig,
    ConfigResponse,
    ConnectionParams,
    LeaseTable,
    Operation,
    RawApiResponse,
    TextResponse,
)
from vyos_dashboard.core.normalize import normalize
from vyos_dashboard.core.storage import save_state
from vyos_dashboard.session.cache import DEFAULT_MAX_AGE, ConfigCache
from vyos_dashboard.vyos.leases import configured_networks, lease_count, parse_leases

logger = logging.getLogger(__name__)

SessionState = Literal["disconnected", "connecting", "connected"]

CONFIG_PATH: tuple[str, ...] = ()
LEASES_PATH: tuple[str, ...] = ("dhcp", "server", "leases")
CONFIGURE_OPERATIONS = ("set", "delete", "comment")


class Gateway(Protocol):
    async def send(
        self,
        operation: Operation,
        path: Sequence[str],
        params: ConnectionParams,
        payload: Mapping[str, Any] | None = None,
    ) -> RawApiResponse | ApiError:
        ...


class SessionError(RuntimeError):
    """Base exception for session failures.

    ``error`` carries the :class:`ApiError` exactly as produced by the
    gateway or normalizer. ``transient`` is True when the session stayed
    connected and the previous cache entry is still readable.
    """

    def __init__(
        self,
        message: str | None = None,
        *,
        error: ApiError | None = None,
        transient: bool = False,
    ) -> None:
        if message is None:
            message = error.describe() if error is not None else "Session error"
        super().__init__(message)
        self.error = error
        self.transient = transient


class CertificateRetryRequired(SessionError):
    """Raised when the router certificate is not trusted.

    The session stays in ``connecting``; the operator may enable insecure
    TLS and call :meth:`Session.connect` again.
    """


class SessionClosedError(SessionError):
    """Raised when a result arrives after the session was disconnected."""


class NotConnectedError(SessionError):
    """Raised when an operation needs an active connection."""


def _error_for(error: ApiError, *, transient: bool = False) -> SessionError:
    if error.kind == "certificate" and not transient:
        return CertificateRetryRequired(error=error)
    return SessionError(error=error, transient=transient)


def _lease_failure(raw: RawApiResponse) -> ApiError | None:
    document = raw.parsed_json
    if raw.ok and not (isinstance(document, dict) and document.get("success") is False):
        return None
    result = normalize(raw)
    return result if isinstance(result, ApiError) else None


def leases_to_dict(leases: LeaseTable | None) -> dict[str, list[dict[str, object]]] | None:
    if leases is None:
        return None
    return {network: [record.to_dict() for record in records] for network, records in leases.items()}


class Session:
    """One operator's connection to one router."""

    def __init__(
        self,
        gateway: Gateway,
        cache: ConfigCache | None = None,
        *,
        max_age: timedelta | float = DEFAULT_MAX_AGE,
        debug_log: DebugLog | None = None,
        debug_mode: bool = False,
        state_path: Path | None = None,
    ) -> None:
        self.gateway = gateway
        self.cache = cache or ConfigCache()
        self.max_age = max_age
        self.debug_log = debug_log
        self.debug_mode = debug_mode
        self.state_path = state_path
        self.state: SessionState = "disconnected"
        self.last_error: ApiError | None = None
        self._params: ConnectionParams | None = None
        self._generation = 0
        self._fetch_lock = asyncio.Lock()
        self._inflight: asyncio.Future[CacheEntry] | None = None

    @property
    def is_connected(self) -> bool:
        return self.state == "connected"

    @property
    def connection_params(self) -> ConnectionParams | None:
        """Redacted copy of the active connection settings."""

        return self._params.redacted() if self._params is not None else None

    def _log_extra(self) -> dict[str, str]:
        return {"host": self._params.host if self._params is not None else "-"}

    def _check_generation(self, generation: int) -> None:
        if generation != self._generation:
            raise SessionClosedError("Session was closed while a request was in flight.")

    def _require_params(self) -> ConnectionParams:
        if self._params is None:
            raise NotConnectedError("Not connected to a router.")
        return self._params

    def _require_connected(self) -> ConnectionParams:
        if self.state != "connected":
            raise NotConnectedError("Not connected to a router.")
        return self._require_params()

    async def connect(self, params: ConnectionParams | Mapping[str, Any]) -> CacheEntry:
        """Validate ``params``, fetch the configuration and enter ``connected``."""

        if not isinstance(params, ConnectionParams):
            params = parse_connection_params(params)
        if self.state == "connected":
            self.disconnect()

        self._generation += 1
        generation = self._generation
        self._params = params
        self.state = "connecting"
        self.last_error = None
        logger.info(
            "connecting port=%s tls=%s insecure=%s",
            params.port,
            params.use_tls,
            params.allow_insecure_tls,
            extra={"host": params.host},
        )

        try:
            entry = await self._fetch_cycle(generation)
        except CertificateRetryRequired as exc:
            self.last_error = exc.error
            logger.warning("certificate rejected, waiting for operator retry", extra={"host": params.host})
            raise
        except SessionClosedError:
            raise
        except SessionError as exc:
            self.last_error = exc.error
            if generation == self._generation:
                self._reset()
            logger.error("connect failed reason=\"%s\"", exc, extra={"host": params.host})
            raise

        self.state = "connected"
        logger.info("connected", extra={"host": params.host})
        return entry

    async def _fetch_cycle(self, generation: int) -> CacheEntry:
        async with self._fetch_lock:
            self._check_generation(generation)
            params = self._require_params()
            result = await self.gateway.send("showConfig", list(CONFIG_PATH), params)
            self._check_generation(generation)

            normalized = normalize(result) if isinstance(result, RawApiResponse) else result
            if isinstance(normalized, ApiError):
                raise _error_for(normalized)
            if isinstance(normalized, TextResponse):
                raise SessionError(
                    error=ApiError(
                        kind="malformed_response",
                        message="Expected a configuration tree but the router returned text",
                        http_status=normalized.http_status,
                    )
                )

            leases: LeaseTable | None
            try:
                leases = await self._load_leases(params, normalized.config, generation)
            except SessionClosedError:
                raise
            except SessionError as exc:
                logger.warning("lease fetch failed reason=\"%s\"", exc, extra={"host": params.host})
                leases = None

            self._check_generation(generation)
            entry = self.cache.store(normalized.config, params, leases)
            logger.debug(
                "configuration stored sections=%d leases=%s",
                len(normalized.config),
                lease_count(leases) if leases is not None else "-",
                extra={"host": params.host},
            )
            return entry

    async def _refresh(self, generation: int) -> CacheEntry:
        try:
            return await self._fetch_cycle(generation)
        except SessionClosedError:
            raise
        except SessionError as exc:
            self.last_error = exc.error
            if self.cache.get() is not None:
                self.cache.mark_failed()
            logger.warning("refresh failed, keeping cached configuration reason=\"%s\"", exc, extra=self._log_extra())
            raise SessionError(str(exc), error=exc.error, transient=True) from exc

    async def refresh_config(self) -> CacheEntry:
        """Fetch the configuration again.

        Concurrent callers share one in-flight fetch instead of racing.
        """

        self._require_connected()
        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.ensure_future(self._refresh(self._generation))
        return await asyncio.shield(self._inflight)

    async def get_config(self, max_age: timedelta | float | None = None) -> CanonicalConfig:
        """Return a copy of the cached configuration, refreshing it when stale."""

        self._require_connected()
        window = self.max_age if max_age is None else max_age
        entry = self.cache.get()
        if entry is not None and self.cache.is_valid(window):
            return copy.deepcopy(entry.config)
        entry = await self.refresh_config()
        return copy.deepcopy(entry.config)

    async def _load_leases(
        self, params: ConnectionParams, config: CanonicalConfig, generation: int
    ) -> LeaseTable:
        result = await self.gateway.send("show", list(LEASES_PATH), params)
        self._check_generation(generation)
        if isinstance(result, ApiError):
            raise SessionError(error=result, transient=True)
        failure = _lease_failure(result)
        if failure is not None:
            raise SessionError(error=failure, transient=True)
        return parse_leases(result, configured_networks(config))

    async def refresh_leases(self) -> LeaseTable:
        """Fetch DHCP leases and replace only the cached lease table."""

        params = self._require_connected()
        generation = self._generation
        entry = self.cache.get()
        config = entry.config if entry is not None else {}
        leases = await self._load_leases(params, config, generation)
        self.cache.store_leases(leases)
        logger.debug("leases refreshed count=%d", lease_count(leases), extra=self._log_extra())
        return leases

    async def show(self, path: Sequence[str]) -> str:
        """Run an operational ``show`` command and return its text output."""

        params = self._require_connected()
        generation = self._generation
        result = await self.gateway.send("show", list(path), params)
        self._check_generation(generation)
        normalized = normalize(result) if isinstance(result, RawApiResponse) else result
        if isinstance(normalized, ApiError):
            raise _error_for(normalized, transient=True)
        if isinstance(normalized, ConfigResponse):
            return json.dumps(normalized.config, indent=2)
        return normalized.text

    async def configure(self, operation: Operation, path: Sequence[str], value: str | None = None) -> None:
        """Apply a raw ``set``, ``delete`` or ``comment`` and invalidate the cache."""

        if operation not in CONFIGURE_OPERATIONS:
            raise ValueError(f"Unsupported configure operation '{operation}'.")
        params = self._require_connected()
        generation = self._generation
        full_path = list(path) + ([value] if value is not None else [])

        result = await self.gateway.send(operation, full_path, params)
        self._check_generation(generation)
        normalized = normalize(result) if isinstance(result, RawApiResponse) else result
        if isinstance(normalized, ApiError):
            raise _error_for(normalized, transient=True)

        self.cache.invalidate()
        logger.info("configure op=%s path=%s", operation, " ".join(path), extra=self._log_extra())

    async def save_config(self, file: str | None = None) -> None:
        """Persist the running configuration on the router."""

        params = self._require_connected()
        generation = self._generation
        payload = {"file": file} if file else None
        result = await self.gateway.send("save", [], params, payload)
        self._check_generation(generation)
        normalized = normalize(result) if isinstance(result, RawApiResponse) else result
        if isinstance(normalized, ApiError):
            raise _error_for(normalized, transient=True)
        logger.info("configuration saved file=%s", file or "-", extra=self._log_extra())

    def _reset(self) -> None:
        self._generation += 1
        self.cache.invalidate()
        self._params = None
        self._inflight = None
        self.state = "disconnected"

    def disconnect(self) -> None:
        """Drop the credentials and cache; in-flight results are discarded."""

        extra = self._log_extra()
        self._reset()
        logger.info("disconnected", extra=extra)

    def snapshot(self) -> dict[str, Any]:
        """Return the persistable view of this session. The key is masked."""

        entry = self.cache.get()
        params = self.connection_params
        return {
            "isConnected": self.is_connected,
            "connectionParams": params.to_dict() if params is not None else None,
            "config": entry.config if entry is not None else None,
            "lastUpdate": entry.fetched_at.isoformat() if entry is not None else None,
            "debugMode": self.debug_mode,
            "debugInfo": self.debug_log.to_list() if self.debug_log is not None else [],
            "dhcpLeases": leases_to_dict(entry.leases) if entry is not None else None,
        }

    def save(self, path: Path | None = None) -> Path:
        """Write :meth:`snapshot` to ``path`` or the session's ``state_path``."""

        target = path or self.state_path
        if target is None:
            raise ValueError("No state path configured for this session.")
        secret = self._params.secret_key if self._params is not None else None
        return save_state(target, self.snapshot(), secret=secret, logger=logger)
