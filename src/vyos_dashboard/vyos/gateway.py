"""HTTP transport to the VyOS API.

:class:`VyosGateway` talks to the router directly. :class:`ProxyGateway`
forwards the same call through the upstream control API, which holds its own
credential and relays the request to the router. Both return either a
:class:`RawApiResponse` (whatever the HTTP status) or an :class:`ApiError`
for network-level failures; they never raise for those.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Mapping, Sequence

import aiohttp

from vyos_dashboard.common.debug_log import DebugSink
from vyos_dashboard.core.config import DEFAULT_REQUEST_TIMEOUT
from vyos_dashboard.core.models import ApiError, ConnectionParams, Operation, RawApiResponse
from vyos_dashboard.core.normalize import is_certificate_failure

logger = logging.getLogger(__name__)

ENDPOINTS: dict[str, str] = {
    "show": "/show",
    "showConfig": "/retrieve",
    "returnValue": "/retrieve",
    "returnValues": "/retrieve",
    "exists": "/retrieve",
    "set": "/configure",
    "delete": "/configure",
    "comment": "/configure",
    "save": "/config-file",
    "load": "/config-file",
}

CERTIFICATE_MESSAGE = "SSL Certificate Error: Enable 'Allow insecure SSL connections'"
PROXY_ROUTE = "/api/vyos"


def endpoint_for(operation: str) -> str:
    try:
        return ENDPOINTS[operation]
    except KeyError:
        raise ValueError(f"Unsupported operation '{operation}'.") from None


def build_request_data(
    operation: Operation, path: Sequence[str], payload: Mapping[str, Any] | None = None
) -> str:
    """Return the JSON document sent in the ``data`` form field."""

    body: dict[str, Any] = {"op": operation, "path": [str(part) for part in path]}
    if payload:
        body.update(payload)
    return json.dumps(body)


def _decode(body: bytes) -> str:
    return body.decode("utf-8", errors="replace")


def _try_json(text: str) -> Any | None:
    if not text.strip():
        return None
    try:
        return json.loads(text)
    except ValueError:
        return None


def classify_exception(exc: BaseException) -> ApiError:
    """Map a client-side exception onto an ApiError kind."""

    if isinstance(exc, (asyncio.TimeoutError, aiohttp.ServerTimeoutError)):
        return ApiError(kind="timeout", message="Request timed out")
    if isinstance(exc, aiohttp.ClientConnectorCertificateError):
        return ApiError(kind="certificate", message=CERTIFICATE_MESSAGE)
    message = str(exc) or exc.__class__.__name__
    if is_certificate_failure(message):
        return ApiError(kind="certificate", message=CERTIFICATE_MESSAGE)
    return ApiError(kind="transport", message=message)


class _Gateway:
    """Shared request bookkeeping: timing, debug events and error mapping."""

    def __init__(
        self,
        *,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        debug_sink: DebugSink | None = None,
    ) -> None:
        self.timeout = timeout
        self.debug_sink = debug_sink

    def _emit(self, type: str, message: str, **fields: Any) -> None:
        if self.debug_sink is None:
            return
        try:
            self.debug_sink.record(type, message, **fields)
        except Exception as exc:
            logger.warning("debug sink failed type=%s reason=\"%s\"", type, exc)

    async def send(
        self,
        operation: Operation,
        path: Sequence[str],
        params: ConnectionParams,
        payload: Mapping[str, Any] | None = None,
    ) -> RawApiResponse | ApiError:
        """Perform one control-plane call.

        Non-2xx responses are returned as-is for the normalizer to classify.
        Network failures (DNS, refused connections, TLS, timeouts) become an
        :class:`ApiError`.
        """

        endpoint = endpoint_for(operation)
        data = build_request_data(operation, path, payload)
        log_extra = {"host": params.host}
        debug_payload = {"op": operation, "path": list(path), **(payload or {})}

        logger.debug("request op=%s endpoint=%s path=%s", operation, endpoint, "/".join(path), extra=log_extra)
        self._emit("request", f"{operation} {' '.join(path)}".strip(), endpoint=endpoint, method="POST", payload=debug_payload)

        started = time.monotonic()
        try:
            result = await self._post(endpoint, data, params)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
            result = classify_exception(exc)
        duration_ms = (time.monotonic() - started) * 1000

        if isinstance(result, ApiError):
            logger.warning(
                "request failed op=%s endpoint=%s kind=%s reason=\"%s\"",
                operation,
                endpoint,
                result.kind,
                result.message,
                extra=log_extra,
            )
            self._emit(
                "error",
                result.message,
                endpoint=endpoint,
                method="POST",
                status=result.http_status,
                duration_ms=duration_ms,
            )
            return result

        logger.debug(
            "response op=%s endpoint=%s status=%s bytes=%d",
            operation,
            endpoint,
            result.http_status,
            len(result.body_text),
            extra=log_extra,
        )
        self._emit(
            "response",
            f"HTTP {result.http_status}",
            endpoint=endpoint,
            method="POST",
            status=result.http_status,
            payload=result.parsed_json if result.parsed_json is not None else result.body_text[:500],
            duration_ms=duration_ms,
        )
        return result

    async def _post(self, endpoint: str, data: str, params: ConnectionParams) -> RawApiResponse | ApiError:
        raise NotImplementedError


class VyosGateway(_Gateway):
    """Send form-encoded requests straight to the router's HTTPS API."""

    async def _post(self, endpoint: str, data: str, params: ConnectionParams) -> RawApiResponse | ApiError:
        url = f"{params.base_url}{endpoint}"
        form = {"data": data, "key": params.secret_key}
        ssl: bool = not params.allow_insecure_tls

        async with aiohttp.ClientSession() as session:
            async with session.post(
                url,
                data=form,
                ssl=ssl,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as resp:
                text = _decode(await resp.read())
                return RawApiResponse(http_status=resp.status, body_text=text, parsed_json=_try_json(text))


class ProxyGateway(_Gateway):
    """Relay requests through the upstream control API.

    The upstream answers ``{"status": <router status>, "data": <body>}``
    where a non-JSON router body is wrapped as ``{"rawOutput": ...}``, or
    ``{"error": ...}`` when it could not reach the router at all.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        debug_sink: DebugSink | None = None,
    ) -> None:
        super().__init__(timeout=timeout, debug_sink=debug_sink)
        if not base_url:
            raise ValueError("Upstream base URL is required for the proxy gateway.")
        self.base_url = base_url.rstrip("/")
        self._api_key = api_key

    async def _post(self, endpoint: str, data: str, params: ConnectionParams) -> RawApiResponse | ApiError:
        body = {
            "url": f"{params.base_url}{endpoint}",
            "method": "POST",
            "data": {"data": data, "key": params.secret_key},
            "allowInsecure": params.allow_insecure_tls,
        }
        headers = {"Accept": "application/json", "X-API-Key": self._api_key}

        async with aiohttp.ClientSession() as session:
            async with session.post(
                f"{self.base_url}{PROXY_ROUTE}",
                json=body,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as resp:
                text = _decode(await resp.read())
                return unwrap_proxy_response(resp.status, text)


def unwrap_proxy_response(status: int, text: str) -> RawApiResponse | ApiError:
    """Turn the upstream envelope back into the router's own response."""

    envelope = _try_json(text)
    if not isinstance(envelope, dict):
        return RawApiResponse(http_status=status, body_text=text, parsed_json=envelope)

    if "status" not in envelope and envelope.get("error"):
        message = str(envelope["error"])
        if is_certificate_failure(message):
            return ApiError(kind="certificate", message=CERTIFICATE_MESSAGE, http_status=status)
        if 200 <= status < 300:
            return RawApiResponse(http_status=status, body_text=text, parsed_json=envelope)
        return ApiError(kind="transport", message=message, http_status=status)

    if "status" not in envelope or "data" not in envelope:
        return RawApiResponse(http_status=status, body_text=text, parsed_json=envelope)

    router_status = envelope.get("status")
    if isinstance(router_status, bool) or not isinstance(router_status, int):
        router_status = status
    data = envelope.get("data")

    if isinstance(data, dict) and "rawOutput" in data:
        raw_output = data.get("rawOutput") or ""
        return RawApiResponse(http_status=router_status, body_text=str(raw_output))

    return RawApiResponse(http_status=router_status, body_text=json.dumps(data), parsed_json=data)
