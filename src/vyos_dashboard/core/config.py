"""Configuration helpers for the VyOS dashboard core."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from vyos_dashboard.core.models import DEFAULT_PORT, ConnectionParams
from vyos_dashboard.core.storage import PROJECT_ROOT, load_local_config

ENV_UPSTREAM_URL = "VYOS_DASHBOARD_UPSTREAM_URL"
DEFAULT_CACHE_MAX_AGE = 300
DEFAULT_REQUEST_TIMEOUT = 30.0
DEFAULT_STATE_PATH = Path("state/connection_state.json")
DEFAULT_DEBUG_LOG_SIZE = 200

# Operator input arrives either from Python callers or from the browser
# payload, which uses camelCase names.
_FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "secret_key": ("secret_key", "secretKey", "key"),
    "use_tls": ("use_tls", "useTLS"),
    "allow_insecure_tls": ("allow_insecure_tls", "allowInsecureTLS", "allowInsecure"),
}


class SettingsError(ValueError):
    """Raised when the ``dashboard`` section of local.yml is invalid."""


class ConnectionParamsError(ValueError):
    """Raised when operator supplied connection settings are invalid."""


@dataclass(slots=True)
class AppSettings:
    """Runtime settings loaded from local.yml and the environment."""

    upstream_url: str | None = None
    cache_max_age: int = DEFAULT_CACHE_MAX_AGE
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    state_path: Path = PROJECT_ROOT / DEFAULT_STATE_PATH
    debug_mode: bool = False
    debug_log_size: int = DEFAULT_DEBUG_LOG_SIZE


def _require_string(mapping: Mapping[str, Any], field: str, context: str) -> str:
    value = mapping.get(field)
    if value is None or value == "":
        raise ConnectionParamsError(f"{context}: missing required field '{field}'.")
    if not isinstance(value, str):
        raise ConnectionParamsError(f"{context}: field '{field}' must be a string.")
    return value


def _validate_port(value: Any, context: str) -> int:
    if value is None or value == "":
        return DEFAULT_PORT
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConnectionParamsError(f"{context}: port must be an integer.")
    if value <= 0 or value > 65535:
        raise ConnectionParamsError(f"{context}: port must be between 1 and 65535.")
    return value


def _validate_flag(value: Any, field: str, default: bool, context: str) -> bool:
    if value is None:
        return default
    if not isinstance(value, bool):
        raise ConnectionParamsError(f"{context}: field '{field}' must be a boolean.")
    return value


def _pick(mapping: Mapping[str, Any], field: str) -> Any:
    for alias in _FIELD_ALIASES.get(field, (field,)):
        if alias in mapping:
            return mapping[alias]
    return None


def parse_connection_params(
    raw: Mapping[str, Any], context: str = "connection"
) -> ConnectionParams:
    """Validate operator input and build :class:`ConnectionParams`."""

    if not isinstance(raw, Mapping):
        raise ConnectionParamsError(f"{context}: connection settings must be a mapping.")

    host = _require_string(raw, "host", context).strip()
    if not host:
        raise ConnectionParamsError(f"{context}: missing required field 'host'.")
    if "/" in host or " " in host:
        raise ConnectionParamsError(f"{context}: host must be a bare hostname or address.")

    secret_key = _require_string({"secret_key": _pick(raw, "secret_key")}, "secret_key", context)
    port = _validate_port(raw.get("port"), context)
    use_tls = _validate_flag(_pick(raw, "use_tls"), "use_tls", True, context)
    allow_insecure = _validate_flag(
        _pick(raw, "allow_insecure_tls"), "allow_insecure_tls", False, context
    )

    return ConnectionParams(
        host=host,
        secret_key=secret_key,
        port=port,
        use_tls=use_tls,
        allow_insecure_tls=allow_insecure,
    )


def _positive_number(value: Any, field: str, default: float) -> float:
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise SettingsError(f"dashboard: field '{field}' must be a number.")
    if value <= 0:
        raise SettingsError(f"dashboard: field '{field}' must be greater than zero.")
    return value


def _resolve_state_path(value: Any) -> Path:
    if value is None or value == "":
        return PROJECT_ROOT / DEFAULT_STATE_PATH
    if not isinstance(value, str):
        raise SettingsError("dashboard: field 'state_path' must be a string.")
    candidate = Path(value).expanduser()
    if not candidate.is_absolute():
        candidate = PROJECT_ROOT / candidate
    return candidate


def settings_from_mapping(
    local_cfg: Mapping[str, Any] | None, environ: Mapping[str, str] | None = None
) -> AppSettings:
    """Build :class:`AppSettings` from a parsed local.yml and the environment.

    Environment variables take priority over the file.
    """

    environ = os.environ if environ is None else environ
    section: Mapping[str, Any] = {}
    if isinstance(local_cfg, Mapping):
        raw_section = local_cfg.get("dashboard")
        if raw_section is not None and not isinstance(raw_section, Mapping):
            raise SettingsError("Field 'dashboard' in local.yml must be a mapping.")
        section = raw_section or {}

    upstream_url = environ.get(ENV_UPSTREAM_URL) or section.get("upstream_url")
    if upstream_url is not None and not isinstance(upstream_url, str):
        raise SettingsError("dashboard: field 'upstream_url' must be a string.")

    debug_mode = section.get("debug_mode", False)
    if not isinstance(debug_mode, bool):
        raise SettingsError("dashboard: field 'debug_mode' must be a boolean.")

    return AppSettings(
        upstream_url=upstream_url.rstrip("/") if upstream_url else None,
        cache_max_age=int(_positive_number(section.get("cache_max_age"), "cache_max_age", DEFAULT_CACHE_MAX_AGE)),
        request_timeout=float(
            _positive_number(section.get("request_timeout"), "request_timeout", DEFAULT_REQUEST_TIMEOUT)
        ),
        state_path=_resolve_state_path(section.get("state_path")),
        debug_mode=debug_mode,
        debug_log_size=int(
            _positive_number(section.get("debug_log_size"), "debug_log_size", DEFAULT_DEBUG_LOG_SIZE)
        ),
    )


def load_settings(
    config_path: str | Path | None = None, logger: logging.Logger | None = None
) -> AppSettings:
    """Load settings from ``config/local.yml`` with environment overrides."""

    logger = logger or logging.getLogger(__name__)
    local_cfg = load_local_config(config_path, logger)
    settings = settings_from_mapping(local_cfg)
    logger.debug(
        "settings loaded upstream=%s cache_max_age=%s timeout=%s state_path=%s",
        settings.upstream_url or "-",
        settings.cache_max_age,
        settings.request_timeout,
        settings.state_path,
    )
    return settings
