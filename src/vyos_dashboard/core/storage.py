"""Storage helpers for the persisted connection snapshot and local.yml."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Mapping

import yaml

from vyos_dashboard.core.models import REDACTED
from vyos_dashboard.core.secrets import scrub_value

PROJECT_ROOT = Path(__file__).resolve().parents[3]
DEFAULT_LOCAL_CONFIG = PROJECT_ROOT / "config" / "local.yml"
STATE_KEY = "vyos_connection_state"

SNAPSHOT_FIELDS: tuple[str, ...] = (
    "isConnected",
    "connectionParams",
    "config",
    "lastUpdate",
    "debugMode",
    "debugInfo",
    "dhcpLeases",
)


def load_local_config(
    config_path: str | Path | None = None, logger: logging.Logger | None = None
) -> Mapping[str, Any] | None:
    """Load local.yml if it exists and return the mapping."""

    config_file = Path(config_path) if config_path else DEFAULT_LOCAL_CONFIG
    if not config_file.is_absolute():
        config_file = PROJECT_ROOT / config_file

    if logger:
        logger.debug("loading local config from %s", config_file)

    if not config_file.exists():
        if logger:
            logger.debug("local config not found at %s", config_file)
        return None

    try:
        with config_file.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except (OSError, yaml.YAMLError) as exc:
        if logger:
            logger.warning("unable to read local config file=%s reason=\"%s\"", config_file, exc)
        return None

    return data if isinstance(data, Mapping) else None


def redact_snapshot(snapshot: Mapping[str, Any], secret: str | None = None) -> dict[str, Any]:
    """Return a copy of ``snapshot`` that never contains the router key.

    ``connectionParams.secret_key`` is always replaced by the mask, and any
    other string carrying the live key value is scrubbed as well.
    """

    params = snapshot.get("connectionParams")
    if secret is None and isinstance(params, Mapping):
        live = params.get("secret_key")
        if isinstance(live, str) and live and live != REDACTED:
            secret = live

    payload = scrub_value(dict(snapshot), secret)
    if isinstance(payload.get("connectionParams"), dict):
        payload["connectionParams"]["secret_key"] = REDACTED
    return payload


def save_state(
    path: Path,
    snapshot: Mapping[str, Any],
    *,
    secret: str | None = None,
    logger: logging.Logger | None = None,
) -> Path:
    """Persist the connection snapshot under the well-known state key."""

    logger = logger or logging.getLogger(__name__)
    payload = {STATE_KEY: redact_snapshot(snapshot, secret)}

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")

    host = "-"
    params = payload[STATE_KEY].get("connectionParams")
    if isinstance(params, Mapping):
        host = params.get("host") or "-"
    logger.info("connection state saved path=%s", path, extra={"host": host})
    return path


def load_state(path: Path, logger: logging.Logger | None = None) -> dict[str, Any] | None:
    """Load a snapshot written by :func:`save_state`.

    Missing files return ``None``. Unreadable or malformed files are logged
    and also return ``None`` so that a corrupt snapshot never blocks startup.
    """

    logger = logger or logging.getLogger(__name__)
    if not path.exists():
        logger.debug("connection state not found path=%s", path)
        return None

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.warning("unable to read connection state path=%s reason=\"%s\"", path, exc)
        return None

    state = data.get(STATE_KEY) if isinstance(data, dict) else None
    if not isinstance(state, dict):
        logger.warning("connection state malformed path=%s key=%s", path, STATE_KEY)
        return None

    return {field: state.get(field) for field in SNAPSHOT_FIELDS}


def clear_state(path: Path, logger: logging.Logger | None = None) -> bool:
    """Remove the persisted snapshot. Returns True when a file was deleted."""

    logger = logger or logging.getLogger(__name__)
    if not path.exists():
        return False
    path.unlink()
    logger.info("connection state cleared path=%s", path)
    return True
