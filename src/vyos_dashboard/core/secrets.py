"""Secrets management helpers.

The upstream API key (the proxy's own credential, distinct from the
per-connection router key) is loaded from ``config/secrets.yml`` when present
and can be overridden via ``VYOS_DASHBOARD_API_KEY``. The environment takes
priority and a missing key is a fail-fast error for the proxy gateway.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml

from vyos_dashboard.core.models import REDACTED

logger = logging.getLogger(__name__)

ENV_API_KEY = "VYOS_DASHBOARD_API_KEY"
DEFAULT_SECRETS_PATH = Path("config/secrets.yml")
SENSITIVE_FIELDS = frozenset({"key", "secret_key", "secretKey", "password", "key_content", "api_key"})


class SecretsConfigError(ValueError):
    """Raised when the secrets file is missing required structure."""


class SecretNotFoundError(KeyError):
    """Raised when the upstream API key cannot be resolved.

    The proxy gateway cannot authenticate without it, so callers should treat
    this as a fail-fast signal at startup.
    """


@dataclass(slots=True)
class Secrets:
    """Container for the values read from secrets.yml."""

    upstream_api_key: str | None = field(default=None, repr=False)
    source_path: Path | None = None
    missing_source: bool = False


def _load_file_secrets(path: Path) -> Secrets:
    """Load secrets from a YAML file.

    The expected structure matches ``config/secrets.yml.example``.
    """

    try:
        with path.open("r", encoding="utf-8") as handle:
            raw_data = yaml.safe_load(handle) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise SecretsConfigError(f"Unable to read secrets file: {path}") from exc

    if not isinstance(raw_data, Mapping):
        raise SecretsConfigError("Top-level secrets.yml structure must be a mapping.")

    raw_secrets = raw_data.get("secrets")
    if raw_secrets is None:
        raise SecretsConfigError("Field 'secrets' is required in secrets.yml.")
    if not isinstance(raw_secrets, Mapping):
        raise SecretsConfigError("Field 'secrets' must be a mapping.")

    upstream = raw_secrets.get("upstream")
    if upstream is None:
        return Secrets(source_path=path)
    if not isinstance(upstream, Mapping):
        raise SecretsConfigError("Secret 'upstream' must be a mapping.")

    api_key = upstream.get("api_key")
    if api_key is not None and not isinstance(api_key, str):
        raise SecretsConfigError("Secret 'upstream' field 'api_key' must be a string.")

    return Secrets(upstream_api_key=api_key or None, source_path=path)


def load_secrets(path: Path = DEFAULT_SECRETS_PATH, logger: logging.Logger | None = None) -> Secrets:
    """Load secrets from the provided path."""

    logger = logger or logging.getLogger(__name__)
    if not path.exists():
        logger.debug("Secrets file not found at %s", path)
        return Secrets(source_path=path, missing_source=True)

    secrets = _load_file_secrets(path)
    logger.debug("Secrets file loaded path=%s upstream=%s", path, bool(secrets.upstream_api_key))
    return secrets


def resolve_upstream_api_key(
    secrets: Secrets | None = None, environ: Mapping[str, str] | None = None
) -> str:
    """Resolve the upstream API key.

    Resolution order:
    1. Environment variable ``VYOS_DASHBOARD_API_KEY``
    2. ``config/secrets.yml`` (if present)
    """

    environ = os.environ if environ is None else environ
    env_value = environ.get(ENV_API_KEY)
    if env_value:
        return env_value

    secrets = secrets or load_secrets()
    if secrets.upstream_api_key:
        return secrets.upstream_api_key

    raise SecretNotFoundError(f"Upstream API key not found. Set {ENV_API_KEY} or config/secrets.yml.")


def scrub_value(value: Any, secret: str | None) -> Any:
    """Replace every occurrence of ``secret`` in a JSON-like value with the mask.

    Mapping entries whose key is a known credential field are masked
    regardless of their content.
    """

    if isinstance(value, Mapping):
        return {
            key: REDACTED if key in SENSITIVE_FIELDS and value[key] not in (None, "") else scrub_value(item, secret)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [scrub_value(item, secret) for item in value]
    if isinstance(value, str) and secret and secret in value:
        return value.replace(secret, REDACTED)
    return value
