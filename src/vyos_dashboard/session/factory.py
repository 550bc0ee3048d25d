"""Assemble a ready-to-use :class:`Session` from the dashboard settings.

``bootstrap`` is what a hosting web app calls once at start-up: it loads
``config/local.yml``, configures logging and returns a session wired with
the gateway, cache window, debug log and state file the settings ask for.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Mapping

from vyos_dashboard.common.debug_log import DebugLog, DebugSink
from vyos_dashboard.core.config import AppSettings, load_settings
from vyos_dashboard.core.logging import setup_logging
from vyos_dashboard.core.secrets import Secrets, resolve_upstream_api_key
from vyos_dashboard.session.cache import ConfigCache
from vyos_dashboard.session.manager import Session
from vyos_dashboard.vyos.gateway import ProxyGateway, VyosGateway

logger = logging.getLogger(__name__)


def build_gateway(
    settings: AppSettings,
    *,
    debug_sink: DebugSink | None = None,
    secrets: Secrets | None = None,
    environ: Mapping[str, str] | None = None,
) -> ProxyGateway | VyosGateway:
    """Relay through the upstream API when one is configured, else go direct.

    Raises :class:`SecretNotFoundError` when an upstream is configured but no
    API key for it can be resolved.
    """

    if settings.upstream_url:
        api_key = resolve_upstream_api_key(secrets, environ=environ)
        logger.debug("using upstream gateway url=%s", settings.upstream_url)
        return ProxyGateway(
            settings.upstream_url,
            api_key,
            timeout=settings.request_timeout,
            debug_sink=debug_sink,
        )
    return VyosGateway(timeout=settings.request_timeout, debug_sink=debug_sink)


def build_session(
    settings: AppSettings,
    *,
    cache: ConfigCache | None = None,
    secrets: Secrets | None = None,
    environ: Mapping[str, str] | None = None,
) -> Session:
    debug_log = DebugLog(max_events=settings.debug_log_size, recording=settings.debug_mode)
    gateway = build_gateway(settings, debug_sink=debug_log, secrets=secrets, environ=environ)
    return Session(
        gateway,
        cache,
        max_age=settings.cache_max_age,
        debug_log=debug_log,
        debug_mode=settings.debug_mode,
        state_path=settings.state_path,
    )


def bootstrap(config_path: str | Path = "config/local.yml") -> Session:
    settings = load_settings(config_path)
    setup_logging(config_path, debug=settings.debug_mode, upstream_url=settings.upstream_url)
    session = build_session(settings)
    logger.info(
        "dashboard ready gateway=%s cache_max_age=%ss state_path=%s",
        type(session.gateway).__name__,
        settings.cache_max_age,
        settings.state_path,
    )
    return session
