"""healthsync server entry point — ``python -m healthsync.core.server.main``."""

from __future__ import annotations

import logging
from ipaddress import ip_address

from healthsync.core.config.settings import Settings, get_settings
from healthsync.core.server.app import create_app

logger = logging.getLogger(__name__)

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _is_loopback_host(host: str) -> bool:
    if host == "localhost":
        return True
    try:
        return ip_address(host).is_loopback
    except ValueError:
        return False


def _check_bind(settings: Settings) -> None:
    """Refuse a public bind unless explicitly allowed.

    The tools can read and delete personal health records and nothing in
    front of them authenticates callers.
    """
    if settings.hsync_allow_insecure_bind or _is_loopback_host(settings.hsync_host):
        return
    raise RuntimeError(
        f"Refusing to bind healthsync to non-loopback host {settings.hsync_host!r}. "
        "Set HSYNC_ALLOW_INSECURE_BIND=true to override (unsafe)."
    )


def run() -> None:
    """Serve the sync tools over Streamable HTTP."""
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.hsync_log_level.upper(), logging.INFO),
        format=_LOG_FORMAT,
    )
    _check_bind(settings)

    logger.info(
        "Starting healthsync on %s:%d (app identity %s)",
        settings.hsync_host,
        settings.hsync_port,
        settings.app_bundle_identifier,
    )
    mcp = create_app(settings_override=settings)
    mcp.run(
        transport="streamable-http",
        host=settings.hsync_host,
        port=settings.hsync_port,
    )


if __name__ == "__main__":
    run()
