"""healthsync MCP server — application factory.

This module provides:
- create_app() for testability (integration tests create fresh server instances)
- Module-level `mcp` variable for FastMCP discovery
"""

from __future__ import annotations

import logging

from fastmcp import FastMCP

from healthsync.core.audit.logger import AuditLogger
from healthsync.core.config.settings import Settings, get_settings
from healthsync.core.storage.database import HealthDatabase
from healthsync.domains.health.store import HealthStore
from healthsync.domains.health.store.memory import InMemoryHealthStore
from healthsync.domains.health.sync.engine import HealthSyncEngine
from healthsync.domains.health.tools.audit_tools import register_audit_tools
from healthsync.domains.health.tools.sync_tools import register_health_sync_tools

logger = logging.getLogger(__name__)


def create_app(
    *,
    store_override: HealthStore | None = None,
    settings_override: Settings | None = None,
    audit_logger_override: AuditLogger | None = None,
) -> FastMCP:
    """Create and configure the healthsync MCP server.

    This is the main application factory. It:
    1. Creates the FastMCP server instance
    2. Initializes the health store (in-memory unless one is injected)
    3. Builds the sync engine with this app's identity
    4. Initializes the audit trail
    5. Registers all tools
    """
    settings = settings_override or get_settings()

    # --- Server instance ---
    server = FastMCP(
        "healthsync",
        instructions=(
            "Health record synchronization engine. Reads, writes, deletes and "
            "observes time-series health samples in the device health store, "
            "and aggregates daily step and distance totals."
        ),
    )

    # --- Initialize health store ---
    if store_override is not None:
        store = store_override
    else:
        store = InMemoryHealthStore()
        logger.info("Using in-memory health store")

    # --- Initialize sync engine ---
    engine = HealthSyncEngine(
        store,
        bundle_identifier=settings.app_bundle_identifier,
        app_name=settings.app_display_name,
        tz=settings.timezone(),
        delete_tolerance=settings.delete_tolerance(),
        observed_kinds=settings.observed_sample_kinds(),
    )

    # --- Initialize audit trail ---
    audit_logger: AuditLogger | None = None
    if audit_logger_override is not None:
        audit_logger = audit_logger_override
    elif settings.audit_enabled:
        audit_db = HealthDatabase(settings.audit_db_path)
        audit_db.initialize()
        audit_logger = AuditLogger(audit_db)
        logger.info(
            "Audit trail initialized: %s (schema v%d)",
            settings.audit_db_path,
            audit_db.get_schema_version(),
        )
    else:
        logger.info("Audit trail disabled (AUDIT_ENABLED=false)")

    # --- Register tools ---
    # The engine's observer holds its listener weakly; health_check keeps the relay alive.
    relay = register_health_sync_tools(server, engine, audit_logger)
    logger.info("Health sync tools registered")

    @server.tool
    def health_check() -> dict:
        """Check server health and return basic status information."""
        return {
            "status": "ok",
            "server": "healthsync",
            "version": "0.1.0",
            "store_available": engine.is_available(),
            "observing": engine.observer.is_watching,
            "background_updates": relay.update_count,
            "audit_enabled": audit_logger is not None,
        }

    if audit_logger is not None:
        register_audit_tools(server, audit_logger)
        logger.info("Audit tools registered")

    return server


# Module-level instance for FastMCP discovery.
# Lazy: only created when this module is loaded directly (not when tests import create_app).
def __getattr__(name: str):
    if name == "mcp":
        global mcp  # noqa: PLW0603
        mcp = create_app()
        return mcp
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
