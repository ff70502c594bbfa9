"""MCP tool for reviewing what the sync tools have done.

Only tool names, record kinds, timing and outcomes are reported. The audit
trail never holds health values.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

from fastmcp import Context, FastMCP

if TYPE_CHECKING:
    from healthsync.core.audit.logger import AuditLogger

logger = logging.getLogger(__name__)

_EVENT_FIELDS = (
    "timestamp",
    "action",
    "tool_name",
    "sample_kind",
    "status",
    "error_type",
    "duration_ms",
)


def _display(event: dict[str, Any]) -> dict[str, Any]:
    return {key: event.get(key) for key in _EVENT_FIELDS}


def register_audit_tools(mcp: FastMCP, audit_logger: AuditLogger) -> None:
    """Register the audit summary tool on the MCP server."""

    @mcp.tool
    async def audit_summary(ctx: Context, days: int = 30) -> str:
        """Summarize recent sync activity: calls per record kind, failures,
        and how many samples were deleted from the health store.

        Args:
            days: Number of days to look back (default: 30).
        """
        since = (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()
        recent = audit_logger.get_events(since=since, limit=20)
        logger.debug("audit_summary: %d recent events since %s", len(recent), since)

        return json.dumps({
            "status": "ok",
            "period_days": days,
            "total_events": audit_logger.count_events(since=since),
            "calls_by_kind": audit_logger.count_by_kind(since=since),
            "records_deleted": audit_logger.count_deleted_records(since=since),
            "recent_events": [_display(e) for e in recent],
            "note": "Audit rows hold hashed arguments only, never health values.",
        }, indent=2)
