"""MCP tools exposing the health sync engine to the host.

One tool per engine verb. Every tool returns a JSON string: the result on
success, or ``{"status": "error", "code": ..., "message": ...}`` carrying the
engine's typed failure. Each call is audit-logged without its raw values.
"""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from fastmcp import Context, FastMCP

from healthsync.domains.health.sync.codec import parse_kind
from healthsync.domains.health.sync.errors import HealthSyncError

if TYPE_CHECKING:
    from healthsync.core.audit.logger import AuditLogger
    from healthsync.domains.health.sync.engine import HealthSyncEngine

logger = logging.getLogger(__name__)


class BackgroundUpdateRelay:
    """Listener that records observer notifications for the host to poll."""

    def __init__(self, audit_logger: AuditLogger | None = None) -> None:
        self._audit = audit_logger
        self.update_count = 0
        self.last_update_at: str | None = None

    async def on_background_update(self) -> None:
        self.update_count += 1
        self.last_update_at = datetime.now(timezone.utc).isoformat()
        logger.info("Background health data update #%d", self.update_count)
        if self._audit is not None:
            self._audit.log_background_update()


def _kind_label(raw: Any) -> str | None:
    try:
        return parse_kind(raw).value
    except HealthSyncError:
        return None


def register_health_sync_tools(
    mcp: FastMCP,
    engine: HealthSyncEngine,
    audit_logger: AuditLogger | None = None,
) -> BackgroundUpdateRelay:
    """Register the sync verbs on the MCP server.

    Returns the relay installed as the engine's background listener; the
    caller must keep it referenced, since the engine only holds it weakly.
    """
    relay = BackgroundUpdateRelay(audit_logger)
    engine.set_listener(relay)

    async def _invoke(
        tool_name: str,
        tool_input: dict[str, Any],
        call: Callable[[], Awaitable[Any]],
        *,
        kind: Any = None,
    ) -> tuple[dict[str, Any], Any]:
        start_time = time.monotonic()
        sample_kind = _kind_label(kind) if kind is not None else None
        try:
            result = await call()
        except HealthSyncError as exc:
            elapsed_ms = (time.monotonic() - start_time) * 1000
            logger.info("%s failed: %s %s", tool_name, exc.code, exc.message)
            if audit_logger is not None:
                audit_logger.log_tool_call(
                    tool_name,
                    tool_input,
                    sample_kind=sample_kind,
                    duration_ms=round(elapsed_ms, 1),
                    status="failure",
                    error_type=exc.code,
                )
            return {"status": "error", **exc.as_dict()}, None

        elapsed_ms = (time.monotonic() - start_time) * 1000
        if audit_logger is not None:
            audit_logger.log_tool_call(
                tool_name,
                tool_input,
                sample_kind=sample_kind,
                duration_ms=round(elapsed_ms, 1),
            )
        return {"status": "ok", "duration_ms": round(elapsed_ms, 1)}, result

    @mcp.tool
    async def request_health_authorization(ctx: Context) -> str:
        """Request read access to all supported record kinds and write access
        to blood glucose and insulin, in a single grant."""
        envelope, granted = await _invoke(
            "request_health_authorization", {}, engine.request_authorization
        )
        if envelope["status"] == "ok":
            envelope["granted"] = granted
        return json.dumps(envelope)

    @mcp.tool
    async def read_health_data(
        ctx: Context,
        type: str,
        start_time: float,
        end_time: float,
    ) -> str:
        """Read health samples of one kind, newest first.

        Args:
            type: Record kind, e.g. 'BLOOD_GLUCOSE', 'INSULIN_DELIVERY', 'STEPS',
                'WEIGHT', 'WATER', 'WORKOUT', 'SLEEP', 'MENSTRUATION', 'MINDFULNESS'.
            start_time: Window start, epoch milliseconds (inclusive).
            end_time: Window end, epoch milliseconds (exclusive).
        """
        args = {"type": type, "start_time": start_time, "end_time": end_time}
        envelope, records = await _invoke(
            "read_health_data",
            args,
            lambda: engine.read(type, start_time, end_time),
            kind=type,
        )
        if envelope["status"] == "ok":
            envelope["count"] = len(records)
            envelope["records"] = records
        return json.dumps(envelope)

    @mcp.tool
    async def write_health_data(
        ctx: Context,
        type: str,
        value: float,
        start_time: float,
        meal_time: str | None = None,
        reason: str | None = None,
    ) -> str:
        """Write one blood glucose (mg/dL) or insulin (IU) sample.

        Args:
            type: 'BLOOD_GLUCOSE' or 'INSULIN_DELIVERY'.
            value: Measured value.
            start_time: When the sample was taken, epoch milliseconds.
            meal_time: Glucose only: 'preprandial' or 'postprandial'.
            reason: Insulin only: 'basal' or 'bolus' (default 'bolus').
        """
        args = {"type": type, "start_time": start_time}
        envelope, _ = await _invoke(
            "write_health_data",
            args,
            lambda: engine.write(type, value, start_time, meal_time, reason),
            kind=type,
        )
        return json.dumps(envelope)

    @mcp.tool
    async def delete_health_data(
        ctx: Context,
        type: str,
        timestamp: float,
    ) -> str:
        """Delete the blood glucose or insulin sample recorded at a timestamp.

        Samples written by this app at that time are all removed; otherwise
        the single nearest sample within one second is removed.

        Args:
            type: 'BLOOD_GLUCOSE' or 'INSULIN_DELIVERY'.
            timestamp: Sample time, epoch milliseconds.
        """
        args = {"type": type, "timestamp": timestamp}
        envelope, count = await _invoke(
            "delete_health_data",
            args,
            lambda: engine.delete_matching(type, timestamp),
            kind=type,
        )
        if envelope["status"] == "ok":
            envelope["records_deleted"] = count
            if audit_logger is not None:
                audit_logger.log_data_delete(
                    tool_name="delete_health_data",
                    sample_kind=_kind_label(type),
                    count=count,
                )
            logger.info("Deleted %d %s sample(s)", count, type)
        return json.dumps(envelope)

    @mcp.tool
    async def fetch_daily_activity(
        ctx: Context,
        start_time: float,
        end_time: float,
    ) -> str:
        """Daily step count and walking/running distance (km) per calendar day.

        Args:
            start_time: Range start, epoch milliseconds.
            end_time: Range end, epoch milliseconds.
        """
        args = {"start_time": start_time, "end_time": end_time}
        envelope, days = await _invoke(
            "fetch_daily_activity",
            args,
            lambda: engine.fetch_daily_activity(start_time, end_time),
        )
        if envelope["status"] == "ok":
            envelope["days"] = days
        return json.dumps(envelope)

    @mcp.tool
    async def start_background_observer(ctx: Context) -> str:
        """Start watching the configured record kinds for changes."""
        envelope, _ = await _invoke(
            "start_background_observer", {}, engine.start_observing
        )
        if envelope["status"] == "ok":
            envelope["watching"] = [k.value for k in engine.observer.watched_kinds]
        return json.dumps(envelope)

    @mcp.tool
    async def stop_background_observer(ctx: Context) -> str:
        """Stop all background observers. Succeeds when none are running."""
        envelope, _ = await _invoke(
            "stop_background_observer", {}, engine.stop_observing
        )
        return json.dumps(envelope)

    @mcp.tool
    def background_update_status() -> str:
        """How many change notifications the observers have delivered."""
        return json.dumps({
            "status": "ok",
            "watching": [k.value for k in engine.observer.watched_kinds],
            "update_count": relay.update_count,
            "last_update_at": relay.last_update_at,
        })

    @mcp.tool
    async def test_write_permission(ctx: Context, type: str) -> str:
        """Check whether this app can currently write a record kind.

        Saves and immediately deletes a throw-away sample dated 2000-01-01.

        Args:
            type: 'BLOOD_GLUCOSE' or 'INSULIN_DELIVERY'.
        """
        envelope, allowed = await _invoke(
            "test_write_permission",
            {"type": type},
            lambda: engine.test_write_permission(type),
            kind=type,
        )
        if envelope["status"] == "ok":
            envelope["writable"] = allowed
        return json.dumps(envelope)

    return relay
