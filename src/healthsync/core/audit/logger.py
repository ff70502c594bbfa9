"""Audit logger for the sync tools.

Every host request that reaches the engine leaves one row in ``audit_log``.
Rows never contain health values: tool arguments are reduced to a SHA-256
digest of their canonical JSON, and only the record kind, timing and outcome
are kept in the clear.
"""

from __future__ import annotations

import hashlib
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from healthsync.core.storage.database import HealthDatabase

logger = logging.getLogger(__name__)

_COLUMNS = (
    "id",
    "timestamp",
    "action",
    "tool_name",
    "tool_input_hash",
    "sample_kind",
    "duration_ms",
    "status",
    "error_type",
    "metadata_json",
)

_INSERT_SQL = (
    f"INSERT INTO audit_log ({', '.join(_COLUMNS)}) "
    f"VALUES ({', '.join('?' for _ in _COLUMNS)})"
)


def _hash_input(data: Any) -> str:
    """Hex SHA-256 of *data* as canonical JSON; empty if not serializable."""
    try:
        canonical = json.dumps(data, sort_keys=True, separators=(",", ":"))
    except (TypeError, ValueError):
        return ""
    return hashlib.sha256(canonical.encode()).hexdigest()


@dataclass
class AuditEvent:
    """One audit row before it is written."""

    action: str                          # tool_invocation | data_delete | background_update
    tool_name: str = ""
    tool_input_hash: str = ""
    sample_kind: str | None = None
    duration_ms: float | None = None
    status: str = "success"              # success | failure
    error_type: str | None = None        # HealthSyncError code
    metadata: dict[str, Any] = field(default_factory=dict)

    def as_row(self, event_id: str, timestamp: str) -> tuple[Any, ...]:
        metadata_json = (
            json.dumps(self.metadata, separators=(",", ":")) if self.metadata else None
        )
        return (
            event_id,
            timestamp,
            self.action,
            self.tool_name or None,
            self.tool_input_hash or None,
            self.sample_kind,
            self.duration_ms,
            self.status,
            self.error_type,
            metadata_json,
        )


def _filters(
    *,
    action: str | None = None,
    tool_name: str | None = None,
    since: str | None = None,
) -> tuple[str, list[Any]]:
    """WHERE clause and parameters for the optional row filters."""
    clauses: list[str] = []
    params: list[Any] = []
    for column, op, value in (
        ("action", "=", action),
        ("tool_name", "=", tool_name),
        ("timestamp", ">=", since),
    ):
        if value:
            clauses.append(f"{column} {op} ?")
            params.append(value)
    where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
    return where, params


class AuditLogger:
    """Writes and queries ``audit_log`` rows.

    Each write commits on its own. A failed write is logged and reported as an
    empty event id; it never fails the tool call that triggered it.

    Usage::

        audit = AuditLogger(db)
        audit.log_tool_call("read_health_data", {"type": "STEPS"}, sample_kind="steps")
    """

    def __init__(self, database: HealthDatabase) -> None:
        self._db = database

    def log_event(self, event: AuditEvent) -> str:
        """Persist *event* and return its generated id ("" on failure)."""
        event_id = str(uuid.uuid4())
        row = event.as_row(event_id, datetime.now(timezone.utc).isoformat())
        try:
            conn = self._db.connection
            conn.execute(_INSERT_SQL, row)
            conn.commit()
        except Exception:
            logger.exception("Audit write failed for %s event", event.action)
            return ""
        return event_id

    def log_tool_call(
        self,
        tool_name: str,
        tool_input: Any = None,
        *,
        sample_kind: str | None = None,
        duration_ms: float | None = None,
        status: str = "success",
        error_type: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Record one MCP tool invocation.

        Args:
            tool_name: Name of the MCP tool.
            tool_input: Arguments as received; only their digest is stored.
            sample_kind: Record kind the call touched, if it names one.
            duration_ms: Wall time spent in the engine.
            status: ``"success"`` or ``"failure"``.
            error_type: The engine's error code on failure.
            metadata: Extra non-health context.
        """
        return self.log_event(AuditEvent(
            action="tool_invocation",
            tool_name=tool_name,
            tool_input_hash=_hash_input(tool_input) if tool_input else "",
            sample_kind=sample_kind,
            duration_ms=duration_ms,
            status=status,
            error_type=error_type,
            metadata=metadata or {},
        ))

    def log_data_delete(
        self,
        *,
        tool_name: str = "",
        sample_kind: str | None = None,
        count: int = 0,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Record that *count* samples were removed from the health store."""
        return self.log_event(AuditEvent(
            action="data_delete",
            tool_name=tool_name,
            sample_kind=sample_kind,
            metadata={**(metadata or {}), "records_deleted": count},
        ))

    def log_background_update(self) -> str:
        return self.log_event(AuditEvent(action="background_update"))

    def get_events(
        self,
        *,
        action: str | None = None,
        tool_name: str | None = None,
        since: str | None = None,
        limit: int = 50,
    ) -> list[dict[str, Any]]:
        """Rows matching the filters, newest first. *since* is ISO 8601."""
        where, params = _filters(action=action, tool_name=tool_name, since=since)
        rows = self._db.connection.execute(
            f"SELECT * FROM audit_log{where} ORDER BY timestamp DESC LIMIT ?",
            [*params, limit],
        ).fetchall()
        return [dict(row) for row in rows]

    def count_events(self, *, since: str | None = None) -> int:
        where, params = _filters(since=since)
        return self._db.connection.execute(
            f"SELECT COUNT(*) FROM audit_log{where}", params
        ).fetchone()[0]

    def count_by_kind(self, *, since: str | None = None) -> dict[str, int]:
        """Tool invocations per record kind."""
        where, params = _filters(action="tool_invocation", since=since)
        rows = self._db.connection.execute(
            f"SELECT sample_kind, COUNT(*) FROM audit_log{where} "
            "AND sample_kind IS NOT NULL GROUP BY sample_kind",
            params,
        ).fetchall()
        return {kind: count for kind, count in rows}

    def count_deleted_records(self, *, since: str | None = None) -> int:
        """Total samples this app has removed from the health store."""
        where, params = _filters(action="data_delete", since=since)
        rows = self._db.connection.execute(
            f"SELECT metadata_json FROM audit_log{where}", params
        ).fetchall()
        return sum(
            int(json.loads(metadata_json).get("records_deleted", 0))
            for (metadata_json,) in rows
            if metadata_json
        )
