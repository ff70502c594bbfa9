"""SQLite persistence for the healthsync audit trail.

Only audit rows live here. Health samples stay in the device store and are
never copied into this database.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2

_SCHEMA_V1 = """
CREATE TABLE IF NOT EXISTS audit_log (
    id              TEXT PRIMARY KEY,
    timestamp       TEXT NOT NULL DEFAULT (datetime('now')),
    action          TEXT NOT NULL,
    tool_name       TEXT,
    tool_input_hash TEXT,
    duration_ms     REAL,
    status          TEXT NOT NULL DEFAULT 'success',
    error_type      TEXT,
    metadata_json   TEXT
);

CREATE TABLE IF NOT EXISTS schema_version (
    version    INTEGER NOT NULL,
    applied_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_audit_timestamp ON audit_log(timestamp);
CREATE INDEX IF NOT EXISTS idx_audit_action    ON audit_log(action);
CREATE INDEX IF NOT EXISTS idx_audit_tool      ON audit_log(tool_name);
"""

# Per-kind activity is queried directly, without parsing metadata_json.
_SCHEMA_V2 = """
ALTER TABLE audit_log ADD COLUMN sample_kind TEXT;
CREATE INDEX IF NOT EXISTS idx_audit_kind ON audit_log(sample_kind);
"""

# (version, script) pairs applied in order on top of the V1 tables.
_MIGRATIONS: list[tuple[int, str]] = [
    (2, _SCHEMA_V2),
]


class DatabaseError(Exception):
    """Raised when the audit database is used before it is opened."""


class HealthDatabase:
    """Owns the single SQLite connection behind the audit trail.

    ``":memory:"`` gives a throw-away database for tests.

    Usage::

        with HealthDatabase("~/.healthsync/audit.db") as db:
            db.connection.execute("SELECT COUNT(*) FROM audit_log")
    """

    def __init__(self, db_path: str = ":memory:") -> None:
        self._db_path = db_path
        self._conn: sqlite3.Connection | None = None

    @property
    def connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise DatabaseError("Database not initialized. Call initialize() first.")
        return self._conn

    def initialize(self) -> None:
        """Open the connection and bring the schema up to date. Idempotent."""
        if self._conn is not None:
            return
        self._conn = self._connect()
        self._ensure_schema()
        logger.info("Audit database initialized: %s", self._db_path)

    def _connect(self) -> sqlite3.Connection:
        target = self._db_path
        if target != ":memory:":
            db_file = Path(target).expanduser()
            db_file.parent.mkdir(parents=True, exist_ok=True)
            target = str(db_file)
        # Tools may run on worker threads; writes are committed one at a time.
        conn = sqlite3.connect(target, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _ensure_schema(self) -> None:
        conn = self.connection
        conn.executescript(_SCHEMA_V1)
        current = self.get_schema_version()

        for version, script in _MIGRATIONS:
            if current < version:
                conn.executescript(script)
                logger.info("Applied audit schema migration V%d", version)

        if current < SCHEMA_VERSION:
            conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,)
            )
            conn.commit()
            logger.info("Audit schema at version %d (was %d)", SCHEMA_VERSION, current)

    def get_schema_version(self) -> int:
        row = self.connection.execute("SELECT MAX(version) FROM schema_version").fetchone()
        return row[0] or 0

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            logger.info("Audit database closed")

    def __enter__(self) -> HealthDatabase:
        self.initialize()
        return self

    def __exit__(self, *args) -> None:
        self.close()
