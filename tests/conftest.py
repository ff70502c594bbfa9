"""Shared test fixtures for healthsync tests."""

from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# ---------------------------------------------------------------------------
# Test hermeticity
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _force_hermetic_test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AUDIT_DB_PATH", ":memory:")
    monkeypatch.setenv("LOCAL_TIMEZONE", "UTC")
    monkeypatch.setenv("APP_BUNDLE_IDENTIFIER", OWN_BUNDLE)

# Allow running tests without `pip install -e .` by making `src/` importable.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_SRC_DIR = _PROJECT_ROOT / "src"
if str(_SRC_DIR) not in sys.path:
    sys.path.insert(0, str(_SRC_DIR))

from healthsync.domains.health.store.memory import InMemoryHealthStore  # noqa: E402
from healthsync.domains.health.sync.codec import (  # noqa: E402
    MetadataKey,
    Sample,
    SampleKind,
    SampleSource,
)
from healthsync.domains.health.sync.engine import HealthSyncEngine  # noqa: E402
from healthsync.domains.health.sync.units import Quantity  # noqa: E402

OWN_BUNDLE = "com.example.glucolog"
OWN_SOURCE = SampleSource(name="GlucoLog", bundle_identifier=OWN_BUNDLE)
FOREIGN_SOURCE = SampleSource(name="Dexcom", bundle_identifier="com.dexcom.g7")

# Fixed reference instant used across tests (noon UTC)
T0 = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def ms(moment: datetime) -> float:
    """Epoch milliseconds for *moment*."""
    return moment.timestamp() * 1000


def make_quantity(
    kind: SampleKind,
    value: float,
    unit: str,
    start: datetime = T0,
    *,
    end: datetime | None = None,
    source: SampleSource = OWN_SOURCE,
    metadata: dict[MetadataKey, int] | None = None,
) -> Sample:
    """Create a quantity sample with sensible defaults."""
    return Sample(
        kind=kind,
        start=start,
        end=end or start,
        value=Quantity(value, unit),
        metadata=metadata or {},
        source=source,
    )


def make_category(
    kind: SampleKind,
    value: int,
    start: datetime = T0,
    *,
    duration: timedelta = timedelta(hours=1),
    source: SampleSource = OWN_SOURCE,
) -> Sample:
    """Create a category sample spanning *duration*."""
    return Sample(kind=kind, start=start, end=start + duration, value=value, source=source)


class RecordingListener:
    """Background listener that counts notifications."""

    def __init__(self) -> None:
        self.calls = 0

    async def on_background_update(self) -> None:
        self.calls += 1


# ---------------------------------------------------------------------------
# Store / engine fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def store() -> InMemoryHealthStore:
    """Create an empty, available in-memory health store."""
    return InMemoryHealthStore()


@pytest.fixture
def engine(store: InMemoryHealthStore) -> HealthSyncEngine:
    """Create a sync engine identifying as OWN_BUNDLE, bucketing days in UTC."""
    return HealthSyncEngine(
        store,
        bundle_identifier=OWN_BUNDLE,
        app_name="GlucoLog",
        tz=timezone.utc,
    )


@pytest.fixture
def listener() -> RecordingListener:
    return RecordingListener()


# ---------------------------------------------------------------------------
# In-memory storage fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def health_db():
    """Create an in-memory HealthDatabase for testing."""
    from healthsync.core.storage.database import HealthDatabase

    db = HealthDatabase(":memory:")
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def audit_logger(health_db):
    """Create an AuditLogger backed by in-memory SQLite."""
    from healthsync.core.audit.logger import AuditLogger

    return AuditLogger(health_db)
