"""Health sync engine — the verb surface exposed to the host.

All instants cross this boundary as epoch milliseconds and are converted to
UTC datetimes before any component sees them. Each verb is a coroutine that
completes once with a value or raises one ``HealthSyncError``; argument
problems are raised before the first store call.
"""

from __future__ import annotations

import logging
from datetime import timedelta, tzinfo
from typing import Any, Iterable

from healthsync.domains.health.store import HealthStore
from healthsync.domains.health.sync.authorization import AuthorizationManager
from healthsync.domains.health.sync.codec import SampleKind, SampleSource, from_epoch_ms
from healthsync.domains.health.sync.daily_activity import DailyActivityAggregator
from healthsync.domains.health.sync.deleter import DEFAULT_TOLERANCE, DeleteResolver
from healthsync.domains.health.sync.errors import UnavailableError
from healthsync.domains.health.sync.observer import (
    DEFAULT_OBSERVED_KINDS,
    BackgroundObserver,
    BackgroundUpdateListener,
)
from healthsync.domains.health.sync.reader import TypedReadDispatcher
from healthsync.domains.health.sync.writer import WriteEncoder

logger = logging.getLogger(__name__)


class HealthSyncEngine:
    """Facade wiring every sync component to one store.

    Usage::

        engine = HealthSyncEngine(store, bundle_identifier="com.example.app")
        await engine.request_authorization()
        records = await engine.read("BLOOD_GLUCOSE", start_ms, end_ms)
    """

    def __init__(
        self,
        store: HealthStore,
        *,
        bundle_identifier: str,
        app_name: str = "",
        tz: tzinfo | None = None,
        delete_tolerance: timedelta = DEFAULT_TOLERANCE,
        observed_kinds: Iterable[SampleKind] = DEFAULT_OBSERVED_KINDS,
        listener: BackgroundUpdateListener | None = None,
    ) -> None:
        self._store = store
        self._bundle_identifier = bundle_identifier
        self._authorization = AuthorizationManager(store)
        self._reader = TypedReadDispatcher(store)
        self._writer = WriteEncoder(
            store, SampleSource(name=app_name, bundle_identifier=bundle_identifier)
        )
        self._deleter = DeleteResolver(
            store, self._reader, bundle_identifier, tolerance=delete_tolerance
        )
        self._daily = DailyActivityAggregator(store, tz)
        self._observer = BackgroundObserver(store, observed_kinds, listener)

    @property
    def store(self) -> HealthStore:
        return self._store

    @property
    def observer(self) -> BackgroundObserver:
        return self._observer

    def is_available(self) -> bool:
        return self._store.is_available()

    def set_listener(self, listener: BackgroundUpdateListener | None) -> None:
        self._observer.set_listener(listener)

    # ------------------------------------------------------------------
    # Verbs
    # ------------------------------------------------------------------

    async def request_authorization(self) -> bool:
        return await self._authorization.request_authorization()

    async def read(self, kind: Any, start_ms: Any, end_ms: Any) -> list[dict[str, Any]]:
        """Read samples of *kind* starting in ``[start_ms, end_ms)``, newest first."""
        self._require_store()
        start = from_epoch_ms(start_ms, "startTime")
        end = from_epoch_ms(end_ms, "endTime")
        return await self._reader.read(kind, start, end)

    async def write(
        self,
        kind: Any,
        value: Any,
        start_ms: Any,
        meal_time: Any = None,
        reason: Any = None,
    ) -> bool:
        """Write one glucose or insulin sample at *start_ms*."""
        self._require_store()
        start = from_epoch_ms(start_ms, "startTime")
        return await self._writer.write(
            kind, value, start, meal_time=meal_time, reason=reason
        )

    async def delete(self, kind: Any, timestamp_ms: Any) -> bool:
        """Delete the glucose or insulin sample(s) recorded at *timestamp_ms*."""
        await self.delete_matching(kind, timestamp_ms)
        return True

    async def delete_matching(self, kind: Any, timestamp_ms: Any) -> int:
        """Like ``delete`` but returns how many samples were removed."""
        self._require_store()
        timestamp = from_epoch_ms(timestamp_ms, "timestamp")
        return await self._deleter.delete(kind, timestamp)

    async def fetch_daily_activity(self, start_ms: Any, end_ms: Any) -> list[dict[str, Any]]:
        """Per-day step and distance totals for ``[start_ms, end_ms)``."""
        self._require_store()
        start = from_epoch_ms(start_ms, "startTime")
        end = from_epoch_ms(end_ms, "endTime")
        buckets = await self._daily.fetch_daily_activity(start, end)
        return [b.to_dict() for b in buckets]

    async def start_observing(self) -> bool:
        return await self._observer.start()

    async def stop_observing(self) -> bool:
        return await self._observer.stop()

    async def test_write_permission(self, kind: Any) -> bool:
        """True if a throw-away sample of *kind* can be saved right now."""
        return await self._writer.probe_write_permission(kind)

    def _require_store(self) -> None:
        if not self._store.is_available():
            raise UnavailableError("Health store not available")
