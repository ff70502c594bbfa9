"""In-memory HealthStore — reference implementation for tests and local runs.

Mirrors the behaviour of the platform store that matters to the engine:
strict-start-date window queries, insulin samples rejected without a
delivery reason, calendar-anchored statistics collections, and observer
queries that fire on every change of their kind and wait for the handler
to acknowledge completion.

Failures can be injected per operation with ``fail_next`` so callers can
exercise their error paths without a real device.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Iterable

from healthsync.domains.health.store import (
    HealthStoreError,
    ObserverHandler,
    ObserverQuery,
)
from healthsync.domains.health.sync.codec import (
    MetadataKey,
    Sample,
    SampleKind,
    Statistics,
)
from healthsync.domains.health.sync.units import Quantity, is_compatible

logger = logging.getLogger(__name__)


class InMemoryHealthStore:
    """HealthStore backed by a Python list.

    Usage::

        store = InMemoryHealthStore()
        store.add(Sample(SampleKind.STEPS, start, end, Quantity(500, "count")))
        samples = await store.query_samples(SampleKind.STEPS, day_start, day_end)
    """

    def __init__(
        self,
        *,
        available: bool = True,
        grant_authorization: bool = True,
        require_authorization: bool = False,
    ) -> None:
        self._available = available
        self._grant = grant_authorization
        self._require_authorization = require_authorization
        self._samples: list[Sample] = []
        self._observers: list[ObserverQuery] = []
        self._failures: dict[tuple[str, SampleKind | None], str] = {}
        self._deliveries: set[asyncio.Task] = set()
        self._in_flight_statistics = 0

        self.authorized_share: set[SampleKind] = set()
        self.authorized_read: set[SampleKind] = set()
        self.authorization_requests = 0
        self.background_delivery: set[SampleKind] = set()
        self.max_concurrent_statistics = 0
        self.deliveries_started = 0
        self.deliveries_acknowledged = 0

    # ------------------------------------------------------------------
    # Test helpers
    # ------------------------------------------------------------------

    def add(self, *samples: Sample) -> None:
        """Seed samples directly, without firing observers."""
        self._samples.extend(samples)

    @property
    def samples(self) -> list[Sample]:
        return list(self._samples)

    def fail_next(
        self,
        operation: str,
        message: str,
        *,
        kind: SampleKind | None = None,
    ) -> None:
        """Make the next *operation* call (optionally for one kind) fail.

        Operations: authorize, query, save, delete, statistics,
        background_delivery.
        """
        self._failures[(operation, kind)] = message

    def observers(self, kind: SampleKind | None = None) -> list[ObserverQuery]:
        """Live observer queries, optionally filtered by kind."""
        return [q for q in self._observers if kind is None or q.kind == kind]

    async def notify_changed(self, kind: SampleKind) -> None:
        """Simulate a change made by another app or synced from the cloud."""
        self._dispatch(kind)
        await self.wait_for_deliveries()

    async def wait_for_deliveries(self) -> None:
        """Wait until every in-flight observer delivery has finished."""
        while self._deliveries:
            await asyncio.gather(*list(self._deliveries))

    @property
    def pending_acknowledgements(self) -> int:
        return self.deliveries_started - self.deliveries_acknowledged

    # ------------------------------------------------------------------
    # HealthStore protocol
    # ------------------------------------------------------------------

    def is_available(self) -> bool:
        return self._available

    async def request_authorization(
        self,
        share: frozenset[SampleKind],
        read: frozenset[SampleKind],
    ) -> bool:
        await asyncio.sleep(0)
        self._maybe_fail("authorize")
        self.authorization_requests += 1
        if self._grant:
            self.authorized_share |= set(share)
            self.authorized_read |= set(read)
        return True

    async def query_samples(
        self,
        kind: SampleKind,
        start: datetime,
        end: datetime,
        *,
        newest_first: bool | None = True,
    ) -> list[Sample]:
        await asyncio.sleep(0)
        self._maybe_fail("query", kind)
        matches = [
            s for s in self._samples
            if s.kind == kind and start <= s.start < end
        ]
        if newest_first is not None:
            matches.sort(key=lambda s: s.start, reverse=newest_first)
        return matches

    async def save(self, sample: Sample) -> None:
        await asyncio.sleep(0)
        self._maybe_fail("save", sample.kind)
        if self._require_authorization and sample.kind not in self.authorized_share:
            raise HealthStoreError(
                f"Not authorized to share {sample.kind.value} samples"
            )
        if (
            sample.kind == SampleKind.INSULIN
            and MetadataKey.INSULIN_DELIVERY_REASON not in sample.metadata
        ):
            raise HealthStoreError(
                "Insulin delivery samples require the "
                f"{MetadataKey.INSULIN_DELIVERY_REASON.value} metadata key"
            )
        self._samples.append(sample)
        self._dispatch(sample.kind)

    async def delete(self, samples: list[Sample]) -> bool:
        await asyncio.sleep(0)
        kinds = {s.kind for s in samples}
        for kind in kinds:
            self._maybe_fail("delete", kind)
        doomed = {s.uuid for s in samples}
        before = len(self._samples)
        self._samples = [s for s in self._samples if s.uuid not in doomed]
        if len(self._samples) == before:
            return False
        for kind in kinds:
            self._dispatch(kind)
        return True

    async def statistics_collection(
        self,
        kind: SampleKind,
        start: datetime,
        end: datetime,
        *,
        anchor: datetime,
        interval: timedelta,
    ) -> list[Statistics]:
        self._in_flight_statistics += 1
        self.max_concurrent_statistics = max(
            self.max_concurrent_statistics, self._in_flight_statistics
        )
        try:
            # Yield twice so concurrently issued collections overlap.
            await asyncio.sleep(0)
            await asyncio.sleep(0)
            self._maybe_fail("statistics", kind)
            matches = [
                s for s in self._samples
                if s.kind == kind and start <= s.start < end
            ]
            return list(_bucket(matches, anchor, interval, end))
        finally:
            self._in_flight_statistics -= 1

    def start_observer(self, kind: SampleKind, handler: ObserverHandler) -> ObserverQuery:
        query = ObserverQuery(kind=kind, handler=handler)
        self._observers.append(query)
        logger.debug("Observer %s installed for %s", query.id, kind.value)
        return query

    def stop_query(self, query: ObserverQuery) -> None:
        query.active = False
        if query in self._observers:
            self._observers.remove(query)
            logger.debug("Observer %s stopped", query.id)

    async def enable_background_delivery(self, kind: SampleKind) -> bool:
        await asyncio.sleep(0)
        self._maybe_fail("background_delivery", kind)
        self.background_delivery.add(kind)
        return True

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _maybe_fail(self, operation: str, kind: SampleKind | None = None) -> None:
        for key in ((operation, kind), (operation, None)):
            if key in self._failures:
                raise HealthStoreError(self._failures.pop(key))

    def _dispatch(self, kind: SampleKind) -> None:
        """Schedule one delivery per live observer of *kind*."""
        for query in self.observers(kind):
            task = asyncio.get_running_loop().create_task(self._deliver(query))
            self._deliveries.add(task)
            task.add_done_callback(self._deliveries.discard)

    async def _deliver(self, query: ObserverQuery) -> None:
        if not query.active:
            return
        self.deliveries_started += 1
        acknowledged = False

        def complete() -> None:
            nonlocal acknowledged
            if not acknowledged:
                acknowledged = True
                self.deliveries_acknowledged += 1

        await query.handler(None, complete)


def _next_boundary(bucket_start: datetime, interval: timedelta) -> datetime:
    """Start of the interval after *bucket_start*.

    Whole-day intervals step by calendar date at local midnight, so a day
    containing a DST change is 23 or 25 hours long.
    """
    if interval.days and not interval.seconds and not interval.microseconds:
        next_day = bucket_start.date() + timedelta(days=interval.days)
        return datetime.combine(next_day, bucket_start.timetz())
    return bucket_start + interval


def _bucket(
    samples: Iterable[Sample],
    anchor: datetime,
    interval: timedelta,
    end: datetime,
) -> Iterable[Statistics]:
    """Sum quantity samples into consecutive intervals starting at *anchor*.

    Every interval up to *end* is emitted; intervals without samples carry
    ``sum=None``. Samples are attributed to the interval containing their
    start. A sample whose unit cannot be added to the running sum is skipped.
    """
    ordered = sorted(samples, key=lambda s: s.start)
    bucket_start = anchor
    index = 0
    while bucket_start < end:
        bucket_end = _next_boundary(bucket_start, interval)
        total: Quantity | None = None
        while index < len(ordered) and ordered[index].start < bucket_end:
            sample = ordered[index]
            index += 1
            if sample.start < bucket_start or not isinstance(sample.value, Quantity):
                continue
            if total is None:
                total = sample.value
            elif is_compatible(total.unit, sample.value.unit):
                total = total + sample.value
            else:
                logger.warning(
                    "Skipping %s sample in %s; cannot add to %s",
                    sample.kind.value,
                    sample.value.unit,
                    total.unit,
                )
        yield Statistics(start=bucket_start, end=bucket_end, sum=total)
        bucket_start = bucket_end
