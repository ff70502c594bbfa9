"""Health store abstraction — the external per-device health record store.

The sync engine never talks to a platform SDK directly. It calls these
methods without knowing whether records live in HealthKit, Health Connect,
or the in-memory store used by tests and local development.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional, Protocol, runtime_checkable
from uuid import uuid4

from healthsync.domains.health.sync.codec import Sample, SampleKind, Statistics


class HealthStoreError(Exception):
    """Raised by store adapters when the underlying store reports failure.

    The message is the store's own description and is surfaced verbatim.
    """


# Invoked once per change notification. The handler must call the
# completion callback when it is done so the store can reclaim the delivery.
ObserverHandler = Callable[[Optional[Exception], Callable[[], None]], Awaitable[None]]


@dataclass(eq=False)
class ObserverQuery:
    """Handle for a long-lived passive subscription on one kind."""

    kind: SampleKind
    handler: ObserverHandler
    id: str = field(default_factory=lambda: uuid4().hex)
    active: bool = True


@runtime_checkable
class HealthStore(Protocol):
    """Async interface to the external health record store."""

    def is_available(self) -> bool:
        """Whether the platform has a health store at all."""
        ...

    async def request_authorization(
        self,
        share: frozenset[SampleKind],
        read: frozenset[SampleKind],
    ) -> bool:
        """Request one combined grant for the given write and read kinds."""
        ...

    async def query_samples(
        self,
        kind: SampleKind,
        start: datetime,
        end: datetime,
        *,
        newest_first: bool | None = True,
    ) -> list[Sample]:
        """Samples of *kind* with ``start <= sample.start < end``.

        ``newest_first=None`` leaves the order to the store.
        """
        ...

    async def save(self, sample: Sample) -> None:
        """Persist one sample. Raises HealthStoreError on rejection."""
        ...

    async def delete(self, samples: list[Sample]) -> bool:
        """Delete the given samples (objects previously returned by a query)."""
        ...

    async def statistics_collection(
        self,
        kind: SampleKind,
        start: datetime,
        end: datetime,
        *,
        anchor: datetime,
        interval: timedelta,
    ) -> list[Statistics]:
        """Cumulative sums of *kind* per interval, intervals aligned to *anchor*."""
        ...

    def start_observer(self, kind: SampleKind, handler: ObserverHandler) -> ObserverQuery:
        """Install a passive subscription that fires on every change of *kind*."""
        ...

    def stop_query(self, query: ObserverQuery) -> None:
        """Tear down a subscription. No further deliveries after this returns."""
        ...

    async def enable_background_delivery(self, kind: SampleKind) -> bool:
        """Ask the platform to wake the process for changes of *kind*."""
        ...
