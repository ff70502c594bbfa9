"""Typed read dispatcher.

Routes a ``(kind, start, end)`` request to the query shape the kind needs and
normalizes the results into wire records:

- quantity kinds → value converted to the kind's fixed unit, plus decoded
  meal-time / delivery-reason metadata
- workouts      → activity type, duration, energy (kcal) and distance (m)
- category kinds → raw category value; sleep is narrowed to "in bed"

Results are ordered by start time, newest first.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from healthsync.domains.health.store import HealthStore, HealthStoreError
from healthsync.domains.health.sync.codec import (
    READ_UNITS,
    Sample,
    SampleKind,
    SleepValue,
    WorkoutSample,
    encode_category_sample,
    encode_quantity_sample,
    encode_workout,
    parse_kind,
)
from healthsync.domains.health.sync.errors import (
    InvalidArgumentError,
    QueryError,
    UnavailableError,
)

logger = logging.getLogger(__name__)


class TypedReadDispatcher:
    """Reads samples of one kind over a time window."""

    def __init__(self, store: HealthStore) -> None:
        self._store = store

    async def read(
        self,
        kind: SampleKind | str | None,
        start: datetime | None,
        end: datetime | None,
    ) -> list[dict[str, Any]]:
        """Return wire records for *kind* with start in ``[start, end)``.

        Raises:
            UnavailableError: No health store on this platform.
            InvalidArgumentError: Missing kind/start/end, or start after end.
            InvalidTypeError: Unknown kind string.
            QueryError: The store failed the query.
        """
        if not self._store.is_available():
            raise UnavailableError("Health store not available")
        resolved = parse_kind(kind)
        if start is None or end is None:
            raise InvalidArgumentError("Missing required arguments: startTime, endTime")
        if start > end:
            raise InvalidArgumentError("startTime must not be after endTime")

        samples = await self.query(resolved, start, end)

        if resolved.is_quantity:
            unit = READ_UNITS[resolved]
            return [encode_quantity_sample(s, unit) for s in samples]
        if resolved == SampleKind.WORKOUT:
            return [encode_workout(s) for s in samples if isinstance(s, WorkoutSample)]
        if resolved == SampleKind.SLEEP:
            # In-bed spans the whole session; finer stages overlap it.
            samples = [s for s in samples if s.value == SleepValue.IN_BED]
        return [encode_category_sample(s) for s in samples]

    async def query(
        self,
        kind: SampleKind,
        start: datetime,
        end: datetime,
        *,
        newest_first: bool | None = True,
    ) -> list[Sample]:
        """Raw window query, translating store failures into ``QueryError``."""
        try:
            return await self._store.query_samples(
                kind, start, end, newest_first=newest_first
            )
        except HealthStoreError as exc:
            logger.warning("Query for %s failed: %s", kind.value, exc)
            raise QueryError(str(exc)) from exc
