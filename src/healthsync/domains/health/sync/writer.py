"""Write encoder — builds one glucose or insulin sample and saves it.

Insulin samples always carry a delivery-reason tag (the store rejects them
otherwise); glucose samples carry a meal-time tag only for the two
recognized values.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Any

from healthsync.domains.health.store import HealthStore, HealthStoreError
from healthsync.domains.health.sync.codec import (
    WRITABLE_KINDS,
    MetadataKey,
    Sample,
    SampleKind,
    SampleSource,
    encode_delivery_reason,
    encode_meal_time,
    parse_kind,
)
from healthsync.domains.health.sync.errors import (
    InvalidArgumentError,
    InvalidTypeError,
    UnavailableError,
    WriteFailedError,
)
from healthsync.domains.health.sync.units import Quantity

logger = logging.getLogger(__name__)

WRITE_UNITS: dict[SampleKind, str] = {
    SampleKind.GLUCOSE: "mg/dL",
    SampleKind.INSULIN: "IU",
}

# Probe samples are dated far in the past so they never show up in charts.
PROBE_DATE = datetime(2000, 1, 1, tzinfo=timezone.utc)
PROBE_VALUES: dict[SampleKind, float] = {
    SampleKind.GLUCOSE: 1.0,
    SampleKind.INSULIN: 0.1,
}


def writable_kind(raw: Any) -> SampleKind:
    """Parse *raw* and check it is a kind this engine may write or delete."""
    kind = parse_kind(raw)
    if kind not in WRITABLE_KINDS:
        raise InvalidTypeError(f"Unsupported type for write: {kind.value}")
    return kind


class WriteEncoder:
    """Encodes caller arguments into a single sample and submits it."""

    def __init__(self, store: HealthStore, source: SampleSource | None = None) -> None:
        self._store = store
        self._source = source or SampleSource()

    def build_sample(
        self,
        kind: SampleKind,
        value: float,
        start: datetime,
        *,
        meal_time: Any = None,
        reason: Any = None,
    ) -> Sample:
        """Build the outbound sample with kind-specific metadata."""
        metadata: dict[MetadataKey, int] = {}
        if kind == SampleKind.GLUCOSE:
            tag = encode_meal_time(meal_time)
            if tag is not None:
                metadata[MetadataKey.MEAL_TIME] = int(tag)
        elif kind == SampleKind.INSULIN:
            metadata[MetadataKey.INSULIN_DELIVERY_REASON] = int(encode_delivery_reason(reason))
        return Sample(
            kind=kind,
            start=start,
            end=start,
            value=Quantity(float(value), WRITE_UNITS[kind]),
            metadata=metadata,
            source=self._source,
        )

    async def write(
        self,
        kind: SampleKind | str | None,
        value: Any,
        start: datetime | None,
        *,
        meal_time: Any = None,
        reason: Any = None,
    ) -> bool:
        """Save one sample at *start* (start == end).

        Raises:
            UnavailableError: No health store on this platform.
            InvalidArgumentError: Missing or non-numeric value, missing start.
            InvalidTypeError: Kind is not glucose or insulin.
            WriteFailedError: The store rejected the sample.
        """
        if not self._store.is_available():
            raise UnavailableError("Health store not available")
        resolved = writable_kind(kind)
        if value is None or isinstance(value, bool) or not isinstance(value, (int, float)):
            raise InvalidArgumentError("Missing required argument: value")
        try:
            finite = math.isfinite(value)
        except OverflowError:
            finite = False
        if not finite:
            raise InvalidArgumentError("value must be a finite number")
        if start is None:
            raise InvalidArgumentError("Missing required argument: startTime")

        sample = self.build_sample(resolved, value, start, meal_time=meal_time, reason=reason)
        try:
            await self._store.save(sample)
        except HealthStoreError as exc:
            logger.warning("Saving %s sample failed: %s", resolved.value, exc)
            raise WriteFailedError(str(exc) or "Failed to save") from exc
        logger.info("Saved %s sample at %s", resolved.value, start.isoformat())
        return True

    async def probe_write_permission(self, kind: SampleKind | str) -> bool:
        """Check write access by saving and immediately deleting a test sample.

        Returns False rather than raising when the store is unavailable or
        refuses the save.
        """
        resolved = writable_kind(kind)
        if not self._store.is_available():
            return False
        sample = self.build_sample(resolved, PROBE_VALUES[resolved], PROBE_DATE)
        try:
            await self._store.save(sample)
        except HealthStoreError as exc:
            logger.info("Write permission probe for %s refused: %s", resolved.value, exc)
            return False
        try:
            await self._store.delete([sample])
        except HealthStoreError:
            logger.exception("Failed to remove %s write-permission probe sample", resolved.value)
        return True
