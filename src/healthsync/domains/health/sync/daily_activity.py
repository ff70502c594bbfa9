"""Daily aggregation engine — per-day step and distance totals.

Two cumulative-sum statistics collections (steps, distance) run
concurrently over the same interval, each pre-bucketed by the store into
calendar days anchored at local midnight of the start date. Both must reach
a terminal state before the merge: ``asyncio.gather`` is the join.

A failed collection is logged and contributes nothing, so an activity
dashboard still gets the other metric. Days seen in either series always
appear in the output.

Calendar arithmetic needs a real IANA zone. A bare ``astimezone()`` offset
is fixed, so after a DST change its "midnight" lands an hour off and two
intervals map to the same local date. When no zone is configured the host's
zone is looked up by name instead.
"""

from __future__ import annotations

import asyncio
import logging
import os
from datetime import date, datetime, timedelta, tzinfo
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from healthsync.domains.health.store import HealthStore, HealthStoreError
from healthsync.domains.health.sync.codec import DailyBucket, SampleKind
from healthsync.domains.health.sync.errors import InvalidArgumentError, UnavailableError
from healthsync.domains.health.sync.units import UnitConversionError

logger = logging.getLogger(__name__)

ONE_DAY = timedelta(days=1)

_LOCALTIME = Path("/etc/localtime")


def system_timezone() -> tzinfo:
    """The host's IANA zone, from ``TZ`` or the ``/etc/localtime`` link.

    Falls back to the current fixed UTC offset when neither names a zone.
    """
    keys: list[str] = []
    env_tz = os.environ.get("TZ", "").lstrip(":")
    if env_tz:
        keys.append(env_tz)
    try:
        target = str(_LOCALTIME.resolve())
    except OSError:
        target = ""
    if "zoneinfo/" in target:
        keys.append(target.split("zoneinfo/", 1)[1])

    for key in keys:
        try:
            return ZoneInfo(key)
        except (ZoneInfoNotFoundError, ValueError):
            continue
    fallback = datetime.now().astimezone().tzinfo
    logger.warning("No IANA zone found for this host; using fixed offset %s", fallback)
    return fallback


def local_start_of_day(moment: datetime, tz: tzinfo | None) -> datetime:
    """Midnight of *moment*'s calendar day in *tz* (the host's zone when None)."""
    zone = tz if tz is not None else system_timezone()
    local = moment.astimezone(zone)
    return datetime.combine(local.date(), datetime.min.time(), zone)


def merge_daily_series(
    steps: dict[date, int],
    distance_km: dict[date, float],
) -> list[DailyBucket]:
    """Union of both series' days, missing metrics defaulting to zero."""
    days = sorted(set(steps) | set(distance_km))
    return [
        DailyBucket(day=d, steps=steps.get(d, 0), distance_km=distance_km.get(d, 0.0))
        for d in days
    ]


class DailyActivityAggregator:
    """Joins step and distance statistics into one bucket per calendar day."""

    def __init__(self, store: HealthStore, tz: tzinfo | None = None) -> None:
        self._store = store
        self._tz = tz if tz is not None else system_timezone()

    async def fetch_daily_activity(
        self,
        start: datetime | None,
        end: datetime | None,
    ) -> list[DailyBucket]:
        """Return one bucket per calendar day with data in ``[start, end)``.

        Raises:
            UnavailableError: No health store on this platform.
            InvalidArgumentError: Missing start/end, or start after end.
        """
        if not self._store.is_available():
            raise UnavailableError("Health store not available")
        if start is None or end is None:
            raise InvalidArgumentError("Missing required arguments: startTime, endTime")
        if start > end:
            raise InvalidArgumentError("startTime must not be after endTime")

        anchor = local_start_of_day(start, self._tz)
        steps, distance = await asyncio.gather(
            self._daily_sums(SampleKind.STEPS, "count", start, end, anchor),
            self._daily_sums(SampleKind.DISTANCE, "km", start, end, anchor),
        )

        buckets = merge_daily_series(
            {day: int(total) for day, total in steps.items()},
            distance,
        )
        logger.debug(
            "Daily activity: %d step days, %d distance days, %d buckets",
            len(steps),
            len(distance),
            len(buckets),
        )
        return buckets

    async def _daily_sums(
        self,
        kind: SampleKind,
        unit: str,
        start: datetime,
        end: datetime,
        anchor: datetime,
    ) -> dict[date, float]:
        """Per-day sums for one kind; empty on failure."""
        try:
            collection = await self._store.statistics_collection(
                kind, start, end, anchor=anchor, interval=ONE_DAY
            )
            sums: dict[date, float] = {}
            for stats in collection:
                if stats.sum is None:
                    continue
                day = stats.start.astimezone(self._tz).date()
                sums[day] = sums.get(day, 0.0) + stats.sum.to(unit).value
            return sums
        except HealthStoreError as exc:
            logger.error("Error fetching %s statistics: %s", kind.value, exc)
        except UnitConversionError:
            logger.exception("Unusable %s statistics", kind.value)
        return {}
