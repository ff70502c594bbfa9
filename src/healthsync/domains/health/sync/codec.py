"""Record codec — the generic sample model and its wire encoding.

Samples cross the host boundary as plain dicts with millisecond timestamps.
Inside the engine they are ``Sample`` / ``WorkoutSample`` dataclasses with
timezone-aware datetimes and unit-tagged quantities.

Wire keys (kept stable for existing callers):
- quantity records: value, startTime, endTime, unit, dataSource,
  mealTime (glucose, optional), reason (insulin, optional)
- workout records:  startTime, endTime, workoutActivityType, duration,
  totalEnergyBurned (kcal), totalDistance (m), dataSource
- category records: startTime, endTime, value, dataSource
- daily buckets:    date, steps, distanceKm
"""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum, IntEnum
from typing import Any

from healthsync.domains.health.sync.errors import (
    InvalidArgumentError,
    InvalidTypeError,
)
from healthsync.domains.health.sync.units import Quantity


# ---------------------------------------------------------------------------
# Kinds
# ---------------------------------------------------------------------------

class SampleKind(str, Enum):
    """Enumerated category of a health sample."""

    GLUCOSE = "glucose"
    INSULIN = "insulin"
    STEPS = "steps"
    DISTANCE = "distance"
    WEIGHT = "weight"
    WATER = "water"
    SLEEP = "sleep"
    MENSTRUAL_FLOW = "menstrual_flow"
    MINDFULNESS = "mindfulness"
    WORKOUT = "workout"

    @property
    def is_quantity(self) -> bool:
        return self in QUANTITY_KINDS

    @property
    def is_category(self) -> bool:
        return self in CATEGORY_KINDS


QUANTITY_KINDS = frozenset({
    SampleKind.GLUCOSE,
    SampleKind.INSULIN,
    SampleKind.STEPS,
    SampleKind.DISTANCE,
    SampleKind.WEIGHT,
    SampleKind.WATER,
})

CATEGORY_KINDS = frozenset({
    SampleKind.SLEEP,
    SampleKind.MENSTRUAL_FLOW,
    SampleKind.MINDFULNESS,
})

WRITABLE_KINDS = frozenset({SampleKind.GLUCOSE, SampleKind.INSULIN})

# Wire names used by the mobile bridge, plus a few spellings seen in the wild.
_KIND_ALIASES: dict[str, SampleKind] = {
    "blood_glucose": SampleKind.GLUCOSE,
    "insulin_delivery": SampleKind.INSULIN,
    "step_count": SampleKind.STEPS,
    "distance_walking_running": SampleKind.DISTANCE,
    "body_mass": SampleKind.WEIGHT,
    "dietary_water": SampleKind.WATER,
    "sleep_analysis": SampleKind.SLEEP,
    "sleep_state": SampleKind.SLEEP,
    "menstruation": SampleKind.MENSTRUAL_FLOW,
    "mindful_session": SampleKind.MINDFULNESS,
}

# Unit every quantity kind is converted to when read.
READ_UNITS: dict[SampleKind, str] = {
    SampleKind.GLUCOSE: "mg/dL",
    SampleKind.INSULIN: "IU",
    SampleKind.STEPS: "count",
    SampleKind.DISTANCE: "km",
    SampleKind.WEIGHT: "kg",
    SampleKind.WATER: "mL",
}


def parse_kind(raw: Any) -> SampleKind:
    """Resolve a caller-supplied kind string to a ``SampleKind``.

    Matching is case-insensitive and treats ``-`` and spaces like ``_``, so
    ``"BLOOD_GLUCOSE"``, ``"glucose"`` and ``"menstrual-flow"`` all resolve.

    Raises:
        InvalidArgumentError: If *raw* is missing or not a string.
        InvalidTypeError: If *raw* names no known kind.
    """
    if isinstance(raw, SampleKind):
        return raw
    if raw is None or not isinstance(raw, str) or not raw.strip():
        raise InvalidArgumentError("Missing required argument: type")
    key = raw.strip().lower().replace("-", "_").replace(" ", "_")
    if key in _KIND_ALIASES:
        return _KIND_ALIASES[key]
    try:
        return SampleKind(key)
    except ValueError:
        raise InvalidTypeError(f"Unsupported type: {raw}") from None


# ---------------------------------------------------------------------------
# Metadata
# ---------------------------------------------------------------------------

class MetadataKey(str, Enum):
    MEAL_TIME = "HKBloodGlucoseMealTime"
    INSULIN_DELIVERY_REASON = "HKInsulinDeliveryReason"


class MealTime(IntEnum):
    PREPRANDIAL = 1
    POSTPRANDIAL = 2


class InsulinDeliveryReason(IntEnum):
    BASAL = 1
    BOLUS = 2


class SleepValue(IntEnum):
    IN_BED = 0
    ASLEEP = 1
    AWAKE = 2
    CORE = 3
    DEEP = 4
    REM = 5


def encode_meal_time(raw: Any) -> MealTime | None:
    """Map a caller meal-time string to a tag; anything unrecognized is None."""
    if raw == "preprandial":
        return MealTime.PREPRANDIAL
    if raw == "postprandial":
        return MealTime.POSTPRANDIAL
    return None


def encode_delivery_reason(raw: Any) -> InsulinDeliveryReason:
    """Map a caller reason string to a tag. Defaults to bolus."""
    if raw == "basal":
        return InsulinDeliveryReason.BASAL
    return InsulinDeliveryReason.BOLUS


def decode_meal_time(metadata: dict[MetadataKey, int]) -> str | None:
    value = metadata.get(MetadataKey.MEAL_TIME)
    if value == MealTime.PREPRANDIAL:
        return "preprandial"
    if value == MealTime.POSTPRANDIAL:
        return "postprandial"
    return None


def decode_delivery_reason(metadata: dict[MetadataKey, int]) -> str | None:
    value = metadata.get(MetadataKey.INSULIN_DELIVERY_REASON)
    if value == InsulinDeliveryReason.BASAL:
        return "basal"
    if value == InsulinDeliveryReason.BOLUS:
        return "bolus"
    return None


# ---------------------------------------------------------------------------
# Samples
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SampleSource:
    """The app or device that produced a sample."""

    name: str = ""
    bundle_identifier: str = ""

    @property
    def display_name(self) -> str:
        """Device-declared name, then bundle identifier, then "Unknown"."""
        if self.name:
            return self.name
        if self.bundle_identifier:
            return self.bundle_identifier
        return "Unknown"


@dataclass
class Sample:
    """One timestamped health measurement or event.

    ``value`` is a ``Quantity`` for quantity kinds and an int category value
    for categorical kinds. ``uuid`` is the store's handle on this exact
    object; it is never exposed to callers.
    """

    kind: SampleKind
    start: datetime
    end: datetime
    value: Quantity | int | None = None
    metadata: dict[MetadataKey, int] = field(default_factory=dict)
    source: SampleSource = field(default_factory=SampleSource)
    uuid: str = field(default_factory=lambda: str(uuid.uuid4()), compare=False)

    def __post_init__(self) -> None:
        if self.end < self.start:
            raise ValueError("Sample end must not precede start")


@dataclass
class WorkoutSample(Sample):
    """Workout session with its activity summary."""

    activity_type: int = 0
    duration: float = 0.0                       # seconds
    total_energy_burned: Quantity | None = None
    total_distance: Quantity | None = None


@dataclass(frozen=True)
class Statistics:
    """Cumulative sum for one statistics interval. ``sum`` is None when empty."""

    start: datetime
    end: datetime
    sum: Quantity | None = None


@dataclass
class DailyBucket:
    """Per-calendar-day activity totals."""

    day: date
    steps: int = 0
    distance_km: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.day.isoformat(),
            "steps": self.steps,
            "distanceKm": self.distance_km,
        }


# ---------------------------------------------------------------------------
# Time conversion
# ---------------------------------------------------------------------------

def from_epoch_ms(ms: Any, name: str = "startTime") -> datetime:
    """Convert epoch milliseconds to a UTC datetime.

    Raises:
        InvalidArgumentError: If *ms* is missing, not numeric, not finite, or
            outside the range the platform can represent.
    """
    if ms is None or isinstance(ms, bool) or not isinstance(ms, (int, float)):
        raise InvalidArgumentError(f"Missing required argument: {name}")
    try:
        if not math.isfinite(ms):
            raise InvalidArgumentError(f"{name} must be a finite number")
        return datetime.fromtimestamp(ms / 1000.0, tz=timezone.utc)
    except (OverflowError, OSError, ValueError) as exc:
        raise InvalidArgumentError(f"{name} is out of range: {ms}") from exc


def to_epoch_ms(moment: datetime) -> float:
    return moment.timestamp() * 1000


# ---------------------------------------------------------------------------
# Encoders
# ---------------------------------------------------------------------------

def encode_quantity_sample(sample: Sample, unit: str) -> dict[str, Any]:
    """Encode a quantity sample, converting its value to *unit*."""
    if not isinstance(sample.value, Quantity):
        raise TypeError(f"{sample.kind.value} sample has no quantity value")
    record: dict[str, Any] = {
        "value": sample.value.value_in(unit),
        "startTime": to_epoch_ms(sample.start),
        "endTime": to_epoch_ms(sample.end),
        "unit": unit,
        "dataSource": sample.source.display_name,
    }
    meal_time = decode_meal_time(sample.metadata)
    if meal_time is not None:
        record["mealTime"] = meal_time
    reason = decode_delivery_reason(sample.metadata)
    if reason is not None:
        record["reason"] = reason
    return record


def encode_workout(workout: WorkoutSample) -> dict[str, Any]:
    energy = workout.total_energy_burned
    distance = workout.total_distance
    return {
        "startTime": to_epoch_ms(workout.start),
        "endTime": to_epoch_ms(workout.end),
        "workoutActivityType": workout.activity_type,
        "duration": workout.duration,
        "totalEnergyBurned": energy.value_in("kcal") if energy is not None else 0,
        "totalDistance": distance.value_in("m") if distance is not None else 0,
        "dataSource": workout.source.display_name,
    }


def encode_category_sample(sample: Sample) -> dict[str, Any]:
    return {
        "startTime": to_epoch_ms(sample.start),
        "endTime": to_epoch_ms(sample.end),
        "value": sample.value,
        "dataSource": sample.source.display_name,
    }
