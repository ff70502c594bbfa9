"""Tests for the record codec: kinds, metadata tags, time conversion, encoders."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from conftest import FOREIGN_SOURCE, T0, make_category, make_quantity, ms
from healthsync.domains.health.sync.codec import (
    DailyBucket,
    InsulinDeliveryReason,
    MealTime,
    MetadataKey,
    Sample,
    SampleKind,
    SampleSource,
    WorkoutSample,
    encode_category_sample,
    encode_delivery_reason,
    encode_meal_time,
    encode_quantity_sample,
    encode_workout,
    from_epoch_ms,
    parse_kind,
)
from healthsync.domains.health.sync.errors import InvalidArgumentError, InvalidTypeError
from healthsync.domains.health.sync.units import Quantity


class TestParseKind:
    @pytest.mark.parametrize("raw,expected", [
        ("BLOOD_GLUCOSE", SampleKind.GLUCOSE),
        ("glucose", SampleKind.GLUCOSE),
        ("INSULIN_DELIVERY", SampleKind.INSULIN),
        ("STEPS", SampleKind.STEPS),
        ("WORKOUT", SampleKind.WORKOUT),
        ("MENSTRUATION", SampleKind.MENSTRUAL_FLOW),
        ("menstrual-flow", SampleKind.MENSTRUAL_FLOW),
        ("sleep-state", SampleKind.SLEEP),
        ("MINDFULNESS", SampleKind.MINDFULNESS),
    ])
    def test_known_spellings(self, raw, expected):
        assert parse_kind(raw) is expected

    def test_passes_enum_through(self):
        assert parse_kind(SampleKind.WATER) is SampleKind.WATER

    def test_unknown_kind_is_invalid_type(self):
        with pytest.raises(InvalidTypeError, match="Unsupported type: HEART_RATE"):
            parse_kind("HEART_RATE")

    @pytest.mark.parametrize("raw", [None, "", "   ", 42])
    def test_missing_kind_is_invalid_argument(self, raw):
        with pytest.raises(InvalidArgumentError):
            parse_kind(raw)

    def test_categories(self):
        assert SampleKind.GLUCOSE.is_quantity
        assert SampleKind.SLEEP.is_category
        assert not SampleKind.WORKOUT.is_quantity
        assert not SampleKind.WORKOUT.is_category


class TestMetadataTags:
    def test_meal_time_only_for_exact_literals(self):
        assert encode_meal_time("preprandial") is MealTime.PREPRANDIAL
        assert encode_meal_time("postprandial") is MealTime.POSTPRANDIAL
        assert encode_meal_time("Preprandial") is None
        assert encode_meal_time("fasting") is None
        assert encode_meal_time(None) is None

    def test_delivery_reason_defaults_to_bolus(self):
        assert encode_delivery_reason("basal") is InsulinDeliveryReason.BASAL
        assert encode_delivery_reason("bolus") is InsulinDeliveryReason.BOLUS
        assert encode_delivery_reason("correction") is InsulinDeliveryReason.BOLUS
        assert encode_delivery_reason(None) is InsulinDeliveryReason.BOLUS


class TestSampleSource:
    def test_prefers_device_name(self):
        assert SampleSource("Watch", "com.apple.health").display_name == "Watch"

    def test_falls_back_to_bundle(self):
        assert SampleSource("", "com.apple.health").display_name == "com.apple.health"

    def test_unknown_when_empty(self):
        assert SampleSource().display_name == "Unknown"


class TestTimeConversion:
    def test_from_epoch_ms(self):
        assert from_epoch_ms(ms(T0)) == T0
        assert from_epoch_ms(0).tzinfo is timezone.utc

    @pytest.mark.parametrize("raw", [None, "1700000000000", True])
    def test_rejects_non_numeric(self, raw):
        with pytest.raises(InvalidArgumentError, match="endTime"):
            from_epoch_ms(raw, "endTime")

    @pytest.mark.parametrize("raw", [float("nan"), float("inf"), float("-inf")])
    def test_rejects_non_finite(self, raw):
        with pytest.raises(InvalidArgumentError, match="finite"):
            from_epoch_ms(raw, "startTime")

    @pytest.mark.parametrize("raw", [1e20, -1e20, 10**30, 10**400])
    def test_rejects_out_of_range(self, raw):
        with pytest.raises(InvalidArgumentError, match="out of range"):
            from_epoch_ms(raw, "startTime")

    def test_sample_end_before_start_rejected(self):
        with pytest.raises(ValueError):
            Sample(SampleKind.STEPS, start=T0, end=T0 - timedelta(seconds=1))


class TestEncoders:
    def test_quantity_record_converts_unit(self):
        sample = make_quantity(SampleKind.GLUCOSE, 5.5, "mmol/L", source=FOREIGN_SOURCE,
                               metadata={MetadataKey.MEAL_TIME: int(MealTime.POSTPRANDIAL)})
        record = encode_quantity_sample(sample, "mg/dL")
        assert record["value"] == pytest.approx(99.0858)
        assert record["unit"] == "mg/dL"
        assert record["startTime"] == ms(T0)
        assert record["endTime"] == ms(T0)
        assert record["dataSource"] == "Dexcom"
        assert record["mealTime"] == "postprandial"
        assert "reason" not in record

    def test_quantity_record_decodes_reason(self):
        sample = make_quantity(SampleKind.INSULIN, 4, "IU",
                               metadata={MetadataKey.INSULIN_DELIVERY_REASON: 1})
        assert encode_quantity_sample(sample, "IU")["reason"] == "basal"

    def test_unknown_metadata_values_are_dropped(self):
        sample = make_quantity(SampleKind.GLUCOSE, 100, "mg/dL",
                               metadata={MetadataKey.MEAL_TIME: 9})
        assert "mealTime" not in encode_quantity_sample(sample, "mg/dL")

    def test_workout_defaults_missing_totals_to_zero(self):
        workout = WorkoutSample(
            kind=SampleKind.WORKOUT,
            start=T0,
            end=T0 + timedelta(minutes=30),
            activity_type=37,
            duration=1800.0,
        )
        record = encode_workout(workout)
        assert record["totalEnergyBurned"] == 0
        assert record["totalDistance"] == 0
        assert record["workoutActivityType"] == 37
        assert record["duration"] == 1800.0
        assert record["dataSource"] == "Unknown"

    def test_workout_converts_totals(self):
        workout = WorkoutSample(
            kind=SampleKind.WORKOUT,
            start=T0,
            end=T0 + timedelta(minutes=30),
            total_energy_burned=Quantity(1000, "kJ"),
            total_distance=Quantity(5, "km"),
        )
        record = encode_workout(workout)
        assert record["totalEnergyBurned"] == pytest.approx(239.0057, rel=1e-4)
        assert record["totalDistance"] == pytest.approx(5000.0)

    def test_category_record(self):
        record = encode_category_sample(make_category(SampleKind.SLEEP, 0))
        assert record["value"] == 0
        assert record["endTime"] - record["startTime"] == 3_600_000

    def test_daily_bucket_dict(self):
        bucket = DailyBucket(day=datetime(2026, 3, 10).date(), steps=1200, distance_km=0.9)
        assert bucket.to_dict() == {"date": "2026-03-10", "steps": 1200, "distanceKm": 0.9}
