"""Tests for record construction, timestamp parsing and collection helpers."""
import dataclasses
from datetime import datetime, timedelta, timezone

import pytest

from neurolog.records import (
    CrisisEvent,
    LogEntry,
    coerce_crises,
    coerce_logs,
    get_time_of_day,
    parse_timestamp,
    timed,
)


class TestParseTimestamp:

    def test_naive_iso(self):
        assert parse_timestamp("2024-03-13T15:30:00") == datetime(2024, 3, 13, 15, 30)

    def test_datetime_passthrough(self):
        when = datetime(2024, 3, 13, 8, 0)
        assert parse_timestamp(when) == when

    def test_aware_converted_to_local_naive(self):
        parsed = parse_timestamp("2024-03-13T15:30:00Z")
        expected = datetime(2024, 3, 13, 15, 30, tzinfo=timezone.utc).astimezone().replace(tzinfo=None)
        assert parsed.tzinfo is None
        assert parsed == expected

    @pytest.mark.parametrize("value", [None, "", "not a date", "2024-13-45T99:00:00"])
    def test_invalid(self, value):
        assert parse_timestamp(value) is None


class TestTimeOfDay:

    @pytest.mark.parametrize("hour,label", [
        (5, "morning"), (9, "morning"), (10, "midday"), (13, "midday"),
        (14, "afternoon"), (18, "evening"), (21, "evening"), (22, "night"), (3, "night"),
    ])
    def test_buckets(self, hour, label):
        assert get_time_of_day(hour) == label


class TestLogEntry:

    def test_derived_fields(self, make_log, now):
        entry = make_log(now)
        assert entry.instant == now
        assert entry.day_of_week == "wednesday"
        assert entry.time_of_day == "afternoon"
        assert entry.hour_of_day == 15

    def test_unparseable_leaves_derived_none(self, make_log):
        entry = make_log("yesterday-ish")
        assert entry.instant is None
        assert entry.day_of_week is None
        assert entry.hour_of_day is None

    def test_from_dict_camel_case(self):
        entry = LogEntry.from_dict({
            "id": 7,
            "timestamp": "2024-03-13T09:00:00",
            "context": "school",
            "arousal": 8,
            "energy": 3,
            "sensoryTriggers": ["Loud"],
            "contextTriggers": ["Transition"],
            "strategies": ["breathing"],
            "strategyEffectiveness": "helped",
        })
        assert entry.id == "7"
        assert entry.sensory_triggers == ("Loud",)
        assert entry.context_triggers == ("Transition",)
        assert entry.strategy_effectiveness == "helped"
        assert entry.time_of_day == "morning"

    def test_immutable(self, make_log, now):
        with pytest.raises(dataclasses.FrozenInstanceError):
            make_log(now).arousal = 1


class TestCrisisEvent:

    def test_end_instant(self, make_crisis, now):
        crisis = make_crisis(now, duration_seconds=900)
        assert crisis.end_instant == now + timedelta(minutes=15)

    def test_end_instant_unparseable(self, make_crisis):
        assert make_crisis("??").end_instant is None

    def test_from_dict(self):
        crisis = CrisisEvent.from_dict({
            "id": "c1",
            "timestamp": "2024-03-13T10:00:00",
            "type": "meltdown",
            "durationSeconds": 120,
            "peakIntensity": 9,
            "warningSignsObserved": ["pacing"],
            "strategiesUsed": ["deep pressure"],
            "recoveryTimeMinutes": 25,
        })
        assert crisis.type == "meltdown"
        assert crisis.warning_signs == ("pacing",)
        assert crisis.strategies_used == ("deep pressure",)
        assert crisis.recovery_time_minutes == 25.0

    def test_missing_recovery_time(self):
        crisis = CrisisEvent.from_dict({"id": "c2", "timestamp": "2024-03-13T10:00:00"})
        assert crisis.recovery_time_minutes is None


class TestCollections:

    def test_coerce_mixed(self, make_log, now):
        logs = coerce_logs([make_log(now), {"id": "d", "timestamp": now.isoformat()}])
        assert all(isinstance(l, LogEntry) for l in logs)

    def test_coerce_crises(self, now):
        crises = coerce_crises([{"id": "c", "timestamp": now.isoformat()}])
        assert isinstance(crises[0], CrisisEvent)

    def test_timed_sorts_and_drops_invalid(self, make_log, now):
        late = make_log(now)
        early = make_log(now - timedelta(hours=2))
        bad = make_log("nope")
        assert timed([late, bad, early]) == [early, late]
