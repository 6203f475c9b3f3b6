"""
Tests for the recovery pattern analyzer.

Covers: personalized thresholds, log-based recovery detection, the
vulnerability window (data-driven and fallback), factor impact, per-type
statistics, the full analysis and the caregiver summary.
"""
from datetime import timedelta

import pytest

from neurolog.config import RecoveryConfig
from neurolog.recovery import (
    RecoveryIndicator,
    RecoveryThresholds,
    analyze_recovery_factors,
    analyze_recovery_patterns,
    calculate_personalized_recovery_thresholds,
    calculate_recovery_by_type,
    calculate_vulnerability_window,
    detect_recovery_from_logs,
    effective_recovery_time,
    get_recovery_summary,
    half_split_trend,
)

CFG = RecoveryConfig()


# ─── Thresholds ───────────────────────────────────────────────


class TestPersonalizedThresholds:

    def test_too_few_logs(self, make_log, now):
        logs = [make_log(now, arousal=3) for _ in range(19)]
        assert calculate_personalized_recovery_thresholds(logs) is None

    def test_percentiles(self, make_log, now):
        logs = [make_log(now, arousal=2, energy=4) for _ in range(5)]
        logs += [make_log(now, arousal=2, energy=8) for _ in range(5)]
        logs += [make_log(now, arousal=6, energy=8) for _ in range(10)]
        thresholds = calculate_personalized_recovery_thresholds(logs)
        assert thresholds == RecoveryThresholds(arousal_threshold=2, energy_threshold=8)


# ─── Detection ────────────────────────────────────────────────


class TestDetectRecovery:

    @pytest.fixture
    def crisis(self, make_crisis, now):
        return make_crisis(now.replace(hour=10, minute=0), duration_seconds=600)

    def test_first_calm_log_after_end(self, crisis, make_log, now):
        logs = [
            make_log(now.replace(hour=10, minute=5), arousal=3, energy=6),
            make_log(now.replace(hour=10, minute=30), arousal=7, energy=6),
            make_log(now.replace(hour=10, minute=45), arousal=3, energy=6, id="calm"),
            make_log(now.replace(hour=11, minute=0), arousal=2, energy=7),
        ]
        indicator = detect_recovery_from_logs(crisis, logs, CFG)
        assert indicator.detected_recovery_time == 35
        assert indicator.recovery_confidence == "estimated"
        assert indicator.first_normal_log_id == "calm"

    def test_rounds_to_nearest_minute(self, crisis, make_log, now):
        logs = [make_log(now.replace(hour=10, minute=22, second=40), arousal=3, energy=6)]
        assert detect_recovery_from_logs(crisis, logs, CFG).detected_recovery_time == 13

    def test_low_energy_is_not_recovered(self, crisis, make_log, now):
        logs = [make_log(now.replace(hour=10, minute=30), arousal=2, energy=3)]
        indicator = detect_recovery_from_logs(crisis, logs, CFG)
        assert indicator.recovery_confidence == "unknown"
        assert indicator.detected_recovery_time is None

    def test_outside_window(self, crisis, make_log, now):
        logs = [make_log(now.replace(hour=10, minute=10) + timedelta(minutes=241), arousal=2, energy=7)]
        assert detect_recovery_from_logs(crisis, logs, CFG).recovery_confidence == "unknown"

    def test_manual_time_is_confirmed(self, make_crisis, make_log, now):
        crisis = make_crisis(now.replace(hour=10), recovery_time_minutes=25)
        logs = [make_log(now.replace(hour=10, minute=40), arousal=3, energy=6)]
        indicator = detect_recovery_from_logs(crisis, logs, CFG)
        assert indicator.recovery_confidence == "confirmed"
        assert indicator.detected_recovery_time == 30
        assert effective_recovery_time(indicator) == 25

    def test_unparseable_crisis(self, make_crisis, make_log, now):
        crisis = make_crisis("not a time")
        logs = [make_log(now, arousal=2, energy=8)]
        assert detect_recovery_from_logs(crisis, logs, CFG).recovery_confidence == "unknown"

    def test_unparseable_crisis_with_manual_time(self, make_crisis):
        crisis = make_crisis("not a time", recovery_time_minutes=15)
        indicator = detect_recovery_from_logs(crisis, [], CFG)
        assert indicator.recovery_confidence == "confirmed"
        assert effective_recovery_time(indicator) == 15

    def test_personalized_thresholds_used(self, crisis, make_log, now):
        logs = [make_log(now.replace(hour=10, minute=30), arousal=3, energy=6)]
        strict = RecoveryThresholds(arousal_threshold=2, energy_threshold=8)
        indicator = detect_recovery_from_logs(crisis, logs, CFG, strict)
        assert indicator.recovery_confidence == "unknown"

    def test_effective_time_none(self):
        assert effective_recovery_time(RecoveryIndicator("c", "unknown")) is None


# ─── Vulnerability window ─────────────────────────────────────


def _crises_at(make_crisis, now, offsets):
    start = now.replace(hour=8, minute=0)
    return [make_crisis(start + timedelta(minutes=m), duration_seconds=0) for m in offsets]


class TestVulnerabilityWindow:

    def test_single_crisis_default(self, make_crisis, now):
        window = calculate_vulnerability_window([make_crisis(now)])
        assert window.duration_minutes == 60
        assert window.re_escalation_rate == 0
        assert window.recommended_buffer == 75
        assert not window.is_data_driven

    def test_too_few_gaps_default(self, make_crisis, now):
        window = calculate_vulnerability_window(_crises_at(make_crisis, now, [0, 30, 70]))
        assert not window.is_data_driven
        assert window.duration_minutes == 60

    def test_data_driven(self, make_crisis, now):
        crises = _crises_at(make_crisis, now, [0, 30, 70, 130, 330])
        window = calculate_vulnerability_window(crises, random_seed=5)
        assert window.is_data_driven
        assert window.safe_time_minutes == 200
        assert window.duration_minutes == 60
        assert window.elevated_risk_period == 60
        assert window.re_escalation_rate == 75
        assert window.recommended_buffer == 200
        assert window.duration_ci.lower <= window.duration_ci.upper

    def test_input_order_irrelevant(self, make_crisis, now):
        crises = _crises_at(make_crisis, now, [0, 30, 70, 130, 330])
        a = calculate_vulnerability_window(crises, random_seed=5)
        b = calculate_vulnerability_window(list(reversed(crises)), random_seed=5)
        assert a == b

    def test_fallback_mean(self, make_crisis, now):
        crises = _crises_at(make_crisis, now, [0, 30, 70, 130, 330])
        window = calculate_vulnerability_window(crises, enable_data_driven_vulnerability=False)
        assert window.duration_minutes == 43
        assert window.re_escalation_rate == 50
        assert window.recommended_buffer == 64
        assert window.safe_time_minutes is None

    def test_long_gaps_excluded(self, make_crisis, now):
        crises = _crises_at(make_crisis, now, [0, 30, 600, 630, 1300])
        window = calculate_vulnerability_window(crises)
        assert not window.is_data_driven


# ─── Factors and per-type stats ───────────────────────────────


def _recoveries(make_crisis, now, rows):
    """rows: (hours_ago, minutes, kwargs)."""
    out = []
    for hours_ago, minutes, kwargs in rows:
        crisis = make_crisis(now - timedelta(hours=hours_ago), recovery_time_minutes=minutes, **kwargs)
        out.append((crisis, float(minutes)))
    return out


class TestRecoveryFactors:

    def test_accelerators(self, make_crisis, now):
        quick = {"strategies_used": ("deep pressure",), "context": "home"}
        slow = {"context": "school"}
        rec = _recoveries(make_crisis, now, [
            (50, 10, quick), (40, 12, quick), (30, 14, quick),
            (45, 40, slow), (35, 42, slow), (25, 44, slow),
        ])
        accelerators, delayers = analyze_recovery_factors(rec, CFG)
        names = {f.factor for f in accelerators}
        assert {"deep pressure", "home"} <= names
        assert delayers == []
        pressure = next(f for f in accelerators if f.factor == "deep pressure")
        assert pressure.impact_minutes == -30
        assert pressure.avg_recovery_with_factor == 12
        assert pressure.sample_size == 3

    def test_delayers_ranked_by_magnitude(self, make_crisis, now):
        rec = _recoveries(make_crisis, now, [
            (50, 60, {"strategies_used": ("screen", "walk")}),
            (40, 50, {"strategies_used": ("screen", "walk")}),
            (30, 20, {"strategies_used": ("walk",)}),
            (20, 20, {"strategies_used": ("walk",)}),
            (10, 30, {}),
        ])
        _, delayers = analyze_recovery_factors(rec, CFG)
        impacts = [f.impact_minutes for f in delayers]
        assert impacts == sorted(impacts, reverse=True)
        assert delayers[0].factor == "screen"

    def test_not_enough_points(self, make_crisis, now):
        rec = _recoveries(make_crisis, now, [(2, 10, {}), (1, 20, {})])
        assert analyze_recovery_factors(rec, CFG) == ([], [])


class TestRecoveryByType:

    def test_worsening_trend(self, make_crisis, now):
        rec = _recoveries(make_crisis, now, [
            (50, 10, {"type": "meltdown"}), (40, 20, {"type": "meltdown"}),
            (30, 30, {"type": "meltdown"}), (20, 40, {"type": "meltdown"}),
            (10, 50, {"type": "meltdown"}),
        ])
        stats = calculate_recovery_by_type(rec, RecoveryConfig(random_seed=3))["meltdown"]
        assert stats.trend == "worsening"
        assert stats.count == 5
        assert stats.avg_minutes == 30
        assert stats.median_minutes == 30
        assert (stats.min_minutes, stats.max_minutes) == (10, 50)
        assert stats.trend_tau == 1.0

    def test_trend_ignores_unparseable_timestamps(self, make_crisis, now):
        rec = _recoveries(make_crisis, now, [
            (50, 10, {"type": "meltdown"}), (40, 20, {"type": "meltdown"}),
            (30, 30, {"type": "meltdown"}), (20, 40, {"type": "meltdown"}),
            (10, 50, {"type": "meltdown"}),
        ])
        undated = make_crisis("garbage", type="meltdown", recovery_time_minutes=5)
        rec.append((undated, 5.0))
        stats = calculate_recovery_by_type(rec, RecoveryConfig(random_seed=3))["meltdown"]
        assert stats.trend == "worsening"
        assert stats.trend_tau == 1.0
        assert stats.count == 6
        assert stats.min_minutes == 5

    def test_single_crisis_type_skipped(self, make_crisis, now):
        rec = _recoveries(make_crisis, now, [(5, 10, {"type": "shutdown"})])
        assert calculate_recovery_by_type(rec, CFG) == {}

    def test_half_split_trend(self):
        assert half_split_trend([50, 40, 20, 20], 0.15) == "improving"
        assert half_split_trend([20, 20, 40, 50], 0.15) == "worsening"
        assert half_split_trend([20, 21, 22, 20], 0.15) == "stable"


# ─── Full analysis ────────────────────────────────────────────


class TestAnalyzeRecoveryPatterns:

    def test_empty(self):
        analysis = analyze_recovery_patterns([], [])
        assert analysis.avg_recovery_time == 0
        assert analysis.total_crises_analyzed == 0
        assert analysis.crises_with_recovery_data == 0
        assert analysis.recovery_trend == "stable"
        assert not analysis.vulnerability_window.is_data_driven

    def test_improving_recovery(self, make_crisis, now):
        crises = [
            make_crisis(now - timedelta(days=d), recovery_time_minutes=m)
            for d, m in [(6, 60), (5, 50), (4, 45), (3, 30), (2, 20), (1, 10)]
        ]
        analysis = analyze_recovery_patterns(crises, [], random_seed=9)
        assert analysis.avg_recovery_time == 36
        assert analysis.recovery_trend == "improving"
        assert analysis.trend_statistics["tau"] == -1.0
        assert analysis.avg_recovery_time_ci.lower <= analysis.avg_recovery_time_ci.upper
        assert analysis.personalized_thresholds is None

    def test_unparseable_crisis_counts_but_not_in_trend(self, make_crisis, now):
        crises = [
            make_crisis(now - timedelta(days=2), recovery_time_minutes=20),
            make_crisis(now - timedelta(days=1), recovery_time_minutes=30),
            make_crisis("bad", recovery_time_minutes=40),
        ]
        analysis = analyze_recovery_patterns(crises, [], random_seed=1)
        assert analysis.total_crises_analyzed == 3
        assert analysis.crises_with_recovery_data == 3
        assert analysis.avg_recovery_time == 30
        assert analysis.trend_statistics is None

    def test_detected_recoveries_from_logs(self, make_crisis, make_log, now):
        crisis = make_crisis(now.replace(hour=10), duration_seconds=0)
        logs = [make_log(now.replace(hour=10, minute=20), arousal=2, energy=7)]
        analysis = analyze_recovery_patterns([crisis], logs)
        assert analysis.avg_recovery_time == 20
        assert analysis.crises_with_recovery_data == 1

    def test_accepts_dicts(self, now):
        crises = [{"id": "a", "timestamp": now.isoformat(), "type": "meltdown",
                   "durationSeconds": 300, "recoveryTimeMinutes": 12}]
        analysis = analyze_recovery_patterns(crises, [])
        assert analysis.avg_recovery_time == 12


class TestRecoverySummary:

    def test_no_data(self):
        assert "No recovery data" in get_recovery_summary(analyze_recovery_patterns([], []))

    def test_with_data(self, make_crisis, now):
        crises = [make_crisis(now - timedelta(days=d), recovery_time_minutes=15) for d in (1, 2)]
        summary = get_recovery_summary(analyze_recovery_patterns(crises, []))
        assert "Average recovery time: 15 minutes" in summary
