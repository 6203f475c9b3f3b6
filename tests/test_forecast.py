"""
Tests for the risk forecast engine.

Covers: empty / insufficient input, recency-weighted base score, the
upcoming risk-zone boost, exclusion of future and unparseable logs,
optional factor and lag terms, circular peak time and helpers.
"""
from datetime import timedelta

import pytest

from neurolog.config import RiskForecastConfig
from neurolog.forecast import (
    calculate_risk_forecast,
    circular_peak_minutes,
    confidence_from_samples,
    find_secondary_peaks,
    is_hour_in_upcoming_window,
    recency_weight,
)


def _keys(forecast):
    return [f.key for f in forecast.contributing_factors]


# ─── Helpers ──────────────────────────────────────────────────


class TestHelpers:

    def test_upcoming_window_same_hour(self):
        assert is_hour_in_upcoming_window(15, 15, 4)

    def test_upcoming_window_wraps_midnight(self):
        assert is_hour_in_upcoming_window(1, 23, 4)

    def test_upcoming_window_past_hour(self):
        assert not is_hour_in_upcoming_window(14, 15, 4)

    def test_recency_half_life(self, now):
        assert recency_weight(now, now, 7) == 1.0
        assert abs(recency_weight(now - timedelta(days=7), now, 7) - 0.5) < 1e-12

    @pytest.mark.parametrize("n,label", [(4, "low"), (10, "medium"), (15, "high")])
    def test_confidence_from_samples(self, n, label):
        assert confidence_from_samples(n, 5) == label

    def test_circular_peak_wraps_midnight(self, make_log, now):
        day = now.replace(hour=0, minute=0)
        logs = [
            make_log(day.replace(hour=23, minute=30), arousal=8),
            make_log(day.replace(hour=0, minute=30), arousal=8),
        ]
        assert circular_peak_minutes(logs, 7) == 0

    def test_circular_peak_cancelled(self, make_log, now):
        logs = [
            make_log(now.replace(hour=6, minute=0), arousal=8),
            make_log(now.replace(hour=18, minute=0), arousal=8),
        ]
        assert circular_peak_minutes(logs, 7) is None

    def test_secondary_peaks_are_local_maxima(self):
        buckets = {
            9: {"count": 3, "weighted_sum": 2.0},
            10: {"count": 1, "weighted_sum": 0.5},
            16: {"count": 4, "weighted_sum": 3.0},
        }
        peaks = find_secondary_peaks(buckets, exclude_hour=16, limit=3)
        assert [p.hour for p in peaks] == [9]


# ─── Main forecast ────────────────────────────────────────────


class TestForecastGuards:

    def test_empty_logs(self, now):
        forecast = calculate_risk_forecast([], now=now)
        assert forecast.level == "low"
        assert forecast.score == 0
        assert forecast.contributing_factors == []

    def test_not_enough_same_weekday_samples(self, make_log, now):
        logs = [make_log(now - timedelta(weeks=w), arousal=9) for w in range(1, 4)]
        forecast = calculate_risk_forecast(logs, now=now)
        assert forecast.level == "low"
        assert forecast.score == 0
        assert _keys(forecast) == ["risk.factors.notEnoughData"]
        assert forecast.confidence == "low"
        assert forecast.sample_size == 3

    def test_future_logs_ignored(self, make_log, now):
        logs = [make_log(now + timedelta(weeks=w), arousal=9) for w in range(1, 8)]
        forecast = calculate_risk_forecast(logs, now=now)
        assert _keys(forecast) == ["risk.factors.notEnoughData"]
        assert forecast.sample_size == 0

    def test_unparseable_timestamps_ignored(self, make_log, now):
        logs = [make_log("not-a-date", arousal=10) for _ in range(10)]
        forecast = calculate_risk_forecast(logs, now=now)
        assert forecast.sample_size == 0

    def test_logs_outside_history_window_ignored(self, make_log, now):
        logs = [make_log(now - timedelta(weeks=w), arousal=9) for w in range(6, 12)]
        forecast = calculate_risk_forecast(logs, now=now)
        assert _keys(forecast) == ["risk.factors.notEnoughData"]


class TestForecastScoring:

    def test_ten_peak_logs_at_current_hour_is_high(self, make_log, now):
        logs = [make_log(now, arousal=10) for _ in range(10)]
        forecast = calculate_risk_forecast(logs, now=now)
        assert forecast.level == "high"
        assert forecast.score == 100
        assert forecast.raw_score == 130
        assert forecast.predicted_high_arousal_time == "15:00 - 16:00"
        assert forecast.contributing_factors[0].key == "risk.factors.highStressTime"
        assert forecast.contributing_factors[0].params == {"timeRange": "15:00-16:00"}

    def test_upcoming_risk_zone(self, weekly_logs, now):
        forecast = calculate_risk_forecast(weekly_logs, now=now)
        assert forecast.recency_weighted_score == 50
        assert forecast.multi_factor_breakdown == {"recency": 50.0, "risk_zone": 30.0}
        assert forecast.score == 80
        assert forecast.level == "high"
        assert forecast.predicted_high_arousal_time == "16:00 - 17:00"
        assert forecast.peak_time_minutes == 16 * 60
        assert forecast.sample_size == 8

    def test_risk_zone_outside_window(self, weekly_logs, now):
        forecast = calculate_risk_forecast(weekly_logs, now=now, hours_ahead_window=0)
        assert forecast.multi_factor_breakdown["risk_zone"] == 0.0
        assert forecast.level == "moderate"
        assert _keys(forecast) == ["risk.factors.elevatedStress"]

    def test_calm_history(self, make_log, now):
        logs = [make_log(now - timedelta(weeks=w, hours=h), arousal=3)
                for w in range(1, 5) for h in (1, 5)]
        forecast = calculate_risk_forecast(logs, now=now)
        assert forecast.level == "low"
        assert forecast.score == 0
        assert _keys(forecast) == ["risk.factors.calmPeriod"]

    def test_wilson_interval_in_percent(self, weekly_logs, now):
        ci = calculate_risk_forecast(weekly_logs, now=now).confidence_interval
        assert ci.point == 50.0
        assert 0.0 <= ci.lower <= ci.point <= ci.upper <= 100.0

    def test_now_as_string(self, weekly_logs):
        forecast = calculate_risk_forecast(weekly_logs, now="2024-03-13T15:00:00")
        assert forecast.score == 80

    def test_accepts_dict_records(self, now):
        logs = [{"id": str(i), "timestamp": now.isoformat(), "arousal": 10} for i in range(6)]
        forecast = calculate_risk_forecast(logs, now=now)
        assert forecast.level == "high"


class TestForecastOptionalTerms:

    def test_multi_factor_breakdown(self, make_log, now):
        logs = [
            make_log(now - timedelta(weeks=w), arousal=8, energy=2,
                     strategy_effectiveness="escalated")
            for w in range(1, 5)
        ] + [make_log(now - timedelta(weeks=1, hours=6), arousal=3, energy=2)]
        cfg = RiskForecastConfig(enable_multi_factor_scoring=True)
        forecast = calculate_risk_forecast(logs, now=now, cfg=cfg)
        breakdown = forecast.multi_factor_breakdown
        assert breakdown["low_energy"] == 15.0
        assert breakdown["strategy_failure"] == 10.0
        assert "risk.factors.lowEnergy" in _keys(forecast)
        assert "risk.factors.strategyFailures" in _keys(forecast)

    def test_lag_term_is_capped(self, make_log, weekly_logs, now):
        recent = [make_log(now - timedelta(days=d), arousal=10) for d in (1, 2) for _ in range(3)]
        forecast = calculate_risk_forecast(
            weekly_logs + recent, now=now, enable_lag_effects=True, lag_weight=100,
        )
        assert forecast.multi_factor_breakdown["lag"] == 15.0
        assert "risk.factors.recentElevation" in _keys(forecast)

    def test_lag_disabled_by_default(self, weekly_logs, now):
        forecast = calculate_risk_forecast(weekly_logs, now=now)
        assert "lag" not in forecast.multi_factor_breakdown

    def test_personalized_threshold_floor(self, make_log, now):
        logs = [make_log(now - timedelta(weeks=w % 4 + 1, minutes=w), arousal=2) for w in range(24)]
        forecast = calculate_risk_forecast(
            logs, now=now, use_personalized_threshold=True,
        )
        assert forecast.high_arousal_threshold == 5.0
