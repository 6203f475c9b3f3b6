"""
Near-term risk forecast for an elevated-arousal episode.

Looks at past logs on the same weekday as "now", weights them by recency and
checks whether a known high-arousal hour is coming up. Optional terms add
independent factor scores and a bounded carry-over from the last few days.

All functions are pure. `now` is an explicit argument so callers and tests
control the clock.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from neurolog.config import RiskForecastConfig, with_overrides
from neurolog.records import LogEntry, coerce_logs, parse_timestamp
from neurolog.stats import Interval, percentile_value, wilson_score_interval

log = logging.getLogger(__name__)

MINUTES_PER_DAY = 24 * 60


@dataclass
class RiskFactor:
    """Contributing factor tag plus interpolation parameters for display text."""

    key: str
    params: Dict[str, Any] = field(default_factory=dict)


@dataclass
class HourlyRisk:
    hour: int
    incident_count: int
    weighted_score: float


@dataclass
class RiskForecast:
    level: str
    score: int
    contributing_factors: List[RiskFactor] = field(default_factory=list)
    predicted_high_arousal_time: Optional[str] = None
    # Uncapped; can exceed 100
    raw_score: Optional[int] = None
    confidence: Optional[str] = None
    sample_size: Optional[int] = None
    recency_weighted_score: Optional[int] = None
    high_arousal_threshold: Optional[float] = None
    peak_time_minutes: Optional[int] = None
    secondary_peaks: List[HourlyRisk] = field(default_factory=list)
    hourly_risk_distribution: List[HourlyRisk] = field(default_factory=list)
    multi_factor_breakdown: Dict[str, float] = field(default_factory=dict)
    confidence_interval: Optional[Interval] = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def recency_weight(instant: datetime, now: datetime, half_life_days: float) -> float:
    """Exponential decay: weight = 2 ** (-age_days / half_life)."""
    age_days = (now - instant).total_seconds() / 86400.0
    return 2.0 ** (-age_days / half_life_days)


def is_hour_in_upcoming_window(target_hour: int, current_hour: int, window: int) -> bool:
    """True if target_hour falls within `window` hours from current_hour, across midnight."""
    return (target_hour - current_hour) % 24 <= window


def confidence_from_samples(sample_size: int, min_required: int) -> str:
    if sample_size >= min_required * 3:
        return "high"
    if sample_size >= min_required * 2:
        return "medium"
    return "low"


def _fmt_hour(hour: int) -> str:
    return f"{hour:02d}:00"


def resolve_high_arousal_threshold(window_logs: Sequence[LogEntry], cfg: RiskForecastConfig) -> float:
    """
    Fixed threshold, or the user's own arousal percentile when enabled.

    The personalized value needs `personalized_min_samples` logs and never
    drops below `personalized_floor`.
    """
    if not cfg.use_personalized_threshold or len(window_logs) < cfg.personalized_min_samples:
        return float(cfg.high_arousal_threshold)
    value = percentile_value([l.arousal for l in window_logs], cfg.personalized_percentile)
    return float(min(10, max(cfg.personalized_floor, value)))


def circular_peak_minutes(high_logs: Sequence[LogEntry], threshold: float) -> Optional[int]:
    """
    Intensity-weighted circular mean of clock times, in minutes since midnight.

    Clock times map to angles on the 24h circle so 23:30 and 00:30 average
    to midnight rather than noon. Weight = arousal - threshold + 1.
    Returns None when there is nothing to average or the vectors cancel out.
    """
    if not high_logs:
        return None

    minutes = np.array([l.instant.hour * 60 + l.instant.minute for l in high_logs], dtype=np.float64)
    weights = np.array([l.arousal - threshold + 1 for l in high_logs], dtype=np.float64)
    angles = minutes / MINUTES_PER_DAY * 2 * math.pi

    s = float(np.sum(weights * np.sin(angles)))
    c = float(np.sum(weights * np.cos(angles)))
    if math.hypot(s, c) < 1e-9:
        return None

    mean_angle = math.atan2(s, c) % (2 * math.pi)
    return int(round(mean_angle / (2 * math.pi) * MINUTES_PER_DAY)) % MINUTES_PER_DAY


def find_secondary_peaks(
    buckets: Dict[int, Dict[str, float]],
    exclude_hour: Optional[int],
    limit: int,
) -> List[HourlyRisk]:
    """Circular local maxima of the hourly weighted-sum histogram."""
    weights = [buckets.get(h, {}).get("weighted_sum", 0.0) for h in range(24)]
    peaks = []
    for h in range(24):
        w = weights[h]
        prev_w, next_w = weights[(h - 1) % 24], weights[(h + 1) % 24]
        if w <= 0 or h == exclude_hour:
            continue
        if w >= prev_w and w >= next_w and (w > prev_w or w > next_w):
            peaks.append(HourlyRisk(
                hour=h,
                incident_count=int(buckets[h]["count"]),
                weighted_score=round(w * 100, 1),
            ))
    peaks.sort(key=lambda p: (-p.weighted_score, p.hour))
    return peaks[:limit]


# ---------------------------------------------------------------------------
# Optional score terms
# ---------------------------------------------------------------------------

def compute_factor_scores(
    logs: Sequence[LogEntry],
    threshold: float,
    cfg: RiskForecastConfig,
) -> Dict[str, float]:
    """
    Independent factor contributions on the same-weekday sample.

        low_energy       = share of logs at or below the low-energy threshold
        strategy_failure = escalated share among logs with a recorded outcome
        context_skew     = excess share of high-arousal logs in the dominant context
    """
    n = len(logs)
    if n == 0:
        return {"low_energy": 0.0, "strategy_failure": 0.0, "context_skew": 0.0}

    low_energy_rate = sum(1 for l in logs if l.energy <= cfg.low_energy_threshold) / n

    outcomes = [l.strategy_effectiveness for l in logs if l.strategy_effectiveness]
    failure_rate = (
        sum(1 for o in outcomes if o == "escalated") / len(outcomes) if outcomes else 0.0
    )

    high = [l for l in logs if l.arousal >= threshold]
    skew = 0.0
    if high:
        for ctx in {l.context for l in logs}:
            share_high = sum(1 for l in high if l.context == ctx) / len(high)
            share_all = sum(1 for l in logs if l.context == ctx) / n
            skew = max(skew, share_high - share_all)

    return {
        "low_energy": round(low_energy_rate * cfg.low_energy_weight, 2),
        "strategy_failure": round(failure_rate * cfg.strategy_failure_weight, 2),
        "context_skew": round(skew * cfg.context_skew_weight, 2),
    }


def compute_lag_contribution(
    window_logs: Sequence[LogEntry],
    now: datetime,
    threshold: float,
    cfg: RiskForecastConfig,
) -> Tuple[float, List[Dict[str, Any]]]:
    """
    Carry-over from the previous `lag_days` calendar days.

    Each day contributes its elevation over the window baseline (high-arousal
    rate plus mean arousal on a 0-1 scale), scaled by lag_weight / days_ago.
    The total is capped at max_lag_contribution.
    """
    if not window_logs or cfg.lag_days <= 0:
        return 0.0, []

    df = pd.DataFrame({
        "date": [l.instant.date() for l in window_logs],
        "arousal": [l.arousal for l in window_logs],
        "high": [1.0 if l.arousal >= threshold else 0.0 for l in window_logs],
    })
    daily = df.groupby("date").agg(mean_arousal=("arousal", "mean"), high_rate=("high", "mean"))
    baseline_mean = float(df["arousal"].mean())
    baseline_rate = float(df["high"].mean())

    total = 0.0
    days: List[Dict[str, Any]] = []
    for days_ago in range(1, cfg.lag_days + 1):
        day = (now - timedelta(days=days_ago)).date()
        if day not in daily.index:
            continue
        row = daily.loc[day]
        elevation = (
            max(0.0, float(row["high_rate"]) - baseline_rate)
            + max(0.0, (float(row["mean_arousal"]) - baseline_mean) / 10.0)
        )
        contribution = elevation * cfg.lag_weight / days_ago
        total += contribution
        days.append({"days_ago": days_ago, "elevation": round(elevation, 3),
                     "contribution": round(contribution, 2)})

    return round(min(total, cfg.max_lag_contribution), 2), days


# ---------------------------------------------------------------------------
# Main forecast
# ---------------------------------------------------------------------------

def calculate_risk_forecast(
    logs: Sequence[Any],
    now: Optional[datetime] = None,
    cfg: Optional[RiskForecastConfig] = None,
    **overrides,
) -> RiskForecast:
    """
    Risk of an elevated-arousal episode in the next few hours.

    Steps:
        1. Trailing history window, then logs on the same weekday as `now`
        2. Insufficient-data guard
        3. Recency-weighted high-arousal rate → base score
        4. Risk-zone boost if a recurring high-arousal hour is coming up
        5. Optional factor scores and cross-day lag term
        6. Level, confidence, peak time, hourly distribution, Wilson interval
    """
    cfg = with_overrides(cfg or RiskForecastConfig(), **overrides)
    if not logs:
        return RiskForecast(level="low", score=0, contributing_factors=[])

    records = coerce_logs(logs)
    now = parse_timestamp(now) or datetime.now()
    current_hour = now.hour
    cutoff = now - timedelta(days=cfg.history_days)

    valid = [l for l in records if l.instant is not None]
    if len(valid) < len(records):
        log.debug("forecast: skipped %d logs with unparseable timestamps", len(records) - len(valid))

    window_logs = [l for l in valid if cutoff <= l.instant <= now]
    same_day = [l for l in window_logs if l.instant.weekday() == now.weekday()]

    if len(same_day) < cfg.min_samples_for_prediction:
        log.debug("forecast: %d same-weekday samples (< %d)", len(same_day), cfg.min_samples_for_prediction)
        return RiskForecast(
            level="low",
            score=0,
            contributing_factors=[RiskFactor(key="risk.factors.notEnoughData")],
            confidence="low",
            sample_size=len(same_day),
        )

    threshold = resolve_high_arousal_threshold(window_logs, cfg)

    # -- Recency-weighted rate ------------------------------------------------
    weighted_high = 0.0
    total_weight = 0.0
    buckets: Dict[int, Dict[str, float]] = {}
    high_logs: List[LogEntry] = []

    for entry in same_day:
        weight = recency_weight(entry.instant, now, cfg.recency_decay_half_life)
        total_weight += weight
        if entry.arousal >= threshold:
            weighted_high += weight
            high_logs.append(entry)
            bucket = buckets.setdefault(entry.instant.hour, {"count": 0, "weighted_sum": 0.0})
            bucket["count"] += 1
            bucket["weighted_sum"] += weight

    weighted_rate = weighted_high / total_weight if total_weight > 0 else 0.0
    recency_score = int(round(weighted_rate * 100))
    breakdown: Dict[str, float] = {"recency": float(recency_score)}

    # -- Upcoming risk zone ---------------------------------------------------
    upcoming = [
        (hour, data) for hour, data in buckets.items()
        if data["count"] >= cfg.min_incidents_for_pattern
        and is_hour_in_upcoming_window(hour, current_hour, cfg.hours_ahead_window)
    ]
    breakdown["risk_zone"] = float(cfg.risk_zone_boost) if upcoming else 0.0

    factors: List[RiskFactor] = []
    predicted_time = None
    if upcoming:
        peak_hour = max(upcoming, key=lambda item: item[1]["weighted_sum"])[0]
        next_hour = (peak_hour + 1) % 24
        factors.append(RiskFactor(
            key="risk.factors.highStressTime",
            params={"timeRange": f"{_fmt_hour(peak_hour)}-{_fmt_hour(next_hour)}"},
        ))
        predicted_time = f"{_fmt_hour(peak_hour)} - {_fmt_hour(next_hour)}"
    elif weighted_rate > cfg.elevated_rate_threshold:
        factors.append(RiskFactor(key="risk.factors.elevatedStress"))
    else:
        factors.append(RiskFactor(key="risk.factors.calmPeriod"))

    # -- Optional terms -------------------------------------------------------
    if cfg.enable_multi_factor_scoring:
        factor_scores = compute_factor_scores(same_day, threshold, cfg)
        breakdown.update(factor_scores)
        tags = {
            "low_energy": "risk.factors.lowEnergy",
            "strategy_failure": "risk.factors.strategyFailures",
            "context_skew": "risk.factors.contextSkew",
        }
        for name, value in factor_scores.items():
            if value >= 1.0:
                factors.append(RiskFactor(key=tags[name], params={"points": value}))

    if cfg.enable_lag_effects:
        lag_total, lag_days = compute_lag_contribution(window_logs, now, threshold, cfg)
        breakdown["lag"] = lag_total
        if lag_total > 0:
            factors.append(RiskFactor(
                key="risk.factors.recentElevation",
                params={"points": lag_total, "days": len(lag_days)},
            ))

    # -- Score and level ------------------------------------------------------
    raw_score = int(round(sum(breakdown.values())))
    score = min(100, raw_score)

    level = "low"
    if score >= cfg.high_risk_threshold:
        level = "high"
    elif score >= cfg.moderate_risk_threshold:
        level = "moderate"

    confidence = confidence_from_samples(len(same_day), cfg.min_samples_for_prediction)

    # -- Peaks and distribution -----------------------------------------------
    peak_minutes = circular_peak_minutes(high_logs, threshold)
    secondary = find_secondary_peaks(
        buckets,
        exclude_hour=peak_minutes // 60 if peak_minutes is not None else None,
        limit=cfg.max_secondary_peaks,
    )

    distribution = [
        HourlyRisk(hour=h, incident_count=int(d["count"]), weighted_score=round(d["weighted_sum"] * 100, 1))
        for h, d in sorted(buckets.items())
    ]

    wilson = wilson_score_interval(len(high_logs), len(same_day), cfg.confidence_level)
    interval = Interval(
        lower=round(wilson.lower * 100, 1),
        upper=round(wilson.upper * 100, 1),
        point=round(wilson.point * 100, 1),
    )

    log.debug(
        "forecast: n=%d threshold=%.1f rate=%.3f raw=%d level=%s",
        len(same_day), threshold, weighted_rate, raw_score, level,
    )

    return RiskForecast(
        level=level,
        score=score,
        contributing_factors=factors,
        predicted_high_arousal_time=predicted_time,
        raw_score=raw_score,
        confidence=confidence,
        sample_size=len(same_day),
        recency_weighted_score=recency_score,
        high_arousal_threshold=threshold,
        peak_time_minutes=peak_minutes,
        secondary_peaks=secondary,
        hourly_risk_distribution=distribution,
        multi_factor_breakdown=breakdown,
        confidence_interval=interval,
    )
