"""
Post-crisis recovery analysis.

Estimates how long recovery takes after a crisis, how long the child stays
vulnerable to a second crisis, which factors speed recovery up or slow it
down, and how each crisis type is trending.

Recovery time per crisis is the caregiver-entered value when present,
otherwise the first subsequent log back at baseline (low arousal, restored
energy). Crises without either are left out of the aggregates.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from neurolog.config import RecoveryConfig, with_overrides
from neurolog.records import CRISIS_TYPES, CrisisEvent, LogEntry, coerce_crises, coerce_logs, timed
from neurolog.stats import Interval, bootstrap_mean_ci, mann_kendall_test, percentile_value

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecoveryThresholds:
    arousal_threshold: float
    energy_threshold: float


@dataclass
class RecoveryIndicator:
    crisis_id: str
    recovery_confidence: str  # confirmed | estimated | unknown
    detected_recovery_time: Optional[int] = None
    manual_recovery_time: Optional[float] = None
    first_normal_log_id: Optional[str] = None


@dataclass
class VulnerabilityWindow:
    duration_minutes: float
    elevated_risk_period: int
    recommended_buffer: int
    re_escalation_rate: int
    is_data_driven: bool
    duration_ci: Optional[Interval] = None
    safe_time_minutes: Optional[float] = None


@dataclass
class RecoveryFactor:
    factor: str
    factor_type: str  # strategy | context | time
    avg_recovery_with_factor: int
    avg_recovery_without_factor: int
    impact_minutes: int
    sample_size: int


@dataclass
class RecoveryStats:
    avg_minutes: int
    min_minutes: int
    max_minutes: int
    median_minutes: int
    count: int
    trend: str  # improving | worsening | stable
    avg_ci: Optional[Interval] = None
    trend_p_value: Optional[float] = None
    trend_tau: Optional[float] = None


@dataclass
class RecoveryAnalysis:
    avg_recovery_time: int
    recovery_trend: str
    factors_accelerating_recovery: List[RecoveryFactor]
    factors_delaying_recovery: List[RecoveryFactor]
    vulnerability_window: VulnerabilityWindow
    recovery_by_type: Dict[str, RecoveryStats]
    total_crises_analyzed: int
    crises_with_recovery_data: int
    avg_recovery_time_ci: Optional[Interval] = None
    trend_statistics: Optional[Dict[str, float]] = None
    personalized_thresholds: Optional[RecoveryThresholds] = None


# ---------------------------------------------------------------------------
# Thresholds and detection
# ---------------------------------------------------------------------------

def calculate_personalized_recovery_thresholds(
    logs: Sequence[Any],
    cfg: Optional[RecoveryConfig] = None,
) -> Optional[RecoveryThresholds]:
    """
    Baseline from the child's own history: 25th-percentile arousal and
    75th-percentile energy. None until enough logs exist.
    """
    cfg = cfg or RecoveryConfig()
    records = coerce_logs(logs)
    if len(records) < cfg.personalized_min_logs:
        return None
    return RecoveryThresholds(
        arousal_threshold=percentile_value([l.arousal for l in records], 0.25),
        energy_threshold=percentile_value([l.energy for l in records], 0.75),
    )


def _thresholds(cfg: RecoveryConfig, personalized: Optional[RecoveryThresholds]) -> RecoveryThresholds:
    if cfg.use_personalized_recovery_thresholds and personalized is not None:
        return personalized
    return RecoveryThresholds(cfg.normal_arousal_threshold, cfg.normal_energy_threshold)


def detect_recovery_from_logs(
    crisis: CrisisEvent,
    logs: Sequence[LogEntry],
    cfg: Optional[RecoveryConfig] = None,
    personalized: Optional[RecoveryThresholds] = None,
) -> RecoveryIndicator:
    """
    First log after the crisis ends that is back at baseline.

    Scans logs in (crisis end, crisis end + max_recovery_window]. A crisis
    with an unparseable timestamp, or with no qualifying log, is "unknown"
    (or "confirmed" when a manual recovery time exists); an estimate is
    never invented.
    """
    cfg = cfg or RecoveryConfig()
    manual = crisis.recovery_time_minutes
    fallback = RecoveryIndicator(
        crisis_id=crisis.id,
        recovery_confidence="confirmed" if manual is not None else "unknown",
        manual_recovery_time=manual,
    )

    end = crisis.end_instant
    if end is None:
        return fallback

    limits = _thresholds(cfg, personalized)
    window_end = end + timedelta(minutes=cfg.max_recovery_window)
    subsequent = [l for l in timed(logs) if end < l.instant <= window_end]

    for entry in subsequent:
        if entry.arousal <= limits.arousal_threshold and entry.energy >= limits.energy_threshold:
            minutes = int(round((entry.instant - end).total_seconds() / 60.0))
            return RecoveryIndicator(
                crisis_id=crisis.id,
                recovery_confidence="confirmed" if manual is not None else "estimated",
                detected_recovery_time=minutes,
                manual_recovery_time=manual,
                first_normal_log_id=entry.id,
            )

    return fallback


def effective_recovery_time(indicator: RecoveryIndicator) -> Optional[float]:
    """Manual entry wins over detection; None when neither exists."""
    if indicator.manual_recovery_time is not None:
        return indicator.manual_recovery_time
    if indicator.detected_recovery_time is not None:
        return float(indicator.detected_recovery_time)
    return None


def collect_recovery_times(
    crises: Sequence[CrisisEvent],
    logs: Sequence[LogEntry],
    cfg: RecoveryConfig,
    personalized: Optional[RecoveryThresholds],
) -> List[Tuple[CrisisEvent, float]]:
    """(crisis, positive recovery minutes), valid-timestamp crises first in time order."""
    ordered = timed(crises) + [c for c in crises if c.instant is None]
    out = []
    for crisis in ordered:
        minutes = effective_recovery_time(detect_recovery_from_logs(crisis, logs, cfg, personalized))
        if minutes is not None and minutes > 0:
            out.append((crisis, minutes))
    return out


# ---------------------------------------------------------------------------
# Trend
# ---------------------------------------------------------------------------

def half_split_trend(values: Sequence[float], band: float) -> str:
    """Compare first-half and second-half means; lower recovery time is improving."""
    half = len(values) // 2
    if half == 0:
        return "stable"
    first = float(np.mean(values[:half]))
    second = float(np.mean(values[-half:]))
    margin = first * band
    if second < first - margin:
        return "improving"
    if second > first + margin:
        return "worsening"
    return "stable"


def _mk_label(trend: str) -> str:
    # Falling recovery time is an improvement
    return {"decreasing": "improving", "increasing": "worsening"}.get(trend, "stable")


# ---------------------------------------------------------------------------
# Vulnerability window
# ---------------------------------------------------------------------------

def _default_window(cfg: RecoveryConfig) -> VulnerabilityWindow:
    w = cfg.vulnerability_window_minutes
    return VulnerabilityWindow(
        duration_minutes=w,
        elevated_risk_period=w,
        recommended_buffer=w + 15,
        re_escalation_rate=0,
        is_data_driven=False,
    )


def crisis_gaps(crises: Sequence[CrisisEvent], max_gap_minutes: float) -> List[float]:
    """Minutes from each crisis end to the next start, chronologically."""
    ordered = timed(crises)
    gaps = []
    for prev, cur in zip(ordered, ordered[1:]):
        gap = (cur.instant - prev.end_instant).total_seconds() / 60.0
        if 0 < gap < max_gap_minutes:
            gaps.append(gap)
    return gaps


def calculate_vulnerability_window(
    crises: Sequence[Any],
    cfg: Optional[RecoveryConfig] = None,
    **overrides,
) -> VulnerabilityWindow:
    """
    Time after a crisis during which another crisis is disproportionately likely.

    Data-driven mode:
        safe_time = gap at the (1 - target re-escalation probability) percentile
        duration  = median of gaps at or below safe_time (bootstrap CI)
    Fallback mode:
        duration  = mean of gaps up to twice the configured default window

    Re-escalation rate is the percent of gaps inside the window.
    """
    cfg = with_overrides(cfg or RecoveryConfig(), **overrides)
    records = coerce_crises(crises)

    if len(records) < 2:
        return _default_window(cfg)

    gaps = crisis_gaps(records, cfg.max_gap_minutes)
    if len(gaps) < cfg.min_gaps_for_window:
        log.debug("vulnerability: %d gaps (< %d), using default window", len(gaps), cfg.min_gaps_for_window)
        return _default_window(cfg)

    safe_time = None
    duration_ci = None
    if cfg.enable_data_driven_vulnerability:
        ordered = sorted(gaps)
        safe_time = percentile_value(ordered, 1 - cfg.target_re_escalation_probability)
        quick = [g for g in ordered if g <= safe_time]
        duration = quick[len(quick) // 2] if quick else float(cfg.vulnerability_window_minutes)
        ci = bootstrap_mean_ci(
            quick or [float(cfg.vulnerability_window_minutes)],
            cfg.confidence_level,
            cfg.bootstrap_iterations,
            seed=cfg.random_seed,
        )
        duration_ci = Interval(lower=round(ci.lower), upper=round(ci.upper), point=round(ci.point))
    else:
        quick = [g for g in gaps if g <= cfg.vulnerability_window_minutes * 2]
        duration = float(round(np.mean(quick))) if quick else float(cfg.vulnerability_window_minutes)

    re_escalations = sum(1 for g in gaps if g <= duration)
    buffer = round(safe_time) if safe_time else round(duration * 1.5)

    return VulnerabilityWindow(
        duration_minutes=duration,
        elevated_risk_period=int(round(duration)),
        recommended_buffer=int(buffer),
        re_escalation_rate=int(round(re_escalations / len(gaps) * 100)),
        is_data_driven=cfg.enable_data_driven_vulnerability,
        duration_ci=duration_ci,
        safe_time_minutes=safe_time,
    )


# ---------------------------------------------------------------------------
# Factor impact
# ---------------------------------------------------------------------------

def _compare(
    name: str,
    factor_type: str,
    with_factor: List[float],
    without_factor: List[float],
    min_size: int,
) -> Optional[RecoveryFactor]:
    if len(with_factor) < min_size or len(without_factor) < min_size:
        return None
    avg_with = float(np.mean(with_factor))
    avg_without = float(np.mean(without_factor))
    return RecoveryFactor(
        factor=name,
        factor_type=factor_type,
        avg_recovery_with_factor=int(round(avg_with)),
        avg_recovery_without_factor=int(round(avg_without)),
        impact_minutes=int(round(avg_with - avg_without)),
        sample_size=len(with_factor),
    )


def analyze_recovery_factors(
    recoveries: Sequence[Tuple[CrisisEvent, float]],
    cfg: RecoveryConfig,
) -> Tuple[List[RecoveryFactor], List[RecoveryFactor]]:
    """
    Split recoveries by strategy, context (home vs school) and time of day
    (morning/midday vs afternoon/evening), compare mean recovery time.

    impact < -margin → accelerator, impact > +margin → delayer.
    """
    if len(recoveries) < cfg.min_recovery_data_points:
        return [], []

    factors: List[RecoveryFactor] = []
    min_size = cfg.min_factor_sample_size

    strategies = sorted({s for crisis, _ in recoveries for s in crisis.strategies_used})
    for strategy in strategies:
        with_f = [t for c, t in recoveries if strategy in c.strategies_used]
        without_f = [t for c, t in recoveries if strategy not in c.strategies_used]
        found = _compare(strategy, "strategy", with_f, without_f, min_size)
        if found:
            factors.append(found)

    home = [t for c, t in recoveries if c.context == "home"]
    school = [t for c, t in recoveries if c.context == "school"]
    found = _compare("home", "context", home, school, min_size)
    if found:
        factors.append(found)

    early = [t for c, t in recoveries if c.time_of_day in ("morning", "midday")]
    late = [t for c, t in recoveries if c.time_of_day in ("afternoon", "evening")]
    found = _compare("morning", "time", early, late, min_size)
    if found:
        factors.append(found)

    margin = cfg.factor_margin_minutes
    accelerators = sorted((f for f in factors if f.impact_minutes < -margin), key=lambda f: f.impact_minutes)
    delayers = sorted((f for f in factors if f.impact_minutes > margin), key=lambda f: -f.impact_minutes)
    return accelerators, delayers


# ---------------------------------------------------------------------------
# Per-type statistics
# ---------------------------------------------------------------------------

def summarize_recovery_times(
    times: Sequence[float],
    cfg: RecoveryConfig,
    chronological: Optional[Sequence[float]] = None,
) -> RecoveryStats:
    """
    Mean/median/min/max, trend and bootstrap interval for one series.

    The trend runs on `chronological` (recoveries of crises with a valid
    timestamp, oldest first) when given; everything else uses all `times`.
    """
    series = list(times) if chronological is None else list(chronological)
    ordered = sorted(times)
    p_value = None
    tau = None
    if cfg.use_statistical_trend_test and len(series) >= 4:
        mk = mann_kendall_test(series)
        trend, p_value, tau = _mk_label(mk.trend), mk.p_value, mk.tau
    else:
        trend = half_split_trend(series, cfg.half_split_band)

    ci = bootstrap_mean_ci(times, cfg.confidence_level, cfg.bootstrap_iterations, seed=cfg.random_seed)
    return RecoveryStats(
        avg_minutes=int(round(float(np.mean(times)))),
        min_minutes=int(round(ordered[0])),
        max_minutes=int(round(ordered[-1])),
        median_minutes=int(round(float(np.median(ordered)))),
        count=len(times),
        trend=trend,
        avg_ci=Interval(lower=round(ci.lower), upper=round(ci.upper), point=round(ci.point)),
        trend_p_value=p_value,
        trend_tau=tau,
    )


def calculate_recovery_by_type(
    recoveries: Sequence[Tuple[CrisisEvent, float]],
    cfg: RecoveryConfig,
) -> Dict[str, RecoveryStats]:
    result: Dict[str, RecoveryStats] = {}
    for crisis_type in CRISIS_TYPES:
        of_type = [(c, t) for c, t in recoveries if c.type == crisis_type]
        if len(of_type) >= 2:
            times = [t for _, t in of_type]
            chronological = [t for c, t in of_type if c.instant is not None]
            result[crisis_type] = summarize_recovery_times(times, cfg, chronological)
    return result


# ---------------------------------------------------------------------------
# Main analysis
# ---------------------------------------------------------------------------

def analyze_recovery_patterns(
    crises: Sequence[Any],
    logs: Sequence[Any],
    cfg: Optional[RecoveryConfig] = None,
    **overrides,
) -> RecoveryAnalysis:
    """
    Full recovery analysis.

    Trend tests run on recoveries of valid-timestamp crises in time order;
    crises with unparseable timestamps but a manual recovery time still
    count toward averages and factor comparisons.
    """
    cfg = with_overrides(cfg or RecoveryConfig(), **overrides)
    crisis_records = coerce_crises(crises)
    log_records = coerce_logs(logs)

    personalized = (
        calculate_personalized_recovery_thresholds(log_records, cfg)
        if cfg.use_personalized_recovery_thresholds else None
    )

    recoveries = collect_recovery_times(crisis_records, log_records, cfg, personalized)
    times = [t for _, t in recoveries]
    ordered_times = [t for c, t in recoveries if c.instant is not None]

    avg = int(round(float(np.mean(times)))) if times else 0

    avg_ci = None
    if len(times) >= 3:
        ci = bootstrap_mean_ci(times, cfg.confidence_level, cfg.bootstrap_iterations, seed=cfg.random_seed)
        avg_ci = Interval(lower=round(ci.lower), upper=round(ci.upper), point=round(ci.point))

    trend = "stable"
    trend_stats = None
    if len(ordered_times) >= 4 and cfg.use_statistical_trend_test:
        mk = mann_kendall_test(ordered_times)
        trend = _mk_label(mk.trend)
        trend_stats = {"p_value": mk.p_value, "tau": mk.tau}
    elif len(ordered_times) >= 6:
        trend = half_split_trend(ordered_times, cfg.half_split_band)

    accelerators, delayers = analyze_recovery_factors(recoveries, cfg)

    log.debug(
        "recovery: %d crises, %d with recovery data, trend=%s",
        len(crisis_records), len(recoveries), trend,
    )

    return RecoveryAnalysis(
        avg_recovery_time=avg,
        recovery_trend=trend,
        factors_accelerating_recovery=accelerators,
        factors_delaying_recovery=delayers,
        vulnerability_window=calculate_vulnerability_window(crisis_records, cfg),
        recovery_by_type=calculate_recovery_by_type(recoveries, cfg),
        total_crises_analyzed=len(crisis_records),
        crises_with_recovery_data=len(recoveries),
        avg_recovery_time_ci=avg_ci,
        trend_statistics=trend_stats,
        personalized_thresholds=personalized,
    )


def get_recovery_summary(analysis: RecoveryAnalysis) -> str:
    """Plain-language recap for caregivers."""
    if analysis.crises_with_recovery_data == 0:
        return "No recovery data yet. Log recovery times after crises to unlock insight."

    lines = [f"Average recovery time: {analysis.avg_recovery_time} minutes"]
    if analysis.recovery_trend == "improving":
        lines.append("Trend: recovery is getting faster over time")
    elif analysis.recovery_trend == "worsening":
        lines.append("Trend: recovery is taking longer than before")

    if analysis.factors_accelerating_recovery:
        top = analysis.factors_accelerating_recovery[0]
        lines.append(f"Faster recovery with: {top.factor} ({abs(top.impact_minutes)} min faster)")

    window = analysis.vulnerability_window
    if window.re_escalation_rate > 20:
        lines.append(
            f"Warning: {window.re_escalation_rate}% of crises are followed by another "
            f"within {window.elevated_risk_period} minutes."
        )
        lines.append(f"Recommended rest period: {window.recommended_buffer} minutes after a crisis.")
    return "\n".join(lines)
