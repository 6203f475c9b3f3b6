"""
Home vs. school comparison.

Summarizes each context separately (averages, top triggers, strategy success,
arousal by hour, crisis rate) and lists the differences worth a caregiver's
attention:
    - arousal / energy gaps that pass a Welch t-test
    - crisis rates at least twice as high in one context
    - frequent triggers that only show up in one context
    - strategies whose success rate differs between contexts
"""

import logging
from collections import Counter
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Union

import numpy as np
import pandas as pd

from neurolog.config import ContextComparisonConfig, with_overrides
from neurolog.records import coerce_crises, coerce_logs, timed
from neurolog.stats import welch_t_test

log = logging.getLogger(__name__)

HOME = "home"
SCHOOL = "school"


@dataclass
class TriggerStat:
    trigger: str
    count: int
    percentage: int


@dataclass
class StrategyStat:
    strategy: str
    count: int
    success_rate: int


@dataclass
class HourlyArousal:
    hour: int
    avg_arousal: float
    log_count: int


@dataclass
class ContextMetrics:
    log_count: int
    crisis_count: int
    avg_arousal: float
    avg_energy: float
    avg_valence: float
    top_triggers: List[TriggerStat]
    top_strategies: List[StrategyStat]
    peak_arousal_times: List[HourlyArousal]
    crisis_frequency_per_day: float


@dataclass
class ContextDifference:
    metric: str  # avg_arousal | avg_energy | crisis_frequency | unique_triggers | strategy_effectiveness
    home_value: Union[float, str]
    school_value: Union[float, str]
    significance: str  # high | medium | low
    insight: str


@dataclass(frozen=True)
class DateRange:
    start: str
    end: str


@dataclass
class ContextComparison:
    home: ContextMetrics
    school: ContextMetrics
    significant_differences: List[ContextDifference]
    date_range: Optional[DateRange] = None


def _empty_metrics(crisis_count: int) -> ContextMetrics:
    return ContextMetrics(
        log_count=0,
        crisis_count=crisis_count,
        avg_arousal=0.0,
        avg_energy=0.0,
        avg_valence=0.0,
        top_triggers=[],
        top_strategies=[],
        peak_arousal_times=[],
        crisis_frequency_per_day=0.0,
    )


def _where(home_is_greater: bool) -> str:
    return "at home" if home_is_greater else "at school"


# ---------------------------------------------------------------------------
# Per-context metrics
# ---------------------------------------------------------------------------

def calculate_context_metrics(
    logs: Sequence[Any],
    crises: Sequence[Any],
    context: str,
    cfg: Optional[ContextComparisonConfig] = None,
    **overrides,
) -> ContextMetrics:
    """
    Metrics for one context. Hourly arousal and the number of logged days
    use valid-timestamp logs only; everything else uses every log.
    """
    cfg = with_overrides(cfg or ContextComparisonConfig(), **overrides)
    context_logs = [l for l in coerce_logs(logs) if l.context == context]
    crisis_count = sum(1 for c in coerce_crises(crises) if c.context == context)

    if not context_logs:
        return _empty_metrics(crisis_count)

    n = len(context_logs)

    trigger_counts = Counter(t for l in context_logs for t in (*l.sensory_triggers, *l.context_triggers))
    top_triggers = [
        TriggerStat(trigger=t, count=c, percentage=int(round(c / n * 100)))
        for t, c in trigger_counts.most_common(cfg.top_triggers_limit)
    ]

    uses: Counter = Counter()
    helped: Counter = Counter()
    for entry in context_logs:
        for strategy in entry.strategies:
            uses[strategy] += 1
            if entry.strategy_effectiveness == "helped":
                helped[strategy] += 1
    top_strategies = [
        StrategyStat(strategy=s, count=c, success_rate=int(round(helped[s] / c * 100)))
        for s, c in uses.most_common(cfg.top_strategies_limit)
    ]

    dated = timed(context_logs)
    peak_times: List[HourlyArousal] = []
    days = 0
    if dated:
        frame = pd.DataFrame({
            "instant": pd.to_datetime([l.instant for l in dated]),
            "hour": [l.hour_of_day for l in dated],
            "arousal": [l.arousal for l in dated],
        })
        hourly = frame.groupby("hour")["arousal"].agg(["mean", "count"])
        peak_times = [
            HourlyArousal(hour=int(hour), avg_arousal=round(float(row["mean"]), 1), log_count=int(row["count"]))
            for hour, row in hourly.iterrows()
        ]
        peak_times.sort(key=lambda h: (-h.avg_arousal, h.hour))
        days = int(frame["instant"].dt.normalize().nunique())

    return ContextMetrics(
        log_count=n,
        crisis_count=crisis_count,
        avg_arousal=round(float(np.mean([l.arousal for l in context_logs])), 1),
        avg_energy=round(float(np.mean([l.energy for l in context_logs])), 1),
        avg_valence=round(float(np.mean([l.valence for l in context_logs])), 1),
        top_triggers=top_triggers,
        top_strategies=top_strategies,
        peak_arousal_times=peak_times,
        crisis_frequency_per_day=round(crisis_count / days, 2) if days else 0.0,
    )


# ---------------------------------------------------------------------------
# Differences
# ---------------------------------------------------------------------------

def _significance(p_value: float, difference: float, cfg: ContextComparisonConfig) -> str:
    if p_value < cfg.strong_significance_level and difference >= cfg.high_mean_difference:
        return "high"
    if p_value < cfg.significance_level and difference >= cfg.medium_mean_difference:
        return "medium"
    return "low"


def _mean_difference(
    metric: str,
    label: str,
    home_values: List[float],
    school_values: List[float],
    home_mean: float,
    school_mean: float,
    cfg: ContextComparisonConfig,
    higher: bool,
) -> Optional[ContextDifference]:
    test = welch_t_test(home_values, school_values, cfg.significance_level)
    if not test.significant:
        return None
    diff = abs(home_mean - school_mean)
    home_wins = home_mean > school_mean if higher else home_mean < school_mean
    direction = "higher" if higher else "lower"
    return ContextDifference(
        metric=metric,
        home_value=home_mean,
        school_value=school_mean,
        significance=_significance(test.p_value, diff, cfg),
        insight=f"{label} is significantly {direction} {_where(home_wins)} ({diff:.1f} difference)",
    )


def find_significant_differences(
    home_logs: Sequence[Any],
    school_logs: Sequence[Any],
    home: ContextMetrics,
    school: ContextMetrics,
    cfg: Optional[ContextComparisonConfig] = None,
    **overrides,
) -> List[ContextDifference]:
    cfg = with_overrides(cfg or ContextComparisonConfig(), **overrides)
    home_logs = coerce_logs(home_logs)
    school_logs = coerce_logs(school_logs)
    differences: List[ContextDifference] = []

    arousal = _mean_difference(
        "avg_arousal", "Arousal",
        [l.arousal for l in home_logs], [l.arousal for l in school_logs],
        home.avg_arousal, school.avg_arousal, cfg, higher=True,
    )
    energy = _mean_difference(
        "avg_energy", "Energy",
        [l.energy for l in home_logs], [l.energy for l in school_logs],
        home.avg_energy, school.avg_energy, cfg, higher=False,
    )
    differences.extend(d for d in (arousal, energy) if d is not None)

    home_rate, school_rate = home.crisis_frequency_per_day, school.crisis_frequency_per_day
    if home_rate > 0 and school_rate > 0:
        ratio = max(home_rate, school_rate) / min(home_rate, school_rate)
        if ratio >= cfg.crisis_ratio_medium:
            differences.append(ContextDifference(
                metric="crisis_frequency",
                home_value=home_rate,
                school_value=school_rate,
                significance="high" if ratio >= cfg.crisis_ratio_high else "medium",
                insight=f"Crises are {ratio:.1f}x more frequent {_where(home_rate > school_rate)}",
            ))

    home_triggers = {t.trigger for t in home.top_triggers}
    school_triggers = {t.trigger for t in school.top_triggers}
    threshold = cfg.significant_difference_threshold
    home_only = [t.trigger for t in home.top_triggers
                 if t.trigger not in school_triggers and t.percentage >= threshold]
    school_only = [t.trigger for t in school.top_triggers
                   if t.trigger not in home_triggers and t.percentage >= threshold]
    if home_only:
        differences.append(ContextDifference(
            metric="unique_triggers",
            home_value=", ".join(home_only),
            school_value="-",
            significance="medium",
            insight=f"Triggers mostly seen at home: {', '.join(home_only)}",
        ))
    if school_only:
        differences.append(ContextDifference(
            metric="unique_triggers",
            home_value="-",
            school_value=", ".join(school_only),
            significance="medium",
            insight=f"Triggers mostly seen at school: {', '.join(school_only)}",
        ))

    school_strategies = {s.strategy: s for s in school.top_strategies}
    for home_strategy in home.top_strategies:
        school_strategy = school_strategies.get(home_strategy.strategy)
        if school_strategy is None:
            continue
        diff = abs(home_strategy.success_rate - school_strategy.success_rate)
        if diff < threshold:
            continue
        better = _where(home_strategy.success_rate > school_strategy.success_rate)
        differences.append(ContextDifference(
            metric="strategy_effectiveness",
            home_value=f"{home_strategy.success_rate}%",
            school_value=f"{school_strategy.success_rate}%",
            significance="high" if diff >= cfg.strong_strategy_difference else "medium",
            insight=f"{home_strategy.strategy} works better {better} ({diff}% difference)",
        ))

    return differences


# ---------------------------------------------------------------------------
# Main comparison
# ---------------------------------------------------------------------------

def calculate_context_comparison(
    logs: Sequence[Any],
    crises: Sequence[Any] = (),
    cfg: Optional[ContextComparisonConfig] = None,
    **overrides,
) -> Optional[ContextComparison]:
    """
    Compare home and school. None unless both contexts have at least
    `min_logs_per_context` logs.
    """
    cfg = with_overrides(cfg or ContextComparisonConfig(), **overrides)
    records = coerce_logs(logs)
    crisis_records = coerce_crises(crises)

    home_logs = [l for l in records if l.context == HOME]
    school_logs = [l for l in records if l.context == SCHOOL]
    if len(home_logs) < cfg.min_logs_per_context or len(school_logs) < cfg.min_logs_per_context:
        log.debug(
            "context: %d home / %d school logs (< %d), skipping comparison",
            len(home_logs), len(school_logs), cfg.min_logs_per_context,
        )
        return None

    home = calculate_context_metrics(records, crisis_records, HOME, cfg)
    school = calculate_context_metrics(records, crisis_records, SCHOOL, cfg)
    differences = find_significant_differences(home_logs, school_logs, home, school, cfg)

    dated = timed(records)
    date_range = (
        DateRange(start=dated[0].instant.isoformat(), end=dated[-1].instant.isoformat())
        if dated else None
    )
    log.debug("context: %d differences", len(differences))
    return ContextComparison(
        home=home,
        school=school,
        significant_differences=differences,
        date_range=date_range,
    )


def get_comparison_summary(comparison: Optional[ContextComparison]) -> str:
    """Plain-language recap: every high finding and up to three medium ones."""
    if comparison is None:
        return "Not enough data in both contexts to compare. Log both at home and at school."

    differences = comparison.significant_differences
    if not differences:
        return "No significant differences between home and school. Patterns look similar in both."

    lines = [f"Found {len(differences)} differences:"]
    high = [d for d in differences if d.significance == "high"]
    medium = [d for d in differences if d.significance == "medium"]
    if high:
        lines.append("")
        lines.append("Key findings:")
        lines.extend(f"• {d.insight}" for d in high)
    if medium:
        lines.append("")
        lines.append("Other differences:")
        lines.extend(f"• {d.insight}" for d in medium[:3])
    return "\n".join(lines)
