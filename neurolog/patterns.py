"""
Multi-factor pattern mining: which combinations of context precede high arousal.

Each log is reduced to a small set of categorical factors (time bucket,
energy tier, context, transition, triggers). Every 1-, 2- and 3-factor
combination is counted, tested against the population baseline with a
chi-squared test, corrected for multiple comparisons, and reported with a
Wilson interval on its conditional probability.

Two auxiliary analyses live here as well:
    - energy × time interaction effects (synergy beyond the additive model)
    - strategy-combination effectiveness vs. the best single strategy
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from itertools import chain, combinations, islice
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from neurolog.config import MultiFactorConfig, with_overrides
from neurolog.records import LogEntry, coerce_logs
from neurolog.stats import (
    Interval,
    assign_to_bin,
    benjamini_hochberg_correction,
    calculate_quantile_thresholds,
    chi_squared_p_value,
    wilson_score_interval,
)

log = logging.getLogger(__name__)

ENERGY_TIERS = ("low", "moderate", "high")
HOUR_BUCKETS = ("early_morning", "morning", "midday", "afternoon", "evening", "night")


# ---------------------------------------------------------------------------
# Factors (tagged union, discriminated by `kind`)
# ---------------------------------------------------------------------------

class _FactorKey(ABC):
    """Shared canonical key: kind:operator:value."""

    operator = "equals"

    @property
    @abstractmethod
    def value(self) -> Any:
        """The categorical value this factor matches."""

    @property
    def key(self) -> str:
        value = self.value
        if isinstance(value, bool):
            value = str(value).lower()
        return f"{self.kind}:{self.operator}:{value}"


@dataclass(frozen=True)
class TimeFactor(_FactorKey):
    bucket: str
    kind: str = field(default="time", init=False)

    @property
    def value(self) -> str:
        return self.bucket

    @property
    def label(self) -> str:
        return f"Time: {self.bucket.replace('_', ' ')}"


@dataclass(frozen=True)
class EnergyFactor(_FactorKey):
    tier: str
    kind: str = field(default="energy", init=False)

    @property
    def value(self) -> str:
        return self.tier

    @property
    def label(self) -> str:
        return f"Energy: {self.tier}"


@dataclass(frozen=True)
class ContextFactor(_FactorKey):
    context: str
    kind: str = field(default="context", init=False)

    @property
    def value(self) -> str:
        return self.context

    @property
    def label(self) -> str:
        return f"Context: {self.context}"


@dataclass(frozen=True)
class TransitionFactor(_FactorKey):
    kind: str = field(default="transition", init=False)

    @property
    def value(self) -> bool:
        return True

    @property
    def label(self) -> str:
        return "Transition involved"


@dataclass(frozen=True)
class TriggerFactor(_FactorKey):
    trigger: str
    kind: str = field(default="trigger", init=False)
    operator = "contains"

    @property
    def value(self) -> str:
        return self.trigger

    @property
    def label(self) -> str:
        return f"Trigger: {self.trigger}"


PatternFactor = Union[TimeFactor, EnergyFactor, ContextFactor, TransitionFactor, TriggerFactor]


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass
class ContextRate:
    probability: float
    count: int


@dataclass
class MultiFactorPattern:
    id: str
    factors: List[PatternFactor]
    outcome: str
    occurrence_count: int
    total_occasions: int
    probability: float
    p_value: float
    confidence: str
    description: str
    probability_ci: Interval
    sample_size: int
    adjusted_p_value: Optional[float] = None
    significant_after_correction: Optional[bool] = None
    context_breakdown: Optional[Dict[str, ContextRate]] = None


@dataclass
class InteractionEffect:
    factor1: str
    factor2: str
    individual_effect1: float
    individual_effect2: float
    combined_effect: float
    interaction_strength: float
    synergistic: bool
    description: str


@dataclass
class StrategyComboEffectiveness:
    strategies: List[str]
    usage_count: int
    success_rate: int
    no_change_rate: int
    escalation_rate: int
    avg_arousal_before: float
    compared_to_single_strategy: int


@dataclass
class _ComboStats:
    factors: Tuple[PatternFactor, ...]
    outcome_count: int = 0
    total: int = 0
    home_outcome: int = 0
    home_total: int = 0
    school_outcome: int = 0
    school_total: int = 0


# ---------------------------------------------------------------------------
# Factor extraction
# ---------------------------------------------------------------------------

def get_hour_bucket(hour: int) -> str:
    if 5 <= hour < 8:
        return "early_morning"
    if 8 <= hour < 11:
        return "morning"
    if 11 <= hour < 14:
        return "midday"
    if 14 <= hour < 17:
        return "afternoon"
    if 17 <= hour < 21:
        return "evening"
    return "night"


def calculate_adaptive_thresholds(logs: Sequence[LogEntry]) -> Dict[str, List[float]]:
    """Tertile cut points for energy and arousal over the full dataset."""
    return {
        "energy": calculate_quantile_thresholds([l.energy for l in logs], 3),
        "arousal": calculate_quantile_thresholds([l.arousal for l in logs], 3),
    }


def energy_tier(energy: int, cfg: MultiFactorConfig, thresholds: Optional[List[float]] = None) -> str:
    if cfg.enable_adaptive_discretization and thresholds:
        return ENERGY_TIERS[min(assign_to_bin(energy, thresholds), 2)]
    if energy < cfg.energy_low_threshold:
        return "low"
    if energy > cfg.energy_high_threshold:
        return "high"
    return "moderate"


def has_transition(entry: LogEntry, cfg: MultiFactorConfig) -> bool:
    return any(t in cfg.transition_triggers for t in entry.context_triggers)


def extract_factors(
    entry: LogEntry,
    cfg: MultiFactorConfig,
    energy_thresholds: Optional[List[float]] = None,
) -> List[PatternFactor]:
    """
    Categorical factors for one log, deduplicated and sorted by key.

    Logs with an unparseable timestamp get no time factor.
    """
    found: List[PatternFactor] = []
    if entry.hour_of_day is not None:
        found.append(TimeFactor(get_hour_bucket(entry.hour_of_day)))
    found.append(EnergyFactor(energy_tier(entry.energy, cfg, energy_thresholds)))
    found.append(ContextFactor(entry.context))
    if has_transition(entry, cfg):
        found.append(TransitionFactor())

    limit = cfg.max_triggers_per_kind
    found.extend(TriggerFactor(t) for t in entry.sensory_triggers[:limit])
    other_context = [t for t in entry.context_triggers if t not in cfg.transition_triggers]
    found.extend(TriggerFactor(t) for t in other_context[:limit])

    unique = {f.key: f for f in found}
    return [unique[k] for k in sorted(unique)]


def generate_factor_combinations(
    base: Sequence[PatternFactor],
    max_factors: int,
    max_combinations: int,
) -> List[Tuple[PatternFactor, ...]]:
    """
    1..max_factors combinations of the (already sorted) base factors.

    Enumeration runs smallest-first and stops after `max_combinations`;
    anything past the cap is dropped. Because `base` is sorted by key the
    truncation is independent of input ordering.
    """
    sizes = range(1, min(max_factors, len(base)) + 1)
    every = chain.from_iterable(combinations(base, k) for k in sizes)
    return list(islice(every, max_combinations))


def combination_key(factors: Sequence[PatternFactor]) -> str:
    return "|".join(sorted(f.key for f in factors))


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------

def chi_squared_vs_baseline(observed: float, expected: float) -> Tuple[float, float]:
    """One-cell goodness-of-fit: (O - E)² / E with df = 1."""
    if expected <= 0:
        return 0.0, 1.0
    chi_sq = (observed - expected) ** 2 / expected
    return chi_sq, chi_squared_p_value(chi_sq, 1)


def pattern_confidence(p_value: float, sample_size: int, alpha: float) -> str:
    if sample_size < 5 or p_value > alpha:
        return "low"
    if p_value < alpha / 10 and sample_size >= 10:
        return "high"
    return "medium"


def _pct(x: float) -> int:
    return int(round(x * 100))


# ---------------------------------------------------------------------------
# Main analysis
# ---------------------------------------------------------------------------

def analyze_multi_factor_patterns(
    logs: Sequence[Any],
    cfg: Optional[MultiFactorConfig] = None,
    **overrides,
) -> List[MultiFactorPattern]:
    """Significant factor combinations preceding high arousal, strongest first."""
    cfg = with_overrides(cfg or MultiFactorConfig(), **overrides)
    records = coerce_logs(logs)

    if len(records) < cfg.min_logs_for_analysis:
        return []

    thresholds = (
        calculate_adaptive_thresholds(records)["energy"]
        if cfg.enable_adaptive_discretization else None
    )

    stats: Dict[str, _ComboStats] = {}
    truncated = 0
    for entry in records:
        high = entry.arousal >= cfg.high_arousal_threshold
        base = extract_factors(entry, cfg, thresholds)
        combos = generate_factor_combinations(
            base, cfg.max_factors_per_pattern, cfg.max_combinations_per_log
        )
        if len(combos) == cfg.max_combinations_per_log:
            truncated += 1

        for combo in combos:
            key = combination_key(combo)
            s = stats.get(key)
            if s is None:
                s = stats[key] = _ComboStats(factors=combo)
            s.total += 1
            s.outcome_count += int(high)
            if entry.context == "home":
                s.home_total += 1
                s.home_outcome += int(high)
            elif entry.context == "school":
                s.school_total += 1
                s.school_outcome += int(high)

    if truncated:
        log.debug("patterns: combination cap reached on %d logs", truncated)

    baseline_rate = sum(1 for l in records if l.arousal >= cfg.high_arousal_threshold) / len(records)

    # -- Candidates -----------------------------------------------------------
    candidates = []
    for key, s in stats.items():
        if s.total < cfg.min_occurrences_for_pattern:
            continue
        probability = s.outcome_count / s.total
        if probability < cfg.min_confidence_threshold:
            continue
        _, p_value = chi_squared_vs_baseline(s.outcome_count, s.total * baseline_rate)
        ci = wilson_score_interval(s.outcome_count, s.total, 0.95)
        candidates.append((key, s, probability, p_value, ci))

    log.debug("patterns: %d combinations, %d candidates", len(stats), len(candidates))

    correction = None
    if cfg.enable_multiple_comparison_correction and candidates:
        correction = benjamini_hochberg_correction([c[3] for c in candidates], cfg.fdr_level)

    # -- Significant patterns -------------------------------------------------
    patterns: List[MultiFactorPattern] = []
    for idx, (key, s, probability, p_value, ci) in enumerate(candidates):
        adjusted = None
        significant_after = None
        if correction is not None:
            adjusted = correction.adjusted_p_values[idx]
            significant_after = correction.significant[idx]
            significant = significant_after
        else:
            significant = p_value <= cfg.significance_level
        if not significant:
            continue

        labels = " + ".join(f.label for f in s.factors)
        description = (
            f"When {labels}, there is a {_pct(probability)}% "
            f"({_pct(ci.lower)}-{_pct(ci.upper)}%) chance of high arousal "
            f"(vs {_pct(baseline_rate)}% normally)"
        )

        breakdown = None
        if cfg.enable_stratified_analysis:
            breakdown = {}
            if s.home_total >= cfg.min_stratum_count:
                breakdown["home"] = ContextRate(s.home_outcome / s.home_total, s.home_total)
            if s.school_total >= cfg.min_stratum_count:
                breakdown["school"] = ContextRate(s.school_outcome / s.school_total, s.school_total)

        patterns.append(MultiFactorPattern(
            id=key,
            factors=list(s.factors),
            outcome="high_arousal",
            occurrence_count=s.outcome_count,
            total_occasions=s.total,
            probability=probability,
            p_value=p_value,
            confidence=pattern_confidence(p_value, s.total, cfg.significance_level),
            description=description,
            probability_ci=Interval(lower=ci.lower, upper=ci.upper, point=ci.point),
            sample_size=s.total,
            adjusted_p_value=adjusted,
            significant_after_correction=significant_after,
            context_breakdown=breakdown,
        ))

    patterns.sort(key=lambda p: (-p.probability, -p.total_occasions, p.id))
    return patterns[: cfg.max_patterns]


# ---------------------------------------------------------------------------
# Interaction effects
# ---------------------------------------------------------------------------

def analyze_interaction_effects(
    logs: Sequence[Any],
    cfg: Optional[MultiFactorConfig] = None,
    **overrides,
) -> List[InteractionEffect]:
    """
    Energy tier × time bucket interactions.

    interaction = combined elevation - (energy elevation + time elevation),
    each elevation measured against the baseline high-arousal rate. Only
    |interaction| above the configured threshold is reported.
    """
    cfg = with_overrides(cfg or MultiFactorConfig(), **overrides)
    records = coerce_logs(logs)

    if not cfg.enable_interaction_testing or len(records) < cfg.min_logs_for_analysis:
        return []

    thresholds = (
        calculate_adaptive_thresholds(records)["energy"]
        if cfg.enable_adaptive_discretization else None
    )
    rows = [
        (
            energy_tier(l.energy, cfg, thresholds),
            get_hour_bucket(l.hour_of_day) if l.hour_of_day is not None else None,
            l.arousal >= cfg.high_arousal_threshold,
        )
        for l in records
    ]
    baseline = sum(1 for r in rows if r[2]) / len(rows)

    def elevation(subset) -> float:
        if not subset:
            return 0.0
        return sum(1 for r in subset if r[2]) / len(subset) - baseline

    results: List[InteractionEffect] = []
    for tier in ENERGY_TIERS:
        with_energy = [r for r in rows if r[0] == tier]
        for bucket in HOUR_BUCKETS:
            both = [r for r in with_energy if r[1] == bucket]
            if len(both) < cfg.min_occurrences_for_pattern:
                continue
            energy_effect = elevation(with_energy)
            time_effect = elevation([r for r in rows if r[1] == bucket])
            combined = elevation(both)
            strength = combined - (energy_effect + time_effect)
            if abs(strength) <= cfg.interaction_threshold:
                continue

            label = bucket.replace("_", " ")
            if strength > 0:
                text = f"{tier} energy + {label} has a stronger effect than expected ({_pct(strength)}% extra risk)"
            else:
                text = f"{tier} energy + {label} has a weaker effect than expected ({_pct(abs(strength))}% less risk)"

            results.append(InteractionEffect(
                factor1=f"Energy: {tier}",
                factor2=f"Time: {label}",
                individual_effect1=energy_effect,
                individual_effect2=time_effect,
                combined_effect=combined,
                interaction_strength=strength,
                synergistic=strength > 0,
                description=text,
            ))

    results.sort(key=lambda r: abs(r.interaction_strength), reverse=True)
    return results[: cfg.max_interactions]


# ---------------------------------------------------------------------------
# Strategy combinations
# ---------------------------------------------------------------------------

def analyze_strategy_combinations(
    logs: Sequence[Any],
    cfg: Optional[MultiFactorConfig] = None,
    **overrides,
) -> List[StrategyComboEffectiveness]:
    """
    Helped-rate of each multi-strategy combination vs. its best single member.

    A log without a recorded outcome counts as "no change".
    """
    cfg = with_overrides(cfg or MultiFactorConfig(), **overrides)
    records = coerce_logs(logs)

    combos: Dict[Tuple[str, ...], Dict[str, float]] = {}
    singles: Dict[str, Dict[str, int]] = {}

    for entry in records:
        if not entry.strategies:
            continue
        strategies = tuple(sorted(set(entry.strategies)))
        helped = entry.strategy_effectiveness == "helped"

        c = combos.setdefault(strategies, {"helped": 0, "no_change": 0, "escalated": 0,
                                           "arousal": 0.0, "count": 0})
        c["count"] += 1
        c["arousal"] += entry.arousal
        if helped:
            c["helped"] += 1
        elif entry.strategy_effectiveness == "escalated":
            c["escalated"] += 1
        else:
            c["no_change"] += 1

        for strategy in strategies:
            single = singles.setdefault(strategy, {"success": 0, "total": 0})
            single["total"] += 1
            single["success"] += int(helped)

    results: List[StrategyComboEffectiveness] = []
    for strategies, c in combos.items():
        if c["count"] < cfg.min_occurrences_for_pattern or len(strategies) < 2:
            continue

        success_rate = c["helped"] / c["count"]
        best_single = max(
            (
                singles[s]["success"] / singles[s]["total"]
                for s in strategies
                if singles[s]["total"] >= cfg.min_single_strategy_uses
            ),
            default=0.0,
        )
        improvement = (success_rate - best_single) / best_single * 100 if best_single > 0 else 0.0

        results.append(StrategyComboEffectiveness(
            strategies=list(strategies),
            usage_count=int(c["count"]),
            success_rate=_pct(success_rate),
            no_change_rate=_pct(c["no_change"] / c["count"]),
            escalation_rate=_pct(c["escalated"] / c["count"]),
            avg_arousal_before=round(c["arousal"] / c["count"], 1),
            compared_to_single_strategy=int(round(improvement)),
        ))

    results.sort(key=lambda r: (-r.success_rate, -r.usage_count))
    return results[: cfg.max_strategy_combos]


def get_pattern_summary(patterns: Sequence[MultiFactorPattern], limit: int = 3) -> str:
    """Short numbered summary of the strongest patterns."""
    if not patterns:
        return "Not enough data to detect patterns yet. Keep logging for better insight."
    lines = []
    for i, p in enumerate(patterns[:limit], start=1):
        factors = " + ".join(f.label for f in p.factors)
        lines.append(f"{i}. {factors}: {_pct(p.probability)}% risk")
    return "\n".join(lines)
