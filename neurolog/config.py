"""
Centralized configuration for all thresholds, weights, and window parameters.

Every tunable constant lives here. Each analysis takes its own frozen struct;
callers override individual fields with `with_overrides`, which always
returns a new copy and never touches the defaults.
"""

from dataclasses import dataclass, field, replace
from typing import Optional, Tuple, TypeVar


T = TypeVar("T")


def with_overrides(cfg: T, **overrides) -> T:
    """Return a copy of `cfg` with the given fields replaced."""
    if not overrides:
        return cfg
    return replace(cfg, **overrides)


# ---------------------------------------------------------------------------
# Risk forecast
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RiskForecastConfig:
    """Thresholds and weights for the near-term risk forecast."""

    # History window and same-weekday sample floor
    history_days: int = 30
    min_samples_for_prediction: int = 5

    # Risk-zone detection: hours ahead of "now" and incidents per hour
    min_incidents_for_pattern: int = 2
    hours_ahead_window: int = 4
    risk_zone_boost: float = 30.0

    # Score → level mapping (score is 0-100)
    high_risk_threshold: float = 60.0
    moderate_risk_threshold: float = 30.0

    # weight = 2 ** (-age_days / half_life)
    recency_decay_half_life: float = 7.0

    # arousal >= threshold counts as high arousal
    high_arousal_threshold: int = 7

    # Personalized threshold: percentile of the user's own windowed arousal
    use_personalized_threshold: bool = False
    personalized_percentile: float = 0.75
    personalized_min_samples: int = 20
    personalized_floor: int = 5

    # Weighted rate above which the calm/elevated label flips
    elevated_rate_threshold: float = 0.3

    # Optional independent factor scores
    enable_multi_factor_scoring: bool = False
    low_energy_threshold: int = 3
    low_energy_weight: float = 15.0
    strategy_failure_weight: float = 10.0
    context_skew_weight: float = 10.0

    # Optional cross-day lag term
    enable_lag_effects: bool = False
    lag_days: int = 3
    lag_weight: float = 20.0
    max_lag_contribution: float = 15.0

    max_secondary_peaks: int = 3
    confidence_level: float = 0.95

    def __post_init__(self):
        if self.moderate_risk_threshold > self.high_risk_threshold:
            raise ValueError(
                f"moderate_risk_threshold ({self.moderate_risk_threshold}) must not exceed "
                f"high_risk_threshold ({self.high_risk_threshold})"
            )
        if self.recency_decay_half_life <= 0:
            raise ValueError(f"recency_decay_half_life must be positive, got {self.recency_decay_half_life}")


# ---------------------------------------------------------------------------
# Multi-factor pattern mining
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MultiFactorConfig:
    """Parameters for combination mining, significance testing and sub-analyses."""

    min_logs_for_analysis: int = 10
    min_occurrences_for_pattern: int = 3
    min_confidence_threshold: float = 0.5
    significance_level: float = 0.05
    max_factors_per_pattern: int = 3

    # Hard bound on combinations enumerated per log. Enumeration stops once
    # reached, so larger combinations are silently dropped.
    max_combinations_per_log: int = 150
    max_patterns: int = 10

    high_arousal_threshold: int = 7

    # Fixed energy tiers: < low is "low", > high is "high"
    energy_low_threshold: int = 4
    energy_high_threshold: int = 7
    enable_adaptive_discretization: bool = False

    # Context triggers that mark a transition
    transition_triggers: Tuple[str, ...] = ("Transition", "Overgang")
    max_triggers_per_kind: int = 2

    enable_multiple_comparison_correction: bool = True
    fdr_level: float = 0.05

    enable_stratified_analysis: bool = True
    min_stratum_count: int = 2

    enable_interaction_testing: bool = True
    interaction_threshold: float = 0.15
    max_interactions: int = 5

    min_single_strategy_uses: int = 3
    max_strategy_combos: int = 8

    def __post_init__(self):
        if self.energy_low_threshold > self.energy_high_threshold:
            raise ValueError(
                f"energy_low_threshold ({self.energy_low_threshold}) must not exceed "
                f"energy_high_threshold ({self.energy_high_threshold})"
            )


# ---------------------------------------------------------------------------
# Recovery analysis
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RecoveryConfig:
    """Recovery detection thresholds, vulnerability window and factor analysis."""

    # Fixed "back to baseline" thresholds
    normal_arousal_threshold: int = 4
    normal_energy_threshold: int = 5
    # Minutes after crisis end to scan for a recovered log
    max_recovery_window: int = 240

    use_personalized_recovery_thresholds: bool = True
    personalized_min_logs: int = 20

    # Vulnerability window (minutes)
    vulnerability_window_minutes: int = 60
    enable_data_driven_vulnerability: bool = True
    target_re_escalation_probability: float = 0.10
    max_gap_minutes: float = 480.0
    min_gaps_for_window: int = 3

    min_recovery_data_points: int = 3
    min_factor_sample_size: int = 2
    factor_margin_minutes: float = 5.0

    use_statistical_trend_test: bool = True
    half_split_band: float = 0.15

    bootstrap_iterations: int = 500
    confidence_level: float = 0.95
    random_seed: Optional[int] = None

    def __post_init__(self):
        if not 0 < self.target_re_escalation_probability < 1:
            raise ValueError(
                "target_re_escalation_probability must be in (0, 1), "
                f"got {self.target_re_escalation_probability}"
            )


# ---------------------------------------------------------------------------
# Home vs. school comparison
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ContextComparisonConfig:
    """Data floor, list lengths and difference thresholds for context comparison."""

    # Both contexts need at least this many logs
    min_logs_per_context: int = 5
    top_triggers_limit: int = 5
    top_strategies_limit: int = 5

    # Percentage points: trigger share for a context-specific trigger, and
    # success-rate gap for a strategy that works better in one context
    significant_difference_threshold: float = 20.0
    strong_strategy_difference: float = 30.0

    # Crisis-rate ratio for a medium / high finding
    crisis_ratio_medium: float = 2.0
    crisis_ratio_high: float = 3.0

    significance_level: float = 0.05
    strong_significance_level: float = 0.01
    # Minimum mean gap (scale points) for medium / high arousal or energy findings
    medium_mean_difference: float = 1.0
    high_mean_difference: float = 1.5

    def __post_init__(self):
        if self.min_logs_per_context < 2:
            raise ValueError(f"min_logs_per_context must be at least 2, got {self.min_logs_per_context}")
        if self.crisis_ratio_medium > self.crisis_ratio_high:
            raise ValueError(
                f"crisis_ratio_medium ({self.crisis_ratio_medium}) must not exceed "
                f"crisis_ratio_high ({self.crisis_ratio_high})"
            )


# ---------------------------------------------------------------------------
# Top-level config aggregate
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class NeurologConfig:
    """Complete engine configuration. Pass to the pipeline to override defaults."""

    risk: RiskForecastConfig = field(default_factory=RiskForecastConfig)
    patterns: MultiFactorConfig = field(default_factory=MultiFactorConfig)
    recovery: RecoveryConfig = field(default_factory=RecoveryConfig)
    context: ContextComparisonConfig = field(default_factory=ContextComparisonConfig)
