"""
NEUROLOG — Behavioral Analytics Core

Stateless analytics over mood/arousal logs and crisis events recorded by
caregivers. Produces a near-term risk forecast, significant multi-factor
patterns, strategy-combination effectiveness, post-crisis recovery insight and a
home vs. school comparison.

Architecture:
    config      — All thresholds and feature toggles (frozen dataclasses)
    records     — LogEntry / CrisisEvent value types and timestamp parsing
    stats       — Statistical primitives (p-values, intervals, trend, FDR)
    forecast    — Risk forecast engine
    patterns    — Multi-factor pattern miner
    recovery    — Recovery pattern analyzer
    context     — Home vs. school comparison
    detectors   — Data-quality checks
    pipeline    — Orchestration: load → analyze → report

Public API:
    analyze(filepath)             → CLI mode
    analyze_data(logs, crises)    → backend mode
    generate_report(result)       → formatted report
"""

from neurolog.context import calculate_context_comparison
from neurolog.forecast import calculate_risk_forecast
from neurolog.patterns import (
    analyze_interaction_effects,
    analyze_multi_factor_patterns,
    analyze_strategy_combinations,
)
from neurolog.pipeline import analyze, analyze_data, generate_report, load_data
from neurolog.records import CrisisEvent, LogEntry
from neurolog.recovery import analyze_recovery_patterns

__version__ = "1.0.0"

__all__ = [
    "CrisisEvent",
    "LogEntry",
    "analyze",
    "analyze_data",
    "analyze_interaction_effects",
    "analyze_multi_factor_patterns",
    "analyze_recovery_patterns",
    "analyze_strategy_combinations",
    "calculate_context_comparison",
    "calculate_risk_forecast",
    "generate_report",
    "load_data",
]
