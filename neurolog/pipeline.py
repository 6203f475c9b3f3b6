"""
Pipeline orchestration: load → coerce → forecast / mine / recover / compare / check → report.

This is the only module with I/O (file loading, report formatting).
All analytical logic is delegated to forecast, patterns, recovery, context
and detectors.

Entry points:
    - analyze(filepath) for CLI usage
    - analyze_data(logs, crises) for backend integration
    - generate_report(result) for the text report
"""

import json
import logging
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from neurolog.config import NeurologConfig
from neurolog.context import calculate_context_comparison
from neurolog.detectors import detect_data_quality_issues
from neurolog.forecast import calculate_risk_forecast
from neurolog.patterns import (
    analyze_interaction_effects,
    analyze_multi_factor_patterns,
    analyze_strategy_combinations,
)
from neurolog.records import coerce_crises, coerce_logs, parse_timestamp
from neurolog.recovery import analyze_recovery_patterns

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data loading (CLI mode only)
# ---------------------------------------------------------------------------

REQUIRED_LOG_KEYS = {"id", "timestamp", "arousal"}


def _validate_logs(logs: Sequence[Dict]) -> None:
    for i, record in enumerate(logs):
        if not isinstance(record, dict):
            raise ValueError(f"Log record {i} is not an object")
        missing = REQUIRED_LOG_KEYS - set(record)
        if missing:
            raise ValueError(f"Log record {i} is missing required keys: {sorted(missing)}")


def load_data(filepath: Union[str, Path]) -> Tuple[List[Dict], List[Dict]]:
    """
    Load and validate an export file.

    Accepts either {"logs": [...], "crisisEvents": [...]} or a bare list of
    log records. Returns (logs, crises) as lists of dicts.
    """
    path = Path(filepath)
    if not path.exists():
        raise FileNotFoundError(f"Data file not found: {path}")

    with open(path, "r") as f:
        data = json.load(f)

    if not data:
        raise ValueError("Data file is empty")

    if isinstance(data, list):
        logs, crises = data, []
    elif isinstance(data, dict):
        logs = data.get("logs") or []
        crises = data.get("crisisEvents") or data.get("crisis_events") or []
    else:
        raise ValueError("Data file must contain an object or a list of logs")

    if not logs and not crises:
        raise ValueError("Data file contains no logs or crisis events")

    _validate_logs(logs)
    log.info("Loaded %d logs and %d crisis events from %s", len(logs), len(crises), path)
    return logs, crises


# ---------------------------------------------------------------------------
# Core analysis (no file I/O)
# ---------------------------------------------------------------------------

def analyze_data(
    logs: Sequence[Any],
    crises: Sequence[Any] = (),
    now: Optional[Union[str, datetime]] = None,
    cfg: Optional[NeurologConfig] = None,
) -> Dict:
    """
    Backend integration entry point.

    Accepts records or plain dicts. Returns a JSON-friendly dict.
    """
    if cfg is None:
        cfg = NeurologConfig()

    log_records = coerce_logs(logs)
    crisis_records = coerce_crises(crises)
    now = parse_timestamp(now) or datetime.now()

    skipped = sum(1 for r in log_records if r.instant is None)
    if skipped:
        log.debug("%d logs have unparseable timestamps", skipped)

    # Stage 1: Forecast
    forecast = calculate_risk_forecast(log_records, now=now, cfg=cfg.risk)

    # Stage 2: Pattern mining
    patterns = analyze_multi_factor_patterns(log_records, cfg=cfg.patterns)
    interactions = analyze_interaction_effects(log_records, cfg=cfg.patterns)
    combos = analyze_strategy_combinations(log_records, cfg=cfg.patterns)

    # Stage 3: Recovery
    recovery = analyze_recovery_patterns(crisis_records, log_records, cfg=cfg.recovery)

    # Stage 4: Home vs. school
    comparison = calculate_context_comparison(log_records, crisis_records, cfg=cfg.context)

    # Stage 5: Data quality
    issues = detect_data_quality_issues(log_records)

    log.info(
        "Analysis done: risk=%s, %d patterns, %d crises analyzed, %d data issues",
        forecast.level, len(patterns), recovery.total_crises_analyzed, len(issues),
    )

    return {
        "generated_at": now.isoformat(),
        "log_count": len(log_records),
        "crisis_count": len(crisis_records),
        "risk_forecast": asdict(forecast),
        "patterns": [asdict(p) for p in patterns],
        "interactions": [asdict(i) for i in interactions],
        "strategy_combos": [asdict(c) for c in combos],
        "recovery": asdict(recovery),
        "context_comparison": asdict(comparison) if comparison is not None else None,
        "data_quality": [asdict(i) for i in issues],
    }


# ---------------------------------------------------------------------------
# Public Entry Points
# ---------------------------------------------------------------------------

def analyze(
    filepath: Union[str, Path],
    now: Optional[Union[str, datetime]] = None,
    cfg: NeurologConfig | None = None,
) -> Dict:
    """
    CLI-compatible entry point.
    Reads JSON file and runs analysis.
    """
    logs, crises = load_data(filepath)
    return analyze_data(logs, crises, now=now, cfg=cfg)


# ---------------------------------------------------------------------------
# Report generation
# ---------------------------------------------------------------------------

def _factor_label(factor: Dict) -> str:
    kind = factor["kind"]
    if kind == "transition":
        return "transition"
    value = next(v for k, v in factor.items() if k != "kind")
    return f"{kind}: {value}"


def generate_report(result: Dict) -> str:
    """Format the analysis result as a human-readable text report."""
    risk = result["risk_forecast"]
    recovery = result["recovery"]
    window = recovery["vulnerability_window"]

    lines = [
        "NEUROLOG BEHAVIOR REPORT",
        "=" * 58,
        "",
        f"  Generated           : {result['generated_at']}",
        f"  Logs / Crises       : {result['log_count']} / {result['crisis_count']}",
        f"  Risk Level          : {risk['level'].upper()} (score {risk['score']})",
    ]
    if risk.get("confidence"):
        lines.append(f"  Forecast Confidence : {risk['confidence']} (n={risk['sample_size']})")
    if risk.get("predicted_high_arousal_time"):
        lines.append(f"  Predicted Peak      : {risk['predicted_high_arousal_time']}")
    for factor in risk["contributing_factors"]:
        lines.append(f"    - {factor['key']}")

    lines.append("")
    lines.append("  Patterns:")
    if not result["patterns"]:
        lines.append("    (none detected)")
    for p in result["patterns"]:
        factors = " + ".join(_factor_label(f) for f in p["factors"])
        lines.append(
            f"    {factors:40s} : {round(p['probability'] * 100):3d}% "
            f"({p['occurrence_count']}/{p['total_occasions']}, p={p['p_value']:.3f})"
        )

    if result["strategy_combos"]:
        lines.append("")
        lines.append("  Strategy Combinations:")
        for c in result["strategy_combos"]:
            lines.append(
                f"    {' + '.join(c['strategies']):40s} : {c['success_rate']:3d}% helped "
                f"({c['compared_to_single_strategy']:+d} vs best single)"
            )

    lines += [
        "",
        f"  Avg Recovery        : {recovery['avg_recovery_time']} min ({recovery['recovery_trend']})",
        f"  Vulnerability       : {window['elevated_risk_period']} min, "
        f"{window['re_escalation_rate']}% re-escalation, buffer {window['recommended_buffer']} min",
    ]

    comparison = result["context_comparison"]
    if comparison is not None:
        home, school = comparison["home"], comparison["school"]
        lines.append("")
        lines.append("  Home vs. School:")
        lines.append(
            f"    Avg Arousal         : {home['avg_arousal']:.1f} / {school['avg_arousal']:.1f}"
        )
        lines.append(
            f"    Crises per Day      : {home['crisis_frequency_per_day']:.2f} / "
            f"{school['crisis_frequency_per_day']:.2f}"
        )
        for d in comparison["significant_differences"]:
            lines.append(f"    [{d['significance']}] {d['insight']}")

    if result["data_quality"]:
        lines.append("")
        lines.append("  Data Quality:")
        for issue in result["data_quality"]:
            lines.append(f"    [{issue['severity']}] {issue['description']}")

    lines.append("")
    lines.append("=" * 58)
    return "\n".join(lines)
