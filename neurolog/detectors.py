"""
Data-quality detectors: constant arousal, bad timestamps, missing context,
duration outliers.

Each detector is a pure function over a frame built from the log records and
returns zero or one structured issue. No side effects.
"""

from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence

import pandas as pd

from neurolog.records import coerce_logs
from neurolog.stats import detect_outliers_iqr

CONSTANT_AROUSAL_MIN_LOGS = 10
MISSING_CONTEXT_RATIO = 0.10
DURATION_OUTLIER_MULTIPLIER = 3.0


@dataclass
class DataQualityIssue:
    type: str
    description: str
    affected_ids: List[str] = field(default_factory=list)
    severity: str = "low"  # low | medium | high


def logs_to_frame(logs: Sequence[Any]) -> pd.DataFrame:
    """One row per log: id, instant (NaT when unparseable), context, arousal, duration."""
    records = coerce_logs(logs)
    return pd.DataFrame(
        {
            "id": [r.id for r in records],
            "instant": pd.to_datetime([r.instant for r in records]),
            "context": [r.context for r in records],
            "arousal": [r.arousal for r in records],
            "duration": [r.duration for r in records],
        }
    )


# ---------------------------------------------------------------------------
# Detectors
# ---------------------------------------------------------------------------

def detect_constant_arousal(df: pd.DataFrame) -> Optional[DataQualityIssue]:
    """Every log carries the same arousal value: likely a stuck slider."""
    if len(df) < CONSTANT_AROUSAL_MIN_LOGS or df["arousal"].nunique() != 1:
        return None
    value = int(df["arousal"].iloc[0])
    return DataQualityIssue(
        type="constant_arousal",
        description=f"All {len(df)} logs have arousal {value}",
        affected_ids=df["id"].tolist(),
        severity="high",
    )


def detect_invalid_timestamps(df: pd.DataFrame) -> Optional[DataQualityIssue]:
    bad = df[df["instant"].isna()]
    if bad.empty:
        return None
    return DataQualityIssue(
        type="invalid_timestamp",
        description=f"{len(bad)} logs have timestamps that cannot be parsed and are ignored",
        affected_ids=bad["id"].tolist(),
        severity="high",
    )


def detect_missing_context(df: pd.DataFrame) -> Optional[DataQualityIssue]:
    missing = df[df["context"].isna() | (df["context"].astype(str).str.strip() == "")]
    if df.empty or len(missing) / len(df) <= MISSING_CONTEXT_RATIO:
        return None
    return DataQualityIssue(
        type="missing_context",
        description=f"{len(missing)} of {len(df)} logs have no context",
        affected_ids=missing["id"].tolist(),
        severity="medium",
    )


def detect_duration_outliers(df: pd.DataFrame) -> Optional[DataQualityIssue]:
    result = detect_outliers_iqr(df["duration"].tolist(), DURATION_OUTLIER_MULTIPLIER)
    if not result.indices:
        return None
    return DataQualityIssue(
        type="duration_outlier",
        description=(
            f"{len(result.indices)} logs have unusual durations "
            f"(outside {result.lower_bound:.0f}-{result.upper_bound:.0f} min)"
        ),
        affected_ids=df["id"].iloc[result.indices].tolist(),
        severity="low",
    )


DETECTORS = (
    detect_constant_arousal,
    detect_invalid_timestamps,
    detect_missing_context,
    detect_duration_outliers,
)


def detect_data_quality_issues(logs: Sequence[Any]) -> List[DataQualityIssue]:
    """Run every detector; issues are returned in detector order."""
    df = logs_to_frame(logs)
    if df.empty:
        return []
    return [issue for issue in (d(df) for d in DETECTORS) if issue is not None]
