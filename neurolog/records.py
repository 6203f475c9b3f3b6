"""
Record types: mood logs and crisis events.

Both are frozen value objects. Derived time fields (instant, weekday,
time-of-day bucket, hour) are computed once at construction. A record whose
timestamp cannot be parsed keeps all derived fields as None and is skipped
by every time-ordered computation.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple

import pandas as pd


DAY_NAMES = (
    "monday", "tuesday", "wednesday", "thursday",
    "friday", "saturday", "sunday",
)

CRISIS_TYPES = ("meltdown", "shutdown", "anxiety", "sensory_overload", "other")


# ---------------------------------------------------------------------------
# Timestamp helpers
# ---------------------------------------------------------------------------

def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse an ISO string / datetime into a naive local datetime.

    Returns None for anything that does not resolve to a valid instant.
    Timezone-aware values are converted to local wall-clock time.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        ts = pd.Timestamp(value)
    else:
        try:
            ts = pd.to_datetime(value, errors="coerce")
        except (TypeError, ValueError):
            return None
    if ts is None or pd.isna(ts):
        return None
    dt = ts.to_pydatetime()
    if dt.tzinfo is not None:
        dt = dt.astimezone().replace(tzinfo=None)
    return dt


def get_time_of_day(hour: int) -> str:
    """Coarse time-of-day bucket used by the app."""
    if 5 <= hour < 10:
        return "morning"
    if 10 <= hour < 14:
        return "midday"
    if 14 <= hour < 18:
        return "afternoon"
    if 18 <= hour < 22:
        return "evening"
    return "night"


def _tags(value: Optional[Iterable[str]]) -> Tuple[str, ...]:
    if not value:
        return ()
    return tuple(str(v) for v in value)


def _pick(data: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LogEntry:
    """One mood/arousal observation."""

    id: str
    timestamp: str
    context: str = "home"
    arousal: int = 5
    valence: int = 5
    energy: int = 5
    sensory_triggers: Tuple[str, ...] = ()
    context_triggers: Tuple[str, ...] = ()
    strategies: Tuple[str, ...] = ()
    strategy_effectiveness: Optional[str] = None
    duration: float = 0.0
    note: str = ""

    instant: Optional[datetime] = field(init=False, default=None, compare=False)
    day_of_week: Optional[str] = field(init=False, default=None, compare=False)
    time_of_day: Optional[str] = field(init=False, default=None, compare=False)
    hour_of_day: Optional[int] = field(init=False, default=None, compare=False)

    def __post_init__(self):
        _derive_time_fields(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LogEntry":
        """Build from an export record (camelCase or snake_case keys)."""
        return cls(
            id=str(_pick(data, "id", default="")),
            timestamp=_pick(data, "timestamp", default=""),
            context=_pick(data, "context", default="home"),
            arousal=int(_pick(data, "arousal", default=5)),
            valence=int(_pick(data, "valence", default=5)),
            energy=int(_pick(data, "energy", default=5)),
            sensory_triggers=_tags(_pick(data, "sensoryTriggers", "sensory_triggers")),
            context_triggers=_tags(_pick(data, "contextTriggers", "context_triggers")),
            strategies=_tags(_pick(data, "strategies")),
            strategy_effectiveness=_pick(
                data, "strategyEffectiveness", "strategy_effectiveness"
            ),
            duration=float(_pick(data, "duration", default=0.0)),
            note=_pick(data, "note", default=""),
        )


@dataclass(frozen=True)
class CrisisEvent:
    """One discrete elevated-severity episode."""

    id: str
    timestamp: str
    context: str = "home"
    type: str = "other"
    duration_seconds: float = 0.0
    peak_intensity: int = 5
    resolution: str = "other"
    warning_signs: Tuple[str, ...] = ()
    sensory_triggers: Tuple[str, ...] = ()
    context_triggers: Tuple[str, ...] = ()
    strategies_used: Tuple[str, ...] = ()
    recovery_time_minutes: Optional[float] = None
    notes: str = ""

    instant: Optional[datetime] = field(init=False, default=None, compare=False)
    day_of_week: Optional[str] = field(init=False, default=None, compare=False)
    time_of_day: Optional[str] = field(init=False, default=None, compare=False)
    hour_of_day: Optional[int] = field(init=False, default=None, compare=False)

    def __post_init__(self):
        _derive_time_fields(self)

    @property
    def end_instant(self) -> Optional[datetime]:
        if self.instant is None:
            return None
        return self.instant + timedelta(seconds=self.duration_seconds)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CrisisEvent":
        """Build from an export record (camelCase or snake_case keys)."""
        recovery = _pick(data, "recoveryTimeMinutes", "recovery_time_minutes")
        return cls(
            id=str(_pick(data, "id", default="")),
            timestamp=_pick(data, "timestamp", default=""),
            context=_pick(data, "context", default="home"),
            type=_pick(data, "type", default="other"),
            duration_seconds=float(_pick(data, "durationSeconds", "duration_seconds", default=0.0)),
            peak_intensity=int(_pick(data, "peakIntensity", "peak_intensity", default=5)),
            resolution=_pick(data, "resolution", default="other"),
            warning_signs=_tags(_pick(data, "warningSignsObserved", "warning_signs")),
            sensory_triggers=_tags(_pick(data, "sensoryTriggers", "sensory_triggers")),
            context_triggers=_tags(_pick(data, "contextTriggers", "context_triggers")),
            strategies_used=_tags(_pick(data, "strategiesUsed", "strategies_used")),
            recovery_time_minutes=float(recovery) if recovery is not None else None,
            notes=_pick(data, "notes", default=""),
        )


def _derive_time_fields(record) -> None:
    instant = parse_timestamp(record.timestamp)
    object.__setattr__(record, "instant", instant)
    if instant is None:
        return
    object.__setattr__(record, "day_of_week", DAY_NAMES[instant.weekday()])
    object.__setattr__(record, "hour_of_day", instant.hour)
    object.__setattr__(record, "time_of_day", get_time_of_day(instant.hour))


# ---------------------------------------------------------------------------
# Collection helpers
# ---------------------------------------------------------------------------

def coerce_logs(items: Iterable[Any]) -> List[LogEntry]:
    """Accept LogEntry instances or plain dicts."""
    return [i if isinstance(i, LogEntry) else LogEntry.from_dict(i) for i in items]


def coerce_crises(items: Iterable[Any]) -> List[CrisisEvent]:
    """Accept CrisisEvent instances or plain dicts."""
    return [i if isinstance(i, CrisisEvent) else CrisisEvent.from_dict(i) for i in items]


def timed(records: Iterable[Any]) -> list:
    """Records with a valid instant, sorted chronologically."""
    return sorted((r for r in records if r.instant is not None), key=lambda r: r.instant)
