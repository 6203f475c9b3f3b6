"""
Shared test configuration.

Adds the project root to sys.path so `import neurolog` works without an
install, and provides record builders used across the test modules.
"""

import os
import sys
from datetime import datetime, timedelta

import pytest

_project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from neurolog.records import CrisisEvent, LogEntry  # noqa: E402

# A Wednesday
NOW = datetime(2024, 3, 13, 15, 0)


def _iso(when: datetime) -> str:
    return when.isoformat()


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def make_log():
    counter = {"n": 0}

    def _make(when, arousal=5, energy=5, context="home", **kwargs):
        counter["n"] += 1
        timestamp = _iso(when) if isinstance(when, datetime) else when
        return LogEntry(
            id=kwargs.pop("id", f"log-{counter['n']}"),
            timestamp=timestamp,
            arousal=arousal,
            energy=energy,
            context=context,
            **kwargs,
        )

    return _make


@pytest.fixture
def make_crisis():
    counter = {"n": 0}

    def _make(when, duration_seconds=600, **kwargs):
        counter["n"] += 1
        timestamp = _iso(when) if isinstance(when, datetime) else when
        return CrisisEvent(
            id=kwargs.pop("id", f"crisis-{counter['n']}"),
            timestamp=timestamp,
            duration_seconds=duration_seconds,
            **kwargs,
        )

    return _make


@pytest.fixture
def weekly_logs(make_log):
    """Four weeks of Wednesday logs: calm at 14:00, elevated at 16:00."""
    logs = []
    for week in range(1, 5):
        day = NOW - timedelta(weeks=week)
        logs.append(make_log(day.replace(hour=14), arousal=3))
        logs.append(make_log(day.replace(hour=16), arousal=8))
    return logs
