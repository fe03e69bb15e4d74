"""Shared fixtures and helpers for the vitalsync test suite."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from vitalsync.config import Settings
from vitalsync.models import IntervalEvent, Sample, SleepStage, Workout
from vitalsync.persistence import JsonStore


UTC = timezone.utc


# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------


def dt(day: int, hour: int = 0, minute: int = 0, second: int = 0, month: int = 3) -> datetime:
    """A UTC instant in 2024 (March by default)."""
    return datetime(2024, month, day, hour, minute, second, tzinfo=UTC)


def minutes(n: float) -> timedelta:
    return timedelta(minutes=n)


# ---------------------------------------------------------------------------
# Record builders
# ---------------------------------------------------------------------------


def sample(
    metric: str,
    start: datetime,
    end: datetime | None = None,
    value: float = 1.0,
    source: str | None = None,
) -> Sample:
    """Build a Sample; instantaneous when *end* is omitted."""
    return Sample(metric_id=metric, start=start, end=end or start, value=value, source_device=source)


def stage(start: datetime, end: datetime, s: SleepStage = SleepStage.CORE) -> IntervalEvent:
    """Build a sleep-analysis interval."""
    return IntervalEvent(start=start, end=end, stage=s)


def mindful(start: datetime, end: datetime) -> IntervalEvent:
    return IntervalEvent(start=start, end=end, metric_id="mindful_session")


def workout(
    start: datetime,
    end: datetime,
    kind: str = "running",
    distance_m: float | None = None,
    energy_kcal: float | None = None,
) -> Workout:
    return Workout(type=kind, start=start, end=end,
                   total_distance_m=distance_m, active_energy_kcal=energy_kcal)


def night_fixture() -> tuple[list[IntervalEvent], list[Sample]]:
    """A staged night [Mar 9 23:50, Mar 10 06:10) plus two HRV samples.

    The sleep blocks are [23:50, 02:00) and [02:03, 06:10): a 3-minute gap
    that merges.  HRV is 45 ms over [00:00, 01:00) and 55 ms over
    [01:00, 07:00), so the overlap-weighted mean over the night is
    (45*3600 + 55*18600) / 22200.
    """
    events = [
        stage(dt(9, 23, 50), dt(10, 1, 0), SleepStage.CORE),
        stage(dt(10, 1, 0), dt(10, 2, 0), SleepStage.DEEP),
        stage(dt(10, 2, 0), dt(10, 2, 3), SleepStage.AWAKE),
        stage(dt(10, 2, 3), dt(10, 4, 0), SleepStage.REM),
        stage(dt(10, 4, 0), dt(10, 6, 10), SleepStage.CORE),
    ]
    hrv = [
        sample("hrv_sdnn", dt(10, 0, 0), dt(10, 1, 0), 45.0),
        sample("hrv_sdnn", dt(10, 1, 0), dt(10, 7, 0), 55.0),
    ]
    return events, hrv


NIGHT_HRV = (45.0 * 3600 + 55.0 * 18600) / 22200


# ---------------------------------------------------------------------------
# JSONL export helpers
# ---------------------------------------------------------------------------


def write_jsonl(path: Path, entries: list[dict]) -> Path:
    """Write a list of dicts as JSONL to the given path."""
    with open(path, "w") as f:
        for entry in entries:
            f.write(json.dumps(entry) + "\n")
    return path


def sample_entry(metric: str, start: str, end: str, value: float, source: str | None = None) -> dict:
    entry = {"kind": "sample", "metric": metric, "start": start, "end": end, "value": value}
    if source is not None:
        entry["source"] = source
    return entry


def interval_entry(start: str, end: str, stage_name: str | None = "core",
                   metric: str = "sleep_analysis") -> dict:
    return {"kind": "interval", "metric": metric, "start": start, "end": end, "stage": stage_name}


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(state_dir=str(tmp_path / "state"), timezone="UTC")


@pytest.fixture
def store(settings: Settings) -> JsonStore:
    return JsonStore(settings.state_dir)
