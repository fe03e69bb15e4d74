"""Sample-source capabilities and an in-memory implementation.

The aggregation core depends only on the :class:`SampleSource` protocol.
A platform adapter implements it once; tests and the CLI use
:class:`InMemorySource`, which can also be loaded from a JSONL export.

Range semantics:
    fetch_samples / fetch_intervals -- everything *overlapping* the range
    reduce                           -- only samples fully inside the range
    fetch_workouts                   -- workouts fully inside the range
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Protocol, Sequence

from vitalsync.analytics.calendar import reduce_samples
from vitalsync.errors import PermissionDenied, TransientFetchFailure
from vitalsync.models import (
    IntervalEvent,
    Reducer,
    Sample,
    SleepStage,
    Window,
    Workout,
)

log = logging.getLogger(__name__)


class SampleSource(Protocol):
    """Read-only query capabilities over a health-data store."""

    async def fetch_samples(self, metric_id: str, time_range: Window) -> Sequence[Sample]:
        ...

    async def fetch_intervals(self, metric_id: str, time_range: Window) -> Sequence[IntervalEvent]:
        ...

    async def reduce(self, metric_id: str, time_range: Window, reducer: Reducer) -> float | None:
        ...

    async def fetch_workouts(self, time_range: Window) -> Sequence[Workout]:
        ...


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


class InMemorySource:
    """A :class:`SampleSource` over lists held in memory.

    Args:
        samples: Quantity samples of any metric.
        intervals: Interval events (sleep stages, mindful sessions, ...).
        workouts: Workout records.
        unavailable: Stream ids whose fetches raise TransientFetchFailure.
        denied: Stream ids whose fetches raise PermissionDenied.
    """

    def __init__(
        self,
        samples: Iterable[Sample] = (),
        intervals: Iterable[IntervalEvent] = (),
        workouts: Iterable[Workout] = (),
        unavailable: Iterable[str] = (),
        denied: Iterable[str] = (),
    ) -> None:
        self.samples: list[Sample] = list(samples)
        self.intervals: list[IntervalEvent] = list(intervals)
        self.workouts: list[Workout] = list(workouts)
        self.unavailable = set(unavailable)
        self.denied = set(denied)
        self.calls: list[tuple[str, str]] = []  # (capability, stream id)

    def _check(self, capability: str, stream_id: str) -> None:
        self.calls.append((capability, stream_id))
        if stream_id in self.denied:
            raise PermissionDenied(stream_id)
        if stream_id in self.unavailable:
            raise TransientFetchFailure(stream_id)

    async def fetch_samples(self, metric_id: str, time_range: Window) -> list[Sample]:
        self._check("fetch_samples", metric_id)
        return [
            s for s in self.samples
            if s.metric_id == metric_id and _touches(time_range, s.start, s.end)
        ]

    async def fetch_intervals(self, metric_id: str, time_range: Window) -> list[IntervalEvent]:
        self._check("fetch_intervals", metric_id)
        return [
            e for e in self.intervals
            if e.metric_id == metric_id and _touches(time_range, e.start, e.end)
        ]

    async def reduce(self, metric_id: str, time_range: Window, reducer: Reducer) -> float | None:
        self._check("reduce", metric_id)
        own = [s for s in self.samples if s.metric_id == metric_id]
        return reduce_samples(own, time_range, reducer)

    async def fetch_workouts(self, time_range: Window) -> list[Workout]:
        self._check("fetch_workouts", "workouts")
        return [w for w in self.workouts if time_range.contains(w.start, w.end)]

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    @classmethod
    def from_jsonl(cls, path: str | Path) -> InMemorySource:
        """Load a JSONL export.  Blank and malformed lines are skipped.

        Each line is an object with a ``kind`` of ``sample``, ``interval``
        or ``workout``.
        """
        source = cls()
        with open(path) as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    entry = json.loads(line)
                    source._add_entry(entry)
                except (json.JSONDecodeError, AttributeError, KeyError, TypeError, ValueError) as e:
                    log.warning("line %d: skipping unreadable record (%s)", line_num, e)
        log.info("loaded %d samples, %d intervals, %d workouts from %s",
                 len(source.samples), len(source.intervals), len(source.workouts), path)
        return source

    def _add_entry(self, entry: dict) -> None:
        kind = entry["kind"]
        if kind == "sample":
            start = parse_timestamp(entry["start"])
            end = parse_timestamp(entry["end"]) if entry.get("end") else start
            _check_span(start, end)
            self.samples.append(Sample(
                metric_id=entry["metric"],
                start=start,
                end=end,
                value=float(entry["value"]),
                source_device=entry.get("source"),
            ))
        elif kind == "interval":
            stage = entry.get("stage")
            start, end = parse_timestamp(entry["start"]), parse_timestamp(entry["end"])
            _check_span(start, end)
            self.intervals.append(IntervalEvent(
                start=start,
                end=end,
                stage=SleepStage(stage) if stage else None,
                metric_id=entry.get("metric", "sleep_analysis"),
            ))
        elif kind == "workout":
            start, end = parse_timestamp(entry["start"]), parse_timestamp(entry["end"])
            _check_span(start, end)
            segments = entry.get("route_segments")
            self.workouts.append(Workout(
                type=str(entry["type"]),
                start=start,
                end=end,
                total_distance_m=_opt_float(entry.get("distance_m")),
                active_energy_kcal=_opt_float(entry.get("energy_kcal")),
                route_segments=None if segments is None else int(segments),
            ))
        else:
            raise ValueError(f"unknown kind {kind!r}")


def _touches(window: Window, start: datetime, end: datetime) -> bool:
    """Overlap test that also admits instantaneous samples inside the range."""
    if start == end:
        return window.start <= start < window.end
    return max(window.start, start) < min(window.end, end)


def _opt_float(v) -> float | None:
    return None if v is None else float(v)


def _check_span(start: datetime, end: datetime) -> None:
    if end < start:
        raise ValueError(f"end {end.isoformat()} precedes start {start.isoformat()}")
