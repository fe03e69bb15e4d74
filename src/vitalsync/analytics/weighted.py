"""Duration-weighted statistics over a resolved window.

Each sample contributes in proportion to the wall-clock time it overlaps
the window, never in proportion to how many samples there are.  A 3-hour
summary sample and a 10-minute precise one therefore weigh 18:1 only if
both overlap the window fully.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np

from vitalsync.models import IntervalEvent, Sample, SleepStage, Window


@dataclass
class WeightedResult:
    """Weighted average plus provenance."""

    value: float | None
    sample_count: int  # samples with positive overlap
    overlap_sec: float

    def __repr__(self) -> str:
        val = f"{self.value:.2f}" if self.value is not None else "None"
        return f"WeightedResult(value={val}, n={self.sample_count}, overlap={self.overlap_sec:.0f}s)"


@dataclass
class StageDurations:
    """Minutes per sleep stage inside a window (None = zero time recorded)."""

    awake_min: float | None = None
    core_min: float | None = None
    deep_min: float | None = None
    rem_min: float | None = None
    sample_count: int = 0


# Stage → StageDurations attribute.  Unspecified "asleep" is reported as core.
_STAGE_FIELDS = {
    SleepStage.AWAKE: "awake_min",
    SleepStage.CORE: "core_min",
    SleepStage.ASLEEP: "core_min",
    SleepStage.DEEP: "deep_min",
    SleepStage.REM: "rem_min",
}


def time_weighted_average(samples: Sequence[Sample], window: Window) -> WeightedResult:
    """Overlap-weighted mean of *samples* over *window*.

    Samples with zero overlap (including instantaneous samples) are
    discarded.  Returns a null value when nothing overlaps.
    """
    pairs = [(s.value, window.overlap_sec(s.start, s.end)) for s in samples]
    pairs = [(v, w) for v, w in pairs if w > 0]
    if not pairs:
        return WeightedResult(value=None, sample_count=0, overlap_sec=0.0)

    arr = np.asarray(pairs, dtype=np.float64)
    values, weights = arr[:, 0], arr[:, 1]
    total = float(np.sum(weights))
    # Normalise first so a lone sample reproduces its value exactly
    avg = float(np.dot(values, weights / total))
    return WeightedResult(value=avg, sample_count=len(pairs), overlap_sec=total)


def stage_durations(events: Sequence[IntervalEvent], window: Window) -> StageDurations:
    """Accumulate per-stage overlap with *window*, in minutes.

    Every event that overlaps the window counts toward ``sample_count``,
    including stages that are not reported (e.g. in-bed).
    """
    seconds = {name: 0.0 for name in set(_STAGE_FIELDS.values())}
    count = 0
    for e in events:
        overlap = window.overlap_sec(e.start, e.end)
        if overlap <= 0:
            continue
        count += 1
        name = _STAGE_FIELDS.get(e.stage)
        if name is not None:
            seconds[name] += overlap

    def to_min(sec: float) -> float | None:
        return sec / 60.0 if sec > 0 else None

    return StageDurations(
        awake_min=to_min(seconds["awake_min"]),
        core_min=to_min(seconds["core_min"]),
        deep_min=to_min(seconds["deep_min"]),
        rem_min=to_min(seconds["rem_min"]),
        sample_count=count,
    )
