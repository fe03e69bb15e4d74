"""Calendar-range statistics and heart-rate effort zones.

The reducers here operate on already-fetched samples using the same
range semantics as the platform statistics queries: a sample counts only
if it lies fully inside ``[start, end]``.  Cumulative sums are never
re-sliced; a sample straddling the range boundary is simply excluded.
"""

from __future__ import annotations

from typing import Sequence

import numpy as np

from vitalsync.models import HRPoint, Reducer, Sample, Window


# ---------------------------------------------------------------------------
# HR zones (absolute bpm cut points)
# ---------------------------------------------------------------------------

ZONE_THRESHOLDS = [95.0, 114.0, 133.0, 152.0, 171.0]
ZONE_LABELS = ["z1", "z2", "z3", "z4", "z5"]


def _classify_zone(bpm: float) -> int:
    """Return the 0-based zone index.

    Below 95 bpm is z1 and anything at or above 152 bpm is z5; the last
    cut point only closes the z5 band nominally.
    """
    for i, upper in enumerate(ZONE_THRESHOLDS[:-1]):
        if bpm < upper:
            return i
    return len(ZONE_LABELS) - 1


def hr_zone_seconds(points: Sequence[HRPoint]) -> dict[str, float] | None:
    """Bucket the time between consecutive HR points into five zones.

    Each gap is attributed to the zone of the *earlier* point.  Returns
    None for fewer than two points.
    """
    if len(points) < 2:
        return None
    ordered = sorted(points, key=lambda p: p.time)
    accum = [0.0] * len(ZONE_LABELS)
    for prev, cur in zip(ordered, ordered[1:]):
        dt = (cur.time - prev.time).total_seconds()
        accum[_classify_zone(prev.bpm)] += dt
    return dict(zip(ZONE_LABELS, accum))


# ---------------------------------------------------------------------------
# Reducers
# ---------------------------------------------------------------------------


def in_range(samples: Sequence[Sample], window: Window) -> list[Sample]:
    """Samples lying fully inside *window*."""
    return [s for s in samples if window.contains(s.start, s.end)]


def reduce_samples(
    samples: Sequence[Sample],
    window: Window,
    reducer: Reducer,
) -> float | None:
    """Apply *reducer* to the samples inside *window*; None if there are none."""
    selected = in_range(samples, window)
    if not selected:
        return None

    if reducer is Reducer.MOST_RECENT:
        return max(selected, key=lambda s: s.start).value

    arr = np.asarray([s.value for s in selected], dtype=np.float64)
    if reducer is Reducer.CUMULATIVE_SUM:
        return float(np.sum(arr))
    if reducer is Reducer.DISCRETE_AVERAGE:
        return float(np.mean(arr))
    if reducer is Reducer.DISCRETE_MAX:
        return float(np.max(arr))
    raise ValueError(f"unknown reducer: {reducer!r}")


def heart_rate_series(samples: Sequence[Sample], window: Window) -> list[HRPoint] | None:
    """Heart-rate points inside *window*, oldest first; None if empty."""
    selected = in_range(samples, window)
    if not selected:
        return None
    return [HRPoint(time=s.start, bpm=s.value)
            for s in sorted(selected, key=lambda s: s.start)]


def interval_minutes(durations_sec: Sequence[float]) -> float | None:
    """Sum of interval durations in minutes; None when there are none."""
    if len(durations_sec) == 0:
        return None
    return float(np.sum(durations_sec)) / 60.0
