"""Night-window resolution from sleep-analysis interval events.

Sleep trackers write many short, often overlapping stage intervals per
night (and a second device may write its own copy).  This module collapses
the "asleep" intervals into contiguous blocks and picks the block that
represents the most recent night:

1. sort by start time,
2. merge neighbours whose gap is at most ``max_gap_sec`` (overlaps are
   negative gaps, so they always merge); a merge only ever extends the end,
3. keep the block with the latest end, breaking ties by longer duration.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Iterable, Sequence

from vitalsync.models import IntervalEvent, NightWindow, Window

log = logging.getLogger(__name__)

# Gap tolerance between consecutive asleep intervals
MERGE_GAP_SEC = 5 * 60

# How far back from the reference instant sleep events are considered
LOOKBACK_DAYS = 2


# ---------------------------------------------------------------------------
# Merging
# ---------------------------------------------------------------------------


def merge_intervals(
    windows: Iterable[Window],
    max_gap_sec: float = MERGE_GAP_SEC,
) -> list[Window]:
    """Merge windows whose gap is at most *max_gap_sec*.

    The output is sorted by start and pairwise separated by more than
    *max_gap_sec*, so merging it again returns the same list.
    """
    ordered = sorted(windows, key=lambda w: (w.start, w.end))
    merged: list[Window] = []
    for w in ordered:
        if merged:
            last = merged[-1]
            gap = (w.start - last.end).total_seconds()
            if gap <= max_gap_sec:
                # Contained intervals leave the end untouched
                merged[-1] = Window(last.start, max(last.end, w.end))
                continue
        merged.append(w)
    return merged


def select_night(blocks: Sequence[Window]) -> Window | None:
    """Pick the block with the latest end; ties go to the longer block."""
    if not blocks:
        return None
    return max(blocks, key=lambda w: (w.end, w.duration_sec))


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def lookback_window(reference: datetime, days: int = LOOKBACK_DAYS) -> Window:
    """The ``[reference - days, reference)`` range searched for sleep events."""
    return Window(reference - timedelta(days=days), reference)


def resolve_night_window(
    events: Sequence[IntervalEvent],
    reference: datetime,
    lookback_days: int = LOOKBACK_DAYS,
    max_gap_sec: float = MERGE_GAP_SEC,
) -> NightWindow | None:
    """Resolve the most recent merged sleep block before *reference*.

    Args:
        events: Sleep-analysis interval events, in any order.  Events that
            start before the lookback range or are not asleep stages are
            ignored for merging.
        reference: The query instant (usually "now").
        lookback_days: Size of the search range in days.
        max_gap_sec: Merge tolerance between asleep intervals.

    Returns:
        A NightWindow, or None when no asleep interval exists in range.
        ``raw_sample_count`` is the number of events of any stage in range.
    """
    search = lookback_window(reference, lookback_days)
    in_range = [
        e for e in events
        if search.start <= e.start < search.end and e.end > e.start
    ]
    asleep = [Window(e.start, e.end) for e in in_range if e.is_asleep]
    if not asleep:
        log.debug("no asleep intervals in %s..%s", search.start, search.end)
        return None

    blocks = merge_intervals(asleep, max_gap_sec)
    best = select_night(blocks)
    log.debug("merged %d asleep intervals into %d block(s); night %s..%s",
              len(asleep), len(blocks), best.start, best.end)
    return NightWindow(best.start, best.end, raw_sample_count=len(in_range))
