"""Aggregation engine over health-store samples.

Modules:
    intervals  -- Night-window resolution (merge asleep blocks, pick the main one)
    weighted   -- Overlap-weighted averages and sleep-stage minutes
    calendar   -- Calendar-day reductions, HR series and HR zones
    outliers   -- Plausible-range policy for readiness signals
    baseline   -- 7-day EMA and 30-day mean/std per metric
    pipeline   -- Readiness, activity and health sections for one run
"""

from vitalsync.analytics.intervals import (
    merge_intervals,
    select_night,
    lookback_window,
    resolve_night_window,
)
from vitalsync.analytics.weighted import (
    time_weighted_average,
    stage_durations,
    WeightedResult,
    StageDurations,
)
from vitalsync.analytics.calendar import (
    reduce_samples,
    heart_rate_series,
    hr_zone_seconds,
    interval_minutes,
)
from vitalsync.analytics.outliers import classify, apply_policy, Verdict, Classification
from vitalsync.analytics.baseline import BaselineStore, BaselineRecord, Deviation
from vitalsync.analytics.pipeline import run_aggregation, FetchedData, AggregationResult

__all__ = [
    # intervals
    "merge_intervals",
    "select_night",
    "lookback_window",
    "resolve_night_window",
    # weighted
    "time_weighted_average",
    "stage_durations",
    "WeightedResult",
    "StageDurations",
    # calendar
    "reduce_samples",
    "heart_rate_series",
    "hr_zone_seconds",
    "interval_minutes",
    # outliers
    "classify",
    "apply_policy",
    "Verdict",
    "Classification",
    # baseline
    "BaselineStore",
    "BaselineRecord",
    "Deviation",
    # pipeline
    "run_aggregation",
    "FetchedData",
    "AggregationResult",
]
