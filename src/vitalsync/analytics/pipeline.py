"""Aggregation pipeline: turn fetched stream data into report sections.

Everything here is synchronous and pure apart from the
:class:`BaselineStore` it is handed, which it updates in place.  The
caller (:mod:`vitalsync.sync`) owns fetching, anchors and persistence.

Order per run:

1. resolve the night window from sleep intervals,
2. compute each readiness signal over the night window,
3. apply the outlier policy, then upsert and annotate baselines,
4. compute the calendar-day activity and health aggregates.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, tzinfo

from vitalsync.analytics.baseline import BaselineStore
from vitalsync.analytics.calendar import (
    heart_rate_series,
    hr_zone_seconds,
    in_range,
    interval_minutes,
    reduce_samples,
)
from vitalsync.analytics.intervals import LOOKBACK_DAYS, MERGE_GAP_SEC, resolve_night_window
from vitalsync.analytics.outliers import Verdict, apply_policy
from vitalsync.analytics.weighted import stage_durations, time_weighted_average
from vitalsync.models import (
    IntervalEvent,
    MetricResult,
    NightWindow,
    QualityTag,
    Reducer,
    Sample,
    Window,
    Workout,
)
from vitalsync.report import ActivityDay, HealthDay, WorkoutSummary

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Stream and metric catalogue
# ---------------------------------------------------------------------------

SLEEP_STREAM = "sleep_analysis"
MINDFUL_STREAM = "mindful_session"
ECG_STREAM = "electrocardiogram"
HEART_RATE_STREAM = "heart_rate"
WORKOUT_STREAM = "workouts"

# readiness metric → (sample stream, unit, scale)
WEIGHTED_SIGNALS: dict[str, tuple[str, str, float]] = {
    "hrv_sdnn_ms": ("hrv_sdnn", "ms", 1.0),
    "resting_hr_bpm": ("resting_heart_rate", "bpm", 1.0),
    "respiratory_rate_br_min": ("respiratory_rate", "br/min", 1.0),
    "wrist_temp_delta_c": ("sleeping_wrist_temperature", "°C", 1.0),
    "oxygen_saturation_avg_pct": ("oxygen_saturation", "%", 100.0),
}

SLEEP_SIGNALS: dict[str, str] = {
    "sleep_duration_min": "min",
    "sleep_awake_min": "min",
    "sleep_core_min": "min",
    "sleep_deep_min": "min",
    "sleep_rem_min": "min",
    "sleep_hr_avg_bpm": "bpm",
}

READINESS_UNITS: dict[str, str] = {
    **{name: unit for name, (_, unit, _) in WEIGHTED_SIGNALS.items()},
    **SLEEP_SIGNALS,
}

# flag → readiness metric whose absence raises it
MISSING_FLAGS: dict[str, str] = {
    "missing_hrv": "hrv_sdnn_ms",
    "missing_resting_hr": "resting_hr_bpm",
    "missing_respiratory_rate": "respiratory_rate_br_min",
    "missing_wrist_temp": "wrist_temp_delta_c",
    "missing_spo2": "oxygen_saturation_avg_pct",
}

# Streams fetched as raw samples over the re-aggregation range
MOST_RECENT_STREAMS = (
    "vo2_max",
    "body_mass",
    "body_mass_index",
    "body_fat_percentage",
    "blood_glucose",
    "blood_pressure_systolic",
    "blood_pressure_diastolic",
)
SAMPLE_STREAMS: tuple[str, ...] = (
    *(stream for stream, _, _ in WEIGHTED_SIGNALS.values()),
    HEART_RATE_STREAM,
    *MOST_RECENT_STREAMS,
)
INTERVAL_STREAMS: tuple[str, ...] = (SLEEP_STREAM, MINDFUL_STREAM, ECG_STREAM)

# Day-level statistics delegated to the source: field → (metric, reducer)
ACTIVITY_REDUCTIONS: dict[str, tuple[str, Reducer]] = {
    "steps": ("step_count", Reducer.CUMULATIVE_SUM),
    "active_energy_kcal": ("active_energy_burned", Reducer.CUMULATIVE_SUM),
    "basal_energy_kcal": ("basal_energy_burned", Reducer.CUMULATIVE_SUM),
    "distance_walking_running_m": ("distance_walking_running", Reducer.CUMULATIVE_SUM),
    "distance_cycling_m": ("distance_cycling", Reducer.CUMULATIVE_SUM),
    "distance_swimming_m": ("distance_swimming", Reducer.CUMULATIVE_SUM),
    "flights_climbed": ("flights_climbed", Reducer.CUMULATIVE_SUM),
    "exercise_min": ("exercise_time", Reducer.CUMULATIVE_SUM),
    "stand_min": ("stand_time", Reducer.CUMULATIVE_SUM),
    "avg_heart_rate_bpm": (HEART_RATE_STREAM, Reducer.DISCRETE_AVERAGE),
    "max_heart_rate_bpm": (HEART_RATE_STREAM, Reducer.DISCRETE_MAX),
}
HEALTH_REDUCTIONS: dict[str, tuple[str, Reducer]] = {
    "dietary_energy_kcal": ("dietary_energy_consumed", Reducer.CUMULATIVE_SUM),
    "dietary_water_l": ("dietary_water", Reducer.CUMULATIVE_SUM),
    "dietary_carbohydrates_g": ("dietary_carbohydrates", Reducer.CUMULATIVE_SUM),
    "dietary_protein_g": ("dietary_protein", Reducer.CUMULATIVE_SUM),
    "dietary_fat_g": ("dietary_fat_total", Reducer.CUMULATIVE_SUM),
    "dietary_caffeine_mg": ("dietary_caffeine", Reducer.CUMULATIVE_SUM),
    "dietary_sodium_mg": ("dietary_sodium", Reducer.CUMULATIVE_SUM),
    "oxygen_saturation_avg_pct": ("oxygen_saturation", Reducer.DISCRETE_AVERAGE),
    "body_temperature_c": ("body_temperature", Reducer.DISCRETE_AVERAGE),
}
HEALTH_MOST_RECENT: dict[str, str] = {
    "blood_glucose_mg_dl": "blood_glucose",
    "blood_pressure_systolic_mmhg": "blood_pressure_systolic",
    "blood_pressure_diastolic_mmhg": "blood_pressure_diastolic",
    "body_mass_kg": "body_mass",
    "body_mass_index": "body_mass_index",
    "body_fat_pct": "body_fat_percentage",
}
# Source reports these as fractions
PERCENT_FIELDS = {"oxygen_saturation_avg_pct", "body_fat_pct"}

# Per-workout statistics asked of the source over the workout range.
# Totals are only requested when the record carries none.
WORKOUT_FALLBACKS: dict[str, tuple[str, Reducer]] = {
    "total_distance_m": ("distance_walking_running", Reducer.CUMULATIVE_SUM),
    "active_energy_kcal": ("active_energy_burned", Reducer.CUMULATIVE_SUM),
}
WORKOUT_SCORES: dict[str, tuple[str, Reducer]] = {
    "effort_score": ("workout_effort_score", Reducer.DISCRETE_AVERAGE),
    "estimated_effort_score": ("estimated_workout_effort_score", Reducer.DISCRETE_AVERAGE),
}

WORKOUT_DISPLAY_NAMES: dict[str, str] = {
    "running": "Running",
    "walking": "Walking",
    "cycling": "Cycling",
    "traditional_strength_training": "Strength",
    "high_intensity_interval_training": "HIIT",
    "yoga": "Yoga",
    "pilates": "Pilates",
    "tennis": "Tennis",
    "paddle_sports": "Paddle",
    "hiking": "Hiking",
    "swimming": "Swimming",
}


def workout_display_name(kind: str) -> str:
    """Display label for a workout type; unlisted types are title-cased."""
    key = kind.strip().lower()
    if key in WORKOUT_DISPLAY_NAMES:
        return WORKOUT_DISPLAY_NAMES[key]
    return key.replace("_", " ").title() or kind


# ---------------------------------------------------------------------------
# Inputs / outputs
# ---------------------------------------------------------------------------


ReductionKey = tuple[str, str, Reducer]  # (day label, metric, reducer)


@dataclass
class FetchedData:
    """Everything one run fetched, already materialised.

    Streams listed in ``failed`` contribute no data this run.
    """

    samples: dict[str, list[Sample]] = field(default_factory=dict)
    intervals: dict[str, list[IntervalEvent]] = field(default_factory=dict)
    reductions: dict[ReductionKey, float | None] = field(default_factory=dict)
    workouts: list[Workout] = field(default_factory=list)
    # (workout index, metric, reducer) → value, for records lacking totals
    workout_reductions: dict[tuple[int, str, Reducer], float | None] = field(default_factory=dict)
    failed: set[str] = field(default_factory=set)


@dataclass
class DayRanges:
    yesterday: Window
    today: Window

    def items(self) -> list[tuple[str, Window]]:
        return [("yesterday", self.yesterday), ("today", self.today)]


@dataclass
class AggregationResult:
    night: NightWindow | None
    readiness: dict[str, MetricResult]
    activity: dict[str, ActivityDay]
    health: dict[str, HealthDay]
    capped: list[str] = field(default_factory=list)
    baseline_updates: list[str] = field(default_factory=list)


def day_ranges(now: datetime, tz: tzinfo | None = None) -> DayRanges:
    """Yesterday ``[start_of_yesterday, start_of_today)`` and today ``[start_of_today, now)``."""
    local = now.astimezone(tz)
    today_start = local.replace(hour=0, minute=0, second=0, microsecond=0)
    yesterday_start = today_start - timedelta(days=1)
    return DayRanges(
        yesterday=Window(yesterday_start, today_start),
        today=Window(today_start, max(now, today_start)),
    )


# ---------------------------------------------------------------------------
# Readiness
# ---------------------------------------------------------------------------


def _sleep_signals(
    night: NightWindow,
    sleep_events: list[IntervalEvent],
    hr_samples: list[Sample],
) -> dict[str, MetricResult]:
    stages = stage_durations(sleep_events, night)
    n = stages.sample_count

    def stage(value: float | None) -> MetricResult:
        return MetricResult(value=value, unit="min", sample_count=n)

    # Strict containment, like the platform's discrete-average query
    hr_in_night = in_range(hr_samples, night)
    hr_avg = reduce_samples(hr_in_night, night, Reducer.DISCRETE_AVERAGE)
    return {
        "sleep_duration_min": MetricResult(
            value=night.duration_min, unit="min", sample_count=night.raw_sample_count,
        ),
        "sleep_awake_min": stage(stages.awake_min),
        "sleep_core_min": stage(stages.core_min),
        "sleep_deep_min": stage(stages.deep_min),
        "sleep_rem_min": stage(stages.rem_min),
        "sleep_hr_avg_bpm": MetricResult(value=hr_avg, unit="bpm", sample_count=len(hr_in_night)),
    }


def compute_readiness(
    data: FetchedData,
    night: NightWindow | None,
) -> dict[str, MetricResult]:
    """Raw readiness values, before outlier policy and baselines.

    Without a night window every signal is null and tagged
    ``missing_data``; a failed sleep fetch adds ``fetch_failed`` as well.
    """
    if night is None:
        extra = (QualityTag.FETCH_FAILED,) if SLEEP_STREAM in data.failed else ()
        return {name: MetricResult.missing(unit, *extra) for name, unit in READINESS_UNITS.items()}

    results: dict[str, MetricResult] = {}
    for name, (stream, unit, scale) in WEIGHTED_SIGNALS.items():
        if stream in data.failed:
            results[name] = MetricResult.missing(unit, QualityTag.FETCH_FAILED)
            continue
        tw = time_weighted_average(data.samples.get(stream, []), night)
        value = tw.value * scale if tw.value is not None else None
        results[name] = MetricResult(value=value, unit=unit, sample_count=tw.sample_count)
        log.debug("%s over night: %r", name, tw)

    results.update(_sleep_signals(
        night,
        data.intervals.get(SLEEP_STREAM, []),
        data.samples.get(HEART_RATE_STREAM, []),
    ))
    if HEART_RATE_STREAM in data.failed:
        results["sleep_hr_avg_bpm"] = MetricResult.missing("bpm", QualityTag.FETCH_FAILED)
    return results


def apply_baselines(
    readiness: dict[str, MetricResult],
    night: NightWindow | None,
    baselines: BaselineStore,
    now: datetime,
    tz: tzinfo | None = None,
) -> tuple[list[str], list[str]]:
    """Outlier policy → day-keyed baseline upsert → annotation, per metric.

    Returns ``(capped metrics, metrics whose baseline was updated)``.
    """
    capped: list[str] = []
    updated: list[str] = []
    day = night.day_key(tz) if night is not None else None
    for name in sorted(readiness):
        result = readiness[name]
        verdict = apply_policy(name, result)
        if verdict is Verdict.CAPPED:
            capped.append(name)
        if verdict in (Verdict.VALID, Verdict.CAPPED) and day is not None:
            baselines.update(name, day, result.value, now)
            updated.append(name)
        baselines.annotate(name, result)
    return capped, updated


# ---------------------------------------------------------------------------
# Calendar days
# ---------------------------------------------------------------------------


def _workout_summary(
    index: int,
    workout: Workout,
    data: FetchedData,
) -> WorkoutSummary:
    window = Window(workout.start, workout.end)
    duration_min = window.duration_sec / 60.0
    hr = data.samples.get(HEART_RATE_STREAM, [])

    def reduced(metric: str, reducer: Reducer) -> float | None:
        return data.workout_reductions.get((index, metric, reducer))

    distance = workout.total_distance_m
    if distance is None:
        distance = reduced(*WORKOUT_FALLBACKS["total_distance_m"])
    energy = workout.active_energy_kcal
    if energy is None:
        energy = reduced(*WORKOUT_FALLBACKS["active_energy_kcal"])

    speed = None
    if distance is not None and duration_min > 0:
        speed = distance / (duration_min * 60.0)

    return WorkoutSummary(
        type=workout_display_name(workout.type),
        start=workout.start,
        end=workout.end,
        duration_min=duration_min,
        average_heart_rate=reduce_samples(hr, window, Reducer.DISCRETE_AVERAGE),
        max_heart_rate=reduce_samples(hr, window, Reducer.DISCRETE_MAX),
        total_distance_m=distance,
        active_energy_kcal=energy,
        avg_speed_m_per_s=speed,
        route_segments=workout.route_segments,
        effort_score=reduced(*WORKOUT_SCORES["effort_score"]),
        estimated_effort_score=reduced(*WORKOUT_SCORES["estimated_effort_score"]),
    )


def compute_activity_day(label: str, window: Window, data: FetchedData) -> ActivityDay:
    day = ActivityDay()
    for name, (metric, reducer) in ACTIVITY_REDUCTIONS.items():
        setattr(day, name, data.reductions.get((label, metric, reducer)))
    if day.steps is not None:
        day.steps = int(day.steps)
    if day.stand_min is not None:
        day.stand_hours = int(day.stand_min // 60)

    day.vo2_max = reduce_samples(data.samples.get("vo2_max", []), window, Reducer.MOST_RECENT)
    day.heart_rate_bpm = heart_rate_series(data.samples.get(HEART_RATE_STREAM, []), window)
    day.hr_zones_sec = hr_zone_seconds(day.heart_rate_bpm or [])

    summaries = [
        _workout_summary(i, w, data)
        for i, w in enumerate(data.workouts)
        if window.contains(w.start, w.end)
    ]
    day.workouts = sorted(summaries, key=lambda s: s.start, reverse=True)
    return day


def compute_health_day(label: str, window: Window, data: FetchedData) -> HealthDay:
    day = HealthDay()
    for name, (metric, reducer) in HEALTH_REDUCTIONS.items():
        setattr(day, name, data.reductions.get((label, metric, reducer)))
    for name, stream in HEALTH_MOST_RECENT.items():
        setattr(day, name, reduce_samples(data.samples.get(stream, []), window, Reducer.MOST_RECENT))
    for name in PERCENT_FIELDS:
        value = getattr(day, name)
        if value is not None:
            setattr(day, name, value * 100.0)

    mindful = [
        e.duration_sec for e in data.intervals.get(MINDFUL_STREAM, [])
        if window.contains(e.start, e.end)
    ]
    day.mindful_min = interval_minutes(mindful)

    if ECG_STREAM not in data.failed:
        day.ecg_count = sum(
            1 for e in data.intervals.get(ECG_STREAM, [])
            if window.contains(e.start, e.end)
        )
    return day


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def run_aggregation(
    data: FetchedData,
    now: datetime,
    baselines: BaselineStore,
    tz: tzinfo | None = None,
    lookback_days: int = LOOKBACK_DAYS,
    merge_gap_sec: float = MERGE_GAP_SEC,
) -> AggregationResult:
    """Run every aggregation stage over already-fetched data.

    Args:
        data: Materialised fetch results for this run.
        now: The query instant.
        baselines: Store to upsert into (mutated in place).
        tz: Zone for calendar days; None means the host's local zone.
        lookback_days: Night-window search range.
        merge_gap_sec: Night-window merge tolerance.

    Returns:
        An AggregationResult with readiness, activity and health sections.
    """
    night = None
    if SLEEP_STREAM not in data.failed:
        night = resolve_night_window(
            data.intervals.get(SLEEP_STREAM, []),
            now,
            lookback_days=lookback_days,
            max_gap_sec=merge_gap_sec,
        )

    readiness = compute_readiness(data, night)
    capped, updated = apply_baselines(readiness, night, baselines, now, tz)

    days = day_ranges(now, tz)
    activity = {label: compute_activity_day(label, w, data) for label, w in days.items()}
    health = {label: compute_health_day(label, w, data) for label, w in days.items()}

    return AggregationResult(
        night=night,
        readiness=readiness,
        activity=activity,
        health=health,
        capped=capped,
        baseline_updates=updated,
    )
