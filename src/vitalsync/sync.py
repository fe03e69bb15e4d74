"""Incremental re-aggregation driver.

One :meth:`SyncCoordinator.refresh` call:

1. loads baselines and per-stream anchors,
2. fans out every fetch concurrently (one task per stream / reduction)
   over the trailing re-aggregation range and joins them,
3. runs the synchronous aggregation pipeline,
4. commits baselines and advanced anchors together, then saves the report.

Late-written samples are picked up because the whole trailing range is
re-aggregated every run; anchors only mark what counts as "new".  A failed
stream degrades to "no data" for this run and keeps its old anchor, so the
next run retries from the same cursor.  Nothing raises out of
:meth:`refresh`: failures are returned as null values and flags.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Iterable

from vitalsync.analytics.baseline import BaselineStore
from vitalsync.analytics.pipeline import (
    ACTIVITY_REDUCTIONS,
    HEALTH_REDUCTIONS,
    INTERVAL_STREAMS,
    MISSING_FLAGS,
    READINESS_UNITS,
    SAMPLE_STREAMS,
    WORKOUT_FALLBACKS,
    WORKOUT_SCORES,
    WORKOUT_STREAM,
    AggregationResult,
    FetchedData,
    day_ranges,
    run_aggregation,
)
from vitalsync.config import Settings
from vitalsync.errors import (
    ClockUnavailable,
    CorruptStateError,
    NoDataAvailable,
    PermissionDenied,
    PersistenceWriteFailure,
    TransientFetchFailure,
)
from vitalsync.models import AnchorRecord, MetricResult, Window, Workout
from vitalsync.persistence import JsonStore
from vitalsync.report import ActivityDay, HealthDay, Report, build_flags, build_report
from vitalsync.source import SampleSource

log = logging.getLogger(__name__)


@dataclass
class RunResult:
    """Outcome of one refresh."""

    report: Report
    report_json: str
    committed: bool
    previous_report_json: str | None = None
    failed_streams: list[str] = field(default_factory=list)
    new_samples: dict[str, int] = field(default_factory=dict)
    baseline_updates: list[str] = field(default_factory=list)


@dataclass
class _FetchFailures:
    streams: set[str] = field(default_factory=set)
    reductions: set[str] = field(default_factory=set)
    denied: set[str] = field(default_factory=set)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SyncCoordinator:
    """Drives fetch → aggregate → commit for one source and one store.

    Runs are serialized by an :class:`asyncio.Lock`; a second ``refresh``
    waits for the first instead of interleaving writes.

    Args:
        source: The sample source (explicit collaborator, not a global).
        store: Persistence for baselines, anchors and the report.
        settings: Tunables; defaults when None.
        clock: Returns the current aware datetime.
    """

    def __init__(
        self,
        source: SampleSource,
        store: JsonStore,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.source = source
        self.store = store
        self.settings = settings or Settings()
        self._clock = clock
        self._tz = self.settings.tz()
        self._lock = asyncio.Lock()

    async def refresh(self) -> RunResult:
        """Run one full aggregation pass.  Never raises for data problems."""
        async with self._lock:
            try:
                return await self._run()
            except (ClockUnavailable, CorruptStateError) as e:
                log.error("aggregation run aborted: %s", e, exc_info=True)
                return self._aborted_result()
            except Exception:
                log.error("aggregation run failed unexpectedly", exc_info=True)
                return self._aborted_result()

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def _now(self) -> datetime:
        try:
            now = self._clock()
        except (OSError, ValueError, OverflowError) as e:
            raise ClockUnavailable(str(e)) from e
        if not isinstance(now, datetime) or now.tzinfo is None:
            raise ClockUnavailable(f"clock returned {now!r}, expected an aware datetime")
        return now

    async def _run(self) -> RunResult:
        now = self._now()
        records = self.store.load_baselines()
        anchors = self.store.load_anchors()
        log.info("refresh at %s (%d baseline(s), %d anchor(s))",
                 now.isoformat(), len(records), len(anchors))

        fetch_range = Window(now - timedelta(days=self.settings.reaggregation_days), now)
        data, failures = await self._fetch_all(fetch_range, now)

        baselines = BaselineStore(
            copy.deepcopy(records),
            ema_days=self.settings.ema_days,
            rolling_days=self.settings.rolling_days,
        )
        result = run_aggregation(
            data,
            now,
            baselines,
            tz=self._tz,
            lookback_days=self.settings.night_lookback_days,
            merge_gap_sec=self.settings.merge_gap_min * 60.0,
        )

        new_anchors, new_counts = advance_anchors(anchors, data, failures.streams, now)

        committed = True
        persistence_failed = False
        try:
            self.store.commit(baselines.records, new_anchors)
        except PersistenceWriteFailure as e:
            log.warning("state not committed: %s", e)
            committed = False
            persistence_failed = True

        flags = self._flags(result, failures, persistence_failed)
        report = self._report(now, result, flags, committed, sum(new_counts.values()))

        report_json = report.to_json()
        if committed:
            try:
                self.store.save_report_json(report_json)
            except PersistenceWriteFailure as e:
                log.warning("report not saved: %s", e)
                committed = False
                report.meta.committed = False
                report.flags["persistence_failed"] = True
                report_json = report.to_json()

        log.info("refresh done: night=%s, %d baseline update(s), failed streams=%s",
                 f"{result.night.start}..{result.night.end}" if result.night else None,
                 len(result.baseline_updates), sorted(failures.streams) or "none")
        return RunResult(
            report=report,
            report_json=report_json,
            committed=committed,
            failed_streams=sorted(failures.streams | failures.reductions),
            new_samples=new_counts,
            baseline_updates=result.baseline_updates,
        )

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------

    async def _guard(
        self,
        stream_id: str,
        call: Awaitable[Any],
        failures: _FetchFailures,
        reduction: bool = False,
    ) -> Any:
        """Await one fetch; a transient failure becomes None plus a record."""
        try:
            return await asyncio.wait_for(call, timeout=self.settings.fetch_timeout_sec)
        except NoDataAvailable:
            return None
        except asyncio.TimeoutError:
            log.warning("%s: fetch timed out after %ss", stream_id, self.settings.fetch_timeout_sec)
            (failures.reductions if reduction else failures.streams).add(stream_id)
        except TransientFetchFailure as e:
            log.warning("%s: fetch failed (%s)", stream_id, e.reason)
            (failures.reductions if reduction else failures.streams).add(stream_id)
            if isinstance(e, PermissionDenied):
                failures.denied.add(stream_id)
        except Exception:
            # Any other adapter error stays confined to its stream
            log.warning("%s: fetch raised unexpectedly", stream_id, exc_info=True)
            (failures.reductions if reduction else failures.streams).add(stream_id)
        return None

    async def _fetch_all(self, fetch_range: Window, now: datetime) -> tuple[FetchedData, _FetchFailures]:
        """Issue every independent fetch at once and join them."""
        failures = _FetchFailures()
        src = self.source
        days = day_ranges(now, self._tz)

        keys: list[tuple] = []
        calls: list[Awaitable[Any]] = []
        for stream in SAMPLE_STREAMS:
            keys.append(("samples", stream))
            calls.append(self._guard(stream, src.fetch_samples(stream, fetch_range), failures))
        for stream in INTERVAL_STREAMS:
            keys.append(("intervals", stream))
            calls.append(self._guard(stream, src.fetch_intervals(stream, fetch_range), failures))
        keys.append(("workouts", WORKOUT_STREAM))
        calls.append(self._guard(WORKOUT_STREAM, src.fetch_workouts(fetch_range), failures))
        for label, window in days.items():
            for metric, reducer in {**ACTIVITY_REDUCTIONS, **HEALTH_REDUCTIONS}.values():
                keys.append(("reduce", (label, metric, reducer)))
                calls.append(self._guard(metric, src.reduce(metric, window, reducer), failures,
                                         reduction=True))

        results = await asyncio.gather(*calls)

        data = FetchedData()
        for (kind, key), value in zip(keys, results):
            if kind == "samples":
                data.samples[key] = list(value or [])
            elif kind == "intervals":
                data.intervals[key] = list(value or [])
            elif kind == "workouts":
                data.workouts = sorted(_valid_workouts(value or []), key=lambda w: w.start)
            else:
                data.reductions[key] = value
        data.failed = set(failures.streams)

        # Second round: effort scores, plus totals for workouts that lack them
        keys, calls = [], []
        for i, w in enumerate(data.workouts):
            window = Window(w.start, w.end)
            wanted = [spec for attr, spec in WORKOUT_FALLBACKS.items() if getattr(w, attr) is None]
            wanted.extend(WORKOUT_SCORES.values())
            for metric, reducer in wanted:
                keys.append((i, metric, reducer))
                calls.append(self._guard(
                    metric, src.reduce(metric, window, reducer), failures, reduction=True,
                ))
        if calls:
            for key, value in zip(keys, await asyncio.gather(*calls)):
                data.workout_reductions[key] = value

        return data, failures

    # ------------------------------------------------------------------
    # Assembly
    # ------------------------------------------------------------------

    def _flags(
        self,
        result: AggregationResult,
        failures: _FetchFailures,
        persistence_failed: bool,
    ) -> dict[str, bool]:
        raised = {
            flag: result.readiness[metric].value is None
            for flag, metric in MISSING_FLAGS.items()
        }
        return build_flags(
            **raised,
            low_sleep_confidence=result.night is None,
            permissions_partial=bool(failures.denied),
            fetch_partial=bool(failures.streams or failures.reductions),
            outliers_capped=bool(result.capped),
            persistence_failed=persistence_failed,
        )

    def _zone(self, now: datetime) -> tuple[str, int]:
        local = now.astimezone(self._tz)
        name = self.settings.timezone or local.tzname() or "UTC"
        offset = local.utcoffset() or timedelta(0)
        return name, int(offset.total_seconds())

    def _report(
        self,
        now: datetime,
        result: AggregationResult,
        flags: dict[str, bool],
        committed: bool,
        new_samples: int,
    ) -> Report:
        days = day_ranges(now, self._tz)
        tz_name, offset = self._zone(now)
        return build_report(
            now=now,
            tz_name=tz_name,
            seconds_from_gmt=offset,
            app_version=self.settings.app_version,
            night=result.night,
            yesterday_start=days.yesterday.start,
            today_start=days.today.start,
            readiness=result.readiness,
            activity=result.activity,
            health=result.health,
            flags=flags,
            committed=committed,
            new_samples=new_samples,
        )

    def _aborted_result(self) -> RunResult:
        """A degraded, uncommitted result; the saved report is left alone."""
        try:
            now = self._now()
        except ClockUnavailable:
            now = datetime.fromtimestamp(0, tz=timezone.utc)
        days = day_ranges(now, self._tz)
        readiness = {name: MetricResult.missing(unit) for name, unit in READINESS_UNITS.items()}
        flags = build_flags(
            **{flag: True for flag in MISSING_FLAGS},
            low_sleep_confidence=True,
            aggregation_error=True,
        )
        tz_name, offset = self._zone(now)
        report = build_report(
            now=now,
            tz_name=tz_name,
            seconds_from_gmt=offset,
            app_version=self.settings.app_version,
            night=None,
            yesterday_start=days.yesterday.start,
            today_start=days.today.start,
            readiness=readiness,
            activity={label: ActivityDay() for label, _ in days.items()},
            health={label: HealthDay() for label, _ in days.items()},
            flags=flags,
        )
        try:
            previous = self.store.load_last_report_json()
        except OSError:
            previous = None
        return RunResult(
            report=report,
            report_json=report.to_json(),
            committed=False,
            previous_report_json=previous,
        )


def advance_anchors(
    anchors: dict[str, AnchorRecord],
    data: FetchedData,
    failed: set[str],
    now: datetime,
) -> tuple[dict[str, AnchorRecord], dict[str, int]]:
    """Advance each successfully fetched stream's anchor to its newest sample.

    Failed streams keep their anchor untouched.  Returns the new anchor map
    and, per stream, how many fetched items ended after the old anchor.
    """
    new_anchors = dict(anchors)
    counts: dict[str, int] = {}

    ends: dict[str, list[datetime]] = {}
    for stream, samples in data.samples.items():
        ends[stream] = [s.end for s in samples]
    for stream, events in data.intervals.items():
        ends[stream] = [e.end for e in events]
    ends[WORKOUT_STREAM] = [w.end for w in data.workouts]

    for stream, stream_ends in ends.items():
        if stream in failed:
            continue
        old = anchors.get(stream)
        fresh = [e for e in stream_ends if old is None or e > old.position]
        counts[stream] = len(fresh)
        if fresh:
            latest = max(fresh)
            new_anchors[stream] = AnchorRecord(stream_id=stream, position=latest, updated_at=now)
            log.info("%s: %d new item(s), anchor → %s", stream, len(fresh), latest.isoformat())
    return new_anchors, counts


def _valid_workouts(workouts: Iterable[Workout]) -> list[Workout]:
    """Drop workout records whose end precedes their start."""
    kept = []
    for w in workouts:
        if w.end < w.start:
            log.warning("skipping workout %r: end %s precedes start %s",
                        w.type, w.end.isoformat(), w.start.isoformat())
            continue
        kept.append(w)
    return kept
