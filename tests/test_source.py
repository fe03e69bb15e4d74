"""Tests for vitalsync.source -- in-memory source and JSONL loading."""

import asyncio
import logging
from datetime import datetime, timezone

import pytest

from vitalsync.errors import PermissionDenied, TransientFetchFailure
from vitalsync.models import Reducer, SleepStage, Window
from vitalsync.source import InMemorySource, parse_timestamp

from tests.conftest import (
    dt,
    interval_entry,
    sample,
    sample_entry,
    stage,
    workout,
    write_jsonl,
)


RANGE = Window(dt(9), dt(11))


class TestParseTimestamp:
    def test_z_suffix(self):
        assert parse_timestamp("2024-03-10T06:10:00Z") == dt(10, 6, 10)

    def test_offset(self):
        ts = parse_timestamp("2024-03-10T07:10:00+01:00")
        assert ts == dt(10, 6, 10)

    def test_naive_is_utc(self):
        ts = parse_timestamp("2024-03-10T06:10:00")
        assert ts.tzinfo is timezone.utc


class TestInMemorySource:
    def test_fetch_samples_overlapping(self):
        src = InMemorySource(samples=[
            sample("hrv_sdnn", dt(8, 22), dt(9, 1), 40.0),   # overlaps start
            sample("hrv_sdnn", dt(10, 1), dt(10, 2), 50.0),
            sample("hrv_sdnn", dt(11, 0), dt(11, 1), 60.0),  # starts at range end
            sample("resting_heart_rate", dt(10, 1), dt(10, 2), 55.0),
        ])
        got = asyncio.run(src.fetch_samples("hrv_sdnn", RANGE))
        assert [s.value for s in got] == [40.0, 50.0]

    def test_instantaneous_sample_inside(self):
        src = InMemorySource(samples=[sample("heart_rate", dt(10, 8), value=70.0)])
        assert len(asyncio.run(src.fetch_samples("heart_rate", RANGE))) == 1

    def test_fetch_intervals_by_metric(self):
        src = InMemorySource(intervals=[stage(dt(9, 23), dt(10, 6))])
        assert len(asyncio.run(src.fetch_intervals("sleep_analysis", RANGE))) == 1
        assert asyncio.run(src.fetch_intervals("mindful_session", RANGE)) == []

    def test_reduce(self):
        src = InMemorySource(samples=[
            sample("step_count", dt(10, 8), dt(10, 9), 100.0),
            sample("step_count", dt(10, 10), dt(10, 11), 250.0),
        ])
        total = asyncio.run(src.reduce("step_count", RANGE, Reducer.CUMULATIVE_SUM))
        assert total == pytest.approx(350.0)

    def test_fetch_workouts_contained(self):
        src = InMemorySource(workouts=[
            workout(dt(10, 7), dt(10, 8)),
            workout(dt(10, 23), dt(11, 1)),
        ])
        assert len(asyncio.run(src.fetch_workouts(RANGE))) == 1

    def test_unavailable_stream(self):
        src = InMemorySource(unavailable=["hrv_sdnn"])
        with pytest.raises(TransientFetchFailure) as info:
            asyncio.run(src.fetch_samples("hrv_sdnn", RANGE))
        assert info.value.stream_id == "hrv_sdnn"

    def test_denied_stream(self):
        src = InMemorySource(denied=["workouts"])
        with pytest.raises(PermissionDenied):
            asyncio.run(src.fetch_workouts(RANGE))

    def test_calls_recorded(self):
        src = InMemorySource()
        asyncio.run(src.fetch_samples("heart_rate", RANGE))
        assert src.calls == [("fetch_samples", "heart_rate")]


class TestFromJsonl:
    def test_loads_all_kinds(self, tmp_path):
        path = write_jsonl(tmp_path / "export.jsonl", [
            sample_entry("hrv_sdnn", "2024-03-10T01:00:00Z", "2024-03-10T06:00:00Z", 52.0, "watch"),
            interval_entry("2024-03-09T23:00:00Z", "2024-03-10T06:00:00Z", "deep"),
            interval_entry("2024-03-10T12:00:00Z", "2024-03-10T12:10:00Z", None, "mindful_session"),
            {"kind": "workout", "type": "cycling", "start": "2024-03-10T07:00:00Z",
             "end": "2024-03-10T08:00:00Z", "distance_m": 20000, "route_segments": 2},
        ])
        src = InMemorySource.from_jsonl(path)
        assert src.samples[0].source_device == "watch"
        assert src.intervals[0].stage is SleepStage.DEEP
        assert src.intervals[1].metric_id == "mindful_session"
        assert src.intervals[1].stage is None
        assert src.workouts[0].total_distance_m == 20000.0
        assert src.workouts[0].active_energy_kcal is None
        assert src.workouts[0].route_segments == 2

    def test_instant_sample_without_end(self, tmp_path):
        path = write_jsonl(tmp_path / "export.jsonl", [
            {"kind": "sample", "metric": "heart_rate", "start": "2024-03-10T08:00:00Z", "value": 61},
        ])
        s = InMemorySource.from_jsonl(path).samples[0]
        assert s.start == s.end == datetime(2024, 3, 10, 8, tzinfo=timezone.utc)

    def test_bad_lines_skipped(self, tmp_path, caplog):
        path = tmp_path / "export.jsonl"
        path.write_text(
            "\n"
            "{broken\n"
            '{"kind": "mystery"}\n'
            '{"kind": "interval", "start": "2024-03-10T01:00:00Z", "end": "2024-03-10T02:00:00Z", "stage": "napping"}\n'
            '{"kind": "sample", "metric": "hrv_sdnn", "start": 123, "end": 456, "value": 50}\n'
            '{"kind": "workout", "type": "running", "start": "2024-03-10T08:00:00Z", "end": "2024-03-10T07:00:00Z"}\n'
            '{"kind": "sample", "metric": "heart_rate", "start": "2024-03-10T08:00:00Z", "value": 61}\n'
        )
        with caplog.at_level(logging.WARNING, logger="vitalsync.source"):
            src = InMemorySource.from_jsonl(path)
        assert len(src.samples) == 1
        assert src.intervals == []
        assert src.workouts == []
        assert caplog.text.count("skipping") == 5
