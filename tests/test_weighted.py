"""Tests for vitalsync.analytics.weighted -- overlap-weighted statistics."""

import pytest

from vitalsync.analytics.weighted import stage_durations, time_weighted_average
from vitalsync.models import IntervalEvent, SleepStage, Window

from tests.conftest import NIGHT_HRV, dt, night_fixture, sample, stage


NIGHT = Window(dt(9, 23, 50), dt(10, 6, 10))


class TestTimeWeightedAverage:
    def test_fixture_night(self):
        _, hrv = night_fixture()
        result = time_weighted_average(hrv, NIGHT)
        assert result.value == pytest.approx(NIGHT_HRV)
        assert result.sample_count == 2
        assert result.overlap_sec == pytest.approx(22200)

    def test_single_sample_exact(self):
        s = sample("hrv_sdnn", dt(10, 0, 0), dt(10, 1, 0), 47.3)
        result = time_weighted_average([s], NIGHT)
        assert result.value == 47.3

    def test_weight_by_duration_not_count(self):
        samples = [
            sample("x", dt(10, 0, 0), dt(10, 3, 0), 60.0),        # 3 h
            sample("x", dt(10, 3, 0), dt(10, 3, 10), 40.0),       # 10 min
        ]
        result = time_weighted_average(samples, NIGHT)
        assert result.value == pytest.approx((60 * 180 + 40 * 10) / 190)

    def test_equal_overlap_is_plain_mean(self):
        samples = [
            sample("x", dt(10, 0, 0), dt(10, 1, 0), 30.0),
            sample("x", dt(10, 2, 0), dt(10, 3, 0), 70.0),
        ]
        assert time_weighted_average(samples, NIGHT).value == pytest.approx(50.0)

    def test_no_overlap(self):
        s = sample("x", dt(10, 12, 0), dt(10, 13, 0), 50.0)
        result = time_weighted_average([s], NIGHT)
        assert result.value is None
        assert result.sample_count == 0

    def test_instantaneous_samples_ignored(self):
        s = sample("x", dt(10, 2, 0), value=50.0)
        assert time_weighted_average([s], NIGHT).value is None

    def test_touching_boundary_ignored(self):
        s = sample("x", dt(10, 6, 10), dt(10, 7, 0), 80.0)
        assert time_weighted_average([s], NIGHT).value is None

    def test_empty(self):
        assert time_weighted_average([], NIGHT).value is None

    def test_result_within_sample_range(self):
        samples = [
            sample("x", dt(9, 23, 0), dt(10, 2, 0), 12.0),
            sample("x", dt(10, 1, 0), dt(10, 5, 0), 18.0),
            sample("x", dt(10, 4, 0), dt(10, 8, 0), 15.0),
        ]
        value = time_weighted_average(samples, NIGHT).value
        assert 12.0 <= value <= 18.0


class TestStageDurations:
    def test_fixture_night(self):
        events, _ = night_fixture()
        d = stage_durations(events, NIGHT)
        assert d.core_min == pytest.approx(70 + 130)
        assert d.deep_min == pytest.approx(60)
        assert d.awake_min == pytest.approx(3)
        assert d.rem_min == pytest.approx(117)
        assert d.sample_count == 5

    def test_zero_stage_is_none(self):
        events = [stage(dt(10, 0, 0), dt(10, 2, 0), SleepStage.CORE)]
        d = stage_durations(events, NIGHT)
        assert d.core_min == pytest.approx(120)
        assert d.deep_min is None
        assert d.rem_min is None
        assert d.awake_min is None

    def test_clipped_to_window(self):
        events = [stage(dt(9, 23, 0), dt(10, 0, 0), SleepStage.DEEP)]
        d = stage_durations(events, NIGHT)
        assert d.deep_min == pytest.approx(10)

    def test_unspecified_asleep_counts_as_core(self):
        events = [stage(dt(10, 0, 0), dt(10, 1, 0), SleepStage.ASLEEP)]
        assert stage_durations(events, NIGHT).core_min == pytest.approx(60)

    def test_in_bed_counted_but_not_reported(self):
        events = [IntervalEvent(dt(9, 23, 50), dt(10, 6, 10), SleepStage.IN_BED)]
        d = stage_durations(events, NIGHT)
        assert d.sample_count == 1
        assert d.core_min is None
