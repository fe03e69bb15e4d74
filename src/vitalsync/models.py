"""Core data types shared by the aggregation engine.

All timestamps are timezone-aware :class:`datetime` objects.  Windows are
half-open ``[start, end)``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, tzinfo
from enum import Enum
from typing import Any

from vitalsync.errors import InvalidWindow


class SleepStage(str, Enum):
    """Categorical sleep-analysis value attached to an interval event."""

    IN_BED = "in_bed"
    AWAKE = "awake"
    CORE = "core"
    DEEP = "deep"
    REM = "rem"
    ASLEEP = "asleep"  # asleep, stage not specified


ASLEEP_STAGES = frozenset({
    SleepStage.CORE,
    SleepStage.DEEP,
    SleepStage.REM,
    SleepStage.ASLEEP,
})


class QualityTag(str, Enum):
    """Machine-readable caveat attached to a computed value."""

    MISSING_DATA = "missing_data"
    OUTLIER_CAPPED = "outlier_capped"
    OUTLIER_DISCARDED = "outlier_discarded"
    FETCH_FAILED = "fetch_failed"


class Reducer(str, Enum):
    """Statistic requested over a plain calendar range."""

    CUMULATIVE_SUM = "cumulative_sum"
    DISCRETE_AVERAGE = "discrete_average"
    DISCRETE_MAX = "discrete_max"
    MOST_RECENT = "most_recent"


# ---------------------------------------------------------------------------
# Windows
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Window:
    """A half-open time range ``[start, end)``."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.end < self.start:
            raise InvalidWindow(f"window end {self.end} precedes start {self.start}")

    @property
    def duration_sec(self) -> float:
        return (self.end - self.start).total_seconds()

    def overlaps(self, other: Window) -> bool:
        return max(self.start, other.start) < min(self.end, other.end)

    def overlap_sec(self, start: datetime, end: datetime) -> float:
        """Seconds of ``[start, end)`` that fall inside this window (never negative)."""
        lo = max(self.start, start)
        hi = min(self.end, end)
        return max(0.0, (hi - lo).total_seconds())

    def contains(self, start: datetime, end: datetime) -> bool:
        """True if ``[start, end]`` lies fully inside the window."""
        return start >= self.start and end <= self.end


@dataclass(frozen=True)
class NightWindow(Window):
    """The resolved sleep block used to bound recovery metrics."""

    raw_sample_count: int = 0

    def __post_init__(self) -> None:
        if self.end <= self.start:
            raise InvalidWindow(f"night window must have end > start, got [{self.start}, {self.end})")

    @property
    def duration_min(self) -> float:
        return self.duration_sec / 60.0

    def day_key(self, tz: tzinfo | None = None) -> str:
        """Calendar day the night is attributed to (the local date it ends on)."""
        return self.end.astimezone(tz).date().isoformat()


# ---------------------------------------------------------------------------
# Raw observations
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Sample:
    """One quantity observation; ``start == end`` for instantaneous samples."""

    metric_id: str
    start: datetime
    end: datetime
    value: float
    source_device: str | None = None


@dataclass(frozen=True)
class IntervalEvent:
    """A categorical interval, e.g. one sleep stage or a mindful session."""

    start: datetime
    end: datetime
    stage: SleepStage | None = None
    metric_id: str = "sleep_analysis"

    @property
    def duration_sec(self) -> float:
        return max(0.0, (self.end - self.start).total_seconds())

    @property
    def is_asleep(self) -> bool:
        return self.stage in ASLEEP_STAGES


@dataclass(frozen=True)
class Workout:
    """A workout record as the source reports it."""

    type: str
    start: datetime
    end: datetime
    total_distance_m: float | None = None
    active_energy_kcal: float | None = None
    route_segments: int | None = None  # route series attached to the workout


@dataclass(frozen=True)
class HRPoint:
    """A single heart-rate reading in a day series."""

    time: datetime
    bpm: float


@dataclass(frozen=True)
class AnchorRecord:
    """Sync cursor for one raw stream.

    ``position`` is the latest sample end seen by a committed run; samples
    ending after it are "new" on the next run.
    """

    stream_id: str
    position: datetime
    updated_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "stream_id": self.stream_id,
            "position": self.position.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AnchorRecord:
        return cls(
            stream_id=str(data["stream_id"]),
            position=datetime.fromisoformat(data["position"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
        )


# ---------------------------------------------------------------------------
# Computed values
# ---------------------------------------------------------------------------


@dataclass
class MetricResult:
    """A computed per-metric value, with baseline figures folded in."""

    value: float | None
    unit: str
    sample_count: int = 0
    quality: set[QualityTag] = field(default_factory=set)

    baseline_7d_ema: float | None = None
    baseline_30d_mean: float | None = None
    baseline_30d_std: float | None = None
    delta_vs_30d: float | None = None
    z_score_30d: float | None = None
    baseline_status: str | None = None

    def __post_init__(self) -> None:
        if self.sample_count == 0 and self.value is not None:
            raise ValueError("a metric with no samples cannot carry a value")

    @classmethod
    def missing(cls, unit: str, *tags: QualityTag) -> MetricResult:
        """A null result tagged ``missing_data`` (plus any extra tags)."""
        return cls(value=None, unit=unit, sample_count=0,
                   quality={QualityTag.MISSING_DATA, *tags})

    def to_dict(self) -> dict[str, Any]:
        return {
            "value": self.value,
            "unit": self.unit,
            "sample_count": self.sample_count,
            "quality": sorted(tag.value for tag in self.quality),
            "baseline_7d_ema": self.baseline_7d_ema,
            "baseline_30d_mean": self.baseline_30d_mean,
            "baseline_30d_std": self.baseline_30d_std,
            "delta_vs_30d": self.delta_vs_30d,
            "z_score_30d": self.z_score_30d,
            "baseline_status": self.baseline_status,
        }
