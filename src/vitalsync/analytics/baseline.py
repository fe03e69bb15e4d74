"""Per-metric rolling baselines: 7-day EMA and 30-day mean/std.

Baselines are keyed by calendar day.  Feeding a value for a day that is
already present replaces that day's contribution instead of adding a new
one, so re-running the same day's aggregation any number of times leaves
the figures unchanged.

The EMA keeps the value it had *before* its latest day (``ema_prev``), so
an upsert for the latest day can be re-blended from scratch.  A value for
a day older than the EMA's latest day still lands in the 30-day window but
cannot be blended into the EMA retroactively.

Status is derived from counts only:

    cold     -- no record yet
    warming  -- fewer than 7 EMA days or fewer than 30 window days
    stable   -- both thresholds reached
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterator, Mapping

import numpy as np

from vitalsync.errors import CorruptStateError
from vitalsync.models import MetricResult

EMA_DAYS = 7
ROLLING_DAYS = 30

# Population std below this is treated as exactly zero
STD_EPSILON = 1e-12


def ema_alpha(n_days: int = EMA_DAYS) -> float:
    """Smoothing factor ``2 / (N + 1)``."""
    return 2.0 / (n_days + 1)


def _mean_var(values: list[float]) -> tuple[float | None, float | None]:
    if not values:
        return None, None
    arr = np.asarray(values, dtype=np.float64)
    return float(np.mean(arr)), float(np.var(arr, ddof=0))


@dataclass
class BaselineRecord:
    """Persisted rolling state for one metric."""

    metric_id: str
    ema_7d: float | None = None
    ema_prev: float | None = None  # EMA before ema_day was blended in
    ema_day: str | None = None
    ema_count: int = 0
    observations: list[tuple[str, float]] = field(default_factory=list)  # (day, value), oldest first
    mean_30d: float | None = None
    variance_30d: float | None = None
    last_updated: datetime | None = None

    @property
    def std_30d(self) -> float | None:
        if self.variance_30d is None:
            return None
        std = math.sqrt(max(self.variance_30d, 0.0))
        return 0.0 if std < STD_EPSILON else std

    def status(self, ema_days: int = EMA_DAYS, rolling_days: int = ROLLING_DAYS) -> str:
        if self.ema_count == 0 and not self.observations:
            return "cold"
        if self.ema_count >= ema_days and len(self.observations) >= rolling_days:
            return "stable"
        return "warming"

    def to_dict(self) -> dict[str, Any]:
        return {
            "metric_id": self.metric_id,
            "ema_7d": self.ema_7d,
            "ema_prev": self.ema_prev,
            "ema_day": self.ema_day,
            "ema_count": self.ema_count,
            "observations": [[day, value] for day, value in self.observations],
            "mean_30d": self.mean_30d,
            "variance_30d": self.variance_30d,
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> BaselineRecord:
        try:
            last = data.get("last_updated")
            return cls(
                metric_id=str(data["metric_id"]),
                ema_7d=_opt_float(data.get("ema_7d")),
                ema_prev=_opt_float(data.get("ema_prev")),
                ema_day=data.get("ema_day"),
                ema_count=int(data.get("ema_count", 0)),
                observations=[(str(d), float(v)) for d, v in data.get("observations", [])],
                mean_30d=_opt_float(data.get("mean_30d")),
                variance_30d=_opt_float(data.get("variance_30d")),
                last_updated=datetime.fromisoformat(last) if last else None,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise CorruptStateError(f"bad baseline record: {e}") from e


def _opt_float(v: Any) -> float | None:
    return None if v is None else float(v)


@dataclass
class Deviation:
    delta_vs_30d: float | None
    z_score_30d: float | None


class BaselineStore:
    """In-memory view of all baseline records, updated by day-keyed upsert.

    The store never touches disk; :mod:`vitalsync.persistence` loads and
    saves its records.
    """

    def __init__(
        self,
        records: Mapping[str, BaselineRecord] | None = None,
        ema_days: int = EMA_DAYS,
        rolling_days: int = ROLLING_DAYS,
    ) -> None:
        self._records: dict[str, BaselineRecord] = dict(records or {})
        self.ema_days = ema_days
        self.rolling_days = rolling_days
        self.alpha = ema_alpha(ema_days)

    def __contains__(self, metric: str) -> bool:
        return metric in self._records

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._records))

    def __len__(self) -> int:
        return len(self._records)

    def get(self, metric: str) -> BaselineRecord | None:
        return self._records.get(metric)

    @property
    def records(self) -> dict[str, BaselineRecord]:
        return dict(self._records)

    def status(self, metric: str) -> str:
        rec = self._records.get(metric)
        return rec.status(self.ema_days, self.rolling_days) if rec else "cold"

    def reset(self, metric: str | None = None) -> None:
        """Drop one metric's record, or all of them."""
        if metric is None:
            self._records.clear()
        else:
            self._records.pop(metric, None)

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------

    def update(self, metric: str, day: str, value: float, now: datetime) -> BaselineRecord:
        """Upsert *value* as the observation for *day* (ISO date)."""
        rec = self._records.get(metric) or BaselineRecord(metric_id=metric)

        by_day = dict(rec.observations)
        by_day[day] = value
        window = sorted(by_day.items())[-self.rolling_days:]
        rec.observations = window
        rec.mean_30d, rec.variance_30d = _mean_var([v for _, v in window])

        if rec.ema_day is None:
            rec.ema_prev, rec.ema_7d = None, value
            rec.ema_day, rec.ema_count = day, 1
        elif day == rec.ema_day:
            rec.ema_7d = value if rec.ema_prev is None else self._blend(rec.ema_prev, value)
        elif day > rec.ema_day:
            rec.ema_prev = rec.ema_7d
            rec.ema_7d = self._blend(rec.ema_7d, value)
            rec.ema_day = day
            rec.ema_count += 1

        rec.last_updated = now
        self._records[metric] = rec
        return rec

    def _blend(self, ema: float | None, x: float) -> float:
        if ema is None:
            return x
        return self.alpha * x + (1.0 - self.alpha) * ema

    def deviation(self, metric: str, value: float | None) -> Deviation:
        """Deviation of *value* from the metric's 30-day mean."""
        rec = self._records.get(metric)
        if value is None or rec is None or rec.mean_30d is None:
            return Deviation(None, None)
        delta = value - rec.mean_30d
        std = rec.std_30d
        z = delta / std if std else None
        return Deviation(delta, z)

    def annotate(self, metric: str, result: MetricResult) -> None:
        """Fold the metric's baseline figures into *result* in place."""
        rec = self._records.get(metric)
        result.baseline_status = self.status(metric)
        if rec is None:
            return
        result.baseline_7d_ema = rec.ema_7d
        result.baseline_30d_mean = rec.mean_30d
        result.baseline_30d_std = rec.std_30d
        dev = self.deviation(metric, result.value)
        result.delta_vs_30d = dev.delta_vs_30d
        result.z_score_30d = dev.z_score_30d

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, dict[str, Any]]:
        return {k: self._records[k].to_dict() for k in sorted(self._records)}

    @classmethod
    def from_dict(
        cls,
        data: Mapping[str, Any],
        ema_days: int = EMA_DAYS,
        rolling_days: int = ROLLING_DAYS,
    ) -> BaselineStore:
        if not isinstance(data, Mapping):
            raise CorruptStateError("baselines must be a mapping")
        records = {}
        for metric, raw in data.items():
            if not isinstance(raw, Mapping):
                raise CorruptStateError(f"baseline for {metric!r} is not a mapping")
            records[metric] = BaselineRecord.from_dict(raw)
        return cls(records, ema_days=ema_days, rolling_days=rolling_days)
