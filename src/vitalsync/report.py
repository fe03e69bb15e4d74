"""Report assembly.

Packs the aggregation output into a :class:`Report` whose key set never
changes between runs (absent values are ``null``, never missing keys), and
serializes it to JSON.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

from vitalsync.models import HRPoint, MetricResult, NightWindow

SCHEMA_VERSION = "1"

FLAG_NAMES = (
    "missing_hrv",
    "missing_resting_hr",
    "missing_respiratory_rate",
    "missing_wrist_temp",
    "missing_spo2",
    "low_sleep_confidence",
    "permissions_partial",
    "fetch_partial",
    "outliers_capped",
    "persistence_failed",
    "aggregation_error",
)


@dataclass
class ReportMeta:
    generated_at: datetime  # UTC
    timezone: str
    seconds_from_gmt: int
    app_version: str
    schema_version: str = SCHEMA_VERSION
    committed: bool = False
    new_samples: int = 0


@dataclass
class ReportWindows:
    night_start: datetime | None
    night_end: datetime | None
    yesterday_start: datetime
    today_start: datetime


@dataclass
class WorkoutSummary:
    type: str
    start: datetime
    end: datetime
    duration_min: float
    average_heart_rate: float | None = None
    max_heart_rate: float | None = None
    total_distance_m: float | None = None
    active_energy_kcal: float | None = None
    avg_speed_m_per_s: float | None = None
    route_segments: int | None = None
    effort_score: float | None = None
    estimated_effort_score: float | None = None


@dataclass
class ActivityDay:
    """Activity aggregates for one calendar range."""

    steps: int | None = None
    active_energy_kcal: float | None = None
    basal_energy_kcal: float | None = None
    distance_walking_running_m: float | None = None
    distance_cycling_m: float | None = None
    distance_swimming_m: float | None = None
    flights_climbed: float | None = None
    exercise_min: float | None = None
    stand_min: float | None = None
    stand_hours: int | None = None
    avg_heart_rate_bpm: float | None = None
    max_heart_rate_bpm: float | None = None
    vo2_max: float | None = None
    workouts: list[WorkoutSummary] = field(default_factory=list)
    heart_rate_bpm: list[HRPoint] | None = None
    hr_zones_sec: dict[str, float] | None = None


@dataclass
class HealthDay:
    """Day-level health aggregates for one calendar range."""

    mindful_min: float | None = None
    dietary_energy_kcal: float | None = None
    dietary_water_l: float | None = None
    dietary_carbohydrates_g: float | None = None
    dietary_protein_g: float | None = None
    dietary_fat_g: float | None = None
    dietary_caffeine_mg: float | None = None
    dietary_sodium_mg: float | None = None
    blood_glucose_mg_dl: float | None = None
    blood_pressure_systolic_mmhg: float | None = None
    blood_pressure_diastolic_mmhg: float | None = None
    oxygen_saturation_avg_pct: float | None = None
    body_temperature_c: float | None = None
    body_mass_kg: float | None = None
    body_mass_index: float | None = None
    body_fat_pct: float | None = None
    ecg_count: int | None = None


@dataclass
class Report:
    """One refresh snapshot."""

    meta: ReportMeta
    windows: ReportWindows
    readiness_signals: dict[str, MetricResult]
    activity: dict[str, ActivityDay]  # "yesterday" / "today"
    health: dict[str, HealthDay]
    flags: dict[str, bool]

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain dict (JSON-friendly)."""
        return {
            "meta": _plain(asdict(self.meta)),
            "windows": _plain(asdict(self.windows)),
            "readiness_signals": {k: v.to_dict() for k, v in self.readiness_signals.items()},
            "activity": {k: _plain(asdict(v)) for k, v in self.activity.items()},
            "health": {k: _plain(asdict(v)) for k, v in self.health.items()},
            "flags": dict(self.flags),
        }

    def to_json(self, indent: int = 2) -> str:
        """Serialize to a JSON string with sorted keys."""
        return json.dumps(self.to_dict(), indent=indent, sort_keys=True, ensure_ascii=False)

    def __repr__(self) -> str:
        raised = [k for k, v in self.flags.items() if v]
        return (
            f"Report({self.meta.generated_at.isoformat()}: "
            f"{len(self.readiness_signals)} signals, flags={raised})"
        )


def _plain(obj: Any) -> Any:
    """Recursively turn datetimes into ISO strings."""
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, dict):
        return {k: _plain(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_plain(v) for v in obj]
    return obj


def build_flags(**raised: bool) -> dict[str, bool]:
    """All known flags, False unless raised here."""
    unknown = set(raised) - set(FLAG_NAMES)
    if unknown:
        raise KeyError(f"unknown flag(s): {sorted(unknown)}")
    return {name: bool(raised.get(name, False)) for name in FLAG_NAMES}


def build_report(
    now: datetime,
    tz_name: str,
    seconds_from_gmt: int,
    app_version: str,
    night: NightWindow | None,
    yesterday_start: datetime,
    today_start: datetime,
    readiness: dict[str, MetricResult],
    activity: dict[str, ActivityDay],
    health: dict[str, HealthDay],
    flags: dict[str, bool],
    committed: bool = False,
    new_samples: int = 0,
) -> Report:
    """Assemble a :class:`Report` from the aggregation outputs."""
    meta = ReportMeta(
        generated_at=now.astimezone(timezone.utc),
        timezone=tz_name,
        seconds_from_gmt=seconds_from_gmt,
        app_version=app_version,
        committed=committed,
        new_samples=new_samples,
    )
    windows = ReportWindows(
        night_start=night.start if night else None,
        night_end=night.end if night else None,
        yesterday_start=yesterday_start,
        today_start=today_start,
    )
    return Report(
        meta=meta,
        windows=windows,
        readiness_signals=readiness,
        activity=activity,
        health=health,
        flags=flags,
    )
