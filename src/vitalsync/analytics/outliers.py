"""Validity ranges applied to aggregated values before the baseline update.

Only metrics with a documented physiological range are checked; every
other metric passes through untouched.  Capping never drops a value, it
clamps it and records ``outlier_capped``.  Non-finite values are the only
ones discarded.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import Enum

from vitalsync.models import MetricResult, QualityTag

log = logging.getLogger(__name__)


class Verdict(str, Enum):
    VALID = "valid"
    CAPPED = "capped"
    DISCARDED = "discarded"
    MISSING = "missing"


# metric → (low, high), inclusive
VALID_RANGES: dict[str, tuple[float, float]] = {
    "hrv_sdnn_ms": (5.0, 250.0),
    "resting_hr_bpm": (30.0, 120.0),
    "wrist_temp_delta_c": (-2.0, 2.0),
}


@dataclass
class Classification:
    verdict: Verdict
    value: float | None
    tags: set[QualityTag] = field(default_factory=set)


def classify(metric: str, value: float | None, sample_count: int) -> Classification:
    """Classify one aggregated value against its validity range."""
    if sample_count == 0:
        return Classification(Verdict.MISSING, None, {QualityTag.MISSING_DATA})
    if value is None:
        # Recorded, but nothing to report (e.g. no REM in a staged night)
        return Classification(Verdict.MISSING, None)
    if not math.isfinite(value):
        return Classification(Verdict.DISCARDED, None, {QualityTag.OUTLIER_DISCARDED})

    bounds = VALID_RANGES.get(metric)
    if bounds is None:
        return Classification(Verdict.VALID, value)
    low, high = bounds
    if value < low or value > high:
        capped = min(max(value, low), high)
        log.warning("%s=%s outside [%s, %s]; capped to %s", metric, value, low, high, capped)
        return Classification(Verdict.CAPPED, capped, {QualityTag.OUTLIER_CAPPED})
    return Classification(Verdict.VALID, value)


def apply_policy(metric: str, result: MetricResult) -> Verdict:
    """Run :func:`classify` on *result* and update it in place.

    Returns the verdict so the caller can decide whether the value may
    feed the baseline (VALID and CAPPED may, the others may not).
    """
    c = classify(metric, result.value, result.sample_count)
    result.value = c.value
    result.quality |= c.tags
    return c.verdict
