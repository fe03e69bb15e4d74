"""Error taxonomy for the aggregation engine.

Only a few of these ever travel far: per-stream and per-metric failures are
caught inside :mod:`vitalsync.sync` and turned into null values plus flags.
"""

from __future__ import annotations


class VitalSyncError(Exception):
    """Base class for all vitalsync errors."""


class NoDataAvailable(VitalSyncError):
    """A stream returned zero samples (treated exactly like an empty result)."""


class TransientFetchFailure(VitalSyncError):
    """The sample source could not serve a stream this run."""

    def __init__(self, stream_id: str, reason: str = "unavailable") -> None:
        super().__init__(f"{stream_id}: {reason}")
        self.stream_id = stream_id
        self.reason = reason


class PermissionDenied(TransientFetchFailure):
    """The sample source refused a stream for authorization reasons."""

    def __init__(self, stream_id: str, reason: str = "not authorized") -> None:
        super().__init__(stream_id, reason)


class InvalidWindow(VitalSyncError, ValueError):
    """A window was constructed with ``end`` before (or equal to) ``start``."""


class PersistenceWriteFailure(VitalSyncError):
    """A state or report write did not complete."""


class CorruptStateError(VitalSyncError):
    """Persisted state exists but cannot be decoded."""


class ConfigError(VitalSyncError):
    """Settings failed validation."""


class ClockUnavailable(VitalSyncError):
    """The time source could not be read."""
