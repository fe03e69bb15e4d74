"""vitalsync: incremental aggregation and personal baselines over health samples."""

__version__ = "0.1.0"

from vitalsync.config import Settings, load_settings
from vitalsync.errors import (
    VitalSyncError,
    NoDataAvailable,
    TransientFetchFailure,
    PermissionDenied,
    InvalidWindow,
    PersistenceWriteFailure,
    CorruptStateError,
    ConfigError,
    ClockUnavailable,
)
from vitalsync.models import (
    Sample,
    IntervalEvent,
    SleepStage,
    Window,
    NightWindow,
    MetricResult,
    QualityTag,
    HRPoint,
    Workout,
    Reducer,
    AnchorRecord,
)
from vitalsync.persistence import JsonStore
from vitalsync.report import Report
from vitalsync.source import InMemorySource, SampleSource
from vitalsync.sync import RunResult, SyncCoordinator

__all__ = [
    "__version__",
    # config
    "Settings",
    "load_settings",
    # errors
    "VitalSyncError",
    "NoDataAvailable",
    "TransientFetchFailure",
    "PermissionDenied",
    "InvalidWindow",
    "PersistenceWriteFailure",
    "CorruptStateError",
    "ConfigError",
    "ClockUnavailable",
    # models
    "Sample",
    "IntervalEvent",
    "SleepStage",
    "Window",
    "NightWindow",
    "MetricResult",
    "QualityTag",
    "HRPoint",
    "Workout",
    "Reducer",
    "AnchorRecord",
    # runtime
    "JsonStore",
    "Report",
    "InMemorySource",
    "SampleSource",
    "RunResult",
    "SyncCoordinator",
]
