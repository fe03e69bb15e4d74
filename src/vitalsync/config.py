import os
from datetime import tzinfo
from enum import StrEnum
from typing import Final
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from vitalsync import __version__
from vitalsync.errors import ConfigError


class LogLevel(StrEnum):
    CRITICAL = "CRITICAL"
    ERROR = "ERROR"
    WARNING = "WARNING"
    INFO = "INFO"
    DEBUG = "DEBUG"


class Settings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    state_dir: str = Field(default="~/.vitalsync", validation_alias="VITALSYNC_STATE_DIR")
    # IANA zone name; None means the host's local zone
    timezone: str | None = Field(default=None, validation_alias="VITALSYNC_TIMEZONE")
    app_version: str = Field(default=__version__, validation_alias="VITALSYNC_APP_VERSION")
    log_level: LogLevel = Field(default=LogLevel.INFO, validation_alias="VITALSYNC_LOG_LEVEL")

    night_lookback_days: int = Field(default=2, ge=1, validation_alias="VITALSYNC_NIGHT_LOOKBACK_DAYS")
    reaggregation_days: int = Field(default=3, ge=1, validation_alias="VITALSYNC_REAGGREGATION_DAYS")
    merge_gap_min: float = Field(default=5.0, ge=0, validation_alias="VITALSYNC_MERGE_GAP_MIN")
    ema_days: int = Field(default=7, ge=1, validation_alias="VITALSYNC_EMA_DAYS")
    rolling_days: int = Field(default=30, ge=1, validation_alias="VITALSYNC_ROLLING_DAYS")
    fetch_timeout_sec: float = Field(default=30.0, gt=0, validation_alias="VITALSYNC_FETCH_TIMEOUT_SEC")

    @model_validator(mode="after")
    def _check_windows(self) -> "Settings":
        if self.reaggregation_days < self.night_lookback_days:
            raise ValueError("reaggregation_days must cover night_lookback_days")
        if self.timezone is not None:
            try:
                ZoneInfo(self.timezone)
            except (ZoneInfoNotFoundError, ValueError) as e:
                raise ValueError(f"unknown timezone {self.timezone!r}") from e
        return self

    def tz(self) -> tzinfo | None:
        """The configured zone, or None for the host's local zone."""
        return ZoneInfo(self.timezone) if self.timezone else None


ENV_KEYS: Final[tuple[str, ...]] = (
    "VITALSYNC_STATE_DIR",
    "VITALSYNC_TIMEZONE",
    "VITALSYNC_APP_VERSION",
    "VITALSYNC_LOG_LEVEL",
    "VITALSYNC_NIGHT_LOOKBACK_DAYS",
    "VITALSYNC_REAGGREGATION_DAYS",
    "VITALSYNC_MERGE_GAP_MIN",
    "VITALSYNC_EMA_DAYS",
    "VITALSYNC_ROLLING_DAYS",
    "VITALSYNC_FETCH_TIMEOUT_SEC",
)


def load_settings(**overrides: object) -> Settings:
    # Load .env from the working directory if present
    load_dotenv(find_dotenv(usecwd=True))
    data: dict[str, object] = {}
    for key in ENV_KEYS:
        if key in os.environ:
            data[key] = os.environ[key]
    # Explicit overrides (e.g. CLI options) win over the environment
    for key, value in overrides.items():
        if value is not None:
            data[f"VITALSYNC_{key.upper()}"] = value

    try:
        return Settings.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"invalid configuration: {e}") from e
