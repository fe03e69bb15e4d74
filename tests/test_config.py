"""Tests for vitalsync.config -- environment-driven settings."""

import pytest

from vitalsync import __version__
from vitalsync.config import ENV_KEYS, LogLevel, Settings, load_settings
from vitalsync.errors import ConfigError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    # setenv first so teardown also removes anything a .env file loads
    for key in ENV_KEYS:
        monkeypatch.setenv(key, "")
        monkeypatch.delenv(key)
    # keep load_dotenv from picking up a developer's .env
    monkeypatch.chdir(tmp_path)


class TestSettings:
    def test_defaults(self):
        s = load_settings()
        assert s.state_dir == "~/.vitalsync"
        assert s.timezone is None
        assert s.app_version == __version__
        assert s.log_level is LogLevel.INFO
        assert s.night_lookback_days == 2
        assert s.reaggregation_days == 3
        assert s.merge_gap_min == 5.0
        assert s.ema_days == 7
        assert s.rolling_days == 30
        assert s.fetch_timeout_sec == 30.0
        assert s.tz() is None

    def test_environment(self, monkeypatch):
        monkeypatch.setenv("VITALSYNC_TIMEZONE", "Europe/Berlin")
        monkeypatch.setenv("VITALSYNC_EMA_DAYS", "14")
        monkeypatch.setenv("VITALSYNC_LOG_LEVEL", "DEBUG")
        s = load_settings()
        assert s.timezone == "Europe/Berlin"
        assert s.tz().key == "Europe/Berlin"
        assert s.ema_days == 14
        assert s.log_level is LogLevel.DEBUG

    def test_dotenv_file(self, tmp_path):
        (tmp_path / ".env").write_text("VITALSYNC_ROLLING_DAYS=21\n")
        assert load_settings().rolling_days == 21

    def test_overrides_win(self, monkeypatch):
        monkeypatch.setenv("VITALSYNC_STATE_DIR", "/from/env")
        s = load_settings(state_dir="/from/cli", log_level=None)
        assert s.state_dir == "/from/cli"
        assert s.log_level is LogLevel.INFO

    def test_field_names_accepted(self):
        s = Settings(state_dir="/tmp/x", timezone="UTC")
        assert s.state_dir == "/tmp/x"


class TestValidation:
    def test_unknown_timezone(self, monkeypatch):
        monkeypatch.setenv("VITALSYNC_TIMEZONE", "Mars/Olympus")
        with pytest.raises(ConfigError):
            load_settings()

    def test_reaggregation_must_cover_lookback(self, monkeypatch):
        monkeypatch.setenv("VITALSYNC_NIGHT_LOOKBACK_DAYS", "4")
        with pytest.raises(ConfigError):
            load_settings()

    def test_bad_number(self, monkeypatch):
        monkeypatch.setenv("VITALSYNC_EMA_DAYS", "zero")
        with pytest.raises(ConfigError):
            load_settings()

    def test_bad_log_level(self, monkeypatch):
        monkeypatch.setenv("VITALSYNC_LOG_LEVEL", "CHATTY")
        with pytest.raises(ConfigError):
            load_settings()

    def test_config_error_is_vitalsync_error(self):
        from vitalsync.errors import VitalSyncError

        assert issubclass(ConfigError, VitalSyncError)
