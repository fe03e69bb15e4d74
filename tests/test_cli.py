"""Tests for vitalsync.cli -- click commands."""

import json

import pytest
from click.testing import CliRunner

from vitalsync.cli import main
from vitalsync.config import ENV_KEYS

from tests.conftest import interval_entry, sample_entry, write_jsonl


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for key in ENV_KEYS:
        monkeypatch.setenv(key, "")
        monkeypatch.delenv(key)
    monkeypatch.setenv("VITALSYNC_TIMEZONE", "UTC")
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def export(tmp_path):
    return write_jsonl(tmp_path / "export.jsonl", [
        interval_entry("2024-03-09T23:50:00Z", "2024-03-10T06:10:00Z", "core"),
        sample_entry("hrv_sdnn", "2024-03-09T23:50:00Z", "2024-03-10T06:10:00Z", 50.0),
        sample_entry("heart_rate", "2024-03-10T08:00:00Z", "2024-03-10T08:00:00Z", 64.0),
    ])


def _invoke(state_dir, *args):
    return CliRunner().invoke(main, ["--state-dir", str(state_dir), *args])


class TestRefresh:
    def test_prints_summary_and_writes_output(self, tmp_path, export):
        out = tmp_path / "report.json"
        result = _invoke(tmp_path / "state", "refresh", "--samples", str(export), "-o", str(out))
        assert result.exit_code == 0, result.output
        assert "hrv_sdnn_ms" in result.output
        assert "Flags:" in result.output
        data = json.loads(out.read_text())
        assert set(data["flags"]) >= {"missing_hrv", "aggregation_error"}
        assert (tmp_path / "state" / "state.json").exists()

    def test_quiet(self, tmp_path, export):
        result = _invoke(tmp_path / "state", "refresh", "--samples", str(export), "--quiet")
        assert result.exit_code == 0
        assert "hrv_sdnn_ms" not in result.output

    def test_missing_file(self, tmp_path):
        result = _invoke(tmp_path / "state", "refresh", "--samples", str(tmp_path / "nope.jsonl"))
        assert result.exit_code != 0


class TestShow:
    def test_no_report(self, tmp_path):
        result = _invoke(tmp_path / "state", "show")
        assert result.exit_code != 0
        assert "no report saved yet" in result.output

    def test_after_refresh(self, tmp_path, export):
        _invoke(tmp_path / "state", "refresh", "--samples", str(export), "-q")
        result = _invoke(tmp_path / "state", "show")
        assert result.exit_code == 0
        assert "readiness_signals" in json.loads(result.output)


class TestBaselines:
    def test_empty(self, tmp_path):
        result = _invoke(tmp_path / "state", "baselines")
        assert result.exit_code == 0
        assert "No baselines yet." in result.output

    def test_corrupt_state(self, tmp_path):
        state = tmp_path / "state"
        state.mkdir()
        (state / "state.json").write_text("garbage")
        result = _invoke(state, "baselines")
        assert result.exit_code != 0


class TestReset:
    def test_requires_a_flag(self, tmp_path):
        result = _invoke(tmp_path / "state", "reset")
        assert result.exit_code == 2

    def test_reset_both(self, tmp_path):
        result = _invoke(tmp_path / "state", "reset", "--baselines", "--anchors")
        assert result.exit_code == 0
        assert "Baselines cleared." in result.output
        assert "Anchors cleared." in result.output


class TestConfigErrors:
    def test_bad_timezone(self, tmp_path, monkeypatch):
        monkeypatch.setenv("VITALSYNC_TIMEZONE", "Nowhere/Land")
        result = _invoke(tmp_path / "state", "show")
        assert result.exit_code == 1
        assert "invalid configuration" in result.output
