"""On-disk state: baselines, sync anchors and the last good report.

Baselines and anchors share one ``state.json`` so a run can commit both
with a single atomic replace; a crash leaves either the old file or the
new one, never a mix.  The report lives in ``report.json``.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Mapping

from vitalsync.analytics.baseline import BaselineRecord
from vitalsync.errors import CorruptStateError, PersistenceWriteFailure
from vitalsync.models import AnchorRecord

log = logging.getLogger(__name__)

STATE_FILE = "state.json"
REPORT_FILE = "report.json"
STATE_VERSION = 1


def atomic_write_text(path: Path, text: str) -> None:
    """Write *text* to *path* via a temp file and ``os.replace``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except OSError as e:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise PersistenceWriteFailure(f"could not write {path}: {e}") from e


class JsonStore:
    """File-backed persistence rooted at *state_dir*."""

    def __init__(self, state_dir: str | Path) -> None:
        self.state_dir = Path(state_dir).expanduser()

    @property
    def state_path(self) -> Path:
        return self.state_dir / STATE_FILE

    @property
    def report_path(self) -> Path:
        return self.state_dir / REPORT_FILE

    # ------------------------------------------------------------------
    # State file
    # ------------------------------------------------------------------

    def _read_state(self) -> dict[str, Any]:
        if not self.state_path.exists():
            return {"version": STATE_VERSION, "baselines": {}, "anchors": {}}
        try:
            data = json.loads(self.state_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise CorruptStateError(f"cannot read {self.state_path}: {e}") from e
        if not isinstance(data, dict):
            raise CorruptStateError(f"{self.state_path} does not hold an object")
        data.setdefault("baselines", {})
        data.setdefault("anchors", {})
        return data

    def _write_state(self, baselines: dict[str, Any], anchors: dict[str, Any]) -> None:
        payload = {"version": STATE_VERSION, "baselines": baselines, "anchors": anchors}
        atomic_write_text(self.state_path, json.dumps(payload, indent=2, sort_keys=True))

    def load_baselines(self) -> dict[str, BaselineRecord]:
        raw = self._read_state()["baselines"]
        if not isinstance(raw, dict):
            raise CorruptStateError("baselines section is not an object")
        return {metric: BaselineRecord.from_dict(rec) for metric, rec in raw.items()}

    def load_anchors(self) -> dict[str, AnchorRecord]:
        raw = self._read_state()["anchors"]
        try:
            return {stream: AnchorRecord.from_dict(rec) for stream, rec in raw.items()}
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise CorruptStateError(f"bad anchor record: {e}") from e

    def save_baselines(self, baselines: Mapping[str, BaselineRecord]) -> None:
        state = self._read_state()
        self._write_state(_baselines_json(baselines), state["anchors"])

    def save_anchors(self, anchors: Mapping[str, AnchorRecord]) -> None:
        state = self._read_state()
        self._write_state(state["baselines"], _anchors_json(anchors))

    def commit(
        self,
        baselines: Mapping[str, BaselineRecord],
        anchors: Mapping[str, AnchorRecord],
    ) -> None:
        """Replace baselines and anchors together in one write."""
        self._write_state(_baselines_json(baselines), _anchors_json(anchors))
        log.info("committed %d baseline(s) and %d anchor(s)", len(baselines), len(anchors))

    def reset_baselines(self) -> None:
        state = self._read_state()
        self._write_state({}, state["anchors"])

    def reset_anchors(self) -> None:
        state = self._read_state()
        self._write_state(state["baselines"], {})

    # ------------------------------------------------------------------
    # Report
    # ------------------------------------------------------------------

    def load_last_report_json(self) -> str | None:
        try:
            return self.report_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def save_report_json(self, text: str) -> None:
        atomic_write_text(self.report_path, text)


def _baselines_json(baselines: Mapping[str, BaselineRecord]) -> dict[str, Any]:
    return {k: baselines[k].to_dict() for k in sorted(baselines)}


def _anchors_json(anchors: Mapping[str, AnchorRecord]) -> dict[str, Any]:
    return {k: anchors[k].to_dict() for k in sorted(anchors)}
