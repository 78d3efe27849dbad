"""attendance_etl.shared

Shared utilities used by the import, attendance and export modes.
Includes the error taxonomy, RejectWriter, and report-writing support.
"""

from __future__ import annotations

import csv
import json
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class AttendanceError(Exception):
    """Base class for every error surfaced to the operator."""


class ValidationError(AttendanceError):
    """Malformed event name/date or request shape."""


class SchemaError(AttendanceError):
    """Spreadsheet is unreadable or missing required headers."""


class InputError(AttendanceError):
    """No usable participant rows across the provided files."""


class NotFoundError(AttendanceError):
    """Referenced event (or volunteer) id does not exist."""


class StoreError(AttendanceError):
    """Underlying persistence failure (constraint, connectivity, ...)."""


# ---------------------------------------------------------------------------
# RejectWriter
# ---------------------------------------------------------------------------

class RejectWriter:
    """Lazy-open CSV writer for rejected rows."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._fh = None
        self._writer = None

    def write(self, row: dict[str, str], reason: str) -> None:
        if self._fh is None:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._fh = open(self._path, "w", newline="", encoding="utf-8")
            fieldnames = list(row.keys()) + ["_reject_reason"]
            self._writer = csv.DictWriter(
                self._fh, fieldnames=fieldnames, extrasaction="ignore"
            )
            self._writer.writeheader()
        out = dict(row)
        out["_reject_reason"] = reason
        self._writer.writerow(out)
        self._fh.flush()

    @property
    def opened(self) -> bool:
        return self._fh is not None

    def close(self) -> None:
        if self._fh:
            self._fh.close()


# ---------------------------------------------------------------------------
# Report writer
# ---------------------------------------------------------------------------

class SupportsToDict(Protocol):
    def to_dict(self) -> dict[str, Any]: ...


def write_run_report(
    run_id: str,
    started_at: str,
    mode: str,
    dry_run: bool,
    source_paths: dict[str, str | None],
    counters: SupportsToDict,
    report_dir: Path = Path("./artifacts/reports"),
) -> Path:
    report = {
        "run_id": run_id,
        "mode": mode,
        "started_at": started_at,
        "finished_at": datetime.utcnow().isoformat(),
        "dry_run": dry_run,
        **source_paths,
        "counters": counters.to_dict(),
    }
    report_path = report_dir / f"{run_id}.json"
    report_path.parent.mkdir(parents=True, exist_ok=True)
    report_path.write_text(json.dumps(report, indent=2, default=str))
    return report_path
