"""attendance_etl.workbook

Excel (.xlsx) reader and writer for participant lists.

Reading: first worksheet only, first row is the header row.  Required
headers (case-insensitive, any order): Full Name, Email, Company, City.
Extra columns are ignored.  Rows without an email are dropped, emails are
lowercased, and duplicate emails collapse to their first occurrence.

Writing: one workbook per call, one sheet per (name, rows) pair, each a
header row followed by one row per mapping.
"""

from __future__ import annotations

import io
import re
import zipfile
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from openpyxl import Workbook, load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from attendance_etl.models import ParticipantRow
from attendance_etl.normalize import cell_text, normalize_email, normalize_header
from attendance_etl.shared import SchemaError

REQUIRED_HEADERS = ("full name", "email", "company", "city")

_MAX_SHEET_TITLE = 31
_INVALID_TITLE_CHARS = re.compile(r"[\[\]:*?/\\]")

SheetSpec = tuple[str, Sequence[Mapping[str, Any]], Sequence[str] | None]


# ---------------------------------------------------------------------------
# Reading
# ---------------------------------------------------------------------------

def _read_first_sheet(data: bytes) -> list[tuple[Any, ...]]:
    try:
        wb = load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as exc:
        raise SchemaError(f"Unable to read workbook: {exc}") from exc
    try:
        if not wb.worksheets:
            return []
        return list(wb.worksheets[0].iter_rows(values_only=True))
    finally:
        wb.close()


def _header_index(header_row: Sequence[Any]) -> dict[str, int]:
    """Map normalized header label -> column index; first occurrence wins."""
    index: dict[str, int] = {}
    for col, raw in enumerate(header_row):
        label = normalize_header(raw)
        if label and label not in index:
            index[label] = col
    return index


def _cell(row: Sequence[Any], col: int) -> str | None:
    return cell_text(row[col]) if col < len(row) else None


def parse_participant_workbook(data: bytes) -> list[ParticipantRow]:
    """Parse an uploaded workbook into de-duplicated participant rows.

    Returns [] for a workbook with no sheet or no rows at all.
    Raises SchemaError when the header row lacks a required column.
    """
    rows = [r for r in _read_first_sheet(data) if any(cell_text(v) is not None for v in r)]
    if not rows:
        return []

    index = _header_index(rows[0])
    missing = [h for h in REQUIRED_HEADERS if h not in index]
    if missing:
        raise SchemaError(
            "Missing required headers. Expected: "
            f"{', '.join(REQUIRED_HEADERS)} (missing: {', '.join(missing)})"
        )

    deduped: dict[str, ParticipantRow] = {}
    for raw in rows[1:]:
        email = normalize_email(_cell(raw, index["email"]))
        if not email:
            continue
        if email in deduped:
            continue
        deduped[email] = ParticipantRow(
            full_name=_cell(raw, index["full name"]) or "",
            email=email,
            company=_cell(raw, index["company"]),
            city=_cell(raw, index["city"]),
        )
    return list(deduped.values())


# ---------------------------------------------------------------------------
# Writing
# ---------------------------------------------------------------------------

def _sheet_title(value: str | None, used: set[str], fallback: str = "Sheet") -> str:
    """Excel-safe, unique (case-insensitive) sheet title of at most 31 chars."""
    base = _INVALID_TITLE_CHARS.sub(" ", (value or "").strip())
    base = re.sub(r"\s+", " ", base).strip() or fallback
    index = 1
    while True:
        suffix = f" ({index})" if index > 1 else ""
        candidate = f"{base[: _MAX_SHEET_TITLE - len(suffix)]}{suffix}"
        if candidate.lower() not in used:
            used.add(candidate.lower())
            return candidate
        index += 1


def build_workbook(sheets: Iterable[SheetSpec]) -> bytes:
    """Build an xlsx workbook from (sheet_name, rows, headers) triples.

    When headers is None the first row's keys are used; an empty sheet
    without explicit headers is written blank.
    """
    wb = Workbook()
    wb.remove(wb.active)
    used: set[str] = set()
    for name, rows, headers in sheets:
        ws = wb.create_sheet(title=_sheet_title(name, used))
        columns = list(headers) if headers is not None else (list(rows[0].keys()) if rows else [])
        if columns:
            ws.append(columns)
        for row in rows:
            ws.append([row.get(col, "") for col in columns])
    if not wb.worksheets:
        wb.create_sheet(title="Sheet")

    out = io.BytesIO()
    wb.save(out)
    return out.getvalue()


def build_workbook_from_rows(
    sheet_name: str,
    rows: Sequence[Mapping[str, Any]],
    headers: Sequence[str] | None = None,
) -> bytes:
    """Build a workbook holding a single named sheet."""
    return build_workbook([(sheet_name, rows, headers)])
