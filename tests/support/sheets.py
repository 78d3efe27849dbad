"""openpyxl helpers for building and reading workbooks in tests."""

from __future__ import annotations

import io
from collections.abc import Sequence
from typing import Any

from openpyxl import Workbook, load_workbook

HEADERS = ("Full Name", "Email", "Company", "City")


def xlsx(rows: Sequence[Sequence[Any]], headers: Sequence[Any] | None = HEADERS) -> bytes:
    """Workbook bytes whose first sheet holds headers (if any) then rows."""
    wb = Workbook()
    ws = wb.active
    if headers is not None:
        ws.append(list(headers))
    for row in rows:
        ws.append(list(row))
    out = io.BytesIO()
    wb.save(out)
    return out.getvalue()


def people(*emails: str) -> bytes:
    """Participant workbook with one row per email and derived names."""
    return xlsx([
        (email.split("@")[0].title(), email, "Acme", "Portland")
        for email in emails
    ])


def read_sheets(data: bytes) -> dict[str, list[tuple[Any, ...]]]:
    """Sheet title -> list of row tuples (header row included)."""
    wb = load_workbook(io.BytesIO(data))
    return {
        ws.title: [tuple(r) for r in ws.iter_rows(values_only=True)]
        for ws in wb.worksheets
    }
