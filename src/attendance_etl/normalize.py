"""Normalization functions for attendance spreadsheet ingestion.

All text functions accept str | None and return the appropriate type or None.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

_DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%b %d, %Y",
    "%B %d, %Y",
    "%d %b %Y",
    "%m/%d/%Y",
    "%B %d %Y",
    "%b %d %Y",
    "%d %B %Y",
    "%a %b %d %Y",
)


# ---------------------------------------------------------------------------
# Rule 1: trim
# ---------------------------------------------------------------------------

def trim(value: str | None) -> str | None:
    """Strip leading/trailing whitespace; treat empty string as None."""
    if value is None:
        return None
    v = value.strip()
    return v if v else None


# ---------------------------------------------------------------------------
# Rule 2: normalize_email
# ---------------------------------------------------------------------------

def normalize_email(value: str | None) -> str | None:
    """Lowercase and trim an email address."""
    v = trim(value)
    if v is None:
        return None
    return v.lower()


# ---------------------------------------------------------------------------
# Rule 3: normalize_header
# ---------------------------------------------------------------------------

def normalize_header(value: Any) -> str:
    """Lowercase, trimmed header label; blank or missing headers become ''."""
    return (cell_text(value) or "").lower()


# ---------------------------------------------------------------------------
# Rule 4: cell_text
# ---------------------------------------------------------------------------

def cell_text(value: Any) -> str | None:
    """Coerce a spreadsheet cell value to trimmed text, or None when blank.

    Integral floats (Excel stores every number as a float) lose the
    trailing '.0' so that numeric IDs and phone numbers survive as typed.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, float) and value.is_integer():
        return trim(str(int(value)))
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return trim(str(value))


# ---------------------------------------------------------------------------
# Rule 5: parse_event_date
# ---------------------------------------------------------------------------

def parse_event_date(value: str | date | None) -> date | None:
    """Parse an event date, returning None on failure.

    Accepts date/datetime objects, ISO-8601 dates and timestamps
    ('2025-07-23', '2025-07-23T18:00:00Z') and a few human formats
    such as 'Jul 23, 2025'.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    v = trim(value)
    if v is None:
        return None
    try:
        return datetime.fromisoformat(v.replace("Z", "+00:00")).date()
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(v, fmt).date()
        except ValueError:
            continue
    return None


def first_non_empty(incoming: str | None, existing: str | None) -> str | None:
    """Return the incoming value unless it is blank, else keep the existing one."""
    return trim(incoming) or existing
