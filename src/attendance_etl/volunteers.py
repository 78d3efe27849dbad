"""attendance_etl.volunteers

Volunteer roster maintenance (--mode volunteer_add | volunteer_list |
volunteer_remove).  Volunteers are independent of events and participants.
"""

from __future__ import annotations

from datetime import datetime

from attendance_etl.models import Volunteer
from attendance_etl.normalize import normalize_email, parse_event_date, trim
from attendance_etl.shared import NotFoundError, ValidationError
from attendance_etl.store import AttendanceStore


def _parse_joined_at(value: str | datetime | None) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    text = trim(value)
    if text is None:
        return None
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        pass
    parsed = parse_event_date(text)
    if parsed is None:
        raise ValidationError(f"Validation failed: joinedAt: invalid date {value!r}")
    return datetime(parsed.year, parsed.month, parsed.day)


def add_volunteer(
    store: AttendanceStore,
    name: str | None,
    phone_number: str | None = None,
    email: str | None = None,
    joined_at: str | datetime | None = None,
    comments: str | None = None,
) -> Volunteer:
    clean_name = trim(name)
    if clean_name is None:
        raise ValidationError("Validation failed: name: Name is required")
    joined = _parse_joined_at(joined_at)
    with store.transaction():
        return store.insert_volunteer(
            clean_name,
            trim(phone_number),
            normalize_email(email),
            joined,
            trim(comments),
        )


def list_volunteers(store: AttendanceStore) -> list[Volunteer]:
    """Newest joined first."""
    with store.transaction():
        return store.list_volunteers()


def remove_volunteer(store: AttendanceStore, volunteer_id: str) -> None:
    with store.transaction():
        if not store.delete_volunteer(volunteer_id):
            raise NotFoundError(f"Volunteer not found: {volunteer_id}")


def volunteer_export_rows(volunteers: list[Volunteer]) -> list[dict[str, str]]:
    return [
        {
            "Name": v.name,
            "Phone Number": v.phone_number or "",
            "Email": v.email or "",
            "Joined At": v.joined_at.isoformat(),
            "Comments": v.comments or "",
        }
        for v in volunteers
    ]
