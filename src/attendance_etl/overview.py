"""attendance_etl.overview

Read-only dashboard summary and spreadsheet export projections.

Nothing here writes; every function reads through the store inside one
transaction so the counts and lists come from the same connection state.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from attendance_etl.models import (
    BlocklistRow,
    EventAggregate,
    NoShowHistoryRow,
    ParticipationStatus,
    RosterRow,
)
from attendance_etl.shared import NotFoundError
from attendance_etl.store import AttendanceStore
from attendance_etl.workbook import SheetSpec

BLOCKLIST_HEADERS = (
    "Full Name", "Email", "Company", "City",
    "Total Missed Events", "First No-Show Event", "First No-Show Date", "Blocked On",
)
CONFIRMED_HEADERS = ("Full Name", "Email", "Company", "City")
NO_SHOW_EVENT_HEADERS = ("Full Name", "Email", "Company", "City", "Event Name", "Event Date")
NO_SHOW_HISTORY_HEADERS = NO_SHOW_EVENT_HEADERS + ("Recorded",)


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------

def no_show_percentage(attended: int, no_shows: int) -> float:
    """Share of no-shows among decided attendances, 2 dp; 0 when none decided."""
    considered = attended + no_shows
    if considered == 0:
        return 0
    return round(no_shows / considered * 100, 2)


@dataclass
class OverviewSummary:
    total_participants: int = 0
    total_attended: int = 0
    total_no_shows: int = 0
    total_blocklisted: int = 0
    no_show_percentage: float = 0
    total_events: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_participants": self.total_participants,
            "total_attended": self.total_attended,
            "total_no_shows": self.total_no_shows,
            "total_blocklisted": self.total_blocklisted,
            "no_show_percentage": self.no_show_percentage,
            "total_events": self.total_events,
        }


@dataclass
class Overview:
    summary: OverviewSummary
    event_history: list[EventAggregate] = field(default_factory=list)
    no_show_history: list[NoShowHistoryRow] = field(default_factory=list)
    blocklist: list[BlocklistRow] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "summary": self.summary.to_dict(),
            "event_history": [
                {
                    "id": e.id,
                    "name": e.name,
                    "event_date": e.event_date.isoformat(),
                    "total_participants": e.total_participants,
                    "attended": e.attended,
                    "no_shows": e.no_shows,
                    "flagged": e.flagged,
                }
                for e in self.event_history
            ],
            "no_show_history": [
                {
                    "id": n.id,
                    "recorded_at": n.recorded_at.isoformat(),
                    "participant": {"id": n.participant_id, "full_name": n.full_name, "email": n.email},
                    "event": {"name": n.event_name, "event_date": n.event_date.isoformat()},
                }
                for n in self.no_show_history
            ],
            "blocklist": [
                {
                    "id": b.id,
                    "total_no_shows": b.total_no_shows,
                    "first_no_show_at": b.first_no_show_at.isoformat() if b.first_no_show_at else None,
                    "participant": {"id": b.participant_id, "full_name": b.full_name, "email": b.email},
                    "first_no_show_event": (
                        {"name": b.first_no_show_event_name} if b.first_no_show_event_name else None
                    ),
                }
                for b in self.blocklist
            ],
        }


def build_overview(store: AttendanceStore) -> Overview:
    with store.transaction():
        attended = store.count_by_status(ParticipationStatus.ATTENDED)
        no_shows = store.count_by_status(ParticipationStatus.NO_SHOW)
        summary = OverviewSummary(
            total_participants=store.count_participants(),
            total_attended=attended,
            total_no_shows=no_shows,
            total_blocklisted=store.count_blocklist_entries(),
            no_show_percentage=no_show_percentage(attended, no_shows),
            total_events=store.count_events(),
        )
        return Overview(
            summary=summary,
            event_history=store.list_event_aggregates(),
            no_show_history=store.list_no_show_history(),
            blocklist=store.list_blocklist(),
        )


def build_overview_report(overview: Overview) -> str:
    s = overview.summary
    lines = [
        "=" * 60,
        "Attendance Overview",
        "=" * 60,
        f"  participants:       {s.total_participants}",
        f"  events:             {s.total_events}",
        f"  attended:           {s.total_attended}",
        f"  no-shows:           {s.total_no_shows}",
        f"  no-show rate:       {s.no_show_percentage}%",
        f"  blocklisted:        {s.total_blocklisted}",
    ]
    if overview.event_history:
        lines.append("\nEvents:")
        for e in overview.event_history:
            lines.append(
                f"  {e.event_date.isoformat()}  {e.name}  "
                f"total={e.total_participants} attended={e.attended} "
                f"no_shows={e.no_shows} flagged={e.flagged}"
            )
    lines.append("=" * 60)
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Exports
# ---------------------------------------------------------------------------

@dataclass
class ExportFile:
    filename: str
    sheets: list[SheetSpec]


def _file_stem(event_name: str) -> str:
    return re.sub(r"\s+", "_", event_name)


def _contact_columns(full_name: str, email: str, company: str | None, city: str | None) -> dict[str, str]:
    return {
        "Full Name": full_name,
        "Email": email,
        "Company": company or "",
        "City": city or "",
    }


def blocklist_export(store: AttendanceStore) -> ExportFile:
    with store.transaction():
        entries = store.list_blocklist()
    rows = [
        {
            **_contact_columns(b.full_name, b.email, b.company, b.city),
            "Total Missed Events": b.total_no_shows,
            "First No-Show Event": b.first_no_show_event_name or "",
            "First No-Show Date": b.first_no_show_at.isoformat() if b.first_no_show_at else "",
            "Blocked On": b.created_at.isoformat(),
        }
        for b in entries
    ]
    return ExportFile("global_blocklist.xlsx", [("blocklist", rows, BLOCKLIST_HEADERS)])


def _is_clean_confirmation(row: RosterRow) -> bool:
    return (
        row.status is ParticipationStatus.CONFIRMED
        and not row.flagged_no_show
        and not row.flagged_blocklist
    )


def confirmed_export(store: AttendanceStore, event_id: str) -> ExportFile:
    """Confirmed participants of one event carrying neither flag."""
    with store.transaction():
        event = store.get_event(event_id)
        if event is None:
            raise NotFoundError(f"Event not found: {event_id}")
        roster = store.list_event_roster(event.id, ParticipationStatus.CONFIRMED)
    rows = [
        _contact_columns(r.full_name, r.email, r.company, r.city)
        for r in roster
        if _is_clean_confirmation(r)
    ]
    return ExportFile(
        f"{_file_stem(event.name)}_filtered_confirmed.xlsx",
        [(f"{event.name}-confirmed", rows, CONFIRMED_HEADERS)],
    )


def no_show_export(store: AttendanceStore, event_id: str) -> ExportFile:
    """This event's no-shows plus their full cross-event no-show history."""
    with store.transaction():
        event = store.get_event(event_id)
        if event is None:
            raise NotFoundError(f"Event not found: {event_id}")
        roster = store.list_event_roster(event.id, ParticipationStatus.NO_SHOW)
        history = store.list_no_show_history([r.participant_id for r in roster])

    event_rows = [
        {
            **_contact_columns(r.full_name, r.email, r.company, r.city),
            "Event Name": event.name,
            "Event Date": event.event_date.isoformat(),
        }
        for r in roster
    ]
    history_rows = [
        {
            **_contact_columns(h.full_name, h.email, h.company, h.city),
            "Event Name": h.event_name,
            "Event Date": h.event_date.isoformat(),
            "Recorded": h.recorded_at.isoformat(),
        }
        for h in history
    ]
    return ExportFile(
        f"{_file_stem(event.name)}_no_show_report.xlsx",
        [
            (f"{event.name}-no-shows", event_rows, NO_SHOW_EVENT_HEADERS),
            ("cross-event-history", history_rows, NO_SHOW_HISTORY_HEADERS),
        ],
    )
