"""attendance_etl.event_import

Event import pipeline (--mode import_event).

Creates one event from a confirmed-participant workbook:
  1. Validate event name (>= 3 chars) and date.
  2. Parse the workbook (SchemaError on bad headers, InputError when empty).
  3. In one transaction:
       - insert the event row
       - reconcile every row against participant (batched email lookup)
       - classify each participant from its prior history
       - link each participant to the event (status CONFIRMED, flags set
         from the classification)

Classification priority: blocklisted > previous no-show > normal.
Any failure rolls the whole transaction back; no event, roster rows or
participant changes from the failed run survive.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any

from attendance_etl.models import Classification, Event, Participant, ParticipantRow
from attendance_etl.normalize import parse_event_date, trim
from attendance_etl.reconcile import reconcile_participants
from attendance_etl.shared import InputError, ValidationError
from attendance_etl.store import AttendanceStore
from attendance_etl.workbook import parse_participant_workbook

MIN_EVENT_NAME_LENGTH = 3

EXPORT_ALL_HEADERS = (
    "Full Name", "Email", "Company", "City",
    "Category", "Previous No-Show", "Blocklisted",
)

_CATEGORY_LABELS = {
    Classification.NORMAL: "Normal",
    Classification.PREVIOUS_NO_SHOW: "Previous No-Show",
    Classification.BLOCKLISTED: "Blocklisted",
}


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass
class ImportSummary:
    total_imported: int = 0
    new_participants: int = 0
    updated_participants: int = 0
    flagged_no_shows: int = 0
    flagged_blocklisted: int = 0
    normal_participants: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_imported": self.total_imported,
            "new_participants": self.new_participants,
            "updated_participants": self.updated_participants,
            "flagged_no_shows": self.flagged_no_shows,
            "flagged_blocklisted": self.flagged_blocklisted,
            "normal_participants": self.normal_participants,
        }


@dataclass
class FlaggedParticipant:
    row: ParticipantRow
    was_no_show: bool
    is_blocklisted: bool


@dataclass
class ImportResult:
    event: Event
    summary: ImportSummary
    normal: list[ParticipantRow] = field(default_factory=list)
    previous_no_show: list[ParticipantRow] = field(default_factory=list)
    blocklisted: list[ParticipantRow] = field(default_factory=list)
    flagged: list[FlaggedParticipant] = field(default_factory=list)

    def bucket(self, classification: Classification) -> list[ParticipantRow]:
        return {
            Classification.NORMAL: self.normal,
            Classification.PREVIOUS_NO_SHOW: self.previous_no_show,
            Classification.BLOCKLISTED: self.blocklisted,
        }[classification]

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event.id,
            "event_name": self.event.name,
            "event_date": self.event.event_date.isoformat(),
            **self.summary.to_dict(),
        }


# ---------------------------------------------------------------------------
# Validation + classification
# ---------------------------------------------------------------------------

def validate_event_input(event_name: str | None, event_date: str | date | None) -> tuple[str, date]:
    """Return (name, date) or raise ValidationError listing every problem."""
    problems: list[str] = []
    name = trim(event_name)
    if name is None or len(name) < MIN_EVENT_NAME_LENGTH:
        problems.append(
            f"eventName: Event name must be at least {MIN_EVENT_NAME_LENGTH} characters"
        )
    parsed_date = parse_event_date(event_date)
    if event_date is None or (isinstance(event_date, str) and trim(event_date) is None):
        problems.append("eventDate: Event date is required")
    elif parsed_date is None:
        problems.append("eventDate: Event date is invalid")
    if problems:
        raise ValidationError(f"Validation failed: {', '.join(problems)}")
    return name, parsed_date  # type: ignore[return-value]


def classify(participant: Participant) -> Classification:
    """Bucket a participant by the history it had before this import."""
    if participant.is_blocklisted:
        return Classification.BLOCKLISTED
    if participant.no_show_count > 0:
        return Classification.PREVIOUS_NO_SHOW
    return Classification.NORMAL


# ---------------------------------------------------------------------------
# Workflow
# ---------------------------------------------------------------------------

def run_event_import(
    store: AttendanceStore,
    event_name: str | None,
    event_date: str | date | None,
    confirmed_workbook: bytes,
) -> ImportResult:
    name, parsed_date = validate_event_input(event_name, event_date)

    rows = parse_participant_workbook(confirmed_workbook)
    if not rows:
        raise InputError("No valid participants were found in the uploaded file")

    with store.transaction():
        event = store.insert_event(name, parsed_date)
        reconciled = reconcile_participants(store, rows)

        result = ImportResult(
            event=event,
            summary=ImportSummary(
                total_imported=len(rows),
                new_participants=reconciled.created,
                updated_participants=reconciled.updated,
            ),
        )

        for row in rows:
            participant = reconciled.participants[row.email]
            classification = classify(participant)
            was_no_show = participant.no_show_count > 0

            result.bucket(classification).append(row)
            if classification is Classification.BLOCKLISTED:
                result.summary.flagged_blocklisted += 1
            elif classification is Classification.PREVIOUS_NO_SHOW:
                result.summary.flagged_no_shows += 1
            else:
                result.summary.normal_participants += 1
            if classification is not Classification.NORMAL:
                result.flagged.append(
                    FlaggedParticipant(row, was_no_show, participant.is_blocklisted)
                )

            store.insert_event_participant(
                event.id,
                participant.id,
                flagged_no_show=was_no_show,
                flagged_blocklist=participant.is_blocklisted,
            )

    return result


# ---------------------------------------------------------------------------
# Export-all projection
# ---------------------------------------------------------------------------

def import_result_export_rows(result: ImportResult) -> list[dict[str, str]]:
    """Flatten the three buckets (normal, no-show, blocklisted) into export rows."""
    rows: list[dict[str, str]] = []
    for classification in (
        Classification.NORMAL,
        Classification.PREVIOUS_NO_SHOW,
        Classification.BLOCKLISTED,
    ):
        for p in result.bucket(classification):
            rows.append({
                "Full Name": p.full_name,
                "Email": p.email,
                "Company": p.company or "",
                "City": p.city or "",
                "Category": _CATEGORY_LABELS[classification],
                "Previous No-Show": "No" if classification is Classification.NORMAL else "Yes",
                "Blocklisted": "Yes" if classification is Classification.BLOCKLISTED else "No",
            })
    return rows


def build_import_report(result: ImportResult, dry_run: bool = False) -> str:
    s = result.summary
    lines = [
        "=" * 60,
        "Event Import Report",
        f"  event:    {result.event.name} ({result.event.event_date.isoformat()})",
        f"  event_id: {result.event.id}",
        f"  dry_run:  {dry_run}",
        "=" * 60,
        f"  total imported:         {s.total_imported}",
        f"  new participants:       {s.new_participants}",
        f"  updated participants:   {s.updated_participants}",
        f"  normal:                 {s.normal_participants}",
        f"  previous no-shows:      {s.flagged_no_shows}",
        f"  blocklisted:            {s.flagged_blocklisted}",
    ]
    if result.flagged:
        lines.append(f"\nFlagged ({len(result.flagged)}):")
        for f in result.flagged[:20]:
            tag = "blocklisted" if f.is_blocklisted else "previous no-show"
            lines.append(f"  {f.row.email}  [{tag}]")
        if len(result.flagged) > 20:
            lines.append(f"  ... and {len(result.flagged) - 20} more")
    lines.append("=" * 60)
    return "\n".join(lines)
