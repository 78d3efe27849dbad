"""attendance_etl.attendance

Post-event attendance pipeline (--mode attendance).

Consumes up to three workbooks for one existing event:
  - attended     → status ATTENDED, both flags cleared
  - no_show      → status NO_SHOW, flagged_no_show, no-show history,
                   automatic blocklist promotion at NO_SHOW_BLOCKLIST_THRESHOLD
  - blocklisted  → flagged_blocklist only (status untouched), manual
                   blocklist bump

The email sets are applied in that fixed order inside one transaction, so a
later set overrides what an earlier one wrote for the same participant.

No-show history is unique per (participant, event): re-uploading the same
no-show file for the same event does not add history, and the blocklist
total is recomputed from the true history count.  The manual blocklist path
instead adds exactly one to the stored total per upload.

Emails that match no participant are collected in missing_participants and
skipped; they never abort the run.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from attendance_etl.models import (
    AttendanceMark,
    Event,
    Participant,
    ParticipationStatus,
)
from attendance_etl.shared import InputError, NotFoundError, RejectWriter
from attendance_etl.store import AttendanceStore
from attendance_etl.workbook import parse_participant_workbook

NO_SHOW_BLOCKLIST_THRESHOLD = 2

PROCESSING_ORDER = (
    AttendanceMark.ATTENDED,
    AttendanceMark.NO_SHOW,
    AttendanceMark.BLOCKLISTED,
)


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------

@dataclass
class AttendanceSummary:
    total_attended_marked: int = 0
    total_no_shows_marked: int = 0
    total_blocklisted: int = 0
    missing_participants: list[str] = field(default_factory=list)
    # Auto-promotion detail (not part of the operator summary proper)
    blocklist_entries_created: int = 0
    blocklist_entries_updated: int = 0
    no_show_history_inserted: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_attended_marked": self.total_attended_marked,
            "total_no_shows_marked": self.total_no_shows_marked,
            "total_blocklisted": self.total_blocklisted,
            "missing_participants": self.missing_participants,
            "blocklist_entries_created": self.blocklist_entries_created,
            "blocklist_entries_updated": self.blocklist_entries_updated,
            "no_show_history_inserted": self.no_show_history_inserted,
        }


# ---------------------------------------------------------------------------
# Per-mark side effects
# ---------------------------------------------------------------------------

def _ensure_link(store: AttendanceStore, event: Event, participant: Participant) -> None:
    if store.get_event_participant(event.id, participant.id) is None:
        store.insert_event_participant(event.id, participant.id)


def _mark_attended(
    store: AttendanceStore, event: Event, participant: Participant, summary: AttendanceSummary,
) -> None:
    store.update_event_participant(
        event.id, participant.id,
        status=ParticipationStatus.ATTENDED,
        flagged_no_show=False,
        flagged_blocklist=False,
    )
    summary.total_attended_marked += 1


def _promote_to_blocklist(
    store: AttendanceStore, event: Event, participant: Participant,
    total: int, summary: AttendanceSummary,
) -> None:
    """Create or resync the blocklist entry once total reaches the threshold."""
    if store.get_blocklist_entry(participant.id) is None:
        first = store.first_no_show(participant.id)
        store.insert_blocklist_entry(
            participant.id,
            first_no_show_event_id=first.event_id if first else event.id,
            first_no_show_at=(first.event_date if first and first.event_date else event.event_date),
            total_no_shows=total,
        )
        summary.blocklist_entries_created += 1
    else:
        store.set_blocklist_total(participant.id, total)
        summary.blocklist_entries_updated += 1
    store.update_event_participant(event.id, participant.id, flagged_blocklist=True)


def _mark_no_show(
    store: AttendanceStore, event: Event, participant: Participant, summary: AttendanceSummary,
) -> None:
    store.update_event_participant(
        event.id, participant.id,
        status=ParticipationStatus.NO_SHOW,
        flagged_no_show=True,
        flagged_blocklist=False,
    )
    summary.total_no_shows_marked += 1

    if not store.has_no_show(participant.id, event.id):
        store.insert_no_show(participant.id, event.id)
        summary.no_show_history_inserted += 1

    total = store.count_no_shows(participant.id)
    if total >= NO_SHOW_BLOCKLIST_THRESHOLD:
        _promote_to_blocklist(store, event, participant, total, summary)


def _mark_blocklisted(
    store: AttendanceStore, event: Event, participant: Participant, summary: AttendanceSummary,
) -> None:
    store.update_event_participant(event.id, participant.id, flagged_blocklist=True)
    # TODO: manual uploads bump the stored total by one instead of recounting
    # history; confirm with the program owners whether this should recount.
    if store.get_blocklist_entry(participant.id) is not None:
        store.increment_blocklist_total(participant.id)
    else:
        store.insert_blocklist_entry(
            participant.id,
            first_no_show_event_id=event.id,
            first_no_show_at=event.event_date,
            total_no_shows=1,
        )
    summary.total_blocklisted += 1


MarkHandler = Callable[[AttendanceStore, Event, Participant, AttendanceSummary], None]

_HANDLERS: dict[AttendanceMark, MarkHandler] = {
    AttendanceMark.ATTENDED: _mark_attended,
    AttendanceMark.NO_SHOW: _mark_no_show,
    AttendanceMark.BLOCKLISTED: _mark_blocklisted,
}


# ---------------------------------------------------------------------------
# Workflow
# ---------------------------------------------------------------------------

def apply_attendance(
    store: AttendanceStore,
    event: Event,
    email_sets: Sequence[tuple[AttendanceMark, Sequence[str]]],
    rejects: RejectWriter | None = None,
) -> AttendanceSummary:
    """Apply ordered (mark, emails) pairs for one event.  Caller manages transaction."""
    summary = AttendanceSummary()
    all_emails = list(dict.fromkeys(e for _, emails in email_sets for e in emails))
    participants = store.find_participants_by_email(all_emails)

    for mark, emails in email_sets:
        handler = _HANDLERS[mark]
        for email in emails:
            participant = participants.get(email)
            if participant is None:
                summary.missing_participants.append(email)
                if rejects is not None:
                    rejects.write(
                        {"email": email, "list": mark.value, "event_id": event.id},
                        "participant_not_found",
                    )
                continue
            _ensure_link(store, event, participant)
            handler(store, event, participant, summary)

    return summary


def run_attendance(
    store: AttendanceStore,
    event_id: str,
    attended_workbook: bytes | None = None,
    no_show_workbook: bytes | None = None,
    blocklisted_workbook: bytes | None = None,
    lock_event: bool = False,
    rejects: RejectWriter | None = None,
) -> AttendanceSummary:
    uploads = {
        AttendanceMark.ATTENDED: attended_workbook,
        AttendanceMark.NO_SHOW: no_show_workbook,
        AttendanceMark.BLOCKLISTED: blocklisted_workbook,
    }
    if all(data is None for data in uploads.values()):
        raise InputError("Please upload at least one attendance file")

    with store.transaction():
        event = store.get_event(event_id)
        if event is None:
            raise NotFoundError(f"Event not found: {event_id}")

        email_sets = [
            (mark, [row.email for row in parse_participant_workbook(uploads[mark])])
            for mark in PROCESSING_ORDER
            if uploads[mark] is not None
        ]
        if not any(emails for _, emails in email_sets):
            raise InputError("Uploaded files do not contain any participants")

        if lock_event:
            store.lock_event(event.id)
        summary = apply_attendance(store, event, email_sets, rejects)

    return summary


def build_attendance_report(
    event_id: str, summary: AttendanceSummary, dry_run: bool = False,
) -> str:
    lines = [
        "=" * 60,
        "Attendance Report",
        f"  event_id: {event_id}",
        f"  dry_run:  {dry_run}",
        "=" * 60,
        f"  attended marked:            {summary.total_attended_marked}",
        f"  no-shows marked:            {summary.total_no_shows_marked}",
        f"  blocklisted (manual):       {summary.total_blocklisted}",
        f"  no-show history inserted:   {summary.no_show_history_inserted}",
        f"  blocklist entries created:  {summary.blocklist_entries_created}",
        f"  blocklist entries updated:  {summary.blocklist_entries_updated}",
        f"  missing participants:       {len(summary.missing_participants)}",
    ]
    if summary.missing_participants:
        lines.append("\nMissing participants:")
        for email in summary.missing_participants[:20]:
            lines.append(f"  {email}")
        if len(summary.missing_participants) > 20:
            lines.append(f"  ... and {len(summary.missing_participants) - 20} more")
    lines.append("=" * 60)
    return "\n".join(lines)
