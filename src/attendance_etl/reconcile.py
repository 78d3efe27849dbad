"""attendance_etl.reconcile

Find-or-create persisted participants for a batch of spreadsheet rows.

Resolution is by lowercased email only, looked up in one batched query.
Matched participants have full_name/company/city refreshed wherever the
incoming row supplies a non-empty value; email is never rewritten.
Unmatched rows become new participants.

The returned map carries each participant's no-show count and blocklist
presence as they stood *before* this batch, which is what the import
classification needs.  Caller manages the transaction.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

from attendance_etl.models import Participant, ParticipantRow
from attendance_etl.normalize import first_non_empty
from attendance_etl.store import AttendanceStore


@dataclass
class ReconcileResult:
    participants: dict[str, Participant] = field(default_factory=dict)
    created: int = 0
    updated: int = 0


def reconcile_participants(
    store: AttendanceStore,
    rows: Sequence[ParticipantRow],
) -> ReconcileResult:
    result = ReconcileResult()
    existing = store.find_participants_by_email([r.email for r in rows])

    for row in rows:
        current = existing.get(row.email)
        if current is not None:
            current.full_name = first_non_empty(row.full_name, current.full_name) or ""
            current.company = first_non_empty(row.company, current.company)
            current.city = first_non_empty(row.city, current.city)
            store.update_participant(
                current.id, current.full_name, current.company, current.city,
            )
            result.updated += 1
        else:
            current = store.insert_participant(row)
            existing[row.email] = current
            result.created += 1
        result.participants[row.email] = current

    return result
