"""attendance_etl.models

Record types shared by the workflows, the store, and the projector.

ParticipantRow is transient (derived from a spreadsheet); everything else
mirrors one persisted table row, optionally enriched with facts the store
computes in the same query (no-show count, blocklist presence, joined
participant/event columns).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class ParticipationStatus(str, Enum):
    CONFIRMED = "CONFIRMED"
    ATTENDED = "ATTENDED"
    NO_SHOW = "NO_SHOW"


class Classification(str, Enum):
    """Bucket assigned to a participant when a confirmed list is imported."""

    NORMAL = "normal"
    PREVIOUS_NO_SHOW = "previous_no_show"
    BLOCKLISTED = "blocklisted"


class AttendanceMark(str, Enum):
    """Which post-event upload an email set came from."""

    ATTENDED = "attended"
    NO_SHOW = "no_show"
    BLOCKLISTED = "blocklisted"


# ---------------------------------------------------------------------------
# Transient rows
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ParticipantRow:
    full_name: str
    email: str
    company: str | None = None
    city: str | None = None


# ---------------------------------------------------------------------------
# Persisted records
# ---------------------------------------------------------------------------

@dataclass
class Participant:
    id: str
    full_name: str
    email: str
    company: str | None
    city: str | None
    updated_at: datetime | None = None
    # Derived facts, populated by batched lookups
    no_show_count: int = 0
    is_blocklisted: bool = False


@dataclass
class Event:
    id: str
    name: str
    event_date: date
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class EventParticipant:
    id: str
    event_id: str
    participant_id: str
    status: ParticipationStatus = ParticipationStatus.CONFIRMED
    flagged_no_show: bool = False
    flagged_blocklist: bool = False
    updated_at: datetime | None = None


@dataclass
class NoShowRecord:
    id: str
    participant_id: str
    event_id: str
    recorded_at: datetime
    event_date: date | None = None


@dataclass
class BlocklistEntry:
    id: str
    participant_id: str
    first_no_show_event_id: str | None
    first_no_show_at: date | None
    total_no_shows: int
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class Volunteer:
    id: str
    name: str
    phone_number: str | None
    email: str | None
    joined_at: datetime
    comments: str | None = None


# ---------------------------------------------------------------------------
# Read-model rows (joined views used by the projector)
# ---------------------------------------------------------------------------

@dataclass
class EventAggregate:
    id: str
    name: str
    event_date: date
    total_participants: int
    attended: int
    no_shows: int
    flagged: int


@dataclass
class RosterRow:
    """One event_participant joined with its participant."""

    participant_id: str
    full_name: str
    email: str
    company: str | None
    city: str | None
    status: ParticipationStatus
    flagged_no_show: bool
    flagged_blocklist: bool


@dataclass
class NoShowHistoryRow:
    id: str
    recorded_at: datetime
    participant_id: str
    full_name: str
    email: str
    company: str | None
    city: str | None
    event_name: str
    event_date: date


@dataclass
class BlocklistRow:
    id: str
    participant_id: str
    full_name: str
    email: str
    company: str | None
    city: str | None
    total_no_shows: int
    first_no_show_event_name: str | None
    first_no_show_at: date | None
    created_at: datetime
