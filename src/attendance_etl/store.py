"""attendance_etl.store

Persistence interface required by the workflows, and its PostgreSQL
implementation.

The workflows only ever talk to an ``AttendanceStore``; production code
passes a ``PostgresStore`` wrapping one psycopg connection opened per
invocation, tests may pass any object satisfying the protocol.

Transactions:
  - ``transaction()`` wraps a unit of work.  Leaving the block normally
    commits (or rolls back in dry-run mode); leaving it by any exception
    rolls back everything written inside the block.
  - psycopg errors raised inside the block (constraint violations, lost
    connections, ...) surface as ``StoreError``.
  - Isolation is the server default (READ COMMITTED).  Two attendance runs
    for the same event are not serialized unless the caller takes
    ``lock_event`` inside the transaction; otherwise the last commit wins
    on event_participant rows.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import date, datetime
from typing import Any, Protocol

import psycopg

from attendance_etl.models import (
    BlocklistEntry,
    BlocklistRow,
    Event,
    EventAggregate,
    EventParticipant,
    NoShowHistoryRow,
    NoShowRecord,
    Participant,
    ParticipantRow,
    ParticipationStatus,
    RosterRow,
    Volunteer,
)
from attendance_etl.shared import StoreError


# ---------------------------------------------------------------------------
# Interface
# ---------------------------------------------------------------------------

class AttendanceStore(Protocol):
    def transaction(self) -> Any: ...

    # events
    def insert_event(self, name: str, event_date: date) -> Event: ...
    def get_event(self, event_id: str) -> Event | None: ...
    def lock_event(self, event_id: str) -> None: ...

    # participants
    def find_participants_by_email(self, emails: Sequence[str]) -> dict[str, Participant]: ...
    def insert_participant(self, row: ParticipantRow) -> Participant: ...
    def update_participant(
        self, participant_id: str, full_name: str, company: str | None, city: str | None,
    ) -> None: ...

    # event roster
    def get_event_participant(self, event_id: str, participant_id: str) -> EventParticipant | None: ...
    def insert_event_participant(
        self,
        event_id: str,
        participant_id: str,
        status: ParticipationStatus = ParticipationStatus.CONFIRMED,
        flagged_no_show: bool = False,
        flagged_blocklist: bool = False,
    ) -> EventParticipant: ...
    def update_event_participant(
        self,
        event_id: str,
        participant_id: str,
        *,
        status: ParticipationStatus | None = None,
        flagged_no_show: bool | None = None,
        flagged_blocklist: bool | None = None,
    ) -> None: ...

    # no-show history
    def has_no_show(self, participant_id: str, event_id: str) -> bool: ...
    def insert_no_show(self, participant_id: str, event_id: str) -> NoShowRecord: ...
    def count_no_shows(self, participant_id: str) -> int: ...
    def first_no_show(self, participant_id: str) -> NoShowRecord | None: ...

    # blocklist
    def get_blocklist_entry(self, participant_id: str) -> BlocklistEntry | None: ...
    def insert_blocklist_entry(
        self,
        participant_id: str,
        first_no_show_event_id: str | None,
        first_no_show_at: date | None,
        total_no_shows: int,
    ) -> BlocklistEntry: ...
    def set_blocklist_total(self, participant_id: str, total_no_shows: int) -> None: ...
    def increment_blocklist_total(self, participant_id: str) -> int: ...

    # read model
    def count_participants(self) -> int: ...
    def count_events(self) -> int: ...
    def count_blocklist_entries(self) -> int: ...
    def count_by_status(self, status: ParticipationStatus) -> int: ...
    def list_event_aggregates(self) -> list[EventAggregate]: ...
    def list_event_roster(
        self, event_id: str, status: ParticipationStatus | None = None,
    ) -> list[RosterRow]: ...
    def list_no_show_history(
        self, participant_ids: Sequence[str] | None = None,
    ) -> list[NoShowHistoryRow]: ...
    def list_blocklist(self) -> list[BlocklistRow]: ...

    # volunteers
    def insert_volunteer(
        self,
        name: str,
        phone_number: str | None,
        email: str | None,
        joined_at: datetime | None,
        comments: str | None,
    ) -> Volunteer: ...
    def list_volunteers(self) -> list[Volunteer]: ...
    def delete_volunteer(self, volunteer_id: str) -> bool: ...


# ---------------------------------------------------------------------------
# Row mappers
# ---------------------------------------------------------------------------

def _is_uuid(value: str) -> bool:
    try:
        uuid.UUID(str(value))
    except ValueError:
        return False
    return True


def _opt_str(value: Any) -> str | None:
    return str(value) if value is not None else None


_PARTICIPANT_COLS = "p.id, p.full_name, p.email, p.company, p.city, p.updated_at"
_EVENT_COLS = "id, name, event_date, created_at, updated_at"
_EP_COLS = "id, event_id, participant_id, status, flagged_no_show, flagged_blocklist, updated_at"
_BLOCKLIST_COLS = (
    "id, participant_id, first_no_show_event_id, first_no_show_at, "
    "total_no_shows, created_at, updated_at"
)
_VOLUNTEER_COLS = "id, name, phone_number, email, joined_at, comments"


def _participant(row: Sequence[Any], no_show_count: int = 0, is_blocklisted: bool = False) -> Participant:
    return Participant(
        id=str(row[0]),
        full_name=row[1],
        email=row[2],
        company=row[3],
        city=row[4],
        updated_at=row[5],
        no_show_count=no_show_count,
        is_blocklisted=is_blocklisted,
    )


def _event(row: Sequence[Any]) -> Event:
    return Event(
        id=str(row[0]), name=row[1], event_date=row[2],
        created_at=row[3], updated_at=row[4],
    )


def _event_participant(row: Sequence[Any]) -> EventParticipant:
    return EventParticipant(
        id=str(row[0]),
        event_id=str(row[1]),
        participant_id=str(row[2]),
        status=ParticipationStatus(row[3]),
        flagged_no_show=row[4],
        flagged_blocklist=row[5],
        updated_at=row[6],
    )


def _blocklist_entry(row: Sequence[Any]) -> BlocklistEntry:
    return BlocklistEntry(
        id=str(row[0]),
        participant_id=str(row[1]),
        first_no_show_event_id=_opt_str(row[2]),
        first_no_show_at=row[3],
        total_no_shows=row[4],
        created_at=row[5],
        updated_at=row[6],
    )


def _volunteer(row: Sequence[Any]) -> Volunteer:
    return Volunteer(
        id=str(row[0]), name=row[1], phone_number=row[2],
        email=row[3], joined_at=row[4], comments=row[5],
    )


# ---------------------------------------------------------------------------
# PostgreSQL implementation
# ---------------------------------------------------------------------------

class PostgresStore:
    """AttendanceStore backed by one psycopg connection (autocommit=False)."""

    def __init__(self, conn: psycopg.Connection, dry_run: bool = False) -> None:
        self._conn = conn
        self.dry_run = dry_run

    @classmethod
    def connect(cls, db_dsn: str, dry_run: bool = False) -> "PostgresStore":
        try:
            conn = psycopg.connect(db_dsn, autocommit=False)
        except psycopg.Error as exc:
            raise StoreError(f"Database connection failed: {exc}") from exc
        return cls(conn, dry_run=dry_run)

    @property
    def conn(self) -> psycopg.Connection:
        return self._conn

    def close(self) -> None:
        self._conn.close()

    @contextmanager
    def transaction(self) -> Iterator["PostgresStore"]:
        try:
            yield self
        except psycopg.Error as exc:
            self._rollback_quietly()
            raise StoreError(f"{type(exc).__name__}: {exc}") from exc
        except BaseException:
            self._rollback_quietly()
            raise
        try:
            if self.dry_run:
                self._conn.rollback()
            else:
                self._conn.commit()
        except psycopg.Error as exc:
            self._rollback_quietly()
            raise StoreError(f"Commit failed: {exc}") from exc

    def _rollback_quietly(self) -> None:
        # A dead connection cannot roll back; the server discards the
        # transaction when the session ends.
        if not self._conn.closed:
            try:
                self._conn.rollback()
            except psycopg.OperationalError:
                pass

    # -- events ------------------------------------------------------------

    def insert_event(self, name: str, event_date: date) -> Event:
        row = self._conn.execute(
            f"""
            INSERT INTO event (name, event_date)
            VALUES (%s, %s)
            RETURNING {_EVENT_COLS}
            """,
            (name, event_date),
        ).fetchone()
        return _event(row)

    def get_event(self, event_id: str) -> Event | None:
        if not _is_uuid(event_id):
            return None
        row = self._conn.execute(
            f"SELECT {_EVENT_COLS} FROM event WHERE id = %s",
            (event_id,),
        ).fetchone()
        return _event(row) if row else None

    def lock_event(self, event_id: str) -> None:
        self._conn.execute(
            "SELECT pg_advisory_xact_lock(hashtext(%s))",
            (f"event:{event_id}",),
        )

    # -- participants ------------------------------------------------------

    def find_participants_by_email(self, emails: Sequence[str]) -> dict[str, Participant]:
        """Batched lookup with no-show count and blocklist presence per match."""
        if not emails:
            return {}
        rows = self._conn.execute(
            f"""
            SELECT {_PARTICIPANT_COLS},
                   (SELECT count(*) FROM no_show_history n
                     WHERE n.participant_id = p.id) AS no_show_count,
                   EXISTS (SELECT 1 FROM blocklist_entry b
                            WHERE b.participant_id = p.id) AS is_blocklisted
            FROM participant p
            WHERE p.email = ANY(%s)
            """,
            (list(emails),),
        ).fetchall()
        return {
            r[2]: _participant(r, no_show_count=int(r[6]), is_blocklisted=bool(r[7]))
            for r in rows
        }

    def insert_participant(self, row: ParticipantRow) -> Participant:
        new_row = self._conn.execute(
            """
            INSERT INTO participant AS p (full_name, email, company, city)
            VALUES (%s, %s, %s, %s)
            RETURNING p.id, p.full_name, p.email, p.company, p.city, p.updated_at
            """,
            (row.full_name, row.email, row.company, row.city),
        ).fetchone()
        return _participant(new_row)

    def update_participant(
        self, participant_id: str, full_name: str, company: str | None, city: str | None,
    ) -> None:
        self._conn.execute(
            """
            UPDATE participant
            SET full_name = %s, company = %s, city = %s, updated_at = now()
            WHERE id = %s
            """,
            (full_name, company, city, participant_id),
        )

    # -- event roster ------------------------------------------------------

    def get_event_participant(self, event_id: str, participant_id: str) -> EventParticipant | None:
        row = self._conn.execute(
            f"""
            SELECT {_EP_COLS} FROM event_participant
            WHERE event_id = %s AND participant_id = %s
            """,
            (event_id, participant_id),
        ).fetchone()
        return _event_participant(row) if row else None

    def insert_event_participant(
        self,
        event_id: str,
        participant_id: str,
        status: ParticipationStatus = ParticipationStatus.CONFIRMED,
        flagged_no_show: bool = False,
        flagged_blocklist: bool = False,
    ) -> EventParticipant:
        row = self._conn.execute(
            f"""
            INSERT INTO event_participant
              (event_id, participant_id, status, flagged_no_show, flagged_blocklist)
            VALUES (%s, %s, %s, %s, %s)
            RETURNING {_EP_COLS}
            """,
            (event_id, participant_id, status.value, flagged_no_show, flagged_blocklist),
        ).fetchone()
        return _event_participant(row)

    def update_event_participant(
        self,
        event_id: str,
        participant_id: str,
        *,
        status: ParticipationStatus | None = None,
        flagged_no_show: bool | None = None,
        flagged_blocklist: bool | None = None,
    ) -> None:
        """Overwrite the given fields; None leaves a field untouched."""
        self._conn.execute(
            """
            UPDATE event_participant SET
              status = COALESCE(%s, status),
              flagged_no_show = COALESCE(%s, flagged_no_show),
              flagged_blocklist = COALESCE(%s, flagged_blocklist),
              updated_at = now()
            WHERE event_id = %s AND participant_id = %s
            """,
            (
                status.value if status is not None else None,
                flagged_no_show,
                flagged_blocklist,
                event_id,
                participant_id,
            ),
        )

    # -- no-show history ---------------------------------------------------

    def has_no_show(self, participant_id: str, event_id: str) -> bool:
        row = self._conn.execute(
            """
            SELECT 1 FROM no_show_history
            WHERE participant_id = %s AND event_id = %s
            LIMIT 1
            """,
            (participant_id, event_id),
        ).fetchone()
        return row is not None

    def insert_no_show(self, participant_id: str, event_id: str) -> NoShowRecord:
        row = self._conn.execute(
            """
            INSERT INTO no_show_history (participant_id, event_id)
            VALUES (%s, %s)
            RETURNING id, participant_id, event_id, recorded_at
            """,
            (participant_id, event_id),
        ).fetchone()
        return NoShowRecord(
            id=str(row[0]), participant_id=str(row[1]),
            event_id=str(row[2]), recorded_at=row[3],
        )

    def count_no_shows(self, participant_id: str) -> int:
        row = self._conn.execute(
            "SELECT count(*) FROM no_show_history WHERE participant_id = %s",
            (participant_id,),
        ).fetchone()
        return int(row[0])

    def first_no_show(self, participant_id: str) -> NoShowRecord | None:
        row = self._conn.execute(
            """
            SELECT n.id, n.participant_id, n.event_id, n.recorded_at, e.event_date
            FROM no_show_history n
            JOIN event e ON e.id = n.event_id
            WHERE n.participant_id = %s
            ORDER BY n.recorded_at ASC, n.id ASC
            LIMIT 1
            """,
            (participant_id,),
        ).fetchone()
        if row is None:
            return None
        return NoShowRecord(
            id=str(row[0]), participant_id=str(row[1]), event_id=str(row[2]),
            recorded_at=row[3], event_date=row[4],
        )

    # -- blocklist ---------------------------------------------------------

    def get_blocklist_entry(self, participant_id: str) -> BlocklistEntry | None:
        row = self._conn.execute(
            f"SELECT {_BLOCKLIST_COLS} FROM blocklist_entry WHERE participant_id = %s",
            (participant_id,),
        ).fetchone()
        return _blocklist_entry(row) if row else None

    def insert_blocklist_entry(
        self,
        participant_id: str,
        first_no_show_event_id: str | None,
        first_no_show_at: date | None,
        total_no_shows: int,
    ) -> BlocklistEntry:
        row = self._conn.execute(
            f"""
            INSERT INTO blocklist_entry
              (participant_id, first_no_show_event_id, first_no_show_at, total_no_shows)
            VALUES (%s, %s, %s, %s)
            RETURNING {_BLOCKLIST_COLS}
            """,
            (participant_id, first_no_show_event_id, first_no_show_at, total_no_shows),
        ).fetchone()
        return _blocklist_entry(row)

    def set_blocklist_total(self, participant_id: str, total_no_shows: int) -> None:
        self._conn.execute(
            """
            UPDATE blocklist_entry
            SET total_no_shows = %s, updated_at = now()
            WHERE participant_id = %s
            """,
            (total_no_shows, participant_id),
        )

    def increment_blocklist_total(self, participant_id: str) -> int:
        row = self._conn.execute(
            """
            UPDATE blocklist_entry
            SET total_no_shows = total_no_shows + 1, updated_at = now()
            WHERE participant_id = %s
            RETURNING total_no_shows
            """,
            (participant_id,),
        ).fetchone()
        return int(row[0])

    # -- read model --------------------------------------------------------

    def _scalar(self, sql: str, params: Sequence[Any] = ()) -> int:
        return int(self._conn.execute(sql, params).fetchone()[0])

    def count_participants(self) -> int:
        return self._scalar("SELECT count(*) FROM participant")

    def count_events(self) -> int:
        return self._scalar("SELECT count(*) FROM event")

    def count_blocklist_entries(self) -> int:
        return self._scalar("SELECT count(*) FROM blocklist_entry")

    def count_by_status(self, status: ParticipationStatus) -> int:
        return self._scalar(
            "SELECT count(*) FROM event_participant WHERE status = %s",
            (status.value,),
        )

    def list_event_aggregates(self) -> list[EventAggregate]:
        rows = self._conn.execute(
            """
            SELECT e.id, e.name, e.event_date,
                   count(ep.id)                                          AS total,
                   count(ep.id) FILTER (WHERE ep.status = 'ATTENDED')    AS attended,
                   count(ep.id) FILTER (WHERE ep.status = 'NO_SHOW')     AS no_shows,
                   count(ep.id) FILTER (WHERE ep.flagged_blocklist)      AS flagged
            FROM event e
            LEFT JOIN event_participant ep ON ep.event_id = e.id
            GROUP BY e.id, e.name, e.event_date, e.created_at
            ORDER BY e.event_date DESC, e.created_at DESC
            """
        ).fetchall()
        return [
            EventAggregate(
                id=str(r[0]), name=r[1], event_date=r[2],
                total_participants=int(r[3]), attended=int(r[4]),
                no_shows=int(r[5]), flagged=int(r[6]),
            )
            for r in rows
        ]

    def list_event_roster(
        self, event_id: str, status: ParticipationStatus | None = None,
    ) -> list[RosterRow]:
        rows = self._conn.execute(
            """
            SELECT p.id, p.full_name, p.email, p.company, p.city,
                   ep.status, ep.flagged_no_show, ep.flagged_blocklist
            FROM event_participant ep
            JOIN participant p ON p.id = ep.participant_id
            WHERE ep.event_id = %s
              AND (%s::text IS NULL OR ep.status = %s::text)
            ORDER BY ep.created_at ASC, p.email ASC
            """,
            (event_id, status.value if status else None, status.value if status else None),
        ).fetchall()
        return [
            RosterRow(
                participant_id=str(r[0]), full_name=r[1], email=r[2],
                company=r[3], city=r[4], status=ParticipationStatus(r[5]),
                flagged_no_show=r[6], flagged_blocklist=r[7],
            )
            for r in rows
        ]

    def list_no_show_history(
        self, participant_ids: Sequence[str] | None = None,
    ) -> list[NoShowHistoryRow]:
        if participant_ids is not None and not participant_ids:
            return []
        ids = list(participant_ids) if participant_ids is not None else None
        rows = self._conn.execute(
            """
            SELECT n.id, n.recorded_at, p.id, p.full_name, p.email, p.company, p.city,
                   e.name, e.event_date
            FROM no_show_history n
            JOIN participant p ON p.id = n.participant_id
            JOIN event e ON e.id = n.event_id
            WHERE (%s::uuid[] IS NULL OR n.participant_id = ANY(%s::uuid[]))
            ORDER BY n.recorded_at DESC, n.id DESC
            """,
            (ids, ids),
        ).fetchall()
        return [
            NoShowHistoryRow(
                id=str(r[0]), recorded_at=r[1], participant_id=str(r[2]),
                full_name=r[3], email=r[4], company=r[5], city=r[6],
                event_name=r[7], event_date=r[8],
            )
            for r in rows
        ]

    def list_blocklist(self) -> list[BlocklistRow]:
        rows = self._conn.execute(
            """
            SELECT b.id, p.id, p.full_name, p.email, p.company, p.city,
                   b.total_no_shows, e.name, b.first_no_show_at, b.created_at
            FROM blocklist_entry b
            JOIN participant p ON p.id = b.participant_id
            LEFT JOIN event e ON e.id = b.first_no_show_event_id
            ORDER BY b.created_at DESC, b.id DESC
            """
        ).fetchall()
        return [
            BlocklistRow(
                id=str(r[0]), participant_id=str(r[1]), full_name=r[2],
                email=r[3], company=r[4], city=r[5], total_no_shows=r[6],
                first_no_show_event_name=r[7], first_no_show_at=r[8],
                created_at=r[9],
            )
            for r in rows
        ]

    # -- volunteers --------------------------------------------------------

    def insert_volunteer(
        self,
        name: str,
        phone_number: str | None,
        email: str | None,
        joined_at: datetime | None,
        comments: str | None,
    ) -> Volunteer:
        row = self._conn.execute(
            f"""
            INSERT INTO volunteer (name, phone_number, email, joined_at, comments)
            VALUES (%s, %s, %s, COALESCE(%s, now()), %s)
            RETURNING {_VOLUNTEER_COLS}
            """,
            (name, phone_number, email, joined_at, comments),
        ).fetchone()
        return _volunteer(row)

    def list_volunteers(self) -> list[Volunteer]:
        rows = self._conn.execute(
            f"SELECT {_VOLUNTEER_COLS} FROM volunteer ORDER BY joined_at DESC, id"
        ).fetchall()
        return [_volunteer(r) for r in rows]

    def delete_volunteer(self, volunteer_id: str) -> bool:
        if not _is_uuid(volunteer_id):
            return False
        row = self._conn.execute(
            "DELETE FROM volunteer WHERE id = %s RETURNING id",
            (volunteer_id,),
        ).fetchone()
        return row is not None
