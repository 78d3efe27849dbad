"""Integration tests for the import and attendance workflows on PostgreSQL.

These tests run against an ephemeral PostgreSQL database with the full
schema applied via the db_conn fixture in conftest.py.
"""

from __future__ import annotations

from datetime import date

import pytest

from attendance_etl.attendance import run_attendance
from attendance_etl.event_import import run_event_import
from attendance_etl.models import Classification, ParticipationStatus
from attendance_etl.shared import NotFoundError, StoreError
from attendance_etl.store import PostgresStore

from sheets import people, xlsx


def _count(conn, table: str) -> int:
    return conn.execute(f"SELECT count(*) FROM {table}").fetchone()[0]


def _status(conn, event_id: str, email: str):
    return conn.execute(
        """
        SELECT ep.status, ep.flagged_no_show, ep.flagged_blocklist
        FROM event_participant ep JOIN participant p ON p.id = ep.participant_id
        WHERE ep.event_id = %s AND p.email = %s
        """,
        (event_id, email),
    ).fetchone()


# ---------------------------------------------------------------------------
# Event import
# ---------------------------------------------------------------------------

class TestEventImport:
    def test_creates_event_participants_and_links(self, db_conn, pg_store):
        conn, _ = db_conn
        result = run_event_import(
            pg_store, "Spring Meetup", "2025-04-12",
            xlsx([("Jane Doe", "Jane@Example.com", "Acme", "Bath"), ("Bob", "bob@x.com", None, None)]),
        )
        assert result.event.event_date == date(2025, 4, 12)
        assert result.summary.new_participants == 2
        assert _count(conn, "event") == 1
        assert _count(conn, "event_participant") == 2
        row = conn.execute(
            "SELECT full_name, company, city FROM participant WHERE email = 'jane@example.com'"
        ).fetchone()
        assert row == ("Jane Doe", "Acme", "Bath")
        assert _status(conn, result.event.id, "bob@x.com") == ("CONFIRMED", False, False)

    def test_reimport_updates_existing_participant(self, db_conn, pg_store):
        conn, _ = db_conn
        run_event_import(pg_store, "First Event", "2025-01-10", xlsx([("Jane", "jane@x.com", "Acme", None)]))
        result = run_event_import(pg_store, "Second Event", "2025-02-10", xlsx([("", "jane@x.com", None, "Bath")]))
        assert (result.summary.new_participants, result.summary.updated_participants) == (0, 1)
        assert _count(conn, "participant") == 1
        row = conn.execute("SELECT full_name, company, city FROM participant").fetchone()
        assert row == ("Jane", "Acme", "Bath")

    def test_classification_from_history(self, db_conn, pg_store):
        first = run_event_import(pg_store, "First Event", "2025-01-10", people("ns@x.com", "bl@x.com", "ok@x.com"))
        run_attendance(
            pg_store, first.event.id,
            no_show_workbook=people("ns@x.com", "bl@x.com"),
            blocklisted_workbook=people("bl@x.com"),
        )
        result = run_event_import(pg_store, "Second Event", "2025-02-10", people("ns@x.com", "bl@x.com", "ok@x.com"))
        assert [r.email for r in result.bucket(Classification.NORMAL)] == ["ok@x.com"]
        assert [r.email for r in result.bucket(Classification.PREVIOUS_NO_SHOW)] == ["ns@x.com"]
        assert [r.email for r in result.bucket(Classification.BLOCKLISTED)] == ["bl@x.com"]

    def test_failure_leaves_no_partial_import(self, db_conn, pg_store, monkeypatch):
        conn, _ = db_conn
        original = pg_store.insert_event_participant
        calls = []

        def flaky(*args, **kwargs):
            calls.append(args)
            if len(calls) == 2:
                conn.execute("SELECT 1/0")
            return original(*args, **kwargs)

        monkeypatch.setattr(pg_store, "insert_event_participant", flaky)
        with pytest.raises(StoreError, match="DivisionByZero"):
            run_event_import(pg_store, "Spring Meetup", "2025-04-12", people("a@x.com", "b@x.com"))
        assert _count(conn, "event") == 0
        assert _count(conn, "participant") == 0

    def test_dry_run_rolls_back(self, db_conn):
        conn, _ = db_conn
        store = PostgresStore(conn, dry_run=True)
        result = run_event_import(store, "Spring Meetup", "2025-04-12", people("a@x.com"))
        assert result.summary.total_imported == 1
        assert _count(conn, "event") == 0


# ---------------------------------------------------------------------------
# Attendance
# ---------------------------------------------------------------------------

class TestAttendance:
    def test_threshold_promotion_and_update(self, db_conn, pg_store):
        conn, _ = db_conn
        events = [
            run_event_import(pg_store, name, on, people("jane@x.com")).event
            for name, on in (("Jan Mixer", "2025-01-10"), ("Feb Mixer", "2025-02-10"), ("Mar Mixer", "2025-03-10"))
        ]

        run_attendance(pg_store, events[0].id, no_show_workbook=people("jane@x.com"))
        assert _count(conn, "blocklist_entry") == 0

        run_attendance(pg_store, events[1].id, no_show_workbook=people("jane@x.com"))
        row = conn.execute(
            "SELECT total_no_shows, first_no_show_event_id, first_no_show_at FROM blocklist_entry"
        ).fetchone()
        assert row[0] == 2
        assert str(row[1]) == events[0].id
        assert row[2] == date(2025, 1, 10)
        assert _status(conn, events[1].id, "jane@x.com") == ("NO_SHOW", True, True)

        run_attendance(pg_store, events[2].id, no_show_workbook=people("jane@x.com"))
        assert _count(conn, "blocklist_entry") == 1
        assert conn.execute("SELECT total_no_shows FROM blocklist_entry").fetchone()[0] == 3

    def test_no_show_reupload_is_idempotent(self, db_conn, pg_store):
        conn, _ = db_conn
        event = run_event_import(pg_store, "Spring Meetup", "2025-04-12", people("jane@x.com")).event
        run_attendance(pg_store, event.id, no_show_workbook=people("jane@x.com"))
        run_attendance(pg_store, event.id, no_show_workbook=people("jane@x.com"))
        assert _count(conn, "no_show_history") == 1
        assert _status(conn, event.id, "jane@x.com") == ("NO_SHOW", True, False)

    def test_attended_reupload_is_idempotent(self, db_conn, pg_store):
        conn, _ = db_conn
        event = run_event_import(pg_store, "Spring Meetup", "2025-04-12", people("jane@x.com")).event
        run_attendance(pg_store, event.id, attended_workbook=people("jane@x.com"))
        first = _status(conn, event.id, "jane@x.com")
        run_attendance(pg_store, event.id, attended_workbook=people("jane@x.com"))
        assert _status(conn, event.id, "jane@x.com") == first == ("ATTENDED", False, False)
        assert _count(conn, "no_show_history") == 0

    def test_manual_blocklist_increments(self, db_conn, pg_store):
        conn, _ = db_conn
        event = run_event_import(pg_store, "Spring Meetup", "2025-04-12", people("jane@x.com")).event
        run_attendance(pg_store, event.id, blocklisted_workbook=people("jane@x.com"))
        run_attendance(pg_store, event.id, blocklisted_workbook=people("jane@x.com"))
        assert conn.execute("SELECT total_no_shows FROM blocklist_entry").fetchone()[0] == 2
        assert _status(conn, event.id, "jane@x.com") == ("CONFIRMED", False, True)

    def test_missing_participants_still_commit(self, db_conn, pg_store):
        conn, _ = db_conn
        event = run_event_import(pg_store, "Spring Meetup", "2025-04-12", people("jane@x.com")).event
        summary = run_attendance(
            pg_store, event.id, attended_workbook=people("jane@x.com", "ghost@x.com"),
        )
        assert summary.missing_participants == ["ghost@x.com"]
        assert _status(conn, event.id, "jane@x.com")[0] == ParticipationStatus.ATTENDED.value

    def test_lock_event(self, db_conn, pg_store):
        event = run_event_import(pg_store, "Spring Meetup", "2025-04-12", people("jane@x.com")).event
        summary = run_attendance(
            pg_store, event.id, attended_workbook=people("jane@x.com"), lock_event=True,
        )
        assert summary.total_attended_marked == 1

    def test_malformed_event_id_is_not_found(self, pg_store):
        with pytest.raises(NotFoundError):
            run_attendance(pg_store, "not-a-uuid", attended_workbook=people("jane@x.com"))
