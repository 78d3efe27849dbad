"""Unit tests for the attendance CLI, backed by the in-memory store."""

import json

import pytest
from click.testing import CliRunner

from attendance_etl import cli
from attendance_etl.cli import main

from fake_store import InMemoryStore
from sheets import people, read_sheets, xlsx


@pytest.fixture
def store(monkeypatch):
    store = InMemoryStore()
    monkeypatch.setattr(cli, "open_store", lambda db_dsn, dry_run: store)
    return store


@pytest.fixture
def run(tmp_path):
    runner = CliRunner()

    def _run(*args):
        return runner.invoke(
            main,
            ["--db-dsn", "postgresql://unused", "--report-dir", str(tmp_path / "reports"),
             "--run-id", "test-run", *args],
        )
    return _run


def _write(tmp_path, name, data):
    path = tmp_path / name
    path.write_bytes(data)
    return str(path)


class TestImportEventMode:
    def test_imports_and_writes_reports(self, store, run, tmp_path):
        confirmed = _write(tmp_path, "confirmed.xlsx", people("a@x.com", "b@x.com"))
        out = tmp_path / "all.xlsx"
        result = run(
            "--mode", "import_event", "--event-name", "Spring Meetup",
            "--event-date", "2025-04-12", "--confirmed-path", confirmed,
            "--output-path", str(out),
        )
        assert result.exit_code == 0, result.output
        assert "[test-run] Starting import_event run" in result.output
        assert "new participants:       2" in result.output
        assert store.count_events() == 1

        report = json.loads((tmp_path / "reports" / "test-run.json").read_text())
        assert report["mode"] == "import_event"
        assert report["counters"]["total_imported"] == 2

        sheets = read_sheets(out.read_bytes())
        assert list(sheets) == ["all_participants"]
        assert len(sheets["all_participants"]) == 3

    def test_missing_confirmed_path(self, store, run):
        result = run("--mode", "import_event", "--event-name", "Spring Meetup", "--event-date", "2025-04-12")
        assert result.exit_code == 1
        assert "FATAL: --confirmed-path is required" in result.output

    def test_validation_error_is_fatal(self, store, run, tmp_path):
        confirmed = _write(tmp_path, "confirmed.xlsx", people("a@x.com"))
        result = run(
            "--mode", "import_event", "--event-name", "ab",
            "--event-date", "2025-04-12", "--confirmed-path", confirmed,
        )
        assert result.exit_code == 1
        assert "FATAL: Validation failed" in result.output
        assert store.count_events() == 0
        assert store.closed


class TestAttendanceMode:
    def test_records_and_reports_missing(self, store, run, tmp_path):
        confirmed = _write(tmp_path, "confirmed.xlsx", people("a@x.com"))
        run("--mode", "import_event", "--event-name", "Spring Meetup",
            "--event-date", "2025-04-12", "--confirmed-path", confirmed)
        event_id = store.list_event_aggregates()[0].id

        attended = _write(tmp_path, "attended.xlsx", people("a@x.com", "ghost@x.com"))
        rejects = tmp_path / "missing.csv"
        result = run(
            "--mode", "attendance", "--event-id", event_id,
            "--attended-path", attended, "--rejects-path", str(rejects),
        )
        assert result.exit_code == 0, result.output
        assert "attended marked:            1" in result.output
        assert "ghost@x.com" in rejects.read_text()

    def test_requires_a_file(self, store, run):
        result = run("--mode", "attendance", "--event-id", "abc")
        assert result.exit_code == 1
        assert "at least one of --attended-path" in result.output

    def test_unknown_event(self, store, run, tmp_path):
        attended = _write(tmp_path, "attended.xlsx", people("a@x.com"))
        result = run("--mode", "attendance", "--event-id", "nope", "--attended-path", attended)
        assert result.exit_code == 1
        assert "FATAL: Event not found: nope" in result.output

    def test_schema_error(self, store, run, tmp_path):
        confirmed = _write(tmp_path, "confirmed.xlsx", people("a@x.com"))
        run("--mode", "import_event", "--event-name", "Spring Meetup",
            "--event-date", "2025-04-12", "--confirmed-path", confirmed)
        event_id = store.list_event_aggregates()[0].id
        bad = _write(tmp_path, "bad.xlsx", xlsx([("a@x.com",)], headers=("Email",)))
        result = run("--mode", "attendance", "--event-id", event_id, "--no-show-path", bad)
        assert result.exit_code == 1
        assert "Missing required headers" in result.output


class TestReadModes:
    def test_overview(self, store, run):
        result = run("--mode", "overview")
        assert result.exit_code == 0, result.output
        assert "Attendance Overview" in result.output

    def test_export_blocklist_default_path(self, store, run, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        result = run("--mode", "export_blocklist")
        assert result.exit_code == 0, result.output
        data = (tmp_path / "artifacts" / "exports" / "global_blocklist.xlsx").read_bytes()
        assert read_sheets(data)["blocklist"][0][0] == "Full Name"

    def test_export_confirmed_requires_event(self, store, run):
        result = run("--mode", "export_confirmed")
        assert result.exit_code == 1
        assert "--event-id is required" in result.output


class TestVolunteerModes:
    def test_add_list_remove(self, store, run):
        result = run("--mode", "volunteer_add", "--volunteer-name", "Sam Lee",
                     "--volunteer-email", "Sam@X.com")
        assert result.exit_code == 0, result.output
        [volunteer] = store.list_volunteers()
        assert volunteer.email == "sam@x.com"

        result = run("--mode", "volunteer_list")
        assert "1 volunteer(s)" in result.output
        assert "Sam Lee" in result.output

        result = run("--mode", "volunteer_remove", "--volunteer-id", volunteer.id)
        assert result.exit_code == 0, result.output
        assert store.list_volunteers() == []

    def test_remove_unknown(self, store, run):
        result = run("--mode", "volunteer_remove", "--volunteer-id", "nope")
        assert result.exit_code == 1
        assert "Volunteer not found" in result.output
