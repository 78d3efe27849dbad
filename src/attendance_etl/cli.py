"""attendance_etl.cli

Unified attendance CLI.

Usage:
    attendance-etl --mode import_event --db-dsn "..." \\
        --event-name "Spring Meetup" --event-date 2025-04-12 \\
        --confirmed-path confirmed.xlsx [--output-path all.xlsx] [--dry-run]

    attendance-etl --mode attendance --db-dsn "..." --event-id <uuid> \\
        [--attended-path a.xlsx] [--no-show-path n.xlsx] \\
        [--blocklisted-path b.xlsx] [--lock-event] [--dry-run]

    attendance-etl --mode overview --db-dsn "..."
    attendance-etl --mode export_blocklist --db-dsn "..." [--output-path x.xlsx]
    attendance-etl --mode export_confirmed --db-dsn "..." --event-id <uuid>
    attendance-etl --mode export_no_show --db-dsn "..." --event-id <uuid>
    attendance-etl --mode migrate --db-dsn "..." [--migrations-dir migrations]
    attendance-etl --mode volunteer_add --db-dsn "..." --volunteer-name "..."
    attendance-etl --mode volunteer_list --db-dsn "..."
    attendance-etl --mode volunteer_remove --db-dsn "..." --volunteer-id <uuid>

--db-dsn falls back to the DATABASE_URL environment variable.
"""

from __future__ import annotations

import sys
import uuid
from datetime import datetime
from pathlib import Path

import click

from attendance_etl.attendance import build_attendance_report, run_attendance
from attendance_etl.event_import import (
    EXPORT_ALL_HEADERS,
    build_import_report,
    import_result_export_rows,
    run_event_import,
)
from attendance_etl.migrate import apply_migrations
from attendance_etl.overview import (
    ExportFile,
    blocklist_export,
    build_overview,
    build_overview_report,
    confirmed_export,
    no_show_export,
)
from attendance_etl.shared import AttendanceError, RejectWriter, write_run_report
from attendance_etl.store import PostgresStore
from attendance_etl.volunteers import (
    add_volunteer,
    list_volunteers,
    remove_volunteer,
    volunteer_export_rows,
)
from attendance_etl.workbook import build_workbook, build_workbook_from_rows

MODES = [
    "import_event", "attendance", "overview",
    "export_blocklist", "export_confirmed", "export_no_show",
    "migrate",
    "volunteer_add", "volunteer_list", "volunteer_remove",
]

_EXPORT_DIR = Path("./artifacts/exports")


def open_store(db_dsn: str, dry_run: bool) -> PostgresStore:
    return PostgresStore.connect(db_dsn, dry_run=dry_run)


# ---------------------------------------------------------------------------
# Flag validation
# ---------------------------------------------------------------------------

def _fatal(run_id: str, message: str) -> None:
    click.echo(f"[{run_id}] FATAL: {message}", err=True)
    sys.exit(1)


def _validate_import_event_flags(confirmed_path: str | None, run_id: str) -> None:
    if not confirmed_path:
        _fatal(run_id, "--confirmed-path is required for --mode import_event")


def _validate_event_id_flag(event_id: str | None, mode: str, run_id: str) -> None:
    if not event_id:
        _fatal(run_id, f"--event-id is required for --mode {mode}")


def _validate_attendance_flags(
    event_id: str | None,
    attended_path: str | None,
    no_show_path: str | None,
    blocklisted_path: str | None,
    run_id: str,
) -> None:
    _validate_event_id_flag(event_id, "attendance", run_id)
    if not (attended_path or no_show_path or blocklisted_path):
        _fatal(
            run_id,
            "at least one of --attended-path, --no-show-path, --blocklisted-path "
            "is required for --mode attendance",
        )


def _read_optional(path: str | None) -> bytes | None:
    return Path(path).read_bytes() if path else None


def _write_export(export: ExportFile, output_path: str | None, run_id: str) -> Path:
    out = Path(output_path) if output_path else _EXPORT_DIR / export.filename
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_bytes(build_workbook(export.sheets))
    rows = sum(len(rows) for _, rows, _ in export.sheets)
    click.echo(f"[{run_id}] Wrote {rows} row(s) to {out}")
    return out


# ---------------------------------------------------------------------------
# Mode runners
# ---------------------------------------------------------------------------

def _run_import_event(
    store: PostgresStore,
    run_id: str,
    started_at: str,
    event_name: str | None,
    event_date: str | None,
    confirmed_path: str,
    output_path: str | None,
    report_dir: Path,
    dry_run: bool,
) -> None:
    click.echo(f"[{run_id}] Importing {confirmed_path} as event {event_name!r} ({event_date})")
    result = run_event_import(
        store, event_name, event_date, Path(confirmed_path).read_bytes(),
    )
    if dry_run:
        click.echo(f"[{run_id}] [dry-run] All changes rolled back.")
    click.echo(build_import_report(result, dry_run=dry_run))

    if output_path:
        out = Path(output_path)
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_bytes(build_workbook_from_rows(
            "all_participants", import_result_export_rows(result), EXPORT_ALL_HEADERS,
        ))
        click.echo(f"[{run_id}] Export-all workbook: {out}")

    report_path = write_run_report(
        run_id, started_at, "import_event", dry_run,
        {"confirmed_path": confirmed_path, "event_id": result.event.id},
        result.summary, report_dir,
    )
    click.echo(f"[{run_id}] Run report: {report_path}")


def _run_attendance(
    store: PostgresStore,
    run_id: str,
    started_at: str,
    event_id: str,
    attended_path: str | None,
    no_show_path: str | None,
    blocklisted_path: str | None,
    lock_event: bool,
    rejects: RejectWriter,
    rejects_path: str,
    report_dir: Path,
    dry_run: bool,
) -> None:
    click.echo(f"[{run_id}] Recording attendance for event {event_id} (lock_event={lock_event})")
    summary = run_attendance(
        store,
        event_id,
        attended_workbook=_read_optional(attended_path),
        no_show_workbook=_read_optional(no_show_path),
        blocklisted_workbook=_read_optional(blocklisted_path),
        lock_event=lock_event,
        rejects=rejects,
    )
    if dry_run:
        click.echo(f"[{run_id}] [dry-run] All changes rolled back.")
    click.echo(build_attendance_report(event_id, summary, dry_run=dry_run))
    if rejects.opened:
        click.echo(f"[{run_id}] Missing participants written to {rejects_path}")

    report_path = write_run_report(
        run_id, started_at, "attendance", dry_run,
        {
            "event_id": event_id,
            "attended_path": attended_path,
            "no_show_path": no_show_path,
            "blocklisted_path": blocklisted_path,
        },
        summary, report_dir,
    )
    click.echo(f"[{run_id}] Run report: {report_path}")


def _run_volunteer_list(store: PostgresStore, run_id: str, output_path: str | None) -> None:
    volunteers = list_volunteers(store)
    click.echo(f"[{run_id}] {len(volunteers)} volunteer(s)")
    for v in volunteers:
        click.echo(f"  {v.id}  {v.name}  {v.email or '-'}  joined {v.joined_at.date().isoformat()}")
    if output_path:
        _write_export(
            ExportFile("volunteers.xlsx", [("volunteers", volunteer_export_rows(volunteers), None)]),
            output_path, run_id,
        )


# ---------------------------------------------------------------------------
# Unified CLI
# ---------------------------------------------------------------------------

@click.command()
@click.option(
    "--mode",
    default="overview",
    type=click.Choice(MODES),
    show_default=True,
    help="Operation to run",
)
@click.option("--db-dsn", required=True, envvar="DATABASE_URL", help="PostgreSQL DSN (or DATABASE_URL)")
# import_event flags
@click.option("--event-name", default=None, help="[import_event] Event name (min 3 chars)")
@click.option("--event-date", default=None, help="[import_event] Event date, e.g. 2025-04-12")
@click.option("--confirmed-path", default=None, type=click.Path(exists=True, dir_okay=False), help="[import_event] Confirmed participants .xlsx")
# attendance flags
@click.option("--event-id", default=None, help="[attendance|export_confirmed|export_no_show] Event id")
@click.option("--attended-path", default=None, type=click.Path(exists=True, dir_okay=False), help="[attendance] Attended .xlsx")
@click.option("--no-show-path", default=None, type=click.Path(exists=True, dir_okay=False), help="[attendance] No-show .xlsx")
@click.option("--blocklisted-path", default=None, type=click.Path(exists=True, dir_okay=False), help="[attendance] Manually blocklisted .xlsx")
@click.option(
    "--lock-event/--no-lock-event",
    default=False,
    show_default=True,
    help="[attendance] Serialize concurrent runs for the same event",
)
@click.option(
    "--rejects-path",
    default="./artifacts/rejects/attendance_missing.csv",
    show_default=True,
    help="[attendance] CSV of emails that matched no participant",
)
# export flags
@click.option("--output-path", default=None, type=click.Path(dir_okay=False), help="[import_event|export_*|volunteer_list] Output .xlsx")
# migrate flags
@click.option("--migrations-dir", default="./migrations", type=click.Path(file_okay=False), show_default=True, help="[migrate] Directory of NNNN_*.sql files")
# volunteer flags
@click.option("--volunteer-id", default=None, help="[volunteer_remove] Volunteer id")
@click.option("--volunteer-name", default=None, help="[volunteer_add] Name")
@click.option("--volunteer-phone", default=None, help="[volunteer_add] Phone number")
@click.option("--volunteer-email", default=None, help="[volunteer_add] Email")
@click.option("--volunteer-joined-at", default=None, help="[volunteer_add] Join date (defaults to now)")
@click.option("--volunteer-comments", default=None, help="[volunteer_add] Comments")
# shared flags
@click.option("--dry-run", is_flag=True, default=False)
@click.option("--run-id", default=None, help="Override UUID for log correlation")
@click.option("--report-dir", default="./artifacts/reports", type=click.Path(file_okay=False), show_default=True)
def main(
    mode: str,
    db_dsn: str,
    # import_event
    event_name: str | None,
    event_date: str | None,
    confirmed_path: str | None,
    # attendance
    event_id: str | None,
    attended_path: str | None,
    no_show_path: str | None,
    blocklisted_path: str | None,
    lock_event: bool,
    rejects_path: str,
    # exports
    output_path: str | None,
    # migrate
    migrations_dir: str,
    # volunteers
    volunteer_id: str | None,
    volunteer_name: str | None,
    volunteer_phone: str | None,
    volunteer_email: str | None,
    volunteer_joined_at: str | None,
    volunteer_comments: str | None,
    # shared
    dry_run: bool,
    run_id: str | None,
    report_dir: str,
) -> None:
    """Unified attendance reconciliation CLI."""
    run_id = run_id or str(uuid.uuid4())
    started_at = datetime.utcnow().isoformat()
    reports = Path(report_dir)

    click.echo(f"[{run_id}] Starting {mode} run (dry_run={dry_run})")

    if mode == "import_event":
        _validate_import_event_flags(confirmed_path, run_id)
    elif mode == "attendance":
        _validate_attendance_flags(event_id, attended_path, no_show_path, blocklisted_path, run_id)
    elif mode in ("export_confirmed", "export_no_show"):
        _validate_event_id_flag(event_id, mode, run_id)
    elif mode == "volunteer_remove" and not volunteer_id:
        _fatal(run_id, "--volunteer-id is required for --mode volunteer_remove")

    rejects = RejectWriter(Path(rejects_path))
    store = None
    try:
        store = open_store(db_dsn, dry_run)

        if mode == "import_event":
            _run_import_event(
                store, run_id, started_at,
                event_name, event_date, confirmed_path,  # type: ignore[arg-type]
                output_path, reports, dry_run,
            )
        elif mode == "attendance":
            _run_attendance(
                store, run_id, started_at,
                event_id,  # type: ignore[arg-type]
                attended_path, no_show_path, blocklisted_path,
                lock_event, rejects, rejects_path, reports, dry_run,
            )
        elif mode == "overview":
            overview = build_overview(store)
            click.echo(build_overview_report(overview))
            report_path = write_run_report(
                run_id, started_at, mode, dry_run, {}, overview, reports,
            )
            click.echo(f"[{run_id}] Run report: {report_path}")
        elif mode == "export_blocklist":
            _write_export(blocklist_export(store), output_path, run_id)
        elif mode == "export_confirmed":
            _write_export(confirmed_export(store, event_id), output_path, run_id)  # type: ignore[arg-type]
        elif mode == "export_no_show":
            _write_export(no_show_export(store, event_id), output_path, run_id)  # type: ignore[arg-type]
        elif mode == "migrate":
            counters = apply_migrations(store, Path(migrations_dir))
            if dry_run:
                click.echo(f"[{run_id}] [dry-run] All changes rolled back.")
            click.echo(
                f"[{run_id}] Migrations: {len(counters.applied)} applied, "
                f"{len(counters.skipped)} already applied"
            )
            for name in counters.applied:
                click.echo(f"[{run_id}]   applied {name}")
            report_path = write_run_report(
                run_id, started_at, mode, dry_run,
                {"migrations_dir": migrations_dir}, counters, reports,
            )
            click.echo(f"[{run_id}] Run report: {report_path}")
        elif mode == "volunteer_add":
            volunteer = add_volunteer(
                store,
                volunteer_name,
                phone_number=volunteer_phone,
                email=volunteer_email,
                joined_at=volunteer_joined_at,
                comments=volunteer_comments,
            )
            click.echo(f"[{run_id}] Added volunteer {volunteer.id} ({volunteer.name})")
        elif mode == "volunteer_list":
            _run_volunteer_list(store, run_id, output_path)
        elif mode == "volunteer_remove":
            remove_volunteer(store, volunteer_id)  # type: ignore[arg-type]
            click.echo(f"[{run_id}] Removed volunteer {volunteer_id}")
    except AttendanceError as exc:
        click.echo(f"[{run_id}] FATAL: {exc}", err=True)
        sys.exit(1)
    finally:
        rejects.close()
        if store is not None:
            store.close()

    click.echo(f"[{run_id}] Done.")


if __name__ == "__main__":
    main()
