"""attendance_etl.migrate

Schema migrations (--mode migrate).

Applies migrations/NNNN_*.sql files in lexical filename order inside one
transaction.  Each applied file is recorded in schema_migration; files
already recorded are skipped, so re-running is a no-op.  A failing file
rolls back every file applied in the same run.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from attendance_etl.shared import InputError
from attendance_etl.store import PostgresStore

_LEDGER_DDL = """
CREATE TABLE IF NOT EXISTS schema_migration (
    filename    text PRIMARY KEY,
    applied_at  timestamptz NOT NULL DEFAULT now()
)
"""


@dataclass
class MigrationCounters:
    discovered: int = 0
    applied: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "discovered": self.discovered,
            "applied": self.applied,
            "skipped": self.skipped,
        }


def discover_migrations(migrations_dir: Path) -> list[Path]:
    if not migrations_dir.is_dir():
        raise InputError(f"Migrations directory not found: {migrations_dir}")
    return sorted(migrations_dir.glob("*.sql"), key=lambda p: p.name)


def apply_migrations(store: PostgresStore, migrations_dir: Path) -> MigrationCounters:
    files = discover_migrations(migrations_dir)
    counters = MigrationCounters(discovered=len(files))

    with store.transaction():
        conn = store.conn
        conn.execute(_LEDGER_DDL)
        applied = {
            r[0] for r in conn.execute("SELECT filename FROM schema_migration").fetchall()
        }
        for path in files:
            if path.name in applied:
                counters.skipped.append(path.name)
                continue
            conn.execute(path.read_text(encoding="utf-8"))
            conn.execute(
                "INSERT INTO schema_migration (filename) VALUES (%s)",
                (path.name,),
            )
            counters.applied.append(path.name)

    return counters
