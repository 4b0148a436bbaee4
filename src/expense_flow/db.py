from __future__ import annotations

import sqlite3
from pathlib import Path

MIGRATIONS_DIR = Path(__file__).parent / "migrations"
IN_MEMORY = ":memory:"


def connect_sqlite(path: str | Path = IN_MEMORY) -> sqlite3.Connection:
    # shared with FastAPI's threadpool
    if str(path) != IN_MEMORY:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


def apply_all_migrations(conn: sqlite3.Connection) -> list[str]:
    """Run every bundled ``*.sql`` file in name order and return their names.

    The scripts only use ``IF NOT EXISTS`` statements, so running them on an
    existing database is a no-op.
    """
    applied = []
    for migration in sorted(MIGRATIONS_DIR.glob("*.sql")):
        conn.executescript(migration.read_text(encoding="utf-8"))
        applied.append(migration.name)
    return applied


def open_database(path: str | Path = IN_MEMORY) -> sqlite3.Connection:
    conn = connect_sqlite(path)
    apply_all_migrations(conn)
    return conn
