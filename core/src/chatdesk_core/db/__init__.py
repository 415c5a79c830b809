from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path

from chatdesk_core.home import ChatDeskPaths

ENCRYPTION_DB = "encryption"
API_KEYS_DB = "apikeys"
CONVERSATIONS_DB = "conversations"
SETTINGS_DB = "settings"

DATABASE_NAMES: tuple[str, ...] = (ENCRYPTION_DB, API_KEYS_DB, CONVERSATIONS_DB, SETTINGS_DB)


def resolve_db_path(paths: ChatDeskPaths, name: str) -> Path:
    """Resolve the SQLite file for one logical database.

    The directory is controlled by the `db_dir` layout/override.
    """

    return paths.db_dir / f"{name}.db"


def utc_now_sqlite_iso() -> str:
    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def connect_database(db_path: Path) -> sqlite3.Connection:
    """Open a long-lived connection with explicit transaction control.

    Statements autocommit unless wrapped in `transaction()`.
    """

    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path, isolation_level=None, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


@contextmanager
def transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    conn.execute("BEGIN;")
    try:
        yield conn
    except BaseException:
        if conn.in_transaction:
            conn.execute("ROLLBACK;")
        raise
    else:
        if conn.in_transaction:
            conn.execute("COMMIT;")


def execute_statements(conn: sqlite3.Connection, *statements: str) -> None:
    """Run DDL one statement at a time.

    executescript() would COMMIT any open transaction, so migrations use this.
    """

    for statement in statements:
        conn.execute(statement)
