"""Database connection and transaction handling using APSW."""

import os
from collections.abc import Generator, Iterable
from contextlib import contextmanager
from pathlib import Path

import apsw

SCHEMA_PATH = Path(__file__).parent / "schema.sql"

_standalone_db: apsw.Connection | None = None


def get_db_path() -> str:
    """Resolve the database path from TGCLOUD_DB or TGCLOUD_ROOT."""
    db_path = os.environ.get("TGCLOUD_DB")
    if db_path:
        return db_path
    if "TGCLOUD_ROOT" in os.environ:
        project_root = Path(os.environ["TGCLOUD_ROOT"])
    else:
        project_root = Path.cwd()
    return str(project_root / "instance" / "tgcloud.sqlite3")


def connect(db_path: str) -> apsw.Connection:
    """Open a connection with the pragmas every caller expects."""
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = apsw.Connection(db_path)
    conn.execute("PRAGMA busy_timeout = 5000;")
    conn.execute("PRAGMA foreign_keys = ON;")
    conn.execute("PRAGMA journal_mode = WAL;")
    return conn


@contextmanager
def transaction(conn: apsw.Connection) -> Generator[apsw.Cursor, None, None]:
    """Context manager for database transactions.

    Automatically commits on success, rolls back on exception.
    """
    cursor = conn.cursor()
    cursor.execute("BEGIN IMMEDIATE;")
    try:
        yield cursor
        cursor.execute("COMMIT;")
    except Exception:
        cursor.execute("ROLLBACK;")
        raise


def init_db_at(db_path: str) -> None:
    """Create the schema in the database at ``db_path``."""
    conn = connect(db_path)
    try:
        for _ in conn.execute(SCHEMA_PATH.read_text()):
            pass
    finally:
        conn.close()


def read_settings(conn: apsw.Connection) -> dict[str, str]:
    """All stored settings as raw strings, keyed by registry key."""
    rows = conn.execute("SELECT key, value FROM app_setting")
    return {str(key): str(value) for key, value in rows}


def write_settings(conn: apsw.Connection, rows: Iterable[tuple[str, str, str]]) -> None:
    """Upsert (key, value, description) rows in one transaction."""
    with transaction(conn) as cursor:
        for key, value, description in rows:
            cursor.execute(
                "INSERT INTO app_setting (key, value, description) VALUES (?, ?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value, "
                "description = excluded.description",
                (key, value, description),
            )


# ---------------------------------------------------------------------------
# Standalone connection for the admin CLI (no Flask app context)
# ---------------------------------------------------------------------------


def get_standalone_db() -> apsw.Connection:
    """Get the process-wide CLI connection, opening it on first use."""
    global _standalone_db
    if _standalone_db is None:
        _standalone_db = connect(get_db_path())
    return _standalone_db


def close_standalone_db() -> None:
    global _standalone_db
    if _standalone_db is not None:
        _standalone_db.close()
        _standalone_db = None

