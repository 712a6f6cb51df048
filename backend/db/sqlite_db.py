import os
import sqlite3
from contextlib import contextmanager
from typing import Iterator, Optional

DB_PATH = "/data/app.db"


def db_path() -> str:
    return os.environ.get("DB_PATH", DB_PATH)


def _ensure_db_dir(path: str) -> None:
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)


@contextmanager
def get_conn(path: Optional[str] = None) -> Iterator[sqlite3.Connection]:
    path = path or db_path()
    _ensure_db_dir(path)
    conn = sqlite3.connect(path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys=ON")

    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def _ensure_column(conn: sqlite3.Connection, table_name: str, col_name: str, col_sql: str) -> None:
    info = conn.execute(f"PRAGMA table_info({table_name})").fetchall()
    cols = {r["name"] for r in info}
    if col_name not in cols:
        conn.execute(f"ALTER TABLE {table_name} ADD COLUMN {col_sql}")


def init_software() -> None:
    with get_conn() as conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS software (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL UNIQUE,
                category TEXT NOT NULL CHECK (category IN ('firmware', 'desktop')),
                is_active INTEGER NOT NULL DEFAULT 1
            )
            """
        )


def init_users() -> None:
    with get_conn() as conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS users (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL UNIQUE COLLATE NOCASE,
                password_hash TEXT NOT NULL,
                is_imported INTEGER NOT NULL DEFAULT 0,
                is_active INTEGER NOT NULL DEFAULT 1,
                created_at TEXT NOT NULL DEFAULT (datetime('now'))
            )
            """
        )
        _ensure_column(conn, "users", "is_imported", "is_imported INTEGER NOT NULL DEFAULT 0")


def init_countries() -> None:
    with get_conn() as conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS country (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL UNIQUE COLLATE NOCASE,
                is_active INTEGER NOT NULL DEFAULT 1
            )
            """
        )


def init_customers() -> None:
    with get_conn() as conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS customer (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL COLLATE NOCASE,
                country_id INTEGER NOT NULL REFERENCES country(id),
                is_active INTEGER NOT NULL DEFAULT 1,
                requires_validation INTEGER NOT NULL DEFAULT 0,
                UNIQUE (country_id, name)
            )
            """
        )


def init_version_history() -> None:
    with get_conn() as conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS version_history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                software_id INTEGER NOT NULL REFERENCES software(id),
                version TEXT NOT NULL,
                release_date TEXT NOT NULL,
                released_by_id INTEGER NOT NULL REFERENCES users(id),
                release_status TEXT NOT NULL
                    CHECK (release_status IN ('pre_release', 'released', 'production_ready')),
                UNIQUE (software_id, version)
            )
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS version_history_customer (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                version_history_id INTEGER NOT NULL REFERENCES version_history(id) ON DELETE CASCADE,
                customer_id INTEGER NOT NULL REFERENCES customer(id),
                release_stage TEXT NOT NULL
                    CHECK (release_stage IN ('pre_release', 'released', 'production_ready')),
                UNIQUE (version_history_id, customer_id)
            )
            """
        )


def init_history_notes() -> None:
    with get_conn() as conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS history_note (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                version_history_id INTEGER NOT NULL REFERENCES version_history(id) ON DELETE CASCADE,
                note TEXT NOT NULL
            )
            """
        )
        # cross-version duplicate lookups search by text
        conn.execute("CREATE INDEX IF NOT EXISTS ix_history_note_note ON history_note(note)")
        conn.execute(
            "CREATE INDEX IF NOT EXISTS ix_history_note_version ON history_note(version_history_id)"
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS history_note_customer (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                history_note_id INTEGER NOT NULL REFERENCES history_note(id) ON DELETE CASCADE,
                customer_id INTEGER NOT NULL REFERENCES customer(id),
                UNIQUE (history_note_id, customer_id)
            )
            """
        )


def init_import_run() -> None:
    with get_conn() as conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS import_run (
              run_id TEXT PRIMARY KEY,

              kind TEXT NOT NULL,            -- legacy | firmware | firmware_countries
              status TEXT NOT NULL,          -- running | completed | failed
              source_path TEXT,
              encoding TEXT,

              rows_read INTEGER,
              rows_processed INTEGER,

              message TEXT,
              summary_json TEXT,

              created_at TEXT NOT NULL,
              updated_at TEXT NOT NULL,
              started_at TEXT,
              finished_at TEXT
            )
            """
        )
        _ensure_column(conn, "import_run", "encoding", "encoding TEXT")


def init_all_tables() -> None:
    init_software()
    init_users()
    init_countries()
    init_customers()
    init_version_history()
    init_history_notes()
    init_import_run()
