from __future__ import annotations

import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

DB_DIR = Path(os.environ.get("ANCHORNOTES_HOME", Path.home() / ".anchornotes"))
DB_PATH = DB_DIR / "anchornotes.db"

SCHEMA = """\
CREATE TABLE IF NOT EXISTS notes (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    content TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT NOT NULL DEFAULT (datetime('now')),
    reminder_id TEXT
);

CREATE TABLE IF NOT EXISTS reminders (
    id TEXT PRIMARY KEY,
    note_id TEXT NOT NULL REFERENCES notes(id) ON DELETE CASCADE,
    kind TEXT NOT NULL CHECK(kind IN ('time', 'location')),
    trigger_time TEXT,
    latitude REAL,
    longitude REAL,
    radius_m REAL,
    active INTEGER NOT NULL DEFAULT 1,
    retired_at TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    CHECK ((kind = 'time') = (trigger_time IS NOT NULL)),
    CHECK ((kind = 'location') = (latitude IS NOT NULL AND longitude IS NOT NULL AND radius_m IS NOT NULL)),
    CHECK ((retired_at IS NULL) OR active = 0)
);

-- one active reminder per note
CREATE UNIQUE INDEX IF NOT EXISTS reminders_one_active
    ON reminders(note_id) WHERE active = 1;

CREATE TABLE IF NOT EXISTS geofences (
    reminder_id TEXT PRIMARY KEY,
    latitude REAL NOT NULL,
    longitude REAL NOT NULL,
    radius_m REAL NOT NULL,
    inside INTEGER,
    registered_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS location_fix (
    id INTEGER PRIMARY KEY CHECK(id = 1),
    latitude REAL NOT NULL,
    longitude REAL NOT NULL,
    reported_at TEXT NOT NULL DEFAULT (datetime('now'))
);
"""


def _connect(db_path: Path | None = None) -> sqlite3.Connection:
    conn = sqlite3.connect(str(db_path or DB_PATH))
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    conn.row_factory = sqlite3.Row
    return conn


def init_db(db_path: Path | None = None) -> None:
    target = db_path or DB_PATH
    target.parent.mkdir(parents=True, exist_ok=True)
    conn = _connect(target)
    conn.executescript(SCHEMA)
    conn.close()


@contextmanager
def get_db(db_path: Path | None = None) -> Generator[sqlite3.Connection, None, None]:
    conn = _connect(db_path)
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


@contextmanager
def transaction(db_path: Path | None = None) -> Generator[sqlite3.Connection, None, None]:
    """Like get_db, but takes the write lock up front.

    Reads inside the block see the same snapshot the writes are based on,
    so a read-modify-write cannot interleave with another writer, even one
    in a different process.
    """
    conn = _connect(db_path)
    conn.isolation_level = None
    try:
        conn.execute("BEGIN IMMEDIATE")
        yield conn
        conn.execute("COMMIT")
    except Exception:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        raise
    finally:
        conn.close()


def sqlalchemy_url(db_path: Path | None = None) -> str:
    return f"sqlite:///{db_path or DB_PATH}"
