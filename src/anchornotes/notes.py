from __future__ import annotations

import uuid
from pathlib import Path

from anchornotes import store
from anchornotes.db import get_db
from anchornotes.lifecycle import ReminderLifecycle
from anchornotes.models import Note


def create_note(title: str, content: str = "", db_path: Path | None = None) -> Note:
    note_id = str(uuid.uuid4())
    with get_db(db_path) as db:
        db.execute(
            "INSERT INTO notes (id, title, content) VALUES (?, ?, ?)", (note_id, title, content)
        )
        return store.get_note(db, note_id)


def get_note(note_id: str, db_path: Path | None = None) -> Note | None:
    with get_db(db_path) as db:
        return store.get_note(db, note_id)


def list_notes(db_path: Path | None = None) -> list[Note]:
    with get_db(db_path) as db:
        rows = db.execute("SELECT * FROM notes ORDER BY updated_at DESC, rowid DESC").fetchall()
    return [store.row_to_note(r) for r in rows]


def update_note(note_id: str, title: str, content: str, db_path: Path | None = None) -> bool:
    with get_db(db_path) as db:
        cur = db.execute(
            "UPDATE notes SET title = ?, content = ?, updated_at = datetime('now') WHERE id = ?",
            (title, content, note_id),
        )
        return cur.rowcount == 1


def delete_note(lifecycle: ReminderLifecycle, note_id: str) -> bool:
    """Delete a note and everything hanging off it.

    The active reminder is cancelled first so no alarm or geofence
    outlives the note; retired reminders go with the note by cascade.
    """
    with lifecycle.locked(note_id):
        lifecycle.cancel_active(note_id)
        with get_db(lifecycle.db_path) as db:
            cur = db.execute("DELETE FROM notes WHERE id = ?", (note_id,))
            return cur.rowcount == 1
