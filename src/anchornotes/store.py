from __future__ import annotations

import sqlite3
from datetime import datetime

from anchornotes.models import Note, Region, Reminder, ReminderKind

_REMINDER_COLUMNS = (
    "id, note_id, kind, trigger_time, latitude, longitude, radius_m, "
    "active, retired_at, created_at"
)


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def row_to_note(row: sqlite3.Row) -> Note:
    return Note(
        id=row["id"],
        title=row["title"],
        content=row["content"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        reminder_id=row["reminder_id"],
    )


def row_to_reminder(row: sqlite3.Row) -> Reminder:
    kind = ReminderKind(row["kind"])
    region = None
    if kind is ReminderKind.LOCATION:
        region = Region(row["latitude"], row["longitude"], row["radius_m"])
    return Reminder(
        id=row["id"],
        note_id=row["note_id"],
        kind=kind,
        trigger_time=_parse_ts(row["trigger_time"]),
        region=region,
        active=bool(row["active"]),
        retired_at=_parse_ts(row["retired_at"]),
        created_at=row["created_at"],
    )


# --- notes ---


def get_note(db: sqlite3.Connection, note_id: str) -> Note | None:
    row = db.execute("SELECT * FROM notes WHERE id = ?", (note_id,)).fetchone()
    return row_to_note(row) if row else None


def update_reminder_ref(db: sqlite3.Connection, note_id: str, reminder_id: str | None) -> None:
    db.execute("UPDATE notes SET reminder_id = ? WHERE id = ?", (reminder_id, note_id))


# --- reminders ---


def get_reminder(db: sqlite3.Connection, reminder_id: str) -> Reminder | None:
    row = db.execute(
        f"SELECT {_REMINDER_COLUMNS} FROM reminders WHERE id = ?", (reminder_id,)
    ).fetchone()
    return row_to_reminder(row) if row else None


def get_active_reminder(db: sqlite3.Connection, note_id: str) -> Reminder | None:
    row = db.execute(
        f"SELECT {_REMINDER_COLUMNS} FROM reminders WHERE note_id = ? AND active = 1",
        (note_id,),
    ).fetchone()
    return row_to_reminder(row) if row else None


def list_reminders(db: sqlite3.Connection, note_id: str) -> list[Reminder]:
    rows = db.execute(
        f"""SELECT {_REMINDER_COLUMNS} FROM reminders
            WHERE note_id = ?
            ORDER BY created_at DESC, rowid DESC""",
        (note_id,),
    ).fetchall()
    return [row_to_reminder(r) for r in rows]


def list_active_reminders(db: sqlite3.Connection) -> list[Reminder]:
    rows = db.execute(
        f"SELECT {_REMINDER_COLUMNS} FROM reminders WHERE active = 1 ORDER BY rowid"
    ).fetchall()
    return [row_to_reminder(r) for r in rows]


def insert_reminder(db: sqlite3.Connection, reminder: Reminder) -> None:
    region = reminder.region
    db.execute(
        """INSERT INTO reminders
           (id, note_id, kind, trigger_time, latitude, longitude, radius_m, active)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
        (
            reminder.id,
            reminder.note_id,
            reminder.kind.value,
            reminder.trigger_time.isoformat() if reminder.trigger_time else None,
            region.latitude if region else None,
            region.longitude if region else None,
            region.radius_m if region else None,
            int(reminder.active),
        ),
    )


def retire_reminder(db: sqlite3.Connection, reminder_id: str, retired_at: datetime) -> bool:
    """Flip an active reminder to retired. False if it was not active."""
    cur = db.execute(
        "UPDATE reminders SET active = 0, retired_at = ? WHERE id = ? AND active = 1",
        (retired_at.isoformat(), reminder_id),
    )
    return cur.rowcount == 1


def delete_active_reminder(db: sqlite3.Connection, reminder_id: str) -> bool:
    """Delete a reminder only while it is active. Retired history is kept."""
    cur = db.execute("DELETE FROM reminders WHERE id = ? AND active = 1", (reminder_id,))
    return cur.rowcount == 1
