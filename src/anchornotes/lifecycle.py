"""Reminder lifecycle: the rules for creating, cancelling and retiring reminders.

A note has at most one active reminder. Creating a reminder replaces the
active one, cancelling deletes it, and a fire from either trigger source
retires it (the record is kept as history). Fires arrive on scheduler or
location threads at any time, so every read-modify-write for a note runs
under that note's lock. Trigger sources are only called outside SQLite
write transactions because they write to the same database file.

``notes.reminder_id`` is not cleared when a reminder retires. It keeps
pointing at the retired record until the user cancels or creates a new
reminder, so callers must look at ``Reminder.active`` rather than at the
presence of a reference.
"""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Generator, Protocol

from anchornotes import store
from anchornotes.db import get_db, transaction
from anchornotes.errors import NoteNotFound, ReminderConflict, TriggerRegistrationFailed
from anchornotes.locks import KeyedLock
from anchornotes.models import Note, Region, Reminder, ReminderKind

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "AnchorNotes Reminder"
MESSAGES = {
    ReminderKind.TIME: "Reminder for this note",
    ReminderKind.LOCATION: "Location-based reminder for this note",
}


class TimeSource(Protocol):
    def schedule(self, reminder_id: str, trigger_time: datetime) -> None: ...
    def cancel(self, reminder_id: str) -> None: ...
    def is_scheduled(self, reminder_id: str) -> bool: ...


class RegionSource(Protocol):
    def register(self, reminder_id: str, latitude: float, longitude: float, radius_m: float) -> None: ...
    def unregister(self, reminder_id: str) -> None: ...
    def is_registered(self, reminder_id: str) -> bool: ...


class Notifier(Protocol):
    def notify(self, note_id: str, title: str, body: str) -> None: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReminderLifecycle:
    def __init__(
        self,
        db_path: Path | None = None,
        *,
        time_source: TimeSource,
        region_source: RegionSource,
        notifier: Notifier,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.db_path = db_path
        self.time_source = time_source
        self.region_source = region_source
        self.notifier = notifier
        self._clock = clock
        self._locks = KeyedLock()

    @contextmanager
    def locked(self, note_id: str) -> Generator[None, None, None]:
        """Hold the note's lock; re-entrant, so lifecycle calls may nest."""
        with self._locks.hold(note_id):
            yield

    # --- create ---

    def create_time_reminder(
        self, note_id: str, trigger_time: datetime, *, replace: bool = True
    ) -> Reminder:
        if trigger_time is None:
            raise ValueError("trigger_time is required")
        # naive values are local wall-clock time
        trigger_time = trigger_time.astimezone(timezone.utc)
        reminder = Reminder(
            id=str(uuid.uuid4()),
            note_id=note_id,
            kind=ReminderKind.TIME,
            trigger_time=trigger_time,
        )
        return self._create(reminder, replace)

    def create_location_reminder(
        self,
        note_id: str,
        latitude: float,
        longitude: float,
        radius_m: float,
        *,
        replace: bool = True,
    ) -> Reminder:
        reminder = Reminder(
            id=str(uuid.uuid4()),
            note_id=note_id,
            kind=ReminderKind.LOCATION,
            region=Region(float(latitude), float(longitude), float(radius_m)),
        )
        return self._create(reminder, replace)

    def _create(self, reminder: Reminder, replace: bool) -> Reminder:
        note_id = reminder.note_id
        with self.locked(note_id):
            with get_db(self.db_path) as db:
                note = store.get_note(db, note_id)
                existing = store.get_active_reminder(db, note_id)
            if note is None:
                raise NoteNotFound(note_id)
            if existing is not None:
                if not replace:
                    raise ReminderConflict(note_id)
                # torn down first so the old trigger cannot fire alongside the new one
                self._unregister(existing)

            with transaction(self.db_path) as db:
                if store.get_note(db, note_id) is None:
                    raise NoteNotFound(note_id)
                current = store.get_active_reminder(db, note_id)
                if current is not None and (existing is None or current.id != existing.id):
                    # another process created one since we looked
                    raise ReminderConflict(note_id)
                if existing is not None and not store.delete_active_reminder(db, existing.id):
                    logger.debug("Reminder %s retired before it could be replaced", existing.id)
                store.insert_reminder(db, reminder)
                store.update_reminder_ref(db, note_id, reminder.id)

            if existing is not None:
                logger.info("Replaced reminder %s on note %s", existing.id, note_id)
            logger.info("Created %s reminder %s on note %s", reminder.kind.value, reminder.id, note_id)

            error = self._register(reminder)

            # a geofence may fire on registration, so hand back what is stored now
            with get_db(self.db_path) as db:
                created = store.get_reminder(db, reminder.id)
        created = created or reminder
        created.registration_error = error
        return created

    # --- cancel ---

    def cancel_active(self, note_id: str) -> bool:
        """Cancel the note's active reminder, if any.

        Returns True when an active reminder was cancelled. A note whose
        reference still points at a retired reminder only loses the
        reference; the retired record stays as history.
        """
        with self.locked(note_id):
            with get_db(self.db_path) as db:
                existing = store.get_active_reminder(db, note_id)
                note = store.get_note(db, note_id)

            if existing is None:
                if note is not None and note.reminder_id is not None:
                    with transaction(self.db_path) as db:
                        store.update_reminder_ref(db, note_id, None)
                    logger.debug("Cleared stale reminder reference on note %s", note_id)
                return False

            self._unregister(existing)
            with transaction(self.db_path) as db:
                deleted = store.delete_active_reminder(db, existing.id)
                store.update_reminder_ref(db, note_id, None)
        if not deleted:
            # fired in another process while we were tearing it down
            logger.info("Reminder %s on note %s retired before it was cancelled", existing.id, note_id)
            return False
        logger.info("Cancelled reminder %s on note %s", existing.id, note_id)
        return True

    # --- fire ---

    def on_fire(self, reminder_id: str) -> bool:
        """Retire a reminder whose trigger fired and notify the user.

        Safe to call any number of times for the same id: only the call
        that flips the reminder from active to retired notifies. Returns
        whether this call did so.
        """
        with get_db(self.db_path) as db:
            reminder = store.get_reminder(db, reminder_id)
        if reminder is None:
            logger.debug("Ignoring fire for unknown reminder %s", reminder_id)
            return False

        with self.locked(reminder.note_id):
            with get_db(self.db_path) as db:
                reminder = store.get_reminder(db, reminder_id)
            if reminder is None or not reminder.active:
                logger.debug("Ignoring repeated fire for reminder %s", reminder_id)
                return False

            # the source may already have consumed it
            self._unregister(reminder)

            retired_at = self._clock()
            with transaction(self.db_path) as db:
                if not store.retire_reminder(db, reminder_id, retired_at):
                    logger.debug("Reminder %s was retired elsewhere", reminder_id)
                    return False
                note = store.get_note(db, reminder.note_id)
            reminder.active = False
            reminder.retired_at = retired_at

        logger.info("Retired reminder %s on note %s", reminder_id, reminder.note_id)
        title = note.title if note is not None and note.title else DEFAULT_TITLE
        try:
            self.notifier.notify(reminder.note_id, title, MESSAGES[reminder.kind])
        except Exception:
            logger.exception("Notifier failed for reminder %s", reminder_id)
        return True

    # --- reads ---

    def can_create(self, note_id: str, kind: ReminderKind | None = None) -> bool:
        # any active reminder blocks every kind
        with get_db(self.db_path) as db:
            return store.get_active_reminder(db, note_id) is None

    def get_active(self, note_id: str) -> Reminder | None:
        """The reminder to show for a note.

        The active reminder when there is one, otherwise the retired
        reminder the note still references. Check ``active``.
        """
        with get_db(self.db_path) as db:
            reminder = store.get_active_reminder(db, note_id)
            if reminder is None:
                note = store.get_note(db, note_id)
                if note is not None and note.reminder_id:
                    reminder = store.get_reminder(db, note.reminder_id)
        return reminder

    def get_reminder(self, reminder_id: str) -> Reminder | None:
        with get_db(self.db_path) as db:
            return store.get_reminder(db, reminder_id)

    def history(self, note_id: str) -> list[Reminder]:
        with get_db(self.db_path) as db:
            return store.list_reminders(db, note_id)

    def list_current(self) -> list[tuple[Note, Reminder]]:
        with get_db(self.db_path) as db:
            rows = db.execute(
                """SELECT * FROM notes
                   WHERE reminder_id IS NOT NULL
                      OR id IN (SELECT note_id FROM reminders WHERE active = 1)
                   ORDER BY updated_at DESC, rowid DESC"""
            ).fetchall()
        current = []
        for row in rows:
            note = store.row_to_note(row)
            reminder = self.get_active(note.id)
            if reminder is not None:
                current.append((note, reminder))
        return current

    def resync(self) -> int:
        """Register every active reminder its trigger source does not know about."""
        with get_db(self.db_path) as db:
            active = store.list_active_reminders(db)
        count = 0
        for candidate in active:
            with self.locked(candidate.note_id):
                reminder = self.get_reminder(candidate.id)
                if reminder is None or not reminder.active or self._is_registered(reminder):
                    continue
                if self._register(reminder) is None:
                    count += 1
        if count:
            logger.info("Re-registered %d reminder(s)", count)
        return count

    # --- trigger sources ---

    def _register(self, reminder: Reminder) -> TriggerRegistrationFailed | None:
        try:
            if reminder.kind is ReminderKind.TIME:
                self.time_source.schedule(reminder.id, reminder.trigger_time)
            else:
                r = reminder.region
                self.region_source.register(reminder.id, r.latitude, r.longitude, r.radius_m)
        except TriggerRegistrationFailed as exc:
            logger.warning("%s; reminder stays active but unregistered", exc)
            return exc
        return None

    def _unregister(self, reminder: Reminder) -> None:
        try:
            if reminder.kind is ReminderKind.TIME:
                self.time_source.cancel(reminder.id)
            else:
                self.region_source.unregister(reminder.id)
        except Exception:
            logger.exception("Could not unregister reminder %s", reminder.id)

    def _is_registered(self, reminder: Reminder) -> bool:
        if reminder.kind is ReminderKind.TIME:
            return self.time_source.is_scheduled(reminder.id)
        return self.region_source.is_registered(reminder.id)
