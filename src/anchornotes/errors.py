from __future__ import annotations


class AnchorNotesError(Exception):
    """Base class for errors surfaced by the reminder core."""


class NoteNotFound(AnchorNotesError):
    def __init__(self, note_id: str) -> None:
        super().__init__(f"Note {note_id} not found")
        self.note_id = note_id


class ReminderConflict(AnchorNotesError):
    def __init__(self, note_id: str) -> None:
        super().__init__(f"Note {note_id} already has an active reminder")
        self.note_id = note_id


class TriggerRegistrationFailed(AnchorNotesError):
    """A trigger source could not schedule or register a reminder.

    The lifecycle keeps the reminder active and hands this back on
    ``Reminder.registration_error``; a later cancel, recreate or resync
    clears the inconsistency.
    """

    def __init__(self, reminder_id: str, reason: str) -> None:
        super().__init__(f"Could not register reminder {reminder_id}: {reason}")
        self.reminder_id = reminder_id
        self.reason = reason
