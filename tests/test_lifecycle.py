from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from anchornotes import store
from anchornotes.db import get_db, transaction
from anchornotes.errors import NoteNotFound, ReminderConflict, TriggerRegistrationFailed
from anchornotes.lifecycle import DEFAULT_TITLE, MESSAGES
from anchornotes.models import ReminderKind
from anchornotes.notes import create_note, delete_note, get_note


def _soon(minutes=5):
    return datetime.now(timezone.utc) + timedelta(minutes=minutes)


def _active_count(db_path, note_id):
    with get_db(db_path) as db:
        return db.execute(
            "SELECT COUNT(*) AS c FROM reminders WHERE note_id = ? AND active = 1", (note_id,)
        ).fetchone()["c"]


def test_time_reminder_fires_and_retires(lifecycle, note, time_source, notifier):
    when = _soon()
    reminder = lifecycle.create_time_reminder(note.id, when)

    active = lifecycle.get_active(note.id)
    assert active.id == reminder.id
    assert active.kind is ReminderKind.TIME
    assert active.trigger_time == when
    assert active.active is True
    assert active.retired_at is None
    time_source.schedule.assert_called_once_with(reminder.id, when)
    assert get_note(note.id).reminder_id == reminder.id

    assert lifecycle.on_fire(reminder.id) is True

    retired = lifecycle.get_active(note.id)
    assert retired.id == reminder.id
    assert retired.active is False
    assert abs(datetime.now(timezone.utc) - retired.retired_at) < timedelta(seconds=5)
    notifier.notify.assert_called_once_with(note.id, "Groceries", MESSAGES[ReminderKind.TIME])
    time_source.cancel.assert_called_once_with(reminder.id)
    # the reference is kept after retirement
    assert get_note(note.id).reminder_id == reminder.id


def test_time_then_location_replaces(lifecycle, note, time_source, region_source):
    location = lifecycle.create_location_reminder(note.id, 34.02, -118.29, 100)
    region_source.register.assert_called_once_with(location.id, 34.02, -118.29, 100.0)

    timed = lifecycle.create_time_reminder(note.id, _soon(60))

    active = lifecycle.get_active(note.id)
    assert active.id == timed.id
    assert active.kind is ReminderKind.TIME
    assert lifecycle.get_reminder(location.id) is None
    region_source.unregister.assert_called_once_with(location.id)
    assert [r.id for r in lifecycle.history(note.id)] == [timed.id]


def test_cancel_without_reminder_writes_nothing(lifecycle, note, time_source, region_source):
    with patch("anchornotes.lifecycle.transaction", wraps=transaction) as spy:
        assert lifecycle.cancel_active(note.id) is False
    spy.assert_not_called()
    time_source.cancel.assert_not_called()
    region_source.unregister.assert_not_called()
    assert lifecycle.get_active(note.id) is None


def test_single_active_across_creates_and_cancels(lifecycle, note, db_path):
    steps = [
        lambda: lifecycle.create_time_reminder(note.id, _soon()),
        lambda: lifecycle.create_location_reminder(note.id, 1.0, 2.0, 50),
        lambda: lifecycle.cancel_active(note.id),
        lambda: lifecycle.cancel_active(note.id),
        lambda: lifecycle.create_time_reminder(note.id, _soon(10)),
        lambda: lifecycle.create_time_reminder(note.id, _soon(20)),
    ]
    for step in steps:
        step()
        assert _active_count(db_path, note.id) <= 1
    assert _active_count(db_path, note.id) == 1


def test_replace_deletes_old_and_tears_down_its_trigger(lifecycle, note, time_source):
    first = lifecycle.create_time_reminder(note.id, _soon())
    second = lifecycle.create_time_reminder(note.id, _soon(30))

    assert lifecycle.get_reminder(first.id) is None
    assert lifecycle.get_active(note.id).id == second.id
    time_source.cancel.assert_called_once_with(first.id)
    assert get_note(note.id).reminder_id == second.id


def _retire_elsewhere(db_path, reminder_id):
    # stands in for a worker process retiring the reminder concurrently
    def retire(*args):
        with transaction(db_path) as db:
            store.retire_reminder(db, reminder_id, datetime.now(timezone.utc))

    return retire


def test_replace_keeps_reminder_retired_during_teardown(lifecycle, note, time_source, db_path):
    first = lifecycle.create_time_reminder(note.id, _soon())
    time_source.cancel.side_effect = _retire_elsewhere(db_path, first.id)

    second = lifecycle.create_time_reminder(note.id, _soon(30))

    kept = lifecycle.get_reminder(first.id)
    assert kept is not None
    assert kept.active is False
    assert lifecycle.get_active(note.id).id == second.id
    assert [r.id for r in lifecycle.history(note.id)] == [second.id, first.id]


def test_cancel_keeps_reminder_retired_during_teardown(lifecycle, note, region_source, db_path):
    reminder = lifecycle.create_location_reminder(note.id, 1.0, 2.0, 50)
    region_source.unregister.side_effect = _retire_elsewhere(db_path, reminder.id)

    assert lifecycle.cancel_active(note.id) is False

    assert lifecycle.get_reminder(reminder.id).active is False
    assert get_note(note.id).reminder_id is None


def test_fire_twice_notifies_once(lifecycle, note, notifier):
    reminder = lifecycle.create_time_reminder(note.id, _soon())

    assert lifecycle.on_fire(reminder.id) is True
    retired_at = lifecycle.get_reminder(reminder.id).retired_at
    assert lifecycle.on_fire(reminder.id) is False

    assert notifier.notify.call_count == 1
    stored = lifecycle.get_reminder(reminder.id)
    assert stored.active is False
    assert stored.retired_at == retired_at


def test_cancel_then_stale_fire_is_ignored(lifecycle, note, notifier):
    reminder = lifecycle.create_location_reminder(note.id, 1.0, 2.0, 50)
    assert lifecycle.cancel_active(note.id) is True

    assert lifecycle.on_fire(reminder.id) is False
    notifier.notify.assert_not_called()
    assert lifecycle.get_reminder(reminder.id) is None
    assert get_note(note.id).reminder_id is None


def test_fire_for_unknown_id(lifecycle, notifier):
    assert lifecycle.on_fire("no-such-reminder") is False
    notifier.notify.assert_not_called()


def test_delete_note_unregisters_before_removing(lifecycle, note, time_source, db_path):
    reminder = lifecycle.create_time_reminder(note.id, _soon())
    seen = []

    def cancel(reminder_id):
        # record still present when the trigger is torn down
        seen.append(lifecycle.get_reminder(reminder_id) is not None)

    time_source.cancel.side_effect = cancel

    assert delete_note(lifecycle, note.id) is True
    assert seen == [True]
    assert get_note(note.id) is None
    assert lifecycle.get_reminder(reminder.id) is None


def test_delete_note_drops_retired_history(lifecycle, note, time_source):
    reminder = lifecycle.create_time_reminder(note.id, _soon())
    lifecycle.on_fire(reminder.id)
    time_source.cancel.reset_mock()

    delete_note(lifecycle, note.id)

    time_source.cancel.assert_not_called()
    assert lifecycle.get_reminder(reminder.id) is None


def test_create_for_missing_note(lifecycle, time_source):
    with pytest.raises(NoteNotFound):
        lifecycle.create_time_reminder("missing", _soon())
    with pytest.raises(NoteNotFound):
        lifecycle.create_location_reminder("missing", 1.0, 2.0, 10)
    time_source.schedule.assert_not_called()


def test_create_without_replace_conflicts(lifecycle, note, time_source):
    first = lifecycle.create_time_reminder(note.id, _soon())
    assert lifecycle.can_create(note.id, ReminderKind.LOCATION) is False

    with pytest.raises(ReminderConflict):
        lifecycle.create_location_reminder(note.id, 1.0, 2.0, 10, replace=False)

    assert lifecycle.get_active(note.id).id == first.id
    time_source.cancel.assert_not_called()


def test_can_create_after_retirement(lifecycle, note):
    assert lifecycle.can_create(note.id) is True
    reminder = lifecycle.create_time_reminder(note.id, _soon())
    assert lifecycle.can_create(note.id) is False
    lifecycle.on_fire(reminder.id)
    assert lifecycle.can_create(note.id) is True


def test_new_reminder_after_retirement_keeps_history(lifecycle, note):
    old = lifecycle.create_time_reminder(note.id, _soon())
    lifecycle.on_fire(old.id)

    new = lifecycle.create_location_reminder(note.id, 1.0, 2.0, 10)

    assert lifecycle.get_active(note.id).id == new.id
    assert {r.id for r in lifecycle.history(note.id)} == {old.id, new.id}
    assert get_note(note.id).reminder_id == new.id


def test_cancel_after_retirement_clears_reference_only(lifecycle, note, time_source):
    reminder = lifecycle.create_time_reminder(note.id, _soon())
    lifecycle.on_fire(reminder.id)
    time_source.cancel.reset_mock()

    assert lifecycle.cancel_active(note.id) is False

    assert get_note(note.id).reminder_id is None
    assert lifecycle.get_active(note.id) is None
    assert lifecycle.get_reminder(reminder.id).retired_at is not None
    time_source.cancel.assert_not_called()


def test_registration_failure_is_returned_not_raised(lifecycle, note, time_source):
    def refuse(reminder_id, when):
        raise TriggerRegistrationFailed(reminder_id, "permission denied")

    time_source.schedule.side_effect = refuse

    reminder = lifecycle.create_time_reminder(note.id, _soon())

    assert reminder.active is True
    assert isinstance(reminder.registration_error, TriggerRegistrationFailed)
    assert reminder.registered is False
    assert lifecycle.can_create(note.id) is False

    # a resync retries it
    time_source.schedule.side_effect = None
    time_source.schedule.reset_mock()
    assert lifecycle.resync() == 1
    time_source.schedule.assert_called_once_with(reminder.id, reminder.trigger_time)


def test_resync_skips_registered_and_retired(lifecycle, db_path, time_source, region_source):
    a = create_note("A", db_path=db_path)
    b = create_note("B", db_path=db_path)
    retired = lifecycle.create_time_reminder(a.id, _soon())
    lifecycle.on_fire(retired.id)
    lifecycle.create_location_reminder(b.id, 1.0, 2.0, 10)
    region_source.is_registered.return_value = True
    region_source.register.reset_mock()

    assert lifecycle.resync() == 0
    region_source.register.assert_not_called()


def test_naive_trigger_time_is_local(lifecycle, note):
    naive = datetime.now() + timedelta(hours=1)
    reminder = lifecycle.create_time_reminder(note.id, naive)
    assert reminder.trigger_time.tzinfo is not None
    assert reminder.trigger_time == naive.astimezone(timezone.utc)


def test_notifier_uses_default_title(lifecycle, db_path, notifier):
    untitled = create_note("", db_path=db_path)
    reminder = lifecycle.create_location_reminder(untitled.id, 1.0, 2.0, 10)

    lifecycle.on_fire(reminder.id)

    notifier.notify.assert_called_once_with(
        untitled.id, DEFAULT_TITLE, MESSAGES[ReminderKind.LOCATION]
    )


def test_notifier_failure_does_not_undo_retirement(lifecycle, note, notifier):
    notifier.notify.side_effect = RuntimeError("no display")
    reminder = lifecycle.create_time_reminder(note.id, _soon())

    assert lifecycle.on_fire(reminder.id) is True
    assert lifecycle.get_reminder(reminder.id).active is False


def test_unregister_failure_does_not_block_cancel(lifecycle, note, region_source):
    region_source.unregister.side_effect = RuntimeError("service gone")
    reminder = lifecycle.create_location_reminder(note.id, 1.0, 2.0, 10)

    assert lifecycle.cancel_active(note.id) is True
    assert lifecycle.get_reminder(reminder.id) is None


def test_list_current(lifecycle, db_path):
    a = create_note("A", db_path=db_path)
    b = create_note("B", db_path=db_path)
    create_note("C", db_path=db_path)
    ra = lifecycle.create_time_reminder(a.id, _soon())
    rb = lifecycle.create_location_reminder(b.id, 1.0, 2.0, 10)
    lifecycle.on_fire(rb.id)

    current = {note.title: reminder for note, reminder in lifecycle.list_current()}

    assert set(current) == {"A", "B"}
    assert current["A"].id == ra.id and current["A"].active
    assert current["B"].id == rb.id and not current["B"].active


def test_concurrent_fire_and_cancel_leave_consistent_state(lifecycle, db_path, notifier):
    for i in range(10):
        note = create_note(f"race {i}", db_path=db_path)
        reminder = lifecycle.create_time_reminder(note.id, _soon())
        barrier = threading.Barrier(3)

        def fire():
            barrier.wait()
            lifecycle.on_fire(reminder.id)

        def cancel():
            barrier.wait()
            lifecycle.cancel_active(note.id)

        def recreate():
            barrier.wait()
            lifecycle.create_time_reminder(note.id, _soon(30))

        threads = [threading.Thread(target=f) for f in (fire, cancel, recreate)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)

        assert _active_count(db_path, note.id) <= 1
        stored = lifecycle.get_reminder(reminder.id)
        # either retired by the fire, or removed by the cancel or the recreate
        assert stored is None or (stored.active is False and stored.retired_at is not None)

    assert notifier.notify.call_count <= 10
    assert len(lifecycle._locks) == 0
