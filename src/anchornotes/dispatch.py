"""Process-wide entry points for trigger events.

Scheduler jobs and geofence transitions both end up in ``fire_reminder``.
It needs nothing but the reminder id: in a freshly started process the
lifecycle is built from configuration on first use.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path

import anchornotes.db as db_module
from anchornotes.db import init_db
from anchornotes.lifecycle import Notifier, ReminderLifecycle
from anchornotes.notifier import ConsoleNotifier
from anchornotes.triggers.region_source import GeofenceMonitor
from anchornotes.triggers.time_source import TimeTriggerSource

logger = logging.getLogger(__name__)

_lifecycle: ReminderLifecycle | None = None
_lock = threading.Lock()


def build_lifecycle(db_path: Path | None = None, notifier: Notifier | None = None) -> ReminderLifecycle:
    target = db_path or db_module.DB_PATH
    init_db(target)
    return ReminderLifecycle(
        target,
        time_source=TimeTriggerSource(db_path=target),
        region_source=GeofenceMonitor(target),
        notifier=notifier or ConsoleNotifier(),
    )


def configure(lifecycle: ReminderLifecycle) -> None:
    global _lifecycle
    with _lock:
        _lifecycle = lifecycle


def get_lifecycle() -> ReminderLifecycle:
    global _lifecycle
    with _lock:
        if _lifecycle is None:
            _lifecycle = build_lifecycle()
        return _lifecycle


def current() -> ReminderLifecycle | None:
    with _lock:
        return _lifecycle


def reset() -> None:
    global _lifecycle
    with _lock:
        _lifecycle = None


def fire_reminder(reminder_id: str) -> None:
    try:
        get_lifecycle().on_fire(reminder_id)
    except Exception:
        logger.exception("Fire handling failed for reminder %s", reminder_id)


def report_location(latitude: float, longitude: float) -> list[str]:
    return get_lifecycle().region_source.report_location(latitude, longitude)
