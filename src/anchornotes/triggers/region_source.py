from __future__ import annotations

import logging
import math
import sqlite3
from pathlib import Path
from typing import Callable

from anchornotes.db import get_db, transaction
from anchornotes.errors import TriggerRegistrationFailed

logger = logging.getLogger(__name__)

EARTH_RADIUS_M = 6_371_008.8


def distance_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in meters (haversine)."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlmb = math.radians(lng2 - lng1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlmb / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(a)))


def _default_callback(reminder_id: str) -> None:
    from anchornotes.dispatch import fire_reminder

    fire_reminder(reminder_id)


class GeofenceMonitor:
    """Circular geofences fed by location fixes.

    Each geofence remembers whether the last fix was inside it. A change
    of that state is a transition and is delivered to the callback; the
    callback is expected to unregister the geofence, so a region only
    ever delivers its first transition. A geofence registered while the
    last known fix is already inside fires straight away.
    """

    def __init__(
        self,
        db_path: Path | None = None,
        callback: Callable[[str], None] | None = None,
    ) -> None:
        self.db_path = db_path
        self._callback = callback or _default_callback

    def register(self, reminder_id: str, latitude: float, longitude: float, radius_m: float) -> None:
        if not (-90.0 <= latitude <= 90.0) or not (-180.0 <= longitude <= 180.0):
            raise TriggerRegistrationFailed(
                reminder_id, f"coordinates out of range: {latitude}, {longitude}"
            )
        if not radius_m > 0:
            raise TriggerRegistrationFailed(reminder_id, f"radius must be positive, got {radius_m}")

        try:
            with transaction(self.db_path) as db:
                fix = db.execute(
                    "SELECT latitude, longitude FROM location_fix WHERE id = 1"
                ).fetchone()
                inside = None
                if fix is not None:
                    inside = distance_m(fix["latitude"], fix["longitude"], latitude, longitude) <= radius_m
                db.execute(
                    """INSERT OR REPLACE INTO geofences (reminder_id, latitude, longitude, radius_m, inside)
                       VALUES (?, ?, ?, ?, ?)""",
                    (reminder_id, latitude, longitude, radius_m, None if inside is None else int(inside)),
                )
        except sqlite3.Error as exc:
            raise TriggerRegistrationFailed(reminder_id, str(exc)) from exc
        logger.debug("Registered geofence for reminder %s", reminder_id)

        if inside:
            logger.info("Already inside geofence for reminder %s", reminder_id)
            self._deliver(reminder_id)

    def unregister(self, reminder_id: str) -> None:
        with get_db(self.db_path) as db:
            removed = db.execute(
                "DELETE FROM geofences WHERE reminder_id = ?", (reminder_id,)
            ).rowcount
        if removed:
            logger.debug("Unregistered geofence for reminder %s", reminder_id)

    def is_registered(self, reminder_id: str) -> bool:
        with get_db(self.db_path) as db:
            row = db.execute(
                "SELECT 1 FROM geofences WHERE reminder_id = ?", (reminder_id,)
            ).fetchone()
        return row is not None

    def last_location(self) -> tuple[float, float] | None:
        with get_db(self.db_path) as db:
            fix = db.execute("SELECT latitude, longitude FROM location_fix WHERE id = 1").fetchone()
        return (fix["latitude"], fix["longitude"]) if fix else None

    def report_location(self, latitude: float, longitude: float) -> list[str]:
        """Record a fix and deliver every transition it causes.

        Returns the reminder ids that were delivered.
        """
        transitions: list[str] = []
        with transaction(self.db_path) as db:
            db.execute(
                """INSERT OR REPLACE INTO location_fix (id, latitude, longitude, reported_at)
                   VALUES (1, ?, ?, datetime('now'))""",
                (latitude, longitude),
            )
            for row in db.execute("SELECT * FROM geofences").fetchall():
                inside = distance_m(latitude, longitude, row["latitude"], row["longitude"]) <= row["radius_m"]
                previous = row["inside"]
                if previous is not None and bool(previous) == inside:
                    continue
                db.execute(
                    "UPDATE geofences SET inside = ? WHERE reminder_id = ?",
                    (int(inside), row["reminder_id"]),
                )
                # unknown -> outside is not a transition
                if previous is None and not inside:
                    continue
                transitions.append(row["reminder_id"])

        for reminder_id in transitions:
            logger.info("Geofence transition for reminder %s", reminder_id)
            self._deliver(reminder_id)
        return transitions

    def _deliver(self, reminder_id: str) -> None:
        try:
            self._callback(reminder_id)
        except Exception:
            logger.exception("Geofence delivery failed for reminder %s", reminder_id)
