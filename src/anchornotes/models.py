from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from anchornotes.errors import TriggerRegistrationFailed


class ReminderKind(str, Enum):
    TIME = "time"
    LOCATION = "location"


@dataclass(frozen=True)
class Region:
    latitude: float
    longitude: float
    radius_m: float


@dataclass
class Note:
    id: str = ""
    title: str = ""
    content: str = ""
    created_at: str = ""
    updated_at: str = ""
    # advisory; still points at a reminder after it retires
    reminder_id: str | None = None


@dataclass
class Reminder:
    id: str = ""
    note_id: str = ""
    kind: ReminderKind = ReminderKind.TIME
    trigger_time: datetime | None = None
    region: Region | None = None
    active: bool = True
    retired_at: datetime | None = None
    created_at: str = ""
    # not persisted; set when the trigger source refused the registration
    registration_error: TriggerRegistrationFailed | None = field(
        default=None, compare=False, repr=False
    )

    @property
    def registered(self) -> bool:
        return self.registration_error is None

    def describe(self) -> str:
        if self.kind is ReminderKind.TIME and self.trigger_time is not None:
            return f"at {self.trigger_time.astimezone():%Y-%m-%d %H:%M}"
        if self.region is not None:
            r = self.region
            return f"within {r.radius_m:g} m of {r.latitude:.5f}, {r.longitude:.5f}"
        return self.kind.value
