from __future__ import annotations

import logging
import os
import threading
from datetime import datetime, timezone
from pathlib import Path

from apscheduler.jobstores.base import JobLookupError
from apscheduler.jobstores.sqlalchemy import SQLAlchemyJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.date import DateTrigger

from anchornotes.db import sqlalchemy_url
from anchornotes.errors import TriggerRegistrationFailed

logger = logging.getLogger(__name__)

# Resolved by textual reference so a freshly started worker can run jobs
# that an earlier process stored.
FIRE_FUNC = "anchornotes.dispatch:fire_reminder"

POLL_SECONDS = float(os.environ.get("ANCHORNOTES_POLL_SECONDS", "5"))


def build_scheduler(db_path: Path | None = None) -> BackgroundScheduler:
    return BackgroundScheduler(
        jobstores={"default": SQLAlchemyJobStore(url=sqlalchemy_url(db_path))},
        job_defaults={
            # a wake-up missed while no process ran still fires, once
            "misfire_grace_time": None,
            "coalesce": True,
            "max_instances": 1,
        },
        timezone=timezone.utc,
    )


class TimeTriggerSource:
    """One-shot wall-clock wake-ups, one job per reminder id.

    Jobs live in the scheduler's job store, so they outlast the process
    that scheduled them. A process that only schedules and cancels keeps
    the scheduler paused; the worker runs it and executes due jobs.

    APScheduler only rereads its store when its own process adds a job or
    a wake-up it computed earlier comes due. A running scheduler is
    therefore woken every ``poll_interval`` seconds so it picks up jobs
    that other processes stored in the meantime.
    """

    def __init__(
        self,
        scheduler: BackgroundScheduler | None = None,
        *,
        db_path: Path | None = None,
        func=FIRE_FUNC,
        poll_interval: float = POLL_SECONDS,
    ) -> None:
        self.scheduler = scheduler or build_scheduler(db_path)
        self.poll_interval = poll_interval
        self._func = func
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._poller: threading.Thread | None = None

    def start(self, paused: bool = False) -> None:
        with self._lock:
            if self.scheduler.running:
                if not paused:
                    self.scheduler.resume()
                    self._start_polling()
                return
            self.scheduler.start(paused=paused)
            if not paused:
                self._start_polling()
            logger.info("Time trigger scheduler started%s", " (paused)" if paused else "")

    def shutdown(self) -> None:
        with self._lock:
            self._stop.set()
            if self._poller is not None:
                self._poller.join()
                self._poller = None
            if self.scheduler.running:
                self.scheduler.shutdown(wait=False)

    def _start_polling(self) -> None:
        if self._poller is not None:
            return
        self._stop.clear()
        self._poller = threading.Thread(target=self._poll, name="anchornotes-job-poll", daemon=True)
        self._poller.start()

    def _poll(self) -> None:
        while not self._stop.wait(self.poll_interval):
            if not self.scheduler.running:
                return
            self.scheduler.wakeup()

    def _ensure_started(self) -> None:
        # jobs added to a stopped scheduler never reach the job store
        if not self.scheduler.running:
            self.start(paused=True)

    def schedule(self, reminder_id: str, trigger_time: datetime) -> None:
        self._ensure_started()
        try:
            self.scheduler.add_job(
                self._func,
                trigger=DateTrigger(run_date=trigger_time),
                args=[reminder_id],
                id=reminder_id,
                name=f"reminder {reminder_id}",
                replace_existing=True,
            )
        except Exception as exc:
            raise TriggerRegistrationFailed(reminder_id, str(exc)) from exc
        logger.debug("Scheduled reminder %s for %s", reminder_id, trigger_time.isoformat())

    def cancel(self, reminder_id: str) -> None:
        self._ensure_started()
        try:
            self.scheduler.remove_job(reminder_id)
        except JobLookupError:
            logger.debug("No scheduled job for reminder %s", reminder_id)
            return
        logger.debug("Cancelled scheduled job for reminder %s", reminder_id)

    def next_fire_time(self, reminder_id: str) -> datetime | None:
        self._ensure_started()
        job = self.scheduler.get_job(reminder_id)
        return job.next_run_time if job else None

    def is_scheduled(self, reminder_id: str) -> bool:
        return self.next_fire_time(reminder_id) is not None
