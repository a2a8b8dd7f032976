from __future__ import annotations

import html
import logging
import os
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Form, Request
from fastapi.responses import HTMLResponse

from anchornotes import dispatch
from anchornotes.errors import NoteNotFound, ReminderConflict
from anchornotes.models import Reminder

logger = logging.getLogger(__name__)

DEFAULT_RADIUS_M = float(os.environ.get("ANCHORNOTES_DEFAULT_RADIUS", "100"))

# Handlers here are plain functions: FastAPI runs them in its threadpool,
# where waiting on a note's lock does not stall the event loop.
router = APIRouter(tags=["reminders"])


def _panel(request: Request, note_id: str, reminder: Reminder | None, status_code: int = 200):
    warning = None
    if reminder is not None and reminder.registration_error is not None:
        warning = "Reminder saved but could not be scheduled. Clear it and try again."
    return request.app.state.templates.TemplateResponse(
        request,
        "notes/_reminder.html",
        {"note_id": note_id, "reminder": reminder, "warning": warning},
        status_code=status_code,
    )


def _error(message: str, status_code: int) -> HTMLResponse:
    return HTMLResponse(f'<div class="reminder-error" role="alert">{message}</div>', status_code=status_code)


@router.post("/notes/{note_id}/reminder/time", response_class=HTMLResponse)
def add_time_reminder(
    request: Request,
    note_id: str,
    minutes: int | None = Form(None),
    at: str | None = Form(None),
):
    if at:
        try:
            trigger_time = datetime.fromisoformat(at)
        except ValueError:
            return _error(f"Invalid date and time: {html.escape(at)}", 422)
    elif minutes is not None and minutes > 0:
        trigger_time = datetime.now(timezone.utc) + timedelta(minutes=minutes)
    else:
        return _error("Pick a time or a number of minutes.", 422)

    try:
        reminder = dispatch.get_lifecycle().create_time_reminder(note_id, trigger_time, replace=False)
    except NoteNotFound:
        return _error("Note not found", 404)
    except ReminderConflict:
        return _error("This note already has an active reminder. Clear it first.", 409)
    return _panel(request, note_id, reminder, status_code=201)


@router.post("/notes/{note_id}/reminder/location", response_class=HTMLResponse)
def add_location_reminder(
    request: Request,
    note_id: str,
    latitude: float = Form(..., ge=-90, le=90),
    longitude: float = Form(..., ge=-180, le=180),
    radius: float = Form(DEFAULT_RADIUS_M, gt=0),
):
    try:
        reminder = dispatch.get_lifecycle().create_location_reminder(
            note_id, latitude, longitude, radius, replace=False
        )
    except NoteNotFound:
        return _error("Note not found", 404)
    except ReminderConflict:
        return _error("This note already has an active reminder. Clear it first.", 409)
    return _panel(request, note_id, reminder, status_code=201)


@router.delete("/notes/{note_id}/reminder", response_class=HTMLResponse)
def clear_reminder(request: Request, note_id: str):
    lifecycle = dispatch.get_lifecycle()
    lifecycle.cancel_active(note_id)
    return _panel(request, note_id, lifecycle.get_active(note_id))


@router.post("/location", response_class=HTMLResponse)
def report_location(
    latitude: float = Form(..., ge=-90, le=90),
    longitude: float = Form(..., ge=-180, le=180),
):
    fired = dispatch.report_location(latitude, longitude)
    logger.info("Location %.5f, %.5f triggered %d reminder(s)", latitude, longitude, len(fired))
    return HTMLResponse(f'<div class="location-ok">{len(fired)} reminder(s) triggered</div>')
