from __future__ import annotations

import logging

from fastapi import APIRouter, Form, Request
from fastapi.responses import HTMLResponse, RedirectResponse

from anchornotes import notes as note_service
from anchornotes.dispatch import get_lifecycle

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notes", tags=["notes"])


def _templates(request: Request):
    return request.app.state.templates


@router.get("", response_class=HTMLResponse)
async def list_notes(request: Request):
    lifecycle = get_lifecycle()
    rows = [(note, lifecycle.get_active(note.id)) for note in note_service.list_notes()]
    return _templates(request).TemplateResponse(
        request, "notes/list.html", {"rows": rows, "active": "notes"}
    )


@router.get("/new", response_class=HTMLResponse)
async def new_note(request: Request):
    return _templates(request).TemplateResponse(
        request, "notes/form.html", {"note": None, "active": "notes"}
    )


@router.post("")
async def create_note(request: Request, title: str = Form(...), content: str = Form("")):
    note = note_service.create_note(title, content)
    logger.info("Created note %s", note.id)
    return RedirectResponse(url=f"/notes/{note.id}", status_code=303)


@router.get("/{note_id}", response_class=HTMLResponse)
async def detail_note(request: Request, note_id: str):
    note = note_service.get_note(note_id)
    if not note:
        return HTMLResponse("Note not found", status_code=404)
    lifecycle = get_lifecycle()
    return _templates(request).TemplateResponse(
        request,
        "notes/detail.html",
        {
            "note": note,
            "note_id": note_id,
            "reminder": lifecycle.get_active(note_id),
            "history": lifecycle.history(note_id),
            "warning": None,
            "active": "notes",
        },
    )


@router.get("/{note_id}/edit", response_class=HTMLResponse)
async def edit_note(request: Request, note_id: str):
    note = note_service.get_note(note_id)
    if not note:
        return HTMLResponse("Note not found", status_code=404)
    return _templates(request).TemplateResponse(
        request, "notes/form.html", {"note": note, "active": "notes"}
    )


@router.post("/{note_id}/update")
async def update_note(
    request: Request, note_id: str, title: str = Form(...), content: str = Form("")
):
    if not note_service.update_note(note_id, title, content):
        return HTMLResponse("Note not found", status_code=404)
    return RedirectResponse(url=f"/notes/{note_id}", status_code=303)


@router.delete("/{note_id}")
def delete_note(request: Request, note_id: str):
    # sync handler: runs in the threadpool and may wait on the note's lock
    note_service.delete_note(get_lifecycle(), note_id)
    return HTMLResponse(headers={"HX-Redirect": "/notes"})
