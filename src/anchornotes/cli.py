from __future__ import annotations

import logging
import os
import threading
from datetime import datetime, timedelta, timezone

from dotenv import load_dotenv

load_dotenv()

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from anchornotes import dispatch
from anchornotes import notes as note_service
from anchornotes.db import init_db
from anchornotes.errors import NoteNotFound, ReminderConflict
from anchornotes.models import Reminder

app = typer.Typer(help="AnchorNotes — notes with time and place reminders")
console = Console()

DEFAULT_RADIUS_M = float(os.environ.get("ANCHORNOTES_DEFAULT_RADIUS", "100"))


@app.callback()
def main(
    ctx: typer.Context,
    log_level: str = typer.Option(
        os.environ.get("ANCHORNOTES_LOG_LEVEL", "INFO"), help="Logging level"
    ),
) -> None:
    logging.basicConfig(
        level=log_level.upper(),
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )
    init_db()
    ctx.call_on_close(_shutdown)


def _shutdown() -> None:
    # only stop a scheduler this process actually built
    lifecycle = dispatch.current()
    if lifecycle is not None:
        lifecycle.time_source.shutdown()


def _resolve_note_id(prefix: str) -> str:
    matches = [n.id for n in note_service.list_notes() if n.id.startswith(prefix)]
    if len(matches) == 1:
        return matches[0]
    console.print(f"[red]{'No' if not matches else 'More than one'} note matches {prefix!r}.[/red]")
    raise typer.Exit(1)


def _report(reminder: Reminder) -> None:
    console.print(f"[green]Reminder set[/green] {reminder.describe()} ({reminder.id})")
    if reminder.registration_error is not None:
        console.print(f"[yellow]Warning:[/yellow] {reminder.registration_error}")


def _create(create, note_id: str, *args, replace: bool) -> None:
    try:
        reminder = create(note_id, *args, replace=replace)
    except NoteNotFound as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1)
    except ReminderConflict as exc:
        console.print(f"[red]{exc}.[/red] Use --replace or run `clear` first.")
        raise typer.Exit(1)
    _report(reminder)


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", help="Host to bind to"),
    port: int = typer.Option(8000, help="Port to bind to"),
    reload: bool = typer.Option(False, help="Enable auto-reload"),
) -> None:
    """Start the AnchorNotes web server (runs the reminder scheduler too)."""
    import uvicorn

    uvicorn.run("anchornotes.web:create_app", host=host, port=port, reload=reload, factory=True)


@app.command()
def worker() -> None:
    """Run the reminder scheduler in the foreground until interrupted."""
    lifecycle = dispatch.get_lifecycle()
    lifecycle.time_source.start()
    count = lifecycle.resync()
    console.print(f"[green]Worker running[/green] ({count} reminder(s) re-registered). Ctrl-C to stop.")
    try:
        threading.Event().wait()
    except KeyboardInterrupt:
        console.print("Stopping.")


@app.command("add-note")
def add_note(title: str, content: str = typer.Argument("")) -> None:
    """Create a note."""
    note = note_service.create_note(title, content)
    console.print(f"[green]Created[/green] {note.id}")


@app.command("delete-note")
def delete_note(note: str) -> None:
    """Delete a note, cancelling its reminder first."""
    note_id = _resolve_note_id(note)
    note_service.delete_note(dispatch.get_lifecycle(), note_id)
    console.print(f"Deleted {note_id}")


@app.command("notes")
def list_notes() -> None:
    """List notes with their current reminder."""
    lifecycle = dispatch.get_lifecycle()
    rows = note_service.list_notes()
    if not rows:
        console.print("[green]No notes yet.[/green]")
        return
    table = Table(title="Notes")
    table.add_column("ID", style="dim")
    table.add_column("Title", style="cyan")
    table.add_column("Reminder", style="yellow")
    for note in rows:
        reminder = lifecycle.get_active(note.id)
        if reminder is None:
            label = "—"
        elif reminder.active:
            label = reminder.describe()
        else:
            label = f"fired ({reminder.describe()})"
        table.add_row(note.id[:8], note.title, label)
    console.print(table)


@app.command("remind-at")
def remind_at(
    note: str,
    when: datetime = typer.Argument(
        ...,
        formats=["%Y-%m-%dT%H:%M", "%Y-%m-%d %H:%M", "%Y-%m-%dT%H:%M:%S"],
        help="Local date and time, e.g. 2026-05-01T09:30",
    ),
    replace: bool = typer.Option(False, help="Replace an active reminder"),
) -> None:
    """Remind about a note at a date and time."""
    _create(dispatch.get_lifecycle().create_time_reminder, _resolve_note_id(note), when, replace=replace)


@app.command("remind-in")
def remind_in(
    note: str,
    minutes: int = typer.Argument(..., min=1),
    replace: bool = typer.Option(False, help="Replace an active reminder"),
) -> None:
    """Remind about a note in a number of minutes."""
    when = datetime.now(timezone.utc) + timedelta(minutes=minutes)
    _create(dispatch.get_lifecycle().create_time_reminder, _resolve_note_id(note), when, replace=replace)


@app.command("remind-near", context_settings={"ignore_unknown_options": True})
def remind_near(
    note: str,
    latitude: float = typer.Argument(..., min=-90, max=90),
    longitude: float = typer.Argument(..., min=-180, max=180),
    radius: float = typer.Option(DEFAULT_RADIUS_M, help="Radius in meters"),
    replace: bool = typer.Option(False, help="Replace an active reminder"),
) -> None:
    """Remind about a note when entering or leaving a place."""
    _create(
        dispatch.get_lifecycle().create_location_reminder,
        _resolve_note_id(note),
        latitude,
        longitude,
        radius,
        replace=replace,
    )


@app.command("remind-here")
def remind_here(
    note: str,
    radius: float = typer.Option(DEFAULT_RADIUS_M, help="Radius in meters"),
    replace: bool = typer.Option(False, help="Replace an active reminder"),
) -> None:
    """Remind about a note around the last reported location."""
    lifecycle = dispatch.get_lifecycle()
    here = lifecycle.region_source.last_location()
    if here is None:
        console.print("[red]No location reported yet.[/red] Run `location LAT LNG` first.")
        raise typer.Exit(1)
    _create(lifecycle.create_location_reminder, _resolve_note_id(note), *here, radius, replace=replace)


@app.command()
def clear(note: str) -> None:
    """Clear a note's reminder."""
    note_id = _resolve_note_id(note)
    if dispatch.get_lifecycle().cancel_active(note_id):
        console.print("Reminder cancelled.")
    else:
        console.print("No active reminder.")


@app.command()
def reminders() -> None:
    """Show every note's current reminder."""
    current = dispatch.get_lifecycle().list_current()
    if not current:
        console.print("[green]All clear! No reminders.[/green]")
        return
    table = Table(title="Reminders")
    table.add_column("Note", style="cyan")
    table.add_column("Kind", style="magenta")
    table.add_column("When / Where", style="white")
    table.add_column("Status", style="yellow")
    for note, reminder in current:
        status = "scheduled" if reminder.active else f"fired {reminder.retired_at.astimezone():%Y-%m-%d %H:%M}"
        table.add_row(note.title, reminder.kind.value, reminder.describe(), status)
    console.print(table)


@app.command()
def fire(reminder_id: str) -> None:
    """Deliver a trigger event for a reminder by hand."""
    if dispatch.get_lifecycle().on_fire(reminder_id):
        console.print("Reminder retired.")
    else:
        console.print("Nothing to do: reminder is unknown or already retired.")


@app.command(context_settings={"ignore_unknown_options": True})
def location(
    latitude: float = typer.Argument(..., min=-90, max=90),
    longitude: float = typer.Argument(..., min=-180, max=180),
) -> None:
    """Report the device location to the geofence monitor."""
    fired = dispatch.report_location(latitude, longitude)
    console.print(f"{len(fired)} reminder(s) triggered.")
