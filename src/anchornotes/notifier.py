from __future__ import annotations

import logging

from rich.console import Console
from rich.panel import Panel

logger = logging.getLogger(__name__)


class ConsoleNotifier:
    """Shows reminder notifications on the terminal the worker runs in."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console(stderr=True)

    def notify(self, note_id: str, title: str, body: str) -> None:
        logger.info("Notifying note %s: %s", note_id, title)
        self.console.print(
            Panel(body, title=f"[bold]{title}[/bold]", subtitle=f"note {note_id}", border_style="yellow")
        )
