from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

from fastapi import FastAPI, Request
from fastapi.responses import RedirectResponse
from fastapi.templating import Jinja2Templates

from anchornotes import dispatch
from anchornotes.db import init_db
from anchornotes.routes import notes, reminders

BASE_DIR = Path(__file__).resolve().parent

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    lifecycle = dispatch.get_lifecycle()
    lifecycle.time_source.start()
    lifecycle.resync()
    logger.info("Reminder triggers running")
    try:
        yield
    finally:
        lifecycle.time_source.shutdown()


def create_app() -> FastAPI:
    init_db()

    app = FastAPI(title="AnchorNotes", lifespan=lifespan)

    templates = Jinja2Templates(directory=BASE_DIR / "templates")
    app.state.templates = templates

    app.include_router(notes.router)
    app.include_router(reminders.router)

    @app.get("/")
    async def index(request: Request):
        return RedirectResponse(url="/notes", status_code=302)

    return app
