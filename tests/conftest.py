from __future__ import annotations

from unittest.mock import MagicMock

import pytest

import anchornotes.db as db_module
from anchornotes import dispatch
from anchornotes.db import init_db
from anchornotes.lifecycle import ReminderLifecycle
from anchornotes.notes import create_note


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    """Use a temporary database for each test."""
    path = tmp_path / "test.db"
    monkeypatch.setattr(db_module, "DB_PATH", path)
    init_db(path)
    return path


@pytest.fixture
def time_source():
    source = MagicMock()
    source.is_scheduled.return_value = False
    return source


@pytest.fixture
def region_source():
    source = MagicMock()
    source.is_registered.return_value = False
    source.report_location.return_value = []
    return source


@pytest.fixture
def notifier():
    return MagicMock()


@pytest.fixture
def lifecycle(db_path, time_source, region_source, notifier):
    lc = ReminderLifecycle(
        db_path, time_source=time_source, region_source=region_source, notifier=notifier
    )
    dispatch.configure(lc)
    yield lc
    dispatch.reset()


@pytest.fixture
def note(db_path):
    return create_note("Groceries", "milk, eggs", db_path=db_path)
