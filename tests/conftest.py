# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from taskhub.core.events import EventBus
from taskhub.core.state import AppState
from taskhub.tasks.task_store import TaskStore

from .fakes import FakeGitHub, ManualScheduler


@pytest.fixture()
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture()
def bus() -> EventBus:
    return EventBus()


@pytest.fixture()
def github() -> FakeGitHub:
    return FakeGitHub()


@pytest.fixture()
def tasks_path(tmp_path: Path) -> Path:
    return tmp_path / "data" / "tasks.json"


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with bootstrap and the commands.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated from the developer's .env.
    """
    return SimpleNamespace(
        app_name="taskhub-test",
        log_level="DEBUG",
        data_dir=tmp_path,
        tasks_json_path=tmp_path / "tasks.json",
        auto_archive_reminders=True,
        save_debounce_seconds=0.5,
        notify_debounce_seconds=0.075,
        push_debounce_seconds=30.0,
        github_token=None,
        github_owner="me",
        github_repo="tasks-data",
        github_path="tasks.json",
        github_branch=None,
        github_api_url="https://api.github.com",
        max_conflict_retries=5,
        http_timeout_seconds=5.0,
    )


@pytest.fixture()
def store(tasks_path: Path, scheduler: ManualScheduler, bus: EventBus, github: FakeGitHub) -> TaskStore:
    """TaskStore on a temp file, driven by the manual clock, talking to the fake GitHub."""
    return TaskStore(
        tasks_path,
        event_bus=bus,
        scheduler=scheduler,
        http_transport=github.transport,
    )


@pytest.fixture()
def state(settings: SimpleNamespace, store: TaskStore) -> AppState:
    return AppState(settings=settings, task_store=store)
