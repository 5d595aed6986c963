# src/taskhub/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires the task store (JSON source + repository + event bus) into AppState,
- turns GitHub sync on when credentials are present.
"""

from __future__ import annotations

import logging

import httpx

from ..config import get_settings
from ..core.ports import Scheduler
from ..core.state import AppState
from ..sync.github_sync import GitHubSyncConfig
from ..tasks.task_store import TaskStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.tasks_json_path.parent.mkdir(parents=True, exist_ok=True)


def create_initial_state(
    *,
    settings=None,
    scheduler: Scheduler | None = None,
    http_transport: httpx.AsyncBaseTransport | None = None,
) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    store = TaskStore(
        settings.tasks_json_path,
        scheduler=scheduler,
        save_debounce_seconds=settings.save_debounce_seconds,
        notify_debounce_seconds=settings.notify_debounce_seconds,
        push_debounce_seconds=settings.push_debounce_seconds,
        max_conflict_retries=settings.max_conflict_retries,
        github_api_url=settings.github_api_url,
        http_timeout_seconds=settings.http_timeout_seconds,
        http_transport=http_transport,
        auto_archive_reminders=settings.auto_archive_reminders,
    )
    return AppState(settings=settings, task_store=store)


def enable_github_sync(state: AppState) -> bool:
    """Configure GitHub sync from settings. Returns False (and does nothing) without credentials."""
    s = state.settings
    if not (s.github_token and s.github_owner and s.github_repo):
        logger.info("GitHub sync disabled (set TASKHUB_GITHUB_TOKEN, _OWNER and _REPO to enable)")
        return False

    def _on_success(synced_at: str) -> None:
        state.last_sync_at = synced_at
        state.last_sync_error = None

    def _on_error(message: str) -> None:
        state.last_sync_error = message
        logger.warning("GitHub sync error: %s", message)

    state.task_store.configure_github_sync(
        GitHubSyncConfig(
            token=s.github_token,
            owner=s.github_owner,
            repo=s.github_repo,
            path=s.github_path,
            branch=s.github_branch,
        ),
        on_success=_on_success,
        on_error=_on_error,
    )
    return True
