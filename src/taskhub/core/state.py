# src/taskhub/core/state.py

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..tasks.task_store import TaskStore


@dataclass
class AppState:
    """
    Runtime container passed to the console front end and command handlers.

    settings is typed as Any so tests can pass a SimpleNamespace.
    """

    settings: Any
    task_store: TaskStore

    # Updated by the GitHub sync callbacks.
    last_sync_at: str | None = None
    last_sync_error: str | None = None
