# src/taskhub/tasks/task_store.py

from __future__ import annotations

import contextlib
import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import httpx

from ..core.debounce import Debouncer
from ..core.errors import NotConfiguredError, NotFoundError
from ..core.events import TASK_CREATED, TASK_DELETED, TASK_UPDATED, EventBus
from ..core.ports import Scheduler
from ..sync.github_sync import GitHubSyncConfig, GitHubSyncService, SyncErrorCallback, SyncSuccessCallback
from .json_source import JsonDataSource
from .task_models import DataSourceConfig, Task, normalize_changes
from .task_repository import TaskRepository

logger = logging.getLogger(__name__)

UpdateListener = Callable[[str | None], None]

MAX_SUBTASK_DEPTH = 2


@dataclass(slots=True, frozen=True)
class StoreStatus:
    initialized: bool
    task_count: int
    todo_count: int
    reminder_count: int


class TaskStore:
    """
    The single task API used by the UI layer.

    Wiring:
    - JsonDataSource is the source of truth (debounced writes to disk)
    - TaskRepository aggregates registered sources and emits task:* events on the bus
    - TaskStore listens to those events to:
        * invalidate its read cache
        * debounce a notification to update listeners
        * schedule a debounced GitHub push (when configured)

    Mutations never touch the cache directly: the task:* event fires before
    the source's coroutine returns, so the next read is always fresh.
    """

    def __init__(
        self,
        data_path: str | Path,
        *,
        config: DataSourceConfig | None = None,
        event_bus: EventBus | None = None,
        scheduler: Scheduler | None = None,
        save_debounce_seconds: float = 0.5,
        notify_debounce_seconds: float = 0.075,
        push_debounce_seconds: float = 30.0,
        max_conflict_retries: int = 5,
        github_api_url: str = "https://api.github.com",
        http_timeout_seconds: float = 30.0,
        http_transport: httpx.AsyncBaseTransport | None = None,
        auto_archive_reminders: bool = True,
    ) -> None:
        self._config = config or DataSourceConfig()
        self._bus = event_bus or EventBus()
        self._scheduler = scheduler
        self._repository = TaskRepository(self._bus)
        self._json_source = JsonDataSource(
            data_path,
            self._config,
            save_debounce_seconds=save_debounce_seconds,
            scheduler=scheduler,
            auto_archive_reminders=auto_archive_reminders,
        )

        self._initialized = False
        self._initializing = False
        self._listeners: list[UpdateListener] = []

        self._cached_tasks: list[Task] | None = None
        self._cache_valid = False

        self._pending_task_id: str | None = None
        self._notify_timer = Debouncer(
            notify_debounce_seconds,
            self._flush_notification,
            scheduler=scheduler,
            name="store-notify",
        )

        # GitHub sync (optional; created by configure_github_sync)
        self._github_sync: GitHubSyncService | None = None
        self._push_debounce_seconds = push_debounce_seconds
        self._max_conflict_retries = max_conflict_retries
        self._github_api_url = github_api_url
        self._http_timeout_seconds = http_timeout_seconds
        self._http_transport = http_transport

        self._bus.on(TASK_CREATED, self._on_task_event)
        self._bus.on(TASK_UPDATED, self._on_task_event)
        self._bus.on(TASK_DELETED, self._on_task_event)

    @property
    def event_bus(self) -> EventBus:
        return self._bus

    @property
    def json_source(self) -> JsonDataSource:
        return self._json_source

    @property
    def repository(self) -> TaskRepository:
        return self._repository

    # ---- lifecycle ----

    async def initialize(self) -> None:
        if self._initializing:
            logger.debug("TaskStore already initializing, skipping")
            return

        self._initializing = True
        t0 = time.perf_counter()
        try:
            self._repository.clear()
            self._invalidate_cache()

            await self._json_source.initialize(self._config)
            await self._repository.register_data_source(self._json_source)

            self._initialized = True
        finally:
            self._initializing = False

        self._notify_listeners(None)

        stats = self._repository.get_stats()
        logger.info(
            "TaskStore ready total=%d todo=%d reminder=%d (%.1fms)",
            stats.total_tasks,
            stats.todo_count,
            stats.reminder_count,
            (time.perf_counter() - t0) * 1000.0,
        )

    async def flush_save(self) -> None:
        """Persist the pending local write, then push any pending remote snapshot."""
        await self._json_source.flush_save()
        if self._github_sync is not None:
            await self._github_sync.flush()

    async def close(self) -> None:
        """Flush everything and release timers and the HTTP client."""
        try:
            await self.flush_save()
        finally:
            self._notify_timer.cancel()
            self._json_source.destroy()
            self._repository.clear()
            await self._shutdown_github_sync()
            self._initialized = False

    # ---- reads ----

    def get_all_tasks(self) -> list[Task]:
        if self._cache_valid and self._cached_tasks is not None:
            return self._cached_tasks

        tasks = self._repository.get_all_tasks()
        self._cached_tasks = tasks
        self._cache_valid = True
        logger.debug("Task cache rebuilt (%d tasks)", len(tasks))
        return tasks

    def get_task_by_id(self, task_id: str) -> Task | None:
        return self._repository.get_task_by_id(task_id)

    def get_child_tasks(self, parent_id: str) -> list[Task]:
        return self._repository.get_child_tasks(parent_id)

    def get_root_tasks(self) -> list[Task]:
        return self._repository.get_root_tasks()

    def get_archived_tasks(self) -> list[Task]:
        return self._json_source.get_archived_tasks()

    def get_status(self) -> StoreStatus:
        stats = self._repository.get_stats()
        return StoreStatus(
            initialized=self._initialized,
            task_count=stats.total_tasks,
            todo_count=stats.todo_count,
            reminder_count=stats.reminder_count,
        )

    # ---- writes ----

    async def create_task(self, task: Task) -> str:
        return await self._json_source.create_task(task)

    async def update_task(self, task_id: str, changes: Mapping[str, Any]) -> None:
        await self._json_source.update_task(task_id, changes)

    async def delete_task(self, task_id: str) -> None:
        await self._json_source.delete_task(task_id)

    async def archive_task(self, task_id: str) -> None:
        await self._json_source.archive_task(task_id)

    async def unarchive_task(self, task_id: str) -> None:
        await self._json_source.unarchive_task(task_id)

    async def create_sub_task(self, parent_id: str, **fields: Any) -> str:
        """
        Create a child task.

        Inherits type, priority, tags and due date from the parent unless given.
        Nesting is limited to MAX_SUBTASK_DEPTH levels below a root task.
        """
        parent = self.get_task_by_id(parent_id)
        if parent is None:
            raise NotFoundError(parent_id)
        if parent.depth >= MAX_SUBTASK_DEPTH:
            raise ValueError(f"Max nesting depth reached ({MAX_SUBTASK_DEPTH})")

        fields.setdefault("type", parent.type)
        fields.setdefault("priority", parent.priority)
        fields.setdefault("tags", parent.tags)
        fields.setdefault("due_date", parent.due_date)
        values = normalize_changes(fields)
        values.update(parent_id=parent_id, depth=parent.depth + 1)
        task = Task(**values)
        return await self._json_source.create_task(task)

    # ---- listeners ----

    def on_update(self, listener: UpdateListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def off_update(self, listener: UpdateListener) -> None:
        with contextlib.suppress(ValueError):
            self._listeners.remove(listener)

    # ---- GitHub sync ----

    def configure_github_sync(
        self,
        credentials: GitHubSyncConfig,
        on_success: SyncSuccessCallback | None = None,
        on_error: SyncErrorCallback | None = None,
    ) -> None:
        if self._github_sync is None:
            self._github_sync = GitHubSyncService(
                debounce_seconds=self._push_debounce_seconds,
                max_conflict_retries=self._max_conflict_retries,
                scheduler=self._scheduler,
                event_bus=self._bus,
                api_url=self._github_api_url,
                timeout_seconds=self._http_timeout_seconds,
                transport=self._http_transport,
            )
        self._github_sync.configure(credentials)
        self._github_sync.set_callbacks(on_success, on_error)
        logger.info("GitHub sync configured owner=%s repo=%s", credentials.owner, credentials.repo)

    def disable_github_sync(self) -> None:
        sync = self._github_sync
        if sync is None:
            return
        sync.destroy()
        self._github_sync = None
        logger.info("GitHub sync disabled")
        # The HTTP client is closed in the background; nothing is pending on it.
        sync.close_soon()

    def is_github_sync_configured(self) -> bool:
        return self._github_sync is not None and self._github_sync.is_configured()

    @property
    def github_sync(self) -> GitHubSyncService | None:
        return self._github_sync

    async def push_to_github_now(self) -> None:
        if self._github_sync is None or not self._github_sync.is_configured():
            raise NotConfiguredError("GitHub sync is not configured")
        await self._github_sync.push_now(self._json_source.get_json_content())

    # ---- internals ----

    def _on_task_event(self, data: Any) -> None:
        payload = data if isinstance(data, dict) else {}
        task = payload.get("task")
        task_id = task.id if isinstance(task, Task) else payload.get("task_id")
        logger.debug("Task event id=%s", task_id)

        self._invalidate_cache()
        self._schedule_notification(task_id)
        self._schedule_github_sync()

    def _invalidate_cache(self) -> None:
        self._cached_tasks = None
        self._cache_valid = False

    def _schedule_notification(self, task_id: str | None) -> None:
        self._pending_task_id = task_id
        self._notify_timer.trigger()

    def _flush_notification(self) -> None:
        task_id = self._pending_task_id
        self._pending_task_id = None
        self._notify_listeners(task_id)

    def _notify_listeners(self, task_id: str | None) -> None:
        for listener in list(self._listeners):
            try:
                listener(task_id)
            except Exception:
                logger.exception("Update listener failed")

    def _schedule_github_sync(self) -> None:
        sync = self._github_sync
        if sync is None or not sync.is_configured():
            return
        try:
            sync.schedule_push(self._json_source.get_json_content())
        except Exception:
            # Remote sync never affects the local mutation.
            logger.exception("Failed to schedule GitHub push")

    async def _shutdown_github_sync(self) -> None:
        sync = self._github_sync
        if sync is None:
            return
        self._github_sync = None
        sync.destroy()
        await sync.aclose()
