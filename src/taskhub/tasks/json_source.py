# src/taskhub/tasks/json_source.py

from __future__ import annotations

import asyncio
import json
import logging
import os
import time
import uuid
from collections.abc import Callable, Mapping
from dataclasses import replace
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any

from ..core.debounce import Debouncer
from ..core.errors import LoadError, NotFoundError
from ..core.ports import ChangeHandler, Scheduler
from .task_models import (
    DataSourceChanges,
    DataSourceConfig,
    SyncStatus,
    Task,
    TaskType,
    TaskUpdate,
    apply_changes,
    format_timestamp,
    normalize_changes,
    parse_timestamp,
    task_from_document,
    task_to_document,
)

logger = logging.getLogger(__name__)

DOCUMENT_VERSION = 1


def empty_document() -> dict[str, Any]:
    return {
        "version": DOCUMENT_VERSION,
        "tasks": [],
        "archive": [],
        "lastSync": format_timestamp(datetime.now(timezone.utc)),
    }


def _atomic_write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(text, "utf-8")
    os.replace(tmp, path)


class JsonDataSource:
    """
    Task data source backed by a single JSON document.

    Document shape:
        {"version": 1, "tasks": [...], "archive": [...], "lastSync": "<ISO-8601>"}

    In-memory state is the source of truth while the process runs:
    - every mutation is applied synchronously and reported to the change handler
      before the coroutine returns
    - persistence is debounced (save_debounce_seconds); flush_save() forces the write
      and must be awaited before shutdown

    Unknown top-level document keys are preserved on save.
    """

    source_id = "json-local"
    source_name = "Local JSON Storage"
    is_read_only = False

    def __init__(
        self,
        path: str | Path,
        config: DataSourceConfig | None = None,
        *,
        save_debounce_seconds: float = 0.5,
        scheduler: Scheduler | None = None,
        auto_archive_reminders: bool = True,
        today: Callable[[], date] = date.today,
    ) -> None:
        self._path = Path(path)
        self._config = config or DataSourceConfig()
        self._handler: ChangeHandler | None = None
        self._auto_archive = auto_archive_reminders
        self._today = today

        # Insertion-ordered: document order is preserved across load -> save.
        self._tasks: dict[str, Task] = {}
        self._archive: dict[str, Task] = {}
        self._doc_extra: dict[str, Any] = {}
        self._doc_version: Any = DOCUMENT_VERSION
        self._last_sync: datetime | None = None

        self._dirty = False
        self._save_task: asyncio.Task[None] | None = None
        self._save_timer = Debouncer(
            save_debounce_seconds,
            self._on_save_timer,
            scheduler=scheduler,
            name="json-save",
        )

    @property
    def path(self) -> Path:
        return self._path

    @property
    def has_unsaved_changes(self) -> bool:
        return self._dirty

    # ---- lifecycle ----

    async def initialize(self, config: DataSourceConfig | None = None) -> None:
        if config is not None:
            self._config = config

        t0 = time.perf_counter()
        data = await self._read_document()

        self._doc_extra = {k: v for k, v in data.items() if k not in ("version", "tasks", "archive", "lastSync")}
        self._doc_version = data.get("version", DOCUMENT_VERSION)
        try:
            self._last_sync = parse_timestamp(data.get("lastSync"))
        except ValueError:
            logger.warning("Ignoring malformed lastSync value %r", data.get("lastSync"))
            self._last_sync = None

        self._tasks = self._load_records(data.get("tasks"), "tasks")
        self._archive = self._load_records(data.get("archive"), "archive")

        # Records listed in both lists: the archive copy wins.
        for task_id in list(self._tasks):
            if task_id in self._archive:
                logger.warning("Task %s present in both tasks and archive; keeping archived copy", task_id)
                del self._tasks[task_id]

        if self._auto_archive:
            await self._auto_archive_expired_reminders()

        logger.info(
            "JsonDataSource ready path=%s active=%d archived=%d (%.1fms)",
            self._path,
            len(self._tasks),
            len(self._archive),
            (time.perf_counter() - t0) * 1000.0,
        )

        loaded = self._all_tasks()
        if loaded:
            self._notify(DataSourceChanges(source_id=self.source_id, created=loaded))

    def destroy(self) -> None:
        self._save_timer.cancel()
        if self._dirty:
            logger.warning(
                "JsonDataSource destroyed with unsaved changes path=%s (call flush_save() first)",
                self._path,
            )
        self._handler = None

    # ---- reads ----

    async def get_tasks(self) -> list[Task]:
        """Active and archived tasks. Callers filter on Task.archived."""
        return self._all_tasks()

    def get_active_tasks(self) -> list[Task]:
        return list(self._tasks.values())

    def get_archived_tasks(self) -> list[Task]:
        return list(self._archive.values())

    def get_task(self, task_id: str) -> Task | None:
        return self._tasks.get(task_id) or self._archive.get(task_id)

    async def get_sync_status(self) -> SyncStatus:
        return SyncStatus(
            last_sync_at=self._last_sync,
            sync_direction=self._config.sync_direction,
            conflict_resolution=self._config.conflict_resolution,
        )

    def on_change(self, handler: ChangeHandler | None) -> None:
        self._handler = handler

    # ---- writes ----

    async def create_task(self, task: Task) -> str:
        task_id = task.id or str(uuid.uuid4())
        if task_id in self._tasks or task_id in self._archive:
            raise ValueError(f"Task id already exists: {task_id}")

        today = self._today()
        stored = replace(
            task,
            id=task_id,
            source_id=self.source_id,
            created_date=task.created_date or today,
            start_date=task.start_date or today,
            updated_at=task.updated_at or datetime.now(timezone.utc),
            version=max(1, task.version),
        )

        if stored.archived:
            self._archive[task_id] = stored
        else:
            self._tasks[task_id] = stored
        self._mark_dirty()

        self._notify(DataSourceChanges(source_id=self.source_id, created=[stored]))
        logger.debug("Task created id=%s type=%s", task_id, stored.type.value)
        return task_id

    async def update_task(self, task_id: str, changes: Mapping[str, Any]) -> None:
        current = self.get_task(task_id)
        if current is None:
            raise NotFoundError(task_id)

        normalized = normalize_changes(changes)
        if not normalized:
            return
        updated = apply_changes(current, normalized)

        if updated.archived == (task_id in self._archive):
            # Same list: replace in place to keep document order.
            (self._archive if updated.archived else self._tasks)[task_id] = updated
        elif updated.archived:
            del self._tasks[task_id]
            self._archive[task_id] = updated
        else:
            del self._archive[task_id]
            self._tasks[task_id] = updated
        self._mark_dirty()

        self._notify(
            DataSourceChanges(
                source_id=self.source_id,
                updated=[TaskUpdate(id=task_id, changes=normalized, task=updated)],
            )
        )
        logger.debug("Task updated id=%s fields=%s", task_id, sorted(normalized))

    async def delete_task(self, task_id: str) -> None:
        task = self._tasks.pop(task_id, None) or self._archive.pop(task_id, None)
        if task is None:
            raise NotFoundError(task_id)
        self._mark_dirty()

        self._notify(DataSourceChanges(source_id=self.source_id, deleted=[task]))
        logger.debug("Task deleted id=%s", task_id)

    async def archive_task(self, task_id: str) -> None:
        await self.update_task(task_id, {"archived": True})

    async def unarchive_task(self, task_id: str) -> None:
        await self.update_task(task_id, {"archived": False})

    # ---- persistence ----

    def build_document(self) -> dict[str, Any]:
        return {
            **self._doc_extra,
            "version": self._doc_version,
            "tasks": [task_to_document(t) for t in self._tasks.values()],
            "archive": [task_to_document(t) for t in self._archive.values()],
            "lastSync": format_timestamp(datetime.now(timezone.utc)),
        }

    def get_json_content(self) -> str:
        """Serialized snapshot of the current in-memory document (used for remote pushes)."""
        return json.dumps(self.build_document(), ensure_ascii=False, indent=2)

    async def flush_save(self) -> None:
        """Cancel the pending debounce and write now. Waits for an in-flight write first."""
        self._save_timer.cancel()
        pending = self._save_task
        if pending is not None and not pending.done():
            # The in-flight write logs its own failure; we write again below anyway.
            await asyncio.gather(pending, return_exceptions=True)
        await self._save_to_file()

    def _mark_dirty(self) -> None:
        self._dirty = True
        self._save_timer.trigger()

    def _on_save_timer(self) -> None:
        self._save_task = asyncio.ensure_future(self._save_in_background())

    async def _save_in_background(self) -> None:
        try:
            await self._save_to_file()
        except Exception:
            logger.exception("Debounced save failed path=%s", self._path)

    async def _save_to_file(self) -> None:
        # Snapshot is taken synchronously, so later mutations re-dirty the source.
        self._dirty = False
        content = self.get_json_content()
        try:
            await asyncio.to_thread(_atomic_write_text, self._path, content)
        except Exception:
            self._dirty = True
            raise
        self._last_sync = datetime.now(timezone.utc)
        logger.debug("Task document saved path=%s bytes=%d", self._path, len(content))

    async def _read_document(self) -> dict[str, Any]:
        try:
            exists = await asyncio.to_thread(self._path.exists)
            if not exists:
                logger.info("Task document not found, creating path=%s", self._path)
                doc = empty_document()
                await asyncio.to_thread(
                    _atomic_write_text, self._path, json.dumps(doc, ensure_ascii=False, indent=2)
                )
                return doc
            raw = await asyncio.to_thread(self._path.read_text, "utf-8")
        except UnicodeDecodeError:
            logger.exception("Task document is not valid UTF-8; starting empty path=%s", self._path)
            return empty_document()
        except OSError as e:
            raise LoadError(f"Cannot read task document {self._path}: {e}") from e

        try:
            data = json.loads(raw) if raw.strip() else {}
        except json.JSONDecodeError:
            logger.exception("Task document is not valid JSON; starting empty path=%s", self._path)
            return empty_document()

        if not isinstance(data, dict):
            logger.error("Task document is not a JSON object; starting empty path=%s", self._path)
            return empty_document()

        data.setdefault("version", DOCUMENT_VERSION)
        return data

    def _load_records(self, raw: Any, section: str) -> dict[str, Task]:
        out: dict[str, Task] = {}
        if raw is None:
            return out
        if not isinstance(raw, list):
            logger.error("Document section %r is not a list; ignoring it", section)
            return out
        for i, record in enumerate(raw):
            try:
                task = task_from_document(record)
            except (TypeError, ValueError):
                logger.warning("Skipping malformed task record section=%s index=%d", section, i, exc_info=True)
                continue
            if task.source_id is None:
                task = replace(task, source_id=self.source_id)
            # The list a record sits in decides its archived flag.
            if task.archived != (section == "archive"):
                task = replace(task, archived=section == "archive")
            if task.id in out:
                logger.warning("Duplicate task id %s in section %s; keeping the last one", task.id, section)
            out[task.id] = task
        return out

    async def _auto_archive_expired_reminders(self) -> None:
        """Reminders whose due date is before today are completed and archived."""
        today = self._today()
        now = datetime.now(timezone.utc)
        expired = [
            t
            for t in self._tasks.values()
            if t.type == TaskType.REMINDER and not t.archived and t.due_date is not None and t.due_date < today
        ]
        if not expired:
            return

        logger.info("Auto-archiving %d expired reminders", len(expired))
        for task in expired:
            del self._tasks[task.id]
            self._archive[task.id] = replace(
                task,
                completed=True,
                completion_date=task.due_date,
                archived=True,
                version=task.version + 1,
                updated_at=now,
            )
        await self._save_to_file()

    # ---- helpers ----

    def _all_tasks(self) -> list[Task]:
        return [*self._tasks.values(), *self._archive.values()]

    def _notify(self, changes: DataSourceChanges) -> None:
        handler = self._handler
        if handler is None:
            return
        try:
            handler(changes)
        except Exception:
            logger.exception("Change handler failed source=%s", self.source_id)
