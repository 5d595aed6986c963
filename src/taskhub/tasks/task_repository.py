# src/taskhub/tasks/task_repository.py

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, replace
from datetime import date

from ..core.events import TASK_CREATED, TASK_DELETED, TASK_UPDATED, EventBus
from ..core.ports import DataSource
from .task_models import DATE_FIELDS, DataSourceChanges, Task, TaskPriority, TaskType

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class RepositoryStats:
    total_tasks: int
    todo_count: int
    reminder_count: int
    data_sources: int


class TaskRepository:
    """
    One queryable view over N registered data sources.

    Indices (owned exclusively by the repository):
    - by id: task id -> Task
    - by parent: parent id -> ordered set of child ids

    A source's change diff is applied completely before any bus event is emitted,
    so handlers never observe a half-applied diff.
    """

    def __init__(self, event_bus: EventBus) -> None:
        self._bus = event_bus
        self._sources: dict[str, DataSource] = {}
        self._by_id: dict[str, Task] = {}
        # dict-as-ordered-set keeps children in insertion order
        self._by_parent: dict[str, dict[str, None]] = {}

    # ---- sources ----

    async def register_data_source(self, source: DataSource) -> None:
        source_id = source.source_id
        if source_id in self._sources and self._sources[source_id] is not source:
            raise ValueError(f"Another data source is registered as {source_id!r}")

        self._sources[source_id] = source
        source.on_change(self._handle_source_changes)

        seeded = 0
        for task in await source.get_tasks():
            if self._upsert(source_id, task) is not None:
                seeded += 1
        logger.info("Data source registered id=%s name=%s tasks=%d", source_id, source.source_name, seeded)

    def unregister_data_source(self, source_id: str) -> None:
        source = self._sources.pop(source_id, None)
        if source is None:
            return
        source.on_change(None)
        for task_id in [t.id for t in self._by_id.values() if t.source_id == source_id]:
            self._remove(task_id)
        logger.info("Data source unregistered id=%s", source_id)

    def clear(self) -> None:
        """Drop all indices and detach from every source (used before a full re-initialization)."""
        for source in self._sources.values():
            source.on_change(None)
        self._sources.clear()
        self._by_id.clear()
        self._by_parent.clear()

    # ---- queries ----

    def get_all_tasks(self) -> list[Task]:
        return list(self._by_id.values())

    def get_task_by_id(self, task_id: str) -> Task | None:
        return self._by_id.get(task_id)

    def get_child_tasks(self, parent_id: str) -> list[Task]:
        child_ids = self._by_parent.get(parent_id)
        if not child_ids:
            return []
        return [self._by_id[cid] for cid in child_ids]

    def get_root_tasks(self) -> list[Task]:
        return [t for t in self._by_id.values() if not t.parent_id or t.parent_id not in self._by_id]

    def query(
        self,
        *,
        types: Iterable[TaskType] | None = None,
        priorities: Iterable[TaskPriority] | None = None,
        tags: Iterable[str] | None = None,
        sources: Iterable[str] | None = None,
        archived: bool | None = None,
        completed: bool | None = None,
        date_field: str = "due_date",
        start: date | None = None,
        end: date | None = None,
    ) -> list[Task]:
        """
        Filtered view. Each given filter narrows the result; None means "any".

        tags: a task matches if it has at least one of the given tags.
        start/end: inclusive bounds on date_field; tasks without that date are excluded.
        """
        if date_field not in DATE_FIELDS:
            raise ValueError(f"Not a date field: {date_field}")

        type_set = set(types) if types is not None else None
        prio_set = set(priorities) if priorities is not None else None
        tag_set = set(tags) if tags is not None else None
        source_set = set(sources) if sources is not None else None
        ranged = start is not None or end is not None

        out: list[Task] = []
        for t in self._by_id.values():
            if type_set is not None and t.type not in type_set:
                continue
            if prio_set is not None and t.priority not in prio_set:
                continue
            if tag_set is not None and not (t.tags & tag_set):
                continue
            if source_set is not None and t.source_id not in source_set:
                continue
            if archived is not None and t.archived != archived:
                continue
            if completed is not None and t.completed != completed:
                continue
            if ranged:
                d = getattr(t, date_field)
                if d is None:
                    continue
                if start is not None and d < start:
                    continue
                if end is not None and d > end:
                    continue
            out.append(t)
        return out

    def get_stats(self) -> RepositoryStats:
        todo = reminder = 0
        for t in self._by_id.values():
            if t.type == TaskType.TODO:
                todo += 1
            elif t.type == TaskType.REMINDER:
                reminder += 1
        return RepositoryStats(
            total_tasks=len(self._by_id),
            todo_count=todo,
            reminder_count=reminder,
            data_sources=len(self._sources),
        )

    # ---- change handling ----

    def _handle_source_changes(self, changes: DataSourceChanges) -> None:
        source_id = changes.source_id
        if source_id not in self._sources:
            logger.warning("Ignoring changes from unregistered source=%s", source_id)
            return

        events: list[tuple[str, dict]] = []

        for task in changes.created:
            stored = self._upsert(source_id, task)
            if stored is not None:
                events.append((TASK_CREATED, {"task": stored, "source_id": source_id}))

        for update in changes.updated:
            stored = self._upsert(source_id, update.task)
            if stored is not None:
                events.append((TASK_UPDATED, {"task": stored, "changes": update.changes}))

        for task in changes.deleted:
            owner = self._by_id.get(task.id)
            if owner is None or owner.source_id != source_id:
                continue
            self._remove(task.id)
            events.append((TASK_DELETED, {"task_id": task.id, "source_id": source_id}))

        for name, payload in events:
            self._bus.emit(name, payload)

    def _upsert(self, source_id: str, task: Task) -> Task | None:
        if task.source_id != source_id:
            task = replace(task, source_id=source_id)
        existing = self._by_id.get(task.id)
        if existing is not None and existing.source_id != source_id:
            logger.warning(
                "Task id %s already owned by source=%s; ignoring record from source=%s",
                task.id,
                existing.source_id,
                source_id,
            )
            return None

        if existing is not None and existing.parent_id != task.parent_id:
            self._unlink_parent(existing)
        self._by_id[task.id] = task
        if task.parent_id:
            self._by_parent.setdefault(task.parent_id, {})[task.id] = None
        return task

    def _remove(self, task_id: str) -> None:
        task = self._by_id.pop(task_id, None)
        if task is not None:
            self._unlink_parent(task)

    def _unlink_parent(self, task: Task) -> None:
        if not task.parent_id:
            return
        children = self._by_parent.get(task.parent_id)
        if children is None:
            return
        children.pop(task.id, None)
        if not children:
            del self._by_parent[task.parent_id]
