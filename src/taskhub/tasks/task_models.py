# src/taskhub/tasks/task_models.py

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, fields, replace
from datetime import date, datetime, timezone
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)


class TaskType(StrEnum):
    TODO = "todo"
    REMINDER = "reminder"

    @classmethod
    def from_raw(cls, raw: str | None) -> TaskType:
        if not raw:
            return cls.TODO
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            return cls.TODO


class TaskPriority(StrEnum):
    """
    Task priority.

    Notes:
    - older documents may carry the six-level scale (highest..lowest);
      it is folded into three levels on load
    """

    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"

    @classmethod
    def from_raw(cls, raw: str | None) -> TaskPriority:
        if not raw:
            return cls.NORMAL
        key = str(raw).strip().lower()
        key = {"highest": "high", "medium": "normal", "lowest": "low"}.get(key, key)
        try:
            return cls(key)
        except ValueError:
            return cls.NORMAL


class ConflictResolution(StrEnum):
    # Only LOCAL_WIN is executed; the others are accepted and behave like it.
    LOCAL_WIN = "local-win"
    REMOTE_WIN = "remote-win"
    MANUAL = "manual"


class SyncDirection(StrEnum):
    BIDIRECTIONAL = "bidirectional"
    IMPORT_ONLY = "import-only"
    EXPORT_ONLY = "export-only"


@dataclass(slots=True, frozen=True)
class Task:
    """
    Canonical task record.

    Instances are immutable: updates produce a new Task (dataclasses.replace),
    so a list handed out by the repository or the store can never be mutated behind its back.
    """

    id: str = ""
    type: TaskType = TaskType.TODO
    description: str = ""
    detail: str | None = None

    completed: bool = False
    cancelled: bool = False
    status: str | None = None
    priority: TaskPriority = TaskPriority.NORMAL
    tags: frozenset[str] = frozenset()

    created_date: date | None = None
    start_date: date | None = None
    scheduled_date: date | None = None
    due_date: date | None = None
    completion_date: date | None = None
    cancelled_date: date | None = None

    time: str | None = None  # "HH:MM", opaque to the core
    repeat: str | None = None  # recurrence rule text, opaque to the core

    parent_id: str | None = None
    depth: int = 0
    archived: bool = False

    source_id: str | None = None
    version: int = 1
    updated_at: datetime | None = None

    # Unknown document keys, written back unchanged.
    extra: dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass(slots=True, frozen=True)
class DataSourceConfig:
    enabled: bool = True
    sync_direction: SyncDirection = SyncDirection.BIDIRECTIONAL
    auto_sync: bool = True
    conflict_resolution: ConflictResolution = ConflictResolution.LOCAL_WIN
    sync_interval: float | None = None


@dataclass(slots=True, frozen=True)
class SyncStatus:
    last_sync_at: datetime | None
    sync_direction: SyncDirection
    conflict_resolution: ConflictResolution


@dataclass(slots=True, frozen=True)
class TaskUpdate:
    id: str
    changes: dict[str, Any]
    task: Task  # the record after the update


@dataclass(slots=True)
class DataSourceChanges:
    source_id: str
    created: list[Task] = field(default_factory=list)
    updated: list[TaskUpdate] = field(default_factory=list)
    deleted: list[Task] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.created or self.updated or self.deleted)


# ---- document (JSON) mapping ----

# Python field name -> document key.
DOCUMENT_KEYS: dict[str, str] = {
    "id": "id",
    "type": "type",
    "description": "description",
    "detail": "detail",
    "completed": "completed",
    "cancelled": "cancelled",
    "status": "status",
    "priority": "priority",
    "tags": "tags",
    "created_date": "createdDate",
    "start_date": "startDate",
    "scheduled_date": "scheduledDate",
    "due_date": "dueDate",
    "completion_date": "completionDate",
    "cancelled_date": "cancelledDate",
    "time": "time",
    "repeat": "repeat",
    "parent_id": "parentId",
    "depth": "depth",
    "archived": "archived",
    "source_id": "sourceId",
    "version": "version",
    "updated_at": "lastModified",
}
_FIELD_BY_DOCUMENT_KEY = {v: k for k, v in DOCUMENT_KEYS.items()}

DATE_FIELDS = frozenset(
    {
        "created_date",
        "start_date",
        "scheduled_date",
        "due_date",
        "completion_date",
        "cancelled_date",
    }
)

# Fields that may not be set to None through TaskChanges.
REQUIRED_FIELDS = frozenset(
    {"type", "description", "priority", "completed", "cancelled", "archived", "tags", "depth"}
)

# Bookkeeping owned by the data source.
READ_ONLY_FIELDS = frozenset({"id", "source_id", "version", "updated_at", "extra"})

TASK_FIELDS = frozenset(f.name for f in fields(Task))


def parse_date(raw: Any) -> date | None:
    """
    Parse a calendar date.

    Accepts date/datetime objects, "YYYY-MM-DD", and full ISO-8601 date-times
    (older documents stored JS toISOString() values; those are converted to local time
    before taking the date, which is what the user saw when they picked it).
    """
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        if raw.tzinfo is not None:
            return raw.astimezone().date()
        return raw.date()
    if isinstance(raw, date):
        return raw
    if not isinstance(raw, str):
        raise ValueError(f"Not a date: {raw!r}")

    s = raw.strip()
    if "T" in s or " " in s:
        dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
        if dt.tzinfo is not None:
            dt = dt.astimezone()
        return dt.date()
    return date.fromisoformat(s)


def parse_timestamp(raw: Any) -> datetime | None:
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        return raw
    if not isinstance(raw, str):
        raise ValueError(f"Not a timestamp: {raw!r}")
    dt = datetime.fromisoformat(raw.strip().replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def format_timestamp(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def task_to_document(task: Task) -> dict[str, Any]:
    """Task -> JSON-ready dict. None-valued optional keys are omitted."""
    out: dict[str, Any] = dict(task.extra)
    for name, key in DOCUMENT_KEYS.items():
        value = getattr(task, name)
        if value is None:
            continue
        if name in DATE_FIELDS:
            value = value.isoformat()
        elif name == "updated_at":
            value = format_timestamp(value)
        elif name == "tags":
            value = sorted(value)
        elif isinstance(value, StrEnum):
            value = value.value
        out[key] = value
    return out


def task_from_document(data: Mapping[str, Any]) -> Task:
    """JSON dict -> Task. Raises ValueError/TypeError on malformed records."""
    if not isinstance(data, Mapping):
        raise TypeError(f"Task record must be an object, got {type(data).__name__}")

    task_id = data.get("id")
    if not task_id or not isinstance(task_id, str):
        raise ValueError("Task record has no id")

    tags_raw = data.get("tags") or []
    if isinstance(tags_raw, str) or not isinstance(tags_raw, Iterable):
        raise ValueError(f"Task {task_id}: tags must be a list")

    extra = {k: v for k, v in data.items() if k not in _FIELD_BY_DOCUMENT_KEY}

    return Task(
        id=task_id,
        type=TaskType.from_raw(data.get("type")),
        description=str(data.get("description") or ""),
        detail=data.get("detail"),
        completed=bool(data.get("completed", False)),
        cancelled=bool(data.get("cancelled", False)),
        status=data.get("status"),
        priority=TaskPriority.from_raw(data.get("priority")),
        tags=frozenset(str(t) for t in tags_raw),
        created_date=parse_date(data.get("createdDate")),
        start_date=parse_date(data.get("startDate")),
        scheduled_date=parse_date(data.get("scheduledDate")),
        due_date=parse_date(data.get("dueDate")),
        completion_date=parse_date(data.get("completionDate")),
        cancelled_date=parse_date(data.get("cancelledDate")),
        time=data.get("time"),
        repeat=data.get("repeat"),
        parent_id=data.get("parentId"),
        depth=int(data.get("depth") or 0),
        archived=bool(data.get("archived", False)),
        source_id=data.get("sourceId"),
        version=int(data.get("version") or 1),
        updated_at=parse_timestamp(data.get("lastModified")),
        extra=extra,
    )


# ---- TaskChanges ----


def normalize_changes(changes: Mapping[str, Any]) -> dict[str, Any]:
    """
    Validate a TaskChanges mapping and coerce its values.

    Absent key -> no change. Key present with None -> clear the field.
    Document keys (dueDate, parentId, ...) are accepted as aliases of the Python names.
    """
    out: dict[str, Any] = {}
    for raw_key, value in changes.items():
        name = _FIELD_BY_DOCUMENT_KEY.get(raw_key, raw_key)
        if name not in TASK_FIELDS:
            raise ValueError(f"Unknown task field: {raw_key}")
        if name in READ_ONLY_FIELDS:
            raise ValueError(f"Task field is not writable: {raw_key}")

        if value is None:
            if name in REQUIRED_FIELDS:
                raise ValueError(f"Task field cannot be cleared: {raw_key}")
            out[name] = None
            continue

        if name in DATE_FIELDS:
            value = parse_date(value)
        elif name == "type":
            value = TaskType(value)
        elif name == "priority":
            value = TaskPriority(value)
        elif name == "tags":
            if isinstance(value, str):
                raise ValueError("tags must be a collection of strings, not a string")
            value = frozenset(str(t) for t in value)
        elif name in ("completed", "cancelled", "archived"):
            value = bool(value)
        elif name == "depth":
            value = int(value)
        out[name] = value
    return out


def apply_changes(task: Task, changes: Mapping[str, Any], *, now: datetime | None = None) -> Task:
    """Return a new Task with normalized changes applied, version bumped and updated_at stamped."""
    normalized = normalize_changes(changes)
    return replace(
        task,
        **normalized,
        version=task.version + 1,
        updated_at=now or datetime.now(timezone.utc),
    )
