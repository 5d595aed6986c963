# tests/test_task_store.py

from __future__ import annotations

import json
from datetime import date
from pathlib import Path

import pytest

from taskhub.core.errors import NotConfiguredError, NotFoundError
from taskhub.core.events import TASK_UPDATED, EventBus
from taskhub.sync.github_sync import GitHubSyncConfig
from taskhub.tasks.task_models import Task, TaskPriority, TaskType
from taskhub.tasks.task_store import TaskStore

from .fakes import FakeGitHub, ManualScheduler, settle

CREDS = GitHubSyncConfig(token="t0ken", owner="me", repo="tasks-data")


@pytest.mark.asyncio
async def test_initialize_loads_and_notifies_once(tasks_path: Path, store: TaskStore) -> None:
    tasks_path.parent.mkdir(parents=True)
    tasks_path.write_text(
        json.dumps({"version": 1, "tasks": [{"id": "a", "description": "x"}], "archive": []}), "utf-8"
    )
    calls: list[str | None] = []
    store.on_update(calls.append)

    await store.initialize()

    assert calls == [None]
    assert [t.id for t in store.get_all_tasks()] == ["a"]
    status = store.get_status()
    assert status.initialized and status.task_count == 1 and status.todo_count == 1


@pytest.mark.asyncio
async def test_cache_is_reference_stable_until_a_write(store: TaskStore) -> None:
    await store.initialize()
    await store.create_task(Task(id="a", description="x"))

    first = store.get_all_tasks()
    assert store.get_all_tasks() is first

    await store.update_task("a", {"description": "y"})
    second = store.get_all_tasks()
    assert second is not first
    assert second[0].description == "y"
    # the earlier snapshot is untouched
    assert first[0].description == "x"


@pytest.mark.asyncio
async def test_listener_notifications_are_debounced(store: TaskStore, scheduler: ManualScheduler) -> None:
    await store.initialize()
    calls: list[str | None] = []
    store.on_update(calls.append)

    await store.create_task(Task(id="a", description="1"))
    scheduler.advance(0.05)
    await store.create_task(Task(id="b", description="2"))
    scheduler.advance(0.05)
    assert calls == []

    scheduler.advance(0.03)
    assert calls == ["b"]

    store.off_update(calls.append)
    store.off_update(calls.append)  # idempotent
    await store.delete_task("a")
    scheduler.advance(1)
    assert calls == ["b"]
    await store.close()


@pytest.mark.asyncio
async def test_failing_listener_does_not_block_others(store: TaskStore, scheduler: ManualScheduler) -> None:
    await store.initialize()
    calls: list[str | None] = []

    def boom(_task_id) -> None:
        raise RuntimeError("listener failure")

    store.on_update(boom)
    store.on_update(calls.append)
    await store.create_task(Task(id="a"))
    scheduler.advance(1)

    assert calls == ["a"]
    await store.close()


@pytest.mark.asyncio
async def test_null_clears_and_absent_keeps(store: TaskStore) -> None:
    await store.initialize()
    await store.create_task(Task(id="a", description="x", due_date=date(2026, 12, 1), detail="d"))

    await store.update_task("a", {"dueDate": None})
    task = store.get_task_by_id("a")
    assert task.due_date is None
    assert task.detail == "d"

    await store.flush_save()
    assert "dueDate" not in json.loads(store.json_source.get_json_content())["tasks"][0]


@pytest.mark.asyncio
async def test_errors_propagate_to_the_caller(store: TaskStore) -> None:
    await store.initialize()
    with pytest.raises(NotFoundError):
        await store.update_task("ghost", {"description": "x"})
    with pytest.raises(NotFoundError):
        await store.delete_task("ghost")


@pytest.mark.asyncio
async def test_archive_round_trip(store: TaskStore) -> None:
    await store.initialize()
    await store.create_task(Task(id="a", description="x"))

    await store.archive_task("a")
    assert [t.id for t in store.get_archived_tasks()] == ["a"]
    assert store.get_task_by_id("a").archived

    await store.unarchive_task("a")
    assert store.get_archived_tasks() == []


@pytest.mark.asyncio
async def test_sub_tasks_inherit_and_respect_max_depth(store: TaskStore) -> None:
    await store.initialize()
    await store.create_task(
        Task(
            id="root",
            description="Trip",
            type=TaskType.REMINDER,
            priority=TaskPriority.HIGH,
            tags=frozenset({"travel"}),
            due_date=date(2026, 12, 24),
        )
    )

    child_id = await store.create_sub_task("root", description="Book flights", priority="low")
    child = store.get_task_by_id(child_id)
    assert child.parent_id == "root" and child.depth == 1
    assert child.type == TaskType.REMINDER
    assert child.priority == TaskPriority.LOW
    assert child.tags == frozenset({"travel"})
    assert child.due_date == date(2026, 12, 24)
    assert [t.id for t in store.get_child_tasks("root")] == [child_id]
    assert [t.id for t in store.get_root_tasks()] == ["root"]

    grandchild_id = await store.create_sub_task(child_id, description="Compare prices")
    assert store.get_task_by_id(grandchild_id).depth == 2

    with pytest.raises(ValueError):
        await store.create_sub_task(grandchild_id, description="too deep")
    with pytest.raises(NotFoundError):
        await store.create_sub_task("ghost", description="x")


@pytest.mark.asyncio
async def test_close_flushes_pending_write(store: TaskStore, tasks_path: Path) -> None:
    await store.initialize()
    await store.create_task(Task(id="a", description="persist me"))

    await store.close()

    doc = json.loads(tasks_path.read_text("utf-8"))
    assert [r["id"] for r in doc["tasks"]] == ["a"]
    assert not store.get_status().initialized


@pytest.mark.asyncio
async def test_push_now_requires_configuration(store: TaskStore) -> None:
    await store.initialize()
    assert not store.is_github_sync_configured()
    with pytest.raises(NotConfiguredError):
        await store.push_to_github_now()


@pytest.mark.asyncio
async def test_mutations_schedule_one_debounced_push(
    store: TaskStore, scheduler: ManualScheduler, github: FakeGitHub
) -> None:
    await store.initialize()
    synced: list[str] = []
    store.configure_github_sync(CREDS, on_success=synced.append)

    await store.create_task(Task(id="a", description="one"))
    await store.create_task(Task(id="b", description="two"))
    await store.update_task("a", {"completed": True})
    assert github.calls("PUT") == []

    scheduler.advance(30)
    await settle()

    assert len(github.calls("PUT")) == 1
    remote = json.loads(github.content("tasks.json"))
    assert [r["id"] for r in remote["tasks"]] == ["a", "b"]
    assert remote["tasks"][0]["completed"] is True
    assert len(synced) == 1
    await store.close()


@pytest.mark.asyncio
async def test_close_pushes_pending_snapshot(store: TaskStore, github: FakeGitHub, tasks_path: Path) -> None:
    await store.initialize()
    store.configure_github_sync(CREDS)
    await store.create_task(Task(id="a", description="last words"))

    await store.close()

    assert json.loads(github.content("tasks.json"))["tasks"][0]["id"] == "a"
    assert json.loads(tasks_path.read_text("utf-8"))["tasks"][0]["id"] == "a"
    assert store.github_sync is None


@pytest.mark.asyncio
async def test_remote_failure_never_breaks_local_writes(
    store: TaskStore, scheduler: ManualScheduler, github: FakeGitHub
) -> None:
    await store.initialize()
    errors: list[str] = []
    store.configure_github_sync(CREDS, on_error=errors.append)
    github.fail_status = 500

    await store.create_task(Task(id="a", description="local"))
    scheduler.advance(30)
    await settle()

    assert store.get_task_by_id("a") is not None
    assert len(errors) == 1 and "500" in errors[0]
    await store.close()


@pytest.mark.asyncio
async def test_disable_github_sync_stops_pushes(
    store: TaskStore, scheduler: ManualScheduler, github: FakeGitHub
) -> None:
    await store.initialize()
    store.configure_github_sync(CREDS)
    await store.create_task(Task(id="a"))

    store.disable_github_sync()
    assert not store.is_github_sync_configured()
    scheduler.advance(60)
    await settle()

    assert github.requests == []
    await store.close()


@pytest.mark.asyncio
async def test_bus_is_shared_with_callers(store: TaskStore, bus: EventBus) -> None:
    await store.initialize()
    seen: list[object] = []
    bus.on(TASK_UPDATED, seen.append)

    await store.create_task(Task(id="a"))
    await store.archive_task("a")

    assert seen[0]["changes"] == {"archived": True}
