# tests/fakes.py

from __future__ import annotations

import asyncio
import base64
import heapq
import itertools
import json
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from typing import Any

import httpx

from taskhub.core.ports import ChangeHandler
from taskhub.tasks.task_models import (
    DataSourceChanges,
    DataSourceConfig,
    SyncStatus,
    Task,
    TaskUpdate,
    apply_changes,
)


async def settle(rounds: int = 10, timeout: float = 2.0) -> None:
    """Let spawned tasks (debounced saves/pushes, thread writes) run to completion."""
    me = asyncio.current_task()
    for _ in range(rounds):
        await asyncio.sleep(0)
        pending = [t for t in asyncio.all_tasks() if t is not me and not t.done()]
        if not pending:
            return
        await asyncio.wait(pending, timeout=timeout)


@dataclass(slots=True)
class _ManualHandle:
    cancelled: bool = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """
    Virtual clock implementing the Scheduler protocol.

    Nothing fires until advance() is called; timers fire in due order,
    and timers armed by a callback fire in the same advance() if they are due.
    """

    def __init__(self) -> None:
        self.now = 0.0
        self._seq = itertools.count()
        self._heap: list[tuple[float, int, _ManualHandle, Callable[[], None]]] = []
        self.delays: list[float] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> _ManualHandle:
        handle = _ManualHandle()
        self.delays.append(delay)
        heapq.heappush(self._heap, (self.now + delay, next(self._seq), handle, callback))
        return handle

    def advance(self, seconds: float) -> int:
        """Move the clock forward; returns how many callbacks fired."""
        target = self.now + seconds
        fired = 0
        while self._heap and self._heap[0][0] <= target:
            when, _, handle, callback = heapq.heappop(self._heap)
            if handle.cancelled:
                continue
            self.now = when
            callback()
            fired += 1
        self.now = target
        return fired

    @property
    def pending(self) -> int:
        return sum(1 for _, _, h, _ in self._heap if not h.cancelled)

    def next_due_in(self) -> float | None:
        live = [when for when, _, h, _ in self._heap if not h.cancelled]
        return min(live) - self.now if live else None


class FakeDataSource:
    """
    In-memory DataSource used by repository tests.

    Mutations behave like the JSON source (handler called before the coroutine returns),
    and push() lets a test inject an arbitrary diff.
    """

    is_read_only = False

    def __init__(self, source_id: str = "fake", tasks: list[Task] | None = None) -> None:
        self.source_id = source_id
        self.source_name = f"Fake {source_id}"
        self.tasks: dict[str, Task] = {t.id: t for t in tasks or []}
        self.handler: ChangeHandler | None = None
        self.destroyed = False
        self._ids = itertools.count(1)

    async def initialize(self, config: DataSourceConfig) -> None:
        return None

    async def get_tasks(self) -> list[Task]:
        return list(self.tasks.values())

    def on_change(self, handler: ChangeHandler | None) -> None:
        self.handler = handler

    async def create_task(self, task: Task) -> str:
        task_id = task.id or f"{self.source_id}-{next(self._ids)}"
        stored = replace(task, id=task_id, source_id=self.source_id)
        self.tasks[task_id] = stored
        self.push(DataSourceChanges(self.source_id, created=[stored]))
        return task_id

    async def update_task(self, task_id: str, changes: Mapping[str, Any]) -> None:
        updated = apply_changes(self.tasks[task_id], changes)
        self.tasks[task_id] = updated
        self.push(DataSourceChanges(self.source_id, updated=[TaskUpdate(task_id, dict(changes), updated)]))

    async def delete_task(self, task_id: str) -> None:
        task = self.tasks.pop(task_id)
        self.push(DataSourceChanges(self.source_id, deleted=[task]))

    async def get_sync_status(self) -> SyncStatus:
        cfg = DataSourceConfig()
        return SyncStatus(None, cfg.sync_direction, cfg.conflict_resolution)

    def destroy(self) -> None:
        self.destroyed = True
        self.handler = None

    def push(self, changes: DataSourceChanges) -> None:
        if self.handler is not None:
            self.handler(changes)


@dataclass(slots=True)
class RecordedRequest:
    method: str
    path: str
    body: dict[str, Any] | None
    headers: dict[str, str] = field(default_factory=dict)


@dataclass
class FakeGitHub:
    """
    Tiny GitHub REST fake served through httpx.MockTransport.

    Supports contents GET/PUT with SHA checks, repo lookup/creation and /user.

    Knobs:
    - external_writes: the next N PUTs see the remote file changed by someone else first (-> 409)
    - fail_status: every PUT answers with this status instead
    - put_gate: when set, PUT handlers wait on it (lets a test hold a push in flight)
    """

    owner: str = "me"
    repo: str = "tasks-data"
    repo_exists: bool = True
    files: dict[str, tuple[str, str]] = field(default_factory=dict)  # path -> (sha, content)
    requests: list[RecordedRequest] = field(default_factory=list)

    external_writes: int = 0
    fail_status: int | None = None
    put_gate: asyncio.Event | None = None

    in_flight: int = 0
    max_in_flight: int = 0
    _sha_seq: itertools.count = field(default_factory=lambda: itertools.count(1))

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def seed(self, path: str, content: str) -> str:
        sha = self._next_sha()
        self.files[path] = (sha, content)
        return sha

    def content(self, path: str) -> str | None:
        entry = self.files.get(path)
        return entry[1] if entry else None

    def calls(self, method: str | None = None) -> list[RecordedRequest]:
        return [r for r in self.requests if method is None or r.method == method]

    def _next_sha(self) -> str:
        return f"sha{next(self._sha_seq)}"

    async def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        path = request.url.path
        self.requests.append(RecordedRequest(request.method, path, body, dict(request.headers)))

        if path == "/user" and request.method == "GET":
            return httpx.Response(200, json={"login": self.owner})
        if path == "/user/repos" and request.method == "POST":
            self.repo_exists = True
            return httpx.Response(201, json={"name": body["name"], "private": body.get("private", True)})

        repo_prefix = f"/repos/{self.owner}/{self.repo}"
        if path == repo_prefix and request.method == "GET":
            if not self.repo_exists:
                return httpx.Response(404, json={"message": "Not Found"})
            return httpx.Response(200, json={"name": self.repo})

        contents_prefix = f"{repo_prefix}/contents/"
        if not path.startswith(contents_prefix) or not self.repo_exists:
            return httpx.Response(404, json={"message": "Not Found"})
        file_path = path[len(contents_prefix) :]

        if request.method == "GET":
            entry = self.files.get(file_path)
            if entry is None:
                return httpx.Response(404, json={"message": "Not Found"})
            sha, text = entry
            encoded = base64.b64encode(text.encode("utf-8")).decode("ascii")
            # Real responses wrap the base64 payload.
            wrapped = "\n".join(encoded[i : i + 60] for i in range(0, len(encoded), 60))
            return httpx.Response(200, json={"sha": sha, "content": wrapped, "encoding": "base64"})

        if request.method == "PUT":
            return await self._put(file_path, body or {})

        return httpx.Response(405, json={"message": "Method Not Allowed"})

    async def _put(self, file_path: str, body: dict[str, Any]) -> httpx.Response:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.put_gate is not None:
                await self.put_gate.wait()

            if self.fail_status is not None:
                return httpx.Response(self.fail_status, json={"message": "Server Error"})

            if self.external_writes > 0:
                self.external_writes -= 1
                previous = self.files.get(file_path, ("", ""))[1]
                self.files[file_path] = (self._next_sha(), previous + " ")

            current = self.files.get(file_path)
            sent_sha = body.get("sha")
            if current is not None and sent_sha is None:
                return httpx.Response(422, json={"message": '"sha" wasn\'t supplied.'})
            if (current is None and sent_sha is not None) or (current is not None and current[0] != sent_sha):
                return httpx.Response(409, json={"message": f"{file_path} does not match {sent_sha}"})

            text = base64.b64decode(body["content"]).decode("utf-8")
            new_sha = self._next_sha()
            self.files[file_path] = (new_sha, text)
            status = 200 if current is not None else 201
            return httpx.Response(status, json={"content": {"path": file_path, "sha": new_sha}})
        finally:
            self.in_flight -= 1
