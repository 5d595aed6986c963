# src/taskhub/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The repository and the store depend on Protocols instead of concrete implementations.
This keeps data sources and timers swappable and makes testing easier
(an in-memory data source, a manual clock).
"""

import asyncio
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from ..tasks.task_models import DataSourceChanges, DataSourceConfig, SyncStatus, Task

ChangeHandler = Callable[["DataSourceChanges"], None]
# Called by a data source after a change has been applied to its own records.


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Something that can run a callback later. asyncio loops satisfy this."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


class LoopScheduler:
    """
    Default Scheduler: the running asyncio loop.

    The loop is looked up on every call, so one instance can be shared
    across asyncio.run() invocations (tests, CLI restarts).
    """

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        return asyncio.get_running_loop().call_later(max(0.0, float(delay)), callback)


class DataSource(Protocol):
    """
    Any task backend (local file, remote API, ...).

    Contract:
    - on_change() keeps exactly one handler (last registration wins, None detaches)
    - the handler is called only after the change is applied internally,
      and before the mutating coroutine returns
    """

    @property
    def source_id(self) -> str: ...

    @property
    def source_name(self) -> str: ...

    @property
    def is_read_only(self) -> bool: ...

    async def initialize(self, config: DataSourceConfig) -> None: ...

    async def get_tasks(self) -> list[Task]: ...

    def on_change(self, handler: ChangeHandler | None) -> None: ...

    async def create_task(self, task: Task) -> str: ...

    async def update_task(self, task_id: str, changes: Mapping[str, Any]) -> None: ...

    async def delete_task(self, task_id: str) -> None: ...

    async def get_sync_status(self) -> SyncStatus: ...

    def destroy(self) -> None: ...
