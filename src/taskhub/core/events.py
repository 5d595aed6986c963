# src/taskhub/core/events.py

"""
In-process event bus.

Every component is wired through this bus instead of holding references to each other.

Rules:
- emit() calls handlers synchronously, in registration order
- a failing handler is logged and skipped; emit() never raises
- once() handlers are removed before they run (so they are removed even if they raise)
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

EventHandler = Callable[[Any], Any]

# Event names used by the task core.
TASK_CREATED = "task:created"
TASK_UPDATED = "task:updated"
TASK_DELETED = "task:deleted"
SYNC_STARTED = "sync:started"
SYNC_COMPLETED = "sync:completed"
SYNC_CONFLICT = "sync:conflict"
SYNC_FAILED = "sync:failed"

TASK_EVENTS = (TASK_CREATED, TASK_UPDATED, TASK_DELETED)


@dataclass(slots=True, frozen=True)
class _Subscription:
    handler: EventHandler
    once: bool = False


class EventBus:
    def __init__(self) -> None:
        self._subs: dict[str, list[_Subscription]] = {}

    def on(self, event: str, handler: EventHandler) -> None:
        self._subs.setdefault(event, []).append(_Subscription(handler))

    def once(self, event: str, handler: EventHandler) -> None:
        self._subs.setdefault(event, []).append(_Subscription(handler, once=True))

    def off(self, event: str, handler: EventHandler) -> None:
        """Remove the first registration of exactly this handler (identity, not equality)."""
        subs = self._subs.get(event)
        if not subs:
            return
        for i, sub in enumerate(subs):
            if sub.handler is handler:
                del subs[i]
                break
        if not subs:
            self._subs.pop(event, None)

    def emit(self, event: str, data: Any = None) -> None:
        subs = self._subs.get(event)
        if not subs:
            return

        # Snapshot: handlers may (un)subscribe while we iterate.
        snapshot = list(subs)
        for sub in snapshot:
            if sub.once:
                self._remove_subscription(event, sub)
            try:
                sub.handler(data)
            except Exception:
                logger.exception("Event handler failed event=%s handler=%r", event, sub.handler)

    def listener_count(self, event: str) -> int:
        return len(self._subs.get(event, ()))

    def event_names(self) -> list[str]:
        return [name for name, subs in self._subs.items() if subs]

    def clear(self) -> None:
        self._subs.clear()

    def _remove_subscription(self, event: str, sub: _Subscription) -> None:
        subs = self._subs.get(event)
        if not subs:
            return
        for i, existing in enumerate(subs):
            if existing is sub:
                del subs[i]
                break
        if not subs:
            self._subs.pop(event, None)
