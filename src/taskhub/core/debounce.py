# src/taskhub/core/debounce.py

from __future__ import annotations

import logging
from collections.abc import Callable

from .ports import LoopScheduler, Scheduler, TimerHandle

logger = logging.getLogger(__name__)


class Debouncer:
    """
    A single cancelable timer with cancel-and-rearm semantics.

    States:
    - disarmed: no timer handle
    - armed: one pending timer handle; trigger() cancels it and arms a new one

    The callback is synchronous. Callers that need async work spawn a task from it.
    """

    def __init__(
        self,
        delay: float,
        callback: Callable[[], None],
        *,
        scheduler: Scheduler | None = None,
        name: str = "debounce",
    ) -> None:
        self.delay = max(0.0, float(delay))
        self._callback = callback
        self._scheduler: Scheduler = scheduler or LoopScheduler()
        self._handle: TimerHandle | None = None
        self._name = name

    @property
    def armed(self) -> bool:
        return self._handle is not None

    def trigger(self, delay: float | None = None) -> None:
        """(Re)arm the timer. Any pending fire is cancelled first."""
        self.cancel()
        wait = self.delay if delay is None else max(0.0, float(delay))
        self._handle = self._scheduler.call_later(wait, self._fire)

    def cancel(self) -> bool:
        """Disarm. Returns True if a pending fire was cancelled."""
        handle = self._handle
        if handle is None:
            return False
        self._handle = None
        handle.cancel()
        return True

    def _fire(self) -> None:
        self._handle = None
        try:
            self._callback()
        except Exception:
            logger.exception("Debounced callback failed name=%s", self._name)
