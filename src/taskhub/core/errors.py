# src/taskhub/core/errors.py

"""
Error kinds raised by the task core.

Local errors (NotFoundError, LoadError, NotConfiguredError) propagate to the caller.
Remote errors (RemoteHttpError, RevisionConflictError) are raised by the GitHub client
and reported by the sync service through its callbacks only.
"""

from __future__ import annotations


class TaskHubError(Exception):
    """Base class for all taskhub errors."""


class NotFoundError(TaskHubError, KeyError):
    """Unknown task id on update/delete/archive."""

    def __init__(self, task_id: str) -> None:
        super().__init__(task_id)
        self.task_id = task_id

    def __str__(self) -> str:
        return f"Task not found: {self.task_id}"


class LoadError(TaskHubError):
    """The task document could not be read from storage."""


class NotConfiguredError(TaskHubError):
    """A remote operation was attempted before credentials were configured."""


class RemoteHttpError(TaskHubError):
    """Non-2xx or unreadable response from the remote API."""

    def __init__(self, status_code: int, message: str = "", *, body: object = None) -> None:
        self.status_code = int(status_code)
        self.body = body
        text = f"GitHub API error: {self.status_code}"
        if message:
            text = f"{text} - {message}"
        super().__init__(text)


class RevisionConflictError(RemoteHttpError):
    """409: the remote file revision does not match the SHA we sent."""
