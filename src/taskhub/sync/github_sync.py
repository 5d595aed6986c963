# src/taskhub/sync/github_sync.py

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import httpx

from ..core.debounce import Debouncer
from ..core.errors import NotConfiguredError, RemoteHttpError, RevisionConflictError
from ..core.events import SYNC_COMPLETED, SYNC_CONFLICT, SYNC_FAILED, SYNC_STARTED, EventBus
from ..core.ports import Scheduler
from ..tasks.task_models import format_timestamp
from .github_client import DEFAULT_API_URL, GitHubClient

logger = logging.getLogger(__name__)

SyncSuccessCallback = Callable[[str], None]  # ISO timestamp of the successful push
SyncErrorCallback = Callable[[str], None]  # human-readable message

MAX_BACKOFF_SECONDS = 600.0

README_TEMPLATE = """# {repo}

Task data synchronized by taskhub.

- `{path}`: active and archived tasks (JSON document, version 1)

This file is generated; edits to `{path}` made here may be overwritten by the next push.
"""


@dataclass(slots=True, frozen=True)
class GitHubSyncConfig:
    token: str
    owner: str
    repo: str
    path: str = "tasks.json"
    branch: str | None = None

    def __repr__(self) -> str:
        # Never leak the token into logs.
        return f"GitHubSyncConfig(owner={self.owner!r}, repo={self.repo!r}, path={self.path!r}, branch={self.branch!r})"


class GitHubSyncService:
    """
    Debounced, optimistic push of one JSON snapshot to a GitHub repository file.

    State machine (per file):
        Idle -> PendingPush   schedule_push() arms the debounce timer
        PendingPush -> Pushing   timer fires (or push_now/flush)
        Pushing -> Idle | PendingPush   success, error, or conflict retry

    Invariants:
    - at most one PUT in flight (is_syncing); a timer firing mid-push re-arms itself
    - the SHA cursor is only trusted until a 409; after that it is re-read with a GET
    - conflict retries are bounded (max_conflict_retries) with exponential backoff
    - remote failures never raise into the caller: they go to on_error and the bus
    """

    def __init__(
        self,
        *,
        debounce_seconds: float = 30.0,
        max_conflict_retries: int = 5,
        scheduler: Scheduler | None = None,
        event_bus: EventBus | None = None,
        api_url: str = DEFAULT_API_URL,
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._debounce_seconds = max(0.0, float(debounce_seconds))
        self._max_conflict_retries = max(0, int(max_conflict_retries))
        self._bus = event_bus
        self._api_url = api_url
        self._timeout_seconds = timeout_seconds
        self._transport = transport

        self._config: GitHubSyncConfig | None = None
        self._client: GitHubClient | None = None
        self._retired_clients: list[GitHubClient] = []

        self._on_success: SyncSuccessCallback | None = None
        self._on_error: SyncErrorCallback | None = None

        self._pending_content: str | None = None
        self._sha: str | None = None
        self._conflict_count = 0
        self._is_syncing = False
        self._idle = asyncio.Event()
        self._idle.set()

        self._background: set[asyncio.Task[Any]] = set()
        self._timer = Debouncer(
            self._debounce_seconds,
            self._on_timer,
            scheduler=scheduler,
            name="github-push",
        )

    # ---- configuration ----

    def configure(self, config: GitHubSyncConfig) -> None:
        if not config.token or not config.owner or not config.repo:
            raise ValueError("GitHub sync needs token, owner and repo")

        if self._client is not None and (self._config is None or self._config.token != config.token):
            self._retired_clients.append(self._client)
            self._client = None
        if self._client is None:
            self._client = GitHubClient(
                config.token,
                api_url=self._api_url,
                timeout_seconds=self._timeout_seconds,
                transport=self._transport,
            )

        self._config = config
        self._sha = None
        self._conflict_count = 0
        logger.debug("GitHub sync target %r", config)

    def set_callbacks(
        self,
        on_success: SyncSuccessCallback | None = None,
        on_error: SyncErrorCallback | None = None,
    ) -> None:
        self._on_success = on_success
        self._on_error = on_error

    def is_configured(self) -> bool:
        return self._config is not None and self._client is not None

    @property
    def config(self) -> GitHubSyncConfig | None:
        return self._config

    @property
    def is_syncing(self) -> bool:
        return self._is_syncing

    @property
    def has_pending_push(self) -> bool:
        return self._pending_content is not None

    @property
    def current_sha(self) -> str | None:
        return self._sha

    @property
    def conflict_count(self) -> int:
        return self._conflict_count

    # ---- push ----

    def schedule_push(self, content: str) -> None:
        """Remember the latest snapshot and (re)start the debounce timer."""
        if not self.is_configured():
            return
        self._pending_content = content
        self._conflict_count = 0
        self._timer.trigger()

    async def push_now(self, content: str) -> None:
        if not self.is_configured():
            raise NotConfiguredError("GitHub sync is not configured")
        self._timer.cancel()
        self._pending_content = content
        self._conflict_count = 0
        await self._idle.wait()
        await self._execute_push()

    async def flush(self) -> None:
        """Push whatever is pending now. Conflicts are retried immediately, still bounded."""
        while True:
            self._timer.cancel()
            await self._idle.wait()
            self._timer.cancel()
            if self._pending_content is None or not self.is_configured():
                return
            await self._execute_push()

    def destroy(self) -> None:
        self._timer.cancel()
        if self._pending_content is not None:
            logger.warning("GitHub sync destroyed with an unpushed snapshot (call flush() first)")
        self._pending_content = None

    async def aclose(self) -> None:
        clients = [*self._retired_clients]
        if self._client is not None:
            clients.append(self._client)
        self._retired_clients.clear()
        self._client = None
        self._config = None
        for client in clients:
            await client.aclose()

    def close_soon(self) -> None:
        """Close the HTTP client from sync code (schedules aclose on the running loop)."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop; HTTP client left for garbage collection")
            return
        task = loop.create_task(self.aclose())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _on_timer(self) -> None:
        task = asyncio.ensure_future(self._execute_push())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _execute_push(self) -> None:
        if self._is_syncing:
            # One PUT at a time: try again after another debounce period.
            if self._pending_content is not None:
                logger.debug("Push already in flight; re-arming timer")
                self._timer.trigger()
            return

        config, client = self._config, self._client
        content = self._pending_content
        if config is None or client is None or content is None:
            return

        self._pending_content = None
        self._is_syncing = True
        self._idle.clear()
        self._emit(SYNC_STARTED, {"path": config.path})
        try:
            if self._sha is None:
                remote = await client.get_file(config.owner, config.repo, config.path, ref=config.branch)
                self._sha = remote.sha if remote is not None else None

            new_sha = await client.put_file(
                config.owner,
                config.repo,
                config.path,
                content=content,
                message=f"Update {config.path}",
                sha=self._sha,
                branch=config.branch,
            )
        except RevisionConflictError:
            self._handle_conflict(content)
        except (RemoteHttpError, httpx.HTTPError) as e:
            logger.warning("GitHub push failed path=%s: %s", config.path, e)
            self._fail(str(e) or e.__class__.__name__)
        except Exception as e:
            logger.exception("Unexpected error during GitHub push path=%s", config.path)
            self._fail(f"Unexpected sync error: {e.__class__.__name__}: {e}")
        else:
            self._sha = new_sha
            self._conflict_count = 0
            synced_at = format_timestamp(datetime.now(timezone.utc))
            logger.info("GitHub push ok path=%s sha=%s", config.path, new_sha)
            self._emit(SYNC_COMPLETED, {"sha": new_sha, "synced_at": synced_at})
            self._call(self._on_success, synced_at)
        finally:
            self._is_syncing = False
            self._idle.set()

    def _handle_conflict(self, content: str) -> None:
        self._sha = None
        if self._pending_content is not None:
            logger.info("GitHub push conflict; a newer snapshot is already scheduled")
            return

        self._conflict_count += 1
        attempt = self._conflict_count
        self._emit(SYNC_CONFLICT, {"attempt": attempt})

        if attempt > self._max_conflict_retries:
            self._conflict_count = 0
            logger.error("GitHub push gave up after %d conflicts", self._max_conflict_retries)
            self._fail(f"Remote file keeps changing; gave up after {self._max_conflict_retries} retries")
            return

        delay = min(self._debounce_seconds * 2 ** (attempt - 1), MAX_BACKOFF_SECONDS)
        logger.warning("GitHub push conflict attempt=%d; retrying in %.1fs", attempt, delay)
        self._pending_content = content
        self._timer.trigger(delay)

    def _fail(self, message: str) -> None:
        self._emit(SYNC_FAILED, {"error": message})
        self._call(self._on_error, message)

    def _emit(self, event: str, data: dict[str, Any]) -> None:
        if self._bus is not None:
            self._bus.emit(event, data)

    @staticmethod
    def _call(callback: Callable[[str], None] | None, value: str) -> None:
        if callback is None:
            return
        try:
            callback(value)
        except Exception:
            logger.exception("Sync callback failed")

    # ---- repository helpers ----

    def _require(self) -> tuple[GitHubSyncConfig, GitHubClient]:
        if self._config is None or self._client is None:
            raise NotConfiguredError("GitHub sync is not configured")
        return self._config, self._client

    async def check_repo_exists(self) -> bool:
        config, client = self._require()
        return await client.repo_exists(config.owner, config.repo)

    async def create_repo(self, description: str = "") -> dict[str, Any]:
        config, client = self._require()
        logger.info("Creating GitHub repository %s/%s", config.owner, config.repo)
        return await client.create_repo(config.repo, description=description)

    async def get_current_user(self) -> str:
        _, client = self._require()
        return await client.get_current_user()

    async def push_multiple_files(self, files: Mapping[str, str], *, message: str | None = None) -> dict[str, str]:
        """
        Create or overwrite several files (one commit each). Returns path -> new SHA.

        Errors propagate: this is an explicit setup call, not background sync.
        """
        config, client = self._require()
        out: dict[str, str] = {}
        for path, content in files.items():
            remote = await client.get_file(config.owner, config.repo, path, ref=config.branch)
            out[path] = await client.put_file(
                config.owner,
                config.repo,
                path,
                content=content,
                message=message or f"Update {path}",
                sha=remote.sha if remote is not None else None,
                branch=config.branch,
            )
        if config.path in out:
            self._sha = out[config.path]
        return out

    async def provision_repository(self, tasks_json: str, *, description: str = "taskhub task data") -> bool:
        """Create the repository if needed and push README.md plus the tasks file. True if created."""
        config, _ = self._require()
        created = False
        if not await self.check_repo_exists():
            await self.create_repo(description)
            created = True

        await self.push_multiple_files(
            {
                "README.md": README_TEMPLATE.format(repo=config.repo, path=config.path),
                config.path: tasks_json,
            },
            message="Initialize taskhub data",
        )
        return created
