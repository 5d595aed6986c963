# src/taskhub/sync/github_client.py

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from ..core.errors import RemoteHttpError, RevisionConflictError

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.github.com"
API_VERSION = "2022-11-28"


@dataclass(slots=True, frozen=True)
class RemoteFile:
    sha: str
    content: str  # decoded UTF-8 text


def encode_content(text: str) -> str:
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


def decode_content(raw: str) -> str:
    # The API wraps base64 at 60 columns.
    return base64.b64decode("".join(raw.split())).decode("utf-8")


def _error_message(response: httpx.Response) -> tuple[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return response.text[:500], response.text[:500]
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"]), body
    return str(body)[:500], body


def _field(response: httpx.Response, *keys: str) -> Any:
    """Parsed JSON body (or a nested field of it); a malformed payload becomes RemoteHttpError."""
    try:
        value = response.json()
        for key in keys:
            value = value[key]
    except (ValueError, KeyError, TypeError) as e:
        raise RemoteHttpError(
            response.status_code, f"Malformed response: {e.__class__.__name__}", body=response.text[:500]
        ) from e
    return value


class GitHubClient:
    """
    Minimal async client for the GitHub REST API (contents + repos).

    - Bearer token auth
    - no automatic retries: retry policy belongs to the caller (GitHubSyncService)
    - transport is injectable (httpx.MockTransport in tests)
    """

    def __init__(
        self,
        token: str,
        *,
        api_url: str = DEFAULT_API_URL,
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=api_url.rstrip("/"),
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": API_VERSION,
            },
            timeout=httpx.Timeout(timeout_seconds, connect=min(10.0, timeout_seconds)),
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    @property
    def is_closed(self) -> bool:
        return self._client.is_closed

    # ---- contents ----

    async def get_file(self, owner: str, repo: str, path: str, *, ref: str | None = None) -> RemoteFile | None:
        """Return the file, or None if it does not exist (404)."""
        params = {"ref": ref} if ref else None
        response = await self._client.get(f"/repos/{owner}/{repo}/contents/{path}", params=params)
        if response.status_code == 404:
            return None
        self._raise_for_status(response)

        sha = str(_field(response, "sha"))
        content = response.json().get("content") or ""
        try:
            text = decode_content(content) if content else ""
        except ValueError as e:
            raise RemoteHttpError(response.status_code, f"Undecodable file content: {e}") from e
        return RemoteFile(sha=sha, content=text)

    async def put_file(
        self,
        owner: str,
        repo: str,
        path: str,
        *,
        content: str,
        message: str,
        sha: str | None = None,
        branch: str | None = None,
    ) -> str:
        """Create or update a file. Returns the new blob SHA. 409 -> RevisionConflictError."""
        body: dict[str, Any] = {"message": message, "content": encode_content(content)}
        if sha:
            body["sha"] = sha
        if branch:
            body["branch"] = branch

        response = await self._client.put(f"/repos/{owner}/{repo}/contents/{path}", json=body)
        if response.status_code == 409:
            msg, payload = _error_message(response)
            raise RevisionConflictError(409, msg, body=payload)
        self._raise_for_status(response)

        new_sha = str(_field(response, "content", "sha"))
        logger.debug("PUT %s/%s/%s -> %s sha=%s", owner, repo, path, response.status_code, new_sha)
        return new_sha

    # ---- repos / user ----

    async def repo_exists(self, owner: str, repo: str) -> bool:
        response = await self._client.get(f"/repos/{owner}/{repo}")
        if response.status_code == 404:
            return False
        self._raise_for_status(response)
        return True

    async def create_repo(self, name: str, *, description: str = "", private: bool = True) -> dict[str, Any]:
        response = await self._client.post(
            "/user/repos",
            json={"name": name, "description": description, "private": private, "auto_init": True},
        )
        self._raise_for_status(response)
        return _field(response)

    async def get_current_user(self) -> str:
        response = await self._client.get("/user")
        self._raise_for_status(response)
        return str(_field(response, "login"))

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        if response.is_success:
            return
        msg, payload = _error_message(response)
        raise RemoteHttpError(response.status_code, msg, body=payload)
