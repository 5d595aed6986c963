# src/taskhub/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app.
- No secrets required at import time: GitHub sync stays off until a token is set.
- Components never read settings themselves; the composition root passes values in.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ENV_PREFIX = "TASKHUB"

load_dotenv(override=False)


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _first_env(*names: str, default: str | None = None) -> str | None:
    for n in names:
        v = os.getenv(n)
        if v is not None and v.strip() != "":
            return v
    return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- Local data (ignored by git) ----
    data_dir: Path
    tasks_json_path: Path
    auto_archive_reminders: bool

    # ---- Timers (seconds) ----
    save_debounce_seconds: float
    notify_debounce_seconds: float
    push_debounce_seconds: float

    # ---- GitHub sync ----
    github_token: str | None
    github_owner: str
    github_repo: str
    github_path: str
    github_branch: str | None
    github_api_url: str
    max_conflict_retries: int
    http_timeout_seconds: float

    @property
    def github_enabled(self) -> bool:
        return bool(self.github_token and self.github_owner and self.github_repo)

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "taskhub") or "taskhub"
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/taskhub"))
        tasks_json_path = _env_path(_k("TASKS_JSON_PATH"), data_dir / "tasks.json")
        auto_archive_reminders = _env_bool(_k("AUTO_ARCHIVE_REMINDERS"), True)

        save_debounce_seconds = _env_float(_k("SAVE_DEBOUNCE_SECONDS"), 0.5)
        notify_debounce_seconds = _env_float(_k("NOTIFY_DEBOUNCE_SECONDS"), 0.075)
        push_debounce_seconds = _env_float(_k("PUSH_DEBOUNCE_SECONDS"), 30.0)

        # The plain GITHUB_TOKEN is what most CI and dev shells already export.
        github_token = _first_env(_k("GITHUB_TOKEN"), "GITHUB_TOKEN", default=None)
        github_owner = _env(_k("GITHUB_OWNER")).strip()
        github_repo = _env(_k("GITHUB_REPO")).strip()
        github_path = _env(_k("GITHUB_PATH"), "tasks.json").strip() or "tasks.json"
        github_branch = _first_env(_k("GITHUB_BRANCH"), default=None)
        github_api_url = _env(_k("GITHUB_API_URL"), "https://api.github.com").strip() or "https://api.github.com"
        max_conflict_retries = _env_int(_k("MAX_CONFLICT_RETRIES"), 5)
        http_timeout_seconds = _env_float(_k("HTTP_TIMEOUT_SECONDS"), 30.0)

        return Settings(
            app_name=app_name,
            log_level=log_level,
            data_dir=data_dir,
            tasks_json_path=tasks_json_path,
            auto_archive_reminders=auto_archive_reminders,
            save_debounce_seconds=save_debounce_seconds,
            notify_debounce_seconds=notify_debounce_seconds,
            push_debounce_seconds=push_debounce_seconds,
            github_token=github_token.strip() if github_token else None,
            github_owner=github_owner,
            github_repo=github_repo,
            github_path=github_path,
            github_branch=github_branch.strip() if github_branch else None,
            github_api_url=github_api_url,
            max_conflict_retries=max_conflict_retries,
            http_timeout_seconds=http_timeout_seconds,
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
