# config.example.py

"""
Documentation-only module (safe to commit).

The real configuration is loaded from environment variables (optionally via a local .env file).
Do NOT commit real secrets. Put the GitHub token in .env (local, gitignored).

This file exists to make the repo self-documenting even without opening .env.
"""

ENV_VARS = {
    # App / logging
    "TASKHUB_APP_NAME": "App display name (default: taskhub).",
    "TASKHUB_LOG_LEVEL": "Console logging level (default: INFO). The log file always gets DEBUG.",
    # Paths (gitignored)
    "TASKHUB_DATA_DIR": "Local data directory, also holds taskhub.log (default: .local/taskhub).",
    "TASKHUB_TASKS_JSON_PATH": "Task document path (default: <data_dir>/tasks.json).",
    "TASKHUB_AUTO_ARCHIVE_REMINDERS": "Archive reminders whose due date has passed on load (default: true).",
    # Timers
    "TASKHUB_SAVE_DEBOUNCE_SECONDS": "Delay before writing the task document after a change (default: 0.5).",
    "TASKHUB_NOTIFY_DEBOUNCE_SECONDS": "Delay before update listeners are notified (default: 0.075).",
    "TASKHUB_PUSH_DEBOUNCE_SECONDS": "Delay before a snapshot is pushed to GitHub (default: 30).",
    # GitHub sync (off unless token, owner and repo are all set)
    "TASKHUB_GITHUB_TOKEN": "Personal access token with contents:write (falls back to GITHUB_TOKEN).",
    "TASKHUB_GITHUB_OWNER": "Repository owner (user or organization).",
    "TASKHUB_GITHUB_REPO": "Repository name.",
    "TASKHUB_GITHUB_PATH": "File path inside the repository (default: tasks.json).",
    "TASKHUB_GITHUB_BRANCH": "Branch to push to (default: the repository default branch).",
    "TASKHUB_GITHUB_API_URL": "API base URL, for GitHub Enterprise (default: https://api.github.com).",
    "TASKHUB_MAX_CONFLICT_RETRIES": "How many times a 409 conflict is retried before giving up (default: 5).",
    "TASKHUB_HTTP_TIMEOUT_SECONDS": "HTTP timeout for GitHub calls (default: 30).",
}
