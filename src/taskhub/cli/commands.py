# src/taskhub/cli/commands.py

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from datetime import date
from typing import cast

from ..core.errors import NotConfiguredError, NotFoundError
from ..core.state import AppState
from ..tasks.task_models import Task, TaskPriority, TaskType, parse_date

CommandEmitter = Callable[[str], None]
CommandHandler2 = Callable[[AppState, list[str]], Awaitable[str]]
CommandHandler3 = Callable[[AppState, list[str], CommandEmitter | None], Awaitable[str]]
CommandHandler = CommandHandler2 | CommandHandler3

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Simple slash-command registry used by the console (/help, /add, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    async def handle(
        self,
        state: AppState,
        line: str,
        emit: CommandEmitter | None = None,
    ) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            nparams = len(inspect.signature(handler).parameters)
        except (TypeError, ValueError):
            nparams = 3

        if nparams >= 3:
            h3 = cast(CommandHandler3, handler)
            return await h3(state, args, emit)

        h2 = cast(CommandHandler2, handler)
        return await h2(state, args)

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


# ---- formatting / parsing helpers ----

_PRIORITY_MARK = {TaskPriority.HIGH: "!", TaskPriority.NORMAL: " ", TaskPriority.LOW: "."}


def format_task(task: Task) -> str:
    box = "[x]" if task.completed else "[ ]"
    kind = "R" if task.type == TaskType.REMINDER else "T"
    indent = "  " * task.depth
    parts = [f"{indent}{box} {task.id[:8]} {kind}{_PRIORITY_MARK[task.priority]} {task.description}"]
    if task.due_date:
        parts.append(f"(due {task.due_date.isoformat()})")
    if task.tags:
        parts.append(" ".join(f"#{t}" for t in sorted(task.tags)))
    return " ".join(parts)


def _resolve_task(state: AppState, ref: str) -> Task:
    """Exact id or unique id prefix (the list shows the first 8 characters)."""
    store = state.task_store
    task = store.get_task_by_id(ref)
    if task is not None:
        return task
    matches = [t for t in store.get_all_tasks() if t.id.startswith(ref)]
    if len(matches) == 1:
        return matches[0]
    if len(matches) > 1:
        raise ValueError(f"Ambiguous task id prefix: {ref}")
    raise NotFoundError(ref)


def parse_task_words(words: list[str]) -> dict[str, object]:
    """
    Turn "/add" arguments into task fields.

    Markers: due:YYYY-MM-DD, !high / !normal / !low, #tag, @reminder.
    Everything else is the description.
    """
    fields: dict[str, object] = {}
    text: list[str] = []
    tags: set[str] = set()
    for w in words:
        if w.startswith("due:") and len(w) > 4:
            fields["due_date"] = parse_date(w[4:])
        elif w.startswith("!") and w[1:].lower() in {p.value for p in TaskPriority}:
            fields["priority"] = TaskPriority(w[1:].lower())
        elif w.startswith("#") and len(w) > 1:
            tags.add(w[1:])
        elif w.lower() == "@reminder":
            fields["type"] = TaskType.REMINDER
        else:
            text.append(w)
    if tags:
        fields["tags"] = frozenset(tags)
    fields["description"] = " ".join(text)
    return fields


# ---- commands ----


async def cmd_help(state: AppState, args: list[str]) -> str:
    return registry.build_help()


async def cmd_list(state: AppState, args: list[str]) -> str:
    """
    /list            -> active tasks as a tree
    /list archived   -> archived tasks
    /list all        -> everything
    """
    store = state.task_store
    mode = args[0].lower() if args else "active"

    if mode == "archived":
        tasks = store.get_archived_tasks()
        if not tasks:
            return "No archived tasks."
        return "\n".join(format_task(t) for t in tasks)

    include_archived = mode == "all"
    lines: list[str] = []

    def walk(task: Task) -> None:
        if task.archived and not include_archived:
            return
        lines.append(format_task(task))
        for child in store.get_child_tasks(task.id):
            walk(child)

    for root in store.get_root_tasks():
        walk(root)
    return "\n".join(lines) if lines else "No tasks."


async def cmd_add(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /add <text> [due:YYYY-MM-DD] [!high|!low] [#tag] [@reminder]"
    try:
        fields = parse_task_words(args)
    except ValueError as e:
        return f"Invalid task: {e}"
    if not fields["description"]:
        return "Task text is empty."
    task_id = await state.task_store.create_task(Task(**fields))  # type: ignore[arg-type]
    return f"Added {task_id[:8]}."


async def cmd_sub(state: AppState, args: list[str]) -> str:
    if len(args) < 2:
        return "Usage: /sub <parent-id> <text> [due:...] [!prio] [#tag]"
    try:
        parent = _resolve_task(state, args[0])
        fields = parse_task_words(args[1:])
        task_id = await state.task_store.create_sub_task(parent.id, **fields)
    except NotFoundError as e:
        return str(e)
    except ValueError as e:
        return f"Cannot add sub-task: {e}"
    return f"Added sub-task {task_id[:8]} under {parent.id[:8]}."


async def cmd_due(state: AppState, args: list[str]) -> str:
    """/due <id> YYYY-MM-DD | none"""
    if len(args) != 2:
        return "Usage: /due <id> <YYYY-MM-DD|none>"
    try:
        task = _resolve_task(state, args[0])
        value = None if args[1].lower() in ("none", "-") else parse_date(args[1])
        await state.task_store.update_task(task.id, {"due_date": value})
    except NotFoundError as e:
        return str(e)
    except ValueError as e:
        return f"Invalid date: {e}"
    return f"Due date of {task.id[:8]} {'cleared' if value is None else 'set to ' + value.isoformat()}."


async def cmd_done(state: AppState, args: list[str]) -> str:
    """Toggle completion."""
    if len(args) != 1:
        return "Usage: /done <id>"
    try:
        task = _resolve_task(state, args[0])
    except (NotFoundError, ValueError) as e:
        return str(e)

    if task.completed:
        await state.task_store.update_task(task.id, {"completed": False, "completion_date": None})
        return f"Reopened {task.id[:8]}."
    await state.task_store.update_task(task.id, {"completed": True, "completion_date": date.today()})
    return f"Completed {task.id[:8]}."


def _single_id_command(action: str, verb: str):
    async def handler(state: AppState, args: list[str]) -> str:
        if len(args) != 1:
            return f"Usage: /{action} <id>"
        try:
            task = _resolve_task(state, args[0])
            await getattr(state.task_store, f"{action}_task")(task.id)
        except (NotFoundError, ValueError) as e:
            return str(e)
        return f"{verb} {task.id[:8]}."

    handler.__name__ = f"cmd_{action}"
    return handler


cmd_archive = _single_id_command("archive", "Archived")
cmd_unarchive = _single_id_command("unarchive", "Unarchived")
cmd_delete = _single_id_command("delete", "Deleted")


async def cmd_status(state: AppState, args: list[str]) -> str:
    st = state.task_store.get_status()
    lines = [
        "Status:",
        f"  Tasks: {st.task_count} (todo={st.todo_count}, reminder={st.reminder_count})",
        f"  Data file: {state.task_store.json_source.path}",
    ]
    if state.task_store.is_github_sync_configured():
        s = state.settings
        lines.append(f"  GitHub: {s.github_owner}/{s.github_repo}:{s.github_path}")
        lines.append(f"  Last push: {state.last_sync_at or 'never'}")
        if state.last_sync_error:
            lines.append(f"  Last error: {state.last_sync_error}")
    else:
        lines.append("  GitHub: not configured")
    return "\n".join(lines)


async def cmd_push(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    if emit:
        emit("[SYNC] Pushing to GitHub...")
    try:
        await state.task_store.push_to_github_now()
    except NotConfiguredError:
        return "GitHub sync is not configured."
    if state.last_sync_error:
        return f"Push failed: {state.last_sync_error}"
    return f"Pushed at {state.last_sync_at}."


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("list", cmd_list, help_text="List tasks: /list [archived|all].", aliases=["ls"])
registry.register("add", cmd_add, help_text="Add a task: /add text [due:YYYY-MM-DD] [!high] [#tag] [@reminder].")
registry.register("sub", cmd_sub, help_text="Add a sub-task: /sub <parent-id> text ...")
registry.register("due", cmd_due, help_text="Set or clear a due date: /due <id> <YYYY-MM-DD|none>.")
registry.register("done", cmd_done, help_text="Toggle completion: /done <id>.")
registry.register("archive", cmd_archive, help_text="Archive a task: /archive <id>.")
registry.register("unarchive", cmd_unarchive, help_text="Restore an archived task: /unarchive <id>.")
registry.register("delete", cmd_delete, help_text="Delete a task: /delete <id>.", aliases=["rm"])
registry.register("status", cmd_status, help_text="Show task counts and sync status.")
registry.register("push", cmd_push, help_text="Push tasks to GitHub now.")
