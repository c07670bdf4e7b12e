# src/persona_tasks/cli/commands.py

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable
from datetime import datetime
from typing import cast

from ..core.state import AppState
from ..tasks.task_models import ServiceTask, Task, TaskStatus

CommandEmitter = Callable[[str], None]
CommandHandler4 = Callable[[AppState, list[str], str | None, str | None], str]
CommandHandler5 = Callable[
    [AppState, list[str], str | None, str | None, CommandEmitter | None], str
]
CommandHandler = CommandHandler4 | CommandHandler5

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Simple slash-command registry used by connectors (/help, /tasks, ...)."""

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

    def handle(
        self,
        state: AppState,
        line: str,
        user_id: str | None = None,
        room_id: str | None = None,
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
        except Exception:
            nparams = 5

        if nparams >= 5:
            h5 = cast(CommandHandler5, handler)
            return h5(state, args, user_id, room_id, emit)

        h4 = cast(CommandHandler4, handler)
        return h4(state, args, user_id, room_id)

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


def _ts_local(ts: float | None) -> str:
    if ts is None:
        return "-"
    return datetime.fromtimestamp(ts).astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _task_line(task: Task) -> str:
    cmd = task.command if len(task.command) <= 48 else task.command[:45] + "..."
    return f"{task.task_id}  {task.status.value:<17} {task.task_type.value:<13} {cmd}"


def cmd_help(
    state: AppState,
    args: list[str],
    user_id: str | None,
    room_id: str | None,
    emit: CommandEmitter | None = None,
) -> str:
    return registry.build_help()


def cmd_status(
    state: AppState,
    args: list[str],
    user_id: str | None,
    room_id: str | None,
    emit: CommandEmitter | None = None,
) -> str:
    s = state.settings
    llm_kind = state.llm.__class__.__name__

    counts: dict[str, int] = {}
    count_by_status = getattr(state.task_store, "count_by_status", None)
    if callable(count_by_status):
        try:
            counts = count_by_status()
        except Exception:
            logger.exception("count_by_status failed")

    by_status = ", ".join(f"{st.value}={counts.get(st.value, 0)}" for st in TaskStatus)
    return (
        "Status:\n"
        f"  LLM: {llm_kind} (classifier={s.classifier_model}, image={s.image_model})\n"
        f"  Loops: processor {s.processor_interval_seconds:.1f}s, monitor {s.monitor_interval_seconds:.1f}s\n"
        f"  Retries: max {s.task_max_retries}, requeue {'ON' if s.task_requeue_failed else 'OFF'}, "
        f"max age {s.task_max_age_seconds:.0f}s\n"
        f"  Tasks: {by_status}"
    )


def cmd_tasks(
    state: AppState,
    args: list[str],
    user_id: str | None,
    room_id: str | None,
    emit: CommandEmitter | None = None,
) -> str:
    """
    /tasks       -> last 10 tasks of the current user
    /tasks <n>   -> last n tasks
    """
    if not user_id:
        return "No user_id in this context."

    limit = 10
    if args:
        try:
            limit = max(1, min(100, int(args[0])))
        except ValueError:
            return "Usage: /tasks [n]"

    tasks = state.task_store.get_recent_tasks(channel_user_id=user_id, limit=limit)
    if not tasks:
        return f"No tasks for user_id={user_id}."
    lines = [f"Recent tasks for {user_id}:"]
    lines.extend(_task_line(t) for t in tasks)
    return "\n".join(lines)


def cmd_task(
    state: AppState,
    args: list[str],
    user_id: str | None,
    room_id: str | None,
) -> str:
    """/task <id> -> one task in detail"""
    if not args:
        return "Usage: /task <task_id>"

    task = state.task_store.get_task(args[0])
    if task is None:
        return f"Task not found: {args[0]}"

    lines = [
        f"Task {task.task_id}",
        f"  type: {task.task_type.value}",
        f"  status: {task.status.value}",
        f"  channel: {task.channel_id} (user {task.channel_user_id})",
        f"  command: {task.command}",
        f"  created: {_ts_local(task.created_at)}",
        f"  completed: {_ts_local(task.completed_at)}",
        f"  retries: {task.retries}/{task.max_retries}",
        f"  notified: {task.notified}",
        f"  result: {task.result or '-'}",
    ]
    if isinstance(task, ServiceTask):
        svc = task.external_service
        lines.append(f"  service: {svc.service_name} ({svc.status.value})")
        if svc.error:
            lines.append(f"  error: {svc.error}")
    return "\n".join(lines)


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("status", cmd_status, help_text="Show pipeline settings and task counts per status.")
registry.register("tasks", cmd_tasks, help_text="List your recent tasks: /tasks [n].")
registry.register("task", cmd_task, help_text="Show one task in detail: /task <task_id>.")
