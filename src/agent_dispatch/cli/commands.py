# src/agent_dispatch/cli/commands.py

from __future__ import annotations

import inspect
import json
import logging
from collections.abc import Callable
from typing import Any, cast

from ..core.state import AppState
from ..errors import DispatchError, ValidationError
from ..tasks import task_api
from ..tasks.task_models import Priority, TaskRecord
from ..tasks.task_reports import format_duration

CommandEmitter = Callable[[str], None]
CommandHandler2 = Callable[[AppState, list[str]], str]
CommandHandler3 = Callable[[AppState, list[str], CommandEmitter | None], str]
CommandHandler = CommandHandler2 | CommandHandler3

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Simple slash-command registry used by the console (/help, /submit, ...)."""

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
        emit: CommandEmitter | None = None,
    ) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.

        DispatchError raised by a handler (bad priority, unknown task, ...) becomes the reply.
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

        try:
            if nparams >= 3:
                h3 = cast(CommandHandler3, handler)
                return h3(state, args, emit)
            h2 = cast(CommandHandler2, handler)
            return h2(state, args)
        except DispatchError as e:
            logger.debug("Command /%s rejected: %s", name, e)
            return f"Error: {e}"

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


def _split_priority(args: list[str]) -> tuple[Priority | None, list[str]]:
    """Leading arg is a priority if it names one (case-insensitive)."""
    if args:
        try:
            return Priority.parse(args[0]), args[1:]
        except ValidationError:
            pass
    return None, args


def _task_line(task: TaskRecord) -> str:
    worker = task.assigned_worker or "-"
    return (
        f"{task.id} [{task.status.value}] {task.priority.value} "
        f"attempts={task.attempts}/{task.max_attempts} worker={worker}: {task.description}"
    )


def cmd_help(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    return registry.build_help()


def cmd_submit(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """
    /submit [priority] <description>

    Routed to the echo worker (capability "echo").
    """
    priority, rest = _split_priority(args)
    description = " ".join(rest).strip()
    if not description:
        return "Usage: /submit [critical|high|medium|low] <description>"

    task_id = task_api.submit_task(
        state,
        description,
        priority=priority,
        required_capabilities=["echo"],
    )
    return f"Submitted {task_id} ({(priority or Priority.MEDIUM).value})."


def cmd_run(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """/run [priority] <shell command>"""
    priority, rest = _split_priority(args)
    command = " ".join(rest).strip()
    if not command:
        return "Usage: /run [critical|high|medium|low] <shell command>"

    task_id = task_api.submit_task(
        state,
        f"Run: {command}",
        priority=priority,
        required_capabilities=["shell"],
        payload={"command": command},
    )
    return f"Submitted {task_id} ({(priority or Priority.MEDIUM).value})."


def cmd_status(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    if not args:
        return "Usage: /status <task_id>"

    task = task_api.get_status(state, args[0])
    if task is None:
        return f"Unknown task: {args[0]}"

    lines = [_task_line(task)]
    if task.duration is not None:
        lines.append(f"  duration: {format_duration(task.duration)}")
    if task.phases:
        last = task.phases[-1]
        lines.append(f"  last phase: {last.type} ({last.status}) {last.description}")
    if task.errors:
        lines.append(f"  last error: {task.errors[-1].message}")
    if task.result is not None:
        lines.append(f"  result: {json.dumps(task.result, ensure_ascii=False, default=str)[:500]}")
    return "\n".join(lines)


def cmd_active(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    tasks = task_api.list_active(state)
    if not tasks:
        return "No active tasks."
    return "\n".join([f"Active tasks ({len(tasks)}):"] + [f"  {_task_line(t)}" for t in tasks])


def cmd_queues(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    depths = state.scheduler.queue_depths()
    running = state.scheduler.running_count
    parts = ", ".join(f"{k}={v}" for k, v in depths.items())
    return f"Queues: {parts}; running={running}"


def cmd_workers(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    workers = state.scheduler.list_workers()
    if not workers:
        return "No workers registered."
    lines = ["Workers:"]
    for w in workers:
        caps = ", ".join(w["capabilities"]) or "-"
        lines.append(
            f"  {w['id']} [{w['status']}] load={w['current_load']}/{w['max_load']} "
            f"handled={w['tasks_handled']} caps: {caps}"
        )
    return "\n".join(lines)


def cmd_cancel(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    if not args:
        return "Usage: /cancel <task_id>"
    task = task_api.cancel_task(state, args[0])
    return f"Cancelled {task.id}."


def _render(report: dict[str, Any]) -> str:
    return json.dumps(report, ensure_ascii=False, indent=2, default=str)


def cmd_report(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """
    /report            -> system status report
    /report <task_id>  -> report for one task (active or archived)
    """
    if args:
        report = task_api.get_task_report(state, args[0])
        if report is None:
            return f"Unknown task: {args[0]}"
        return _render(report)
    return _render(task_api.get_system_report(state))


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("submit", cmd_submit, help_text="Queue a task for the echo worker: /submit [priority] <description>.")
registry.register("run", cmd_run, help_text="Queue a shell command: /run [priority] <command>.")
registry.register("status", cmd_status, help_text="Show one task: /status <task_id>.")
registry.register("active", cmd_active, help_text="List queued/running/retrying tasks.")
registry.register("queues", cmd_queues, help_text="Show queue depths per priority.")
registry.register("workers", cmd_workers, help_text="Show registered workers and their load.")
registry.register("cancel", cmd_cancel, help_text="Cancel a queued or retrying task: /cancel <task_id>.")
registry.register("report", cmd_report, help_text="System report, or one task: /report [task_id].")
