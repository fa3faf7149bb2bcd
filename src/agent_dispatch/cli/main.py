# src/agent_dispatch/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, then runs one of:
- console (default): dispatch loop in a background thread + console REPL in the main thread,
- run: submit one task, dispatch until it is terminal, print its report as JSON,
- report: print the system report built from the persistent archive as JSON.
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import signal
import sys
from collections.abc import Sequence
from typing import Any

from ..cli.bootstrap import create_initial_state, load_archive_history
from ..config import get_settings
from ..connectors.console_connector import run_console_loop
from ..connectors.scheduler_runner import start_scheduler_in_background
from ..core.state import AppState
from ..errors import ValidationError
from ..logging_setup import setup_logging
from ..tasks import task_api
from ..tasks.task_models import TaskStatus
from ..tasks.task_scheduler import run_task_scheduler

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_TASK_FAILED = 1
EXIT_INVALID = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="agent-dispatch", description="Priority task dispatcher for worker agents.")
    parser.add_argument("--log-level", default=None, help="Console log level (default: AGENT_DISPATCH_LOG_LEVEL).")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("console", help="Interactive console with the dispatch loop running in the background.")

    run = sub.add_parser("run", help="Submit one task, wait for it, print its report.")
    run.add_argument("description", help="Task description.")
    run.add_argument("--priority", default=None, help="critical | high | medium | low (default: medium).")
    run.add_argument("--max-attempts", type=int, default=None)
    run.add_argument(
        "--capability",
        action="append",
        default=None,
        help="Required worker capability (repeatable). Default: shell with --command, echo otherwise.",
    )
    run.add_argument("--command", dest="shell_command", default=None, help="Shell command for a shell worker.")
    run.add_argument(
        "--wait-seconds",
        type=float,
        default=None,
        help="Give up waiting after this many seconds (default: wait until terminal).",
    )

    report = sub.add_parser("report", help="Print the system report (or one task's report) as JSON.")
    report.add_argument("--task", dest="task_id", default=None, help="Report a single archived task.")

    return parser


def _print_json(data: Any) -> None:
    print(json.dumps(data, ensure_ascii=False, indent=2, default=str))


async def _run_single(state: AppState, task_id: str, wait_seconds: float | None):
    settings = state.settings
    scheduler_task = asyncio.create_task(
        run_task_scheduler(
            state.scheduler,
            interval_seconds=min(0.1, settings.tick_interval_seconds),
            cleanup_interval_seconds=settings.cleanup_interval_seconds,
        )
    )
    try:
        return await task_api.wait_for_task(state, task_id, timeout_seconds=wait_seconds)
    finally:
        scheduler_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await scheduler_task


def cmd_run(state: AppState, args: argparse.Namespace) -> int:
    payload: dict[str, Any] = {}
    capabilities = args.capability
    if args.shell_command:
        payload["command"] = args.shell_command
        capabilities = capabilities or ["shell"]
    else:
        capabilities = capabilities or ["echo"]

    try:
        task_id = task_api.submit_task(
            state,
            args.description,
            priority=args.priority,
            max_attempts=args.max_attempts,
            required_capabilities=capabilities,
            payload=payload,
        )
    except ValidationError as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_INVALID

    record = asyncio.run(_run_single(state, task_id, args.wait_seconds))
    report = task_api.get_task_report(state, task_id)
    if report is not None:
        _print_json(report)

    if record is not None and record.status == TaskStatus.COMPLETED:
        return EXIT_OK
    if record is not None and not record.status.is_terminal:
        logger.warning("Task %s still %s after %.1fs", task_id, record.status.value, args.wait_seconds or 0.0)
    return EXIT_TASK_FAILED


def cmd_report(state: AppState, args: argparse.Namespace) -> int:
    if args.task_id:
        report = task_api.get_task_report(state, args.task_id)
        if report is None:
            print(f"error: unknown task {args.task_id}", file=sys.stderr)
            return EXIT_TASK_FAILED
        _print_json(report)
        return EXIT_OK

    load_archive_history(state)
    _print_json(task_api.get_system_report(state))
    return EXIT_OK


def cmd_console(state: AppState, args: argparse.Namespace) -> int:
    runner = start_scheduler_in_background(state)
    if runner is None:
        return EXIT_TASK_FAILED

    def _handle_signal(signum, _frame) -> None:
        logger.info("Signal %s received, shutting down...", signum)
        raise KeyboardInterrupt

    try:
        signal.signal(signal.SIGTERM, _handle_signal)
    except (ValueError, OSError):
        # Not in the main thread, or the platform lacks SIGTERM.
        pass

    try:
        run_console_loop(state)
    finally:
        runner.stop()
        runner.join(timeout=10.0)
    return EXIT_OK


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    command = args.command or "console"

    settings = get_settings()

    # run/report print JSON on stdout; keep the console log quieter for them.
    level_name = str(args.log_level or getattr(settings, "log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)
    if command != "console" and args.log_level is None:
        console_level = max(console_level, logging.WARNING)

    setup_logging(log_dir=settings.data_dir, console_level=console_level)
    logger.info("Starting %s (%s)...", settings.app_name, command)

    # IMPORTANT: reuse same settings object
    state = create_initial_state(settings=settings, register_workers=command != "report")

    handlers = {"console": cmd_console, "run": cmd_run, "report": cmd_report}
    try:
        return handlers[command](state, args)
    finally:
        logger.info("Bye.")


if __name__ == "__main__":
    raise SystemExit(main())
