# src/agent_dispatch/tasks/task_api.py

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Iterable
from typing import Any

from ..core.ports import Worker
from ..core.state import AppState
from .task_models import Priority, TaskRecord, WorkerDescriptor
from .task_reports import task_report

logger = logging.getLogger(__name__)


def submit_task(
    state: AppState,
    description: str,
    priority: Priority | str | None = Priority.MEDIUM,
    max_attempts: int | None = None,
    required_capabilities: Iterable[str] | None = None,
    payload: dict[str, Any] | None = None,
) -> str:
    """
    Submit a task and return its id.

    Raises ValidationError synchronously; the task never enters a queue then.
    """
    record = state.scheduler.submit(
        description,
        priority=priority,
        max_attempts=max_attempts,
        required_capabilities=required_capabilities,
        payload=payload,
    )
    return record.id


def get_status(state: AppState, task_id: str) -> TaskRecord | None:
    return state.scheduler.get_status(task_id)


def list_active(state: AppState) -> list[TaskRecord]:
    return state.scheduler.list_active()


def get_system_report(state: AppState) -> dict[str, Any]:
    return state.scheduler.system_report()


def get_task_report(state: AppState, task_id: str) -> dict[str, Any] | None:
    """
    Report for one task: in-memory record first, then the persistent archive.
    """
    record = state.scheduler.get_status(task_id)
    if record is None and state.archive is not None:
        try:
            record = state.archive.get_record(task_id)
        except Exception:
            logger.exception("Archive lookup failed task_id=%s", task_id)
            record = None
    if record is None:
        return None
    return task_report(record, state.tracker.thresholds)


def cancel_task(state: AppState, task_id: str) -> TaskRecord:
    return state.scheduler.cancel(task_id)


def register_worker(
    state: AppState,
    worker_id: str,
    capabilities: Iterable[str] = (),
    max_load: int | None = None,
    executor: Worker | None = None,
) -> WorkerDescriptor:
    return state.scheduler.register_worker(worker_id, capabilities, max_load=max_load, executor=executor)


def report_completion(state: AppState, task_id: str, success: bool, result_or_error: Any = None) -> None:
    state.scheduler.report_completion(task_id, success, result_or_error)


async def wait_for_task(
    state: AppState,
    task_id: str,
    *,
    timeout_seconds: float | None = None,
    poll_seconds: float = 0.1,
) -> TaskRecord | None:
    """
    Poll until the task reaches a terminal status (or the timeout elapses).

    Returns the last observed snapshot; None if the id is unknown.
    """
    deadline = None if timeout_seconds is None else time.monotonic() + float(timeout_seconds)
    while True:
        record = state.scheduler.get_status(task_id)
        if record is None or record.status.is_terminal:
            return record
        if deadline is not None and time.monotonic() >= deadline:
            return record
        await asyncio.sleep(max(0.01, float(poll_seconds)))
