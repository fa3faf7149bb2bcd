# src/agent_dispatch/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The scheduler and tracker depend on Protocols instead of concrete implementations.
This keeps execution backends and storage swappable and makes testing easier.
"""

from typing import TYPE_CHECKING, Any, Awaitable, Callable, Protocol

if TYPE_CHECKING:
    from ..tasks.task_models import TaskRecord

Clock = Callable[[], float]
# Epoch seconds; time.time in production, a fake in tests.


class Worker(Protocol):
    """
    Execution backend for a registered worker ("agent").

    Contract:
    - execute() receives a snapshot of the task (mutating it has no effect),
    - returning means success; the value becomes TaskRecord.result,
    - raising means failure; str(exc) is recorded in the task's errors.

    The worker never touches scheduler state: the runner reports the outcome
    through the scheduler's completion channel.
    """

    def execute(self, task: TaskRecord) -> Awaitable[Any]: ...


class TaskArchive(Protocol):
    """Persistent archive of finalized tasks."""

    def save_record(self, record: TaskRecord) -> None: ...
    def get_record(self, task_id: str) -> TaskRecord | None: ...
    def list_recent(self, limit: int = 100) -> list[TaskRecord]: ...
    def count_records(self) -> int: ...
    def prune(self, *, older_than: float, max_entries: int) -> int: ...
