# tests/fakes.py

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from typing import Any

from agent_dispatch.errors import ExecutionFailure
from agent_dispatch.tasks.task_models import TaskRecord


class FakeClock:
    """
    Manually advanced epoch clock.

    Passed as `clock=` to the tracker and scheduler so timestamps, durations,
    retry backoff and timeouts are deterministic.
    """

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = float(start)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += float(seconds)
        return self.now


class ScriptedWorker:
    """
    Deterministic Worker for unit tests.

    - Captures every task it was asked to execute
    - Plays back `outcomes` in order: an Exception instance is raised, anything else is returned
    - Once the script runs out, `default` is returned
    """

    def __init__(self, outcomes: Iterable[Any] = (), default: Any = "ok") -> None:
        self.outcomes = list(outcomes)
        self.default = default
        self.calls: list[TaskRecord] = []

    async def execute(self, task: TaskRecord) -> Any:
        self.calls.append(task)
        outcome = self.outcomes.pop(0) if self.outcomes else self.default
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class AlwaysFailingWorker:
    def __init__(self, message: str = "boom") -> None:
        self.message = message
        self.calls = 0

    async def execute(self, task: TaskRecord) -> Any:
        self.calls += 1
        raise ExecutionFailure(self.message)


class BlockingWorker:
    """Never finishes on its own; used for timeout / cancellation tests."""

    def __init__(self) -> None:
        self.started = asyncio.Event()
        self.cancelled = False

    async def execute(self, task: TaskRecord) -> Any:
        self.started.set()
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            self.cancelled = True
            raise
