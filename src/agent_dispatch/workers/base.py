# src/agent_dispatch/workers/base.py

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from ..tasks.task_models import TaskRecord


class CallableWorker:
    """Adapt `async def fn(task) -> Any` to the Worker port."""

    def __init__(self, fn: Callable[[TaskRecord], Awaitable[Any]], *, name: str | None = None) -> None:
        self._fn = fn
        self.name = name or getattr(fn, "__name__", "callable")

    async def execute(self, task: TaskRecord) -> Any:
        return await self._fn(task)

    def __repr__(self) -> str:
        return f"CallableWorker({self.name})"
