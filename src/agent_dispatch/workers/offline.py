# src/agent_dispatch/workers/offline.py

from __future__ import annotations

from typing import Any

from ..errors import ExecutionFailure
from ..tasks.task_models import TaskRecord


class EchoWorker:
    """
    Offline deterministic worker used for demos when no external backend is configured.

    Behavior:
    - payload {"fail": true} -> raises ExecutionFailure (handy for exercising retries)
    - otherwise returns a summary of the task, no external calls
    """

    async def execute(self, task: TaskRecord) -> dict[str, Any]:
        if task.payload.get("fail"):
            raise ExecutionFailure(str(task.payload.get("fail_message") or "echo worker asked to fail"))

        text = task.description
        return {
            "echo": text,
            "priority": task.priority.value,
            "attempt": task.attempts + 1,
            "resource_usage": [
                {"kind": "echo", "size": len(text.encode("utf-8")), "processing_time_ms": 0.0},
            ],
        }
