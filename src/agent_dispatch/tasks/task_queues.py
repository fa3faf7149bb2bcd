# src/agent_dispatch/tasks/task_queues.py

from __future__ import annotations

from collections import deque

from .task_models import PRIORITY_ORDER, Priority, TaskRecord


class PriorityQueueSet:
    """
    One FIFO queue per priority level.

    A task lives in at most one queue at a time. Not thread-safe on its own:
    the scheduler only touches it under its lock.
    """

    def __init__(self) -> None:
        self._queues: dict[Priority, deque[TaskRecord]] = {p: deque() for p in PRIORITY_ORDER}
        self._members: set[str] = set()

    def __len__(self) -> int:
        return len(self._members)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._members

    def push(self, task: TaskRecord) -> None:
        """Append to the tail of the task's level."""
        if task.id in self._members:
            raise ValueError(f"task {task.id} is already queued")
        self._queues[task.priority].append(task)
        self._members.add(task.id)

    def peek(self, priority: Priority) -> TaskRecord | None:
        q = self._queues[priority]
        return q[0] if q else None

    def pop(self, priority: Priority) -> TaskRecord:
        task = self._queues[priority].popleft()
        self._members.discard(task.id)
        return task

    def remove(self, task_id: str) -> TaskRecord | None:
        if task_id not in self._members:
            return None
        for q in self._queues.values():
            for task in q:
                if task.id == task_id:
                    q.remove(task)
                    self._members.discard(task_id)
                    return task
        return None

    def depths(self) -> dict[str, int]:
        return {p.value: len(self._queues[p]) for p in PRIORITY_ORDER}
