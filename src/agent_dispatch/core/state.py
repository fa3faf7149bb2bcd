# src/agent_dispatch/core/state.py

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any

from ..tasks.task_scheduler import TaskScheduler
from ..tasks.task_store import TaskArchiveStore
from ..tasks.task_tracker import TaskTracker


@dataclass
class AppState:
    """
    Everything a running process shares, built once in cli/bootstrap.py.

    `lock` serializes console commands against each other; the scheduler has its
    own lock for queue/record mutation.
    """

    settings: Any
    scheduler: TaskScheduler
    archive: TaskArchiveStore | None = None
    lock: threading.RLock = field(default_factory=threading.RLock)

    @property
    def tracker(self) -> TaskTracker:
        return self.scheduler.tracker
