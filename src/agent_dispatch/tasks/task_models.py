# src/agent_dispatch/tasks/task_models.py

from __future__ import annotations

import copy
import uuid
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from ..errors import ValidationError

SYSTEM_WORKER = "system"


class Priority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @classmethod
    def parse(cls, raw: Priority | str | None) -> Priority:
        """
        Closed set of levels, enforced at the submit boundary.

        None -> MEDIUM. Anything that is not one of the four names raises ValidationError.
        """
        if raw is None:
            return cls.MEDIUM
        if isinstance(raw, Priority):
            return raw
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            raise ValidationError(f"Unknown priority: {raw!r}") from None


# Dispatch order: most urgent first.
PRIORITY_ORDER: tuple[Priority, ...] = (
    Priority.CRITICAL,
    Priority.HIGH,
    Priority.MEDIUM,
    Priority.LOW,
)


class TaskStatus(StrEnum):
    """
    Task lifecycle status.

    queued -> running -> completed
                      -> retrying -> running ... (until attempts run out)
                      -> failed
    queued/retrying -> cancelled
    """

    QUEUED = "queued"
    RUNNING = "running"
    RETRYING = "retrying"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED)

    @classmethod
    def from_db(cls, raw: str | None) -> TaskStatus:
        if not raw:
            return cls.QUEUED
        try:
            return cls(raw)
        except ValueError:
            return cls.QUEUED


class WorkerStatus(StrEnum):
    READY = "ready"
    PAUSED = "paused"
    OFFLINE = "offline"


@dataclass(slots=True, frozen=True)
class PhaseEvent:
    type: str
    description: str
    status: str
    timestamp: float
    worker: str = SYSTEM_WORKER
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class ErrorRecord:
    timestamp: float
    message: str
    worker: str
    phase: str


@dataclass(slots=True)
class ResourceUsage:
    calls: int = 0
    total_size: float = 0.0
    total_processing_time: float = 0.0  # ms


def new_task_id() -> str:
    return f"task_{uuid.uuid4().hex[:12]}"


@dataclass(slots=True)
class TaskRecord:
    id: str
    description: str
    priority: Priority
    created_at: float

    status: TaskStatus = TaskStatus.QUEUED
    attempts: int = 0
    max_attempts: int = 3
    required_capabilities: frozenset[str] = frozenset()
    payload: dict[str, Any] = field(default_factory=dict)

    assigned_worker: str | None = None
    start_time: float | None = None
    end_time: float | None = None
    duration: float | None = None

    phases: list[PhaseEvent] = field(default_factory=list)
    resource_usage: dict[str, ResourceUsage] = field(default_factory=dict)
    errors: list[ErrorRecord] = field(default_factory=list)
    result: Any = None

    def workers_involved(self) -> list[str]:
        """Workers that appear in the audit trail, in order of first appearance."""
        seen: list[str] = []
        for phase in self.phases:
            if phase.worker != SYSTEM_WORKER and phase.worker not in seen:
                seen.append(phase.worker)
        return seen

    def snapshot(self) -> TaskRecord:
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "description": self.description,
            "priority": self.priority.value,
            "status": self.status.value,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "required_capabilities": sorted(self.required_capabilities),
            "payload": dict(self.payload),
            "assigned_worker": self.assigned_worker,
            "created_at": self.created_at,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "duration": self.duration,
            "phases": [
                {
                    "type": p.type,
                    "description": p.description,
                    "status": p.status,
                    "timestamp": p.timestamp,
                    "worker": p.worker,
                    "data": dict(p.data),
                }
                for p in self.phases
            ],
            "resource_usage": {
                kind: {
                    "calls": u.calls,
                    "total_size": u.total_size,
                    "total_processing_time": u.total_processing_time,
                }
                for kind, u in self.resource_usage.items()
            },
            "errors": [
                {"timestamp": e.timestamp, "message": e.message, "worker": e.worker, "phase": e.phase}
                for e in self.errors
            ],
            "result": self.result,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TaskRecord:
        return cls(
            id=str(data["id"]),
            description=str(data.get("description") or ""),
            priority=Priority.parse(data.get("priority")),
            created_at=float(data.get("created_at") or 0.0),
            status=TaskStatus.from_db(data.get("status")),
            attempts=int(data.get("attempts") or 0),
            max_attempts=int(data.get("max_attempts") or 1),
            required_capabilities=frozenset(data.get("required_capabilities") or ()),
            payload=dict(data.get("payload") or {}),
            assigned_worker=data.get("assigned_worker"),
            start_time=data.get("start_time"),
            end_time=data.get("end_time"),
            duration=data.get("duration"),
            phases=[
                PhaseEvent(
                    type=str(p.get("type", "")),
                    description=str(p.get("description", "")),
                    status=str(p.get("status", "info")),
                    timestamp=float(p.get("timestamp") or 0.0),
                    worker=str(p.get("worker") or SYSTEM_WORKER),
                    data=dict(p.get("data") or {}),
                )
                for p in data.get("phases") or []
            ],
            resource_usage={
                str(kind): ResourceUsage(
                    calls=int(u.get("calls") or 0),
                    total_size=float(u.get("total_size") or 0.0),
                    total_processing_time=float(u.get("total_processing_time") or 0.0),
                )
                for kind, u in (data.get("resource_usage") or {}).items()
            },
            errors=[
                ErrorRecord(
                    timestamp=float(e.get("timestamp") or 0.0),
                    message=str(e.get("message", "")),
                    worker=str(e.get("worker") or SYSTEM_WORKER),
                    phase=str(e.get("phase") or "unknown"),
                )
                for e in data.get("errors") or []
            ],
            result=data.get("result"),
        )


@dataclass(slots=True)
class WorkerDescriptor:
    """
    A registered worker ("agent").

    current_load is owned by the scheduler; workers never report their own load.
    executor is optional: without one, completions must come in via report_completion().
    """

    id: str
    capabilities: frozenset[str]
    max_load: int
    status: WorkerStatus = WorkerStatus.READY
    current_load: int = 0
    executor: Any = None
    tasks_handled: int = 0

    def can_accept(self, required: frozenset[str]) -> bool:
        return (
            self.status == WorkerStatus.READY
            and self.current_load < self.max_load
            and required <= self.capabilities
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "capabilities": sorted(self.capabilities),
            "max_load": self.max_load,
            "current_load": self.current_load,
            "status": self.status.value,
            "tasks_handled": self.tasks_handled,
        }
