# src/agent_dispatch/tasks/task_tracker.py

from __future__ import annotations

"""
Task tracker.

Owns the audit trail of every task:
- phases / errors / resource usage recording (best-effort: unknown ids are logged, never raised),
- finalize: active map -> completed archive (+ optional persistent archive store),
- aggregate metrics recomputed from the archive window.

The tracker never changes a task's status; the scheduler decides that.
"""

import logging
import threading
import time
from collections import Counter, deque
from collections.abc import Callable, Iterable
from typing import Any

from ..core.ports import TaskArchive
from .task_models import SYSTEM_WORKER, ErrorRecord, PhaseEvent, ResourceUsage, TaskRecord, TaskStatus
from .task_reports import ReportThresholds, SystemSnapshot, TrackerMetrics, task_report

logger = logging.getLogger(__name__)

WEEK_SECONDS = 7 * 24 * 60 * 60

_RAN_STATUSES = (TaskStatus.COMPLETED, TaskStatus.FAILED)


class TaskTracker:
    def __init__(
        self,
        *,
        archive_store: TaskArchive | None = None,
        retention_seconds: float = WEEK_SECONDS,
        max_entries: int = 1000,
        thresholds: ReportThresholds | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._active: dict[str, TaskRecord] = {}
        self._archive: deque[TaskRecord] = deque()
        self._archived_ids: set[str] = set()
        self._lock = threading.RLock()

        self._store = archive_store
        self._retention_s = float(retention_seconds)
        self._max_entries = max(1, int(max_entries))
        self._thresholds = thresholds or ReportThresholds()
        self._clock = clock

        self._total = 0
        self._successful = 0
        self._failed = 0
        self._cancelled = 0
        self._worker_counts: Counter[str] = Counter()

    @property
    def thresholds(self) -> ReportThresholds:
        return self._thresholds

    # ---- registration / recording ----

    def track(self, record: TaskRecord) -> TaskRecord:
        with self._lock:
            if record.id in self._active or record.id in self._archived_ids:
                raise ValueError(f"task {record.id} is already tracked")
            self._active[record.id] = record
            self.add_phase(record.id, "initialization", "Task initialized")
        logger.debug("Tracking task %s (%s)", record.id, record.description)
        return record

    def is_active(self, task_id: str) -> bool:
        with self._lock:
            return task_id in self._active

    def add_phase(
        self,
        task_id: str,
        phase_type: str,
        description: str,
        status: str = "info",
        data: dict[str, Any] | None = None,
    ) -> PhaseEvent | None:
        with self._lock:
            task = self._active.get(task_id)
            if task is None:
                logger.warning("add_phase: unknown or finalized task %s (%s)", task_id, phase_type)
                return None

            data = dict(data or {})
            phase = PhaseEvent(
                type=phase_type,
                description=description,
                status=status,
                timestamp=self._clock(),
                worker=str(data.get("worker") or SYSTEM_WORKER),
                data=data,
            )
            task.phases.append(phase)
        logger.debug("Task %s phase=%s: %s", task_id, phase_type, description)
        return phase

    def record_resource_usage(
        self,
        task_id: str,
        kind: str,
        size: float,
        processing_time_ms: float,
    ) -> ResourceUsage | None:
        with self._lock:
            task = self._active.get(task_id)
            if task is None:
                logger.warning("record_resource_usage: unknown or finalized task %s", task_id)
                return None

            usage = task.resource_usage.get(kind)
            if usage is None:
                usage = task.resource_usage[kind] = ResourceUsage()
            usage.calls += 1
            usage.total_size += float(size)
            usage.total_processing_time += float(processing_time_ms)
        logger.debug("Task %s resource=%s size=%s time=%sms", task_id, kind, size, processing_time_ms)
        return usage

    def record_error(
        self,
        task_id: str,
        error: BaseException | str,
        worker: str = SYSTEM_WORKER,
    ) -> ErrorRecord | None:
        with self._lock:
            task = self._active.get(task_id)
            if task is None:
                logger.warning("record_error: unknown or finalized task %s", task_id)
                return None

            message = str(error) or error.__class__.__name__
            rec = ErrorRecord(
                timestamp=self._clock(),
                message=message,
                worker=worker,
                phase=task.phases[-1].type if task.phases else "unknown",
            )
            task.errors.append(rec)
            self.add_phase(task_id, "error", f"Error: {message}", "error", {"worker": worker})
        logger.info("Task %s error (worker=%s): %s", task_id, worker, message)
        return rec

    # ---- finalize / archive ----

    def finalize(self, task_id: str) -> dict[str, Any] | None:
        """
        Move a terminal task into the archive and return its report.

        Idempotent: a second call (or a call for an unknown id) logs and returns None.
        """
        with self._lock:
            task = self._active.get(task_id)
            if task is None:
                if task_id in self._archived_ids:
                    logger.debug("finalize: task %s already finalized", task_id)
                else:
                    logger.warning("finalize: unknown task %s", task_id)
                return None

            if not task.status.is_terminal:
                logger.warning("finalize: task %s is still %s; ignoring", task_id, task.status.value)
                return None

            del self._active[task_id]
            self._archive.append(task)
            self._archived_ids.add(task_id)
            self._update_metrics(task)
            self._evict(self._clock())

        if self._store is not None:
            try:
                self._store.save_record(task)
            except Exception:
                logger.exception("Archive store save failed task_id=%s", task_id)

        report = task_report(task, self._thresholds)
        logger.info(
            "Task %s finalized status=%s duration=%s",
            task_id,
            task.status.value,
            report["execution_summary"]["duration"],
        )
        return report

    def _update_metrics(self, task: TaskRecord) -> None:
        self._total += 1
        if task.status == TaskStatus.COMPLETED:
            self._successful += 1
        elif task.status == TaskStatus.FAILED:
            self._failed += 1
        elif task.status == TaskStatus.CANCELLED:
            self._cancelled += 1
        for worker in task.workers_involved():
            self._worker_counts[worker] += 1

    def _evict(self, now: float) -> int:
        cutoff = now - self._retention_s
        evicted = 0
        while self._archive and (
            len(self._archive) > self._max_entries
            or (self._archive[0].end_time or self._archive[0].created_at) < cutoff
        ):
            old = self._archive.popleft()
            self._archived_ids.discard(old.id)
            evicted += 1
        if evicted:
            logger.debug("Evicted %d archived tasks", evicted)
        return evicted

    def cleanup_old_tasks(self, now: float | None = None) -> int:
        with self._lock:
            evicted = self._evict(self._clock() if now is None else now)

        if self._store is not None:
            try:
                self._store.prune(
                    older_than=(self._clock() if now is None else now) - self._retention_s,
                    max_entries=self._max_entries,
                )
            except Exception:
                logger.exception("Archive store prune failed")
        return evicted

    # ---- queries ----

    def get(self, task_id: str) -> TaskRecord | None:
        """Active or archived record (live object; callers outside the package get snapshots)."""
        with self._lock:
            task = self._active.get(task_id)
            if task is not None:
                return task
            if task_id in self._archived_ids:
                for t in reversed(self._archive):
                    if t.id == task_id:
                        return t
        return None

    def active_tasks(self) -> list[TaskRecord]:
        with self._lock:
            return list(self._active.values())

    def completed_tasks(self) -> list[TaskRecord]:
        with self._lock:
            return list(self._archive)

    def metrics(self) -> TrackerMetrics:
        with self._lock:
            # Cancelled records carry queue wait, not execution time.
            durations = [t.duration or 0.0 for t in self._archive if t.status in _RAN_STATUSES]
            avg = sum(durations) / len(durations) if durations else 0.0
            return TrackerMetrics(
                total_tasks=self._total,
                successful_tasks=self._successful,
                failed_tasks=self._failed,
                cancelled_tasks=self._cancelled,
                average_duration=avg,
                worker_task_counts=dict(self._worker_counts),
            )

    def analyze_error_patterns(
        self,
        records: Iterable[TaskRecord] | None = None,
        *,
        min_frequency: int = 2,
    ) -> list[dict[str, Any]]:
        """Repeated `worker:phase` error keys over the recent window, most frequent first."""
        if records is None:
            with self._lock:
                records = list(self._archive)[-self._thresholds.health_window :]

        counts: Counter[str] = Counter()
        for task in records:
            for err in task.errors:
                counts[f"{err.worker}:{err.phase}"] += 1

        return [
            {"pattern": key, "frequency": n}
            for key, n in counts.most_common()
            if n >= min_frequency
        ]

    def analyze_performance(self, *, min_tasks: int = 5) -> dict[str, Any] | None:
        """
        Success rate and average duration over the recent window, logged.

        Returns None while fewer than min_tasks completed/failed tasks are archived.
        """
        with self._lock:
            finished = [t for t in self._archive if t.status in _RAN_STATUSES]
            recent = finished[-self._thresholds.health_window :]
            if len(finished) < min_tasks or not recent:
                return None
            success_rate = sum(1 for t in recent if t.status == TaskStatus.COMPLETED) / len(recent)
            avg = sum(t.duration or 0.0 for t in recent) / len(recent)
            patterns = self.analyze_error_patterns(recent)

        logger.info(
            "Performance over last %d tasks: success_rate=%.1f%% avg_duration=%.2fs",
            len(recent),
            success_rate * 100,
            avg,
        )
        if patterns:
            logger.warning("Repeated error patterns: %s", patterns)
        return {
            "window": len(recent),
            "success_rate": success_rate,
            "average_duration": avg,
            "error_patterns": patterns,
        }

    def snapshot(
        self,
        *,
        workers: Iterable[dict[str, Any]] = (),
        queue_depths: dict[str, int] | None = None,
        now: float | None = None,
    ) -> SystemSnapshot:
        with self._lock:
            active = tuple(t.snapshot() for t in self._active.values())
            completed = tuple(t.snapshot() for t in self._archive)
            metrics = self.metrics()
            patterns = tuple(self.analyze_error_patterns())
        return SystemSnapshot(
            active_tasks=active,
            completed_tasks=completed,
            metrics=metrics,
            workers=tuple(workers),
            queue_depths=dict(queue_depths or {}),
            error_patterns=patterns,
            generated_at=self._clock() if now is None else now,
        )

    def load_archive(self, records: Iterable[TaskRecord]) -> int:
        """Seed the archive from persisted records (oldest first); used by the report CLI."""
        loaded = 0
        with self._lock:
            for task in records:
                if task.id in self._archived_ids or task.id in self._active:
                    continue
                self._archive.append(task)
                self._archived_ids.add(task.id)
                self._update_metrics(task)
                loaded += 1
            self._evict(self._clock())
        return loaded
