# src/agent_dispatch/tasks/task_scheduler.py

from __future__ import annotations

"""
Task scheduler.

A small polling dispatcher that, on every tick:
- applies worker outcomes delivered through the completion channel,
- fails running tasks that exceeded the timeout,
- re-queues retries whose backoff has elapsed,
- assigns queued tasks to workers in priority order (critical > high > medium > low),
  under a global concurrency cap and a per-worker load cap.

Everything that mutates queues, records or worker load happens under one lock
(the single writer). Workers run elsewhere and only ever report back through
report_completion(), which is applied on the next tick.

Executing a task (what a worker "does") belongs to the Worker implementation, not the scheduler.
"""

import asyncio
import itertools
import logging
import threading
import time
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from ..core.ports import Clock, Worker
from ..errors import (
    ExecutionFailure,
    InvalidTransitionError,
    UnknownTaskError,
    ValidationError,
    WorkerUnavailableError,
)
from .task_models import (
    PRIORITY_ORDER,
    Priority,
    TaskRecord,
    TaskStatus,
    WorkerDescriptor,
    WorkerStatus,
    new_task_id,
)
from .task_queues import PriorityQueueSet
from .task_reports import SystemSnapshot, system_status_report
from .task_tracker import TaskTracker

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SchedulerConfig:
    max_concurrent_tasks: int = 50
    max_tasks_per_worker: int = 5
    retry_attempts: int = 3
    retry_delay_seconds: float = 1.0
    task_timeout_seconds: float = 300.0


@dataclass(frozen=True, slots=True)
class Assignment:
    """
    A task handed to a worker on this tick.

    task is a snapshot; token identifies this particular run so that a late
    completion from an abandoned run (e.g. after a timeout) can be told apart.
    """

    task: TaskRecord
    worker_id: str
    token: int
    executor: Worker | None


@dataclass(slots=True)
class TickResult:
    assignments: list[Assignment] = field(default_factory=list)
    abandoned: list[int] = field(default_factory=list)  # run tokens to cancel
    finished: list[str] = field(default_factory=list)  # task ids finalized this tick


@dataclass(slots=True)
class _Run:
    task: TaskRecord
    worker_id: str
    token: int
    started_at: float


@dataclass(frozen=True, slots=True)
class _Completion:
    task_id: str
    success: bool
    payload: Any
    token: int | None


class TaskScheduler:
    def __init__(
        self,
        tracker: TaskTracker,
        config: SchedulerConfig | None = None,
        *,
        clock: Clock = time.time,
    ) -> None:
        self.tracker = tracker
        self.config = config or SchedulerConfig()
        self._clock = clock

        self._lock = threading.RLock()
        self._queues = PriorityQueueSet()
        self._tasks: dict[str, TaskRecord] = {}  # every non-terminal task
        self._running: dict[str, _Run] = {}
        self._retry: dict[str, tuple[float, TaskRecord]] = {}  # task_id -> (eligible_at, task)
        self._workers: dict[str, WorkerDescriptor] = {}  # registration order matters
        self._completions: deque[_Completion] = deque()
        self._tokens = itertools.count(1)

    # ---- submission ----

    def submit(
        self,
        description: str,
        priority: Priority | str | None = Priority.MEDIUM,
        max_attempts: int | None = None,
        required_capabilities: Iterable[str] | None = None,
        payload: dict[str, Any] | None = None,
    ) -> TaskRecord:
        if description is not None and not isinstance(description, str):
            raise ValidationError(f"description must be a string, got {type(description).__name__}")
        desc = (description or "").strip()
        if not desc:
            raise ValidationError("description is required")

        prio = Priority.parse(priority)

        if max_attempts is None:
            attempts = int(self.config.retry_attempts)
        else:
            try:
                attempts = int(max_attempts)
            except (TypeError, ValueError):
                raise ValidationError(f"max_attempts must be an integer, got {max_attempts!r}") from None
        if attempts < 1:
            raise ValidationError("max_attempts must be >= 1")

        if isinstance(required_capabilities, str):
            required_capabilities = [required_capabilities]
        caps = frozenset(c.strip() for c in (required_capabilities or ()) if c and c.strip())

        if payload is not None and not isinstance(payload, dict):
            raise ValidationError("payload must be a dict")

        record = TaskRecord(
            id=new_task_id(),
            description=desc,
            priority=prio,
            created_at=self._clock(),
            max_attempts=attempts,
            required_capabilities=caps,
            payload=dict(payload or {}),
        )

        with self._lock:
            self.tracker.track(record)
            self._tasks[record.id] = record
            self._queues.push(record)
            self.tracker.add_phase(
                record.id,
                "queued",
                f"Queued at priority {prio.value}",
                "info",
                {"priority": prio.value},
            )
            depth = self._queues.depths()[prio.value]

        logger.info("Task %s queued priority=%s depth=%d: %s", record.id, prio.value, depth, desc)
        return record.snapshot()

    def cancel(self, task_id: str) -> TaskRecord:
        """
        Cancel a task that is not running.

        Only queued/retrying tasks can be cancelled; a running task needs
        cooperative worker support, which the Worker port does not offer.
        """
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                archived = self.tracker.get(task_id)
                if archived is not None:
                    raise InvalidTransitionError(f"task {task_id} is already {archived.status.value}")
                raise UnknownTaskError(task_id)

            if task.status == TaskStatus.RUNNING:
                raise InvalidTransitionError(f"task {task_id} is running and cannot be cancelled")

            if self._queues.remove(task_id) is None:
                self._retry.pop(task_id, None)

            task.status = TaskStatus.CANCELLED
            self._stamp_end(task, self._clock())
            self.tracker.add_phase(task_id, "cancellation", "Task cancelled", "warning")
            self._finalize(task)

        logger.info("Task %s cancelled", task_id)
        return task.snapshot()

    # ---- workers ----

    def register_worker(
        self,
        worker_id: str,
        capabilities: Iterable[str] = (),
        *,
        max_load: int | None = None,
        executor: Worker | None = None,
        status: WorkerStatus | str = WorkerStatus.READY,
    ) -> WorkerDescriptor:
        wid = (worker_id or "").strip()
        if not wid:
            raise ValidationError("worker id is required")

        load = self.config.max_tasks_per_worker if max_load is None else int(max_load)
        if load < 1:
            raise ValidationError("max_load must be >= 1")

        try:
            st = WorkerStatus(status)
        except ValueError:
            raise ValidationError(f"Unknown worker status: {status!r}") from None

        if isinstance(capabilities, str):
            capabilities = [capabilities]
        desc = WorkerDescriptor(
            id=wid,
            capabilities=frozenset(c.strip() for c in capabilities if c and c.strip()),
            max_load=load,
            status=st,
            executor=executor,
        )

        with self._lock:
            if wid in self._workers:
                raise ValidationError(f"worker {wid} is already registered")
            self._workers[wid] = desc

        logger.info(
            "Worker %s registered capabilities=%s max_load=%d executor=%s",
            wid,
            sorted(desc.capabilities),
            load,
            type(executor).__name__ if executor is not None else None,
        )
        return desc

    def unregister_worker(self, worker_id: str) -> None:
        with self._lock:
            w = self._workers.get(worker_id)
            if w is None:
                raise ValidationError(f"Unknown worker: {worker_id}")
            if w.current_load > 0:
                raise InvalidTransitionError(f"worker {worker_id} still has {w.current_load} running tasks")
            del self._workers[worker_id]
        logger.info("Worker %s unregistered", worker_id)

    def set_worker_status(self, worker_id: str, status: WorkerStatus | str) -> None:
        try:
            st = WorkerStatus(status)
        except ValueError:
            raise ValidationError(f"Unknown worker status: {status!r}") from None
        with self._lock:
            w = self._workers.get(worker_id)
            if w is None:
                raise ValidationError(f"Unknown worker: {worker_id}")
            w.status = st
        logger.info("Worker %s -> %s", worker_id, st.value)

    def list_workers(self) -> list[dict[str, Any]]:
        with self._lock:
            return [w.to_dict() for w in self._workers.values()]

    def select_worker(self, task: TaskRecord) -> WorkerDescriptor | None:
        """
        Least-loaded ready worker with spare capacity and every required capability.

        Ties go to the worker registered first.
        """
        best: WorkerDescriptor | None = None
        for w in self._workers.values():
            if not w.can_accept(task.required_capabilities):
                continue
            if best is None or w.current_load < best.current_load:
                best = w
        return best

    def _require_worker(self, task: TaskRecord) -> WorkerDescriptor:
        worker = self.select_worker(task)
        if worker is None:
            raise WorkerUnavailableError(f"No qualifying worker for task {task.id}")
        return worker

    # ---- completion channel ----

    def report_completion(
        self,
        task_id: str,
        success: bool,
        result_or_error: Any = None,
        *,
        token: int | None = None,
    ) -> None:
        """
        Deliver a worker outcome. Safe to call from any thread or coroutine.

        The outcome is applied on the next tick; outcomes for tasks that are no
        longer running (or for a stale run token) are logged and dropped there.
        """
        self._completions.append(_Completion(task_id, bool(success), result_or_error, token))
        logger.debug("Completion queued task_id=%s success=%s", task_id, success)

    # ---- the tick ----

    def tick(self, now: float | None = None) -> TickResult:
        result = TickResult()
        with self._lock:
            now = self._clock() if now is None else now
            self._drain_completions(now, result)
            self._check_timeouts(now, result)
            self._promote_retries(now)
            self._dispatch(now, result)
        return result

    def _drain_completions(self, now: float, result: TickResult) -> None:
        while self._completions:
            c = self._completions.popleft()
            run = self._running.get(c.task_id)
            if run is None:
                logger.warning("Ignoring completion for task %s: not running", c.task_id)
                continue
            if c.token is not None and c.token != run.token:
                logger.info("Ignoring stale completion for task %s (token %s != %s)", c.task_id, c.token, run.token)
                continue

            if c.success:
                self._on_success(run, c.payload, now, result)
            else:
                self._on_failure(run, c.payload, now, result)

    def _check_timeouts(self, now: float, result: TickResult) -> None:
        limit = float(self.config.task_timeout_seconds)
        for run in list(self._running.values()):
            if now - run.started_at <= limit:
                continue
            result.abandoned.append(run.token)
            logger.warning("Task %s timed out on worker %s after %.1fs", run.task.id, run.worker_id, now - run.started_at)
            self.tracker.add_phase(
                run.task.id,
                "timeout",
                f"Execution exceeded {limit:.0f}s",
                "error",
                {"worker": run.worker_id},
            )
            self._on_failure(
                run,
                ExecutionFailure("Task execution timed out", worker_id=run.worker_id),
                now,
                result,
            )

    def _promote_retries(self, now: float) -> None:
        due = sorted(
            (eligible_at, task_id) for task_id, (eligible_at, _) in self._retry.items() if eligible_at <= now
        )
        for _, task_id in due:
            _, task = self._retry.pop(task_id)
            self._queues.push(task)
            self.tracker.add_phase(task_id, "requeued", f"Re-queued for attempt {task.attempts + 1}", "info")
            logger.debug("Task %s re-queued at priority %s", task_id, task.priority.value)

    def _dispatch(self, now: float, result: TickResult) -> None:
        cap = int(self.config.max_concurrent_tasks)
        for prio in PRIORITY_ORDER:
            while len(self._running) < cap:
                task = self._queues.peek(prio)
                if task is None:
                    break
                try:
                    worker = self._require_worker(task)
                except WorkerUnavailableError as e:
                    # Stays at the head of its level; lower levels still get a chance.
                    logger.debug("%s; level %s skipped", e, prio.value)
                    break
                self._queues.pop(prio)
                result.assignments.append(self._assign(task, worker, now))

    def _assign(self, task: TaskRecord, worker: WorkerDescriptor, now: float) -> Assignment:
        token = next(self._tokens)
        attempt = task.attempts + 1

        task.status = TaskStatus.RUNNING
        task.assigned_worker = worker.id
        if task.start_time is None:
            task.start_time = now
        worker.current_load += 1
        self._running[task.id] = _Run(task=task, worker_id=worker.id, token=token, started_at=now)

        self.tracker.add_phase(
            task.id,
            "task_execution",
            f"Assigned to worker {worker.id} (attempt {attempt}/{task.max_attempts})",
            "running",
            {"worker": worker.id, "attempt": attempt},
        )
        logger.info("Task %s -> running on %s (attempt %d/%d)", task.id, worker.id, attempt, task.max_attempts)
        return Assignment(task=task.snapshot(), worker_id=worker.id, token=token, executor=worker.executor)

    # ---- outcomes ----

    def _release(self, run: _Run) -> None:
        self._running.pop(run.task.id, None)
        w = self._workers.get(run.worker_id)
        if w is not None:
            w.current_load = max(0, w.current_load - 1)
            w.tasks_handled += 1

    def _on_success(self, run: _Run, payload: Any, now: float, result: TickResult) -> None:
        task = run.task
        self._release(run)

        task.status = TaskStatus.COMPLETED
        task.result = payload
        self._stamp_end(task, now)
        self.tracker.add_phase(task.id, "completion", "Task completed", "success", {"worker": run.worker_id})
        self._finalize(task)
        result.finished.append(task.id)
        logger.info("Task %s -> completed on %s", task.id, run.worker_id)

    def _on_failure(self, run: _Run, error: Any, now: float, result: TickResult) -> None:
        task = run.task
        self._release(run)

        if error is None or (isinstance(error, str) and not error.strip()):
            error = "Task execution failed"
        self.tracker.record_error(task.id, error, run.worker_id)
        task.attempts += 1

        if task.attempts < task.max_attempts:
            delay = float(self.config.retry_delay_seconds) * task.attempts
            task.status = TaskStatus.RETRYING
            self._retry[task.id] = (now + delay, task)
            self.tracker.add_phase(
                task.id,
                "retry_scheduled",
                f"Attempt {task.attempts}/{task.max_attempts} failed; retry in {delay:.1f}s",
                "warning",
                {"eligible_at": now + delay},
            )
            logger.info("Task %s -> retrying in %.1fs (attempt %d/%d failed)", task.id, delay, task.attempts, task.max_attempts)
            return

        task.status = TaskStatus.FAILED
        self._stamp_end(task, now)
        self.tracker.add_phase(task.id, "failure", f"Task failed after {task.attempts} attempts", "error")
        self._finalize(task)
        result.finished.append(task.id)
        logger.warning("Task %s -> failed after %d attempts", task.id, task.attempts)

    @staticmethod
    def _stamp_end(task: TaskRecord, now: float) -> None:
        task.end_time = now
        start = task.start_time if task.start_time is not None else task.created_at
        task.duration = max(0.0, now - start)

    def _finalize(self, task: TaskRecord) -> None:
        self._tasks.pop(task.id, None)
        self.tracker.finalize(task.id)

    # ---- queries ----

    def get_status(self, task_id: str) -> TaskRecord | None:
        with self._lock:
            task = self.tracker.get(task_id)
            return task.snapshot() if task is not None else None

    def list_active(self) -> list[TaskRecord]:
        with self._lock:
            return [t.snapshot() for t in self._tasks.values()]

    def queue_depths(self) -> dict[str, int]:
        with self._lock:
            depths = self._queues.depths()
            depths["retry_wait"] = len(self._retry)
            return depths

    @property
    def running_count(self) -> int:
        with self._lock:
            return len(self._running)

    def system_snapshot(self) -> SystemSnapshot:
        with self._lock:
            return self.tracker.snapshot(
                workers=self.list_workers(),
                queue_depths=self.queue_depths(),
                now=self._clock(),
            )

    def system_report(self) -> dict[str, Any]:
        return system_status_report(self.system_snapshot(), self.tracker.thresholds)


async def _execute(scheduler: TaskScheduler, assignment: Assignment) -> None:
    executor = assignment.executor
    task_id = assignment.task.id
    try:
        value = await executor.execute(assignment.task)
    except asyncio.CancelledError:
        logger.debug("Execution of task %s (token %s) cancelled", task_id, assignment.token)
        raise
    except Exception as e:
        logger.info("Worker %s failed task %s: %s", assignment.worker_id, task_id, e)
        scheduler.report_completion(task_id, False, e, token=assignment.token)
        return

    if isinstance(value, dict) and "resource_usage" in value:
        value = dict(value)
        for sample in value.pop("resource_usage") or ():
            try:
                scheduler.tracker.record_resource_usage(
                    task_id,
                    str(sample.get("kind") or assignment.worker_id),
                    sample.get("size", 0),
                    sample.get("processing_time_ms", 0.0),
                )
            except (AttributeError, TypeError, ValueError):
                logger.warning("Task %s: malformed resource sample %r", task_id, sample)
    scheduler.report_completion(task_id, True, value, token=assignment.token)


async def run_task_scheduler(
        scheduler: TaskScheduler,
        *,
        interval_seconds: float = 1.0,
        cleanup_interval_seconds: float = 300.0,
) -> None:
    """
    Cooperative dispatch loop.

    Every interval_seconds:
    - scheduler.tick()
    - launch executor coroutines for new assignments that have one
      (assignments without an executor wait for an external report_completion)
    - cancel runs the tick abandoned because of a timeout
    Every cleanup_interval_seconds: retention sweep of the completed archive
    and a logged performance summary of the recent window.

    To stop the scheduler, cancel the coroutine/task.
    """
    sleep_s = max(0.01, float(interval_seconds))
    cleanup_s = max(1.0, float(cleanup_interval_seconds))
    inflight: dict[int, asyncio.Task[None]] = {}
    last_cleanup = time.monotonic()

    logger.info("Scheduler loop started (interval=%.2fs)", sleep_s)
    try:
        while True:
            try:
                tick = scheduler.tick()
            except Exception:
                logger.exception("scheduler tick failed")
                tick = TickResult()

            for token in tick.abandoned:
                job = inflight.pop(token, None)
                if job is not None:
                    job.cancel()

            for a in tick.assignments:
                if a.executor is None:
                    continue
                job = asyncio.create_task(_execute(scheduler, a), name=f"execute-{a.task.id}")
                inflight[a.token] = job
                job.add_done_callback(lambda _j, tok=a.token: inflight.pop(tok, None))

            if time.monotonic() - last_cleanup >= cleanup_s:
                last_cleanup = time.monotonic()
                try:
                    scheduler.tracker.cleanup_old_tasks()
                    scheduler.tracker.analyze_performance()
                except Exception:
                    logger.exception("archive maintenance failed")

            await asyncio.sleep(sleep_s)
    finally:
        jobs = list(inflight.values())
        for job in jobs:
            job.cancel()
        if jobs:
            await asyncio.gather(*jobs, return_exceptions=True)
        logger.info("Scheduler loop stopped (%d executions cancelled)", len(jobs))
