# src/agent_dispatch/errors.py

"""
Error taxonomy for the dispatcher.

Who raises what:
- ValidationError: submit()/register_worker() reject malformed input synchronously.
- WorkerUnavailableError: internal to dispatch; a task without a qualifying worker stays queued.
- ExecutionFailure: raised by workers (or synthesised on timeout); drives retry/fail.
- UnknownTaskError: cancel() on an id the scheduler does not know.
- InvalidTransitionError: lifecycle operation not allowed in the current status.

The tracker's recording primitives never raise UnknownTaskError: they log and ignore.
"""

from __future__ import annotations


class DispatchError(Exception):
    """Base class for all dispatcher errors."""


class ValidationError(DispatchError, ValueError):
    pass


class WorkerUnavailableError(DispatchError):
    pass


class ExecutionFailure(DispatchError):
    def __init__(self, message: str, *, worker_id: str | None = None) -> None:
        super().__init__(message)
        self.worker_id = worker_id


class UnknownTaskError(DispatchError, KeyError):
    def __init__(self, task_id: str) -> None:
        super().__init__(task_id)
        self.task_id = task_id

    def __str__(self) -> str:
        return f"Unknown task: {self.task_id}"


class InvalidTransitionError(DispatchError):
    pass
