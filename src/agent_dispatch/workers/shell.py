# src/agent_dispatch/workers/shell.py

from __future__ import annotations

import asyncio
import logging
import shlex
import subprocess
import time
from pathlib import Path
from typing import Any

from ..errors import ExecutionFailure
from ..tasks.task_models import TaskRecord

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = 124


def _tail(data: bytes, limit: int) -> str:
    text = data.decode("utf-8", errors="replace")
    return text if len(text) <= limit else "..." + text[-limit:]


class ShellWorker:
    """
    Runs a local command for a task.

    payload:
    - "argv": list of strings, or
    - "command": a string split with shlex (no shell is involved)
    - "cwd" (optional)

    Exit code 0 -> success, anything else -> ExecutionFailure.
    The blocking subprocess call runs in a thread so the dispatch loop keeps ticking.
    """

    def __init__(
        self,
        *,
        timeout_seconds: float | None = None,
        output_limit: int = 4000,
        cwd: str | Path | None = None,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self.output_limit = max(0, int(output_limit))
        self.cwd = str(cwd) if cwd is not None else None

    @staticmethod
    def _argv(task: TaskRecord) -> list[str]:
        argv = task.payload.get("argv")
        if argv:
            if not isinstance(argv, list) or not all(isinstance(a, str) and a for a in argv):
                raise ExecutionFailure("payload 'argv' must be a list of non-empty strings")
            return list(argv)

        command = str(task.payload.get("command") or "").strip()
        if not command:
            raise ExecutionFailure("task payload has no 'command' or 'argv'")
        try:
            return shlex.split(command)
        except ValueError as e:
            raise ExecutionFailure(f"cannot parse command: {e}") from e

    def _run(self, argv: list[str], cwd: str | None) -> tuple[int, bytes, bytes]:
        try:
            completed = subprocess.run(
                argv,
                cwd=cwd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                timeout=self.timeout_seconds,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            stdout = e.stdout if e.stdout is not None else b""
            stderr = e.stderr if e.stderr is not None else b""
            return TIMEOUT_EXIT_CODE, stdout, stderr
        except OSError as e:
            raise ExecutionFailure(f"cannot start {argv[0]!r}: {e}") from e
        return completed.returncode, completed.stdout, completed.stderr

    async def execute(self, task: TaskRecord) -> dict[str, Any]:
        argv = self._argv(task)
        cwd = task.payload.get("cwd") or self.cwd

        logger.debug("Task %s: running %s", task.id, argv)
        t0 = time.monotonic()
        code, out, err = await asyncio.to_thread(self._run, argv, cwd)
        elapsed_ms = (time.monotonic() - t0) * 1000.0

        if code != 0:
            detail = _tail(err, 200).strip() or _tail(out, 200).strip()
            msg = f"command exited with code {code}"
            raise ExecutionFailure(f"{msg}: {detail}" if detail else msg)

        return {
            "exit_code": code,
            "stdout": _tail(out, self.output_limit),
            "stderr": _tail(err, self.output_limit),
            "resource_usage": [
                {"kind": "shell", "size": len(out) + len(err), "processing_time_ms": elapsed_ms},
            ],
        }
