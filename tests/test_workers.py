# tests/test_workers.py

from __future__ import annotations

import shlex
import sys
from types import SimpleNamespace

import httpx
import openai
import pytest

from agent_dispatch.errors import ExecutionFailure
from agent_dispatch.tasks.task_models import Priority, TaskRecord
from agent_dispatch.workers.base import CallableWorker
from agent_dispatch.workers.llm import LLMWorker
from agent_dispatch.workers.offline import EchoWorker
from agent_dispatch.workers.shell import TIMEOUT_EXIT_CODE, ShellWorker


def _task(description: str = "do it", **payload) -> TaskRecord:
    return TaskRecord(
        id="task_test",
        description=description,
        priority=Priority.HIGH,
        created_at=0.0,
        payload=payload,
    )


def _py(code: str) -> list[str]:
    return [sys.executable, "-c", code]


# ---- echo / callable ----


@pytest.mark.asyncio
async def test_echo_worker_returns_summary() -> None:
    result = await EchoWorker().execute(_task("hello"))

    assert result["echo"] == "hello"
    assert result["priority"] == "high"
    assert result["attempt"] == 1
    assert result["resource_usage"][0]["kind"] == "echo"
    assert result["resource_usage"][0]["size"] == 5


@pytest.mark.asyncio
async def test_echo_worker_can_be_asked_to_fail() -> None:
    with pytest.raises(ExecutionFailure, match="nope"):
        await EchoWorker().execute(_task(fail=True, fail_message="nope"))


@pytest.mark.asyncio
async def test_callable_worker_adapts_coroutine() -> None:
    async def double(task: TaskRecord) -> int:
        return len(task.description) * 2

    worker = CallableWorker(double)
    assert worker.name == "double"
    assert await worker.execute(_task("abc")) == 6


# ---- shell ----


@pytest.mark.asyncio
async def test_shell_worker_success_with_argv() -> None:
    result = await ShellWorker().execute(_task(argv=_py("print('hi')")))

    assert result["exit_code"] == 0
    assert result["stdout"].strip() == "hi"
    assert result["resource_usage"][0]["kind"] == "shell"


@pytest.mark.asyncio
async def test_shell_worker_splits_command_string() -> None:
    command = " ".join(shlex.quote(a) for a in _py("import sys; sys.stdout.write('a b')"))
    result = await ShellWorker().execute(_task(command=command))
    assert result["stdout"] == "a b"


@pytest.mark.asyncio
async def test_shell_worker_nonzero_exit_is_failure() -> None:
    code = "import sys; sys.stderr.write('bad input'); sys.exit(3)"
    with pytest.raises(ExecutionFailure, match="code 3: bad input"):
        await ShellWorker().execute(_task(argv=_py(code)))


@pytest.mark.asyncio
async def test_shell_worker_timeout_maps_to_124() -> None:
    worker = ShellWorker(timeout_seconds=0.2)
    with pytest.raises(ExecutionFailure, match=f"code {TIMEOUT_EXIT_CODE}"):
        await worker.execute(_task(argv=_py("import time; time.sleep(5)")))


@pytest.mark.asyncio
async def test_shell_worker_rejects_missing_or_bad_command(tmp_path) -> None:
    with pytest.raises(ExecutionFailure, match="no 'command'"):
        await ShellWorker().execute(_task())
    with pytest.raises(ExecutionFailure, match="argv"):
        await ShellWorker().execute(_task(argv="not a list"))
    with pytest.raises(ExecutionFailure, match="cannot start"):
        await ShellWorker().execute(_task(argv=[str(tmp_path / "no-such-binary")]))


@pytest.mark.asyncio
async def test_shell_worker_truncates_output() -> None:
    result = await ShellWorker(output_limit=10).execute(_task(argv=_py("print('x' * 100)")))
    assert result["stdout"].startswith("...")
    assert len(result["stdout"]) == 13


# ---- llm ----


def _response(content: str, tokens: int = 7):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(total_tokens=tokens),
    )


def _status_error(cls, status: int):
    request = httpx.Request("POST", "https://example.invalid/v1/chat/completions")
    response = httpx.Response(status, request=request)
    return cls("err", response=response, body=None)


class FakeCompletions:
    def __init__(self, script: dict[str, list]) -> None:
        self.script = script
        self.calls: list[dict] = []

    def create(self, *, model: str, messages: list[dict]):
        self.calls.append({"model": model, "messages": messages})
        outcome = self.script[model].pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _llm(script: dict[str, list]) -> tuple[LLMWorker, FakeCompletions]:
    completions = FakeCompletions(script)
    client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    worker = LLMWorker(
        api_key="sk-test",
        base_url="https://example.invalid/v1",
        models=list(script),
        client=client,
    )
    return worker, completions


@pytest.mark.asyncio
async def test_llm_worker_uses_first_model() -> None:
    worker, completions = _llm({"m1": [_response("  done  ", tokens=12)], "m2": []})

    result = await worker.execute(_task("summarise", prompt="Summarise this"))

    assert result["model"] == "m1"
    assert result["content"] == "done"
    usage = result["resource_usage"][0]
    assert (usage["kind"], usage["size"]) == ("llm", 12)
    assert usage["processing_time_ms"] >= 0
    assert completions.calls[0]["messages"][-1] == {"role": "user", "content": "Summarise this"}


@pytest.mark.asyncio
async def test_llm_worker_falls_back_on_rate_limit_and_404() -> None:
    worker, completions = _llm(
        {
            "gone": [_status_error(openai.NotFoundError, 404)],
            "busy": [_status_error(openai.RateLimitError, 429)],
            "ok": [_response("fine"), _response("again")],
        }
    )

    first = await worker.execute(_task())
    assert first["model"] == "ok"

    # The 404 model is skipped on the next call; the rate-limited one is retried.
    completions.script["busy"].append(_response("back"))
    second = await worker.execute(_task())
    assert second["model"] == "busy"
    assert [c["model"] for c in completions.calls] == ["gone", "busy", "ok", "busy"]


@pytest.mark.asyncio
async def test_llm_worker_auth_error_fails_fast() -> None:
    worker, completions = _llm(
        {
            "m1": [_status_error(openai.AuthenticationError, 401)],
            "m2": [_response("never")],
        }
    )

    with pytest.raises(ExecutionFailure, match="authentication"):
        await worker.execute(_task())
    assert [c["model"] for c in completions.calls] == ["m1"]


@pytest.mark.asyncio
async def test_llm_worker_all_models_failing() -> None:
    worker, _ = _llm({"m1": [_status_error(openai.RateLimitError, 429)]})
    with pytest.raises(ExecutionFailure, match="rate-limited"):
        await worker.execute(_task())


def test_llm_worker_requires_key_and_models() -> None:
    with pytest.raises(ValueError):
        LLMWorker(api_key="", base_url="", models=["m"])
    with pytest.raises(ValueError):
        LLMWorker(api_key="k", base_url="", models=[" "])
