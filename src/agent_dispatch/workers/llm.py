# src/agent_dispatch/workers/llm.py

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

import httpx
import openai
from openai import OpenAI

from ..errors import ExecutionFailure
from ..tasks.task_models import TaskRecord

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = (
    "You are a worker agent in a task dispatcher. "
    "Carry out the task you are given and reply with the result only."
)


def _is_auth_error(exc: Exception) -> bool:
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return True
    return exc.__class__.__name__ in {"UnauthorizedError"}


def _is_rate_limit_error(exc: Exception) -> bool:
    return isinstance(exc, openai.RateLimitError)


def _is_connection_error(exc: Exception) -> bool:
    return isinstance(exc, (openai.APIConnectionError, openai.APITimeoutError, httpx.TimeoutException))


def _is_not_found_error(exc: Exception) -> bool:
    return isinstance(exc, openai.NotFoundError)


class LLMWorker:
    """
    Worker "agent" backed by an OpenAI-compatible chat completion API.

    Behavior:
    - Tries models in the configured order.
    - 404 (model not available) -> model is skipped for an hour, try next.
    - Rate limit / network issues -> try next.
    - Auth issues -> fail fast (no retries across models).

    The SDK call is blocking; it runs in a thread so the dispatch loop keeps ticking.
    payload may carry "system_prompt" and "prompt" (defaults to the task description).
    """

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str,
        models: List[str],
        timeout_seconds: float = 60.0,
        client: OpenAI | None = None,
    ) -> None:
        if not api_key or not api_key.strip():
            raise ValueError("LLM API key is not set. Set AGENT_DISPATCH_LLM_API_KEY in your .env.")
        self.models = [m.strip() for m in models if m and m.strip()]
        if not self.models:
            raise ValueError("LLM model list is empty. Set AGENT_DISPATCH_LLM_MODELS in your .env.")

        self._bad_models: dict[str, float] = {}  # model -> retry_at (monotonic)
        timeout = httpx.Timeout(timeout_seconds, connect=min(10.0, timeout_seconds))
        # Automatic SDK retries are off: the scheduler owns the retry policy.
        self._client = client or OpenAI(
            api_key=api_key,
            base_url=base_url or None,
            timeout=timeout,
            max_retries=0,
        )

    def _messages(self, task: TaskRecord) -> list[dict[str, str]]:
        system_prompt = str(task.payload.get("system_prompt") or DEFAULT_SYSTEM_PROMPT)
        prompt = str(task.payload.get("prompt") or task.description)
        return [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": prompt},
        ]

    def _complete(self, messages: list[dict[str, str]]) -> Dict[str, Any]:
        last_error: Optional[Exception] = None
        now = time.monotonic()

        for model in self.models:
            retry_at = self._bad_models.get(model)
            if retry_at is not None and retry_at > now:
                continue

            logger.info("LLM: trying model=%s", model)
            t0 = time.monotonic()
            try:
                resp = self._client.chat.completions.create(model=model, messages=messages)
            except Exception as e:
                last_error = e

                if _is_auth_error(e):
                    raise ExecutionFailure("LLM authentication failed. Check AGENT_DISPATCH_LLM_API_KEY.") from e

                if _is_not_found_error(e):
                    self._bad_models[model] = time.monotonic() + 3600.0
                    logger.info("LLM: model not available (404): %s", model)
                    continue

                if _is_rate_limit_error(e):
                    logger.info("LLM: rate-limited on model=%s, trying next", model)
                    continue

                if _is_connection_error(e):
                    logger.info("LLM: network/timeout error on model=%s, trying next", model)
                    continue

                logger.info("LLM: error on model=%s (%s), trying next", model, e.__class__.__name__)
                continue

            elapsed_ms = (time.monotonic() - t0) * 1000.0
            content = ""
            if resp.choices:
                content = (resp.choices[0].message.content or "").strip()
            if not content:
                last_error = RuntimeError(f"Model returned no content: {model}")
                continue

            usage = getattr(resp, "usage", None)
            tokens = int(getattr(usage, "total_tokens", 0) or 0)
            logger.debug("LLM: completed with model=%s (%.0fms, %d tokens)", model, elapsed_ms, tokens)
            return {
                "model": model,
                "content": content,
                "resource_usage": [
                    {"kind": "llm", "size": tokens, "processing_time_ms": elapsed_ms},
                ],
            }

        if last_error is not None:
            if _is_rate_limit_error(last_error):
                raise ExecutionFailure("LLM is rate-limited. Try again later.") from last_error
            if _is_connection_error(last_error):
                raise ExecutionFailure("LLM network/timeout error.") from last_error
            raise ExecutionFailure(f"All LLM models failed: {last_error}") from last_error

        raise ExecutionFailure("All LLM models failed.")

    async def execute(self, task: TaskRecord) -> Dict[str, Any]:
        return await asyncio.to_thread(self._complete, self._messages(task))
