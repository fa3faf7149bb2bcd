# src/agent_dispatch/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app (normal "settings layer").
- No secrets required at import time.
- Components get their own small config objects (SchedulerConfig, ReportThresholds)
  built from Settings, so they stay testable without env.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from .tasks.task_reports import ReportThresholds
from .tasks.task_scheduler import SchedulerConfig

ENV_PREFIX = "AGENT_DISPATCH"

load_dotenv(override=False)


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _first_env(*names: str, default: str | None = None) -> str | None:
    for n in names:
        v = os.getenv(n)
        if v is not None and v.strip() != "":
            return v
    return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return list(default)
    parts = [p.strip() for p in raw.replace(",", " ").split() if p.strip()]
    return parts


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    archive_db_path: Path
    persist_archive: bool

    # ---- Scheduler ----
    tick_interval_seconds: float
    max_concurrent_tasks: int
    max_tasks_per_worker: int
    retry_attempts: int
    retry_delay_seconds: float
    task_timeout_seconds: float

    # ---- Tracker / archive ----
    archive_retention_days: float
    archive_max_entries: int
    cleanup_interval_seconds: float

    # ---- Report thresholds ----
    report_long_task_seconds: float
    report_resource_calls_limit: int
    health_error_rate: float
    health_avg_duration_seconds: float
    health_success_rate: float
    health_window: int
    recent_activity_limit: int

    # ---- Built-in workers ----
    shell_workers: int
    shell_capabilities: List[str]
    echo_worker_enabled: bool

    # ---- LLM worker (OpenAI-compatible) ----
    llm_api_key: Optional[str]
    llm_base_url: str
    llm_models: List[str]
    llm_timeout_seconds: float
    llm_max_load: int

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "agent-dispatch")
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/agent_dispatch"))
        archive_db_path = _env_path(_k("ARCHIVE_DB_PATH"), data_dir / "archive.sqlite3")
        persist_archive = _env_bool(_k("PERSIST_ARCHIVE"), True)

        tick_interval_seconds = _env_float(_k("TICK_INTERVAL_SECONDS"), 1.0)
        max_concurrent_tasks = _env_int(_k("MAX_CONCURRENT_TASKS"), 50)
        max_tasks_per_worker = _env_int(_k("MAX_TASKS_PER_WORKER"), 5)
        retry_attempts = _env_int(_k("RETRY_ATTEMPTS"), 3)
        retry_delay_seconds = _env_float(_k("RETRY_DELAY_SECONDS"), 1.0)
        task_timeout_seconds = _env_float(_k("TASK_TIMEOUT_SECONDS"), 300.0)

        archive_retention_days = _env_float(_k("ARCHIVE_RETENTION_DAYS"), 7.0)
        archive_max_entries = _env_int(_k("ARCHIVE_MAX_ENTRIES"), 1000)
        cleanup_interval_seconds = _env_float(_k("CLEANUP_INTERVAL_SECONDS"), 300.0)

        defaults = ReportThresholds()
        report_long_task_seconds = _env_float(_k("REPORT_LONG_TASK_SECONDS"), defaults.long_task_seconds)
        report_resource_calls_limit = _env_int(_k("REPORT_RESOURCE_CALLS_LIMIT"), defaults.resource_calls_limit)
        health_error_rate = _env_float(_k("HEALTH_ERROR_RATE"), defaults.health_error_rate)
        health_avg_duration_seconds = _env_float(
            _k("HEALTH_AVG_DURATION_SECONDS"),
            defaults.health_avg_duration_seconds,
        )
        health_success_rate = _env_float(_k("HEALTH_SUCCESS_RATE"), defaults.health_success_rate)
        health_window = _env_int(_k("HEALTH_WINDOW"), defaults.health_window)
        recent_activity_limit = _env_int(_k("RECENT_ACTIVITY_LIMIT"), defaults.recent_activity_limit)

        shell_workers = _env_int(_k("SHELL_WORKERS"), 2)
        shell_capabilities = _env_list(_k("SHELL_CAPABILITIES"), ["shell"])
        echo_worker_enabled = _env_bool(_k("ECHO_WORKER"), True)

        # Accept the conventional OPENAI_* names as a fallback.
        llm_api_key = _first_env(_k("LLM_API_KEY"), "OPENAI_API_KEY", default=None)
        llm_base_url = _first_env(_k("LLM_BASE_URL"), "OPENAI_BASE_URL", default="https://api.openai.com/v1") or ""
        llm_models = _env_list(_k("LLM_MODELS"), ["gpt-4o-mini"])
        llm_timeout_seconds = _env_float(_k("LLM_TIMEOUT_SECONDS"), 60.0)
        llm_max_load = _env_int(_k("LLM_MAX_LOAD"), 2)

        return Settings(
            app_name=app_name,
            log_level=log_level,
            data_dir=data_dir,
            archive_db_path=archive_db_path,
            persist_archive=persist_archive,
            tick_interval_seconds=tick_interval_seconds,
            max_concurrent_tasks=max_concurrent_tasks,
            max_tasks_per_worker=max_tasks_per_worker,
            retry_attempts=retry_attempts,
            retry_delay_seconds=retry_delay_seconds,
            task_timeout_seconds=task_timeout_seconds,
            archive_retention_days=archive_retention_days,
            archive_max_entries=archive_max_entries,
            cleanup_interval_seconds=cleanup_interval_seconds,
            report_long_task_seconds=report_long_task_seconds,
            report_resource_calls_limit=report_resource_calls_limit,
            health_error_rate=health_error_rate,
            health_avg_duration_seconds=health_avg_duration_seconds,
            health_success_rate=health_success_rate,
            health_window=health_window,
            recent_activity_limit=recent_activity_limit,
            shell_workers=shell_workers,
            shell_capabilities=shell_capabilities,
            echo_worker_enabled=echo_worker_enabled,
            llm_api_key=llm_api_key,
            llm_base_url=llm_base_url,
            llm_models=llm_models,
            llm_timeout_seconds=llm_timeout_seconds,
            llm_max_load=llm_max_load,
        )

    @property
    def archive_retention_seconds(self) -> float:
        return self.archive_retention_days * 24 * 60 * 60

    def scheduler_config(self) -> SchedulerConfig:
        return SchedulerConfig(
            max_concurrent_tasks=max(1, self.max_concurrent_tasks),
            max_tasks_per_worker=max(1, self.max_tasks_per_worker),
            retry_attempts=max(1, self.retry_attempts),
            retry_delay_seconds=max(0.0, self.retry_delay_seconds),
            task_timeout_seconds=max(1.0, self.task_timeout_seconds),
        )

    def report_thresholds(self) -> ReportThresholds:
        return ReportThresholds(
            long_task_seconds=self.report_long_task_seconds,
            resource_calls_limit=self.report_resource_calls_limit,
            health_error_rate=self.health_error_rate,
            health_avg_duration_seconds=self.health_avg_duration_seconds,
            health_success_rate=self.health_success_rate,
            health_window=self.health_window,
            recent_activity_limit=self.recent_activity_limit,
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
