# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from agent_dispatch.core.state import AppState
from agent_dispatch.tasks.task_reports import ReportThresholds
from agent_dispatch.tasks.task_scheduler import SchedulerConfig, TaskScheduler
from agent_dispatch.tasks.task_store import TaskArchiveStore
from agent_dispatch.tasks.task_tracker import TaskTracker

from .fakes import FakeClock


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def scheduler_config() -> SchedulerConfig:
    return SchedulerConfig(
        max_concurrent_tasks=50,
        max_tasks_per_worker=5,
        retry_attempts=3,
        retry_delay_seconds=1.0,
        task_timeout_seconds=300.0,
    )


@pytest.fixture()
def tracker(clock: FakeClock) -> TaskTracker:
    return TaskTracker(clock=clock)


@pytest.fixture()
def scheduler(tracker: TaskTracker, scheduler_config: SchedulerConfig, clock: FakeClock) -> TaskScheduler:
    return TaskScheduler(tracker, scheduler_config, clock=clock)


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and the CLI helpers.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="agent-dispatch-test",
        data_dir=tmp_path,
        archive_db_path=tmp_path / "archive.sqlite3",
        persist_archive=True,
        archive_max_entries=1000,
        tick_interval_seconds=0.01,
        cleanup_interval_seconds=300.0,
        shell_workers=0,
        shell_capabilities=["shell"],
        echo_worker_enabled=True,
        llm_api_key=None,
    )


@pytest.fixture()
def state(settings: SimpleNamespace, clock: FakeClock) -> AppState:
    """
    AppState wired with a fake clock.

    NOTE: We keep a real SQLite archive here because its round trip is part of
    what we want to test.
    """
    archive = TaskArchiveStore(settings.archive_db_path)
    tracker = TaskTracker(archive_store=archive, thresholds=ReportThresholds(), clock=clock)
    scheduler = TaskScheduler(tracker, SchedulerConfig(), clock=clock)
    return AppState(settings=settings, scheduler=scheduler, archive=archive)
