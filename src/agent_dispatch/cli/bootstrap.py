# src/agent_dispatch/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires the archive store, tracker and scheduler into AppState,
- registers the built-in workers (shell / echo / LLM).
"""

from __future__ import annotations

import logging

from ..config import get_settings
from ..core.state import AppState
from ..tasks.task_scheduler import TaskScheduler
from ..tasks.task_store import TaskArchiveStore
from ..tasks.task_tracker import TaskTracker
from ..workers.llm import LLMWorker
from ..workers.offline import EchoWorker
from ..workers.shell import ShellWorker

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    if settings.persist_archive:
        settings.archive_db_path.parent.mkdir(parents=True, exist_ok=True)


def register_builtin_workers(state: AppState) -> list[str]:
    """
    Register the workers the settings ask for. Returns their ids in registration order.

    Shell workers come first so that ties in load favour them for "shell" tasks.
    """
    settings = state.settings
    scheduler = state.scheduler
    ids: list[str] = []

    for i in range(max(0, int(settings.shell_workers))):
        wid = f"shell-{i + 1}"
        scheduler.register_worker(
            wid,
            settings.shell_capabilities,
            executor=ShellWorker(timeout_seconds=settings.task_timeout_seconds),
        )
        ids.append(wid)

    if settings.echo_worker_enabled:
        scheduler.register_worker("echo", ["echo"], executor=EchoWorker())
        ids.append("echo")

    if settings.llm_api_key:
        try:
            llm = LLMWorker(
                api_key=settings.llm_api_key,
                base_url=settings.llm_base_url,
                models=settings.llm_models,
                timeout_seconds=settings.llm_timeout_seconds,
            )
        except ValueError as e:
            logger.warning("LLM worker not registered: %s", e)
        else:
            scheduler.register_worker("llm", ["llm"], max_load=settings.llm_max_load, executor=llm)
            ids.append("llm")
    else:
        logger.info("LLM worker disabled (no API key configured).")

    return ids


def create_initial_state(*, settings=None, register_workers: bool = True) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    archive: TaskArchiveStore | None = None
    if settings.persist_archive:
        archive = TaskArchiveStore(settings.archive_db_path)

    tracker = TaskTracker(
        archive_store=archive,
        retention_seconds=settings.archive_retention_seconds,
        max_entries=settings.archive_max_entries,
        thresholds=settings.report_thresholds(),
    )
    scheduler = TaskScheduler(tracker, settings.scheduler_config())
    state = AppState(settings=settings, scheduler=scheduler, archive=archive)

    if register_workers:
        ids = register_builtin_workers(state)
        logger.info("Workers registered: %s", ", ".join(ids) or "(none)")
    return state


def load_archive_history(state: AppState) -> int:
    """Seed the in-memory archive window from the persistent store (best-effort)."""
    if state.archive is None:
        return 0
    try:
        records = state.archive.list_recent(limit=state.settings.archive_max_entries)
    except Exception:
        logger.exception("Failed to load archived tasks from %s", state.settings.archive_db_path)
        return 0
    loaded = state.tracker.load_archive(records)
    logger.info("Loaded %d archived tasks from %s", loaded, state.settings.archive_db_path)
    return loaded
