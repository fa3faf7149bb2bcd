# tests/test_task_store.py

from __future__ import annotations

import sqlite3

import pytest

from agent_dispatch.tasks.task_models import Priority, TaskRecord, TaskStatus
from agent_dispatch.tasks.task_store import TaskArchiveStore


def _done(task_id: str, end: float, status: TaskStatus = TaskStatus.COMPLETED) -> TaskRecord:
    return TaskRecord(
        id=task_id,
        description=f"task {task_id}",
        priority=Priority.LOW,
        created_at=end - 1,
        status=status,
        end_time=end,
        duration=1.0,
    )


def test_save_and_get_record(tmp_path) -> None:
    store = TaskArchiveStore(tmp_path / "archive.sqlite3")
    rec = _done("t1", 100.0)
    rec.result = {"when": object()}  # not JSON-serializable; stored via str()

    store.save_record(rec)
    loaded = store.get_record("t1")

    assert loaded is not None
    assert loaded.id == "t1"
    assert loaded.priority == Priority.LOW
    assert isinstance(loaded.result["when"], str)
    assert store.get_record("missing") is None
    assert store.count_records() == 1


def test_save_is_upsert(tmp_path) -> None:
    store = TaskArchiveStore(tmp_path / "archive.sqlite3")
    store.save_record(_done("t1", 100.0))
    store.save_record(_done("t1", 200.0, TaskStatus.FAILED))

    assert store.count_records() == 1
    assert store.get_record("t1").status == TaskStatus.FAILED


def test_non_terminal_records_are_refused(tmp_path) -> None:
    store = TaskArchiveStore(tmp_path / "archive.sqlite3")
    rec = _done("t1", 100.0)
    rec.status = TaskStatus.RUNNING
    with pytest.raises(ValueError):
        store.save_record(rec)


def test_list_recent_returns_newest_window_oldest_first(tmp_path) -> None:
    store = TaskArchiveStore(tmp_path / "archive.sqlite3")
    for i in range(5):
        store.save_record(_done(f"t{i}", 100.0 + i))

    assert [r.id for r in store.list_recent(3)] == ["t2", "t3", "t4"]


def test_prune_by_age_then_by_count(tmp_path) -> None:
    store = TaskArchiveStore(tmp_path / "archive.sqlite3")
    for i in range(6):
        store.save_record(_done(f"t{i}", 100.0 + i))

    removed = store.prune(older_than=102.0, max_entries=3)

    assert removed == 3
    assert [r.id for r in store.list_recent(10)] == ["t3", "t4", "t5"]


def test_schema_migrates_old_table(tmp_path) -> None:
    db = tmp_path / "archive.sqlite3"
    conn = sqlite3.connect(db)
    conn.execute("CREATE TABLE task_archive (id TEXT PRIMARY KEY, status TEXT NOT NULL, record TEXT NOT NULL)")
    conn.commit()
    conn.close()

    store = TaskArchiveStore(db)
    store.save_record(_done("t1", 100.0))

    assert store.get_record("t1").id == "t1"
