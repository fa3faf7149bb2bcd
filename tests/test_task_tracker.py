# tests/test_task_tracker.py

from __future__ import annotations

import pytest

from agent_dispatch.tasks.task_models import Priority, TaskRecord, TaskStatus
from agent_dispatch.tasks.task_store import TaskArchiveStore
from agent_dispatch.tasks.task_tracker import WEEK_SECONDS, TaskTracker


def _record(task_id: str, clock, **kwargs) -> TaskRecord:
    return TaskRecord(
        id=task_id,
        description=kwargs.pop("description", f"task {task_id}"),
        priority=kwargs.pop("priority", Priority.MEDIUM),
        created_at=clock(),
        **kwargs,
    )


def _finish(tracker: TaskTracker, record: TaskRecord, status: TaskStatus, end: float, duration: float = 1.0):
    record.status = status
    record.end_time = end
    record.duration = duration
    return tracker.finalize(record.id)


def test_track_adds_initialization_phase(tracker, clock) -> None:
    rec = tracker.track(_record("t1", clock))

    assert [p.type for p in rec.phases] == ["initialization"]
    assert rec.phases[0].worker == "system"
    assert rec.phases[0].timestamp == clock.now


def test_track_twice_is_refused(tracker, clock) -> None:
    rec = _record("t1", clock)
    tracker.track(rec)
    with pytest.raises(ValueError):
        tracker.track(rec)


def test_recording_on_unknown_task_is_ignored(tracker) -> None:
    assert tracker.add_phase("nope", "x", "y") is None
    assert tracker.record_error("nope", "bad") is None
    assert tracker.record_resource_usage("nope", "api", 1, 1) is None
    assert tracker.finalize("nope") is None


def test_phase_worker_comes_from_data(tracker, clock) -> None:
    tracker.track(_record("t1", clock))
    phase = tracker.add_phase("t1", "task_execution", "run", "running", {"worker": "w1", "attempt": 1})

    assert phase.worker == "w1"
    assert phase.data == {"worker": "w1", "attempt": 1}
    assert tracker.get("t1").workers_involved() == ["w1"]


def test_resource_usage_accumulates_per_kind(tracker, clock) -> None:
    tracker.track(_record("t1", clock))
    tracker.record_resource_usage("t1", "api", 100, 10)
    tracker.record_resource_usage("t1", "api", 300, 30)
    tracker.record_resource_usage("t1", "disk", 5, 1)

    usage = tracker.get("t1").resource_usage
    assert usage["api"].calls == 2
    assert usage["api"].total_size == 400
    assert usage["api"].total_processing_time == 40
    assert usage["disk"].calls == 1


def test_record_error_captures_current_phase(tracker, clock) -> None:
    tracker.track(_record("t1", clock))
    tracker.add_phase("t1", "task_execution", "run", "running", {"worker": "w1"})

    err = tracker.record_error("t1", RuntimeError("disk full"), "w1")

    rec = tracker.get("t1")
    assert err.phase == "task_execution"
    assert err.message == "disk full"
    assert rec.errors == [err]
    assert rec.phases[-1].type == "error"
    assert rec.phases[-1].status == "error"


def test_phases_never_shrink(tracker, clock) -> None:
    tracker.track(_record("t1", clock))
    lengths = [len(tracker.get("t1").phases)]
    for i in range(5):
        tracker.add_phase("t1", f"p{i}", "step")
        lengths.append(len(tracker.get("t1").phases))
    assert lengths == sorted(lengths)
    assert lengths[-1] == 6


def test_finalize_is_idempotent(tracker, clock) -> None:
    rec = tracker.track(_record("t1", clock))
    report = _finish(tracker, rec, TaskStatus.COMPLETED, clock.now)

    assert report is not None
    assert report["task_id"] == "t1"
    assert tracker.finalize("t1") is None
    assert len(tracker.completed_tasks()) == 1
    assert tracker.metrics().total_tasks == 1
    assert tracker.get("t1") is rec


def test_finalize_refuses_non_terminal(tracker, clock) -> None:
    tracker.track(_record("t1", clock))
    assert tracker.finalize("t1") is None
    assert tracker.is_active("t1")


def test_metrics_counts_outcomes_and_workers(tracker, clock) -> None:
    for i, status in enumerate([TaskStatus.COMPLETED, TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED]):
        rec = tracker.track(_record(f"t{i}", clock))
        tracker.add_phase(rec.id, "task_execution", "run", "running", {"worker": "w1"})
        _finish(tracker, rec, status, clock.now, duration=float(i + 1))

    m = tracker.metrics()
    assert (m.total_tasks, m.successful_tasks, m.failed_tasks, m.cancelled_tasks) == (4, 2, 1, 1)
    # The cancelled record only waited in a queue; it is left out of the average.
    assert m.average_duration == pytest.approx(2.0)
    assert m.worker_task_counts == {"w1": 4}


def test_error_patterns_need_repetition(tracker, clock) -> None:
    for i in range(3):
        rec = tracker.track(_record(f"t{i}", clock))
        tracker.add_phase(rec.id, "task_execution", "run", "running", {"worker": "w1"})
        tracker.record_error(rec.id, "boom", "w1")
        _finish(tracker, rec, TaskStatus.FAILED, clock.now)

    rec = tracker.track(_record("odd", clock))
    tracker.add_phase(rec.id, "validation", "check")
    tracker.record_error(rec.id, "once", "w2")
    _finish(tracker, rec, TaskStatus.FAILED, clock.now)

    assert tracker.analyze_error_patterns() == [{"pattern": "w1:task_execution", "frequency": 3}]


def test_performance_summary_needs_five_finished_tasks(tracker, clock) -> None:
    for i in range(4):
        _finish(tracker, tracker.track(_record(f"t{i}", clock)), TaskStatus.COMPLETED, clock.now)
    _finish(tracker, tracker.track(_record("gone", clock)), TaskStatus.CANCELLED, clock.now)

    assert tracker.analyze_performance() is None


def test_performance_summary_over_recent_window(tracker, clock) -> None:
    for i in range(4):
        _finish(tracker, tracker.track(_record(f"ok{i}", clock)), TaskStatus.COMPLETED, clock.now, duration=1.0)
    for i in range(2):
        rec = tracker.track(_record(f"bad{i}", clock))
        tracker.add_phase(rec.id, "task_execution", "run", "running", {"worker": "w1"})
        tracker.record_error(rec.id, "boom", "w1")
        _finish(tracker, rec, TaskStatus.FAILED, clock.now, duration=4.0)
    _finish(tracker, tracker.track(_record("gone", clock)), TaskStatus.CANCELLED, clock.now, duration=500.0)

    perf = tracker.analyze_performance()

    assert perf["window"] == 6
    assert perf["success_rate"] == pytest.approx(4 / 6)
    assert perf["average_duration"] == pytest.approx(2.0)
    assert perf["error_patterns"] == [{"pattern": "w1:task_execution", "frequency": 2}]


def test_retention_evicts_old_archive_entries(clock) -> None:
    tracker = TaskTracker(clock=clock)
    old = tracker.track(_record("old", clock))
    _finish(tracker, old, TaskStatus.COMPLETED, clock.now)

    clock.advance(WEEK_SECONDS + 1)
    fresh = tracker.track(_record("fresh", clock))
    _finish(tracker, fresh, TaskStatus.COMPLETED, clock.now)

    assert [t.id for t in tracker.completed_tasks()] == ["fresh"]
    assert tracker.get("old") is None
    # Lifetime counters are not rewritten by eviction.
    assert tracker.metrics().total_tasks == 2


def test_max_entries_bounds_archive(clock) -> None:
    tracker = TaskTracker(clock=clock, max_entries=3)
    for i in range(5):
        rec = tracker.track(_record(f"t{i}", clock))
        _finish(tracker, rec, TaskStatus.COMPLETED, clock.now)

    assert [t.id for t in tracker.completed_tasks()] == ["t2", "t3", "t4"]


def test_cleanup_old_tasks_uses_given_time(tracker, clock) -> None:
    rec = tracker.track(_record("t1", clock))
    _finish(tracker, rec, TaskStatus.COMPLETED, clock.now)

    assert tracker.cleanup_old_tasks(clock.now + 60) == 0
    assert tracker.cleanup_old_tasks(clock.now + WEEK_SECONDS + 1) == 1
    assert tracker.completed_tasks() == []


def test_finalize_persists_to_archive_store(tmp_path, clock) -> None:
    store = TaskArchiveStore(tmp_path / "archive.sqlite3")
    tracker = TaskTracker(archive_store=store, clock=clock)

    rec = tracker.track(_record("t1", clock, payload={"command": "echo hi"}))
    tracker.record_resource_usage("t1", "shell", 12, 3.5)
    rec.result = {"stdout": "hi\n"}
    _finish(tracker, rec, TaskStatus.COMPLETED, clock.now, duration=0.5)

    loaded = store.get_record("t1")
    assert loaded is not None
    assert loaded.status == TaskStatus.COMPLETED
    assert loaded.result == {"stdout": "hi\n"}
    assert loaded.resource_usage["shell"].total_size == 12
    assert [p.type for p in loaded.phases] == [p.type for p in rec.phases]


def test_load_archive_seeds_metrics(tmp_path, clock) -> None:
    store = TaskArchiveStore(tmp_path / "archive.sqlite3")
    writer = TaskTracker(archive_store=store, clock=clock)
    for i, status in enumerate([TaskStatus.COMPLETED, TaskStatus.FAILED]):
        rec = writer.track(_record(f"t{i}", clock))
        _finish(writer, rec, status, clock.now)
        clock.advance(1)

    reader = TaskTracker(clock=clock)
    assert reader.load_archive(store.list_recent(10)) == 2
    assert reader.load_archive(store.list_recent(10)) == 0

    m = reader.metrics()
    assert (m.total_tasks, m.successful_tasks, m.failed_tasks) == (2, 1, 1)
    assert [t.id for t in reader.completed_tasks()] == ["t0", "t1"]
