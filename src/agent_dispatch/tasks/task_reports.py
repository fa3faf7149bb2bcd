# src/agent_dispatch/tasks/task_reports.py

"""
Report generation.

Pure functions: a finalized TaskRecord (or a SystemSnapshot) in, a plain dict out.
No clock reads and no mutation of the input, so the same record always renders
to the same report. Anything time-dependent comes from the record's own
timestamps or from snapshot.generated_at.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from .task_models import TaskRecord, TaskStatus


@dataclass(frozen=True, slots=True)
class ReportThresholds:
    # Per-task recommendations
    long_task_seconds: float = 30.0
    resource_calls_limit: int = 10

    # System health penalties
    health_error_rate: float = 0.10
    health_avg_duration_seconds: float = 20.0
    health_success_rate: float = 0.90
    error_rate_penalty: int = 30
    avg_duration_penalty: int = 20
    success_rate_penalty: int = 25

    health_window: int = 20
    recent_activity_limit: int = 10
    active_tasks_warning: int = 10
    healthy_score: int = 80


@dataclass(frozen=True, slots=True)
class TrackerMetrics:
    total_tasks: int = 0
    successful_tasks: int = 0
    failed_tasks: int = 0
    cancelled_tasks: int = 0
    average_duration: float = 0.0
    worker_task_counts: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class SystemSnapshot:
    active_tasks: tuple[TaskRecord, ...]
    completed_tasks: tuple[TaskRecord, ...]  # archive window, oldest first
    metrics: TrackerMetrics
    workers: tuple[dict[str, Any], ...] = ()
    queue_depths: dict[str, int] = field(default_factory=dict)
    error_patterns: tuple[dict[str, Any], ...] = ()
    generated_at: float = 0.0


# ---- formatting helpers ----


def format_duration(seconds: float | None) -> str:
    if seconds is None:
        return "N/A"
    total = int(max(0.0, seconds))
    minutes, secs = divmod(total, 60)
    hours, minutes = divmod(minutes, 60)
    if hours > 0:
        return f"{hours}h {minutes}m"
    if minutes > 0:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def format_data_size(size: float) -> str:
    if size <= 0:
        return "0 B"
    units = ["B", "KB", "MB", "GB", "TB"]
    i = 0
    value = float(size)
    while value >= 1024 and i < len(units) - 1:
        value /= 1024
        i += 1
    return f"{round(value, 1):g} {units[i]}"


def format_timestamp(ts: float | None) -> str | None:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def _pct(value: float) -> str:
    return f"{value * 100:.1f}%"


# ---- task report ----


def _execution_summary(record: TaskRecord) -> dict[str, Any]:
    return {
        "status": record.status.value,
        "priority": record.priority.value,
        "attempts": record.attempts,
        "max_attempts": record.max_attempts,
        "duration": format_duration(record.duration),
        "workers_involved": len(record.workers_involved()),
        "phases_completed": len(record.phases),
        "errors_encountered": len(record.errors),
        "data_processed": format_data_size(sum(u.total_size for u in record.resource_usage.values())),
    }


def _timeline(record: TaskRecord) -> list[dict[str, Any]]:
    return [
        {
            "timestamp": format_timestamp(p.timestamp),
            "relative_time": "+" + format_duration(p.timestamp - record.created_at),
            "phase": p.type,
            "description": p.description,
            "status": p.status,
            "worker": p.worker,
        }
        for p in record.phases
    ]


def _worker_performance(record: TaskRecord) -> dict[str, dict[str, Any]]:
    stats: dict[str, dict[str, Any]] = {}
    for worker in record.workers_involved():
        handled = sum(1 for p in record.phases if p.worker == worker)
        errors = sum(1 for e in record.errors if e.worker == worker)
        rate = _pct(max(0, handled - errors) / handled) if handled else "N/A"
        stats[worker] = {
            "phases_handled": handled,
            "errors_generated": errors,
            "success_rate": rate,
        }
    return stats


def _resource_usage(record: TaskRecord) -> dict[str, dict[str, Any]]:
    out: dict[str, dict[str, Any]] = {}
    for kind, u in record.resource_usage.items():
        avg = u.total_processing_time / u.calls if u.calls else 0.0
        out[kind] = {
            "calls": u.calls,
            "total_size": format_data_size(u.total_size),
            "average_processing_time": f"{avg:.1f}ms",
        }
    return out


def task_recommendations(record: TaskRecord, thresholds: ReportThresholds) -> list[dict[str, Any]]:
    recs: list[dict[str, Any]] = []

    if record.errors:
        recs.append(
            {
                "type": "error_prevention",
                "priority": "high",
                "description": "Errors were recorded; strengthen error handling for this kind of task.",
                "details": [e.message for e in record.errors],
            }
        )

    if record.duration is not None and record.duration > thresholds.long_task_seconds:
        recs.append(
            {
                "type": "performance_optimization",
                "priority": "medium",
                "description": "Task took a long time; consider splitting or parallelising the work.",
                "details": f"duration {format_duration(record.duration)} exceeds "
                f"{format_duration(thresholds.long_task_seconds)}",
            }
        )

    total_calls = sum(u.calls for u in record.resource_usage.values())
    if total_calls > thresholds.resource_calls_limit:
        recs.append(
            {
                "type": "data_optimization",
                "priority": "low",
                "description": "High number of resource calls; consider caching or batching.",
                "details": f"{total_calls} calls (limit {thresholds.resource_calls_limit})",
            }
        )

    return recs


def _phase_success_rate(record: TaskRecord) -> str:
    if not record.errors:
        return "100.0%"
    total = len(record.phases)
    failed = sum(1 for p in record.phases if p.status == "error")
    return _pct((total - failed) / total) if total else "N/A"


def task_report(record: TaskRecord, thresholds: ReportThresholds | None = None) -> dict[str, Any]:
    t = thresholds or ReportThresholds()
    return {
        "task_id": record.id,
        "title": f"Task execution report - {record.description}",
        "execution_summary": _execution_summary(record),
        "timeline": _timeline(record),
        "worker_performance": _worker_performance(record),
        "resource_usage": _resource_usage(record),
        "result": record.result,
        "recommendations": task_recommendations(record, t),
        "metadata": {
            "created_at": format_timestamp(record.created_at),
            "finished_at": format_timestamp(record.end_time),
            "task_duration": format_duration(record.duration),
            "success_rate": _phase_success_rate(record),
        },
    }


# ---- system report ----


def _finished(records: tuple[TaskRecord, ...]) -> list[TaskRecord]:
    return [r for r in records if r.status in (TaskStatus.COMPLETED, TaskStatus.FAILED)]


def assess_health(snapshot: SystemSnapshot, thresholds: ReportThresholds | None = None) -> dict[str, Any]:
    """
    Health score: 100 minus penalties.

    Rates come from the last `health_window` finished (completed/failed) tasks;
    average duration from the tracker metrics. With nothing finished yet there
    is nothing to penalise, so the score is 100.
    """
    t = thresholds or ReportThresholds()
    window = _finished(snapshot.completed_tasks)[-t.health_window :] if t.health_window > 0 else []

    score = 100
    issues: list[str] = []
    triggers: list[str] = []

    if window:
        ok = sum(1 for r in window if r.status == TaskStatus.COMPLETED)
        success_rate = ok / len(window)
        error_rate = (len(window) - ok) / len(window)
    else:
        success_rate = 1.0
        error_rate = 0.0

    if error_rate > t.health_error_rate:
        score -= t.error_rate_penalty
        issues.append(f"High error rate ({_pct(error_rate)})")
        triggers.append("error_rate")

    if snapshot.metrics.average_duration > t.health_avg_duration_seconds:
        score -= t.avg_duration_penalty
        issues.append(f"Average duration too long ({format_duration(snapshot.metrics.average_duration)})")
        triggers.append("average_duration")

    if success_rate < t.health_success_rate:
        score -= t.success_rate_penalty
        issues.append(f"Low success rate ({_pct(success_rate)})")
        triggers.append("success_rate")

    score = max(score, 0)
    if score > t.healthy_score:
        status = "excellent"
    elif score > 60:
        status = "good"
    else:
        status = "poor"

    return {
        "score": score,
        "status": status,
        "issues": issues or ["System operating normally"],
        "triggers": triggers,
        "window": len(window),
        "success_rate": _pct(success_rate),
        "error_rate": _pct(error_rate),
    }


_TRIGGER_RECOMMENDATIONS: dict[str, tuple[str, str, str]] = {
    "error_rate": ("high", "error_reduction", "Error rate is above threshold; inspect the error patterns."),
    "average_duration": ("medium", "performance", "Tasks take long on average; add workers or raise timeouts."),
    "success_rate": ("high", "reliability", "Success rate is below threshold; review failing workers."),
}


def system_recommendations(
    snapshot: SystemSnapshot,
    health: dict[str, Any],
    thresholds: ReportThresholds | None = None,
) -> list[dict[str, Any]]:
    t = thresholds or ReportThresholds()
    recs: list[dict[str, Any]] = []

    for trig in health["triggers"]:
        priority, category, description = _TRIGGER_RECOMMENDATIONS[trig]
        recs.append({"priority": priority, "category": category, "description": description})

    if health["score"] < t.healthy_score:
        recs.append(
            {
                "priority": "high",
                "category": "system_optimization",
                "description": "Health score is low; run a full review.",
                "actions": list(health["issues"]),
            }
        )

    if len(snapshot.active_tasks) > t.active_tasks_warning:
        recs.append(
            {
                "priority": "medium",
                "category": "load_management",
                "description": "Many active tasks; add workers or raise per-worker capacity.",
                "actions": [f"{len(snapshot.active_tasks)} active tasks", f"queues: {snapshot.queue_depths}"],
            }
        )

    return recs


def _worker_status(snapshot: SystemSnapshot) -> list[dict[str, Any]]:
    counts = snapshot.metrics.worker_task_counts
    total = sum(counts.values())

    ids = [str(w["id"]) for w in snapshot.workers]
    ids += [wid for wid in counts if wid not in ids]
    info = {str(w["id"]): w for w in snapshot.workers}

    out: list[dict[str, Any]] = []
    for wid in ids:
        w = info.get(wid)
        handled = counts.get(wid, 0)
        if w is not None and int(w.get("max_load") or 0) > 0:
            load_pct = _pct(int(w.get("current_load") or 0) / int(w["max_load"]))
        else:
            load_pct = "N/A"
        out.append(
            {
                "id": wid,
                "status": (w or {}).get("status", "unregistered"),
                "current_load": (w or {}).get("current_load", 0),
                "max_load": (w or {}).get("max_load", 0),
                "load": load_pct,
                "tasks_handled": handled,
                "share_of_tasks": _pct(handled / total) if total else "0.0%",
            }
        )
    return out


def _recent_activity(snapshot: SystemSnapshot, limit: int) -> list[dict[str, Any]]:
    recent = snapshot.completed_tasks[-limit:] if limit > 0 else ()
    out = []
    for r in recent:
        desc = r.description if len(r.description) <= 50 else r.description[:50] + "..."
        out.append(
            {
                "task_id": r.id,
                "description": desc,
                "status": r.status.value,
                "duration": format_duration(r.duration),
                "completed_at": format_timestamp(r.end_time),
            }
        )
    return out


def system_status_report(snapshot: SystemSnapshot, thresholds: ReportThresholds | None = None) -> dict[str, Any]:
    t = thresholds or ReportThresholds()
    m = snapshot.metrics
    health = assess_health(snapshot, t)

    finished = m.successful_tasks + m.failed_tasks
    return {
        "title": "System status report",
        "overview": {
            "active_tasks": len(snapshot.active_tasks),
            "completed_tasks": len(snapshot.completed_tasks),
            "total_tasks": m.total_tasks,
            "successful_tasks": m.successful_tasks,
            "failed_tasks": m.failed_tasks,
            "cancelled_tasks": m.cancelled_tasks,
            "success_rate": _pct(m.successful_tasks / finished) if finished else "N/A",
            "average_duration": format_duration(m.average_duration) if m.total_tasks else "N/A",
        },
        "queues": dict(snapshot.queue_depths),
        "worker_status": _worker_status(snapshot),
        "recent_activity": _recent_activity(snapshot, t.recent_activity_limit),
        "system_health": health,
        "error_patterns": [dict(p) for p in snapshot.error_patterns],
        "recommendations": system_recommendations(snapshot, health, t),
        "timestamp": format_timestamp(snapshot.generated_at),
    }
