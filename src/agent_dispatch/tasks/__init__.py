"""
Task subsystem.

Components:
- task_models.py: data structures (TaskRecord, Priority, TaskStatus, WorkerDescriptor)
- task_queues.py: one FIFO queue per priority level
- task_scheduler.py: polling dispatcher (assignment, retries, timeouts) + async run loop
- task_tracker.py: per-task audit trail, archive, aggregate metrics, error patterns
- task_reports.py: pure report builders (task report, system status, health)
- task_store.py: SQLite-backed archive of finalized tasks
- task_api.py: small high-level helpers used by the rest of the app
"""
