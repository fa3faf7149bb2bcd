# src/agent_dispatch/tasks/task_store.py

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
from pathlib import Path
from typing import Any

from .task_models import TaskRecord

logger = logging.getLogger(__name__)


class TaskArchiveStore:
    """
    SQLite archive of finalized tasks.

    The full record is kept as JSON; a few columns are duplicated for ordering
    and pruning. The schema is migration-safe:
    - create table if missing
    - use PRAGMA table_info to detect missing columns
    - add columns with ALTER TABLE only when needed

    Thread-safety:
    - each method opens its own SQLite connection
    """

    def __init__(self, db_path: str | Path = "archive.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()
        try:
            total = self.count_records()
        except sqlite3.Error:
            total = -1
        logger.info("TaskArchiveStore ready db=%s total=%s", self._db_path, total)

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        self._configure_conn(conn)
        return conn

    @staticmethod
    def _configure_conn(conn: sqlite3.Connection) -> None:
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS task_archive (
                    id TEXT PRIMARY KEY,
                    status TEXT NOT NULL,
                    priority TEXT NOT NULL DEFAULT 'medium',
                    description TEXT NOT NULL DEFAULT '',
                    created_at REAL NOT NULL,
                    end_time REAL,
                    duration REAL,
                    attempts INTEGER NOT NULL DEFAULT 0,
                    assigned_worker TEXT,
                    record TEXT NOT NULL DEFAULT '{}'
                )
                """
            )

            cur.execute("PRAGMA table_info(task_archive)")
            cols = {row["name"] for row in cur.fetchall()}

            def add_col(name: str, decl: str) -> None:
                if name in cols:
                    return
                cur.execute(f"ALTER TABLE task_archive ADD COLUMN {name} {decl}")
                logger.info("TaskArchiveStore migration: added column %s", name)

            add_col("priority", "TEXT NOT NULL DEFAULT 'medium'")
            add_col("description", "TEXT NOT NULL DEFAULT ''")
            add_col("created_at", "REAL NOT NULL DEFAULT 0")
            add_col("end_time", "REAL")
            add_col("duration", "REAL")
            add_col("attempts", "INTEGER NOT NULL DEFAULT 0")
            add_col("assigned_worker", "TEXT")

            cur.execute(
                "CREATE INDEX IF NOT EXISTS idx_archive_finished "
                "ON task_archive(COALESCE(end_time, created_at))"
            )
            cur.execute("CREATE INDEX IF NOT EXISTS idx_archive_status ON task_archive(status)")

            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _record_to_str(record: TaskRecord) -> str:
        # default=str keeps arbitrary worker results storable.
        return json.dumps(record.to_dict(), ensure_ascii=False, default=str)

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> TaskRecord | None:
        try:
            data: Any = json.loads(row["record"] or "{}")
        except json.JSONDecodeError:
            logger.warning("Corrupt archive row id=%s", row["id"])
            return None
        if not isinstance(data, dict) or "id" not in data:
            return None
        return TaskRecord.from_dict(data)

    # ---- public API ----

    def count_records(self) -> int:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT COUNT(*) FROM task_archive")
            (n,) = cur.fetchone()
            return int(n)
        finally:
            conn.close()

    def save_record(self, record: TaskRecord) -> None:
        if not record.status.is_terminal:
            raise ValueError(f"refusing to archive non-terminal task {record.id} ({record.status.value})")

        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT OR REPLACE INTO task_archive(
                    id, status, priority, description,
                    created_at, end_time, duration, attempts,
                    assigned_worker, record
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.id,
                    record.status.value,
                    record.priority.value,
                    record.description,
                    float(record.created_at),
                    record.end_time,
                    record.duration,
                    int(record.attempts),
                    record.assigned_worker,
                    self._record_to_str(record),
                ),
            )
            conn.commit()
            logger.debug("Archived task id=%s status=%s", record.id, record.status.value)
        finally:
            conn.close()

    def get_record(self, task_id: str) -> TaskRecord | None:
        if not task_id:
            return None
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT id, record FROM task_archive WHERE id = ?", (task_id,))
            row = cur.fetchone()
            return self._row_to_record(row) if row else None
        finally:
            conn.close()

    def list_recent(self, limit: int = 100) -> list[TaskRecord]:
        """Most recent `limit` records, returned oldest first."""
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                SELECT id, record
                FROM task_archive
                ORDER BY COALESCE(end_time, created_at) DESC, created_at DESC
                    LIMIT ?
                """,
                (int(limit),),
            )
            rows = cur.fetchall()
        finally:
            conn.close()

        out = [r for r in (self._row_to_record(row) for row in rows) if r is not None]
        out.reverse()
        return out

    def prune(self, *, older_than: float, max_entries: int) -> int:
        """Delete records finished before `older_than`, then keep only the newest `max_entries`."""
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                "DELETE FROM task_archive WHERE COALESCE(end_time, created_at) < ?",
                (float(older_than),),
            )
            removed = cur.rowcount
            cur.execute(
                """
                DELETE FROM task_archive
                WHERE id NOT IN (
                    SELECT id FROM task_archive
                    ORDER BY COALESCE(end_time, created_at) DESC, created_at DESC
                        LIMIT ?
                )
                """,
                (max(0, int(max_entries)),),
            )
            removed += cur.rowcount
            conn.commit()
        finally:
            conn.close()

        if removed:
            logger.info("TaskArchiveStore pruned %d records", removed)
        return removed
