# src/persona_tasks/tasks/task_store.py

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
import time
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from .task_models import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    ChatTask,
    ExternalService,
    ServiceTask,
    Task,
    TaskStatus,
    TaskType,
)

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = frozenset(
    {
        "status",
        "completed_at",
        "result",
        "retries",
        "max_retries",
        "retry_at",
        "notified",
        "external_service",
    }
)


def _placeholders(values: Iterable[Any]) -> str:
    return ",".join("?" for _ in values)


class TaskStore:
    """
    SQLite task store.

    The schema is intentionally simple and migration-safe:
    - create table if missing
    - use PRAGMA table_info to detect missing columns
    - add columns with ALTER TABLE only when needed

    Concurrency:
    - each method opens its own SQLite connection
    - every field update is last-writer-wins, except the claim (pending -> in_progress)
      and the notified flip, which are conditional single-statement updates
    """

    def __init__(self, db_path: str | Path = "tasks.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()
        try:
            total = self.count_tasks()
        except Exception:
            total = -1
        logger.info("TaskStore ready db=%s total=%s", self._db_path, total)

    def close(self) -> None:
        """Compatibility hook for shutdown (no persistent connections to close)."""
        return

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        self._configure_conn(conn)
        return conn

    @staticmethod
    def _configure_conn(conn: sqlite3.Connection) -> None:
        with contextlib.suppress(Exception):
            conn.execute("PRAGMA journal_mode=WAL")

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    task_id TEXT PRIMARY KEY,
                    agent_id TEXT NOT NULL,
                    channel_id TEXT NOT NULL,
                    channel_user_id TEXT NOT NULL,
                    unified_user_id TEXT,
                    temporary_user_id TEXT,
                    command TEXT NOT NULL,
                    task_type TEXT NOT NULL DEFAULT 'chat',
                    external_service TEXT,
                    status TEXT NOT NULL DEFAULT 'pending',
                    created_at REAL NOT NULL,
                    completed_at REAL,
                    result TEXT,
                    retries INTEGER NOT NULL DEFAULT 0,
                    max_retries INTEGER NOT NULL DEFAULT 3,
                    retry_at REAL,
                    notified INTEGER
                )
                """
            )

            # Migrations (safe): add missing columns.
            cur.execute("PRAGMA table_info(tasks)")
            cols = {row["name"] for row in cur.fetchall()}

            def add_col(name: str, decl: str) -> None:
                if name in cols:
                    return
                cur.execute(f"ALTER TABLE tasks ADD COLUMN {name} {decl}")
                logger.info("TaskStore migration: added column %s", name)

            add_col("unified_user_id", "TEXT")
            add_col("temporary_user_id", "TEXT")
            add_col("task_type", "TEXT NOT NULL DEFAULT 'chat'")
            add_col("external_service", "TEXT")
            add_col("completed_at", "REAL")
            add_col("result", "TEXT")
            add_col("retries", "INTEGER NOT NULL DEFAULT 0")
            add_col("max_retries", "INTEGER NOT NULL DEFAULT 3")
            add_col("retry_at", "REAL")
            add_col("notified", "INTEGER")

            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status, retry_at)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_notified ON tasks(status, notified)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_unified ON tasks(unified_user_id, created_at)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_temporary ON tasks(temporary_user_id, created_at)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_channel_user ON tasks(channel_user_id, created_at)")

            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _service_to_str(service: ExternalService | dict[str, Any] | None) -> str | None:
        if service is None:
            return None
        raw = service.to_dict() if isinstance(service, ExternalService) else dict(service)
        try:
            return json.dumps(raw, ensure_ascii=False, default=str)
        except Exception:
            logger.exception("Failed to JSON-encode external_service; storing {}.")
            return "{}"

    @staticmethod
    def _str_to_service(s: str | None) -> dict[str, Any]:
        if not s:
            return {}
        try:
            val = json.loads(s)
            return val if isinstance(val, dict) else {}
        except Exception:
            return {}

    def _row_to_task(self, row: sqlite3.Row) -> Task:
        notified_raw = row["notified"]
        common: dict[str, Any] = dict(
            task_id=str(row["task_id"]),
            agent_id=str(row["agent_id"]),
            channel_id=str(row["channel_id"]),
            channel_user_id=str(row["channel_user_id"]),
            unified_user_id=row["unified_user_id"],
            temporary_user_id=row["temporary_user_id"],
            command=str(row["command"] or ""),
            status=TaskStatus.from_db(row["status"]),
            created_at=float(row["created_at"] or 0.0),
            completed_at=float(row["completed_at"]) if row["completed_at"] is not None else None,
            result=row["result"],
            retries=int(row["retries"] or 0),
            max_retries=int(row["max_retries"] if row["max_retries"] is not None else 3),
            retry_at=float(row["retry_at"]) if row["retry_at"] is not None else None,
            notified=None if notified_raw is None else bool(notified_raw),
        )

        try:
            task_type = TaskType.parse(row["task_type"])
        except ValueError:
            task_type = TaskType.CHAT

        service_raw = self._str_to_service(row["external_service"])
        if task_type == TaskType.CHAT or not service_raw:
            return ChatTask(**common)

        return ServiceTask(
            task_type=task_type,
            external_service=ExternalService.from_dict(service_raw),
            **common,
        )

    # ---- public API ----

    def count_tasks(self) -> int:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT COUNT(*) FROM tasks")
            (n,) = cur.fetchone()
            return int(n)
        finally:
            conn.close()

    def count_by_status(self) -> dict[str, int]:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT status, COUNT(*) AS n FROM tasks GROUP BY status")
            return {str(r["status"]): int(r["n"]) for r in cur.fetchall()}
        finally:
            conn.close()

    def save_task(self, task: Task) -> None:
        """Insert a new task. Raises sqlite3.IntegrityError on a duplicate task_id."""
        if not task.task_id or not task.task_id.strip():
            raise ValueError("task_id is required")
        if not task.command or not task.command.strip():
            raise ValueError("command is required")

        service = task.external_service if isinstance(task, ServiceTask) else None

        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO tasks(
                    task_id, agent_id, channel_id, channel_user_id,
                    unified_user_id, temporary_user_id,
                    command, task_type, external_service,
                    status, created_at, completed_at, result,
                    retries, max_retries, retry_at, notified
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    task.task_id,
                    task.agent_id,
                    task.channel_id,
                    task.channel_user_id,
                    task.unified_user_id,
                    task.temporary_user_id,
                    task.command,
                    task.task_type.value,
                    self._service_to_str(service),
                    task.status.value,
                    float(task.created_at),
                    task.completed_at,
                    task.result,
                    int(task.retries),
                    int(task.max_retries),
                    task.retry_at,
                    None if task.notified is None else int(task.notified),
                ),
            )
            conn.commit()
            logger.debug(
                "Task saved id=%s type=%s status=%s channel=%s",
                task.task_id,
                task.task_type.value,
                task.status.value,
                task.channel_id,
            )
        finally:
            conn.close()

    def get_task(self, task_id: str) -> Task | None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT * FROM tasks WHERE task_id = ?", (task_id,))
            row = cur.fetchone()
            return self._row_to_task(row) if row else None
        finally:
            conn.close()

    def get_recent_tasks(
        self,
        *,
        unified_user_id: str | None = None,
        temporary_user_id: str | None = None,
        channel_user_id: str | None = None,
        limit: int = 5,
    ) -> list[Task]:
        """
        Newest-first tasks of one requester, used as classification context.

        Identity precedence: unified user, then temporary user, then platform user id.
        """
        if unified_user_id:
            column, value = "unified_user_id", unified_user_id
        elif temporary_user_id:
            column, value = "temporary_user_id", temporary_user_id
        elif channel_user_id:
            column, value = "channel_user_id", channel_user_id
        else:
            return []

        if limit <= 0:
            return []

        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                f"SELECT * FROM tasks WHERE {column} = ? ORDER BY created_at DESC LIMIT ?",
                (value, int(limit)),
            )
            return [self._row_to_task(r) for r in cur.fetchall()]
        finally:
            conn.close()

    def list_runnable_tasks(self, *, now_ts: float, limit: int = 32) -> list[Task]:
        """
        Pending tasks ready for the processor.

        A pending task is runnable if retry_at IS NULL (never failed) or retry_at <= now_ts.
        """
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                SELECT *
                FROM tasks
                WHERE status = 'pending'
                  AND (retry_at IS NULL OR retry_at <= ?)
                ORDER BY created_at ASC
                    LIMIT ?
                """,
                (float(now_ts), int(limit)),
            )
            return [self._row_to_task(r) for r in cur.fetchall()]
        finally:
            conn.close()

    def list_monitored_tasks(self, *, limit: int = 64) -> list[Task]:
        """Tasks the monitor cares about: still active, or terminal but not yet notified."""
        active = [s.value for s in ACTIVE_STATUSES]
        terminal = [s.value for s in TERMINAL_STATUSES]
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                f"""
                SELECT *
                FROM tasks
                WHERE status IN ({_placeholders(active)})
                   OR (status IN ({_placeholders(terminal)}) AND COALESCE(notified, 0) = 0)
                ORDER BY created_at ASC
                    LIMIT ?
                """,
                (*active, *terminal, int(limit)),
            )
            return [self._row_to_task(r) for r in cur.fetchall()]
        finally:
            conn.close()

    def try_claim_task(self, task_id: str, *, expected: Iterable[TaskStatus]) -> bool:
        """
        Atomic claim to avoid double processing.

        Transitions:
          status IN expected  -> status = in_progress

        Returns True if the row was claimed by this caller.
        """
        exp = [e.value for e in expected]
        if not exp:
            return False

        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                f"""
                UPDATE tasks
                SET status = 'in_progress'
                WHERE task_id = ?
                  AND status IN ({_placeholders(exp)})
                """,
                (task_id, *exp),
            )
            conn.commit()
            return cur.rowcount == 1
        finally:
            conn.close()

    def update_task(self, task_id: str, **fields: Any) -> None:
        """
        Partial update (last writer wins).

        Only keys passed are written, so passing result=None clears the column.
        """
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"unknown task fields: {sorted(unknown)}")
        if not fields:
            return

        assignments: list[str] = []
        params: list[Any] = []

        for name, value in fields.items():
            if name == "status":
                value = TaskStatus(value).value
            elif name == "notified":
                value = None if value is None else int(bool(value))
            elif name == "external_service":
                value = self._service_to_str(value)
            elif name == "result" and value is not None and not isinstance(value, str):
                value = str(value)
            assignments.append(f"{name} = ?")
            params.append(value)

        params.append(task_id)
        sql = f"UPDATE tasks SET {', '.join(assignments)} WHERE task_id = ?"

        conn = self._get_conn()
        try:
            conn.execute(sql, params)
            conn.commit()
        finally:
            conn.close()

    def fail_if_active(self, task_id: str, *, result: str, now_ts: float | None = None) -> bool:
        """Force a still-active task to failed. Returns False if it already reached a terminal status."""
        if now_ts is None:
            now_ts = time.time()
        active = [s.value for s in ACTIVE_STATUSES]

        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                f"""
                UPDATE tasks
                SET status = 'failed',
                    result = ?,
                    completed_at = ?,
                    notified = 0
                WHERE task_id = ?
                  AND status IN ({_placeholders(active)})
                """,
                (result, float(now_ts), task_id, *active),
            )
            conn.commit()
            return cur.rowcount == 1
        finally:
            conn.close()

    def mark_notified(self, task_id: str) -> bool:
        """
        Flip notified false/None -> true for a terminal task.

        Returns True only for the call that performed the flip.
        """
        terminal = [s.value for s in TERMINAL_STATUSES]
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                f"""
                UPDATE tasks
                SET notified = 1
                WHERE task_id = ?
                  AND status IN ({_placeholders(terminal)})
                  AND COALESCE(notified, 0) = 0
                """,
                (task_id, *terminal),
            )
            conn.commit()
            return cur.rowcount == 1
        finally:
            conn.close()
