# src/persona_tasks/tasks/task_monitor.py

from __future__ import annotations

"""
Task monitor.

Second polling loop. Every interval it looks at tasks that are still active or
terminal-but-not-notified and:
- force-fails active tasks older than the max age ("Task timed out"),
- sends exactly one notification per resolved task and flips `notified`.
"""

import asyncio
import logging
import time
from dataclasses import replace

from ..core.ports import TaskRepo
from .notifier import TIMEOUT_MESSAGE, TaskNotifier, compose_notification
from .task_models import Task, TaskStatus

logger = logging.getLogger(__name__)

TIMEOUT_RESULT = "Task timed out"


async def _handle_timeout(task_store: TaskRepo, notifier: TaskNotifier, task: Task, now_ts: float) -> bool:
    if not task_store.fail_if_active(task.task_id, result=TIMEOUT_RESULT, now_ts=now_ts):
        # Reached a terminal status in the meantime; the next cycle notifies it normally.
        return False

    logger.warning("Task %s timed out after %.0fs", task.task_id, now_ts - task.created_at)
    timed_out = replace(task, status=TaskStatus.FAILED, result=TIMEOUT_RESULT, completed_at=now_ts)
    await notifier.notify(timed_out, TIMEOUT_MESSAGE)
    task_store.mark_notified(task.task_id)
    return True


async def _handle_resolved(task_store: TaskRepo, notifier: TaskNotifier, task_id: str) -> bool:
    current = task_store.get_task(task_id)
    if current is None or not current.is_terminal or current.notified:
        return False

    await notifier.notify(current, compose_notification(current))
    if task_store.mark_notified(task_id):
        logger.info("Task %s notified (%s)", task_id, current.status.value)
        return True
    return False


async def monitor_tasks_once(
        task_store: TaskRepo,
        notifier: TaskNotifier,
        *,
        max_age_seconds: float = 60.0,
        batch_limit: int = 64,
        now_ts: float | None = None,
) -> int:
    """One monitor cycle. Returns how many tasks were notified."""
    if now_ts is None:
        now_ts = time.time()

    try:
        tasks = task_store.list_monitored_tasks(limit=int(batch_limit))
    except Exception:
        logger.exception("list_monitored_tasks failed")
        return 0

    notified = 0
    for task in tasks:
        try:
            if not task.is_terminal:
                if now_ts - task.created_at > max_age_seconds:
                    notified += int(await _handle_timeout(task_store, notifier, task, now_ts))
                continue

            notified += int(await _handle_resolved(task_store, notifier, task.task_id))

        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("monitor step failed task_id=%s", task.task_id)

    return notified


async def run_task_monitor(
        task_store: TaskRepo,
        notifier: TaskNotifier,
        *,
        interval_seconds: float = 5.0,
        max_age_seconds: float = 60.0,
        batch_limit: int = 64,
) -> None:
    """
    Polling monitor.

    To stop the monitor, cancel the coroutine/task.
    """
    sleep_s = max(0.5, float(interval_seconds))

    while True:
        try:
            await monitor_tasks_once(
                task_store,
                notifier,
                max_age_seconds=max_age_seconds,
                batch_limit=batch_limit,
            )
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("task monitor cycle failed")

        await asyncio.sleep(sleep_s)
