# src/persona_tasks/tasks/task_processor.py

from __future__ import annotations

"""
Task processor.

A small polling loop that:
- fetches runnable tasks (pending, retry_at passed),
- claims them atomically (pending -> in_progress),
- executes service tasks via the injected service handler,
- records the outcome, or requeues the task with a backoff on failure.

Notification is not done here; the task monitor owns it.
"""

import asyncio
import json
import logging
import re
import time
from dataclasses import dataclass, replace
from typing import Any
from urllib.parse import urlparse

from ..core.ports import ServiceHandler, TaskRepo
from .external_services import ServiceResult
from .task_models import ChatTask, ServiceStatus, ServiceTask, Task, TaskStatus, TaskType

logger = logging.getLogger(__name__)

MAX_RETRIES_EXCEEDED = "Max retries exceeded"
INVALID_IMAGE_URL = "Invalid image URL"

_IMAGE_PATH = re.compile(r"\.(?:jpg|jpeg|png|gif|bmp)$", re.IGNORECASE)

# Normalized, user-facing reasons. Raw errors stay in external_service.error.
_KNOWN_REASONS = frozenset({MAX_RETRIES_EXCEEDED, INVALID_IMAGE_URL})
_FAILURE_TEXT = {
    TaskType.API_CALL: "The API request could not be completed",
    TaskType.BLOCKCHAIN_TX: "The blockchain transaction could not be completed",
    TaskType.MCP_ACTION: "The MCP action could not be completed",
}


def is_valid_image_url(value: Any) -> bool:
    """http(s) URL whose path (query string ignored) ends in an image extension."""
    if not isinstance(value, str) or not value.strip():
        return False
    try:
        parsed = urlparse(value.strip())
    except ValueError:
        return False
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return False
    return bool(_IMAGE_PATH.search(parsed.path))


def user_facing_failure(task: Task, error: str | None) -> str:
    if error in _KNOWN_REASONS:
        return str(error)
    if isinstance(task, ServiceTask):
        if task.is_image_generation:
            return "Image generation failed"
        return _FAILURE_TEXT.get(task.task_type, "The request could not be completed")
    return "The request could not be completed"


def _result_text(data: Any) -> str:
    if data is None:
        return "Done"
    if isinstance(data, str):
        return data
    try:
        return json.dumps(data, ensure_ascii=False, default=str)
    except Exception:
        return str(data)


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    """
    requeue_failed=True: a failed attempt with retries left goes back to pending,
    runnable again after retry_delay_seconds * 2**(retries-1) (capped).
    requeue_failed=False: the first failure is terminal.
    """

    retry_delay_seconds: float = 5.0
    requeue_failed: bool = True
    max_delay_seconds: float = 300.0

    def backoff(self, retries: int) -> float:
        base = max(0.0, float(self.retry_delay_seconds))
        return min(self.max_delay_seconds, base * (2 ** max(0, retries - 1)))

    @classmethod
    def from_settings(cls, settings: Any) -> RetryPolicy:
        return cls(
            retry_delay_seconds=float(getattr(settings, "task_retry_delay_seconds", 5.0)),
            requeue_failed=bool(getattr(settings, "task_requeue_failed", True)),
        )


def _still_owned(task_store: TaskRepo, task_id: str) -> bool:
    """False if something else (the monitor's timeout) already finished the task."""
    current = task_store.get_task(task_id)
    return current is not None and not current.is_terminal


def _record_failure(
        task_store: TaskRepo,
        task: Task,
        *,
        error: str,
        response_data: Any,
        policy: RetryPolicy,
) -> None:
    now_ts = time.time()
    retries = task.retries + 1
    fields: dict[str, Any] = {"retries": retries, "notified": False}

    if isinstance(task, ServiceTask):
        fields["external_service"] = replace(
            task.external_service,
            status=ServiceStatus.FAILED,
            error=error,
            response_data=response_data,
        )

    if policy.requeue_failed and retries < task.max_retries:
        delay = policy.backoff(retries)
        fields.update(status=TaskStatus.PENDING, retry_at=now_ts + delay, result=None)
        logger.info(
            "Task %s failed (%s); requeued attempt %d/%d in %.1fs",
            task.task_id,
            error,
            retries,
            task.max_retries,
            delay,
        )
    else:
        fields.update(
            status=TaskStatus.FAILED,
            result=user_facing_failure(task, error),
            completed_at=now_ts,
            retry_at=None,
        )
        logger.info("Task %s -> failed (%s)", task.task_id, error)

    task_store.update_task(task.task_id, **fields)


async def process_task(
        task_store: TaskRepo,
        service_handler: ServiceHandler,
        task: Task,
        *,
        policy: RetryPolicy | None = None,
) -> None:
    """Advance one pending task. Never raises (except on cancellation)."""
    policy = policy or RetryPolicy()
    task_id = task.task_id

    if task.retries >= task.max_retries:
        fields: dict[str, Any] = dict(
            status=TaskStatus.FAILED,
            result=MAX_RETRIES_EXCEEDED,
            completed_at=time.time(),
            retry_at=None,
            notified=False,
        )
        if isinstance(task, ServiceTask):
            fields["external_service"] = replace(
                task.external_service,
                status=ServiceStatus.FAILED,
                error=MAX_RETRIES_EXCEEDED,
            )
        try:
            task_store.update_task(task_id, **fields)
            logger.info("Task %s -> failed (max retries %d reached)", task_id, task.max_retries)
        except Exception:
            logger.exception("update_task(max retries) failed task_id=%s", task_id)
        return

    # Claim to avoid double processing.
    try:
        claimed = task_store.try_claim_task(task_id, expected=[TaskStatus.PENDING])
    except Exception:
        logger.exception("try_claim_task failed task_id=%s", task_id)
        return

    if not claimed:
        return

    try:
        if isinstance(task, ChatTask):
            task_store.update_task(
                task_id,
                status=TaskStatus.COMPLETED,
                completed_at=time.time(),
                retry_at=None,
                notified=False,
            )
            logger.info("Task %s (chat) -> completed", task_id)
            return

        task_store.update_task(task_id, status=TaskStatus.AWAITING_EXTERNAL)

        result: ServiceResult = await service_handler.process(task)

        if result.success and task.is_image_generation and not is_valid_image_url(result.data):
            logger.warning("Task %s: image service returned a non-image URL: %r", task_id, result.data)
            result = ServiceResult(success=False, data=result.data, error=INVALID_IMAGE_URL)

        if not _still_owned(task_store, task_id):
            logger.info("Task %s finished elsewhere while awaiting external; dropping outcome", task_id)
            return

        if result.success:
            task_store.update_task(
                task_id,
                status=TaskStatus.COMPLETED,
                result=_result_text(result.data),
                completed_at=time.time(),
                retry_at=None,
                notified=False,
                external_service=replace(
                    task.external_service,
                    status=ServiceStatus.SUCCESS,
                    response_data=result.data,
                    error=None,
                ),
            )
            logger.info("Task %s -> completed", task_id)
        else:
            _record_failure(
                task_store,
                task,
                error=result.error or "Unknown error",
                response_data=result.data,
                policy=policy,
            )

    except asyncio.CancelledError:
        raise
    except Exception as e:
        logger.exception("process_task crashed task_id=%s", task_id)
        try:
            _record_failure(
                task_store,
                task,
                error=str(e).strip() or e.__class__.__name__,
                response_data=None,
                policy=policy,
            )
        except Exception:
            logger.exception("_record_failure failed task_id=%s", task_id)


async def process_pending_tasks_once(
        task_store: TaskRepo,
        service_handler: ServiceHandler,
        *,
        policy: RetryPolicy | None = None,
        batch_limit: int = 32,
        now_ts: float | None = None,
) -> int:
    """One poll cycle. Returns how many runnable tasks were looked at."""
    if now_ts is None:
        now_ts = time.time()

    try:
        tasks = task_store.list_runnable_tasks(now_ts=now_ts, limit=int(batch_limit))
    except Exception:
        logger.exception("list_runnable_tasks failed")
        return 0

    for task in tasks:
        await process_task(task_store, service_handler, task, policy=policy)

    return len(tasks)


async def run_task_processor(
        task_store: TaskRepo,
        service_handler: ServiceHandler,
        *,
        interval_seconds: float = 5.0,
        policy: RetryPolicy | None = None,
        batch_limit: int = 32,
) -> None:
    """
    Polling processor.

    Every interval_seconds, run one cycle of process_pending_tasks_once.
    To stop the processor, cancel the coroutine/task.
    """
    sleep_s = max(0.5, float(interval_seconds))
    policy = policy or RetryPolicy()

    while True:
        try:
            await process_pending_tasks_once(task_store, service_handler, policy=policy, batch_limit=batch_limit)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("task processor cycle failed")

        await asyncio.sleep(sleep_s)
