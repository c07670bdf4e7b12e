# src/persona_tasks/tasks/task_api.py

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass

from ..core.state import AppState
from .task_models import Classification, Task, build_task
from .worthiness import should_save_as_task

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class IntakeResult:
    classification: Classification
    worthy: bool
    task: Task | None = None
    acknowledgement: str | None = None

    @property
    def is_task(self) -> bool:
        return self.task is not None


def acknowledgement_for(task: Task) -> str:
    return f"Got it! Your request is queued (task {task.task_id}). I'll let you know when it's done."


async def handle_inbound_message(
    state: AppState,
    *,
    text: str,
    agent_id: str,
    channel_id: str,
    channel_user_id: str,
    unified_user_id: str | None = None,
    temporary_user_id: str | None = None,
    task_id: str | None = None,
) -> IntakeResult:
    """
    Classify one inbound message and, if it is a task, persist it as pending.

    A message becomes a task if the classifier says non-chat OR the worthiness filter
    says it is worth tracking. Returns the queuing acknowledgement for new tasks.
    """
    message = (text or "").strip()
    if not message:
        raise ValueError("message text is required")
    if unified_user_id and temporary_user_id:
        raise ValueError("pass unified_user_id or temporary_user_id, not both")

    settings = state.settings
    agent = state.agents.get_agent(agent_id)
    window = getattr(agent, "max_memory_context", None)
    if window is None:
        window = int(getattr(settings, "memory_context_default", 5))

    try:
        recent = state.task_store.get_recent_tasks(
            unified_user_id=unified_user_id,
            temporary_user_id=temporary_user_id,
            channel_user_id=channel_user_id,
            limit=int(window),
        )
    except Exception:
        logger.exception("get_recent_tasks failed user=%s", channel_user_id)
        recent = []

    classification = await state.classifier.classify(message, agent=agent, recent_tasks=recent)
    worthy = should_save_as_task(message)

    if classification.is_chat and not worthy:
        logger.debug("Inbound message is chat, not stored: %r", message[:80])
        return IntakeResult(classification=classification, worthy=False)

    task = build_task(
        task_id=task_id or uuid.uuid4().hex,
        agent_id=agent_id,
        channel_id=channel_id,
        channel_user_id=channel_user_id,
        unified_user_id=unified_user_id,
        temporary_user_id=temporary_user_id,
        command=message,
        classification=classification,
        created_at=time.time(),
        max_retries=int(getattr(settings, "task_max_retries", 3)),
    )
    state.task_store.save_task(task)

    logger.info(
        "Task %s queued type=%s channel=%s agent=%s",
        task.task_id,
        task.task_type.value,
        channel_id,
        agent_id,
    )
    return IntakeResult(
        classification=classification,
        worthy=worthy,
        task=task,
        acknowledgement=acknowledgement_for(task),
    )


def get_task_status(state: AppState, task_id: str) -> Task | None:
    return state.task_store.get_task(task_id)
