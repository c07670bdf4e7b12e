# src/persona_tasks/tasks/task_models.py

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, ClassVar

IMAGE_GENERATION = "image_generation"


class TaskStatus(StrEnum):
    """
    Task lifecycle status.

    Notes:
    - Moves forward only: pending -> in_progress -> awaiting_external -> completed|failed.
    - The single backward edge is the retry requeue (a failed attempt with retries left
      goes back to "pending" with a retry_at backoff, never through a terminal status).
    """

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    AWAITING_EXTERNAL = "awaiting_external"
    COMPLETED = "completed"
    FAILED = "failed"

    @classmethod
    def from_db(cls, raw: str | None) -> TaskStatus:
        if not raw:
            return cls.PENDING
        try:
            return cls(raw)
        except Exception:
            return cls.PENDING

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


ACTIVE_STATUSES = frozenset({TaskStatus.PENDING, TaskStatus.IN_PROGRESS, TaskStatus.AWAITING_EXTERNAL})
TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED})


class TaskType(StrEnum):
    CHAT = "chat"
    API_CALL = "api_call"
    BLOCKCHAIN_TX = "blockchain_tx"
    MCP_ACTION = "mcp_action"

    @classmethod
    def parse(cls, raw: Any) -> TaskType:
        """Strict parse: raises ValueError for anything outside the taxonomy."""
        return cls(str(raw or "").strip().lower())


class ServiceStatus(StrEnum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass(slots=True)
class ExternalService:
    service_name: str
    request_data: dict[str, Any] = field(default_factory=dict)
    response_data: Any = None
    status: ServiceStatus = ServiceStatus.PENDING
    error: str | None = None
    api_key: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "service_name": self.service_name,
            "request_data": self.request_data,
            "response_data": self.response_data,
            "status": self.status.value,
            "error": self.error,
            "api_key": self.api_key,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> ExternalService:
        status_raw = raw.get("status") or ServiceStatus.PENDING.value
        try:
            status = ServiceStatus(status_raw)
        except ValueError:
            status = ServiceStatus.PENDING
        request_data = raw.get("request_data")
        return cls(
            service_name=str(raw.get("service_name") or ""),
            request_data=request_data if isinstance(request_data, dict) else {},
            response_data=raw.get("response_data"),
            status=status,
            error=raw.get("error"),
            api_key=raw.get("api_key"),
        )


@dataclass(slots=True, kw_only=True)
class TaskBase:
    task_id: str
    agent_id: str
    channel_id: str
    channel_user_id: str
    command: str
    created_at: float

    unified_user_id: str | None = None
    temporary_user_id: str | None = None

    status: TaskStatus = TaskStatus.PENDING
    completed_at: float | None = None
    result: str | None = None

    retries: int = 0
    max_retries: int = 3
    retry_at: float | None = None

    # None until the monitor (or the processor) first sets it.
    notified: bool | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def requester_id(self) -> str:
        """Account context of the requester: unified, then temporary, then platform id."""
        return self.unified_user_id or self.temporary_user_id or self.channel_user_id


@dataclass(slots=True, kw_only=True)
class ChatTask(TaskBase):
    task_type: ClassVar[TaskType] = TaskType.CHAT


@dataclass(slots=True, kw_only=True)
class ServiceTask(TaskBase):
    task_type: TaskType
    external_service: ExternalService

    def __post_init__(self) -> None:
        if self.task_type == TaskType.CHAT:
            raise ValueError("ServiceTask cannot have task_type 'chat'")

    @property
    def is_image_generation(self) -> bool:
        return self.task_type == TaskType.API_CALL and self.external_service.service_name == IMAGE_GENERATION


Task = ChatTask | ServiceTask


@dataclass(slots=True, frozen=True)
class Classification:
    task_type: TaskType
    service_name: str | None = None
    request_data: dict[str, Any] | None = None
    api_key: str | None = None

    @property
    def is_chat(self) -> bool:
        return self.task_type == TaskType.CHAT

    @classmethod
    def chat(cls) -> Classification:
        return cls(task_type=TaskType.CHAT)


def build_task(
    *,
    task_id: str,
    agent_id: str,
    channel_id: str,
    channel_user_id: str,
    command: str,
    classification: Classification,
    created_at: float,
    unified_user_id: str | None = None,
    temporary_user_id: str | None = None,
    max_retries: int = 3,
) -> Task:
    """Create a fresh pending task of the variant that matches the classification."""
    if unified_user_id and temporary_user_id:
        raise ValueError("a task is owned by a unified user or a temporary user, not both")

    common: dict[str, Any] = dict(
        task_id=task_id,
        agent_id=agent_id,
        channel_id=channel_id,
        channel_user_id=channel_user_id,
        command=command,
        created_at=created_at,
        unified_user_id=unified_user_id,
        temporary_user_id=temporary_user_id,
        max_retries=max_retries,
    )

    if classification.is_chat:
        return ChatTask(**common)

    if not classification.service_name:
        raise ValueError(f"{classification.task_type.value} task requires a service_name")

    return ServiceTask(
        task_type=classification.task_type,
        external_service=ExternalService(
            service_name=classification.service_name,
            request_data=dict(classification.request_data or {}),
            api_key=classification.api_key,
        ),
        **common,
    )
