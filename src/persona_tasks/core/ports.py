# src/persona_tasks/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the task pipeline.

The pipeline depends on Protocols instead of concrete implementations.
This keeps channels/storage/LLM providers swappable and makes testing easier.
"""

from typing import Any, Iterable, Protocol

ChatMessage = dict[str, str]
# OpenAI-style chat messages: {"role": "...", "content": "..."}.


class LLMClient(Protocol):
    """Chat completion + image generation (OpenAI-compatible)."""

    async def complete(
            self,
            *,
            system_prompt: str,
            messages: list[ChatMessage],
            temperature: float = 0.2,
            api_key: str | None = None,
    ) -> str: ...

    async def generate_image(self, *, prompt: str, api_key: str | None = None) -> str: ...


class TaskRepo(Protocol):
    # Intake API
    def save_task(self, task: Any) -> None: ...
    def get_task(self, task_id: str) -> Any | None: ...
    def get_recent_tasks(
            self,
            *,
            unified_user_id: str | None = None,
            temporary_user_id: str | None = None,
            channel_user_id: str | None = None,
            limit: int = 5,
    ) -> list[Any]: ...

    # Processor API
    def list_runnable_tasks(self, *, now_ts: float, limit: int = 32) -> list[Any]: ...
    def try_claim_task(self, task_id: str, *, expected: Iterable[Any]) -> bool: ...
    def update_task(self, task_id: str, **fields: Any) -> None: ...

    # Monitor API
    def list_monitored_tasks(self, *, limit: int = 64) -> list[Any]: ...
    def fail_if_active(self, task_id: str, *, result: str, now_ts: float | None = None) -> bool: ...
    def mark_notified(self, task_id: str) -> bool: ...


class AgentRepo(Protocol):
    def get_agent(self, agent_id: str) -> Any | None: ...


class ServiceHandler(Protocol):
    """Executes the external side effect of a service task."""

    async def process(self, task: Any) -> Any: ...


class TwitterClient(Protocol):
    async def tweet(
            self,
            text: str,
            *,
            reply_to_id: str | None = None,
            media_ids: list[str] | None = None,
    ) -> str | None: ...

    async def upload_media(self, data: bytes, mime_type: str) -> str: ...

    async def user_lookup(self, user_id: str) -> str | None: ...


class TelegramClient(Protocol):
    async def send_message(self, chat_id: str, text: str) -> None: ...
    async def send_photo(self, chat_id: str, url: str) -> None: ...
