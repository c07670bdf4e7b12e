# src/persona_tasks/tasks/notifier.py

from __future__ import annotations

"""
Task notifier.

Routes one notification per resolved task to the channel the task came from:
- "twitter_<tweet id>"  -> reply to that tweet (image attached for image tasks)
- numeric chat id       -> Telegram message (photo for image tasks)
- anything else         -> web outbox of the requester

notify() never raises: a failed dispatch sends a best-effort fallback message and
marks the task failed with "Notification error".
"""

import logging
import mimetypes
import re
import time
from typing import Any

import httpx

from ..connectors.registry import ConnectionManager
from ..connectors.web_channel import WebChannel
from ..core.ports import AgentRepo, TaskRepo
from .task_models import ServiceTask, Task, TaskStatus
from .task_processor import INVALID_IMAGE_URL, is_valid_image_url

logger = logging.getLogger(__name__)

TWITTER_PREFIX = "twitter_"
TWEET_MAX_CHARS = 280

IMAGE_SUCCESS_MESSAGE = "Image generated successfully!"
TIMEOUT_MESSAGE = "Task timed out. Please try again."
INVALID_IMAGE_MESSAGE = "Error: Invalid image generated. Please try again."
FALLBACK_MESSAGE = "Failed to process your request. Please try again."
NOTIFICATION_ERROR = "Notification error"

_TELEGRAM_CHAT_ID = re.compile(r"^-?\d+$")


def is_telegram_chat_id(channel_id: str) -> bool:
    return bool(_TELEGRAM_CHAT_ID.match(channel_id or ""))


def is_completed_image_task(task: Task) -> bool:
    return isinstance(task, ServiceTask) and task.is_image_generation and task.status == TaskStatus.COMPLETED


def compose_notification(task: Task) -> str:
    if task.status == TaskStatus.COMPLETED:
        if is_completed_image_task(task):
            return IMAGE_SUCCESS_MESSAGE
        return f"Task completed: {task.result or 'Done'}"
    return f"Task failed: {task.result or 'Unknown error'}"


def format_tweet_reply(username: str | None, message: str) -> str:
    """Prefix the author's handle and fit the whole reply into one tweet."""
    if not username:
        return message[:TWEET_MAX_CHARS]
    return f"@{username} {message[: TWEET_MAX_CHARS - len(username) - 2]}"


class TaskNotifier:
    def __init__(
        self,
        *,
        task_store: TaskRepo,
        agents: AgentRepo,
        connections: ConnectionManager,
        web_channel: WebChannel,
        http_client: httpx.AsyncClient | None = None,
        download_timeout: float = 30.0,
    ) -> None:
        self._store = task_store
        self._agents = agents
        self._connections = connections
        self._web = web_channel
        self._http = http_client
        self._owns_http = http_client is None
        self._download_timeout = float(download_timeout)
        # Twitter user id -> username.
        self._usernames: dict[str, str] = {}

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self._download_timeout, follow_redirects=True)
        return self._http

    async def aclose(self) -> None:
        if self._http is not None and self._owns_http:
            await self._http.aclose()
            self._http = None

    def _mark_failed(self, task: Task, reason: str) -> None:
        try:
            self._store.update_task(
                task.task_id,
                status=TaskStatus.FAILED,
                result=reason,
                completed_at=time.time(),
            )
        except Exception:
            logger.exception("update_task(%s) failed task_id=%s", reason, task.task_id)

    def _agent(self, task: Task) -> Any:
        agent = self._agents.get_agent(task.agent_id)
        if agent is None:
            raise RuntimeError(f"Unknown agent {task.agent_id}")
        return agent

    async def notify(self, task: Task, text: str) -> bool:
        """Deliver text to the task's origin channel. Returns True if the primary send succeeded."""
        channel = task.channel_id or ""
        try:
            if channel.startswith(TWITTER_PREFIX):
                await self._notify_twitter(task, text)
            elif is_telegram_chat_id(channel):
                await self._notify_telegram(task, text)
            else:
                image_url = task.result if is_completed_image_task(task) else None
                await self._web.send(task.requester_id, task.task_id, text, image_url=image_url)
            logger.info("Notified task %s via %s", task.task_id, _channel_kind(channel))
            return True
        except Exception:
            logger.exception("Notification failed task_id=%s channel=%s", task.task_id, channel)

        await self._send_fallback(task)
        self._mark_failed(task, NOTIFICATION_ERROR)
        return False

    async def _send_fallback(self, task: Task) -> None:
        channel = task.channel_id or ""
        try:
            if channel.startswith(TWITTER_PREFIX):
                await self._tweet_reply(task, FALLBACK_MESSAGE)
            elif is_telegram_chat_id(channel):
                await self._connections.telegram(self._agent(task)).send_message(channel, FALLBACK_MESSAGE)
            else:
                await self._web.send(task.requester_id, task.task_id, FALLBACK_MESSAGE)
        except Exception:
            logger.exception("Fallback notification failed task_id=%s", task.task_id)

    # ---- Twitter ----

    async def _username(self, client: Any, user_id: str) -> str | None:
        cached = self._usernames.get(user_id)
        if cached:
            return cached
        try:
            username = await client.user_lookup(user_id)
        except Exception:
            logger.warning("Twitter user lookup failed for %s", user_id, exc_info=True)
            return None
        if username:
            self._usernames[user_id] = username
        return username

    async def _tweet_reply(self, task: Task, message: str, *, media_ids: list[str] | None = None) -> None:
        client = self._connections.twitter(self._agent(task))
        tweet_id = task.channel_id[len(TWITTER_PREFIX):]
        username = await self._username(client, task.channel_user_id)
        await client.tweet(format_tweet_reply(username, message), reply_to_id=tweet_id, media_ids=media_ids)

    async def _notify_twitter(self, task: Task, text: str) -> None:
        if not is_completed_image_task(task):
            await self._tweet_reply(task, text)
            return

        if not is_valid_image_url(task.result):
            await self._tweet_reply(task, INVALID_IMAGE_MESSAGE)
            self._mark_failed(task, INVALID_IMAGE_URL)
            return

        client = self._connections.twitter(self._agent(task))
        data, mime_type = await self._download_image(str(task.result))
        media_id = await client.upload_media(data, mime_type)
        await self._tweet_reply(task, text, media_ids=[media_id])

    async def _download_image(self, url: str) -> tuple[bytes, str]:
        res = await self._client().get(url)
        res.raise_for_status()
        mime_type = (res.headers.get("content-type") or "").split(";")[0].strip()
        if not mime_type.startswith("image/"):
            mime_type = mimetypes.guess_type(httpx.URL(url).path)[0] or "image/png"
        return res.content, mime_type

    # ---- Telegram ----

    async def _notify_telegram(self, task: Task, text: str) -> None:
        client = self._connections.telegram(self._agent(task))
        chat_id = task.channel_id

        if not is_completed_image_task(task):
            await client.send_message(chat_id, text)
            return

        if not is_valid_image_url(task.result):
            await client.send_message(chat_id, INVALID_IMAGE_MESSAGE)
            self._mark_failed(task, INVALID_IMAGE_URL)
            return

        await client.send_message(chat_id, text)
        await client.send_photo(chat_id, str(task.result))


def _channel_kind(channel_id: str) -> str:
    if channel_id.startswith(TWITTER_PREFIX):
        return "twitter"
    if is_telegram_chat_id(channel_id):
        return "telegram"
    return "web"
