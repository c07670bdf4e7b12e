# src/persona_tasks/connectors/web_channel.py

from __future__ import annotations

import logging
import threading
import time
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class WebMessage:
    recipient_id: str
    task_id: str
    text: str
    image_url: str | None
    created_at: float


WebListener = Callable[[WebMessage], None]


class WebChannel:
    """
    In-process outbox for the web channel.

    Web clients have no push transport here: notifications are queued per requester
    and drained by whoever serves that user (the console prints them via a listener).
    Thread-safe: written from the loop thread, drained from the console thread.
    """

    def __init__(self, max_per_recipient: int = 100) -> None:
        self._lock = threading.Lock()
        self._outbox: dict[str, list[WebMessage]] = defaultdict(list)
        self._listeners: list[WebListener] = []
        self._max = max(1, int(max_per_recipient))

    def add_listener(self, listener: WebListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    async def send(self, recipient_id: str, task_id: str, text: str, *, image_url: str | None = None) -> None:
        msg = WebMessage(
            recipient_id=recipient_id,
            task_id=task_id,
            text=text,
            image_url=image_url,
            created_at=time.time(),
        )
        with self._lock:
            box = self._outbox[recipient_id]
            box.append(msg)
            if len(box) > self._max:
                del box[: len(box) - self._max]
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(msg)
            except Exception:
                logger.exception("Web channel listener failed.")

    def drain(self, recipient_id: str) -> list[WebMessage]:
        with self._lock:
            return self._outbox.pop(recipient_id, [])

    def pending_count(self, recipient_id: str) -> int:
        with self._lock:
            return len(self._outbox.get(recipient_id, []))
