# src/persona_tasks/connectors/registry.py

from __future__ import annotations

import inspect
import logging
import threading
from collections.abc import Callable
from typing import Any

from ..core.ports import TelegramClient, TwitterClient
from .telegram_client import TelegramBotClient
from .twitter_client import TweepyTwitterClient

logger = logging.getLogger(__name__)

TwitterFactory = Callable[..., TwitterClient]
TelegramFactory = Callable[..., TelegramClient]


async def _close_quietly(client: Any) -> None:
    close = getattr(client, "aclose", None)
    if not callable(close):
        return
    try:
        res = close()
        if inspect.isawaitable(res):
            await res
    except Exception:
        logger.debug("Client close failed.", exc_info=True)


class ConnectionManager:
    """
    Per-agent messaging clients, created lazily and cached by agent_id.

    Owned by AppState and shared by the processor and monitor loops.
    """

    def __init__(
        self,
        settings: Any,
        *,
        twitter_factory: TwitterFactory | None = None,
        telegram_factory: TelegramFactory | None = None,
    ) -> None:
        self._settings = settings
        self._twitter_factory: TwitterFactory = twitter_factory or TweepyTwitterClient
        self._telegram_factory: TelegramFactory = telegram_factory or TelegramBotClient
        self._lock = threading.Lock()
        self._twitter: dict[str, TwitterClient] = {}
        self._telegram: dict[str, TelegramClient] = {}

    def _twitter_app_credentials(self, agent: Any) -> tuple[str | None, str | None]:
        mode = str(getattr(self._settings, "twitter_integration", "basic") or "basic").lower()
        if mode == "advance":
            # Paid tier: each agent brings its own developer app.
            return getattr(agent, "twitter_app_key", None), getattr(agent, "twitter_app_secret", None)
        return getattr(self._settings, "twitter_app_key", None), getattr(self._settings, "twitter_app_secret", None)

    def twitter(self, agent: Any) -> TwitterClient:
        """Get-or-create the agent's Twitter client. Raises RuntimeError if the agent has no credentials."""
        agent_id = str(agent.agent_id)
        with self._lock:
            client = self._twitter.get(agent_id)
        if client is not None:
            return client

        app_key, app_secret = self._twitter_app_credentials(agent)
        if not (agent.has_twitter and app_key and app_secret):
            raise RuntimeError(f"Twitter is not configured for agent {agent_id}")

        client = self._twitter_factory(
            consumer_key=app_key,
            consumer_secret=app_secret,
            access_token=agent.twitter_access_token,
            access_token_secret=agent.twitter_access_secret,
        )
        with self._lock:
            # Another caller may have won the race; keep the first client.
            client = self._twitter.setdefault(agent_id, client)
        logger.info("Twitter client ready for agent %s", agent_id)
        return client

    def telegram(self, agent: Any) -> TelegramClient:
        """Get-or-create the agent's Telegram bot client. Raises RuntimeError without a bot token."""
        agent_id = str(agent.agent_id)
        with self._lock:
            client = self._telegram.get(agent_id)
        if client is not None:
            return client

        if not agent.has_telegram:
            raise RuntimeError(f"Telegram is not configured for agent {agent_id}")

        client = self._telegram_factory(
            agent.telegram_bot_token,
            api_base=str(getattr(self._settings, "telegram_api_base", "https://api.telegram.org")),
            timeout=float(getattr(self._settings, "http_timeout_seconds", 30.0)),
        )
        with self._lock:
            client = self._telegram.setdefault(agent_id, client)
        logger.info("Telegram client ready for agent %s", agent_id)
        return client

    def cached_agent_ids(self) -> dict[str, list[str]]:
        with self._lock:
            return {"twitter": sorted(self._twitter), "telegram": sorted(self._telegram)}

    async def evict(self, agent_id: str) -> None:
        """Drop (and close) cached clients of one agent, e.g. after its credentials changed."""
        with self._lock:
            tw = self._twitter.pop(agent_id, None)
            tg = self._telegram.pop(agent_id, None)
        for client in (tw, tg):
            if client is not None:
                await _close_quietly(client)
        if tw is not None or tg is not None:
            logger.info("Evicted cached clients for agent %s", agent_id)

    async def aclose(self) -> None:
        with self._lock:
            ids = set(self._twitter) | set(self._telegram)
        for agent_id in ids:
            await self.evict(agent_id)
