# src/persona_tasks/connectors/telegram_client.py

from __future__ import annotations

import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)

MAX_MESSAGE_CHARS = 4096


class TelegramBotClient:
    """
    Minimal Telegram Bot API client (sendMessage / sendPhoto) over httpx.

    One instance per bot token; owned by the ConnectionManager.
    """

    def __init__(
        self,
        bot_token: str,
        *,
        api_base: str = "https://api.telegram.org",
        timeout: float = 20.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        token = (bot_token or "").strip()
        if not token:
            raise RuntimeError("Telegram bot token is missing")
        self._token = token
        self._api_base = api_base.rstrip("/")
        self._http = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_http = http_client is None

    async def _api_post(self, method: str, payload: dict[str, Any]) -> dict[str, Any]:
        url = f"{self._api_base}/bot{self._token}/{method}"
        res = await self._http.post(url, json=payload)
        res.raise_for_status()
        data = res.json()
        if not data.get("ok"):
            raise RuntimeError(f"Telegram API error: {data.get('description') or data}")
        return data

    async def send_message(self, chat_id: str, text: str) -> None:
        await self._api_post("sendMessage", {"chat_id": chat_id, "text": text[:MAX_MESSAGE_CHARS]})
        logger.debug("Telegram message sent chat_id=%s", chat_id)

    async def send_photo(self, chat_id: str, url: str) -> None:
        await self._api_post("sendPhoto", {"chat_id": chat_id, "photo": url})
        logger.debug("Telegram photo sent chat_id=%s", chat_id)

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()
