# src/persona_tasks/llm/client.py

from __future__ import annotations

import logging
from typing import Any

import httpx
import openai
from openai import AsyncOpenAI

from ..core.ports import ChatMessage

logger = logging.getLogger(__name__)


def _is_auth_error(exc: Exception) -> bool:
    return exc.__class__.__name__ in {
        "AuthenticationError",
        "PermissionDeniedError",
        "UnauthorizedError",
    }


def _is_rate_limit_error(exc: Exception) -> bool:
    if isinstance(exc, openai.RateLimitError):
        return True
    return exc.__class__.__name__ in {"RateLimitError", "TooManyRequestsError"}


def _is_connection_error(exc: Exception) -> bool:
    return exc.__class__.__name__ in {
        "APIConnectionError",
        "APITimeoutError",
        "Timeout",
        "ConnectTimeout",
        "ReadTimeout",
        "WriteTimeout",
    }


def _wrap_provider_error(exc: Exception, *, what: str) -> RuntimeError:
    if _is_auth_error(exc):
        return RuntimeError(f"{what}: authentication failed. Check the OpenAI API key.")
    if _is_rate_limit_error(exc):
        return RuntimeError(f"{what}: rate-limited. Try again later.")
    if _is_connection_error(exc):
        return RuntimeError(f"{what}: network/timeout error. Try again later.")
    return RuntimeError(f"{what}: {exc.__class__.__name__}: {exc}")


def friendly_llm_error_message(err: Exception) -> str:
    msg = str(err).strip() or "LLM error."
    if "LLM API key is not set" in msg:
        return "LLM is not configured (missing API key). Set PERSONA_OPENAI_API_KEY in .env (see .env.example)."
    if "authentication failed" in msg:
        return "LLM authentication failed. Check PERSONA_OPENAI_API_KEY or the agent's openai_api_key."
    return msg


class OpenAILLMClient:
    """
    Async OpenAI client used for task classification and image generation.

    - One AsyncOpenAI instance per API key (agents may bring their own key).
    - Automatic SDK retries are disabled: the task processor owns the retry policy.
    """

    def __init__(self, settings: Any) -> None:
        self._settings = settings
        self._clients: dict[str, AsyncOpenAI] = {}

    def _timeout(self) -> httpx.Timeout:
        total = float(getattr(self._settings, "http_timeout_seconds", 30.0) or 30.0)
        return httpx.Timeout(connect=min(5.0, total), read=total, write=10.0, pool=min(5.0, total))

    def _client_for(self, api_key: str | None) -> AsyncOpenAI:
        key = (api_key or getattr(self._settings, "openai_api_key", None) or "").strip()
        if not key:
            raise RuntimeError("LLM API key is not set. Set PERSONA_OPENAI_API_KEY in your .env.")

        client = self._clients.get(key)
        if client is not None:
            return client

        base_url = getattr(self._settings, "openai_base_url", None) or None
        client = AsyncOpenAI(
            api_key=key,
            base_url=base_url,
            timeout=self._timeout(),
            max_retries=0,
        )
        self._clients[key] = client
        return client

    async def complete(
        self,
        *,
        system_prompt: str,
        messages: list[ChatMessage],
        temperature: float = 0.2,
        api_key: str | None = None,
    ) -> str:
        client = self._client_for(api_key)
        model = str(getattr(self._settings, "classifier_model", "gpt-3.5-turbo"))

        try:
            resp = await client.chat.completions.create(
                model=model,
                messages=[{"role": "system", "content": system_prompt}, *messages],  # type: ignore[list-item]
                temperature=float(temperature),
            )
        except Exception as e:
            raise _wrap_provider_error(e, what=f"Chat completion ({model})") from e

        try:
            content = resp.choices[0].message.content
        except (AttributeError, IndexError):
            content = None

        if not content:
            raise RuntimeError(f"Model returned no content: {model}")

        logger.debug("LLM: completion from model=%s (%d chars)", model, len(content))
        return content

    async def generate_image(self, *, prompt: str, api_key: str | None = None) -> str:
        client = self._client_for(api_key)
        model = str(getattr(self._settings, "image_model", "dall-e-3"))

        try:
            resp = await client.images.generate(
                model=model,
                prompt=prompt,
                n=1,
                size=getattr(self._settings, "image_size", "1024x1024"),
                quality=getattr(self._settings, "image_quality", "standard"),
            )
        except Exception as e:
            raise _wrap_provider_error(e, what=f"Image generation ({model})") from e

        data = getattr(resp, "data", None) or []
        url = getattr(data[0], "url", None) if data else None
        if not url:
            raise RuntimeError("Image generation returned no URL")

        logger.info("LLM: image generated with model=%s", model)
        return str(url)

    async def aclose(self) -> None:
        clients = list(self._clients.values())
        self._clients.clear()
        for client in clients:
            try:
                await client.close()
            except Exception:
                logger.debug("AsyncOpenAI close failed.", exc_info=True)
