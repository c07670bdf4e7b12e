# src/persona_tasks/llm/offline.py

from __future__ import annotations

from ..core.ports import ChatMessage


class OfflineLLMClient:
    """
    Offline deterministic LLM client used for demos when no external API is configured.

    Behavior:
    - Completions return plain text (not JSON), so the classifier falls back to keywords
    - Image generation always fails, so image tasks end as failed with a clear reason
    """

    async def complete(
        self,
        *,
        system_prompt: str,
        messages: list[ChatMessage],
        temperature: float = 0.2,
        api_key: str | None = None,
    ) -> str:
        user_text = ""
        for m in reversed(messages):
            if m["role"] == "user":
                user_text = m["content"]
                break

        return (
            "Offline demo mode: no external LLM is configured.\n"
            "Set PERSONA_OPENAI_API_KEY to enable real classification.\n\n"
            f"You said: {user_text}"
        )

    async def generate_image(self, *, prompt: str, api_key: str | None = None) -> str:
        raise RuntimeError("Image generation is unavailable in offline mode (no OpenAI API key).")
