# src/persona_tasks/tasks/classifier.py

from __future__ import annotations

"""
Task classifier.

Two-stage strategy:
- fast path: canonical chat utterances never leave the process
- primary: LLMTaskClassifier (external call, may fail)
- fallback: KeywordTaskClassifier (deterministic, never fails)

TaskClassifier composes them and never raises to the caller.
"""

import json
import logging
import re
from collections.abc import Sequence
from typing import Any, Protocol

from ..core.ports import LLMClient
from .classifier_prompt import API_KEY_PLACEHOLDER, CLASSIFIER_PROMPT_VERSION, build_classifier_prompt
from .task_models import IMAGE_GENERATION, Classification, TaskType

logger = logging.getLogger(__name__)

FAST_CHAT_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(
        r"^(?:hi|hello|hey|heya|yo|sup|howdy|gm|gn|good (?:morning|afternoon|evening|night))(?: there)?[\s!.,]*$",
        re.IGNORECASE,
    ),
    re.compile(r"^(?:thanks|thank you|thx|ty)(?: so much| a lot| very much)?[\s!.,]*$", re.IGNORECASE),
    re.compile(r"^(?:who|what) are you\s*\??$", re.IGNORECASE),
    re.compile(r"^what(?:'s| is) your name\s*\??$", re.IGNORECASE),
    re.compile(r"^how are you(?: doing)?\s*\??$", re.IGNORECASE),
    re.compile(r"^(?:ok|okay|k|cool|nice|great|lol|haha+)[\s!.]*$", re.IGNORECASE),
    # Bare punctuation / emoji.
    re.compile(r"^[\W_]*$"),
)

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)
_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)

IMAGE_KEYWORDS = re.compile(
    r"\b(?:generate|create|make) (?:an? )?image\b|\bdraw\b|"
    r"\b(?:create|make|draw|generate|paint|render)\b.*"
    r"\b(?:cat|dog|sunset|rainbow|sky|dragon|tree|unicorn|picture|art|image|photo|portrait|logo)s?\b",
    re.IGNORECASE,
)
BLOCKCHAIN_KEYWORDS = re.compile(
    r"\bsend\b.*\b(?:sol|eth|btc|usdc|tokens?)\b|\btransaction\b|\btransfer\b|\b0x[0-9a-f]{3,}\b",
    re.IGNORECASE,
)
MCP_KEYWORDS = re.compile(r"\bmcp\b|\bprotocol\b", re.IGNORECASE)
API_KEYWORDS = re.compile(r"\bapi\b|\bfetch data\b|\bfetch\b.*\bdata\b", re.IGNORECASE)


def is_fast_path_chat(message: str) -> bool:
    text = (message or "").strip()
    return any(p.match(text) for p in FAST_CHAT_PATTERNS)


class ClassifierStrategy(Protocol):
    async def classify(self, message: str, *, agent: Any = None, recent_tasks: Sequence[Any] = ()) -> Classification: ...


def _agent_key(agent: Any) -> str | None:
    return getattr(agent, "openai_api_key", None) if agent is not None else None


def parse_classification(text: str) -> Classification:
    """
    Parse a model reply into a Classification.

    Strict JSON first, then the first {...} block embedded in the text.
    Raises ValueError for anything that is not a well-formed classification.
    """
    raw = _CODE_FENCE.sub("", (text or "").strip())

    data: Any
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        m = _JSON_OBJECT.search(raw)
        if not m:
            raise ValueError("classifier reply contains no JSON object") from None
        data = json.loads(m.group(0))

    if not isinstance(data, dict):
        raise ValueError("classifier reply is not a JSON object")

    if "task_type" not in data:
        raise ValueError("classifier reply has no task_type")
    task_type = TaskType.parse(data.get("task_type"))

    if task_type == TaskType.CHAT:
        return Classification.chat()

    # Older prompts nested the service under "external_service".
    nested = data.get("external_service") if isinstance(data.get("external_service"), dict) else {}
    service_name = data.get("service_name") or nested.get("service_name")
    if not isinstance(service_name, str) or not service_name.strip():
        raise ValueError(f"{task_type.value} classification without service_name")

    request_data = data.get("request_data", nested.get("request_data"))
    if not isinstance(request_data, dict):
        request_data = {}

    api_key = data.get("api_key") or nested.get("api_key")
    if not isinstance(api_key, str) or not api_key.strip() or api_key.strip() == API_KEY_PLACEHOLDER:
        api_key = None

    return Classification(
        task_type=task_type,
        service_name=service_name.strip(),
        request_data=request_data,
        api_key=api_key,
    )


class LLMTaskClassifier:
    """Primary classifier: asks the chat completion provider for a JSON verdict."""

    def __init__(self, llm: LLMClient, *, temperature: float = 0.2, default_memory_context: int = 5) -> None:
        self._llm = llm
        self._temperature = float(temperature)
        self._default_memory_context = int(default_memory_context)

    async def classify(self, message: str, *, agent: Any = None, recent_tasks: Sequence[Any] = ()) -> Classification:
        window = getattr(agent, "max_memory_context", None)
        if window is None:
            window = self._default_memory_context

        prompt = build_classifier_prompt(list(recent_tasks)[: max(0, int(window))])
        reply = await self._llm.complete(
            system_prompt=prompt,
            messages=[{"role": "user", "content": message}],
            temperature=self._temperature,
            api_key=_agent_key(agent),
        )
        result = parse_classification(reply)
        logger.debug(
            "LLM classification (prompt %s) for %r: %s",
            CLASSIFIER_PROMPT_VERSION,
            message[:80],
            result,
        )
        return result


class KeywordTaskClassifier:
    """Deterministic fallback classifier."""

    async def classify(self, message: str, *, agent: Any = None, recent_tasks: Sequence[Any] = ()) -> Classification:
        return self.classify_sync(message, agent=agent)

    def classify_sync(self, message: str, *, agent: Any = None) -> Classification:
        text = message or ""

        if IMAGE_KEYWORDS.search(text):
            return Classification(
                task_type=TaskType.API_CALL,
                service_name=IMAGE_GENERATION,
                request_data={"prompt": message},
                api_key=_agent_key(agent),
            )

        if BLOCKCHAIN_KEYWORDS.search(text):
            return Classification(
                task_type=TaskType.BLOCKCHAIN_TX,
                service_name="solana",
                request_data={"command": message},
            )

        if MCP_KEYWORDS.search(text):
            return Classification(
                task_type=TaskType.MCP_ACTION,
                service_name="mcp_server",
                request_data={"command": message},
            )

        if API_KEYWORDS.search(text):
            return Classification(
                task_type=TaskType.API_CALL,
                service_name="third_party_api",
                request_data={"command": message},
            )

        return Classification.chat()


class TaskClassifier:
    """
    Fast path, then primary, then fallback.

    Guarantees a well-formed Classification; exceptions never escape classify().
    """

    def __init__(self, primary: ClassifierStrategy | None, fallback: KeywordTaskClassifier | None = None) -> None:
        self._primary = primary
        self._fallback = fallback or KeywordTaskClassifier()

    async def classify(self, message: str, *, agent: Any = None, recent_tasks: Sequence[Any] = ()) -> Classification:
        if is_fast_path_chat(message):
            return Classification.chat()

        result: Classification | None = None
        if self._primary is not None:
            try:
                result = await self._primary.classify(message, agent=agent, recent_tasks=recent_tasks)
            except Exception as e:
                logger.warning(
                    "Primary classifier failed for %r (%s: %s); using keyword fallback",
                    message[:80],
                    e.__class__.__name__,
                    e,
                )
                result = None

        if result is None:
            result = self._fallback.classify_sync(message, agent=agent)

        return _backfill_api_key(result, agent)


def _backfill_api_key(result: Classification, agent: Any) -> Classification:
    if result.task_type != TaskType.API_CALL or result.service_name != IMAGE_GENERATION or result.api_key:
        return result
    key = _agent_key(agent)
    if not key:
        return result
    return Classification(
        task_type=result.task_type,
        service_name=result.service_name,
        request_data=result.request_data,
        api_key=key,
    )
