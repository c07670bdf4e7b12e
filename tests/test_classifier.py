# tests/test_classifier.py

from __future__ import annotations

import json

import pytest

from persona_tasks.core.agents import AgentProfile
from persona_tasks.tasks.classifier import (
    KeywordTaskClassifier,
    LLMTaskClassifier,
    TaskClassifier,
    parse_classification,
)
from persona_tasks.tasks.classifier_prompt import API_KEY_PLACEHOLDER, build_classifier_prompt
from persona_tasks.tasks.task_models import IMAGE_GENERATION, TaskType

from .fakes import FakeLLMClient, make_task


def _classifier(llm: FakeLLMClient) -> TaskClassifier:
    return TaskClassifier(LLMTaskClassifier(llm))


@pytest.mark.asyncio
@pytest.mark.parametrize("message", ["hi", "Hello!", "thanks", "thank you so much", "who are you?", "...", "👍"])
async def test_fast_path_chat_skips_the_model(message: str, agent: AgentProfile) -> None:
    llm = FakeLLMClient(error=RuntimeError("must not be called"))

    result = await _classifier(llm).classify(message, agent=agent)

    assert result.is_chat
    assert llm.calls == []


@pytest.mark.asyncio
async def test_image_classification_backfills_agent_key(agent: AgentProfile) -> None:
    llm = FakeLLMClient(
        json.dumps(
            {
                "task_type": "api_call",
                "service_name": "image_generation",
                "request_data": {"prompt": "Generate image of a sunset"},
                "api_key": API_KEY_PLACEHOLDER,
            }
        )
    )

    result = await _classifier(llm).classify("Generate image of a sunset", agent=agent)

    assert result.task_type == TaskType.API_CALL
    assert result.service_name == IMAGE_GENERATION
    assert result.request_data == {"prompt": "Generate image of a sunset"}
    assert result.api_key == "sk-test-key"
    # The agent key is used to call the provider, never written into the prompt.
    system_prompt, _messages, temperature, api_key = llm.calls[0]
    assert "sk-test-key" not in system_prompt
    assert api_key == "sk-test-key"
    assert temperature == pytest.approx(0.2)


@pytest.mark.asyncio
async def test_fallback_on_model_error_classifies_image(agent: AgentProfile) -> None:
    llm = FakeLLMClient(error=RuntimeError("API failure"))

    result = await _classifier(llm).classify("Generate image of a sunset", agent=agent)

    assert result.service_name == IMAGE_GENERATION
    assert result.request_data == {"prompt": "Generate image of a sunset"}
    assert result.api_key == "sk-test-key"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "reply",
    [
        "I think this is a picture request",
        '{"service_name": "image_generation"}',
        '{"task_type": "teleport"}',
        '{"task_type": "api_call"}',
    ],
)
async def test_unusable_replies_fall_back_to_keywords(reply: str, agent: AgentProfile) -> None:
    llm = FakeLLMClient(reply)

    result = await _classifier(llm).classify("Send 1 SOL to 0x123abc", agent=agent)

    assert result.task_type == TaskType.BLOCKCHAIN_TX
    assert result.service_name == "solana"
    assert result.request_data == {"command": "Send 1 SOL to 0x123abc"}


@pytest.mark.asyncio
async def test_embedded_json_is_extracted(agent: AgentProfile) -> None:
    llm = FakeLLMClient('Sure! Here it is:\n```json\n{"task_type": "mcp_action", "service_name": "mcp_server"}\n```')

    result = await _classifier(llm).classify("run the sync action on the server", agent=agent)

    assert result.task_type == TaskType.MCP_ACTION
    assert result.service_name == "mcp_server"
    assert result.api_key is None


def test_parse_classification_chat_drops_extras() -> None:
    result = parse_classification('{"task_type": "chat", "service_name": "x"}')
    assert result.is_chat
    assert result.service_name is None


@pytest.mark.parametrize(
    ("message", "expected_type", "expected_service"),
    [
        ("Can you make a glowing dragon?", TaskType.API_CALL, IMAGE_GENERATION),
        ("please transfer my tokens", TaskType.BLOCKCHAIN_TX, "solana"),
        ("Run MCP protocol", TaskType.MCP_ACTION, "mcp_server"),
        ("fetch data from the weather api", TaskType.API_CALL, "third_party_api"),
        ("Can you tell me about cats?", TaskType.CHAT, None),
    ],
)
def test_keyword_classifier(message: str, expected_type: TaskType, expected_service: str | None) -> None:
    result = KeywordTaskClassifier().classify_sync(message)
    assert result.task_type == expected_type
    assert result.service_name == expected_service


@pytest.mark.asyncio
async def test_recent_tasks_are_limited_by_agent_memory_window(agent: AgentProfile) -> None:
    agent.max_memory_context = 2
    llm = FakeLLMClient('{"task_type": "chat"}')
    recent = [make_task(task_id=f"r{i}", command=f"command number {i}") for i in range(5)]

    await _classifier(llm).classify("What did I ask before?", agent=agent, recent_tasks=recent)

    system_prompt = llm.calls[0][0]
    assert "command number 0" in system_prompt
    assert "command number 1" in system_prompt
    assert "command number 2" not in system_prompt


def test_prompt_without_history_says_none() -> None:
    prompt = build_classifier_prompt([])
    assert "Context (recent tasks):\nNone" in prompt
    assert "image_generation" in prompt
