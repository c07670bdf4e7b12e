# tests/test_task_api.py

from __future__ import annotations

import json

import pytest

from persona_tasks.core.state import AppState
from persona_tasks.tasks.classifier_prompt import API_KEY_PLACEHOLDER
from persona_tasks.tasks.notifier import IMAGE_SUCCESS_MESSAGE
from persona_tasks.tasks.task_api import get_task_status, handle_inbound_message
from persona_tasks.tasks.task_models import ChatTask, ServiceTask, TaskStatus, TaskType
from persona_tasks.tasks.task_monitor import monitor_tasks_once
from persona_tasks.tasks.task_processor import process_pending_tasks_once

IMAGE_REPLY = json.dumps(
    {
        "task_type": "api_call",
        "service_name": "image_generation",
        "request_data": {"prompt": "Draw a neon dragon"},
        "api_key": API_KEY_PLACEHOLDER,
    }
)


async def _intake(state: AppState, text: str, **kwargs):
    kwargs.setdefault("agent_id", "agent-1")
    kwargs.setdefault("channel_id", "web")
    kwargs.setdefault("channel_user_id", "u-42")
    return await handle_inbound_message(state, text=text, **kwargs)


@pytest.mark.asyncio
async def test_image_request_end_to_end(state: AppState, llm) -> None:
    llm.next_text = IMAGE_REPLY

    intake = await _intake(state, "Draw a neon dragon")

    assert intake.is_task
    task_id = intake.task.task_id
    assert task_id in (intake.acknowledgement or "")
    queued = get_task_status(state, task_id)
    assert isinstance(queued, ServiceTask)
    assert queued.status == TaskStatus.PENDING
    assert queued.external_service.api_key == "sk-test-key"

    await process_pending_tasks_once(state.task_store, state.service_handler)
    done = get_task_status(state, task_id)
    assert done.status == TaskStatus.COMPLETED
    assert done.result == llm.image_url
    assert llm.image_calls == [("Draw a neon dragon", "sk-test-key")]

    await monitor_tasks_once(state.task_store, state.notifier)
    messages = state.web_channel.drain("u-42")
    assert [(m.text, m.image_url) for m in messages] == [(IMAGE_SUCCESS_MESSAGE, llm.image_url)]
    assert get_task_status(state, task_id).notified is True


@pytest.mark.asyncio
async def test_small_talk_is_not_stored(state: AppState, llm) -> None:
    intake = await _intake(state, "hello")

    assert intake.is_task is False
    assert intake.classification.is_chat
    assert intake.acknowledgement is None
    assert state.task_store.count_tasks() == 0
    assert llm.calls == []


@pytest.mark.asyncio
async def test_queued_chat_question_gets_its_follow_up(state: AppState) -> None:
    intake = await _intake(state, "What is the capital of France?")

    assert intake.worthy is True
    assert isinstance(intake.task, ChatTask)
    assert intake.acknowledgement is not None

    await process_pending_tasks_once(state.task_store, state.service_handler)
    await monitor_tasks_once(state.task_store, state.notifier)
    await monitor_tasks_once(state.task_store, state.notifier)

    stored = get_task_status(state, intake.task.task_id)
    assert stored.status == TaskStatus.COMPLETED
    assert stored.notified is True
    messages = state.web_channel.drain("u-42")
    assert [(m.task_id, m.text) for m in messages] == [(intake.task.task_id, "Task completed: Done")]


@pytest.mark.asyncio
async def test_classifier_sees_recent_commands_of_the_requester(state: AppState, llm) -> None:
    llm.next_text = IMAGE_REPLY
    await _intake(state, "Draw a neon dragon", task_id="first")

    llm.next_text = '{"task_type": "chat"}'
    await _intake(state, "Make it bigger please, with more neon", unified_user_id="acct-1")
    await _intake(state, "Make it bigger please, with more neon")

    # unified id takes precedence: no history under acct-1
    assert "Context (recent tasks):\nNone" in llm.calls[1][0]
    assert "Command: Draw a neon dragon" in llm.calls[2][0]


@pytest.mark.asyncio
async def test_blockchain_request_is_typed(state: AppState, llm) -> None:
    llm.next_text = '{"task_type": "blockchain_tx", "service_name": "solana", "request_data": {"amount": 1}}'

    intake = await _intake(state, "Send 1 SOL to 0x123abc", channel_id="twitter_99", temporary_user_id="tmp-7")

    assert intake.task.task_type == TaskType.BLOCKCHAIN_TX
    assert intake.task.temporary_user_id == "tmp-7"
    assert intake.task.requester_id == "tmp-7"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "kwargs",
    [
        {"text": "   "},
        {"text": "Draw a cat", "unified_user_id": "a", "temporary_user_id": "b"},
    ],
)
async def test_invalid_intake_is_rejected(state: AppState, kwargs) -> None:
    text = kwargs.pop("text")
    with pytest.raises(ValueError):
        await _intake(state, text, **kwargs)
    assert state.task_store.count_tasks() == 0
