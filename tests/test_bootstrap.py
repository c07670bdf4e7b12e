# tests/test_bootstrap.py

from __future__ import annotations

import pytest

from persona_tasks.cli.bootstrap import create_initial_state
from persona_tasks.cli.loops import start_task_loops_in_background
from persona_tasks.core.agents import AgentDirectory
from persona_tasks.llm.client import friendly_llm_error_message
from persona_tasks.llm.offline import OfflineLLMClient
from persona_tasks.tasks.task_api import handle_inbound_message
from persona_tasks.tasks.task_models import TaskStatus, TaskType


def test_state_without_keys_runs_offline(settings) -> None:
    state = create_initial_state(settings=settings)

    assert isinstance(state.llm, OfflineLLMClient)
    assert state.agents.get_agent("console") is not None
    assert settings.tasks_db_path.exists()


def test_seeded_console_agent_is_persisted(settings) -> None:
    create_initial_state(settings=settings)

    assert settings.agents_path.exists()
    reloaded = AgentDirectory(settings.agents_path).get_agent("console")
    assert reloaded is not None
    assert reloaded.platforms == ["web"]
    assert reloaded.has_twitter is False
    assert reloaded.has_telegram is False


@pytest.mark.asyncio
async def test_offline_mode_classifies_by_keywords_and_fails_images(settings) -> None:
    state = create_initial_state(settings=settings)

    intake = await handle_inbound_message(
        state,
        text="Draw a neon dragon",
        agent_id="console",
        channel_id="web",
        channel_user_id="console-user",
    )

    assert intake.task is not None
    assert intake.task.task_type == TaskType.API_CALL
    result = await state.service_handler.process(intake.task)
    assert result.success is False


def test_background_loops_accept_work_and_stop(settings) -> None:
    settings.task_requeue_failed = False
    state = create_initial_state(settings=settings)
    runner = start_task_loops_in_background(state)
    assert runner is not None

    try:
        intake = runner.submit(
            handle_inbound_message(
                state,
                text="Send 1 SOL to 0x123abc",
                agent_id="console",
                channel_id="web",
                channel_user_id="console-user",
            )
        ).result(timeout=10)
    finally:
        runner.stop()
        runner.join(timeout=10)

    assert not runner.thread.is_alive()
    stored = state.task_store.get_task(intake.task.task_id)
    assert stored is not None
    assert stored.task_type == TaskType.BLOCKCHAIN_TX
    assert stored.status in (TaskStatus.PENDING, TaskStatus.COMPLETED)


def test_friendly_llm_error_message() -> None:
    assert "missing API key" in friendly_llm_error_message(RuntimeError("LLM API key is not set for this agent"))
    assert friendly_llm_error_message(RuntimeError("  ")) == "LLM error."
