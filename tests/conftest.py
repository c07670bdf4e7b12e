# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from persona_tasks.connectors.registry import ConnectionManager
from persona_tasks.connectors.web_channel import WebChannel
from persona_tasks.core.agents import AgentDirectory, AgentProfile
from persona_tasks.core.state import AppState
from persona_tasks.tasks.classifier import LLMTaskClassifier, TaskClassifier
from persona_tasks.tasks.external_services import ExternalServiceHandler
from persona_tasks.tasks.notifier import TaskNotifier
from persona_tasks.tasks.task_store import TaskStore

from .fakes import FakeLLMClient, FakeTelegramClient, FakeTwitterClient


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and the task pipeline.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="persona-tasks-test",
        # Paths (tmp per test run)
        data_dir=tmp_path,
        tasks_db_path=tmp_path / "tasks.sqlite3",
        agents_path=tmp_path / "agents.json",
        # LLM
        openai_api_key=None,
        openai_base_url=None,
        classifier_model="gpt-3.5-turbo",
        classifier_temperature=0.2,
        image_model="dall-e-3",
        image_size="1024x1024",
        image_quality="standard",
        # Pipeline
        processor_interval_seconds=0.01,
        monitor_interval_seconds=0.01,
        task_max_age_seconds=60.0,
        task_max_retries=3,
        task_retry_delay_seconds=5.0,
        task_requeue_failed=True,
        processor_batch_limit=32,
        monitor_batch_limit=64,
        memory_context_default=5,
        # External services / channels
        mcp_endpoint="https://mcp.example.test/api/action",
        http_timeout_seconds=5.0,
        twitter_integration="basic",
        twitter_app_key="app-key",
        twitter_app_secret="app-secret",
        telegram_api_base="https://telegram.example.test",
        console_agent_id="console",
    )


@pytest.fixture()
def agent() -> AgentProfile:
    return AgentProfile(
        agent_id="agent-1",
        name="Test Agent",
        openai_api_key="sk-test-key",
        twitter_access_token="tw-token",
        twitter_access_secret="tw-secret",
        telegram_bot_token="tg-token",
        max_memory_context=5,
        platforms=["web", "twitter", "telegram"],
    )


@pytest.fixture()
def llm() -> FakeLLMClient:
    return FakeLLMClient()


@pytest.fixture()
def twitter() -> FakeTwitterClient:
    return FakeTwitterClient(usernames={"u-42": "alice"})


@pytest.fixture()
def telegram() -> FakeTelegramClient:
    return FakeTelegramClient()


@pytest.fixture()
def task_store(settings: SimpleNamespace) -> TaskStore:
    return TaskStore(settings.tasks_db_path)


@pytest.fixture()
def state(
    settings: SimpleNamespace,
    agent: AgentProfile,
    llm: FakeLLMClient,
    twitter: FakeTwitterClient,
    telegram: FakeTelegramClient,
    task_store: TaskStore,
) -> AppState:
    """
    AppState wired with deterministic fakes.

    NOTE: We keep the real SQLite TaskStore here because its conditional updates
    (claim, notified flip) are part of what we want to test.
    """
    agents = AgentDirectory()
    agents.upsert(agent)

    connections = ConnectionManager(
        settings,
        twitter_factory=lambda **_kw: twitter,
        telegram_factory=lambda _token, **_kw: telegram,
    )
    web_channel = WebChannel()

    return AppState(
        settings=settings,
        llm=llm,
        task_store=task_store,
        agents=agents,
        connections=connections,
        web_channel=web_channel,
        classifier=TaskClassifier(LLMTaskClassifier(llm)),
        service_handler=ExternalServiceHandler(llm, settings),
        notifier=TaskNotifier(
            task_store=task_store,
            agents=agents,
            connections=connections,
            web_channel=web_channel,
        ),
    )
