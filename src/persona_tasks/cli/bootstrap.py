# src/persona_tasks/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires concrete implementations into AppState (LLM/store/classifier/channels),
- closes network clients on shutdown.
"""

from __future__ import annotations

import inspect
import logging

from ..config import get_settings
from ..connectors.registry import ConnectionManager
from ..connectors.web_channel import WebChannel
from ..core.agents import AgentDirectory, AgentProfile
from ..core.ports import LLMClient
from ..core.state import AppState
from ..llm.client import OpenAILLMClient
from ..llm.offline import OfflineLLMClient
from ..tasks.classifier import LLMTaskClassifier, TaskClassifier
from ..tasks.external_services import ExternalServiceHandler
from ..tasks.notifier import TaskNotifier
from ..tasks.task_store import TaskStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.tasks_db_path.parent.mkdir(parents=True, exist_ok=True)
    settings.agents_path.parent.mkdir(parents=True, exist_ok=True)


def _ensure_console_agent(agents: AgentDirectory, settings) -> None:
    agent_id = str(getattr(settings, "console_agent_id", "console") or "console")
    if agents.get_agent(agent_id) is not None:
        return
    # No own key: image tasks fall back to the process-wide key.
    agents.upsert(AgentProfile(agent_id=agent_id, name=str(settings.app_name), platforms=["web"]))
    agents.save()
    logger.info("Seeded console agent %s", agent_id)


def _build_llm(settings, agents: AgentDirectory) -> LLMClient:
    has_key = bool(settings.openai_api_key) or any(a.openai_api_key for a in agents.list_agents())
    if not has_key:
        # Fallback for demos / local runs without external services.
        logger.warning("No OpenAI API key configured; using the offline LLM client.")
        return OfflineLLMClient()
    return OpenAILLMClient(settings)


def create_initial_state(*, settings=None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    agents = AgentDirectory(settings.agents_path)
    _ensure_console_agent(agents, settings)

    llm_client = _build_llm(settings, agents)
    task_store = TaskStore(settings.tasks_db_path)
    connections = ConnectionManager(settings)
    web_channel = WebChannel()

    classifier = TaskClassifier(
        LLMTaskClassifier(
            llm_client,
            temperature=settings.classifier_temperature,
            default_memory_context=settings.memory_context_default,
        )
    )
    service_handler = ExternalServiceHandler(llm_client, settings)
    notifier = TaskNotifier(
        task_store=task_store,
        agents=agents,
        connections=connections,
        web_channel=web_channel,
        download_timeout=settings.http_timeout_seconds,
    )

    return AppState(
        settings=settings,
        llm=llm_client,
        task_store=task_store,
        agents=agents,
        connections=connections,
        web_channel=web_channel,
        classifier=classifier,
        service_handler=service_handler,
        notifier=notifier,
    )


async def aclose_state(state: AppState) -> None:
    """Best-effort close of every network client owned by the state (no exceptions escape)."""
    for name in ("notifier", "service_handler", "connections", "llm"):
        obj = getattr(state, name, None)
        close = getattr(obj, "aclose", None)
        if not callable(close):
            continue
        try:
            res = close()
            if inspect.isawaitable(res):
                await res
        except Exception:
            logger.debug("%s close failed.", name, exc_info=True)
