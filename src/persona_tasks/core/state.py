# src/persona_tasks/core/state.py

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .agents import AgentDirectory
from .ports import LLMClient, ServiceHandler, TaskRepo

if TYPE_CHECKING:
    from ..connectors.registry import ConnectionManager
    from ..connectors.web_channel import WebChannel
    from ..tasks.classifier import TaskClassifier
    from ..tasks.notifier import TaskNotifier


@dataclass
class AppState:
    """
    Everything the task pipeline needs, wired once by the composition root.

    Both polling loops and the console share one AppState. There is no state-wide
    lock: the agent directory, connection manager and web channel lock internally,
    and the task store opens a connection per call.
    """

    settings: Any
    llm: LLMClient
    task_store: TaskRepo
    agents: AgentDirectory
    connections: ConnectionManager
    web_channel: WebChannel
    classifier: TaskClassifier
    service_handler: ServiceHandler
    notifier: TaskNotifier

