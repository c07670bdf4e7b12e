# src/persona_tasks/core/agents.py

"""
Agent profiles.

Agents (personas) are owned by the wider platform; this subsystem only reads them.
Locally they are kept in a JSON file (object keyed by agent_id, or a list of objects).
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import threading
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class AgentProfile:
    agent_id: str
    name: str = ""

    openai_api_key: str | None = None

    # Twitter user-context credentials. App key/secret are only used in "advance" integration mode.
    twitter_app_key: str | None = None
    twitter_app_secret: str | None = None
    twitter_access_token: str | None = None
    twitter_access_secret: str | None = None
    twitter_handle: str | None = None

    telegram_bot_token: str | None = None

    max_memory_context: int = 5
    platforms: list[str] = field(default_factory=list)

    @property
    def has_twitter(self) -> bool:
        return bool(self.twitter_access_token and self.twitter_access_secret)

    @property
    def has_telegram(self) -> bool:
        return bool(self.telegram_bot_token)

    @classmethod
    def from_dict(cls, raw: dict[str, Any], *, agent_id: str | None = None) -> AgentProfile:
        def opt(key: str) -> str | None:
            v = raw.get(key)
            if v is None:
                return None
            s = str(v).strip()
            return s or None

        try:
            mem = int(raw.get("max_memory_context", 5))
        except (TypeError, ValueError):
            mem = 5

        platforms_raw = raw.get("platforms") or []
        platforms = [str(p) for p in platforms_raw] if isinstance(platforms_raw, list) else []

        return cls(
            agent_id=str(agent_id or raw.get("agent_id") or ""),
            name=str(raw.get("name") or ""),
            openai_api_key=opt("openai_api_key"),
            twitter_app_key=opt("twitter_app_key"),
            twitter_app_secret=opt("twitter_app_secret"),
            twitter_access_token=opt("twitter_access_token"),
            twitter_access_secret=opt("twitter_access_secret"),
            twitter_handle=opt("twitter_handle"),
            telegram_bot_token=opt("telegram_bot_token"),
            max_memory_context=max(0, mem),
            platforms=platforms,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class AgentDirectory:
    """In-memory agent registry backed by an optional JSON file."""

    def __init__(self, path: str | Path | None = None) -> None:
        self._path = Path(path) if path else None
        self._lock = threading.Lock()
        self._agents: dict[str, AgentProfile] = {}
        if self._path is not None:
            self._agents = load_agents(self._path)

    def get_agent(self, agent_id: str) -> AgentProfile | None:
        with self._lock:
            return self._agents.get(agent_id)

    def list_agents(self) -> list[AgentProfile]:
        with self._lock:
            return list(self._agents.values())

    def upsert(self, agent: AgentProfile) -> None:
        if not agent.agent_id:
            raise ValueError("agent_id is required")
        with self._lock:
            self._agents[agent.agent_id] = agent

    def save(self) -> None:
        """Persist the directory to its JSON file (best-effort)."""
        if self._path is None:
            return
        with self._lock:
            data = {a.agent_id: a.to_dict() for a in self._agents.values()}
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self._path.with_suffix(".tmp")
            tmp.write_text(json.dumps(data, ensure_ascii=False, indent=2), "utf-8")
            os.replace(tmp, self._path)
            with contextlib.suppress(Exception):
                # Contains API keys.
                os.chmod(self._path, 0o600)
            logger.info("Saved %d agents to %s", len(data), self._path)
        except Exception:
            logger.exception("Failed to save agents to %s", self._path)


def load_agents(path: Path) -> dict[str, AgentProfile]:
    """Load agent profiles from JSON (best-effort)."""
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text("utf-8"))
    except Exception:
        logger.exception("Failed to load agents from %s", path)
        return {}

    items: list[tuple[str | None, Any]]
    if isinstance(data, dict):
        items = [(str(k), v) for k, v in data.items()]
    elif isinstance(data, list):
        items = [(None, v) for v in data]
    else:
        logger.warning("Agents file %s is neither an object nor a list; ignoring.", path)
        return {}

    out: dict[str, AgentProfile] = {}
    for key, raw in items:
        if not isinstance(raw, dict):
            continue
        agent = AgentProfile.from_dict(raw, agent_id=key)
        if not agent.agent_id:
            continue
        out[agent.agent_id] = agent

    logger.info("Loaded agents: %d from %s", len(out), path)
    return out
