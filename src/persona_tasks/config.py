# src/persona_tasks/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app (normal "settings layer").
- No secrets required at import time.
- Every polling interval and limit of the task pipeline is a setting, including the task max age.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

ENV_PREFIX = "PERSONA"


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


# Local .env; real environment variables win.
load_dotenv(override=False)


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _first_env(*names: str, default: str | None = None) -> str | None:
    for n in names:
        v = os.getenv(n)
        if v is not None and v.strip() != "":
            return v
    return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- Connector flags ----
    console_enabled: bool
    console_agent_id: str

    # ---- LLM / OpenAI ----
    openai_api_key: Optional[str]
    openai_base_url: Optional[str]
    classifier_model: str
    classifier_temperature: float
    image_model: str
    image_size: str
    image_quality: str

    # ---- Task pipeline ----
    processor_interval_seconds: float
    monitor_interval_seconds: float
    task_max_age_seconds: float
    task_max_retries: int
    task_retry_delay_seconds: float
    task_requeue_failed: bool
    processor_batch_limit: int
    monitor_batch_limit: int
    memory_context_default: int

    # ---- External services ----
    mcp_endpoint: str
    http_timeout_seconds: float

    # ---- Twitter / Telegram ----
    twitter_integration: str
    twitter_app_key: Optional[str]
    twitter_app_secret: Optional[str]
    telegram_api_base: str

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    tasks_db_path: Path
    agents_path: Path

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "persona-tasks") or "persona-tasks"
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        console_enabled = _env_bool(_k("CONSOLE_ENABLED"), True)
        console_agent_id = _env(_k("CONSOLE_AGENT_ID"), "console").strip() or "console"

        # The process-wide key doubles as the default for image generation.
        openai_api_key = _first_env(_k("OPENAI_API_KEY"), "OPENAI_API_KEY", default=None)
        openai_base_url = _first_env(_k("OPENAI_BASE_URL"), "OPENAI_BASE_URL", default=None)

        classifier_model = _env(_k("CLASSIFIER_MODEL"), "gpt-3.5-turbo")
        classifier_temperature = _env_float(_k("CLASSIFIER_TEMPERATURE"), 0.2)
        image_model = _env(_k("IMAGE_MODEL"), "dall-e-3")
        image_size = _env(_k("IMAGE_SIZE"), "1024x1024")
        image_quality = _env(_k("IMAGE_QUALITY"), "standard")

        processor_interval_seconds = _env_float(_k("PROCESSOR_INTERVAL_SECONDS"), 5.0)
        monitor_interval_seconds = _env_float(_k("MONITOR_INTERVAL_SECONDS"), 5.0)
        task_max_age_seconds = _env_float(_k("TASK_MAX_AGE_SECONDS"), 60.0)
        task_max_retries = _env_int(_k("TASK_MAX_RETRIES"), 3)
        task_retry_delay_seconds = _env_float(_k("TASK_RETRY_DELAY_SECONDS"), 5.0)
        task_requeue_failed = _env_bool(_k("TASK_REQUEUE_FAILED"), True)
        processor_batch_limit = _env_int(_k("PROCESSOR_BATCH_LIMIT"), 32)
        monitor_batch_limit = _env_int(_k("MONITOR_BATCH_LIMIT"), 64)
        memory_context_default = _env_int(_k("MEMORY_CONTEXT_DEFAULT"), 5)

        mcp_endpoint = _env(_k("MCP_ENDPOINT"), "https://mcp-server.example.com/api/action")
        http_timeout_seconds = _env_float(_k("HTTP_TIMEOUT_SECONDS"), 30.0)

        twitter_integration = _env(_k("TWITTER_INTEGRATION"), _env("TWITTER_INTEGRATION", "basic")).strip().lower()
        twitter_app_key = _first_env(_k("TWITTER_APP_KEY"), "TWITTER_APP_KEY", default=None)
        twitter_app_secret = _first_env(_k("TWITTER_APP_SECRET"), "TWITTER_APP_SECRET", default=None)
        telegram_api_base = _env(_k("TELEGRAM_API_BASE"), "https://api.telegram.org")

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/persona"))
        tasks_db_path = _env_path(_k("TASKS_DB_PATH"), data_dir / "tasks.sqlite3")
        agents_path = _env_path(_k("AGENTS_PATH"), data_dir / "agents.json")

        return Settings(
            app_name=app_name,
            log_level=log_level,
            console_enabled=console_enabled,
            console_agent_id=console_agent_id,
            openai_api_key=openai_api_key,
            openai_base_url=openai_base_url,
            classifier_model=classifier_model,
            classifier_temperature=classifier_temperature,
            image_model=image_model,
            image_size=image_size,
            image_quality=image_quality,
            processor_interval_seconds=processor_interval_seconds,
            monitor_interval_seconds=monitor_interval_seconds,
            task_max_age_seconds=task_max_age_seconds,
            task_max_retries=task_max_retries,
            task_retry_delay_seconds=task_retry_delay_seconds,
            task_requeue_failed=task_requeue_failed,
            processor_batch_limit=processor_batch_limit,
            monitor_batch_limit=monitor_batch_limit,
            memory_context_default=memory_context_default,
            mcp_endpoint=mcp_endpoint,
            http_timeout_seconds=http_timeout_seconds,
            twitter_integration=twitter_integration,
            twitter_app_key=twitter_app_key,
            twitter_app_secret=twitter_app_secret,
            telegram_api_base=telegram_api_base,
            data_dir=data_dir,
            tasks_db_path=tasks_db_path,
            agents_path=agents_path,
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
