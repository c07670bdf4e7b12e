# src/persona_tasks/logging_setup.py

from __future__ import annotations

import logging
import sys
from pathlib import Path

LOG_FILE_NAME = "persona-tasks.log"
LOG_FORMAT = "%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Processor and monitor tick every few seconds; on stderr only their problems matter.
_POLLING_LOGGERS = frozenset(
    {
        "persona_tasks.tasks.task_processor",
        "persona_tasks.tasks.task_monitor",
    }
)
_SDK_LOGGERS = ("httpx", "httpcore", "openai", "tweepy")


class _ConsoleNoiseFilter(logging.Filter):
    """Decides which records reach stderr while the console prompt is active.

    Task lifecycle logs pass, the polling loops pass at WARNING and above,
    everything foreign (SDKs, captured ``warnings``) only at ERROR.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if not record.name.startswith("persona_tasks."):
            return record.levelno >= logging.ERROR
        if record.name in _POLLING_LOGGERS:
            return record.levelno >= logging.WARNING
        return True


def setup_logging(
    *,
    log_dir: str | Path = ".local/persona",
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
) -> None:
    """Route persona-tasks logs to a filtered stderr stream and a full log file.

    Replaces whatever handlers the root logger had, so the entrypoint calls it
    before any task loop starts.
    """
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for handler in list(root.handlers):
        root.removeHandler(handler)

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(console_level)
    stderr_handler.setFormatter(formatter)
    stderr_handler.addFilter(_ConsoleNoiseFilter())
    root.addHandler(stderr_handler)

    file_handler = logging.FileHandler(str(log_path / LOG_FILE_NAME), encoding="utf-8")
    file_handler.setLevel(file_level)
    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)

    # warnings.warn() lands on "py.warnings", which the stderr filter treats as foreign.
    logging.captureWarnings(True)

    for name in _SDK_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
