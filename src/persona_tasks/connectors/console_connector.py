# src/persona_tasks/connectors/console_connector.py

from __future__ import annotations

import logging
import sys
from datetime import datetime

from ..cli.commands import registry as command_registry
from ..cli.loops import TaskLoopsRunner
from ..core.state import AppState
from ..llm.client import friendly_llm_error_message
from ..tasks.task_api import handle_inbound_message
from .web_channel import WebMessage

logger = logging.getLogger(__name__)

CONSOLE_CHANNEL_ID = "web"
CONSOLE_USER_ID = "console-user"
INTAKE_TIMEOUT_SECONDS = 60.0


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _rewrite_prev_line(line: str) -> None:
    """
    Replace the last terminal line with `line`.
    Best-effort: if not a TTY, just print a new line.
    """
    try:
        if sys.stdout.isatty():
            sys.stdout.write("\033[1A\033[2K\r")
            sys.stdout.write(line + "\n")
            sys.stdout.flush()
        else:
            print(line)
    except Exception:
        print(line)


def _print_ts(text: str) -> None:
    print(f"[{_ts_local()}] {text}", flush=True)


def _on_web_message(msg: WebMessage) -> None:
    if msg.recipient_id != CONSOLE_USER_ID:
        return
    suffix = f"\n    {msg.image_url}" if msg.image_url else ""
    _print_ts(f"[NOTIFY] ({msg.task_id}) {msg.text}{suffix}")


def run_console_loop(state: AppState, runner: TaskLoopsRunner) -> None:
    """
    Interactive console channel.

    Messages go through the task intake as the "web" channel; notifications for the
    console user are printed as the monitor delivers them.
    """
    agent_id = str(getattr(state.settings, "console_agent_id", "console"))
    logger.info("Console connector started (agent=%s).", agent_id)
    _print_ts("[CONSOLE] Type a request. Use /help for commands. Use /exit to quit.\n")

    state.web_channel.add_listener(_on_web_message)

    def emit(text: str) -> None:
        _print_ts(text)

    while True:
        try:
            user_input = input(">>> You: ").strip()
            _rewrite_prev_line(f"[{_ts_local()}] >>> You: {user_input}")
        except EOFError:
            logger.info("Console EOF received, exiting.")
            break
        except KeyboardInterrupt:
            logger.info("Console KeyboardInterrupt, exiting.")
            print()
            break

        if not user_input:
            continue

        if user_input.lower() in ("/exit", "/quit"):
            logger.info("Console exit command received.")
            break

        # Commands (/help, /tasks, ...)
        try:
            cmd_response = command_registry.handle(
                state,
                user_input,
                user_id=CONSOLE_USER_ID,
                room_id=CONSOLE_CHANNEL_ID,
                emit=emit,
            )
        except Exception:
            logger.exception("Command handler crashed.")
            cmd_response = "Internal error while handling a command."

        if cmd_response is not None:
            _print_ts(cmd_response)
            continue

        try:
            future = runner.submit(
                handle_inbound_message(
                    state,
                    text=user_input,
                    agent_id=agent_id,
                    channel_id=CONSOLE_CHANNEL_ID,
                    channel_user_id=CONSOLE_USER_ID,
                )
            )
            result = future.result(timeout=INTAKE_TIMEOUT_SECONDS)
        except RuntimeError as e:
            _print_ts(f"[LLM] {friendly_llm_error_message(e)}")
            continue
        except Exception:
            logger.exception("Console intake crashed.")
            _print_ts("Internal error while handling the message.")
            continue

        if result.is_task:
            _print_ts(f"[TASK] {result.acknowledgement}")
        else:
            _print_ts("[CHAT] Not a task; nothing queued.")

    logger.info("Console connector finished.")
