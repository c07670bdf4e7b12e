# src/persona_tasks/cli/loops.py

from __future__ import annotations

import asyncio
import concurrent.futures
import contextlib
import logging
import threading
from collections.abc import Coroutine
from dataclasses import dataclass
from typing import Any, TypeVar

from ..core.state import AppState
from ..tasks.task_monitor import run_task_monitor
from ..tasks.task_processor import RetryPolicy, run_task_processor
from .bootstrap import aclose_state

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class TaskLoopsRunner:
    thread: threading.Thread
    loop: asyncio.AbstractEventLoop
    stop_event: asyncio.Event

    def stop(self) -> None:
        try:
            self.loop.call_soon_threadsafe(self.stop_event.set)
        except Exception:
            logger.debug("Failed to signal task loops stop.", exc_info=True)

    def join(self, timeout: float | None = None) -> None:
        self.thread.join(timeout=timeout)

    def submit(self, coro: Coroutine[Any, Any, T]) -> concurrent.futures.Future[T]:
        """Run a coroutine on the loops' event loop from another thread (e.g. the console)."""
        return asyncio.run_coroutine_threadsafe(coro, self.loop)


async def run_task_loops(state: AppState, stop_event: asyncio.Event) -> None:
    """Run processor + monitor until stop_event is set, then close network clients."""
    settings = state.settings

    processor = asyncio.create_task(
        run_task_processor(
            state.task_store,
            state.service_handler,
            interval_seconds=settings.processor_interval_seconds,
            policy=RetryPolicy.from_settings(settings),
            batch_limit=settings.processor_batch_limit,
        ),
        name="task-processor",
    )
    monitor = asyncio.create_task(
        run_task_monitor(
            state.task_store,
            state.notifier,
            interval_seconds=settings.monitor_interval_seconds,
            max_age_seconds=settings.task_max_age_seconds,
            batch_limit=settings.monitor_batch_limit,
        ),
        name="task-monitor",
    )
    logger.info(
        "Task loops started (processor every %.1fs, monitor every %.1fs, max age %.0fs).",
        settings.processor_interval_seconds,
        settings.monitor_interval_seconds,
        settings.task_max_age_seconds,
    )

    try:
        await stop_event.wait()
    finally:
        for t in (processor, monitor):
            t.cancel()
        await asyncio.gather(processor, monitor, return_exceptions=True)
        await aclose_state(state)
        logger.info("Task loops stopped.")


def start_task_loops_in_background(state: AppState) -> TaskLoopsRunner | None:
    """
    Start both polling loops on their own event loop in a background thread,
    so the blocking console REPL can run in the main thread.
    """
    ready = threading.Event()
    holder: dict[str, object] = {}

    def runner() -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        stop_event = asyncio.Event()

        holder["loop"] = loop
        holder["stop_event"] = stop_event
        ready.set()

        try:
            loop.run_until_complete(run_task_loops(state, stop_event))
        finally:
            with contextlib.suppress(Exception):
                loop.stop()
            with contextlib.suppress(Exception):
                loop.close()

    t = threading.Thread(target=runner, name="task-loops", daemon=True)
    t.start()

    ready.wait(timeout=5.0)
    loop = holder.get("loop")
    stop_event = holder.get("stop_event")

    if not isinstance(loop, asyncio.AbstractEventLoop) or not isinstance(stop_event, asyncio.Event):
        logger.error("Task loops thread did not initialize properly.")
        return None

    logger.info("Task loops background thread started.")
    return TaskLoopsRunner(thread=t, loop=loop, stop_event=stop_event)
