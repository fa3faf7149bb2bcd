# src/agent_dispatch/connectors/scheduler_runner.py

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
from dataclasses import dataclass

from ..core.state import AppState
from ..tasks.task_scheduler import run_task_scheduler

logger = logging.getLogger(__name__)


async def _run_dispatch_loop(state: AppState, stop_event: asyncio.Event) -> None:
    """
    Run the dispatch loop until stop_event is set.

    Shutdown:
    - main thread sets stop_event via loop.call_soon_threadsafe(stop_event.set)
    - the scheduler task is cancelled, which also cancels in-flight executions
    """
    settings = state.settings
    scheduler_task = asyncio.create_task(
        run_task_scheduler(
            state.scheduler,
            interval_seconds=settings.tick_interval_seconds,
            cleanup_interval_seconds=settings.cleanup_interval_seconds,
        )
    )

    try:
        await stop_event.wait()
    except asyncio.CancelledError:
        logger.info("Dispatch loop cancelled.")
    finally:
        scheduler_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await scheduler_task
        logger.info("Dispatch loop stopped.")


@dataclass
class SchedulerBackgroundRunner:
    thread: threading.Thread
    loop: asyncio.AbstractEventLoop
    stop_event: asyncio.Event

    def stop(self) -> None:
        try:
            self.loop.call_soon_threadsafe(self.stop_event.set)
        except Exception:
            logger.debug("Failed to signal scheduler stop.", exc_info=True)

    def join(self, timeout: float | None = None) -> None:
        self.thread.join(timeout=timeout)


def start_scheduler_in_background(state: AppState) -> SchedulerBackgroundRunner | None:
    """
    Start the dispatch loop in a background thread (so the console REPL can run in parallel).

    Why a thread:
    - console REPL is blocking (input()).
    - the dispatch loop is async and wants its own event loop.
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
            loop.run_until_complete(_run_dispatch_loop(state, stop_event))
        except Exception:
            logger.exception("Dispatch loop crashed.")
        finally:
            with contextlib.suppress(Exception):
                loop.stop()
            with contextlib.suppress(Exception):
                loop.close()

    t = threading.Thread(target=runner, name="dispatch-loop", daemon=True)
    t.start()

    ready.wait(timeout=5.0)
    loop = holder.get("loop")
    stop_event = holder.get("stop_event")

    if not isinstance(loop, asyncio.AbstractEventLoop) or not isinstance(stop_event, asyncio.Event):
        logger.error("Scheduler thread did not initialize properly.")
        return None

    logger.info("Scheduler background thread started.")
    return SchedulerBackgroundRunner(thread=t, loop=loop, stop_event=stop_event)
