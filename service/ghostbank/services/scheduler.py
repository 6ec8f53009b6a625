"""
Cancellable background task owned by a flow controller.

A controller keeps exactly one ScheduledTask per state: entering a state starts
it, leaving the state (or tearing the controller down) cancels it.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Coroutine, Optional

logger = logging.getLogger(__name__)


class ScheduledTask:
    """Handle around one asyncio task."""

    def __init__(self, task: Optional[asyncio.Task] = None):
        self._task = task
        self._stop_requested = False

    @classmethod
    def start(cls, coro: Coroutine, name: Optional[str] = None) -> "ScheduledTask":
        return cls(asyncio.create_task(coro, name=name))

    @classmethod
    def every(
        cls,
        interval: float,
        callback: Callable[[], Awaitable[Optional[bool]]],
        name: Optional[str] = None,
        immediate: bool = False,
    ) -> "ScheduledTask":
        """
        Run callback repeatedly until it returns True or the task is cancelled.

        Args:
            interval: Seconds between runs
            callback: Async callable; a True result stops the loop
            immediate: Run once right away instead of waiting one interval
        """
        handle = cls()

        async def loop():
            if not immediate:
                await asyncio.sleep(interval)
            while not handle._stop_requested:
                try:
                    if await callback():
                        return
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.error(f"Scheduled task {name or callback} failed: {e}", exc_info=True)
                if handle._stop_requested:
                    return
                await asyncio.sleep(interval)

        handle._task = asyncio.create_task(loop(), name=name)
        return handle

    def cancel(self) -> None:
        """Stop the task. From inside the task itself the loop just ends after the current run."""
        self._stop_requested = True
        if self._task is asyncio.current_task():
            return
        if not self._task.done():
            self._task.cancel()

    async def aclose(self) -> None:
        """Cancel and wait until the task has actually finished."""
        self.cancel()
        if self._task is asyncio.current_task():
            return
        try:
            await self._task
        except asyncio.CancelledError:
            pass
