from typing import Awaitable, Callable, Dict, Hashable, Optional
import asyncio

import structlog

logger = structlog.get_logger(__name__)

TimeoutCallback = Callable[[], Awaitable[None]]


class TimerGroup:
    """Single-shot countdown tasks keyed by name.

    Arming a key replaces its running countdown. A countdown never cancels
    the task it is running in, so a callback may safely re-arm timers.
    """

    def __init__(self, label: str):
        self.label = label
        self._tasks: Dict[Hashable, asyncio.Task] = {}

    def arm(self, key: Hashable, seconds: float, callback: TimeoutCallback) -> asyncio.Task:
        self.cancel(key)
        task = asyncio.create_task(self._countdown(key, seconds, callback), name=f"{self.label}:{key}")
        self._tasks[key] = task
        return task

    def cancel(self, key: Hashable) -> bool:
        task = self._tasks.pop(key, None)
        return self._cancel_task(task)

    def cancel_all(self) -> int:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        return sum(1 for task in tasks if self._cancel_task(task))

    def is_armed(self, key: Hashable) -> bool:
        task = self._tasks.get(key)
        return task is not None and not task.done()

    def __len__(self) -> int:
        return sum(1 for task in self._tasks.values() if not task.done())

    async def _countdown(self, key: Hashable, seconds: float, callback: TimeoutCallback):
        try:
            await asyncio.sleep(seconds)
        except asyncio.CancelledError:
            logger.debug("Timer cancelled", timer=self.label, key=str(key))
            raise

        if self._tasks.get(key) is asyncio.current_task():
            del self._tasks[key]

        try:
            await callback()
        except Exception:
            logger.exception("Timer callback failed", timer=self.label, key=str(key))

    @staticmethod
    def _cancel_task(task: Optional[asyncio.Task]) -> bool:
        if task is None or task.done() or task is asyncio.current_task():
            return False
        task.cancel()
        return True
