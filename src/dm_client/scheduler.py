from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Coroutine, Dict, Hashable, Optional, Protocol, Set

logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


CallLater = Callable[[float, Callable[[], None]], TimerHandle]


class TimerScheduler:
    """One pending timer per key; scheduling a key again supersedes the old timer.

    ``call_later`` defaults to the running loop's. Tests inject a fake to drive
    virtual time.
    """

    def __init__(self, call_later: Optional[CallLater] = None) -> None:
        self._call_later = call_later
        self._timers: Dict[Hashable, TimerHandle] = {}

    def schedule(self, key: Hashable, delay: float, callback: Callable[[], None]) -> None:
        self.cancel(key)

        def fire() -> None:
            if self._timers.get(key) is handle:
                del self._timers[key]
            callback()

        call_later = self._call_later or asyncio.get_running_loop().call_later
        handle = call_later(delay, fire)
        self._timers[key] = handle

    def cancel(self, key: Hashable) -> bool:
        handle = self._timers.pop(key, None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def cancel_all(self) -> None:
        timers, self._timers = self._timers, {}
        for handle in timers.values():
            handle.cancel()

    def pending(self, key: Hashable) -> bool:
        return key in self._timers

    def __len__(self) -> int:
        return len(self._timers)


class BackgroundTasks:
    """Fire-and-forget tasks started from handlers that must not await."""

    def __init__(self) -> None:
        self._tasks: Set[asyncio.Task] = set()

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: str | None = None) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._finished)
        return task

    def _finished(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("background task %s failed: %s", task.get_name(), exc)

    async def drain(self) -> None:
        """Wait until every task spawned so far (and any they spawn) has finished."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def cancel_all(self) -> None:
        for task in list(self._tasks):
            task.cancel()

    def __len__(self) -> int:
        return len(self._tasks)
