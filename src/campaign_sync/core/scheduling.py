from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from .ports import ScheduledHandle, SchedulerPort

TaskFactory = Callable[[], Awaitable[None]]


class _TaskTracker:
    def __init__(self, logger: logging.Logger | None = None):
        self._tasks: set[asyncio.Task] = set()
        self._logger = logger or logging.getLogger(__name__)

    def spawn(self, factory: TaskFactory) -> None:
        task = asyncio.get_running_loop().create_task(self._run(factory))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, factory: TaskFactory) -> None:
        try:
            await factory()
        except Exception:
            self._logger.exception("Background task failed")

    async def drain(self) -> None:
        """Wait until no spawned task is left, including ones spawned meanwhile."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class _AsyncioHandle:
    def __init__(self, handle: asyncio.TimerHandle):
        self._handle = handle

    def cancel(self) -> None:
        self._handle.cancel()


class AsyncioScheduler(_TaskTracker):
    def call_later(self, delay: float, callback: TaskFactory) -> ScheduledHandle:
        loop = asyncio.get_running_loop()
        return _AsyncioHandle(loop.call_later(delay, self.spawn, callback))


class _ManualHandle:
    def __init__(self, due: float, seq: int, callback: TaskFactory):
        self.due = due
        self.seq = seq
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler(_TaskTracker):
    """Virtual clock: scheduled callbacks run only inside ``advance``."""

    def __init__(self, logger: logging.Logger | None = None):
        super().__init__(logger)
        self.now = 0.0
        self._seq = 0
        self._pending: list[_ManualHandle] = []

    def call_later(self, delay: float, callback: TaskFactory) -> ScheduledHandle:
        self._seq += 1
        handle = _ManualHandle(self.now + max(0.0, delay), self._seq, callback)
        self._pending.append(handle)
        return handle

    @property
    def pending_count(self) -> int:
        return sum(1 for h in self._pending if not h.cancelled)

    async def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            self._pending = [h for h in self._pending if not h.cancelled]
            due = [h for h in self._pending if h.due <= target]
            if not due:
                break
            handle = min(due, key=lambda h: (h.due, h.seq))
            self._pending.remove(handle)
            self.now = handle.due
            await self._run(handle.callback)
            await self.drain()
        self.now = target


class DebounceSlot:
    """Holds at most one scheduled write; each ``schedule`` replaces it."""

    def __init__(self, scheduler: SchedulerPort, delay: float, logger: logging.Logger | None = None):
        self._scheduler = scheduler
        self._delay = delay
        self._handle: ScheduledHandle | None = None
        self._write: TaskFactory | None = None
        self._logger = logger or logging.getLogger(__name__)

    @property
    def pending(self) -> bool:
        return self._write is not None

    def schedule(self, write: TaskFactory) -> None:
        self.cancel()
        self._write = write
        self._handle = self._scheduler.call_later(self._delay, self._fire)
        self._logger.debug("Write scheduled in %.3fs", self._delay)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
        self._handle = None
        self._write = None

    async def flush(self) -> None:
        write = self._write
        self.cancel()
        if write is not None:
            await write()

    async def _fire(self) -> None:
        write = self._write
        self._handle = None
        self._write = None
        if write is not None:
            await write()
