"""
Clock and periodic task scheduling

Every recurring loop (capture loop, metadata loop, network probe) is
scheduled through a Scheduler, and every wait goes through a Clock, so
tests can swap in virtual time instead of depending on wall-clock timers.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Awaitable, Callable, Optional

from core.logger import get_logger

logger = get_logger(__name__)

TaskFunc = Callable[[], Awaitable[None]]


class Clock(ABC):
    """Time source interface"""

    @abstractmethod
    def now(self) -> datetime:
        """Timezone-aware current time"""

    @abstractmethod
    def monotonic(self) -> float:
        """Seconds from an arbitrary origin, never goes backwards"""

    @abstractmethod
    async def sleep(self, seconds: float) -> None:
        pass


class SystemClock(Clock):
    """Wall-clock implementation"""

    def now(self) -> datetime:
        return datetime.now().astimezone()

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        if seconds > 0:
            await asyncio.sleep(seconds)


class ScheduledTask:
    """Cancellable handle returned by Scheduler.schedule()"""

    def __init__(self, name: str, interval: float, task: TaskFunc):
        self.name = name
        self.interval = interval
        self.task = task
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class Scheduler(ABC):
    """Scheduler interface"""

    @abstractmethod
    def schedule(
        self,
        interval: float,
        task: TaskFunc,
        *,
        name: str = "task",
        run_immediately: bool = False,
    ) -> ScheduledTask:
        """Run task every interval seconds until the handle is cancelled"""


class _AsyncioScheduledTask(ScheduledTask):
    def __init__(self, name: str, interval: float, task: TaskFunc):
        super().__init__(name, interval, task)
        self.runner: Optional[asyncio.Task] = None
        self.ticking = False

    def cancel(self) -> None:
        super().cancel()
        # An in-flight tick runs to completion; only an idle wait is interrupted
        if self.runner and not self.runner.done() and not self.ticking:
            self.runner.cancel()


class AsyncioScheduler(Scheduler):
    """
    Runs each scheduled task in its own asyncio.Task

    A tick that raises is logged and the loop keeps going. Ticks of one
    task never overlap each other; ticks of different tasks may.
    """

    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or SystemClock()

    def schedule(
        self,
        interval: float,
        task: TaskFunc,
        *,
        name: str = "task",
        run_immediately: bool = False,
    ) -> ScheduledTask:
        handle = _AsyncioScheduledTask(name, interval, task)
        handle.runner = asyncio.create_task(
            self._run(handle, run_immediately), name=f"scheduler:{name}"
        )
        logger.debug(f"Scheduled '{name}' every {interval}s (immediate={run_immediately})")
        return handle

    async def _run(self, handle: _AsyncioScheduledTask, run_immediately: bool) -> None:
        if run_immediately:
            await self._tick(handle)
        while not handle.cancelled:
            try:
                await self.clock.sleep(handle.interval)
            except asyncio.CancelledError:
                logger.debug(f"Scheduled task '{handle.name}' cancelled")
                break
            if handle.cancelled:
                break
            await self._tick(handle)

    async def _tick(self, handle: _AsyncioScheduledTask) -> None:
        handle.ticking = True
        try:
            await handle.task()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Scheduled task '{handle.name}' failed: {e}", exc_info=True)
        finally:
            handle.ticking = False
