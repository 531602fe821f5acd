"""Shared fixtures: virtual time, a manual scheduler, a temporary database and fakes"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest

from core.db import DatabaseManager
from core.scheduler import Clock, ScheduledTask, Scheduler
from models.tracking import WindowMetadata

START_TIME = datetime(2026, 1, 15, 9, 0, tzinfo=timezone.utc)


class FakeClock(Clock):
    """Virtual time; sleep() advances it instantly"""

    def __init__(self, start: datetime = START_TIME):
        self._now = start
        self._monotonic = 0.0
        self.sleeps: List[float] = []

    def now(self) -> datetime:
        return self._now

    def monotonic(self) -> float:
        return self._monotonic

    def advance(self, seconds: float) -> None:
        self._now += timedelta(seconds=seconds)
        self._monotonic += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        if seconds > 0:
            self.advance(seconds)
        await asyncio.sleep(0)


class _ManualTask(ScheduledTask):
    def __init__(self, name, interval, task, next_run: float):
        super().__init__(name, interval, task)
        self.next_run = next_run


class ManualScheduler(Scheduler):
    """Runs scheduled tasks only when the test advances virtual time"""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.tasks: List[_ManualTask] = []

    def schedule(self, interval, task, *, name="task", run_immediately=False):
        now = self.clock.monotonic()
        handle = _ManualTask(name, interval, task, now if run_immediately else now + interval)
        self.tasks.append(handle)
        return handle

    def active(self, name: Optional[str] = None) -> List[_ManualTask]:
        return [
            t for t in self.tasks if not t.cancelled and (name is None or t.name == name)
        ]

    async def advance(self, seconds: float) -> None:
        target = self.clock.monotonic() + seconds
        while True:
            due = [t for t in self.active() if t.next_run <= target]
            if not due:
                break
            handle = min(due, key=lambda t: t.next_run)
            if handle.next_run > self.clock.monotonic():
                self.clock.advance(handle.next_run - self.clock.monotonic())
            handle.next_run += handle.interval
            await handle.task()
        if target > self.clock.monotonic():
            self.clock.advance(target - self.clock.monotonic())


class FakeWindowMonitor:
    """Sample source replaying a fixed sequence; the last sample repeats"""

    def __init__(self, clock: FakeClock, samples: List[dict]):
        self.clock = clock
        self.samples = list(samples)
        self.calls = 0

    async def get_active_window(self) -> WindowMetadata:
        index = min(self.calls, len(self.samples) - 1)
        self.calls += 1
        return WindowMetadata(timestamp=self.clock.now(), **self.samples[index])


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def scheduler(clock) -> ManualScheduler:
    return ManualScheduler(clock)


@pytest.fixture
def db(tmp_path) -> DatabaseManager:
    return DatabaseManager(tmp_path / "autotracker.db")
