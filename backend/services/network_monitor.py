"""
Network monitor

Probes reachability with a short TCP connect. While offline the tracking
engine skips AI judgment and runs on rules alone.
"""

import asyncio
from datetime import datetime
from typing import Callable, List, Optional

from core.logger import get_logger
from core.scheduler import Clock, ScheduledTask, Scheduler, SystemClock

logger = get_logger(__name__)

StatusCallback = Callable[[bool], None]


class NetworkMonitor:
    def __init__(
        self,
        host: str = "1.1.1.1",
        port: int = 53,
        timeout: float = 3.0,
        clock: Optional[Clock] = None,
    ):
        self.host = host
        self.port = port
        self.timeout = timeout
        self.clock = clock or SystemClock()

        self.is_online = True
        self.last_checked: Optional[datetime] = None
        self.last_online: Optional[datetime] = None
        self.last_offline: Optional[datetime] = None

        self._callbacks: List[StatusCallback] = []
        self._handle: Optional[ScheduledTask] = None

    async def _probe(self) -> bool:
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port), timeout=self.timeout
            )
        except (OSError, asyncio.TimeoutError):
            return False
        writer.close()
        try:
            await writer.wait_closed()
        except OSError as e:
            logger.debug(f"Probe socket close failed: {e}")
        return True

    async def check_connection(self) -> bool:
        self.last_checked = self.clock.now()
        online = await self._probe()
        self._set_status(online)
        return online

    def _set_status(self, online: bool) -> None:
        if online == self.is_online:
            return

        self.is_online = online
        if online:
            self.last_online = self.clock.now()
            logger.info("Network connection restored")
        else:
            self.last_offline = self.clock.now()
            logger.warning("Network connection lost, AI judgment disabled")

        for callback in list(self._callbacks):
            try:
                callback(online)
            except Exception as e:
                logger.error(f"Network status callback failed: {e}", exc_info=True)

    def mark_offline(self) -> None:
        """Record a network failure observed elsewhere"""
        self._set_status(False)

    def on_status_change(self, callback: StatusCallback) -> Callable[[], None]:
        self._callbacks.append(callback)

        def _remove() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return _remove

    def start_monitoring(self, scheduler: Scheduler, interval: float = 30.0) -> None:
        if self._handle is not None:
            return
        logger.info(f"Starting network monitoring (interval: {interval}s)")
        self._handle = scheduler.schedule(
            interval, self.check_connection, name="network-monitor", run_immediately=True
        )

    def stop_monitoring(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
            logger.info("Network monitoring stopped")

    def get_status(self) -> dict:
        def _iso(value: Optional[datetime]) -> Optional[str]:
            return value.isoformat() if value else None

        return {
            "is_online": self.is_online,
            "last_checked": _iso(self.last_checked),
            "last_online": _iso(self.last_online),
            "last_offline": _iso(self.last_offline),
        }
