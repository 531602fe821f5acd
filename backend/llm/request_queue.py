"""
Rate-limited request queue for reasoning-service calls

All chat-completion calls go through one FIFO queue drained by a single
worker task, so the configured requests-per-minute cap holds no matter
how many loops issue calls concurrently.
"""

import asyncio
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, TypeVar

import openai

from core.logger import get_logger
from core.scheduler import Clock, SystemClock

logger = get_logger(__name__)

T = TypeVar("T")

WINDOW_SECONDS = 60.0
WINDOW_MARGIN_SECONDS = 0.1


class QueueClearedError(Exception):
    """Raised into every pending caller when the queue is cleared"""

    def __init__(self, message: str = "Queue cleared"):
        super().__init__(message)


class _QueuedRequest:
    def __init__(
        self,
        operation: Callable[[], Awaitable[Any]],
        future: "asyncio.Future[Any]",
        max_retries: int,
    ):
        self.operation = operation
        self.future = future
        self.max_retries = max_retries
        self.retry_count = 0


def is_retryable_error(error: BaseException) -> bool:
    """Connection resets, timeouts, HTTP 429 and 5xx are worth retrying"""
    if isinstance(
        error,
        (
            openai.APIConnectionError,
            openai.APITimeoutError,
            ConnectionResetError,
            TimeoutError,
            asyncio.TimeoutError,
        ),
    ):
        return True

    status = getattr(error, "status_code", None)
    if status is None:
        status = getattr(error, "status", None)
    if isinstance(status, int):
        return status == 429 or 500 <= status < 600

    return False


class RequestQueue:
    """
    FIFO queue with a sliding-window cap and fixed minimum spacing

    Example:
        queue = RequestQueue(max_requests_per_minute=60)
        result = await queue.enqueue(lambda: client.chat.completions.create(...))
    """

    def __init__(self, max_requests_per_minute: int = 60, clock: Optional[Clock] = None):
        if max_requests_per_minute <= 0:
            raise ValueError("max_requests_per_minute must be positive")

        self.max_requests_per_minute = max_requests_per_minute
        self.min_interval = WINDOW_SECONDS / max_requests_per_minute
        self.clock = clock or SystemClock()

        self._queue: Deque[_QueuedRequest] = deque()
        self._timestamps: Deque[float] = deque()
        self._worker: Optional[asyncio.Task] = None

        self.stats: Dict[str, int] = {
            "completed": 0,
            "failed": 0,
            "retries": 0,
            "cleared": 0,
        }

    @property
    def is_processing(self) -> bool:
        return self._worker is not None and not self._worker.done()

    async def enqueue(
        self, operation: Callable[[], Awaitable[T]], max_retries: int = 3
    ) -> T:
        """
        Queue an operation and wait for its result

        Raises:
            The operation's own exception once retries are exhausted or the
            error is not retryable; QueueClearedError if clear() runs first
        """
        loop = asyncio.get_running_loop()
        future: "asyncio.Future[T]" = loop.create_future()
        self._queue.append(_QueuedRequest(operation, future, max_retries))

        if not self.is_processing:
            self._worker = asyncio.create_task(self._process(), name="request-queue")

        return await future

    async def _process(self) -> None:
        while self._queue:
            request = self._queue.popleft()
            if request.future.done():
                # Caller went away
                continue

            await self._wait_for_rate_limit()
            self._timestamps.append(self.clock.monotonic())

            try:
                result = await request.operation()
            except Exception as e:
                if is_retryable_error(e) and request.retry_count < request.max_retries:
                    delay = 2 ** request.retry_count
                    request.retry_count += 1
                    self.stats["retries"] += 1
                    logger.warning(
                        f"Retryable LLM error ({e}); retry "
                        f"{request.retry_count}/{request.max_retries} in {delay}s"
                    )
                    await self.clock.sleep(delay)
                    self._queue.appendleft(request)
                else:
                    self.stats["failed"] += 1
                    if not request.future.done():
                        request.future.set_exception(e)
            else:
                self.stats["completed"] += 1
                if not request.future.done():
                    request.future.set_result(result)

    def _prune(self, now: float) -> None:
        while self._timestamps and now - self._timestamps[0] >= WINDOW_SECONDS:
            self._timestamps.popleft()

    async def _wait_for_rate_limit(self) -> None:
        now = self.clock.monotonic()
        self._prune(now)

        if len(self._timestamps) >= self.max_requests_per_minute:
            wait = self._timestamps[0] + WINDOW_SECONDS - now + WINDOW_MARGIN_SECONDS
            if wait > 0:
                logger.info(f"Rate limit reached, waiting {wait:.1f}s")
                await self.clock.sleep(wait)
            self._prune(self.clock.monotonic())

        if self._timestamps:
            elapsed = self.clock.monotonic() - self._timestamps[-1]
            if elapsed < self.min_interval:
                await self.clock.sleep(self.min_interval - elapsed)

    def get_status(self) -> Dict[str, Any]:
        self._prune(self.clock.monotonic())
        return {
            "queue_length": len(self._queue),
            "requests_in_last_minute": len(self._timestamps),
            "max_requests_per_minute": self.max_requests_per_minute,
            "is_processing": self.is_processing,
            **self.stats,
        }

    def clear(self) -> int:
        """Reject every pending call; the in-flight call is left to finish"""
        cleared = 0
        while self._queue:
            request = self._queue.popleft()
            if not request.future.done():
                request.future.set_exception(QueueClearedError())
                cleared += 1

        self.stats["cleared"] += cleared
        if cleared:
            logger.info(f"Request queue cleared ({cleared} pending calls rejected)")
        return cleared
