"""
Notification sink

Lifecycle events (entry created/updated, confirmation needed, tracking
started/stopped) are fanned out to subscribers. A separate system-level
alert for "confirmation needed" is rate limited to N per rolling hour.
"""

from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional

from core.logger import get_logger
from core.scheduler import Clock, SystemClock
from models.entities import WorkEntry
from models.tracking import ConfirmationRequest

logger = get_logger(__name__)

ENTRY_CREATED = "entry-created"
ENTRY_UPDATED = "entry-updated"
CONFIRMATION_NEEDED = "confirmation-needed"
TRACKING_STARTED = "tracking-started"
TRACKING_STOPPED = "tracking-stopped"

ALERT_WINDOW_SECONDS = 3600.0

EventHandler = Callable[[str, Dict[str, Any]], None]
AlertHandler = Callable[[str, str], None]


def _log_alert(title: str, body: str) -> None:
    logger.info(f"[alert] {title}: {body}")


class NotificationService:
    """
    Args:
        max_alerts_per_hour: cap on system alerts in any rolling hour
        alert_handler: delivers a system alert (title, body); defaults to
            logging it
        clock: time source for the alert window
    """

    def __init__(
        self,
        max_alerts_per_hour: int = 3,
        alert_handler: Optional[AlertHandler] = None,
        clock: Optional[Clock] = None,
    ):
        self.max_alerts_per_hour = max_alerts_per_hour
        self.alert_handler = alert_handler or _log_alert
        self.clock = clock or SystemClock()
        self._subscribers: List[EventHandler] = []
        self._alert_times: Deque[float] = deque()

    def subscribe(self, handler: EventHandler) -> Callable[[], None]:
        """Register a handler; returns a function that unsubscribes it"""
        self._subscribers.append(handler)

        def _unsubscribe() -> None:
            if handler in self._subscribers:
                self._subscribers.remove(handler)

        return _unsubscribe

    def emit(self, event: str, payload: Dict[str, Any]) -> None:
        logger.debug(f"Event {event}: {payload}")
        for handler in list(self._subscribers):
            try:
                handler(event, payload)
            except Exception as e:
                logger.error(f"Notification handler failed for {event}: {e}", exc_info=True)

    def emit_entry_created(self, entry: WorkEntry) -> None:
        self.emit(ENTRY_CREATED, entry.model_dump(mode="json"))

    def emit_entry_updated(self, entry: WorkEntry) -> None:
        self.emit(ENTRY_UPDATED, entry.model_dump(mode="json"))

    def emit_confirmation_needed(self, request: ConfirmationRequest) -> None:
        self.emit(CONFIRMATION_NEEDED, request.model_dump(mode="json"))
        self.show_confirmation_needed(request.suggested_project.name, request.confidence)

    def emit_tracking_started(self, entry: Optional[WorkEntry] = None) -> None:
        self.emit(TRACKING_STARTED, {"entryId": entry.id if entry else None})

    def emit_tracking_stopped(self) -> None:
        self.emit(TRACKING_STOPPED, {})

    # ------------------------------------------------------------------
    # Rate-limited system alerts
    # ------------------------------------------------------------------

    def _prune(self) -> None:
        window_start = self.clock.monotonic() - ALERT_WINDOW_SECONDS
        while self._alert_times and self._alert_times[0] <= window_start:
            self._alert_times.popleft()

    def get_remaining_alerts(self) -> int:
        self._prune()
        return max(0, self.max_alerts_per_hour - len(self._alert_times))

    def update_rate_limit(self, max_per_hour: int) -> None:
        self.max_alerts_per_hour = max_per_hour

    def show_alert(self, title: str, body: str) -> bool:
        if self.get_remaining_alerts() <= 0:
            logger.debug(f"Alert rate limit reached, dropping: {title}")
            return False

        try:
            self.alert_handler(title, body)
        except Exception as e:
            logger.error(f"Failed to deliver alert '{title}': {e}", exc_info=True)
            return False

        self._alert_times.append(self.clock.monotonic())
        return True

    def show_confirmation_needed(self, project_name: str, confidence: int) -> bool:
        return self.show_alert(
            "Confirm project",
            f'Tracking "{project_name}" ({confidence}%). Click to confirm.',
        )
