"""
Sample source - foreground window metadata

get_active_window() never raises: any failure yields all-null metadata
with the current timestamp. The URL is filled in only for recognised
browsers (via AppleScript on macOS).
"""

import asyncio
import sys
from typing import Any, Dict, Optional

from core.logger import get_logger
from core.scheduler import Clock, SystemClock
from models.tracking import WindowMetadata

from .base import BaseActiveWindowCapture
from .factory import create_active_window_capture

logger = get_logger(__name__)

BROWSER_APPS = [
    "google chrome",
    "chrome",
    "chromium",
    "microsoft edge",
    "edge",
    "safari",
    "firefox",
    "brave",
    "arc",
    "opera",
    "vivaldi",
]

# Browsers that expose the active tab URL over AppleScript
_CHROMIUM_SCRIPTABLE = {
    "chrome": "Google Chrome",
    "edge": "Microsoft Edge",
    "brave": "Brave Browser",
    "arc": "Arc",
    "opera": "Opera",
    "vivaldi": "Vivaldi",
}

APPLESCRIPT_TIMEOUT = 2.0


def is_browser(app_name: Optional[str]) -> bool:
    if not app_name:
        return False
    lowered = app_name.lower()
    return any(browser in lowered for browser in BROWSER_APPS)


def applescript_for_browser(app_name: str) -> Optional[str]:
    lowered = app_name.lower()
    if "safari" in lowered:
        return 'tell application "Safari" to get URL of front document'
    for key, application in _CHROMIUM_SCRIPTABLE.items():
        if key in lowered:
            return f'tell application "{application}" to get URL of active tab of front window'
    # Firefox has no usable AppleScript dictionary
    return None


class WindowMonitor:
    """
    Args:
        capture: platform foreground-window query; created for the current
            platform when omitted
        clock: timestamp source
    """

    def __init__(
        self,
        capture: Optional[BaseActiveWindowCapture] = None,
        clock: Optional[Clock] = None,
        platform: Optional[str] = None,
    ):
        self.capture = capture if capture is not None else create_active_window_capture()
        self.clock = clock or SystemClock()
        self.platform = platform or sys.platform

    async def get_active_window(self) -> WindowMetadata:
        timestamp = self.clock.now()
        if self.capture is None:
            return WindowMetadata(timestamp=timestamp)

        try:
            info: Optional[Dict[str, Any]] = await asyncio.to_thread(
                self.capture.get_active_window_info
            )
        except Exception as e:
            logger.error(f"Failed to get active window: {e}", exc_info=True)
            return WindowMetadata(timestamp=timestamp)

        if not info:
            return WindowMetadata(timestamp=timestamp)

        app_name = info.get("app_name")
        url = None
        if is_browser(app_name):
            url = await self.get_browser_url(app_name)

        return WindowMetadata(
            window_title=info.get("window_title"),
            app_name=app_name,
            url=url,
            process_id=info.get("process_id"),
            timestamp=timestamp,
        )

    async def get_browser_url(self, app_name: str) -> Optional[str]:
        if self.platform != "darwin":
            return None

        script = applescript_for_browser(app_name)
        if script is None:
            return None

        try:
            process = await asyncio.create_subprocess_exec(
                "osascript",
                "-e",
                script,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            stdout, _ = await asyncio.wait_for(process.communicate(), timeout=APPLESCRIPT_TIMEOUT)
        except (OSError, asyncio.TimeoutError) as e:
            # Usually missing Automation permission
            logger.debug(f"Browser URL lookup failed for {app_name}: {e}")
            return None

        if process.returncode != 0:
            return None
        url = stdout.decode("utf-8", errors="ignore").strip()
        return url or None

    def close(self) -> None:
        if self.capture is not None:
            self.capture.close()
