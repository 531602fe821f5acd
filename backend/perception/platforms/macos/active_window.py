"""
macOS active window query
Uses NSWorkspace for the frontmost application and Quartz for its window title
"""

from typing import TYPE_CHECKING, Any, Dict, Optional

from core.logger import get_logger
from perception.base import BaseActiveWindowCapture

logger = get_logger(__name__)

# Runtime imports
try:
    from AppKit import NSWorkspace  # type: ignore
    from Quartz import (  # type: ignore[import-untyped]
        CGWindowListCopyWindowInfo,  # type: ignore[attr-defined]
        kCGNullWindowID,  # type: ignore[attr-defined]
        kCGWindowListOptionOnScreenOnly,  # type: ignore[attr-defined]
    )

    MACOS_AVAILABLE = True
except ImportError:
    MACOS_AVAILABLE = False
    logger.warning("macOS frameworks not available")
    if TYPE_CHECKING:
        NSWorkspace = None  # type: ignore
        CGWindowListCopyWindowInfo = None  # type: ignore
        kCGNullWindowID = None  # type: ignore
        kCGWindowListOptionOnScreenOnly = None  # type: ignore


class MacOSActiveWindowCapture(BaseActiveWindowCapture):
    """macOS foreground window query using NSWorkspace and Quartz"""

    def __init__(self):
        super().__init__()
        if not MACOS_AVAILABLE:
            raise RuntimeError("macOS frameworks not available")
        self.workspace = NSWorkspace.sharedWorkspace()  # type: ignore

    def get_active_window_info(self) -> Optional[Dict[str, Any]]:
        try:
            frontmost_app = self.workspace.frontmostApplication()
            if frontmost_app is None:
                return None

            app_name = frontmost_app.localizedName()
            process_id = int(frontmost_app.processIdentifier())

            window_title = None
            window_list = CGWindowListCopyWindowInfo(  # type: ignore
                kCGWindowListOptionOnScreenOnly, kCGNullWindowID  # type: ignore
            )
            for window in window_list or []:
                # Layer 0 is a normal document window
                if window.get("kCGWindowOwnerPID") == process_id and window.get("kCGWindowLayer", -1) == 0:
                    window_title = window.get("kCGWindowName") or None
                    break

            return {
                "app_name": str(app_name) if app_name else None,
                "window_title": str(window_title) if window_title else None,
                "process_id": process_id,
            }

        except Exception as e:
            logger.error(f"Failed to get active window info on macOS: {e}")
            return None
