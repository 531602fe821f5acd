"""
Windows active window query
Uses the Win32 API for the foreground window and psutil for its process
"""

from typing import TYPE_CHECKING, Any, Dict, Optional

from core.logger import get_logger
from perception.base import BaseActiveWindowCapture

logger = get_logger(__name__)

# Runtime imports
try:
    import psutil  # type: ignore
    import win32gui  # type: ignore
    import win32process  # type: ignore

    WINDOWS_AVAILABLE = True
except ImportError:
    WINDOWS_AVAILABLE = False
    logger.warning("Windows libraries (pywin32, psutil) not available")
    if TYPE_CHECKING:
        win32gui = None  # type: ignore
        win32process = None  # type: ignore
        psutil = None  # type: ignore


class WindowsActiveWindowCapture(BaseActiveWindowCapture):
    """Windows foreground window query using the Win32 API"""

    def __init__(self):
        super().__init__()
        if not WINDOWS_AVAILABLE:
            raise RuntimeError("Windows libraries (pywin32, psutil) not available")

    def get_active_window_info(self) -> Optional[Dict[str, Any]]:
        try:
            hwnd = win32gui.GetForegroundWindow()  # type: ignore
            if hwnd == 0:
                return None

            window_title = win32gui.GetWindowText(hwnd)  # type: ignore

            app_name = None
            process_id = None
            try:
                _, process_id = win32process.GetWindowThreadProcessId(hwnd)  # type: ignore
                app_name = psutil.Process(process_id).name()  # type: ignore
                if app_name.lower().endswith(".exe"):
                    app_name = app_name[:-4]
            except Exception as e:
                logger.warning(f"Failed to get process info: {e}")

            return {
                "app_name": app_name,
                "window_title": window_title or None,
                "process_id": int(process_id) if process_id else None,
            }

        except Exception as e:
            logger.error(f"Failed to get active window info on Windows: {e}")
            return None
