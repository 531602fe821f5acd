"""
Linux active window query
Uses X11 (python-xlib) with an xdotool fallback for Wayland/XWayland
"""

import os
import subprocess
from typing import TYPE_CHECKING, Any, Dict, Optional

from core.logger import get_logger
from perception.base import BaseActiveWindowCapture

logger = get_logger(__name__)

# Runtime imports
try:
    from Xlib import X, display  # type: ignore

    X11_AVAILABLE = True
except ImportError:
    X11_AVAILABLE = False
    logger.warning("python-xlib not available")
    if TYPE_CHECKING:
        display = None  # type: ignore
        X = None  # type: ignore


class LinuxActiveWindowCapture(BaseActiveWindowCapture):
    """Linux foreground window query using X11 or xdotool"""

    def __init__(self):
        super().__init__()
        self.is_wayland = self._detect_wayland()
        self.display = None

        if not self.is_wayland and X11_AVAILABLE:
            try:
                self.display = display.Display()  # type: ignore
                logger.info("Using X11 for active window queries")
            except Exception as e:
                logger.warning(f"Failed to connect to X11 display: {e}")
                self.display = None
        elif self.is_wayland:
            logger.info("Wayland detected, using xdotool fallback")

    @staticmethod
    def _detect_wayland() -> bool:
        wayland_display = os.environ.get("WAYLAND_DISPLAY")
        xdg_session_type = os.environ.get("XDG_SESSION_TYPE", "").lower()
        return wayland_display is not None or xdg_session_type == "wayland"

    def get_active_window_info(self) -> Optional[Dict[str, Any]]:
        if self.display is not None:
            return self._get_x11_window_info()
        return self._get_fallback_window_info()

    def _get_x11_window_info(self) -> Optional[Dict[str, Any]]:
        try:
            root = self.display.screen().root  # type: ignore
            active_atom = self.display.intern_atom("_NET_ACTIVE_WINDOW")  # type: ignore
            active = root.get_full_property(active_atom, X.AnyPropertyType)  # type: ignore
            if not active or not active.value or active.value[0] == 0:
                return None
            window = self.display.create_resource_object("window", active.value[0])  # type: ignore

            name_property = window.get_full_property(
                self.display.intern_atom("_NET_WM_NAME"), 0  # type: ignore
            )
            if name_property is not None and name_property.value:
                value = name_property.value
                window_title = value.decode("utf-8", errors="ignore") if isinstance(value, bytes) else str(value)
            else:
                window_title = window.get_wm_name() or ""

            wm_class = window.get_wm_class()
            app_name = wm_class[1] if wm_class and len(wm_class) > 1 else None

            pid_property = window.get_full_property(
                self.display.intern_atom("_NET_WM_PID"), X.AnyPropertyType  # type: ignore
            )
            process_id = int(pid_property.value[0]) if pid_property else None

            return {
                "app_name": app_name,
                "window_title": window_title or None,
                "process_id": process_id,
            }

        except Exception as e:
            logger.error(f"Failed to get active window info via X11: {e}")
            return None

    def _get_fallback_window_info(self) -> Optional[Dict[str, Any]]:
        try:
            title = subprocess.run(
                ["xdotool", "getactivewindow", "getwindowname"],
                capture_output=True,
                text=True,
                timeout=1,
            )
            if title.returncode != 0:
                return None

            pid = subprocess.run(
                ["xdotool", "getactivewindow", "getwindowpid"],
                capture_output=True,
                text=True,
                timeout=1,
            )
            process_id = int(pid.stdout.strip()) if pid.returncode == 0 and pid.stdout.strip().isdigit() else None

            app_name = None
            if process_id:
                try:
                    with open(f"/proc/{process_id}/comm", encoding="utf-8") as f:
                        app_name = f.read().strip() or None
                except OSError:
                    app_name = None

            return {
                "app_name": app_name,
                "window_title": title.stdout.strip() or None,
                "process_id": process_id,
            }

        except FileNotFoundError:
            logger.warning("xdotool not found - install it for Wayland support")
            return None
        except Exception as e:
            logger.error(f"Failed to get active window info via xdotool: {e}")
            return None

    def close(self) -> None:
        if self.display:
            try:
                self.display.close()
            except Exception as e:
                logger.warning(f"Failed to close X11 display: {e}")
            self.display = None
