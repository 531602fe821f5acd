"""
Linux platform-specific implementation
Queries the foreground window via X11 (python-xlib) or xdotool
"""

from .active_window import LinuxActiveWindowCapture

__all__ = ["LinuxActiveWindowCapture"]
